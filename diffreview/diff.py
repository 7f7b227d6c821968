from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from .errors import BackendError, NoChangesError
from .git_backend import (
    GitContentReader,
    load_tree_deltas,
    load_working_tree_deltas,
    resolve_commit_range,
)
from .model import (
    ORIGIN_ADDITION,
    ORIGIN_CONTEXT,
    ORIGIN_DELETION,
    STATUS_ADDED,
    STATUS_COPIED,
    STATUS_DELETED,
    STATUS_MODIFIED,
    STATUS_RENAMED,
    DiffFile,
    DiffHunk,
    DiffLine,
    file_identity,
)

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "A": STATUS_ADDED,
    "?": STATUS_ADDED,
    "D": STATUS_DELETED,
    "M": STATUS_MODIFIED,
    "R": STATUS_RENAMED,
    "C": STATUS_COPIED,
}
ORIGIN_BY_MARKER = {"+": ORIGIN_ADDITION, "-": ORIGIN_DELETION, " ": ORIGIN_CONTEXT}
NO_NEWLINE_MARKER = "\\"

MODE_WORKING_TREE = "working_tree"
MODE_COMMIT_RANGE = "commit_range"


class Highlighter(Protocol):
    def highlight_file_lines(self, file_path: str, lines: list[str]) -> list[Any] | None: ...

    def apply_diff_background(self, spans: list[Any], origin: str) -> list[Any]: ...


def map_status(code: Any) -> str:
    return STATUS_BY_CODE.get(str(code or ""), STATUS_MODIFIED)


def map_origin(marker: Any) -> str:
    return ORIGIN_BY_MARKER.get(str(marker or ""), ORIGIN_CONTEXT)


def decode_line(raw: Any) -> str:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else str(raw)
    return text.rstrip("\n").rstrip("\r")


def _parse_hunks(delta: dict[str, Any], file_path: str, highlighter: Highlighter | None) -> list[DiffHunk]:
    hunks: list[DiffHunk] = []
    for raw_hunk in delta.get("hunks") or []:
        lines: list[DiffLine] = []
        for raw_line in raw_hunk.get("lines") or []:
            if raw_line.get("origin") == NO_NEWLINE_MARKER:
                if lines:
                    lines[-1].no_newline = True
                continue
            origin = map_origin(raw_line.get("origin"))
            lines.append(
                DiffLine(
                    origin=origin,
                    content=decode_line(raw_line.get("content", b"")),
                    old_lineno=None if origin == ORIGIN_ADDITION else raw_line.get("old_lineno"),
                    new_lineno=None if origin == ORIGIN_DELETION else raw_line.get("new_lineno"),
                )
            )
        hunks.append(
            DiffHunk(
                header=str(raw_hunk.get("header", "")).strip(),
                old_start=int(raw_hunk.get("old_start", 0)),
                old_count=int(raw_hunk.get("old_count", 0)),
                new_start=int(raw_hunk.get("new_start", 0)),
                new_count=int(raw_hunk.get("new_count", 0)),
                lines=lines,
            )
        )

    if highlighter is None:
        return hunks
    all_lines = [line for hunk in hunks for line in hunk.lines]
    if not all_lines:
        return hunks
    try:
        highlighted = highlighter.highlight_file_lines(file_path, [line.content for line in all_lines])
    except Exception as error:  # noqa: BLE001
        logger.debug("highlighter raised for %s, rendering plain: %s", file_path, error)
        highlighted = None
    if highlighted is None or len(highlighted) != len(all_lines):
        return hunks
    for line, spans in zip(all_lines, highlighted):
        line.highlighted_spans = highlighter.apply_diff_background(list(spans), line.origin)
    return hunks


def _verify_counts(
    file_path: str,
    hunks: list[DiffHunk],
    repo: str | None = None,
    commit: str | None = None,
) -> None:
    for hunk in hunks:
        old, new = hunk.counted_lines()
        if (old, new) != (hunk.old_count, hunk.new_count):
            raise BackendError(
                f"Hunk '{hunk.header}' holds {old} old / {new} new line(s) "
                f"but its header declares {hunk.old_count} / {hunk.new_count}",
                repo=repo,
                commit=commit,
                path=file_path,
            )


def parse_diff(
    deltas: list[dict[str, Any]],
    highlighter: Highlighter | None = None,
    *,
    repo: Path | None = None,
    commit: str | None = None,
) -> list[DiffFile]:
    files: list[DiffFile] = []
    for delta in deltas:
        old_path = delta.get("old_path")
        new_path = delta.get("new_path")
        is_binary = bool(delta.get("old_binary")) or bool(delta.get("new_binary"))
        hunks = [] if is_binary else _parse_hunks(delta, file_identity(old_path, new_path), highlighter)
        _verify_counts(file_identity(old_path, new_path), hunks, str(repo) if repo else None, commit)
        files.append(
            DiffFile(
                old_path=old_path,
                new_path=new_path,
                status=map_status(delta.get("status")),
                is_binary=is_binary,
                hunks=hunks,
            )
        )
    if not files:
        raise NoChangesError()
    return files


def get_working_tree_diff(repo: Path, highlighter: Highlighter | None = None) -> list[DiffFile]:
    return parse_diff(load_working_tree_deltas(repo), highlighter, repo=repo, commit="HEAD")


def get_commit_range_diff(
    repo: Path,
    commit_ids: list[str],
    highlighter: Highlighter | None = None,
) -> list[DiffFile]:
    """Diff the oldest commit's parent (or the empty tree) against the newest commit.

    ``commit_ids`` is ordered oldest to newest.
    """
    if not commit_ids:
        raise NoChangesError("No commits selected.")
    old_rev, new_rev = resolve_commit_range(repo, commit_ids)
    return parse_diff(load_tree_deltas(repo, old_rev, new_rev), highlighter, repo=repo, commit=new_rev)


@dataclass
class ReviewDiff:
    files: list[DiffFile]
    reader: GitContentReader
    mode: str
    description: str


def load_review_diff(
    repo: Path,
    commit_ids: list[str] | None = None,
    highlighter: Highlighter | None = None,
) -> ReviewDiff:
    """Build the diff tree plus the content reader the gap engine needs."""
    if not commit_ids:
        files = get_working_tree_diff(repo, highlighter)
        return ReviewDiff(
            files=files,
            reader=GitContentReader(repo, old_rev="HEAD", new_rev=None),
            mode=MODE_WORKING_TREE,
            description="HEAD -> working tree",
        )
    old_rev, new_rev = resolve_commit_range(repo, commit_ids)
    files = parse_diff(load_tree_deltas(repo, old_rev, new_rev), highlighter, repo=repo, commit=new_rev)
    return ReviewDiff(
        files=files,
        reader=GitContentReader(repo, old_rev=old_rev, new_rev=new_rev),
        mode=MODE_COMMIT_RANGE,
        description=f"{commit_ids[0][:12]}^ -> {commit_ids[-1][:12]}",
    )


def find_file(files: list[DiffFile], identity: str) -> DiffFile | None:
    for item in files:
        if item.identity == identity:
            return item
    return None


