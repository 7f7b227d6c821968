from __future__ import annotations

import codecs
import logging
import re
import subprocess
import threading
from pathlib import Path
from typing import Any

from .errors import BackendError
from .model import SIDE_NEW, SIDE_OLD

logger = logging.getLogger(__name__)

HUNK_HEADER_RE = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? "
    r"\+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@(?P<header>.*)$"
)
BINARY_RE = re.compile(r"^Binary files (?P<old>.+) and (?P<new>.+) differ$")

DIFF_ARGS = [
    "-c",
    "core.quotePath=false",
    "diff",
    "--no-color",
    "--no-ext-diff",
    "--no-textconv",
    "--find-renames",
    "--find-copies",
    "--src-prefix=a/",
    "--dst-prefix=b/",
]


def run_git(
    repo: Path,
    args: list[str],
    *,
    binary: bool = False,
    ok_codes: tuple[int, ...] = (0,),
    input_bytes: bytes | None = None,
    commit: str | None = None,
    path: str | None = None,
) -> Any:
    logger.debug("git %s", " ".join(args))
    try:
        process = subprocess.run(
            ["git", "-C", str(repo), *args],
            capture_output=True,
            input=input_bytes,
            check=False,
        )
    except OSError as error:
        raise BackendError(f"git {' '.join(args)} could not start: {error}", repo=str(repo)) from error
    if process.returncode not in ok_codes:
        message = process.stderr.decode("utf-8", errors="replace").strip()
        message = message or process.stdout.decode("utf-8", errors="replace").strip()
        raise BackendError(f"git {' '.join(args)} failed: {message}", repo=str(repo), commit=commit, path=path)
    if binary:
        return process.stdout
    return process.stdout.decode("utf-8", errors="replace")


def _unquote_path(raw: str) -> str:
    value = raw.strip()
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        decoded, _ = codecs.escape_decode(value[1:-1].encode("utf-8"))
        return decoded.decode("utf-8", errors="replace")
    return value


def normalize_diff_path(raw: str) -> str | None:
    value = _unquote_path(raw)
    if value == "/dev/null":
        return None
    if value.startswith("a/") or value.startswith("b/"):
        return value[2:]
    return value


def _split_git_header(rest: str) -> tuple[str | None, str | None]:
    # "a/<path> b/<path>"; when both paths are equal the split point is the middle.
    size = len(rest)
    if size % 2 == 1:
        left, right = rest[: size // 2], rest[size // 2 + 1 :]
        if left[2:] == right[2:]:
            return normalize_diff_path(left), normalize_diff_path(right)
    if " b/" in rest:
        left, right = rest.split(" b/", 1)
        return normalize_diff_path(left), right
    parts = rest.split()
    return (
        normalize_diff_path(parts[0]) if parts else None,
        normalize_diff_path(parts[1]) if len(parts) > 1 else None,
    )


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


def _new_delta(header_line: str) -> dict[str, Any]:
    old_path, new_path = _split_git_header(header_line[len("diff --git ") :])
    return {
        "status": "M",
        "old_path": old_path,
        "new_path": new_path,
        "old_binary": False,
        "new_binary": False,
        "meta": [header_line],
        "hunks": [],
    }


def _finish_delta(delta: dict[str, Any]) -> dict[str, Any]:
    if delta["status"] == "A":
        delta["old_path"] = None
    elif delta["status"] == "D":
        delta["new_path"] = None
    return delta


def parse_unified_diff(
    diff_bytes: bytes,
    *,
    repo: str | None = None,
    commit: str | None = None,
) -> list[dict[str, Any]]:
    """Split ``git diff`` output into raw delta records.

    Line contents stay raw bytes (the origin marker removed). Line numbers are
    assigned from the hunk header; the hunk ends once both counts are consumed.
    """
    lines = diff_bytes.split(b"\n")
    if lines and lines[-1] == b"":
        lines.pop()

    deltas: list[dict[str, Any]] = []
    current: dict[str, Any] | None = None
    index = 0

    while index < len(lines):
        raw = lines[index]
        index += 1

        if raw.startswith(b"diff --git "):
            if current is not None:
                deltas.append(_finish_delta(current))
            current = _new_delta(_decode(raw))
            continue

        if current is None:
            continue

        if raw.startswith(b"@@ "):
            text = _decode(raw).rstrip("\r")
            match = HUNK_HEADER_RE.match(text)
            if not match:
                path = current["new_path"] or current["old_path"]
                raise BackendError(f"Unsupported hunk header: {text}", repo=repo, commit=commit, path=path)
            old_start = int(match.group("old_start"))
            old_count = int(match.group("old_count") or "1")
            new_start = int(match.group("new_start"))
            new_count = int(match.group("new_count") or "1")
            hunk: dict[str, Any] = {
                "header": text.strip(),
                "old_start": old_start,
                "old_count": old_count,
                "new_start": new_start,
                "new_count": new_count,
                "lines": [],
            }
            current["hunks"].append(hunk)

            old_cursor, new_cursor = old_start, new_start
            old_left, new_left = old_count, new_count
            while index < len(lines):
                body = lines[index]
                origin = body[:1]
                if origin == b"\\":
                    hunk["lines"].append({"origin": "\\", "content": body[2:], "old_lineno": None, "new_lineno": None})
                    index += 1
                    continue
                if old_left <= 0 and new_left <= 0:
                    break
                if origin == b" " or body == b"":
                    hunk["lines"].append(
                        {"origin": " ", "content": body[1:], "old_lineno": old_cursor, "new_lineno": new_cursor}
                    )
                    old_cursor += 1
                    new_cursor += 1
                    old_left -= 1
                    new_left -= 1
                elif origin == b"-":
                    hunk["lines"].append({"origin": "-", "content": body[1:], "old_lineno": old_cursor, "new_lineno": None})
                    old_cursor += 1
                    old_left -= 1
                elif origin == b"+":
                    hunk["lines"].append({"origin": "+", "content": body[1:], "old_lineno": None, "new_lineno": new_cursor})
                    new_cursor += 1
                    new_left -= 1
                else:
                    break
                index += 1
            continue

        text = _decode(raw).rstrip("\r")
        current["meta"].append(text)
        if text.startswith("new file mode"):
            current["status"] = "A"
        elif text.startswith("deleted file mode"):
            current["status"] = "D"
        elif text.startswith("rename from "):
            current["status"] = "R"
            current["old_path"] = _unquote_path(text[len("rename from ") :])
        elif text.startswith("rename to "):
            current["new_path"] = _unquote_path(text[len("rename to ") :])
        elif text.startswith("copy from "):
            current["status"] = "C"
            current["old_path"] = _unquote_path(text[len("copy from ") :])
        elif text.startswith("copy to "):
            current["new_path"] = _unquote_path(text[len("copy to ") :])
        elif text.startswith("--- "):
            current["old_path"] = normalize_diff_path(text[4:])
        elif text.startswith("+++ "):
            current["new_path"] = normalize_diff_path(text[4:])
        elif text.startswith("Binary files ") or text == "GIT binary patch":
            match = BINARY_RE.match(text)
            if match:
                current["old_binary"] = match.group("old") != "/dev/null"
                current["new_binary"] = match.group("new") != "/dev/null"
            else:
                current["old_binary"] = current["status"] != "A"
                current["new_binary"] = current["status"] != "D"

    if current is not None:
        deltas.append(_finish_delta(current))
    return deltas


def _delta_sort_key(delta: dict[str, Any]) -> str:
    return str(delta.get("new_path") or delta.get("old_path") or "")


def verify_head(repo: Path) -> str:
    return run_git(repo, ["rev-parse", "--verify", "HEAD^{commit}"], commit="HEAD").strip()


def list_untracked_files(repo: Path) -> list[str]:
    # Without --directory, untracked directories are recursed into.
    output = run_git(repo, ["-c", "core.quotePath=false", "ls-files", "-z", "--others", "--exclude-standard"])
    files = []
    for item in output.split("\0"):
        if not item:
            continue
        if item.endswith("/"):
            logger.debug("skipping untracked nested repository %s", item)
            continue
        files.append(item)
    return files


def list_nested_repositories(repo: Path) -> list[str]:
    """Untracked directories that are git repositories of their own; git never lists their files."""
    output = run_git(
        repo,
        ["-c", "core.quotePath=false", "ls-files", "-z", "--others", "--exclude-standard", "--directory"],
    )
    return [item for item in output.split("\0") if item.endswith("/") and (repo / item / ".git").exists()]


def load_working_tree_deltas(repo: Path) -> list[dict[str, Any]]:
    verify_head(repo)
    output = run_git(repo, [*DIFF_ARGS, "HEAD"], binary=True, commit="HEAD")
    deltas = parse_unified_diff(output, repo=str(repo), commit="HEAD")
    for nested in list_nested_repositories(repo):
        logger.debug("untracked nested repository %s is not diffed", nested)
    for path in list_untracked_files(repo):
        output = run_git(
            repo,
            [*DIFF_ARGS, "--no-index", "--", "/dev/null", path],
            binary=True,
            ok_codes=(0, 1),
            path=path,
        )
        for delta in parse_unified_diff(output, repo=str(repo)):
            delta["status"] = "?"
            delta["old_path"] = None
            delta["new_path"] = path
            deltas.append(delta)
    deltas.sort(key=_delta_sort_key)
    return deltas


def empty_tree_id(repo: Path) -> str:
    return run_git(repo, ["hash-object", "-t", "tree", "--stdin"], input_bytes=b"").strip()


def resolve_commit(repo: Path, commit_id: str) -> str:
    return run_git(repo, ["rev-parse", "--verify", f"{commit_id}^{{commit}}"], commit=commit_id).strip()


def resolve_commit_range(repo: Path, commit_ids: list[str]) -> tuple[str, str]:
    """Return (old tree-ish, new commit) for an oldest-to-newest commit list."""
    oldest = resolve_commit(repo, commit_ids[0])
    newest = resolve_commit(repo, commit_ids[-1])
    parents = run_git(repo, ["rev-list", "--parents", "-n", "1", oldest], commit=oldest).split()
    if len(parents) > 1:
        return parents[1], newest
    return empty_tree_id(repo), newest


def load_tree_deltas(repo: Path, old_rev: str, new_rev: str) -> list[dict[str, Any]]:
    output = run_git(repo, [*DIFF_ARGS, old_rev, new_rev], binary=True, commit=new_rev)
    return parse_unified_diff(output, repo=str(repo), commit=new_rev)


def split_content_lines(data: bytes) -> list[str]:
    text = data.decode("utf-8", errors="replace")
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


class GitContentReader:
    """Reads file content for one side of a diff by path.

    ``new_rev`` of ``None`` means the working directory.
    """

    def __init__(self, repo: Path, old_rev: str, new_rev: str | None) -> None:
        self.repo = repo
        self.old_rev = old_rev
        self.new_rev = new_rev
        self._cache: dict[tuple[str, str], list[str]] = {}
        self._lock = threading.Lock()

    def _read(self, path: str, side: str) -> list[str]:
        rev = self.old_rev if side == SIDE_OLD else self.new_rev
        if rev is None:
            target = self.repo / path
            try:
                return split_content_lines(target.read_bytes())
            except OSError as error:
                raise BackendError(f"Cannot read working tree file: {error}", repo=str(self.repo), path=path) from error
        data = run_git(self.repo, ["show", f"{rev}:{path}"], binary=True, commit=rev, path=path)
        return split_content_lines(data)

    def read_lines(self, path: str, side: str) -> list[str]:
        key = (side, path)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached
        lines = self._read(path, side)
        with self._lock:
            self._cache.setdefault(key, lines)
            return self._cache[key]

    def line_count(self, path: str | None, side: str) -> int:
        if path is None:
            return 0
        return len(self.read_lines(path, side))
