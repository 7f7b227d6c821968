from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

STATUS_ADDED = "added"
STATUS_DELETED = "deleted"
STATUS_MODIFIED = "modified"
STATUS_RENAMED = "renamed"
STATUS_COPIED = "copied"
VALID_FILE_STATUSES = {STATUS_ADDED, STATUS_DELETED, STATUS_MODIFIED, STATUS_RENAMED, STATUS_COPIED}

ORIGIN_ADDITION = "addition"
ORIGIN_DELETION = "deletion"
ORIGIN_CONTEXT = "context"
VALID_ORIGINS = {ORIGIN_ADDITION, ORIGIN_DELETION, ORIGIN_CONTEXT}

SIDE_OLD = "old"
SIDE_NEW = "new"
VALID_SIDES = {SIDE_OLD, SIDE_NEW}

ORIGIN_PREFIX = {ORIGIN_ADDITION: "+", ORIGIN_DELETION: "-", ORIGIN_CONTEXT: " "}
STATUS_LETTER = {
    STATUS_ADDED: "A",
    STATUS_DELETED: "D",
    STATUS_MODIFIED: "M",
    STATUS_RENAMED: "R",
    STATUS_COPIED: "C",
}


@dataclass
class DiffLine:
    origin: str  # addition|deletion|context
    content: str
    old_lineno: int | None = None
    new_lineno: int | None = None
    highlighted_spans: list[tuple[Any, str]] | None = None
    no_newline: bool = False

    def lineno_for_side(self, side: str) -> int | None:
        return self.old_lineno if side == "old" else self.new_lineno


@dataclass
class DiffHunk:
    header: str
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[DiffLine] = field(default_factory=list)

    def counted_lines(self) -> tuple[int, int]:
        old = sum(1 for line in self.lines if line.origin in {ORIGIN_DELETION, ORIGIN_CONTEXT})
        new = sum(1 for line in self.lines if line.origin in {ORIGIN_ADDITION, ORIGIN_CONTEXT})
        return old, new

    def to_patch_text(self) -> str:
        """Rebuild the unified-diff body of this hunk, header line included."""
        parts = [self.header + "\n"]
        for line in self.lines:
            parts.append(ORIGIN_PREFIX[line.origin] + line.content + "\n")
            if line.no_newline:
                parts.append("\\ No newline at end of file\n")
        return "".join(parts)


@dataclass
class DiffFile:
    old_path: str | None
    new_path: str | None
    status: str  # added|deleted|modified|renamed|copied
    is_binary: bool = False
    hunks: list[DiffHunk] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.old_path is None and self.new_path is None:
            raise ValueError("DiffFile needs an old or a new path")
        if self.status not in VALID_FILE_STATUSES:
            raise ValueError(f"Unknown file status: {self.status}")

    @property
    def identity(self) -> str:
        return str(self.new_path if self.new_path is not None else self.old_path)

    @property
    def display_path(self) -> str:
        if self.status in {STATUS_RENAMED, STATUS_COPIED} and self.old_path and self.new_path:
            return f"{self.old_path} -> {self.new_path}"
        return self.identity

    def iter_lines(self):
        for hunk in self.hunks:
            yield from hunk.lines


def file_identity(old_path: str | None, new_path: str | None) -> str:
    return str(new_path if new_path is not None else old_path)
