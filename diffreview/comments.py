from __future__ import annotations

import datetime as dt
import itertools
import threading
from dataclasses import dataclass, field

from .errors import InvalidRangeError
from .model import SIDE_NEW, SIDE_OLD, VALID_SIDES, DiffFile, DiffLine

KIND_NOTE = "note"
KIND_SUGGESTION = "suggestion"
KIND_ISSUE = "issue"
KIND_PRAISE = "praise"
COMMENT_KINDS = (KIND_NOTE, KIND_SUGGESTION, KIND_ISSUE, KIND_PRAISE)

RESOLVED = "resolved"
UNRESOLVED = "unresolved"


def iso_utc_now() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def next_comment_kind(kind: str) -> str:
    index = COMMENT_KINDS.index(kind) if kind in COMMENT_KINDS else -1
    return COMMENT_KINDS[(index + 1) % len(COMMENT_KINDS)]


@dataclass(frozen=True)
class LineRange:
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start <= 0 or self.end <= 0 or self.start > self.end:
            raise InvalidRangeError(self.start, self.end)

    @classmethod
    def single(cls, line: int) -> LineRange:
        return cls(line, line)

    @property
    def is_single_line(self) -> bool:
        return self.start == self.end

    def numbers(self) -> range:
        return range(self.start, self.end + 1)

    def label(self) -> str:
        return f"L{self.start}" if self.is_single_line else f"L{self.start}-{self.end}"


@dataclass
class CommentAnchor:
    handle: str
    file_path: str
    side: str
    line_range: LineRange | None
    kind: str
    content: str
    created_at: str = field(default_factory=iso_utc_now)
    updated_at: str | None = None

    @property
    def is_file_level(self) -> bool:
        return self.line_range is None


@dataclass(frozen=True)
class AnchorResolution:
    anchor: CommentAnchor
    status: str  # resolved|unresolved
    file: DiffFile | None = None
    lines: tuple[DiffLine, ...] = ()

    @property
    def is_resolved(self) -> bool:
        return self.status == RESOLVED


def _find_file(files: list[DiffFile], identity: str) -> DiffFile | None:
    for item in files:
        if item.identity == identity:
            return item
    return None


def resolve_anchor(anchor: CommentAnchor, files: list[DiffFile]) -> AnchorResolution:
    """Exact (path, side, line) lookup; every line of the range must be present."""
    target = _find_file(files, anchor.file_path)
    if target is None:
        return AnchorResolution(anchor=anchor, status=UNRESOLVED)
    if anchor.line_range is None:
        return AnchorResolution(anchor=anchor, status=RESOLVED, file=target)

    by_number: dict[int, DiffLine] = {}
    for line in target.iter_lines():
        number = line.lineno_for_side(anchor.side)
        if number is not None:
            by_number.setdefault(number, line)
    wanted = anchor.line_range.numbers()
    if any(number not in by_number for number in wanted):
        return AnchorResolution(anchor=anchor, status=UNRESOLVED, file=target)
    return AnchorResolution(
        anchor=anchor,
        status=RESOLVED,
        file=target,
        lines=tuple(by_number[number] for number in wanted),
    )


class CommentStore:
    """Session-owned comment anchors.

    Anchors outlive diff rebuilds; they are never renumbered or dropped when
    the diff changes, only re-resolved.
    """

    def __init__(self) -> None:
        self._anchors: dict[str, CommentAnchor] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def create(
        self,
        file_path: str,
        side: str,
        line_range: LineRange | tuple[int, int] | None,
        kind: str,
        content: str,
    ) -> str:
        if side not in VALID_SIDES:
            raise ValueError(f"Unknown side: {side}")
        if kind not in COMMENT_KINDS:
            raise ValueError(f"Unknown comment kind: {kind}")
        if isinstance(line_range, tuple):
            line_range = LineRange(*line_range)
        with self._lock:
            handle = f"c{next(self._ids)}"
            self._anchors[handle] = CommentAnchor(
                handle=handle,
                file_path=str(file_path),
                side=side,
                line_range=line_range,
                kind=kind,
                content=content,
            )
            return handle

    def get(self, handle: str) -> CommentAnchor:
        with self._lock:
            anchor = self._anchors.get(handle)
        if anchor is None:
            raise LookupError(f"Comment not found: {handle}")
        return anchor

    def edit(self, handle: str, content: str, *, kind: str | None = None) -> CommentAnchor:
        if kind is not None and kind not in COMMENT_KINDS:
            raise ValueError(f"Unknown comment kind: {kind}")
        with self._lock:
            anchor = self.get(handle)
            anchor.content = content
            if kind is not None:
                anchor.kind = kind
            anchor.updated_at = iso_utc_now()
            return anchor

    def delete(self, handle: str) -> None:
        with self._lock:
            if self._anchors.pop(handle, None) is None:
                raise LookupError(f"Comment not found: {handle}")

    def anchors(self) -> list[CommentAnchor]:
        with self._lock:
            return list(self._anchors.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._anchors)

    def resolve(self, handle: str, files: list[DiffFile]) -> AnchorResolution:
        with self._lock:
            return resolve_anchor(self.get(handle), files)

    def resolve_all(self, files: list[DiffFile]) -> list[AnchorResolution]:
        with self._lock:
            return [resolve_anchor(anchor, files) for anchor in self._anchors.values()]

    def file_comments(self, file_path: str) -> list[CommentAnchor]:
        with self._lock:
            return [a for a in self._anchors.values() if a.file_path == file_path and a.line_range is None]

    def comments_for_line(self, file_path: str, side: str, line_number: int) -> list[CommentAnchor]:
        """Anchors whose range ends on this line, where they render inline."""
        with self._lock:
            return [
                anchor
                for anchor in self._anchors.values()
                if anchor.file_path == file_path
                and anchor.side == side
                and anchor.line_range is not None
                and anchor.line_range.end == line_number
            ]

    def restore(self, anchor: CommentAnchor) -> None:
        with self._lock:
            self._anchors[anchor.handle] = anchor
            number = int(anchor.handle[1:]) if anchor.handle[1:].isdigit() else 0
            current = next(self._ids)
            self._ids = itertools.count(max(current, number + 1))
