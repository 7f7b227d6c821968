from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Protocol

from .errors import BackendError, GapIntegrityError
from .model import ORIGIN_CONTEXT, SIDE_NEW, SIDE_OLD, STATUS_ADDED, STATUS_DELETED, DiffFile, DiffLine

logger = logging.getLogger(__name__)

GAP_FILE_START = "start"
GAP_FILE_END = "end"
GAP_BEFORE_PREFIX = "before:"


class ContentReader(Protocol):
    def read_lines(self, path: str, side: str) -> list[str]: ...

    def line_count(self, path: str | None, side: str) -> int: ...


@dataclass(frozen=True)
class ContextGap:
    file: DiffFile = field(compare=False, repr=False)
    boundary: str
    old_start: int
    old_end: int
    new_start: int
    new_end: int

    @property
    def size(self) -> int:
        return max(0, self.old_end - self.old_start + 1)

    @property
    def key(self) -> tuple[str, str]:
        return (self.file.identity, self.boundary)


def boundary_ids(file: DiffFile) -> list[str]:
    if file.is_binary:
        return []
    count = len(file.hunks)
    if count == 0:
        return [GAP_FILE_START]
    return [GAP_FILE_START, *[f"{GAP_BEFORE_PREFIX}{index}" for index in range(1, count)], GAP_FILE_END]


def boundary_index(boundary: str, hunk_count: int) -> int:
    """Index of the hunk that follows the gap; ``hunk_count`` for the file end."""
    if boundary == GAP_FILE_START:
        return 0
    if boundary == GAP_FILE_END and hunk_count > 0:
        return hunk_count
    if boundary.startswith(GAP_BEFORE_PREFIX):
        try:
            index = int(boundary[len(GAP_BEFORE_PREFIX) :])
        except ValueError:
            index = -1
        if 1 <= index < hunk_count:
            return index
    raise LookupError(f"Unknown gap boundary: {boundary}")


def _effective_start(start: int, count: int) -> int:
    # A zero-length hunk side sits just after its start line.
    return start + 1 if count == 0 else start


def file_line_totals(reader: ContentReader, file: DiffFile) -> tuple[int, int]:
    old_total = 0 if file.status == STATUS_ADDED else reader.line_count(file.old_path, SIDE_OLD)
    new_total = 0 if file.status == STATUS_DELETED else reader.line_count(file.new_path, SIDE_NEW)
    return old_total, new_total


def calculate_gap(
    file: DiffFile,
    boundary: str,
    old_total: int | None = None,
    new_total: int | None = None,
) -> ContextGap:
    if file.is_binary:
        raise LookupError(f"Binary file has no context gaps: {file.identity}")
    hunks = file.hunks
    index = boundary_index(boundary, len(hunks))
    previous = hunks[index - 1] if index > 0 else None
    following = hunks[index] if index < len(hunks) else None

    if previous is None:
        old_start = new_start = 1
    else:
        old_start = _effective_start(previous.old_start, previous.old_count) + previous.old_count
        new_start = _effective_start(previous.new_start, previous.new_count) + previous.new_count

    if following is None:
        if old_total is None or new_total is None:
            raise ValueError(f"File line totals are required for gap {boundary} of {file.identity}")
        old_end, new_end = old_total, new_total
    else:
        old_end = _effective_start(following.old_start, following.old_count) - 1
        new_end = _effective_start(following.new_start, following.new_count) - 1

    old_size = old_end - old_start + 1
    new_size = new_end - new_start + 1
    if old_size < 0 or new_size < 0 or old_size != new_size:
        raise GapIntegrityError(file.identity, boundary, old_size, new_size)
    return ContextGap(
        file=file,
        boundary=boundary,
        old_start=old_start,
        old_end=old_end,
        new_start=new_start,
        new_end=new_end,
    )


def fetch_context_lines(reader: ContentReader, gap: ContextGap) -> tuple[DiffLine, ...]:
    """Read the gap's lines from the blob by line number; the diff is not re-run."""
    if gap.size == 0:
        return ()
    file = gap.file
    if file.status == STATUS_DELETED or file.new_path is None:
        path, side, start, end = file.old_path, SIDE_OLD, gap.old_start, gap.old_end
    else:
        path, side, start, end = file.new_path, SIDE_NEW, gap.new_start, gap.new_end
    lines = reader.read_lines(str(path), side)
    window = lines[start - 1 : end]
    if len(window) != gap.size:
        raise BackendError(
            f"Content has {len(lines)} line(s); cannot read lines {start}-{end} for gap {gap.boundary}",
            path=str(path),
        )
    offset = gap.new_start - gap.old_start
    return tuple(
        DiffLine(
            origin=ORIGIN_CONTEXT,
            content=text,
            old_lineno=gap.old_start + position,
            new_lineno=gap.old_start + position + offset,
        )
        for position, text in enumerate(window)
    )


class ContextGapEngine:
    """Computes and materializes the context gaps of one diff tree.

    Cache keys are (file identity, boundary id); entries are tuples and are
    never mutated after insertion.
    """

    def __init__(self, reader: ContentReader) -> None:
        self.reader = reader
        self._gaps: dict[tuple[str, str], ContextGap] = {}
        self._content: dict[tuple[str, str], tuple[DiffLine, ...]] = {}
        self._lock = threading.Lock()

    def gap(self, file: DiffFile, boundary: str) -> ContextGap:
        key = (file.identity, boundary)
        with self._lock:
            cached = self._gaps.get(key)
        if cached is not None:
            return cached
        if boundary_index(boundary, len(file.hunks)) == len(file.hunks):
            old_total, new_total = file_line_totals(self.reader, file)
        else:
            old_total = new_total = None
        computed = calculate_gap(file, boundary, old_total, new_total)
        with self._lock:
            return self._gaps.setdefault(key, computed)

    def gaps(self, file: DiffFile) -> list[ContextGap]:
        return [self.gap(file, boundary) for boundary in boundary_ids(file)]

    def materialize(self, file: DiffFile, boundary: str) -> tuple[DiffLine, ...]:
        key = (file.identity, boundary)
        with self._lock:
            cached = self._content.get(key)
        if cached is not None:
            logger.debug("gap cache hit %s %s", *key)
            return cached
        lines = fetch_context_lines(self.reader, self.gap(file, boundary))
        with self._lock:
            return self._content.setdefault(key, lines)

    def expand(self, file: DiffFile, boundary: str, limit: int, *, from_end: bool = False) -> tuple[DiffLine, ...]:
        """Return at most ``limit`` lines of a gap, from its top or its bottom."""
        lines = self.materialize(file, boundary)
        if limit <= 0 or limit >= len(lines):
            return lines
        return lines[-limit:] if from_end else lines[:limit]

    def is_materialized(self, file: DiffFile, boundary: str) -> bool:
        with self._lock:
            return (file.identity, boundary) in self._content
