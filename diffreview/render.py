from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from rich.console import Console
from rich.style import Style
from rich.text import Text

from .comments import (
    KIND_ISSUE,
    KIND_NOTE,
    KIND_PRAISE,
    KIND_SUGGESTION,
    AnchorResolution,
    CommentAnchor,
    CommentStore,
)
from .context import ContextGapEngine, boundary_ids, boundary_index
from .errors import BackendError, GapIntegrityError
from .model import (
    ORIGIN_ADDITION,
    ORIGIN_DELETION,
    ORIGIN_PREFIX,
    SIDE_NEW,
    SIDE_OLD,
    STATUS_ADDED,
    STATUS_DELETED,
    STATUS_LETTER,
    STATUS_RENAMED,
    DiffFile,
    DiffLine,
)

DIFF_ADD = Style(color="green")
DIFF_DEL = Style(color="red")
DIFF_CONTEXT = Style(color="grey70")
DIFF_ADD_BG = "rgb(0,40,0)"
DIFF_DEL_BG = "rgb(40,0,0)"
HUNK_HEADER = Style(color="cyan", bold=True)
FILE_HEADER = Style(color="white", bold=True)
EXPANDED_CONTEXT = Style(color="rgb(90,90,90)")
DIM = Style(color="bright_black")

COMMENT_COLORS = {
    KIND_NOTE: "blue",
    KIND_SUGGESTION: "cyan",
    KIND_ISSUE: "red",
    KIND_PRAISE: "green",
}
FILE_STATUS_COLORS = {"A": "green", "M": "yellow", "D": "red", "R": "magenta"}


def status_style(status_letter: str) -> Style:
    return Style(color=FILE_STATUS_COLORS.get(status_letter, "grey70"))


@dataclass(frozen=True)
class RenderRow:
    row_type: str  # file|hunk|line|expanded|gap|comment|binary|error|spacer
    file_path: str
    text: Text
    line: DiffLine | None = None
    boundary: str | None = None
    handle: str | None = None


def comment_render_data(anchor: CommentAnchor, resolution: AnchorResolution | None = None) -> dict[str, Any]:
    """Everything a view needs to draw one comment, independent of the widget toolkit."""
    line_label = anchor.line_range.label() if anchor.line_range is not None else "file"
    if anchor.line_range is not None and anchor.side == SIDE_OLD:
        line_label = f"{line_label} (old)"
    return {
        "handle": anchor.handle,
        "kind": anchor.kind,
        "kindLabel": anchor.kind.capitalize(),
        "color": COMMENT_COLORS.get(anchor.kind, "white"),
        "filePath": anchor.file_path,
        "side": anchor.side,
        "lineLabel": line_label,
        "contentLines": anchor.content.split("\n"),
        "unresolved": resolution is not None and not resolution.is_resolved,
    }


def format_comment_lines(data: dict[str, Any], *, indent: int = 5, width: int = 38) -> list[Text]:
    border = Style(color=data["color"])
    label = Style(color=data["color"], bold=True)
    pad = " " * indent
    top = Text()
    top.append(f"{pad}╭─ ", style=border)
    top.append(f"[{data['kindLabel']}] ", style=label)
    top.append(f"{data['lineLabel']} ", style=DIM)
    if data["unresolved"]:
        top.append("(unresolved) ", style=Style(color="yellow", italic=True))
    top.append("─" * 30, style=border)
    result = [top]
    for content_line in data["contentLines"]:
        row = Text(f"{pad}│ ", style=border)
        row.append(content_line)
        result.append(row)
    result.append(Text(f"{pad}╰" + "─" * width, style=border))
    return result


def _line_number_cell(value: int | None) -> str:
    return "" if value is None else str(value)


def render_diff_line(line: DiffLine, *, expanded: bool = False) -> Text:
    text = Text()
    text.append(f"{_line_number_cell(line.old_lineno):>5} {_line_number_cell(line.new_lineno):>5} ", style=DIM)
    if expanded:
        text.append("  " + line.content, style=EXPANDED_CONTEXT)
        return text
    if line.origin == ORIGIN_ADDITION:
        prefix_style = Style(color="green", bgcolor=DIFF_ADD_BG)
        plain_style = DIFF_ADD + Style(bgcolor=DIFF_ADD_BG)
    elif line.origin == ORIGIN_DELETION:
        prefix_style = Style(color="red", bgcolor=DIFF_DEL_BG)
        plain_style = DIFF_DEL + Style(bgcolor=DIFF_DEL_BG)
    else:
        prefix_style = DIFF_CONTEXT
        plain_style = DIFF_CONTEXT
    text.append(ORIGIN_PREFIX[line.origin] + " ", style=prefix_style)
    if line.highlighted_spans is not None:
        for style, piece in line.highlighted_spans:
            text.append(piece, style=style)
    else:
        text.append(line.content, style=plain_style)
    return text


def file_header_text(file: DiffFile, comment_count: int = 0) -> Text:
    letter = STATUS_LETTER.get(file.status, "?")
    text = Text()
    text.append(f"{letter} ", style=status_style(letter))
    text.append(file.display_path, style=FILE_HEADER)
    if file.is_binary:
        text.append("  (binary)", style=DIM)
    if comment_count:
        text.append(f"  [{comment_count} comment(s)]", style=DIM)
    return text


def _comment_rows(
    store: CommentStore | None,
    file: DiffFile,
    line: DiffLine,
) -> list[RenderRow]:
    if store is None:
        return []
    rows: list[RenderRow] = []
    anchors: list[CommentAnchor] = []
    if line.new_lineno is not None:
        anchors.extend(store.comments_for_line(file.identity, SIDE_NEW, line.new_lineno))
    if line.old_lineno is not None:
        anchors.extend(store.comments_for_line(file.identity, SIDE_OLD, line.old_lineno))
    for anchor in anchors:
        data = comment_render_data(anchor, store.resolve(anchor.handle, [file]))
        for text in format_comment_lines(data):
            rows.append(RenderRow("comment", file.identity, text, handle=anchor.handle))
    return rows


def _gap_rows(
    file: DiffFile,
    boundary: str,
    gaps: ContextGapEngine | None,
    expanded: set[tuple[str, str]],
    store: CommentStore | None,
    revealed: dict[tuple[str, str], int],
) -> list[RenderRow]:
    if gaps is None:
        return []
    key = (file.identity, boundary)
    rows: list[RenderRow] = []
    try:
        gap = gaps.gap(file, boundary)
        if gap.size == 0:
            return []
        if key in expanded:
            shown = gaps.materialize(file, boundary)
        elif revealed.get(key, 0) > 0:
            shown = gaps.expand(file, boundary, revealed[key])
        else:
            shown = ()
        for line in shown:
            rows.append(RenderRow("expanded", file.identity, render_diff_line(line, expanded=True), line=line))
            rows.extend(_comment_rows(store, file, line))
    except (GapIntegrityError, BackendError) as error:
        return [RenderRow("error", file.identity, Text(f"  ! {error}", style=Style(color="red")), boundary=boundary)]
    hidden = gap.size - len(shown)
    if hidden > 0:
        first = gap.old_start + len(shown)
        label = Text(f"  ··· {hidden} unchanged line(s) hidden (old {first}-{gap.old_end}) ···", style=DIM)
        rows.append(RenderRow("gap", file.identity, label, boundary=boundary))
    return rows


def build_file_rows(
    file: DiffFile,
    *,
    gaps: ContextGapEngine | None = None,
    store: CommentStore | None = None,
    expanded: set[tuple[str, str]] | None = None,
    revealed: dict[tuple[str, str], int] | None = None,
) -> list[RenderRow]:
    expanded = expanded or set()
    revealed = revealed or {}
    comment_count = 0
    if store is not None:
        comment_count = sum(1 for anchor in store.anchors() if anchor.file_path == file.identity)
    rows = [RenderRow("file", file.identity, file_header_text(file, comment_count))]
    if store is not None:
        for anchor in store.file_comments(file.identity):
            data = comment_render_data(anchor, store.resolve(anchor.handle, [file]))
            for text in format_comment_lines(data, indent=1):
                rows.append(RenderRow("comment", file.identity, text, handle=anchor.handle))
    if file.is_binary:
        rows.append(RenderRow("binary", file.identity, Text("  Binary file not shown", style=DIM)))
        return rows
    if file.status == STATUS_RENAMED and not file.hunks:
        rows.append(RenderRow("binary", file.identity, Text("  Renamed without content changes", style=DIM)))

    boundaries = boundary_ids(file)
    by_index = {boundary_index(boundary, len(file.hunks)): boundary for boundary in boundaries}
    for index, hunk in enumerate(file.hunks):
        if index in by_index:
            rows.extend(_gap_rows(file, by_index[index], gaps, expanded, store, revealed))
        rows.append(RenderRow("hunk", file.identity, Text(hunk.header, style=HUNK_HEADER)))
        for line in hunk.lines:
            rows.append(RenderRow("line", file.identity, render_diff_line(line), line=line))
            rows.extend(_comment_rows(store, file, line))
    if len(file.hunks) in by_index and file.status not in {STATUS_ADDED, STATUS_DELETED}:
        rows.extend(_gap_rows(file, by_index[len(file.hunks)], gaps, expanded, store, revealed))
    return rows


def build_line_stream(
    files: list[DiffFile],
    *,
    gaps: ContextGapEngine | None = None,
    store: CommentStore | None = None,
    expanded: set[tuple[str, str]] | None = None,
) -> list[RenderRow]:
    rows: list[RenderRow] = []
    for file in files:
        if rows:
            rows.append(RenderRow("spacer", file.identity, Text("")))
        rows.extend(build_file_rows(file, gaps=gaps, store=store, expanded=expanded))
    return rows


def render_line_stream(console: Console, rows: list[RenderRow]) -> None:
    for row in rows:
        console.print(row.text, soft_wrap=True, highlight=False)
