from __future__ import annotations

import argparse
import datetime as dt
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Footer, Header, Input, Static
from textual.widgets.data_table import ColumnKey

from .comments import KIND_NOTE, CommentStore, LineRange, next_comment_kind
from .context import ContextGapEngine
from .diff import ReviewDiff, find_file
from .errors import DiffReviewError, NoChangesError
from .model import ORIGIN_DELETION, SIDE_NEW, SIDE_OLD, STATUS_LETTER, DiffFile, DiffLine
from .render import RenderRow, build_file_rows, status_style
from .review_export import render_review_markdown, write_comments
from .viewer_cli import add_source_args, load_session, render_file_summary

DEFAULT_MARKDOWN_PATH = Path("review.md")


def line_anchor(line: DiffLine) -> tuple[str, int]:
    """Side and line number a comment on this line attaches to."""
    if line.origin == ORIGIN_DELETION or line.new_lineno is None:
        return SIDE_OLD, int(line.old_lineno or 0)
    return SIDE_NEW, line.new_lineno


class CommentModal(ModalScreen[str | None]):
    CSS = """
    CommentModal {
        align: center middle;
    }
    #dialog {
        width: 70%;
        max-width: 90;
        border: round #8338ec;
        padding: 1 2;
        background: #0b0f19;
    }
    #buttons {
        height: auto;
        layout: horizontal;
        align: right middle;
        padding-top: 1;
    }
    """

    def __init__(
        self,
        title: str,
        placeholder: str,
        initial: str = "",
        *,
        allow_empty: bool = False,
    ) -> None:
        super().__init__()
        self.dialog_title = title
        self.placeholder = placeholder
        self.initial = initial
        self.allow_empty = allow_empty

    def compose(self) -> ComposeResult:
        with Vertical(id="dialog"):
            yield Static(f"[b]{self.dialog_title}[/b]")
            yield Input(value=self.initial, placeholder=self.placeholder, id="comment_input")
            with Horizontal(id="buttons"):
                yield Button("Cancel", id="cancel")
                yield Button("OK", id="ok", variant="primary")

    def on_mount(self) -> None:
        self.query_one("#comment_input", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self._submit(event.value)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel":
            self.dismiss(None)
            return
        self._submit(self.query_one("#comment_input", Input).value)

    def _submit(self, value: str) -> None:
        # Literal "\n" in the single-line input becomes a line break.
        stripped = value.strip().replace("\\n", "\n")
        if self.allow_empty:
            self.dismiss(stripped)
            return
        self.dismiss(stripped if stripped else None)


class DiffReviewApp(App[None]):
    CSS = """
    Screen { layout: vertical; }
    #topbar { height: 3; border: round #3a86ff; padding: 0 1; }
    #main { height: 1fr; }
    #left { width: 34%; border: round #4cc9f0; }
    #right { width: 66%; border: round #f72585; }
    #files { height: 1fr; }
    #meta { height: 8; border: round #8338ec; padding: 0 1; }
    #lines { height: 1fr; }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("f", "focus_files", "Files"),
        Binding("l", "focus_lines", "Lines"),
        Binding("x", "expand_gap", "Expand"),
        Binding("X", "expand_gap_full", "Expand All"),
        Binding("v", "mark_range", "Mark Range"),
        Binding("m", "comment", "Comment"),
        Binding("F", "file_comment", "File Comment"),
        Binding("k", "cycle_kind", "Kind"),
        Binding("d", "delete_comment", "Delete Comment"),
        Binding("s", "save", "Save"),
        Binding("h", "export_markdown", "Export MD"),
    ]

    def __init__(
        self,
        review: ReviewDiff,
        store: CommentStore,
        *,
        expand_step: int = 20,
        default_kind: str = KIND_NOTE,
        comments_path: Path | None = None,
        markdown_path: Path | None = None,
    ) -> None:
        super().__init__()
        self.review = review
        self.store = store
        self.gaps = ContextGapEngine(review.reader)
        self.expand_step = expand_step
        self.comment_kind = default_kind
        self.comments_path = comments_path
        self.markdown_path = markdown_path or DEFAULT_MARKDOWN_PATH

        self.current_file: str | None = None
        self.expanded: set[tuple[str, str]] = set()
        self.revealed: dict[tuple[str, str], int] = {}
        self.range_mark: tuple[str, str, int] | None = None
        self._rows: list[RenderRow] = []
        self._notes_column: ColumnKey | None = None
        self._has_unsaved_changes = False
        self._last_saved_at: dt.datetime | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Static("", id="topbar")
        with Horizontal(id="main"):
            with Vertical(id="left"):
                yield DataTable(id="files", cursor_type="row")
            with Vertical(id="right"):
                yield Static("Select a file from the left.", id="meta")
                yield DataTable(id="lines", cursor_type="row")
        yield Footer()

    def on_mount(self) -> None:
        columns = self.query_one("#files", DataTable).add_columns("st", "file", "hunks", "notes")
        self._notes_column = columns[3]
        self.query_one("#lines", DataTable).add_columns("diff")
        self._fill_files()
        if self.review.files:
            self._show_file(self.review.files[0].identity)
        self.query_one("#files", DataTable).focus()

    def action_focus_files(self) -> None:
        self.query_one("#files", DataTable).focus()

    def action_focus_lines(self) -> None:
        self.query_one("#lines", DataTable).focus()

    def _file(self) -> DiffFile | None:
        if self.current_file is None:
            return None
        return find_file(self.review.files, self.current_file)

    def _current_row(self) -> RenderRow | None:
        table = self.query_one("#lines", DataTable)
        if not self._rows or table.row_count == 0:
            return None
        index = table.cursor_row
        if 0 <= index < len(self._rows):
            return self._rows[index]
        return None

    def _mark_dirty(self) -> None:
        self._has_unsaved_changes = True

    def _save_state_label(self) -> str:
        if self._has_unsaved_changes:
            return "save=dirty"
        if self._last_saved_at is None:
            return "save=clean"
        return f"save=clean(@{self._last_saved_at.strftime('%H:%M:%S')})"

    def _refresh_topbar(self) -> None:
        unresolved = sum(1 for item in self.store.resolve_all(self.review.files) if not item.is_resolved)
        mark = "-"
        if self.range_mark is not None:
            mark = f"{self.range_mark[1]}:{self.range_mark[2]}"
        text = (
            f"{self.review.description}  files={len(self.review.files)}  comments={len(self.store)}"
            f"  unresolved={unresolved}  kind={self.comment_kind}  mark={mark}  {self._save_state_label()}"
        )
        self.query_one("#topbar", Static).update(text)

    def _notes_cell(self, identity: str) -> str:
        notes = sum(1 for anchor in self.store.anchors() if anchor.file_path == identity)
        return str(notes) if notes else ""

    def _fill_files(self) -> None:
        table = self.query_one("#files", DataTable)
        for item in self.review.files:
            letter = STATUS_LETTER.get(item.status, "?")
            table.add_row(
                Text(letter, style=status_style(letter)),
                item.display_path,
                "bin" if item.is_binary else str(len(item.hunks)),
                self._notes_cell(item.identity),
                key=item.identity,
            )
        self._refresh_topbar()

    def _refresh_files(self) -> None:
        table = self.query_one("#files", DataTable)
        for item in self.review.files:
            table.update_cell(item.identity, self._notes_column, self._notes_cell(item.identity))
        self._refresh_topbar()

    def _update_meta(self, file: DiffFile) -> None:
        meta = Text()
        meta.append(file.display_path, style="bold")
        meta.append(f"  status={file.status}")
        if file.old_path and file.new_path and file.old_path != file.new_path:
            meta.append(f"\nfrom {file.old_path}")
        for resolution in self.store.resolve_all([file]):
            anchor = resolution.anchor
            if anchor.file_path == file.identity and not resolution.is_resolved:
                label = anchor.line_range.label() if anchor.line_range else "file"
                meta.append("\nunresolved", style="yellow")
                meta.append(f" {anchor.kind} {label}: {anchor.content}")
        self.query_one("#meta", Static).update(meta)

    def _show_file(self, identity: str, *, keep_cursor: bool = False) -> None:
        file = find_file(self.review.files, identity)
        if file is None:
            return
        table = self.query_one("#lines", DataTable)
        cursor = table.cursor_row if keep_cursor else 0
        self.current_file = identity
        self._rows = build_file_rows(
            file,
            gaps=self.gaps,
            store=self.store,
            expanded=self.expanded,
            revealed=self.revealed,
        )
        table.clear()
        for index, row in enumerate(self._rows):
            table.add_row(row.text, key=str(index))
        if self._rows:
            table.move_cursor(row=max(0, min(cursor, len(self._rows) - 1)))
        self._update_meta(file)
        self._refresh_topbar()

    def _rerender(self) -> None:
        if self.current_file is not None:
            self._show_file(self.current_file, keep_cursor=True)

    def action_expand_gap(self) -> None:
        row = self._current_row()
        if row is None or row.row_type != "gap" or row.boundary is None:
            return
        key = (row.file_path, row.boundary)
        if self.expand_step <= 0:
            self.expanded.add(key)
        else:
            self.revealed[key] = self.revealed.get(key, 0) + self.expand_step
        self._rerender()

    def action_expand_gap_full(self) -> None:
        row = self._current_row()
        if row is None or row.row_type != "gap" or row.boundary is None:
            return
        self.expanded.add((row.file_path, row.boundary))
        self._rerender()

    def action_mark_range(self) -> None:
        row = self._current_row()
        if row is None or row.row_type != "line" or row.line is None:
            return
        side, number = line_anchor(row.line)
        mark = (row.file_path, side, number)
        self.range_mark = None if self.range_mark == mark else mark
        self._refresh_topbar()

    def _selection_range(self, file_path: str, side: str, number: int) -> LineRange | None:
        """Range from the mark to ``number``, or None if it covers lines outside the hunks."""
        mark = self.range_mark
        if mark is None or mark[0] != file_path or mark[1] != side:
            return LineRange.single(number)
        line_range = LineRange(min(mark[2], number), max(mark[2], number))
        file = find_file(self.review.files, file_path)
        present = set() if file is None else {line.lineno_for_side(side) for line in file.iter_lines()}
        if any(value not in present for value in line_range.numbers()):
            return None
        return line_range

    def action_comment(self) -> None:
        row = self._current_row()
        if row is None:
            return
        if row.row_type == "comment" and row.handle is not None:
            self._edit_comment(row.handle)
            return
        if row.row_type != "line" or row.line is None:
            return
        side, number = line_anchor(row.line)
        line_range = self._selection_range(row.file_path, side, number)
        if line_range is None:
            self.notify("Marked range crosses hidden lines; mark lines within one hunk", severity="warning")
            return
        file_path = row.file_path
        kind = self.comment_kind

        def _on_dismiss(result: str | None) -> None:
            if not result:
                return
            self.store.create(file_path, side, line_range, kind, result)
            self.range_mark = None
            self._mark_dirty()
            self._refresh_files()
            self._rerender()
            self.notify(f"Comment added ({kind} {line_range.label()})", timeout=1.1)

        self.push_screen(
            CommentModal(
                f"{kind.capitalize()} on {file_path} {line_range.label()} ({side})",
                "Comment text (\\n for a line break)",
            ),
            callback=_on_dismiss,
        )

    def _edit_comment(self, handle: str) -> None:
        anchor = self.store.get(handle)

        def _on_dismiss(result: str | None) -> None:
            if result is None:
                return
            if result == "":
                self.store.delete(handle)
                self.notify("Comment deleted", timeout=1.1)
            else:
                self.store.edit(handle, result)
                self.notify("Comment updated", timeout=1.1)
            self._mark_dirty()
            self._refresh_files()
            self._rerender()

        self.push_screen(
            CommentModal(
                f"Edit {anchor.kind} comment",
                "Comment text (empty to delete)",
                initial=anchor.content.replace("\n", "\\n"),
                allow_empty=True,
            ),
            callback=_on_dismiss,
        )

    def action_file_comment(self) -> None:
        file = self._file()
        if file is None:
            return
        kind = self.comment_kind

        def _on_dismiss(result: str | None) -> None:
            if not result:
                return
            self.store.create(file.identity, SIDE_NEW, None, kind, result)
            self._mark_dirty()
            self._refresh_files()
            self._rerender()
            self.notify("File comment added", timeout=1.1)

        self.push_screen(
            CommentModal(f"{kind.capitalize()} on {file.display_path}", "File-level comment"),
            callback=_on_dismiss,
        )

    def action_cycle_kind(self) -> None:
        row = self._current_row()
        if row is not None and row.row_type == "comment" and row.handle is not None:
            anchor = self.store.get(row.handle)
            self.store.edit(row.handle, anchor.content, kind=next_comment_kind(anchor.kind))
            self._mark_dirty()
            self._rerender()
            return
        self.comment_kind = next_comment_kind(self.comment_kind)
        self._refresh_topbar()

    def action_delete_comment(self) -> None:
        row = self._current_row()
        if row is None or row.row_type != "comment" or row.handle is None:
            return
        self.store.delete(row.handle)
        self._mark_dirty()
        self._refresh_files()
        self._rerender()
        self.notify("Comment deleted", timeout=1.1)

    def action_save(self) -> None:
        if self.comments_path is None:
            self.notify("No comments file; start with --comments or --output", severity="warning", timeout=2.5)
            return
        try:
            write_comments(self.store, self.comments_path, source=self.review.description)
        except OSError as error:
            self.notify(f"Save failed: {error}", severity="error", timeout=3.0)
            return
        self._has_unsaved_changes = False
        self._last_saved_at = dt.datetime.now()
        self._refresh_topbar()
        self.notify(f"Saved: {self.comments_path}", timeout=1.5)

    def action_export_markdown(self) -> None:
        resolutions = self.store.resolve_all(self.review.files)
        try:
            self.markdown_path.parent.mkdir(parents=True, exist_ok=True)
            self.markdown_path.write_text(
                render_review_markdown(resolutions, files=self.review.files),
                encoding="utf-8",
            )
        except OSError as error:
            self.notify(f"Markdown export failed: {error}", severity="error", timeout=3.2)
            return
        self.notify(f"Markdown exported: {self.markdown_path}", timeout=2.8)

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        if event.data_table.id != "files" or event.row_key.value is None:
            return
        identity = str(event.row_key.value)
        if identity != self.current_file:
            self._show_file(identity)

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        if event.data_table.id == "files" and event.row_key.value is not None:
            self._show_file(str(event.row_key.value))
            self.action_focus_lines()
            return
        if event.data_table.id == "lines":
            row = self._current_row()
            if row is not None and row.row_type == "gap":
                self.action_expand_gap()


def launch_textual_viewer(
    review: ReviewDiff,
    store: CommentStore,
    *,
    expand_step: int,
    default_kind: str,
    comments_path: Path | None,
    markdown_path: Path | None,
) -> int:
    app = DiffReviewApp(
        review,
        store,
        expand_step=expand_step,
        default_kind=default_kind,
        comments_path=comments_path,
        markdown_path=markdown_path,
    )
    app.run()
    return 0


def parse_app_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Interactive git diff review application.")
    add_source_args(parser)
    parser.add_argument("--output", help="Where [s] saves comments (default: the --comments file).")
    parser.add_argument("--export-markdown", help=f"Where [h] writes the Markdown review (default: {DEFAULT_MARKDOWN_PATH}).")
    parser.add_argument("--once", action="store_true", help="Print the file summary only, then exit.")
    return parser.parse_args(argv)


def run_app(argv: list[str]) -> int:
    args = parse_app_args(argv)
    console = Console()
    try:
        review, store, config = load_session(args)
    except NoChangesError as error:
        console.print(Panel(str(error), title="diffreview", border_style="green"))
        return 0
    except (DiffReviewError, RuntimeError) as error:
        print(f"[error] {error}", file=sys.stderr)
        return 1

    if args.once:
        render_file_summary(console, review, store)
        return 0

    output = args.output or args.comments
    return launch_textual_viewer(
        review,
        store,
        expand_step=config.expand_step,
        default_kind=config.default_comment_kind,
        comments_path=Path(output) if output else None,
        markdown_path=Path(args.export_markdown) if args.export_markdown else None,
    )
