from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .comments import CommentStore
from .config import ReviewConfig, load_config, resolve_config_path
from .context import ContextGapEngine, boundary_ids
from .diff import ReviewDiff, load_review_diff
from .errors import DiffReviewError, NoChangesError
from .model import ORIGIN_ADDITION, ORIGIN_DELETION, STATUS_LETTER, DiffFile
from .render import build_line_stream, render_line_stream, status_style
from .review_export import load_comments, render_review_markdown


def add_source_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--repo", default=".", help="Path to git repository (default: current directory).")
    parser.add_argument(
        "--commit",
        dest="commits",
        action="append",
        default=[],
        help="Commit to review; repeat oldest to newest for a range (default: working tree changes).",
    )
    parser.add_argument("--config", help="Path to a TOML config file.")
    parser.add_argument("--no-highlight", action="store_true", help="Disable syntax highlighting.")
    parser.add_argument("--comments", help="Load review comments from a JSON file.")


def parse_view_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print a git diff with context gaps and review comments.")
    add_source_args(parser)
    parser.add_argument("--file", dest="file_contains", help="Only show files whose path contains this text")
    parser.add_argument("--expand-all", action="store_true", help="Expand every context gap")
    parser.add_argument("--json", dest="as_json", action="store_true", help="Output the diff model as JSON")
    parser.add_argument("--export-markdown", help="Write the review comments as Markdown to this path")
    return parser.parse_args(argv)


def load_session(args: argparse.Namespace) -> tuple[ReviewDiff, CommentStore, ReviewConfig]:
    config = load_config(resolve_config_path(args.config))
    highlighter = None if args.no_highlight else config.build_highlighter()
    review = load_review_diff(Path(args.repo).resolve(), args.commits or None, highlighter)
    store = CommentStore()
    if args.comments:
        load_comments(Path(args.comments), store)
    return review, store, config


def files_to_json(files: list[DiffFile]) -> list[dict[str, Any]]:
    payload: list[dict[str, Any]] = []
    for item in files:
        payload.append(
            {
                "oldPath": item.old_path,
                "newPath": item.new_path,
                "status": item.status,
                "binary": item.is_binary,
                "hunks": [
                    {
                        "header": hunk.header,
                        "old": {"start": hunk.old_start, "count": hunk.old_count},
                        "new": {"start": hunk.new_start, "count": hunk.new_count},
                        "lines": [
                            {
                                "origin": line.origin,
                                "text": line.content,
                                "oldLine": line.old_lineno,
                                "newLine": line.new_lineno,
                            }
                            for line in hunk.lines
                        ],
                    }
                    for hunk in item.hunks
                ],
            }
        )
    return payload


def render_file_summary(console: Console, review: ReviewDiff, store: CommentStore) -> None:
    table = Table(title=f"Files ({len(review.files)}) {review.description}", header_style="bold magenta")
    table.add_column("st", no_wrap=True)
    table.add_column("file", overflow="ellipsis")
    table.add_column("hunks", justify="right")
    table.add_column("+", justify="right", style="green")
    table.add_column("-", justify="right", style="red")
    table.add_column("comments", justify="right")
    for item in review.files:
        letter = STATUS_LETTER.get(item.status, "?")
        added = sum(1 for line in item.iter_lines() if line.origin == ORIGIN_ADDITION)
        deleted = sum(1 for line in item.iter_lines() if line.origin == ORIGIN_DELETION)
        comments = sum(1 for anchor in store.anchors() if anchor.file_path == item.identity)
        table.add_row(
            Text(letter, style=status_style(letter)),
            item.display_path,
            "bin" if item.is_binary else str(len(item.hunks)),
            str(added),
            str(deleted),
            str(comments),
        )
    console.print(table)


def run_view(argv: list[str]) -> int:
    args = parse_view_args(argv)
    console = Console()
    try:
        review, store, _config = load_session(args)
    except NoChangesError as error:
        console.print(Panel(str(error), title="diffreview", border_style="green"))
        return 0
    except (DiffReviewError, RuntimeError) as error:
        print(f"[error] {error}", file=sys.stderr)
        return 1

    files = review.files
    if args.file_contains:
        lookup = args.file_contains.lower()
        files = [item for item in files if lookup in item.identity.lower()]
        if not files:
            print("[error] No files matched filter.", file=sys.stderr)
            return 2

    if args.as_json:
        print(json.dumps({"mode": review.mode, "files": files_to_json(files)}, ensure_ascii=False, indent=2))
        return 0

    gaps = ContextGapEngine(review.reader)
    expanded: set[tuple[str, str]] = set()
    if args.expand_all:
        expanded = {(item.identity, boundary) for item in files for boundary in boundary_ids(item)}

    render_file_summary(console, review, store)
    render_line_stream(console, build_line_stream(files, gaps=gaps, store=store, expanded=expanded))

    resolutions = store.resolve_all(review.files)
    for resolution in resolutions:
        if not resolution.is_resolved:
            anchor = resolution.anchor
            where = anchor.line_range.label() if anchor.line_range else "file"
            console.print(f"[yellow]warning:[/yellow] unresolved {anchor.kind} comment on {anchor.file_path} {where}")

    if args.export_markdown:
        output = Path(args.export_markdown)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(render_review_markdown(resolutions, files=review.files), encoding="utf-8")
        console.print(f"Wrote: {output}")
    return 0
