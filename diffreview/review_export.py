from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .comments import (
    COMMENT_KINDS,
    KIND_NOTE,
    AnchorResolution,
    CommentAnchor,
    CommentStore,
    LineRange,
    iso_utc_now,
)
from .model import SIDE_NEW, VALID_SIDES, DiffFile

FORMAT_NAME = "diffreview-comments"
FORMAT_VERSION = 1


def anchor_to_dict(anchor: CommentAnchor) -> dict[str, Any]:
    item: dict[str, Any] = {
        "id": anchor.handle,
        "filePath": anchor.file_path,
        "side": anchor.side,
        "kind": anchor.kind,
        "content": anchor.content,
        "createdAt": anchor.created_at,
    }
    if anchor.line_range is not None:
        item["startLine"] = anchor.line_range.start
        item["endLine"] = anchor.line_range.end
    if anchor.updated_at:
        item["updatedAt"] = anchor.updated_at
    return item


def anchor_from_dict(item: dict[str, Any]) -> CommentAnchor:
    kind = str(item.get("kind", KIND_NOTE)).strip().lower()
    side = str(item.get("side", SIDE_NEW)).strip().lower()
    line_range = None
    if item.get("startLine") is not None:
        line_range = LineRange(int(item["startLine"]), int(item.get("endLine", item["startLine"])))
    return CommentAnchor(
        handle=str(item["id"]),
        file_path=str(item["filePath"]),
        side=side if side in VALID_SIDES else SIDE_NEW,
        line_range=line_range,
        kind=kind if kind in COMMENT_KINDS else KIND_NOTE,
        content=str(item.get("content", "")),
        created_at=str(item.get("createdAt") or iso_utc_now()),
        updated_at=item.get("updatedAt"),
    )


def write_comments(store: CommentStore, output: Path, *, source: str = "") -> None:
    document = {
        "format": FORMAT_NAME,
        "version": FORMAT_VERSION,
        "meta": {"savedAt": iso_utc_now(), "source": source},
        "comments": [anchor_to_dict(anchor) for anchor in store.anchors()],
    }
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(document, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


def load_comments(path: Path, store: CommentStore) -> int:
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as error:
        raise RuntimeError(f"File not found: {path}") from error
    except json.JSONDecodeError as error:
        raise RuntimeError(f"Invalid JSON: {error}") from error
    if document.get("format") != FORMAT_NAME:
        raise RuntimeError(f"Unsupported format: {document.get('format')}")
    if document.get("version") != FORMAT_VERSION:
        raise RuntimeError(f"Unsupported version: {document.get('version')}")
    count = 0
    for item in document.get("comments") or []:
        if not isinstance(item, dict):
            continue
        store.restore(anchor_from_dict(item))
        count += 1
    return count


def _location(anchor: CommentAnchor) -> str:
    if anchor.line_range is None:
        return f"`{anchor.file_path}`"
    side = "" if anchor.side == SIDE_NEW else " (old)"
    return f"`{anchor.file_path}:{anchor.line_range.label()[1:]}`{side}"


def _quote(content: str) -> list[str]:
    return [f"  {line}" if line else "" for line in content.split("\n")]


def render_review_markdown(
    resolutions: list[AnchorResolution],
    *,
    title: str = "Code Review",
    files: list[DiffFile] | None = None,
) -> str:
    """Markdown review: resolved comments grouped by file, unresolved ones listed apart."""
    lines = [f"# {title}", ""]
    if files is not None:
        lines.append(f"Files changed: {len(files)}")
        lines.append("")

    resolved = [item for item in resolutions if item.is_resolved]
    unresolved = [item for item in resolutions if not item.is_resolved]
    if not resolutions:
        lines.append("_No comments._")
        return "\n".join(lines) + "\n"

    by_file: dict[str, list[AnchorResolution]] = {}
    for item in resolved:
        by_file.setdefault(item.anchor.file_path, []).append(item)
    for file_path, items in by_file.items():
        lines.append(f"## {file_path}")
        lines.append("")
        items.sort(key=lambda item: item.anchor.line_range.start if item.anchor.line_range else 0)
        for item in items:
            anchor = item.anchor
            lines.append(f"- **[{anchor.kind.upper()}]** {_location(anchor)}")
            lines.extend(_quote(anchor.content))
        lines.append("")

    if unresolved:
        lines.append("## Unresolved comments")
        lines.append("")
        lines.append("These comments no longer match a line in the current diff.")
        lines.append("")
        for item in unresolved:
            anchor = item.anchor
            lines.append(f"- **[{anchor.kind.upper()}]** {_location(anchor)}")
            lines.extend(_quote(anchor.content))
        lines.append("")
    return "\n".join(lines)
