from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path

from rich.color import Color, ColorParseError

from .comments import COMMENT_KINDS, KIND_NOTE
from .syntax import DEFAULT_ADD_BG, DEFAULT_DEL_BG, DEFAULT_THEME, SyntaxHighlighter

CONFIG_ENV = "DIFFREVIEW_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/diffreview/config.toml")


@dataclass(frozen=True)
class ReviewConfig:
    theme: str = DEFAULT_THEME
    add_bg: str = DEFAULT_ADD_BG
    del_bg: str = DEFAULT_DEL_BG
    default_comment_kind: str = KIND_NOTE
    expand_step: int = 20

    def build_highlighter(self) -> SyntaxHighlighter:
        return SyntaxHighlighter(theme=self.theme, add_bg=self.add_bg, del_bg=self.del_bg)


def _color(value: object, key: str) -> str:
    text = str(value).strip()
    try:
        Color.parse(text)
    except ColorParseError as error:
        raise RuntimeError(f"config: {key} is not a color: {text}") from error
    return text


def parse_config(data: dict) -> ReviewConfig:
    highlight = data.get("highlight") or {}
    review = data.get("review") or {}
    if not isinstance(highlight, dict) or not isinstance(review, dict):
        raise RuntimeError("config: [highlight] and [review] must be tables")

    kind = str(review.get("default_comment_kind") or KIND_NOTE).strip().lower()
    if kind not in COMMENT_KINDS:
        raise RuntimeError(f"config: review.default_comment_kind must be one of {', '.join(COMMENT_KINDS)}")
    try:
        expand_step = int(review.get("expand_step", 20))
    except (TypeError, ValueError) as error:
        raise RuntimeError("config: review.expand_step must be an integer") from error
    if expand_step < 0:
        raise RuntimeError("config: review.expand_step must be >= 0")

    return ReviewConfig(
        theme=str(highlight.get("theme") or DEFAULT_THEME),
        add_bg=_color(highlight.get("add_bg") or DEFAULT_ADD_BG, "highlight.add_bg"),
        del_bg=_color(highlight.get("del_bg") or DEFAULT_DEL_BG, "highlight.del_bg"),
        default_comment_kind=kind,
        expand_step=expand_step,
    )


def resolve_config_path(explicit: str | None = None) -> Path | None:
    if explicit:
        return Path(explicit).expanduser()
    from_env = os.environ.get(CONFIG_ENV)
    if from_env:
        return Path(from_env).expanduser()
    default = DEFAULT_CONFIG_PATH.expanduser()
    return default if default.exists() else None


def load_config(path: Path | None) -> ReviewConfig:
    if path is None:
        return ReviewConfig()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as error:
        raise RuntimeError(f"File not found: {path}") from error
    except tomllib.TOMLDecodeError as error:
        raise RuntimeError(f"Invalid TOML in {path}: {error}") from error
    return parse_config(data)
