from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Any

from pygments.lexer import Lexer
from pygments.lexers import get_lexer_by_name, get_lexer_for_filename
from pygments.util import ClassNotFound
from rich.style import Style
from rich.syntax import Syntax, SyntaxTheme

from .model import ORIGIN_ADDITION, ORIGIN_DELETION

logger = logging.getLogger(__name__)

DEFAULT_THEME = "monokai"
DEFAULT_ADD_BG = "rgb(0,35,12)"
DEFAULT_DEL_BG = "rgb(45,0,0)"

Spans = list[tuple[Style, str]]

_LEXER_OPTIONS = {"stripnl": False, "stripall": False, "ensurenl": True, "tabsize": 0}


def find_grammar(file_path: str) -> Lexer | None:
    """Resolve a lexer by extension, then by exact file name (Makefile, Dockerfile)."""
    path = PurePosixPath(str(file_path).replace("\\", "/"))
    if path.suffix:
        try:
            return get_lexer_for_filename(f"file{path.suffix}", **_LEXER_OPTIONS)
        except ClassNotFound:
            pass
    if path.name:
        try:
            return get_lexer_for_filename(path.name, **_LEXER_OPTIONS)
        except ClassNotFound:
            pass
        try:
            return get_lexer_by_name(path.name.lower(), **_LEXER_OPTIONS)
        except ClassNotFound:
            pass
    return None


def spans_text(spans: Spans) -> str:
    return "".join(text for _, text in spans)


class SyntaxHighlighter:
    """Tokenizes diff lines and composes diff backgrounds on top.

    Built once by the caller and handed to the normalizer, so tests can swap in
    a double with the same two methods.
    """

    def __init__(
        self,
        theme: str = DEFAULT_THEME,
        add_bg: str = DEFAULT_ADD_BG,
        del_bg: str = DEFAULT_DEL_BG,
    ) -> None:
        self.theme_name = theme
        self.theme: SyntaxTheme = self._load_theme(theme)
        self.add_bg = add_bg
        self.del_bg = del_bg
        self._add_style = Style(bgcolor=add_bg)
        self._del_style = Style(bgcolor=del_bg)
        self._style_cache: dict[Any, Style] = {}

    @staticmethod
    def _load_theme(name: str) -> SyntaxTheme:
        for candidate in (name, DEFAULT_THEME):
            try:
                return Syntax.get_theme(candidate)
            except Exception:  # noqa: BLE001
                logger.debug("syntax theme not available: %s", candidate)
        return Syntax.get_theme("ansi_dark")

    def _token_style(self, token_type: Any) -> Style:
        cached = self._style_cache.get(token_type)
        if cached is not None:
            return cached
        base = self.theme.get_style_for_token(token_type)
        # Foreground and font attributes only; the theme background is left out
        # so context lines render on the terminal background.
        style = Style(
            color=base.color,
            bold=base.bold,
            italic=base.italic,
            underline=base.underline,
        )
        self._style_cache[token_type] = style
        return style

    def highlight_file_lines(self, file_path: str, lines: list[str]) -> list[Spans] | None:
        lexer = find_grammar(file_path)
        if lexer is None or not lines:
            return None
        try:
            result = self._tokenize(lexer, lines)
        except Exception as error:  # noqa: BLE001
            logger.debug("highlighting failed for %s: %s", file_path, error)
            return None
        if len(result) != len(lines) or any(spans_text(spans) != line for spans, line in zip(result, lines)):
            logger.debug("highlighting for %s does not reproduce its lines; using plain text", file_path)
            return None
        return result

    def _tokenize(self, lexer: Lexer, lines: list[str]) -> list[Spans]:
        result: list[Spans] = [[]]
        for token_type, value in lexer.get_tokens("\n".join(lines) + "\n"):
            style = self._token_style(token_type)
            pieces = value.split("\n")
            for position, piece in enumerate(pieces):
                if position > 0:
                    result.append([])
                if piece:
                    result[-1].append((style, piece))
        # The trailing newline opens one empty line past the input.
        if result and not result[-1]:
            result.pop()
        return result

    def apply_diff_background(self, spans: Spans, origin: str) -> Spans:
        if origin == ORIGIN_ADDITION:
            overlay = self._add_style
        elif origin == ORIGIN_DELETION:
            overlay = self._del_style
        else:
            return spans
        return [(style + overlay, text) for style, text in spans]
