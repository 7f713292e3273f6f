"""Projection of chat state onto a terminal-sized layout.

Nothing here draws or keeps state; ``chat_app.draw_screen`` paints whatever
``project`` returns.
"""

from __future__ import annotations

import textwrap
from dataclasses import dataclass
from typing import Iterable, Sequence

from chat_cli.chat_model import RenderState


@dataclass(frozen=True)
class Layout:
    transcript: tuple[str, ...]
    scroll: int
    input_text: str
    cursor_x: int
    participants: tuple[str, ...]


def format_entry(label: str, text: str) -> str:
    return f"{label}: {text}"


def transcript_text(messages: Iterable[tuple[str, str]]) -> str:
    return "\n".join(format_entry(label, text) for label, text in messages)


def wrap_lines(text: str, width: int) -> list[str]:
    """Split ``text`` on newlines and word-wrap each line to ``width``."""

    if not text:
        return []
    if width <= 0:
        return text.split("\n")
    lines: list[str] = []
    for raw in text.split("\n"):
        lines.extend(textwrap.wrap(raw, width) or [""])
    return lines


def visible_window(lines: Sequence[str], height: int, scroll: int) -> tuple[list[str], int]:
    """Return the lines visible ``scroll`` lines above the bottom.

    ``scroll`` is clamped so the window never moves past the first line; the
    clamped value is returned alongside the lines.
    """

    if height <= 0:
        return [], 0
    effective = min(max(0, scroll), max(0, len(lines) - height))
    end = len(lines) - effective
    start = max(0, end - height)
    return list(lines[start:end]), effective


def _input_view(text: str, width: int) -> tuple[str, int]:
    if width <= 1 or len(text) < width:
        return text, len(text)
    # Keep the tail in view so the cursor stays on screen.
    tail = text[-(width - 1) :]
    return tail, len(tail)


def project(render: RenderState, width: int, height: int) -> Layout:
    lines = wrap_lines(transcript_text(render.messages), width)
    visible, effective = visible_window(lines, height, render.scroll)
    input_text, cursor_x = _input_view(render.input_text, width)
    return Layout(
        transcript=tuple(visible),
        scroll=effective,
        input_text=input_text,
        cursor_x=cursor_x,
        participants=render.participants,
    )
