"""
Quest Companion — ui/renderer.py
TCOD Renderer: Terminal console and drawing helpers.
====================================================
Version:     0.1
Stack:       Python 3.11+ | tcod
Status:      Production-ready.
"""

from __future__ import annotations
from typing import Optional, Tuple
import tcod

Color = Tuple[int, int, int]

BAR_FILL = "#"
BAR_EMPTY = "-"


class Renderer:
    """
    Manages the tcod root console the companion is drawn on.
    """
    def __init__(self, width: int, height: int, title: str = "Quest Companion"):
        self.width = width
        self.height = height
        self.title = title
        self.root_console = tcod.console.Console(width, height)
        self.context: Optional[tcod.context.Context] = None

    def clear(self) -> None:
        """Clear the console with black."""
        self.root_console.clear()

    def present(self, context: tcod.context.Context) -> None:
        """Present the current console to the screen."""
        context.present(self.root_console)

    def text(self, x: int, y: int, text: str, fg: Color = (255, 255, 255)) -> None:
        """Print a single line, clipped to the console width."""
        if 0 <= y < self.height:
            self.root_console.print(x, y, text[: max(0, self.width - x)], fg=fg)

    def bar(self, x: int, y: int, width: int, fraction: float, fg: Color = (255, 255, 255)) -> None:
        """[#####-----] style meter. fraction is clamped to 0..1."""
        fraction = min(1.0, max(0.0, fraction))
        filled = round(width * fraction)
        self.text(x, y, "[" + BAR_FILL * filled + BAR_EMPTY * (width - filled) + "]", fg=fg)
