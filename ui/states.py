"""
Quest Companion — ui/states.py
State machine for the viewer screens and the frame loop.
"""

from __future__ import annotations
from typing import Any
import time
import tcod

from ui.renderer import Renderer

FRAME_LIMIT: float = 1.0 / 60.0  # target frame time


class BaseState:
    """
    Protocol for a screen state.
    Receives tcod events, advances once per frame and renders to the console.
    """
    def __init__(self, engine: "Engine"):
        self.engine = engine

    def dispatch(self, event: tcod.event.Event) -> None:
        """Route a tcod event to its handler."""
        if isinstance(event, tcod.event.KeyDown):
            self.ev_keydown(event)

    def ev_keydown(self, event: tcod.event.KeyDown) -> None:
        pass

    def on_update(self, dt: float) -> None:
        """Called every frame before rendering."""
        pass

    def on_render(self, renderer: Renderer) -> None:
        """Called every frame to draw to the console."""
        pass

    def on_exit(self) -> None:
        """Called once when the engine stops."""
        pass


class Engine:
    """
    Central loop controller handling TCOD context, Renderer, and State tracking.
    """
    def __init__(self, renderer: Renderer, initial_state_cls: type[BaseState], *state_args: Any):
        self.renderer = renderer
        self.active_state: BaseState = initial_state_cls(self, *state_args)
        self.running = True

    def step(self, dt: float) -> None:
        """One frame without a window: update then render."""
        self.active_state.on_update(dt)
        self.renderer.clear()
        self.active_state.on_render(self.renderer)

    def run(self) -> None:
        """Main frame loop. Polls input without blocking so the companion keeps animating."""
        with tcod.context.new(
            columns=self.renderer.width,
            rows=self.renderer.height,
            title=self.renderer.title,
            vsync=True,
        ) as context:
            self.renderer.context = context
            last = time.perf_counter()

            try:
                while self.running:
                    now = time.perf_counter()
                    dt, last = now - last, now

                    # 1. Update + Render
                    self.step(dt)
                    self.renderer.present(context)

                    # 2. Handle Inputs
                    for event in tcod.event.get():
                        if isinstance(event, tcod.event.Quit):
                            self.running = False
                            break
                        self.active_state.dispatch(event)

                    elapsed = time.perf_counter() - now
                    if elapsed < FRAME_LIMIT:
                        time.sleep(FRAME_LIMIT - elapsed)
            finally:
                self.active_state.on_exit()
