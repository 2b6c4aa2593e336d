"""
Quest Companion — ui/screens.py
Implementations of the UI Screen States.
"""
from typing import List

import tcod
from tcod import libtcodpy

from ui.states import BaseState, Engine
from ui.renderer import Renderer
from companion.animation import ANIMATION_LENGTHS
from companion.chest import ChestState, ChestType, TreasureChest
from companion.loop import CompanionLoop

TITLE_FG = (255, 255, 0)
DIM_FG = (150, 150, 150)
XP_FG = (120, 220, 255)
FLOW_FG = (255, 160, 60)
MANA_FG = (120, 120, 255)
CHEST_FG = (255, 215, 0)
SELECT_FG = (0, 255, 0)

CONFIRM_KEYS = (tcod.event.KeySym.RETURN, tcod.event.KeySym.KP_ENTER, tcod.event.KeySym.SPACE)
MAX_TODOS_SHOWN = 4

CHEST_CAPTIONS = {
    ChestState.CLOSED: "A chest appears...",
    ChestState.WOBBLE: "The chest is wobbling!",
    ChestState.OPENING: "Opening...",
    ChestState.REVEALING: "Revealing...",
    ChestState.CHOOSING: "Choose your reward:",
}


class CompanionScreen(BaseState):
    """The companion viewer: animation, progression HUD and chest ceremony."""

    def __init__(self, engine: Engine, companion: CompanionLoop):
        super().__init__(engine)
        self.companion = companion

    def ev_keydown(self, event: tcod.event.KeyDown) -> None:
        if event.sym == tcod.event.KeySym.ESCAPE:
            self.engine.running = False
            return

        chest = self.companion.active_chest
        if chest is None:
            return
        if chest.is_interactive:
            if event.sym == tcod.event.KeySym.LEFT:
                self.companion.select_prev()
            elif event.sym == tcod.event.KeySym.RIGHT:
                self.companion.select_next()
            elif event.sym in CONFIRM_KEYS:
                self.companion.confirm_selection()
        elif event.sym in CONFIRM_KEYS:
            self.companion.skip_chest()

    def on_update(self, dt: float) -> None:
        self.companion.update(dt)

    def on_exit(self) -> None:
        self.companion.stop()

    def on_render(self, renderer: Renderer) -> None:
        c = self.companion
        profile = c.ledger.profile
        session = c.session
        anim = c.animation.state

        source = c.watcher.file_path.name if c.watcher.file_path else "no transcript"
        renderer.root_console.print(renderer.width // 2, 0, "Quest Companion", fg=TITLE_FG, alignment=libtcodpy.CENTER)
        renderer.text(1, 1, source, fg=DIM_FG)

        # Companion
        length = ANIMATION_LENGTHS[anim.current_anim]
        state_label = "active" if c.is_active else "resting"
        renderer.text(1, 3, f"Companion: {anim.current_anim.value.upper()}  frame {anim.frame + 1}/{length}  ({state_label})")
        if anim.queue:
            renderer.text(1, 4, "Next: " + ", ".join(a.value for a in anim.queue), fg=DIM_FG)

        # Progression
        renderer.text(1, 6, f"Level {profile.level}   XP {profile.xp}   ({profile.xp_to_next_level()} to next)", fg=XP_FG)
        renderer.bar(1, 7, 30, profile.xp_progress(), fg=XP_FG)
        renderer.text(1, 8, "Flow", fg=FLOW_FG)
        renderer.bar(7, 8, 24, session.flow_meter, fg=FLOW_FG)
        renderer.text(1, 9, "Mana", fg=MANA_FG)
        renderer.bar(7, 9, 24, c.mana_total / c.mana_max if c.mana_max else 0.0, fg=MANA_FG)

        feed = "  ".join(f"+{entry.amount}" for entry in c.xp_feed)
        renderer.text(35, 7, feed, fg=XP_FG)

        renderer.text(
            1, 11,
            f"Reads {session.reads}  Writes {session.writes}  Bash {session.bash_successes}/{session.bash_total}"
            f"  Streak {session.current_bash_streak}  Todos {session.todos_completed}",
            fg=DIM_FG,
        )

        if c.quest_text:
            renderer.text(1, 13, f"Quest: {c.quest_text}")
        if c.thought_text:
            renderer.text(1, 14, f"Thought: {c.thought_text}", fg=DIM_FG)

        for i, todo in enumerate(c.todos[:MAX_TODOS_SHOWN]):
            mark = {"completed": "x", "in_progress": ">"}.get(todo.status, " ")
            renderer.text(1, 16 + i, f"[{mark}] {todo.content}", fg=DIM_FG)

        if c.active_chest is not None:
            self._render_chest(renderer, c.active_chest)

        renderer.text(1, renderer.height - 1, "[Left/Right] Select   [Enter/Space] Confirm/Skip   [ESC] Quit", fg=DIM_FG)

    def _render_chest(self, renderer: Renderer, chest: TreasureChest) -> None:
        top = renderer.height - 6
        title = "LEVEL UP!" if chest.chest_type == ChestType.LEVEL_UP else f"Bonus chest: {chest.reason}"
        renderer.text(1, top, title, fg=CHEST_FG)

        if chest.state in CHEST_CAPTIONS:
            renderer.text(1, top + 1, CHEST_CAPTIONS[chest.state], fg=CHEST_FG)
        if chest.state == ChestState.OPENING:
            renderer.bar(1, top + 2, 20, chest.open_progress(), fg=CHEST_FG)
        elif chest.state == ChestState.REVEALING:
            renderer.bar(1, top + 2, 20, chest.reveal_progress(), fg=CHEST_FG)
        elif chest.state == ChestState.CHOOSING:
            renderer.text(1, top + 2, "   ".join(self._choice_labels(chest)))
        elif chest.state == ChestState.CLAIMING:
            if chest.claimed_item is not None:
                renderer.text(1, top + 1, f"Claimed: {chest.claimed_item.name}", fg=SELECT_FG)
            else:
                renderer.text(1, top + 1, "The chest is empty... +XP instead!", fg=XP_FG)
            renderer.bar(1, top + 2, 20, chest.claim_progress(), fg=SELECT_FG)

    @staticmethod
    def _choice_labels(chest: TreasureChest) -> List[str]:
        return [
            f"> {item.name} <" if i == chest.selected_idx else f"  {item.name}  "
            for i, item in enumerate(chest.items)
        ]
