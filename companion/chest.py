"""
Quest Companion — companion/chest.py
Chest Ceremony: timed reveal of a reward chest with optional player choice.
===========================================================================
Version:     0.1
Stack:       Python 3.11+
Status:      Production-ready.

Architecture notes
------------------
- Closed -> Wobble -> Opening -> Revealing -> (Choosing) -> Claiming -> Done.
  Choosing only happens when there is more than one item to pick from.
  A single item is claimed automatically when Revealing ends.
- An empty chest still runs to Done with claimed_item None. The caller
  grants the empty-pool XP instead of an item.
- The chest never touches the ledger. The owner reads claimed_item at Done.
- State timers reset to 0 on every transition; a state is left once its
  timer strictly exceeds its duration.

Design Variables
----------------
  Closed 0.5 s | Wobble 0.8 s | Opening 0.5 s | Revealing 0.6 s | Claiming 1.0 s
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, List, Optional

from companion.data_loader import ItemDef


class ChestType(str, Enum):
    LEVEL_UP = "level_up"
    BONUS = "bonus"


class ChestState(IntEnum):
    CLOSED = 0
    WOBBLE = 1
    OPENING = 2
    REVEALING = 3
    CHOOSING = 4
    CLAIMING = 5
    DONE = 6


STATE_DURATIONS: Dict[ChestState, float] = {
    ChestState.CLOSED:    0.5,
    ChestState.WOBBLE:    0.8,
    ChestState.OPENING:   0.5,
    ChestState.REVEALING: 0.6,
    ChestState.CLAIMING:  1.0,
}

_TIMED_NEXT: Dict[ChestState, ChestState] = {
    ChestState.CLOSED:   ChestState.WOBBLE,
    ChestState.WOBBLE:   ChestState.OPENING,
    ChestState.OPENING:  ChestState.REVEALING,
    ChestState.CLAIMING: ChestState.DONE,
}


@dataclass
class TreasureChest:
    chest_type: ChestType
    items: List[ItemDef] = field(default_factory=list)
    reason: str = ""
    state: ChestState = ChestState.CLOSED
    selected_idx: int = 0
    claimed_item: Optional[ItemDef] = None
    timer: float = 0.0

    def update(self, dt: float) -> None:
        self.timer += dt
        duration = STATE_DURATIONS.get(self.state)
        if duration is None or self.timer <= duration:
            return  # Choosing waits for input; Done is terminal

        if self.state == ChestState.REVEALING:
            if len(self.items) > 1:
                self._enter(ChestState.CHOOSING)
            else:
                if self.items:
                    self.claimed_item = self.items[0]
                self._enter(ChestState.CLAIMING)
        else:
            self._enter(_TIMED_NEXT[self.state])

    def _enter(self, state: ChestState) -> None:
        self.state = state
        self.timer = 0.0

    # ----------------------------------------------------------
    # Player input
    # ----------------------------------------------------------

    def select_next(self) -> None:
        if self.state != ChestState.CHOOSING or not self.items:
            return
        self.selected_idx = (self.selected_idx + 1) % len(self.items)

    def select_prev(self) -> None:
        if self.state != ChestState.CHOOSING or not self.items:
            return
        self.selected_idx = (self.selected_idx - 1) % len(self.items)

    def confirm_selection(self) -> None:
        if self.state != ChestState.CHOOSING or not self.items:
            return
        self.claimed_item = self.items[self.selected_idx]
        self._enter(ChestState.CLAIMING)

    def skip_to_reveal(self) -> None:
        if self.state in (ChestState.CLOSED, ChestState.WOBBLE):
            self._enter(ChestState.OPENING)

    # ----------------------------------------------------------
    # Read-only helpers for the viewer
    # ----------------------------------------------------------

    @property
    def is_done(self) -> bool:
        return self.state == ChestState.DONE

    @property
    def is_interactive(self) -> bool:
        return self.state == ChestState.CHOOSING

    @property
    def has_items(self) -> bool:
        return bool(self.items)

    def _progress(self, state: ChestState) -> float:
        if self.state == state:
            return min(1.0, self.timer / STATE_DURATIONS[state])
        return 1.0 if self.state > state else 0.0

    def open_progress(self) -> float:
        return self._progress(ChestState.OPENING)

    def reveal_progress(self) -> float:
        return self._progress(ChestState.REVEALING)

    def claim_progress(self) -> float:
        return self._progress(ChestState.CLAIMING)
