"""
Quest Companion — companion/rewards.py
Reward Engine: bonus chest triggers and chest construction.
===========================================================
Version:     0.1
Stack:       Python 3.11+
Status:      Production-ready.

Architecture notes
------------------
- Triggers are evaluated in declaration order. The first trigger whose
  condition holds AND whose probability draw succeeds wins; the rest are
  not drawn for that check.
- At most one bonus chest per session: a win latches
  SessionStats.bonus_chest_awarded.
- Every random draw goes through the injected random.Random.

Design Variables (bonus triggers)
---------------------------------
  Flow Peak     flow peaked this session       0.30
  Bash Streak   best bash streak >= 10         0.20
  Todo Master   >= 5 todos completed           0.25
  Marathon      >= 200 tool calls              0.40
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from companion.chest import ChestType, TreasureChest
from companion.progression import ProgressionLedger
from companion.session import SessionStats

logger = logging.getLogger(__name__)

LEVEL_UP_CHOICES: int = 3
BONUS_CHOICES: int = 1


@dataclass(frozen=True)
class BonusTrigger:
    name: str
    check: Callable[[SessionStats], bool]
    chance: float


BONUS_CHEST_TRIGGERS: Tuple[BonusTrigger, ...] = (
    BonusTrigger("Flow Peak", lambda s: s.flow_peak_reached, 0.30),
    BonusTrigger("Bash Streak", lambda s: s.best_bash_streak >= 10, 0.20),
    BonusTrigger("Todo Master", lambda s: s.todos_completed >= 5, 0.25),
    BonusTrigger("Marathon", lambda s: s.total_tool_calls >= 200, 0.40),
)


class RewardEngine:
    """Decides when bonus chests happen and fills chests from the ledger's pool."""

    def __init__(
        self,
        ledger: ProgressionLedger,
        triggers: Sequence[BonusTrigger] = BONUS_CHEST_TRIGGERS,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.ledger = ledger
        self.triggers = tuple(triggers)
        self.rng = rng if rng is not None else ledger.rng

    def check_bonus_chest(self, session: SessionStats) -> Optional[str]:
        """Returns the winning trigger's name, or None. Latches on a win."""
        if session.bonus_chest_awarded:
            return None
        for trigger in self.triggers:
            if trigger.check(session) and self.rng.random() < trigger.chance:
                session.bonus_chest_awarded = True
                self.ledger.profile.bonus_chests_found += 1
                logger.info("Bonus chest awarded: %s", trigger.name)
                return trigger.name
        return None

    def level_up_chest(self) -> TreasureChest:
        return TreasureChest(
            chest_type=ChestType.LEVEL_UP,
            items=self.ledger.get_random_choices(LEVEL_UP_CHOICES),
        )

    def bonus_chest(self, reason: str) -> TreasureChest:
        return TreasureChest(
            chest_type=ChestType.BONUS,
            items=self.ledger.get_random_choices(BONUS_CHOICES),
            reason=reason,
        )
