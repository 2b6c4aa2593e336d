"""
Quest Companion — companion/progression.py
Progression Ledger: XP, levels, lifetime stats and cosmetic ownership.
======================================================================
Version:     0.1
Stack:       Python 3.11+ | Pydantic v2 | stdlib json/tempfile
Status:      Production-ready.

Architecture notes
------------------
- CareerProfile is the ONLY persisted progression state. It is a plain
  mutable Pydantic model; the ledger owns it and is its single writer.
- Level is always derived: level == level_from_xp(xp) after every add_xp
  and after every load.
- The ledger signals level-ups (pending_choice + True return). It never
  runs chest ceremonies itself.
- Saves are atomic: JSON goes to a temp file in the target directory and
  is moved into place with os.replace. The profile file is never seen
  half-written.
- Loading never fails startup. Missing or corrupt files yield a fresh
  profile. Starter items are re-granted on every load (idempotent union).

Design Variables (XP table)
---------------------------
  XP_READ             5
  XP_WRITE           10
  XP_BASH_SUCCESS    15   (+XP_STREAK_BONUS 5 while the streak is > 1)
  XP_BASH_FAIL        5
  XP_THINK_NORMAL    10
  XP_THINK_HARD      25   (+XP_THINK_BONUS 10 per tier above "hard")
  XP_TODO_COMPLETE   20
  XP_AGENT_COMPLETE  30
  XP_FLOW_PEAK      100
  XP_EMPTY_POOL     500    granted when a chest has nothing left to offer
"""

from __future__ import annotations

import contextlib
import logging
import math
import os
import random
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, ValidationError, field_serializer, field_validator

from companion.data_loader import ItemDef, ItemRegistry, ItemSlot, get_item_registry, index_registry
from companion.events import ThinkLevel

logger = logging.getLogger(__name__)


# ============================================================
# DESIGN VARIABLE DEFAULTS
# ============================================================

XP_READ: int = 5
XP_WRITE: int = 10
XP_BASH_SUCCESS: int = 15
XP_BASH_FAIL: int = 5
XP_STREAK_BONUS: int = 5
XP_THINK_NORMAL: int = 10
XP_THINK_HARD: int = 25
XP_THINK_BONUS: int = 10
XP_TODO_COMPLETE: int = 20
XP_AGENT_COMPLETE: int = 30
XP_FLOW_PEAK: int = 100
XP_EMPTY_POOL: int = 500

XP_LEVEL_FACTOR: int = 100
PROFILE_FILENAME = ".claude-quest-profile.json"

THINK_TIER_NAMES: Dict[ThinkLevel, str] = {
    ThinkLevel.NONE: "normal",
    ThinkLevel.NORMAL: "normal",
    ThinkLevel.HARD: "hard",
    ThinkLevel.HARDER: "harder",
    ThinkLevel.ULTRA: "ultra",
}


class ProfileWriteError(OSError):
    """The profile could not be written. The in-memory profile is still valid."""


def default_profile_path() -> Path:
    try:
        return Path.home() / PROFILE_FILENAME
    except RuntimeError:
        return Path(PROFILE_FILENAME)


# ============================================================
# LEVEL CURVE
# ============================================================

def xp_for_level(level: int) -> int:
    """Total XP required to reach a level. Quadratic: 100 * level^2."""
    if level <= 0:
        return 0
    return XP_LEVEL_FACTOR * level * level


def level_from_xp(xp: int) -> int:
    """Largest level n with xp_for_level(n) <= xp."""
    if xp <= 0:
        return 0
    return math.isqrt(xp // XP_LEVEL_FACTOR)


def bash_xp(success: bool, streak: int) -> int:
    if not success:
        return XP_BASH_FAIL
    if streak > 1:
        return XP_BASH_SUCCESS + XP_STREAK_BONUS
    return XP_BASH_SUCCESS


def thinking_xp(level: ThinkLevel) -> int:
    """Normal tier is flat; each tier above "hard" stacks XP_THINK_BONUS."""
    if level < ThinkLevel.HARD:
        return XP_THINK_NORMAL
    return XP_THINK_HARD + XP_THINK_BONUS * (level - ThinkLevel.HARD)


# ============================================================
# CAREER PROFILE  (persisted)
# ============================================================

def _now() -> datetime:
    return datetime.now(timezone.utc)


class CareerProfile(BaseModel):
    xp: int = 0
    level: int = 0

    owned_items: Set[str] = Field(default_factory=set)
    pending_choice: bool = False

    # Lifetime stats
    total_reads: int = 0
    total_writes: int = 0
    total_bash: int = 0
    bash_successes: int = 0
    total_thinking: Dict[str, int] = Field(default_factory=dict)
    todos_completed: int = 0
    agents_completed: int = 0
    tokens_consumed: int = 0
    sessions_started: int = 0

    # Achievements
    peak_flow_count: int = 0
    best_bash_streak: int = 0
    bonus_chests_found: int = 0

    first_seen: datetime = Field(default_factory=_now)
    last_seen: datetime = Field(default_factory=_now)

    @field_validator("owned_items", mode="before")
    @classmethod
    def _accept_ownership_map(cls, value: Any) -> Any:
        # Older profiles stored ownership as {"item_id": true}.
        if isinstance(value, dict):
            return {item_id for item_id, owned in value.items() if owned}
        return value

    @field_validator("total_thinking", mode="before")
    @classmethod
    def _null_thinking(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_serializer("owned_items")
    def _sorted_ownership(self, value: Set[str]) -> List[str]:
        return sorted(value)

    # ----------------------------------------------------------
    # XP
    # ----------------------------------------------------------

    def add_xp(self, amount: int) -> bool:
        """Grant XP. Returns True (and sets pending_choice) on level-up."""
        old_level = self.level
        self.xp += amount
        self.level = level_from_xp(self.xp)
        if self.level > old_level:
            self.pending_choice = True
            return True
        return False

    def xp_to_next_level(self) -> int:
        return xp_for_level(self.level + 1) - self.xp

    def xp_progress(self) -> float:
        """Progress toward the next level, 0.0 to 1.0."""
        current = xp_for_level(self.level)
        nxt = xp_for_level(self.level + 1)
        if nxt == current:
            return 1.0
        return (self.xp - current) / (nxt - current)

    # ----------------------------------------------------------
    # Activity recording (each returns the level-up flag)
    # ----------------------------------------------------------

    def record_read(self) -> bool:
        self.total_reads += 1
        return self.add_xp(XP_READ)

    def record_write(self) -> bool:
        self.total_writes += 1
        return self.add_xp(XP_WRITE)

    def record_bash(self, success: bool, streak: int) -> bool:
        self.total_bash += 1
        if success:
            self.bash_successes += 1
            self.best_bash_streak = max(self.best_bash_streak, streak)
        return self.add_xp(bash_xp(success, streak))

    def record_thinking(self, level: ThinkLevel) -> bool:
        tier = THINK_TIER_NAMES[level]
        self.total_thinking[tier] = self.total_thinking.get(tier, 0) + 1
        return self.add_xp(thinking_xp(level))

    def record_todo_complete(self) -> bool:
        self.todos_completed += 1
        return self.add_xp(XP_TODO_COMPLETE)

    def record_agent_complete(self) -> bool:
        self.agents_completed += 1
        return self.add_xp(XP_AGENT_COMPLETE)

    def record_flow_peak(self) -> bool:
        self.peak_flow_count += 1
        return self.add_xp(XP_FLOW_PEAK)

    def record_tokens(self, count: int) -> None:
        self.tokens_consumed += count

    # ----------------------------------------------------------
    # Ownership
    # ----------------------------------------------------------

    def grant_starter_items(self, registry: ItemRegistry) -> None:
        self.owned_items |= {item.id for item in registry if item.starter}

    def is_owned(self, item_id: str) -> bool:
        return item_id in self.owned_items


# ============================================================
# LEDGER  (profile + registry + persistence)
# ============================================================

class ProgressionLedger:
    """
    Single writer of a CareerProfile.

    Usage:
        ledger = ProgressionLedger.load()
        if ledger.profile.record_read():
            choices = ledger.get_random_choices(3)
        ledger.save()
    """

    def __init__(
        self,
        profile: CareerProfile,
        registry: ItemRegistry,
        path: Path,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.profile = profile
        self.registry = registry
        self.path = Path(path)
        self.rng = rng if rng is not None else random.Random()
        self._items_by_id = index_registry(registry)
        self.profile.grant_starter_items(registry)

    @classmethod
    def load(
        cls,
        path: Optional[Path] = None,
        registry: Optional[ItemRegistry] = None,
        rng: Optional[random.Random] = None,
    ) -> "ProgressionLedger":
        """Load from disk. Missing or corrupt files yield a fresh profile."""
        path = Path(path) if path is not None else default_profile_path()
        registry = registry if registry is not None else get_item_registry()

        profile: Optional[CareerProfile] = None
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No profile at %s, starting a new career", path)
        except UnicodeDecodeError as exc:
            logger.warning("Profile %s is corrupt, starting fresh: %s", path, exc)
        except OSError as exc:
            logger.warning("Could not read profile %s, starting fresh: %s", path, exc)
        else:
            try:
                profile = CareerProfile.model_validate_json(raw)
            except ValidationError as exc:
                logger.warning("Profile %s is corrupt, starting fresh: %s", path, exc)

        if profile is None:
            profile = CareerProfile()
        profile.level = level_from_xp(profile.xp)
        return cls(profile, registry, path, rng)

    def save(self) -> None:
        """
        Atomic write (temp file + os.replace).
        Raises ProfileWriteError; the on-disk file is left untouched.
        """
        self.profile.last_seen = _now()
        payload = self.profile.model_dump_json(indent=2)

        tmp_path: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f"{self.path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
            raise ProfileWriteError(f"Failed to save profile to {self.path}: {exc}") from exc

    # ----------------------------------------------------------
    # Choice pool
    # ----------------------------------------------------------

    def get_choice_pool(self) -> List[ItemDef]:
        """Unlocked by level, not owned, not a starter. Registry order."""
        level = self.profile.level
        return [
            item for item in self.registry
            if not item.starter and item.min_level <= level and not self.profile.is_owned(item.id)
        ]

    def get_random_choices(self, n: int) -> List[ItemDef]:
        """Up to n distinct pool items, each equally likely."""
        pool = self.get_choice_pool()
        if len(pool) <= n:
            return pool
        self.rng.shuffle(pool)  # Fisher-Yates
        return pool[:n]

    def claim_item(self, item_id: str) -> ItemDef:
        item = self.get_item(item_id)
        if item is None:
            raise KeyError(f"Unknown item: {item_id}")
        self.profile.owned_items.add(item_id)
        self.profile.pending_choice = False
        return item

    def get_item(self, item_id: str) -> Optional[ItemDef]:
        return self._items_by_id.get(item_id)

    def owned_items(self, slot: ItemSlot) -> List[ItemDef]:
        return [item for item in self.registry if item.slot == slot and self.profile.is_owned(item.id)]

    def locked_items(self, slot: ItemSlot) -> List[ItemDef]:
        return [item for item in self.registry if item.slot == slot and not self.profile.is_owned(item.id)]
