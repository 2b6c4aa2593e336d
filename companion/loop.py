"""
Quest Companion — companion/loop.py
Companion Loop: Wires the event source, animation, progression and chests.
==========================================================================
Version:     0.1
Stack:       Python 3.11+
Status:      Integration entry point.

Architecture notes
------------------
- Single-threaded. The only other thread is the watcher's producer; the
  loop drains its queue once per update() and handles every event there.
- Each event fans out to the AnimationSystem and to the progression side
  (SessionStats + CareerProfile) independently.
- Level-ups and bonus awards only set pending flags. Chests are spawned in
  update(), one at a time, level-up chests first.
- Saves happen at checkpoints (session start, level-up, flow peak, bonus
  award, chest resolution, autosave while dirty, stop). A failed save is
  logged and retried at the next checkpoint.

Design Variables
----------------
  QUEST_DISPLAY     9.0 s    how long a quest banner stays up
  THOUGHT_DISPLAY  12.0 s    how long a thought bubble stays up
  XP_FEED_LIFETIME  1.5 s    lifetime of a floating "+XP" entry
  MANA_MAX       200000      context window size for the mana bar
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from companion.animation import AnimationSystem
from companion.chest import TreasureChest
from companion.config import CompanionConfig
from companion.events import Event, EventType, TodoItem
from companion.progression import (
    XP_AGENT_COMPLETE,
    XP_EMPTY_POOL,
    XP_FLOW_PEAK,
    XP_READ,
    XP_TODO_COMPLETE,
    XP_WRITE,
    ProfileWriteError,
    ProgressionLedger,
    bash_xp,
    thinking_xp,
)
from companion.rewards import RewardEngine
from companion.session import SessionStats
from companion.watcher import TranscriptWatcher

logger = logging.getLogger(__name__)

QUEST_DISPLAY: float = 9.0
THOUGHT_DISPLAY: float = 12.0
XP_FEED_LIFETIME: float = 1.5
MANA_MAX: int = 200_000

BASH_TOOLS = frozenset({"Bash", "KillShell"})


@dataclass
class FloatingXP:
    amount: int
    age: float = 0.0


class CompanionLoop:
    """
    Core executor for the companion.
    Owns the watcher, AnimationSystem, ProgressionLedger, RewardEngine,
    SessionStats and the active TreasureChest.
    """

    def __init__(
        self,
        config: Optional[CompanionConfig] = None,
        ledger: Optional[ProgressionLedger] = None,
        watcher: Optional[TranscriptWatcher] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config if config is not None else CompanionConfig()
        self.rng = rng if rng is not None else random.Random()

        if ledger is None:
            ledger = ProgressionLedger.load(self.config.profile_path, rng=self.rng)
        self.ledger = ledger
        self.rewards = RewardEngine(self.ledger, rng=self.rng)

        if watcher is None:
            watcher = TranscriptWatcher(
                projects_root=self.config.projects_root,
                poll_interval=self.config.poll_interval,
                replay_delay=self.config.replay_delay,
                queue_capacity=self.config.queue_capacity,
                newer_file_check_polls=self.config.newer_file_check_polls,
            )
        self.watcher = watcher

        self.animation = AnimationSystem(walk_mode=self.config.walk_mode)
        self.session = SessionStats()
        self.active_chest: Optional[TreasureChest] = None

        # A choice owed from a previous run is paid out first.
        self.pending_level_up = self.ledger.profile.pending_choice
        self.pending_bonus: Optional[str] = None

        # Consumer-facing display state
        self.quest_text = ""
        self.thought_text = ""
        self.todos: List[TodoItem] = []
        self.mana_total = 0
        self.mana_max = MANA_MAX
        self.xp_feed: List[FloatingXP] = []
        self.is_active = False

        self._quest_timer = 0.0
        self._thought_timer = 0.0
        self._idle_time = 0.0
        self._since_save = 0.0
        self._dirty = False
        self._session_open = False

    # ----------------------------------------------------------
    # Command surface
    # ----------------------------------------------------------

    def start_live_watch(self, directory: Path) -> Path:
        """Tail the newest transcript of a project. Raises TranscriptNotFoundError."""
        path = self.watcher.find_project_conversation(Path(directory))
        self.watcher.start_live()
        self.open_session()
        return path

    def start_replay(self, path: Path, delay: Optional[float] = None) -> None:
        self.watcher.start_replay(Path(path), delay if delay is not None else self.config.replay_delay)
        self.open_session()

    def select_next(self) -> None:
        if self.active_chest is not None:
            self.active_chest.select_next()

    def select_prev(self) -> None:
        if self.active_chest is not None:
            self.active_chest.select_prev()

    def confirm_selection(self) -> None:
        if self.active_chest is not None:
            self.active_chest.confirm_selection()

    def skip_chest(self) -> None:
        if self.active_chest is not None:
            self.active_chest.skip_to_reveal()

    def stop(self) -> None:
        """Stop the event source and write a final checkpoint."""
        self.watcher.stop()
        self._checkpoint()

    def open_session(self) -> None:
        if self._session_open:
            return
        self._session_open = True
        self.ledger.profile.sessions_started += 1
        self._checkpoint()

    # ----------------------------------------------------------
    # Per-frame update
    # ----------------------------------------------------------

    def update(self, dt: float) -> None:
        for event in self.watcher.drain():
            self.handle_event(event)

        self.animation.update(dt)
        self._update_display(dt)

        if self.is_active:
            self._idle_time += dt
            if self._idle_time > self.config.activity_timeout:
                self.is_active = False
        self.animation.set_active(self.is_active)

        self.session.decay(dt)
        self._update_chest(dt)

        self._since_save += dt
        if self._dirty and self._since_save >= self.config.autosave_interval:
            self._checkpoint()

    def handle_event(self, event: Event) -> None:
        self.animation.handle_event(event)

        profile = self.ledger.profile
        leveled_up = False
        checkpoint = False

        if event.type != EventType.IDLE:
            self._idle_time = 0.0
            self.is_active = True
            if self.session.register_activity():
                leveled_up |= profile.record_flow_peak()
                self._feed(XP_FLOW_PEAK)
                checkpoint = True

        if event.token_usage is not None:
            self.mana_total = event.token_usage.total()
            profile.record_tokens(self.mana_total)

        if event.type == EventType.READING:
            self.session.reads += 1
            leveled_up |= profile.record_read()
            self._feed(XP_READ)

        elif event.type == EventType.WRITING:
            self.session.writes += 1
            leveled_up |= profile.record_write()
            self._feed(XP_WRITE)

        elif event.type == EventType.BASH:
            success = not event.is_error
            self.session.record_bash_result(success)
            leveled_up |= profile.record_bash(success, self.session.current_bash_streak)
            self._feed(bash_xp(success, self.session.current_bash_streak))

        elif event.type == EventType.THINK_HARD:
            leveled_up |= profile.record_thinking(event.think_level)
            self._feed(thinking_xp(event.think_level))

        elif event.type == EventType.AGENT_COMPLETE:
            leveled_up |= profile.record_agent_complete()
            self._feed(XP_AGENT_COMPLETE)

        elif event.type == EventType.TODO_UPDATE and event.todo_items is not None:
            for _ in range(self._newly_completed(event.todo_items)):
                self.session.todos_completed += 1
                leveled_up |= profile.record_todo_complete()
                self._feed(XP_TODO_COMPLETE)

        elif event.type == EventType.ERROR and event.tool_name in BASH_TOOLS:
            self.session.break_bash_streak()

        if leveled_up:
            logger.info("Level up! Now level %d", profile.level)
            self.pending_level_up = True
            checkpoint = True

        reason = self.rewards.check_bonus_chest(self.session)
        if reason is not None:
            self.pending_bonus = reason
            checkpoint = True

        self._dirty = True
        if checkpoint:
            self._checkpoint()

        self._update_display_for(event)

    def _newly_completed(self, todos: List[TodoItem]) -> int:
        done_before = {t.content for t in self.todos if t.status == "completed"}
        return sum(1 for t in todos if t.status == "completed" and t.content not in done_before)

    # ----------------------------------------------------------
    # Chests
    # ----------------------------------------------------------

    def _update_chest(self, dt: float) -> None:
        if self.active_chest is None:
            if self.pending_level_up:
                self.pending_level_up = False
                self.active_chest = self.rewards.level_up_chest()
            elif self.pending_bonus is not None:
                self.active_chest = self.rewards.bonus_chest(self.pending_bonus)
                self.pending_bonus = None

        if self.active_chest is None:
            return

        self.active_chest.update(dt)
        if self.active_chest.is_done:
            chest, self.active_chest = self.active_chest, None
            self._resolve_chest(chest)

    def _resolve_chest(self, chest: TreasureChest) -> None:
        profile = self.ledger.profile
        if chest.claimed_item is not None:
            self.ledger.claim_item(chest.claimed_item.id)
            logger.info("Claimed %s", chest.claimed_item.name)
        elif not chest.has_items:
            profile.pending_choice = False
            if profile.add_xp(XP_EMPTY_POOL):
                self.pending_level_up = True
            self._feed(XP_EMPTY_POOL)

        # A level-up that arrived mid-ceremony is still owed.
        if self.pending_level_up:
            profile.pending_choice = True
        self._dirty = True
        self._checkpoint()

    # ----------------------------------------------------------
    # Display state
    # ----------------------------------------------------------

    def _update_display_for(self, event: Event) -> None:
        if event.type in (EventType.QUEST, EventType.THINK_HARD):
            self.quest_text = event.details
            self._quest_timer = 0.0
        elif event.type == EventType.THINKING and event.thought_text:
            self.thought_text = event.thought_text
            self._thought_timer = 0.0
        elif event.type == EventType.COMPACT:
            self.mana_total = 0
        elif event.type == EventType.TODO_UPDATE and event.todo_items is not None:
            self.todos = list(event.todo_items)

    def _update_display(self, dt: float) -> None:
        if self.quest_text:
            self._quest_timer += dt
            if self._quest_timer > QUEST_DISPLAY:
                self.quest_text = ""
        if self.thought_text:
            self._thought_timer += dt
            if self._thought_timer > THOUGHT_DISPLAY:
                self.thought_text = ""

        for entry in self.xp_feed:
            entry.age += dt
        self.xp_feed = [entry for entry in self.xp_feed if entry.age < XP_FEED_LIFETIME]

    def _feed(self, amount: int) -> None:
        self.xp_feed.append(FloatingXP(amount))

    # ----------------------------------------------------------
    # Persistence
    # ----------------------------------------------------------

    def _checkpoint(self) -> None:
        try:
            self.ledger.save()
        except ProfileWriteError as exc:
            logger.warning("Profile save failed, will retry: %s", exc)
            self._dirty = True
            return
        self._dirty = False
        self._since_save = 0.0
