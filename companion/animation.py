"""
Quest Companion — companion/animation.py
Animation State Machine: Event-driven companion animation with a FIFO queue.
============================================================================
Version:     0.1
Stack:       Python 3.11+
Status:      Production-ready.

Architecture notes
------------------
- AnimationType is a closed enum. Events map to animations through
  EVENT_ANIMATIONS only; event types missing from the table (QUEST,
  AGENT_COMPLETE) cause no transition at all.
- A playing non-idle animation is never interrupted. New animations are
  queued and played in arrival order once it finishes.
- update(dt) carries the timer remainder forward and advances as many
  frames as dt covers, so a slow frame catches up instead of stalling.
- Invariant: 0 <= state.frame < ANIMATION_LENGTHS[state.current_anim].

Design Variables
----------------
  FRAME_DURATION   1/24 s  shared per-frame duration (24 FPS)
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Optional

from companion.events import Event, EventType


class AnimationType(str, Enum):
    IDLE = "idle"
    ENTER = "enter"
    CASTING = "casting"     # reading / searching / summoning
    ATTACK = "attack"       # shell commands
    WRITING = "writing"
    VICTORY = "victory"
    HURT = "hurt"
    THINKING = "thinking"
    WALK = "walk"


FRAME_DURATION: float = 1.0 / 24.0

ANIMATION_LENGTHS: Dict[AnimationType, int] = {
    AnimationType.IDLE:     16,
    AnimationType.ENTER:    20,
    AnimationType.CASTING:  16,
    AnimationType.ATTACK:   16,
    AnimationType.WRITING:  16,
    AnimationType.VICTORY:  20,
    AnimationType.HURT:     16,
    AnimationType.THINKING: 12,
    AnimationType.WALK:     16,
}

# ============================================================
# TRANSITION TABLE
# ============================================================

EVENT_ANIMATIONS: Dict[EventType, AnimationType] = {
    EventType.SYSTEM_INIT: AnimationType.ENTER,
    EventType.READING:     AnimationType.CASTING,
    EventType.BASH:        AnimationType.ATTACK,
    EventType.WRITING:     AnimationType.WRITING,
    EventType.SUCCESS:     AnimationType.VICTORY,
    EventType.ERROR:       AnimationType.HURT,
    EventType.THINKING:    AnimationType.THINKING,
    EventType.IDLE:        AnimationType.IDLE,
    EventType.COMPACT:     AnimationType.IDLE,         # rest after compaction
    EventType.THINK_HARD:  AnimationType.THINKING,
    EventType.SPAWN_AGENT: AnimationType.CASTING,      # summoning
    EventType.TODO_UPDATE: AnimationType.WRITING,
    EventType.ASK_USER:    AnimationType.THINKING,
    EventType.GIT_PUSH:    AnimationType.VICTORY,
}


def animation_for(event_type: EventType) -> Optional[AnimationType]:
    """Target animation for an event type, or None for no transition."""
    return EVENT_ANIMATIONS.get(event_type)


@dataclass
class AnimationState:
    current_anim: AnimationType = AnimationType.IDLE
    frame: int = 0
    timer: float = 0.0
    queue: Deque[AnimationType] = field(default_factory=deque)


class AnimationSystem:
    """Owns the companion's AnimationState. Single-threaded; driven per frame."""

    def __init__(self, frame_duration: float = FRAME_DURATION, walk_mode: bool = False) -> None:
        self.state = AnimationState()
        self.frame_duration = frame_duration
        self.walk_mode = walk_mode
        self.is_active = False

    def handle_event(self, event: Event) -> None:
        anim = animation_for(event.type)
        if anim is None:
            return
        self.queue_animation(anim)

    def queue_animation(self, anim: AnimationType) -> None:
        """Play immediately when idle, otherwise queue behind the current one."""
        if self.state.current_anim == AnimationType.IDLE:
            self._play(anim)
        else:
            self.state.queue.append(anim)

    def update(self, dt: float) -> None:
        self.state.timer += dt
        while self.state.timer >= self.frame_duration:
            self.state.timer -= self.frame_duration
            self.state.frame += 1
            if self.state.frame >= ANIMATION_LENGTHS[self.state.current_anim]:
                self._on_animation_complete()

    def _on_animation_complete(self) -> None:
        if self.state.queue:
            self.state.current_anim = self.state.queue.popleft()
        else:
            self.state.current_anim = self._resting_animation()
        self.state.frame = 0

    def _resting_animation(self) -> AnimationType:
        if self.walk_mode and self.is_active:
            return AnimationType.WALK
        return AnimationType.IDLE

    def _play(self, anim: AnimationType) -> None:
        self.state.current_anim = anim
        self.state.frame = 0
        self.state.timer = 0.0

    def set_walk_mode(self, enabled: bool) -> None:
        self.walk_mode = enabled

    def set_active(self, active: bool) -> None:
        """
        Activity toggles only affect the resting animations:
        going inactive stops a walk, going active in walk mode starts one.
        """
        was_active = self.is_active
        self.is_active = active

        if was_active and not active and self.state.current_anim == AnimationType.WALK:
            self.state.current_anim = AnimationType.IDLE
            self.state.frame = 0
        if not was_active and active and self.walk_mode and self.state.current_anim == AnimationType.IDLE:
            self.state.current_anim = AnimationType.WALK
            self.state.frame = 0
