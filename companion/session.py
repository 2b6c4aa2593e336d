"""
Quest Companion — companion/session.py
Session Stats: ephemeral per-session counters, flow meter and bash streaks.
===========================================================================
Version:     0.1
Stack:       Python 3.11+
Status:      Production-ready. Never persisted.

Design Variables
----------------
  FLOW_GAIN         0.05    flow added per activity event
  FLOW_GRACE        5.0 s   idle time before the meter starts to fall
  FLOW_DECAY_RATE   0.03/s  decay once the grace period is over
"""

from __future__ import annotations

from dataclasses import dataclass

FLOW_GAIN: float = 0.05
FLOW_GRACE: float = 5.0
FLOW_DECAY_RATE: float = 0.03
FLOW_MAX: float = 1.0
FLOW_EPSILON: float = 1e-9


@dataclass
class SessionStats:
    # Activity counts
    reads: int = 0
    writes: int = 0
    bash_total: int = 0
    bash_successes: int = 0
    todos_completed: int = 0
    total_tool_calls: int = 0

    # Flow meter
    flow_meter: float = 0.0
    flow_decay_timer: float = 0.0     # seconds since the last activity
    flow_peak_reached: bool = False

    # Streaks
    current_bash_streak: int = 0
    best_bash_streak: int = 0

    bonus_chest_awarded: bool = False

    def register_activity(self) -> bool:
        """
        One unit of activity: fills the meter and restarts the grace period.
        Returns True only the first time the meter peaks this session.
        """
        self.total_tool_calls += 1
        self.flow_decay_timer = 0.0
        self.flow_meter += FLOW_GAIN
        if self.flow_meter >= FLOW_MAX - FLOW_EPSILON:
            self.flow_meter = FLOW_MAX
        if self.flow_meter >= FLOW_MAX and not self.flow_peak_reached:
            self.flow_peak_reached = True
            return True
        return False

    def decay(self, dt: float) -> None:
        self.flow_decay_timer += dt
        if self.flow_decay_timer > FLOW_GRACE:
            self.flow_meter = max(0.0, self.flow_meter - dt * FLOW_DECAY_RATE)

    def record_bash_result(self, success: bool) -> None:
        self.bash_total += 1
        if success:
            self.bash_successes += 1
            self.current_bash_streak += 1
            self.best_bash_streak = max(self.best_bash_streak, self.current_bash_streak)
        else:
            self.current_bash_streak = 0

    def break_bash_streak(self) -> None:
        """A bash command reported an error after the fact."""
        self.current_bash_streak = 0
