"""
Quest Companion — companion/events.py
Event Types: Normalized activity signals derived from transcript lines.
=======================================================================
Version:     0.1
Stack:       Python 3.11+ | Pydantic v2
Status:      Canonical event envelope. No parsing logic belongs here.

Architecture notes
------------------
- Every Event is a frozen Pydantic model. Produced once by the watcher,
  consumed once by the main loop.
- EventType is a closed set. Consumers switch on it through lookup tables,
  never on raw strings.
- Optional fields carry the extra data some consumers need (todo lists,
  token usage, think tier). They default to empty so a bare
  Event(type=..., details=...) is always valid.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================
# EVENT CATEGORIES
# ============================================================

class EventType(str, Enum):
    SYSTEM_INIT = "system_init"
    THINKING = "thinking"
    READING = "reading"            # Glob, Read, Grep, WebFetch, WebSearch
    BASH = "bash"                  # Bash, KillShell
    WRITING = "writing"            # Edit, Write, NotebookEdit
    SUCCESS = "success"
    ERROR = "error"
    IDLE = "idle"
    QUEST = "quest"                # user prompt text
    COMPACT = "compact"            # conversation compacted
    THINK_HARD = "think_hard"      # extended thinking requested
    SPAWN_AGENT = "spawn_agent"    # Task tool spawned a sub-agent
    AGENT_COMPLETE = "agent_complete"
    TODO_UPDATE = "todo_update"
    ASK_USER = "ask_user"
    GIT_PUSH = "git_push"


class ThinkLevel(IntEnum):
    """Intensity tier of an extended-thinking request."""
    NONE = 0
    NORMAL = 1     # "really think"
    HARD = 2       # "think hard"
    HARDER = 3     # "think harder"
    ULTRA = 4      # "ultrathink"


# ============================================================
# PAYLOAD MODELS
# ============================================================

class TodoItem(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)
    content: str = ""
    status: str = "pending"     # "pending" | "in_progress" | "completed"
    active_form: str = Field(default="", alias="activeForm")


class TokenUsage(BaseModel):
    model_config = ConfigDict(frozen=True)
    input_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0
    output_tokens: int = 0

    def total(self) -> int:
        """Context size: input plus both cache counters."""
        return self.input_tokens + self.cache_read_input_tokens + self.cache_creation_input_tokens


class Event(BaseModel):
    """Immutable envelope for one normalized activity signal."""
    model_config = ConfigDict(frozen=True)

    type: EventType
    details: str = ""

    tool_name: str = ""
    tool_use_id: str = ""
    is_error: bool = False
    think_level: ThinkLevel = ThinkLevel.NONE
    thought_text: str = ""
    todo_items: Optional[List[TodoItem]] = None
    token_usage: Optional[TokenUsage] = None
    compact_pre_tokens: int = 0
