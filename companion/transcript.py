"""
Quest Companion — companion/transcript.py
Transcript Parser: Converts one JSONL transcript line into Events.
=================================================================
Version:     0.1
Stack:       Python 3.11+ | stdlib json | Pydantic v2
Status:      Stateless per line, except for open tool-use tracking.

Architecture notes
------------------
- The transcript format is a loosely-structured, forward-compatible
  envelope. Anything unrecognized or malformed yields [] and is logged at
  DEBUG. Parsing never raises.
- Tool results are acknowledgements of an earlier tool_use and never
  produce an event of their own. Two exceptions: a result that completes
  a tracked Task emits AGENT_COMPLETE, and an errored result emits ERROR.
- The parser remembers open tool_use ids so those exceptions can name the
  originating tool. Ids are dropped once their result arrives.

Record types handled
--------------------
  system      session start / compaction
  assistant   tool_use, thinking, text content items
  user        tool_result items, or a prompt (quest / think-hard)
  result      terminal success / error
  summary     conversation summarized
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from companion.events import Event, EventType, ThinkLevel, TodoItem, TokenUsage

logger = logging.getLogger(__name__)


# ============================================================
# TOOL CLASSIFICATION TABLES
# Keys are lower-cased tool names.
# ============================================================

READ_TOOLS = {"glob", "read", "grep"}
WEB_TOOLS = {"websearch", "webfetch"}
WRITE_TOOLS = {"edit", "write", "notebookedit"}

# Matched most specific first.
THINK_PHRASES = (
    (ThinkLevel.ULTRA, ("ultrathink",)),
    (ThinkLevel.HARDER, ("think harder",)),
    (ThinkLevel.HARD, ("think hard", "think deeply", "think carefully", "deep think")),
    (ThinkLevel.NORMAL, ("really think",)),
)

DEEP_THINKING_CHARS = 500
RESULT_ERROR_SUBTYPES = {"error_max_turns", "error_during_execution"}


def detect_think_level(text: str) -> ThinkLevel:
    """Return the thinking tier a prompt asks for, or ThinkLevel.NONE."""
    lower = text.lower()
    for level, phrases in THINK_PHRASES:
        if any(phrase in lower for phrase in phrases):
            return level
    return ThinkLevel.NONE


def truncate(text: str, max_len: int) -> str:
    """Collapse whitespace and cut to max_len characters with an ellipsis."""
    text = " ".join(text.split())
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def _content_items(raw: Any) -> List[Dict[str, Any]]:
    """message.content is either a list of items or a bare string."""
    if isinstance(raw, list):
        return [item for item in raw if isinstance(item, dict)]
    if isinstance(raw, str):
        return [{"type": "text", "text": raw}]
    return []


def _str_field(record: Dict[str, Any], key: str) -> str:
    """Field value if it is a string, else ''."""
    value = record.get(key)
    return value if isinstance(value, str) else ""


def _prompt_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    for item in _content_items(raw):
        if item.get("type") == "text" and isinstance(item.get("text"), str) and item["text"]:
            return item["text"]
    return ""


class TranscriptParser:
    """
    Maps transcript records to Events.

    One parser instance per watched transcript: it tracks Task spawns and
    open tool calls across lines.
    """

    def __init__(self) -> None:
        self.last_token_usage: Optional[TokenUsage] = None
        self.active_task_agents: Dict[str, str] = {}
        self.open_tool_calls: Dict[str, str] = {}

    def reset(self) -> None:
        """Forget per-file state. Called when the watcher switches files."""
        self.last_token_usage = None
        self.active_task_agents.clear()
        self.open_tool_calls.clear()

    def parse_line(self, line: str) -> List[Event]:
        """Parse one JSONL line. Malformed or unknown lines yield []."""
        line = line.strip()
        if not line:
            return []
        try:
            record = json.loads(line)
        except json.JSONDecodeError as exc:
            logger.debug("Skipping malformed transcript line: %s", exc)
            return []
        if not isinstance(record, dict):
            logger.debug("Skipping non-object transcript record")
            return []

        rtype = record.get("type")
        if rtype == "system":
            return self._parse_system(record)
        if rtype == "assistant":
            return self._parse_assistant(record)
        if rtype == "user":
            return self._parse_user(record)
        if rtype == "result":
            return self._parse_result(record)
        if rtype == "summary":
            summary = record.get("summary")
            if isinstance(summary, str) and summary:
                return [Event(type=EventType.IDLE, details=truncate(summary, 50))]
            return []

        logger.debug("Skipping transcript record of type %r", rtype)
        return []

    # ----------------------------------------------------------
    # Record handlers
    # ----------------------------------------------------------

    def _parse_system(self, record: Dict[str, Any]) -> List[Event]:
        subtype = record.get("subtype")
        if subtype == "compact_boundary":
            meta = record.get("compactMetadata")
            pre_tokens = 0
            details = "Conversation compacted"
            if isinstance(meta, dict) and isinstance(meta.get("preTokens"), int):
                pre_tokens = meta["preTokens"]
                details = f"Compacted from {pre_tokens // 1000}k tokens"
            return [Event(type=EventType.COMPACT, details=details, compact_pre_tokens=pre_tokens)]
        if subtype == "local_command":
            return []
        return [Event(type=EventType.SYSTEM_INIT, details="Session started")]

    def _parse_assistant(self, record: Dict[str, Any]) -> List[Event]:
        message = record.get("message")
        if not isinstance(message, dict):
            return []

        usage = message.get("usage")
        if isinstance(usage, dict):
            try:
                self.last_token_usage = TokenUsage.model_validate(usage)
            except ValidationError:
                logger.debug("Ignoring malformed token usage block")

        events: List[Event] = []
        for item in _content_items(message.get("content")):
            itype = item.get("type")
            if itype == "tool_use":
                evt = self._parse_tool_use(item)
                if evt is not None:
                    events.append(evt)
            elif itype == "thinking":
                thought = item.get("thinking")
                if not isinstance(thought, str):
                    thought = ""
                details = "Deep thinking..." if len(thought) > DEEP_THINKING_CHARS else "Thinking..."
                events.append(Event(
                    type=EventType.THINKING,
                    details=details,
                    thought_text=thought,
                    token_usage=self.last_token_usage,
                ))
            elif itype == "text":
                text = item.get("text")
                if isinstance(text, str) and text.strip():
                    events.append(Event(
                        type=EventType.THINKING,
                        details=truncate(text, 40),
                        token_usage=self.last_token_usage,
                    ))
        return events

    def _parse_user(self, record: Dict[str, Any]) -> List[Event]:
        message = record.get("message")
        if not isinstance(message, dict):
            return []
        raw = message.get("content")

        events: List[Event] = []
        has_tool_result = False
        for item in _content_items(raw):
            if item.get("type") != "tool_result":
                continue
            has_tool_result = True
            tool_use_id = _str_field(item, "tool_use_id")
            tool_name = self.open_tool_calls.pop(tool_use_id, "")

            agent_type = self.active_task_agents.pop(tool_use_id, None)
            if agent_type is not None:
                events.append(Event(
                    type=EventType.AGENT_COMPLETE,
                    details=agent_type,
                    tool_use_id=tool_use_id,
                ))

            if item.get("is_error"):
                content = item.get("content")
                details = "Error"
                if content:
                    details = truncate(content if isinstance(content, str) else json.dumps(content), 40)
                events.append(Event(
                    type=EventType.ERROR,
                    details=details,
                    tool_name=tool_name,
                    tool_use_id=tool_use_id,
                    is_error=True,
                ))

        if has_tool_result:
            return events

        text = _prompt_text(raw)
        if not text:
            return events
        level = detect_think_level(text)
        if level != ThinkLevel.NONE:
            events.append(Event(type=EventType.THINK_HARD, details=truncate(text, 50), think_level=level))
        else:
            events.append(Event(type=EventType.QUEST, details=truncate(text, 100)))
        return events

    def _parse_result(self, record: Dict[str, Any]) -> List[Event]:
        subtype = _str_field(record, "subtype")
        if subtype == "success":
            return [Event(type=EventType.SUCCESS, details="Task completed!")]
        if subtype in RESULT_ERROR_SUBTYPES:
            return [Event(type=EventType.ERROR, details="Something went wrong", is_error=True)]
        return []

    # ----------------------------------------------------------
    # Tool classification
    # ----------------------------------------------------------

    def _parse_tool_use(self, item: Dict[str, Any]) -> Optional[Event]:
        name = item.get("name")
        if not isinstance(name, str) or not name:
            return None
        tool_id = _str_field(item, "id")
        tool_input = item.get("input") if isinstance(item.get("input"), dict) else {}
        lname = name.lower()
        usage = self.last_token_usage

        if tool_id:
            self.open_tool_calls[tool_id] = name

        if lname in READ_TOOLS:
            return Event(type=EventType.READING, details="Reading files", tool_name=name, token_usage=usage)
        if lname in WEB_TOOLS:
            return Event(type=EventType.READING, details="Searching web", tool_name=name, token_usage=usage)

        if lname == "bash":
            command = str(tool_input.get("command") or "").lower()
            if "git push" in command:
                return Event(type=EventType.GIT_PUSH, details="SHIPPED!", tool_name=name, token_usage=usage)
            return Event(type=EventType.BASH, details="Running command", tool_name=name,
                         tool_use_id=tool_id, token_usage=usage)
        if lname == "killshell":
            return Event(type=EventType.BASH, details="Stopping process", tool_name=name,
                         tool_use_id=tool_id, token_usage=usage)

        if lname in WRITE_TOOLS:
            return Event(type=EventType.WRITING, details="Writing code", tool_name=name, token_usage=usage)

        if lname == "task":
            agent_type = "Agent"
            details = "Spawning agent"
            if tool_input.get("subagent_type"):
                agent_type = str(tool_input["subagent_type"])
                details = f"Agent: {agent_type}"
            elif tool_input.get("description"):
                details = truncate(str(tool_input["description"]), 30)
            if tool_id:
                self.active_task_agents[tool_id] = agent_type
            return Event(type=EventType.SPAWN_AGENT, details=details, tool_name=name,
                         tool_use_id=tool_id, token_usage=usage)

        if lname == "taskoutput":
            return Event(type=EventType.THINKING, details="Waiting for agent", tool_name=name, token_usage=usage)

        if lname == "todowrite":
            return self._parse_todos(name, tool_input, usage)

        if lname == "askuserquestion":
            return Event(type=EventType.ASK_USER, details="Asking question", tool_name=name, token_usage=usage)
        if lname == "exitplanmode":
            return Event(type=EventType.THINKING, details="Plan ready", tool_name=name, token_usage=usage)
        if lname == "skill":
            return Event(type=EventType.THINKING, details="Running skill", tool_name=name, token_usage=usage)

        return Event(type=EventType.THINKING, details=f"Using {name}", tool_name=name, token_usage=usage)

    def _parse_todos(self, name: str, tool_input: Dict[str, Any], usage: Optional[TokenUsage]) -> Event:
        raw_todos = tool_input.get("todos")
        if not isinstance(raw_todos, list):
            return Event(type=EventType.TODO_UPDATE, details="Updating tasks", tool_name=name, token_usage=usage)

        todos: List[TodoItem] = []
        for raw in raw_todos:
            if not isinstance(raw, dict):
                continue
            try:
                todos.append(TodoItem.model_validate(raw))
            except ValidationError:
                logger.debug("Skipping malformed todo item")

        completed = sum(1 for t in todos if t.status == "completed")
        return Event(
            type=EventType.TODO_UPDATE,
            details=f"Tasks: {completed}/{len(todos)} done",
            tool_name=name,
            todo_items=todos,
            token_usage=usage,
        )
