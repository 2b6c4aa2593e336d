"""
Quest Companion — companion/watcher.py
Event Source Adapter: Live-tails or replays a session transcript.
=================================================================
Version:     0.1
Stack:       Python 3.11+ | threading | queue
Status:      Production-ready. Single producer, single consumer.

Architecture notes
------------------
- The watcher owns one daemon thread. Its ONLY output is self.events, a
  bounded queue.Queue drained by the main loop once per frame. It never
  touches animation, progression or chest state.
- Live mode tracks a byte offset. Only fully newline-terminated lines are
  parsed; the offset advances past them and nothing else. An unterminated
  trailing line is picked up by a later poll once its newline lands.
- Replay mode reads from offset 0 with a fixed delay between emissions and
  ends with a SUCCESS "Replay complete" event.
- Emission applies back-pressure: a full queue makes the producer wait in
  short slices, re-checking the stop flag each time. Events are never
  dropped while running. After stop(), undelivered events may be lost.

Design Variables
----------------
  POLL_INTERVAL             0.1 s   live-tail poll cadence
  REPLAY_DELAY              0.2 s   default delay between replayed events
  QUEUE_CAPACITY            100     bounded delivery queue size
  NEWER_FILE_CHECK_POLLS    20      polls between newest-transcript checks
"""

from __future__ import annotations

import logging
import queue
import threading
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from companion.events import Event, EventType
from companion.transcript import TranscriptParser

logger = logging.getLogger(__name__)


# ============================================================
# DESIGN VARIABLE DEFAULTS
# ============================================================

POLL_INTERVAL: float = 0.1
REPLAY_DELAY: float = 0.2
QUEUE_CAPACITY: int = 100
NEWER_FILE_CHECK_POLLS: int = 20
PUT_TIMEOUT: float = 0.1

DEFAULT_PROJECTS_ROOT = Path.home() / ".claude" / "projects"


class TranscriptNotFoundError(FileNotFoundError):
    """No transcript could be located for the requested project or path."""


class WatchMode(str, Enum):
    LIVE = "live"
    REPLAY = "replay"


def encode_project_dir(project_dir: Path) -> str:
    """/Users/foo/project -> -Users-foo-project"""
    return str(Path(project_dir).resolve()).replace("\\", "/").replace("/", "-")


class TranscriptWatcher:
    """
    Produces Events from a JSONL transcript into a bounded queue.

    Usage:
        watcher = TranscriptWatcher()
        watcher.find_project_conversation(Path.cwd())
        watcher.start_live()
        # ... per frame ...
        event = watcher.events.get_nowait()
        # ... shutdown ...
        watcher.stop()
    """

    def __init__(
        self,
        projects_root: Optional[Path] = None,
        poll_interval: float = POLL_INTERVAL,
        replay_delay: float = REPLAY_DELAY,
        queue_capacity: int = QUEUE_CAPACITY,
        newer_file_check_polls: int = NEWER_FILE_CHECK_POLLS,
        parser: Optional[TranscriptParser] = None,
    ) -> None:
        self.projects_root = Path(projects_root) if projects_root is not None else DEFAULT_PROJECTS_ROOT
        self.poll_interval = poll_interval
        self.replay_delay = replay_delay
        self.newer_file_check_polls = newer_file_check_polls
        self.parser = parser if parser is not None else TranscriptParser()

        self.events: "queue.Queue[Event]" = queue.Queue(maxsize=queue_capacity)
        self.mode: Optional[WatchMode] = None
        self.file_path: Optional[Path] = None
        self.project_dir: Optional[Path] = None

        self._offset = 0
        self._last_mod_time = 0.0
        self._polls_since_check = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def offset(self) -> int:
        """Byte offset just past the last fully parsed line."""
        return self._offset

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ----------------------------------------------------------
    # Transcript resolution
    # ----------------------------------------------------------

    def find_project_conversation(self, project_dir: Path) -> Path:
        """
        Resolve the newest transcript for a project directory.
        Raises TranscriptNotFoundError when none exists.
        """
        self.project_dir = self.projects_root / encode_project_dir(project_dir)
        if not self.project_dir.is_dir():
            raise TranscriptNotFoundError(
                f"No conversations found for {project_dir} (looked in {self.project_dir})"
            )
        self.file_path, self._last_mod_time = self._find_newest_conversation()
        return self.file_path

    def _find_newest_conversation(self) -> Tuple[Path, float]:
        """Newest *.jsonl by mtime, skipping agent-* sub-session files."""
        if self.project_dir is None:
            raise TranscriptNotFoundError("No project directory resolved")
        candidates = []
        for path in self.project_dir.glob("*.jsonl"):
            if path.name.startswith("agent-") or not path.is_file():
                continue
            try:
                candidates.append((path.stat().st_mtime, path))
            except OSError:
                continue
        if not candidates:
            raise TranscriptNotFoundError(f"No conversation files found in {self.project_dir}")
        mtime, path = max(candidates)
        return path, mtime

    # ----------------------------------------------------------
    # Live mode
    # ----------------------------------------------------------

    def start_live(self) -> None:
        """Start tailing from the current end of file."""
        if self.file_path is None:
            raise TranscriptNotFoundError("No file path set, call find_project_conversation first")
        self._ensure_idle()

        self.mode = WatchMode.LIVE
        self._offset = self.file_path.stat().st_size
        self._polls_since_check = 0
        self._stop.clear()

        self._emit(Event(type=EventType.SYSTEM_INIT, details=f"Watching: {self.file_path.name}"))
        logger.info("Live-tailing %s from offset %d", self.file_path, self._offset)

        self._thread = threading.Thread(target=self._tail_loop, name="transcript-tail", daemon=True)
        self._thread.start()

    def _tail_loop(self) -> None:
        while not self._stop.wait(self.poll_interval):
            self._polls_since_check += 1
            if self._polls_since_check >= self.newer_file_check_polls:
                self._polls_since_check = 0
                if self.check_for_newer_file():
                    continue
            try:
                self.poll_once()
            except OSError as exc:
                logger.debug("Poll of %s failed: %s", self.file_path, exc)

    def poll_once(self) -> int:
        """
        Parse lines appended since the last poll.
        Returns the number of events emitted.
        """
        if self.file_path is None:
            return 0

        with open(self.file_path, "rb") as fh:
            size = fh.seek(0, 2)
            if size < self._offset:
                logger.info("%s shrank, re-reading from start", self.file_path.name)
                self._offset = 0
            if size == self._offset:
                return 0
            fh.seek(self._offset)
            chunk = fh.read(size - self._offset)

        end = chunk.rfind(b"\n")
        if end < 0:
            return 0  # unterminated line; wait for its newline

        emitted = 0
        for raw in chunk[: end + 1].splitlines():
            for event in self._parse(raw.decode("utf-8", errors="replace")):
                if not self._emit(event):
                    return emitted
                emitted += 1
        self._offset += end + 1
        return emitted

    def check_for_newer_file(self) -> bool:
        """Switch to a newer transcript in the same project, if one appeared."""
        if self.project_dir is None:
            return False
        try:
            path, mtime = self._find_newest_conversation()
        except TranscriptNotFoundError:
            return False

        if path == self.file_path or mtime <= self._last_mod_time:
            return False

        old_name = self.file_path.name if self.file_path else "?"
        self.file_path = path
        self._last_mod_time = mtime
        self._offset = 0
        self.parser.reset()
        logger.info("Switched from %s to %s", old_name, path.name)
        self._emit(Event(type=EventType.SYSTEM_INIT, details=f"Switched: {path.name}"))
        return True

    # ----------------------------------------------------------
    # Replay mode
    # ----------------------------------------------------------

    def start_replay(self, file_path: Path, delay: Optional[float] = None) -> None:
        """Replay a whole transcript from offset 0 at a fixed pace."""
        file_path = Path(file_path)
        if not file_path.is_file():
            raise TranscriptNotFoundError(f"Replay file not found: {file_path}")
        self._ensure_idle()

        if delay is not None:
            self.replay_delay = delay
        self.mode = WatchMode.REPLAY
        self.file_path = file_path
        self._offset = 0
        self._stop.clear()

        self._emit(Event(type=EventType.SYSTEM_INIT, details=f"Replaying: {file_path.name}"))
        logger.info("Replaying %s (%.0f ms between events)", file_path, self.replay_delay * 1000)

        self._thread = threading.Thread(target=self._replay_loop, name="transcript-replay", daemon=True)
        self._thread.start()

    def _replay_loop(self) -> None:
        with open(self.file_path, "r", encoding="utf-8", errors="replace") as fh:
            for line in fh:
                for event in self._parse(line):
                    if not self._emit(event):
                        return
                    if self._stop.wait(self.replay_delay):
                        return
        self._emit(Event(type=EventType.SUCCESS, details="Replay complete"))

    # ----------------------------------------------------------
    # Lifecycle / delivery
    # ----------------------------------------------------------

    def _parse(self, line: str) -> List[Event]:
        """Parse one line. A record that breaks the parser is logged and skipped."""
        try:
            return self.parser.parse_line(line)
        except Exception:
            logger.exception("Skipping transcript line the parser could not handle")
            return []

    def stop(self, timeout: float = 1.0) -> None:
        """Stop the background loop. Undelivered queued events may be lost."""
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for a replay to finish on its own."""
        if self._thread is not None:
            self._thread.join(timeout)

    def drain(self) -> List[Event]:
        """Non-blocking: everything currently queued, in order."""
        drained: List[Event] = []
        while True:
            try:
                drained.append(self.events.get_nowait())
            except queue.Empty:
                return drained

    def _ensure_idle(self) -> None:
        if self.is_running:
            raise RuntimeError("Watcher is already running; call stop() first")

    def _emit(self, event: Event) -> bool:
        """Put with back-pressure. False only if stop() was requested."""
        while True:
            try:
                self.events.put(event, timeout=PUT_TIMEOUT)
                return True
            except queue.Full:
                if self._stop.is_set():
                    return False
