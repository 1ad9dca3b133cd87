"""shell_agent.session

A terminal session: one spawned channel, its line buffer and the reader loop
feeding it, plus the lifecycle state the UI renders.

Lifecycle: CONNECTING -> ACTIVE -> EXITED. EXITED is terminal; the session is
never restarted. The reader thread posts `SessionExited` on `events`, which the
UI loop drains on each tick.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from .line_buffer import LineBuffer
from .pty_channel import SessionChannel, SessionIOError
from .reader import ReaderLoop


_LOG = logging.getLogger("shell_agent.session")

_IDS = itertools.count(1)

SpawnFn = Callable[..., SessionChannel]


class SessionState(str, Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    EXITED = "exited"


@dataclass(frozen=True)
class SessionExited:
    session_id: str
    exit_code: Optional[int]


class TerminalSession:
    def __init__(
        self,
        *,
        channel: SessionChannel,
        buffer: LineBuffer,
        session_id: Optional[str] = None,
        events: Optional["queue.Queue[SessionExited]"] = None,
    ) -> None:
        self.id = session_id or f"session-{next(_IDS)}"
        self.channel = channel
        self.buffer = buffer
        self.events: "queue.Queue[SessionExited]" = events if events is not None else queue.Queue()
        self._lock = threading.Lock()
        self._state = SessionState.CONNECTING
        self._exit_code: Optional[int] = None
        self._reader = ReaderLoop(channel=channel, buffer=buffer, on_exit=self._on_exit, name=f"reader-{self.id}")

    @classmethod
    def connect(
        cls,
        command: str,
        args: Sequence[str],
        *,
        rows: int,
        cols: int,
        capacity: int = 2000,
        spawn: Optional[SpawnFn] = None,
    ) -> "TerminalSession":
        """Spawn `command` on a PTY and start reading. Raises SpawnError."""

        spawn_fn = spawn or SessionChannel.spawn
        channel = spawn_fn(command, list(args), rows, cols)
        session = cls(channel=channel, buffer=LineBuffer(capacity))
        session.start()
        return session

    def start(self) -> None:
        with self._lock:
            if self._state is not SessionState.CONNECTING:
                return
            self._state = SessionState.ACTIVE
        self._reader.start()
        _LOG.info("session %s active: %s", self.id, self.channel.description)

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def exit_code(self) -> Optional[int]:
        with self._lock:
            return self._exit_code

    def is_alive(self) -> bool:
        return self.state is SessionState.ACTIVE

    def _on_exit(self, code: Optional[int]) -> None:
        with self._lock:
            self._state = SessionState.EXITED
            self._exit_code = code
        self.events.put(SessionExited(self.id, code))

    def write_input(self, data: bytes) -> None:
        """Raw keystrokes from the user."""

        if not self.is_alive():
            raise SessionIOError("session is not active")
        self.channel.write(data)

    def inject_command(self, text: str) -> None:
        """Write one approved command followed by Enter, as a single write."""

        if not self.is_alive():
            raise SessionIOError("session is not active")
        cmd = str(text).replace("\r\n", "\n").replace("\n", "\r").rstrip("\r")
        self.channel.write((cmd + "\r").encode("utf-8"))

    def resize(self, rows: int, cols: int) -> bool:
        if not self.is_alive():
            return False
        return self.channel.resize(rows, cols)

    def clear(self) -> None:
        self.buffer.clear()

    def context_snapshot(self, n: int) -> list[str]:
        return self.buffer.snapshot_last(n)

    def render_tail(self, n: int) -> list[str]:
        return self.buffer.render_tail(n)

    def poll_events(self) -> list[SessionExited]:
        out: list[SessionExited] = []
        while True:
            try:
                out.append(self.events.get_nowait())
            except queue.Empty:
                return out

    def status_label(self) -> str:
        with self._lock:
            state, code = self._state, self._exit_code
        if state is SessionState.ACTIVE:
            return "● connected"
        if state is SessionState.CONNECTING:
            return "… connecting"
        if code is None:
            return "○ disconnected"
        return f"○ disconnected (exit {code})"

    def disconnect(self) -> None:
        """Close the write half; the reader observes end of stream and exits on its own."""

        if self.state is SessionState.EXITED:
            return
        _LOG.info("disconnect %s", self.id)
        self.channel.shutdown()

    def close(self) -> None:
        """Hang up and stop reading. Returns at once; the reader thread releases the PTY."""

        with self._lock:
            connecting = self._state is SessionState.CONNECTING
            if connecting:
                self._state = SessionState.EXITED
        if connecting:
            # No reader was started, so nothing else will ever close the channel.
            self.channel.close()
            return
        self.disconnect()
        self._reader.stop()

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Block until the reader has closed the channel. Not for the UI thread."""

        return self._reader.join(timeout)
