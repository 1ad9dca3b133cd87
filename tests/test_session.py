from __future__ import annotations

import time

import pytest

from shell_agent.pty_channel import SessionChannel, SessionIOError, SpawnError
from shell_agent.session import SessionExited, SessionState, TerminalSession


class HoldingPty:
    """Stays open until terminated; `feed` queues output."""

    def __init__(self) -> None:
        self.pending: list[bytes] = []
        self.written: list[bytes] = []
        self.sizes: list[tuple[int, int]] = []
        self.terminated = False
        self.closed = False

    def feed(self, data: bytes) -> None:
        self.pending.append(data)

    def read(self, size: int, timeout: float) -> bytes:  # noqa: ARG002
        if self.pending:
            return self.pending.pop(0)
        if self.terminated:
            raise EOFError
        time.sleep(0.005)
        return b""

    def write(self, data: bytes) -> None:
        self.written.append(data)

    def setwinsize(self, rows: int, cols: int) -> None:
        self.sizes.append((rows, cols))

    def exit_code(self):
        return 0 if self.terminated else None

    def terminate(self) -> None:
        self.terminated = True

    def close(self) -> None:
        self.closed = True


def _connect(pty: HoldingPty) -> TerminalSession:
    def spawn(command, args, rows, cols):
        return SessionChannel(pty, description=" ".join([command, *args]))

    return TerminalSession.connect("ssh", ["user@host"], rows=24, cols=80, capacity=100, spawn=spawn)


def _wait_for_events(s: TerminalSession, timeout: float = 5.0) -> list[SessionExited]:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        evs = s.poll_events()
        if evs:
            return evs
        time.sleep(0.01)
    return []


def test_connect_starts_active_session() -> None:
    s = _connect(HoldingPty())
    try:
        assert s.state is SessionState.ACTIVE
        assert s.status_label() == "● connected"
        assert s.is_alive()
    finally:
        s.close()


def test_spawn_error_propagates() -> None:
    def spawn(command, args, rows, cols):
        raise SpawnError("ssh: not found")

    with pytest.raises(SpawnError):
        TerminalSession.connect("ssh", [], rows=24, cols=80, spawn=spawn)


def test_inject_command_is_one_write_with_enter() -> None:
    pty = HoldingPty()
    s = _connect(pty)
    try:
        s.inject_command("ls -la")
        s.inject_command("echo a\necho b\n")
        assert pty.written == [b"ls -la\r", b"echo a\recho b\r"]
    finally:
        s.close()


def test_output_reaches_buffer_and_context_snapshot() -> None:
    pty = HoldingPty()
    s = _connect(pty)
    try:
        pty.feed(b"$ ls\r\na.txt\r\nb.txt\r\n")
        deadline = time.monotonic() + 5.0
        while len(s.buffer) < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert s.context_snapshot(50) == ["$ ls", "a.txt", "b.txt"]
        assert s.context_snapshot(2) == ["a.txt", "b.txt"]
    finally:
        s.close()


def test_disconnect_ends_session_with_exit_event() -> None:
    pty = HoldingPty()
    s = _connect(pty)

    s.disconnect()
    evs = _wait_for_events(s)

    assert evs == [SessionExited(s.id, 0)]
    assert s.state is SessionState.EXITED
    assert s.exit_code == 0
    assert s.status_label() == "○ disconnected (exit 0)"
    assert pty.closed
    with pytest.raises(SessionIOError):
        s.write_input(b"x")
    with pytest.raises(SessionIOError):
        s.inject_command("ls")
    assert s.resize(30, 100) is False


def test_resize_forwarded_while_active() -> None:
    pty = HoldingPty()
    s = _connect(pty)
    try:
        assert s.resize(30, 100) is True
        assert pty.sizes == [(30, 100)]
    finally:
        s.close()
