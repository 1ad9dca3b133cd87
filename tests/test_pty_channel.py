from __future__ import annotations

import logging
import shutil
import sys
import threading
import time

import pytest

from shell_agent.pty_channel import SessionChannel, SessionIOError, SpawnError


class FakePty:
    def __init__(self) -> None:
        self.written: list[bytes] = []
        self.sizes: list[tuple[int, int]] = []
        self.terminated = False
        self.closed = False
        self.fail_resize = False
        self.fail_write = False

    def read(self, size: int, timeout: float) -> bytes:  # noqa: ARG002
        if self.terminated:
            raise EOFError
        return b""

    def write(self, data: bytes) -> None:
        if self.fail_write:
            raise OSError(5, "Input/output error")
        self.written.append(data)

    def setwinsize(self, rows: int, cols: int) -> None:
        if self.fail_resize:
            raise OSError(25, "Inappropriate ioctl for device")
        self.sizes.append((rows, cols))

    def exit_code(self):
        return 130 if self.terminated else None

    def terminate(self) -> None:
        self.terminated = True

    def close(self) -> None:
        self.closed = True


def test_write_and_resize_are_forwarded() -> None:
    pty = FakePty()
    ch = SessionChannel(pty)

    ch.write(b"ls\r")
    assert pty.written == [b"ls\r"]
    assert ch.resize(50, 160) is True
    assert pty.sizes == [(50, 160)]
    assert ch.read(1024, 0.01) == b""
    assert ch.poll_exit() is None


def test_resize_failure_is_logged_not_raised(caplog) -> None:
    pty = FakePty()
    pty.fail_resize = True
    ch = SessionChannel(pty)

    with caplog.at_level(logging.WARNING, logger="shell_agent.pty_channel"):
        assert ch.resize(24, 80) is False
    assert any("resize" in r.getMessage() for r in caplog.records)
    assert ch.resize(0, 80) is False


def test_write_failure_raises_session_io_error() -> None:
    pty = FakePty()
    pty.fail_write = True
    ch = SessionChannel(pty)

    with pytest.raises(SessionIOError):
        ch.write(b"x")


def test_shutdown_closes_write_half_and_signals_child() -> None:
    pty = FakePty()
    ch = SessionChannel(pty)
    assert not ch.shutdown_overdue(0.0)

    ch.shutdown()

    assert pty.terminated
    assert ch.shutdown_overdue(0.0)
    assert not ch.shutdown_overdue(60.0)
    assert ch.writable is False
    with pytest.raises(SessionIOError):
        ch.write(b"echo hi\r")
    with pytest.raises(EOFError):
        ch.read(1024, 0.01)
    assert ch.close() == 130
    assert pty.closed
    assert ch.poll_exit() == 130


def test_concurrent_writes_are_not_interleaved() -> None:
    class SlowPty(FakePty):
        def write(self, data: bytes) -> None:
            # Byte-at-a-time with a yield in between; only the lock keeps writes whole.
            for b in data:
                self.written.append(bytes([b]))
                time.sleep(0)

    pty = SlowPty()
    ch = SessionChannel(pty)
    payloads = [b"AAAA\r", b"bbbb\r"] * 20

    threads = [threading.Thread(target=ch.write, args=(p,)) for p in payloads]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5.0)

    stream = b"".join(pty.written)
    chunks = [c for c in stream.split(b"\r") if c]
    assert sorted(set(chunks)) == [b"AAAA", b"bbbb"]


def test_spawn_missing_binary_raises_spawn_error() -> None:
    if sys.platform == "win32":
        pytest.skip("pexpect backend is POSIX-only")
    pytest.importorskip("pexpect")

    with pytest.raises(SpawnError):
        SessionChannel.spawn("definitely-not-a-real-binary-xyz", [], 24, 80)


def test_spawn_real_shell_smoke() -> None:
    if sys.platform == "win32":
        pytest.skip("pexpect backend is POSIX-only")
    pytest.importorskip("pexpect")
    sh = shutil.which("sh")
    if not sh:
        pytest.skip("no sh on PATH")

    ch = SessionChannel.spawn(sh, ["-c", "echo hello_pty"], 24, 80)
    out = b""
    deadline = time.monotonic() + 10.0
    try:
        while time.monotonic() < deadline:
            try:
                out += ch.read(4096, 0.1)
            except EOFError:
                break
    finally:
        code = ch.close()

    assert b"hello_pty" in out
    assert code == 0


def test_shutdown_does_not_wait_for_a_child_ignoring_hangup() -> None:
    if sys.platform == "win32":
        pytest.skip("pexpect backend is POSIX-only")
    pytest.importorskip("pexpect")
    sh = shutil.which("sh")
    if not sh:
        pytest.skip("no sh on PATH")

    ch = SessionChannel.spawn(sh, ["-c", "trap '' HUP INT TERM; exec sleep 30"], 24, 80)
    try:
        t0 = time.monotonic()
        ch.shutdown()
        elapsed = time.monotonic() - t0
        assert elapsed < 0.05
    finally:
        ch.close()
    assert ch.closed
