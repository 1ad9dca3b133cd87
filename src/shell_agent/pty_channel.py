"""shell_agent.pty_channel

Session Channel: a child process attached to a pseudo-terminal, exposed as a
bidirectional byte stream with resize and exit-status polling.

Backends:
- POSIX: `pexpect.spawn` (full PTY via `pty.fork()`).
- Windows: `pywinpty` (`winpty.PtyProcess`, ConPTY backend).

Error contract:
- `SpawnError`: the process could not be created (binary missing, PTY/OS
  failure). Fatal to that connection attempt.
- `SessionIOError`: the channel itself failed at the OS level after spawn,
  or the write half was already shut down.
Anything the remote program prints (including its own errors) is ordinary
output and never becomes an exception here.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
import time
from typing import Optional, Protocol, Sequence


_LOG = logging.getLogger("shell_agent.pty_channel")


class SpawnError(RuntimeError):
    pass


class SessionIOError(RuntimeError):
    pass


class PtyBackend(Protocol):
    """Subset of PTY process surface used by the channel."""

    def read(self, size: int, timeout: float) -> bytes:
        """Return available bytes, `b""` if none yet; raise EOFError at end of stream."""

    def write(self, data: bytes) -> None: ...

    def setwinsize(self, rows: int, cols: int) -> None: ...

    def exit_code(self) -> Optional[int]: ...

    def terminate(self) -> None:
        """Signal the child to hang up. Must not wait for it to exit."""

    def close(self) -> None: ...


class _PexpectBackend:
    def __init__(self, command: str, args: Sequence[str], *, rows: int, cols: int, env: Optional[dict[str, str]]) -> None:
        import pexpect

        self._pexpect = pexpect
        try:
            self._proc = pexpect.spawn(
                command,
                args=list(args),
                env=env,
                dimensions=(int(rows), int(cols)),
                echo=True,
            )
        except (pexpect.ExceptionPexpect, OSError) as e:
            raise SpawnError(f"could not start {command!r}: {e}") from e

    def read(self, size: int, timeout: float) -> bytes:
        try:
            return self._proc.read_nonblocking(size=size, timeout=timeout)
        except self._pexpect.TIMEOUT:
            return b""
        except self._pexpect.EOF as e:
            raise EOFError("end of stream") from e

    def write(self, data: bytes) -> None:
        self._proc.send(data)

    def setwinsize(self, rows: int, cols: int) -> None:
        self._proc.setwinsize(rows, cols)

    def exit_code(self) -> Optional[int]:
        if self._proc.isalive():
            return None
        if self._proc.exitstatus is not None:
            return int(self._proc.exitstatus)
        if self._proc.signalstatus is not None:
            return 128 + int(self._proc.signalstatus)
        return None

    def terminate(self) -> None:
        # `spawn.terminate()` sleeps between signals; a bare SIGHUP does not.
        if self._proc.isalive():
            self._proc.kill(signal.SIGHUP)

    def close(self) -> None:
        if not self._proc.closed:
            self._proc.close(force=True)


class _WinptyBackend:
    def __init__(self, command: str, args: Sequence[str], *, rows: int, cols: int, env: Optional[dict[str, str]]) -> None:
        from winpty import PtyProcess

        try:
            self._proc = PtyProcess.spawn([command, *args], env=env, dimensions=(int(rows), int(cols)))
        except Exception as e:  # noqa: BLE001
            raise SpawnError(f"could not start {command!r}: {e}") from e

    def read(self, size: int, timeout: float) -> bytes:  # noqa: ARG002
        data = self._proc.read(size)
        if isinstance(data, str):
            return data.encode("utf-8", errors="replace")
        return bytes(data or b"")

    def write(self, data: bytes) -> None:
        self._proc.write(data.decode("utf-8", errors="replace"))

    def setwinsize(self, rows: int, cols: int) -> None:
        self._proc.setwinsize(rows, cols)

    def exit_code(self) -> Optional[int]:
        if self._proc.isalive():
            return None
        status = self._proc.exitstatus
        return int(status) if status is not None else None

    def terminate(self) -> None:
        if self._proc.isalive():
            self._proc.kill(signal.SIGTERM)

    def close(self) -> None:
        self._proc.close(force=True)


def _default_env() -> dict[str, str]:
    env = dict(os.environ)
    env.setdefault("TERM", "xterm-256color")
    return env


class SessionChannel:
    """Owns the child process and its PTY byte stream.

    `write` is used by two logical callers (user keystrokes and approved
    commands); an internal lock serializes them so writes never interleave.
    """

    def __init__(self, backend: PtyBackend, *, description: str = "") -> None:
        self._backend = backend
        self.description = description
        self._write_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._write_closed = False
        self._closed = False
        self._exit_code: Optional[int] = None
        self._shutdown_at: Optional[float] = None

    @classmethod
    def spawn(
        cls,
        command: str,
        args: Sequence[str],
        rows: int,
        cols: int,
        *,
        env: Optional[dict[str, str]] = None,
    ) -> "SessionChannel":
        if not command:
            raise SpawnError("empty command")
        env = env if env is not None else _default_env()
        desc = " ".join([command, *args])
        _LOG.info("spawn %s rows=%d cols=%d", desc, rows, cols)
        if sys.platform == "win32":
            backend: PtyBackend = _WinptyBackend(command, args, rows=rows, cols=cols, env=env)
        else:
            backend = _PexpectBackend(command, args, rows=rows, cols=cols, env=env)
        return cls(backend, description=desc)

    @property
    def closed(self) -> bool:
        with self._state_lock:
            return self._closed

    @property
    def writable(self) -> bool:
        with self._state_lock:
            return not (self._write_closed or self._closed)

    def read(self, size: int = 4096, timeout: float = 0.1) -> bytes:
        """Bytes available now (`b""` if none yet). Raises EOFError at end of stream."""

        if self.closed:
            raise EOFError("channel closed")
        try:
            return self._backend.read(size, timeout)
        except EOFError:
            raise
        except (OSError, ValueError) as e:
            raise SessionIOError(f"read failed: {e}") from e

    def write(self, data: bytes) -> None:
        if not data:
            return
        with self._write_lock:
            if not self.writable:
                raise SessionIOError("session is not writable (disconnected)")
            try:
                self._backend.write(bytes(data))
            except (OSError, ValueError) as e:
                raise SessionIOError(f"write failed: {e}") from e

    def resize(self, rows: int, cols: int) -> bool:
        """Forward a window size change. Non-fatal: failures are logged only."""

        if rows < 1 or cols < 1:
            _LOG.warning("ignoring invalid resize rows=%s cols=%s", rows, cols)
            return False
        if self.closed:
            return False
        try:
            self._backend.setwinsize(int(rows), int(cols))
            return True
        except (OSError, ValueError) as e:
            _LOG.warning("resize to %dx%d failed: %s", rows, cols, e)
            return False

    def poll_exit(self) -> Optional[int]:
        with self._state_lock:
            if self._exit_code is not None:
                return self._exit_code
            if self._closed:
                return None
            try:
                self._exit_code = self._backend.exit_code()
            except (OSError, ValueError) as e:
                _LOG.warning("exit status unavailable: %s", e)
                return None
            return self._exit_code

    def shutdown(self) -> None:
        """Close the write half and signal the child; the reader then sees end of stream.

        Never blocks: a child that ignores the hangup is force-closed later by
        the reader thread (see `shutdown_overdue`).
        """

        with self._state_lock:
            if self._write_closed or self._closed:
                return
            self._write_closed = True
            self._shutdown_at = time.monotonic()
        try:
            self._backend.terminate()
        except (OSError, ValueError) as e:
            _LOG.warning("terminate failed: %s", e)

    def shutdown_overdue(self, grace_s: float) -> bool:
        """True once `shutdown()` was requested more than `grace_s` seconds ago."""

        with self._state_lock:
            at = self._shutdown_at
        return at is not None and (time.monotonic() - at) >= grace_s

    def close(self) -> Optional[int]:
        """Release the PTY and reap the child. Returns the exit code if known.

        May block while the backend escalates signals; call it off the UI thread.
        """

        with self._state_lock:
            if self._closed:
                return self._exit_code
            try:
                self._backend.close()
            except (OSError, ValueError) as e:
                _LOG.warning("close failed: %s", e)
            try:
                code = self._backend.exit_code()
            except (OSError, ValueError):
                code = None
            if code is not None:
                self._exit_code = code
            self._closed = True
            self._write_closed = True
            return self._exit_code
