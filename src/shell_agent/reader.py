"""shell_agent.reader

Reader loop: one daemon thread per active session that drains the PTY byte
stream into a `LineBuffer`.

Bytes are decoded incrementally as UTF-8 (a multibyte character split across
two reads survives; invalid bytes become U+FFFD), split on `\\n`, and cleaned
of terminal control sequences before they reach the buffer. The unterminated
tail (typically the shell prompt) is published as the buffer's partial line.
"""

from __future__ import annotations

import codecs
import logging
import re
import threading
from typing import Callable, Optional

from .line_buffer import LineBuffer
from .pty_channel import SessionChannel, SessionIOError


_LOG = logging.getLogger("shell_agent.reader")

_ANSI_RE = re.compile(r"(?s)\x1b\[[0-?]*[ -/]*[@-~]")
_OSC_RE = re.compile(r"(?s)\x1b\].*?(?:\x07|\x1b\\)")
# Charset designation (ESC ( B) and two-byte escapes (ESC =, ESC >, ESC M, ...).
_ESC_OTHER_RE = re.compile(r"\x1b[()*+][0-9A-Za-z]|\x1b[@-Z\\^_=>78]")
# An escape sequence cut off at the end of a chunk.
_ESC_TAIL_RE = re.compile(r"(?s)\x1b(?:\[[0-?]*[ -/]*|\][^\x07]*|[()*+])?$")
_CTRL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


def strip_ansi(text: str) -> str:
    """Remove escape sequences, apply backspaces and drop other control characters."""

    t = _OSC_RE.sub("", text or "")
    t = _ANSI_RE.sub("", t)
    t = _ESC_OTHER_RE.sub("", t)
    t = _ESC_TAIL_RE.sub("", t)
    if "\b" in t:
        out: list[str] = []
        for ch in t:
            if ch == "\b":
                if out:
                    out.pop()
            else:
                out.append(ch)
        t = "".join(out)
    return _CTRL_RE.sub("", t)


class LineDecoder:
    """Incremental bytes -> complete lines."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    @property
    def partial(self) -> str:
        return strip_ansi(self._pending)

    def feed(self, data: bytes) -> list[str]:
        self._pending += self._decoder.decode(data)
        if "\n" not in self._pending:
            return []
        *complete, self._pending = self._pending.split("\n")
        return [strip_ansi(ln) for ln in complete]

    def flush(self) -> str:
        """Return whatever is left as a final line ("" if nothing)."""

        self._pending += self._decoder.decode(b"", final=True)
        tail = strip_ansi(self._pending)
        self._pending = ""
        return tail

    def reset(self) -> None:
        self._decoder.reset()
        self._pending = ""


class ReaderLoop:
    """Drain `channel` into `buffer` until end of stream, then report the exit.

    `on_exit(exit_code)` runs exactly once on the reader thread after the
    channel has been closed. The loop never retries. If the child is still
    running `shutdown_grace_s` after a hangup, the loop stops and the close
    in its `finally` forces it down, so that wait happens here and not on
    the UI thread.
    """

    def __init__(
        self,
        *,
        channel: SessionChannel,
        buffer: LineBuffer,
        on_exit: Callable[[Optional[int]], None],
        name: str = "reader",
        read_size: int = 4096,
        read_timeout_s: float = 0.1,
        shutdown_grace_s: float = 2.0,
    ) -> None:
        self._channel = channel
        self._buffer = buffer
        self._on_exit = on_exit
        self._read_size = int(read_size)
        self._read_timeout_s = float(read_timeout_s)
        self._shutdown_grace_s = float(shutdown_grace_s)
        self._decoder = LineDecoder()
        self._epoch = buffer.epoch
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        if self._thread.ident is None:
            return True
        self._thread.join(timeout=timeout)
        return not self._thread.is_alive()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _sync_epoch(self) -> None:
        # The buffer was cleared (Ctrl+L): drop the pending partial too.
        epoch = self._buffer.epoch
        if epoch != self._epoch:
            self._epoch = epoch
            self._decoder.reset()

    def _run(self) -> None:
        _LOG.debug("reader started: %s", self._thread.name)
        try:
            while not self._stop.is_set():
                try:
                    data = self._channel.read(self._read_size, self._read_timeout_s)
                except EOFError:
                    _LOG.debug("end of stream: %s", self._thread.name)
                    break
                except (SessionIOError, OSError, ValueError) as e:
                    _LOG.warning("read failed, treating as end of stream: %s", e)
                    break
                self._sync_epoch()
                if data:
                    self._buffer.extend(self._decoder.feed(data))
                    self._buffer.set_partial(self._decoder.partial)
                if self._channel.shutdown_overdue(self._shutdown_grace_s):
                    _LOG.info("child ignored hangup for %.1fs; closing: %s", self._shutdown_grace_s, self._thread.name)
                    break
        finally:
            tail = self._decoder.flush()
            if tail:
                self._buffer.append(tail)
            self._buffer.set_partial("")
            code = self._channel.close()
            _LOG.info("session stream ended: %s exit=%s", self._thread.name, code)
            self._on_exit(code)
