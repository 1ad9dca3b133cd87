"""shell_agent.line_buffer

Capacity-bounded, ordered store of decoded terminal output lines.

The reader loop is the only writer; the UI (render) and the chat tab
(context snapshots, command output capture) read from it. Every access goes
through one lock, so readers always see a coherent set of complete lines.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Iterable


class LineBuffer:
    def __init__(self, capacity: int = 2000) -> None:
        if int(capacity) < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = int(capacity)
        self._lines: deque[str] = deque(maxlen=self._capacity)
        self._lock = threading.Lock()
        self._partial = ""
        self._total = 0
        self._version = 0
        self._epoch = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def total_appended(self) -> int:
        """Number of lines ever appended (monotonic, survives eviction and clear)."""

        with self._lock:
            return self._total

    @property
    def version(self) -> int:
        """Bumped on every mutation; cheap change detection for rendering."""

        with self._lock:
            return self._version

    @property
    def epoch(self) -> int:
        """Bumped on every `clear()`; lets the writer drop its own pending partial."""

        with self._lock:
            return self._epoch

    @property
    def partial(self) -> str:
        with self._lock:
            return self._partial

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(str(line))
            self._total += 1
            self._version += 1

    def extend(self, lines: Iterable[str]) -> None:
        """Append a batch atomically (readers see all of it or none of it)."""

        batch = [str(x) for x in lines]
        if not batch:
            return
        with self._lock:
            self._lines.extend(batch)
            self._total += len(batch)
            self._version += 1

    def set_partial(self, text: str) -> None:
        with self._lock:
            if text == self._partial:
                return
            self._partial = str(text)
            self._version += 1

    def snapshot(self) -> list[str]:
        with self._lock:
            return list(self._lines)

    def snapshot_last(self, n: int) -> list[str]:
        """The `n` most recent complete lines in arrival order (fewer if unavailable)."""

        if n <= 0:
            return []
        with self._lock:
            count = min(int(n), len(self._lines))
            start = len(self._lines) - count
            return [self._lines[i] for i in range(start, len(self._lines))]

    def lines_since(self, marker: int) -> list[str]:
        """Lines appended after `total_appended` was `marker` that are still buffered."""

        with self._lock:
            new = self._total - int(marker)
            if new <= 0:
                return []
            count = min(new, len(self._lines))
            start = len(self._lines) - count
            return [self._lines[i] for i in range(start, len(self._lines))]

    def render_tail(self, n: int) -> list[str]:
        """Last `n` display rows: complete lines plus the partial line (e.g. a prompt)."""

        if n <= 0:
            return []
        with self._lock:
            rows = list(self._lines)
            if self._partial:
                rows.append(self._partial)
        return rows[-n:]

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()
            self._partial = ""
            self._version += 1
            self._epoch += 1
