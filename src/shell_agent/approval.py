"""shell_agent.approval

Tool-approval engine.

Per proposal:

    PENDING -> APPROVED       explicit approval, head of the queue only
    PENDING -> AUTO_APPROVED  auto-approve engaged
    PENDING -> SKIPPED        explicit rejection, never executed

APPROVED and AUTO_APPROVED proposals are written to the session at most
once. `executed` is set only after the write returned; a failed write leaves
`executed` False, records `error` and is never attempted again.

Proposals are resolved strictly in the order they were enqueued, one at a
time; a batch that arrives while an older one is still pending queues
behind it.

Auto-approve is an explicit toggle. Turning it on resolves the head and every
later pending proposal without prompting; it never touches proposals that are
already resolved. It is switched off when the session ends.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence


_LOG = logging.getLogger("shell_agent.approval")


class ProposalState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    SKIPPED = "skipped"
    AUTO_APPROVED = "auto_approved"


@dataclass(eq=False)
class ToolProposal:
    id: str
    command: str
    state: ProposalState = ProposalState.PENDING
    executed: bool = False
    attempted: bool = False
    error: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.state is not ProposalState.PENDING


def prompt_text(p: ToolProposal) -> str:
    return f"⚡ Run on session: {p.command}   [approve] [skip] [auto-approve]"


def marker_text(p: ToolProposal) -> str:
    if p.state is ProposalState.PENDING:
        return prompt_text(p)
    if p.state is ProposalState.SKIPPED:
        return f"✗ skipped: {p.command}"
    label = "auto-approved" if p.state is ProposalState.AUTO_APPROVED else "approved"
    if p.error:
        return f"✓ {label}: {p.command} (write failed: {p.error})"
    return f"✓ {label}: {p.command}"


class ApprovalEngine:
    """Queue of proposals for one session.

    `execute(proposal)` performs the write. Exceptions it raises (a failed
    session write) propagate to the caller; the proposal keeps the error and
    is never retried. A failed auto-approved write switches auto-approve off,
    so the remaining proposals wait for an explicit decision.
    """

    def __init__(self, execute: Callable[[ToolProposal], None]) -> None:
        self._execute_cb = execute
        self._lock = threading.RLock()
        self._queue: deque[ToolProposal] = deque()
        self._auto = False
        self._ids = itertools.count(1)

    @property
    def auto_approve(self) -> bool:
        with self._lock:
            return self._auto

    def enqueue(self, commands: Sequence[str], *, advance: bool = True) -> list[ToolProposal]:
        """Queue a batch in order. With `advance=False` auto-approve waits for `advance()`."""

        with self._lock:
            batch = [ToolProposal(id=f"local_tool_{next(self._ids)}", command=str(c)) for c in commands]
            self._queue.extend(batch)
            _LOG.info("queued %d proposal(s); pending=%d", len(batch), len(self._queue))
            if advance:
                self._drain_auto()
            return batch

    def advance(self) -> None:
        with self._lock:
            self._drain_auto()

    def current(self) -> Optional[ToolProposal]:
        """The proposal awaiting a decision (head of the queue), if any."""

        with self._lock:
            return self._queue[0] if self._queue else None

    def pending(self) -> list[ToolProposal]:
        with self._lock:
            return list(self._queue)

    def approve(self) -> Optional[ToolProposal]:
        with self._lock:
            if not self._queue:
                return None
            p = self._queue.popleft()
            p.state = ProposalState.APPROVED
            _LOG.info("approved %s: %s", p.id, p.command)
            self._execute(p)
            return p

    def skip(self) -> Optional[ToolProposal]:
        with self._lock:
            if not self._queue:
                return None
            p = self._queue.popleft()
            p.state = ProposalState.SKIPPED
            _LOG.info("skipped %s: %s", p.id, p.command)
            return p

    def set_auto_approve(self, enabled: bool) -> None:
        with self._lock:
            if bool(enabled) == self._auto:
                return
            self._auto = bool(enabled)
            _LOG.info("auto-approve %s", "on" if self._auto else "off")
            self._drain_auto()

    def toggle_auto_approve(self) -> bool:
        with self._lock:
            self.set_auto_approve(not self._auto)
            return self._auto

    def end_session(self) -> list[ToolProposal]:
        """Session gone: auto-approve off, still-pending proposals dropped as skipped."""

        with self._lock:
            self._auto = False
            dropped = list(self._queue)
            self._queue.clear()
            for p in dropped:
                p.state = ProposalState.SKIPPED
            if dropped:
                _LOG.info("session ended; dropped %d pending proposal(s)", len(dropped))
            return dropped

    def _drain_auto(self) -> None:
        while self._auto and self._queue:
            p = self._queue.popleft()
            p.state = ProposalState.AUTO_APPROVED
            _LOG.info("auto-approved %s: %s", p.id, p.command)
            try:
                self._execute(p)
            except Exception:
                self._auto = False
                _LOG.warning("auto-approve off: write of %s failed; %d proposal(s) left pending", p.id, len(self._queue))
                raise

    def _execute(self, p: ToolProposal) -> None:
        if p.attempted or p.state not in (ProposalState.APPROVED, ProposalState.AUTO_APPROVED):
            return
        p.attempted = True
        try:
            self._execute_cb(p)
        except Exception as e:
            p.error = str(e)
            raise
        p.executed = True
