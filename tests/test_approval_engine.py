from __future__ import annotations

import pytest

from shell_agent.approval import ApprovalEngine, ProposalState, ToolProposal, marker_text, prompt_text
from shell_agent.pty_channel import SessionIOError


class Recorder:
    def __init__(self) -> None:
        self.written: list[str] = []

    def __call__(self, p: ToolProposal) -> None:
        self.written.append(p.command)


def test_approve_first_skip_second() -> None:
    rec = Recorder()
    eng = ApprovalEngine(rec)
    first, second = eng.enqueue(["ls -la", "cat a.txt"])

    assert eng.current() is first
    eng.approve()
    assert eng.current() is second
    eng.skip()

    assert rec.written == ["ls -la"]
    assert first.state is ProposalState.APPROVED and first.executed
    assert second.state is ProposalState.SKIPPED and not second.executed
    assert eng.current() is None
    # Nothing left to act on.
    assert eng.approve() is None
    assert eng.skip() is None
    assert rec.written == ["ls -la"]


def test_ids_are_unique_and_sequential() -> None:
    eng = ApprovalEngine(Recorder())
    a, b = eng.enqueue(["a", "b"])
    (c,) = eng.enqueue(["c"])
    assert [a.id, b.id, c.id] == ["local_tool_1", "local_tool_2", "local_tool_3"]


def test_batches_resolve_in_order() -> None:
    rec = Recorder()
    eng = ApprovalEngine(rec)
    eng.enqueue(["one", "two"])
    eng.enqueue(["three"])

    assert [p.command for p in eng.pending()] == ["one", "two", "three"]
    eng.approve()
    eng.approve()
    eng.approve()
    assert rec.written == ["one", "two", "three"]


def test_auto_approve_is_not_retroactive() -> None:
    rec = Recorder()
    eng = ApprovalEngine(rec)
    a, b, c = eng.enqueue(["a", "b", "c"])
    eng.approve()
    eng.skip()

    assert eng.toggle_auto_approve() is True

    assert a.state is ProposalState.APPROVED
    assert b.state is ProposalState.SKIPPED
    assert c.state is ProposalState.AUTO_APPROVED
    assert rec.written == ["a", "c"]

    (d,) = eng.enqueue(["d"])
    assert d.state is ProposalState.AUTO_APPROVED
    assert rec.written == ["a", "c", "d"]


def test_revoking_auto_approve_prompts_again() -> None:
    rec = Recorder()
    eng = ApprovalEngine(rec)
    eng.set_auto_approve(True)
    eng.enqueue(["uptime"])
    eng.set_auto_approve(False)

    (p,) = eng.enqueue(["reboot"])
    assert p.state is ProposalState.PENDING
    assert rec.written == ["uptime"]


def test_enqueue_without_advance_defers_auto_approve() -> None:
    rec = Recorder()
    eng = ApprovalEngine(rec)
    eng.set_auto_approve(True)

    (p,) = eng.enqueue(["whoami"], advance=False)
    assert p.state is ProposalState.PENDING
    eng.advance()
    assert p.state is ProposalState.AUTO_APPROVED
    assert rec.written == ["whoami"]


def test_end_session_resets_auto_and_drops_pending() -> None:
    rec = Recorder()
    eng = ApprovalEngine(rec)
    (p,) = eng.enqueue(["ls"])
    eng.set_auto_approve(False)

    dropped = eng.end_session()

    assert dropped == [p]
    assert p.state is ProposalState.SKIPPED
    assert eng.auto_approve is False
    assert eng.current() is None
    assert rec.written == []


def test_failed_write_is_never_retried() -> None:
    calls: list[str] = []

    def execute(p: ToolProposal) -> None:
        calls.append(p.command)
        raise SessionIOError("write failed: EIO")

    eng = ApprovalEngine(execute)
    (p,) = eng.enqueue(["ls"])

    with pytest.raises(SessionIOError):
        eng.approve()

    # Attempted once, never counted as written.
    assert p.attempted
    assert not p.executed
    assert p.error == "write failed: EIO"
    assert calls == ["ls"]
    assert eng.current() is None
    assert marker_text(p) == "✓ approved: ls (write failed: write failed: EIO)"


def test_failed_auto_write_turns_auto_approve_off() -> None:
    calls: list[str] = []

    def execute(p: ToolProposal) -> None:
        calls.append(p.command)
        if p.command == "b":
            raise SessionIOError("write failed: EIO")

    eng = ApprovalEngine(execute)
    eng.set_auto_approve(True)

    a, b, c = eng.enqueue(["a", "b", "c"], advance=False)

    with pytest.raises(SessionIOError):
        eng.advance()

    assert eng.auto_approve is False
    assert a.executed and not b.executed
    assert b.error == "write failed: EIO"
    # The rest waits for an explicit decision.
    assert c.state is ProposalState.PENDING
    assert eng.current() is c
    assert calls == ["a", "b"]
    eng.approve()
    assert c.executed
    assert calls == ["a", "b", "c"]


def test_prompt_and_marker_text() -> None:
    eng = ApprovalEngine(Recorder())
    a, b = eng.enqueue(["df -h", "rm -rf /tmp/cache"])
    assert "df -h" in prompt_text(a)
    assert marker_text(a) == prompt_text(a)
    eng.approve()
    eng.skip()
    assert marker_text(a) == "✓ approved: df -h"
    assert marker_text(b) == "✗ skipped: rm -rf /tmp/cache"
