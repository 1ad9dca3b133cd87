from __future__ import annotations

import threading
import time

from shell_agent.backends import CompletionError, CompletionErrorKind
from shell_agent.conversation import ChatMessage
from shell_agent.dispatcher import AssistantDispatcher


def _wait(pred, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pred():
            return True
        time.sleep(0.005)
    return pred()


class GatedBackend:
    """Each request blocks until its question's gate is released."""

    name = "gated"

    def __init__(self) -> None:
        self.gates: dict[str, threading.Event] = {}

    def gate(self, question: str) -> threading.Event:
        return self.gates.setdefault(question, threading.Event())

    def complete(self, conversation, context=None):  # noqa: ARG002
        q = conversation[-1].content
        self.gate(q).wait(10.0)
        return f"reply to {q}"


class FailingBackend:
    name = "failing"

    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    def complete(self, conversation, context=None):  # noqa: ARG002
        raise self.exc


def test_generation_advances_per_submit() -> None:
    backend = GatedBackend()
    d = AssistantDispatcher(backend)
    backend.gate("a").set()
    backend.gate("b").set()

    h1 = d.submit([ChatMessage.user("a")])
    h2 = d.submit([ChatMessage.user("b")])

    assert (h1.generation, h2.generation) == (1, 2)
    assert d.generation == 2
    assert d.join(5.0)
    assert d.in_flight == 0


def test_stale_result_arriving_last_is_dropped() -> None:
    backend = GatedBackend()
    d = AssistantDispatcher(backend)
    d.invalidate()
    d.invalidate()

    h3 = d.submit([ChatMessage.user("q3")])
    h4 = d.submit([ChatMessage.user("q4")])
    assert (h3.generation, h4.generation) == (3, 4)

    backend.gate("q4").set()
    assert _wait(lambda: d.results.qsize() == 1)
    got = d.drain()
    assert [(r.generation, r.text) for r in got] == [(4, "reply to q4")]

    backend.gate("q3").set()
    assert d.join(5.0)
    assert d.drain() == []


def test_invalidate_abandons_in_flight_request() -> None:
    backend = GatedBackend()
    d = AssistantDispatcher(backend)
    d.submit([ChatMessage.user("slow")])

    d.invalidate()
    backend.gate("slow").set()
    assert d.join(5.0)

    assert d.drain() == []
    assert d.generation == 2


def test_completion_error_becomes_result_and_dispatcher_keeps_working() -> None:
    d = AssistantDispatcher(FailingBackend(CompletionError(CompletionErrorKind.RATE_LIMIT, "slow down")))
    d.submit([ChatMessage.user("hi")])
    assert d.join(5.0)

    (res,) = d.drain()
    assert not res.ok
    assert res.error.kind is CompletionErrorKind.RATE_LIMIT
    assert str(res.error) == "slow down"

    d.backend = GatedBackend()
    d.backend.gate("again").set()
    d.submit([ChatMessage.user("again")])
    assert d.join(5.0)
    (res,) = d.drain()
    assert res.ok and res.text == "reply to again"


def test_unexpected_exception_is_reported_as_backend_error() -> None:
    d = AssistantDispatcher(FailingBackend(ValueError("bad payload")))
    d.submit([ChatMessage.user("hi")])
    assert d.join(5.0)

    (res,) = d.drain()
    assert res.error.kind is CompletionErrorKind.BACKEND
    assert "ValueError" in str(res.error)


def test_worker_sees_snapshot_not_later_appends() -> None:
    seen: list[int] = []
    release = threading.Event()

    class Recording:
        name = "rec"

        def complete(self, conversation, context=None):  # noqa: ARG002
            release.wait(5.0)
            seen.append(len(conversation))
            return "ok"

    msgs = [ChatMessage.user("one")]
    d = AssistantDispatcher(Recording())
    d.submit(msgs)
    msgs.append(ChatMessage.user("two"))
    release.set()
    assert d.join(5.0)

    assert seen == [1]


def test_finished_workers_are_not_retained() -> None:
    class Echo:
        name = "echo"

        def complete(self, conversation, context=None):  # noqa: ARG002
            return "ok"

    d = AssistantDispatcher(Echo())
    for i in range(5):
        d.submit([ChatMessage.user(f"q{i}")])
        assert d.join(5.0)

    d.submit([ChatMessage.user("last")])
    # Only the request just submitted can still be tracked.
    assert len(d._workers) <= 1  # noqa: SLF001
    assert d.join(5.0)
    assert d.in_flight == 0
