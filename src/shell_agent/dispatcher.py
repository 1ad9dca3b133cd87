"""shell_agent.dispatcher

Runs assistant requests off the UI thread.

Every `submit` advances the generation counter and starts one daemon worker.
Workers never touch UI state: they put a `CompletionResult` on a queue that
the owning chat tab drains each tick. Results tagged with an older generation
are dropped unread, which is the only cancellation there is; the network call
itself is left to finish.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Optional, Sequence

from .backends import AssistantBackend, CompletionError, CompletionErrorKind
from .conversation import ChatMessage


_LOG = logging.getLogger("shell_agent.dispatcher")


@dataclass(frozen=True)
class RequestHandle:
    generation: int


@dataclass(frozen=True)
class CompletionResult:
    generation: int
    text: Optional[str] = None
    error: Optional[CompletionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AssistantDispatcher:
    def __init__(
        self,
        backend: AssistantBackend,
        *,
        results: Optional["queue.Queue[CompletionResult]"] = None,
    ) -> None:
        self.backend = backend
        self.results: "queue.Queue[CompletionResult]" = results if results is not None else queue.Queue()
        self._lock = threading.Lock()
        self._generation = 0
        self._workers: list[threading.Thread] = []

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    @property
    def in_flight(self) -> int:
        with self._lock:
            self._prune_workers()
            return len(self._workers)

    def _prune_workers(self) -> None:
        # Caller holds `_lock`.
        self._workers = [t for t in self._workers if t.is_alive()]

    def submit(
        self,
        conversation: Sequence[ChatMessage],
        context_lines: Optional[Sequence[str]] = None,
    ) -> RequestHandle:
        snapshot = tuple(conversation)
        context = tuple(context_lines) if context_lines else None
        with self._lock:
            self._prune_workers()
            self._generation += 1
            gen = self._generation
            t = threading.Thread(
                target=self._work,
                args=(gen, snapshot, context),
                name=f"assistant-gen-{gen}",
                daemon=True,
            )
            self._workers.append(t)
        _LOG.info("submit generation=%d messages=%d context_lines=%d", gen, len(snapshot), len(context or ()))
        t.start()
        return RequestHandle(gen)

    def invalidate(self) -> int:
        """Make every in-flight request stale without starting a new one."""

        with self._lock:
            self._generation += 1
            gen = self._generation
        _LOG.debug("invalidated; generation=%d", gen)
        return gen

    def _work(self, generation: int, conversation: tuple[ChatMessage, ...], context: Optional[tuple[str, ...]]) -> None:
        try:
            text = self.backend.complete(conversation, context)
            result = CompletionResult(generation, text=str(text))
        except CompletionError as e:
            _LOG.warning("generation=%d failed (%s): %s", generation, e.kind.value, e)
            result = CompletionResult(generation, error=e)
        except Exception as e:  # noqa: BLE001
            _LOG.exception("generation=%d backend raised unexpectedly", generation)
            result = CompletionResult(
                generation,
                error=CompletionError(CompletionErrorKind.BACKEND, f"{type(e).__name__}: {e}"),
            )
        self.results.put(result)

    def drain(self) -> list[CompletionResult]:
        """Current-generation results; stale ones are discarded."""

        current = self.generation
        out: list[CompletionResult] = []
        while True:
            try:
                res = self.results.get_nowait()
            except queue.Empty:
                return out
            if res.generation != current:
                _LOG.debug("dropping stale result generation=%d (current=%d)", res.generation, current)
                continue
            out.append(res)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight workers (tests and shutdown). True if all finished."""

        with self._lock:
            workers = list(self._workers)
        for t in workers:
            t.join(timeout=timeout)
        return all(not t.is_alive() for t in workers)
