"""shell_agent.chat_tab

The single owning state of one chat tab: conversation, dispatcher, approval
engine, code-block suggestions and pending command-output capture.

Everything here runs on the UI thread. `poll()` is called once per tick; it
drains the dispatcher, queues proposals and, once a batch of approved
commands has produced its output, feeds that output back to the assistant.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence, Union

from .approval import ApprovalEngine, ToolProposal, marker_text
from .backends import AssistantBackend
from .config import AppConfig
from .conversation import ChatMessage, Conversation, Role
from .dispatcher import AssistantDispatcher, CompletionResult, RequestHandle
from .line_buffer import LineBuffer
from .prompts import CONTEXT_DEFAULT_QUESTION, command_output_prompt, declined_prompt
from .proposals import Proposals, extract_code_blocks, parse_proposals, strip_terminal_blocks


_LOG = logging.getLogger("shell_agent.chat_tab")

TranscriptEntry = Union[ChatMessage, ToolProposal]


@dataclass
class _Batch:
    generation: int
    proposals: list[ToolProposal]
    # `total_appended` of the output buffer just before the first command ran.
    marker: Optional[int] = None
    resolved_at: Optional[float] = None

    @property
    def resolved(self) -> bool:
        return all(p.resolved for p in self.proposals)

    @property
    def executed(self) -> list[ToolProposal]:
        return [p for p in self.proposals if p.executed]


@dataclass
class _Suggestions:
    items: list[str] = field(default_factory=list)
    index: Optional[int] = None

    def replace(self, items: Sequence[str]) -> None:
        self.items = list(items)
        self.index = 0 if self.items else None

    def clear(self) -> None:
        self.replace([])


class ChatTab:
    def __init__(
        self,
        *,
        backend: Optional[AssistantBackend] = None,
        execute: Callable[[str], None],
        output_source: Optional[LineBuffer] = None,
        config: Optional[AppConfig] = None,
        dispatcher: Optional[AssistantDispatcher] = None,
        session_alive: Optional[Callable[[], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if dispatcher is None:
            if backend is None:
                raise ValueError("ChatTab needs a backend or a dispatcher")
            dispatcher = AssistantDispatcher(backend)
        self.config = config or AppConfig()
        self.conversation = Conversation()
        self.dispatcher = dispatcher
        self.engine = ApprovalEngine(self._run_proposal)
        self._execute = execute
        self._session_alive = session_alive
        self._output = output_source
        self._clock = clock
        self._entries: list[TranscriptEntry] = []
        self._batches: list[_Batch] = []
        self._suggestions = _Suggestions()
        self._awaiting: Optional[int] = None
        self._last_error: Optional[str] = None
        self._session_ended = False
        self._seen_version = output_source.version if output_source is not None else 0
        self._last_activity = clock()

    # ---- state exposed to the UI ----

    @property
    def generation(self) -> int:
        return self.dispatcher.generation

    @property
    def auto_approve(self) -> bool:
        return self.engine.auto_approve

    @property
    def current_suggestion(self) -> Optional[str]:
        s = self._suggestions
        if s.index is None:
            return None
        return s.items[s.index]

    @property
    def suggestion_index(self) -> Optional[int]:
        return self._suggestions.index

    @property
    def suggestions(self) -> list[str]:
        return list(self._suggestions.items)

    @property
    def status(self) -> str:
        head = self.engine.current()
        if head is not None:
            return f"awaiting approval: {head.command}"
        if any(b.resolved and b.executed for b in self._batches):
            return "waiting for command output…"
        if self._awaiting is not None:
            return f"thinking… (request {self._awaiting})"
        if self._last_error:
            return f"error: {self._last_error}"
        return "ready"

    def transcript(self) -> list[str]:
        """Render-ready lines: messages, pending prompts and resolved markers."""

        out: list[str] = []
        for e in self._entries:
            if isinstance(e, ToolProposal):
                out.append(marker_text(e))
                continue
            who = {Role.USER: "you", Role.ASSISTANT: "assistant", Role.SYSTEM: "system"}[e.role]
            text = e.display_text()
            if text:
                out.append(f"{who}: {text}")
        return out

    # ---- user operations ----

    def send_message(self, text: str) -> Optional[RequestHandle]:
        text = (text or "").strip()
        if not text:
            return None
        self._append(ChatMessage.user(text))
        return self._submit()

    def send_with_context(self, lines: Sequence[str], question: str = "") -> RequestHandle:
        q = (question or "").strip() or CONTEXT_DEFAULT_QUESTION
        ctx = tuple(lines)
        self._append(ChatMessage.user(q, context=ctx))
        return self._submit(context=ctx)

    def approve(self) -> Optional[ToolProposal]:
        if self._check_session_gone():
            return None
        return self.engine.approve()

    def skip(self) -> Optional[ToolProposal]:
        return self.engine.skip()

    def toggle_auto_approve(self) -> bool:
        if self._check_session_gone():
            return False
        return self.engine.toggle_auto_approve()

    def cycle_suggestion(self, step: int = 1) -> Optional[str]:
        s = self._suggestions
        if s.index is None:
            return None
        s.index = (s.index + step) % len(s.items)
        return s.items[s.index]

    def end_session(self) -> None:
        self._session_ended = True
        self.engine.end_session()
        self._batches.clear()

    def close(self) -> None:
        self.dispatcher.invalidate()
        self._awaiting = None
        self.end_session()

    # ---- tick ----

    def poll(self) -> bool:
        """Drain results and advance output capture. Returns True if anything changed."""

        changed = self._check_session_gone()
        for res in self.dispatcher.drain():
            self._handle_result(res)
            changed = True
        if self._track_output():
            changed = True
        if self._check_batches():
            changed = True
        return changed

    # ---- internals ----

    def _check_session_gone(self) -> bool:
        """End the session here if the process already exited. True if this call ended it."""

        if self._session_ended or self._session_alive is None or self._session_alive():
            return False
        _LOG.info("session no longer active; dropping pending proposals")
        self.end_session()
        return True

    def _append(self, msg: ChatMessage) -> None:
        self.conversation.append(msg)
        self._entries.append(msg)

    def _submit(self, context: Optional[Sequence[str]] = None) -> RequestHandle:
        self._suggestions.clear()
        self._last_error = None
        handle = self.dispatcher.submit(self.conversation.snapshot(), context)
        self._awaiting = handle.generation
        return handle

    def _handle_result(self, res: CompletionResult) -> None:
        self._awaiting = None
        if res.error is not None:
            self._last_error = res.error.kind.value
            self._append(ChatMessage.system(f"[error] {res.error.kind.value}: {res.error}", display_only=True))
            return

        text = res.text or ""
        parsed = parse_proposals(text)
        if isinstance(parsed, Proposals):
            prose = strip_terminal_blocks(text)
            self._append(ChatMessage.assistant(prose, tool_calls=parsed.commands))
            self._suggestions.replace(extract_code_blocks(prose))
            if self._session_ended:
                _LOG.info("session ended; not queueing %d proposal(s)", len(parsed.commands))
                return
            batch = self.engine.enqueue(parsed.commands, advance=False)
            self._entries.extend(batch)
            self._batches.append(_Batch(generation=res.generation, proposals=batch))
            # Registered first so auto-approved commands find their batch.
            self.engine.advance()
        else:
            _LOG.debug("no proposals in reply (%s)", parsed.reason)
            self._append(ChatMessage.assistant(text))
            self._suggestions.replace(extract_code_blocks(text))

    def _batch_of(self, p: ToolProposal) -> Optional[_Batch]:
        for b in self._batches:
            if any(x is p for x in b.proposals):
                return b
        return None

    def _run_proposal(self, p: ToolProposal) -> None:
        batch = self._batch_of(p)
        if batch is not None and batch.marker is None and self._output is not None:
            batch.marker = self._output.total_appended
        self._last_activity = self._clock()
        self._execute(p.command)

    def _track_output(self) -> bool:
        if self._output is None:
            return False
        v = self._output.version
        if v == self._seen_version:
            return False
        self._seen_version = v
        self._last_activity = self._clock()
        return True

    def _check_batches(self) -> bool:
        changed = False
        now = self._clock()
        while self._batches and self._batches[0].resolved:
            b = self._batches[0]
            if b.resolved_at is None:
                b.resolved_at = now
            executed = b.executed
            if executed:
                idle = (now - self._last_activity) >= self.config.output_idle_ms / 1000.0
                timed_out = (now - b.resolved_at) >= self.config.output_max_wait_s
                if not (idle or timed_out):
                    break
            self._batches.pop(0)
            changed = True
            self._finish_batch(b)
        return changed

    def _finish_batch(self, b: _Batch) -> None:
        if not self.config.resume_after_commands:
            return
        if not self.dispatcher.is_current(b.generation):
            _LOG.info("batch from generation %d superseded; not resuming", b.generation)
            return
        executed = b.executed
        if executed:
            lines: list[str] = []
            if self._output is not None and b.marker is not None:
                lines = self._output.lines_since(b.marker)
            self._append(ChatMessage.system(command_output_prompt(commands=[p.command for p in executed], output_lines=lines)))
        else:
            self._append(ChatMessage.system(declined_prompt(commands=[p.command for p in b.proposals])))
        self._submit()
