"""shell_agent.conversation

Chat messages and the append-only conversation owned by a chat tab.

Messages are frozen; a conversation snapshot is a tuple, so a worker thread
can hold one while the UI keeps appending.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterator, Optional, Sequence

from .prompts import CONTEXT_DISPLAY_PREFIX, context_prompt


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


def render_terminal_block(command: str) -> str:
    return f"<Terminal>{command}</Terminal>"


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str
    # Commands the assistant proposed in this message (blocks stripped from `content`).
    tool_calls: tuple[str, ...] = ()
    # Terminal lines shared with this message.
    context: tuple[str, ...] = ()
    # Shown in the chat, never sent to a backend (error notices).
    display_only: bool = False

    @classmethod
    def user(cls, text: str, *, context: Sequence[str] = ()) -> "ChatMessage":
        return cls(Role.USER, str(text), context=tuple(context))

    @classmethod
    def assistant(cls, text: str, *, tool_calls: Sequence[str] = ()) -> "ChatMessage":
        return cls(Role.ASSISTANT, str(text), tool_calls=tuple(tool_calls))

    @classmethod
    def system(cls, text: str, *, display_only: bool = False) -> "ChatMessage":
        return cls(Role.SYSTEM, str(text), display_only=display_only)

    def display_text(self) -> str:
        if self.context:
            return f"{CONTEXT_DISPLAY_PREFIX} {self.content}"
        return self.content

    def request_text(self) -> str:
        """Text sent to the backend for this message."""

        if self.context:
            return context_prompt(context_lines=self.context, question=self.content)
        if self.tool_calls:
            blocks = "\n".join(render_terminal_block(c) for c in self.tool_calls)
            return f"{self.content}\n\n{blocks}" if self.content else blocks
        return self.content


class Conversation:
    def __init__(self, messages: Sequence[ChatMessage] = ()) -> None:
        self._lock = threading.Lock()
        self._messages: list[ChatMessage] = list(messages)

    def append(self, msg: ChatMessage) -> None:
        with self._lock:
            self._messages.append(msg)

    def snapshot(self) -> tuple[ChatMessage, ...]:
        with self._lock:
            return tuple(self._messages)

    def last(self) -> Optional[ChatMessage]:
        with self._lock:
            return self._messages[-1] if self._messages else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self.snapshot())


def request_messages(
    conversation: Sequence[ChatMessage],
    context: Optional[Sequence[str]] = None,
) -> list[ChatMessage]:
    """Messages a backend should send: display-only notices removed.

    `context` is attached to the last user message unless that message
    already carries its own.
    """

    msgs = [m for m in conversation if not m.display_only]
    if not context:
        return msgs
    for i in range(len(msgs) - 1, -1, -1):
        if msgs[i].role is Role.USER:
            if not msgs[i].context:
                msgs[i] = replace(msgs[i], context=tuple(context))
            break
    return msgs
