"""shell_agent.actions

Abstract UI actions. The input layer (Qt widgets, key bindings) decodes raw
events into these; `AppController.handle` consumes them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .connection import Connection


@dataclass(frozen=True)
class Connect:
    connection: Connection


@dataclass(frozen=True)
class Disconnect:
    pass


@dataclass(frozen=True)
class CloseTab:
    pass


@dataclass(frozen=True)
class SwitchTab:
    tab_id: Optional[str] = None
    # Relative move when `tab_id` is None: +1 next, -1 previous.
    offset: int = 1


@dataclass(frozen=True)
class SendMessage:
    text: str


@dataclass(frozen=True)
class SendContext:
    question: str = ""
    lines: Optional[int] = None


@dataclass(frozen=True)
class ApproveProposal:
    pass


@dataclass(frozen=True)
class SkipProposal:
    pass


@dataclass(frozen=True)
class ToggleAutoApprove:
    pass


@dataclass(frozen=True)
class ApplySuggestion:
    pass


@dataclass(frozen=True)
class CycleSuggestion:
    step: int = 1


@dataclass(frozen=True)
class TerminalInput:
    data: bytes


@dataclass(frozen=True)
class ClearTerminal:
    pass


@dataclass(frozen=True)
class Resize:
    rows: int
    cols: int


@dataclass(frozen=True)
class Quit:
    pass


Action = Union[
    Connect,
    Disconnect,
    CloseTab,
    SwitchTab,
    SendMessage,
    SendContext,
    ApproveProposal,
    SkipProposal,
    ToggleAutoApprove,
    ApplySuggestion,
    CycleSuggestion,
    TerminalInput,
    ClearTerminal,
    Resize,
    Quit,
]
