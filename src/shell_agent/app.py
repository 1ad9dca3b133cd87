"""shell_agent.app

UI-loop semantics without any widgets.

`AppController.handle(action)` applies one abstract action; `tick()` drains
background queues (session exits, assistant results) and is called on every
timer tick. Both run on the UI thread only.

Errors: `SpawnError` and `SessionIOError` are the only failures that raise a
popup (`controller.error`); the next action dismisses it. A write that fails
only because the process already exited is dropped without a popup. Assistant
failures stay in the chat, remote failures stay in the terminal.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .actions import (
    Action,
    ApplySuggestion,
    ApproveProposal,
    ClearTerminal,
    CloseTab,
    Connect,
    CycleSuggestion,
    Disconnect,
    Quit,
    Resize,
    SendContext,
    SendMessage,
    SkipProposal,
    SwitchTab,
    TerminalInput,
    ToggleAutoApprove,
)
from .backends import AssistantBackend, build_backend
from .chat_tab import ChatTab
from .config import AppConfig
from .connection import Connection
from .pty_channel import SessionIOError, SpawnError
from .session import TerminalSession


_LOG = logging.getLogger("shell_agent.app")

SessionFactory = Callable[..., TerminalSession]


@dataclass
class ConnectedTab:
    tab_id: str
    name: str
    connection: Connection
    session: TerminalSession
    chat: ChatTab


class AppController:
    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        backend_factory: Callable[[AppConfig], AssistantBackend] = build_backend,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self.config = config or AppConfig()
        self._backend_factory = backend_factory
        self._backend: Optional[AssistantBackend] = None
        self._session_factory = session_factory or TerminalSession.connect
        self.tabs: dict[str, ConnectedTab] = {}
        self.active_tab_id: Optional[str] = None
        self.error: Optional[str] = None
        self.rows = self.config.pty_rows
        self.cols = self.config.pty_cols
        self._ids = itertools.count(1)

    # ---- state ----

    @property
    def backend(self) -> AssistantBackend:
        if self._backend is None:
            self._backend = self._backend_factory(self.config)
        return self._backend

    @property
    def active_tab(self) -> Optional[ConnectedTab]:
        if self.active_tab_id is None:
            return None
        return self.tabs.get(self.active_tab_id)

    def tab_order(self) -> list[str]:
        return list(self.tabs.keys())

    # ---- actions ----

    def handle(self, action: Action) -> bool:
        """Apply one action. Returns False when the app should quit."""

        if isinstance(action, Quit):
            self.shutdown()
            return False
        if self.error is not None and not isinstance(action, Resize):
            _LOG.debug("popup dismissed by %s", type(action).__name__)
            self.error = None
            return True
        try:
            self._dispatch(action)
        except SpawnError as e:
            _LOG.error("spawn failed: %s", e)
            self.error = f"Could not start session: {e}"
        except SessionIOError as e:
            self._session_io_failed(self.active_tab, e)
        return True

    def dismiss_error(self) -> None:
        self.error = None

    def _session_io_failed(self, tab: Optional[ConnectedTab], e: SessionIOError) -> None:
        if tab is not None and not tab.session.is_alive():
            # The process exited before its exit event was drained: not a channel failure.
            _LOG.info("%s already exited: %s", tab.tab_id, e)
            tab.chat.end_session()
            return
        _LOG.error("session I/O failed: %s", e)
        self.error = f"PTY error: {e}"

    def _dispatch(self, action: Action) -> None:
        if isinstance(action, Connect):
            self._connect(action.connection)
            return
        if isinstance(action, Resize):
            self._resize(action.rows, action.cols)
            return
        if isinstance(action, SwitchTab):
            self._switch(action)
            return

        tab = self.active_tab
        if tab is None:
            _LOG.debug("ignoring %s: no active tab", type(action).__name__)
            return

        if isinstance(action, Disconnect):
            if tab.session.is_alive():
                tab.session.disconnect()
            else:
                # Acknowledging an exited session destroys it.
                self._close_tab(tab.tab_id)
        elif isinstance(action, CloseTab):
            self._close_tab(tab.tab_id)
        elif isinstance(action, SendMessage):
            tab.chat.send_message(action.text)
        elif isinstance(action, SendContext):
            n = action.lines if action.lines is not None else self.config.context_lines
            tab.chat.send_with_context(tab.session.context_snapshot(n), action.question)
        elif isinstance(action, ApproveProposal):
            tab.chat.approve()
        elif isinstance(action, SkipProposal):
            tab.chat.skip()
        elif isinstance(action, ToggleAutoApprove):
            tab.chat.toggle_auto_approve()
        elif isinstance(action, CycleSuggestion):
            tab.chat.cycle_suggestion(action.step)
        elif isinstance(action, ApplySuggestion):
            s = tab.chat.current_suggestion
            if s:
                # Typed, not run: the user presses Enter themselves.
                tab.session.write_input(s.encode("utf-8"))
        elif isinstance(action, TerminalInput):
            tab.session.write_input(action.data)
        elif isinstance(action, ClearTerminal):
            tab.session.clear()

    def _connect(self, connection: Connection) -> ConnectedTab:
        command, args = connection.spawn_command()
        session = self._session_factory(
            command,
            args,
            rows=self.rows,
            cols=self.cols,
            capacity=self.config.buffer_capacity,
        )
        tab_id = f"tab-{next(self._ids)}"
        chat = ChatTab(
            backend=self.backend,
            execute=session.inject_command,
            output_source=session.buffer,
            config=self.config,
            session_alive=session.is_alive,
        )
        tab = ConnectedTab(tab_id=tab_id, name=connection.label, connection=connection, session=session, chat=chat)
        self.tabs[tab_id] = tab
        self.active_tab_id = tab_id
        _LOG.info("connected %s as %s", connection.label, tab_id)
        return tab

    def _close_tab(self, tab_id: str) -> None:
        tab = self.tabs.pop(tab_id, None)
        if tab is None:
            return
        tab.chat.close()
        tab.session.close()
        _LOG.info("closed %s", tab_id)
        if self.active_tab_id == tab_id:
            order = self.tab_order()
            self.active_tab_id = order[-1] if order else None

    def _switch(self, action: SwitchTab) -> None:
        order = self.tab_order()
        if not order:
            return
        if action.tab_id is not None:
            if action.tab_id in self.tabs:
                self.active_tab_id = action.tab_id
            return
        i = order.index(self.active_tab_id) if self.active_tab_id in order else 0
        self.active_tab_id = order[(i + action.offset) % len(order)]

    def _resize(self, rows: int, cols: int) -> None:
        if rows < 1 or cols < 1:
            return
        self.rows, self.cols = int(rows), int(cols)
        for tab in self.tabs.values():
            tab.session.resize(self.rows, self.cols)

    # ---- tick ----

    def tick(self) -> bool:
        """Drain session events and chat results for every tab."""

        changed = False
        for tab in list(self.tabs.values()):
            for ev in tab.session.poll_events():
                _LOG.info("%s exited (code=%s)", ev.session_id, ev.exit_code)
                tab.chat.end_session()
                changed = True
            try:
                if tab.chat.poll():
                    changed = True
            except SessionIOError as e:
                self._session_io_failed(tab, e)
                changed = True
        return changed

    def shutdown(self) -> None:
        for tab_id in self.tab_order():
            self._close_tab(tab_id)
