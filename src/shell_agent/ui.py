"""shell_agent.ui

PySide6 window hosting the app controller.

Layout: chat on the left (transcript, proposal controls, suggestions, input),
terminal tabs on the right. The window holds no state of its own beyond
widgets: every user gesture becomes an abstract action for
`AppController.handle`, and a `QTimer` calls `AppController.tick` and
re-renders from snapshots.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from PySide6 import QtCore, QtGui, QtWidgets

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
from .app import AppController
from .backends import describe_backend
from .config import AppConfig
from .connection import Connection, LocalShellConnection


_LOG = logging.getLogger("shell_agent.ui")
_LOG_INITIALIZED = False

_STYLE = """
QWidget#root { background: #14161a; }
QFrame#panel { background: #1c1f24; border-radius: 10px; }
QLabel { color: #d8dde6; }
QLabel#title { font-size: 15px; font-weight: 600; }
QLabel#subtitle { color: #8b93a1; }
QPlainTextEdit, QTextEdit { background: #101215; color: #d8dde6; border: 1px solid #2a2f37; border-radius: 6px; }
QPushButton { background: #2a2f37; color: #d8dde6; border: none; border-radius: 6px; padding: 6px 12px; }
QPushButton#btn_primary { background: #3b6ef5; color: white; }
QPushButton:checked { background: #c2631c; color: white; }
QPushButton:disabled { color: #5c6370; }
"""

_SPECIAL_KEYS: dict[int, bytes] = {
    int(QtCore.Qt.Key.Key_Return): b"\r",
    int(QtCore.Qt.Key.Key_Enter): b"\r",
    int(QtCore.Qt.Key.Key_Backspace): b"\x7f",
    int(QtCore.Qt.Key.Key_Tab): b"\t",
    int(QtCore.Qt.Key.Key_Escape): b"\x1b",
    int(QtCore.Qt.Key.Key_Up): b"\x1b[A",
    int(QtCore.Qt.Key.Key_Down): b"\x1b[B",
    int(QtCore.Qt.Key.Key_Right): b"\x1b[C",
    int(QtCore.Qt.Key.Key_Left): b"\x1b[D",
    int(QtCore.Qt.Key.Key_Home): b"\x1b[H",
    int(QtCore.Qt.Key.Key_End): b"\x1b[F",
    int(QtCore.Qt.Key.Key_Delete): b"\x1b[3~",
    int(QtCore.Qt.Key.Key_PageUp): b"\x1b[5~",
    int(QtCore.Qt.Key.Key_PageDown): b"\x1b[6~",
}


def _setup_run_logging(log_dir: Path) -> Path:
    """Configure terminal + file logging for debugging (clears file on startup)."""

    global _LOG_INITIALIZED  # noqa: PLW0603
    log_path = (Path(log_dir) / "shell_agent.log").resolve()
    if _LOG_INITIALIZED:
        return log_path

    log_path.parent.mkdir(parents=True, exist_ok=True)
    root = logging.getLogger("shell_agent")
    root.setLevel(logging.INFO)
    root.propagate = False

    fh = logging.FileHandler(str(log_path), mode="w", encoding="utf-8")
    sh = logging.StreamHandler(stream=sys.stderr)
    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    fh.setFormatter(fmt)
    sh.setFormatter(fmt)

    root.handlers.clear()
    root.addHandler(fh)
    root.addHandler(sh)
    _LOG_INITIALIZED = True

    _LOG.info("=== Shell Agent start ===")
    _LOG.info("log_path=%s", str(log_path))
    return log_path


def _key_to_bytes(key: int, modifiers: QtCore.Qt.KeyboardModifier, text: str) -> bytes:
    if key in _SPECIAL_KEYS:
        return _SPECIAL_KEYS[key]
    ctrl = bool(modifiers & QtCore.Qt.KeyboardModifier.ControlModifier)
    if ctrl and int(QtCore.Qt.Key.Key_A) <= key <= int(QtCore.Qt.Key.Key_Z):
        return bytes([key - int(QtCore.Qt.Key.Key_A) + 1])
    return text.encode("utf-8") if text else b""


class _TerminalView(QtWidgets.QPlainTextEdit):
    """Read-only view of a session's buffer that forwards keystrokes."""

    key_bytes = QtCore.Signal(object)
    clear_requested = QtCore.Signal()
    grid_changed = QtCore.Signal(int, int)

    def __init__(self, tab_id: str) -> None:
        super().__init__()
        self.setProperty("tab_id", tab_id)
        self.setReadOnly(True)
        self.setLineWrapMode(QtWidgets.QPlainTextEdit.LineWrapMode.NoWrap)
        font = QtGui.QFontDatabase.systemFont(QtGui.QFontDatabase.SystemFont.FixedFont)
        font.setPointSize(10)
        self.setFont(font)
        self.rendered_version = -1

    def keyPressEvent(self, e: QtGui.QKeyEvent) -> None:  # noqa: N802
        ctrl = bool(e.modifiers() & QtCore.Qt.KeyboardModifier.ControlModifier)
        if ctrl and e.key() == QtCore.Qt.Key.Key_L:
            self.clear_requested.emit()
        data = _key_to_bytes(int(e.key()), e.modifiers(), e.text())
        if data:
            self.key_bytes.emit(data)
            return
        super().keyPressEvent(e)

    def resizeEvent(self, e: QtGui.QResizeEvent) -> None:  # noqa: N802
        super().resizeEvent(e)
        fm = self.fontMetrics()
        vp = self.viewport().size()
        cols = max(1, vp.width() // max(1, fm.horizontalAdvance("M")))
        rows = max(1, vp.height() // max(1, fm.lineSpacing()))
        self.grid_changed.emit(int(rows), int(cols))


class ShellAgentWindow(QtWidgets.QMainWindow):
    def __init__(self, controller: Optional[AppController] = None, *, config: Optional[AppConfig] = None) -> None:
        self._app = QtWidgets.QApplication.instance() or QtWidgets.QApplication([])
        super().__init__()

        self.controller = controller or AppController(config)
        self._views: dict[str, _TerminalView] = {}
        self._transcript_cache: list[str] = []
        self._popup_open = False

        self._build_ui()
        self._app.setStyleSheet(_STYLE)

        self.resize(1600, 900)
        self.setWindowTitle("Shell Agent")

        self._timer = QtCore.QTimer(self)
        self._timer.setInterval(int(self.controller.config.poll_interval_ms))
        self._timer.timeout.connect(self._on_tick)
        self._timer.start()
        self._render()

    def exec(self) -> int:
        self.show()
        return int(self._app.exec())

    # ---- UI ----

    def _build_ui(self) -> None:
        root = QtWidgets.QWidget()
        root.setObjectName("root")
        self.setCentralWidget(root)

        outer = QtWidgets.QHBoxLayout(root)
        outer.setContentsMargins(16, 16, 16, 16)
        outer.setSpacing(12)

        splitter = QtWidgets.QSplitter()
        splitter.setOrientation(QtCore.Qt.Orientation.Horizontal)
        outer.addWidget(splitter, 1)

        # Left: chat
        chat_panel = QtWidgets.QFrame()
        chat_panel.setObjectName("panel")
        cl = QtWidgets.QVBoxLayout(chat_panel)
        cl.setContentsMargins(12, 12, 12, 12)
        cl.setSpacing(10)

        header = QtWidgets.QHBoxLayout()
        title = QtWidgets.QLabel("Assistant")
        title.setObjectName("title")
        header.addWidget(title)
        header.addStretch(1)
        self._chat_status = QtWidgets.QLabel("")
        self._chat_status.setObjectName("subtitle")
        header.addWidget(self._chat_status)
        cl.addLayout(header)

        self._transcript = QtWidgets.QPlainTextEdit()
        self._transcript.setReadOnly(True)
        cl.addWidget(self._transcript, 1)

        proposal_row = QtWidgets.QHBoxLayout()
        self._btn_approve = QtWidgets.QPushButton("Approve")
        self._btn_approve.setObjectName("btn_primary")
        self._btn_skip = QtWidgets.QPushButton("Skip")
        self._btn_auto = QtWidgets.QPushButton("Auto-approve")
        self._btn_auto.setCheckable(True)
        proposal_row.addWidget(self._btn_approve)
        proposal_row.addWidget(self._btn_skip)
        proposal_row.addWidget(self._btn_auto)
        proposal_row.addStretch(1)
        cl.addLayout(proposal_row)

        suggestion_row = QtWidgets.QHBoxLayout()
        self._suggestion = QtWidgets.QLabel("")
        self._suggestion.setObjectName("subtitle")
        self._btn_next_suggestion = QtWidgets.QPushButton("Next")
        self._btn_apply_suggestion = QtWidgets.QPushButton("Type into terminal")
        suggestion_row.addWidget(self._suggestion, 1)
        suggestion_row.addWidget(self._btn_next_suggestion)
        suggestion_row.addWidget(self._btn_apply_suggestion)
        cl.addLayout(suggestion_row)

        bottom = QtWidgets.QHBoxLayout()
        self._chat_input = QtWidgets.QTextEdit()
        self._chat_input.setPlaceholderText("Message… (Shift+Enter for newline)")
        self._chat_input.setFixedHeight(92)
        buttons = QtWidgets.QVBoxLayout()
        self._btn_send = QtWidgets.QPushButton("Send")
        self._btn_send.setObjectName("btn_primary")
        self._btn_send_context = QtWidgets.QPushButton("Send + context")
        buttons.addWidget(self._btn_send)
        buttons.addWidget(self._btn_send_context)
        bottom.addWidget(self._chat_input, 1)
        bottom.addLayout(buttons)
        cl.addLayout(bottom)

        splitter.addWidget(chat_panel)

        # Right: terminal
        term_panel = QtWidgets.QFrame()
        term_panel.setObjectName("panel")
        tl = QtWidgets.QVBoxLayout(term_panel)
        tl.setContentsMargins(12, 12, 12, 12)
        tl.setSpacing(10)

        thead = QtWidgets.QHBoxLayout()
        ttitle = QtWidgets.QLabel("Terminal")
        ttitle.setObjectName("title")
        thead.addWidget(ttitle)
        self._btn_local = QtWidgets.QPushButton("Local shell")
        self._btn_disconnect = QtWidgets.QPushButton("Disconnect")
        thead.addWidget(self._btn_local)
        thead.addWidget(self._btn_disconnect)
        thead.addStretch(1)
        self._session_status = QtWidgets.QLabel("")
        self._session_status.setObjectName("subtitle")
        thead.addWidget(self._session_status)
        tl.addLayout(thead)

        self._term_tabs = QtWidgets.QTabWidget()
        self._term_tabs.setTabsClosable(True)
        tl.addWidget(self._term_tabs, 1)

        splitter.addWidget(term_panel)
        splitter.setSizes([700, 900])

        # wiring
        self._btn_send.clicked.connect(self._on_send)
        self._btn_send_context.clicked.connect(self._on_send_context)
        self._btn_approve.clicked.connect(lambda: self._act(ApproveProposal()))
        self._btn_skip.clicked.connect(lambda: self._act(SkipProposal()))
        self._btn_auto.clicked.connect(lambda: self._act(ToggleAutoApprove()))
        self._btn_next_suggestion.clicked.connect(lambda: self._act(CycleSuggestion()))
        self._btn_apply_suggestion.clicked.connect(lambda: self._act(ApplySuggestion()))
        self._btn_local.clicked.connect(lambda: self._act(Connect(LocalShellConnection())))
        self._btn_disconnect.clicked.connect(lambda: self._act(Disconnect()))
        self._term_tabs.currentChanged.connect(self._on_tab_changed)
        self._term_tabs.tabCloseRequested.connect(self._on_tab_close_requested)
        self._chat_input.installEventFilter(self)

    def eventFilter(self, obj: QtCore.QObject, event: QtCore.QEvent) -> bool:  # noqa: N802
        if obj is self._chat_input and event.type() == QtCore.QEvent.Type.KeyPress:
            e = event  # type: ignore[assignment]
            if isinstance(e, QtGui.QKeyEvent) and e.key() in (QtCore.Qt.Key.Key_Return, QtCore.Qt.Key.Key_Enter):
                if e.modifiers() & QtCore.Qt.KeyboardModifier.ShiftModifier:
                    return False
                self._on_send()
                return True
        return super().eventFilter(obj, event)

    # ---- actions ----

    def connect_to(self, connection: Connection) -> None:
        self._act(Connect(connection))

    def _act(self, action: Action) -> None:
        if not self.controller.handle(action):
            self.close()
            return
        self._render()

    def _on_send(self) -> None:
        text = self._chat_input.toPlainText().strip()
        if not text:
            return
        self._chat_input.clear()
        self._act(SendMessage(text))

    def _on_send_context(self) -> None:
        text = self._chat_input.toPlainText().strip()
        self._chat_input.clear()
        self._act(SendContext(question=text))

    def _on_tab_changed(self, index: int) -> None:
        w = self._term_tabs.widget(index)
        tid = w.property("tab_id") if w is not None else None
        if isinstance(tid, str) and tid != self.controller.active_tab_id:
            self._act(SwitchTab(tab_id=tid))

    def _on_tab_close_requested(self, index: int) -> None:
        w = self._term_tabs.widget(index)
        tid = w.property("tab_id") if w is not None else None
        if not isinstance(tid, str):
            return
        if tid != self.controller.active_tab_id:
            self.controller.handle(SwitchTab(tab_id=tid))
        self._act(CloseTab())

    def _on_tick(self) -> None:
        if self.controller.tick():
            self._render()
        else:
            self._render_terminal()
        self._show_popup()

    def _show_popup(self) -> None:
        err = self.controller.error
        if not err or self._popup_open:
            return
        self._popup_open = True
        try:
            QtWidgets.QMessageBox.warning(self, "Shell Agent", err)
        finally:
            self._popup_open = False
            self.controller.dismiss_error()

    def closeEvent(self, event: QtGui.QCloseEvent) -> None:  # noqa: N802
        self._timer.stop()
        self.controller.handle(Quit())
        super().closeEvent(event)

    # ---- rendering ----

    def _sync_tabs(self) -> None:
        tabs = self.controller.tabs
        for tid in [t for t in self._views if t not in tabs]:
            view = self._views.pop(tid)
            idx = self._term_tabs.indexOf(view)
            if idx >= 0:
                self._term_tabs.removeTab(idx)
            view.deleteLater()
        for tid, tab in tabs.items():
            if tid in self._views:
                continue
            view = _TerminalView(tid)
            view.key_bytes.connect(lambda data: self._act(TerminalInput(data)))
            view.clear_requested.connect(lambda: self._act(ClearTerminal()))
            view.grid_changed.connect(lambda rows, cols: self.controller.handle(Resize(rows, cols)))
            self._views[tid] = view
            self._term_tabs.addTab(view, tab.name)
        active = self.controller.active_tab_id
        if active in self._views:
            view = self._views[active]
            if self._term_tabs.currentWidget() is not view:
                self._term_tabs.blockSignals(True)
                self._term_tabs.setCurrentWidget(view)
                self._term_tabs.blockSignals(False)
            view.setFocus()

    def _render_terminal(self) -> None:
        tab = self.controller.active_tab
        if tab is None:
            return
        view = self._views.get(tab.tab_id)
        if view is None:
            return
        v = tab.session.buffer.version
        if v == view.rendered_version:
            return
        view.rendered_version = v
        view.setPlainText("\n".join(tab.session.render_tail(tab.session.buffer.capacity)))
        view.moveCursor(QtGui.QTextCursor.MoveOperation.End)
        self._session_status.setText(tab.session.status_label())

    def _render(self) -> None:
        self._sync_tabs()
        tab = self.controller.active_tab
        has_tab = tab is not None
        for b in (self._btn_send, self._btn_send_context, self._btn_disconnect):
            b.setEnabled(has_tab)
        if tab is None:
            self._transcript_cache = []
            self._transcript.setPlainText("Connect to a host (or open a local shell) to start.")
            self._chat_status.setText("")
            self._session_status.setText("")
            self._suggestion.setText("")
            for b in (self._btn_approve, self._btn_skip, self._btn_auto, self._btn_next_suggestion, self._btn_apply_suggestion):
                b.setEnabled(False)
            return

        chat = tab.chat
        lines = chat.transcript()
        if lines != self._transcript_cache:
            self._transcript_cache = lines
            self._transcript.setPlainText("\n\n".join(lines))
            self._transcript.moveCursor(QtGui.QTextCursor.MoveOperation.End)

        status = chat.status
        if chat.auto_approve:
            status += "  |  auto-approve ON"
        backend = describe_backend(chat.dispatcher.backend)
        self._chat_status.setText(f"{status}  |  {backend.label}  |  gen {chat.generation}")

        pending = chat.engine.current() is not None and tab.session.is_alive()
        self._btn_approve.setEnabled(pending)
        self._btn_skip.setEnabled(pending)
        self._btn_auto.setEnabled(True)
        self._btn_auto.setChecked(chat.auto_approve)

        suggestion = chat.current_suggestion
        n = len(chat.suggestions)
        idx = chat.suggestion_index
        self._suggestion.setText(f"suggestion {idx + 1}/{n}: {suggestion}" if suggestion and idx is not None else "")
        self._btn_next_suggestion.setEnabled(n > 1)
        self._btn_apply_suggestion.setEnabled(bool(suggestion))

        self._session_status.setText(tab.session.status_label())
        self._render_terminal()


def run(config: AppConfig, connection: Optional[Connection] = None) -> int:
    _setup_run_logging(config.log_dir)
    w = ShellAgentWindow(config=config)
    if connection is not None:
        # After the event loop starts so a spawn failure shows as a popup.
        QtCore.QTimer.singleShot(0, lambda: w.connect_to(connection))
    return w.exec()
