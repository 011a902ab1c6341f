"""Keyboard input to AppState messages.

``dispatch`` is pure and total: every key in every context yields exactly one
message, ``Ignored`` when nothing applies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..messages import (
    BeginSearch,
    CancelControl,
    CancelSearch,
    ClearLogs,
    ConfirmControl,
    CyclePriority,
    GoBack,
    Ignored,
    Message,
    MoveSelection,
    MoveToEdge,
    OpenDetail,
    OpenLogs,
    QuitRequested,
    RefreshNow,
    RequestControl,
    ScrollLogs,
    SearchBackspace,
    SearchInput,
    SetFilter,
    SetLogWindow,
    SubmitSearch,
    ToggleHelp,
    ToggleLogPause,
)
from ..models import ControlAction, Dashboard, Detail, FilterMode, Logs

PAGE = 10


@dataclass(frozen=True, slots=True)
class KeyPress:
    key: str
    character: Optional[str] = None

    @property
    def token(self) -> str:
        """Printable characters by value, everything else by key name."""
        c = self.character
        if c is not None and len(c) == 1 and c.isprintable():
            return c
        return self.key


_GLOBAL: dict[str, Message] = {
    "q": QuitRequested(),
    "ctrl+c": QuitRequested(),
    "?": ToggleHelp(),
    "f5": RefreshNow(),
    "ctrl+r": RefreshNow(),
}

_CONTROL: dict[str, Message] = {
    "S": RequestControl(ControlAction.START),
    "T": RequestControl(ControlAction.STOP),
    "R": RequestControl(ControlAction.RESTART),
    "L": RequestControl(ControlAction.RELOAD),
    "E": RequestControl(ControlAction.ENABLE),
    "D": RequestControl(ControlAction.DISABLE),
}

_DASHBOARD: dict[str, Message] = {
    "up": MoveSelection(-1),
    "k": MoveSelection(-1),
    "down": MoveSelection(1),
    "j": MoveSelection(1),
    "pageup": MoveSelection(-PAGE),
    "pagedown": MoveSelection(PAGE),
    "home": MoveToEdge(bottom=False),
    "g": MoveToEdge(bottom=False),
    "end": MoveToEdge(bottom=True),
    "G": MoveToEdge(bottom=True),
    "enter": OpenDetail(),
    "l": OpenLogs(),
    "escape": GoBack(),
    "/": BeginSearch(),
    "a": SetFilter(FilterMode.ALL),
    "r": SetFilter(FilterMode.RUNNING),
    "s": SetFilter(FilterMode.STOPPED),
    "f": SetFilter(FilterMode.FAILED),
    **_CONTROL,
}

_DETAIL: dict[str, Message] = {
    "escape": GoBack(),
    "l": OpenLogs(),
    **_CONTROL,
}

_LOGS: dict[str, Message] = {
    "escape": GoBack(),
    " ": ToggleLogPause(),
    "space": ToggleLogPause(),
    "t": ToggleLogPause(),
    "c": ClearLogs(),
    "p": CyclePriority(),
    "1": SetLogWindow("1"),
    "2": SetLogWindow("2"),
    "7": SetLogWindow("7"),
    "0": SetLogWindow(None),
    "up": ScrollLogs(1),
    "k": ScrollLogs(1),
    "down": ScrollLogs(-1),
    "j": ScrollLogs(-1),
    "pageup": ScrollLogs(PAGE * 2),
    "pagedown": ScrollLogs(-PAGE * 2),
    "home": MoveToEdge(bottom=False),
    "g": MoveToEdge(bottom=False),
    "end": MoveToEdge(bottom=True),
    "G": MoveToEdge(bottom=True),
}


def _search(press: KeyPress) -> Message:
    token = press.token
    if token == "escape":
        return CancelSearch()
    if token in ("enter", "tab"):
        return SubmitSearch()
    if token == "backspace":
        return SearchBackspace()
    if token in ("up", "down"):
        return MoveSelection(-1 if token == "up" else 1)
    if len(token) == 1:
        return SearchInput(token)
    return Ignored(token)


def dispatch(press: KeyPress, state) -> Message:
    """Map a key press onto a message for the given state (or snapshot)."""
    token = press.token
    pending = state.pending_confirmation
    if pending is not None and not pending.confirmed:
        return ConfirmControl() if token in ("y", "enter") else CancelControl()
    if state.show_help:
        return ToggleHelp()
    if state.searching and isinstance(state.view, Dashboard):
        return _search(press)

    if token in _GLOBAL:
        return _GLOBAL[token]
    if isinstance(state.view, Dashboard):
        table = _DASHBOARD
    elif isinstance(state.view, Detail):
        table = _DETAIL
    elif isinstance(state.view, Logs):
        table = _LOGS
    else:
        raise AssertionError(f"unknown view {state.view!r}")
    return table.get(token, Ignored(token))
