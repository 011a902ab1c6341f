"""Immutable messages consumed by AppState, and the effects it requests.

Background tasks and the input dispatcher only ever produce ``Message``
instances; AppState answers each applied message with a list of ``Effect``
instances that the engine carries out.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .models import ControlAction, FilterMode, LogEntry, PendingConfirmation
from .registry import RegistryDiff


class Message:
    __slots__ = ()


class Effect:
    __slots__ = ()


# -- poller --------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RegistryUpdated(Message):
    diff: RegistryDiff


@dataclass(frozen=True, slots=True)
class PollFailed(Message):
    error: str
    failures: int
    retry_in: float


# -- log streamer --------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LogAppended(Message):
    unit: str
    generation: int
    entry: LogEntry


@dataclass(frozen=True, slots=True)
class LogGap(Message):
    unit: str
    generation: int
    dropped: int


@dataclass(frozen=True, slots=True)
class LogStreamFailed(Message):
    unit: str
    generation: int
    error: str


# -- control executor ----------------------------------------------------


class ControlFailure(str, Enum):
    PERMISSION = "permission"
    TIMEOUT = "timeout"
    NOT_FOUND = "not-found"
    INVALID = "invalid"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ControlSucceeded(Message):
    unit: str
    action: ControlAction


@dataclass(frozen=True, slots=True)
class ControlFailed(Message):
    unit: str
    action: ControlAction
    reason: ControlFailure
    detail: str = ""


# -- input ---------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Ignored(Message):
    key: str = ""


@dataclass(frozen=True, slots=True)
class QuitRequested(Message):
    pass


@dataclass(frozen=True, slots=True)
class MoveSelection(Message):
    delta: int


@dataclass(frozen=True, slots=True)
class MoveToEdge(Message):
    bottom: bool


@dataclass(frozen=True, slots=True)
class OpenDetail(Message):
    pass


@dataclass(frozen=True, slots=True)
class OpenLogs(Message):
    pass


@dataclass(frozen=True, slots=True)
class GoBack(Message):
    pass


@dataclass(frozen=True, slots=True)
class SetFilter(Message):
    filter: FilterMode


@dataclass(frozen=True, slots=True)
class BeginSearch(Message):
    pass


@dataclass(frozen=True, slots=True)
class SearchInput(Message):
    text: str


@dataclass(frozen=True, slots=True)
class SearchBackspace(Message):
    pass


@dataclass(frozen=True, slots=True)
class SubmitSearch(Message):
    pass


@dataclass(frozen=True, slots=True)
class CancelSearch(Message):
    pass


@dataclass(frozen=True, slots=True)
class RequestControl(Message):
    action: ControlAction


@dataclass(frozen=True, slots=True)
class ConfirmControl(Message):
    pass


@dataclass(frozen=True, slots=True)
class CancelControl(Message):
    pass


@dataclass(frozen=True, slots=True)
class ToggleLogPause(Message):
    pass


@dataclass(frozen=True, slots=True)
class ClearLogs(Message):
    pass


@dataclass(frozen=True, slots=True)
class CyclePriority(Message):
    pass


@dataclass(frozen=True, slots=True)
class SetLogWindow(Message):
    key: str | None  # key into models.LOG_WINDOWS; None resets to full tail


@dataclass(frozen=True, slots=True)
class ScrollLogs(Message):
    delta: int  # positive scrolls back in time


@dataclass(frozen=True, slots=True)
class RefreshNow(Message):
    pass


@dataclass(frozen=True, slots=True)
class ToggleHelp(Message):
    pass


# -- effects -------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StartLogStream(Effect):
    unit: str
    generation: int
    since: str | None = None


@dataclass(frozen=True, slots=True)
class StopLogStream(Effect):
    pass


@dataclass(frozen=True, slots=True)
class PauseLogStream(Effect):
    pass


@dataclass(frozen=True, slots=True)
class ResumeLogStream(Effect):
    pass


@dataclass(frozen=True, slots=True)
class DropHeldLogs(Effect):
    pass


@dataclass(frozen=True, slots=True)
class ExecuteControl(Effect):
    confirmation: PendingConfirmation


@dataclass(frozen=True, slots=True)
class RefreshUnit(Effect):
    unit: str


@dataclass(frozen=True, slots=True)
class PollNow(Effect):
    pass


@dataclass(frozen=True, slots=True)
class Shutdown(Effect):
    pass
