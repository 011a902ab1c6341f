from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum


class _StateEnum(str, Enum):
    """String enum that folds unrecognised values into ``UNKNOWN``."""

    @classmethod
    def _missing_(cls, value):
        return cls.UNKNOWN  # type: ignore[attr-defined]


class LoadState(_StateEnum):
    LOADED = "loaded"
    NOT_FOUND = "not-found"
    BAD_SETTING = "bad-setting"
    ERROR = "error"
    MASKED = "masked"
    STUB = "stub"
    MERGED = "merged"
    UNKNOWN = "unknown"


class ActiveState(_StateEnum):
    ACTIVE = "active"
    RELOADING = "reloading"
    REFRESHING = "refreshing"
    INACTIVE = "inactive"
    FAILED = "failed"
    ACTIVATING = "activating"
    DEACTIVATING = "deactivating"
    MAINTENANCE = "maintenance"
    UNKNOWN = "unknown"


class SubState(_StateEnum):
    RUNNING = "running"
    EXITED = "exited"
    DEAD = "dead"
    FAILED = "failed"
    AUTO_RESTART = "auto-restart"
    CONDITION = "condition"
    START_PRE = "start-pre"
    START = "start"
    START_POST = "start-post"
    RELOAD = "reload"
    STOP = "stop"
    STOP_SIGTERM = "stop-sigterm"
    STOP_SIGKILL = "stop-sigkill"
    STOP_POST = "stop-post"
    FINAL_SIGTERM = "final-sigterm"
    FINAL_SIGKILL = "final-sigkill"
    CLEANING = "cleaning"
    UNKNOWN = "unknown"


class Priority(IntEnum):
    """syslog severity levels as reported by the journal."""

    EMERG = 0
    ALERT = 1
    CRIT = 2
    ERR = 3
    WARNING = 4
    NOTICE = 5
    INFO = 6
    DEBUG = 7

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True, slots=True)
class ServiceUnit:
    name: str
    load_state: LoadState = LoadState.UNKNOWN
    active_state: ActiveState = ActiveState.UNKNOWN
    sub_state: SubState = SubState.UNKNOWN
    description: str = ""
    pid: int | None = None
    memory_bytes: int | None = None
    task_count: int | None = None
    cpu_time: float | None = None  # seconds
    restart_count: int = 0
    wants: tuple[str, ...] = ()
    after: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class LogEntry:
    timestamp: datetime
    unit_name: str
    priority: Priority
    message: str


class ControlAction(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    RELOAD = "reload"
    ENABLE = "enable"
    DISABLE = "disable"

    @property
    def past_tense(self) -> str:
        return {
            ControlAction.START: "started",
            ControlAction.STOP: "stopped",
            ControlAction.RESTART: "restarted",
            ControlAction.RELOAD: "reloaded",
            ControlAction.ENABLE: "enabled",
            ControlAction.DISABLE: "disabled",
        }[self]

    @property
    def gerund(self) -> str:
        return {
            ControlAction.START: "starting",
            ControlAction.STOP: "stopping",
            ControlAction.RESTART: "restarting",
            ControlAction.RELOAD: "reloading",
            ControlAction.ENABLE: "enabling",
            ControlAction.DISABLE: "disabling",
        }[self]

    @property
    def touches_unit_file(self) -> bool:
        """Enable/disable change install links rather than the running unit."""
        return self in (ControlAction.ENABLE, ControlAction.DISABLE)


class FilterMode(str, Enum):
    ALL = "all"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    def matches(self, unit: ServiceUnit) -> bool:
        if self is FilterMode.ALL:
            return True
        if self is FilterMode.RUNNING:
            return unit.active_state in _RUNNING_STATES
        if self is FilterMode.STOPPED:
            return unit.active_state in _STOPPED_STATES and unit.sub_state is not SubState.FAILED
        if self is FilterMode.FAILED:
            return unit.active_state is ActiveState.FAILED or unit.sub_state is SubState.FAILED
        raise AssertionError(f"unhandled filter {self!r}")


_RUNNING_STATES = frozenset({ActiveState.ACTIVE, ActiveState.RELOADING, ActiveState.REFRESHING})
_STOPPED_STATES = frozenset({ActiveState.INACTIVE, ActiveState.DEACTIVATING})


class Connectivity(str, Enum):
    CONNECTED = "connected"
    DEGRADED = "degraded"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True, slots=True)
class Dashboard:
    pass


@dataclass(frozen=True, slots=True)
class Detail:
    unit: str


@dataclass(frozen=True, slots=True)
class Logs:
    unit: str


View = Dashboard | Detail | Logs


@dataclass(frozen=True, slots=True)
class PendingConfirmation:
    unit: str
    action: ControlAction
    confirmed: bool = False

    def matches(self, unit: str, action: ControlAction) -> bool:
        return self.unit == unit and self.action is action


class BannerLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Banner:
    text: str
    level: BannerLevel = BannerLevel.INFO
    source: str = "general"  # connectivity | control | logs | general


@dataclass(frozen=True, slots=True)
class LogWindow:
    """A journal time window, e.g. ``-1h``; ``None`` since means full tail."""

    label: str
    since: str | None = None


LOG_WINDOWS: dict[str, LogWindow] = {
    "1": LogWindow("last hour", "-1h"),
    "2": LogWindow("last 24h", "-24h"),
    "7": LogWindow("last 7 days", "-7d"),
}

PRIORITY_CYCLE: tuple[Priority | None, ...] = (
    None,
    Priority.ERR,
    Priority.WARNING,
    Priority.INFO,
    Priority.DEBUG,
)


@dataclass(frozen=True, slots=True)
class UnitCounts:
    total: int = 0
    running: int = 0
    stopped: int = 0
    failed: int = 0
    showing: int = 0


def format_bytes(value: int | None) -> str:
    """Human readable binary size, e.g. ``45.2 MiB``."""
    if value is None:
        return "-"
    size = float(value)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if size < 1024 or unit == "TiB":
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{value} B"


def format_seconds(value: float | None) -> str:
    if value is None:
        return "-"
    if value < 60:
        return f"{value:.2f}s"
    minutes, seconds = divmod(int(value), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    return f"{minutes}m{seconds:02d}s"
