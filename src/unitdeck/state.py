"""Single-writer application state.

Every change to the registry, log buffers, filter, search and selection goes
through :meth:`AppState.apply`, one message at a time. ``apply`` never
performs I/O; it returns the effects (start a stream, run a control action,
...) for the engine to carry out.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable

from .logbuffer import DEFAULT_CAPACITY, LogBuffer
from .messages import (
    BeginSearch,
    CancelControl,
    CancelSearch,
    ClearLogs,
    ConfirmControl,
    ControlFailed,
    ControlFailure,
    ControlSucceeded,
    CyclePriority,
    DropHeldLogs,
    Effect,
    ExecuteControl,
    GoBack,
    Ignored,
    LogAppended,
    LogGap,
    LogStreamFailed,
    Message,
    MoveSelection,
    MoveToEdge,
    OpenDetail,
    OpenLogs,
    PauseLogStream,
    PollFailed,
    PollNow,
    QuitRequested,
    RefreshNow,
    RefreshUnit,
    RegistryUpdated,
    RequestControl,
    ResumeLogStream,
    ScrollLogs,
    SearchBackspace,
    SearchInput,
    SetFilter,
    SetLogWindow,
    Shutdown,
    StartLogStream,
    StopLogStream,
    SubmitSearch,
    ToggleHelp,
    ToggleLogPause,
)
from .models import (
    LOG_WINDOWS,
    PRIORITY_CYCLE,
    Banner,
    BannerLevel,
    Connectivity,
    ControlAction,
    Dashboard,
    Detail,
    FilterMode,
    LogEntry,
    Logs,
    LogWindow,
    PendingConfirmation,
    Priority,
    ServiceUnit,
    UnitCounts,
    View,
)
from .observability import get_logger
from .registry import Registry

log = get_logger("unitdeck.state")

_INPUT_TYPES = (
    QuitRequested,
    MoveSelection,
    MoveToEdge,
    OpenDetail,
    OpenLogs,
    GoBack,
    SetFilter,
    BeginSearch,
    SearchInput,
    SearchBackspace,
    SubmitSearch,
    CancelSearch,
    RequestControl,
    ToggleLogPause,
    ClearLogs,
    CyclePriority,
    SetLogWindow,
    ScrollLogs,
    RefreshNow,
    ToggleHelp,
)


def matches_search(unit: ServiceUnit, query: str) -> bool:
    if not query:
        return True
    q = query.lower()
    return q in unit.name.lower() or q in unit.description.lower()


def visible_units(units, filter: FilterMode, query: str) -> list[ServiceUnit]:
    """The filtered and searched subset, in registry order."""
    return [u for u in units if filter.matches(u) and matches_search(u, query)]


@dataclass(frozen=True, slots=True)
class StateSnapshot:
    """Read-only projection handed to the renderer."""

    version: int
    connectivity: Connectivity
    poll_failures: int
    view: View
    filter: FilterMode
    search_query: str
    searching: bool
    units: tuple[ServiceUnit, ...]
    selected_index: int
    counts: UnitCounts
    pending_confirmation: PendingConfirmation | None
    banner: Banner | None
    show_help: bool
    detail: ServiceUnit | None
    wants: tuple[tuple[str, ServiceUnit | None], ...]
    after: tuple[tuple[str, ServiceUnit | None], ...]
    log_unit: str | None
    log_entries: tuple[LogEntry, ...]
    log_total: int
    log_capacity: int
    log_paused: bool
    log_offset: int
    log_min_priority: Priority | None
    log_window: LogWindow | None

    @property
    def selected(self) -> ServiceUnit | None:
        if 0 <= self.selected_index < len(self.units):
            return self.units[self.selected_index]
        return None


class AppState:
    def __init__(self, log_capacity: int = DEFAULT_CAPACITY, failure_threshold: int = 3) -> None:
        self.log_capacity = log_capacity
        self.failure_threshold = failure_threshold

        self.registry = Registry()
        self.connectivity = Connectivity.DISCONNECTED
        self.poll_failures = 0
        self.view: View = Dashboard()
        self.filter = FilterMode.ALL
        self.search_query = ""
        self.searching = False
        self.selected_index = 0
        self.log_buffers: dict[str, LogBuffer] = {}
        self.log_generation = 0
        self.log_paused = False
        self.log_offset = 0
        self.log_min_priority: Priority | None = None
        self.log_window: LogWindow | None = None
        self.pending_confirmation: PendingConfirmation | None = None
        self.banner: Banner | None = None
        self.show_help = False
        self.quitting = False
        self.version = 0
        self.dropped_stale = 0
        self._visible: list[ServiceUnit] = []

        self._handlers: dict[type, Callable[[Message], list[Effect]]] = {
            RegistryUpdated: self._on_registry_updated,
            PollFailed: self._on_poll_failed,
            LogAppended: self._on_log_appended,
            LogGap: self._on_log_gap,
            LogStreamFailed: self._on_log_stream_failed,
            ControlSucceeded: self._on_control_succeeded,
            ControlFailed: self._on_control_failed,
            Ignored: lambda msg: [],
            QuitRequested: self._on_quit,
            MoveSelection: self._on_move_selection,
            MoveToEdge: self._on_move_to_edge,
            OpenDetail: self._on_open_detail,
            OpenLogs: self._on_open_logs,
            GoBack: self._on_go_back,
            SetFilter: self._on_set_filter,
            BeginSearch: self._on_begin_search,
            SearchInput: self._on_search_input,
            SearchBackspace: self._on_search_backspace,
            SubmitSearch: self._on_submit_search,
            CancelSearch: self._on_cancel_search,
            RequestControl: self._on_request_control,
            ConfirmControl: self._on_confirm_control,
            CancelControl: self._on_cancel_control,
            ToggleLogPause: self._on_toggle_log_pause,
            ClearLogs: self._on_clear_logs,
            CyclePriority: self._on_cycle_priority,
            SetLogWindow: self._on_set_log_window,
            ScrollLogs: self._on_scroll_logs,
            RefreshNow: lambda msg: [PollNow()],
            ToggleHelp: self._on_toggle_help,
        }

    # -- queries ---------------------------------------------------------

    @property
    def awaiting_confirmation(self) -> bool:
        return self.pending_confirmation is not None and not self.pending_confirmation.confirmed

    def visible(self) -> list[ServiceUnit]:
        return list(self._visible)

    def selected_unit(self) -> ServiceUnit | None:
        if 0 <= self.selected_index < len(self._visible):
            return self._visible[self.selected_index]
        return None

    def counts(self) -> UnitCounts:
        units = self.registry.units()
        return UnitCounts(
            total=len(units),
            running=sum(1 for u in units if FilterMode.RUNNING.matches(u)),
            stopped=sum(1 for u in units if FilterMode.STOPPED.matches(u)),
            failed=sum(1 for u in units if FilterMode.FAILED.matches(u)),
            showing=len(self._visible),
        )

    def active_log_buffer(self) -> LogBuffer | None:
        if isinstance(self.view, Logs):
            return self.log_buffers.get(self.view.unit)
        return None

    def _filtered_log_entries(self) -> tuple[LogEntry, ...]:
        buffer = self.active_log_buffer()
        if buffer is None:
            return ()
        return buffer.snapshot(self.log_min_priority)

    def snapshot(self) -> StateSnapshot:
        detail = None
        if isinstance(self.view, (Detail, Logs)):
            detail = self.registry.get(self.view.unit)
        buffer = self.active_log_buffer()
        return StateSnapshot(
            version=self.version,
            connectivity=self.connectivity,
            poll_failures=self.poll_failures,
            view=self.view,
            filter=self.filter,
            search_query=self.search_query,
            searching=self.searching,
            units=tuple(self._visible),
            selected_index=self.selected_index,
            counts=self.counts(),
            pending_confirmation=self.pending_confirmation,
            banner=self.banner,
            show_help=self.show_help,
            detail=detail,
            wants=tuple(self.registry.resolve(detail.wants)) if detail else (),
            after=tuple(self.registry.resolve(detail.after)) if detail else (),
            log_unit=buffer.unit if buffer else None,
            log_entries=self._filtered_log_entries(),
            log_total=len(buffer) if buffer else 0,
            log_capacity=self.log_capacity,
            log_paused=self.log_paused,
            log_offset=self.log_offset,
            log_min_priority=self.log_min_priority,
            log_window=self.log_window,
        )

    # -- the single mutation point ----------------------------------------

    def apply(self, msg: Message) -> list[Effect]:
        handler = self._handlers.get(type(msg))
        if handler is None:
            raise TypeError(f"unsupported message: {type(msg).__name__}")
        if self.awaiting_confirmation and isinstance(msg, _INPUT_TYPES):
            # Any other input while a prompt is open abandons the request.
            self.pending_confirmation = None
            effects: list[Effect] = []
        else:
            effects = handler(msg)
        self.version += 1
        return effects

    # -- helpers -----------------------------------------------------------

    def _recompute_visible(self, keep: str | None = None) -> None:
        self._visible = visible_units(self.registry, self.filter, self.search_query)
        if not self._visible:
            self.selected_index = 0
            return
        if keep is not None:
            for i, unit in enumerate(self._visible):
                if unit.name == keep:
                    self.selected_index = i
                    return
        self.selected_index = min(max(self.selected_index, 0), len(self._visible) - 1)

    def _selected_name(self) -> str | None:
        unit = self.selected_unit()
        return unit.name if unit else None

    def _target_unit(self) -> str | None:
        if isinstance(self.view, (Detail, Logs)):
            return self.view.unit
        return self._selected_name()

    def _reset_log_view(self) -> None:
        self.log_buffers.clear()
        self.log_paused = False
        self.log_offset = 0

    def _leave_logs(self) -> list[Effect]:
        if not isinstance(self.view, Logs):
            return []
        self._reset_log_view()
        self.log_window = None
        return [StopLogStream()]

    def _start_stream(self, unit: str) -> list[Effect]:
        effects: list[Effect] = []
        if isinstance(self.view, Logs):
            effects.append(StopLogStream())
        self._reset_log_view()
        self.log_generation += 1
        self.log_buffers[unit] = LogBuffer(unit, self.log_capacity)
        self.view = Logs(unit)
        since = self.log_window.since if self.log_window else None
        effects.append(StartLogStream(unit, self.log_generation, since))
        return effects

    def _is_current_stream(self, unit: str, generation: int) -> bool:
        if generation == self.log_generation and self.view == Logs(unit) and unit in self.log_buffers:
            return True
        self.dropped_stale += 1
        log.debug("dropping stale log message", extra={"unit": unit, "generation": generation})
        return False

    def _max_log_offset(self) -> int:
        return max(len(self._filtered_log_entries()) - 1, 0)

    # -- poller ------------------------------------------------------------

    def _on_registry_updated(self, msg: RegistryUpdated) -> list[Effect]:
        keep = self._selected_name()
        self.registry.apply(msg.diff)
        # only a full poll proves the manager is reachable again
        if msg.diff.order is not None:
            self._mark_connected()
        self._recompute_visible(keep)

        pending = self.pending_confirmation
        if pending is not None and not pending.confirmed and pending.unit not in self.registry:
            self.pending_confirmation = None
        if isinstance(self.view, Detail) and self.view.unit not in self.registry:
            self.banner = Banner(f"{self.view.unit} is no longer reported", BannerLevel.WARNING)
            self.view = Dashboard()
        return []

    def _mark_connected(self) -> None:
        self.poll_failures = 0
        if self.connectivity is not Connectivity.CONNECTED:
            self.connectivity = Connectivity.CONNECTED
            if self.banner is not None and self.banner.source == "connectivity":
                self.banner = None

    def _on_poll_failed(self, msg: PollFailed) -> list[Effect]:
        self.poll_failures = msg.failures
        if msg.failures > self.failure_threshold:
            self.connectivity = Connectivity.DISCONNECTED
        else:
            self.connectivity = Connectivity.DEGRADED
        self.banner = Banner(
            f"Service manager unreachable: {msg.error} (retry in {msg.retry_in:.0f}s)",
            BannerLevel.ERROR,
            "connectivity",
        )
        return []

    # -- log streamer --------------------------------------------------------

    def _on_log_appended(self, msg: LogAppended) -> list[Effect]:
        if not self._is_current_stream(msg.unit, msg.generation):
            return []
        self.log_buffers[msg.unit].append(msg.entry)
        hidden = self.log_min_priority is not None and msg.entry.priority > self.log_min_priority
        if self.log_offset and not hidden:
            self.log_offset = min(self.log_offset + 1, self._max_log_offset())
        return []

    def _on_log_gap(self, msg: LogGap) -> list[Effect]:
        if self._is_current_stream(msg.unit, msg.generation):
            self.banner = Banner(f"{msg.dropped} log lines skipped while paused", BannerLevel.WARNING, "logs")
        return []

    def _on_log_stream_failed(self, msg: LogStreamFailed) -> list[Effect]:
        if self._is_current_stream(msg.unit, msg.generation):
            self.banner = Banner(f"Log stream for {msg.unit} stopped: {msg.error}", BannerLevel.ERROR, "logs")
        return []

    # -- control ---------------------------------------------------------------

    def _clear_matching(self, unit: str, action: ControlAction) -> None:
        pending = self.pending_confirmation
        if pending is not None and pending.matches(unit, action):
            self.pending_confirmation = None

    def _on_control_succeeded(self, msg: ControlSucceeded) -> list[Effect]:
        self._clear_matching(msg.unit, msg.action)
        self.banner = Banner(f"{msg.unit} {msg.action.past_tense}", BannerLevel.SUCCESS, "control")
        return [RefreshUnit(msg.unit)]

    def _on_control_failed(self, msg: ControlFailed) -> list[Effect]:
        self._clear_matching(msg.unit, msg.action)
        verb = msg.action.value
        effects: list[Effect] = []
        if msg.reason is ControlFailure.PERMISSION:
            text = (
                f"Permission denied: cannot {verb} {msg.unit}. "
                "Run as root or start a polkit agent."
            )
        elif msg.reason is ControlFailure.TIMEOUT:
            text = f"Timed out trying to {verb} {msg.unit}"
        elif msg.reason is ControlFailure.NOT_FOUND:
            text = f"Unit {msg.unit} not found"
            effects.extend(self._leave_logs())
            self.view = Dashboard()
            self.selected_index = 0
            self._recompute_visible()
            effects.append(RefreshUnit(msg.unit))
        elif msg.reason is ControlFailure.INVALID:
            text = f"Refusing to {verb} {msg.unit}: {msg.detail}"
        elif msg.reason is ControlFailure.ERROR:
            text = f"Failed to {verb} {msg.unit}: {msg.detail}"
        else:
            raise AssertionError(f"unhandled failure {msg.reason!r}")
        self.banner = Banner(text, BannerLevel.ERROR, "control")
        return effects

    # -- input -------------------------------------------------------------------

    def _on_quit(self, msg: QuitRequested) -> list[Effect]:
        self.quitting = True
        return self._leave_logs() + [Shutdown()]

    def _on_move_selection(self, msg: MoveSelection) -> list[Effect]:
        if isinstance(self.view, Dashboard) and self._visible:
            self.selected_index = min(max(self.selected_index + msg.delta, 0), len(self._visible) - 1)
        return []

    def _on_move_to_edge(self, msg: MoveToEdge) -> list[Effect]:
        if isinstance(self.view, Dashboard) and self._visible:
            self.selected_index = len(self._visible) - 1 if msg.bottom else 0
        elif isinstance(self.view, Logs):
            self.log_offset = self._max_log_offset() if not msg.bottom else 0
        return []

    def _on_open_detail(self, msg: OpenDetail) -> list[Effect]:
        name = self._selected_name()
        if isinstance(self.view, Dashboard) and name is not None:
            self.view = Detail(name)
        return []

    def _on_open_logs(self, msg: OpenLogs) -> list[Effect]:
        unit = self._target_unit()
        if unit is None or isinstance(self.view, Logs):
            return []
        self.log_window = None
        return self._start_stream(unit)

    def _on_go_back(self, msg: GoBack) -> list[Effect]:
        if isinstance(self.view, Logs):
            unit = self.view.unit
            effects = self._leave_logs()
            self.view = Detail(unit) if unit in self.registry else Dashboard()
            return effects
        if isinstance(self.view, Detail):
            self.view = Dashboard()
            return []
        if self.search_query:
            keep = self._selected_name()
            self.search_query = ""
            self._recompute_visible(keep)
        return []

    def _on_set_filter(self, msg: SetFilter) -> list[Effect]:
        keep = self._selected_name()
        self.filter = msg.filter
        self._recompute_visible(keep)
        return []

    def _on_begin_search(self, msg: BeginSearch) -> list[Effect]:
        if isinstance(self.view, Dashboard):
            keep = self._selected_name()
            self.searching = True
            self.search_query = ""
            self._recompute_visible(keep)
        return []

    def _on_search_input(self, msg: SearchInput) -> list[Effect]:
        if self.searching:
            keep = self._selected_name()
            self.search_query += msg.text
            self._recompute_visible(keep)
        return []

    def _on_search_backspace(self, msg: SearchBackspace) -> list[Effect]:
        if self.searching and self.search_query:
            keep = self._selected_name()
            self.search_query = self.search_query[:-1]
            self._recompute_visible(keep)
        return []

    def _on_submit_search(self, msg: SubmitSearch) -> list[Effect]:
        self.searching = False
        return []

    def _on_cancel_search(self, msg: CancelSearch) -> list[Effect]:
        keep = self._selected_name()
        self.searching = False
        self.search_query = ""
        self._recompute_visible(keep)
        return []

    def _on_request_control(self, msg: RequestControl) -> list[Effect]:
        if isinstance(self.view, Logs):
            return []
        unit = self._target_unit()
        if unit is None:
            self.banner = Banner("No unit selected", BannerLevel.WARNING, "control")
            return []
        pending = self.pending_confirmation
        if pending is not None and pending.confirmed:
            self.banner = Banner(
                f"Still waiting for {pending.action.value} {pending.unit}", BannerLevel.WARNING, "control"
            )
            return []
        self.pending_confirmation = PendingConfirmation(unit, msg.action)
        return []

    def _on_confirm_control(self, msg: ConfirmControl) -> list[Effect]:
        pending = self.pending_confirmation
        if pending is None or pending.confirmed:
            return []
        confirmed = replace(pending, confirmed=True)
        self.pending_confirmation = confirmed
        self.banner = Banner(f"{confirmed.action.gerund.capitalize()} {confirmed.unit}...", BannerLevel.INFO, "control")
        return [ExecuteControl(confirmed)]

    def _on_cancel_control(self, msg: CancelControl) -> list[Effect]:
        if self.awaiting_confirmation:
            self.pending_confirmation = None
        return []

    def _on_toggle_log_pause(self, msg: ToggleLogPause) -> list[Effect]:
        if not isinstance(self.view, Logs):
            return []
        self.log_paused = not self.log_paused
        if self.log_paused:
            return [PauseLogStream()]
        self.log_offset = 0
        return [ResumeLogStream()]

    def _on_clear_logs(self, msg: ClearLogs) -> list[Effect]:
        buffer = self.active_log_buffer()
        if buffer is None:
            return []
        buffer.clear()
        self.log_offset = 0
        return [DropHeldLogs()]

    def _on_cycle_priority(self, msg: CyclePriority) -> list[Effect]:
        if isinstance(self.view, Logs):
            i = PRIORITY_CYCLE.index(self.log_min_priority)
            self.log_min_priority = PRIORITY_CYCLE[(i + 1) % len(PRIORITY_CYCLE)]
            self.log_offset = 0
        return []

    def _on_set_log_window(self, msg: SetLogWindow) -> list[Effect]:
        if not isinstance(self.view, Logs):
            return []
        window = LOG_WINDOWS.get(msg.key) if msg.key else None
        if window is not None and window == self.log_window:
            window = None
        self.log_window = window
        return self._start_stream(self.view.unit)

    def _on_scroll_logs(self, msg: ScrollLogs) -> list[Effect]:
        if isinstance(self.view, Logs):
            self.log_offset = min(max(self.log_offset + msg.delta, 0), self._max_log_offset())
        return []

    def _on_toggle_help(self, msg: ToggleHelp) -> list[Effect]:
        self.show_help = not self.show_help
        return []
