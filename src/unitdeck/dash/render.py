"""Pure rendering of a StateSnapshot into rich renderables.

Nothing here touches AppState; the app hands over a snapshot taken after a
message was fully applied. The unit table and the log pane are Textual
widgets; this module supplies their cells and lines.
"""

from __future__ import annotations

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..models import (
    ActiveState,
    BannerLevel,
    Connectivity,
    Dashboard,
    Detail,
    LogEntry,
    Logs,
    Priority,
    ServiceUnit,
    format_bytes,
    format_seconds,
)
from ..state import StateSnapshot

_CONNECTIVITY_STYLE = {
    Connectivity.CONNECTED: ("●", "green"),
    Connectivity.DEGRADED: ("◐", "yellow"),
    Connectivity.DISCONNECTED: ("○", "red"),
}

_ACTIVE_STYLE = {
    ActiveState.ACTIVE: "green",
    ActiveState.RELOADING: "cyan",
    ActiveState.REFRESHING: "cyan",
    ActiveState.ACTIVATING: "yellow",
    ActiveState.DEACTIVATING: "yellow",
    ActiveState.FAILED: "bold red",
    ActiveState.INACTIVE: "dim",
}

_BANNER_STYLE = {
    BannerLevel.INFO: "cyan",
    BannerLevel.SUCCESS: "green",
    BannerLevel.WARNING: "yellow",
    BannerLevel.ERROR: "bold red",
}

_PRIORITY_STYLE = {
    Priority.EMERG: "bold white on red",
    Priority.ALERT: "bold red",
    Priority.CRIT: "bold red",
    Priority.ERR: "red",
    Priority.WARNING: "yellow",
    Priority.NOTICE: "cyan",
    Priority.INFO: "",
    Priority.DEBUG: "dim",
}

HELP = (
    ("Dashboard", (
        ("↑/↓ j/k", "move selection"),
        ("g/G Home/End", "jump to top / bottom"),
        ("Enter", "unit details"),
        ("l", "follow logs"),
        ("/", "search (Enter keeps, Esc clears)"),
        ("a r s f", "filter: all / running / stopped / failed"),
        ("S T R", "start / stop / restart (asks to confirm)"),
        ("L E D", "reload / enable / disable (asks to confirm)"),
    )),
    ("Logs", (
        ("space t", "pause / follow"),
        ("c", "clear"),
        ("p", "cycle minimum priority"),
        ("1 2 7 0", "last hour / 24h / 7 days / tail"),
        ("↑/↓ PgUp/PgDn", "scroll"),
        ("Esc", "back"),
    )),
    ("Anywhere", (
        ("F5 ctrl+r", "poll now"),
        ("?", "toggle this help"),
        ("q", "quit"),
    )),
)

_FOOTER = {
    Dashboard: "Enter details  l logs  / search  a/r/s/f filter  S/T/R/L/E/D control  ? help  q quit",
    Detail: "l logs  S/T/R/L/E/D control  Esc back  ? help  q quit",
    Logs: "space pause  c clear  p priority  1/2/7/0 window  Esc back  ? help",
}


def state_text(unit: ServiceUnit) -> Text:
    return Text(unit.active_state.value, style=_ACTIVE_STYLE.get(unit.active_state, ""))


def render_header(snap: StateSnapshot) -> Text:
    dot, style = _CONNECTIVITY_STYLE[snap.connectivity]
    c = snap.counts
    text = Text()
    text.append("unitdeck ", style="bold")
    text.append(f"{dot} {snap.connectivity.value.capitalize()}", style=style)
    text.append(
        f"  Total {c.total}  Running {c.running}  Stopped {c.stopped}  Failed {c.failed}  Showing {c.showing}"
    )
    text.append(f"  Filter: {snap.filter.label}", style="bold")
    if snap.searching or snap.search_query:
        cursor = "▏" if snap.searching else ""
        text.append(f"  Search: {snap.search_query}{cursor}", style="magenta")
    return text


UNIT_COLUMNS = ("Unit", "Load", "Active", "Sub", "PID", "Memory", "Description")


def unit_row(unit: ServiceUnit) -> tuple:
    """Cells for one dashboard table row, in UNIT_COLUMNS order."""
    return (
        unit.name,
        unit.load_state.value,
        state_text(unit),
        unit.sub_state.value,
        str(unit.pid) if unit.pid else "-",
        format_bytes(unit.memory_bytes),
        unit.description,
    )


def render_empty(snap: StateSnapshot) -> Text:
    if snap.search_query or snap.counts.total:
        return Text("No units match", style="dim")
    return Text("Waiting for the service manager...", style="dim")


def _dependency_lines(title: str, deps) -> list[Text]:
    lines = [Text(title, style="bold")]
    if not deps:
        lines.append(Text("  (none)", style="dim"))
    for name, unit in deps:
        line = Text(f"  {name} ")
        if unit is None:
            line.append("(not loaded)", style="dim")
        else:
            line.append(f"({unit.active_state.value}/{unit.sub_state.value})", style=_ACTIVE_STYLE.get(unit.active_state, ""))
        lines.append(line)
    return lines


def render_detail(snap: StateSnapshot) -> RenderableType:
    unit = snap.detail
    if unit is None:
        name = snap.view.unit if isinstance(snap.view, Detail) else "?"
        return Text(f"{name} is not known to the service manager", style="dim")

    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="bold", no_wrap=True)
    grid.add_column()
    grid.add_row("Unit", unit.name)
    grid.add_row("Description", unit.description or "-")
    grid.add_row("Load", unit.load_state.value)
    grid.add_row("Active", Text.assemble(state_text(unit), f" ({unit.sub_state.value})"))
    grid.add_row("PID", str(unit.pid) if unit.pid else "-")
    grid.add_row("Memory", format_bytes(unit.memory_bytes))
    grid.add_row("Tasks", "-" if unit.task_count is None else str(unit.task_count))
    grid.add_row("CPU time", format_seconds(unit.cpu_time))
    grid.add_row("Restarts", str(unit.restart_count))

    return Group(
        grid,
        Text(""),
        *_dependency_lines("Wants", snap.wants),
        *_dependency_lines("After", snap.after),
    )


def log_line(entry: LogEntry) -> Text:
    text = Text()
    text.append(entry.timestamp.astimezone().strftime("%b %d %H:%M:%S "), style="dim")
    text.append(f"{entry.priority.label:<7} ", style=_PRIORITY_STYLE.get(entry.priority, ""))
    text.append(entry.message, style=_PRIORITY_STYLE.get(entry.priority, ""))
    return text


def render_log_status(snap: StateSnapshot) -> Text:
    status = Text()
    status.append(f"{snap.log_unit or '?'}  ", style="bold")
    if snap.log_paused:
        status.append("PAUSED", style="bold yellow")
    else:
        status.append("following", style="green")
    level = snap.log_min_priority.label if snap.log_min_priority is not None else "all"
    window = snap.log_window.label if snap.log_window else "tail"
    status.append(f"  priority: {level}  window: {window}  lines: {snap.log_total}/{snap.log_capacity}")
    if snap.log_offset:
        status.append(f"  scrolled back {snap.log_offset}", style="cyan")
    return status


def log_lines(snap: StateSnapshot, max_rows: int = 30) -> list[Text]:
    """The last ``max_rows`` filtered lines above the scroll offset."""
    entries = snap.log_entries
    end = max(len(entries) - snap.log_offset, 0)
    start = max(end - max_rows, 0)
    lines = [log_line(e) for e in entries[start:end]]
    return lines or [Text("No log lines yet", style="dim")]


def render_help() -> RenderableType:
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", no_wrap=True)
    table.add_column()
    for section, keys in HELP:
        table.add_row(Text(section, style="bold underline"), "")
        for key, what in keys:
            table.add_row(key, what)
        table.add_row("", "")
    return Panel(table, title="Keys", subtitle="any key closes", expand=False)


def render_banner(snap: StateSnapshot) -> Text | None:
    pending = snap.pending_confirmation
    if pending is not None and not pending.confirmed:
        return Text(
            f"{pending.action.value.capitalize()} {pending.unit}? [y/Enter confirms, any other key cancels]",
            style="bold yellow",
        )
    if snap.banner is None:
        return None
    return Text(snap.banner.text, style=_BANNER_STYLE[snap.banner.level])


def render_footer(snap: StateSnapshot) -> Text:
    return Text(_FOOTER[type(snap.view)], style="dim")
