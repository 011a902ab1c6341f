from rich.console import Console

from conftest import make_entry, make_unit

from unitdeck.dash.render import (
    log_lines,
    render_banner,
    render_detail,
    render_empty,
    render_footer,
    render_header,
    render_help,
    render_log_status,
    unit_row,
)
from unitdeck.messages import (
    BeginSearch,
    LogAppended,
    OpenDetail,
    OpenLogs,
    PollFailed,
    RegistryUpdated,
    RequestControl,
    ScrollLogs,
    SearchInput,
    ToggleLogPause,
)
from unitdeck.models import ControlAction, Priority
from unitdeck.registry import compute_diff
from unitdeck.state import AppState


def text_of(renderable, width=160):
    console = Console(record=True, width=width, color_system=None)
    console.print(renderable)
    return console.export_text()


def populated():
    st = AppState()
    st.apply(
        RegistryUpdated(
            compute_diff(
                {},
                [
                    make_unit("nginx.service", description="web", pid=42, memory_bytes=2048, wants=("db.service",)),
                    make_unit("db.service", active="failed", sub="failed", description="database"),
                ],
            )
        )
    )
    return st


def test_header_counts_and_unit_rows():
    snap = populated().snapshot()
    out = text_of(render_header(snap))
    assert "Connected" in out
    assert "Total 2" in out
    assert "Failed 1" in out

    row = unit_row(snap.units[0])
    assert row[0] == "nginx.service"
    assert row[2].plain == "active"
    assert row[4] == "42"
    assert row[5] == "2.0 KiB"
    assert unit_row(snap.units[1])[4] == "-"


def test_empty_states():
    assert "Waiting" in render_empty(AppState().snapshot()).plain

    st = populated()
    st.apply(BeginSearch())
    st.apply(SearchInput("zzz"))
    snap = st.snapshot()
    assert "Search: zzz" in text_of(render_header(snap))
    assert render_empty(snap).plain == "No units match"


def test_detail_shows_resolved_dependencies():
    st = populated()
    st.apply(OpenDetail())
    out = text_of(render_detail(st.snapshot()))
    assert "Wants" in out
    assert "db.service (failed/failed)" in out
    assert "Restarts" in out


def test_logs_status_and_lines():
    st = populated()
    st.apply(OpenLogs())
    assert [t.plain for t in log_lines(st.snapshot())] == ["No log lines yet"]

    for i in range(3):
        st.apply(LogAppended("nginx.service", st.log_generation, make_entry(f"line{i}", Priority.NOTICE)))
    st.apply(ToggleLogPause())
    snap = st.snapshot()
    status = render_log_status(snap).plain
    assert "PAUSED" in status
    assert "lines: 3/" in status
    assert [t.plain.split()[-1] for t in log_lines(snap, max_rows=2)] == ["line1", "line2"]

    st.apply(ScrollLogs(1))
    snap = st.snapshot()
    assert "scrolled back 1" in render_log_status(snap).plain
    assert [t.plain.split()[-1] for t in log_lines(snap)] == ["line0", "line1"]


def test_confirmation_prompt_and_connectivity_banner():
    st = populated()
    st.apply(RequestControl(ControlAction.STOP))
    assert "Stop nginx.service?" in render_banner(st.snapshot()).plain

    st = populated()
    st.apply(RequestControl(ControlAction.DISABLE))
    assert "Disable nginx.service?" in render_banner(st.snapshot()).plain

    st = populated()
    st.apply(PollFailed("no bus", 1, 5.0))
    snap = st.snapshot()
    assert "Degraded" in text_of(render_header(snap))
    assert "no bus" in render_banner(snap).plain


def test_help_and_footer():
    out = text_of(render_help())
    assert "Keys" in out
    assert "start / stop / restart" in out
    assert "reload / enable / disable" in out
    assert "S/T/R/L/E/D" in render_footer(populated().snapshot()).plain
