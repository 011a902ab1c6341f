from __future__ import annotations

import asyncio
from contextlib import suppress
from pathlib import Path

from textual import events
from textual.app import App, ComposeResult
from textual.widget import Widget
from textual.widgets import DataTable, RichLog, Static

from ..capabilities import Backend
from ..config import Settings
from ..engine import Engine, open_backend
from ..errors import StartupError
from ..models import Detail, Logs, ServiceUnit
from ..observability import get_logger, log_event
from ..state import StateSnapshot
from .keymap import KeyPress, dispatch
from .render import (
    UNIT_COLUMNS,
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

log = get_logger("unitdeck.dash")


class UnitDeckApp(App):
    """Terminal front end: forwards keys to the engine and redraws on change."""

    CSS_PATH = Path(__file__).with_name("app.tcss")

    def __init__(self, settings: Settings, backend: Backend | None = None) -> None:
        super().__init__()
        self.settings = settings
        self._backend = backend
        self.engine: Engine | None = None
        self._engine_task: asyncio.Task | None = None
        self._rendered = -1
        self.startup_error: str | None = None
        self._rows: tuple[ServiceUnit, ...] = ()

    def compose(self) -> ComposeResult:
        yield Static("", id="header")
        yield Static("", id="banner")
        # keys go to on_key, never to the widgets themselves
        self.table = DataTable(zebra_stripes=True, cursor_type="row", id="units")
        self.table.add_columns(*UNIT_COLUMNS)
        self.table.can_focus = False
        yield self.table
        self.log_widget = RichLog(highlight=False, markup=False, wrap=False, id="logs")
        self.log_widget.can_focus = False
        yield self.log_widget
        yield Static("", id="body")
        yield Static("", id="footer")

    async def on_mount(self) -> None:
        self.title = "unitdeck"
        self.query_one("#body", Static).update("Connecting to the service manager...")
        try:
            backend = self._backend or await open_backend(self.settings)
        except StartupError as exc:
            self.startup_error = str(exc)
            log_event(log, "startup_failed", error=str(exc))
            self.exit(return_code=1, message=str(exc))
            return
        self.engine = Engine(backend, self.settings, on_shutdown=self.exit)
        self._engine_task = asyncio.create_task(self.engine.run(), name="engine")
        self.set_interval(self.settings.render_interval, self._refresh_view)

    async def on_unmount(self) -> None:
        if self._engine_task is not None and not self._engine_task.done():
            self._engine_task.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await self._engine_task
        if self.engine is not None:
            await self.engine.stop()

    def on_key(self, event: events.Key) -> None:
        if self.engine is None:
            return
        event.stop()
        event.prevent_default()
        msg = dispatch(KeyPress(event.key, event.character), self.engine.state)
        self.engine.post(msg)

    def on_resize(self, event: events.Resize) -> None:
        # the log window depends on the pane height
        self._rendered = -1

    def _refresh_view(self) -> None:
        if self.engine is None or self.engine.version == self._rendered:
            return
        snap = self.engine.state.snapshot()
        self.query_one("#header", Static).update(render_header(snap))
        banner = render_banner(snap)
        banner_widget = self.query_one("#banner", Static)
        banner_widget.update(banner if banner is not None else "")
        banner_widget.display = banner is not None
        self._show_body(snap)
        self.query_one("#footer", Static).update(render_footer(snap))
        self._rendered = snap.version

    def _show_body(self, snap: StateSnapshot) -> None:
        body = self.query_one("#body", Static)
        pane: Widget = body
        if snap.show_help:
            body.update(render_help())
        elif isinstance(snap.view, Detail):
            body.update(render_detail(snap))
        elif isinstance(snap.view, Logs):
            pane = self.log_widget
            self._fill_log(snap)
        elif snap.units:
            pane = self.table
            self._sync_table(snap)
        else:
            body.update(render_empty(snap))
        for widget in (body, self.table, self.log_widget):
            widget.display = widget is pane

    def _sync_table(self, snap: StateSnapshot) -> None:
        if snap.units != self._rows:
            self.table.clear(columns=False)
            for unit in snap.units:
                self.table.add_row(*unit_row(unit))
            self._rows = snap.units
        self.table.move_cursor(row=snap.selected_index)

    def _fill_log(self, snap: StateSnapshot) -> None:
        rows = max(self.log_widget.size.height - 2, 5)
        self.log_widget.clear()
        self.log_widget.write(render_log_status(snap))
        for line in log_lines(snap, rows):
            self.log_widget.write(line)


def run_dash(settings: Settings) -> int:
    app = UnitDeckApp(settings)
    app.run()
    return app.return_code or 0
