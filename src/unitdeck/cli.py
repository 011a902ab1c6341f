import asyncio
import shutil
import subprocess
from pathlib import Path
from typing import Optional

import typer

from . import __version__
from .config import Settings, load_settings
from .errors import BusConnectionError, ConfigError, UnitNotFoundError
from .journal import JournalReader
from .models import format_bytes, format_seconds
from .observability import configure_logging, get_logger, log_event
from .systemd_bus import SystemdClient


log = get_logger("unitdeck.cli")

app = typer.Typer(
    name="unitdeck",
    add_completion=False,
    help=(
        "Live terminal dashboard for systemd services.\n\n"
        "Usage:\n"
        "  unitdeck [opts]            Open the dashboard\n"
        "  unitdeck ps                List services (tab-separated)\n"
        "  unitdeck status <unit>     Show one service\n"
        "  unitdeck doctor            Check the bus and journalctl\n\n"
        "Press ? inside the dashboard for keys."
    ),
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _unit_name(name: str) -> str:
    return name if name.endswith(".service") else f"{name}.service"


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        help="Show version and exit",
        is_eager=True,
    ),
    poll_interval: Optional[float] = typer.Option(
        None, "--poll-interval", help="Seconds between service polls [default: 5]", show_default=False
    ),
    log_capacity: Optional[int] = typer.Option(
        None, "--log-capacity", help="Log lines kept for the followed unit [default: 2000]", show_default=False
    ),
    user: bool = typer.Option(False, "--user", help="Use the user service manager (session bus)"),
    debug: bool = typer.Option(False, "--debug", help="Write debug records to the log file"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Where to write the JSON log", show_default=False),
):
    if version:
        typer.echo(__version__)
        raise typer.Exit()

    try:
        settings = load_settings(
            {
                "poll_interval": poll_interval,
                "log_capacity": log_capacity,
                "user_scope": user or None,
                "log_level": "DEBUG" if debug else None,
                "log_file": log_file,
            }
        )
    except ConfigError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=2)

    configure_logging(settings.log_level, settings.log_file)
    ctx.obj = settings

    if ctx.invoked_subcommand is None:
        # Lazy import to avoid importing Textual for the plain subcommands
        from .dash.app import run_dash

        log_event(log, "dashboard_start", scope="user" if settings.user_scope else "system")
        code = run_dash(settings)
        raise typer.Exit(code=code)


@app.command("ps")
def ps(ctx: typer.Context):
    """List services. Prints: name\tactive\tsub\tpid"""
    settings: Settings = ctx.obj

    async def _ps():
        client = SystemdClient(user=settings.user_scope)
        try:
            units = await client.list_units()
        except BusConnectionError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=1)
        finally:
            await client.close()
        for u in units:
            typer.echo(f"{u.name}\t{u.active_state.value}\t{u.sub_state.value}\t{u.pid or 0}")

    asyncio.run(_ps())


@app.command()
def status(ctx: typer.Context, name: str):
    """Show detailed status for a unit (the .service suffix is optional)."""
    settings: Settings = ctx.obj
    unit_name = _unit_name(name)

    async def _status():
        client = SystemdClient(user=settings.user_scope)
        try:
            u = await client.get_unit(unit_name)
        except (UnitNotFoundError, BusConnectionError) as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=1)
        finally:
            await client.close()
        typer.echo(f"name: {u.name}")
        typer.echo(f"description: {u.description}")
        typer.echo(f"state: {u.active_state.value} ({u.sub_state.value})")
        typer.echo(f"load: {u.load_state.value}")
        typer.echo(f"pid: {u.pid or 0}")
        typer.echo(f"memory: {format_bytes(u.memory_bytes)}")
        typer.echo(f"tasks: {'-' if u.task_count is None else u.task_count}")
        typer.echo(f"cpu: {format_seconds(u.cpu_time)}")
        typer.echo(f"restarts: {u.restart_count}")
        if u.wants:
            typer.echo(f"wants: {' '.join(u.wants)}")
        if u.after:
            typer.echo(f"after: {' '.join(u.after)}")

    asyncio.run(_status())


@app.command()
def doctor(ctx: typer.Context):
    """Diagnose the service-manager bus and journalctl."""
    settings: Settings = ctx.obj
    scope = "user" if settings.user_scope else "system"

    async def _doctor():
        client = SystemdClient(user=settings.user_scope)
        try:
            units = await client.list_units()
            return True, len(units), ""
        except BusConnectionError as e:
            return False, 0, str(e)
        finally:
            await client.close()

    ok_bus, count, bus_error = asyncio.run(_doctor())

    reader = JournalReader(user=settings.user_scope)
    ok_journal = False
    if shutil.which(reader.journalctl):
        cmd = [reader.journalctl] + (["--user"] if settings.user_scope else []) + ["-n", "1", "-q", "--no-pager"]
        r = subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        ok_journal = r.returncode == 0

    if ok_bus:
        typer.echo(f"{scope} D-Bus: ok ({count} services)")
    else:
        typer.echo(f"{scope} D-Bus: FAIL {bus_error}")
    typer.echo(f"journalctl{' --user' if settings.user_scope else ''}: {'ok' if ok_journal else 'FAIL'}")
    typer.echo(f"log file: {settings.log_file}")
    if not ok_bus:
        raise typer.Exit(code=1)


def main() -> None:
    app()
