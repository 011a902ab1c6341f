from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import Any, Mapping, Optional

from dbus_next import BusType, Message, MessageType, Variant
from dbus_next.aio import MessageBus
from dbus_next.constants import MessageFlag
from dbus_next.errors import DBusError

from .errors import (
    AccessDeniedError,
    BusConnectionError,
    ControlTimeoutError,
    UnitdeckError,
    UnitNotFoundError,
)
from .models import ActiveState, ControlAction, LoadState, ServiceUnit, SubState
from .observability import get_logger


SYSTEMD_DEST = "org.freedesktop.systemd1"
SYSTEMD_PATH = "/org/freedesktop/systemd1"
IFACE_MANAGER = "org.freedesktop.systemd1.Manager"
IFACE_PROPERTIES = "org.freedesktop.DBus.Properties"
IFACE_UNIT = "org.freedesktop.systemd1.Unit"
IFACE_SERVICE = "org.freedesktop.systemd1.Service"

# systemd reports "not available" counters as UINT64_MAX
UINT64_MAX = 2**64 - 1

_ACCESS_DENIED = {
    "org.freedesktop.DBus.Error.AccessDenied",
    "org.freedesktop.DBus.Error.InteractiveAuthorizationRequired",
    "org.freedesktop.DBus.Error.AuthFailed",
}
_NOT_FOUND = {
    "org.freedesktop.systemd1.NoSuchUnit",
    "org.freedesktop.systemd1.LoadFailed",
    "org.freedesktop.DBus.Error.UnknownObject",
}
_TIMEOUT = {
    "org.freedesktop.DBus.Error.NoReply",
    "org.freedesktop.DBus.Error.Timeout",
    "org.freedesktop.DBus.Error.TimedOut",
}
_UNREACHABLE = {
    "org.freedesktop.DBus.Error.ServiceUnknown",
    "org.freedesktop.DBus.Error.Disconnected",
    "org.freedesktop.DBus.Error.NameHasNoOwner",
}

_JOB_METHODS = {
    ControlAction.START: "call_start_unit",
    ControlAction.STOP: "call_stop_unit",
    ControlAction.RESTART: "call_restart_unit",
    ControlAction.RELOAD: "call_reload_unit",
}

log = get_logger("unitdeck.systemd")


def translate_error(exc: DBusError, unit: str | None = None) -> UnitdeckError:
    """Map a D-Bus error name onto the unitdeck taxonomy."""
    name = exc.type or ""
    text = exc.text or name
    if name in _ACCESS_DENIED:
        return AccessDeniedError(text)
    if name in _NOT_FOUND:
        return UnitNotFoundError(unit or "?", text)
    if name in _TIMEOUT:
        return ControlTimeoutError(text)
    if name in _UNREACHABLE:
        return BusConnectionError(text)
    return UnitdeckError(f"{name}: {text}")


def _val(v: Any) -> Any:
    return v.value if isinstance(v, Variant) else v


def _counter(value: Any) -> int | None:
    try:
        n = int(_val(value))
    except (TypeError, ValueError):
        return None
    return None if n == UINT64_MAX else n


def unit_from_properties(
    name: str,
    unit_props: Mapping[str, Any],
    service_props: Mapping[str, Any] | None = None,
) -> ServiceUnit:
    """Build a ServiceUnit from ``GetAll`` results of the Unit/Service interfaces."""
    service_props = service_props or {}
    pid = _counter(service_props.get("MainPID"))
    cpu_nsec = _counter(service_props.get("CPUUsageNSec"))
    return ServiceUnit(
        name=name,
        load_state=LoadState(_val(unit_props.get("LoadState", "unknown"))),
        active_state=ActiveState(_val(unit_props.get("ActiveState", "unknown"))),
        sub_state=SubState(_val(unit_props.get("SubState", "unknown"))),
        description=str(_val(unit_props.get("Description", "")) or ""),
        pid=pid or None,
        memory_bytes=_counter(service_props.get("MemoryCurrent")),
        task_count=_counter(service_props.get("TasksCurrent")),
        cpu_time=None if cpu_nsec is None else cpu_nsec / 1e9,
        restart_count=_counter(service_props.get("NRestarts")) or 0,
        wants=tuple(_val(unit_props.get("Wants", [])) or ()),
        after=tuple(_val(unit_props.get("After", [])) or ()),
    )


async def connect_bus(user: bool = False) -> MessageBus:
    bus_type = BusType.SESSION if user else BusType.SYSTEM
    bus = await MessageBus(bus_type=bus_type).connect()
    return bus


async def get_manager(bus: MessageBus):
    intro = await bus.introspect(SYSTEMD_DEST, SYSTEMD_PATH)
    obj = bus.get_proxy_object(SYSTEMD_DEST, SYSTEMD_PATH, intro)
    return obj.get_interface(IFACE_MANAGER)


async def get_all_properties(bus: MessageBus, path: str, interface: str) -> dict[str, Any]:
    """Fetch every property of one interface without introspecting the object."""
    reply = await bus.call(
        Message(
            destination=SYSTEMD_DEST,
            path=path,
            interface=IFACE_PROPERTIES,
            member="GetAll",
            signature="s",
            body=[interface],
        )
    )
    if reply.message_type == MessageType.ERROR:
        text = reply.body[0] if reply.body else ""
        raise DBusError(reply.error_name, text, reply)
    return {k: _val(v) for k, v in reply.body[0].items()}


class SystemdClient:
    """Service-query and control capability backed by the systemd D-Bus API.

    The bus is reconnected lazily after a disconnect so the poller's retries
    recover once the manager is reachable again.
    """

    def __init__(self, user: bool = False, query_timeout: float = 10.0, concurrency: int = 16) -> None:
        self.user = user
        self.query_timeout = query_timeout
        self._sem = asyncio.Semaphore(concurrency)
        self._bus: Optional[MessageBus] = None
        self._manager = None

    @property
    def scope(self) -> str:
        return "user" if self.user else "system"

    async def connect(self) -> "SystemdClient":
        await self._ensure()
        return self

    async def close(self) -> None:
        if self._bus is not None:
            self._bus.disconnect()
        self._bus = None
        self._manager = None

    async def _ensure(self):
        if self._bus is not None and self._bus.connected and self._manager is not None:
            return self._bus, self._manager
        self._bus = None
        self._manager = None
        try:
            bus = await connect_bus(self.user)
            manager = await get_manager(bus)
        except DBusError as exc:
            raise BusConnectionError(f"{self.scope} bus: {exc.text or exc.type}") from exc
        except (OSError, EOFError, ValueError) as exc:
            raise BusConnectionError(f"{self.scope} bus unreachable: {exc}") from exc
        self._bus, self._manager = bus, manager
        log.info("connected to %s bus", self.scope)
        return bus, manager

    def _drop(self) -> None:
        if self._bus is not None:
            # the bus may already be half torn down
            with suppress(Exception):
                self._bus.disconnect()
        self._bus = None
        self._manager = None

    async def _unit_snapshot(self, bus: MessageBus, name: str, path: str) -> ServiceUnit:
        async with self._sem:
            unit_props = await get_all_properties(bus, path, IFACE_UNIT)
            try:
                service_props = await get_all_properties(bus, path, IFACE_SERVICE)
            except DBusError:
                # not every unit exposes the Service interface
                service_props = {}
        return unit_from_properties(name, unit_props, service_props)

    async def _list(self) -> list[ServiceUnit]:
        bus, mgr = await self._ensure()
        rows = await mgr.call_list_units_by_patterns([], ["*.service"])
        # name, description, load_state, active_state, sub_state, following, unit_path, ...
        snapshots = await asyncio.gather(
            *(self._unit_snapshot(bus, row[0], row[6]) for row in rows),
            return_exceptions=True,
        )
        units: list[ServiceUnit] = []
        for row, snap in zip(rows, snapshots):
            if isinstance(snap, ServiceUnit):
                units.append(snap)
                continue
            if isinstance(snap, (asyncio.CancelledError, KeyboardInterrupt)):
                raise snap
            # Unit vanished between ListUnits and GetAll; fall back to the list row
            units.append(
                ServiceUnit(
                    name=row[0],
                    description=row[1],
                    load_state=LoadState(row[2]),
                    active_state=ActiveState(row[3]),
                    sub_state=SubState(row[4]),
                )
            )
        return units

    async def list_units(self) -> list[ServiceUnit]:
        try:
            return await asyncio.wait_for(self._list(), self.query_timeout)
        except asyncio.TimeoutError as exc:
            self._drop()
            raise BusConnectionError(f"ListUnits timed out after {self.query_timeout:.0f}s") from exc
        except DBusError as exc:
            err = translate_error(exc)
            if isinstance(err, BusConnectionError):
                self._drop()
            raise BusConnectionError(str(err)) from exc
        except BusConnectionError:
            raise
        except Exception as exc:
            self._drop()
            raise BusConnectionError(f"{self.scope} bus error: {exc}") from exc

    async def get_unit(self, name: str) -> ServiceUnit:
        bus, mgr = await self._ensure()
        try:
            path = await mgr.call_get_unit(name)
            return await self._unit_snapshot(bus, name, path)
        except DBusError as exc:
            err = translate_error(exc, unit=name)
            if isinstance(err, UnitNotFoundError):
                raise err from exc
            raise BusConnectionError(str(err)) from exc

    async def apply(self, unit: str, action: ControlAction) -> None:
        _bus, mgr = await self._ensure()
        log.info("dispatching %s for %s", action.value, unit)
        # polkit may prompt for credentials
        flags = MessageFlag.ALLOW_INTERACTIVE_AUTHORIZATION
        try:
            if action is ControlAction.ENABLE:
                await mgr.call_enable_unit_files([unit], False, True, flags=flags)
            elif action is ControlAction.DISABLE:
                await mgr.call_disable_unit_files([unit], False, flags=flags)
            else:
                await getattr(mgr, _JOB_METHODS[action])(unit, "replace", flags=flags)
            if action.touches_unit_file:
                # the manager only sees new install links after a daemon reload
                await mgr.call_reload(flags=flags)
        except DBusError as exc:
            raise translate_error(exc, unit=unit) from exc
