import pytest
from dbus_next import Variant
from dbus_next.constants import MessageFlag
from dbus_next.errors import DBusError

from unitdeck.errors import AccessDeniedError, BusConnectionError, ControlTimeoutError, UnitdeckError, UnitNotFoundError
from unitdeck.models import ActiveState, ControlAction, LoadState, SubState
from unitdeck.systemd_bus import UINT64_MAX, SystemdClient, translate_error, unit_from_properties


def test_unit_from_properties():
    unit_props = {
        "LoadState": Variant("s", "loaded"),
        "ActiveState": Variant("s", "active"),
        "SubState": Variant("s", "running"),
        "Description": Variant("s", "A web server"),
        "Wants": Variant("as", ["network-online.target"]),
        "After": Variant("as", ["network.target", "syslog.target"]),
    }
    service_props = {
        "MainPID": 1234,
        "MemoryCurrent": 47_395_635,
        "TasksCurrent": 3,
        "CPUUsageNSec": 2_500_000_000,
        "NRestarts": 2,
    }
    unit = unit_from_properties("nginx.service", unit_props, service_props)
    assert unit.load_state is LoadState.LOADED
    assert unit.active_state is ActiveState.ACTIVE
    assert unit.sub_state is SubState.RUNNING
    assert unit.description == "A web server"
    assert unit.pid == 1234
    assert unit.memory_bytes == 47_395_635
    assert unit.task_count == 3
    assert unit.cpu_time == 2.5
    assert unit.restart_count == 2
    assert unit.wants == ("network-online.target",)
    assert unit.after == ("network.target", "syslog.target")


def test_unavailable_counters_become_none():
    unit = unit_from_properties(
        "oneshot.service",
        {"ActiveState": "inactive", "SubState": "dead"},
        {"MainPID": 0, "MemoryCurrent": UINT64_MAX, "TasksCurrent": UINT64_MAX, "CPUUsageNSec": UINT64_MAX},
    )
    assert unit.pid is None
    assert unit.memory_bytes is None
    assert unit.task_count is None
    assert unit.cpu_time is None
    assert unit.restart_count == 0
    assert unit.load_state is LoadState.UNKNOWN


@pytest.mark.parametrize(
    "name,expected",
    [
        ("org.freedesktop.DBus.Error.AccessDenied", AccessDeniedError),
        ("org.freedesktop.DBus.Error.InteractiveAuthorizationRequired", AccessDeniedError),
        ("org.freedesktop.systemd1.NoSuchUnit", UnitNotFoundError),
        ("org.freedesktop.DBus.Error.NoReply", ControlTimeoutError),
        ("org.freedesktop.DBus.Error.ServiceUnknown", BusConnectionError),
        ("org.freedesktop.systemd1.JobTypeNotApplicable", UnitdeckError),
    ],
)
def test_translate_error(name, expected):
    err = translate_error(DBusError(name, "some text"), unit="x.service")
    assert type(err) is expected


def test_not_found_keeps_unit():
    err = translate_error(DBusError("org.freedesktop.systemd1.NoSuchUnit", "Unit x.service not loaded."), unit="x.service")
    assert err.unit == "x.service"
    assert isinstance(err, LookupError)


def test_client_scope():
    assert SystemdClient().scope == "system"
    assert SystemdClient(user=True).scope == "user"


@pytest.mark.asyncio
async def test_list_units_wraps_connect_failure(monkeypatch):
    import unitdeck.systemd_bus as mod

    async def boom(user=False):
        raise OSError("No such file or directory")

    monkeypatch.setattr(mod, "connect_bus", boom)
    client = SystemdClient()
    with pytest.raises(BusConnectionError):
        await client.list_units()
    with pytest.raises(BusConnectionError):
        await client.connect()


class FakeManager:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def __getattr__(self, method):
        async def call(*args, flags=None):
            self.calls.append((method, args, flags))
            if self.error is not None:
                raise self.error

        return call


def client_with(monkeypatch, mgr):
    client = SystemdClient()

    async def ensure():
        return None, mgr

    monkeypatch.setattr(client, "_ensure", ensure)
    return client


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "action,expected",
    [
        (ControlAction.START, [("call_start_unit", ("a.service", "replace"))]),
        (ControlAction.RELOAD, [("call_reload_unit", ("a.service", "replace"))]),
        (
            ControlAction.ENABLE,
            [("call_enable_unit_files", (["a.service"], False, True)), ("call_reload", ())],
        ),
        (
            ControlAction.DISABLE,
            [("call_disable_unit_files", (["a.service"], False)), ("call_reload", ())],
        ),
    ],
)
async def test_apply_calls_manager(monkeypatch, action, expected):
    mgr = FakeManager()
    client = client_with(monkeypatch, mgr)
    await client.apply("a.service", action)
    assert [(m, a) for m, a, _ in mgr.calls] == expected
    assert all(flags is MessageFlag.ALLOW_INTERACTIVE_AUTHORIZATION for _, _, flags in mgr.calls)


@pytest.mark.asyncio
async def test_apply_translates_dbus_errors(monkeypatch):
    mgr = FakeManager(error=DBusError("org.freedesktop.DBus.Error.AccessDenied", "nope"))
    client = client_with(monkeypatch, mgr)
    with pytest.raises(AccessDeniedError):
        await client.apply("a.service", ControlAction.ENABLE)
    # no daemon reload after a refused enable
    assert [m for m, _, _ in mgr.calls] == ["call_enable_unit_files"]


def test_drop_tolerates_broken_bus():
    class BrokenBus:
        def disconnect(self):
            raise RuntimeError("transport already closed")

    client = SystemdClient()
    client._bus = BrokenBus()
    client._manager = object()
    client._drop()
    assert client._bus is None
    assert client._manager is None
