import asyncio
from datetime import datetime, timezone

import pytest

from unitdeck.config import Settings
from unitdeck.errors import UnitNotFoundError
from unitdeck.models import ActiveState, LoadState, LogEntry, Priority, ServiceUnit, SubState


def make_unit(name, active="active", sub="running", description="", **kw):
    return ServiceUnit(
        name=name,
        load_state=LoadState.LOADED,
        active_state=ActiveState(active),
        sub_state=SubState(sub),
        description=description,
        **kw,
    )


def make_entry(message, priority=Priority.INFO, unit="a.service", second=0):
    ts = datetime(2024, 1, 1, 12, 0, second, tzinfo=timezone.utc)
    return LogEntry(timestamp=ts, unit_name=unit, priority=priority, message=message)


class FakeQuery:
    def __init__(self, units=()):
        self.units = list(units)
        self.error = None
        self.calls = 0
        self.get_calls = []

    async def list_units(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.units)

    async def get_unit(self, name):
        self.get_calls.append(name)
        if self.error is not None:
            raise self.error
        for u in self.units:
            if u.name == name:
                return u
        raise UnitNotFoundError(name)


class FakeLogs:
    """Yields the configured entries, then blocks until cancelled (or ends)."""

    def __init__(self, entries=(), hold=True, error=None):
        self.entries = list(entries)
        self.hold = hold
        self.error = error
        self.opened = []

    async def stream_logs(self, unit, since=None):
        self.opened.append((unit, since))
        for e in self.entries:
            yield e
        if self.error is not None:
            raise self.error
        if self.hold:
            await asyncio.Event().wait()


class FakeControl:
    def __init__(self, error=None, delay=0.0):
        self.error = error
        self.delay = delay
        self.calls = []

    async def apply(self, unit, action):
        self.calls.append((unit, action))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error


class FakeClosingQuery(FakeQuery):
    def __init__(self, units=()):
        super().__init__(units)
        self.closed = False

    async def close(self):
        self.closed = True


async def settle(rounds=5):
    """Let spawned tasks run a few loop iterations."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        poll_interval=0.01,
        max_poll_interval=0.05,
        log_capacity=50,
        control_timeout=1.0,
        log_file=tmp_path / "unitdeck.log",
    )
