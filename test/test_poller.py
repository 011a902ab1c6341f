import asyncio

import pytest

from conftest import FakeQuery, make_unit

from unitdeck.errors import BusConnectionError
from unitdeck.messages import PollFailed, RegistryUpdated
from unitdeck.poller import Poller, backoff_delay


def test_backoff_delay_doubles_and_caps():
    assert backoff_delay(0, 5.0, 60.0) == 5.0
    assert [backoff_delay(n, 5.0, 60.0) for n in (1, 2, 3, 4, 5, 6)] == [5.0, 10.0, 20.0, 40.0, 60.0, 60.0]


@pytest.mark.asyncio
async def test_poll_once_emits_diff_against_last_poll():
    query = FakeQuery([make_unit("a.service"), make_unit("b.service")])
    posted = []
    poller = Poller(query, posted.append)

    assert await poller.poll_once()
    assert isinstance(posted[0], RegistryUpdated)
    assert [u.name for u in posted[0].diff.added] == ["a.service", "b.service"]

    query.units = [make_unit("a.service", active="failed", sub="failed")]
    await poller.poll_once()
    diff = posted[1].diff
    assert [u.name for u in diff.updated] == ["a.service"]
    assert diff.removed == ("b.service",)


@pytest.mark.asyncio
async def test_failures_back_off_and_reset_on_success():
    query = FakeQuery([make_unit("a.service")])
    query.error = BusConnectionError("system bus unreachable")
    posted = []
    poller = Poller(query, posted.append, interval=5.0, max_interval=60.0)

    for _ in range(3):
        assert not await poller.poll_once()
    assert [m.failures for m in posted] == [1, 2, 3]
    assert [m.retry_in for m in posted] == [5.0, 10.0, 20.0]
    assert all(isinstance(m, PollFailed) for m in posted)
    assert poller.next_delay == 20.0

    query.error = None
    assert await poller.poll_once()
    assert poller.failures == 0
    assert poller.next_delay == 5.0
    assert isinstance(posted[-1], RegistryUpdated)


@pytest.mark.asyncio
async def test_refresh_unit_emits_targeted_diff():
    query = FakeQuery([make_unit("a.service")])
    posted = []
    poller = Poller(query, posted.append)
    await poller.poll_once()

    query.units = [make_unit("a.service", active="inactive", sub="dead")]
    await poller.refresh_unit("a.service")
    diff = posted[-1].diff
    assert [u.active_state.value for u in diff.updated] == ["inactive"]
    assert diff.order is None

    # unchanged: nothing posted
    count = len(posted)
    await poller.refresh_unit("a.service")
    assert len(posted) == count


@pytest.mark.asyncio
async def test_refresh_unit_removes_vanished_unit():
    query = FakeQuery([make_unit("a.service")])
    posted = []
    poller = Poller(query, posted.append)
    await poller.poll_once()

    query.units = []
    await poller.refresh_unit("a.service")
    assert posted[-1].diff.removed == ("a.service",)


@pytest.mark.asyncio
async def test_refresh_unit_tolerates_bus_errors():
    query = FakeQuery()
    posted = []
    poller = Poller(query, posted.append)
    query.error = BusConnectionError("gone")
    await poller.refresh_unit("a.service")
    assert posted == []


@pytest.mark.asyncio
async def test_poke_wakes_the_loop_early():
    query = FakeQuery([make_unit("a.service")])
    poller = Poller(query, lambda msg: None, interval=30.0, max_interval=30.0)
    task = asyncio.create_task(poller.run())
    try:
        for _ in range(20):
            await asyncio.sleep(0)
        assert query.calls == 1
        poller.poke()
        for _ in range(20):
            await asyncio.sleep(0)
        assert query.calls == 2
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


@pytest.mark.asyncio
async def test_builtin_connection_error_counts_as_failure():
    query = FakeQuery([make_unit("a.service")])
    query.error = ConnectionError("socket closed")
    posted = []
    poller = Poller(query, posted.append)
    assert not await poller.poll_once()
    assert isinstance(posted[0], PollFailed)
    assert posted[0].error == "socket closed"
    assert poller.failures == 1


@pytest.mark.asyncio
async def test_run_loop_survives_unexpected_errors():
    query = FakeQuery([make_unit("a.service")])
    query.error = RuntimeError("bad reply")
    posted = []
    poller = Poller(query, posted.append, interval=0.01, max_interval=0.02)
    task = asyncio.create_task(poller.run())
    try:
        for _ in range(30):
            await asyncio.sleep(0.01)
            if query.calls >= 3:
                break
        assert not task.done()
        assert query.calls >= 3
        assert all(isinstance(m, PollFailed) for m in posted)
        assert posted[0].error == "bad reply"
        assert [m.failures for m in posted[:3]] == [1, 2, 3]

        query.error = None
        for _ in range(30):
            await asyncio.sleep(0.01)
            if isinstance(posted[-1], RegistryUpdated):
                break
        assert isinstance(posted[-1], RegistryUpdated)
        assert poller.failures == 0
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
