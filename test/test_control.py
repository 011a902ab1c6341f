import pytest

from conftest import FakeControl

from unitdeck.control import ControlExecutor, validate_unit_name
from unitdeck.errors import (
    AccessDeniedError,
    BusConnectionError,
    ControlTimeoutError,
    UnconfirmedActionError,
    UnitNotFoundError,
)
from unitdeck.messages import ControlFailed, ControlFailure, ControlSucceeded
from unitdeck.models import ControlAction, PendingConfirmation


def confirmed(unit, action):
    return PendingConfirmation(unit, action, confirmed=True)


@pytest.mark.parametrize("name", ["", "../etc.service", "a\0b.service", "x" * 300 + ".service", "nginx"])
def test_validate_unit_name_rejects(name):
    with pytest.raises(ValueError):
        validate_unit_name(name)


def test_validate_unit_name_accepts_plain_service():
    validate_unit_name("nginx.service")
    validate_unit_name("getty@tty1.service")


@pytest.mark.asyncio
async def test_requires_matching_confirmation():
    control = FakeControl()
    executor = ControlExecutor(control, lambda msg: None)
    with pytest.raises(UnconfirmedActionError):
        await executor.execute("a.service", ControlAction.STOP, None)
    with pytest.raises(UnconfirmedActionError):
        await executor.execute("a.service", ControlAction.STOP, PendingConfirmation("a.service", ControlAction.STOP))
    with pytest.raises(UnconfirmedActionError):
        await executor.execute("a.service", ControlAction.STOP, confirmed("b.service", ControlAction.STOP))
    assert control.calls == []


@pytest.mark.asyncio
async def test_success_posts_succeeded():
    control = FakeControl()
    posted = []
    executor = ControlExecutor(control, posted.append)
    await executor.execute("a.service", ControlAction.RESTART, confirmed("a.service", ControlAction.RESTART))
    assert control.calls == [("a.service", ControlAction.RESTART)]
    assert posted == [ControlSucceeded("a.service", ControlAction.RESTART)]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error,reason",
    [
        (AccessDeniedError("Interactive authentication required."), ControlFailure.PERMISSION),
        (ControlTimeoutError("no reply"), ControlFailure.TIMEOUT),
        (UnitNotFoundError("a.service"), ControlFailure.NOT_FOUND),
        (BusConnectionError("bus gone"), ControlFailure.ERROR),
    ],
)
async def test_failures_are_classified(error, reason):
    posted = []
    executor = ControlExecutor(FakeControl(error=error), posted.append)
    await executor.execute("a.service", ControlAction.START, confirmed("a.service", ControlAction.START))
    assert len(posted) == 1
    assert isinstance(posted[0], ControlFailed)
    assert posted[0].reason is reason
    assert posted[0].unit == "a.service"


@pytest.mark.asyncio
async def test_slow_control_times_out():
    posted = []
    executor = ControlExecutor(FakeControl(delay=5.0), posted.append, timeout=0.01)
    await executor.execute("a.service", ControlAction.STOP, confirmed("a.service", ControlAction.STOP))
    assert posted[0].reason is ControlFailure.TIMEOUT


@pytest.mark.asyncio
async def test_invalid_name_never_dispatched():
    control = FakeControl()
    posted = []
    executor = ControlExecutor(control, posted.append)
    await executor.execute("../x", ControlAction.STOP, confirmed("../x", ControlAction.STOP))
    assert control.calls == []
    assert posted[0].reason is ControlFailure.INVALID


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error,reason",
    [
        (PermissionError("denied"), ControlFailure.PERMISSION),
        (TimeoutError(), ControlFailure.TIMEOUT),
        (LookupError("gone.service"), ControlFailure.NOT_FOUND),
        (ConnectionError("bus closed"), ControlFailure.ERROR),
        (EOFError(), ControlFailure.ERROR),
        (RuntimeError("unexpected reply"), ControlFailure.ERROR),
    ],
)
async def test_plain_exceptions_still_post_an_outcome(error, reason):
    posted = []
    executor = ControlExecutor(FakeControl(error=error), posted.append)
    await executor.execute("a.service", ControlAction.STOP, confirmed("a.service", ControlAction.STOP))
    assert len(posted) == 1
    assert posted[0].reason is reason
    assert posted[0].detail
