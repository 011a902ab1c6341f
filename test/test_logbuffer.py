import pytest

from conftest import make_entry

from unitdeck.logbuffer import LogBuffer
from unitdeck.models import Priority


def test_capacity_evicts_oldest():
    buf = LogBuffer("a.service", capacity=3)
    for msg in ("L1", "L2", "L3", "L4"):
        buf.append(make_entry(msg))
    assert [e.message for e in buf] == ["L2", "L3", "L4"]
    assert len(buf) == 3


def test_never_exceeds_capacity():
    buf = LogBuffer("a.service", capacity=5)
    for i in range(100):
        buf.append(make_entry(str(i)))
        assert len(buf) <= 5
    assert [e.message for e in buf] == ["95", "96", "97", "98", "99"]


def test_snapshot_priority_filter():
    buf = LogBuffer("a.service", capacity=10)
    buf.append(make_entry("boom", Priority.ERR))
    buf.append(make_entry("hmm", Priority.WARNING))
    buf.append(make_entry("fine", Priority.INFO))
    buf.append(make_entry("noise", Priority.DEBUG))

    assert [e.message for e in buf.snapshot(Priority.WARNING)] == ["boom", "hmm"]
    assert len(buf.snapshot()) == 4
    # filtering is a view; the buffer is untouched
    assert len(buf) == 4


def test_clear_and_invalid_capacity():
    buf = LogBuffer("a.service", capacity=2)
    buf.append(make_entry("x"))
    buf.clear()
    assert len(buf) == 0
    assert buf.capacity == 2
    with pytest.raises(ValueError):
        LogBuffer("a.service", capacity=0)
