import json
from datetime import datetime, timezone

from unitdeck.journal import JournalReader, parse_journal_line
from unitdeck.models import Priority


def record(**fields):
    base = {
        "__REALTIME_TIMESTAMP": "1704110400000000",
        "PRIORITY": "3",
        "MESSAGE": "boom",
        "_SYSTEMD_UNIT": "nginx.service",
    }
    base.update(fields)
    return json.dumps(base).encode()


def test_parse_basic_record():
    entry = parse_journal_line(record(), "fallback.service")
    assert entry.message == "boom"
    assert entry.priority is Priority.ERR
    assert entry.unit_name == "nginx.service"
    assert entry.timestamp == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_parse_binary_message_and_defaults():
    raw = json.dumps({"MESSAGE": list(b"caf\xc3\xa9")}).encode()
    entry = parse_journal_line(raw, "x.service")
    assert entry.message == "café"
    assert entry.priority is Priority.INFO
    assert entry.unit_name == "x.service"


def test_parse_user_unit_and_out_of_range_priority():
    entry = parse_journal_line(record(_SYSTEMD_UNIT=None, _SYSTEMD_USER_UNIT="app.service", PRIORITY="42"), "x")
    assert entry.unit_name == "app.service"
    assert entry.priority is Priority.DEBUG


def test_parse_rejects_noise():
    assert parse_journal_line(b"", "x") is None
    assert parse_journal_line(b"-- No entries --", "x") is None
    assert parse_journal_line(b"[1, 2]", "x") is None


def test_argv_tail_and_window():
    reader = JournalReader()
    assert reader.argv("a.service") == [
        "journalctl", "-u", "a.service", "-o", "json", "--no-pager", "-q", "-f", "-n", "100",
    ]
    user = JournalReader(user=True, backlog=10)
    argv = user.argv("a.service", since="-1h")
    assert argv[:2] == ["journalctl", "--user"]
    assert argv[-2:] == ["--since", "-1h"]
    assert "-n" not in argv
