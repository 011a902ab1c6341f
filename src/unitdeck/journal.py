from __future__ import annotations

import asyncio
from asyncio.subprocess import PIPE
from contextlib import suppress
from datetime import datetime, timezone
import json
from typing import AsyncIterator

from .errors import LogFeedError
from .models import LogEntry, Priority
from .observability import get_logger

log = get_logger("unitdeck.journal")


def parse_journal_line(raw: bytes | str, unit: str) -> LogEntry | None:
    """Parse one ``journalctl -o json`` record; returns None for non-JSON noise."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    raw = raw.strip()
    if not raw:
        return None
    try:
        record = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(record, dict):
        return None

    message = record.get("MESSAGE")
    if isinstance(message, list):
        # Non-UTF-8 payloads arrive as a byte array
        message = bytes(b & 0xFF for b in message if isinstance(b, int)).decode("utf-8", errors="replace")
    elif message is None:
        message = ""

    try:
        micros = int(record.get("__REALTIME_TIMESTAMP") or 0)
        timestamp = datetime.fromtimestamp(micros / 1_000_000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        timestamp = datetime.now(timezone.utc)

    try:
        priority = Priority(min(max(int(record.get("PRIORITY", Priority.INFO)), 0), 7))
    except (TypeError, ValueError):
        priority = Priority.INFO

    unit_name = record.get("_SYSTEMD_UNIT") or record.get("_SYSTEMD_USER_UNIT") or unit
    return LogEntry(timestamp=timestamp, unit_name=str(unit_name), priority=priority, message=str(message))


class JournalReader:
    """Log-query capability: follows ``journalctl`` for one unit."""

    def __init__(self, user: bool = False, backlog: int = 100, journalctl: str = "journalctl") -> None:
        self.user = user
        self.backlog = backlog
        self.journalctl = journalctl

    def argv(self, unit: str, since: str | None = None) -> list[str]:
        cmd = [self.journalctl]
        if self.user:
            cmd.append("--user")
        cmd.extend(["-u", unit, "-o", "json", "--no-pager", "-q", "-f"])
        if since:
            cmd.extend(["--since", since])
        else:
            cmd.extend(["-n", str(self.backlog)])
        return cmd

    async def stream_logs(self, unit: str, since: str | None = None) -> AsyncIterator[LogEntry]:
        argv = self.argv(unit, since)
        try:
            proc = await asyncio.create_subprocess_exec(*argv, stdout=PIPE, stderr=PIPE)
        except FileNotFoundError as exc:
            raise LogFeedError("journalctl not found. Ensure systemd-journald is available.") from exc
        log.debug("journal feed started", extra={"unit": unit, "argv": argv})
        try:
            assert proc.stdout is not None
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break
                entry = parse_journal_line(line, unit)
                if entry is not None:
                    yield entry
            rc = await proc.wait()
            err = b""
            if proc.stderr is not None:
                err = await proc.stderr.read()
            detail = err.decode(errors="ignore").strip()
            raise LogFeedError(detail or f"journalctl exited with status {rc}")
        finally:
            if proc.returncode is None:
                with suppress(ProcessLookupError):
                    proc.terminate()
                with suppress(Exception):
                    await proc.wait()
