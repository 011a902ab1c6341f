from __future__ import annotations

import asyncio
from collections import deque
from contextlib import suppress
import logging
from typing import Callable

from .capabilities import LogQuery
from .messages import LogAppended, LogGap, LogStreamFailed, Message
from .models import LogEntry
from .observability import get_logger, log_event

log = get_logger("unitdeck.streamer")


class LogStreamer:
    """Forwards one unit's log feed as generation-tagged append messages.

    While paused the feed keeps being drained; entries are held locally (at
    most ``hold_capacity``, oldest dropped) and flushed in order on resume.
    """

    def __init__(
        self,
        source: LogQuery,
        unit: str,
        generation: int,
        post: Callable[[Message], None],
        since: str | None = None,
        hold_capacity: int = 2000,
    ) -> None:
        self._source = source
        self._post = post
        self.unit = unit
        self.generation = generation
        self.since = since
        self.paused = False
        self._held: deque[LogEntry] = deque(maxlen=hold_capacity)
        self._dropped = 0
        self._task: asyncio.Task | None = None

    @property
    def held(self) -> int:
        return len(self._held)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self._run(), name=f"logs:{self.unit}:{self.generation}")
        log_event(log, "stream_started", unit=self.unit, generation=self.generation, since=self.since)
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        log_event(log, "stream_stopped", unit=self.unit, generation=self.generation)

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False
        if self._dropped:
            self._post(LogGap(self.unit, self.generation, self._dropped))
            self._dropped = 0
        while self._held:
            self._post(LogAppended(self.unit, self.generation, self._held.popleft()))

    def clear(self) -> None:
        """Forget held entries; the feed subscription is untouched."""
        self._held.clear()
        self._dropped = 0

    def _forward(self, entry: LogEntry) -> None:
        if self.paused:
            if len(self._held) == self._held.maxlen:
                self._dropped += 1
            self._held.append(entry)
            return
        self._post(LogAppended(self.unit, self.generation, entry))

    async def _run(self) -> None:
        try:
            async for entry in self._source.stream_logs(self.unit, since=self.since):
                self._forward(entry)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log_event(
                log,
                "stream_failed",
                level=logging.WARNING,
                unit=self.unit,
                generation=self.generation,
                error=str(exc),
            )
            self._post(LogStreamFailed(self.unit, self.generation, str(exc) or type(exc).__name__))
        else:
            self._post(LogStreamFailed(self.unit, self.generation, "log feed ended"))
