"""Wires the background tasks to AppState through one inbound queue."""

from __future__ import annotations

import asyncio
from contextlib import suppress
import logging
from typing import Callable, Coroutine, Optional

from .capabilities import Backend
from .config import Settings
from .control import ControlExecutor
from .errors import BusConnectionError, StartupError
from .journal import JournalReader
from .messages import (
    DropHeldLogs,
    Effect,
    ExecuteControl,
    Message,
    PauseLogStream,
    PollNow,
    RefreshUnit,
    ResumeLogStream,
    Shutdown,
    StartLogStream,
    StopLogStream,
)
from .observability import get_logger, log_event
from .poller import Poller
from .state import AppState
from .streamer import LogStreamer
from .systemd_bus import SystemdClient

log = get_logger("unitdeck.engine")


async def open_backend(settings: Settings) -> Backend:
    """Connect the systemd capabilities; a missing service query is fatal."""
    client = SystemdClient(user=settings.user_scope)
    try:
        await client.connect()
    except BusConnectionError as exc:
        raise StartupError(f"cannot reach the {client.scope} service manager: {exc}") from exc
    return Backend(query=client, logs=JournalReader(user=settings.user_scope), control=client)


class Engine:
    """Owns the inbound queue, AppState and the tasks feeding it.

    Messages are applied strictly in arrival order by a single consumer;
    producers only ever call :meth:`post`.
    """

    def __init__(
        self,
        backend: Backend,
        settings: Settings | None = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        self.backend = backend
        self.settings = settings or Settings()
        self.on_shutdown = on_shutdown
        self.queue: asyncio.Queue[Message] = asyncio.Queue()
        self.state = AppState(
            log_capacity=self.settings.log_capacity,
            failure_threshold=self.settings.failure_threshold,
        )
        self.poller = Poller(
            backend.query,
            self.post,
            interval=self.settings.poll_interval,
            max_interval=self.settings.max_poll_interval,
        )
        self.executor = ControlExecutor(backend.control, self.post, timeout=self.settings.control_timeout)
        self.streamer: LogStreamer | None = None
        self._tasks: set[asyncio.Task] = set()
        self._poll_task: asyncio.Task | None = None
        self._stopped = False

    @property
    def version(self) -> int:
        return self.state.version

    def post(self, msg: Message) -> None:
        self.queue.put_nowait(msg)

    def start_polling(self) -> None:
        if self._poll_task is None:
            self._poll_task = asyncio.create_task(self.poller.run(), name="poller")
            self._poll_task.add_done_callback(self._task_done)

    async def run(self) -> None:
        self.start_polling()
        while not self.state.quitting:
            msg = await self.queue.get()
            await self.dispatch(msg)

    async def dispatch(self, msg: Message) -> None:
        for effect in self.state.apply(msg):
            await self._perform(effect)

    async def drain(self) -> int:
        """Apply every message queued so far; returns how many were applied."""
        n = 0
        while not self.queue.empty():
            await self.dispatch(self.queue.get_nowait())
            n += 1
        return n

    async def _perform(self, effect: Effect) -> None:
        if isinstance(effect, StartLogStream):
            await self._stop_streamer()
            self.streamer = LogStreamer(
                self.backend.logs,
                effect.unit,
                effect.generation,
                self.post,
                since=effect.since,
                hold_capacity=self.settings.effective_hold_capacity,
            )
            self.streamer.start()
        elif isinstance(effect, StopLogStream):
            await self._stop_streamer()
        elif isinstance(effect, PauseLogStream):
            if self.streamer is not None:
                self.streamer.pause()
        elif isinstance(effect, ResumeLogStream):
            if self.streamer is not None:
                self.streamer.resume()
        elif isinstance(effect, DropHeldLogs):
            if self.streamer is not None:
                self.streamer.clear()
        elif isinstance(effect, ExecuteControl):
            c = effect.confirmation
            self._spawn(self.executor.execute(c.unit, c.action, c), f"control:{c.action.value}:{c.unit}")
        elif isinstance(effect, RefreshUnit):
            self._spawn(self.poller.refresh_unit(effect.unit), f"refresh:{effect.unit}")
        elif isinstance(effect, PollNow):
            self.poller.poke()
        elif isinstance(effect, Shutdown):
            log_event(log, "shutdown_requested")
            if self.on_shutdown is not None:
                self.on_shutdown()
        else:
            raise TypeError(f"unsupported effect: {type(effect).__name__}")

    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("task %s failed", task.get_name(), exc_info=exc)

    async def _stop_streamer(self) -> None:
        streamer, self.streamer = self.streamer, None
        if streamer is not None:
            await streamer.stop()

    async def wait_idle(self) -> None:
        """Wait for spawned control and refresh tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        await self._stop_streamer()
        tasks = list(self._tasks)
        if self._poll_task is not None:
            tasks.append(self._poll_task)
            self._poll_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError, Exception):
                await task
        await self.backend.close()
        log_event(log, "engine_stopped", level=logging.DEBUG)
