from __future__ import annotations

import asyncio
from contextlib import suppress
import logging
from typing import Callable

from .capabilities import ServiceQuery
from .messages import Message, PollFailed, RegistryUpdated
from .models import ServiceUnit
from .observability import get_logger, log_event
from .registry import RegistryDiff, compute_diff, dedupe, single_unit_diff

log = get_logger("unitdeck.poller")


def backoff_delay(failures: int, interval: float, max_interval: float) -> float:
    """Delay before the next attempt after ``failures`` consecutive failures."""
    if failures <= 0:
        return interval
    return min(interval * 2 ** (failures - 1), max_interval)


class Poller:
    """Periodic bulk query of the service manager, emitting registry diffs.

    The poller keeps its own copy of the last set it reported. Every change it
    reports flows through AppState in order, so that copy always equals the
    Registry once the queue has drained.
    """

    def __init__(
        self,
        query: ServiceQuery,
        post: Callable[[Message], None],
        interval: float = 5.0,
        max_interval: float = 60.0,
    ) -> None:
        self._query = query
        self._post = post
        self.interval = interval
        self.max_interval = max(interval, max_interval)
        self.failures = 0
        self._known: dict[str, ServiceUnit] = {}
        self._wake = asyncio.Event()

    @property
    def next_delay(self) -> float:
        return backoff_delay(self.failures, self.interval, self.max_interval)

    def poke(self) -> None:
        """Skip the remaining wait and poll now."""
        self._wake.set()

    async def run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception as exc:
                # counted like a bus failure
                log.exception("poll raised unexpectedly")
                self._record_failure(str(exc) or type(exc).__name__)
            delay = self.next_delay
            self._wake.clear()
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wake.wait(), timeout=delay)

    def _record_failure(self, error: str) -> None:
        self.failures += 1
        retry_in = self.next_delay
        log_event(
            log,
            "poll_failed",
            level=logging.WARNING,
            error=error,
            failures=self.failures,
            retry_in=retry_in,
        )
        self._post(PollFailed(error=error, failures=self.failures, retry_in=retry_in))

    async def poll_once(self) -> bool:
        try:
            units = await self._query.list_units()
        except ConnectionError as exc:
            self._record_failure(str(exc) or type(exc).__name__)
            return False

        if self.failures:
            log_event(log, "poll_recovered", failures=self.failures)
        self.failures = 0
        diff = compute_diff(self._known, units)
        self._known = dedupe(units)
        if not diff.empty:
            log.debug(
                "registry diff: +%d ~%d -%d", len(diff.added), len(diff.updated), len(diff.removed)
            )
        self._post(RegistryUpdated(diff))
        return True

    async def refresh_unit(self, name: str) -> None:
        """Targeted single-unit query, used right after a control action."""
        try:
            unit = await self._query.get_unit(name)
        except LookupError:
            if name in self._known:
                del self._known[name]
                self._post(RegistryUpdated(RegistryDiff(removed=(name,))))
            return
        except ConnectionError as exc:
            log.warning("refresh of %s failed: %s", name, exc)
            return
        diff = single_unit_diff(self._known, unit)
        self._known[unit.name] = unit
        if not diff.empty:
            self._post(RegistryUpdated(diff))
