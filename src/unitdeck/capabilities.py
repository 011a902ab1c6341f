"""Interfaces of the external collaborators the core consumes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Protocol, Sequence

from .models import ControlAction, LogEntry, ServiceUnit


class ServiceQuery(Protocol):
    async def list_units(self) -> Sequence[ServiceUnit]:
        """Full current unit set; raises ``BusConnectionError``."""

    async def get_unit(self, name: str) -> ServiceUnit:
        """Single unit; raises ``UnitNotFoundError`` or ``BusConnectionError``."""


class LogQuery(Protocol):
    def stream_logs(self, unit: str, since: str | None = None) -> AsyncIterator[LogEntry]:
        """Infinite feed of entries; reopen to restart. Raises ``LogFeedError``."""


class Control(Protocol):
    async def apply(self, unit: str, action: ControlAction) -> None:
        """Raises ``PermissionError``, ``TimeoutError`` or ``LookupError`` subclasses."""


@dataclass(slots=True)
class Backend:
    query: ServiceQuery
    logs: LogQuery
    control: Control

    async def close(self) -> None:
        closer = getattr(self.query, "close", None)
        if closer is not None:
            await closer()
