from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .capabilities import Control
from .errors import UnconfirmedActionError
from .messages import ControlFailed, ControlFailure, ControlSucceeded, Message
from .models import ControlAction, PendingConfirmation
from .observability import get_logger, log_event

log = get_logger("unitdeck.control")

MAX_UNIT_NAME = 256


def validate_unit_name(name: str) -> None:
    """Refuse names that could not be a plain service unit."""
    if not name:
        raise ValueError("Service name cannot be empty")
    if ".." in name or "\0" in name or len(name) > MAX_UNIT_NAME:
        raise ValueError("Invalid service name format")
    if not name.endswith(".service"):
        raise ValueError("Service name must end with .service")


class ControlExecutor:
    """Dispatches confirmed control requests and reports the outcome."""

    def __init__(self, control: Control, post: Callable[[Message], None], timeout: float = 15.0) -> None:
        self._control = control
        self._post = post
        self.timeout = timeout

    async def execute(
        self,
        unit: str,
        action: ControlAction,
        confirmation: PendingConfirmation | None,
    ) -> None:
        if confirmation is None or not confirmation.confirmed or not confirmation.matches(unit, action):
            raise UnconfirmedActionError(f"{action.value} {unit} was not confirmed")

        try:
            validate_unit_name(unit)
        except ValueError as exc:
            self._fail(unit, action, ControlFailure.INVALID, str(exc))
            return

        log_event(log, "control_dispatch", unit=unit, action=action.value)
        try:
            await asyncio.wait_for(self._control.apply(unit, action), timeout=self.timeout)
        except PermissionError as exc:
            self._fail(unit, action, ControlFailure.PERMISSION, str(exc) or "permission denied")
        except (TimeoutError, asyncio.TimeoutError) as exc:
            self._fail(unit, action, ControlFailure.TIMEOUT, str(exc) or f"no reply within {self.timeout:g}s")
        except LookupError as exc:
            self._fail(unit, action, ControlFailure.NOT_FOUND, str(exc) or f"{unit} not found")
        except Exception as exc:
            # AppState clears its busy guard only on a posted outcome
            self._fail(unit, action, ControlFailure.ERROR, str(exc) or type(exc).__name__)
        else:
            log_event(log, "control_succeeded", unit=unit, action=action.value)
            self._post(ControlSucceeded(unit, action))

    def _fail(self, unit: str, action: ControlAction, reason: ControlFailure, detail: str) -> None:
        log_event(
            log,
            "control_failed",
            level=logging.WARNING,
            unit=unit,
            action=action.value,
            reason=reason.value,
            detail=detail,
        )
        self._post(ControlFailed(unit, action, reason, detail))
