"""Startup settings: defaults, then ``UNITDECK_*`` environment, then CLI flags."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
import os
from pathlib import Path
import tempfile
from typing import Any, Mapping, Optional

from .errors import ConfigError
from .logbuffer import DEFAULT_CAPACITY


def default_log_file() -> Path:
    return Path(tempfile.gettempdir()) / "unitdeck.log"


@dataclass(frozen=True, slots=True)
class Settings:
    poll_interval: float = 5.0
    max_poll_interval: float = 60.0
    log_capacity: int = DEFAULT_CAPACITY
    hold_capacity: Optional[int] = None
    failure_threshold: int = 3
    control_timeout: float = 15.0
    render_interval: float = 0.1
    user_scope: bool = False
    log_level: str = "INFO"
    log_file: Path = field(default_factory=default_log_file)

    @property
    def effective_hold_capacity(self) -> int:
        return self.hold_capacity if self.hold_capacity is not None else self.log_capacity


ENV_VARS = {
    "poll_interval": "UNITDECK_POLL_INTERVAL",
    "log_capacity": "UNITDECK_LOG_CAPACITY",
    "log_file": "UNITDECK_LOG_FILE",
    "log_level": "UNITDECK_LOG_LEVEL",
}

_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _coerce(name: str, raw: Any) -> Any:
    if name in {"poll_interval", "max_poll_interval", "control_timeout", "render_interval"}:
        try:
            value = float(raw)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be a number, got {raw!r}") from None
        if value <= 0:
            raise ConfigError(f"{name} must be positive, got {value}")
        return value
    if name in {"log_capacity", "hold_capacity", "failure_threshold"}:
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
        if value < 1:
            raise ConfigError(f"{name} must be at least 1, got {value}")
        return value
    if name == "log_level":
        level = str(raw).strip().upper()
        if level not in _LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(sorted(_LEVELS))}")
        return level
    if name == "log_file":
        return Path(str(raw)).expanduser()
    if name == "user_scope":
        return bool(raw)
    raise ConfigError(f"unknown setting: {name}")


def settings_from_env(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for name, var in ENV_VARS.items():
        raw = env.get(var, "").strip()
        if raw:
            values[name] = _coerce(name, raw)
    return values


def load_settings(
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Build Settings; ``None`` overrides are treated as "not given"."""

    known = {f.name for f in fields(Settings)}
    values = settings_from_env(environ)
    for name, raw in (overrides or {}).items():
        if raw is None:
            continue
        if name not in known:
            raise ConfigError(f"unknown setting: {name}")
        values[name] = _coerce(name, raw)

    settings = replace(Settings(), **values)
    if settings.max_poll_interval < settings.poll_interval:
        settings = replace(settings, max_poll_interval=settings.poll_interval)
    return settings
