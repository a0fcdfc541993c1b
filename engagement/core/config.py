from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _get_float(name: str, default: str, *, minimum: float = 0.0) -> float:
    raw = _getenv(name, default)
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if value <= minimum:
        raise ValueError(f"{name} must be greater than {minimum:g} (got {raw!r})")
    return value


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None

    # Unit session cadence (seconds)
    autosave_interval: float = 10.0
    metrics_tick_interval: float = 1.0
    guard_sample_interval: float = 0.5
    guard_buffer: float = 2.0
    player_init_timeout: float = 5.0

    # Fraction of the video that marks a unit as watched
    completion_threshold: float = 0.90

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    completion_threshold = _get_float("COMPLETION_THRESHOLD", "0.90")
    if completion_threshold > 1.0:
        raise ValueError(
            f"COMPLETION_THRESHOLD must be at most 1.0 (got {completion_threshold!r})"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in ("1", "true", "yes"),
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        autosave_interval=_get_float("AUTOSAVE_INTERVAL_SECONDS", "10"),
        metrics_tick_interval=_get_float("METRICS_TICK_SECONDS", "1"),
        guard_sample_interval=_get_float("GUARD_SAMPLE_SECONDS", "0.5"),
        guard_buffer=_get_float("GUARD_BUFFER_SECONDS", "2"),
        player_init_timeout=_get_float("PLAYER_INIT_TIMEOUT_SECONDS", "5"),
        completion_threshold=completion_threshold,
    )


SETTINGS = load_settings()
