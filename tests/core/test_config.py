from __future__ import annotations

import pytest

from engagement.core.config import AppEnv, Settings, load_settings

# ---- valid values ----


def test_load_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "APP_ENV",
        "LOG_LEVEL",
        "AUTOSAVE_INTERVAL_SECONDS",
        "METRICS_TICK_SECONDS",
        "GUARD_SAMPLE_SECONDS",
        "GUARD_BUFFER_SECONDS",
        "COMPLETION_THRESHOLD",
        "PLAYER_INIT_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.app_env == "dev"
    assert settings.log_level == "info"
    assert settings.autosave_interval == 10.0
    assert settings.metrics_tick_interval == 1.0
    assert settings.guard_sample_interval == 0.5
    assert settings.guard_buffer == 2.0
    assert settings.completion_threshold == 0.90
    assert settings.player_init_timeout == 5.0


def test_load_settings_respects_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.setenv("LOG_LEVEL", "error")
    monkeypatch.setenv("AUTOSAVE_INTERVAL_SECONDS", "30")
    monkeypatch.setenv("COMPLETION_THRESHOLD", "0.8")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "error"
    assert settings.autosave_interval == 30.0
    assert settings.completion_threshold == 0.8


def test_load_settings_normalizes_case(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "PROD")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "debug"


def test_load_settings_log_json(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_JSON", "true")
    assert load_settings().log_json is True
    monkeypatch.setenv("LOG_JSON", "no")
    assert load_settings().log_json is False


# ---- invalid values ----


def test_load_settings_rejects_invalid_app_env(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "staging")
    with pytest.raises(ValueError, match="APP_ENV must be dev|test|prod"):
        load_settings()


def test_load_settings_rejects_invalid_log_level(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("LOG_LEVEL", "verbose")
    with pytest.raises(ValueError, match="LOG_LEVEL must be debug|info|warning|error"):
        load_settings()


def test_load_settings_rejects_non_numeric_interval(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("AUTOSAVE_INTERVAL_SECONDS", "often")
    with pytest.raises(ValueError, match="AUTOSAVE_INTERVAL_SECONDS must be a number"):
        load_settings()


def test_load_settings_rejects_zero_interval(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("METRICS_TICK_SECONDS", "0")
    with pytest.raises(ValueError, match="METRICS_TICK_SECONDS must be greater than 0"):
        load_settings()


def test_load_settings_rejects_threshold_above_one(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("COMPLETION_THRESHOLD", "1.5")
    with pytest.raises(ValueError, match="COMPLETION_THRESHOLD must be at most 1.0"):
        load_settings()


def test_load_settings_rejects_bad_port(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "eighty")
    with pytest.raises(ValueError, match="PORT must be an integer"):
        load_settings()


# ---- Settings properties ----


def _make_settings(app_env: AppEnv = "dev") -> Settings:
    return Settings(  # type: ignore[arg-type]
        app_env=app_env,
        log_level="info",
        log_json=False,
        port=8000,
        database_url=None,
        redis_url=None,
    )


def test_settings_env_flags() -> None:
    assert _make_settings("dev").is_dev is True
    assert _make_settings("test").is_test is True
    assert _make_settings("prod").is_prod is True
    assert _make_settings("prod").is_dev is False


def test_settings_is_frozen() -> None:
    s = _make_settings()
    with pytest.raises(AttributeError):
        s.autosave_interval = 1.0  # type: ignore[misc]
