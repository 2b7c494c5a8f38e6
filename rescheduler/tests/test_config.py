from __future__ import annotations

import pytest

from rescheduler.config import MAX_IMPROVEMENT_DAYS, ConfigValidationError, Settings, load_settings

_OPTIONAL = ("REFRESH_DELAY", "REQUEST_TIMEOUT_SECONDS", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID")


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _OPTIONAL:
        monkeypatch.delenv(name, raising=False)

    monkeypatch.setenv("EMAIL", "u@example.com")
    monkeypatch.setenv("PASSWORD", "p")
    monkeypatch.setenv("COUNTRY_CODE", "ca")
    monkeypatch.setenv("SCHEDULE_ID", "12345678")
    monkeypatch.setenv("FACILITY_ID", "94")
    monkeypatch.setenv("RESCHEDULE_MIN_IMPROVEMENT_DAYS", "7")
    monkeypatch.setenv("FAILURE_BACKOFF_MULTIPLIER", "2")
    monkeypatch.setenv("FAILURE_BACKOFF_MAX_DELAY", "300")
    return monkeypatch


def _load(tmp_path) -> Settings:
    # Point at a missing .env so a developer's local file can't leak into tests.
    return load_settings(dotenv_path=str(tmp_path / "missing.env"))


def test_load_settings_reads_required_values_and_defaults(env: pytest.MonkeyPatch, tmp_path) -> None:
    settings = _load(tmp_path)

    assert settings.email == "u@example.com"
    assert settings.country_code == "ca"
    assert settings.schedule_id == "12345678"
    assert settings.facility_id == "94"
    assert settings.reschedule_min_improvement_days == 7
    assert settings.failure_backoff_multiplier == 2.0
    assert settings.failure_backoff_max_delay == 300.0
    assert settings.refresh_delay == 3.0
    assert settings.request_timeout_seconds == 30.0
    assert settings.notifications_enabled is False


def test_zero_improvement_days_is_valid(env: pytest.MonkeyPatch, tmp_path) -> None:
    env.setenv("RESCHEDULE_MIN_IMPROVEMENT_DAYS", "0")
    assert _load(tmp_path).reschedule_min_improvement_days == 0


@pytest.mark.parametrize(
    "name",
    [
        "EMAIL",
        "PASSWORD",
        "COUNTRY_CODE",
        "SCHEDULE_ID",
        "FACILITY_ID",
        "RESCHEDULE_MIN_IMPROVEMENT_DAYS",
        "FAILURE_BACKOFF_MULTIPLIER",
        "FAILURE_BACKOFF_MAX_DELAY",
    ],
)
def test_missing_required_variable_is_rejected(env: pytest.MonkeyPatch, tmp_path, name: str) -> None:
    env.delenv(name)
    with pytest.raises(ConfigValidationError, match=rf"Missing required environment variable: {name}"):
        _load(tmp_path)


def test_blank_required_variable_counts_as_missing(env: pytest.MonkeyPatch, tmp_path) -> None:
    env.setenv("PASSWORD", "   ")
    with pytest.raises(ConfigValidationError, match="PASSWORD"):
        _load(tmp_path)


@pytest.mark.parametrize(
    "name, value, message",
    [
        ("RESCHEDULE_MIN_IMPROVEMENT_DAYS", "-1", "non-negative integer"),
        ("RESCHEDULE_MIN_IMPROVEMENT_DAYS", "abc", "non-negative integer"),
        ("FAILURE_BACKOFF_MULTIPLIER", "0", "positive number"),
        ("FAILURE_BACKOFF_MULTIPLIER", "x", "must be a number"),
        ("FAILURE_BACKOFF_MAX_DELAY", "-5", "positive number"),
        ("FAILURE_BACKOFF_MAX_DELAY", "inf", "finite"),
        ("REFRESH_DELAY", "-1", "non-negative number"),
        ("RESCHEDULE_MIN_IMPROVEMENT_DAYS", "3652059", "at most 3652058"),
    ],
)
def test_out_of_range_values_are_rejected(
    env: pytest.MonkeyPatch, tmp_path, name: str, value: str, message: str
) -> None:
    env.setenv(name, value)
    with pytest.raises(ConfigValidationError, match=message):
        _load(tmp_path)


def test_config_error_is_a_runtime_error() -> None:
    assert issubclass(ConfigValidationError, RuntimeError)


def test_telegram_chat_ids_are_parsed_and_deduplicated(env: pytest.MonkeyPatch, tmp_path) -> None:
    env.setenv("TELEGRAM_BOT_TOKEN", "t")
    # Spaces, duplicates and empty parts.
    env.setenv("TELEGRAM_CHAT_ID", "1, 2,2,, -1003, 1")

    settings = _load(tmp_path)
    assert settings.telegram_chat_ids == ("1", "2", "-1003")
    assert settings.notifications_enabled is True


def test_telegram_chat_id_required_when_token_is_set(env: pytest.MonkeyPatch, tmp_path) -> None:
    env.setenv("TELEGRAM_BOT_TOKEN", "t")
    with pytest.raises(ConfigValidationError, match="TELEGRAM_CHAT_ID"):
        _load(tmp_path)


@pytest.mark.parametrize(
    "raw, message",
    [
        ("abc", "Invalid TELEGRAM_CHAT_ID"),
        ("0", "not a valid chat id"),
        (" , ,", "TELEGRAM_CHAT_ID is empty"),
    ],
)
def test_invalid_telegram_chat_ids_are_rejected(env: pytest.MonkeyPatch, tmp_path, raw: str, message: str) -> None:
    env.setenv("TELEGRAM_BOT_TOKEN", "t")
    env.setenv("TELEGRAM_CHAT_ID", raw)
    with pytest.raises(ConfigValidationError, match=message):
        _load(tmp_path)


def test_load_settings_does_not_override_existing_env_with_dotenv(env: pytest.MonkeyPatch, tmp_path) -> None:
    # load_dotenv(override=False) must not overwrite already-set env vars.
    # setenv+delenv makes monkeypatch undo whatever .env puts into REFRESH_DELAY.
    env.setenv("REFRESH_DELAY", "3")
    env.delenv("REFRESH_DELAY")
    dotenv = tmp_path / ".env"
    dotenv.write_text("SCHEDULE_ID=999\nREFRESH_DELAY=10\n")

    settings = load_settings(dotenv_path=str(dotenv))
    assert settings.schedule_id == "12345678"
    assert settings.refresh_delay == 10.0


def test_zero_refresh_delay_is_valid(env: pytest.MonkeyPatch, tmp_path) -> None:
    env.setenv("REFRESH_DELAY", "0")
    assert _load(tmp_path).refresh_delay == 0.0


def test_largest_improvement_days_still_loads(env: pytest.MonkeyPatch, tmp_path) -> None:
    env.setenv("RESCHEDULE_MIN_IMPROVEMENT_DAYS", str(MAX_IMPROVEMENT_DAYS))
    assert _load(tmp_path).reschedule_min_improvement_days == MAX_IMPROVEMENT_DAYS
