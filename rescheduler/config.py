from __future__ import annotations

import datetime as dt
import math
import os
from dataclasses import dataclass

from dotenv import load_dotenv


# Larger values cannot be subtracted from any calendar date.
MAX_IMPROVEMENT_DAYS = (dt.date.max - dt.date.min).days


class ConfigValidationError(RuntimeError):
    """Required configuration is missing or out of range. Fatal at startup."""


def _chat_id(value: str) -> str:
    # Numeric ids only; groups and channels are negative.
    try:
        number = int(value)
    except ValueError as e:
        raise ConfigValidationError(f"Invalid TELEGRAM_CHAT_ID value: {value!r}. Expected integer chat id.") from e
    if number == 0:
        raise ConfigValidationError(f"Invalid TELEGRAM_CHAT_ID value: {value!r} is not a valid chat id")
    return value


def _parse_telegram_chat_ids(raw: str) -> tuple[str, ...]:
    """Comma-separated booking notification targets, e.g. ``123456789,-1001234567890``."""
    chat_ids = tuple(dict.fromkeys(_chat_id(p) for p in (part.strip() for part in raw.split(",")) if p))
    if not chat_ids:
        raise ConfigValidationError("TELEGRAM_CHAT_ID is empty. Provide at least one chat id.")
    return chat_ids


@dataclass(frozen=True)
class Settings:
    email: str
    password: str
    country_code: str
    schedule_id: str
    facility_id: str

    # A replacement date must be strictly earlier than current - N days.
    reschedule_min_improvement_days: int

    # Backoff after "no dates" cycles and network failures:
    # refresh_delay * multiplier ** failures, capped at max_delay.
    failure_backoff_multiplier: float
    failure_backoff_max_delay: float

    refresh_delay: float = 3.0
    request_timeout_seconds: float = 30.0

    # Optional booking notifications.
    telegram_bot_token: str | None = None
    telegram_chat_ids: tuple[str, ...] = ()

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_ids)


def _require(name: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        raise ConfigValidationError(f"Missing required environment variable: {name}")
    return value.strip()


def _number(name: str, raw: str) -> float:
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigValidationError(f"{name} must be a number, got: {raw!r}") from e
    if not math.isfinite(value):
        raise ConfigValidationError(f"{name} must be a finite number, got: {raw!r}")
    return value


def _non_negative_number(name: str, raw: str) -> float:
    value = _number(name, raw)
    if value < 0:
        raise ConfigValidationError(f"{name} must be a non-negative number, got: {raw!r}")
    return value


def _positive_number(name: str, raw: str) -> float:
    value = _number(name, raw)
    if value <= 0:
        raise ConfigValidationError(f"{name} must be a positive number, got: {raw!r}")
    return value


def _non_negative_int(name: str, raw: str, maximum: int | None = None) -> int:
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigValidationError(f"{name} must be a non-negative integer, got: {raw!r}") from e
    if value < 0:
        raise ConfigValidationError(f"{name} must be a non-negative integer, got: {raw!r}")
    if maximum is not None and value > maximum:
        raise ConfigValidationError(f"{name} must be at most {maximum}, got: {raw!r}")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    refresh_delay = _non_negative_number("REFRESH_DELAY", os.getenv("REFRESH_DELAY", "3"))
    request_timeout_seconds = _positive_number(
        "REQUEST_TIMEOUT_SECONDS", os.getenv("REQUEST_TIMEOUT_SECONDS", "30")
    )

    telegram_bot_token = (os.getenv("TELEGRAM_BOT_TOKEN") or "").strip() or None
    telegram_chat_ids: tuple[str, ...] = ()
    if telegram_bot_token:
        telegram_chat_ids = _parse_telegram_chat_ids(_require("TELEGRAM_CHAT_ID"))

    return Settings(
        email=_require("EMAIL"),
        password=_require("PASSWORD"),
        country_code=_require("COUNTRY_CODE"),
        schedule_id=_require("SCHEDULE_ID"),
        facility_id=_require("FACILITY_ID"),
        reschedule_min_improvement_days=_non_negative_int(
            "RESCHEDULE_MIN_IMPROVEMENT_DAYS",
            _require("RESCHEDULE_MIN_IMPROVEMENT_DAYS"),
            maximum=MAX_IMPROVEMENT_DAYS,
        ),
        failure_backoff_multiplier=_positive_number(
            "FAILURE_BACKOFF_MULTIPLIER", _require("FAILURE_BACKOFF_MULTIPLIER")
        ),
        failure_backoff_max_delay=_positive_number(
            "FAILURE_BACKOFF_MAX_DELAY", _require("FAILURE_BACKOFF_MAX_DELAY")
        ),
        refresh_delay=refresh_delay,
        request_timeout_seconds=request_timeout_seconds,
        telegram_bot_token=telegram_bot_token,
        telegram_chat_ids=telegram_chat_ids,
    )
