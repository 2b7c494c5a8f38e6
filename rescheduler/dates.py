from __future__ import annotations

import datetime as dt

# Textual forms accepted besides ISO 8601. Tried in order.
_DATE_FORMATS = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
)


def _to_utc_date(value: dt.datetime) -> dt.date:
    if value.tzinfo is not None:
        value = value.astimezone(dt.timezone.utc)
    return value.date()


def _parse(text: str) -> dt.date | None:
    try:
        return dt.date.fromisoformat(text)
    except ValueError:
        pass

    try:
        # "Z" suffix is accepted natively only from Python 3.11.
        iso = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
        return _to_utc_date(dt.datetime.fromisoformat(iso))
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return dt.datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def normalize_date(value: str | dt.date) -> str:
    """Normalize a date-like value to ``YYYY-MM-DD`` (UTC).

    Every date that is compared or used in arithmetic goes through here, so
    plain string comparison of the results is chronological.

    Raises:
        ValueError: if the value cannot be parsed as a date.
    """
    if isinstance(value, dt.datetime):
        return _to_utc_date(value).isoformat()
    if isinstance(value, dt.date):
        return value.isoformat()

    text = str(value).strip()
    parsed = _parse(text) if text else None
    if parsed is None:
        raise ValueError(f'Invalid date format: "{value}". Please use YYYY-MM-DD format.')
    return parsed.isoformat()


def calculate_threshold_date(date_str: str, days: int) -> str:
    """Return the date ``days`` calendar days before ``date_str``.

    Results earlier than 0001-01-01 are clamped to it; nothing sorts before it.
    """
    base = dt.date.fromisoformat(normalize_date(date_str))
    if days >= (base - dt.date.min).days:
        return dt.date.min.isoformat()
    return (base - dt.timedelta(days=days)).isoformat()
