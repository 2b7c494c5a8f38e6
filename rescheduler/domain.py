from __future__ import annotations

from dataclasses import dataclass, field

SESSION_COOKIE_NAME = "_yatri_session"


@dataclass(frozen=True)
class SessionContext:
    """Authenticated request context produced by a successful login.

    Replaced wholesale on every re-login; never mutated.
    """

    cookie: str  # "_yatri_session=<value>"
    csrf_token: str | None
    referer: str

    def headers(self) -> dict[str, str]:
        headers = {
            "Cookie": self.cookie,
            "Referer": self.referer,
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
        if self.csrf_token:
            headers["X-CSRF-Token"] = self.csrf_token
        return headers


@dataclass
class PollingState:
    current_booked_date: str  # YYYY-MM-DD
    target_date: str | None = None
    min_date: str | None = None
    consecutive_failures: int = 0


@dataclass(frozen=True)
class AvailabilityDecision:
    """Outcome of one polling cycle.

    should_long_sleep is set only when the portal returned no dates at all;
    the remaining fields are diagnostics for logging.
    """

    date: str | None
    should_long_sleep: bool
    earliest_date: str | None = None
    threshold_date: str | None = None
    candidates: tuple[str, ...] = field(default=())


class PortalError(RuntimeError):
    """Base class for failures talking to the appointment portal."""


class AuthSessionError(PortalError):
    """Portal did not hand out a session cookie (bad credentials, blocked, logged out)."""


class DomainAPIError(PortalError):
    """Portal answered with an explicit {"error": ...} payload."""


class ProtocolError(PortalError):
    """Portal response did not have the expected shape (not JSON, missing token, ...)."""


class TransientNetworkError(PortalError):
    """Transport-level fault: timeout, DNS failure, connection reset."""
