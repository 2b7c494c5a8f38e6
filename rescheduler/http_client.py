from __future__ import annotations

import logging
from typing import Any

import httpx
from bs4 import BeautifulSoup

from rescheduler.dates import normalize_date
from rescheduler.domain import (
    SESSION_COOKIE_NAME,
    AuthSessionError,
    DomainAPIError,
    ProtocolError,
    SessionContext,
    TransientNetworkError,
)

BASE_HOST = "https://ais.usvisa-info.com"

# Rails puts the anti-forgery token into <meta name="csrf-token" content="...">.
CSRF_TOKEN_SELECTOR = 'meta[name="csrf-token"]'
CSRF_TOKEN_ATTRIBUTE = "content"

COMMON_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Cache-Control": "no-store",
}

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=UTF-8"


def build_base_uri(country_code: str) -> str:
    # e.g. en-ca, en-mx
    return f"{BASE_HOST}/en-{country_code}/niv"


def extract_csrf_token(
    html: str,
    selector: str = CSRF_TOKEN_SELECTOR,
    attribute: str = CSRF_TOKEN_ATTRIBUTE,
) -> str:
    """Scrape the anti-forgery token from a portal page.

    Raises:
        ProtocolError: if no element matches ``selector`` or it has no value.
    """
    soup = BeautifulSoup(html, "html.parser")
    element = soup.select_one(selector)
    token = element.get(attribute) if element is not None else None

    if not token:
        raise ProtocolError(f"CSRF token not found in page (selector {selector!r}).")

    return str(token)


def extract_session_cookie(response: httpx.Response) -> str:
    """Return the ``Cookie`` header value carrying the portal session.

    Raises:
        AuthSessionError: if the response did not set the session cookie.
    """
    value = response.cookies.get(SESSION_COOKIE_NAME)
    if not value:
        received = sorted({name for name in response.cookies.keys()})
        raise AuthSessionError(
            f"Login failed: no session cookie ({SESSION_COOKIE_NAME}) received "
            f"(status {response.status_code}, cookies received: {received}). "
            "Please check your credentials and ensure the website is accessible."
        )
    return f"{SESSION_COOKIE_NAME}={value}"


class SessionClient:
    """HTTP protocol for the visa appointment portal.

    Every method performs exactly one logical operation and never retries;
    retry policy belongs to the polling loop.
    """

    def __init__(
        self,
        *,
        country_code: str,
        email: str,
        password: str,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_uri = build_base_uri(country_code)
        self._email = email
        self._password = password
        self._logger = logger or logging.getLogger(__name__)
        self._http = httpx.Client(
            headers=COMMON_HEADERS,
            timeout=timeout_seconds,
            follow_redirects=False,
            transport=transport,
        )

    def __enter__(self) -> SessionClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    # --- public API ---

    def login(self) -> SessionContext:
        url = f"{self.base_uri}/users/sign_in"
        self._logger.info("Logging in to %s", url)

        # Start every login from a clean cookie jar so the first request is anonymous.
        self._http.cookies.clear()
        anonymous = self._fetch_form_context(url)

        login_data = {
            "utf8": "✓",
            "user[email]": self._email,
            "user[password]": self._password,
            "policy_confirmed": "1",
            "commit": "Sign In",
        }

        self._logger.info("Submitting login form for %s", self._email)
        response = self._send(
            "POST",
            url,
            headers={**anonymous.headers(), "Content-Type": FORM_CONTENT_TYPE},
            data=login_data,
        )
        self._logger.info("Login response received with status: %s", response.status_code)

        return SessionContext(
            cookie=extract_session_cookie(response),
            csrf_token=anonymous.csrf_token,
            referer=self.base_uri,
        )

    def query_available_dates(self, context: SessionContext, schedule_id: str, facility_id: str) -> list[str]:
        url = f"{self.base_uri}/schedule/{schedule_id}/appointment/days/{facility_id}.json"
        self._logger.info("Checking available dates at: %s", url)

        data = self._json_request(url, context, params={"appointments[expedite]": "false"})
        if not isinstance(data, list):
            raise ProtocolError(f"Expected a list of dates from {url}, got {type(data).__name__}")

        try:
            return [normalize_date(item["date"]) for item in data]
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed date entry in response from {url}: {e}") from e

    def query_available_time(
        self,
        context: SessionContext,
        schedule_id: str,
        facility_id: str,
        date: str,
    ) -> str | None:
        url = f"{self.base_uri}/schedule/{schedule_id}/appointment/times/{facility_id}.json"
        self._logger.info("Checking available times for %s", date)

        data = self._json_request(url, context, params={"date": date, "appointments[expedite]": "false"})
        if not isinstance(data, dict):
            raise ProtocolError(f"Expected an object from {url}, got {type(data).__name__}")

        # An empty or null first business slot falls back to the general list.
        business_times = data.get("business_times") or [None]
        available_times = data.get("available_times") or [None]
        return business_times[0] or available_times[0] or None

    def book(
        self,
        context: SessionContext,
        schedule_id: str,
        facility_id: str,
        date: str,
        time: str,
    ) -> bool:
        url = f"{self.base_uri}/schedule/{schedule_id}/appointment"

        # Tokens are single-use; fetch a fresh one from the appointment page.
        booking = self._fetch_form_context(url, context)

        booking_data = {
            "utf8": "✓",
            "authenticity_token": booking.csrf_token or "",
            "confirmed_limit_message": "1",
            "use_consulate_appointment_capacity": "true",
            "appointments[consulate_appointment][facility_id]": facility_id,
            "appointments[consulate_appointment][date]": date,
            "appointments[consulate_appointment][time]": time,
            "appointments[asc_appointment][facility_id]": "",
            "appointments[asc_appointment][date]": "",
            "appointments[asc_appointment][time]": "",
        }

        self._logger.info("Submitting booking form for %s %s", date, time)
        response = self._send(
            "POST",
            url,
            headers={**booking.headers(), "Content-Type": FORM_CONTENT_TYPE},
            data=booking_data,
            follow_redirects=True,
        )
        # The resulting page is not inspected; completing the submission counts as success.
        self._logger.debug("Booking submission finished at %s with status %s", response.url, response.status_code)
        return True

    # --- internals ---

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._http.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method} {url} failed ({type(e).__name__}: {e})") from e

        self._logger.debug("%s %s returned status: %s", method, response.url, response.status_code)
        return response

    def _fetch_form_context(self, url: str, context: SessionContext | None = None) -> SessionContext:
        headers = {"Accept": "*/*"}
        if context is not None:
            headers.update(context.headers())

        response = self._send("GET", url, headers=headers)
        return SessionContext(
            cookie=extract_session_cookie(response),
            csrf_token=extract_csrf_token(response.text),
            referer=self.base_uri,
        )

    def _json_request(self, url: str, context: SessionContext, *, params: dict[str, str] | None = None) -> Any:
        self._logger.debug("Making JSON request with cookie: %s...", context.cookie[:30])

        response = self._send(
            "GET",
            url,
            params=params,
            headers={
                **context.headers(),
                "Accept": "application/json",
                "X-Requested-With": "XMLHttpRequest",
            },
        )

        try:
            data = response.json()
        except ValueError as e:
            self._logger.debug("Response content (first 500 chars): %s", response.text[:500])
            raise ProtocolError(
                f"Invalid JSON response from {url} (status {response.status_code} {response.reason_phrase})"
            ) from e

        if isinstance(data, dict) and data.get("error"):
            raise DomainAPIError(str(data["error"]))

        return data
