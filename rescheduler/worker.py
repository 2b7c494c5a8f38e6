from __future__ import annotations

import logging
import time
from typing import Callable

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_never

from rescheduler.availability import choose_date
from rescheduler.backoff import failure_backoff_delay, is_transient_error
from rescheduler.config import Settings
from rescheduler.dates import calculate_threshold_date
from rescheduler.domain import AvailabilityDecision, PollingState, SessionContext
from rescheduler.http_client import SessionClient
from rescheduler.telegram_notifier import broadcast


def _short_exc(exc: BaseException | None) -> str:
    if exc is None:
        return "unknown error"
    # Type and message only; tracebacks would flood the log on a long outage.
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _failed_exception(retry_state: RetryCallState) -> BaseException | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    return retry_state.outcome.exception()


class PollingLoop:
    """Polls the portal for earlier dates and rebooks until the target is reached.

    Each login starts a session in which cycles run back to back. Any exception
    ends the session; tenacity then starts a new one, after a backoff sleep for
    transient network errors and immediately for everything else. There is no
    retry cap.
    """

    def __init__(
        self,
        settings: Settings,
        client: SessionClient,
        state: PollingState,
        *,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.state = state
        self.dry_run = dry_run
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)

    def backoff_delay(self) -> float:
        return failure_backoff_delay(
            self.state.consecutive_failures,
            self.settings.refresh_delay,
            self.settings.failure_backoff_multiplier,
            self.settings.failure_backoff_max_delay,
        )

    def run(self) -> str:
        """Block until a booking on or before the target date; returns that date."""
        self._log_startup()

        retrying = Retrying(
            retry=retry_if_exception_type(Exception),
            stop=stop_never,
            after=self._record_failure,
            wait=self._wait_before_relogin,
            before_sleep=self._log_before_relogin,
            sleep=self._sleep_before_relogin,
        )
        return retrying(self._run_session)

    def run_cycle(self, context: SessionContext) -> bool:
        """One poll: query, decide, maybe book, sleep. True when the target is reached."""
        dates = self.client.query_available_dates(
            context, self.settings.schedule_id, self.settings.facility_id
        )
        decision = choose_date(
            dates,
            current_booked_date=self.state.current_booked_date,
            min_improvement_days=self.settings.reschedule_min_improvement_days,
            min_date=self.state.min_date,
        )

        if not decision.should_long_sleep:
            self.state.consecutive_failures = 0
        self._log_decision(decision)

        if decision.date is not None and self._book(context, decision.date):
            self.state.current_booked_date = decision.date
            self._notify(f"Rebooked visa appointment to {decision.date}.")

            if self.state.target_date and decision.date <= self.state.target_date:
                self._logger.info("Target date reached! Successfully booked appointment on %s", decision.date)
                self._notify(f"Target date reached: appointment booked on {decision.date}.")
                return True

        if decision.should_long_sleep:
            self.state.consecutive_failures += 1
            delay = self.backoff_delay()
            self._logger.info(
                "No dates available from API (failure #%s). Sleeping for %s seconds...",
                self.state.consecutive_failures,
                delay,
            )
        else:
            delay = self.settings.refresh_delay

        self._sleep(delay)
        return False

    # --- session ---

    def _run_session(self) -> str:
        context = self.client.login()
        self._logger.info("Session established, polling schedule %s", self.settings.schedule_id)
        while True:
            if self.run_cycle(context):
                return self.state.current_booked_date

    def _book(self, context: SessionContext, date: str) -> bool:
        time_slot = self.client.query_available_time(
            context, self.settings.schedule_id, self.settings.facility_id, date
        )
        if not time_slot:
            self._logger.info("No available time slots for date %s", date)
            return False

        if self.dry_run:
            self._logger.info("[DRY RUN] Would book appointment at %s %s (not actually booking)", date, time_slot)
            return True

        booked = self.client.book(
            context, self.settings.schedule_id, self.settings.facility_id, date, time_slot
        )
        if booked:
            self._logger.info("Booked time at %s %s", date, time_slot)
        return booked

    def _notify(self, text: str) -> None:
        if not self.settings.notifications_enabled:
            return
        prefix = "[DRY RUN] " if self.dry_run else ""
        broadcast(
            bot_token=self.settings.telegram_bot_token or "",
            chat_ids=self.settings.telegram_chat_ids,
            text=prefix + text,
        )

    # --- tenacity hooks; after -> wait -> before_sleep -> sleep ---

    def _record_failure(self, retry_state: RetryCallState) -> None:
        exc = _failed_exception(retry_state)
        if exc is not None and is_transient_error(exc):
            self.state.consecutive_failures += 1

    def _wait_before_relogin(self, retry_state: RetryCallState) -> float:
        exc = _failed_exception(retry_state)
        if exc is not None and is_transient_error(exc):
            return self.backoff_delay()
        return 0.0

    def _log_before_relogin(self, retry_state: RetryCallState) -> None:
        exc = _failed_exception(retry_state)
        sleep_seconds = getattr(retry_state.next_action, "sleep", 0.0) or 0.0

        if sleep_seconds:
            self._logger.warning(
                "Network error (%s). Trying again after %s seconds (failure #%s)...",
                _short_exc(exc),
                sleep_seconds,
                self.state.consecutive_failures,
            )
        else:
            self._logger.warning("Session/authentication error (%s). Retrying immediately...", _short_exc(exc))

    def _sleep_before_relogin(self, seconds: float) -> None:
        if seconds > 0:
            self._sleep(seconds)

    # --- logging ---

    def _log_startup(self) -> None:
        state = self.state
        self._logger.info("Initializing with current date %s", state.current_booked_date)
        if self.dry_run:
            self._logger.info("[DRY RUN MODE] Bot will only log what would be booked without actually booking")
        if state.target_date:
            self._logger.info("Target date: %s", state.target_date)
        if state.min_date:
            self._logger.info("Minimum date: %s", state.min_date)
        self._logger.info(
            "Minimum reschedule improvement: %s days", self.settings.reschedule_min_improvement_days
        )
        self._logger.info(
            "Only considering dates before %s",
            calculate_threshold_date(state.current_booked_date, self.settings.reschedule_min_improvement_days),
        )

    def _log_decision(self, decision: AvailabilityDecision) -> None:
        if decision.should_long_sleep:
            return
        self._logger.info("Earliest available date: %s", decision.earliest_date)
        if decision.date is None:
            self._logger.info(
                "No good dates found after filtering (seeking dates before %s, which is %s days before current booking %s)",
                decision.threshold_date,
                self.settings.reschedule_min_improvement_days,
                self.state.current_booked_date,
            )
        else:
            self._logger.info(
                "Found %d good dates: %s, using earliest: %s",
                len(decision.candidates),
                ", ".join(decision.candidates),
                decision.date,
            )
