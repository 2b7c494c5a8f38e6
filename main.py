import argparse
import logging

from rescheduler.config import ConfigValidationError, load_settings
from rescheduler.dates import normalize_date
from rescheduler.domain import PollingState
from rescheduler.http_client import SessionClient
from rescheduler.worker import PollingLoop

NOISY_LOGGERS = ("httpx", "httpcore")


def _setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _date_arg(value: str) -> str:
    try:
        return normalize_date(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Visa appointment rescheduler: books earlier slots as they appear")
    parser.add_argument("-c", "--current", required=True, type=_date_arg, help="Currently booked date")
    parser.add_argument("-t", "--target", type=_date_arg, help="Stop once booked on or before this date")
    parser.add_argument("-m", "--min", dest="min_date", type=_date_arg, help="Never book before this date")
    parser.add_argument("--dry-run", action="store_true", help="Log what would be booked without booking")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every request and response")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    _setup_logging(args.verbose)
    log = logging.getLogger("rescheduler")

    try:
        settings = load_settings()
    except ConfigValidationError as e:
        log.error("Invalid configuration: %s", e)
        return 1

    state = PollingState(
        current_booked_date=args.current,
        target_date=args.target,
        min_date=args.min_date,
    )

    with SessionClient(
        country_code=settings.country_code,
        email=settings.email,
        password=settings.password,
        timeout_seconds=settings.request_timeout_seconds,
        logger=logging.getLogger("rescheduler.http"),
    ) as client:
        loop = PollingLoop(settings, client, state, dry_run=args.dry_run, logger=log)
        booked = loop.run()

    log.info("Done: appointment booked on %s", booked)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
