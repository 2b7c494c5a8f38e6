from __future__ import annotations

import logging
from typing import Iterable

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class TelegramAPIError(RuntimeError):
    """Bot API answered with ``"ok": false``."""


def _post_message(client: httpx.Client, *, bot_token: str, chat_id: str, text: str) -> None:
    response = client.post(
        f"{TELEGRAM_API}/bot{bot_token}/sendMessage",
        json={"chat_id": chat_id, "text": text, "disable_web_page_preview": True},
    )
    response.raise_for_status()
    body = response.json()
    if not body.get("ok", False):
        raise TelegramAPIError(f"Telegram API error for chat_id={chat_id}: {body.get('description', body)}")


def send_telegram_message(
    *,
    bot_token: str,
    chat_id: str,
    text: str,
    timeout_seconds: float = 20.0,
    transport: httpx.BaseTransport | None = None,
) -> None:
    with httpx.Client(timeout=timeout_seconds, transport=transport) as client:
        _post_message(client, bot_token=bot_token, chat_id=chat_id, text=text)


def broadcast(
    *,
    bot_token: str,
    chat_ids: Iterable[str],
    text: str,
    timeout_seconds: float = 20.0,
    transport: httpx.BaseTransport | None = None,
) -> int:
    """Send ``text`` to every chat over one connection; returns how many deliveries failed.

    A failing chat is logged and skipped, the rest still get the message.
    """
    failed = 0
    with httpx.Client(timeout=timeout_seconds, transport=transport) as client:
        for chat_id in chat_ids:
            try:
                _post_message(client, bot_token=bot_token, chat_id=chat_id, text=text)
            except (httpx.HTTPError, TelegramAPIError, ValueError) as e:
                logger.warning("Booking notification to chat_id=%s failed (%s: %s)", chat_id, type(e).__name__, e)
                failed += 1
    return failed
