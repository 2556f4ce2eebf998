"""Telegram Bot API messaging channel."""

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger("signalhub.telegram")

_API_BASE = "https://api.telegram.org"
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds; doubles each attempt
# Failures where the request never reached Telegram
_UNSENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


class TelegramChannel:
    """Sends HTML messages through ``sendMessage``.

    Args:
        bot_token: Bot API token.
        timeout: Per-request HTTP timeout in seconds.
    """

    def __init__(self, bot_token: str, timeout: float = 10.0) -> None:
        self._url = f"{_API_BASE}/bot{bot_token}/sendMessage"
        self._timeout = timeout

    async def send(self, destination: str, message: str) -> bool:
        """Send *message* to chat *destination*.

        Returns ``True`` only when Telegram answers ``{"ok": true}``.  Only a
        failed connection or a 429 (which honours ``retry_after``) is retried,
        since in both cases nothing reached the chat.  A read timeout or a
        broken response may follow a delivered message, so it fails once
        without a resend.
        """
        payload = {
            "chat_id": destination,
            "text": message,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        last_error: Optional[str] = None

        for attempt in range(_MAX_RETRIES):
            delay = _RETRY_BASE_DELAY * (2 ** attempt)
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.post(self._url, json=payload, timeout=self._timeout)
            except _UNSENT_ERRORS as exc:
                last_error = str(exc)
                logger.warning(
                    "Telegram unreachable for %s (%s), retry %d/%d in %.1fs",
                    destination, exc, attempt + 1, _MAX_RETRIES, delay,
                )
                await asyncio.sleep(delay)
                continue
            except httpx.TransportError as exc:
                logger.error("Telegram send to %s interrupted, not resent: %s", destination, exc)
                return False

            if resp.status_code == 429:
                try:
                    delay = float(resp.json().get("parameters", {}).get("retry_after", delay))
                except ValueError:
                    pass
                last_error = "HTTP 429"
                logger.warning(
                    "Telegram rate-limited %s, retry %d/%d in %.1fs",
                    destination, attempt + 1, _MAX_RETRIES, delay,
                )
                await asyncio.sleep(delay)
                continue

            try:
                data = resp.json()
            except ValueError:
                data = {}
            if resp.status_code == 200 and data.get("ok"):
                return True
            logger.error(
                "Telegram rejected message to %s: %s",
                destination, data.get("description", f"HTTP {resp.status_code}"),
            )
            return False

        logger.error("Telegram send to %s failed after %d attempts: %s", destination, _MAX_RETRIES, last_error)
        return False
