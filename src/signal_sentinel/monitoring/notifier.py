"""
Telegram notifications for monitoring alerts.

TelegramNotifier is the transport: one sendMessage call with MarkdownV2,
retried once as plain text if Telegram rejects the formatting.

NotificationDispatcher runs deliveries as detached tasks so the heartbeat
and hit paths never wait on the network. It keeps references to in-flight
tasks and can drain them on shutdown.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"

ALERT_EMOJIS = {
    "SIGNAL_DEAD": "🚨",
    "FREQUENCY_DOWN": "⚠️",
    "SIGNAL_RECOVERED": "✅",
    "RATIO_LOW": "📉",
    "RATIO_RECOVERED": "📈",
}
DEFAULT_EMOJI = "📢"

_MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


def escape_markdown(text: str) -> str:
    """Escape Telegram MarkdownV2 special characters."""
    return _MARKDOWN_V2_SPECIAL.sub(r"\\\1", text)


@dataclass(frozen=True)
class TelegramConfig:
    """Telegram bot credentials. Missing values disable delivery."""

    bot_token: Optional[str] = None
    chat_id: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)


class TelegramNotifier:
    """
    Sends alert messages via the Telegram Bot API.

    Usage:
        notifier = TelegramNotifier(TelegramConfig(bot_token="...", chat_id="..."))
        ok = await notifier.send("Signal dead", body, alert_type="SIGNAL_DEAD")
    """

    def __init__(
        self,
        config: TelegramConfig,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Args:
            config: Bot token and chat id
            timeout: HTTP timeout per request
            client: Injected client (tests use httpx.MockTransport)
        """
        self._config = config
        self._timeout = timeout
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    async def send(self, title: str, body: str, alert_type: Optional[str] = None) -> bool:
        """
        Send one message. Returns True if Telegram accepted it.

        Never raises for HTTP or API failures; they are logged.
        """
        if not self.enabled:
            logger.warning("Telegram credentials not configured")
            return False

        emoji = ALERT_EMOJIS.get(alert_type or "", DEFAULT_EMOJI)
        markdown = {
            "chat_id": self._config.chat_id,
            "text": f"{emoji} *{escape_markdown(title)}*\n\n{escape_markdown(body)}",
            "parse_mode": "MarkdownV2",
        }
        plain = {
            "chat_id": self._config.chat_id,
            "text": f"{emoji} {title}\n\n{body}",
        }

        try:
            data = await self._post(markdown)
            if data.get("ok"):
                logger.info(f"Sent Telegram alert: {title}")
                return True

            logger.warning(
                f"Telegram rejected MarkdownV2 message ({data.get('description')}), "
                f"retrying as plain text"
            )
            retry = await self._post(plain)
            if retry.get("ok"):
                logger.info(f"Sent Telegram alert (plain text): {title}")
                return True

            logger.error(f"Failed to send Telegram alert: {retry.get('description')}")
            return False

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to send Telegram alert: {e}")
            return False

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{TELEGRAM_API_URL}/bot{self._config.bot_token}/sendMessage"
        if self._client is not None:
            resp = await self._client.post(url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=payload)
        return resp.json()


class NotificationDispatcher:
    """
    Fire-and-forget delivery with a timeout.

    ``submit`` returns immediately. When the notifier reports success the
    ``on_sent`` callback runs (used to stamp ``sent_at``). Every failure is
    logged and swallowed so callers are never affected.
    """

    def __init__(self, notifier: TelegramNotifier, timeout_seconds: float = 10.0) -> None:
        self._notifier = notifier
        self._timeout = timeout_seconds
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(
        self,
        title: str,
        body: str,
        alert_type: Optional[str] = None,
        on_sent: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> Optional[asyncio.Task]:
        """Schedule a delivery. Returns the task, or None if delivery is disabled."""
        if not self._notifier.enabled:
            logger.debug(f"Notifications disabled, not sending: {title}")
            return None

        task = asyncio.create_task(self._deliver(title, body, alert_type, on_sent))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(
        self,
        title: str,
        body: str,
        alert_type: Optional[str],
        on_sent: Optional[Callable[[], Awaitable[Any]]],
    ) -> bool:
        try:
            sent = await asyncio.wait_for(
                self._notifier.send(title, body, alert_type=alert_type),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Notification timed out after {self._timeout}s: {title}")
            return False
        except Exception as e:
            logger.error(f"Notification error for '{title}': {e}")
            return False

        if not sent:
            return False

        if on_sent is not None:
            try:
                await on_sent()
            except Exception as e:
                logger.error(f"Failed to record delivery of '{title}': {e}")
        return True

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight deliveries, cancelling whatever is left at ``timeout``."""
        if not self._tasks:
            return

        tasks = list(self._tasks)
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(pending)} undelivered notifications")
