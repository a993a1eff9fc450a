"""
Push notification dispatch over third-party channels.

Each channel turns a ``PushMessage`` into its provider's wire call:
- Bark: GET with title and body in the path, success when ``code == 200``
- Pushplus: POST JSON with HTML content, success when ``code == 200``
- ServerChan: POST form data, success when ``code == 0``
- Telegram: POST JSON with HTML text, success when ``ok`` is true

``NotificationDispatcher.send`` makes a single attempt with a bounded timeout
and never raises: every failure is reduced to ``PushResult(success=False)``.
"""

import html
import json
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from ..config import settings
from ..errors import DispatchError
from ..models.internal_models import (
    BarkConfig,
    Owner,
    PushChannel,
    PushMessage,
    PushplusConfig,
    PushResult,
    ServerChanConfig,
    TelegramConfig,
)
from ..observability import record_notification_metrics

logger = logging.getLogger(__name__)

DETAILS_LINK_TEXT = "View details"


def _parse_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        return response.json()
    except ValueError:
        raise DispatchError(f"Non-JSON response (HTTP {response.status_code})")


async def push_bark(client: httpx.AsyncClient, config: BarkConfig, message: PushMessage) -> None:
    """Deliver through a Bark server (iOS)."""
    base_url = config.server_url.rstrip('/')
    url = f"{base_url}/{quote(config.key, safe='')}/{quote(message.title, safe='')}/{quote(message.body, safe='')}"

    params = {
        "group": settings.bark_group,
        "sound": settings.bark_sound,
        "level": settings.bark_level,
    }
    if message.url:
        params["url"] = message.url

    response = await client.get(url, params=params)
    result = _parse_json(response)
    if result.get("code") != 200:
        raise DispatchError(json.dumps(result, ensure_ascii=False))


async def push_pushplus(client: httpx.AsyncClient, config: PushplusConfig, message: PushMessage) -> None:
    """Deliver through Pushplus (WeChat)."""
    content = html.escape(message.body).replace("\n", "<br>")
    if message.url:
        content += f'<br><br><a href="{html.escape(message.url, quote=True)}">{DETAILS_LINK_TEXT}</a>'

    response = await client.post(
        settings.pushplus_endpoint,
        json={
            "token": config.token,
            "title": message.title,
            "content": content,
            "template": "html",
        },
    )
    result = _parse_json(response)
    if result.get("code") != 200:
        raise DispatchError(json.dumps(result, ensure_ascii=False))


async def push_serverchan(client: httpx.AsyncClient, config: ServerChanConfig, message: PushMessage) -> None:
    """Deliver through ServerChan."""
    desp = message.body
    if message.url:
        desp += f"\n\n[{DETAILS_LINK_TEXT}]({message.url})"

    response = await client.post(
        f"{settings.serverchan_base_url.rstrip('/')}/{config.send_key}.send",
        data={"title": message.title, "desp": desp},
    )
    result = _parse_json(response)
    if result.get("code") != 0:
        raise DispatchError(json.dumps(result, ensure_ascii=False))


async def push_telegram(client: httpx.AsyncClient, config: TelegramConfig, message: PushMessage) -> None:
    """Deliver through a Telegram bot."""
    text = f"<b>{html.escape(message.title)}</b>\n\n{html.escape(message.body)}"
    if message.url:
        text += f'\n\n<a href="{html.escape(message.url, quote=True)}">{DETAILS_LINK_TEXT}</a>'

    response = await client.post(
        f"{settings.telegram_api_base_url.rstrip('/')}/bot{config.bot_token}/sendMessage",
        json={
            "chat_id": config.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": False,
        },
    )
    result = _parse_json(response)
    if result.get("ok") is not True:
        raise DispatchError(json.dumps(result, ensure_ascii=False))


_SENDERS = {
    PushChannel.BARK: push_bark,
    PushChannel.PUSHPLUS: push_pushplus,
    PushChannel.SERVERCHAN: push_serverchan,
    PushChannel.TELEGRAM: push_telegram,
}


class NotificationDispatcher:
    """Best-effort single-attempt sender over the Owner's configured channel."""

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize dispatcher.

        Args:
            timeout: Per-attempt timeout in seconds, defaults to PUSH_TIMEOUT_SECONDS
            transport: Optional httpx transport, used to stub providers in tests
        """
        self.timeout = timeout or settings.push_timeout_seconds
        self.transport = transport

    async def send(self, owner: Owner, message: PushMessage) -> PushResult:
        """
        Send ``message`` through ``owner``'s push channel.

        Returns:
            PushResult describing the outcome; never raises
        """
        channel = owner.push_channel
        start_time = time.time()

        try:
            sender = _SENDERS[channel]
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                await sender(client, owner.push, message)

            result = PushResult(success=True, channel=channel)
            logger.info(f"Notification delivered to owner {owner.id} via {channel.value}")

        except DispatchError as e:
            result = PushResult(success=False, channel=channel, error=e.message)
        except httpx.TimeoutException as e:
            result = PushResult(success=False, channel=channel, error=f"Timeout after {self.timeout}s: {e}")
        except httpx.HTTPError as e:
            result = PushResult(success=False, channel=channel, error=f"HTTP error: {e}")
        except Exception as e:
            result = PushResult(success=False, channel=channel, error=str(e))

        if not result.success:
            logger.warning(f"Notification to owner {owner.id} via {channel.value} failed: {result.error}")

        record_notification_metrics(
            channel=channel.value,
            success=result.success,
            processing_time=time.time() - start_time
        )
        return result

    async def send_test(self, owner: Owner) -> PushResult:
        """Send a fixed message confirming the push configuration works."""
        return await self.send(owner, PushMessage(
            title="🚗 Push test",
            body="Your move-car notification settings work. This is a test message.",
        ))


# Global dispatcher instance
_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """Get the global notification dispatcher instance."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
