"""Alert notifiers: Discord webhook sender and a no-op fallback.

Delivery is fire-and-forget. ``notify`` returns whether the message was
accepted and logs failures; it never raises into the sweep.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

import httpx

from deal_sentinel.core.config import NotificationsConfig
from deal_sentinel.core.exceptions import NotificationError
from deal_sentinel.core.models import AlertEvent, AlertKind, TrackedItem

logger = logging.getLogger(__name__)

_STORE_PAGE_URL = "https://store.steampowered.com/app/{external_id}/"

_EMBED_STYLE: dict[AlertKind, tuple[str, int]] = {
    AlertKind.RELEASED: ("Now available", 0x9B59B6),
    AlertKind.FREE_GAME: ("Free to keep", 0x1ABC9C),
    AlertKind.NEW_LOW: ("New historical low", 0x2ECC71),
    AlertKind.THRESHOLD_MET: ("Target price reached", 0xF1C40F),
    AlertKind.SALE_START: ("Sale started", 0x3498DB),
}


@runtime_checkable
class Notifier(Protocol):
    """Outbound alert channel used by the BatchRunner."""

    async def notify(self, event: AlertEvent, item: TrackedItem) -> bool: ...

    async def close(self) -> None: ...


class NullNotifier:
    """Accepts every alert and sends nothing."""

    async def notify(self, event: AlertEvent, item: TrackedItem) -> bool:
        logger.debug("Notifications disabled; dropping %s for %s", event.kind, item.label)
        return False

    async def close(self) -> None:
        return None


class DiscordNotifier:
    """Posts one embed per alert to a Discord webhook."""

    def __init__(
        self,
        webhook_url: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def notify(self, event: AlertEvent, item: TrackedItem) -> bool:
        try:
            await self._post({"embeds": [build_embed(event, item)]})
        except NotificationError as e:
            logger.error("Discord notification failed for %s: %s", item.label, e)
            return False
        logger.info("Discord notification sent: %s for %s", event.kind, item.label)
        return True

    async def send_test(self) -> bool:
        """Send a connectivity test message."""
        payload = {
            "embeds": [
                {
                    "title": "deal-sentinel test",
                    "description": "Webhook connection is working.",
                    "color": 0x95A5A6,
                    "timestamp": datetime.now(tz=UTC).isoformat(),
                }
            ]
        }
        try:
            await self._post(payload)
        except NotificationError as e:
            logger.error("Discord test message failed: %s", e)
            return False
        return True

    async def _post(self, payload: dict[str, Any]) -> None:
        try:
            response = await self._client.post(self._webhook_url, json=payload)
        except httpx.HTTPError as e:
            raise NotificationError(
                f"Webhook request failed: {e}",
                context={"channel": "discord", "status_code": None},
            ) from e
        if response.status_code >= 400:
            raise NotificationError(
                f"Webhook returned HTTP {response.status_code}",
                context={"channel": "discord", "status_code": response.status_code},
            )


def build_embed(event: AlertEvent, item: TrackedItem) -> dict[str, Any]:
    """Discord embed for one alert."""
    title, color = _EMBED_STYLE[event.kind]
    fields = [{"name": "Price", "value": _yen(event.trigger_price), "inline": True}]
    if event.discount_percent > 0:
        fields.append(
            {"name": "Discount", "value": f"{event.discount_percent}%", "inline": True}
        )
    if event.previous_low is not None and event.kind == AlertKind.NEW_LOW:
        fields.append(
            {"name": "Previous low", "value": _yen(event.previous_low), "inline": True}
        )
    return {
        "title": f"{title}: {item.display_name}",
        "url": _STORE_PAGE_URL.format(external_id=item.external_id),
        "color": color,
        "fields": fields,
        "footer": {"text": f"app {item.external_id}"},
        "timestamp": event.created_at.isoformat(),
    }


def _yen(amount: float) -> str:
    return f"¥{amount:,.0f}"


def create_notifier(config: NotificationsConfig) -> Notifier:
    """Pick the notifier for the configured channel."""
    if config.discord_active:
        return DiscordNotifier(config.discord_webhook_url)
    logger.info("No notification channel configured; alerts are stored only")
    return NullNotifier()
