"""Webhook alert sink with per-platform payload shapes."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx

from docstack_ops.alerts.dispatcher import AlertDeliveryError
from docstack_ops.alerts.models import AlertEvent, AlertSeverity

if TYPE_CHECKING:
    from docstack_ops.config.models import WebhookConfig

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Docstack-Signature"

_COLORS = {
    AlertSeverity.ALERT: "#d9534f",
    AlertSeverity.RECOVERED: "#5cb85c",
    AlertSeverity.TEST: "#5bc0de",
}

_EMOJI = {
    AlertSeverity.ALERT: "\U0001f6a8",
    AlertSeverity.RECOVERED: "✅",
    AlertSeverity.TEST: "\U0001f514",
}

DISCORD_MAX_CONTENT = 2000


def detect_platform(url: str) -> str:
    """Pick a payload shape from the webhook URL."""
    lowered = url.lower()
    if "hooks.slack.com" in lowered:
        return "slack"
    if "discord.com/api/webhooks" in lowered or "discordapp.com/api/webhooks" in lowered:
        return "discord"
    if "webhook.office.com" in lowered or "outlook.office.com" in lowered:
        return "teams"
    if "chat.googleapis.com" in lowered:
        return "google_chat"
    return "generic"


def build_payload(platform: str, event: AlertEvent) -> dict[str, Any]:
    headline = f"{_EMOJI[event.severity]} {event.title}"
    if platform == "slack":
        return {
            "text": headline,
            "attachments": [
                {
                    "color": _COLORS[event.severity],
                    "text": event.body,
                    "footer": f"docstack on {event.host}",
                    "ts": int(event.timestamp.timestamp()),
                }
            ],
        }
    if platform == "discord":
        content = f"**{headline}**\n{event.body}\n_{event.host}_"
        return {"username": "docstack", "content": content[:DISCORD_MAX_CONTENT]}
    if platform == "teams":
        return {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "themeColor": _COLORS[event.severity].lstrip("#"),
            "summary": event.title,
            "title": headline,
            "text": event.body.replace("\n", "<br>"),
        }
    if platform == "google_chat":
        return {"text": f"*{headline}*\n{event.body}"}
    return {
        "title": event.title,
        "message": event.body,
        "severity": event.severity.value,
        "host": event.host,
        "timestamp": event.timestamp.isoformat(),
        "details": event.details,
    }


class WebhookSink:
    """POSTs an event to one webhook URL. Raises on delivery failure."""

    def __init__(self, config: WebhookConfig) -> None:
        self._config = config
        self.platform = detect_platform(config.url)
        self.name = config.name or f"webhook:{urlparse(config.url).netloc or config.url}"

    async def send(self, event: AlertEvent) -> None:
        payload = build_payload(self.platform, event)
        # sign and send the exact same bytes
        body_bytes = json.dumps(payload).encode()
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._config.secret and self.platform == "generic":
            sig = hmac.new(self._config.secret.encode(), body_bytes, hashlib.sha256).hexdigest()
            headers[SIGNATURE_HEADER] = sig
        try:
            async with httpx.AsyncClient(timeout=self._config.timeout) as client:
                resp = await client.post(self._config.url, content=body_bytes, headers=headers)
        except httpx.HTTPError as exc:
            raise AlertDeliveryError(f"{self.name}: {exc}") from exc
        if resp.status_code >= 400:
            raise AlertDeliveryError(f"{self.name}: HTTP {resp.status_code}")
        logger.debug("Webhook %s accepted %s alert (%s)", self.name, event.severity.value, self.platform)
