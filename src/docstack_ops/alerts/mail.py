"""Email alert sink: first working transport wins."""

from __future__ import annotations

import logging
import os
from email.message import EmailMessage
from typing import TYPE_CHECKING

import httpx

from docstack_ops.alerts.dispatcher import AlertDeliveryError
from docstack_ops.alerts.models import AlertEvent, AlertSeverity
from docstack_ops.runtime.runner import ProcessRunner

if TYPE_CHECKING:
    from docstack_ops.config.models import EmailConfig

logger = logging.getLogger(__name__)

# Fixed preference order
TRANSPORTS = ("api", "msmtp", "sendmail", "mail")

_SUBJECT_PREFIX = {
    AlertSeverity.ALERT: "[ALERT]",
    AlertSeverity.RECOVERED: "[RECOVERED]",
    AlertSeverity.TEST: "[TEST]",
}


def format_subject(event: AlertEvent) -> str:
    return f"{_SUBJECT_PREFIX[event.severity]} {event.title} ({event.host})"


def format_body(event: AlertEvent) -> str:
    return (
        f"{event.body}\n\n"
        f"Host: {event.host}\n"
        f"Time: {event.timestamp.strftime('%Y-%m-%d %H:%M:%S %Z')}\n"
        f"Severity: {event.severity.value}\n"
    )


class EmailSink:
    """Sends one message to every recipient through the first transport that works.

    Recipients the API transport already reached are not handed to the
    fallback transports, so a partial API failure never duplicates mail.
    """

    name = "email"

    def __init__(self, config: EmailConfig, runner: ProcessRunner | None = None) -> None:
        self._config = config
        self._runner = runner or ProcessRunner()

    def _build_message(self, event: AlertEvent, recipients: list[str]) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self._config.sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = format_subject(event)
        msg.set_content(format_body(event))
        return msg

    def available_transports(self) -> list[str]:
        out: list[str] = []
        for transport in TRANSPORTS:
            if transport == "api":
                if self._config.api_url:
                    out.append(transport)
            elif self._runner.which(transport):
                out.append(transport)
        return out

    async def _send_api(self, event: AlertEvent, pending: list[str]) -> None:
        """POST one request per recipient, dropping each from *pending* once accepted."""
        headers: dict[str, str] = {}
        if self._config.api_key_env:
            api_key = os.environ.get(self._config.api_key_env, "")
            if api_key:
                headers["X-API-Key"] = api_key
        async with httpx.AsyncClient(timeout=self._config.timeout) as client:
            for recipient in list(pending):
                resp = await client.post(
                    self._config.api_url,
                    json={
                        "to": recipient,
                        "from": self._config.sender,
                        "subject": format_subject(event),
                        "message": format_body(event),
                    },
                    headers=headers,
                )
                resp.raise_for_status()
                pending.remove(recipient)

    async def _send_command(self, transport: str, event: AlertEvent, recipients: list[str]) -> None:
        if transport == "mail":
            args = ["mail", "-s", format_subject(event), *recipients]
            payload = format_body(event).encode()
        else:
            args = [transport, "-t"]
            payload = self._build_message(event, recipients).as_bytes()
        result = await self._runner.run(args, input=payload, timeout=self._config.timeout)
        if not result.ok:
            raise AlertDeliveryError(f"{transport}: {result.error_text}")

    async def send(self, event: AlertEvent) -> None:
        transports = self.available_transports()
        if not transports:
            raise AlertDeliveryError("no mail transport available (api_url, msmtp, sendmail, mail)")
        pending = list(self._config.recipients)
        errors: list[str] = []
        for transport in transports:
            count = len(pending)
            try:
                if transport == "api":
                    await self._send_api(event, pending)
                else:
                    await self._send_command(transport, event, pending)
            except Exception as exc:
                logger.warning("Mail transport %s failed: %s", transport, exc)
                errors.append(f"{transport}: {exc}")
                continue
            logger.info(
                "Email sent via %s to %d recipient(s) - subject: %s",
                transport,
                count,
                format_subject(event),
            )
            return
        raise AlertDeliveryError("; ".join(errors))
