"""Concrete AlertTransport implementations."""

from __future__ import annotations

import logging
import uuid

import httpx

from healthmitra.domains.health.connectors import AlertDeliveryError

logger = logging.getLogger(__name__)


def _mask(phone: str) -> str:
    """Keep only the last two digits of a phone number for logs."""
    return f"***{phone[-2:]}" if len(phone) > 2 else "***"


class LoggingSmsTransport:
    """Development transport: logs the message and returns a dummy receipt.

    Always available; used when no SMS gateway is configured.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "log"

    def send_alert(self, contact_address: str, message: str) -> str:
        if not contact_address:
            raise AlertDeliveryError("No contact address")
        self.sent.append((contact_address, message))
        receipt = f"dummy-{uuid.uuid4().hex[:12]}"
        logger.info("[SMS] to %s (%d chars): receipt %s", _mask(contact_address), len(message), receipt)
        return receipt


class WebhookSmsTransport:
    """Posts alerts as JSON to an SMS gateway webhook.

    A short-lived ``httpx.Client`` is opened per message unless one is
    injected; an injected client is owned by the caller.

    The gateway is expected to answer ``{"id": "..."}`` (or ``{"sid": ...}``)
    with a 2xx status.

    Usage::

        transport = WebhookSmsTransport("https://sms.example/api/send", token="...")
        receipt = transport.send_alert("+15550100", "HealthMitra Alert: ...")
    """

    def __init__(
        self,
        gateway_url: str,
        *,
        token: str = "",
        sender: str = "HealthMitra",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not gateway_url:
            raise ValueError("gateway_url must be set for the webhook SMS transport")
        self._url = gateway_url
        self._sender = sender
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._timeout = timeout
        self._client = client
        self._headers = headers

    @property
    def name(self) -> str:
        return "webhook"

    def send_alert(self, contact_address: str, message: str) -> str:
        if not contact_address:
            raise AlertDeliveryError("No contact address")
        payload = {"to": contact_address, "from": self._sender, "body": message}
        try:
            response = self._post(payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise AlertDeliveryError(
                f"SMS gateway error {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise AlertDeliveryError(f"SMS gateway unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        receipt = str(body.get("id") or body.get("sid") or "") if isinstance(body, dict) else ""
        logger.info("[SMS] gateway accepted message to %s", _mask(contact_address))
        return receipt or "accepted"

    def _post(self, payload: dict) -> httpx.Response:
        if self._client is not None:
            return self._client.post(self._url, json=payload, headers=self._headers)
        with httpx.Client(timeout=self._timeout) as client:
            return client.post(self._url, json=payload, headers=self._headers)
