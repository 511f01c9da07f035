"""
notify/mailer.py -- Outbound email for the credential lifecycle.

The flows depend on the EmailSender protocol only: send() returns True on
delivery to the transport and False on any failure, and never raises. A state
transition is always committed before its email is sent, so a False here is
reported to the caller but never rolls anything back.

Implementations:
  GatewayEmailSender -- HTTP email gateway. The JSON payload is signed with
      HMAC-SHA256 and sent with an API key header.
  LoggingEmailSender -- development fallback when no gateway is configured.
      Logs recipient and subject and reports success.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Protocol

import requests

from core.config import Settings

logger = logging.getLogger("bidbuy.notify")


class EmailSender(Protocol):
    def send(self, to: str, subject: str, html: str, text: str) -> bool: ...


class GatewayEmailSender:
    """Send emails via HTTP gateway with HMAC signature verification."""

    def __init__(
        self,
        gateway_url: str,
        api_key: str,
        hmac_secret: str,
        sender: str = "auth",
        timeout: int = 10,
    ) -> None:
        """
        Args:
            gateway_url: Full URL to the email gateway endpoint
            api_key: API key for X-API-Key header
            hmac_secret: Secret for HMAC-SHA256 signature
            sender: Sender identity the gateway maps to a From address
            timeout: Request timeout in seconds

        Raises:
            ValueError: If any credential is empty
        """
        if not gateway_url:
            raise ValueError("gateway_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        if not hmac_secret:
            raise ValueError("hmac_secret is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.sender = sender
        self.timeout = timeout

    def _sign(self, payload_json: str) -> str:
        return hmac.new(
            self.hmac_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def send(self, to: str, subject: str, html: str, text: str) -> bool:
        payload_json = json.dumps(
            {"email": to, "subject": subject, "html": html, "text": text, "sender": self.sender},
            separators=(",", ":"),
        )
        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": self._sign(payload_json),
        }

        try:
            response = requests.post(self.gateway_url, data=payload_json, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error("Email gateway connection failed: %s", e)
            return False

        try:
            response_data = response.json()
        except ValueError:
            logger.error("Email gateway returned invalid JSON (status %d)", response.status_code)
            return False

        if response.status_code != 200 or not response_data.get("success"):
            logger.error("Email gateway error: %s", response_data.get("message", "Unknown error"))
            return False

        logger.info("Email sent to %s: %s", to, subject)
        return True


class LoggingEmailSender:
    """Development sender: logs instead of delivering. Never use in production."""

    def send(self, to: str, subject: str, html: str, text: str) -> bool:
        logger.warning("Email gateway not configured; not delivering '%s' to %s", subject, to)
        logger.debug("Email body for %s:\n%s", to, text)
        return True


def build_email_sender(settings: Settings) -> EmailSender:
    """Pick the transport for these settings.

    Without gateway credentials, only debug mode may start (with the logging
    sender); production refuses so verification emails are never dropped silently.
    """
    if settings.email_gateway_configured:
        return GatewayEmailSender(
            gateway_url=settings.email_gateway_url,
            api_key=settings.email_gateway_api_key,
            hmac_secret=settings.email_gateway_hmac_secret,
            timeout=settings.email_timeout_seconds,
        )
    if settings.debug:
        return LoggingEmailSender()
    raise ValueError(
        "EMAIL_GATEWAY_URL, EMAIL_GATEWAY_API_KEY and EMAIL_GATEWAY_HMAC_SECRET are required in production mode."
    )
