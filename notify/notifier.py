"""
notify/notifier.py -- The three emails the auth flows send.

AuthNotifier renders a template and hands it to an EmailSender. Any failure
(sender returned False, template error, transport bug) surfaces as
EmailDispatchFailed so the flows can downgrade it to a *_EMAIL_FAILED success
code. Nothing here touches the credential store.
"""

from __future__ import annotations

import logging
import math
from typing import Callable

from auth.exceptions import EmailDispatchFailed
from auth.models import Principal
from core.config import Settings
from notify.mailer import EmailSender
from notify.templates import EmailTemplates, RenderedEmail

logger = logging.getLogger("bidbuy.notify")


class AuthNotifier:
    def __init__(self, sender: EmailSender, settings: Settings) -> None:
        self.sender = sender
        self.templates = EmailTemplates(settings.app_name, settings.base_url)
        self._otp_minutes = _minutes(settings.otp_ttl_seconds)
        self._reset_otp_minutes = _minutes(settings.reset_otp_ttl_seconds)

    def send_verification(self, principal: Principal, otp: str) -> None:
        self._deliver(principal.email, lambda: self.templates.verification(principal.name, otp, self._otp_minutes))

    def send_password_reset(self, principal: Principal, otp: str) -> None:
        self._deliver(
            principal.email,
            lambda: self.templates.password_reset(principal.name, otp, self._reset_otp_minutes),
        )

    def send_password_changed(self, principal: Principal) -> None:
        self._deliver(principal.email, lambda: self.templates.password_changed(principal.name))

    def _deliver(self, to: str, render: Callable[[], RenderedEmail]) -> None:
        try:
            email = render()
            delivered = self.sender.send(to, email.subject, email.html, email.text)
        except Exception as exc:
            logger.exception("Failed to render or send email to %s", to)
            raise EmailDispatchFailed() from exc
        if not delivered:
            logger.warning("Email '%s' to %s was not delivered", email.subject, to)
            raise EmailDispatchFailed()


def _minutes(seconds: int) -> int:
    return max(1, math.ceil(seconds / 60))
