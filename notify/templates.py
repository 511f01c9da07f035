"""
notify/templates.py -- Jinja2 rendering for credential-lifecycle emails.

Each template exists as an .html and a .txt twin under notify/templates/.
HTML is autoescaped; plain text is not.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

_TEMPLATE_DIR = Path(__file__).parent / "templates"


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


class EmailTemplates:
    """Render the three emails the auth flows send.

    Usage:
        templates = EmailTemplates(app_name="BidBuy", base_url="https://bidbuy.example")
        email = templates.verification("Ada", "123456", ttl_minutes=5)
        sender.send(to, email.subject, email.html, email.text)
    """

    def __init__(self, app_name: str, base_url: str) -> None:
        self.app_name = app_name
        self.base_url = base_url.rstrip("/")
        self._env = Environment(
            loader=FileSystemLoader(_TEMPLATE_DIR),
            autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def _render(self, template: str, subject: str, **context) -> RenderedEmail:
        context.update(app_name=self.app_name, base_url=self.base_url)
        return RenderedEmail(
            subject=subject,
            html=self._env.get_template(f"{template}.html").render(**context),
            text=self._env.get_template(f"{template}.txt").render(**context),
        )

    def verification(self, name: str, otp: str, ttl_minutes: int) -> RenderedEmail:
        return self._render(
            "verification",
            f"Welcome to {self.app_name} - Your Verification Code",
            name=name or "there",
            otp=otp,
            ttl_minutes=ttl_minutes,
        )

    def password_reset(self, name: str, otp: str, ttl_minutes: int) -> RenderedEmail:
        return self._render(
            "password_reset",
            f"{self.app_name} - Password Reset Request",
            name=name or "there",
            otp=otp,
            ttl_minutes=ttl_minutes,
        )

    def password_changed(self, name: str) -> RenderedEmail:
        return self._render(
            "password_changed",
            f"{self.app_name} - Your Password Was Changed",
            name=name or "there",
        )
