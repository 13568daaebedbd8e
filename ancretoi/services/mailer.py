"""
Mail Service
============

Transactional and campaign email through the Resend HTTP API.

Newsletter messages carry a ``List-Unsubscribe`` header pointing at the
subscriber's unsubscribe link.
"""

import html as html_lib
import logging
from typing import Optional

import httpx

from ancretoi.config import settings

logger = logging.getLogger(__name__)


def unsubscribe_url(token: str) -> str:
    return f"{settings.APP_URL.rstrip('/')}/api/v1/newsletter/unsubscribe?token={token}"


def confirm_url(token: str) -> str:
    return f"{settings.APP_URL.rstrip('/')}/api/v1/newsletter/confirm?token={token}"


def render_confirm_html(confirm_link: str, unsub_link: str) -> str:
    confirm_link = html_lib.escape(confirm_link, quote=True)
    unsub_link = html_lib.escape(unsub_link, quote=True)
    return f"""
  <div style="font-family:system-ui,-apple-system,Segoe UI,Roboto,Helvetica,Arial,sans-serif;line-height:1.6">
    <h2 style="margin:0 0 12px">Bienvenue ✨</h2>
    <p style="margin:0 0 12px">Confirme ton inscription à l'inspiration <strong>Ancre-toi</strong> :</p>
    <p style="margin:0 0 16px">
      <a href="{confirm_link}" style="display:inline-block;background:#6d5ba4;color:#fff;padding:10px 14px;border-radius:8px;text-decoration:none">
        Confirmer mon email
      </a>
    </p>
    <p style="color:#666;font-size:12px;margin:0 0 8px">Si tu n'es pas à l'origine de cette demande, ignore ce message.</p>
    <p style="color:#666;font-size:12px;margin:0">
      Tu ne veux plus recevoir ces emails ? <a href="{unsub_link}" style="color:#6d5ba4">Se désinscrire</a>.
    </p>
  </div>"""


def render_campaign_html(inner_html: str, unsub_link: str) -> str:
    """Wrap campaign HTML with the unsubscribe footer."""
    unsub_link = html_lib.escape(unsub_link, quote=True)
    return f"""
  <div style="font-family:system-ui,-apple-system,Segoe UI,Roboto,Helvetica,Arial,sans-serif;line-height:1.6">
    {inner_html}
    <hr style="margin:24px 0;border:none;border-top:1px solid #eee"/>
    <p style="color:#666;font-size:12px">
      Tu ne veux plus recevoir ces emails ?
      <a href="{unsub_link}" style="color:#6d5ba4">Se désinscrire</a>.
    </p>
  </div>"""


def reset_password_url(token: str) -> str:
    return f"{settings.APP_URL.rstrip('/')}/reset-password?token={token}"


def render_reset_html(reset_link: str, ttl_minutes: int) -> str:
    reset_link = html_lib.escape(reset_link, quote=True)
    return f"""
  <div style="font-family:system-ui,-apple-system,Segoe UI,Roboto,Helvetica,Arial,sans-serif;line-height:1.6">
    <h2 style="margin:0 0 12px">Réinitialiser ton mot de passe</h2>
    <p style="margin:0 0 12px">Clique sur le bouton ci-dessous pour choisir un nouveau mot de passe :</p>
    <p style="margin:0 0 16px">
      <a href="{reset_link}" style="display:inline-block;background:#6d5ba4;color:#fff;padding:10px 14px;border-radius:8px;text-decoration:none">
        Choisir un mot de passe
      </a>
    </p>
    <p style="color:#666;font-size:12px;margin:0">Ce lien expire dans {ttl_minutes} minutes. Si tu n'es pas à l'origine de cette demande, ignore ce message.</p>
  </div>"""


class MailerError(Exception):
    """The mail provider refused or could not be reached."""


class Mailer:
    """Thin client over the Resend ``/emails`` endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        sender: Optional[str] = None,
        api_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.sender = sender if sender is not None else settings.RESEND_FROM
        self.api_url = api_url or settings.RESEND_API_URL
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.sender)

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        unsub_link: Optional[str] = None,
        text: Optional[str] = None,
    ) -> str:
        """
        Send one email.

        Returns:
            Provider message id (may be empty)

        Raises:
            MailerError: on non-2xx status, timeout or transport failure
        """
        payload = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if unsub_link:
            payload["headers"] = {"List-Unsubscribe": f"<{unsub_link}>"}
        if text:
            payload["text"] = text

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.api_url, json=payload, headers=self._get_headers(), timeout=10.0
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self.api_url, json=payload, headers=self._get_headers(), timeout=10.0
                    )
        except httpx.TimeoutException as e:
            logger.error("Mail provider timeout sending to %s", to)
            raise MailerError("timeout") from e
        except httpx.HTTPError as e:
            logger.error("Mail provider error sending to %s: %s", to, e)
            raise MailerError(str(e)) from e

        if response.status_code >= 300:
            logger.error(
                "Mail provider returned status %d for %s: %s",
                response.status_code,
                to,
                response.text[:200],
            )
            raise MailerError(f"status {response.status_code}")

        try:
            return str(response.json().get("id") or "")
        except ValueError:
            return ""


def get_mailer() -> Mailer:
    """Dependency provider, overridable in tests."""
    return Mailer()
