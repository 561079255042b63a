"""Email dispatch — password reset, team invitation, and welcome mail.

Learn: Outgoing mail goes through the Resend HTTP API (httpx) when
EXPENSETRACKER_RESEND_API_KEY is set. Without a key the service runs in
degraded mode: the message is logged instead of sent and the result
carries the link, so local setups can still finish a reset or accept an
invitation. Callers tell the two apart with DeliveryResult.logged.

Senders never raise for delivery problems; they return
DeliveryResult(success=False, ...) and the orchestrators decide.
"""

from dataclasses import dataclass
from html import escape
from typing import Optional

import httpx
import structlog

from expensetracker.config import Settings, settings

logger = structlog.get_logger()

APP_NAME = "ExpenseTracker"


@dataclass
class DeliveryResult:
    success: bool
    logged: bool = False
    message: str = ""
    link: Optional[str] = None


def _layout(title: str, body: str, button_label: str, link: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
      <h1 style="font-size: 24px;">{APP_NAME}</h1>
      <h2>{escape(title)}</h2>
      {body}
      <p style="text-align: center; margin: 30px 0;">
        <a href="{escape(link)}">{escape(button_label)}</a>
      </p>
      <p style="font-size: 14px;">If the button doesn't work, copy and paste this link
      into your browser:<br>{escape(link)}</p>
    </div>
    """


class EmailService:
    """Sends transactional mail, or logs it when no provider is configured."""

    def __init__(
        self,
        config: Settings = settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.config.resend_api_key)

    def _url(self, path: str, token: str) -> str:
        return f"{self.config.app_base_url.rstrip('/')}{path}?token={token}"

    # ─── Messages ─────────────────────────────────────────

    async def send_password_reset(
        self, to: str, token: str, user_name: Optional[str] = None
    ) -> DeliveryResult:
        reset_url = self._url("/auth/reset-password", token)
        greeting = f"Hi {escape(user_name)}," if user_name else "Hi there,"
        html = _layout(
            "Reset Your Password",
            f"<p>{greeting}</p>"
            f"<p>We received a request to reset your {APP_NAME} password. "
            "This link expires in 1 hour and can only be used once.</p>",
            "Reset Password",
            reset_url,
        )
        return await self._send(
            to, f"Reset Your {APP_NAME} Password", html, link=reset_url
        )

    async def send_team_invite(
        self,
        to: str,
        token: str,
        *,
        inviter_name: str,
        org_name: str,
        role: str,
    ) -> DeliveryResult:
        invite_url = self._url("/team/invite", token)
        html = _layout(
            f"You're invited to join {org_name}!",
            f"<p><strong>{escape(inviter_name)}</strong> has invited you to join "
            f"<strong>{escape(org_name)}</strong> as a <strong>{escape(role)}</strong>.</p>"
            f"<p>This invitation expires in {self.config.invite_ttl_days} days.</p>",
            "Accept Invitation",
            invite_url,
        )
        return await self._send(
            to,
            f"You've been invited to join {org_name} on {APP_NAME}",
            html,
            link=invite_url,
        )

    async def send_welcome(self, to: str, name: str) -> DeliveryResult:
        html = _layout(
            f"Welcome to {APP_NAME}!",
            f"<p>Hi {escape(name)},</p><p>You can now start tracking expenses, "
            "managing budgets, and collaborating with your team.</p>",
            "Get Started",
            self.config.app_base_url,
        )
        return await self._send(to, f"Welcome to {APP_NAME}!", html)

    # ─── Transport ────────────────────────────────────────

    async def _send(
        self, to: str, subject: str, html: str, link: Optional[str] = None
    ) -> DeliveryResult:
        if not self.configured:
            logger.info("email.logged", to=to, subject=subject, link=link)
            return DeliveryResult(
                success=True,
                logged=True,
                message="Email logged (no email service configured)",
                link=link,
            )

        try:
            async with httpx.AsyncClient(
                transport=self.transport,
                timeout=self.config.email_timeout_seconds,
            ) as client:
                resp = await client.post(
                    self.config.resend_api_url,
                    headers={"Authorization": f"Bearer {self.config.resend_api_key}"},
                    json={
                        "from": self.config.email_from,
                        "to": [to],
                        "subject": subject,
                        "html": html,
                    },
                )
        except httpx.HTTPError as e:
            logger.warning("email.send_failed", to=to, subject=subject, error=str(e))
            return DeliveryResult(success=False, message=str(e))

        if resp.status_code >= 400:
            logger.warning(
                "email.rejected",
                to=to,
                subject=subject,
                status_code=resp.status_code,
                body=resp.text[:500],
            )
            return DeliveryResult(
                success=False, message=f"Email provider returned {resp.status_code}"
            )

        logger.info("email.sent", to=to, subject=subject)
        return DeliveryResult(success=True, message="Email sent")


def get_email_service() -> EmailService:
    """FastAPI dependency, overridden in tests."""
    return EmailService()
