"""
Outbound notifications.

Notifications are a side channel: they are sent only after the ledger
transaction has committed, and a failed send is logged and dropped. Nothing
here may raise into the approval flow.
"""

import html
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Protocol

import httpx
from loguru import logger

from .config import Settings, get_settings


class NotificationKind(str, Enum):
    DEPOSIT_APPROVED = "deposit_approved"
    WITHDRAWAL_APPROVED = "withdrawal_approved"
    REFERRAL_COMMISSION = "referral_commission"


@dataclass
class Notification:
    recipient: str
    kind: NotificationKind
    params: dict[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    def notify(self, recipient: str, kind: NotificationKind, params: dict[str, Any]) -> None:
        ...


def _layout(heading: str, body: str, frontend_url: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <div style="background: linear-gradient(to right, #000, #22c55e); padding: 20px; text-align: center;">
        <h1 style="color: white; margin: 0;">ABS REFERZONE</h1>
      </div>
      <div style="padding: 20px; background: #f9f9f9;">
        <h2>{heading}</h2>
        {body}
        <div style="text-align: center; margin: 20px 0;">
          <a href="{frontend_url}/dashboard"
             style="background: #22c55e; color: black; padding: 12px 24px; text-decoration: none; border-radius: 8px; font-weight: bold;">
            View Dashboard
          </a>
        </div>
        <p>Thank you for using ABS REFERZONE!</p>
      </div>
    </div>
    """


def render(kind: NotificationKind, params: dict[str, Any], frontend_url: str) -> tuple[str, str]:
    """Return (subject, html) for a notification."""
    name = html.escape(str(params.get("user_name", "")))
    amount = html.escape(str(params.get("amount", "")))

    if kind == NotificationKind.DEPOSIT_APPROVED:
        body = (
            f"<p>Dear {name},</p>"
            f"<p>Your deposit of <strong>PKR {amount}</strong> has been approved and credited to your account.</p>"
            "<p>You can now view your updated balance in your dashboard.</p>"
        )
        return "Deposit Approved - ABS REFERZONE", _layout("Deposit Approved!", body, frontend_url)

    if kind == NotificationKind.WITHDRAWAL_APPROVED:
        method = html.escape(str(params.get("method", "")).capitalize())
        body = (
            f"<p>Dear {name},</p>"
            f"<p>Your withdrawal of <strong>PKR {amount}</strong> has been processed "
            f"and sent to your {method} account.</p>"
        )
        return "Withdrawal Processed - ABS REFERZONE", _layout("Withdrawal Processed!", body, frontend_url)

    if kind == NotificationKind.REFERRAL_COMMISSION:
        referred = html.escape(str(params.get("referred_user_name", "")))
        body = (
            f"<p>Dear {name},</p>"
            f"<p>You earned a referral commission of <strong>PKR {amount}</strong> "
            f"because {referred} completed a deposit.</p>"
        )
        return "Referral Commission Earned - ABS REFERZONE", _layout("Commission Earned!", body, frontend_url)

    raise ValueError(f"Unknown notification kind: {kind}")


class EmailNotifier:
    """Sends notifications through the Brevo transactional e-mail API."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.Client] = None):
        self.settings = settings or get_settings()
        self.client = client
        if not self.settings.brevo_api_key:
            logger.warning("BREVO_API_KEY not configured - e-mail notifications will be skipped")

    def notify(self, recipient: str, kind: NotificationKind, params: dict[str, Any]) -> None:
        if not self.settings.brevo_api_key:
            logger.info(f"Skipping {kind.value} e-mail to {recipient}: e-mail not configured")
            return

        subject, content = render(kind, params, self.settings.frontend_url)
        payload = {
            "sender": {"email": self.settings.email_from, "name": self.settings.email_from_name},
            "to": [{"email": recipient, "name": params.get("user_name") or recipient}],
            "subject": subject,
            "htmlContent": content,
            "tags": [kind.value],
        }
        headers = {"api-key": self.settings.brevo_api_key, "accept": "application/json"}

        if self.client is not None:
            response = self.client.post(self.settings.brevo_api_url, json=payload, headers=headers)
        else:
            response = httpx.post(
                self.settings.brevo_api_url,
                json=payload,
                headers=headers,
                timeout=self.settings.notify_timeout_seconds,
            )
        response.raise_for_status()
        logger.info(f"E-mail sent to {recipient}: {subject}")


def dispatch_notifications(notifier: Optional[Notifier], notifications: Iterable[Notification]) -> int:
    """Best-effort delivery. Returns how many were sent; failures are logged, never raised."""
    if notifier is None:
        return 0

    sent = 0
    for notification in notifications:
        try:
            notifier.notify(notification.recipient, notification.kind, notification.params)
            sent += 1
        except Exception:
            logger.exception(f"Failed to send {notification.kind.value} notification to {notification.recipient}")
    return sent
