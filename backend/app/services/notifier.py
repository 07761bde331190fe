"""
Purchase notification fan-out.

For each resolved buyer:
  1. email the lock manager (NOTIFICATION_EMAIL) over SMTP, and
  2. if the buyer gave an email address, add them to the EtherMail list.

Both steps are best-effort. Failures are logged and reported through the
returned NotificationResult; nothing is raised to the event processor.
"""

import logging
from email.message import EmailMessage
from typing import Awaitable, Callable, Optional

import aiosmtplib
import httpx

from app.config import Settings
from app.models.events import BuyerRecord, NotificationResult
from app.services.email_template import render_purchase_email

logger = logging.getLogger(__name__)

SendMail = Callable[..., Awaitable[object]]


def first_name_of(full_name: Optional[str]) -> Optional[str]:
    """First whitespace-separated word of a full name, or None."""
    if not full_name:
        return None
    parts = full_name.split()
    return parts[0] if parts else None


class Notifier:
    """Sends the purchase email and enrolls the buyer in the mailing list."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        send_mail: Optional[SendMail] = None,
    ):
        self._settings = settings
        self._http = http_client
        self._send_mail = send_mail or aiosmtplib.send

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    def build_message(self, buyer: BuyerRecord, transaction_ref: Optional[str]) -> EmailMessage:
        rendered = render_purchase_email(buyer, transaction_ref)
        s = self._settings

        message = EmailMessage()
        message["From"] = s.smtp_from or s.smtp_user or ""
        message["To"] = s.notification_email or ""
        message["Subject"] = rendered.subject
        if buyer.email:
            message["Reply-To"] = buyer.email
        message.set_content(rendered.text)
        message.add_alternative(rendered.html, subtype="html")
        return message

    async def send_email(self, buyer: BuyerRecord, transaction_ref: Optional[str]) -> bool:
        """Send the notification email. Returns True when the SMTP server accepted it."""
        s = self._settings
        if not s.smtp_host or not s.notification_email:
            logger.warning("SMTP_HOST or NOTIFICATION_EMAIL not configured, skipping notification email")
            return False

        try:
            message = self.build_message(buyer, transaction_ref)
            await self._send_mail(
                message,
                hostname=s.smtp_host,
                port=s.smtp_port,
                username=s.smtp_user,
                password=s.smtp_pass,
                use_tls=s.smtp_port == 465,
                timeout=s.http_timeout_seconds,
            )
        except Exception as exc:
            logger.error(f"Error sending notification email for key {buyer.item_id}: {exc!r}")
            return False

        logger.info(f"Notification email sent for key {buyer.item_id}")
        return True

    # ------------------------------------------------------------------
    # Mailing list
    # ------------------------------------------------------------------

    async def enroll(self, email: str, full_name: Optional[str] = None) -> bool:
        """
        Add ``email`` to the configured EtherMail list.

        Body: {"email": ..., "lists": [ETHERMAIL_LIST_ID], "first_name": ...}
        (first_name only when a name is known).
        """
        s = self._settings
        if not s.ethermail_api_key:
            logger.info("No EtherMail API key configured, skipping mailing-list enrollment")
            return False

        body: dict = {"email": email, "lists": [s.ethermail_list_id]}
        first_name = first_name_of(full_name)
        if first_name:
            body["first_name"] = first_name

        try:
            response = await self._http.post(
                s.ethermail_api_url,
                json=body,
                headers={"Authorization": f"Bearer {s.ethermail_api_key}"},
            )
        except httpx.HTTPError as exc:
            logger.error(f"Error calling EtherMail API: {exc!r}")
            return False

        if response.status_code >= 400:
            logger.error(
                f"EtherMail rejected {email} with HTTP {response.status_code}: {response.text[:200]}"
            )
            return False

        logger.info(f"Added {email} to EtherMail list {s.ethermail_list_id}")
        return True

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def notify(self, buyer: BuyerRecord, transaction_ref: Optional[str]) -> NotificationResult:
        """Email the lock manager and, when possible, enroll the buyer. Never raises."""
        result = NotificationResult()
        try:
            result.email_sent = await self.send_email(buyer, transaction_ref)
        except Exception as exc:
            logger.exception(f"Notification email failed for key {buyer.item_id}")
            result.error = str(exc)

        if buyer.email:
            try:
                result.mailing_list_enrolled = await self.enroll(buyer.email, buyer.full_name)
            except Exception as exc:
                logger.exception(f"Mailing-list enrollment failed for key {buyer.item_id}")
                result.error = result.error or str(exc)
        return result
