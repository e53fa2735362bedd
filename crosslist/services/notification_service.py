"""Email alerts for listings that need the seller's attention."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Iterable, List, Optional, Sequence

from crosslist.core.config import Settings
from crosslist.core.enums import SyncStatus
from crosslist.integrations.events import SyncStatusEvent

logger = logging.getLogger(__name__)

ALERT_STATUSES = {SyncStatus.CONFLICT.value, SyncStatus.ERROR.value}


class EmailNotificationService:
    """Lightweight SMTP helper for sync alerts."""

    def __init__(self, settings: Settings):
        self._settings = settings

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def handle_sync_event(self, event: SyncStatusEvent) -> bool:
        """Event bus subscriber: alerts on conflict and error statuses only."""
        if event.sync_status not in ALERT_STATUSES:
            return False
        return await self.send_sync_alert(event)

    async def send_sync_alert(
        self,
        event: SyncStatusEvent,
        recipients: Optional[Sequence[str]] = None,
    ) -> bool:
        if not self._ready():
            logger.warning("SMTP configuration incomplete; sync alert skipped for listing %s", event.listing_id)
            return False

        to_addresses = self._resolve_recipients(recipients)
        if not to_addresses:
            logger.warning("No recipients configured for sync alert; skipping email")
            return False

        if event.sync_status == SyncStatus.CONFLICT.value:
            subject = f"Sold on more than one platform: listing {event.listing_id}"
        else:
            subject = f"Sync failed on {event.platform.upper()}: listing {event.listing_id}"

        lines: List[str] = [
            f"Listing: {event.listing_id}",
            f"Platform: {event.platform}",
            f"Sync status: {event.sync_status.upper()}",
        ]
        if event.status:
            lines.append(f"Listing status: {event.status}")
        if event.external_id:
            lines.append(f"External reference: {event.external_id}")
        if event.error_kind:
            lines.append(f"Error: {event.error_kind}")
        if event.message:
            lines.append(f"Detail: {event.message}")
        lines.append(f"Detected at: {event.timestamp.isoformat()}")
        lines.append("\nSent automatically by Crosslist Sync")

        message = self._build_message(subject, to_addresses, "\n".join(lines))
        return await self._dispatch(message)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _ready(self) -> bool:
        settings = self._settings
        return bool(settings.SMTP_HOST and settings.SMTP_USERNAME and settings.SMTP_PASSWORD)

    def _resolve_recipients(self, override: Optional[Sequence[str]]) -> List[str]:
        recipients: Iterable[str] = override if override else self._settings.NOTIFICATION_EMAILS
        return [email.strip() for email in recipients if email]

    def _build_message(self, subject: str, to_addresses: Sequence[str], body_text: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self._formatted_from_address
        message["To"] = ", ".join(sorted(set(to_addresses)))
        message.set_content(body_text)
        return message

    @property
    def _formatted_from_address(self) -> str:
        from_email = self._settings.SMTP_FROM_EMAIL or self._settings.SMTP_USERNAME
        from_name = self._settings.SMTP_FROM_NAME or "Crosslist Alerts"
        return formataddr((from_name, from_email))

    async def _dispatch(self, message: EmailMessage) -> bool:
        try:
            await asyncio.to_thread(self._send_sync, message)
            logger.info("Sync alert email sent to %s", message["To"])
            return True
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send sync alert email: %s", exc, exc_info=True)
            return False

    def _send_sync(self, message: EmailMessage) -> None:
        settings = self._settings
        host = settings.SMTP_HOST
        port = settings.SMTP_PORT or (465 if settings.SMTP_USE_SSL else 587)
        timeout = settings.SMTP_TIMEOUT

        if settings.SMTP_USE_SSL:
            smtp = smtplib.SMTP_SSL(host=host, port=port, timeout=timeout)
        else:
            smtp = smtplib.SMTP(host=host, port=port, timeout=timeout)
        try:
            if settings.SMTP_USE_TLS and not settings.SMTP_USE_SSL:
                smtp.starttls()

            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            smtp.send_message(message)
        finally:
            try:
                smtp.quit()
            except smtplib.SMTPException:
                smtp.close()
