"""
CareBridge Backend — Notification Sender
==========================================

What:  Delivers signing codes to a party's registered email.
How:   `NotificationSender` is the interface; `ResendEmailSender` sends through
       the Resend API. The Resend SDK is synchronous, so the call runs in a
       worker thread bounded by EXTERNAL_CALL_TIMEOUT_SECONDS.
Who:   OtpChannel.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

import resend

from carebridge.config import settings
from carebridge.exceptions import NotificationError

logger = logging.getLogger(__name__)


class NotificationSender(ABC):
    """Contract for code delivery. Failures raise NotificationError."""

    @abstractmethod
    async def send_code(self, email: str, code: str) -> None:
        ...


class ResendEmailSender(NotificationSender):
    SUBJECT = "Your OTP Code"

    def __init__(self):
        if settings.resend_api_key:
            resend.api_key = settings.resend_api_key

    def _render(self, code: str) -> str:
        minutes = settings.otp_ttl_seconds // 60
        return (
            "<p>Your CareBridge contract signing code is:</p>"
            f"<p style=\"font-size:24px;letter-spacing:4px\"><strong>{code}</strong></p>"
            f"<p>The code expires in {minutes} minutes and can be used once.</p>"
        )

    async def send_code(self, email: str, code: str) -> None:
        if not settings.resend_api_key:
            raise NotificationError(message="Email delivery is not configured")

        payload = {
            "from": settings.email_from_address,
            "to": [email],
            "subject": self.SUBJECT,
            "html": self._render(code),
        }
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(resend.Emails.send, payload),
                timeout=settings.external_call_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error("Email send to %s timed out", email)
            raise NotificationError(message="Email delivery timed out")
        except Exception as e:
            logger.error("Email send to %s failed: %s", email, str(e))
            raise NotificationError(
                message="Email delivery failed",
                context={"error_type": type(e).__name__},
            )
        message_id = response.get("id") if isinstance(response, dict) else None
        logger.info("Signing code emailed to %s (id=%s)", email, message_id)


notification_sender = ResendEmailSender()
