"""
CareBridge Backend — OTP Channel
==================================

What:  Issues and checks the one-time codes that authorize a party's contract
       signature.
How:   One code per (matching, role), stored in Redis under
       `otp:sign:{scope_id}:{role}` with a TTL and delivered by email.
       Any confirmation attempt consumes the stored code, so a code allows
       exactly one try; a wrong guess requires requesting a new code.
"""

import hmac
import logging
import secrets
import string
from typing import Optional

from carebridge.config import settings
from carebridge.exceptions import OtpError, ValidationError
from carebridge.models.profile import PARTY_ROLES
from carebridge.services.kv_store import RedisKeyValueStore, kv_store
from carebridge.services.notification_service import NotificationSender, notification_sender

logger = logging.getLogger(__name__)


def generate_code(length: int) -> str:
    return "".join(secrets.choice(string.digits) for _ in range(length))


class OtpChannel:
    KEY_PREFIX = "otp:sign"

    def __init__(
        self,
        store: Optional[RedisKeyValueStore] = None,
        sender: Optional[NotificationSender] = None,
    ):
        self.store = store or kv_store
        self.sender = sender or notification_sender

    def _key(self, scope_id: str, role: str) -> str:
        return f"{self.KEY_PREFIX}:{scope_id}:{role}"

    @staticmethod
    def _check_role(role: str) -> None:
        if role not in PARTY_ROLES:
            raise ValidationError(
                message=f"Invalid role '{role}'. Must be one of: {', '.join(PARTY_ROLES)}",
                field="role",
            )

    async def request_otp(self, scope_id: str, role: str, email: str) -> None:
        """
        Issues a fresh code for (scope_id, role) and emails it.

        A new request replaces any outstanding code for the same key.

        Raises:
            ValidationError: role is not elderly or nurse.
            NotificationError: the email could not be delivered. The stored
                code stays valid until its TTL.
        """
        self._check_role(role)
        code = generate_code(settings.otp_length)
        await self.store.set(self._key(scope_id, role), code, settings.otp_ttl_seconds)
        logger.info("Signing OTP issued for matching %s (%s)", scope_id, role)
        await self.sender.send_code(email, code)

    async def confirm_otp(self, scope_id: str, role: str, code: Optional[str]) -> None:
        """
        Checks `code` against the stored one and consumes it.

        Raises:
            ValidationError: role is invalid or no code was supplied.
            OtpError: no code is outstanding or the code does not match.
        """
        self._check_role(role)
        if not code:
            raise ValidationError(message="OTP is required", field="otp")

        key = self._key(scope_id, role)
        stored = await self.store.get(key)
        if stored is None:
            raise OtpError(message="No valid OTP found. It may have expired or already been used.")

        await self.store.delete(key)
        if not hmac.compare_digest(stored.encode(), code.strip().encode()):
            logger.warning("Signing OTP mismatch for matching %s (%s)", scope_id, role)
            raise OtpError(message="The OTP does not match. Please request a new code.")

        logger.info("Signing OTP confirmed for matching %s (%s)", scope_id, role)


otp_channel = OtpChannel()
