"""
CareBridge Backend — Profile Resolver and Nurse Availability
==============================================================

What:  The identity collaborators the pipeline depends on.
       - ProfileResolver maps account ids to profiles and profiles to their
         email and ledger wallet (decrypting the stored signing key).
       - NurseAvailability owns the nurse's `is_available` flag; matching
         creation reserves a nurse, reset and deletion release her.
How:   Both read the identity service's `profiles` table through the request
       session. Wallet keys are Fernet tokens decrypted with
       LEDGER_KEY_ENCRYPTION_KEY.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carebridge.config import settings
from carebridge.exceptions import ConflictError, NotFoundError, ValidationError
from carebridge.models.profile import ROLE_NURSE, Profile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerWallet:
    address: str
    signing_key: Optional[str] = None


def decrypt_ledger_key(token: str) -> str:
    """
    Decrypts a Fernet-encrypted wallet key.

    Raises:
        ValidationError: the encryption key is not configured or the token is
            not readable with it.
    """
    if not settings.ledger_key_encryption_key:
        raise ValidationError(message="Wallet key decryption is not configured")
    try:
        cipher = Fernet(settings.ledger_key_encryption_key.encode())
        return cipher.decrypt(token.encode()).decode()
    except (InvalidToken, ValueError) as e:
        logger.error("Wallet key decryption failed: %s", type(e).__name__)
        raise ValidationError(message="Stored wallet key could not be decrypted")


class ProfileResolver:
    """Read-only access to profiles, keyed by profile id or account id."""

    async def get_profile(self, db: AsyncSession, profile_id: uuid.UUID) -> Profile:
        profile = await db.get(Profile, profile_id)
        if profile is None:
            raise NotFoundError(resource="profile", resource_id=str(profile_id))
        return profile

    async def find_by_account(
        self, db: AsyncSession, account_id: str, role: Optional[str] = None
    ) -> Optional[Profile]:
        query = select(Profile).where(Profile.account_id == account_id)
        if role:
            query = query.where(Profile.role == role)
        result = await db.execute(query.order_by(Profile.created_at))
        return result.scalars().first()

    async def get_by_account(
        self, db: AsyncSession, account_id: str, role: Optional[str] = None
    ) -> Profile:
        profile = await self.find_by_account(db, account_id, role)
        if profile is None:
            raise NotFoundError(resource=f"{role or 'user'} profile", resource_id=account_id)
        return profile

    async def get_nurse(self, db: AsyncSession, nurse_id: uuid.UUID) -> Profile:
        profile = await db.get(Profile, nurse_id)
        if profile is None or profile.role != ROLE_NURSE:
            raise NotFoundError(resource="nurse", resource_id=str(nurse_id))
        return profile

    async def email_for(self, db: AsyncSession, profile_id: uuid.UUID) -> str:
        profile = await self.get_profile(db, profile_id)
        if not profile.email:
            raise ValidationError(
                message=f"Profile {profile_id} has no registered email",
                field="email",
            )
        return profile.email

    async def ledger_wallet(
        self, db: AsyncSession, profile_id: uuid.UUID, with_key: bool = False
    ) -> LedgerWallet:
        """
        Returns the profile's ledger address, and its signing key on request.

        Raises:
            ValidationError: no ledger address (or key) is registered.
        """
        profile = await self.get_profile(db, profile_id)
        if not profile.ledger_address:
            raise ValidationError(
                message=f"The {profile.role} party has no registered ledger address",
                field="ledger_address",
                context={"profile_id": str(profile_id)},
            )
        if not with_key:
            return LedgerWallet(address=profile.ledger_address)
        if not profile.ledger_key_encrypted:
            raise ValidationError(
                message=f"The {profile.role} party has no registered ledger signing key",
                field="ledger_key",
                context={"profile_id": str(profile_id)},
            )
        return LedgerWallet(
            address=profile.ledger_address,
            signing_key=decrypt_ledger_key(profile.ledger_key_encrypted),
        )


class NurseAvailability:
    """Reserve/release transitions of the nurse availability pool."""

    async def reserve(self, db: AsyncSession, nurse: Profile) -> None:
        if not nurse.is_available:
            raise ConflictError(
                message="The selected nurse is not available",
                context={"nurse_id": str(nurse.id)},
            )
        nurse.is_available = False
        logger.info("Nurse %s reserved", nurse.id)

    async def release(self, db: AsyncSession, nurse_id: uuid.UUID) -> None:
        nurse = await db.get(Profile, nurse_id)
        if nurse is None:
            logger.warning("Cannot release nurse %s: profile not found", nurse_id)
            return
        nurse.is_available = True
        logger.info("Nurse %s released", nurse_id)


profile_resolver = ProfileResolver()
nurse_availability = NurseAvailability()
