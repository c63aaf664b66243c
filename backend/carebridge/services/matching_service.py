"""
CareBridge Backend — Matching State Machine
=============================================

What:  Owns the lifecycle of a booking pairing between one elderly client and
       one nurse: creation, booking updates, direct signatures, violation
       reports, completion, reset and deletion.
How:   Every operation loads the Matching through `_get_or_404` and mutates it
       inside the request's database transaction. Creating a matching also
       reserves the nurse and drafts the pending Contract.

Flow:
    create ──▶ (booking updates)* ──▶ partially_signed ──▶ fully_signed ──▶ matched
                                                   reset ◀──┘
    any state ──violation──▶ violated
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from carebridge.exceptions import (
    AuthorizationError,
    CareBridgeError,
    DatabaseError,
    NotFoundError,
    ValidationError,
)
from carebridge.models.matching import Matching
from carebridge.models.pricing import SERVICE_LEVELS
from carebridge.models.profile import PARTY_ROLES, ROLE_ELDERLY, Profile
from carebridge.services.contract_service import ContractService, contract_service
from carebridge.services.pagination import paginate
from carebridge.services.profile_service import (
    NurseAvailability,
    ProfileResolver,
    nurse_availability,
    profile_resolver,
)

logger = logging.getLogger(__name__)


def _parse_instant(value: Any, label: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(
                message=f"{label} is not a valid ISO 8601 datetime",
                field="booking_time",
            )
    else:
        raise ValidationError(message=f"{label} must be a datetime string", field="booking_time")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_booking_windows(raw: Any) -> List[Dict[str, str]]:
    """
    Validates a list of {start_time, end_time} windows.

    Returns the windows normalized to ISO 8601 strings with a UTC offset.

    Raises:
        ValidationError: not a list, a window is not an object, a bound is
            missing or unparsable, or a window does not end after it starts.
    """
    if not isinstance(raw, list):
        raise ValidationError(
            message="booking_time must be a list of time windows",
            field="booking_time",
        )

    windows = []
    for index, window in enumerate(raw):
        if not isinstance(window, dict):
            raise ValidationError(
                message=f"Booking window {index} must be an object with start_time and end_time",
                field="booking_time",
            )
        start = _parse_instant(window.get("start_time"), f"Booking window {index} start_time")
        end = _parse_instant(window.get("end_time"), f"Booking window {index} end_time")
        if start is None or end is None:
            raise ValidationError(
                message=f"Booking window {index} requires both start_time and end_time",
                field="booking_time",
            )
        if end <= start:
            raise ValidationError(
                message=f"Booking window {index} must end after it starts",
                field="booking_time",
            )
        windows.append({"start_time": start.isoformat(), "end_time": end.isoformat()})
    return windows


class MatchingService:
    def __init__(
        self,
        contracts: Optional[ContractService] = None,
        profiles: Optional[ProfileResolver] = None,
        availability: Optional[NurseAvailability] = None,
    ):
        self.contracts = contracts or contract_service
        self.profiles = profiles or profile_resolver
        self.availability = availability or nurse_availability

    async def _get_or_404(
        self, db: AsyncSession, matching_id: uuid.UUID, for_update: bool = False
    ) -> Matching:
        if for_update:
            # Same row lock the OTP signing path takes
            matching = await db.get(Matching, matching_id, with_for_update=True, populate_existing=True)
        else:
            matching = await db.get(Matching, matching_id)
        if matching is None:
            raise NotFoundError(resource="matching", resource_id=str(matching_id))
        return matching

    async def create_matching(
        self,
        db: AsyncSession,
        actor_profile: Optional[Profile],
        nurse_id: Optional[uuid.UUID],
        service_level: Optional[str],
        booking_time: Any,
    ) -> Matching:
        """
        Creates a matching for an elderly client against an available nurse.

        Side effects: the nurse is reserved and a pending Contract is drafted.

        Raises:
            AuthorizationError: the actor is not an elderly profile
            ValidationError: missing field, unknown tier or malformed window
            NotFoundError: nurse_id is not a nurse profile
            ConflictError: the nurse is not available
        """
        if actor_profile is None or actor_profile.role != ROLE_ELDERLY:
            raise AuthorizationError(message="Only elderly clients can create a matching")

        for field, value in (
            ("nurse_id", nurse_id),
            ("service_level", service_level),
            ("booking_time", booking_time),
        ):
            if value is None or value == "" or value == []:
                raise ValidationError(message=f"{field} is required", field=field)

        if service_level not in SERVICE_LEVELS:
            raise ValidationError(
                message=f"Invalid service_level '{service_level}'. Must be one of: {', '.join(SERVICE_LEVELS)}",
                field="service_level",
            )
        windows = parse_booking_windows(booking_time)

        # ── Reserve the nurse; ConflictError if already taken ───────────────
        nurse = await self.profiles.get_nurse(db, nurse_id)
        await self.availability.reserve(db, nurse)

        # ── Persist the pair and draft its contract in the same transaction ──
        matching = Matching(
            nurse_id=nurse.id,
            elderly_id=actor_profile.id,
            service_level=service_level,
            booking_time=windows,
            elderly_signature=False,
            nurse_signature=False,
            is_signed=False,
            is_matched=False,
            reset_at=datetime.now(timezone.utc),
        )
        db.add(matching)
        await db.flush()

        await self.contracts.draft_for_matching(db, matching, created_by=actor_profile.account_id)
        logger.info(
            "Matching %s created: elderly=%s nurse=%s tier=%s windows=%d",
            matching.id, matching.elderly_id, matching.nurse_id, service_level, len(windows),
        )
        return matching

    async def get_matching(self, db: AsyncSession, matching_id: uuid.UUID) -> Matching:
        return await self._get_or_404(db, matching_id)

    async def list_matchings(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        is_matched: Optional[bool] = None,
        service_level: Optional[str] = None,
    ) -> Tuple[List[Matching], int]:
        try:
            query = select(Matching)
            if is_matched is not None:
                query = query.where(Matching.is_matched == is_matched)
            if service_level:
                query = query.where(Matching.service_level == service_level)
            return await paginate(db, query.order_by(desc(Matching.created_at)), page, limit)
        except CareBridgeError:
            raise
        except Exception as e:
            logger.error("Database error listing matchings: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve matchings. Please try again.",
                context={"error_type": type(e).__name__},
            )

    async def update_booking_time(
        self, db: AsyncSession, matching_id: uuid.UUID, booking_time: Any
    ) -> Matching:
        """Replaces the booking windows wholesale."""
        matching = await self._get_or_404(db, matching_id)
        matching.booking_time = parse_booking_windows(booking_time)
        await db.flush()
        logger.info("Matching %s booking updated (%d windows)", matching_id, len(matching.booking_time))
        return matching

    async def record_signature(
        self,
        db: AsyncSession,
        matching_id: uuid.UUID,
        role: str,
        signature: Any,
        contract_hash: Optional[str] = None,
    ) -> Matching:
        """
        Direct signature path without OTP.

        Sets (or clears) the role's flag and the settlement reference, then
        recomputes the fully-signed flag. Clearing a flag on a matched pair
        unmatches it.
        """
        if role not in PARTY_ROLES:
            raise ValidationError(
                message="Role must be 'nurse' or 'elderly'",
                field="role",
            )
        matching = await self._get_or_404(db, matching_id, for_update=True)
        matching.set_signature(role, bool(signature))
        if contract_hash is not None:
            matching.contract_hash = contract_hash
        await db.flush()
        logger.info(
            "Matching %s %s signature set to %s (fully signed: %s)",
            matching_id, role, bool(signature), matching.is_signed,
        )
        return matching

    async def report_violation(
        self,
        db: AsyncSession,
        matching_id: uuid.UUID,
        reporter_id: str,
        reason: Optional[str],
        reporter_profile_id: Optional[uuid.UUID] = None,
        is_admin: bool = False,
    ) -> Matching:
        """
        Stamps a violation report and unmatches the pair.

        Only the two parties (by profile id) or an administrator may report.
        The linked contract moves to `violated`.
        """
        if not reason or not reason.strip():
            raise ValidationError(message="reason is required", field="reason")

        matching = await self._get_or_404(db, matching_id)
        if not is_admin and reporter_profile_id not in (matching.elderly_id, matching.nurse_id):
            raise AuthorizationError(message="Only a party to this matching can report a violation")

        matching.violation_report = {
            "reported_by": reporter_id,
            "reason": reason.strip(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        matching.is_matched = False
        await self.contracts.mark_violated(db, matching.id, reporter_id)
        await db.flush()
        logger.warning("Violation reported on matching %s by %s", matching_id, reporter_id)
        return matching

    async def complete_match(self, db: AsyncSession, matching_id: uuid.UUID) -> Matching:
        matching = await self._get_or_404(db, matching_id)
        if not matching.is_signed:
            raise ValidationError(
                message="Contract must be signed by both parties",
                field="contract_status",
            )
        matching.is_matched = True
        matching.matched_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info("Matching %s completed", matching_id)
        return matching

    async def reset_match(self, db: AsyncSession, matching_id: uuid.UUID) -> Matching:
        """Unmatches the pair and returns the nurse to the available pool."""
        matching = await self._get_or_404(db, matching_id)
        # Signatures are kept; complete_match can match the pair again
        matching.is_matched = False
        matching.reset_at = datetime.now(timezone.utc)
        await self.availability.release(db, matching.nurse_id)
        await db.flush()
        logger.info("Matching %s reset", matching_id)
        return matching

    async def delete_matching(self, db: AsyncSession, matching_id: uuid.UUID) -> None:
        matching = await self._get_or_404(db, matching_id)
        await self.availability.release(db, matching.nurse_id)
        await db.delete(matching)
        await db.flush()
        logger.info("Matching %s deleted", matching_id)


matching_service = MatchingService()
