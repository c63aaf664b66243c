"""
CareBridge Backend — Contract Lifecycle Manager
=================================================

What:  Drafts, fills, signs and settles the Contract tied to a Matching.
How:   Status and signature changes go through the model's `transition` and
       `mark_signed`, which append the history entry inline.

Signing flow:
    fill_contract_details ──▶ pending_signature, Transaction derived
    dispatch_signing_otps ──▶ one OTP emailed to each party, after commit
    request_signature_otp ──▶ re-issues a party's OTP
    confirm_signature     ──▶ OTP consumed, party flag set; once both have
                              signed the pair is matched, the contract is
                              active and the settlement is written to the ledger

Consistency:
    Fill and transaction derivation share the request's database
    transaction, so a failed derivation leaves the contract untouched.
    Signing OTPs go out only after that transaction commits; delivery
    failures are logged and the party can re-request a code.
    Signature steps lock the Matching row and then the Contract row, so two
    parties confirming at once serialize and the second sees the first's
    flag. A settlement failure commits the signature state before
    SettlementError is raised.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import Select, desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from carebridge.exceptions import (
    AuthorizationError,
    CareBridgeError,
    CircuitBreakerOpenError,
    ConflictError,
    DatabaseError,
    ExternalServiceError,
    NotFoundError,
    SettlementError,
    ValidationError,
)
from carebridge.models.contract import (
    ADMIN_STATUSES,
    STATUS_ACTIVE,
    STATUS_PENDING,
    STATUS_PENDING_SIGNATURE,
    STATUS_VIOLATED,
    Contract,
)
from carebridge.models.matching import Matching
from carebridge.models.profile import PARTY_ROLES, ROLE_ELDERLY, ROLE_NURSE
from carebridge.schemas.contract import PaymentDetailsPatch
from carebridge.services.ledger_service import LedgerService, ledger_service
from carebridge.services.otp_service import OtpChannel, otp_channel
from carebridge.services.pagination import paginate
from carebridge.services.profile_service import ProfileResolver, profile_resolver
from carebridge.services.transaction_service import TransactionService, transaction_service

logger = logging.getLogger(__name__)


def _locked(query: Select) -> Select:
    """
    Row lock for a read-modify-write of signature state.

    populate_existing overwrites any copy already in the session's identity
    map, so the flags read under the lock are the committed ones.
    """
    return query.with_for_update().execution_options(populate_existing=True)


class ContractService:
    def __init__(
        self,
        otp: Optional[OtpChannel] = None,
        transactions: Optional[TransactionService] = None,
        profiles: Optional[ProfileResolver] = None,
        ledger: Optional[LedgerService] = None,
    ):
        self.otp = otp or otp_channel
        self.transactions = transactions or transaction_service
        self.profiles = profiles or profile_resolver
        self.ledger = ledger or ledger_service

    # ── Lookups ───────────────────────────────────────────────────────────

    async def _get_or_404(self, db: AsyncSession, contract_id: uuid.UUID) -> Contract:
        contract = await db.get(Contract, contract_id)
        if contract is None:
            raise NotFoundError(resource="contract", resource_id=str(contract_id))
        return contract

    async def get_for_matching(
        self, db: AsyncSession, matching_id: uuid.UUID, for_update: bool = False
    ) -> Optional[Contract]:
        query = select(Contract).where(Contract.matching_id == matching_id)
        if for_update:
            query = _locked(query)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def _lock_matching(self, db: AsyncSession, matching_id: uuid.UUID) -> Matching:
        result = await db.execute(_locked(select(Matching).where(Matching.id == matching_id)))
        matching = result.scalar_one_or_none()
        if matching is None:
            raise NotFoundError(resource="matching", resource_id=str(matching_id))
        return matching

    async def _signing_context(
        self,
        db: AsyncSession,
        matching_id: uuid.UUID,
        role: str,
        actor_profile_id: Optional[uuid.UUID],
    ) -> Tuple[Matching, Contract]:
        """Loads the pair for a signature step and checks the caller may sign."""
        if role not in PARTY_ROLES:
            raise ValidationError(message="Role must be 'nurse' or 'elderly'", field="role")

        # Matching first, then its contract; every signing path locks in this order
        matching = await self._lock_matching(db, matching_id)

        party_id = matching.elderly_id if role == ROLE_ELDERLY else matching.nurse_id
        if actor_profile_id is not None and actor_profile_id != party_id:
            raise AuthorizationError(message=f"Only the {role} party can sign this contract")

        contract = await self.get_for_matching(db, matching_id, for_update=True)
        if contract is None:
            raise NotFoundError(resource="contract for matching", resource_id=str(matching_id))
        if contract.status != STATUS_PENDING_SIGNATURE:
            raise ValidationError(
                message="Contract details must be filled before signing",
                field="status",
                context={"status": contract.status},
            )
        if matching.has_signed(role):
            raise ConflictError(
                message=f"The {role} party has already signed this contract",
                context={"matching_id": str(matching_id), "role": role},
            )
        return matching, contract

    async def get_contract(self, db: AsyncSession, contract_id: uuid.UUID) -> Contract:
        return await self._get_or_404(db, contract_id)

    async def list_contracts(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
    ) -> Tuple[List[Contract], int]:
        try:
            query = select(Contract)
            if status:
                query = query.where(Contract.status == status)
            return await paginate(db, query.order_by(desc(Contract.created_at)), page, limit)
        except CareBridgeError:
            raise
        except Exception as e:
            logger.error("Database error listing contracts: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve contracts. Please try again.",
                context={"error_type": type(e).__name__},
            )

    # ── Drafting ──────────────────────────────────────────────────────────

    async def draft_for_matching(
        self, db: AsyncSession, matching: Matching, created_by: Optional[str]
    ) -> Contract:
        contract = Contract(
            matching_id=matching.id,
            elderly_id=matching.elderly_id,
            nurse_id=matching.nurse_id,
            status=STATUS_PENDING,
            created_by=created_by,
            payment_details=PaymentDetailsPatch(service_level=matching.service_level).to_stored(),
            terms=[],
            history_logs=[],
        )
        contract.record_history("created", created_by)
        db.add(contract)
        await db.flush()
        logger.info("Contract %s drafted for matching %s", contract.id, matching.id)
        return contract

    async def fill_contract_details(
        self,
        db: AsyncSession,
        contract_id: uuid.UUID,
        terms: Optional[List[str]],
        payment_details: Optional[PaymentDetailsPatch],
        effective_date: Optional[datetime],
        expiry_date: Optional[datetime],
        actor_id: Optional[str],
    ) -> Contract:
        """
        Completes a drafting contract and opens it for signature.

        Raises:
            ValidationError: the contract is not pending, the dates are
                inverted, or the payment details cannot produce a transaction
            NotFoundError: the contract or the tier's pricing does not exist
            ConflictError: a transaction already exists for the contract
        """
        contract = await self._get_or_404(db, contract_id)
        if contract.status != STATUS_PENDING:
            raise ValidationError(
                message="Contract details can only be filled while the contract is pending",
                field="status",
                context={"status": contract.status},
            )
        if effective_date and expiry_date and expiry_date <= effective_date:
            raise ValidationError(
                message="expiry_date must be after effective_date",
                field="expiry_date",
            )

        if payment_details is not None:
            contract.payment_details = payment_details.merge(contract.payment_details)
        if terms is not None:
            contract.terms = list(terms)
        if effective_date is not None:
            contract.effective_date = effective_date
        if expiry_date is not None:
            contract.expiry_date = expiry_date

        contract.transition(STATUS_PENDING_SIGNATURE, actor_id, action="filled_details")
        await db.flush()

        # ── Derive the payment record in the same transaction ──────────────
        # A derivation failure rolls the fill back with it
        await self.transactions.derive_from_contract(db, contract.id)

        logger.info("Contract %s details filled by %s", contract.id, actor_id)
        return contract

    async def signing_recipients(
        self, db: AsyncSession, contract: Contract
    ) -> List[Tuple[str, str]]:
        """
        (role, email) for each party of a contract awaiting signature.

        A party whose email cannot be resolved is logged and left out; it can
        still ask for a code later through request_signature_otp.
        """
        recipients = []
        for role, party_id in ((ROLE_ELDERLY, contract.elderly_id), (ROLE_NURSE, contract.nurse_id)):
            try:
                recipients.append((role, await self.profiles.email_for(db, party_id)))
            except CareBridgeError as e:
                logger.error(
                    "No signing OTP recipient for %s party of contract %s: %s",
                    role, contract.id, e.message,
                )
        return recipients

    async def dispatch_signing_otps(
        self, matching_id: uuid.UUID, recipients: List[Tuple[str, str]]
    ) -> None:
        """
        Emails one signing OTP per recipient.

        What:    Opens the signing window once a fill has been committed.
        Who:     Scheduled as a background task by PUT /api/contracts/{id}/fill.
        When:    After the response is ready and the request's transaction
                 has committed, so no code is ever sent for a rolled-back fill.

        Delivery failures are logged per party and never raised; the fill
        already stands and either party can re-request a code.
        """
        for role, email in recipients:
            try:
                await self.otp.request_otp(str(matching_id), role, email)
            except Exception as e:
                logger.error(
                    "Signing OTP dispatch to %s party of matching %s failed: %s",
                    role, matching_id, str(e),
                )

    # ── Signing ───────────────────────────────────────────────────────────

    async def request_signature_otp(
        self,
        db: AsyncSession,
        matching_id: uuid.UUID,
        role: str,
        actor_profile_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Issues a fresh signing OTP to the party's registered email."""
        matching, _ = await self._signing_context(db, matching_id, role, actor_profile_id)
        party_id = matching.elderly_id if role == ROLE_ELDERLY else matching.nurse_id
        email = await self.profiles.email_for(db, party_id)
        await self.otp.request_otp(str(matching_id), role, email)

    async def confirm_signature(
        self,
        db: AsyncSession,
        matching_id: uuid.UUID,
        role: str,
        otp_code: Optional[str],
        actor_id: Optional[str],
        actor_profile_id: Optional[uuid.UUID] = None,
    ) -> Matching:
        """
        Records a party's signature once its OTP checks out.

        Raises:
            ConflictError: the role has already signed (the OTP is untouched)
            ValidationError: no OTP supplied, contract not open for signing,
                or a party has no ledger address at settlement time
            OtpError: the OTP is absent, expired or wrong
            SettlementError: the ledger write failed; signatures are kept
        """
        # ── Step 1: Lock the pair and check the caller may sign ────────────
        # ConflictError here leaves the party's outstanding OTP in place
        matching, contract = await self._signing_context(db, matching_id, role, actor_profile_id)

        # ── Step 2: Consume the OTP ───────────────────────────────────────
        await self.otp.confirm_otp(str(matching_id), role, otp_code)

        # ── Step 3: Record this party's signature ────────────────────────
        matching.set_signature(role, True)
        contract.mark_signed(role, actor_id)
        logger.info("Matching %s signed by %s party", matching_id, role)

        # ── Step 4: Second signature matches the pair and settles ─────────
        # The signature state is committed even when the ledger write fails,
        # so retry_settlement can pick it up
        if matching.is_signed:
            matching.is_matched = True
            matching.matched_at = datetime.now(timezone.utc)
            contract.transition(STATUS_ACTIVE, actor_id)
            await db.flush()
            try:
                await self._settle(db, matching, contract, actor_id)
            except CareBridgeError:
                await db.commit()
                raise

        await db.flush()
        return matching

    async def _settle(
        self,
        db: AsyncSession,
        matching: Matching,
        contract: Contract,
        actor_id: Optional[str],
    ) -> None:
        # ValidationError before any ledger call when a party has no address
        elderly_wallet = await self.profiles.ledger_wallet(db, matching.elderly_id)
        nurse_wallet = await self.profiles.ledger_wallet(db, matching.nurse_id)
        # An open breaker surfaces as 503; any other ledger failure is a SettlementError
        try:
            receipt = await self.ledger.record_settlement(
                matching.id, elderly_wallet.address, nurse_wallet.address
            )
        except CircuitBreakerOpenError:
            raise
        except ExternalServiceError as e:
            logger.error("Settlement of matching %s failed: %s", matching.id, e.message)
            raise SettlementError(context={"matching_id": str(matching.id), "reason": e.message})

        matching.contract_hash = receipt.tx_hash
        contract.contract_hash = receipt.tx_hash
        contract.record_history("settlement_recorded", actor_id)
        logger.info("Matching %s settlement recorded: %s", matching.id, receipt.tx_hash)

    async def retry_settlement(
        self, db: AsyncSession, matching_id: uuid.UUID, actor_id: Optional[str]
    ) -> Matching:
        """Re-attempts the ledger record of a fully signed, unsettled matching."""
        matching = await self._lock_matching(db, matching_id)
        if not matching.is_signed:
            raise ValidationError(
                message="Contract must be signed by both parties",
                field="contract_status",
            )
        if matching.contract_hash:
            raise ConflictError(
                message="This matching has already been settled",
                context={"contract_hash": matching.contract_hash},
            )
        contract = await self.get_for_matching(db, matching_id, for_update=True)
        if contract is None:
            raise NotFoundError(resource="contract for matching", resource_id=str(matching_id))

        await self._settle(db, matching, contract, actor_id)
        await db.flush()
        return matching

    # ── Administration ────────────────────────────────────────────────────

    async def update_contract_status(
        self,
        db: AsyncSession,
        contract_id: uuid.UUID,
        status: Optional[str],
        actor_id: Optional[str],
    ) -> Contract:
        if status not in ADMIN_STATUSES:
            raise ValidationError(
                message=f"Invalid contract status. Must be one of: {', '.join(ADMIN_STATUSES)}",
                field="status",
            )
        contract = await self._get_or_404(db, contract_id)
        if contract.transition(status, actor_id):
            logger.info("Contract %s status set to %s by %s", contract_id, status, actor_id)
        await db.flush()
        return contract

    async def mark_violated(
        self, db: AsyncSession, matching_id: uuid.UUID, actor_id: Optional[str]
    ) -> Optional[Contract]:
        contract = await self.get_for_matching(db, matching_id)
        if contract is not None:
            contract.transition(STATUS_VIOLATED, actor_id, action="violation_reported")
        return contract

    async def delete_contract(self, db: AsyncSession, contract_id: uuid.UUID) -> None:
        contract = await self._get_or_404(db, contract_id)
        await db.delete(contract)
        await db.flush()
        logger.info("Contract %s deleted", contract_id)


contract_service = ContractService()
