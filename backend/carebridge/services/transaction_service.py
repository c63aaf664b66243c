"""
CareBridge Backend — Transaction Settlement Engine
====================================================

What:  Derives the financial Transaction from a filled Contract and drives it
       through payment and refund.
How:   Amounts are Decimal quantized to two places. The platform fee is
       rounded half-up and the nurse receives the remainder, so
       amount == platform_fee + nurse_receive_amount holds exactly.

Payment paths:
    VND            → MockPaymentGateway.attempt         (bank_transfer)
    PlatformToken  → LedgerService.transfer elderly → nurse (ledger_transfer)

Failed payments are committed as `failed` before PaymentError propagates, so
the status survives the request's rollback.
"""

import asyncio
import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Optional, Tuple

from sqlalchemy import desc, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from carebridge.config import settings
from carebridge.exceptions import (
    AuthorizationError,
    CareBridgeError,
    ConflictError,
    DatabaseError,
    ExternalServiceError,
    NotFoundError,
    PaymentError,
    RefundError,
    ValidationError,
)
from carebridge.models.contract import Contract
from carebridge.models.profile import PARTY_ROLES, ROLE_ELDERLY
from carebridge.models.transaction import (
    CURRENCY_FIAT,
    CURRENCY_TOKEN,
    METHOD_BANK_TRANSFER,
    METHOD_LEDGER_TRANSFER,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    TRANSACTION_STATUSES,
    Transaction,
)
from carebridge.schemas.contract import PaymentDetails, PaymentDetailsPatch
from carebridge.services.ledger_service import LedgerService, ledger_service, to_base_units
from carebridge.services.pagination import paginate
from carebridge.services.payment_gateway import MockPaymentGateway, payment_gateway
from carebridge.services.pricing_service import PricingResolver, pricing_resolver
from carebridge.services.profile_service import ProfileResolver, profile_resolver

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def split_amount(amount: Decimal, platform_share_percentage: Decimal) -> Tuple[Decimal, Decimal]:
    """Returns (platform_fee, nurse_receive_amount) for `amount`."""
    platform_fee = (amount * Decimal(platform_share_percentage) / 100).quantize(
        CENT, rounding=ROUND_HALF_UP
    )
    return platform_fee, amount - platform_fee


def token_amount(amount: Decimal, exchange_rate: Decimal) -> int:
    """Whole platform tokens for a VND-denominated amount, rounded half-up."""
    return int((amount / exchange_rate).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class TransactionService:
    def __init__(
        self,
        pricing: Optional[PricingResolver] = None,
        profiles: Optional[ProfileResolver] = None,
        ledger: Optional[LedgerService] = None,
        gateway: Optional[MockPaymentGateway] = None,
    ):
        self.pricing = pricing or pricing_resolver
        self.profiles = profiles or profile_resolver
        self.ledger = ledger or ledger_service
        self.gateway = gateway or payment_gateway

    async def _get_or_404(self, db: AsyncSession, transaction_id: uuid.UUID) -> Transaction:
        transaction = await db.get(Transaction, transaction_id)
        if transaction is None:
            raise NotFoundError(resource="transaction", resource_id=str(transaction_id))
        return transaction

    # ── Derivation ────────────────────────────────────────────────────────

    async def derive_from_contract(self, db: AsyncSession, contract_id: uuid.UUID) -> Transaction:
        """
        Creates the pending Transaction for a contract's payment details.

        The computed shares and earnings are merged back into the contract's
        payment details.

        Raises:
            ConflictError: a transaction already exists for the contract
            NotFoundError: the contract (or the tier's pricing) does not exist
            ValidationError: price, hours or tier missing, or amount not positive
        """
        existing = await db.execute(
            select(Transaction.id).where(Transaction.contract_id == contract_id)
        )
        if existing.first() is not None:
            raise ConflictError(
                message="Transaction already exists for this contract",
                context={"contract_id": str(contract_id)},
            )

        contract = await db.get(Contract, contract_id)
        if contract is None:
            raise NotFoundError(resource="contract", resource_id=str(contract_id))

        details = PaymentDetails.from_stored(contract.payment_details)
        missing = [
            name
            for name in ("price_per_hour", "total_hours_booked", "service_level")
            if getattr(details, name) is None
        ]
        if missing:
            raise ValidationError(
                message=f"Payment details are incomplete: {', '.join(missing)}",
                field="payment_details",
                context={"missing": missing},
            )

        # ── Step 1: Amount and fee split, exact to the cent ──────────────────
        try:
            amount = (details.price_per_hour * details.total_hours_booked).quantize(
                CENT, rounding=ROUND_HALF_UP
            )
        except InvalidOperation:
            raise ValidationError(message="Payment amount is not a valid number", field="payment_details")
        if amount <= 0:
            raise ValidationError(
                message="Payment amount must be greater than zero",
                field="payment_details",
            )

        # Shares come from the tier's Pricing row, never from the request
        pricing = await self.pricing.get_pricing(db, details.service_level)
        platform_fee, nurse_amount = split_amount(amount, pricing.platform_share_percentage)
        currency = details.currency or CURRENCY_FIAT

        transaction = Transaction(
            elderly_id=contract.elderly_id,
            nurse_id=contract.nurse_id,
            amount=amount,
            currency=currency,
            service_type=details.service_level,
            platform_fee=platform_fee,
            nurse_receive_amount=nurse_amount,
            status=STATUS_PENDING,
            payment_method=METHOD_LEDGER_TRANSFER if currency == CURRENCY_TOKEN else METHOD_BANK_TRANSFER,
            contract_id=contract.id,
        )
        # ── Step 2: Insert; the unique contract_id column rejects a second one ──
        db.add(transaction)
        try:
            await db.flush()
        except IntegrityError:
            raise ConflictError(
                message="Transaction already exists for this contract",
                context={"contract_id": str(contract_id)},
            )

        # ── Step 3: Write the computed earnings back onto the contract ───────
        deposit = details.deposit_amount or Decimal(0)
        contract.payment_details = PaymentDetailsPatch(
            platform_share_percentage=pricing.platform_share_percentage,
            nurse_share_percentage=pricing.nurse_share_percentage,
            platform_total_earnings=platform_fee,
            nurse_total_earnings=nurse_amount,
            deposit_amount=deposit,
            remaining_payment=amount - deposit,
            currency=currency,
        ).merge(contract.payment_details)
        await db.flush()

        logger.info(
            "Transaction %s derived from contract %s: amount=%s %s fee=%s nurse=%s",
            transaction.id, contract_id, amount, currency, platform_fee, nurse_amount,
        )
        return transaction

    # ── Payment ───────────────────────────────────────────────────────────

    async def _fail(self, db: AsyncSession, transaction: Transaction, reason: str) -> None:
        transaction.status = STATUS_FAILED
        transaction.note = reason
        # Committed here so the failed status survives the request rollback
        await db.commit()
        logger.warning("Transaction %s failed: %s", transaction.id, reason)

    async def _pay_by_bank(self, db: AsyncSession, transaction: Transaction) -> None:
        try:
            approved = await asyncio.wait_for(
                self.gateway.attempt(transaction),
                timeout=settings.external_call_timeout_seconds,
            )
        # A gateway timeout counts as a decline
        except asyncio.TimeoutError:
            approved = False
        if not approved:
            await self._fail(db, transaction, "Bank payment declined")
            raise PaymentError(message="Payment failed", service="bank")

    async def _pay_by_ledger(self, db: AsyncSession, transaction: Transaction) -> None:
        elderly_wallet = await self.profiles.ledger_wallet(db, transaction.elderly_id, with_key=True)
        nurse_wallet = await self.profiles.ledger_wallet(db, transaction.nurse_id)

        tokens = token_amount(transaction.amount, settings.pht_vnd_exchange_rate)
        if tokens <= 0:
            raise ValidationError(
                message="Calculated PlatformToken amount is zero or negative. Check amount and exchange rate.",
                field="amount",
            )
        required = to_base_units(tokens)

        # Checked up front so an underfunded wallet never reaches the ledger
        balance = await self.ledger.balance_of(elderly_wallet.address)
        if balance < required:
            raise ValidationError(
                message="Insufficient PlatformToken balance",
                field="amount",
                context={"required": required, "available": balance},
            )

        try:
            receipt = await self.ledger.transfer(elderly_wallet, nurse_wallet.address, required)
        except ExternalServiceError as e:
            await self._fail(db, transaction, e.message)
            raise PaymentError(message=f"Payment failed: {e.message}", service="ledger")
        transaction.ledger_tx_hash = receipt.tx_hash

    async def process_payment(
        self,
        db: AsyncSession,
        transaction_id: uuid.UUID,
        actor_profile_id: Optional[uuid.UUID],
        actor_role: str,
    ) -> Transaction:
        """
        Pays a pending transaction on behalf of its elderly party.

        Raises:
            AuthorizationError: the actor is not the transaction's elderly party
            ValidationError: not pending, missing wallet or insufficient balance
            PaymentError: the bank declined or the ledger transfer failed
        """
        transaction = await self._get_or_404(db, transaction_id)

        if actor_role != ROLE_ELDERLY or transaction.elderly_id != actor_profile_id:
            raise AuthorizationError(message="Unauthorized payment attempt")
        if transaction.status != STATUS_PENDING:
            raise ValidationError(
                message="Only pending transactions can be processed",
                field="status",
            )

        # ── Charge through the rail the currency selects ───────────────────
        if transaction.currency == CURRENCY_TOKEN:
            await self._pay_by_ledger(db, transaction)
        else:
            await self._pay_by_bank(db, transaction)

        # ── Mark paid and link the transaction from its contract ───────────
        transaction.status = STATUS_COMPLETED
        if transaction.contract_id is not None:
            contract = await db.get(Contract, transaction.contract_id)
            if contract is not None:
                contract.payment_details = PaymentDetailsPatch(
                    transaction_id=transaction.id
                ).merge(contract.payment_details)
        await db.flush()
        logger.info("Transaction %s completed via %s", transaction.id, transaction.payment_method)
        return transaction

    async def refund_transaction(
        self, db: AsyncSession, transaction_id: uuid.UUID, reason: Optional[str]
    ) -> Transaction:
        """
        Refunds a completed transaction and cancels it.

        A declined refund leaves the transaction completed.
        """
        transaction = await self._get_or_404(db, transaction_id)
        if transaction.status != STATUS_COMPLETED:
            raise ValidationError(
                message="Only completed transactions can be refunded",
                field="status",
            )

        if transaction.currency == CURRENCY_TOKEN:
            elderly_wallet = await self.profiles.ledger_wallet(db, transaction.elderly_id)
            tokens = token_amount(transaction.amount, settings.pht_vnd_exchange_rate)
            # An unconfigured or undecryptable platform key is a failed refund too
            try:
                platform_wallet = self.ledger.platform_wallet()
                receipt = await self.ledger.transfer(
                    platform_wallet, elderly_wallet.address, to_base_units(tokens)
                )
            except (ExternalServiceError, ValidationError) as e:
                logger.error("Ledger refund for transaction %s failed: %s", transaction.id, e.message)
                raise RefundError(message=f"Refund failed: {e.message}", service="ledger")
            transaction.ledger_tx_hash = receipt.tx_hash
        else:
            try:
                approved = await asyncio.wait_for(
                    self.gateway.refund(transaction),
                    timeout=settings.external_call_timeout_seconds,
                )
            except asyncio.TimeoutError:
                approved = False
            if not approved:
                raise RefundError(message="Refund failed", service="bank")

        transaction.status = STATUS_CANCELLED
        transaction.note = reason
        await db.flush()
        logger.info("Transaction %s refunded: %s", transaction.id, reason)
        return transaction

    # ── Queries ───────────────────────────────────────────────────────────

    async def get_transaction(self, db: AsyncSession, transaction_id: uuid.UUID) -> Transaction:
        return await self._get_or_404(db, transaction_id)

    async def list_transactions(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        elderly_id: Optional[uuid.UUID] = None,
        nurse_id: Optional[uuid.UUID] = None,
    ) -> Tuple[List[Transaction], int]:
        try:
            query = select(Transaction)
            if status:
                query = query.where(Transaction.status == status)
            if elderly_id:
                query = query.where(Transaction.elderly_id == elderly_id)
            if nurse_id:
                query = query.where(Transaction.nurse_id == nurse_id)
            return await paginate(db, query.order_by(desc(Transaction.created_at)), page, limit)
        except CareBridgeError:
            raise
        except Exception as e:
            logger.error("Database error listing transactions: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve transactions. Please try again.",
                context={"error_type": type(e).__name__},
            )

    async def get_user_transactions(
        self,
        db: AsyncSession,
        profile_id: uuid.UUID,
        role: str,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Transaction], int]:
        if role not in PARTY_ROLES:
            raise ValidationError(message="Role must be 'nurse' or 'elderly'", field="role")
        column = Transaction.elderly_id if role == ROLE_ELDERLY else Transaction.nurse_id
        query = select(Transaction).where(column == profile_id).order_by(desc(Transaction.created_at))
        return await paginate(db, query, page, limit)

    async def update_transaction_status(
        self, db: AsyncSession, transaction_id: uuid.UUID, status: Optional[str]
    ) -> Transaction:
        if status not in TRANSACTION_STATUSES:
            raise ValidationError(
                message=f"Invalid transaction status. Must be one of: {', '.join(TRANSACTION_STATUSES)}",
                field="status",
            )
        transaction = await self._get_or_404(db, transaction_id)
        transaction.status = status
        await db.flush()
        logger.info("Transaction %s status set to %s", transaction_id, status)
        return transaction


transaction_service = TransactionService()
