"""
CareBridge Backend — Contract Service Tests
=============================================

What we test:
    ✅ Filling details derives the transaction; OTPs go out only on dispatch
    ✅ Fill is single-shot from pending and atomic with derivation
    ✅ OTP signing of both parties matches the pair and settles
    ✅ Signatures confirmed from two sessions both count
    ✅ Duplicate, premature and foreign signature attempts are rejected
    ✅ Settlement failures (ledger down, missing address) keep the signatures
    ✅ Administrative status edits append history only on change
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from carebridge.exceptions import (
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    OtpError,
    SettlementError,
    ValidationError,
)
from carebridge.models.matching import Matching
from carebridge.models.transaction import Transaction
from carebridge.schemas.contract import PaymentDetailsPatch

from conftest import ELDERLY_ADDRESS, NURSE_ADDRESS, booking_windows, transactions_for


async def _sign(contracts, sender, db_session, matching, profile, role):
    code = sender.last_code_for(profile.email)
    return await contracts.confirm_signature(
        db_session, matching.id, role, code,
        actor_id=profile.account_id, actor_profile_id=profile.id,
    )


async def _open_for_signature(db_session, matchings, contracts, elderly, nurse):
    """Basic tier, 150,000 x 4 h, committed and with both OTPs dispatched."""
    matching = await matchings.create_matching(db_session, elderly, nurse.id, "basic", booking_windows())
    contract = await contracts.get_for_matching(db_session, matching.id)
    await contracts.fill_contract_details(
        db_session, contract.id, terms=None,
        payment_details=PaymentDetailsPatch(price_per_hour=Decimal("150000"), total_hours_booked=Decimal("4")),
        effective_date=None, expiry_date=None, actor_id="admin-1",
    )
    await db_session.commit()
    await contracts.dispatch_signing_otps(matching.id, await contracts.signing_recipients(db_session, contract))
    return matching, contract


class TestFillContractDetails:
    @pytest.mark.asyncio
    async def test_fill_derives_transaction_and_dispatches_otps(self, db_session, seeded, filled, kv_store, sender):
        """200,000 x 10 h at standard (25%) → 2,000,000 / 500,000 / 1,500,000."""
        contract = filled.contract
        assert contract.status == "pending_signature"
        assert contract.terms == ["Two visits per week"]
        assert [entry["action"] for entry in contract.history_logs] == ["created", "filled_details"]

        transaction = filled.transaction
        assert transaction.amount == Decimal("2000000.00")
        assert transaction.platform_fee == Decimal("500000.00")
        assert transaction.nurse_receive_amount == Decimal("1500000.00")
        assert transaction.amount == transaction.platform_fee + transaction.nurse_receive_amount
        assert transaction.status == "pending"
        assert transaction.currency == "VND"
        assert transaction.payment_method == "bank_transfer"
        assert transaction.service_type == "standard"

        details = contract.payment_details
        assert Decimal(details["platform_share_percentage"]) == Decimal("25")
        assert Decimal(details["nurse_share_percentage"]) == Decimal("75")
        assert Decimal(details["platform_total_earnings"]) == Decimal("500000")
        assert Decimal(details["nurse_total_earnings"]) == Decimal("1500000")
        assert Decimal(details["remaining_payment"]) == Decimal("2000000")
        assert details["currency"] == "VND"

        assert sorted(email for email, _ in sender.sent) == ["lan@example.com", "minh@example.com"]
        matching_id = str(filled.matching.id)
        assert set(kv_store.data) == {
            f"otp:sign:{matching_id}:elderly",
            f"otp:sign:{matching_id}:nurse",
        }
        assert set(kv_store.ttls.values()) == {3600}

    @pytest.mark.asyncio
    async def test_fill_is_single_shot(self, db_session, seeded, filled, contracts):
        with pytest.raises(ValidationError, match="pending"):
            await contracts.fill_contract_details(
                db_session, filled.contract.id, terms=["again"], payment_details=None,
                effective_date=None, expiry_date=None, actor_id="admin-1",
            )
        actions = [entry["action"] for entry in filled.contract.history_logs]
        assert actions.count("filled_details") == 1

    @pytest.mark.asyncio
    async def test_fill_rejects_inverted_dates(self, db_session, seeded, matchings, contracts):
        matching = await matchings.create_matching(
            db_session, seeded.elderly, seeded.nurse.id, "basic", booking_windows()
        )
        contract = await contracts.get_for_matching(db_session, matching.id)
        with pytest.raises(ValidationError, match="expiry_date"):
            await contracts.fill_contract_details(
                db_session, contract.id, terms=None,
                payment_details=PaymentDetailsPatch(price_per_hour=Decimal("150000"), total_hours_booked=Decimal("4")),
                effective_date=datetime(2027, 1, 1, tzinfo=timezone.utc),
                expiry_date=datetime(2026, 1, 1, tzinfo=timezone.utc),
                actor_id="admin-1",
            )
        assert contract.status == "pending"

    @pytest.mark.asyncio
    async def test_failed_derivation_rolls_back_fill(self, db_session, seeded, matchings, contracts, sender):
        matching = await matchings.create_matching(
            db_session, seeded.elderly, seeded.nurse.id, "basic", booking_windows()
        )
        contract = await contracts.get_for_matching(db_session, matching.id)
        await db_session.commit()

        with pytest.raises(ValidationError, match="price_per_hour"):
            await contracts.fill_contract_details(
                db_session, contract.id, terms=["x"],
                payment_details=PaymentDetailsPatch(total_hours_booked=Decimal("4")),
                effective_date=None, expiry_date=None, actor_id="admin-1",
            )
        await db_session.rollback()
        await db_session.refresh(contract)

        assert contract.status == "pending"
        assert [entry["action"] for entry in contract.history_logs] == ["created"]
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_fill_alone_sends_no_code(self, db_session, seeded, matchings, contracts, kv_store, sender):
        matching = await matchings.create_matching(
            db_session, seeded.elderly, seeded.nurse.id, "premium", booking_windows()
        )
        contract = await contracts.get_for_matching(db_session, matching.id)

        await contracts.fill_contract_details(
            db_session, contract.id, terms=None,
            payment_details=PaymentDetailsPatch(price_per_hour=Decimal("400000"), total_hours_booked=Decimal("5")),
            effective_date=None, expiry_date=None, actor_id="admin-1",
        )
        assert contract.status == "pending_signature"
        assert sender.sent == []
        assert kv_store.data == {}

        await db_session.commit()
        recipients = await contracts.signing_recipients(db_session, contract)
        assert recipients == [("elderly", "lan@example.com"), ("nurse", "minh@example.com")]

        await contracts.dispatch_signing_otps(matching.id, recipients)
        assert [email for email, _ in sender.sent] == ["lan@example.com", "minh@example.com"]

    @pytest.mark.asyncio
    async def test_otp_dispatch_failure_does_not_block_fill(self, db_session, seeded, matchings, contracts, sender):
        sender.fail = True
        matching = await matchings.create_matching(
            db_session, seeded.elderly, seeded.nurse.id, "premium", booking_windows()
        )
        contract = await contracts.get_for_matching(db_session, matching.id)

        filled = await contracts.fill_contract_details(
            db_session, contract.id, terms=None,
            payment_details=PaymentDetailsPatch(price_per_hour=Decimal("400000"), total_hours_booked=Decimal("5")),
            effective_date=None, expiry_date=None, actor_id="admin-1",
        )
        await db_session.commit()
        await contracts.dispatch_signing_otps(matching.id, await contracts.signing_recipients(db_session, contract))

        assert sender.sent == []
        assert filled.status == "pending_signature"
        transaction, count = await transactions_for(db_session, contract.id)
        assert count == 1
        assert transaction.platform_fee == Decimal("600000.00")

        sender.fail = False
        await contracts.request_signature_otp(db_session, matching.id, "nurse", seeded.nurse.id)
        assert [email for email, _ in sender.sent] == ["minh@example.com"]

    @pytest.mark.asyncio
    async def test_missing_contract(self, db_session, seeded, contracts):
        with pytest.raises(NotFoundError):
            await contracts.fill_contract_details(
                db_session, uuid.uuid4(), terms=None, payment_details=None,
                effective_date=None, expiry_date=None, actor_id="admin-1",
            )


class TestSignatureConfirmation:
    @pytest.mark.asyncio
    async def test_both_parties_sign_and_settle(self, db_session, seeded, filled, contracts, sender, ledger):
        """Elderly signs first, then the nurse completes the pair."""
        matching = await _sign(contracts, sender, db_session, filled.matching, seeded.elderly, "elderly")
        assert matching.contract_status["elderly_signature"] is True
        assert matching.is_signed is False
        assert matching.is_matched is False
        ledger.record_settlement.assert_not_awaited()

        matching = await _sign(contracts, sender, db_session, filled.matching, seeded.nurse, "nurse")
        assert matching.is_signed is True
        assert matching.is_matched is True
        assert matching.matched_at is not None
        assert matching.contract_hash == "0xsettlement"

        ledger.record_settlement.assert_awaited_once_with(matching.id, ELDERLY_ADDRESS, NURSE_ADDRESS)

        contract = filled.contract
        assert contract.status == "active"
        assert contract.elderly_signed and contract.nurse_signed
        assert contract.signed_by_elderly is not None and contract.signed_by_nurse is not None
        assert contract.contract_hash == "0xsettlement"
        assert [entry["action"] for entry in contract.history_logs][2:] == [
            "elderly_signed", "nurse_signed", "status:active", "settlement_recorded",
        ]

    @pytest.mark.asyncio
    async def test_signature_from_stale_session_still_completes_pair(
        self, session_factory, seeded, filled, contracts, sender, ledger
    ):
        """The nurse's session loaded the pair before the elderly signature was committed."""
        async with session_factory() as elderly_session, session_factory() as nurse_session:
            stale_matching = await nurse_session.get(Matching, filled.matching.id)
            stale_contract = await contracts.get_for_matching(nurse_session, filled.matching.id)
            assert stale_matching.elderly_signature is False

            await _sign(contracts, sender, elderly_session, filled.matching, seeded.elderly, "elderly")
            await elderly_session.commit()

            matching = await _sign(contracts, sender, nurse_session, filled.matching, seeded.nurse, "nurse")
            await nurse_session.commit()

            assert matching is stale_matching
            assert matching.elderly_signature is True
            assert matching.is_signed is True
            assert matching.is_matched is True
            assert stale_contract.status == "active"
            actions = [entry["action"] for entry in stale_contract.history_logs]
            assert "elderly_signed" in actions and "nurse_signed" in actions
            ledger.record_settlement.assert_awaited_once()

        async with session_factory() as check:
            stored = await check.get(Matching, filled.matching.id)
            assert stored.is_signed is True
            assert stored.is_matched is True
            assert stored.contract_hash == "0xsettlement"

    @pytest.mark.asyncio
    async def test_wrong_code_consumes_otp(self, db_session, seeded, filled, contracts, sender, kv_store):
        right_code = sender.last_code_for(seeded.elderly.email)
        wrong_code = "000000" if right_code != "000000" else "111111"

        with pytest.raises(OtpError):
            await contracts.confirm_signature(db_session, filled.matching.id, "elderly", wrong_code, "acc-elderly-1")
        assert f"otp:sign:{filled.matching.id}:elderly" not in kv_store.data

        with pytest.raises(OtpError):
            await contracts.confirm_signature(db_session, filled.matching.id, "elderly", right_code, "acc-elderly-1")
        assert filled.matching.elderly_signature is False

    @pytest.mark.asyncio
    async def test_missing_code(self, db_session, seeded, filled, contracts):
        with pytest.raises(ValidationError):
            await contracts.confirm_signature(db_session, filled.matching.id, "nurse", None, "acc-nurse-1")

    @pytest.mark.asyncio
    async def test_second_confirmation_for_same_role_conflicts(self, db_session, seeded, filled, contracts, sender, kv_store):
        await _sign(contracts, sender, db_session, filled.matching, seeded.elderly, "elderly")
        nurse_key = f"otp:sign:{filled.matching.id}:nurse"
        assert nurse_key in kv_store.data

        with pytest.raises(ConflictError):
            await contracts.confirm_signature(db_session, filled.matching.id, "elderly", "123456", "acc-elderly-1")
        with pytest.raises(ConflictError):
            await contracts.request_signature_otp(db_session, filled.matching.id, "elderly")
        assert nurse_key in kv_store.data
        assert [e["action"] for e in filled.contract.history_logs].count("elderly_signed") == 1

    @pytest.mark.asyncio
    async def test_signing_before_fill_is_rejected(self, db_session, seeded, matchings, contracts):
        matching = await matchings.create_matching(
            db_session, seeded.elderly, seeded.nurse.id, "basic", booking_windows()
        )
        with pytest.raises(ValidationError):
            await contracts.request_signature_otp(db_session, matching.id, "elderly")

    @pytest.mark.asyncio
    async def test_only_the_party_can_sign(self, db_session, seeded, filled, contracts, sender):
        code = sender.last_code_for(seeded.nurse.email)
        with pytest.raises(AuthorizationError):
            await contracts.confirm_signature(
                db_session, filled.matching.id, "nurse", code, "acc-nurse-2",
                actor_profile_id=seeded.other_nurse.id,
            )

    @pytest.mark.asyncio
    async def test_request_otp_reissues_code(self, db_session, seeded, filled, contracts, sender):
        await contracts.request_signature_otp(db_session, filled.matching.id, "nurse", seeded.nurse.id)
        assert [email for email, _ in sender.sent].count("minh@example.com") == 2

        matching = await _sign(contracts, sender, db_session, filled.matching, seeded.nurse, "nurse")
        assert matching.nurse_signature is True


class TestSettlement:
    @pytest.mark.asyncio
    async def test_ledger_failure_keeps_signatures(self, db_session, seeded, filled, contracts, sender, ledger):
        ledger.record_settlement.side_effect = ExternalServiceError(message="node down", service="ledger")
        await _sign(contracts, sender, db_session, filled.matching, seeded.elderly, "elderly")

        with pytest.raises(SettlementError):
            await _sign(contracts, sender, db_session, filled.matching, seeded.nurse, "nurse")

        # The failing request's session is rolled back; the signatures were committed
        await db_session.rollback()
        await db_session.refresh(filled.matching)
        await db_session.refresh(filled.contract)
        assert filled.matching.is_signed is True
        assert filled.matching.is_matched is True
        assert filled.matching.contract_hash is None
        assert filled.contract.status == "active"

        ledger.record_settlement.side_effect = None
        settled = await contracts.retry_settlement(db_session, filled.matching.id, "admin-1")
        assert settled.contract_hash == "0xsettlement"
        assert filled.contract.contract_hash == "0xsettlement"

        with pytest.raises(ConflictError):
            await contracts.retry_settlement(db_session, filled.matching.id, "admin-1")

    @pytest.mark.asyncio
    async def test_party_without_ledger_address_keeps_signatures(
        self, db_session, seeded, matchings, contracts, sender, ledger
    ):
        matching, contract = await _open_for_signature(
            db_session, matchings, contracts, seeded.elderly, seeded.other_nurse
        )
        await _sign(contracts, sender, db_session, matching, seeded.elderly, "elderly")

        with pytest.raises(ValidationError) as exc_info:
            await _sign(contracts, sender, db_session, matching, seeded.other_nurse, "nurse")
        assert exc_info.value.field == "ledger_address"
        ledger.record_settlement.assert_not_awaited()

        await db_session.rollback()
        await db_session.refresh(matching)
        await db_session.refresh(contract)
        assert matching.is_signed is True
        assert matching.is_matched is True
        assert matching.contract_hash is None
        assert contract.status == "active"

        # Still unsettled, so the retry hits the same missing address
        with pytest.raises(ValidationError):
            await contracts.retry_settlement(db_session, matching.id, "admin-1")
        ledger.record_settlement.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_requires_full_signature(self, db_session, seeded, filled, contracts):
        with pytest.raises(ValidationError):
            await contracts.retry_settlement(db_session, filled.matching.id, "admin-1")


class TestContractAdministration:
    @pytest.mark.asyncio
    async def test_status_update_appends_history_on_change(self, db_session, seeded, filled, contracts):
        contract = await contracts.update_contract_status(db_session, filled.contract.id, "terminated", "admin-1")
        assert contract.status == "terminated"
        assert contract.history_logs[-1]["action"] == "status:terminated"
        assert contract.history_logs[-1]["modified_by"] == "admin-1"
        entries = len(contract.history_logs)

        await contracts.update_contract_status(db_session, filled.contract.id, "terminated", "admin-1")
        assert len(contract.history_logs) == entries

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["pending_signature", "archived", None])
    async def test_status_update_rejects_other_values(self, db_session, seeded, filled, contracts, status):
        with pytest.raises(ValidationError):
            await contracts.update_contract_status(db_session, filled.contract.id, status, "admin-1")

    @pytest.mark.asyncio
    async def test_list_and_delete(self, db_session, seeded, filled, contracts):
        items, total = await contracts.list_contracts(db_session, status="pending_signature")
        assert total == 1
        assert items[0].id == filled.contract.id

        await contracts.delete_contract(db_session, filled.contract.id)
        with pytest.raises(NotFoundError):
            await contracts.get_contract(db_session, filled.contract.id)

    @pytest.mark.asyncio
    async def test_transaction_is_unique_per_contract(self, db_session, seeded, filled, transactions):
        with pytest.raises(ConflictError):
            await transactions.derive_from_contract(db_session, filled.contract.id)
        _, count = await transactions_for(db_session, filled.contract.id)
        assert count == 1
        assert isinstance(filled.transaction, Transaction)
