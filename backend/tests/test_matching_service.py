"""
CareBridge Backend — Matching Service Tests
=============================================

What we test:
    ✅ Creation: role gate, required fields, tier, window validation,
       nurse reservation, contract drafting
    ✅ Booking replacement
    ✅ Direct signatures keep is_signed == both flags; a withdrawal unmatches
    ✅ complete_match requires both signatures
    ✅ Violation reports stamp the report and violate the contract
    ✅ Reset and delete release the nurse
"""

import uuid

import pytest

from carebridge.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from carebridge.services.matching_service import parse_booking_windows

from conftest import booking_windows


class TestParseBookingWindows:
    def test_normalizes_to_utc_iso(self):
        windows = parse_booking_windows(
            [{"start_time": "2026-11-02T09:00:00Z", "end_time": "2026-11-02T11:00:00"}]
        )
        assert windows == [
            {"start_time": "2026-11-02T09:00:00+00:00", "end_time": "2026-11-02T11:00:00+00:00"}
        ]

    @pytest.mark.parametrize(
        "raw",
        [
            "not a list",
            ["not an object"],
            [{"start_time": "2026-11-02T09:00:00Z"}],
            [{"start_time": "yesterday", "end_time": "2026-11-02T11:00:00Z"}],
            [{"start_time": "2026-11-02T11:00:00Z", "end_time": "2026-11-02T09:00:00Z"}],
            [{"start_time": "2026-11-02T09:00:00Z", "end_time": "2026-11-02T09:00:00Z"}],
        ],
    )
    def test_rejects_malformed_windows(self, raw):
        with pytest.raises(ValidationError):
            parse_booking_windows(raw)


class TestCreateMatching:
    @pytest.mark.asyncio
    async def test_creates_unmatched_unsigned_matching(self, db_session, seeded, matchings, contracts):
        """A fresh matching is unmatched with both flags false."""
        matching = await matchings.create_matching(
            db_session, seeded.elderly, seeded.nurse.id, "standard", booking_windows()
        )

        assert matching.is_matched is False
        assert matching.elderly_signature is False
        assert matching.nurse_signature is False
        assert matching.is_signed is False
        assert matching.reset_at is not None
        assert matching.state == "created"
        assert seeded.nurse.is_available is False

        contract = await contracts.get_for_matching(db_session, matching.id)
        assert contract.status == "pending"
        assert contract.payment_details == {"service_level": "standard"}
        assert [entry["action"] for entry in contract.history_logs] == ["created"]

    @pytest.mark.asyncio
    async def test_only_elderly_can_create(self, db_session, seeded, matchings):
        with pytest.raises(AuthorizationError):
            await matchings.create_matching(
                db_session, seeded.other_nurse, seeded.nurse.id, "standard", booking_windows()
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "service_level, windows",
        [(None, booking_windows()), ("standard", None), ("standard", []), ("platinum", booking_windows())],
    )
    async def test_rejects_missing_or_invalid_fields(self, db_session, seeded, matchings, service_level, windows):
        with pytest.raises(ValidationError):
            await matchings.create_matching(
                db_session, seeded.elderly, seeded.nurse.id, service_level, windows
            )
        assert seeded.nurse.is_available is True

    @pytest.mark.asyncio
    async def test_unknown_nurse_is_not_found(self, db_session, seeded, matchings):
        with pytest.raises(NotFoundError):
            await matchings.create_matching(
                db_session, seeded.elderly, uuid.uuid4(), "basic", booking_windows()
            )

    @pytest.mark.asyncio
    async def test_elderly_profile_is_not_a_nurse(self, db_session, seeded, matchings):
        with pytest.raises(NotFoundError):
            await matchings.create_matching(
                db_session, seeded.elderly, seeded.other_elderly.id, "basic", booking_windows()
            )

    @pytest.mark.asyncio
    async def test_reserved_nurse_is_unavailable(self, db_session, seeded, matchings):
        await matchings.create_matching(
            db_session, seeded.elderly, seeded.nurse.id, "basic", booking_windows()
        )
        with pytest.raises(ConflictError):
            await matchings.create_matching(
                db_session, seeded.other_elderly, seeded.nurse.id, "basic", booking_windows()
            )


class TestMatchingLifecycle:
    @pytest.fixture
    def create(self, db_session, seeded, matchings):
        async def _create():
            return await matchings.create_matching(
                db_session, seeded.elderly, seeded.nurse.id, "basic", booking_windows()
            )
        return _create

    @pytest.mark.asyncio
    async def test_update_booking_replaces_windows(self, db_session, matchings, create):
        matching = await create()
        new_windows = [
            {"start_time": "2026-12-01T08:00:00Z", "end_time": "2026-12-01T10:00:00Z"},
            {"start_time": "2026-12-02T08:00:00Z", "end_time": "2026-12-02T10:00:00Z"},
        ]
        updated = await matchings.update_booking_time(db_session, matching.id, new_windows)
        assert len(updated.booking_time) == 2
        assert updated.booking_time[0]["start_time"] == "2026-12-01T08:00:00+00:00"

    @pytest.mark.asyncio
    async def test_update_booking_rejects_non_list(self, db_session, matchings, create):
        matching = await create()
        with pytest.raises(ValidationError):
            await matchings.update_booking_time(db_session, matching.id, {"start_time": "x"})

    @pytest.mark.asyncio
    async def test_update_booking_missing_matching(self, db_session, seeded, matchings):
        with pytest.raises(NotFoundError):
            await matchings.update_booking_time(db_session, uuid.uuid4(), booking_windows())

    @pytest.mark.asyncio
    async def test_fully_signed_tracks_both_flags(self, db_session, matchings, create):
        matching = await create()

        await matchings.record_signature(db_session, matching.id, "elderly", True)
        assert matching.is_signed is False
        assert matching.state == "partially_signed"

        await matchings.record_signature(db_session, matching.id, "nurse", True, contract_hash="0xabc")
        assert matching.is_signed is True
        assert matching.contract_hash == "0xabc"
        assert matching.state == "fully_signed"

        await matchings.record_signature(db_session, matching.id, "elderly", False)
        assert matching.is_signed is False

    @pytest.mark.asyncio
    async def test_signature_role_must_be_a_party_role(self, db_session, matchings, create):
        matching = await create()
        with pytest.raises(ValidationError):
            await matchings.record_signature(db_session, matching.id, "admin", True)

    @pytest.mark.asyncio
    async def test_complete_requires_both_signatures(self, db_session, matchings, create):
        matching = await create()
        await matchings.record_signature(db_session, matching.id, "elderly", True)

        with pytest.raises(ValidationError, match="signed by both parties"):
            await matchings.complete_match(db_session, matching.id)
        assert matching.is_matched is False

        await matchings.record_signature(db_session, matching.id, "nurse", True)
        completed = await matchings.complete_match(db_session, matching.id)
        assert completed.is_matched is True
        assert completed.matched_at is not None
        assert completed.state == "matched"

    @pytest.mark.asyncio
    async def test_withdrawn_signature_unmatches_pair(self, db_session, matchings, create):
        matching = await create()
        await matchings.record_signature(db_session, matching.id, "elderly", True)
        await matchings.record_signature(db_session, matching.id, "nurse", True)
        await matchings.complete_match(db_session, matching.id)
        assert matching.state == "matched"

        withdrawn = await matchings.record_signature(db_session, matching.id, "nurse", False)
        assert withdrawn.is_signed is False
        assert withdrawn.is_matched is False
        assert withdrawn.state == "partially_signed"

        items, total = await matchings.list_matchings(db_session, is_matched=True)
        assert total == 0

        await matchings.record_signature(db_session, matching.id, "nurse", True)
        assert withdrawn.is_signed is True
        assert withdrawn.is_matched is False

    @pytest.mark.asyncio
    async def test_violation_report_unmatches_and_violates_contract(
        self, db_session, seeded, matchings, contracts, create
    ):
        matching = await create()
        await matchings.record_signature(db_session, matching.id, "elderly", True)
        await matchings.record_signature(db_session, matching.id, "nurse", True)
        await matchings.complete_match(db_session, matching.id)

        reported = await matchings.report_violation(
            db_session, matching.id, seeded.nurse.account_id, "Client was absent",
            reporter_profile_id=seeded.nurse.id,
        )

        assert reported.is_matched is False
        assert reported.violation_report["reported_by"] == seeded.nurse.account_id
        assert reported.violation_report["reason"] == "Client was absent"
        assert "timestamp" in reported.violation_report
        assert reported.state == "violated"

        contract = await contracts.get_for_matching(db_session, matching.id)
        assert contract.status == "violated"
        assert contract.history_logs[-1]["action"] == "violation_reported"

    @pytest.mark.asyncio
    async def test_violation_requires_party_or_admin(self, db_session, seeded, matchings, create):
        matching = await create()
        with pytest.raises(AuthorizationError):
            await matchings.report_violation(
                db_session, matching.id, seeded.other_nurse.account_id, "Spam",
                reporter_profile_id=seeded.other_nurse.id,
            )

        reported = await matchings.report_violation(
            db_session, matching.id, "admin-1", "Fraud suspected", is_admin=True
        )
        assert reported.violation_report["reported_by"] == "admin-1"

    @pytest.mark.asyncio
    async def test_violation_requires_reason(self, db_session, seeded, matchings, create):
        matching = await create()
        with pytest.raises(ValidationError):
            await matchings.report_violation(db_session, matching.id, "admin-1", "  ", is_admin=True)

    @pytest.mark.asyncio
    async def test_reset_releases_nurse(self, db_session, seeded, matchings, create):
        matching = await create()
        assert seeded.nurse.is_available is False

        reset = await matchings.reset_match(db_session, matching.id)
        assert reset.is_matched is False
        assert seeded.nurse.is_available is True

    @pytest.mark.asyncio
    async def test_delete_releases_nurse(self, db_session, seeded, matchings, create):
        matching = await create()
        await matchings.delete_matching(db_session, matching.id)

        assert seeded.nurse.is_available is True
        with pytest.raises(NotFoundError):
            await matchings.get_matching(db_session, matching.id)

    @pytest.mark.asyncio
    async def test_list_filters_and_counts(self, db_session, seeded, matchings, create):
        await create()
        await matchings.create_matching(
            db_session, seeded.other_elderly, seeded.other_nurse.id, "premium", booking_windows()
        )

        items, total = await matchings.list_matchings(db_session, page=1, limit=10)
        assert total == 2

        items, total = await matchings.list_matchings(db_session, service_level="premium")
        assert total == 1
        assert items[0].service_level == "premium"

        items, total = await matchings.list_matchings(db_session, is_matched=True)
        assert total == 0
        assert items == []
