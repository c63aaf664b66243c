"""
CareBridge Backend — Schema Tests
===================================

What we test:
    ✅ PaymentDetailsPatch.merge: supplied wins, absent never overwrites
    ✅ Stored payment details keep money exact as strings
    ✅ Request bodies reject malformed input
"""

import uuid
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from carebridge.schemas.contract import PaymentDetails, PaymentDetailsPatch
from carebridge.schemas.matching import MatchingCreateRequest


class TestPaymentDetailsMerge:
    def test_supplied_fields_win(self):
        existing = {"service_level": "standard", "price_per_hour": "200000"}
        merged = PaymentDetailsPatch(price_per_hour=Decimal("250000")).merge(existing)
        assert merged == {"service_level": "standard", "price_per_hour": "250000"}

    def test_absent_fields_never_overwrite(self):
        existing = {"service_level": "premium", "currency": "PlatformToken"}
        merged = PaymentDetailsPatch(total_hours_booked=Decimal("3")).merge(existing)
        assert merged["currency"] == "PlatformToken"
        assert merged["service_level"] == "premium"
        assert merged["total_hours_booked"] == "3"

    def test_merge_into_empty(self):
        transaction_id = uuid.uuid4()
        merged = PaymentDetailsPatch(transaction_id=transaction_id).merge(None)
        assert merged == {"transaction_id": str(transaction_id)}

    def test_round_trip_keeps_decimals_exact(self):
        stored = PaymentDetails(platform_total_earnings=Decimal("500000.10")).to_stored()
        assert stored == {"platform_total_earnings": "500000.10"}
        assert PaymentDetails.from_stored(stored).platform_total_earnings == Decimal("500000.10")

    @pytest.mark.parametrize(
        "fields",
        [
            {"currency": "USD"},
            {"service_level": "gold"},
            {"price_per_hour": Decimal("-1")},
            {"platform_share_percentage": Decimal("101")},
        ],
    )
    def test_rejects_invalid_values(self, fields):
        with pytest.raises(PydanticValidationError):
            PaymentDetailsPatch(**fields)


class TestMatchingCreateRequest:
    def test_accepts_booking_windows(self):
        body = MatchingCreateRequest(
            nurse_id=uuid.uuid4(),
            service_level="basic",
            booking_time=[{"start_time": "2026-11-02T09:00:00Z", "end_time": "2026-11-02T11:00:00Z"}],
        )
        assert body.service_level == "basic"
