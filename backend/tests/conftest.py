"""
CareBridge Backend — Test Configuration (conftest.py)
=======================================================

What:  Shared fixtures: an in-memory SQLite database, seeded pricing and
       profiles, in-memory fakes for Redis, email, the ledger and the bank,
       and service instances wired to them.
How:   Environment variables are set before anything from `carebridge` is
       imported, so the settings singleton and the engine pick them up.

Fixture Hierarchy (all function-scoped):
    engine ── db_session ── seeded (pricing + profiles)
    kv_store, sender, ledger, gateway
    └── otp ── transactions ── contracts ── matchings
                                            └── filled
"""

import os

# A valid Fernet key (32 url-safe base64-encoded bytes)
TEST_FERNET_KEY = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["LEDGER_KEY_ENCRYPTION_KEY"] = TEST_FERNET_KEY
os.environ["PHT_VND_EXCHANGE_RATE"] = "1000"
os.environ["TOKEN_DECIMALS"] = "18"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import datetime, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from types import SimpleNamespace  # noqa: E402
from typing import Dict, List, Optional, Tuple  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from cryptography.fernet import Fernet  # noqa: E402
from sqlalchemy import func, select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import carebridge.models  # noqa: E402,F401
from carebridge.database import Base  # noqa: E402
from carebridge.exceptions import NotificationError  # noqa: E402
from carebridge.models.pricing import Pricing  # noqa: E402
from carebridge.models.profile import Profile  # noqa: E402
from carebridge.models.transaction import Transaction  # noqa: E402
from carebridge.schemas.contract import PaymentDetailsPatch  # noqa: E402
from carebridge.services.contract_service import ContractService  # noqa: E402
from carebridge.services.ledger_service import LedgerReceipt, LedgerService  # noqa: E402
from carebridge.services.matching_service import MatchingService  # noqa: E402
from carebridge.services.notification_service import NotificationSender  # noqa: E402
from carebridge.services.otp_service import OtpChannel  # noqa: E402
from carebridge.services.payment_gateway import MockPaymentGateway  # noqa: E402
from carebridge.services.profile_service import LedgerWallet  # noqa: E402
from carebridge.services.transaction_service import TransactionService  # noqa: E402

ELDERLY_SIGNING_KEY = "0x" + "11" * 32
ELDERLY_ADDRESS = "0x" + "aa" * 20
NURSE_ADDRESS = "0x" + "bb" * 20
PLATFORM_ADDRESS = "0x" + "cc" * 20


# ══════════════════════════════════════════════════════════════════════════
# Fakes
# ══════════════════════════════════════════════════════════════════════════


class FakeKeyValueStore:
    """Dict-backed stand-in for RedisKeyValueStore; TTLs are recorded, not enforced."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.data[key] = value
        self.ttls[key] = ttl_seconds

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)
        self.ttls.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class RecordingSender(NotificationSender):
    """Keeps every (email, code) pair; raises NotificationError when `fail` is set."""

    def __init__(self):
        self.sent: List[Tuple[str, str]] = []
        self.fail = False

    async def send_code(self, email: str, code: str) -> None:
        if self.fail:
            raise NotificationError(message="Mailbox unavailable")
        self.sent.append((email, code))

    def last_code_for(self, email: str) -> str:
        return [code for sent_to, code in self.sent if sent_to == email][-1]


def make_ledger() -> MagicMock:
    ledger = MagicMock(spec=LedgerService)
    ledger.balance_of = AsyncMock(return_value=10**30)
    ledger.transfer = AsyncMock(return_value=LedgerReceipt(tx_hash="0xtransfer"))
    ledger.record_settlement = AsyncMock(return_value=LedgerReceipt(tx_hash="0xsettlement"))
    ledger.platform_wallet = MagicMock(
        return_value=LedgerWallet(address=PLATFORM_ADDRESS, signing_key="platform-key")
    )
    return ledger


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def engine():
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(db_session):
    """
    Pricing tiers plus four profiles.

    elderly has an address and an encrypted signing key; nurse has an address
    only; other_nurse and other_elderly have neither.
    """
    db_session.add_all([
        Pricing(service_level="basic", price_min=Decimal("100000"), price_max=Decimal("200000"),
                platform_share_percentage=Decimal("20"), nurse_share_percentage=Decimal("80")),
        Pricing(service_level="standard", price_min=Decimal("200000"), price_max=Decimal("350000"),
                platform_share_percentage=Decimal("25"), nurse_share_percentage=Decimal("75")),
        Pricing(service_level="premium", price_min=Decimal("350000"), price_max=Decimal("600000"),
                platform_share_percentage=Decimal("30"), nurse_share_percentage=Decimal("70")),
    ])

    encrypted_key = Fernet(TEST_FERNET_KEY.encode()).encrypt(ELDERLY_SIGNING_KEY.encode()).decode()
    elderly = Profile(
        account_id="acc-elderly-1", role="elderly", full_name="Tran Thi Lan",
        email="lan@example.com", ledger_address=ELDERLY_ADDRESS, ledger_key_encrypted=encrypted_key,
    )
    nurse = Profile(
        account_id="acc-nurse-1", role="nurse", full_name="Nguyen Van Minh",
        email="minh@example.com", ledger_address=NURSE_ADDRESS, is_available=True,
    )
    other_nurse = Profile(
        account_id="acc-nurse-2", role="nurse", full_name="Le Thi Hoa",
        email="hoa@example.com", is_available=True,
    )
    other_elderly = Profile(
        account_id="acc-elderly-2", role="elderly", full_name="Pham Van Duc",
        email="duc@example.com",
    )
    db_session.add_all([elderly, nurse, other_nurse, other_elderly])
    await db_session.commit()
    return SimpleNamespace(
        elderly=elderly, nurse=nurse, other_nurse=other_nurse, other_elderly=other_elderly
    )


# ══════════════════════════════════════════════════════════════════════════
# Collaborators and services
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def kv_store():
    return FakeKeyValueStore()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def ledger():
    return make_ledger()


@pytest.fixture
def gateway():
    # A rate of 1.0 always approves; tests set 0.0 to force a decline
    return MockPaymentGateway(payment_success_rate=1.0, refund_success_rate=1.0)


@pytest.fixture
def otp(kv_store, sender):
    return OtpChannel(store=kv_store, sender=sender)


@pytest.fixture
def transactions(ledger, gateway):
    return TransactionService(ledger=ledger, gateway=gateway)


@pytest.fixture
def contracts(otp, transactions, ledger):
    return ContractService(otp=otp, transactions=transactions, ledger=ledger)


@pytest.fixture
def matchings(contracts):
    return MatchingService(contracts=contracts)


def booking_windows() -> List[Dict[str, str]]:
    return [{"start_time": "2026-11-02T09:00:00Z", "end_time": "2026-11-02T11:00:00Z"}]


@pytest_asyncio.fixture
async def filled(db_session, seeded, matchings, contracts):
    """
    A standard-tier matching whose contract has been filled (200,000 VND x 10 h)
    and committed, with a signing OTP emailed to each party.
    """
    matching = await matchings.create_matching(
        db_session, seeded.elderly, seeded.nurse.id, "standard", booking_windows()
    )
    contract = await contracts.get_for_matching(db_session, matching.id)
    await contracts.fill_contract_details(
        db_session,
        contract.id,
        terms=["Two visits per week"],
        payment_details=PaymentDetailsPatch(
            price_per_hour=Decimal("200000"), total_hours_booked=Decimal("10")
        ),
        effective_date=datetime(2026, 11, 1, tzinfo=timezone.utc),
        expiry_date=datetime(2027, 11, 1, tzinfo=timezone.utc),
        actor_id=seeded.nurse.account_id,
    )
    transaction, _ = await transactions_for(db_session, contract.id)
    await db_session.commit()
    await contracts.dispatch_signing_otps(
        contract.matching_id, await contracts.signing_recipients(db_session, contract)
    )
    return SimpleNamespace(matching=matching, contract=contract, transaction=transaction)


async def transactions_for(db_session, contract_id):
    """Returns (first transaction, count) for a contract."""
    rows = (await db_session.execute(
        select(Transaction).where(Transaction.contract_id == contract_id)
    )).scalars().all()
    count = (await db_session.execute(
        select(func.count()).select_from(Transaction).where(Transaction.contract_id == contract_id)
    )).scalar()
    return (rows[0] if rows else None), count
