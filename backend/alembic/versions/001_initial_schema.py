"""Create the matching, contract, transaction, dispute, pricing and profile tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Initial CareBridge schema and the three pricing tiers.
How:   Portable column types (sa.Uuid, sa.JSON) so the same revision runs on
       PostgreSQL and SQLite. Uniqueness backs the one-to-one links:
       contracts.matching_id, transactions.contract_id, pricing.service_level.

Rollback: downgrade() drops every table (destructive).
"""

from decimal import Decimal
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    # Owned by the identity service; created here for standalone deployments
    op.create_table(
        "profiles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("account_id", sa.String(64), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("full_name", sa.String(120), nullable=False, server_default=""),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("ledger_address", sa.String(64), nullable=True),
        sa.Column("ledger_key_encrypted", sa.Text(), nullable=True),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
    )
    op.create_index("ix_profiles_account_id", "profiles", ["account_id"])

    pricing = op.create_table(
        "pricing",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("service_level", sa.String(20), nullable=False),
        sa.Column("price_min", sa.Numeric(18, 2), nullable=False),
        sa.Column("price_max", sa.Numeric(18, 2), nullable=False),
        sa.Column("platform_share_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("nurse_share_percentage", sa.Numeric(5, 2), nullable=False),
        sa.UniqueConstraint("service_level", name="uq_pricing_service_level"),
    )

    op.create_table(
        "matchings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("nurse_id", sa.Uuid(), nullable=False),
        sa.Column("elderly_id", sa.Uuid(), nullable=False),
        sa.Column("service_level", sa.String(20), nullable=False),
        sa.Column("booking_time", sa.JSON(), nullable=False),
        sa.Column("elderly_signature", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("nurse_signature", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("contract_hash", sa.String(128), nullable=True),
        sa.Column("is_signed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("violation_report", sa.JSON(), nullable=True),
        sa.Column("is_matched", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("matched_at", nullable=True),
        _timestamp("reset_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_matchings_nurse_id", "matchings", ["nurse_id"])
    op.create_index("ix_matchings_elderly_id", "matchings", ["elderly_id"])
    op.create_index("idx_matchings_created_at", "matchings", [sa.text("created_at DESC")])

    op.create_table(
        "contracts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("matching_id", sa.Uuid(), nullable=False),
        sa.Column("elderly_id", sa.Uuid(), nullable=False),
        sa.Column("nurse_id", sa.Uuid(), nullable=False),
        sa.Column("contract_hash", sa.String(128), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        _timestamp("signed_by_elderly", nullable=True),
        _timestamp("signed_by_nurse", nullable=True),
        sa.Column("elderly_signed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("nurse_signed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("effective_date", nullable=True),
        _timestamp("expiry_date", nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        _timestamp("last_modified_at"),
        _timestamp("created_at"),
        sa.Column("history_logs", sa.JSON(), nullable=False),
        sa.Column("payment_details", sa.JSON(), nullable=False),
        sa.Column("terms", sa.JSON(), nullable=False),
        sa.UniqueConstraint("matching_id", name="uq_contracts_matching_id"),
    )
    op.create_index("ix_contracts_elderly_id", "contracts", ["elderly_id"])
    op.create_index("ix_contracts_nurse_id", "contracts", ["nurse_id"])
    op.create_index("idx_contracts_status", "contracts", ["status"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("elderly_id", sa.Uuid(), nullable=False),
        sa.Column("nurse_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(20), nullable=False, server_default="VND"),
        sa.Column("service_type", sa.String(20), nullable=False),
        sa.Column("platform_fee", sa.Numeric(18, 2), nullable=False),
        sa.Column("nurse_receive_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(30), nullable=False, server_default="bank_transfer"),
        sa.Column("contract_id", sa.Uuid(), nullable=True),
        sa.Column("withdraw_request_id", sa.Uuid(), nullable=True),
        sa.Column("ledger_tx_hash", sa.String(128), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("contract_id", name="uq_transactions_contract_id"),
        sa.CheckConstraint(
            "amount = platform_fee + nurse_receive_amount",
            name="ck_transactions_split",
        ),
    )
    op.create_index("ix_transactions_elderly_id", "transactions", ["elderly_id"])
    op.create_index("ix_transactions_nurse_id", "transactions", ["nurse_id"])
    op.create_index("idx_transactions_created_at", "transactions", [sa.text("created_at DESC")])

    op.create_table(
        "disputes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("transaction_id", sa.Uuid(), nullable=False),
        sa.Column("complainant_id", sa.Uuid(), nullable=False),
        sa.Column("complainant_role", sa.String(20), nullable=False),
        sa.Column("defendant_id", sa.Uuid(), nullable=False),
        sa.Column("defendant_role", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("evidences", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("resolution", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("resolved_at", nullable=True),
    )
    op.create_index("ix_disputes_transaction_id", "disputes", ["transaction_id"])
    op.create_index("ix_disputes_complainant_id", "disputes", ["complainant_id"])
    op.create_index("ix_disputes_defendant_id", "disputes", ["defendant_id"])
    op.create_index("idx_disputes_created_at", "disputes", [sa.text("created_at DESC")])

    # Hourly rates in VND
    op.bulk_insert(
        pricing,
        [
            {
                "service_level": "basic",
                "price_min": Decimal("100000"),
                "price_max": Decimal("200000"),
                "platform_share_percentage": Decimal("20"),
                "nurse_share_percentage": Decimal("80"),
            },
            {
                "service_level": "standard",
                "price_min": Decimal("200000"),
                "price_max": Decimal("350000"),
                "platform_share_percentage": Decimal("25"),
                "nurse_share_percentage": Decimal("75"),
            },
            {
                "service_level": "premium",
                "price_min": Decimal("350000"),
                "price_max": Decimal("600000"),
                "platform_share_percentage": Decimal("30"),
                "nurse_share_percentage": Decimal("70"),
            },
        ],
    )


def downgrade() -> None:
    for table in ("disputes", "transactions", "contracts", "matchings", "pricing", "profiles"):
        op.drop_table(table)
