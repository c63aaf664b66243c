"""
CareBridge Backend — Pricing SQLAlchemy Model
===============================================

What:  Static per-tier lookup: fee range and the platform/nurse revenue split.
When:  Seeded by the initial migration; read-only at runtime.
"""

from decimal import Decimal

from sqlalchemy import Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from carebridge.database import Base

SERVICE_LEVELS = ("basic", "standard", "premium")


class Pricing(Base):
    __tablename__ = "pricing"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service_level: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    price_min: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    price_max: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    platform_share_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    nurse_share_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Pricing(service_level='{self.service_level}', "
            f"platform={self.platform_share_percentage}%, nurse={self.nurse_share_percentage}%)>"
        )
