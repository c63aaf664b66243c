"""
CareBridge Backend — ORM Models

Importing this package registers every table with `Base.metadata`
(used by Alembic and by the test suite).
"""

from carebridge.models.contract import Contract
from carebridge.models.dispute import Dispute
from carebridge.models.matching import Matching
from carebridge.models.pricing import Pricing
from carebridge.models.profile import Profile
from carebridge.models.transaction import Transaction

__all__ = ["Contract", "Dispute", "Matching", "Pricing", "Profile", "Transaction"]
