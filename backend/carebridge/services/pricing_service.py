"""
CareBridge Backend — Pricing Resolver
=======================================

What:  Looks up the revenue split for a service tier.
Who:   TransactionService when deriving a transaction from a contract.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carebridge.exceptions import NotFoundError
from carebridge.models.pricing import Pricing

logger = logging.getLogger(__name__)


class PricingResolver:
    async def get_pricing(self, db: AsyncSession, service_level: str) -> Pricing:
        """
        Returns the Pricing row for `service_level`.

        Raises:
            NotFoundError: no pricing is configured for the tier.
        """
        result = await db.execute(select(Pricing).where(Pricing.service_level == service_level))
        pricing = result.scalar_one_or_none()
        if pricing is None:
            logger.warning("No pricing configured for service level '%s'", service_level)
            raise NotFoundError(resource="pricing", resource_id=service_level)
        return pricing


pricing_resolver = PricingResolver()
