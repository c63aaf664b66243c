"""
CareBridge Backend — Mock Payment Gateway
===========================================

What:  Stand-in for the bank processor used by fiat (VND) payments and refunds.
How:   Succeeds with the configured probability. The interface mirrors what a
       real processor client would expose so it can be swapped without
       touching TransactionService.
"""

import logging
import random
from typing import Optional

from carebridge.config import settings
from carebridge.models.transaction import Transaction

logger = logging.getLogger(__name__)


class MockPaymentGateway:
    def __init__(
        self,
        payment_success_rate: Optional[float] = None,
        refund_success_rate: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ):
        self.payment_success_rate = (
            settings.mock_payment_success_rate if payment_success_rate is None else payment_success_rate
        )
        self.refund_success_rate = (
            settings.mock_refund_success_rate if refund_success_rate is None else refund_success_rate
        )
        self._rng = rng or random.Random()

    async def attempt(self, transaction: Transaction) -> bool:
        approved = self._rng.random() < self.payment_success_rate
        logger.info(
            "Bank payment for transaction %s (%s %s): %s",
            transaction.id, transaction.amount, transaction.currency,
            "approved" if approved else "declined",
        )
        return approved

    async def refund(self, transaction: Transaction) -> bool:
        approved = self._rng.random() < self.refund_success_rate
        logger.info(
            "Bank refund for transaction %s: %s",
            transaction.id, "approved" if approved else "declined",
        )
        return approved


payment_gateway = MockPaymentGateway()
