# Routes package init
"""
CareBridge Backend — API Routes Package

Route Inventory:
    - matching.py:      /api/matching       lifecycle, OTP signing, settlement retry
    - contracts.py:     /api/contracts      administration and /fill
    - transactions.py:  /api/transactions   derivation, payment, refund, queries
    - disputes.py:      /api/disputes       party complaints and admin review
    - health.py:        /health
    - deps.py:          caller identity (X-Account-ID / X-Account-Role) and role gates

Handlers stay thin: resolve the caller, call one service method, return the
ORM object for the response model to serialize.
"""
