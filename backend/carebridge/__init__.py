"""
CareBridge Backend — Application Package
==========================================

Home-care marketplace backend: matching elderly clients with nurses,
OTP-authorized contract signing with ledger settlement, payments, refunds
and disputes.

Layers:
    ┌─────────────────────────────────────┐
    │        routes/   (HTTP, roles)      │
    ├─────────────────────────────────────┤
    │        services/ (state machines)   │
    ├─────────────────────────────────────┤
    │   models/ + schemas/ (ORM, API)     │
    ├─────────────────────────────────────┤
    │        database  (async sessions)   │
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
