"""
CareBridge Backend — Middleware Package

Request path:
    Request → [Rate Limit] → [Request ID] → [Access Log] → [GZip] → [CORS] → Route

Rate limiting runs first so rejected callers cost nothing downstream; the
request ID is bound before the access log line is written.
"""
