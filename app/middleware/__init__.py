"""
MediaHost Backend — Middleware Package
========================================

Middleware Chain:
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route

    - rate_limit.py: per-IP sliding window, 429 before any processing
    - request_id.py: X-Request-ID correlation ID (ContextVar)
    - logging.py:    access log line with status and duration
"""
