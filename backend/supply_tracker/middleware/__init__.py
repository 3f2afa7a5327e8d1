# Middleware package init
"""
Supply Tracker Backend: Middleware Package
============================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (order matters!):
    Request → [Rate Limit] → [Request ID] → [Logging] → [CORS] → Route Handler

    1. Rate Limit first: reject abusive clients before any processing
    2. Request ID: correlation ID for logs and error bodies
    3. Logging: one access line per request with status and duration
    4. CORS: FastAPI's CORSMiddleware (handles preflight)

    Responses pass back through the chain in reverse order.
"""
