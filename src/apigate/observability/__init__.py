"""
apigate.observability

Observability package.

Responsibilities:
- Structured logging configuration.
- Request-scoped log context (trace id, method, path) via structlog contextvars.
"""

# Package marker.
