"""Middleware and logging context for the notification engine.

Provides:
- Correlation ID tracking for API requests and reminder fires
- Log record enrichment
"""

from .correlation import (
    CorrelationIdFilter,
    CorrelationIdMiddleware,
    configure_logging,
    correlation_scope,
    get_correlation_id,
    propagate_correlation_headers,
)

__all__ = [
    "CorrelationIdFilter",
    "CorrelationIdMiddleware",
    "configure_logging",
    "correlation_scope",
    "get_correlation_id",
    "propagate_correlation_headers",
]
