"""Correlation IDs for notification tracing.

Every HTTP request and every reminder fire runs inside a correlation scope so
that the log lines of one delivery (timer fire, OS display, ledger write,
remote sync) can be grouped together.

- HTTP requests take the ID from ``X-Correlation-ID`` or get a fresh one
- Timer fires use the reminder tag (``expense-42-1day``)
- Remote sync calls forward the ID to the remote store

Usage:
    from middleware.correlation import correlation_scope, get_correlation_id

    with correlation_scope("expense-42-1day"):
        logger.info("firing")  # [expense-42-1day] in the log line
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Callable, Iterator, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


_correlation_id_ctx: ContextVar[Optional[str]] = ContextVar(
    "correlation_id",
    default=None,
)

CORRELATION_ID_HEADER = "X-Correlation-ID"

DEFAULT_LOG_FORMAT = (
    "%(asctime)s [%(correlation_id)s] %(levelname)s "
    "%(name)s: %(message)s"
)


def get_correlation_id() -> Optional[str]:
    """Return the correlation ID of the current context, or None."""
    return _correlation_id_ctx.get()


def set_correlation_id(correlation_id: str) -> Token[Optional[str]]:
    """Set the correlation ID for the current context."""
    return _correlation_id_ctx.set(correlation_id)


def reset_correlation_id(token: Token[Optional[str]]) -> None:
    _correlation_id_ctx.reset(token)


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Run a block with a correlation ID (generated when not given)."""
    value = correlation_id or uuid.uuid4().hex[:12]
    token = set_correlation_id(value)
    try:
        yield value
    finally:
        reset_correlation_id(token)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Attach a correlation ID to each API request and echo it back."""

    def __init__(
        self,
        app,
        header_name: str = CORRELATION_ID_HEADER,
        generator: Optional[Callable[[], str]] = None,
    ):
        super().__init__(app)
        self.header_name = header_name
        self.generator = generator or (lambda: uuid.uuid4().hex[:12])

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Any],
    ) -> Response:
        correlation_id = request.headers.get(self.header_name) or self.generator()
        token = set_correlation_id(correlation_id)
        try:
            request.state.correlation_id = correlation_id
            response = await call_next(request)
            response.headers[self.header_name] = correlation_id
            return response
        finally:
            reset_correlation_id(token)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds ``correlation_id`` to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True


def configure_logging(
    level: str = "INFO",
    log_format: Optional[str] = None,
) -> None:
    """Install a stream handler carrying correlation IDs on the root logger.

    Args:
        level: Logging level name (``DEBUG``, ``INFO``...).
        log_format: Custom format; must include ``%(correlation_id)s``.
    """
    root_logger = logging.getLogger()
    for existing in root_logger.handlers:
        if any(isinstance(f, CorrelationIdFilter) for f in existing.filters):
            root_logger.setLevel(level.upper())
            return

    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(log_format or DEFAULT_LOG_FORMAT))

    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())


def propagate_correlation_headers(headers: Optional[dict] = None) -> dict:
    """Return ``headers`` extended with the current correlation ID."""
    result = dict(headers) if headers else {}
    correlation_id = get_correlation_id()
    if correlation_id:
        result[CORRELATION_ID_HEADER] = correlation_id
    return result
