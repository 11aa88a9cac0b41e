"""Tests for correlation ID propagation."""

import logging

from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from middleware.correlation import (
    CORRELATION_ID_HEADER,
    CorrelationIdFilter,
    CorrelationIdMiddleware,
    correlation_scope,
    get_correlation_id,
    propagate_correlation_headers,
    reset_correlation_id,
    set_correlation_id,
)


def _app():
    async def endpoint(request):
        return JSONResponse({"correlation_id": get_correlation_id()})

    app = Starlette(routes=[Route("/", endpoint)])
    app.add_middleware(CorrelationIdMiddleware)
    return app


class TestCorrelationContext:
    """Tests for the context helpers."""

    def test_set_and_reset(self):
        token = set_correlation_id("abc")
        try:
            assert get_correlation_id() == "abc"
        finally:
            reset_correlation_id(token)
        assert get_correlation_id() is None

    def test_scope_uses_given_id(self):
        with correlation_scope("expense-42-1day") as value:
            assert value == "expense-42-1day"
            assert get_correlation_id() == "expense-42-1day"
        assert get_correlation_id() is None

    def test_scope_generates_id(self):
        with correlation_scope() as value:
            assert len(value) == 12
            assert get_correlation_id() == value

    def test_propagate_headers(self):
        assert propagate_correlation_headers({"a": "b"}) == {"a": "b"}
        with correlation_scope("xyz"):
            assert propagate_correlation_headers({"a": "b"}) == {"a": "b", CORRELATION_ID_HEADER: "xyz"}


class TestCorrelationIdMiddleware:
    """Tests for the HTTP middleware."""

    def test_uses_incoming_header(self):
        response = TestClient(_app()).get("/", headers={CORRELATION_ID_HEADER: "incoming"})
        assert response.json() == {"correlation_id": "incoming"}
        assert response.headers[CORRELATION_ID_HEADER] == "incoming"

    def test_generates_when_missing(self):
        response = TestClient(_app()).get("/")
        generated = response.headers[CORRELATION_ID_HEADER]
        assert generated
        assert response.json() == {"correlation_id": generated}


class TestCorrelationIdFilter:
    """Tests for the logging filter."""

    def test_adds_correlation_id_to_records(self):
        record = logging.LogRecord("test", logging.INFO, __file__, 1, "message", None, None)
        log_filter = CorrelationIdFilter()

        assert log_filter.filter(record) is True
        assert record.correlation_id == "-"

        with correlation_scope("tag-1"):
            log_filter.filter(record)
        assert record.correlation_id == "tag-1"
