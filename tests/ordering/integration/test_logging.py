"""Tests for request-scoped log context."""

import structlog
from ordering.utils.logging import bind_request_context, clear_context


class TestRequestContext:
    def test_binds_request_fields(self):
        clear_context()
        bind_request_context(method="POST", path="/orders")
        try:
            assert structlog.contextvars.get_contextvars() == {"method": "POST", "path": "/orders"}
        finally:
            clear_context()

        assert structlog.contextvars.get_contextvars() == {}
