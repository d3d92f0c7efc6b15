"""Tests for request ID middleware."""

import uuid

import pytest
from unittest.mock import MagicMock
from starlette.requests import Request
from starlette.responses import Response

from resume_billing.middleware.request_id import (
    REQUEST_ID_HEADER,
    RequestIDMiddleware,
    get_request_id,
    request_id_var,
)


class TestGetRequestId:
    """Tests for getting request ID from context."""

    def test_returns_none_outside_context(self):
        token = request_id_var.set(None)
        try:
            assert get_request_id() is None
        finally:
            request_id_var.reset(token)

    def test_returns_id_in_context(self):
        token = request_id_var.set("test-request-id-123")
        try:
            assert get_request_id() == "test-request-id-123"
        finally:
            request_id_var.reset(token)


class TestRequestIDMiddleware:
    """Tests for RequestIDMiddleware."""

    @pytest.fixture
    def middleware(self):
        return RequestIDMiddleware(MagicMock())

    @pytest.mark.asyncio
    async def test_generates_id_when_missing(self, middleware):
        request = MagicMock(spec=Request)
        request.headers = {}
        seen = {}

        async def call_next(req):
            seen["request_id"] = get_request_id()
            return Response(content="ok")

        response = await middleware.dispatch(request, call_next)

        request_id = response.headers[REQUEST_ID_HEADER]
        assert str(uuid.UUID(request_id)) == request_id
        assert seen["request_id"] == request_id

    @pytest.mark.asyncio
    async def test_reuses_incoming_id(self, middleware):
        request = MagicMock(spec=Request)
        request.headers = {REQUEST_ID_HEADER: "upstream-id"}

        async def call_next(req):
            return Response(content="ok")

        response = await middleware.dispatch(request, call_next)

        assert response.headers[REQUEST_ID_HEADER] == "upstream-id"

    @pytest.mark.asyncio
    async def test_context_reset_after_request(self, middleware):
        request = MagicMock(spec=Request)
        request.headers = {REQUEST_ID_HEADER: "scoped-id"}

        async def call_next(req):
            return Response(content="ok")

        await middleware.dispatch(request, call_next)

        assert get_request_id() is None

    @pytest.mark.asyncio
    async def test_header_on_app_responses(self, client):
        response = await client.get("/healthcheck", headers={REQUEST_ID_HEADER: "e2e-id"})
        assert response.headers[REQUEST_ID_HEADER] == "e2e-id"
