"""Tests for request timeout middleware."""

import asyncio
import json

import pytest
from unittest.mock import MagicMock, patch
from starlette.requests import Request
from starlette.responses import Response

from resume_billing.middleware.timeout import TimeoutMiddleware


class TestTimeoutMiddleware:
    """Tests for TimeoutMiddleware."""

    @pytest.fixture
    def middleware(self):
        return TimeoutMiddleware(MagicMock(), timeout_seconds=0.1)

    @pytest.fixture
    def mock_request(self):
        request = MagicMock(spec=Request)
        request.url.path = "/payments/verify/cs_123"
        request.method = "GET"
        return request

    @pytest.mark.asyncio
    async def test_passes_request_within_timeout(self, middleware, mock_request):
        async def call_next(req):
            return Response(content="success", status_code=200)

        result = await middleware.dispatch(mock_request, call_next)

        assert result.status_code == 200
        assert result.body == b"success"

    @pytest.mark.asyncio
    async def test_returns_504_on_timeout(self, middleware, mock_request):
        async def slow_call_next(req):
            await asyncio.sleep(1)
            return Response(content="success")

        with patch('resume_billing.middleware.timeout.get_request_id', return_value="req-123"):
            with patch('resume_billing.middleware.timeout.logger') as mock_logger:
                result = await middleware.dispatch(mock_request, slow_call_next)

        assert result.status_code == 504
        body = json.loads(result.body)
        assert body["error"] == "GatewayTimeout"
        assert body["request_id"] == "req-123"
        mock_logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_excludes_healthcheck_paths(self, middleware):
        request = MagicMock(spec=Request)
        request.url.path = "/healthcheck/db"

        async def slow_call_next(req):
            await asyncio.sleep(0.2)
            return Response(content="healthy")

        result = await middleware.dispatch(request, slow_call_next)

        assert result.status_code == 200

    @pytest.mark.asyncio
    async def test_custom_excluded_paths(self, mock_request):
        middleware = TimeoutMiddleware(MagicMock(), timeout_seconds=0.1, exclude_paths=["/payments"])

        async def slow_call_next(req):
            await asyncio.sleep(0.2)
            return Response(content="done")

        result = await middleware.dispatch(mock_request, slow_call_next)

        assert result.status_code == 200
