"""Tests for error handlers."""

import json

import pytest
from unittest.mock import MagicMock, patch
from fastapi import HTTPException
from sqlalchemy.exc import OperationalError

from resume_billing.core.error_handlers import (
    _build_error_response,
    billing_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    sqlalchemy_exception_handler,
)
from resume_billing.core.exceptions import (
    InsufficientCreditsException, ProcessorTimeoutError, SubscriptionRequiredException
)


@pytest.fixture
def mock_request():
    request = MagicMock()
    request.url = "http://test/credits/debit/resume_creation"
    request.method = "POST"
    return request


class TestBuildErrorResponse:
    """Tests for _build_error_response helper function."""

    def test_basic_error_response(self):
        with patch('resume_billing.core.error_handlers.get_request_id', return_value=None):
            response = _build_error_response(error="TestError", message="Test message")

        assert response == {"error": "TestError", "message": "Test message"}

    def test_includes_request_id_when_available(self):
        with patch('resume_billing.core.error_handlers.get_request_id', return_value="req-123"):
            response = _build_error_response(error="TestError", message="Test message")

        assert response["request_id"] == "req-123"

    def test_excludes_request_id_when_disabled(self):
        with patch('resume_billing.core.error_handlers.get_request_id', return_value="req-123"):
            response = _build_error_response(error="TestError", message="Test message", include_request_id=False)

        assert "request_id" not in response


class TestBillingExceptionHandler:

    @pytest.mark.asyncio
    async def test_insufficient_credits_carries_amounts(self, mock_request):
        with patch('resume_billing.core.error_handlers.get_request_id', return_value="req-1"):
            response = await billing_exception_handler(
                mock_request, InsufficientCreditsException(required=3, available=2, action="upwork_proposal")
            )

        assert response.status_code == 402
        body = json.loads(response.body)
        assert body == {
            "error": "InsufficientCredits",
            "message": "Insufficient credits",
            "request_id": "req-1",
            "required": 3,
            "available": 2,
            "action": "upwork_proposal",
        }

    @pytest.mark.asyncio
    async def test_subscription_required_carries_upgrade_url(self, mock_request):
        with patch('resume_billing.core.error_handlers.get_request_id', return_value=None):
            response = await billing_exception_handler(mock_request, SubscriptionRequiredException())

        assert response.status_code == 403
        body = json.loads(response.body)
        assert body["message"] == "Active subscription required"
        assert body["upgrade_url"] == "/subscription/plans"

    @pytest.mark.asyncio
    async def test_processor_timeout_logged_as_error(self, mock_request):
        with patch('resume_billing.core.error_handlers.logger') as mock_logger:
            response = await billing_exception_handler(mock_request, ProcessorTimeoutError())

        assert response.status_code == 504
        mock_logger.error.assert_called_once()


class TestOtherHandlers:

    @pytest.mark.asyncio
    async def test_http_exception_mapped(self, mock_request):
        with patch('resume_billing.core.error_handlers.get_request_id', return_value=None):
            response = await http_exception_handler(mock_request, HTTPException(status_code=404, detail="Missing"))

        assert json.loads(response.body) == {"error": "NotFound", "message": "Missing"}

    @pytest.mark.asyncio
    async def test_http_exception_dict_detail_passed_through(self, mock_request):
        detail = {"status": "error", "message": "Error processing event", "retry": True}
        with patch('resume_billing.core.error_handlers.get_request_id', return_value=None):
            response = await http_exception_handler(mock_request, HTTPException(status_code=500, detail=detail))

        assert response.status_code == 500
        assert json.loads(response.body) == detail

    @pytest.mark.asyncio
    async def test_sqlalchemy_error_hides_details(self, mock_request):
        exc = OperationalError("SELECT secret", {}, Exception("connection refused"))
        response = await sqlalchemy_exception_handler(mock_request, exc)

        assert response.status_code == 500
        body = json.loads(response.body)
        assert body["error"] == "DatabaseError"
        assert "secret" not in response.body.decode()

    @pytest.mark.asyncio
    async def test_generic_error(self, mock_request):
        response = await generic_exception_handler(mock_request, RuntimeError("boom"))
        assert response.status_code == 500
        assert json.loads(response.body)["error"] == "InternalServerError"
