"""Exception hierarchy for the billing service.

Every exception here is an ``HTTPException`` so that routers can let them
propagate untouched; ``billing_exception_handler`` renders them with the
common error envelope.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class BillingException(HTTPException):
    """Base class for client-visible billing errors."""

    error_type: str = "BillingError"

    def __init__(
        self,
        detail: Any,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        headers: Optional[Dict[str, str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.context = context or {}


class BillingValidationError(BillingException):
    """Malformed or semantically invalid request (unknown plan, unknown action)."""

    error_type = "ValidationError"

    def __init__(self, detail: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(detail=detail, status_code=status.HTTP_400_BAD_REQUEST, context=context)


class NotFoundError(BillingException):
    error_type = "NotFound"

    def __init__(self, detail: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(detail=detail, status_code=status.HTTP_404_NOT_FOUND, context=context)


class InsufficientCreditsException(BillingException):
    """Payment-required response carrying the amounts the client needs to offer a purchase."""

    error_type = "InsufficientCredits"

    def __init__(self, required: int, available: int, action: Optional[str] = None):
        super().__init__(
            detail="Insufficient credits",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            context={"required": required, "available": available, "action": action},
        )
        self.required = required
        self.available = available


class SubscriptionRequiredException(BillingException):
    error_type = "SubscriptionRequired"

    def __init__(self, detail: str = "Active subscription required"):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_403_FORBIDDEN,
            context={"upgrade_url": "/subscription/plans"},
        )


class FeatureNotIncludedException(BillingException):
    error_type = "FeatureNotIncluded"

    def __init__(self, feature: str):
        super().__init__(
            detail="Feature not included",
            status_code=status.HTTP_403_FORBIDDEN,
            context={"feature": feature, "upgrade_url": "/subscription/plans"},
        )


class SubscriptionConflictError(BillingException):
    """The requested subscription change conflicts with the current subscription state."""

    error_type = "Conflict"

    def __init__(self, detail: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(detail=detail, status_code=status.HTTP_409_CONFLICT, context=context)


class PaymentProcessorError(BillingException):
    """The payment processor rejected or failed a request. Details stay in the logs."""

    error_type = "PaymentProcessorError"

    def __init__(self, detail: str = "Payment processor request failed", context: Optional[Dict[str, Any]] = None):
        super().__init__(detail=detail, status_code=status.HTTP_502_BAD_GATEWAY, context=context)


class ProcessorTimeoutError(PaymentProcessorError):
    error_type = "PaymentProcessorTimeout"

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(detail="Payment processor did not respond in time", context=context)
        self.status_code = status.HTTP_504_GATEWAY_TIMEOUT
