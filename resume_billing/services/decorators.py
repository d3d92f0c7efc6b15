"""Error-handling decorators for service methods."""

import asyncio
import functools
from typing import Callable, TypeVar

import stripe
from sqlalchemy.exc import SQLAlchemyError

from resume_billing.core.exceptions import PaymentProcessorError, ProcessorTimeoutError
from resume_billing.log.logging import logger

T = TypeVar('T')


def db_error_handler(func: Callable[..., T]) -> Callable[..., T]:
    """
    Roll back the service's session when a database error escapes ``func``.

    The error is re-raised unchanged so that the caller (a router or the
    webhook endpoint) decides how it is reported. The decorated method must
    belong to an object exposing the session as ``self.db``.
    """
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs) -> T:
        try:
            return await func(self, *args, **kwargs)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Database error in {func.__name__}: {e}",
                event_type="db_operation_error",
                operation=func.__name__,
                error_type=type(e).__name__,
            )
            raise
    return wrapper


def processor_error_handler(func: Callable[..., T]) -> Callable[..., T]:
    """
    Translate Stripe failures into client-facing processor errors.

    Reconciliation flows call Stripe before writing anything locally, so a
    failure here leaves local state untouched.
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> T:
        try:
            return await func(*args, **kwargs)
        except asyncio.TimeoutError:
            logger.error(
                f"Stripe call timed out in {func.__name__}",
                event_type="stripe_timeout",
                operation=func.__name__,
            )
            raise ProcessorTimeoutError(context={"operation": func.__name__})
        except stripe.StripeError as e:
            logger.error(
                f"Stripe error in {func.__name__}: {e}",
                event_type="stripe_operation_error",
                operation=func.__name__,
                error_type=type(e).__name__,
                error_code=getattr(e, "code", None),
            )
            raise PaymentProcessorError(context={"operation": func.__name__})
    return wrapper
