"""Async wrappers for Stripe API calls.

The Stripe SDK is synchronous; each call runs in a worker thread and is
bounded by ``STRIPE_TIMEOUT_SECONDS`` so a hung request cannot hold a
request handler indefinitely. A timed-out call raises ``asyncio.TimeoutError``
and must be treated as a failure with no local mutation.
"""

import asyncio
from typing import Any, Dict, Optional

import stripe

from resume_billing.core.config import settings
from resume_billing.log.logging import logger

stripe.api_key = settings.STRIPE_SECRET_KEY
stripe.api_version = settings.STRIPE_API_VERSION
stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES


async def run_stripe_async(func, *args, **kwargs) -> Any:
    """
    Run a synchronous Stripe API call in a thread with a timeout.

    Args:
        func: The Stripe API function to call
        *args: Positional arguments to pass to the function
        **kwargs: Keyword arguments to pass to the function

    Returns:
        The result from the Stripe API call

    Raises:
        stripe.StripeError: If the Stripe API call fails
        asyncio.TimeoutError: If the call exceeds the configured timeout
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args, **kwargs),
            timeout=settings.STRIPE_TIMEOUT_SECONDS,
        )
    except stripe.StripeError as e:
        logger.error(
            "Stripe API error",
            event_type="stripe_api_error",
            error_type=type(e).__name__,
            error_code=getattr(e, 'code', None),
            error_message=str(e),
        )
        raise
    except asyncio.TimeoutError:
        logger.error(
            "Stripe API call timed out",
            event_type="stripe_api_timeout",
            operation=getattr(func, "__qualname__", str(func)),
            timeout_seconds=settings.STRIPE_TIMEOUT_SECONDS,
        )
        raise


def to_plain(obj: Any) -> Optional[Dict[str, Any]]:
    """Convert a Stripe object (or plain dict) into nested plain dicts."""
    if obj is None:
        return None
    to_dict = getattr(obj, "to_dict_recursive", None) or getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(obj, dict):
        return obj
    raise TypeError(f"Cannot convert {type(obj).__name__} to a dict")


class AsyncStripeCustomer:

    @staticmethod
    async def create(**params) -> stripe.Customer:
        return await run_stripe_async(stripe.Customer.create, **params)

    @staticmethod
    async def list(**params) -> stripe.ListObject:
        return await run_stripe_async(stripe.Customer.list, **params)


class AsyncStripeSubscription:

    @staticmethod
    async def retrieve(subscription_id: str, **params) -> stripe.Subscription:
        return await run_stripe_async(stripe.Subscription.retrieve, subscription_id, **params)

    @staticmethod
    async def modify(subscription_id: str, **params) -> stripe.Subscription:
        return await run_stripe_async(stripe.Subscription.modify, subscription_id, **params)

    @staticmethod
    async def list(**params) -> stripe.ListObject:
        return await run_stripe_async(stripe.Subscription.list, **params)


class AsyncStripePaymentIntent:

    @staticmethod
    async def list(**params) -> stripe.ListObject:
        return await run_stripe_async(stripe.PaymentIntent.list, **params)


class AsyncStripeCharge:

    @staticmethod
    async def list(**params) -> stripe.ListObject:
        return await run_stripe_async(stripe.Charge.list, **params)


class AsyncStripeInvoice:

    @staticmethod
    async def retrieve(invoice_id: str, **params) -> stripe.Invoice:
        return await run_stripe_async(stripe.Invoice.retrieve, invoice_id, **params)


class AsyncStripeCheckoutSession:

    @staticmethod
    async def create(**params) -> stripe.checkout.Session:
        return await run_stripe_async(stripe.checkout.Session.create, **params)

    @staticmethod
    async def retrieve(session_id: str, **params) -> stripe.checkout.Session:
        return await run_stripe_async(stripe.checkout.Session.retrieve, session_id, **params)


class AsyncStripeBillingPortalSession:

    @staticmethod
    async def create(**params) -> stripe.billing_portal.Session:
        return await run_stripe_async(stripe.billing_portal.Session.create, **params)


Customer = AsyncStripeCustomer
Subscription = AsyncStripeSubscription
PaymentIntent = AsyncStripePaymentIntent
Charge = AsyncStripeCharge
Invoice = AsyncStripeInvoice
CheckoutSession = AsyncStripeCheckoutSession
BillingPortalSession = AsyncStripeBillingPortalSession
