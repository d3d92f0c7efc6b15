import json

import stripe
from fastapi import APIRouter, Request, HTTPException, Header, Depends
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from resume_billing.core.billing_config import BillingConfig, get_billing_config
from resume_billing.core.config import settings
from resume_billing.core.database import get_db
from resume_billing.log.logging import logger
from resume_billing.middleware.rate_limit import limiter
from resume_billing.schemas.error_schemas import ErrorResponse
from resume_billing.schemas.stripe_events import StripeEvent, decode_event
from resume_billing.schemas.webhook_schemas import (
    WebhookResponse, WebhookErrorResponse, WebhookStatus, WEBHOOK_EVENTS_DESCRIPTION
)
from resume_billing.services.webhook_service import WebhookEventProcessor

router = APIRouter()


async def verify_stripe_signature(
    request: Request,
    stripe_signature: str = Header(None)  # Stripe-Signature
) -> StripeEvent:
    """
    Verify the Stripe webhook signature and decode the event.

    Raises HTTPException 400 if the signature is missing or invalid or the
    payload is malformed, 500 if the signing secret is not configured.
    """
    if not stripe_signature:
        logger.error("Stripe-Signature header missing from webhook request.", event_type="webhook_signature_missing")
        raise HTTPException(status_code=400, detail="Stripe-Signature header missing.")

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Stripe webhook secret is not configured on the server.", event_type="config_error")
        raise HTTPException(status_code=500, detail="Webhook secret not configured.")

    payload = await request.body()
    try:
        stripe.Webhook.construct_event(payload, stripe_signature, settings.STRIPE_WEBHOOK_SECRET)
        return decode_event(json.loads(payload))
    except ValidationError as e:
        logger.error(
            "Webhook payload does not match the event schema",
            event_type="webhook_invalid_payload",
            errors=e.errors(include_url=False),
        )
        raise HTTPException(status_code=400, detail="Malformed event payload.")
    except ValueError as e:
        # Invalid payload
        logger.error(f"Invalid webhook payload: {e}", event_type="webhook_invalid_payload")
        raise HTTPException(status_code=400, detail="Invalid payload.")
    except stripe.SignatureVerificationError as e:
        logger.error(f"Invalid Stripe webhook signature: {e}", event_type="webhook_signature_invalid")
        raise HTTPException(status_code=400, detail="Error verifying webhook signature.")


def get_webhook_processor(
    db: AsyncSession = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config)
) -> WebhookEventProcessor:
    return WebhookEventProcessor(db, config)


@router.post(
    "/stripe",
    summary="Handle Stripe Webhooks",
    description=WEBHOOK_EVENTS_DESCRIPTION,
    response_model=WebhookResponse,
    responses={
        200: {"model": WebhookResponse, "description": "Webhook processed successfully"},
        400: {"model": ErrorResponse, "description": "Invalid request or signature"},
        500: {"model": WebhookErrorResponse, "description": "Server error (Stripe will retry)"}
    },
    tags=["Webhooks"]
)
@limiter.exempt
async def stripe_webhook_endpoint(
    event: StripeEvent = Depends(verify_stripe_signature),
    processor: WebhookEventProcessor = Depends(get_webhook_processor)
):
    """
    Endpoint to receive and process Stripe webhooks.

    Signature is verified by the `verify_stripe_signature` dependency.
    All events are processed idempotently - duplicate events are safely skipped.
    """
    logger.info(
        f"Received Stripe event: ID={event.id}, Type={event.type}",
        event_type="webhook_received",
        event_id=event.id,
        stripe_event_type=event.type
    )

    try:
        webhook_status, message = await processor.process(event)
    except Exception as e:
        logger.error(
            f"Error processing event {event.id} ({event.type}): {e}",
            event_type="webhook_processing_error",
            event_id=event.id,
            stripe_event_type=event.type,
            exc_info=True
        )
        # Not marked as processed, so Stripe retries with exponential backoff
        raise HTTPException(
            status_code=500,
            detail=WebhookErrorResponse(
                message="Error processing event",
                event_id=event.id,
                event_type=event.type,
                retry=True
            ).model_dump(mode="json")
        )

    return WebhookResponse(
        status=webhook_status,
        message=message,
        event_id=event.id,
        event_type=event.type
    )
