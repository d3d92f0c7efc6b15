"""FastAPI application entry point for the billing service."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from resume_billing.core.config import settings, validate_internal_api_key, validate_stripe_config
from resume_billing.core.exceptions import BillingException
from resume_billing.core.error_handlers import (
    billing_exception_handler, generic_exception_handler, http_exception_handler,
    sqlalchemy_exception_handler, validation_exception_handler,
)
from resume_billing.core.versioning import APIVersion, include_versioned_router
from resume_billing.log.logging import logger, InterceptHandler
from resume_billing.middleware.rate_limit import setup_rate_limiting
from resume_billing.middleware.request_id import setup_request_id_middleware
from resume_billing.middleware.timeout import setup_timeout_middleware
from resume_billing.routers.credit_router import router as credit_router
from resume_billing.routers.healthcheck_router import router as healthcheck_router
from resume_billing.routers.payment_router import router as payment_router
from resume_billing.routers.webhooks.stripe_webhooks import router as stripe_webhooks_router

# Route stdlib logging (uvicorn, sqlalchemy) through loguru
logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application", status="starting", event_type="service_startup")

    for component, validate in (("stripe", validate_stripe_config), ("internal_service_auth", validate_internal_api_key)):
        valid, details = validate()
        if not valid:
            logger.warning(
                f"{component} configuration is invalid or incomplete",
                event_type="startup_warning",
                component=component,
                issues=details["issues"]
            )
        else:
            logger.info(
                f"{component} configuration validated successfully",
                event_type="startup_info",
                component=component,
                warnings=details.get("warnings", [])
            )

    logger.info("Application startup complete", status="running", event_type="service_ready")
    yield
    logger.info("Application shutdown complete", status="stopped", event_type="service_shutdown_complete")


tags_metadata = [
    {
        "name": "credits",
        "description": "Credit balance, history, checks and debits."
    },
    {
        "name": "payments",
        "description": "Checkout, subscription management, reconciliation and transaction history."
    },
    {
        "name": "Webhooks",
        "description": "Stripe webhook endpoint."
    },
    {
        "name": "Health",
        "description": "Service health check endpoints."
    },
]

app = FastAPI(
    title="Resume Billing API",
    description="""
## Billing Service

Credit ledger, subscription entitlements and Stripe reconciliation for the
resume builder.

### Authentication

User endpoints require a JWT Bearer token:
```
Authorization: Bearer <access_token>
```

Internal service endpoints require API key authentication:
```
X-API-Key: <internal_api_key>
```

### Request Tracking

All requests include a unique request ID, sent in the `X-Request-ID`
response header and included in error responses.
""",
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=tags_metadata,
)

# Request ID first so every later layer can log it
setup_request_id_middleware(app)

setup_timeout_middleware(app, timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS)
logger.info("Timeout middleware configured", event_type="middleware_setup", middleware="timeout",
            timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.cors_methods_list,
    allow_headers=settings.cors_headers_list,
    expose_headers=["X-Request-ID"],
)

setup_rate_limiting(app)

app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(BillingException, billing_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/")
async def root():
    """Root endpoint that returns service status"""
    return {"message": "resume-billing is up and running!"}


include_versioned_router(app, credit_router)
include_versioned_router(app, payment_router)
include_versioned_router(app, stripe_webhooks_router, "webhooks", tags=["Webhooks"])

app.include_router(credit_router)
app.include_router(payment_router)
app.include_router(stripe_webhooks_router, prefix="/webhooks", tags=["Webhooks"])

# Health checks are version-agnostic
app.include_router(healthcheck_router)

logger.info(
    "API routes registered",
    event_type="routes_registered",
    api_version=APIVersion.latest().value,
)
