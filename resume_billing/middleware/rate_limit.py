"""Rate limiting using SlowAPI."""

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from fastapi import Request, FastAPI
from starlette.responses import JSONResponse

from resume_billing.core.config import settings
from resume_billing.log.logging import logger


def get_request_identifier(request: Request) -> str:
    """
    Key requests by client IP.

    Calls from other subsystems carrying the internal API key share one
    bypass bucket. The Stripe webhook route is exempted where it is declared.
    """
    api_key = request.headers.get("X-API-Key")
    if api_key and settings.INTERNAL_API_KEY and api_key == settings.INTERNAL_API_KEY:
        return "internal-service-bypass"
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_request_identifier,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(
        "Rate limit exceeded",
        event_type="rate_limit_exceeded",
        client_ip=get_remote_address(request),
        path=request.url.path,
        limit=str(exc.detail),
    )
    retry_after = getattr(exc, "retry_after", 60)
    return JSONResponse(
        status_code=429,
        content={
            "error": "RateLimitExceeded",
            "message": "Too many requests. Please slow down.",
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)}
    )


def setup_rate_limiting(app: FastAPI) -> None:
    if not settings.RATE_LIMIT_ENABLED:
        logger.info("Rate limiting is disabled", event_type="rate_limit_disabled")
        return

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    logger.info(
        "Rate limiting configured",
        event_type="rate_limit_configured",
        default_limit=settings.RATE_LIMIT_DEFAULT,
        storage=settings.RATE_LIMIT_STORAGE_URI,
    )
