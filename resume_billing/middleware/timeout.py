"""Request timeout middleware."""

import asyncio
from typing import Optional, Sequence

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response, JSONResponse

from resume_billing.log.logging import logger
from resume_billing.middleware.request_id import get_request_id

DEFAULT_EXCLUDED_PATHS = ("/healthcheck", "/docs", "/redoc", "/openapi.json")


class TimeoutMiddleware(BaseHTTPMiddleware):
    """
    Abort requests that run longer than ``timeout_seconds`` with a 504.

    Outbound processor calls carry their own, shorter bound (see
    ``stripe_async``); this is the outer limit for the whole request.
    """

    def __init__(self, app, timeout_seconds: float = 30.0, exclude_paths: Optional[Sequence[str]] = None):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds
        self.exclude_paths = tuple(exclude_paths or DEFAULT_EXCLUDED_PATHS)

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path.startswith(self.exclude_paths):
            return await call_next(request)

        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            request_id = get_request_id()
            logger.warning(
                f"Request timeout after {self.timeout_seconds}s",
                event_type="request_timeout",
                path=request.url.path,
                method=request.method,
                timeout_seconds=self.timeout_seconds,
            )
            return JSONResponse(
                status_code=504,
                content={
                    "error": "GatewayTimeout",
                    "message": f"Request processing exceeded {self.timeout_seconds} seconds",
                    "request_id": request_id
                }
            )


def setup_timeout_middleware(app, timeout_seconds: float = 30.0, exclude_paths: Optional[Sequence[str]] = None):
    app.add_middleware(TimeoutMiddleware, timeout_seconds=timeout_seconds, exclude_paths=exclude_paths)
