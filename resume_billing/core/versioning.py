"""API versioning using URL path prefixes.

Every router is served both at its plain path (``/credits/...``) and under a
version prefix (``/v1/credits/...``).
"""

from enum import Enum
from typing import List, Optional

from fastapi import APIRouter, FastAPI

from resume_billing.log.logging import logger


class APIVersion(str, Enum):
    """Supported API versions."""
    V1 = "v1"

    @classmethod
    def latest(cls) -> "APIVersion":
        return cls.V1

    @classmethod
    def supported(cls) -> List["APIVersion"]:
        return list(cls)


def include_versioned_router(
    app: FastAPI,
    router: APIRouter,
    prefix: str = "",
    versions: Optional[List[APIVersion]] = None,
    **kwargs
) -> None:
    """
    Include a router under each version prefix.

    Args:
        app: The FastAPI application
        router: The router to include
        prefix: Extra prefix after the version (e.g., "webhooks")
        versions: List of versions to include (defaults to all supported)
        **kwargs: Additional arguments passed to include_router

    Example:
        include_versioned_router(app, stripe_webhooks_router, "webhooks")
        # Creates routes: /v1/webhooks/...
    """
    if versions is None:
        versions = APIVersion.supported()

    for version in versions:
        versioned_prefix = f"/{version.value}" + (f"/{prefix.strip('/')}" if prefix else "")
        app.include_router(router, prefix=versioned_prefix, **kwargs)
        logger.debug(
            "Registered versioned router",
            event_type="router_registered",
            version=version.value,
            prefix=versioned_prefix
        )
