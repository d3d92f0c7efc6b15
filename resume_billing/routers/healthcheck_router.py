import time

from fastapi import APIRouter, HTTPException

from resume_billing.core.database import check_db_health
from resume_billing.log.logging import logger

router = APIRouter(tags=["Health"])

# Track service start time for uptime calculation
_service_start_time = time.time()


@router.get(
    "/healthcheck",
    description="Liveness check",
    responses={200: {"description": "Service is alive"}}
)
async def health_check():
    return {"status": "ok", "uptime_seconds": round(time.time() - _service_start_time, 2)}


@router.get(
    "/healthcheck/db",
    description="Database health check",
    responses={
        200: {"description": "Database health check information"},
        500: {"description": "Database check failed critically"}
    }
)
async def db_health_check():
    """
    Run ``SELECT 1`` against the database and report the outcome.

    Returns:
        Dict[str, Any]: Database status and timings
    """
    start_time = time.time()
    db_health = await check_db_health()
    check_time_ms = round((time.time() - start_time) * 1000, 2)

    if db_health.get("status") != "healthy":
        logger.warning(
            "Database health check failed",
            event_type="db_healthcheck_failed",
            error_type=db_health.get("error_type", "Unknown"),
            check_time_ms=check_time_ms
        )
        raise HTTPException(status_code=500, detail=f"Database health check failed: {db_health.get('error_type')}")

    logger.info(
        "Database health check passed",
        event_type="db_healthcheck_success",
        check_time_ms=check_time_ms
    )
    return {**db_health, "check_time_ms": check_time_ms}
