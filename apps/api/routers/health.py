"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import redis.asyncio as redis
from sqlalchemy import text

from config import settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Reports database and Redis reachability plus provider configuration.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown",
        "freepik_api_key": "configured" if settings.FREEPIK_API_KEY else "missing",
        "bot_token": "configured" if settings.BOT_TOKEN else "missing",
        "subscription_gate": "enabled" if settings.REQUIRE_SUBSCRIPTION else "disabled",
    }

    try:
        from database import engine
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {e.__class__.__name__}"
        health_status["status"] = "degraded"

    try:
        r = redis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        health_status["redis"] = "up"
    except Exception as e:
        health_status["redis"] = f"down: {e.__class__.__name__}"
        health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Readiness probe: the bot token and provider key must be configured."""
    missing = []
    if not settings.BOT_TOKEN:
        missing.append("BOT_TOKEN")
    if not settings.FREEPIK_API_KEY:
        missing.append("FREEPIK_API_KEY")

    if missing:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Liveness probe."""
    return {"alive": True}
