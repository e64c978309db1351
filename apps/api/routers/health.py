"""
Liveness, readiness and dependency health endpoints.
"""

from typing import Dict, List

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import engine

router = APIRouter()

REQUIRED_CREDENTIALS = ("OPENAI_API_KEY", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET")


def _is_configured(value: str) -> bool:
    return bool(value) and not value.startswith("your_")


def missing_credentials() -> List[str]:
    return [name for name in REQUIRED_CREDENTIALS if not _is_configured(getattr(settings, name, ""))]


async def _database_status() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        return f"down: {exc}"
    return "up"


async def _redis_status() -> str:
    client = redis.from_url(settings.REDIS_URL)
    try:
        await client.ping()
    except Exception as exc:
        return f"down: {exc}"
    finally:
        await client.aclose()
    return "up"


@router.get("/health")
async def health_check():
    """
    Dependency health: database and Redis reachability plus which
    provider/processor credentials are present.
    """
    checks: Dict[str, str] = {
        "database": await _database_status(),
        "redis": await _redis_status(),
    }
    missing = missing_credentials()
    degraded = any(value != "up" for value in checks.values())
    return {
        "status": "degraded" if degraded else "healthy",
        "api": "up",
        **checks,
        "generation_provider": "missing" if "OPENAI_API_KEY" in missing else "configured",
        "payment_processor": "missing" if "STRIPE_SECRET_KEY" in missing else "configured",
    }


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness check."""
    missing = missing_credentials()
    if missing:
        return JSONResponse(status_code=503, content={"ready": False, "missing": missing})
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness check."""
    return {"alive": True}
