"""Liveness and readiness endpoints.

/health answers as long as the process is up. /health/ready reports 200
only when the deal store's database answers and every evaluation service
has been built onto app.state by the lifespan.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.dealreg.config import get_settings
from src.dealreg.core.database import get_engine

router = APIRouter(tags=["health"])

REQUIRED_SERVICES: tuple[str, ...] = (
    "deal_store",
    "validation_engine",
    "conflict_engine",
    "pricing_engine",
    "approval_engine",
    "evaluation_pipeline",
)


@router.get("/health")
async def health_check():
    settings = get_settings()
    return {
        "status": "ok",
        "service": "deal-evaluation",
        "environment": settings.ENVIRONMENT.value,
    }


async def _database_status() -> tuple[bool, str | None]:
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        return False, str(exc)
    return True, None


@router.get("/health/ready")
async def readiness_check(request: Request):
    """200 when the database and all evaluation services are available, else 503."""
    database_ok, database_error = await _database_status()
    missing = [
        name for name in REQUIRED_SERVICES if getattr(request.app.state, name, None) is None
    ]

    checks: dict = {"database": "ok" if database_ok else "error"}
    if database_error:
        checks["database_error"] = database_error
    checks["services"] = "ok" if not missing else {"missing": missing}

    ready = database_ok and not missing
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )
