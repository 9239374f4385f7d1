"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.dealreg.api.v1 import deals, health

router = APIRouter(prefix="/api/v1")

router.include_router(health.router)
router.include_router(deals.router)
