"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.teamclock.api.v1 import health, identities, session, sync

API_PREFIX = "/api/v1"

router = APIRouter()

router.include_router(health.router)
router.include_router(sync.router, prefix=API_PREFIX)
router.include_router(identities.router, prefix=API_PREFIX)
router.include_router(session.router, prefix=API_PREFIX)
