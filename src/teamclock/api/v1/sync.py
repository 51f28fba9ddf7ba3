"""REST API endpoints for identity synchronization.

POST /sync runs one reconciliation pass and always answers with the run log,
including on failure. GET /sync/status reports which keys are stored for a
scope without ever returning them.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.teamclock.api.deps import get_credential_resolver, get_sync_engine
from src.teamclock.identity.exceptions import PersistenceError, ValidationError
from src.teamclock.identity.messages import message
from src.teamclock.identity.schemas import CredentialStatus, SyncRequest, SyncStats

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class SyncStatsResponse(BaseModel):
    """Run counters, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total: int = 0
    added: int = 0
    updated: int = 0
    skipped: int = 0
    location_users: int = 0
    agency_users: int = 0
    errors: list[str] = Field(default_factory=list)


class SyncResponse(BaseModel):
    """Successful (possibly partial) run."""

    success: bool = True
    stats: SyncStatsResponse
    logs: list[str] = Field(default_factory=list)


def _stats_to_response(stats: SyncStats) -> SyncStatsResponse:
    return SyncStatsResponse(**stats.model_dump())


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("", response_model=SyncResponse, response_model_by_alias=True)
async def trigger_sync(
    body: SyncRequest,
    engine: Any = Depends(get_sync_engine),
) -> Any:
    """Run one synchronization pass for the given location/company.

    Returns 400 ``{error, logs}`` when the request cannot start a run and
    500 ``{error, details, logs}`` when the store fails mid-run.
    """
    try:
        run = await engine.run(body)
    except ValidationError as exc:
        return JSONResponse(status_code=400, content={"error": exc.message, "logs": exc.logs})
    except PersistenceError as exc:
        logger.error("sync.store_failed", error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"error": message("sync_failed"), "details": str(exc), "logs": exc.logs},
        )
    except Exception as exc:
        logger.exception("sync.unexpected_failure")
        return JSONResponse(
            status_code=500,
            content={"error": message("sync_failed"), "details": str(exc), "logs": []},
        )

    return SyncResponse(stats=_stats_to_response(run.stats), logs=run.logs)


@router.get("/status", response_model=CredentialStatus, response_model_by_alias=True)
async def sync_status(
    location_id: str | None = Query(default=None, alias="locationId"),
    company_id: str | None = Query(default=None, alias="companyId"),
    resolver: Any = Depends(get_credential_resolver),
) -> CredentialStatus:
    """Which keys are stored for a location/company. Never returns the keys."""
    return await resolver.status(location_id, company_id)
