"""REST API endpoints for the local identity directory.

Login touch, listing, explicit role edits, deletion, ownership transfer and
the placeholder cleanups. Role edits, deletion, transfer and the location
cleanup require a stored admin (see api.deps.require_admin); bogus cleanup
and the debug view are operator-only.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.teamclock.api.deps import get_identity_repository, require_admin, require_operator
from src.teamclock.crm.payloads import UNKNOWN_NAME
from src.teamclock.identity.exceptions import OwnershipError
from src.teamclock.identity.placeholders import is_placeholder_location
from src.teamclock.identity.schemas import IdentityRead, IdentityUpdate, Role

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/identities", tags=["identities"])

NO_LOCATION = "NO_LOCATION"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Response Schemas ─────────────────────────────────────────────────────────


class IdentityResponse(_CamelModel):
    """Identity as returned to the dashboard."""

    id: str
    display_name: str
    email: str = ""
    role: str = Role.USER.value
    is_owner: bool = False
    is_admin: bool = False
    tenant_scope: str | None = None
    last_seen_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class TouchResponse(_CamelModel):
    success: bool = True
    user: IdentityResponse


class DeletedCountResponse(_CamelModel):
    success: bool = True
    deleted_count: int = 0


class BogusPreviewResponse(_CamelModel):
    count: int = 0
    identities: list[IdentityResponse] = Field(default_factory=list)


class DebugResponse(_CamelModel):
    """Identities grouped by tenant scope."""

    total: int = 0
    counts: dict[str, int] = Field(default_factory=dict)
    locations: dict[str, list[IdentityResponse]] = Field(default_factory=dict)


# ── Request Schemas ──────────────────────────────────────────────────────────


class TouchRequest(_CamelModel):
    """Local login. A ``role`` field, if sent, is ignored."""

    user_id: str | None = None
    name: str | None = None
    email: str | None = None
    location_id: str | None = None


class RoleRequest(_CamelModel):
    role: str | None = None


class OwnershipTransferRequest(_CamelModel):
    current_owner_id: str | None = None
    new_owner_id: str | None = None
    tenant_scope: str | None = None


class CleanupRequest(_CamelModel):
    location_id: str | None = None


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _identity_to_response(identity: IdentityRead) -> IdentityResponse:
    """Convert IdentityRead to IdentityResponse."""
    return IdentityResponse(
        id=identity.id,
        display_name=identity.display_name,
        email=identity.email,
        role=identity.role.value,
        is_owner=identity.is_owner,
        is_admin=identity.is_admin,
        tenant_scope=identity.tenant_scope,
        last_seen_at=identity.last_seen_at.isoformat() if identity.last_seen_at else None,
        created_at=identity.created_at.isoformat() if identity.created_at else None,
        updated_at=identity.updated_at.isoformat() if identity.updated_at else None,
    )


# ── Directory Endpoints ──────────────────────────────────────────────────────


@router.get("", response_model=list[IdentityResponse], response_model_by_alias=True)
async def list_identities(
    location_id: str | None = Query(default=None, alias="locationId"),
    repo: Any = Depends(get_identity_repository),
) -> list[IdentityResponse]:
    """List identities sorted by display name, optionally for one location."""
    identities = await repo.list_identities(tenant_scope=location_id)
    return [_identity_to_response(i) for i in identities]


@router.post("", response_model=TouchResponse, response_model_by_alias=True)
async def touch_identity(
    body: TouchRequest,
    repo: Any = Depends(get_identity_repository),
) -> TouchResponse:
    """Record a local login. New identities start as ``user``."""
    if not body.user_id or not body.user_id.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userId is required")

    location_id = body.location_id
    if location_id and is_placeholder_location(location_id):
        location_id = None

    identity = await repo.touch(
        body.user_id.strip(),
        display_name=(body.name or "").strip() or UNKNOWN_NAME,
        email=(body.email or "").strip(),
        tenant_scope=location_id,
    )
    return TouchResponse(user=_identity_to_response(identity))


# ── Operator Endpoints ───────────────────────────────────────────────────────


@router.get(
    "/bogus",
    response_model=BogusPreviewResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_operator)],
)
async def preview_bogus(repo: Any = Depends(get_identity_repository)) -> BogusPreviewResponse:
    """Dry run of the bogus cleanup."""
    identities = await repo.find_bogus()
    return BogusPreviewResponse(
        count=len(identities),
        identities=[_identity_to_response(i) for i in identities],
    )


@router.delete(
    "/bogus",
    response_model=DeletedCountResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_operator)],
)
async def delete_bogus(repo: Any = Depends(get_identity_repository)) -> DeletedCountResponse:
    """Delete placeholder, denylisted and placeholder-scoped identities."""
    deleted = await repo.delete_bogus()
    return DeletedCountResponse(deleted_count=deleted)


@router.get(
    "/debug",
    response_model=DebugResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_operator)],
)
async def debug_directory(repo: Any = Depends(get_identity_repository)) -> DebugResponse:
    """All identities grouped by tenant scope."""
    identities = await repo.list_identities()
    grouped: dict[str, list[IdentityResponse]] = defaultdict(list)
    for identity in identities:
        grouped[identity.tenant_scope or NO_LOCATION].append(_identity_to_response(identity))
    return DebugResponse(
        total=len(identities),
        counts={scope: len(items) for scope, items in grouped.items()},
        locations=dict(grouped),
    )


# ── Location Maintenance ─────────────────────────────────────────────────────


def _ensure_in_scope(caller: IdentityRead | None, tenant_scope: str | None) -> None:
    """Admins bound to a location may only manage that location."""
    if caller is not None and caller.tenant_scope and tenant_scope != caller.tenant_scope:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Identity belongs to another location",
        )


@router.post("/cleanup", response_model=DeletedCountResponse, response_model_by_alias=True)
async def cleanup_location(
    body: CleanupRequest,
    repo: Any = Depends(get_identity_repository),
    caller: IdentityRead | None = Depends(require_admin),
) -> DeletedCountResponse:
    """Delete identities of one location whose name or email holds template tokens."""
    if not body.location_id or not body.location_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="locationId is required"
        )
    location_id = body.location_id.strip()
    _ensure_in_scope(caller, location_id)
    deleted = await repo.delete_placeholders(location_id)
    logger.info("identities.cleanup", location_id=location_id, deleted=deleted)
    return DeletedCountResponse(deleted_count=deleted)


@router.post(
    "/ownership-transfer", response_model=IdentityResponse, response_model_by_alias=True
)
async def transfer_ownership(
    body: OwnershipTransferRequest,
    repo: Any = Depends(get_identity_repository),
    caller: IdentityRead | None = Depends(require_admin),
) -> IdentityResponse:
    """Move the owner flag from the current owner to another identity of the location.

    Only the current owner (or the operator) may hand ownership on.
    """
    if not body.current_owner_id or not body.new_owner_id or not body.tenant_scope:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="currentOwnerId, newOwnerId and tenantScope are required",
        )
    if caller is not None and caller.id != body.current_owner_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the owner can transfer ownership",
        )

    try:
        new_owner = await repo.transfer_ownership(
            body.current_owner_id, body.new_owner_id, body.tenant_scope
        )
    except OwnershipError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if new_owner is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="New owner not found in this location",
        )
    logger.info(
        "identities.ownership_transferred",
        tenant_scope=body.tenant_scope,
        previous_owner=body.current_owner_id,
        new_owner=body.new_owner_id,
    )
    return _identity_to_response(new_owner)


# ── Single Identity ──────────────────────────────────────────────────────────


@router.put("/{identity_id}/role", response_model=IdentityResponse, response_model_by_alias=True)
async def update_role(
    identity_id: str,
    body: RoleRequest,
    repo: Any = Depends(get_identity_repository),
    caller: IdentityRead | None = Depends(require_admin),
) -> IdentityResponse:
    """Explicit role edit by an admin. The owner cannot be demoted."""
    try:
        role = Role(body.role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="role must be 'user' or 'admin'",
        )

    existing = await repo.get(identity_id)
    if existing is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Identity not found")
    _ensure_in_scope(caller, existing.tenant_scope)
    if existing.is_owner and role != Role.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Transfer ownership before demoting the owner",
        )

    updated = await repo.update(identity_id, IdentityUpdate(role=role))
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Identity not found")
    logger.info(
        "identities.role_changed",
        identity_id=identity_id,
        role=role.value,
        changed_by=caller.id if caller else "operator",
    )
    return _identity_to_response(updated)


@router.delete("/{identity_id}", status_code=204)
async def delete_identity(
    identity_id: str,
    repo: Any = Depends(get_identity_repository),
    caller: IdentityRead | None = Depends(require_admin),
) -> None:
    """Delete one identity. The owner cannot be deleted."""
    existing = await repo.get(identity_id)
    if existing is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Identity not found")
    _ensure_in_scope(caller, existing.tenant_scope)
    if existing.is_owner:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Transfer ownership before deleting the owner",
        )
    if not await repo.delete(identity_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Identity not found")
