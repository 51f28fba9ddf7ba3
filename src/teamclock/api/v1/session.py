"""Launch-session endpoints for the embedded dashboard.

Both read the parameters the CRM appended to the launch URL.

- GET /session/optimistic answers from the URL alone, without touching the
  identity store, so the dashboard can render immediately.
- GET /session adds the authoritative identity from the store when known.

Admin flags are derived from the authoritative identity only.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.teamclock.api.deps import get_session_resolver
from src.teamclock.identity.session import LaunchClaims, SessionIdentity, optimistic_identity

router = APIRouter(prefix="/session", tags=["session"])


class SessionResponse(BaseModel):
    """Two-phase session view. ``claimedRole`` never grants anything."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    optimistic: SessionIdentity
    authoritative: SessionIdentity | None = None
    claimed_role: str
    url_location_id: str | None = None
    is_admin: bool = False
    is_owner: bool = False
    show_first_run_setup: bool = False


def _claims_or_400(request: Request) -> LaunchClaims:
    claims = LaunchClaims.from_params(dict(request.query_params))
    if not claims.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="user_id is required",
        )
    return claims


@router.get("/optimistic", response_model=SessionResponse, response_model_by_alias=True)
async def optimistic_session(request: Request) -> SessionResponse:
    """Optimistic phase only: a plain user, no admin rights, no setup panel yet."""
    claims = _claims_or_400(request)
    return SessionResponse(
        optimistic=optimistic_identity(claims),
        claimed_role=claims.claimed_role,
        url_location_id=claims.url_location_id,
    )


@router.get("", response_model=SessionResponse, response_model_by_alias=True)
async def launch_session(
    request: Request,
    resolver: Any = Depends(get_session_resolver),
) -> SessionResponse:
    """Resolve the launching user from the query string, consulting the store."""
    claims = _claims_or_400(request)
    optimistic = resolver.optimistic(claims)
    authoritative = await resolver.refresh(claims)
    current = authoritative or optimistic
    return SessionResponse(
        optimistic=optimistic,
        authoritative=authoritative,
        claimed_role=claims.claimed_role,
        url_location_id=claims.url_location_id,
        is_admin=authoritative.is_admin if authoritative else False,
        is_owner=authoritative.is_owner if authoritative else False,
        show_first_run_setup=current.show_first_run_setup,
    )
