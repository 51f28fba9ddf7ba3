"""Launch-session identity with a hard split between claimed and authoritative roles.

The CRM embeds the dashboard in an iframe and appends the user's id, name,
email, location and a *claimed* role to the launch URL. Anyone can edit that
URL, so:

- ``claimed_role`` is kept in its own field, only decides whether the
  first-run setup panel is offered, and is never written to the store.
- ``role`` / ``is_owner`` start as a plain user (optimistic phase) and are
  replaced by the stored values once the identity store has been consulted
  (authoritative phase). Access control reads only these.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.teamclock.identity.placeholders import is_placeholder_location
from src.teamclock.identity.repository import IdentityRepository
from src.teamclock.identity.schemas import IdentityRead, Role

logger = structlog.get_logger(__name__)

CLAIMED_ADMIN_ROLES = frozenset({"admin", "agency"})


def _first(params: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = params.get(name)
        if value and value.strip():
            return value.strip()
    return None


@dataclass(frozen=True)
class LaunchClaims:
    """Identity attributes asserted by the embedding launch URL. Untrusted."""

    user_id: str | None
    display_name: str
    email: str
    location_id: str | None
    company_id: str | None
    claimed_role: str

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> LaunchClaims:
        return cls(
            user_id=_first(params, "user_id", "userId"),
            display_name=_first(params, "name", "userName") or "Unknown",
            email=_first(params, "email") or "",
            location_id=_first(params, "location_id", "locationId"),
            company_id=_first(params, "company_id", "companyId"),
            claimed_role=_first(params, "role", "user_type", "type") or "user",
        )

    @property
    def url_location_id(self) -> str | None:
        """Launch location id, or None when missing or an unresolved placeholder."""
        if not self.location_id or is_placeholder_location(self.location_id):
            return None
        return self.location_id

    @property
    def claims_admin(self) -> bool:
        return self.claimed_role.lower() in CLAIMED_ADMIN_ROLES


class SessionPhase(str, Enum):
    OPTIMISTIC = "optimistic"
    AUTHORITATIVE = "authoritative"


class SessionIdentity(BaseModel):
    """Identity of the launching user, optimistic until the store confirms it."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    phase: SessionPhase
    user_id: str
    display_name: str
    email: str = ""
    role: Role = Role.USER
    is_owner: bool = False
    location_id: str | None = None
    company_id: str | None = None
    claimed_role: str = "user"

    @property
    def is_admin(self) -> bool:
        """Authoritative admin check. Ignores ``claimed_role``."""
        return self.role == Role.ADMIN or self.is_owner

    @property
    def show_first_run_setup(self) -> bool:
        """Offer the setup panel: the URL claims admin but the store does not agree."""
        return self.claimed_role.lower() in CLAIMED_ADMIN_ROLES and not self.is_admin


def optimistic_identity(claims: LaunchClaims) -> SessionIdentity | None:
    """Identity to render immediately, before the store is consulted."""
    if not claims.user_id:
        return None
    return SessionIdentity(
        phase=SessionPhase.OPTIMISTIC,
        user_id=claims.user_id,
        display_name=claims.display_name,
        email=claims.email,
        role=Role.USER,
        is_owner=False,
        location_id=claims.location_id,
        company_id=claims.company_id,
        claimed_role=claims.claimed_role,
    )


def merge_authoritative(optimistic: SessionIdentity, stored: IdentityRead) -> SessionIdentity:
    """Overlay the stored identity on the optimistic one.

    Role and ownership come only from ``stored``; the claimed role is carried
    over untouched. The launch location is kept when the store has none.
    """
    return SessionIdentity(
        phase=SessionPhase.AUTHORITATIVE,
        user_id=stored.id,
        display_name=stored.display_name or optimistic.display_name,
        email=stored.email or optimistic.email,
        role=stored.role,
        is_owner=stored.is_owner,
        location_id=stored.tenant_scope or optimistic.location_id,
        company_id=optimistic.company_id,
        claimed_role=optimistic.claimed_role,
    )


class SessionResolver:
    """Two-phase resolution of the launching user.

    Args:
        identities: Identity store, read on refresh.
    """

    def __init__(self, identities: IdentityRepository) -> None:
        self._identities = identities

    def optimistic(self, claims: LaunchClaims) -> SessionIdentity | None:
        return optimistic_identity(claims)

    async def refresh(self, claims: LaunchClaims) -> SessionIdentity | None:
        """Return the authoritative identity, or None if the store has no record.

        Read-only: recording the login is a separate touch on the identity
        store, and the claimed role never reaches it either way.
        """
        optimistic = optimistic_identity(claims)
        if optimistic is None:
            return None
        stored = await self._identities.get(optimistic.user_id)
        if stored is None:
            return None
        logger.debug(
            "session.refreshed",
            user_id=stored.id,
            role=stored.role.value,
            claimed_role=claims.claimed_role,
        )
        return merge_authoritative(optimistic, stored)
