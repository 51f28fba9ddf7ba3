"""Role resolution policy for synchronized identities.

Rules:
- Records reached through the agency-scoped credential are always admins.
- Location-scoped records are admins when the CRM marks them as
  admin/agency/owner in ``role``, ``type``, or the nested ``roles`` object.
- Synchronization is elevation-only: an existing identity is only ever
  promoted. Demotion happens through the explicit role edit or ownership
  transfer, never through a sync pass.
"""

from __future__ import annotations

from typing import Any

from src.teamclock.identity.schemas import FetchScope, Role

ADMIN_MARKERS = frozenset({"admin", "agency", "owner"})


def _role_markers(raw: dict[str, Any]) -> list[str]:
    """Collect every role/type string the CRM may put on a user."""
    markers: list[Any] = [raw.get("role"), raw.get("type")]
    nested = raw.get("roles")
    if isinstance(nested, dict):
        markers.extend([nested.get("role"), nested.get("type")])
        # Legacy payloads flag admins as {"roles": {"admin": true}}
        if nested.get("admin") is True:
            markers.append("admin")
    return [str(m).strip().lower() for m in markers if isinstance(m, str) and m.strip()]


def resolve_role(raw: dict[str, Any], scope: FetchScope) -> Role:
    """Target role for a directory record fetched through ``scope``."""
    if scope == FetchScope.AGENCY:
        return Role.ADMIN
    if any(marker in ADMIN_MARKERS for marker in _role_markers(raw)):
        return Role.ADMIN
    return Role.USER


def apply_elevation(current: Role, resolved: Role) -> Role:
    """Role to store on an existing identity: promote, never demote."""
    if resolved == Role.ADMIN:
        return Role.ADMIN
    return current
