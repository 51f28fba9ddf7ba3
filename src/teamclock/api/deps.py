"""FastAPI dependency injection for services held on app.state and caller auth.

Services are created once in the application lifespan and attached to
``app.state``. Each getter returns 503 when its service was not initialized
(e.g. the database was unreachable at startup).

Callers are resolved from the identity store (get_current_identity); admin
rights come from the stored role only. The operator key bypasses both.
"""

from __future__ import annotations

import secrets
from typing import Any

from fastapi import Depends, Header, HTTPException, Request, status

from src.teamclock.config import get_settings
from src.teamclock.identity.schemas import IdentityRead


def _from_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_identity_repository(request: Request) -> Any:
    """Retrieve IdentityRepository from app.state, 503 if not available."""
    return _from_state(request, "identity_repository", "Identity store")


def get_credential_resolver(request: Request) -> Any:
    """Retrieve CredentialResolver from app.state, 503 if not available."""
    return _from_state(request, "credential_resolver", "Credential store")


def get_sync_engine(request: Request) -> Any:
    """Retrieve ReconciliationEngine from app.state, 503 if not available."""
    return _from_state(request, "sync_engine", "Identity sync")


def get_session_resolver(request: Request) -> Any:
    """Retrieve SessionResolver from app.state, 503 if not available."""
    return _from_state(request, "session_resolver", "Session resolver")


def _operator_key_matches(x_operator_key: str | None) -> bool:
    expected = get_settings().OPERATOR_API_KEY
    return bool(
        expected
        and x_operator_key
        and secrets.compare_digest(x_operator_key.encode(), expected.encode())
    )


async def require_operator(x_operator_key: str | None = Header(default=None)) -> None:
    """Guard for operator-only endpoints.

    Raises:
        HTTPException(403): OPERATOR_API_KEY is unset or the header does not match.
    """
    if not _operator_key_matches(x_operator_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator key required",
        )


async def get_current_identity(
    x_user_id: str | None = Header(default=None),
    x_operator_key: str | None = Header(default=None),
    repo: Any = Depends(get_identity_repository),
) -> IdentityRead | None:
    """Resolve the caller from the identity store.

    The dashboard sends the launching user's id in ``X-User-Id``; role and
    ownership are read from the store, never from the request. A valid
    operator key authenticates as the operator, returned as None.

    Raises:
        HTTPException(401): No user id, or the id is not in the store.
    """
    if _operator_key_matches(x_operator_key):
        return None
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    caller = await repo.get(x_user_id.strip())
    if caller is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return caller


async def require_admin(
    caller: IdentityRead | None = Depends(get_current_identity),
) -> IdentityRead | None:
    """Caller must be a stored admin or owner (or the operator).

    Raises:
        HTTPException(403): The stored identity is a plain user.
    """
    if caller is not None and not caller.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return caller
