"""Identity and credential repositories -- async CRUD over the local store.

Provides IdentityRepository and CredentialRepository with the session_factory
callable pattern. Every method opens its own session and commits before
returning, so each write is independently durable: a cancelled sync run
leaves already applied upserts in place.

SQLAlchemy failures are re-raised as PersistenceError, the only store-level
error the reconciliation engine lets escape.
"""

from __future__ import annotations

import functools
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.teamclock.identity.cleanup import BOGUS_IDENTITY_IDS, PLACEHOLDER_SCOPE_VALUE
from src.teamclock.identity.exceptions import OwnershipError, PersistenceError
from src.teamclock.identity.models import CredentialModel, IdentityModel
from src.teamclock.identity.schemas import (
    CredentialRecord,
    CredentialUpdate,
    IdentityCreate,
    IdentityRead,
    IdentityUpdate,
    Role,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]


def _persistence_guard(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Translate SQLAlchemy errors into PersistenceError."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error("store.operation_failed", operation=func.__name__, error=str(exc))
            raise PersistenceError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_identity(model: IdentityModel) -> IdentityRead:
    """Convert IdentityModel to IdentityRead schema."""
    return IdentityRead(
        id=model.id,
        display_name=model.display_name,
        email=model.email or "",
        role=Role(model.role) if model.role in (Role.USER.value, Role.ADMIN.value) else Role.USER,
        is_owner=bool(model.is_owner),
        tenant_scope=model.tenant_scope,
        last_seen_at=model.last_seen_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_credentials(model: CredentialModel) -> CredentialRecord:
    """Convert CredentialModel to CredentialRecord schema."""
    return CredentialRecord(
        location_id=model.location_id,
        company_id=model.company_id,
        location_api_key=model.location_api_key,
        agency_api_key=model.agency_api_key,
        updated_by=model.updated_by,
        updated_at=model.updated_at or model.created_at,
    )


def _bogus_clause() -> Any:
    """SQL filter matching identities the bogus cleanup removes."""
    return or_(
        IdentityModel.id.contains("{{"),
        IdentityModel.display_name.contains("{{"),
        IdentityModel.email.contains("{{"),
        IdentityModel.id.in_(BOGUS_IDENTITY_IDS),
        IdentityModel.tenant_scope == PLACEHOLDER_SCOPE_VALUE,
    )


# ── Identity Repository ─────────────────────────────────────────────────────


class IdentityRepository:
    """Async CRUD for the canonical local user directory.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @_persistence_guard
    async def get(self, identity_id: str) -> IdentityRead | None:
        """Get an identity by its external id."""
        async for session in self._session_factory():
            model = await session.get(IdentityModel, identity_id)
            if model is None:
                return None
            return _model_to_identity(model)

    @_persistence_guard
    async def list_identities(self, tenant_scope: str | None = None) -> list[IdentityRead]:
        """List identities sorted by display name, optionally for one location."""
        async for session in self._session_factory():
            stmt = select(IdentityModel).order_by(IdentityModel.display_name)
            if tenant_scope:
                stmt = stmt.where(IdentityModel.tenant_scope == tenant_scope)
            result = await session.execute(stmt)
            return [_model_to_identity(m) for m in result.scalars().all()]

    @_persistence_guard
    async def create(self, data: IdentityCreate) -> IdentityRead:
        """Create a new identity. Owners are never created here."""
        async for session in self._session_factory():
            model = IdentityModel(
                id=data.id,
                display_name=data.display_name,
                email=data.email,
                role=data.role.value,
                is_owner=False,
                tenant_scope=data.tenant_scope,
                last_seen_at=datetime.now(timezone.utc),
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_identity(model)

    @_persistence_guard
    async def update(self, identity_id: str, data: IdentityUpdate) -> IdentityRead | None:
        """Apply non-None fields of ``data``. Returns None if the id is unknown."""
        async for session in self._session_factory():
            model = await session.get(IdentityModel, identity_id)
            if model is None:
                return None
            for field, value in data.model_dump(exclude_none=True).items():
                if isinstance(value, Role):
                    value = value.value
                setattr(model, field, value)
            await session.commit()
            await session.refresh(model)
            return _model_to_identity(model)

    @_persistence_guard
    async def touch(
        self,
        identity_id: str,
        display_name: str,
        email: str,
        tenant_scope: str | None,
    ) -> IdentityRead:
        """Record a local login: upsert name/email/scope and refresh last_seen_at.

        Never writes role or ownership. A first-time login creates a plain
        ``user``; elevation only comes from sync or an explicit role edit.
        """
        now = datetime.now(timezone.utc)
        async for session in self._session_factory():
            model = await session.get(IdentityModel, identity_id)
            if model is None:
                model = IdentityModel(
                    id=identity_id,
                    display_name=display_name,
                    email=email,
                    role=Role.USER.value,
                    is_owner=False,
                    tenant_scope=tenant_scope,
                    last_seen_at=now,
                )
                session.add(model)
            else:
                model.display_name = display_name or model.display_name
                model.email = email or model.email
                if tenant_scope and not model.tenant_scope:
                    model.tenant_scope = tenant_scope
                model.last_seen_at = now
            await session.commit()
            await session.refresh(model)
            return _model_to_identity(model)

    @_persistence_guard
    async def delete(self, identity_id: str) -> bool:
        """Delete one identity. Returns False if it did not exist."""
        async for session in self._session_factory():
            result = await session.execute(
                delete(IdentityModel).where(IdentityModel.id == identity_id)
            )
            await session.commit()
            return result.rowcount > 0

    @_persistence_guard
    async def find_bogus(self) -> list[IdentityRead]:
        """Identities the bogus cleanup would remove (dry run)."""
        async for session in self._session_factory():
            result = await session.execute(select(IdentityModel).where(_bogus_clause()))
            return [_model_to_identity(m) for m in result.scalars().all()]

    @_persistence_guard
    async def delete_bogus(self) -> int:
        """Remove placeholder, denylisted, and placeholder-scoped identities."""
        async for session in self._session_factory():
            result = await session.execute(delete(IdentityModel).where(_bogus_clause()))
            await session.commit()
            logger.info("identities.bogus_deleted", deleted=result.rowcount)
            return result.rowcount

    @_persistence_guard
    async def delete_placeholders(self, tenant_scope: str) -> int:
        """Remove identities of one location whose name/email hold template tokens."""
        async for session in self._session_factory():
            stmt = delete(IdentityModel).where(
                IdentityModel.tenant_scope == tenant_scope,
                or_(
                    IdentityModel.display_name.contains("{{"),
                    IdentityModel.display_name.contains("}}"),
                    IdentityModel.email.contains("{{"),
                    IdentityModel.email.contains("}}"),
                ),
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount

    @_persistence_guard
    async def transfer_ownership(
        self, current_owner_id: str, new_owner_id: str, tenant_scope: str
    ) -> IdentityRead | None:
        """Move the owner flag to another identity of one location.

        Both identities are checked before anything is written. Every owner
        flag of the scope other than the new owner's is cleared in the same
        commit that sets it, so the scope keeps exactly one owner.

        Returns:
            The new owner, or None (nothing written) when ``new_owner_id`` is
            not an identity of ``tenant_scope``.

        Raises:
            OwnershipError: ``current_owner_id`` is not the owner of ``tenant_scope``.
        """
        async for session in self._session_factory():
            new_owner = await session.get(IdentityModel, new_owner_id)
            if new_owner is None or new_owner.tenant_scope != tenant_scope:
                return None

            current = await session.get(IdentityModel, current_owner_id)
            if current is None or current.tenant_scope != tenant_scope or not current.is_owner:
                raise OwnershipError(f"{current_owner_id} is not the owner of {tenant_scope}")

            await session.execute(
                update(IdentityModel)
                .where(
                    IdentityModel.tenant_scope == tenant_scope,
                    IdentityModel.is_owner.is_(True),
                    IdentityModel.id != new_owner_id,
                )
                .values(is_owner=False, role=Role.ADMIN.value)
            )
            new_owner.is_owner = True
            new_owner.role = Role.ADMIN.value
            await session.commit()
            await session.refresh(new_owner)
            return _model_to_identity(new_owner)


# ── Credential Repository ───────────────────────────────────────────────────


class CredentialRepository:
    """Per-location / per-company CRM key storage. No business logic.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @staticmethod
    async def _find_model(
        session: AsyncSession, location_id: str | None, company_id: str | None
    ) -> CredentialModel | None:
        if location_id:
            result = await session.execute(
                select(CredentialModel)
                .where(CredentialModel.location_id == location_id)
                .order_by(CredentialModel.id.desc())
            )
            model = result.scalars().first()
            if model is not None:
                return model
        if company_id:
            # Company-only rows first, then any location row of that company
            result = await session.execute(
                select(CredentialModel)
                .where(CredentialModel.company_id == company_id)
                .order_by(CredentialModel.location_id.is_(None).desc(), CredentialModel.id.desc())
            )
            return result.scalars().first()
        return None

    @_persistence_guard
    async def find(
        self, location_id: str | None = None, company_id: str | None = None
    ) -> CredentialRecord | None:
        """Look up a credential record by location_id, else by company_id."""
        async for session in self._session_factory():
            model = await self._find_model(session, location_id, company_id)
            return _model_to_credentials(model) if model is not None else None

    @_persistence_guard
    async def upsert(
        self,
        location_id: str | None,
        company_id: str | None,
        data: CredentialUpdate,
    ) -> CredentialRecord:
        """Create or update the record keyed by location_id, else company_id.

        Fields of ``data`` that are None keep their stored value.
        """
        if not location_id and not company_id:
            raise ValueError("upsert requires location_id or company_id")

        async for session in self._session_factory():
            if location_id:
                result = await session.execute(
                    select(CredentialModel)
                    .where(CredentialModel.location_id == location_id)
                    .order_by(CredentialModel.id.desc())
                )
            else:
                result = await session.execute(
                    select(CredentialModel)
                    .where(
                        CredentialModel.company_id == company_id,
                        CredentialModel.location_id.is_(None),
                    )
                    .order_by(CredentialModel.id.desc())
                )
            model = result.scalars().first()
            if model is None:
                model = CredentialModel(location_id=location_id, company_id=company_id)
                session.add(model)

            if data.company_id:
                model.company_id = data.company_id
            elif company_id and not model.company_id:
                model.company_id = company_id
            if data.location_api_key is not None:
                model.location_api_key = data.location_api_key
            if data.agency_api_key is not None:
                model.agency_api_key = data.agency_api_key
            if data.updated_by is not None:
                model.updated_by = data.updated_by
            model.updated_at = datetime.now(timezone.utc)

            await session.commit()
            await session.refresh(model)
            logger.info(
                "credentials.upserted",
                location_id=location_id,
                company_id=model.company_id,
                has_location_key=bool(model.location_api_key),
                has_agency_key=bool(model.agency_api_key),
            )
            return _model_to_credentials(model)
