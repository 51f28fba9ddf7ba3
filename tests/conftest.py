"""Shared test doubles and fixtures for the identity service.

Provides:
- InMemoryIdentityRepository / InMemoryCredentialRepository: same interface
  as the SQLAlchemy repositories, no database
- FakeDirectory: programmable stand-in for DirectoryClient.list_users
- Fixtures wiring them into a ReconciliationEngine
- session_factory: the real repositories' session factory over a throwaway
  SQLite database, for tests of the SQL itself
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool

from src.teamclock.core.database import Base
from src.teamclock.crm.client import ApiGeneration, DirectoryFetch
from src.teamclock.identity.cleanup import BOGUS_IDENTITY_IDS, PLACEHOLDER_SCOPE_VALUE
from src.teamclock.identity.credentials import CredentialResolver
from src.teamclock.identity.exceptions import OwnershipError
from src.teamclock.identity.repository import CredentialRepository, IdentityRepository
from src.teamclock.identity.schemas import (
    CredentialRecord,
    CredentialUpdate,
    FetchScope,
    IdentityCreate,
    IdentityRead,
    IdentityUpdate,
    Role,
)
from src.teamclock.identity.sync import ReconciliationEngine


def _is_bogus(identity: IdentityRead) -> bool:
    if any("{{" in (value or "") for value in (identity.id, identity.display_name, identity.email)):
        return True
    return identity.id in BOGUS_IDENTITY_IDS or identity.tenant_scope == PLACEHOLDER_SCOPE_VALUE


def _has_template_tokens(identity: IdentityRead) -> bool:
    return any(
        token in (value or "")
        for value in (identity.display_name, identity.email)
        for token in ("{{", "}}")
    )


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryIdentityRepository:
    """In-memory IdentityRepository for testing without database."""

    def __init__(self) -> None:
        self._identities: dict[str, IdentityRead] = {}

    def seed(self, **fields: Any) -> IdentityRead:
        now = datetime.now(timezone.utc)
        fields.setdefault("created_at", now)
        fields.setdefault("last_seen_at", now)
        identity = IdentityRead(**fields)
        self._identities[identity.id] = identity
        return identity

    async def get(self, identity_id: str) -> IdentityRead | None:
        return self._identities.get(identity_id)

    async def list_identities(self, tenant_scope: str | None = None) -> list[IdentityRead]:
        items = [
            i for i in self._identities.values() if not tenant_scope or i.tenant_scope == tenant_scope
        ]
        return sorted(items, key=lambda i: i.display_name)

    async def create(self, data: IdentityCreate) -> IdentityRead:
        now = datetime.now(timezone.utc)
        identity = IdentityRead(
            id=data.id,
            display_name=data.display_name,
            email=data.email,
            role=data.role,
            is_owner=False,
            tenant_scope=data.tenant_scope,
            last_seen_at=now,
            created_at=now,
        )
        self._identities[identity.id] = identity
        return identity

    async def update(self, identity_id: str, data: IdentityUpdate) -> IdentityRead | None:
        existing = self._identities.get(identity_id)
        if existing is None:
            return None
        updated = existing.model_copy(
            update={
                **data.model_dump(exclude_none=True),
                "updated_at": datetime.now(timezone.utc),
            }
        )
        self._identities[identity_id] = updated
        return updated

    async def touch(
        self,
        identity_id: str,
        display_name: str,
        email: str,
        tenant_scope: str | None,
    ) -> IdentityRead:
        existing = self._identities.get(identity_id)
        if existing is None:
            return await self.create(
                IdentityCreate(
                    id=identity_id,
                    display_name=display_name,
                    email=email,
                    tenant_scope=tenant_scope,
                )
            )
        update: dict[str, Any] = {
            "display_name": display_name or existing.display_name,
            "email": email or existing.email,
            "last_seen_at": datetime.now(timezone.utc),
        }
        if tenant_scope and not existing.tenant_scope:
            update["tenant_scope"] = tenant_scope
        touched = existing.model_copy(update=update)
        self._identities[identity_id] = touched
        return touched

    async def delete(self, identity_id: str) -> bool:
        return self._identities.pop(identity_id, None) is not None

    async def find_bogus(self) -> list[IdentityRead]:
        return [i for i in self._identities.values() if _is_bogus(i)]

    async def delete_bogus(self) -> int:
        doomed = [i.id for i in self._identities.values() if _is_bogus(i)]
        for identity_id in doomed:
            del self._identities[identity_id]
        return len(doomed)

    async def delete_placeholders(self, tenant_scope: str) -> int:
        doomed = [
            i.id
            for i in self._identities.values()
            if i.tenant_scope == tenant_scope and _has_template_tokens(i)
        ]
        for identity_id in doomed:
            del self._identities[identity_id]
        return len(doomed)

    async def transfer_ownership(
        self, current_owner_id: str, new_owner_id: str, tenant_scope: str
    ) -> IdentityRead | None:
        new_owner = self._identities.get(new_owner_id)
        if new_owner is None or new_owner.tenant_scope != tenant_scope:
            return None
        current = self._identities.get(current_owner_id)
        if current is None or current.tenant_scope != tenant_scope or not current.is_owner:
            raise OwnershipError(f"{current_owner_id} is not the owner of {tenant_scope}")
        for identity in list(self._identities.values()):
            if identity.tenant_scope == tenant_scope and identity.is_owner and identity.id != new_owner_id:
                self._identities[identity.id] = identity.model_copy(
                    update={"is_owner": False, "role": Role.ADMIN}
                )
        promoted = new_owner.model_copy(update={"is_owner": True, "role": Role.ADMIN})
        self._identities[new_owner_id] = promoted
        return promoted


class InMemoryCredentialRepository:
    """In-memory CredentialRepository for testing without database."""

    def __init__(self) -> None:
        self.records: list[CredentialRecord] = []

    async def find(
        self, location_id: str | None = None, company_id: str | None = None
    ) -> CredentialRecord | None:
        if location_id:
            for record in reversed(self.records):
                if record.location_id == location_id:
                    return record
        if company_id:
            matches = [r for r in reversed(self.records) if r.company_id == company_id]
            matches.sort(key=lambda r: r.location_id is not None)
            return matches[0] if matches else None
        return None

    async def upsert(
        self,
        location_id: str | None,
        company_id: str | None,
        data: CredentialUpdate,
    ) -> CredentialRecord:
        if not location_id and not company_id:
            raise ValueError("upsert requires location_id or company_id")
        index = None
        for i, record in enumerate(self.records):
            if location_id and record.location_id == location_id:
                index = i
            elif not location_id and record.company_id == company_id and record.location_id is None:
                index = i
        record = (
            self.records[index]
            if index is not None
            else CredentialRecord(location_id=location_id, company_id=company_id)
        )
        update: dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if data.company_id:
            update["company_id"] = data.company_id
        elif company_id and not record.company_id:
            update["company_id"] = company_id
        if data.location_api_key is not None:
            update["location_api_key"] = data.location_api_key
        if data.agency_api_key is not None:
            update["agency_api_key"] = data.agency_api_key
        if data.updated_by is not None:
            update["updated_by"] = data.updated_by
        record = record.model_copy(update=update)
        if index is None:
            self.records.append(record)
        else:
            self.records[index] = record
        return record


class FakeDirectory:
    """Stand-in for DirectoryClient.

    ``responses`` maps a scope to a list of raw users, or to an exception
    instance raised for that scope.
    """

    def __init__(self, responses: dict[FetchScope, Any] | None = None) -> None:
        self.responses: dict[FetchScope, Any] = responses or {}
        self.calls: list[dict[str, Any]] = []

    async def list_users(
        self,
        scope: FetchScope,
        api_key: str,
        location_id: str | None = None,
        company_id: str | None = None,
    ) -> DirectoryFetch:
        self.calls.append(
            {
                "scope": scope,
                "api_key": api_key,
                "location_id": location_id,
                "company_id": company_id,
            }
        )
        result = self.responses.get(scope, [])
        if isinstance(result, Exception):
            raise result
        return DirectoryFetch(
            scope=scope,
            generation=ApiGeneration.CURRENT,
            users=list(result),
            shape="bare",
        )


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def identity_repo() -> InMemoryIdentityRepository:
    return InMemoryIdentityRepository()


@pytest.fixture
def credential_repo() -> InMemoryCredentialRepository:
    return InMemoryCredentialRepository()


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def resolver(credential_repo: InMemoryCredentialRepository) -> CredentialResolver:
    return CredentialResolver(credential_repo)


@pytest.fixture
def engine(
    identity_repo: InMemoryIdentityRepository,
    resolver: CredentialResolver,
    directory: FakeDirectory,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        identities=identity_repo,
        resolver=resolver,
        directory=directory,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[Any, None]:
    """Session factory over a fresh SQLite database holding the identity tables."""
    db_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'identity.db'}", poolclass=NullPool
    )
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(db_engine, expire_on_commit=False) as session:
            yield session

    yield factory
    await db_engine.dispose()


@pytest.fixture
def sql_identity_repo(session_factory) -> IdentityRepository:
    return IdentityRepository(session_factory)


@pytest.fixture
def sql_credential_repo(session_factory) -> CredentialRepository:
    return CredentialRepository(session_factory)
