"""Tests for the SQLAlchemy identity and credential repositories.

Runs the real repositories on a throwaway SQLite database (session_factory
fixture): ownership transfer, login touch, credential lookup order, and
translation of store failures into PersistenceError.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool

from src.teamclock.identity.exceptions import OwnershipError, PersistenceError
from src.teamclock.identity.repository import IdentityRepository
from src.teamclock.identity.schemas import (
    CredentialUpdate,
    IdentityCreate,
    IdentityUpdate,
    Role,
)


async def _add(repo, identity_id: str, role: Role = Role.USER, owner: bool = False, scope: str = "loc-1"):
    await repo.create(
        IdentityCreate(id=identity_id, display_name=identity_id.title(), role=role, tenant_scope=scope)
    )
    if owner:
        await repo.update(identity_id, IdentityUpdate(role=Role.ADMIN, is_owner=True))


async def _owners(repo, scope: str = "loc-1") -> list[str]:
    return sorted(i.id for i in await repo.list_identities(tenant_scope=scope) if i.is_owner)


# ── Ownership Transfer ─────────────────────────────────────────────────────


class TestOwnershipTransfer:
    async def test_moves_the_flag(self, sql_identity_repo):
        await _add(sql_identity_repo, "owner", owner=True)
        await _add(sql_identity_repo, "u2")

        new_owner = await sql_identity_repo.transfer_ownership("owner", "u2", "loc-1")

        assert new_owner.id == "u2"
        assert new_owner.is_owner is True
        assert new_owner.role == Role.ADMIN
        previous = await sql_identity_repo.get("owner")
        assert previous.is_owner is False
        assert previous.role == Role.ADMIN
        assert await _owners(sql_identity_repo) == ["u2"]

    async def test_non_owner_cannot_hand_out_ownership(self, sql_identity_repo):
        await _add(sql_identity_repo, "owner", owner=True)
        await _add(sql_identity_repo, "u2")
        await _add(sql_identity_repo, "u3")

        with pytest.raises(OwnershipError):
            await sql_identity_repo.transfer_ownership("u3", "u2", "loc-1")

        assert await _owners(sql_identity_repo) == ["owner"]
        assert (await sql_identity_repo.get("u2")).role == Role.USER

    async def test_unknown_new_owner_leaves_owner_in_place(self, sql_identity_repo):
        await _add(sql_identity_repo, "owner", owner=True)

        result = await sql_identity_repo.transfer_ownership("owner", "ghost", "loc-1")

        assert result is None
        assert await _owners(sql_identity_repo) == ["owner"]

    async def test_new_owner_from_another_location_is_not_found(self, sql_identity_repo):
        await _add(sql_identity_repo, "owner", owner=True)
        await _add(sql_identity_repo, "u2", scope="loc-2")

        assert await sql_identity_repo.transfer_ownership("owner", "u2", "loc-1") is None
        assert await _owners(sql_identity_repo) == ["owner"]
        assert await _owners(sql_identity_repo, "loc-2") == []

    async def test_stray_owner_flags_are_cleared(self, sql_identity_repo):
        await _add(sql_identity_repo, "owner", owner=True)
        await _add(sql_identity_repo, "stray", owner=True)
        await _add(sql_identity_repo, "u2")

        await sql_identity_repo.transfer_ownership("owner", "u2", "loc-1")

        assert await _owners(sql_identity_repo) == ["u2"]

    async def test_other_locations_keep_their_owner(self, sql_identity_repo):
        await _add(sql_identity_repo, "owner", owner=True)
        await _add(sql_identity_repo, "u2")
        await _add(sql_identity_repo, "other-owner", owner=True, scope="loc-2")

        await sql_identity_repo.transfer_ownership("owner", "u2", "loc-1")

        assert await _owners(sql_identity_repo, "loc-2") == ["other-owner"]


# ── Identity Writes ────────────────────────────────────────────────────────


class TestIdentityWrites:
    async def test_create_never_sets_owner(self, sql_identity_repo):
        created = await sql_identity_repo.create(
            IdentityCreate(id="u1", display_name="Ana", role=Role.ADMIN, tenant_scope="loc-1")
        )

        assert created.is_owner is False
        assert created.role == Role.ADMIN
        assert created.last_seen_at is not None

    async def test_touch_keeps_role_and_scope(self, sql_identity_repo):
        await _add(sql_identity_repo, "u1", role=Role.ADMIN)

        touched = await sql_identity_repo.touch("u1", display_name="Ana Pop", email="", tenant_scope="loc-9")

        assert touched.role == Role.ADMIN
        assert touched.display_name == "Ana Pop"
        assert touched.tenant_scope == "loc-1"

    async def test_first_touch_creates_plain_user(self, sql_identity_repo):
        touched = await sql_identity_repo.touch("u1", display_name="Ana", email="a@acme.ro", tenant_scope=None)

        assert touched.role == Role.USER
        assert touched.tenant_scope is None

    async def test_update_unknown_identity(self, sql_identity_repo):
        assert await sql_identity_repo.update("nope", IdentityUpdate(role=Role.ADMIN)) is None

    async def test_delete(self, sql_identity_repo):
        await _add(sql_identity_repo, "u1")

        assert await sql_identity_repo.delete("u1") is True
        assert await sql_identity_repo.delete("u1") is False

    async def test_duplicate_create_is_a_persistence_error(self, sql_identity_repo):
        await _add(sql_identity_repo, "u1")

        with pytest.raises(PersistenceError):
            await _add(sql_identity_repo, "u1")


class TestStoreFailure:
    async def test_missing_tables_surface_as_persistence_error(self, tmp_path):
        db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}", poolclass=NullPool)

        async def factory() -> AsyncGenerator[AsyncSession, None]:
            async with AsyncSession(db_engine, expire_on_commit=False) as session:
                yield session

        try:
            with pytest.raises(PersistenceError):
                await IdentityRepository(factory).get("u1")
        finally:
            await db_engine.dispose()


# ── Credentials ────────────────────────────────────────────────────────────


class TestCredentialRepository:
    async def test_location_lookup(self, sql_credential_repo):
        await sql_credential_repo.upsert("loc-1", "co-1", CredentialUpdate(location_api_key="loc-key"))

        record = await sql_credential_repo.find(location_id="loc-1")

        assert record.location_api_key == "loc-key"
        assert record.company_id == "co-1"

    async def test_company_only_row_wins_company_lookup(self, sql_credential_repo):
        await sql_credential_repo.upsert("loc-1", "co-1", CredentialUpdate(location_api_key="loc-key"))
        await sql_credential_repo.upsert(None, "co-1", CredentialUpdate(agency_api_key="agency-key"))

        record = await sql_credential_repo.find(company_id="co-1")

        assert record.location_id is None
        assert record.agency_api_key == "agency-key"

    async def test_unknown_location_falls_back_to_company(self, sql_credential_repo):
        await sql_credential_repo.upsert("loc-1", "co-1", CredentialUpdate(location_api_key="loc-key"))

        record = await sql_credential_repo.find(location_id="loc-9", company_id="co-1")

        assert record.location_id == "loc-1"

    async def test_nothing_found(self, sql_credential_repo):
        assert await sql_credential_repo.find(location_id="loc-1") is None
        assert await sql_credential_repo.find() is None

    async def test_upsert_keeps_unspecified_keys(self, sql_credential_repo):
        await sql_credential_repo.upsert("loc-1", None, CredentialUpdate(location_api_key="a"))
        record = await sql_credential_repo.upsert(
            "loc-1", "co-1", CredentialUpdate(agency_api_key="b", updated_by="admin-1")
        )

        assert record.location_api_key == "a"
        assert record.agency_api_key == "b"
        assert record.company_id == "co-1"
        assert record.updated_by == "admin-1"

    async def test_company_upsert_does_not_touch_location_rows(self, sql_credential_repo):
        await sql_credential_repo.upsert("loc-1", "co-1", CredentialUpdate(location_api_key="a"))
        await sql_credential_repo.upsert(None, "co-1", CredentialUpdate(location_api_key="c"))

        assert (await sql_credential_repo.find(location_id="loc-1")).location_api_key == "a"

    async def test_upsert_requires_a_key_column(self, sql_credential_repo):
        with pytest.raises(ValueError):
            await sql_credential_repo.upsert(None, None, CredentialUpdate(location_api_key="a"))
