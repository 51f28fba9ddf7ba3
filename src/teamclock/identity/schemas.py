"""Pydantic schemas for identities, credentials, and synchronization runs.

Defines:
- Enums: Role, FetchScope
- Identity payloads: IdentityCreate, IdentityUpdate, IdentityRead
- Credential payloads: CredentialUpdate, CredentialRecord, ActiveCredentials, CredentialStatus
- Trigger input: SyncRequest
- Normalized directory record: NormalizedRecord
- Run accounting: SyncStats, SyncRun
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.teamclock.identity.placeholders import is_placeholder_location


# ── Enums ───────────────────────────────────────────────────────────────────


class Role(str, Enum):
    """Authoritative role of a local identity."""

    USER = "user"
    ADMIN = "admin"


class FetchScope(str, Enum):
    """Credential scope a directory record was reached through."""

    LOCATION = "location"
    AGENCY = "agency"


# ── Identity Schemas ────────────────────────────────────────────────────────


class IdentityCreate(BaseModel):
    """Schema for creating a new identity."""

    id: str
    display_name: str
    email: str = ""
    role: Role = Role.USER
    tenant_scope: str | None = None


class IdentityUpdate(BaseModel):
    """Partial update; None fields are left untouched."""

    display_name: str | None = None
    email: str | None = None
    role: Role | None = None
    is_owner: bool | None = None
    tenant_scope: str | None = None
    last_seen_at: datetime | None = None


class IdentityRead(BaseModel):
    """Schema for reading an identity (includes all persisted fields)."""

    id: str
    display_name: str
    email: str = ""
    role: Role = Role.USER
    is_owner: bool = False
    tenant_scope: str | None = None
    last_seen_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN or self.is_owner


# ── Credential Schemas ──────────────────────────────────────────────────────


class CredentialUpdate(BaseModel):
    """Keys to write on a credential record; None keeps the stored value."""

    location_api_key: str | None = None
    agency_api_key: str | None = None
    company_id: str | None = None
    updated_by: str | None = None


class CredentialRecord(BaseModel):
    """Stored credentials for one location or one company."""

    location_id: str | None = None
    company_id: str | None = None
    location_api_key: str | None = None
    agency_api_key: str | None = None
    updated_by: str | None = None
    updated_at: datetime | None = None


class ActiveCredentials(BaseModel):
    """Keys and scope identifiers a synchronization run will use."""

    location_id: str | None = None
    company_id: str | None = None
    location_api_key: str = ""
    agency_api_key: str = ""

    @property
    def effective_location_id(self) -> str | None:
        """Location id usable as a tenant scope (placeholders removed)."""
        if self.location_id and not is_placeholder_location(self.location_id):
            return self.location_id
        return None


class CredentialStatus(BaseModel):
    """Presence flags for a stored credential record. Never carries secrets."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    has_key: bool = False
    has_agency_key: bool = False
    has_company_id: bool = False
    company_id: str | None = None
    is_placeholder: bool = False


class SyncRequest(BaseModel):
    """Trigger input of a synchronization run (camelCase on the wire).

    The location key is also accepted as ``apiKey``, the name older dashboard
    builds send.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    location_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("locationApiKey", "apiKey", "location_api_key"),
    )
    agency_api_key: str | None = None
    location_id: str | None = None
    company_id: str | None = None
    triggered_by: str | None = None


# ── Directory Records ───────────────────────────────────────────────────────


class NormalizedRecord(BaseModel):
    """Canonical shape of one external directory user."""

    id: str
    display_name: str
    email: str = ""
    source_location_id: str | None = None
    scope: FetchScope
    raw: dict[str, Any] = Field(default_factory=dict)


# ── Run Accounting ──────────────────────────────────────────────────────────


class SyncStats(BaseModel):
    """Counters of one synchronization run."""

    total: int = 0
    added: int = 0
    updated: int = 0
    skipped: int = 0
    location_users: int = 0
    agency_users: int = 0
    errors: list[str] = Field(default_factory=list)


class SyncRun(BaseModel):
    """Ephemeral result of one synchronization run. Never persisted."""

    triggered_by: str | None = None
    stats: SyncStats = Field(default_factory=SyncStats)
    logs: list[str] = Field(default_factory=list)

    def log(self, line: str) -> None:
        """Append a human-readable trace line to the run log."""
        self.logs.append(line)

    def error(self, line: str) -> None:
        """Record an isolated failure in both errors and the run log."""
        self.stats.errors.append(line)
        self.logs.append(f"ERROR: {line}")
