"""Identity persistence models.

Two SQLAlchemy models:
- IdentityModel: canonical local directory of users, keyed by the external CRM id
- CredentialModel: per-location (or per-company) CRM keys

Credential rows are looked up by location_id OR company_id; neither column is
unique on its own because agency-level rows may carry only a company_id.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from src.teamclock.core.database import Base


class IdentityModel(Base):
    """One human user of the embedding location.

    ``id`` is assigned by the CRM and never changes. ``is_owner`` is only
    written by ownership transfer, never by synchronization.
    """

    __tablename__ = "identities"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str] = mapped_column(String(320), default="", server_default=text("''"))
    role: Mapped[str] = mapped_column(String(20), default="user", server_default=text("'user'"))
    is_owner: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    tenant_scope: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class CredentialModel(Base):
    """CRM keys stored for a location or a company."""

    __tablename__ = "location_credentials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    location_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    company_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    location_api_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    agency_api_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
