"""Identity store: identities and location_credentials tables.

Revision ID: 001_identity_tables
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_identity_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "identities",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("display_name", sa.String(300), nullable=False),
        sa.Column("email", sa.String(320), server_default=sa.text("''"), nullable=False),
        sa.Column("role", sa.String(20), server_default=sa.text("'user'"), nullable=False),
        sa.Column("is_owner", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("tenant_scope", sa.String(100), nullable=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_identities_tenant_scope", "identities", ["tenant_scope"])

    op.create_table(
        "location_credentials",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("location_id", sa.String(100), nullable=True),
        sa.Column("company_id", sa.String(100), nullable=True),
        sa.Column("location_api_key", sa.String(500), nullable=True),
        sa.Column("agency_api_key", sa.String(500), nullable=True),
        sa.Column("updated_by", sa.String(100), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_location_credentials_location_id", "location_credentials", ["location_id"]
    )
    op.create_index(
        "ix_location_credentials_company_id", "location_credentials", ["company_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_location_credentials_company_id", table_name="location_credentials")
    op.drop_index("ix_location_credentials_location_id", table_name="location_credentials")
    op.drop_table("location_credentials")
    op.drop_index("ix_identities_tenant_scope", table_name="identities")
    op.drop_table("identities")
