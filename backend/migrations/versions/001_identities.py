"""Create the identities table.

Revision ID: 001_identities
Revises:
Create Date: 2026-10-19

One row per phone number. The number is stored as a Fernet token plus a
keyed HMAC digest used for lookups.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_identities"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # pgcrypto provides gen_random_uuid() for external ids
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "identities",
        sa.Column("numeric_id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "id",
            sa.UUID(),
            nullable=False,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("phone_ciphertext", sa.Text(), nullable=False),
        sa.Column("phone_hash", sa.String(64), nullable=False),
        sa.Column("nickname", sa.String(50), nullable=True),
        sa.Column("role", sa.String(10), nullable=False, server_default="unset"),
        sa.Column("code", sa.String(10), nullable=True),
        sa.Column("code_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_code_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "role IN ('unset', 'user', 'admin')",
            name="ck_identities_role",
        ),
        sa.CheckConstraint(
            "(code IS NULL) = (code_expires_at IS NULL)",
            name="ck_identities_code_pair",
        ),
    )
    op.create_index("ix_identities_id", "identities", ["id"], unique=True)
    op.create_index(
        "ix_identities_phone_hash", "identities", ["phone_hash"], unique=True
    )
    # Sweeper scan: only rows holding a pending code
    op.create_index(
        "ix_identities_code_expires_at",
        "identities",
        ["code_expires_at"],
        postgresql_where=sa.text("code IS NOT NULL"),
    )


def downgrade() -> None:
    op.drop_index("ix_identities_code_expires_at", table_name="identities")
    op.drop_index("ix_identities_phone_hash", table_name="identities")
    op.drop_index("ix_identities_id", table_name="identities")
    op.drop_table("identities")
