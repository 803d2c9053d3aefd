"""Create secrets and secret_metadata tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "secrets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("encrypted_content", sa.Text, nullable=False),
        sa.Column("has_passphrase", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("passphrase_hash", sa.String(128), nullable=True),
        sa.Column("max_views", sa.Integer, nullable=False, server_default="1"),
        sa.Column("current_views", sa.Integer, nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("viewed_at", sa.DateTime, nullable=True),
        sa.Column("created_ip", sa.String(64), nullable=True),
        sa.Column("viewed_ip", sa.String(64), nullable=True),
        sa.Column("recipient_email", sa.String(254), nullable=True),
        sa.CheckConstraint("current_views >= 0", name="ck_secrets_current_views_non_negative"),
        sa.CheckConstraint("current_views <= max_views", name="ck_secrets_views_within_max"),
    )
    op.create_index("ix_secrets_key", "secrets", ["key"], unique=True)
    op.create_index("ix_secrets_expires_at", "secrets", ["expires_at"])

    op.create_table(
        "secret_metadata",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("secret_id", sa.String(36), nullable=False),
        sa.Column("secret_key", sa.String(64), nullable=False),
        sa.Column("state", sa.String(16), nullable=False, server_default="new"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_secret_metadata_secret_key", "secret_metadata", ["secret_key"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_secret_metadata_secret_key", table_name="secret_metadata")
    op.drop_table("secret_metadata")

    op.drop_index("ix_secrets_expires_at", table_name="secrets")
    op.drop_index("ix_secrets_key", table_name="secrets")
    op.drop_table("secrets")
