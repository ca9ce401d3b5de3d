"""initial usage counter and identity tables

Revision ID: 3c1d7e2a9b40
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "3c1d7e2a9b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "identity_user",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        sa.Column("password_hash", sa.String(length=200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_identity_user_email", "identity_user", ["email"], unique=True)

    op.create_table(
        "usage_record",
        sa.Column("identifier_hash", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_count", sa.Integer(), nullable=False),
        sa.Column("reset_at_ms", sa.BigInteger(), nullable=False),
    )
    op.create_index("ix_usage_record_reset_at_ms", "usage_record", ["reset_at_ms"])


def downgrade() -> None:
    op.drop_index("ix_usage_record_reset_at_ms", table_name="usage_record")
    op.drop_table("usage_record")
    op.drop_index("ix_identity_user_email", table_name="identity_user")
    op.drop_table("identity_user")
