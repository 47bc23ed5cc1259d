"""Shops and OAuth state tokens.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # Create enum types
    op.execute("CREATE TYPE plan_type AS ENUM ('free', 'monthly', 'annual')")
    op.execute("CREATE TYPE plan_status AS ENUM ('active', 'cancelled', 'expired', 'pending')")

    # Create shops table
    op.create_table(
        "shops",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("shop_domain", sa.String(255), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("scopes", sa.Text(), nullable=True),
        sa.Column(
            "plan_type",
            postgresql.ENUM("free", "monthly", "annual", name="plan_type", create_type=False),
            nullable=False,
            server_default="free",
        ),
        sa.Column(
            "plan_status",
            postgresql.ENUM(
                "active", "cancelled", "expired", "pending", name="plan_status", create_type=False
            ),
            nullable=False,
            server_default="active",
        ),
        sa.Column("billing_charge_id", sa.String(255), nullable=True),
        sa.Column("admin_granted_free", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("install_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("first_installed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_reinstalled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("uninstalled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_shops")),
        sa.UniqueConstraint("shop_domain", name=op.f("uq_shops_shop_domain")),
    )
    op.create_index(op.f("ix_shops_shop_domain"), "shops", ["shop_domain"], unique=False)

    # Create oauth_states table
    op.create_table(
        "oauth_states",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("state_token", sa.String(128), nullable=False),
        sa.Column("shop_domain", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_oauth_states")),
        sa.UniqueConstraint("state_token", name=op.f("uq_oauth_states_state_token")),
    )
    op.create_index(
        op.f("ix_oauth_states_state_token"), "oauth_states", ["state_token"], unique=False
    )
    op.create_index(
        op.f("ix_oauth_states_shop_domain"), "oauth_states", ["shop_domain"], unique=False
    )
    op.create_index(
        op.f("ix_oauth_states_expires_at"), "oauth_states", ["expires_at"], unique=False
    )


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table("oauth_states")
    op.drop_table("shops")

    # Drop enum types
    op.execute("DROP TYPE IF EXISTS plan_status")
    op.execute("DROP TYPE IF EXISTS plan_type")
