"""create tenant credential and scheduled message tables

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17 00:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tenant_credentials",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("bot_access_token", sa.String(length=4096), nullable=True),
        sa.Column("bot_refresh_token", sa.String(length=4096), nullable=True),
        sa.Column("bot_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("user_access_token", sa.String(length=4096), nullable=True),
        sa.Column("user_refresh_token", sa.String(length=4096), nullable=True),
        sa.Column("user_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "user_id", name="uq_tenant_credentials_workspace_user"),
    )
    op.create_index("ix_tenant_credentials_workspace_id", "tenant_credentials", ["workspace_id"], unique=False)

    op.create_table(
        "scheduled_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("channel_id", sa.String(length=64), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("send_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("send_as_user", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenant_credentials.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_check_constraint(
        "ck_scheduled_messages_status_values",
        "scheduled_messages",
        "status IN ('pending', 'processing', 'sent', 'failed')",
    )
    op.create_index("ix_scheduled_messages_tenant_id", "scheduled_messages", ["tenant_id"], unique=False)
    op.create_index(
        "ix_scheduled_messages_status_send_at",
        "scheduled_messages",
        ["status", "send_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_scheduled_messages_status_send_at", table_name="scheduled_messages")
    op.drop_index("ix_scheduled_messages_tenant_id", table_name="scheduled_messages")
    op.drop_constraint("ck_scheduled_messages_status_values", "scheduled_messages", type_="check")
    op.drop_table("scheduled_messages")
    op.drop_index("ix_tenant_credentials_workspace_id", table_name="tenant_credentials")
    op.drop_table("tenant_credentials")
