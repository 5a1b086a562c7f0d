"""Create twitch_configs, saved_tokens and webhooks tables.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-19 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Apply schema migrations."""
    # Registered Twitch applications
    op.create_table(
        "twitch_configs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("client_id", sa.String(255), nullable=False),
        sa.Column("client_secret_encrypted", sa.Text, nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_id", "client_id", name="uq_twitch_configs_owner_client"),
    )
    op.create_index("idx_twitch_configs_owner", "twitch_configs", ["owner_id"], unique=False)

    # OAuth tokens (secrets encrypted at rest)
    op.create_table(
        "saved_tokens",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("twitch_config_id", sa.String(36), nullable=False),
        sa.Column("token_type", sa.String(10), nullable=False),
        sa.Column("access_token_encrypted", sa.Text, nullable=False),
        sa.Column("refresh_token_encrypted", sa.Text, nullable=True),
        sa.Column("scopes", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("channel_login", sa.String(255), nullable=True),
        sa.Column("channel_id", sa.String(64), nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["twitch_config_id"], ["twitch_configs.id"]),
    )
    op.create_index("idx_saved_tokens_owner", "saved_tokens", ["owner_id"], unique=False)
    op.create_index("idx_saved_tokens_owner_type", "saved_tokens", ["owner_id", "token_type"], unique=False)
    op.create_index("idx_saved_tokens_config", "saved_tokens", ["twitch_config_id"], unique=False)

    # Local cache of EventSub subscriptions
    op.create_table(
        "webhooks",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("subscription_id", sa.String(255), nullable=False),
        sa.Column("type", sa.String(255), nullable=False),
        sa.Column("version", sa.String(20), nullable=True),
        sa.Column("condition", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("callback_url", sa.Text, nullable=False),
        sa.Column("status", sa.String(100), nullable=False),
        sa.Column("cost", sa.Integer, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subscription_id"),
    )
    op.create_index("idx_webhooks_owner", "webhooks", ["owner_id"], unique=False)


def downgrade() -> None:
    """Revert schema migrations."""
    op.drop_index("idx_webhooks_owner", table_name="webhooks")
    op.drop_table("webhooks")

    op.drop_index("idx_saved_tokens_config", table_name="saved_tokens")
    op.drop_index("idx_saved_tokens_owner_type", table_name="saved_tokens")
    op.drop_index("idx_saved_tokens_owner", table_name="saved_tokens")
    op.drop_table("saved_tokens")

    op.drop_index("idx_twitch_configs_owner", table_name="twitch_configs")
    op.drop_table("twitch_configs")
