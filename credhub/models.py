import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from credhub.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return str(uuid.uuid4())


class TwitchConfig(Base):
    """A registered Twitch application (client id + encrypted client secret)."""

    __tablename__ = "twitch_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False)
    client_secret_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        UniqueConstraint("owner_id", "client_id", name="uq_twitch_configs_owner_client"),
        Index("idx_twitch_configs_owner", "owner_id"),
    )

    @property
    def display_name(self) -> str:
        return self.name or self.client_id


class SavedToken(Base):
    """An OAuth token minted for a TwitchConfig (app or user kind)."""

    __tablename__ = "saved_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    twitch_config_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("twitch_configs.id"), nullable=False
    )
    token_type: Mapped[str] = mapped_column(String(10), nullable=False)  # "app" | "user"
    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    scopes: Mapped[list] = mapped_column(JSONType, default=list)
    channel_login: Mapped[str | None] = mapped_column(String(255), nullable=True)
    channel_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    twitch_config: Mapped[TwitchConfig] = relationship(lazy="joined")

    # Concurrent refreshes of the same record fail with StaleDataError
    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}

    __table_args__ = (
        Index("idx_saved_tokens_owner", "owner_id"),
        Index("idx_saved_tokens_owner_type", "owner_id", "token_type"),
        Index("idx_saved_tokens_config", "twitch_config_id"),
    )


class Webhook(Base):
    """Local cache of a Twitch EventSub subscription."""

    __tablename__ = "webhooks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    subscription_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    type: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str] = mapped_column(String(20), default="1")
    condition: Mapped[dict] = mapped_column(JSONType, default=dict)
    callback_url: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(100), nullable=False)
    cost: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (Index("idx_webhooks_owner", "owner_id"),)
