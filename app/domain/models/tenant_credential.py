import uuid
from datetime import datetime

from sqlalchemy import Integer, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.domain.credentials import CREDENTIAL_SCHEMA_VERSION
from app.infrastructure.db.base import Base
from app.infrastructure.db.types import UTCDateTime, utcnow


class TenantCredential(Base):
    __tablename__ = "tenant_credentials"
    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_tenant_credentials_workspace_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False, default=CREDENTIAL_SCHEMA_VERSION)
    bot_access_token: Mapped[str | None] = mapped_column(String(4096), nullable=True)
    bot_refresh_token: Mapped[str | None] = mapped_column(String(4096), nullable=True)
    bot_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    user_access_token: Mapped[str | None] = mapped_column(String(4096), nullable=True)
    user_refresh_token: Mapped[str | None] = mapped_column(String(4096), nullable=True)
    user_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )
