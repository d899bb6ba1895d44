import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import delete, select

from app.core.security import decrypt_secret, encrypt_secret
from app.domain.credentials import (
    CREDENTIAL_SCHEMA_VERSION,
    CredentialBundle,
    CredentialKind,
    SubCredential,
    TenantKey,
)
from app.domain.models.tenant_credential import TenantCredential
from app.infrastructure.db.session import Database

logger = logging.getLogger(__name__)

_COLUMNS: dict[CredentialKind, tuple[str, str, str]] = {
    CredentialKind.BOT: ("bot_access_token", "bot_refresh_token", "bot_expires_at"),
    CredentialKind.USER: ("user_access_token", "user_refresh_token", "user_expires_at"),
}


@dataclass(frozen=True)
class StoredCredential:
    id: UUID
    key: TenantKey
    credentials: CredentialBundle
    schema_version: int = CREDENTIAL_SCHEMA_VERSION


def _read_sub_credential(row: TenantCredential, kind: CredentialKind) -> SubCredential | None:
    access_column, refresh_column, expires_column = _COLUMNS[kind]
    encrypted_access_token = getattr(row, access_column)
    if not encrypted_access_token:
        return None
    encrypted_refresh_token = getattr(row, refresh_column)
    return SubCredential(
        access_token=decrypt_secret(encrypted_access_token),
        refresh_token=(decrypt_secret(encrypted_refresh_token) if encrypted_refresh_token else None),
        expires_at=getattr(row, expires_column),
    )


def _write_sub_credential(row: TenantCredential, kind: CredentialKind, credential: SubCredential | None) -> None:
    access_column, refresh_column, expires_column = _COLUMNS[kind]
    if credential is None or not credential.access_token:
        setattr(row, access_column, None)
        setattr(row, refresh_column, None)
        setattr(row, expires_column, None)
        return
    setattr(row, access_column, encrypt_secret(credential.access_token))
    setattr(row, refresh_column, encrypt_secret(credential.refresh_token) if credential.refresh_token else None)
    setattr(row, expires_column, credential.expires_at)


def _to_stored(row: TenantCredential) -> StoredCredential:
    return StoredCredential(
        id=row.id,
        key=TenantKey(workspace_id=row.workspace_id, user_id=row.user_id),
        credentials=CredentialBundle(
            bot=_read_sub_credential(row, CredentialKind.BOT),
            user=_read_sub_credential(row, CredentialKind.USER),
        ),
        schema_version=row.schema_version,
    )


class CredentialStore:
    def __init__(self, database: Database) -> None:
        self._database = database

    def get(self, tenant_id: UUID) -> StoredCredential | None:
        with self._database.session() as db:
            row = db.get(TenantCredential, tenant_id)
            return _to_stored(row) if row is not None else None

    def get_by_key(self, key: TenantKey) -> StoredCredential | None:
        with self._database.session() as db:
            row = db.execute(
                select(TenantCredential).where(
                    TenantCredential.workspace_id == key.workspace_id,
                    TenantCredential.user_id == key.user_id,
                )
            ).scalar_one_or_none()
            return _to_stored(row) if row is not None else None

    def save(self, key: TenantKey, credentials: CredentialBundle) -> StoredCredential:
        with self._database.session() as db:
            row = db.execute(
                select(TenantCredential).where(
                    TenantCredential.workspace_id == key.workspace_id,
                    TenantCredential.user_id == key.user_id,
                )
            ).scalar_one_or_none()
            if row is None:
                row = TenantCredential(workspace_id=key.workspace_id, user_id=key.user_id)
            row.schema_version = CREDENTIAL_SCHEMA_VERSION
            _write_sub_credential(row, CredentialKind.BOT, credentials.bot)
            _write_sub_credential(row, CredentialKind.USER, credentials.user)
            db.add(row)
            db.commit()
            logger.info(
                "tenant_credential_saved tenant_id=%s workspace_id=%s has_bot=%s has_user=%s",
                row.id,
                key.workspace_id,
                credentials.bot is not None,
                credentials.user is not None,
            )
            return _to_stored(row)

    def update_sub_credential(
        self,
        tenant_id: UUID,
        kind: CredentialKind,
        credential: SubCredential,
    ) -> StoredCredential | None:
        with self._database.session() as db:
            row = db.get(TenantCredential, tenant_id)
            if row is None:
                logger.warning("tenant_credential_update_missing tenant_id=%s kind=%s", tenant_id, kind)
                return None
            _write_sub_credential(row, kind, credential)
            db.add(row)
            db.commit()
            return _to_stored(row)

    def delete(self, tenant_id: UUID) -> bool:
        with self._database.session() as db:
            result = db.execute(delete(TenantCredential).where(TenantCredential.id == tenant_id))
            db.commit()
            return result.rowcount > 0

    def delete_all(self) -> int:
        with self._database.session() as db:
            result = db.execute(delete(TenantCredential))
            db.commit()
            return result.rowcount
