import logging
from dataclasses import dataclass
from uuid import UUID

from app.application.services.credential_store import CredentialStore
from app.application.services.message_store import ScheduledMessageStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DisconnectResult:
    messages_deleted: int
    credential_deleted: bool


def disconnect_tenant(
    tenant_id: UUID,
    *,
    message_store: ScheduledMessageStore,
    credential_store: CredentialStore,
) -> DisconnectResult:
    # Messages reference the credential record, so they go first.
    messages_deleted = message_store.delete_all_for_tenant(tenant_id)
    credential_deleted = credential_store.delete(tenant_id)
    logger.info(
        "tenant_disconnected tenant_id=%s messages_deleted=%s credential_deleted=%s",
        tenant_id,
        messages_deleted,
        credential_deleted,
    )
    return DisconnectResult(messages_deleted=messages_deleted, credential_deleted=credential_deleted)


def clear_all_installations(
    *,
    message_store: ScheduledMessageStore,
    credential_store: CredentialStore,
) -> DisconnectResult:
    messages_deleted = message_store.delete_all()
    credentials_deleted = credential_store.delete_all()
    logger.info(
        "installations_cleared messages_deleted=%s credentials_deleted=%s",
        messages_deleted,
        credentials_deleted,
    )
    return DisconnectResult(messages_deleted=messages_deleted, credential_deleted=credentials_deleted > 0)
