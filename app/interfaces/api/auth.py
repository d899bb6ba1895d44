from fastapi import APIRouter, Depends, status

from app.application.services.credential_store import CredentialStore, StoredCredential
from app.application.services.message_store import ScheduledMessageStore
from app.application.services.tenant_service import disconnect_tenant
from app.interfaces.api.deps import get_credential_store, get_current_installation, get_message_store

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", status_code=status.HTTP_200_OK)
def me(installation: StoredCredential = Depends(get_current_installation)) -> dict:
    return {
        "tenant_id": str(installation.id),
        "workspace_id": installation.key.workspace_id,
        "user_id": installation.key.user_id,
        "has_bot_token": installation.credentials.bot is not None,
        "has_user_token": installation.credentials.user is not None,
    }


@router.post("/disconnect", status_code=status.HTTP_200_OK)
def disconnect(
    installation: StoredCredential = Depends(get_current_installation),
    message_store: ScheduledMessageStore = Depends(get_message_store),
    credential_store: CredentialStore = Depends(get_credential_store),
) -> dict:
    result = disconnect_tenant(installation.id, message_store=message_store, credential_store=credential_store)
    return {"status": "disconnected", "messages_deleted": result.messages_deleted}
