from fastapi import APIRouter, Depends, HTTPException, status

from app.application.services.credential_store import StoredCredential
from app.application.services.token_service import CredentialLifecycleManager, TokenUnavailableError
from app.integrations.messaging.base_gateway import GatewayError, MessagingGateway
from app.interfaces.api.deps import get_current_installation, get_gateway, get_token_manager

router = APIRouter(prefix="/channels", tags=["channels"])


def _serialize_channel(channel: dict) -> dict:
    return {
        "id": channel.get("id"),
        "name": channel.get("name"),
        "is_private": bool(channel.get("is_private", False)),
    }


@router.get("", status_code=status.HTTP_200_OK)
async def list_channels(
    installation: StoredCredential = Depends(get_current_installation),
    token_manager: CredentialLifecycleManager = Depends(get_token_manager),
    gateway: MessagingGateway = Depends(get_gateway),
) -> dict:
    try:
        token = await token_manager.resolve_token(installation.id, as_user=True)
    except TokenUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": exc.reason, "message": "Could not retrieve a valid token"},
        ) from exc

    try:
        channels = await gateway.list_channels(token=token)
    except GatewayError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error_code": exc.error_code, "message": str(exc)},
        ) from exc
    return {"items": [_serialize_channel(channel) for channel in channels]}
