from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from app.application.services.authorization_service import MessageAccessDeniedError, require_message_owner
from app.application.services.credential_store import StoredCredential
from app.application.services.message_store import (
    InvalidMessageStateError,
    MessageNotFoundError,
    ScheduledMessageStore,
)
from app.application.services.token_service import CredentialLifecycleManager, TokenUnavailableError
from app.domain.models.scheduled_message import ScheduledMessage
from app.integrations.messaging.base_gateway import GatewayError, MessagingGateway
from app.interfaces.api.deps import get_current_installation, get_gateway, get_message_store, get_token_manager

router = APIRouter(prefix="/messages", tags=["messages"])


class MessageBody(BaseModel):
    channel_id: str = Field(min_length=1, max_length=64)
    text: str = Field(min_length=1, max_length=40000)
    send_as_user: bool = False

    @field_validator("channel_id", "text")
    @classmethod
    def _require_content(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class ScheduleMessageRequest(MessageBody):
    send_at: datetime

    @field_validator("send_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def _serialize_message(message: ScheduledMessage) -> dict:
    return {
        "id": str(message.id),
        "tenant_id": str(message.tenant_id),
        "channel_id": message.channel_id,
        "text": message.text,
        "send_at": message.send_at.isoformat(),
        "send_as_user": message.send_as_user,
        "status": message.status,
        "created_at": message.created_at.isoformat(),
        "updated_at": message.updated_at.isoformat(),
    }


def _load_owned_message(
    message_store: ScheduledMessageStore,
    message_id: UUID,
    installation: StoredCredential,
) -> ScheduledMessage:
    message = message_store.get(message_id)
    if message is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error_code": "message_not_found", "message": "Message not found"},
        )
    try:
        return require_message_owner(message, installation.id)
    except MessageAccessDeniedError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error_code": exc.error_code, "message": "You are not authorized to access this message"},
        ) from exc


@router.post("", status_code=status.HTTP_201_CREATED)
def schedule_message(
    payload: ScheduleMessageRequest,
    installation: StoredCredential = Depends(get_current_installation),
    message_store: ScheduledMessageStore = Depends(get_message_store),
) -> dict:
    message = message_store.create(
        tenant_id=installation.id,
        channel_id=payload.channel_id.strip(),
        text=payload.text,
        send_at=payload.send_at,
        send_as_user=payload.send_as_user,
    )
    return _serialize_message(message)


@router.get("", status_code=status.HTTP_200_OK)
def list_pending_messages(
    installation: StoredCredential = Depends(get_current_installation),
    message_store: ScheduledMessageStore = Depends(get_message_store),
) -> dict:
    rows = message_store.list_pending(installation.id)
    return {"items": [_serialize_message(row) for row in rows]}


@router.post("/send", status_code=status.HTTP_200_OK)
async def send_message_now(
    payload: MessageBody,
    installation: StoredCredential = Depends(get_current_installation),
    token_manager: CredentialLifecycleManager = Depends(get_token_manager),
    gateway: MessagingGateway = Depends(get_gateway),
) -> dict:
    try:
        token = await token_manager.resolve_token(installation.id, as_user=payload.send_as_user)
    except TokenUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": exc.reason, "message": "Could not retrieve a valid token"},
        ) from exc

    try:
        result = await gateway.post_message(
            token=token,
            channel_id=payload.channel_id.strip(),
            text=payload.text,
            as_user=payload.send_as_user,
        )
    except GatewayError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error_code": exc.error_code, "message": str(exc)},
        ) from exc
    return {"status": "sent", **result}


@router.get("/{message_id}", status_code=status.HTTP_200_OK)
def get_message(
    message_id: UUID,
    installation: StoredCredential = Depends(get_current_installation),
    message_store: ScheduledMessageStore = Depends(get_message_store),
) -> dict:
    return _serialize_message(_load_owned_message(message_store, message_id, installation))


@router.delete("/{message_id}", status_code=status.HTTP_200_OK)
def cancel_message(
    message_id: UUID,
    installation: StoredCredential = Depends(get_current_installation),
    message_store: ScheduledMessageStore = Depends(get_message_store),
) -> dict:
    _load_owned_message(message_store, message_id, installation)
    try:
        message_store.cancel(message_id)
    except MessageNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error_code": exc.error_code, "message": "Message not found"},
        ) from exc
    except InvalidMessageStateError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error_code": exc.error_code,
                "message": f"Only pending messages can be cancelled; message is {exc.current_status}",
            },
        ) from exc
    return {"id": str(message_id), "status": "cancelled"}
