from uuid import UUID

from app.domain.models.scheduled_message import ScheduledMessage


class MessageAccessDeniedError(PermissionError):
    error_code = "message_access_denied"

    def __init__(self, message_id: UUID) -> None:
        super().__init__(f"Message {message_id} belongs to another tenant")
        self.message_id = message_id


def require_message_owner(message: ScheduledMessage, tenant_id: UUID) -> ScheduledMessage:
    if message.tenant_id != tenant_id:
        raise MessageAccessDeniedError(message.id)
    return message
