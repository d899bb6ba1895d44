import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select, update

from app.domain.models.scheduled_message import ALLOWED_TRANSITIONS, MessageStatus, ScheduledMessage
from app.infrastructure.db.session import Database
from app.infrastructure.db.types import utcnow

logger = logging.getLogger(__name__)


class MessageStoreError(RuntimeError):
    error_code: str = "message_store_error"


class MessageNotFoundError(MessageStoreError):
    error_code = "message_not_found"


class InvalidMessageStateError(MessageStoreError):
    error_code = "invalid_message_state"

    def __init__(self, message_id: UUID, current_status: str, requested: str) -> None:
        super().__init__(f"Message {message_id} is {current_status}; cannot move to {requested}")
        self.message_id = message_id
        self.current_status = current_status
        self.requested = requested


class ScheduledMessageStore:
    def __init__(self, database: Database) -> None:
        self._database = database

    def create(
        self,
        *,
        tenant_id: UUID,
        channel_id: str,
        text: str,
        send_at: datetime,
        send_as_user: bool = False,
    ) -> ScheduledMessage:
        with self._database.session() as db:
            message = ScheduledMessage(
                tenant_id=tenant_id,
                channel_id=channel_id,
                text=text,
                send_at=send_at,
                send_as_user=send_as_user,
                status=MessageStatus.PENDING.value,
            )
            db.add(message)
            db.commit()
            logger.info(
                "scheduled_message_created message_id=%s tenant_id=%s channel_id=%s send_at=%s send_as_user=%s",
                message.id,
                tenant_id,
                channel_id,
                send_at.isoformat(),
                send_as_user,
            )
            return message

    def get(self, message_id: UUID) -> ScheduledMessage | None:
        with self._database.session() as db:
            return db.get(ScheduledMessage, message_id)

    def list_pending(self, tenant_id: UUID) -> list[ScheduledMessage]:
        with self._database.session() as db:
            return list(
                db.execute(
                    select(ScheduledMessage)
                    .where(
                        ScheduledMessage.tenant_id == tenant_id,
                        ScheduledMessage.status == MessageStatus.PENDING.value,
                    )
                    .order_by(ScheduledMessage.send_at.asc())
                ).scalars().all()
            )

    def claim_due(self, now: datetime | None = None) -> list[ScheduledMessage]:
        """Move every due pending message to processing and return the claimed rows.

        The status check and the status change happen in one conditional UPDATE,
        so overlapping callers never claim the same row twice.
        """
        claimed_at = now or utcnow()
        with self._database.session() as db:
            claimed_ids = db.execute(
                update(ScheduledMessage)
                .where(
                    ScheduledMessage.status == MessageStatus.PENDING.value,
                    ScheduledMessage.send_at <= claimed_at,
                )
                .values(status=MessageStatus.PROCESSING.value)
                .returning(ScheduledMessage.id)
                .execution_options(synchronize_session=False)
            ).scalars().all()
            db.commit()
            if not claimed_ids:
                return []
            return list(
                db.execute(
                    select(ScheduledMessage)
                    .where(ScheduledMessage.id.in_(claimed_ids))
                    .order_by(ScheduledMessage.send_at.asc())
                ).scalars().all()
            )

    def set_status(self, message_id: UUID, status: MessageStatus) -> ScheduledMessage:
        target = MessageStatus(status)
        allowed_from = ALLOWED_TRANSITIONS[target]
        with self._database.session() as db:
            updated_ids = []
            if allowed_from:
                updated_ids = db.execute(
                    update(ScheduledMessage)
                    .where(
                        ScheduledMessage.id == message_id,
                        ScheduledMessage.status.in_([item.value for item in allowed_from]),
                    )
                    .values(status=target.value)
                    .returning(ScheduledMessage.id)
                    .execution_options(synchronize_session=False)
                ).scalars().all()
                db.commit()
            message = db.get(ScheduledMessage, message_id, populate_existing=True)
            if message is None:
                raise MessageNotFoundError(f"Message {message_id} not found")
            if not updated_ids:
                raise InvalidMessageStateError(message_id, message.status, target.value)
            return message

    def cancel(self, message_id: UUID) -> None:
        with self._database.session() as db:
            result = db.execute(
                delete(ScheduledMessage)
                .where(
                    ScheduledMessage.id == message_id,
                    ScheduledMessage.status == MessageStatus.PENDING.value,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount:
                logger.info("scheduled_message_cancelled message_id=%s", message_id)
                return
            message = db.get(ScheduledMessage, message_id)
            if message is None:
                raise MessageNotFoundError(f"Message {message_id} not found")
            raise InvalidMessageStateError(message_id, message.status, "cancelled")

    def delete_all_for_tenant(self, tenant_id: UUID) -> int:
        with self._database.session() as db:
            result = db.execute(
                delete(ScheduledMessage)
                .where(ScheduledMessage.tenant_id == tenant_id)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            logger.info("scheduled_messages_deleted tenant_id=%s count=%s", tenant_id, result.rowcount)
            return result.rowcount

    def delete_all(self) -> int:
        with self._database.session() as db:
            result = db.execute(delete(ScheduledMessage).execution_options(synchronize_session=False))
            db.commit()
            return result.rowcount
