import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from redis import Redis

from app.application.services.credential_store import CredentialStore
from app.application.services.cycle_guard import CycleGuard, LocalCycleGuard, NullCycleGuard, RedisCycleGuard
from app.application.services.message_store import ScheduledMessageStore
from app.application.services.token_service import CredentialLifecycleManager, TokenUnavailableError
from app.core.config import Settings, settings as default_settings
from app.domain.models.scheduled_message import MessageStatus, ScheduledMessage
from app.infrastructure.db.session import Database
from app.infrastructure.db.types import utcnow
from app.infrastructure.logging.context import (
    reset_message_id,
    reset_tenant_id,
    set_message_id,
    set_tenant_id,
)
from app.infrastructure.observability.metrics import (
    DELIVERY_CYCLES_TOTAL,
    MESSAGES_CLAIMED_TOTAL,
    MESSAGES_DELIVERED_TOTAL,
)
from app.integrations.messaging.base_gateway import GatewayError, MessagingGateway
from app.integrations.messaging.slack_gateway import build_slack_gateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryCycleResult:
    claimed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: bool = False

    def as_dict(self) -> dict:
        return {
            "status": "skipped" if self.skipped else "ok",
            "claimed": self.claimed,
            "sent": self.sent,
            "failed": self.failed,
        }


class DeliveryScheduler:
    def __init__(
        self,
        message_store: ScheduledMessageStore,
        token_manager: CredentialLifecycleManager,
        gateway: MessagingGateway,
        guard: CycleGuard | None = None,
    ) -> None:
        self._message_store = message_store
        self._token_manager = token_manager
        self._gateway = gateway
        self._guard = guard or LocalCycleGuard()

    async def run_cycle(self, now: datetime | None = None) -> DeliveryCycleResult:
        with self._guard.hold() as acquired:
            if not acquired:
                DELIVERY_CYCLES_TOTAL.labels(outcome="skipped").inc()
                logger.info("delivery_cycle_skipped reason=cycle_in_progress")
                return DeliveryCycleResult(skipped=True)
            return await self._run_claimed_cycle(now or utcnow())

    async def _run_claimed_cycle(self, now: datetime) -> DeliveryCycleResult:
        try:
            messages = self._message_store.claim_due(now)
        except Exception:
            DELIVERY_CYCLES_TOTAL.labels(outcome="claim_failed").inc()
            logger.exception("delivery_cycle_claim_failed now=%s", now.isoformat())
            return DeliveryCycleResult()

        MESSAGES_CLAIMED_TOTAL.inc(len(messages))
        sent = 0
        failed = 0
        for message in messages:
            final_status = await self._dispatch(message)
            if final_status == MessageStatus.SENT:
                sent += 1
            else:
                failed += 1

        DELIVERY_CYCLES_TOTAL.labels(outcome="completed").inc()
        if messages:
            logger.info(
                "delivery_cycle_completed claimed=%s sent=%s failed=%s",
                len(messages),
                sent,
                failed,
            )
        return DeliveryCycleResult(claimed=len(messages), sent=sent, failed=failed)

    async def _dispatch(self, message: ScheduledMessage) -> MessageStatus:
        tenant_token = set_tenant_id(str(message.tenant_id))
        message_token = set_message_id(str(message.id))
        try:
            final_status = await self._send(message)
            self._record_status(message, final_status)
            return final_status
        finally:
            reset_message_id(message_token)
            reset_tenant_id(tenant_token)

    async def _send(self, message: ScheduledMessage) -> MessageStatus:
        try:
            token = await self._token_manager.resolve_token(message.tenant_id, as_user=message.send_as_user)
        except TokenUnavailableError as exc:
            logger.warning(
                "message_delivery_failed message_id=%s tenant_id=%s reason=%s",
                message.id,
                message.tenant_id,
                exc.reason,
            )
            return MessageStatus.FAILED
        except Exception:
            logger.exception(
                "message_token_resolution_crashed message_id=%s tenant_id=%s",
                message.id,
                message.tenant_id,
            )
            return MessageStatus.FAILED

        try:
            await self._gateway.post_message(
                token=token,
                channel_id=message.channel_id,
                text=message.text,
                as_user=message.send_as_user,
            )
        except GatewayError as exc:
            logger.warning(
                "message_delivery_failed message_id=%s tenant_id=%s channel_id=%s error_code=%s error=%s",
                message.id,
                message.tenant_id,
                message.channel_id,
                exc.error_code,
                exc,
            )
            return MessageStatus.FAILED
        except Exception:
            logger.exception(
                "message_delivery_crashed message_id=%s tenant_id=%s channel_id=%s",
                message.id,
                message.tenant_id,
                message.channel_id,
            )
            return MessageStatus.FAILED

        logger.info(
            "message_delivered message_id=%s tenant_id=%s channel_id=%s",
            message.id,
            message.tenant_id,
            message.channel_id,
        )
        return MessageStatus.SENT

    def _record_status(self, message: ScheduledMessage, status: MessageStatus) -> None:
        try:
            self._message_store.set_status(message.id, status)
        except Exception:
            # The message stays processing and is never claimed again.
            logger.exception("message_status_write_failed message_id=%s status=%s", message.id, status)
            return
        MESSAGES_DELIVERED_TOTAL.labels(status=status.value).inc()


def build_cycle_guard(config: Settings | None = None, redis_client: Redis | None = None) -> CycleGuard:
    config = config or default_settings
    if not config.scheduler_single_flight:
        return NullCycleGuard()
    if redis_client is None:
        return LocalCycleGuard()
    return RedisCycleGuard(
        redis_client,
        key=config.delivery_cycle_lock_key,
        ttl_seconds=config.delivery_cycle_lock_ttl_seconds,
    )


def build_delivery_scheduler(
    database: Database,
    *,
    gateway: MessagingGateway | None = None,
    redis_client: Redis | None = None,
    config: Settings | None = None,
) -> DeliveryScheduler:
    config = config or default_settings
    gateway = gateway or build_slack_gateway(config)
    token_manager = CredentialLifecycleManager(
        CredentialStore(database),
        gateway,
        refresh_margin=timedelta(seconds=config.token_refresh_margin_seconds),
    )
    return DeliveryScheduler(
        ScheduledMessageStore(database),
        token_manager,
        gateway,
        guard=build_cycle_guard(config, redis_client),
    )
