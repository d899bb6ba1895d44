import asyncio
from datetime import timedelta

import pytest

from app.application.services.cycle_guard import LocalCycleGuard, NullCycleGuard
from app.application.services.delivery_scheduler import DeliveryCycleResult, DeliveryScheduler
from app.application.services.token_service import CredentialLifecycleManager, NoInstallationError
from app.domain.credentials import SubCredential
from app.domain.models.scheduled_message import MessageStatus
from app.infrastructure.db.types import utcnow


def _scheduler(message_store, credential_store, gateway, guard=None) -> DeliveryScheduler:
    return DeliveryScheduler(
        message_store,
        CredentialLifecycleManager(credential_store, gateway),
        gateway,
        guard=guard,
    )


def test_due_message_is_sent_with_bot_token(message_store, credential_store, gateway, tenant, past) -> None:
    message = message_store.create(tenant_id=tenant.id, channel_id="C1", text="hello", send_at=past)

    result = asyncio.run(_scheduler(message_store, credential_store, gateway).run_cycle())

    assert (result.claimed, result.sent, result.failed, result.skipped) == (1, 1, 0, False)
    assert gateway.posted == [{"token": "xoxb-bot", "channel_id": "C1", "text": "hello", "as_user": False}]
    assert message_store.get(message.id).status == MessageStatus.SENT.value


def test_send_as_user_uses_user_token(message_store, credential_store, gateway, tenant, past) -> None:
    message_store.create(tenant_id=tenant.id, channel_id="C1", text="hi", send_at=past, send_as_user=True)

    asyncio.run(_scheduler(message_store, credential_store, gateway).run_cycle())

    assert gateway.posted[0]["token"] == "xoxp-user"
    assert gateway.posted[0]["as_user"] is True


def test_future_messages_are_left_pending(message_store, credential_store, gateway, tenant, future) -> None:
    message = message_store.create(tenant_id=tenant.id, channel_id="C1", text="later", send_at=future)

    result = asyncio.run(_scheduler(message_store, credential_store, gateway).run_cycle())

    assert result.claimed == 0
    assert gateway.posted == []
    assert message_store.get(message.id).status == MessageStatus.PENDING.value


def test_missing_token_fails_without_gateway_call(
    message_store, credential_store, gateway, make_tenant, past
) -> None:
    tenant = make_tenant(user=None)
    message = message_store.create(tenant_id=tenant.id, channel_id="C1", text="x", send_at=past, send_as_user=True)

    result = asyncio.run(_scheduler(message_store, credential_store, gateway).run_cycle())

    assert (result.sent, result.failed) == (0, 1)
    assert gateway.posted == []
    assert message_store.get(message.id).status == MessageStatus.FAILED.value


def test_missing_installation_fails_without_gateway_call(message_store, gateway, tenant, past) -> None:
    class NoInstallationManager:
        async def resolve_token(self, tenant_id, *, as_user=False):
            raise NoInstallationError(f"No installation for tenant {tenant_id}")

    message = message_store.create(tenant_id=tenant.id, channel_id="C1", text="x", send_at=past)
    scheduler = DeliveryScheduler(message_store, NoInstallationManager(), gateway)

    result = asyncio.run(scheduler.run_cycle())

    assert result.failed == 1
    assert gateway.posted == []
    assert message_store.get(message.id).status == MessageStatus.FAILED.value


def test_gateway_failure_marks_one_message_and_batch_continues(
    message_store, credential_store, gateway, tenant, past
) -> None:
    gateway.failing_channels.add("C-bad")
    first = message_store.create(tenant_id=tenant.id, channel_id="C1", text="1", send_at=past - timedelta(minutes=2))
    bad = message_store.create(tenant_id=tenant.id, channel_id="C-bad", text="2", send_at=past - timedelta(minutes=1))
    last = message_store.create(tenant_id=tenant.id, channel_id="C3", text="3", send_at=past)

    result = asyncio.run(_scheduler(message_store, credential_store, gateway).run_cycle())

    assert (result.claimed, result.sent, result.failed) == (3, 2, 1)
    assert [item["channel_id"] for item in gateway.posted] == ["C1", "C-bad", "C3"]
    assert message_store.get(first.id).status == MessageStatus.SENT.value
    assert message_store.get(bad.id).status == MessageStatus.FAILED.value
    assert message_store.get(last.id).status == MessageStatus.SENT.value


def test_unexpected_send_error_marks_message_failed(message_store, credential_store, gateway, tenant, past) -> None:
    async def explode():
        raise ValueError("unexpected")

    gateway.on_post = explode
    message = message_store.create(tenant_id=tenant.id, channel_id="C1", text="x", send_at=past)

    result = asyncio.run(_scheduler(message_store, credential_store, gateway).run_cycle())

    assert result.failed == 1
    assert message_store.get(message.id).status == MessageStatus.FAILED.value


def test_failed_messages_are_not_retried(message_store, credential_store, gateway, tenant, past) -> None:
    gateway.failing_channels.add("C-bad")
    message_store.create(tenant_id=tenant.id, channel_id="C-bad", text="x", send_at=past)
    scheduler = _scheduler(message_store, credential_store, gateway)

    asyncio.run(scheduler.run_cycle())
    second = asyncio.run(scheduler.run_cycle())

    assert second.claimed == 0
    assert len(gateway.posted) == 1


def test_expiring_token_is_refreshed_before_send(
    message_store, credential_store, gateway, make_tenant, past
) -> None:
    tenant = make_tenant(
        bot=SubCredential(access_token="xoxb-old", refresh_token="xoxe-old", expires_at=utcnow() + timedelta(minutes=3))
    )
    message_store.create(tenant_id=tenant.id, channel_id="C1", text="x", send_at=past)

    asyncio.run(_scheduler(message_store, credential_store, gateway).run_cycle())

    assert gateway.refresh_calls == ["xoxe-old"]
    assert gateway.posted[0]["token"] == "xoxb-refreshed"


def test_overlapping_cycle_is_skipped_by_guard(message_store, credential_store, gateway, tenant, past) -> None:
    scheduler = _scheduler(message_store, credential_store, gateway, guard=LocalCycleGuard())
    nested_results = []

    async def run_nested_cycle():
        nested_results.append(await scheduler.run_cycle())

    gateway.on_post = run_nested_cycle
    message_store.create(tenant_id=tenant.id, channel_id="C1", text="x", send_at=past)

    result = asyncio.run(scheduler.run_cycle())

    assert result.sent == 1
    assert len(nested_results) == 1
    assert nested_results[0].skipped is True
    assert nested_results[0].claimed == 0
    assert len(gateway.posted) == 1


def test_overlapping_cycles_without_guard_never_double_send(
    message_store, credential_store, gateway, tenant, past
) -> None:
    scheduler = _scheduler(message_store, credential_store, gateway, guard=NullCycleGuard())
    nested_results = []

    async def run_nested_cycle():
        if not nested_results:
            nested_results.append(await scheduler.run_cycle())

    gateway.on_post = run_nested_cycle
    message = message_store.create(tenant_id=tenant.id, channel_id="C1", text="x", send_at=past)

    asyncio.run(scheduler.run_cycle())

    assert nested_results[0].skipped is False
    assert nested_results[0].claimed == 0
    assert len(gateway.posted) == 1
    assert message_store.get(message.id).status == MessageStatus.SENT.value


def test_status_write_failure_does_not_abort_batch(
    message_store, credential_store, gateway, tenant, past, monkeypatch
) -> None:
    first = message_store.create(tenant_id=tenant.id, channel_id="C1", text="1", send_at=past - timedelta(minutes=1))
    second = message_store.create(tenant_id=tenant.id, channel_id="C2", text="2", send_at=past)
    original_set_status = message_store.set_status

    def flaky_set_status(message_id, status):
        if message_id == first.id:
            raise RuntimeError("database went away")
        return original_set_status(message_id, status)

    monkeypatch.setattr(message_store, "set_status", flaky_set_status)

    result = asyncio.run(_scheduler(message_store, credential_store, gateway).run_cycle())

    assert result.claimed == 2
    assert len(gateway.posted) == 2
    assert message_store.get(first.id).status == MessageStatus.PROCESSING.value
    assert message_store.get(second.id).status == MessageStatus.SENT.value


def test_claim_failure_returns_empty_result(message_store, credential_store, gateway, monkeypatch) -> None:
    def broken_claim(now=None):
        raise RuntimeError("database went away")

    monkeypatch.setattr(message_store, "claim_due", broken_claim)

    result = asyncio.run(_scheduler(message_store, credential_store, gateway).run_cycle())

    assert (result.claimed, result.sent, result.failed, result.skipped) == (0, 0, 0, False)


@pytest.mark.parametrize("skipped,expected", [(False, "ok"), (True, "skipped")])
def test_cycle_result_summary(skipped, expected) -> None:
    summary = DeliveryCycleResult(claimed=2, sent=1, failed=1, skipped=skipped).as_dict()

    assert summary == {"status": expected, "claimed": 2, "sent": 1, "failed": 1}
