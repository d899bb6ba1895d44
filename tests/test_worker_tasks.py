from app.application.services.delivery_scheduler import DeliveryCycleResult
from app.core.config import settings
from workers import tasks
from workers.celery_app import celery_app


class StubScheduler:
    def __init__(self, result: DeliveryCycleResult) -> None:
        self.result = result
        self.calls = 0

    async def run_cycle(self, now=None) -> DeliveryCycleResult:
        self.calls += 1
        return self.result


def test_deliver_due_messages_runs_one_cycle_and_mirrors_counters(monkeypatch) -> None:
    scheduler = StubScheduler(DeliveryCycleResult(claimed=3, sent=2, failed=1))
    counters: list[tuple[str, int]] = []
    monkeypatch.setattr(tasks, "_get_scheduler", lambda: scheduler)
    monkeypatch.setattr(tasks, "increment_background_counter", lambda name, amount=1: counters.append((name, amount)))

    summary = tasks.deliver_due_messages()

    assert scheduler.calls == 1
    assert summary["status"] == "ok"
    assert (summary["claimed"], summary["sent"], summary["failed"]) == (3, 2, 1)
    assert counters == [
        ("messages_claimed_total", 3),
        ("messages_sent_total", 2),
        ("messages_failed_total", 1),
    ]


def test_deliver_due_messages_reports_skipped_cycle(monkeypatch) -> None:
    monkeypatch.setattr(tasks, "_get_scheduler", lambda: StubScheduler(DeliveryCycleResult(skipped=True)))
    monkeypatch.setattr(tasks, "increment_background_counter", lambda name, amount=1: None)

    assert tasks.deliver_due_messages()["status"] == "skipped"


def test_beat_schedules_delivery_on_the_configured_interval() -> None:
    entry = celery_app.conf.beat_schedule["deliver-due-messages"]

    assert entry["task"] == "workers.tasks.deliver_due_messages"
    assert entry["schedule"].run_every.total_seconds() == settings.delivery_interval_seconds
    assert entry["options"]["expires"] == settings.delivery_interval_seconds
