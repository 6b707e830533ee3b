from __future__ import annotations

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from feedsync.config import ScheduleConfig, ScheduleType
from feedsync.scheduler import APSchedulerAdapter
from feedsync.scheduler.apsched_adapter import SYNC_JOB_ID


class StubScheduler:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    def add_job(self, callback, trigger, id, replace_existing, max_instances, coalesce):  # noqa: ANN001
        self.calls.append(
            {
                "id": id,
                "trigger": trigger,
                "callback": callback,
                "replace_existing": replace_existing,
                "max_instances": max_instances,
                "coalesce": coalesce,
            }
        )

    def get_jobs(self):
        return []

    def start(self):
        self.calls.append({"event": "started"})

    def shutdown(self, wait=False):  # noqa: ARG002
        self.calls.append({"event": "shutdown"})

    def remove_job(self, job_id):  # noqa: ANN001
        self.calls.append({"event": "remove", "id": job_id})


def test_build_triggers() -> None:
    cron = APSchedulerAdapter.build_trigger(ScheduleConfig(type=ScheduleType.CRON, value="0,30 * * * *"))
    assert isinstance(cron, CronTrigger)

    interval = APSchedulerAdapter.build_trigger(ScheduleConfig(type=ScheduleType.INTERVAL, value=1800))
    assert isinstance(interval, IntervalTrigger)
    assert interval.interval.total_seconds() == 1800

    kwargs = APSchedulerAdapter.build_trigger(ScheduleConfig(type=ScheduleType.INTERVAL, value={"minutes": 2}))
    assert kwargs.interval.total_seconds() == 120


def test_invalid_cron_expression_raises() -> None:
    with pytest.raises(ValueError):
        APSchedulerAdapter.build_trigger(ScheduleConfig(type=ScheduleType.CRON, value="not a cron"))


def test_schedule_sync_registers_single_job() -> None:
    stub = StubScheduler()
    adapter = APSchedulerAdapter(scheduler=stub)  # type: ignore[arg-type]

    def job() -> None:
        return None

    adapter.schedule_sync(ScheduleConfig(), job)
    adapter.start()
    adapter.start()
    adapter.remove_sync()
    adapter.shutdown()

    registered = stub.calls[0]
    assert registered["id"] == SYNC_JOB_ID
    assert registered["callback"] is job
    assert registered["max_instances"] == 1
    assert registered["coalesce"] is True
    assert isinstance(registered["trigger"], IntervalTrigger)
    assert [call.get("event") for call in stub.calls[1:]] == ["started", "remove", "shutdown"]
    assert adapter.list_jobs() == []
