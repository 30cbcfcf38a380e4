from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
import pytest

from backup_lifecycle.backend.services.lifecycle.schedule_trigger import (
    CUSTOM_SCHEDULE_DESCRIPTION,
    JOB_ID,
    APSchedulerTrigger,
    build_cron_trigger,
    describe_cron,
)


def test_build_cron_trigger_fires_saturday_midnight_utc():
    trigger = build_cron_trigger("0 0 * * 6")

    fire = trigger.get_next_fire_time(None, datetime(2024, 1, 3, 12, 0, tzinfo=timezone.utc))

    assert fire == datetime(2024, 1, 6, 0, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("expr", ["", "0 0 * *", "0 0 * * * *", "61 0 * * *", "a b c d e"])
def test_build_cron_trigger_rejects_invalid(expr):
    with pytest.raises(ValueError):
        build_cron_trigger(expr)


@pytest.mark.parametrize(
    "expr, description",
    [
        ("0 0 * * 6", "Saturdays at 12:00 AM"),
        ("0  0 * *  *", "Daily at 12:00 AM"),
        ("*/15 * * * *", CUSTOM_SCHEDULE_DESCRIPTION),
    ],
)
def test_describe_cron(expr, description):
    assert describe_cron(expr) == description


@pytest.fixture
def scheduler():
    sched = BackgroundScheduler(timezone="UTC")
    yield sched
    if sched.running:
        sched.shutdown(wait=False)


def test_register_replaces_previous_job(scheduler):
    trigger = APSchedulerTrigger(scheduler)

    trigger.register("0 0 * * 6", lambda: None)
    trigger.register("0 3 * * *", lambda: None)

    assert scheduler.running
    assert [job.id for job in scheduler.get_jobs()] == [JOB_ID]
    fire = trigger.next_fire_time()
    assert fire is not None
    assert (fire.hour, fire.minute) == (3, 0)


def test_unregister_is_idempotent(scheduler):
    trigger = APSchedulerTrigger(scheduler)
    trigger.register("0 0 * * 6", lambda: None)

    trigger.unregister()
    trigger.unregister()

    assert trigger.next_fire_time() is None
    assert scheduler.get_jobs() == []


def test_register_invalid_expression_schedules_nothing(scheduler):
    trigger = APSchedulerTrigger(scheduler)

    with pytest.raises(ValueError):
        trigger.register("not a cron", lambda: None)

    assert scheduler.get_jobs() == []


def test_shutdown_stops_scheduler(scheduler):
    trigger = APSchedulerTrigger(scheduler)
    trigger.register("0 0 * * 6", lambda: None)

    trigger.shutdown()
    trigger.shutdown()

    assert not scheduler.running
