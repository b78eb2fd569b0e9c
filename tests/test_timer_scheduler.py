"""Tests for the timer scheduler."""

from unittest.mock import patch

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from areaflow.errors import RuleNotFoundError
from areaflow.scheduler import TimerScheduler, job_id_for

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def background():
    """A scheduler that is never started, so jobs stay pending."""
    return BackgroundScheduler()


@pytest.fixture
def timers(repository, dispatcher, background):
    sched = TimerScheduler(repository, dispatcher, default_timezone="UTC", scheduler=background)
    yield sched
    sched.shutdown()


@pytest.fixture
def make_timer_rule(make_rule):
    def _make(kind="every_hour", config=None, text="Tick {{timer.ruleName}}", **kwargs):
        return make_rule(
            action_provider="timer",
            action_kind=kind,
            action_filter=config or {},
            parameters={"text": text},
            **kwargs,
        )

    return _make


def job_count(scheduler, rule_id):
    return len([job for job in scheduler.get_jobs() if job.id == job_id_for(rule_id)])


# =============================================================================
# Scheduling
# =============================================================================


class TestSchedule:
    """Tests for keeping one job per enabled timer rule."""

    def test_schedule_enabled_rule(self, timers, make_timer_rule, background):
        rule = make_timer_rule()
        assert timers.schedule(rule) is True
        assert timers.is_scheduled(rule.id)
        assert job_count(background, rule.id) == 1

    def test_disabled_rule_not_scheduled(self, timers, make_timer_rule):
        rule = make_timer_rule(enabled=False)
        assert timers.schedule(rule) is False
        assert not timers.is_scheduled(rule.id)

    def test_non_timer_rule_not_scheduled(self, timers, make_rule):
        rule = make_rule()
        assert timers.schedule(rule) is False

    def test_invalid_recurrence_is_logged_not_raised(self, timers, make_timer_rule):
        rule = make_timer_rule(kind="interval", config={"intervalMinutes": 90})
        assert timers.schedule(rule) is False
        assert not timers.is_scheduled(rule.id)

    def test_rescheduling_replaces_job(self, timers, make_timer_rule, background):
        rule = make_timer_rule()
        timers.schedule(rule)
        timers.schedule(rule)
        assert job_count(background, rule.id) == 1

    def test_enable_disable_enable_leaves_one_job(
        self, timers, make_timer_rule, repository, background
    ):
        rule = make_timer_rule()
        timers.update(rule)
        timers.update(repository.update(rule.id, {"enabled": False}))
        assert job_count(background, rule.id) == 0

        timers.update(repository.update(rule.id, {"enabled": True}))
        assert job_count(background, rule.id) == 1

    def test_cancel(self, timers, make_timer_rule):
        rule = make_timer_rule()
        timers.schedule(rule)
        assert timers.cancel(rule.id) is True
        assert timers.cancel(rule.id) is False
        assert not timers.is_scheduled(rule.id)

    def test_start_schedules_enabled_timer_rules(self, repository, dispatcher, make_timer_rule):
        on = make_timer_rule()
        off = make_timer_rule(enabled=False)
        sched = TimerScheduler(repository, dispatcher)
        try:
            sched.start()
            assert sched.scheduler.running
            assert sched.is_scheduled(on.id)
            assert not sched.is_scheduled(off.id)
            assert sched.get_jobs()[0]["next_run"] is not None
        finally:
            sched.shutdown()
        assert not sched.scheduler.running

    def test_get_jobs_filters_by_owner(self, timers, make_timer_rule):
        timers.schedule(make_timer_rule(owner_id="alice"))
        timers.schedule(make_timer_rule(owner_id="bob", kind="every_day"))

        jobs = timers.get_jobs(owner_id="bob")

        assert len(jobs) == 1
        assert jobs[0]["kind"] == "every_day"
        assert jobs[0]["cron_expression"] == "0 9 * * *"
        assert jobs[0]["timezone"] == "UTC"


# =============================================================================
# Firing
# =============================================================================


class TestFire:
    """Tests for timer firings."""

    def test_tick_renders_rule_name(self, timers, make_timer_rule, chat):
        rule = make_timer_rule(name="hourly")
        timers.schedule(rule)

        outcomes = timers.fire(rule.id)

        assert [o.ok for o in outcomes] == [True]
        assert chat.sent == [{"text": "Tick hourly"}]

    def test_payload_fields(self, timers, make_timer_rule, chat):
        rule = make_timer_rule(
            kind="every_day",
            config={"time": "08:00", "timezone": "Europe/Paris"},
            text="{{timer.cronExpression}}|{{timer.timezone}}|{{timer.ruleId}}",
        )
        timers.fire(rule.id)

        assert chat.sent == [{"text": f"0 8 * * *|Europe/Paris|{rule.id}"}]
        assert "triggeredAt" in chat.payloads[0]["timer"]

    def test_fires_every_rule_sharing_the_kind(self, timers, make_timer_rule, chat):
        first = make_timer_rule(text="one")
        make_timer_rule(text="two")
        make_timer_rule(text="off", enabled=False)
        make_timer_rule(kind="every_day", text="daily")

        outcomes = timers.fire(first.id)

        assert len(outcomes) == 2
        assert sorted(m["text"] for m in chat.sent) == ["one", "two"]

    def test_deleted_rule_cancels_timer(self, timers, make_timer_rule, repository):
        rule = make_timer_rule()
        timers.schedule(rule)
        repository.delete(rule.id)

        with pytest.raises(RuleNotFoundError):
            timers.fire(rule.id)
        assert not timers.is_scheduled(rule.id)

    def test_job_callback_swallows_errors(self, timers, make_timer_rule):
        rule = make_timer_rule()
        with patch.object(timers, "fire", side_effect=RuntimeError("boom")):
            timers._run_job(rule.id)

    def test_reaction_failure_is_reported(self, timers, make_timer_rule, repository):
        rule = make_timer_rule(text="fail")

        outcomes = timers.fire(rule.id)

        assert not outcomes[0].ok
        assert repository.get(rule.id).last_triggered is None
