"""Tests for timer recurrence building."""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from areaflow.errors import ValidationError
from areaflow.scheduler import RecurrenceKind, build_recurrence, to_trigger
from areaflow.scheduler.recurrence import validate_cron_expression


class TestBuildRecurrence:
    """Tests for mapping timer kinds to cron expressions."""

    def test_every_hour(self):
        rec = build_recurrence("every_hour", {})
        assert rec.kind == RecurrenceKind.EVERY_HOUR
        assert rec.cron_expression == "0 * * * *"
        assert rec.timezone == "UTC"

    def test_every_day_default_time(self):
        assert build_recurrence("every_day", {}).cron_expression == "0 9 * * *"

    def test_every_day_custom_time(self):
        assert build_recurrence("every_day", {"time": "18:30"}).cron_expression == "30 18 * * *"

    def test_every_week(self):
        rec = build_recurrence("every_week", {"day": "5", "time": "07:15"})
        assert rec.cron_expression == "15 7 * * 5"

    def test_every_week_defaults_to_monday(self):
        assert build_recurrence("every_week", {}).cron_expression == "0 9 * * 1"

    @pytest.mark.parametrize(
        "minutes, expected",
        [(1, "*/1 * * * *"), (15, "*/15 * * * *"), (60, "0 */1 * * *"), (180, "0 */3 * * *")],
    )
    def test_interval(self, minutes, expected):
        assert build_recurrence("interval", {"intervalMinutes": minutes}).cron_expression == (
            expected
        )

    @pytest.mark.parametrize("minutes", [0, -5, 1440, 90, "soon", None])
    def test_interval_rejected(self, minutes):
        with pytest.raises(ValidationError):
            build_recurrence("interval", {"intervalMinutes": minutes})

    def test_custom_normalizes_whitespace(self):
        rec = build_recurrence("custom", {"cronExpression": "  */5   *  * * 1-5 "})
        assert rec.cron_expression == "*/5 * * * 1-5"

    def test_custom_requires_expression(self):
        with pytest.raises(ValidationError) as exc:
            build_recurrence("scheduled_time", {})
        assert exc.value.field == "cronExpression"

    def test_timezone_from_config_and_default(self):
        assert build_recurrence("every_hour", {"timezone": "Asia/Tokyo"}).timezone == "Asia/Tokyo"
        assert build_recurrence("every_hour", {}, "Europe/Paris").timezone == "Europe/Paris"

    @pytest.mark.parametrize(
        "kind, config",
        [
            ("every_day", {"time": "25:00"}),
            ("every_day", {"time": "noon"}),
            ("every_week", {"day": "7"}),
            ("every_hour", {"timezone": "Mars/Olympus"}),
            ("fortnightly", {}),
        ],
    )
    def test_invalid_config(self, kind, config):
        with pytest.raises(ValidationError):
            build_recurrence(kind, config)


class TestCronExpressions:
    """Tests for cron validation and trigger building."""

    @pytest.mark.parametrize(
        "expression", ["* * * *", "60 * * * *", "0 24 * * *", "0 9 * * 8", "a b c d e"]
    )
    def test_invalid(self, expression):
        with pytest.raises(ValidationError):
            validate_cron_expression(expression)

    def test_sunday_is_zero(self):
        trigger = to_trigger(build_recurrence("custom", {"cronExpression": "0 9 * * 0"}))
        start = datetime(2024, 1, 1, tzinfo=ZoneInfo("UTC"))  # a Monday
        fire = trigger.get_next_fire_time(None, start)
        assert fire.weekday() == 6
        assert (fire.day, fire.hour) == (7, 9)

    def test_weekday_range(self):
        trigger = to_trigger(build_recurrence("custom", {"cronExpression": "0 9 * * 1-5"}))
        start = datetime(2024, 1, 6, 10, tzinfo=ZoneInfo("UTC"))  # Saturday
        assert trigger.get_next_fire_time(None, start).day == 8

    def test_trigger_uses_timezone(self):
        rec = build_recurrence("every_day", {"time": "09:00", "timezone": "Europe/Paris"})
        start = datetime(2024, 6, 1, tzinfo=ZoneInfo("UTC"))
        fire = to_trigger(rec).get_next_fire_time(None, start)
        assert fire.astimezone(ZoneInfo("UTC")).hour == 7
