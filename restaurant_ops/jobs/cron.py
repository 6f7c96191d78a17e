"""Validated six-field cron schedules.

Expressions carry six fields, seconds first::

    second minute hour day-of-month month day-of-week

Parsing happens once at construction, producing an APScheduler ``CronTrigger``
bound to an IANA zone. A bad field or unknown zone raises ``ScheduleConfigError``
immediately instead of on first fire.

Day-of-week accepts cron numbering (0 or 7 = Sunday) and names. Numbers are
translated to names because APScheduler counts Monday as 0. Ranges that wrap
past Saturday (``5-1``) are not supported; list the days instead.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

from restaurant_ops.exceptions import ScheduleConfigError

FIELD_NAMES = ("second", "minute", "hour", "day", "month", "day_of_week")

_CRON_DOW_NAMES = {0: "sun", 1: "mon", 2: "tue", 3: "wed", 4: "thu", 5: "fri", 6: "sat", 7: "sun"}
_DIGITS = re.compile(r"\d+")


def _translate_day_of_week(expr: str) -> str:
    def _name(match: re.Match[str]) -> str:
        value = int(match.group(0))
        if value not in _CRON_DOW_NAMES:
            raise ScheduleConfigError(f"Day-of-week value out of range: {value}")
        return _CRON_DOW_NAMES[value]

    parts = []
    for part in expr.split(","):
        # "*/2" is a step, not a weekday number
        base, sep, step = part.partition("/")
        parts.append(_DIGITS.sub(_name, base) + sep + step)
    return ",".join(parts)


def load_timezone(name: str) -> ZoneInfo:
    if not name or not name.strip():
        raise ScheduleConfigError("Timezone must be a non-empty IANA zone name")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ScheduleConfigError(f"Unknown timezone '{name}'") from e


@dataclass(frozen=True)
class CronSchedule:
    expression: str
    timezone: str
    fields: dict[str, str] = field(compare=False)
    trigger: CronTrigger = field(compare=False, repr=False)

    @classmethod
    def parse(cls, expression: str, timezone: str) -> "CronSchedule":
        if not isinstance(expression, str):
            raise ScheduleConfigError("Cron expression must be a string")
        tokens = expression.split()
        if len(tokens) != len(FIELD_NAMES):
            raise ScheduleConfigError(
                f"Cron expression '{expression}' must have {len(FIELD_NAMES)} fields "
                f"(second minute hour day month day_of_week), got {len(tokens)}"
            )
        tz = load_timezone(timezone)
        fields = dict(zip(FIELD_NAMES, tokens))
        trigger_fields = dict(fields)
        trigger_fields["day_of_week"] = _translate_day_of_week(fields["day_of_week"])
        try:
            trigger = CronTrigger(timezone=tz, **trigger_fields)
        except ValueError as e:
            raise ScheduleConfigError(f"Invalid cron expression '{expression}': {e}") from e
        return cls(expression=expression, timezone=timezone, fields=fields, trigger=trigger)

    def next_fire_time(self, after: datetime) -> datetime | None:
        """First fire time strictly after ``after`` (aware), in the schedule's zone."""
        if after.tzinfo is None:
            raise ValueError("next_fire_time requires a timezone-aware datetime")
        # CronTrigger treats `now` inclusively and rounds up to whole seconds.
        start = after.astimezone(self.trigger.timezone) + timedelta(microseconds=1)
        return self.trigger.get_next_fire_time(None, start)

    def describe(self) -> dict[str, object]:
        return {"expression": self.expression, "timezone": self.timezone, "fields": dict(self.fields)}


__all__ = ["CronSchedule", "FIELD_NAMES", "load_timezone"]
