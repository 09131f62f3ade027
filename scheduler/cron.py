"""
Cron schedule evaluation on top of APScheduler's CronTrigger.

Supported expressions:

    "0 9 * * 1-5"        five fields: minute hour day month day_of_week
    "30 0 9 * * 1-5"     six fields: second + the five above
    "@never"             never fires on its own (one-off jobs)

A schedule has a RESOLUTION: one minute for five fields, one second for
six. A "slot" is a moment truncated to that resolution. The scheduler asks
"does the slot containing now match?" and uses the slot as the dedup key,
so ticking several times inside one minute never produces two runs.

Day-of-week follows standard cron (0 and 7 = Sunday, 1 = Monday).
APScheduler counts 0 as Monday, so numeric day-of-week fields are rewritten
to day names before they reach CronTrigger. Like APScheduler, a
restricted day-of-month AND a restricted day-of-week must both match.

Timezones are IANA names resolved with zoneinfo. Matching happens in the
job's timezone, DST included; slots and next-run times are reported in UTC.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

NEVER = "@never"

_DAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun"]


class InvalidCronExpression(ValueError):
    """Raised when a cron expression or timezone cannot be evaluated."""


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidCronExpression(f"Unknown timezone: {name!r}") from e


def _translate_day_of_week(field: str) -> str:
    """Rewrite numeric day-of-week parts (cron numbering) as APScheduler day names."""
    if field in ("*", "?"):
        return "*"

    out: list[str] = []
    for part in field.split(","):
        base, _, step = part.partition("/")
        if base == "*":
            low, high = 0, 6
        elif "-" in base:
            low_s, _, high_s = base.partition("-")
            if not (low_s.isdigit() and high_s.isdigit()):
                out.append(part)  # named range such as mon-fri
                continue
            low, high = int(low_s), int(high_s)
        elif base.isdigit():
            low = high = int(base)
            if step:
                high = 6
        else:
            out.append(part)  # a plain name such as sun
            continue

        if not (0 <= low <= 7 and 0 <= high <= 7) or low > high:
            raise InvalidCronExpression(f"Invalid day-of-week value: {part!r}")

        stride = int(step) if step else 1
        if stride < 1:
            raise InvalidCronExpression(f"Invalid day-of-week step: {part!r}")
        for day in range(low, high + 1, stride):
            name = _DAY_NAMES[day]
            if name not in out:
                out.append(name)
    return ",".join(out)


@dataclass(frozen=True)
class CronSchedule:
    expression: str
    timezone: str
    trigger: Optional[CronTrigger]
    resolution: timedelta

    @property
    def is_never(self) -> bool:
        return self.trigger is None

    @classmethod
    def parse(cls, expression: str, tz_name: str = "UTC") -> "CronSchedule":
        tz = resolve_timezone(tz_name or "UTC")
        expression = (expression or "").strip()
        if expression == NEVER:
            return cls(expression, tz_name, None, timedelta(minutes=1))

        fields = expression.split()
        if len(fields) == 5:
            minute, hour, day, month, day_of_week = fields
            second = "0"
            resolution = timedelta(minutes=1)
        elif len(fields) == 6:
            second, minute, hour, day, month, day_of_week = fields
            resolution = timedelta(seconds=1)
        else:
            raise InvalidCronExpression(
                f"Expected 5 or 6 fields, got {len(fields)}: {expression!r}"
            )

        day = "*" if day == "?" else day
        try:
            trigger = CronTrigger(
                second=second,
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=_translate_day_of_week(day_of_week),
                timezone=tz,
            )
        except (ValueError, TypeError) as e:
            raise InvalidCronExpression(f"Invalid cron expression {expression!r}: {e}") from e

        return cls(expression, tz_name, trigger, resolution)

    # ── Evaluation ──────────────────────────────────────────────

    def slot_for(self, moment: datetime) -> datetime:
        """The UTC slot containing `moment`, truncated to this schedule's resolution."""
        moment = moment.astimezone(timezone.utc)
        if self.resolution >= timedelta(minutes=1):
            return moment.replace(second=0, microsecond=0)
        return moment.replace(microsecond=0)

    def matches(self, moment: datetime) -> bool:
        """Does the slot containing `moment` fire under this schedule?"""
        if self.trigger is None:
            return False
        slot = self.slot_for(moment).astimezone(self.trigger.timezone)
        fire = self.trigger.get_next_fire_time(None, slot)
        return fire is not None and fire == slot

    def next_after(self, moment: datetime) -> Optional[datetime]:
        """First fire time strictly after the slot containing `moment`, in UTC."""
        if self.trigger is None:
            return None
        start = (self.slot_for(moment) + self.resolution).astimezone(self.trigger.timezone)
        fire = self.trigger.get_next_fire_time(None, start)
        return fire.astimezone(timezone.utc) if fire is not None else None


def validate_cron(expression: str, tz_name: str = "UTC") -> CronSchedule:
    """Parse or raise InvalidCronExpression. Used by the API before anything is stored."""
    return CronSchedule.parse(expression, tz_name)
