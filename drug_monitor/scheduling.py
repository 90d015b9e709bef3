"""Cron trigger for scheduled drug checks (APScheduler)."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

if TYPE_CHECKING:
    from .monitor import DrugMonitor

logger = logging.getLogger(__name__)

JOB_ID = "drug-check"

# Crontab weekday numbers: 0 and 7 are both Sunday.
_CRONTAB_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")

_NUMERIC_WEEKDAY_RE = re.compile(r"(?P<base>\*|\d+(?:-\d+)?)(?:/(?P<step>\d+))?")


def _weekday_number(value: str) -> int:
    number = int(value)
    if number > 7:
        raise ValueError(f"weekday {number} is out of range (0-7)")
    return number


def translate_weekdays(field: str) -> str:
    """Rewrite numeric crontab weekdays as day names.

    APScheduler counts weekdays from Monday = 0, crontab from Sunday = 0 (or
    7).  Numeric values, ranges, lists and steps are expanded into names;
    tokens that already use names pass through unchanged.
    """
    if field == "*":
        return field

    names: List[str] = []
    for token in field.split(","):
        match = _NUMERIC_WEEKDAY_RE.fullmatch(token)
        if match is None:
            names.append(token)
            continue

        base, step = match.group("base"), int(match.group("step") or 1)
        if step == 0:
            raise ValueError(f"step must be positive in weekday field {field!r}")
        if base == "*":
            first, last = 0, 6
        elif "-" in base:
            first, last = (_weekday_number(v) for v in base.split("-"))
            if first > last:
                raise ValueError(f"weekday range {base!r} is reversed")
        else:
            first = _weekday_number(base)
            last = max(first, 6) if match.group("step") else first

        for number in range(first, last + 1, step):
            name = _CRONTAB_WEEKDAYS[number]
            if name not in names:
                names.append(name)
    return ",".join(names)


def build_cron_trigger(expression: str, timezone: Optional[str] = None) -> CronTrigger:
    """Build a CronTrigger from a crontab expression.

    Accepts the standard five fields (minute hour day month weekday) or six
    fields with a leading seconds field.  Weekdays use crontab numbering.
    Raises ValueError for anything else.
    """
    fields = (expression or "").split()
    if len(fields) not in (5, 6):
        raise ValueError(f"expected 5 or 6 fields, got {len(fields)}")
    if len(fields) == 5:
        fields.insert(0, "0")

    second, minute, hour, day, month, day_of_week = fields
    return CronTrigger(
        second=second,
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=translate_weekdays(day_of_week),
        timezone=timezone,
    )


def start_scheduler(
    monitor: "DrugMonitor",
    expression: str,
    timezone: Optional[str] = None,
) -> BackgroundScheduler:
    """Start a background scheduler that calls monitor.run_checks on `expression`."""
    options = {
        "job_defaults": {
            "coalesce": True,
            # overlapping fires reach DrugMonitor, which logs and skips them
            "max_instances": 2,
            "misfire_grace_time": 60,
        },
    }
    if timezone:
        options["timezone"] = timezone
    scheduler = BackgroundScheduler(**options)
    scheduler.add_job(
        func=_scheduled_run,
        args=(monitor,),
        trigger=build_cron_trigger(expression, timezone=timezone),
        id=JOB_ID,
        name="Scheduled drug check",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started: %s", expression)
    return scheduler


def _scheduled_run(monitor: "DrugMonitor") -> None:
    logger.info("CRON: starting scheduled check")
    monitor.run_checks()


__all__ = ["JOB_ID", "build_cron_trigger", "start_scheduler", "translate_weekdays"]
