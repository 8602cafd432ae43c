"""Lazy expansion of recurrence rules into concrete instants.

The k-th instance is computed from the anchor in the occurrence's own
timezone, so a 09:00 Europe/Berlin series stays at 09:00 local across DST
changes. Monthly steps clamp to the last day of shorter months.
"""
import calendar
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional, Tuple

from src.specs.common.datetime_utils import get_zone
from src.specs.common.enums import Frequency
from src.specs.models.domain import RecurrenceRule


def _add_months(year: int, month: int, months: int) -> Tuple[int, int]:
    y, m = divmod(month - 1 + months, 12)
    return year + y, m + 1


def nth_instance(anchor: datetime, tz_name: str, rule: Optional[RecurrenceRule], k: int) -> datetime:
    if k == 0 or rule is None:
        return anchor.astimezone(timezone.utc)
    zone = get_zone(tz_name)
    local = anchor.astimezone(zone)
    step = k * rule.interval
    if rule.frequency == Frequency.DAILY:
        day = local.date() + timedelta(days=step)
    elif rule.frequency == Frequency.WEEKLY:
        day = local.date() + timedelta(weeks=step)
    else:
        year, month = _add_months(local.year, local.month, step)
        day = local.date().replace(
            year=year, month=month, day=min(local.day, calendar.monthrange(year, month)[1])
        )
    naive = datetime.combine(day, local.time().replace(tzinfo=None))
    return naive.replace(tzinfo=zone).astimezone(timezone.utc)


def iter_instances(anchor: datetime, tz_name: str, rule: Optional[RecurrenceRule]) -> Iterator[Tuple[int, datetime]]:
    """Yield ``(offset, instant)`` in order; unbounded unless ``rule.endAt`` is set.

    Callers must stop consuming at their own horizon.
    """
    if rule is None:
        yield 0, anchor.astimezone(timezone.utc)
        return
    k = 0
    while True:
        instant = nth_instance(anchor, tz_name, rule, k)
        if rule.endAt is not None and instant > rule.endAt:
            return
        yield k, instant
        k += 1
