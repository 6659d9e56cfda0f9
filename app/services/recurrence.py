# FILE: app/services/recurrence.py
from __future__ import annotations

import math
from datetime import date, timedelta
from fractions import Fraction
from typing import Any, Iterator, List, Optional, Tuple

from app.models.prescription import RecurrenceType, DoseSlot, SLOT_ORDER
from app.services.errors import InvalidRule


# ------------------------------------------------------------
# Pure recurrence arithmetic. No session, no clock: callers pass
# the dates in. Rules are read by attribute so ORM rows, schemas
# and plain objects all work.
# ------------------------------------------------------------

RECURRENCE_TYPES = {t.value for t in RecurrenceType}


def day_of_week(d: date) -> int:
    """0=Sunday .. 6=Saturday (isoweekday has Monday=1, Sunday=7)."""
    return d.isoweekday() % 7


def validate_rule(
    *,
    morning_count: int,
    afternoon_count: int,
    evening_count: int,
    recurrence_type: str,
    recurrence_interval: int,
    recurrence_day_of_week: Optional[int] = None,
) -> None:
    """
    Reject malformed dosing rules before they are stored.
    Raises InvalidRule with a user-facing message.
    """
    if recurrence_type not in RECURRENCE_TYPES:
        raise InvalidRule(
            f"Invalid recurrence type '{recurrence_type}'. Allowed: {', '.join(sorted(RECURRENCE_TYPES))}"
        )

    counts = (morning_count, afternoon_count, evening_count)
    if any(c is None or int(c) < 0 for c in counts):
        raise InvalidRule("Counts cannot be negative")
    if all(int(c) == 0 for c in counts):
        raise InvalidRule("At least one count must be greater than 0")

    if recurrence_interval is None or int(recurrence_interval) <= 0:
        raise InvalidRule("Recurrence interval must be a positive number")

    if recurrence_type == RecurrenceType.WEEKLY.value:
        if recurrence_day_of_week is None:
            raise InvalidRule("Day of week is required for weekly recurrence")
        if not 0 <= int(recurrence_day_of_week) <= 6:
            raise InvalidRule("Day of week must be between 0 (Sunday) and 6 (Saturday)")


def is_due(rule: Any, target_date: date) -> bool:
    """
    Is the rule active on target_date?

    daily / interval: every `recurrence_interval` days from the anchor.
    weekly: on `recurrence_day_of_week`, every `recurrence_interval` weeks,
            weeks counted in whole 7-day blocks from the anchor.
    Nothing is due before the anchor.
    """
    anchor: date = rule.anchor_date
    if target_date < anchor:
        return False

    days = (target_date - anchor).days
    interval = int(rule.recurrence_interval)
    rtype = rule.recurrence_type
    if isinstance(rtype, RecurrenceType):
        rtype = rtype.value

    if rtype == RecurrenceType.WEEKLY.value:
        if day_of_week(target_date) != rule.recurrence_day_of_week:
            return False
        return (days // 7) % interval == 0

    # daily and interval share the same arithmetic
    return days % interval == 0


def due_dates(rule: Any, start: date, end: date) -> List[date]:
    """All dates in [start, end] on which the rule is due."""
    out: List[date] = []
    d = start
    while d <= end:
        if is_due(rule, d):
            out.append(d)
        d += timedelta(days=1)
    return out


def slot_counts(rule: Any) -> Iterator[Tuple[DoseSlot, int]]:
    """Non-zero (slot, tablets) pairs in morning/afternoon/evening order."""
    for slot in SLOT_ORDER:
        count = int(getattr(rule, f"{slot.value}_count") or 0)
        if count > 0:
            yield slot, count


def weekly_multiplier(rule: Any) -> Fraction:
    """
    Doses a rule produces in one week.
    daily: 7 / interval, interval: ceil(7 / interval), weekly: 1.
    """
    rtype = rule.recurrence_type
    if isinstance(rtype, RecurrenceType):
        rtype = rtype.value
    interval = int(rule.recurrence_interval)

    if rtype == RecurrenceType.WEEKLY.value:
        return Fraction(1)
    if rtype == RecurrenceType.INTERVAL.value:
        return Fraction(math.ceil(Fraction(7, interval)))
    return Fraction(7, interval)


def refill_tablets(rule: Any, count: int) -> int:
    """Tablets to hand out for one week of a slot taking `count` per dose (whole tablets, rounded up)."""
    return math.ceil(int(count) * weekly_multiplier(rule))
