"""Temporal expression recognition and resolution to concrete date ranges.

All ranges are resolved against an explicit reference date (the request
timestamp), never against the wall clock.
"""

import calendar
import logging
import re
from datetime import date, timedelta
from typing import Callable, List, Pattern, Tuple

from croupier.types import EntityMention, EntityType, TemporalRange

logger = logging.getLogger(__name__)

DATE_CONFIDENCE = 0.95
RANGE_CONFIDENCE = 0.9
RELATIVE_CONFIDENCE = 0.85


def _month_start(d: date) -> date:
    return d.replace(day=1)


def _month_end(d: date) -> date:
    return d.replace(day=calendar.monthrange(d.year, d.month)[1])


def _shift_months(d: date, months: int) -> date:
    """First day of the month *months* away from *d*'s month."""
    index = d.year * 12 + (d.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def _quarter_start(d: date) -> date:
    return date(d.year, 3 * ((d.month - 1) // 3) + 1, 1)


def _week_start(d: date) -> date:
    return d - timedelta(days=d.weekday())


_UNIT_DAYS = {"day": 1, "week": 7}


def _named(unit: str, which: str, today: date) -> TemporalRange:
    if unit == "week":
        start = _week_start(today)
        if which == "last":
            return TemporalRange(start=start - timedelta(days=7), end=start - timedelta(days=1), granularity="week")
        return TemporalRange(start=start, end=today, granularity="week")
    if unit == "month":
        if which == "last":
            start = _shift_months(today, -1)
            return TemporalRange(start=start, end=_month_end(start), granularity="month")
        return TemporalRange(start=_month_start(today), end=today, granularity="month")
    if unit == "quarter":
        start = _quarter_start(today)
        if which == "last":
            prev = _shift_months(start, -3)
            return TemporalRange(start=prev, end=start - timedelta(days=1), granularity="quarter")
        return TemporalRange(start=start, end=today, granularity="quarter")
    # year
    if which == "last":
        return TemporalRange(
            start=date(today.year - 1, 1, 1), end=date(today.year - 1, 12, 31), granularity="year"
        )
    return TemporalRange(start=date(today.year, 1, 1), end=today, granularity="year")


def _last_n(count: int, unit: str, today: date) -> TemporalRange:
    if unit == "month":
        target = _shift_months(today, -count)
        start = target.replace(day=min(today.day, calendar.monthrange(target.year, target.month)[1]))
    else:
        start = today - timedelta(days=count * _UNIT_DAYS[unit])
    return TemporalRange(start=start, end=today, granularity=unit)


_Resolver = Callable[[re.Match, date], TemporalRange]

# (pattern, resolver, confidence), most specific first.
_PATTERNS: List[Tuple[Pattern, _Resolver, float]] = [
    (
        re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b"),
        lambda m, t: _single(date(int(m.group(1)), int(m.group(2)), int(m.group(3)))),
        DATE_CONFIDENCE,
    ),
    (
        re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b"),
        lambda m, t: _single(date(int(m.group(3)), int(m.group(2)), int(m.group(1)))),
        DATE_CONFIDENCE,
    ),
    (
        re.compile(r"\b(?:last|past|previous)\s+(\d{1,4})\s+(day|week|month)s?\b", re.I),
        lambda m, t: _last_n(int(m.group(1)), m.group(2).lower(), t),
        RELATIVE_CONFIDENCE,
    ),
    (
        re.compile(r"\b(this|current|last|previous|past)\s+(week|month|quarter|year)\b", re.I),
        lambda m, t: _named(
            m.group(2).lower(),
            "this" if m.group(1).lower() in ("this", "current") else "last",
            t,
        ),
        RANGE_CONFIDENCE,
    ),
    (
        re.compile(r"\b(?:year[\s-]to[\s-]date|ytd)\b", re.I),
        lambda m, t: TemporalRange(start=date(t.year, 1, 1), end=t, granularity="year"),
        RANGE_CONFIDENCE,
    ),
    (
        re.compile(r"\b(?:month[\s-]to[\s-]date|mtd)\b", re.I),
        lambda m, t: TemporalRange(start=_month_start(t), end=t, granularity="month"),
        RANGE_CONFIDENCE,
    ),
    (
        re.compile(r"\btoday\b", re.I),
        lambda m, t: _single(t),
        RANGE_CONFIDENCE,
    ),
    (
        re.compile(r"\byesterday\b", re.I),
        lambda m, t: _single(t - timedelta(days=1)),
        RANGE_CONFIDENCE,
    ),
    (
        re.compile(r"\b(?:in|during|for|of|since)\s+((?:19|20)\d{2})\b", re.I),
        lambda m, t: TemporalRange(
            start=date(int(m.group(1)), 1, 1),
            end=date(int(m.group(1)), 12, 31),
            granularity="year",
            is_relative=False,
        ),
        RELATIVE_CONFIDENCE,
    ),
]


def _single(d: date) -> TemporalRange:
    return TemporalRange(start=d, end=d, granularity="day", is_relative=False)


def extract_temporal(text: str, today: date) -> List[EntityMention]:
    """Find temporal expressions in *text* and resolve them against *today*.

    Invalid calendar dates (e.g. 31/02/2024) are skipped.
    """
    mentions: List[EntityMention] = []
    for pattern, resolve, confidence in _PATTERNS:
        for match in pattern.finditer(text):
            try:
                resolved = resolve(match, today)
            except ValueError:
                logger.debug("Skipping invalid date expression '%s'", match.group(0))
                continue
            surface = match.group(0)
            mentions.append(
                EntityMention(
                    entity_type=EntityType.TEMPORAL,
                    text=surface,
                    start=match.start(),
                    end=match.end(),
                    confidence=confidence,
                    normalized_value=f"{resolved.start.isoformat()}..{resolved.end.isoformat()}",
                    subtype=resolved.granularity,
                    temporal_range=resolved,
                )
            )
    return mentions
