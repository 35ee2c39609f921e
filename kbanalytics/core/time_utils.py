#!/usr/bin/env python3
"""
Time handling utilities for kbanalytics.
Centralizes time bucket definitions and time range parsing.
"""

from typing import Dict, Optional, Tuple
from types import MappingProxyType
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import re

from .errors import InvalidGranularity

logger = logging.getLogger('kbanalytics.time_utils')


@dataclass(frozen=True)
class Granularity:
    """A time bucket: DuckDB date_trunc() unit plus strftime() label format"""
    name: str
    trunc_unit: str
    display_format: str
    label_shape: str


# %W numbers weeks from the first Monday (C strftime), which is not ISO-8601
GRANULARITIES = MappingProxyType({
    'hour': Granularity('hour', 'hour', '%Y-%m-%dT%H', 'YYYY-MM-DDTHH'),
    'day': Granularity('day', 'day', '%Y-%m-%d', 'YYYY-MM-DD'),
    'week': Granularity('week', 'week', '%Y-W%W', 'YYYY-"W"WW'),
    'month': Granularity('month', 'month', '%Y-%m', 'YYYY-MM'),
})

DEFAULT_GRANULARITY = 'day'


def get_granularity(granularity: str) -> Granularity:
    try:
        return GRANULARITIES[granularity]
    except (KeyError, TypeError):
        raise InvalidGranularity(granularity, GRANULARITIES.keys()) from None


def trunc_unit(granularity: str) -> str:
    """date_trunc() unit for a granularity keyword"""
    return get_granularity(granularity).trunc_unit


def display_format(granularity: str) -> str:
    """strftime() format of the bucket label for a granularity keyword"""
    return get_granularity(granularity).display_format


def bucket_select_sql(granularity: str, column: str = 'ts') -> Tuple[str, str]:
    """
    Get SQL fragments for time bucketing.

    Args:
        granularity: One of hour, day, week, month
        column: Timestamp column to bucket

    Returns:
        Tuple of (label_expr, group_expr) SQL fragments
    """
    g = get_granularity(granularity)
    group_expr = f"date_trunc('{g.trunc_unit}', {column})"
    label_expr = f"strftime({group_expr}, '{g.display_format}')"
    return label_expr, group_expr


@dataclass(frozen=True)
class TimeParseResult:
    """Result of parsing a time specification."""
    timestamp: datetime
    is_relative: bool
    has_explicit_sign: bool


_RELATIVE_COMPONENT_RE = re.compile(r'([+\-]?\d+(?:\.\d*)?)([a-z]+)')
_RELATIVE_UNITS_IN_SECONDS: Dict[str, float] = {
    's': 1.0, 'sec': 1.0, 'secs': 1.0, 'second': 1.0, 'seconds': 1.0,
    'm': 60.0, 'min': 60.0, 'mins': 60.0, 'minute': 60.0, 'minutes': 60.0,
    'h': 3600.0, 'hr': 3600.0, 'hrs': 3600.0, 'hour': 3600.0, 'hours': 3600.0,
    'd': 86400.0, 'day': 86400.0, 'days': 86400.0,
    'w': 604800.0, 'week': 604800.0, 'weeks': 604800.0,
}


def _parse_relative_offset(spec: str) -> Optional[Tuple[timedelta, bool]]:
    """Parse offsets like '5min', '-2h30m' or '3 days ago'."""
    cleaned = spec.strip().lower()

    has_ago = cleaned.endswith('ago')
    if has_ago:
        cleaned = cleaned[:-3]

    compact = cleaned.replace(' ', '')
    if not compact:
        return None

    total_seconds = 0.0
    explicit_sign = has_ago
    cursor = 0

    for match in _RELATIVE_COMPONENT_RE.finditer(compact):
        if match.start() != cursor:
            return None
        cursor = match.end()

        raw_value, unit_key = match.groups()
        unit_seconds = _RELATIVE_UNITS_IN_SECONDS.get(unit_key)
        if unit_seconds is None:
            return None

        total_seconds += float(raw_value) * unit_seconds
        if raw_value[0] in '+-':
            explicit_sign = True

    if cursor == 0 or cursor != len(compact):
        return None

    delta = timedelta(seconds=total_seconds)
    return (-delta if has_ago else delta), explicit_sign


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def parse_time_spec(time_str: str, now: Optional[datetime] = None) -> TimeParseResult:
    """
    Parse a time specification into an absolute UTC timestamp.

    Accepts 'now', 'today', 'yesterday', relative offsets ('-1h', '30min',
    '2 days ago'; unsigned offsets count backwards) and ISO-8601 dates or
    timestamps. Naive timestamps are taken as UTC.

    Raises:
        ValueError: if the specification cannot be parsed
    """
    if time_str is None:
        raise ValueError("Time string cannot be None")

    spec = time_str.strip()
    if not spec:
        raise ValueError("Time string cannot be empty")

    reference = _as_utc(now) if now else datetime.now(timezone.utc)
    lower_spec = spec.lower()

    if lower_spec == 'now':
        return TimeParseResult(reference, True, True)

    if lower_spec in ('today', 'yesterday'):
        day = reference.replace(hour=0, minute=0, second=0, microsecond=0)
        if lower_spec == 'yesterday':
            day -= timedelta(days=1)
        return TimeParseResult(day, True, True)

    relative = _parse_relative_offset(spec)
    if relative:
        delta, explicit = relative
        timestamp = reference + delta if explicit else reference - delta
        return TimeParseResult(timestamp, True, explicit)

    iso_spec = spec[:-1] + '+00:00' if spec[-1] in 'zZ' else spec
    try:
        return TimeParseResult(_as_utc(datetime.fromisoformat(iso_spec)), False, False)
    except ValueError:
        pass

    raise ValueError(f"Cannot parse time: {time_str}")


def resolve_time_range(
    from_spec: Optional[str],
    to_spec: Optional[str],
    now: Optional[datetime] = None,
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Resolve --from/--to specifications into concrete bounds.

    A relative `from` without a `to` pins the upper bound to `now`.
    """
    reference = (_as_utc(now) if now else datetime.now(timezone.utc)).replace(microsecond=0)

    from_result = parse_time_spec(from_spec, now=reference) if from_spec else None
    to_result = parse_time_spec(to_spec, now=reference) if to_spec else None

    low_time = from_result.timestamp if from_result else None
    high_time = to_result.timestamp if to_result else None

    if from_result and from_result.is_relative and not to_result:
        high_time = reference
        logger.debug("Relative --from without --to, upper bound set to now")

    return low_time, high_time
