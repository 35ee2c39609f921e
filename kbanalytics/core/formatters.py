#!/usr/bin/env python3
"""
Formatting utilities for analytics query output.
Handles table and JSON output formats.
"""

import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import PurePath
from typing import Any, Dict, List, Optional, Sequence

from tabulate import tabulate

from .query_engine import DailyStats, EventsResponse, EventsStats


def _json_default(obj):
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, PurePath):
        return str(obj)
    if is_dataclass(obj):
        return asdict(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _short(value: Any, width: int) -> str:
    text = '' if value is None else str(value)
    if len(text) > width:
        return text[:width - 1] + '…'
    return text


class TableFormatter:
    """Format analytics results as tables (via tabulate) or JSON"""

    def __init__(self, tablefmt: str = 'grid', max_width: int = 60):
        self.tablefmt = tablefmt
        self.max_width = max_width

    def format_rows(self, data: List[Dict[str, Any]], columns: Sequence[str]) -> str:
        """Generic table for raw query rows"""
        if not data:
            return "No data found for the specified criteria."
        rows = [[row.get(col) for col in columns] for row in data]
        return tabulate(rows, headers=list(columns), tablefmt=self.tablefmt)

    def format_daily_stats(self, stats: List[DailyStats], metric_names: Sequence[str],
                           with_breakdown: bool = False) -> str:
        """Bucket table; the breakdown column is shown whenever one was requested"""
        if not stats:
            return "No data found for the specified criteria."

        headers = ['date']
        if with_breakdown:
            headers.append('breakdown')
        headers.append('count')
        headers.extend(metric_names)

        rows = []
        for s in stats:
            row = [s.date]
            if with_breakdown:
                row.append(_short(s.breakdown, self.max_width))
            row.append(s.count)
            row.extend(s.metrics.get(name) for name in metric_names)
            rows.append(row)

        return tabulate(rows, headers=headers, tablefmt=self.tablefmt, floatfmt='.4g')

    def format_events(self, response: EventsResponse) -> str:
        if not response.events:
            return "No events found for the specified criteria."

        headers = ['ts', 'type', 'product', 'actor', 'payload']
        rows = []
        for e in response.events:
            actor = (e.actor.id or e.actor.type) if e.actor else ''
            payload = json.dumps(e.payload, sort_keys=True) if e.payload else ''
            rows.append([e.ts, e.type, e.source.product, actor, _short(payload, self.max_width)])

        footer = f"\n{len(response.events)} of {response.total} events"
        if response.has_more:
            footer += " (more available)"
        return tabulate(rows, headers=headers, tablefmt=self.tablefmt) + footer

    def format_summary(self, stats: EventsStats) -> str:
        lines = [
            f"Total events: {stats.total_events}",
            f"Time range:   {stats.time_range.get('from') or '-'} to {stats.time_range.get('to') or '-'}",
        ]
        for title, counts in (('type', stats.by_type),
                              ('source', stats.by_source),
                              ('actor', stats.by_actor)):
            if counts:
                rows = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
                lines.append("")
                lines.append(tabulate(rows, headers=[title, 'events'], tablefmt=self.tablefmt))
        return "\n".join(lines)

    def format_json(self, data: Any, indent: Optional[int] = 2) -> str:
        """Format as JSON; dataclasses, Decimals and datetimes are converted"""
        if is_dataclass(data) and not isinstance(data, type):
            data = asdict(data)
        elif isinstance(data, list):
            data = [asdict(item) if is_dataclass(item) and not isinstance(item, type) else item
                    for item in data]
        return json.dumps(data, indent=indent, default=_json_default)
