#!/usr/bin/env python3
"""
Query processing engine for analytics events.
Compiles queries with the QueryBuilder, executes them on the event store
and maps rows back to result objects.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import json
import logging
import os
import time

from .data_source import MEMORY_DB, Actor, EventStore, Source
from .query_builder import CompiledQuery, EventsQuery, QueryBuilder, StatsQuery


@dataclass
class QueryResult:
    """Query execution results"""
    data: List[Dict[str, Any]]
    columns: List[str]
    row_count: int
    execution_time: float


@dataclass
class AnalyticsEvent:
    """One kb.v1 event as read back from the store"""
    id: str
    type: str
    ts: str
    ingest_ts: str
    source: Source
    run_id: str
    schema: str = 'kb.v1'
    actor: Optional[Actor] = None
    ctx: Optional[Dict[str, Any]] = None
    payload: Optional[Dict[str, Any]] = None


@dataclass
class EventsResponse:
    events: List[AnalyticsEvent]
    total: int
    has_more: bool


@dataclass
class EventsStats:
    total_events: int
    by_type: Dict[str, int]
    by_source: Dict[str, int]
    by_actor: Dict[str, int]
    time_range: Dict[str, Optional[str]]


@dataclass
class BufferStatus:
    """Store fill level; segments is the number of stored events"""
    segments: int
    total_size_bytes: int
    oldest_event_ts: Optional[str]
    newest_event_ts: Optional[str]


@dataclass
class DailyStats:
    """One time bucket (optionally one breakdown value within it)"""
    date: str
    count: int
    metrics: Dict[str, float] = field(default_factory=dict)
    breakdown: Optional[str] = None


def _load_json(value: Any) -> Optional[Any]:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def row_to_event(row: Dict[str, Any]) -> AnalyticsEvent:
    """Map an events table row to an AnalyticsEvent"""
    actor = None
    if row.get('actor_type'):
        actor = Actor(type=row['actor_type'], id=row.get('actor_id'), name=row.get('actor_name'))

    return AnalyticsEvent(
        id=str(row['id']),
        schema=row.get('schema') or 'kb.v1',
        type=str(row['type']),
        ts=str(row['ts']),
        ingest_ts=str(row.get('ingest_ts') or row['ts']),
        source=Source(product=row.get('product') or '', version=row.get('version') or ''),
        run_id=row.get('run_id') or '',
        actor=actor,
        ctx=_load_json(row.get('ctx')),
        payload=_load_json(row.get('payload')),
    )


def row_to_daily_stats(row: Dict[str, Any], metric_names: List[str],
                       with_breakdown: bool) -> DailyStats:
    """Map an aggregation row; null metrics and null breakdowns are left out"""
    metrics = {}
    for name in metric_names:
        value = row.get(name)
        if value is not None:
            metrics[name] = float(value)

    stat = DailyStats(date=str(row['date']), count=int(row['count']), metrics=metrics)
    if with_breakdown and row.get('breakdown') is not None:
        stat.breakdown = str(row['breakdown'])
    return stat


class QueryEngine:
    """Runs analytics queries against an EventStore"""

    def __init__(self, store: EventStore, builder: Optional[QueryBuilder] = None):
        """Initialize with event store"""
        self.store = store
        self.builder = builder or QueryBuilder()
        self.logger = logging.getLogger('kbanalytics.query_engine')

    def execute(self, query: str, params: Optional[List[Any]] = None) -> QueryResult:
        """Execute query and return results"""
        self.logger.debug(f"Executing SQL:\n{query}\nparams={params or []}")

        conn = self.store.connect()
        start_time = time.time()

        try:
            result = conn.execute(query, params or [])
            columns = [desc[0] for desc in result.description]
            rows = result.fetchall()
        except Exception as e:
            self.logger.error(f"Error executing query: {e}")
            raise

        data = [dict(zip(columns, row)) for row in rows]
        execution_time = time.time() - start_time
        self.logger.debug(f"Query returned {len(data)} rows in {execution_time:.3f}s")

        return QueryResult(
            data=data,
            columns=columns,
            row_count=len(data),
            execution_time=execution_time
        )

    def execute_compiled(self, compiled: CompiledQuery) -> QueryResult:
        return self.execute(compiled.sql, compiled.params)

    def get_events(self, query: Optional[EventsQuery] = None) -> EventsResponse:
        """Page of events, newest first, plus the total matching count"""
        query = query or EventsQuery()

        total_result = self.execute_compiled(self.builder.build_count_query(query))
        total = int(total_result.data[0]['total']) if total_result.data else 0

        page = self.execute_compiled(self.builder.build_events_query(query))
        events = [row_to_event(row) for row in page.data]

        return EventsResponse(events=events, total=total,
                              has_more=query.offset + len(events) < total)

    def get_stats(self) -> EventsStats:
        """Overall totals and counts by type, source product and actor"""
        queries = self.builder.build_summary_queries()

        totals = self.execute(queries['totals']).data[0]
        sections = {}
        for name in ('by_type', 'by_source', 'by_actor'):
            rows = self.execute(queries[name]).data
            sections[name] = {str(row['item']): int(row['cnt']) for row in rows}

        return EventsStats(
            total_events=int(totals['total']),
            by_type=sections['by_type'],
            by_source=sections['by_source'],
            by_actor=sections['by_actor'],
            time_range={'from': totals['min_ts'], 'to': totals['max_ts']},
        )

    def get_buffer_status(self) -> BufferStatus:
        """Event count, time range and database file size (0 for in-memory stores)"""
        row = self.execute_compiled(self.builder.build_buffer_status_query()).data[0]

        size = 0
        if self.store.db_path != MEMORY_DB and os.path.exists(self.store.db_path):
            size = os.path.getsize(self.store.db_path)

        return BufferStatus(
            segments=int(row['segments']),
            total_size_bytes=size,
            oldest_event_ts=row['oldest'],
            newest_event_ts=row['newest'],
        )

    def get_daily_stats(self, query: Optional[StatsQuery] = None) -> List[DailyStats]:
        """
        Time-series aggregation.

        Args:
            query: Filters, granularity, optional breakdown path and metrics

        Returns:
            One DailyStats per bucket (and breakdown value), oldest first
        """
        compiled = self.builder.build_daily_stats_query(query)
        result = self.execute_compiled(compiled)
        with_breakdown = compiled.breakdown is not None
        stats = [row_to_daily_stats(row, compiled.metrics, with_breakdown) for row in result.data]
        self.logger.info(f"Daily stats: {len(stats)} buckets in {result.execution_time:.3f}s")
        return stats
