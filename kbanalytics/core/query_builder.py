#!/usr/bin/env python3
"""
SQL query builder for the analytics events table.
Combines path, metric and time bucket fragments into complete statements.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple, Union
import logging

from .metrics import DEFAULT_METRICS, build_metrics_select, default_metrics
from .path_resolver import PathResolver, default_resolver
from .schema import TABLE_NAME
from .time_utils import DEFAULT_GRANULARITY, bucket_select_sql

TimeBound = Optional[Union[str, datetime]]

# JSON and TIMESTAMPTZ columns are read back as text
EVENT_SELECT_LIST = """id, schema, type,
    CAST(ts AS VARCHAR) AS ts,
    CAST(ingest_ts AS VARCHAR) AS ingest_ts,
    run_id, product, version, actor_type, actor_id, actor_name,
    CAST(ctx AS VARCHAR) AS ctx,
    CAST(payload AS VARCHAR) AS payload"""


@dataclass
class EventsQuery:
    """Filters shared by event listing and aggregation"""
    type: Optional[Union[str, List[str]]] = None
    source: Optional[str] = None
    actor: Optional[str] = None
    from_ts: TimeBound = None
    to_ts: TimeBound = None
    limit: int = 100
    offset: int = 0


@dataclass
class StatsQuery(EventsQuery):
    """Time-series aggregation request"""
    group_by: str = DEFAULT_GRANULARITY
    breakdown_by: Optional[str] = None
    metrics: Optional[List[str]] = None


@dataclass
class CompiledQuery:
    """SQL text with its positional parameters"""
    sql: str
    params: List[Any] = field(default_factory=list)
    metrics: List[str] = field(default_factory=list)
    breakdown: Optional[str] = None


def _ts_param(value: Union[str, datetime]) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def build_where_clause(query: Optional[EventsQuery]) -> Tuple[str, List[Any]]:
    """
    Build WHERE conditions for the query filters.

    Args:
        query: Filters, or None for no filtering

    Returns:
        Tuple of (conditions joined by AND without the WHERE keyword, params)
    """
    if query is None:
        return '', []

    clauses: List[str] = []
    params: List[Any] = []

    if query.type:
        types = [query.type] if isinstance(query.type, str) else list(query.type)
        if len(types) == 1:
            clauses.append("type = ?")
        else:
            clauses.append(f"type IN ({', '.join('?' for _ in types)})")
        params.extend(types)

    if query.source:
        clauses.append("product = ?")
        params.append(query.source)

    if query.actor:
        clauses.append("actor_id = ?")
        params.append(query.actor)

    if query.from_ts:
        clauses.append("ts >= CAST(? AS TIMESTAMPTZ)")
        params.append(_ts_param(query.from_ts))

    if query.to_ts:
        clauses.append("ts <= CAST(? AS TIMESTAMPTZ)")
        params.append(_ts_param(query.to_ts))

    return ' AND '.join(clauses), params


def _where_sql(where: str) -> str:
    return f"WHERE {where}" if where else ""


def _check_paging(value: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name} must be a non-negative integer, got {value!r}")
    return value


class QueryBuilder:
    """Builds SQL statements against the events table"""

    def __init__(self, resolver: Optional[PathResolver] = None,
                 metrics_table: Sequence[Tuple[str, Sequence[str]]] = DEFAULT_METRICS):
        """
        Args:
            resolver: Path resolver used for breakdown paths
            metrics_table: Ordered (type prefix, metric names) defaults
        """
        self.resolver = resolver or default_resolver
        self.metrics_table = metrics_table
        self.logger = logging.getLogger('kbanalytics.query_builder')

    def resolve_metrics(self, query: StatsQuery) -> List[str]:
        """Explicit metrics win, even when empty; otherwise defaults by event type"""
        if query.metrics is not None:
            return list(query.metrics)
        return default_metrics(query.type, self.metrics_table)

    def build_daily_stats_query(self, query: Optional[StatsQuery] = None) -> CompiledQuery:
        """
        Build the time-series aggregation query.

        Rows carry a formatted bucket label ('date'), an event count, one
        column per metric and, when breakdown_by is set, a 'breakdown' value.

        Raises:
            InvalidGranularity: if query.group_by is not a known granularity
            UnsafePathSegment: if the breakdown path or a metric name is unsafe
        """
        query = query or StatsQuery()
        group_by = DEFAULT_GRANULARITY if query.group_by is None else query.group_by
        label_expr, bucket_expr = bucket_select_sql(group_by)

        breakdown_sql = self.resolver.resolve(query.breakdown_by) if query.breakdown_by else None

        metric_names = self.resolve_metrics(query)

        where, params = build_where_clause(query)

        select_parts = [
            f"{label_expr} AS date",
            "COUNT(*) AS count",
            *build_metrics_select(metric_names),
        ]
        if breakdown_sql:
            select_parts.append(f"{breakdown_sql} AS breakdown")

        group_parts = [bucket_expr]
        order_parts = [f"{bucket_expr} ASC"]
        if breakdown_sql:
            group_parts.append(breakdown_sql)
            order_parts.append("breakdown ASC NULLS LAST")

        lines = [
            "SELECT " + ",\n    ".join(select_parts),
            f"FROM {TABLE_NAME}",
        ]
        where_sql = _where_sql(where)
        if where_sql:
            lines.append(where_sql)
        lines.append("GROUP BY " + ", ".join(group_parts))
        lines.append("ORDER BY " + ", ".join(order_parts))

        sql = "\n".join(lines)
        self.logger.debug(f"Compiled stats query: group_by={query.group_by} "
                          f"breakdown={query.breakdown_by} metrics={metric_names}")
        return CompiledQuery(sql=sql, params=params, metrics=metric_names,
                             breakdown=query.breakdown_by or None)

    def build_events_query(self, query: Optional[EventsQuery] = None) -> CompiledQuery:
        """Newest-first page of raw events"""
        query = query or EventsQuery()
        limit = _check_paging(query.limit, 'limit')
        offset = _check_paging(query.offset, 'offset')
        where, params = build_where_clause(query)

        lines = [f"SELECT {EVENT_SELECT_LIST}", f"FROM {TABLE_NAME}"]
        where_sql = _where_sql(where)
        if where_sql:
            lines.append(where_sql)
        # qualified so ordering uses the TIMESTAMPTZ column, not the text alias
        lines.append(f"ORDER BY {TABLE_NAME}.ts DESC, {TABLE_NAME}.id DESC "
                     f"LIMIT {limit} OFFSET {offset}")
        return CompiledQuery(sql="\n".join(lines), params=params)

    def build_count_query(self, query: Optional[EventsQuery] = None) -> CompiledQuery:
        """Total number of events matching the filters"""
        where, params = build_where_clause(query)
        sql = f"SELECT COUNT(*) AS total FROM {TABLE_NAME}"
        where_sql = _where_sql(where)
        if where_sql:
            sql += f" {where_sql}"
        return CompiledQuery(sql=sql, params=params)

    def build_buffer_status_query(self) -> CompiledQuery:
        """Stored event count and the oldest/newest event time"""
        return CompiledQuery(sql=(f"SELECT COUNT(*) AS segments, "
                                  f"CAST(MIN(ts) AS VARCHAR) AS oldest, "
                                  f"CAST(MAX(ts) AS VARCHAR) AS newest FROM {TABLE_NAME}"))

    def build_summary_queries(self) -> dict:
        """Statements behind the overall event statistics, keyed by section"""
        return {
            'totals': (f"SELECT COUNT(*) AS total, "
                       f"CAST(MIN(ts) AS VARCHAR) AS min_ts, "
                       f"CAST(MAX(ts) AS VARCHAR) AS max_ts FROM {TABLE_NAME}"),
            'by_type': (f"SELECT type AS item, COUNT(*) AS cnt FROM {TABLE_NAME} "
                        f"GROUP BY type ORDER BY type"),
            'by_source': (f"SELECT COALESCE(product, 'unknown') AS item, COUNT(*) AS cnt "
                          f"FROM {TABLE_NAME} GROUP BY item ORDER BY item"),
            'by_actor': (f"SELECT COALESCE(actor_id, 'unknown') AS item, COUNT(*) AS cnt "
                         f"FROM {TABLE_NAME} GROUP BY item ORDER BY item"),
        }
