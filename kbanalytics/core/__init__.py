#!/usr/bin/env python3
"""
Core module for kbanalytics - SQL compilation, event storage and query execution.
"""

from .errors import QueryBuildError, InvalidGranularity, UnsafePathSegment, EventStoreError
from .schema import apply_schema, schema_statements, CREATE_EVENTS_TABLE, CREATE_INDEXES
from .path_resolver import PathKind, PathResolver, ResolvedPath, resolve_path, classify_path
from .metrics import default_metrics, build_metrics_select, DEFAULT_METRICS, FALLBACK_METRICS
from .time_utils import trunc_unit, display_format, GRANULARITIES
from .query_builder import QueryBuilder, EventsQuery, StatsQuery, CompiledQuery, build_where_clause
from .data_source import EventStore, AnalyticsContext, Actor, Source, ImportResult
from .query_engine import QueryEngine, QueryResult, AnalyticsEvent, BufferStatus, DailyStats, EventsResponse, EventsStats
from .formatters import TableFormatter

__all__ = [
    'QueryBuildError',
    'InvalidGranularity',
    'UnsafePathSegment',
    'EventStoreError',
    'apply_schema',
    'schema_statements',
    'CREATE_EVENTS_TABLE',
    'CREATE_INDEXES',
    'PathKind',
    'PathResolver',
    'ResolvedPath',
    'resolve_path',
    'classify_path',
    'default_metrics',
    'build_metrics_select',
    'DEFAULT_METRICS',
    'FALLBACK_METRICS',
    'trunc_unit',
    'display_format',
    'GRANULARITIES',
    'QueryBuilder',
    'EventsQuery',
    'StatsQuery',
    'CompiledQuery',
    'build_where_clause',
    'EventStore',
    'AnalyticsContext',
    'Actor',
    'Source',
    'ImportResult',
    'QueryEngine',
    'QueryResult',
    'AnalyticsEvent',
    'BufferStatus',
    'DailyStats',
    'EventsResponse',
    'EventsStats',
    'TableFormatter',
]
