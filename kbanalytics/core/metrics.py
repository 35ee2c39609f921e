#!/usr/bin/env python3
"""
Metric aggregation fragments.

Metrics are numeric fields of the event payload. Each one becomes a
SUM(TRY_CAST(...)) projection so that non-numeric values count as NULL
instead of failing the whole query.
"""

from typing import List, Optional, Sequence, Tuple, Union

from .path_resolver import json_extract_sql, json_pointer

# Prefix order matters: the first prefix matched by any requested type wins
DEFAULT_METRICS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ('llm.', ('totalTokens', 'totalCost', 'durationMs', 'inputTokens', 'outputTokens')),
    ('embeddings.', ('totalTokens', 'totalCost', 'durationMs')),
    ('vectorstore.', ('durationMs',)),
    ('cache.', ('durationMs',)),
    ('storage.', ('bytesRead', 'bytesWritten', 'durationMs')),
)

FALLBACK_METRICS: Tuple[str, ...] = ('totalCost', 'totalTokens', 'durationMs')

METRIC_SOURCE_COLUMN = 'payload'

TypeFilter = Optional[Union[str, Sequence[str]]]


def _as_type_list(type_filter: TypeFilter) -> List[str]:
    if not type_filter:
        return []
    if isinstance(type_filter, str):
        return [type_filter]
    return list(type_filter)


def default_metrics(type_filter: TypeFilter = None,
                    table: Sequence[Tuple[str, Sequence[str]]] = DEFAULT_METRICS) -> List[str]:
    """
    Pick the metric names to aggregate when the caller asked for none.

    Args:
        type_filter: Event type or list of event types being queried
        table: Ordered (prefix, metrics) pairs

    Returns:
        New list of metric names
    """
    types = _as_type_list(type_filter)
    if not types:
        return list(FALLBACK_METRICS)

    for prefix, metrics in table:
        if any(t.startswith(prefix) for t in types):
            return list(metrics)

    return list(FALLBACK_METRICS)


def metric_expression(name: str) -> str:
    """Aggregate projection for one metric, aliased to the metric name"""
    pointer = json_pointer(name.split('.'), name)
    value = json_extract_sql(METRIC_SOURCE_COLUMN, pointer)
    return f'SUM(TRY_CAST({value} AS DOUBLE)) AS "{name}"'


def build_metrics_select(metric_names: Sequence[str]) -> List[str]:
    """
    One aggregate fragment per metric name, in input order.

    Duplicate names are passed through as duplicate fragments.
    """
    return [metric_expression(name) for name in metric_names]
