#!/usr/bin/env python3
"""Integration tests running generated queries against an in-memory store."""

from datetime import datetime, timezone

import duckdb
import pytest

from kbanalytics.core import (
    Actor,
    AnalyticsContext,
    EventsQuery,
    EventStore,
    QueryEngine,
    Source,
    StatsQuery,
)


def utc(day, hour):
    return datetime(2024, 3, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def store():
    context = AnalyticsContext(source=Source('kb-labs', '1.0.0'), run_id='run-1',
                               actor=Actor('user', 'u1', 'Ann'))
    with EventStore(':memory:', context=context) as event_store:
        event_store.track('llm.chat', {'model': 'gpt-4', 'totalTokens': 100, 'totalCost': 0.5},
                          ts=utc(1, 10))
        event_store.track('llm.chat', {'model': 'gpt-3', 'totalTokens': 50, 'totalCost': 0.25},
                          ts=utc(1, 15))
        event_store.track('llm.chat', {'model': 'gpt-4', 'totalTokens': 'lots'}, ts=utc(2, 9))
        event_store.track('cache.hit', {'durationMs': 5}, ts=utc(2, 11))
        yield event_store


@pytest.fixture
def engine(store):
    return QueryEngine(store)


def test_daily_stats_with_default_llm_metrics(engine):
    stats = engine.get_daily_stats(StatsQuery(type=['llm.chat']))

    assert [(s.date, s.count) for s in stats] == [('2024-03-01', 2), ('2024-03-02', 1)]
    assert stats[0].metrics['totalTokens'] == pytest.approx(150.0)
    assert stats[0].metrics['totalCost'] == pytest.approx(0.75)
    # absent fields aggregate to NULL and are left out
    assert 'durationMs' not in stats[0].metrics
    # non-numeric values are ignored instead of failing the query
    assert stats[1].metrics == {}
    assert all(s.breakdown is None for s in stats)


def test_daily_stats_breakdown(engine):
    stats = engine.get_daily_stats(StatsQuery(type='llm.chat', breakdown_by='payload.model'))
    assert [(s.date, s.breakdown, s.count) for s in stats] == [
        ('2024-03-01', 'gpt-3', 1),
        ('2024-03-01', 'gpt-4', 1),
        ('2024-03-02', 'gpt-4', 1),
    ]


def test_breakdown_nulls_sort_last(engine):
    stats = engine.get_daily_stats(StatsQuery(breakdown_by='payload.model', metrics=[]))
    second_day = [s for s in stats if s.date == '2024-03-02']
    assert [s.breakdown for s in second_day] == ['gpt-4', None]
    assert all(s.metrics == {} for s in stats)


def test_breakdown_by_actor_column(engine):
    stats = engine.get_daily_stats(StatsQuery(breakdown_by='actor.id', metrics=[]))
    assert {s.breakdown for s in stats} == {'u1'}
    assert sum(s.count for s in stats) == 4


def test_hourly_buckets_and_time_filter(engine):
    stats = engine.get_daily_stats(StatsQuery(group_by='hour', from_ts=utc(2, 0),
                                              metrics=['durationMs']))
    assert [(s.date, s.count) for s in stats] == [('2024-03-02T09', 1), ('2024-03-02T11', 1)]
    assert stats[1].metrics == {'durationMs': 5.0}


def test_monthly_bucket(engine):
    stats = engine.get_daily_stats(StatsQuery(group_by='month'))
    assert [(s.date, s.count) for s in stats] == [('2024-03', 4)]


def test_get_events_paging(engine):
    first = engine.get_events(EventsQuery(limit=3))
    assert first.total == 4
    assert first.has_more
    assert [e.type for e in first.events] == ['cache.hit', 'llm.chat', 'llm.chat']
    assert first.events[0].ts.startswith('2024-03-02 11:00:00')

    rest = engine.get_events(EventsQuery(limit=3, offset=3))
    assert len(rest.events) == 1
    assert not rest.has_more
    assert rest.events[0].payload == {'model': 'gpt-4', 'totalTokens': 100, 'totalCost': 0.5}


def test_get_events_maps_attribution(engine):
    response = engine.get_events(EventsQuery(type='cache.hit'))
    assert response.total == 1
    event = response.events[0]
    assert event.source == Source('kb-labs', '1.0.0')
    assert event.actor == Actor('user', 'u1', 'Ann')
    assert event.run_id == 'run-1'
    assert event.schema == 'kb.v1'
    assert event.ctx is None


def test_get_stats(engine):
    stats = engine.get_stats()
    assert stats.total_events == 4
    assert stats.by_type == {'cache.hit': 1, 'llm.chat': 3}
    assert stats.by_source == {'kb-labs': 4}
    assert stats.by_actor == {'u1': 4}
    assert stats.time_range['from'].startswith('2024-03-01 10:00:00')
    assert stats.time_range['to'].startswith('2024-03-02 11:00:00')


def test_empty_store():
    with EventStore(':memory:') as empty:
        engine = QueryEngine(empty)
        assert engine.get_daily_stats() == []
        assert engine.get_events().total == 0
        assert engine.get_stats().time_range == {'from': None, 'to': None}


def test_execute_propagates_errors(engine):
    with pytest.raises(duckdb.Error):
        engine.execute("SELECT * FROM no_such_table")


def test_buffer_status(engine):
    status = engine.get_buffer_status()
    assert status.segments == 4
    assert status.total_size_bytes == 0
    assert status.oldest_event_ts.startswith('2024-03-01 10:00:00')
    assert status.newest_event_ts.startswith('2024-03-02 11:00:00')


def test_buffer_status_empty_store():
    with EventStore(':memory:') as empty:
        status = QueryEngine(empty).get_buffer_status()
    assert (status.segments, status.oldest_event_ts, status.newest_event_ts) == (0, None, None)
