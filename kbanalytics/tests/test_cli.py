#!/usr/bin/env python3
"""End-to-end tests for the kbanalytics command line."""

import json

import pytest

from kbanalytics.cli import build_parser, main


@pytest.fixture
def db(tmp_path):
    return str(tmp_path / 'store' / 'analytics.duckdb')


def test_parser_defaults(monkeypatch):
    monkeypatch.delenv('KB_ANALYTICS_DB', raising=False)
    args = build_parser().parse_args(['stats'])
    assert args.group_by == 'day'
    assert args.db is None
    assert args.timezone == 'UTC'


def test_db_from_environment(monkeypatch):
    monkeypatch.setenv('KB_ANALYTICS_DB', '/tmp/env.duckdb')
    assert build_parser().parse_args(['summary']).db == '/tmp/env.duckdb'


def test_sql_prints_compiled_query(capsys):
    assert main(['sql', '-t', 'llm.chat', '-b', 'payload.model', '-g', 'week']) == 0
    out = capsys.readouterr().out
    assert "strftime(date_trunc('week', ts), '%Y-W%W') AS date" in out
    assert "json_extract_string(payload, '$.model') AS breakdown" in out
    assert 'AS "totalTokens"' in out
    assert '-- params: ["llm.chat"]' in out


def test_invalid_granularity_fails(capsys):
    assert main(['sql', '-g', 'year']) == 1
    assert 'Invalid granularity' in capsys.readouterr().err


def test_empty_granularity_fails(db, capsys):
    assert main(['--db', db, 'stats', '-g', '']) == 1
    assert 'Invalid granularity' in capsys.readouterr().err


def test_unsafe_breakdown_fails(capsys):
    assert main(['sql', '-b', "payload.model'--"]) == 1
    assert 'Unsafe path segment' in capsys.readouterr().err


def test_init_track_and_query(db, capsys):
    assert main(['--db', db, 'init']) == 0
    assert 'Initialized event store at' in capsys.readouterr().out

    assert main(['--db', db, 'track', 'llm.chat', '--product', 'kb-labs',
                 '-p', '{"model": "gpt-4", "totalTokens": 100}']) == 0
    event_id = capsys.readouterr().out.strip()
    assert event_id

    assert main(['--db', db, '--json', 'stats', '-t', 'llm.chat', '-b', 'payload.model']) == 0
    stats = json.loads(capsys.readouterr().out)
    assert len(stats) == 1
    assert stats[0]['count'] == 1
    assert stats[0]['breakdown'] == 'gpt-4'
    assert stats[0]['metrics']['totalTokens'] == 100.0

    assert main(['--db', db, '--json', 'events', '--source', 'kb-labs']) == 0
    events = json.loads(capsys.readouterr().out)
    assert events['total'] == 1
    assert events['events'][0]['id'] == event_id

    assert main(['--db', db, '--json', 'summary']) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary['by_source'] == {'kb-labs': 1}

    assert main(['--db', db, 'stats', '--from=2000-01-01']) == 0
    assert 'totalCost' in capsys.readouterr().out


def test_track_rejects_non_object_payload(db, capsys):
    assert main(['--db', db, 'track', 'llm.chat', '-p', '[1, 2]']) == 1
    assert 'JSON object' in capsys.readouterr().err

    assert main(['--db', db, 'track', 'llm.chat', '-p', '{not json']) == 1
    assert capsys.readouterr().err.startswith('Error:')


def test_import_command(db, tmp_path, capsys):
    buffer_dir = tmp_path / 'buffer'
    buffer_dir.mkdir()
    (buffer_dir / 'events.jsonl').write_text(
        json.dumps({"id": "e1", "type": "llm.chat", "ts": "2024-03-01T10:00:00Z"}) + "\n")

    assert main(['--db', db, 'import', str(buffer_dir), '--dry-run']) == 0
    assert 'eligible events: 1 (dry run)' in capsys.readouterr().out

    assert main(['--db', db, 'import', str(buffer_dir)]) == 0
    assert 'inserted: 1' in capsys.readouterr().out

    assert main(['--db', db, 'import', str(tmp_path / 'missing')]) == 1
    assert 'Source directory not found' in capsys.readouterr().err


def test_empty_store_message(db, capsys):
    assert main(['--db', db, 'events']) == 0
    assert 'No events found' in capsys.readouterr().out


def test_breakdown_column_shown_for_missing_field(db, capsys):
    assert main(['--db', db, 'track', 'llm.chat', '-p', '{"totalTokens": 5}']) == 0
    capsys.readouterr()

    assert main(['--db', db, '--format', 'plain', 'stats', '-b', 'payload.model', '-m', 'totalTokens']) == 0
    header = capsys.readouterr().out.splitlines()[0]
    assert header.split() == ['date', 'breakdown', 'count', 'totalTokens']


def test_status_command(db, capsys):
    assert main(['--db', db, 'track', 'cache.hit']) == 0
    capsys.readouterr()

    assert main(['--db', db, '--json', 'status']) == 0
    status = json.loads(capsys.readouterr().out)
    assert status['segments'] == 1
    assert status['total_size_bytes'] > 0
    assert status['oldest_event_ts'] == status['newest_event_ts']
