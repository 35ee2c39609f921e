#!/usr/bin/env python3
"""
Command-line interface for kbanalytics.
Runs analytics queries against a DuckDB event store and prints plaintext tables.
"""

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

import duckdb

from kbanalytics import __version__
from kbanalytics.core.data_source import DB_PATH_ENV, Actor, AnalyticsContext, EventStore, Source
from kbanalytics.core.errors import EventStoreError, QueryBuildError
from kbanalytics.core.formatters import TableFormatter
from kbanalytics.core.query_builder import EventsQuery, QueryBuilder, StatsQuery
from kbanalytics.core.query_engine import QueryEngine
from kbanalytics.core.time_utils import DEFAULT_GRANULARITY, GRANULARITIES, resolve_time_range

logger = logging.getLogger('kbanalytics.cli')


def _split_list(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [item.strip() for item in value.split(',') if item.strip()]


def _add_filter_args(parser: argparse.ArgumentParser):
    parser.add_argument('-t', '--type', type=str,
                        help='Comma-separated event types (e.g. llm.completion,llm.chat)')
    parser.add_argument('--source', type=str,
                        help='Source product filter')
    parser.add_argument('--actor', type=str,
                        help='Actor id filter')
    parser.add_argument('--from', dest='from_time', type=str,
                        help='Start time (ISO format or relative like -1h, 7d)')
    parser.add_argument('--to', dest='to_time', type=str,
                        help='End time (ISO format or now)')


def _add_stats_args(parser: argparse.ArgumentParser):
    _add_filter_args(parser)
    parser.add_argument('-g', '--group-by', type=str, default=DEFAULT_GRANULARITY,
                        help=f"Time bucket: {', '.join(GRANULARITIES)} (default: {DEFAULT_GRANULARITY})")
    parser.add_argument('-b', '--breakdown-by', type=str,
                        help='Dot-path to break results down by (e.g. payload.model, actor.id)')
    parser.add_argument('-m', '--metrics', type=str,
                        help='Comma-separated payload metrics (default: by event type)')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='kbanalytics',
                                     description='SQL analytics over kb.v1 events in DuckDB')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    # Use KB_ANALYTICS_DB environment variable as default
    parser.add_argument('--db', type=str, default=os.environ.get(DB_PATH_ENV),
                        help=f'DuckDB database file (default: ${DB_PATH_ENV} or .kb/analytics/analytics.duckdb)')
    parser.add_argument('--cwd', type=str, default=None,
                        help='Base directory for a relative --db path')
    parser.add_argument('--duckdb-threads', type=int, default=None,
                        help='Number of DuckDB threads (default: auto)')
    parser.add_argument('--timezone', type=str, default='UTC',
                        help='Session time zone used for time buckets (default: UTC)')
    parser.add_argument('--format', type=str, default='grid',
                        help='Table format (grid, simple, plain, github, etc.)')
    parser.add_argument('--json', action='store_true',
                        help='Print JSON instead of a table')

    # Logging
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug logging')
    parser.add_argument('--debuglog', type=str,
                        help='Debug log file')

    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('init', help='Create the events table and indexes')

    track = sub.add_parser('track', help='Append one event')
    track.add_argument('event_type', help='Event type, e.g. llm.completion')
    track.add_argument('-p', '--payload', type=str, help='Payload as a JSON object')
    track.add_argument('--product', type=str, default='unknown')
    track.add_argument('--product-version', type=str, default='0.0.0')
    track.add_argument('--run-id', type=str)
    track.add_argument('--actor-type', type=str)
    track.add_argument('--actor-id', type=str)
    track.add_argument('--actor-name', type=str)

    events = sub.add_parser('events', help='List events, newest first')
    _add_filter_args(events)
    events.add_argument('--limit', type=int, default=100, help='Maximum rows to return')
    events.add_argument('--offset', type=int, default=0, help='Rows to skip')

    stats = sub.add_parser('stats', help='Time-series aggregation')
    _add_stats_args(stats)

    sub.add_parser('summary', help='Totals by type, source and actor')

    sub.add_parser('status', help='Stored event count, time range and file size')

    sql = sub.add_parser('sql', help='Print the compiled stats query without running it')
    _add_stats_args(sql)

    imp = sub.add_parser('import', help='Import *.jsonl event files')
    imp.add_argument('source_dir', help='Directory with .jsonl files')
    imp.add_argument('--dry-run', action='store_true',
                     help='Count eligible events without writing')

    return parser


def setup_logging(debug: bool = False, debuglog: Optional[str] = None):
    log_level = logging.DEBUG if debug else logging.WARNING
    log_format = '%(asctime)s - %(levelname)s - %(message)s'

    if debuglog:
        logging.basicConfig(level=logging.DEBUG, format=log_format,
                            filename=debuglog, filemode='w')
    else:
        logging.basicConfig(level=log_level, format=log_format)


def _stats_query(args) -> StatsQuery:
    low_time, high_time = resolve_time_range(args.from_time, args.to_time)
    return StatsQuery(
        type=_split_list(args.type),
        source=args.source,
        actor=args.actor,
        from_ts=low_time,
        to_ts=high_time,
        group_by=args.group_by,
        breakdown_by=args.breakdown_by,
        metrics=_split_list(args.metrics),
    )


def _events_query(args) -> EventsQuery:
    low_time, high_time = resolve_time_range(args.from_time, args.to_time)
    return EventsQuery(
        type=_split_list(args.type),
        source=args.source,
        actor=args.actor,
        from_ts=low_time,
        to_ts=high_time,
        limit=args.limit,
        offset=args.offset,
    )


def run(args) -> int:
    formatter = TableFormatter(tablefmt=args.format)

    if args.command == 'sql':
        compiled = QueryBuilder().build_daily_stats_query(_stats_query(args))
        print(compiled.sql)
        if compiled.params:
            print(f"-- params: {json.dumps(compiled.params)}")
        return 0

    context = None
    if args.command == 'track':
        actor = Actor(args.actor_type, args.actor_id, args.actor_name) if args.actor_type else None
        kwargs = {'run_id': args.run_id} if args.run_id else {}
        context = AnalyticsContext(source=Source(args.product, args.product_version),
                                   actor=actor, **kwargs)

    with EventStore(args.db, context=context, cwd=args.cwd,
                    duckdb_threads=args.duckdb_threads,
                    timezone_name=args.timezone) as store:
        engine = QueryEngine(store)

        if args.command == 'init':
            store.connect()
            print(f"Initialized event store at {store.db_path}")

        elif args.command == 'track':
            payload = json.loads(args.payload) if args.payload else None
            if payload is not None and not isinstance(payload, dict):
                raise ValueError("--payload must be a JSON object")
            print(store.track(args.event_type, payload))

        elif args.command == 'events':
            response = engine.get_events(_events_query(args))
            print(formatter.format_json(response) if args.json else formatter.format_events(response))

        elif args.command == 'stats':
            query = _stats_query(args)
            metric_names = engine.builder.resolve_metrics(query)
            stats = engine.get_daily_stats(query)
            print(formatter.format_json(stats) if args.json
                  else formatter.format_daily_stats(stats, metric_names,
                                                    with_breakdown=bool(query.breakdown_by)))

        elif args.command == 'summary':
            summary = engine.get_stats()
            print(formatter.format_json(summary) if args.json else formatter.format_summary(summary))

        elif args.command == 'status':
            status = engine.get_buffer_status()
            if args.json:
                print(formatter.format_json(status))
            else:
                print(f"Events: {status.segments}, size: {status.total_size_bytes} bytes, "
                      f"oldest: {status.oldest_event_ts or '-'}, "
                      f"newest: {status.newest_event_ts or '-'}")

        elif args.command == 'import':
            result = store.import_jsonl(args.source_dir, dry_run=args.dry_run)
            if args.json:
                print(formatter.format_json(result))
            elif result.dry_run:
                print(f"Files: {len(result.files)}, eligible events: {result.eligible} (dry run)")
            else:
                print(f"Files: {len(result.files)}, eligible: {result.eligible}, "
                      f"inserted: {result.inserted}, skipped: {result.skipped}, "
                      f"total in store: {result.total}")

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.debug, args.debuglog)

    try:
        return run(args)
    except (QueryBuildError, EventStoreError, ValueError, duckdb.Error) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
