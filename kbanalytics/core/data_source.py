#!/usr/bin/env python3
"""
Data access layer for the analytics event store.
Manages the DuckDB connection, schema setup, event writes and JSONL imports.
"""

import duckdb
from pathlib import Path
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Union
from datetime import datetime, timezone
import json
import logging
import os
import random
import string
import time

from .errors import EventStoreError
from .schema import SCHEMA_VERSION, TABLE_NAME, apply_schema

DEFAULT_DB_PATH = '.kb/analytics/analytics.duckdb'
DB_PATH_ENV = 'KB_ANALYTICS_DB'
MEMORY_DB = ':memory:'

INSERT_EVENT_SQL = f"""
INSERT OR IGNORE INTO {TABLE_NAME}
    (id, schema, type, ts, ingest_ts, run_id, product, version,
     actor_type, actor_id, actor_name, ctx, payload)
VALUES (?, '{SCHEMA_VERSION}', ?, CAST(? AS TIMESTAMPTZ), CAST(? AS TIMESTAMPTZ), ?, ?, ?,
        ?, ?, ?, CAST(? AS JSON), CAST(? AS JSON))
"""

# Field layout of kb.v1 JSONL buffer files; nested objects are kept as JSON
JSONL_COLUMNS = {
    'id': 'VARCHAR',
    'schema': 'VARCHAR',
    'type': 'VARCHAR',
    'ts': 'VARCHAR',
    'ingestTs': 'VARCHAR',
    'runId': 'VARCHAR',
    'source': 'JSON',
    'actor': 'JSON',
    'ctx': 'JSON',
    'payload': 'JSON',
}


@dataclass(frozen=True)
class Source:
    product: str = 'unknown'
    version: str = '0.0.0'


@dataclass(frozen=True)
class Actor:
    type: str
    id: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class AnalyticsContext:
    """Attribution stamped onto every tracked event"""
    source: Source = field(default_factory=Source)
    run_id: str = field(default_factory=lambda: f"run-{int(time.time() * 1000)}")
    actor: Optional[Actor] = None
    ctx: Optional[Dict[str, Any]] = None


@dataclass
class ImportResult:
    """Outcome of a JSONL import"""
    files: List[Path]
    eligible: int
    inserted: int = 0
    skipped: int = 0
    total: int = 0
    oldest: Optional[str] = None
    newest: Optional[str] = None
    dry_run: bool = False


def resolve_db_path(db_path: Optional[str] = None, cwd: Optional[Union[str, Path]] = None) -> str:
    """
    Resolve the database location.

    Args:
        db_path: Explicit path, ':memory:', or None for $KB_ANALYTICS_DB / default
        cwd: Base directory for relative paths (default: current directory)

    Returns:
        Absolute path as string, or ':memory:'
    """
    raw = db_path or os.environ.get(DB_PATH_ENV) or DEFAULT_DB_PATH
    if raw == MEMORY_DB:
        return raw
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = Path(cwd or os.getcwd()) / path
    return str(path)


def generate_event_id() -> str:
    """'<epoch ms>-<7 random base36 chars>', unique enough for append-only ids"""
    suffix = ''.join(random.choices(string.digits + string.ascii_lowercase, k=7))
    return f"{int(time.time() * 1000)}-{suffix}"


class EventStore:
    """Manages access to the events table via DuckDB"""

    def __init__(self, db_path: Optional[str] = None,
                 context: Optional[AnalyticsContext] = None,
                 cwd: Optional[Union[str, Path]] = None,
                 duckdb_threads: Optional[int] = None,
                 timezone_name: str = 'UTC'):
        """
        Initialize the event store.

        Args:
            db_path: DuckDB file path or ':memory:' (see resolve_db_path)
            context: Attribution for tracked events
            cwd: Base directory for a relative db_path
            duckdb_threads: Number of DuckDB threads (None for default)
            timezone_name: DuckDB session time zone used for bucketing
        """
        self.db_path = resolve_db_path(db_path, cwd)
        self.context = context or AnalyticsContext()
        self.duckdb_threads = duckdb_threads
        self.timezone_name = timezone_name
        self.conn: Optional[duckdb.DuckDBPyConnection] = None
        self.logger = logging.getLogger('kbanalytics.data_source')

    def connect(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection, creating the schema on first use"""
        if self.conn is None:
            if self.db_path != MEMORY_DB:
                try:
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise EventStoreError(f"Cannot create database directory for {self.db_path}: {e}") from e

            conn = duckdb.connect(self.db_path)
            if self.duckdb_threads is not None:
                conn.execute(f"SET threads TO {int(self.duckdb_threads)}")
            tz_literal = self.timezone_name.replace("'", "''")
            conn.execute(f"SET TimeZone = '{tz_literal}'")
            apply_schema(conn)
            self.conn = conn
            self.logger.info(f"Opened event store at {self.db_path}")
        return self.conn

    def close(self):
        """Close DuckDB connection"""
        if self.conn:
            self.conn.close()
            self.conn = None

    # Source attribution

    def get_source(self) -> Source:
        return self.context.source

    def set_source(self, product: str, version: str):
        self.context = replace(self.context, source=Source(product, version))

    # Writes

    def track(self, event_type: str, properties: Optional[Dict[str, Any]] = None,
              ts: Optional[datetime] = None) -> str:
        """
        Append one event enriched with the store context.

        Args:
            event_type: Dot-namespaced type, e.g. 'llm.completion'
            properties: Payload document
            ts: Event time (default: now)

        Returns:
            The generated event id
        """
        if not event_type:
            raise ValueError("Event type cannot be empty")

        now = datetime.now(timezone.utc)
        event_ts = ts or now
        event_id = generate_event_id()
        ctx = self.context
        actor = ctx.actor

        self.connect().execute(INSERT_EVENT_SQL, [
            event_id,
            event_type,
            event_ts.isoformat(),
            now.isoformat(),
            ctx.run_id,
            ctx.source.product,
            ctx.source.version,
            actor.type if actor else None,
            actor.id if actor else None,
            actor.name if actor else None,
            json.dumps(ctx.ctx) if ctx.ctx else None,
            json.dumps(properties) if properties else None,
        ])
        self.logger.debug(f"Tracked {event_type} as {event_id}")
        return event_id

    def identify(self, user_id: str, traits: Optional[Dict[str, Any]] = None) -> str:
        return self.track('identity', {'userId': user_id, **(traits or {})})

    # JSONL import

    def import_jsonl(self, source_dir: Union[str, Path], dry_run: bool = False) -> ImportResult:
        """
        Load kb.v1 events from *.jsonl files using DuckDB's JSON reader.

        Rows without id, type or ts are skipped; ids already present are left
        untouched, so importing the same files twice inserts nothing new.

        Args:
            source_dir: Directory containing .jsonl buffer files
            dry_run: Only count eligible rows, write nothing

        Returns:
            ImportResult with eligible/inserted/skipped counts
        """
        source_dir = Path(source_dir)
        if not source_dir.is_dir():
            raise EventStoreError(f"Source directory not found: {source_dir}")

        files = sorted(source_dir.glob('*.jsonl'))
        if not files:
            self.logger.warning(f"No .jsonl files found in {source_dir}")
            return ImportResult(files=[], eligible=0, dry_run=dry_run)

        glob_pattern = (source_dir.as_posix() + '/*.jsonl').replace("'", "''")
        columns = ', '.join(f"'{name}': '{sql_type}'" for name, sql_type in JSONL_COLUMNS.items())
        reader = (f"read_json('{glob_pattern}', format = 'newline_delimited', "
                  f"columns = {{{columns}}}, ignore_errors = true)")
        eligible_filter = "WHERE id IS NOT NULL AND type IS NOT NULL AND ts IS NOT NULL"

        conn = duckdb.connect(MEMORY_DB) if dry_run else self.connect()
        try:
            eligible = conn.execute(f"SELECT COUNT(*) FROM {reader} {eligible_filter}").fetchone()[0]
            self.logger.info(f"{len(files)} JSONL files, {eligible} eligible events in {source_dir}")
            if dry_run or eligible == 0:
                return ImportResult(files=files, eligible=eligible, dry_run=dry_run)

            before = conn.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}").fetchone()[0]
            start_time = time.time()
            conn.execute(f"""
                INSERT OR IGNORE INTO {TABLE_NAME}
                SELECT
                    id,
                    COALESCE(schema, '{SCHEMA_VERSION}'),
                    type,
                    CAST(ts AS TIMESTAMPTZ),
                    TRY_CAST(ingestTs AS TIMESTAMPTZ),
                    runId,
                    json_extract_string(source, '$.product'),
                    json_extract_string(source, '$.version'),
                    json_extract_string(actor, '$.type'),
                    json_extract_string(actor, '$.id'),
                    json_extract_string(actor, '$.name'),
                    ctx,
                    payload
                FROM {reader}
                {eligible_filter}
            """)
            row = conn.execute(f"""
                SELECT COUNT(*), CAST(MIN(ts) AS VARCHAR), CAST(MAX(ts) AS VARCHAR)
                FROM {TABLE_NAME}
            """).fetchone()
        finally:
            if dry_run:
                conn.close()

        total, oldest, newest = row
        inserted = total - before
        self.logger.info(f"Imported {inserted} events ({eligible - inserted} skipped) "
                         f"in {time.time() - start_time:.2f}s")
        return ImportResult(files=files, eligible=eligible, inserted=inserted,
                            skipped=eligible - inserted, total=total,
                            oldest=oldest, newest=newest)

    def __enter__(self):
        """Context manager support"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager cleanup"""
        self.close()
