#!/usr/bin/env python3
"""
Event table layout for kb.v1 analytics events.

The kb.v1 event is stored as flat columns plus two JSON documents (ctx, payload)
so that arbitrary nested fields can still be read with json_extract_string().
All DDL uses IF NOT EXISTS, so applying the schema to an initialised database
is a no-op.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging

logger = logging.getLogger('kbanalytics.schema')

SCHEMA_VERSION = 'kb.v1'
TABLE_NAME = 'events'


@dataclass(frozen=True)
class Column:
    """One physical column of the events table"""
    name: str
    sql_type: str
    nullable: bool = True
    default: Optional[str] = None
    primary_key: bool = False

    def ddl(self) -> str:
        parts = [f"{self.name:<11} {self.sql_type}"]
        if self.primary_key:
            parts.append("PRIMARY KEY")
        elif not self.nullable:
            parts.append("NOT NULL")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)


EVENT_COLUMNS: Tuple[Column, ...] = (
    Column('id', 'VARCHAR', nullable=False, primary_key=True),
    Column('schema', 'VARCHAR', nullable=False, default=f"'{SCHEMA_VERSION}'"),
    Column('type', 'VARCHAR', nullable=False),
    Column('ts', 'TIMESTAMPTZ', nullable=False),
    Column('ingest_ts', 'TIMESTAMPTZ'),
    Column('run_id', 'VARCHAR'),
    Column('product', 'VARCHAR'),
    Column('version', 'VARCHAR'),
    Column('actor_type', 'VARCHAR'),
    Column('actor_id', 'VARCHAR'),
    Column('actor_name', 'VARCHAR'),
    Column('ctx', 'JSON'),
    Column('payload', 'JSON'),
)

# (index name, indexed columns); (type, ts) serves "events of type X over a range"
INDEXES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ('events_ts_idx', ('ts',)),
    ('events_type_idx', ('type',)),
    ('events_product_idx', ('product',)),
    ('events_type_ts_idx', ('type', 'ts')),
)

CREATE_EVENTS_TABLE = (
    f"CREATE TABLE IF NOT EXISTS {TABLE_NAME} (\n  "
    + ",\n  ".join(col.ddl() for col in EVENT_COLUMNS)
    + "\n)"
)

CREATE_INDEXES: Tuple[str, ...] = tuple(
    f"CREATE INDEX IF NOT EXISTS {name} ON {TABLE_NAME} ({', '.join(cols)})"
    for name, cols in INDEXES
)


def column_names() -> List[str]:
    """Physical column names in table order"""
    return [col.name for col in EVENT_COLUMNS]


def schema_statements() -> List[str]:
    """All DDL statements, table first"""
    return [CREATE_EVENTS_TABLE, *CREATE_INDEXES]


def apply_schema(conn) -> None:
    """
    Create the events table and its indexes on a DuckDB connection.

    Args:
        conn: DuckDB connection (anything with an execute() method)
    """
    for statement in schema_statements():
        conn.execute(statement)
    logger.debug(f"Applied {len(CREATE_INDEXES) + 1} schema statements to {TABLE_NAME}")
