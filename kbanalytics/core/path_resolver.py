#!/usr/bin/env python3
"""
Dot-path field resolution for the events table.

Maps a logical path such as 'payload.model', 'actor.id' or 'runId' to the SQL
expression that reads it: either a flattened column or a json_extract_string()
call against one of the JSON documents. Resolution order:

    1. direct column or alias          runId          -> run_id
    2. actor sub-field                 actor.id       -> actor_id
    3. source sub-field                source.product -> product
    4. JSON document (payload / ctx)   ctx.sessionId  -> json_extract_string(ctx, '$.sessionId')
    5. anything else, as a payload key custom.field   -> json_extract_string(payload, '$.custom.field')
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Tuple
import re

from .errors import UnsafePathSegment


class PathKind(Enum):
    """How a dot-path is read from an event row"""
    DIRECT_COLUMN = 'direct_column'
    ACTOR_FIELD = 'actor_field'
    SOURCE_FIELD = 'source_field'
    JSON_COLUMN = 'json_column'
    FALLBACK = 'fallback'


DIRECT_COLUMNS: Mapping[str, str] = MappingProxyType({
    'product': 'product',
    'version': 'version',
    'type': 'type',
    'run_id': 'run_id',
    'runId': 'run_id',
})

ACTOR_COLUMNS: Mapping[str, str] = MappingProxyType({
    'type': 'actor_type',
    'id': 'actor_id',
    'name': 'actor_name',
})

SOURCE_COLUMNS: Mapping[str, str] = MappingProxyType({
    'product': 'product',
    'version': 'version',
})

JSON_COLUMNS: Tuple[str, ...] = ('payload', 'ctx')
FALLBACK_JSON_COLUMN = 'payload'

# Segments end up inside '$.a.b' within a single-quoted SQL literal
SAFE_SEGMENT_RE = re.compile(r"[A-Za-z0-9_-]+")


def check_segment(segment: str, path: Optional[str] = None) -> str:
    """Return segment unchanged, or raise UnsafePathSegment"""
    if not SAFE_SEGMENT_RE.fullmatch(segment):
        raise UnsafePathSegment(segment, path)
    return segment


def json_pointer(segments: Iterable[str], path: Optional[str] = None) -> str:
    """
    Build a JSON path like '$.a.b' from validated segments.

    An empty segment list addresses the whole document ('$').
    """
    checked = [check_segment(seg, path) for seg in segments]
    if not checked:
        return '$'
    return '$.' + '.'.join(checked)


def json_extract_sql(column: str, pointer: str) -> str:
    return f"json_extract_string({column}, '{pointer}')"


@dataclass(frozen=True)
class ResolvedPath:
    """Outcome of classifying one dot-path"""
    kind: PathKind
    path: str
    column: str
    json_path: Optional[str] = None

    @property
    def sql(self) -> str:
        if self.json_path is None:
            return self.column
        return json_extract_sql(self.column, self.json_path)

    @property
    def is_json(self) -> bool:
        return self.json_path is not None


class PathResolver:
    """Resolves dot-paths against a fixed set of lookup tables"""

    def __init__(self,
                 direct_columns: Mapping[str, str] = DIRECT_COLUMNS,
                 actor_columns: Mapping[str, str] = ACTOR_COLUMNS,
                 source_columns: Mapping[str, str] = SOURCE_COLUMNS,
                 json_columns: Iterable[str] = JSON_COLUMNS,
                 fallback_column: str = FALLBACK_JSON_COLUMN):
        self.direct_columns = MappingProxyType(dict(direct_columns))
        self.actor_columns = MappingProxyType(dict(actor_columns))
        self.source_columns = MappingProxyType(dict(source_columns))
        self.json_columns = tuple(json_columns)
        self.fallback_column = fallback_column

    def classify(self, path: str) -> ResolvedPath:
        """
        Work out which column (and JSON pointer, if any) a dot-path reads.

        Args:
            path: Dot-separated field path, e.g. 'payload.usage.totalTokens'

        Returns:
            ResolvedPath describing the physical location

        Raises:
            UnsafePathSegment: if a segment placed in a JSON pointer is not a
                plain key (letters, digits, '_' or '-')
        """
        parts: List[str] = path.split('.')
        root = parts[0]
        child = parts[1] if len(parts) > 1 else None

        if root in self.direct_columns:
            return ResolvedPath(PathKind.DIRECT_COLUMN, path, self.direct_columns[root])

        if root == 'actor' and child in self.actor_columns:
            return ResolvedPath(PathKind.ACTOR_FIELD, path, self.actor_columns[child])

        if root == 'source' and child in self.source_columns:
            return ResolvedPath(PathKind.SOURCE_FIELD, path, self.source_columns[child])

        if root in self.json_columns:
            return ResolvedPath(PathKind.JSON_COLUMN, path, root,
                                json_pointer(parts[1:], path))

        return ResolvedPath(PathKind.FALLBACK, path, self.fallback_column,
                            json_pointer(parts, path))

    def resolve(self, path: str) -> str:
        """SQL expression reading the field at path"""
        return self.classify(path).sql


default_resolver = PathResolver()


def classify_path(path: str) -> ResolvedPath:
    return default_resolver.classify(path)


def resolve_path(path: str) -> str:
    """Resolve a dot-path with the default lookup tables"""
    return default_resolver.resolve(path)
