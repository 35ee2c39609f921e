#!/usr/bin/env python3
"""
Exceptions raised while compiling analytics queries or accessing the event store.
"""

from typing import Iterable, Optional


class QueryBuildError(ValueError):
    """Base class for errors raised by the SQL compiler"""


class InvalidGranularity(QueryBuildError):
    """Requested time bucket is not one of the fixed granularities"""

    def __init__(self, granularity: str, valid: Iterable[str] = ()):
        self.granularity = granularity
        self.valid = tuple(valid)
        msg = f"Invalid granularity: {granularity!r}"
        if self.valid:
            msg += f" (expected one of: {', '.join(self.valid)})"
        super().__init__(msg)


class UnsafePathSegment(QueryBuildError):
    """A path segment would break out of the generated JSON path or SQL literal"""

    def __init__(self, segment: str, path: Optional[str] = None):
        self.segment = segment
        self.path = path
        where = f" in path {path!r}" if path is not None else ""
        super().__init__(f"Unsafe path segment {segment!r}{where}")


class EventStoreError(Exception):
    """Event store could not be opened, initialised or loaded"""
