#!/usr/bin/env python3
"""
Tests for dot-path resolution.
"""

import unittest

from kbanalytics.core.errors import UnsafePathSegment
from kbanalytics.core.path_resolver import (
    PathKind,
    PathResolver,
    classify_path,
    resolve_path,
)


class TestResolvePath(unittest.TestCase):
    """Resolution priority: direct column, actor, source, JSON column, payload fallback"""

    def test_direct_columns(self):
        self.assertEqual(resolve_path('product'), 'product')
        self.assertEqual(resolve_path('version'), 'version')
        self.assertEqual(resolve_path('type'), 'type')
        self.assertEqual(resolve_path('run_id'), 'run_id')

    def test_run_id_alias(self):
        self.assertEqual(resolve_path('runId'), 'run_id')

    def test_direct_column_ignores_children(self):
        # root match wins regardless of what follows
        self.assertEqual(resolve_path('product.name'), 'product')

    def test_actor_fields(self):
        self.assertEqual(resolve_path('actor.type'), 'actor_type')
        self.assertEqual(resolve_path('actor.id'), 'actor_id')
        self.assertEqual(resolve_path('actor.name'), 'actor_name')

    def test_source_fields(self):
        self.assertEqual(resolve_path('source.product'), 'product')
        self.assertEqual(resolve_path('source.version'), 'version')

    def test_json_columns(self):
        self.assertEqual(resolve_path('payload.model'),
                         "json_extract_string(payload, '$.model')")
        self.assertEqual(resolve_path('ctx.sessionId'),
                         "json_extract_string(ctx, '$.sessionId')")
        self.assertEqual(resolve_path('payload.usage.total_tokens'),
                         "json_extract_string(payload, '$.usage.total_tokens')")

    def test_whole_json_document(self):
        self.assertEqual(resolve_path('payload'), "json_extract_string(payload, '$')")

    def test_unknown_root_falls_back_to_payload(self):
        self.assertEqual(resolve_path('custom.field'),
                         "json_extract_string(payload, '$.custom.field')")
        self.assertEqual(resolve_path('model'),
                         "json_extract_string(payload, '$.model')")

    def test_unknown_actor_and_source_children_fall_back(self):
        self.assertEqual(resolve_path('actor.email'),
                         "json_extract_string(payload, '$.actor.email')")
        self.assertEqual(resolve_path('source'),
                         "json_extract_string(payload, '$.source')")
        self.assertEqual(resolve_path('actor'),
                         "json_extract_string(payload, '$.actor')")

    def test_deterministic(self):
        paths = ['payload.model', 'actor.id', 'custom.field', 'runId']
        first = [resolve_path(p) for p in paths]
        for _ in range(5):
            self.assertEqual([resolve_path(p) for p in paths], first)


class TestClassifyPath(unittest.TestCase):

    def test_kinds(self):
        self.assertEqual(classify_path('product').kind, PathKind.DIRECT_COLUMN)
        self.assertEqual(classify_path('actor.id').kind, PathKind.ACTOR_FIELD)
        self.assertEqual(classify_path('source.version').kind, PathKind.SOURCE_FIELD)
        self.assertEqual(classify_path('ctx.sessionId').kind, PathKind.JSON_COLUMN)
        self.assertEqual(classify_path('custom.field').kind, PathKind.FALLBACK)

    def test_resolved_path_fields(self):
        resolved = classify_path('ctx.session.id')
        self.assertEqual(resolved.column, 'ctx')
        self.assertEqual(resolved.json_path, '$.session.id')
        self.assertTrue(resolved.is_json)

        direct = classify_path('runId')
        self.assertEqual(direct.column, 'run_id')
        self.assertIsNone(direct.json_path)
        self.assertFalse(direct.is_json)
        self.assertEqual(direct.sql, 'run_id')

    def test_custom_tables(self):
        resolver = PathResolver(direct_columns={'env': 'environment'}, json_columns=('meta',),
                                fallback_column='ctx')
        self.assertEqual(resolver.resolve('env'), 'environment')
        self.assertEqual(resolver.resolve('meta.region'), "json_extract_string(meta, '$.region')")
        self.assertEqual(resolver.resolve('product'), "json_extract_string(ctx, '$.product')")


class TestPathSafety(unittest.TestCase):
    """Caller-controlled segments must never reach the SQL text unchecked"""

    def test_quote_rejected(self):
        with self.assertRaises(UnsafePathSegment) as cm:
            resolve_path("payload.model') OR 1=1 --")
        self.assertEqual(cm.exception.path, "payload.model') OR 1=1 --")

    def test_json_path_metacharacters_rejected(self):
        for path in ['payload.a[0]', 'payload.$', 'ctx.*', 'payload.a"b', 'custom\\field',
                     'payload.with space', 'payload.model\n']:
            with self.subTest(path=path):
                with self.assertRaises(UnsafePathSegment):
                    resolve_path(path)

    def test_empty_segments_rejected(self):
        for path in ['', 'payload..model', 'custom.', '.model']:
            with self.subTest(path=path):
                with self.assertRaises(UnsafePathSegment):
                    resolve_path(path)

    def test_error_is_value_error(self):
        with self.assertRaises(ValueError):
            resolve_path("ctx.a'b")

    def test_safe_segments_allowed(self):
        self.assertEqual(resolve_path('payload.cache-hit_ratio2'),
                         "json_extract_string(payload, '$.cache-hit_ratio2')")

    def test_fixed_columns_skip_segment_check(self):
        # only segments that end up inside a JSON pointer are checked
        self.assertEqual(resolve_path("product.x'y"), 'product')


if __name__ == '__main__':
    unittest.main()
