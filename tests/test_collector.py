"""
Test suite for the S3 access-log collector.

Run with: python -m pytest tests/ -v
Or: python tests/test_collector.py
"""

import json
import os
import shutil
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.dirname(__file__))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from mock_client import MockBucket, MockStorageClient, log_line
from s3log_exporter.collector import Collector
from s3log_exporter.models import CollectorConfig, EndpointConfig
from s3log_exporter.s3_client import HeadStatus
from s3log_exporter.storage import Storage


DE = EndpointConfig("de", "de", "https://s3-eu-central-1.example.com")
EU2 = EndpointConfig("eu-central-2", "eu-central-2", "https://s3-eu-central-2.example.com")


def make_collector(clients, config=None, **kwargs) -> Collector:
    endpoints = [DE, EU2][:len(clients)]
    return Collector(
        config=config or CollectorConfig(max_concurrent=4, bucket_workers=4, object_workers=4),
        endpoints=endpoints,
        client_factory=lambda ep: clients[ep.name],
        output_callback=lambda x: None,  # Suppress output
        **kwargs
    )


class TestCollector(unittest.TestCase):
    """Test collection cycles against in-memory endpoints."""

    def test_forbidden_bucket_is_dropped(self):
        """Only the accessible bucket ends up in the registry."""
        client = MockStorageClient({
            "b1": MockBucket(objects={"logs/x": log_line("GET")}, head=HeadStatus.FORBIDDEN),
            "b2": MockBucket(objects={
                "logs/o1": '"GET /a" 200 ref 10 50 3"\n"PUT /b" 200 ref 20 30 3"',
            }, owner="alice"),
        })
        collector = make_collector({"de": client})

        result = collector.run_once()

        self.assertEqual(result['buckets_total'], 2)
        self.assertEqual(result['buckets_forbidden'], 1)
        self.assertEqual(result['buckets_scanned'], 1)
        self.assertIsNone(collector.store.get("b1"))
        m = collector.store.get("b2")
        self.assertEqual(m.method_counts, {"GET": 1, "PUT": 1})
        self.assertEqual(m.response_sizes, {"GET": 10, "PUT": 20})
        self.assertEqual(m.request_sizes, {"GET": 50, "PUT": 30})
        self.assertEqual(m.owner, "alice")
        self.assertEqual(m.region, "de")
        # Forbidden buckets are never scanned
        self.assertNotIn(("get_bucket_owner", "b1"), client.calls)
        self.assertFalse(any(c[0] == "list_objects" and c[1] == "b1" for c in client.calls))

    def test_bucket_failure_is_isolated(self):
        client = MockStorageClient({
            "a": MockBucket(objects={"logs/1": log_line("GET")}),
            "b": MockBucket(objects={"logs/1": log_line("GET")}, acl_error=True),
            "c": MockBucket(objects={"logs/1": log_line("PUT")}),
        })
        collector = make_collector({"de": client})

        result = collector.run_once()

        self.assertEqual(result['buckets_scanned'], 2)
        self.assertEqual(result['buckets_failed'], 1)
        self.assertEqual(collector.store.bucket_names(), ["a", "c"])

    def test_head_error_is_skipped(self):
        client = MockStorageClient({
            "a": MockBucket(objects={"logs/1": log_line("GET")}, head=HeadStatus.ERROR),
        })
        collector = make_collector({"de": client})

        result = collector.run_once()

        self.assertEqual(result['buckets_failed'], 1)
        self.assertEqual(len(collector.store), 0)

    def test_slow_head_does_not_hold_back_other_buckets(self):
        client = MockStorageClient({
            "slow": MockBucket(objects={"logs/1": log_line("GET")}, head_delay=0.5),
            "fast": MockBucket(objects={"logs/1": log_line("PUT")}),
        })
        collector = make_collector({"de": client})

        result = collector.run_once()

        self.assertEqual(result['buckets_scanned'], 2)
        calls = list(client.calls)
        slow_head_done = calls.index(("head_done", "slow"))
        fast_listed = next(i for i, c in enumerate(calls)
                           if c[0] == "list_objects" and c[1] == "fast")
        self.assertLess(fast_listed, slow_head_done)

    def test_head_crash_is_contained(self):
        client = MockStorageClient({
            "broken": MockBucket(objects={"logs/1": log_line("GET")},
                                 head=RuntimeError("unexpected response")),
            "ok": MockBucket(objects={"logs/1": log_line("GET")}),
        })
        collector = make_collector({"de": client})

        result = collector.run_once()

        self.assertEqual(result['buckets_scanned'], 1)
        self.assertEqual(result['buckets_failed'], 1)
        self.assertEqual(collector.store.bucket_names(), ["ok"])

    def test_empty_bucket_counted(self):
        client = MockStorageClient({"a": MockBucket(objects={})})
        collector = make_collector({"de": client})

        result = collector.run_once()

        self.assertEqual(result['buckets_empty'], 1)
        self.assertEqual(result['buckets_scanned'], 0)
        self.assertEqual(result['registry_size'], 0)

    def test_endpoint_failure_is_isolated(self):
        bad = MockStorageClient({}, list_error=True)
        good = MockStorageClient({"x": MockBucket(objects={"logs/1": log_line("HEAD")})},
                                 region="eu-central-2")
        collector = make_collector({"de": bad, "eu-central-2": good})

        result = collector.run_once()

        self.assertEqual(result['endpoints'], 2)
        self.assertEqual(result['endpoints_failed'], 1)
        self.assertEqual(collector.store.get("x").region, "eu-central-2")
        self.assertEqual(collector.get_status()['collector_stats']['endpoints_failed'], 1)

    def test_client_factory_failure(self):
        def factory(ep):
            raise ValueError("bad endpoint url")

        collector = Collector(CollectorConfig(), [DE], client_factory=factory,
                              output_callback=lambda x: None)

        result = collector.run_once()

        self.assertEqual(result['endpoints_failed'], 1)
        self.assertEqual(result['buckets_total'], 0)

    def test_every_cycle_rescans(self):
        """The second cycle lists again and replaces the counters."""
        bucket = MockBucket(objects={"logs/1": log_line("GET"), "logs/2": log_line("GET")})
        client = MockStorageClient({"b": bucket})
        collector = make_collector({"de": client})

        collector.run_once()
        self.assertEqual(collector.store.get("b").method_counts, {"GET": 2})

        del bucket.objects["logs/2"]
        bucket.objects["logs/3"] = log_line("POST")
        collector.run_once()

        self.assertEqual(client.count("list_buckets"), 2)
        self.assertEqual(collector.store.get("b").method_counts, {"GET": 1, "POST": 1})
        self.assertEqual(collector.get_status()['collector_stats']['cycles_completed'], 2)

    def test_vanished_bucket_keeps_last_counters(self):
        client = MockStorageClient({
            "a": MockBucket(objects={"logs/1": log_line("GET")}),
            "b": MockBucket(objects={"logs/1": log_line("PUT")}),
        })
        collector = make_collector({"de": client})
        collector.run_once()

        del client.buckets["b"]
        collector.run_once()

        self.assertEqual(collector.store.bucket_names(), ["a", "b"])
        self.assertEqual(collector.store.get("b").method_counts, {"PUT": 1})

    def test_bounded_concurrency_across_buckets(self):
        buckets = {
            f"b{i}": MockBucket(objects={f"logs/{j}": log_line("GET") for j in range(5)})
            for i in range(6)
        }
        client = MockStorageClient(buckets, delay=0.01)
        config = CollectorConfig(max_concurrent=3, bucket_workers=6, object_workers=8)
        collector = make_collector({"de": client}, config=config)

        result = collector.run_once()

        self.assertEqual(result['buckets_scanned'], 6)
        self.assertEqual(result['observations'], 30)
        self.assertLessEqual(client.peak_active, 3)
        self.assertLessEqual(collector.governor.peak, 3)

    def test_get_status(self):
        collector = make_collector({"de": MockStorageClient({})})

        status = collector.get_status()

        self.assertEqual(status['registry_size'], 0)
        self.assertEqual(status['scanning'], [])
        self.assertEqual(status['config']['max_concurrent'], 4)
        self.assertEqual(status['config']['log_prefix'], "logs/")


class TestIntegration(unittest.TestCase):
    """Collector with DuckDB persistence and the JSON cache."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.tmpdir, 'stats.duckdb')
        self.cache_path = os.path.join(self.tmpdir, 'cache.json')

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_full_workflow(self):
        """Collect, persist, query, read the cache."""
        config = CollectorConfig(db_path=self.db_path, cache_path=self.cache_path,
                                 max_concurrent=4)
        client = MockStorageClient({
            "project-a": MockBucket(objects={
                "logs/1": "\n".join(log_line("GET", response="100") for _ in range(3)),
            }, owner="alice", tags={"Tenant": "a"}),
            "project-b": MockBucket(objects={
                "logs/1": log_line("PUT", request="4096"),
            }, owner="bob"),
        })
        collector = make_collector({"de": client}, config=config)

        collector.run_once()
        collector.run_once()
        collector.close()

        storage = Storage(self.db_path, read_only=True)
        try:
            summary = storage.get_summary()
            self.assertEqual(summary['total_buckets'], 2)
            self.assertEqual(summary['total_requests'], 4)

            bucket = storage.get_bucket("project-a")
            self.assertEqual(bucket['owner'], "alice")
            self.assertEqual(bucket['tags'], {"Tenant": "a"})
            self.assertEqual(bucket['methods']['GET']['response_bytes'], 300)

            # Two cycles, two commits of the single GET row
            self.assertEqual(len(storage.get_bucket_history("project-a")), 2)
        finally:
            storage.close()

        with open(self.cache_path) as f:
            cache = json.load(f)
        self.assertEqual(cache['summary']['total_buckets'], 2)
        self.assertEqual(cache['summary']['total_requests'], 4)
        self.assertEqual(cache['top_by_requests'][0]['bucket_name'], "project-a")
        self.assertEqual(cache['by_method']['PUT']['request_bytes'], 4096)
        self.assertIn('_cache_updated', cache)


if __name__ == '__main__':
    unittest.main()
