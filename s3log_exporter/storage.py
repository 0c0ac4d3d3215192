"""
DuckDB storage for committed access-log snapshots.
"""

import json
from typing import Any, Dict, List, Optional

import duckdb

from .models import BucketMetrics


class Storage:
    """DuckDB storage: latest counters per bucket/method plus history."""

    def __init__(self, db_path: str, read_only: bool = False):
        self.db_path = db_path
        self.conn = duckdb.connect(db_path, read_only=read_only)
        if not read_only:
            self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        # One row per bucket (latest scan)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS buckets (
                bucket_name VARCHAR PRIMARY KEY,
                region VARCHAR,
                owner VARCHAR,
                objects_scanned INTEGER,
                objects_failed INTEGER,
                tags JSON,
                collected_at TIMESTAMP
            )
        """)

        # Latest counters, one row per bucket and HTTP method
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS bucket_method_stats (
                bucket_name VARCHAR,
                method VARCHAR,
                request_count BIGINT,
                request_bytes BIGINT,
                response_bytes BIGINT,
                collected_at TIMESTAMP,
                PRIMARY KEY (bucket_name, method)
            )
        """)

        # Every committed scan, for tracking changes over time
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS bucket_method_history (
                id INTEGER PRIMARY KEY,
                bucket_name VARCHAR,
                method VARCHAR,
                request_count BIGINT,
                request_bytes BIGINT,
                response_bytes BIGINT,
                collected_at TIMESTAMP
            )
        """)

        self.conn.execute("""
            CREATE SEQUENCE IF NOT EXISTS history_seq START 1
        """)

        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_history_bucket ON bucket_method_history(bucket_name)")

        self.conn.commit()

    def upsert_bucket_metrics(self, bucket_name: str, metrics: BucketMetrics,
                              tags: Optional[Dict[str, str]] = None,
                              save_history: bool = True):
        """Replace all stored rows of a bucket with the given metrics."""
        self.conn.execute("""
            INSERT OR REPLACE INTO buckets VALUES (?, ?, ?, ?, ?, ?, ?)
        """, [
            bucket_name, metrics.region, metrics.owner,
            metrics.objects_scanned, metrics.objects_failed,
            json.dumps(tags or {}), metrics.collected_at
        ])

        # Full replace: methods absent from this scan must not linger
        self.conn.execute("DELETE FROM bucket_method_stats WHERE bucket_name = ?", [bucket_name])

        methods = set(metrics.method_counts) | set(metrics.request_sizes) | set(metrics.response_sizes)
        for method in sorted(methods):
            row = [
                metrics.method_counts.get(method, 0),
                metrics.request_sizes.get(method, 0),
                metrics.response_sizes.get(method, 0),
                metrics.collected_at,
            ]
            self.conn.execute("""
                INSERT INTO bucket_method_stats VALUES (?, ?, ?, ?, ?, ?)
            """, [bucket_name, method] + row)

            if save_history:
                self.conn.execute("""
                    INSERT INTO bucket_method_history VALUES (
                        nextval('history_seq'), ?, ?, ?, ?, ?, ?
                    )
                """, [bucket_name, method] + row)

    def _collected_times(self) -> Dict[str, Any]:
        result = self.conn.execute("SELECT bucket_name, collected_at FROM buckets").fetchall()
        return {row[0]: row[1] for row in result}

    def save_snapshot(self, snapshot: Dict[str, BucketMetrics],
                      tags: Dict[str, Dict[str, str]] = None) -> int:
        """
        Store a registry snapshot.

        Buckets whose commit time did not change since the last save are
        skipped, so history only grows when a bucket was rescanned.
        Returns the number of buckets written.
        """
        tags = tags or {}
        known = self._collected_times()
        saved = 0

        for bucket_name, metrics in snapshot.items():
            if bucket_name in known and known[bucket_name] == metrics.collected_at:
                continue
            self.upsert_bucket_metrics(bucket_name, metrics, tags.get(bucket_name))
            saved += 1

        return saved

    def get_bucket(self, bucket_name: str) -> Optional[Dict[str, Any]]:
        """Get stored stats for a specific bucket."""
        result = self.conn.execute("""
            SELECT bucket_name, region, owner, objects_scanned, objects_failed,
                   tags, collected_at
            FROM buckets WHERE bucket_name = ?
        """, [bucket_name]).fetchone()

        if not result:
            return None

        columns = ['bucket_name', 'region', 'owner', 'objects_scanned',
                   'objects_failed', 'tags', 'collected_at']
        bucket = dict(zip(columns, result))
        bucket['tags'] = json.loads(bucket['tags']) if bucket['tags'] else {}

        methods = self.conn.execute("""
            SELECT method, request_count, request_bytes, response_bytes
            FROM bucket_method_stats WHERE bucket_name = ?
            ORDER BY method
        """, [bucket_name]).fetchall()
        bucket['methods'] = {
            r[0]: {'request_count': r[1], 'request_bytes': r[2], 'response_bytes': r[3]}
            for r in methods
        }
        return bucket

    def get_bucket_history(self, bucket_name: str, limit: int = 100) -> List[Dict]:
        """Committed scans of a bucket, newest first."""
        result = self.conn.execute("""
            SELECT collected_at, method, request_count, request_bytes, response_bytes
            FROM bucket_method_history
            WHERE bucket_name = ?
            ORDER BY collected_at DESC, method
            LIMIT ?
        """, [bucket_name, limit]).fetchall()

        return [{'collected_at': r[0], 'method': r[1], 'request_count': r[2],
                 'request_bytes': r[3], 'response_bytes': r[4]} for r in result]

    def get_summary(self) -> Dict[str, Any]:
        """Get overall summary statistics."""
        buckets = self.conn.execute("""
            SELECT
                COUNT(*) as total_buckets,
                COUNT(DISTINCT owner) as total_owners,
                MIN(collected_at) as oldest_collection,
                MAX(collected_at) as newest_collection
            FROM buckets
        """).fetchone()

        totals = self.conn.execute("""
            SELECT
                COALESCE(SUM(request_count), 0),
                COALESCE(SUM(request_bytes), 0),
                COALESCE(SUM(response_bytes), 0)
            FROM bucket_method_stats
        """).fetchone()

        return {
            'total_buckets': buckets[0],
            'total_owners': buckets[1],
            'oldest_collection': buckets[2],
            'newest_collection': buckets[3],
            'total_requests': totals[0],
            'total_request_bytes': totals[1],
            'total_response_bytes': totals[2],
        }

    def query(self, sql: str) -> Any:
        """Execute custom SQL query."""
        return self.conn.execute(sql)

    def commit(self):
        """Commit transaction."""
        self.conn.commit()

    def close(self):
        """Close connection."""
        self.conn.close()

    # Query methods
    def top_buckets_by_requests(self, limit: int = 20) -> List[Dict]:
        """Get buckets with the most logged requests."""
        result = self.conn.execute("""
            SELECT b.bucket_name, b.owner, b.region,
                   SUM(s.request_count) AS requests,
                   SUM(s.request_bytes) AS request_bytes,
                   SUM(s.response_bytes) AS response_bytes,
                   b.collected_at
            FROM buckets b
            JOIN bucket_method_stats s ON s.bucket_name = b.bucket_name
            GROUP BY b.bucket_name, b.owner, b.region, b.collected_at
            ORDER BY requests DESC
            LIMIT ?
        """, [limit]).fetchall()

        return [{'bucket_name': r[0], 'owner': r[1], 'region': r[2], 'requests': r[3],
                 'request_bytes': r[4], 'response_bytes': r[5], 'collected_at': r[6]}
                for r in result]

    def summary_by_owner(self) -> List[Dict]:
        """Get summary grouped by owner."""
        result = self.conn.execute("""
            SELECT b.owner, COUNT(DISTINCT b.bucket_name) AS buckets,
                   COALESCE(SUM(s.request_count), 0) AS requests,
                   COALESCE(SUM(s.response_bytes), 0) AS response_bytes
            FROM buckets b
            LEFT JOIN bucket_method_stats s ON s.bucket_name = b.bucket_name
            GROUP BY b.owner
            ORDER BY requests DESC
        """).fetchall()

        return [{'owner': r[0], 'buckets': r[1], 'requests': r[2],
                 'response_bytes': r[3]} for r in result]

    def summary_by_method(self) -> List[Dict]:
        """Get request totals grouped by HTTP method."""
        result = self.conn.execute("""
            SELECT method,
                   COUNT(DISTINCT bucket_name) AS buckets,
                   SUM(request_count) AS requests,
                   SUM(request_bytes) AS request_bytes,
                   SUM(response_bytes) AS response_bytes
            FROM bucket_method_stats
            GROUP BY method
            ORDER BY requests DESC
        """).fetchall()

        return [{'method': r[0], 'buckets': r[1], 'requests': r[2],
                 'request_bytes': r[3], 'response_bytes': r[4]} for r in result]

    def export_buckets(self, limit: Optional[int] = None) -> Dict[str, Dict[str, Any]]:
        """All stored buckets keyed by name, in the snapshot JSON layout."""
        names = [r[0] for r in self.conn.execute(
            "SELECT bucket_name FROM buckets ORDER BY bucket_name"
        ).fetchall()]
        if limit:
            names = names[:limit]

        exported = {}
        for name in names:
            bucket = self.get_bucket(name)
            exported[name] = {
                'region': bucket['region'],
                'owner': bucket['owner'],
                'tags': bucket['tags'],
                'method_counts': {m: v['request_count'] for m, v in bucket['methods'].items()},
                'request_sizes': {m: v['request_bytes'] for m, v in bucket['methods'].items()},
                'response_sizes': {m: v['response_bytes'] for m, v in bucket['methods'].items()},
                'collected_at': bucket['collected_at'].isoformat() if bucket['collected_at'] else None,
            }
        return exported
