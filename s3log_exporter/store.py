"""
Thread-safe aggregate registry of per-bucket access-log metrics.
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional

from .models import BucketMetrics, UNKNOWN_OWNER


class MetricsStore:
    """
    Process-wide registry mapping bucket name to its committed metrics,
    plus a side table of bucket tags.

    The registry lock only guards dictionary membership; counter updates
    take the per-bucket lock inside BucketMetrics. A scan stages its
    counters with begin_scan() and publishes them with commit_scan(), so
    readers never see a half-scanned bucket and a failed scan leaves the
    previous entry in place.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._buckets: Dict[str, BucketMetrics] = {}
        self._tags: Dict[str, Dict[str, str]] = {}
        self._pending: Dict[str, BucketMetrics] = {}

    # Writes

    def _target(self, name: str) -> BucketMetrics:
        with self._lock:
            target = self._pending.get(name)
            if target is None:
                target = self._buckets.get(name)
                if target is None:
                    target = self._buckets[name] = BucketMetrics()
        return target

    def upsert_bucket(self, name: str, metrics: BucketMetrics):
        """Replace the committed entry for a bucket."""
        with self._lock:
            self._buckets[name] = metrics

    def record_observation(self, name: str, method: str,
                           request_size: Optional[int] = None,
                           response_size: Optional[int] = None):
        """
        Count one request for a bucket.

        Goes to the bucket's open scan when there is one, otherwise to the
        committed entry (created empty if missing).
        """
        self._target(name).record(method, request_size, response_size)

    def set_tags(self, name: str, tags: Dict[str, str]):
        """Replace the tag set for a bucket."""
        with self._lock:
            self._tags[name] = dict(tags)

    def begin_scan(self, name: str, region: str = "",
                   owner: str = UNKNOWN_OWNER) -> BucketMetrics:
        """Open a fresh staging entry for a bucket scan."""
        metrics = BucketMetrics(region=region, owner=owner)
        with self._lock:
            self._pending[name] = metrics
        return metrics

    def commit_scan(self, name: str) -> BucketMetrics:
        """Publish the staged entry, replacing whatever was committed before."""
        with self._lock:
            metrics = self._pending.pop(name)
            metrics.collected_at = datetime.utcnow()
            self._buckets[name] = metrics
        return metrics

    def abort_scan(self, name: str):
        """Drop the staged entry; the committed one stays untouched."""
        with self._lock:
            self._pending.pop(name, None)

    # Reads

    def get(self, name: str) -> Optional[BucketMetrics]:
        with self._lock:
            metrics = self._buckets.get(name)
        return metrics.copy() if metrics is not None else None

    def get_tags(self, name: str) -> Dict[str, str]:
        with self._lock:
            return dict(self._tags.get(name, {}))

    def snapshot(self) -> Dict[str, BucketMetrics]:
        """Copy of all committed entries, safe to read while scans run."""
        with self._lock:
            items = list(self._buckets.items())
        return {name: metrics.copy() for name, metrics in items}

    def tags_snapshot(self) -> Dict[str, Dict[str, str]]:
        with self._lock:
            return {name: dict(tags) for name, tags in self._tags.items()}

    def bucket_names(self) -> List[str]:
        with self._lock:
            return sorted(self._buckets)

    def scanning(self) -> List[str]:
        """Buckets with a scan currently open."""
        with self._lock:
            return sorted(self._pending)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._buckets

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)
