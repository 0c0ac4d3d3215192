"""
Data models for S3 access-log statistics.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Optional, NamedTuple


METHOD_GET = "GET"
METHOD_PUT = "PUT"
METHOD_POST = "POST"
METHOD_HEAD = "HEAD"

HTTP_METHODS = (METHOD_GET, METHOD_PUT, METHOD_POST, METHOD_HEAD)

UNKNOWN_OWNER = "Unknown"


class Observation(NamedTuple):
    """One parsed (method, request size, response size) record from a log line."""
    method: str
    request_size: Optional[int] = None
    response_size: Optional[int] = None


class BucketMetrics:
    """
    Aggregated access-log counters for a single bucket.

    Counters are keyed by HTTP method; a missing key means zero.
    Each instance owns its lock so concurrent object tasks of the same
    bucket serialize only against each other.
    """

    def __init__(self, region: str = "", owner: str = UNKNOWN_OWNER,
                 method_counts: Dict[str, int] = None,
                 request_sizes: Dict[str, int] = None,
                 response_sizes: Dict[str, int] = None):
        self.region = region
        self.owner = owner
        self.method_counts: Dict[str, int] = dict(method_counts or {})
        self.request_sizes: Dict[str, int] = dict(request_sizes or {})
        self.response_sizes: Dict[str, int] = dict(response_sizes or {})
        self.objects_scanned = 0
        self.objects_failed = 0
        self.collected_at: Optional[datetime] = None
        self._lock = threading.Lock()

    def record(self, method: str, request_size: Optional[int] = None,
               response_size: Optional[int] = None):
        """Fold one observation into the counters."""
        with self._lock:
            self.method_counts[method] = self.method_counts.get(method, 0) + 1
            if request_size is not None:
                self.request_sizes[method] = self.request_sizes.get(method, 0) + request_size
            if response_size is not None:
                self.response_sizes[method] = self.response_sizes.get(method, 0) + response_size

    def merge(self, other: 'BucketMetrics'):
        """Add another instance's counters to this one in a single locked step."""
        partial = other.copy()
        with self._lock:
            for method, count in partial.method_counts.items():
                self.method_counts[method] = self.method_counts.get(method, 0) + count
            for method, size in partial.request_sizes.items():
                self.request_sizes[method] = self.request_sizes.get(method, 0) + size
            for method, size in partial.response_sizes.items():
                self.response_sizes[method] = self.response_sizes.get(method, 0) + size

    def mark_object(self, failed: bool = False):
        with self._lock:
            if failed:
                self.objects_failed += 1
            else:
                self.objects_scanned += 1

    def copy(self) -> 'BucketMetrics':
        """Return an independent copy taken under this bucket's lock."""
        with self._lock:
            clone = BucketMetrics(
                region=self.region,
                owner=self.owner,
                method_counts=self.method_counts,
                request_sizes=self.request_sizes,
                response_sizes=self.response_sizes,
            )
            clone.objects_scanned = self.objects_scanned
            clone.objects_failed = self.objects_failed
            clone.collected_at = self.collected_at
        return clone

    @property
    def total_requests(self) -> int:
        with self._lock:
            return sum(self.method_counts.values())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (used by the JSON cache and export)."""
        with self._lock:
            return {
                'region': self.region,
                'owner': self.owner,
                'method_counts': dict(self.method_counts),
                'request_sizes': dict(self.request_sizes),
                'response_sizes': dict(self.response_sizes),
                'objects_scanned': self.objects_scanned,
                'objects_failed': self.objects_failed,
                'collected_at': self.collected_at.isoformat() if self.collected_at else None,
            }

    def __eq__(self, other):
        if not isinstance(other, BucketMetrics):
            return NotImplemented
        return (self.region == other.region and self.owner == other.owner
                and self.method_counts == other.method_counts
                and self.request_sizes == other.request_sizes
                and self.response_sizes == other.response_sizes)

    def __repr__(self):
        return (f"BucketMetrics(region={self.region!r}, owner={self.owner!r}, "
                f"method_counts={self.method_counts!r}, "
                f"request_sizes={self.request_sizes!r}, "
                f"response_sizes={self.response_sizes!r})")


@dataclass(frozen=True)
class EndpointConfig:
    """One storage endpoint: a region, its base URL and static credentials."""
    name: str
    region: str
    endpoint_url: str
    access_key: str = field(default="", repr=False)
    secret_key: str = field(default="", repr=False)


# Endpoints scanned when none are given on the command line
DEFAULT_ENDPOINTS = {
    "de": "https://s3-eu-central-1.ionoscloud.com",
    "eu-central-2": "https://s3-eu-central-2.ionoscloud.com",
}


@dataclass
class CollectorConfig:
    """Configuration for the collector."""
    # Cycle settings
    refresh_interval_seconds: int = 200

    # Concurrency
    max_concurrent: int = 10  # governor capacity, shared by bucket and object I/O
    bucket_workers: int = 10
    object_workers: int = 10

    # Listing
    page_size: int = 1000
    log_prefix: str = "logs/"

    # Per-call network settings
    connect_timeout: int = 10
    read_timeout: int = 60
    max_retries: int = 3

    # Outputs (all optional)
    db_path: Optional[str] = None
    cache_path: Optional[str] = None
    metrics_port: Optional[int] = None

    def __post_init__(self):
        # Ensure reasonable bounds
        self.max_concurrent = max(1, self.max_concurrent)
        self.bucket_workers = max(1, self.bucket_workers)
        self.object_workers = max(1, self.object_workers)
        self.page_size = max(1, min(self.page_size, 1000))
