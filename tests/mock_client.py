"""
In-memory storage client for testing without a real S3 endpoint.
"""

import threading
import time
from typing import Dict, List, Optional

from s3log_exporter.models import UNKNOWN_OWNER
from s3log_exporter.s3_client import HeadStatus, ObjectPage, StorageError


class MockBucket:
    """One fake bucket and the failures it should produce."""

    def __init__(self, objects: Dict[str, str] = None, owner: str = "owner",
                 tags: Dict[str, str] = None, head: HeadStatus = HeadStatus.OK,
                 acl_error: bool = False, denied_keys: List[str] = None,
                 list_error_after: Optional[int] = None, broken_keys: List[str] = None,
                 head_delay: float = 0.0):
        self.objects = dict(objects or {})
        self.owner = owner
        self.tags = tags
        self.head = head
        self.acl_error = acl_error
        self.denied_keys = set(denied_keys or [])
        self.list_error_after = list_error_after  # fail listing after this many pages
        self.broken_keys = set(broken_keys or [])  # stream dies after the first line
        self.head_delay = head_delay


class MockStorageClient:
    """Mock storage client; records calls and concurrent downloads."""

    def __init__(self, buckets: Dict[str, MockBucket] = None, region: str = "de",
                 delay: float = 0.0, list_error: bool = False):
        self.buckets = buckets or {}
        self.region = region
        self.delay = delay  # Simulate download latency
        self.list_error = list_error
        self.calls = []
        self._lock = threading.Lock()
        self._active = 0
        self.peak_active = 0

    def _call(self, name, *args):
        with self._lock:
            self.calls.append((name,) + args)

    def count(self, name: str) -> int:
        with self._lock:
            return sum(1 for c in self.calls if c[0] == name)

    def list_buckets(self) -> List[str]:
        self._call("list_buckets")
        if self.list_error:
            raise StorageError("ListBuckets", code="InvalidAccessKeyId", message="bad key")
        return list(self.buckets)

    def head_bucket(self, bucket: str) -> HeadStatus:
        self._call("head_bucket", bucket)
        b = self.buckets[bucket]
        if b.head_delay:
            time.sleep(b.head_delay)
        self._call("head_done", bucket)
        if isinstance(b.head, Exception):
            raise b.head
        return b.head

    def list_objects(self, bucket: str, prefix: str, page_token: Optional[str] = None,
                     page_size: int = 1000) -> ObjectPage:
        self._call("list_objects", bucket, prefix, page_token, page_size)
        b = self.buckets.get(bucket)
        if b is None:
            raise StorageError("ListObjectsV2", bucket, "NoSuchBucket", "gone", 404)

        start = int(page_token) if page_token else 0
        page_number = start // page_size
        if b.list_error_after is not None and page_number >= b.list_error_after:
            raise StorageError("ListObjectsV2", bucket, "InternalError", "boom", 500)

        keys = sorted(k for k in b.objects if k.startswith(prefix))
        page = keys[start:start + page_size]
        next_token = str(start + page_size) if start + page_size < len(keys) else None
        return ObjectPage(page, next_token)

    def get_object(self, bucket: str, key: str):
        self._call("get_object", bucket, key)
        with self._lock:
            self._active += 1
            self.peak_active = max(self.peak_active, self._active)
        try:
            if self.delay:
                time.sleep(self.delay)
            b = self.buckets[bucket]
            if key in b.denied_keys:
                raise StorageError("GetObject", bucket, "AccessDenied", "denied", 403)
            for i, line in enumerate(b.objects[key].splitlines()):
                if i == 1 and key in b.broken_keys:
                    raise StorageError("GetObject", bucket, message=f"reading {key}: connection reset")
                yield line.encode("utf-8")
        finally:
            with self._lock:
                self._active -= 1

    def get_bucket_owner(self, bucket: str) -> str:
        self._call("get_bucket_owner", bucket)
        b = self.buckets[bucket]
        if b.acl_error:
            raise StorageError("GetBucketAcl", bucket, "AccessDenied", "denied", 403)
        return b.owner or UNKNOWN_OWNER

    def get_bucket_tagging(self, bucket: str) -> Dict[str, str]:
        self._call("get_bucket_tagging", bucket)
        b = self.buckets[bucket]
        if b.tags is None:
            return {}
        return dict(b.tags)


def log_line(method: str, path: str = "/obj", status: int = 200, agent: str = "-",
             response: str = "100", request: str = "100", extra: str = "5") -> str:
    """Build an access-log line in the shape the parser expects."""
    return (f'abc mybucket [06/Feb/2024:00:00:00 +0000] 10.0.0.1 - REQ '
            f'"{method} {path} HTTP/1.1" {status} {agent} {response} {request} {extra} 4 "-" "ua"')
