"""
Bucket discovery for one storage endpoint.
"""

import logging
from concurrent.futures import Executor, as_completed
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from botocore.exceptions import BotoCoreError

from .governor import ConcurrencyGovernor
from .models import EndpointConfig
from .s3_client import HeadStatus, StorageClient, StorageError, create_client
from .scanner import (ObjectScanner, ScanResult, SCAN_EMPTY, SCAN_FAILED, SCAN_FORBIDDEN,
                      SCAN_SCANNED, SCAN_SKIPPED)

logger = logging.getLogger(__name__)


@dataclass
class EndpointResult:
    """Outcome of discovering and scanning one endpoint."""
    endpoint: str
    buckets_total: int = 0
    scan_results: List[ScanResult] = field(default_factory=list)
    error: Optional[str] = None

    def _count(self, status: str) -> int:
        return sum(1 for r in self.scan_results if r.status == status)

    @property
    def buckets_scanned(self) -> int:
        return self._count(SCAN_SCANNED)

    @property
    def buckets_empty(self) -> int:
        return self._count(SCAN_EMPTY)

    @property
    def buckets_failed(self) -> int:
        return self._count(SCAN_FAILED)

    @property
    def buckets_forbidden(self) -> int:
        return self._count(SCAN_FORBIDDEN)

    @property
    def buckets_skipped(self) -> int:
        return self._count(SCAN_SKIPPED)


class BucketDiscoverer:
    """
    Lists the buckets of an endpoint and dispatches one task per bucket.

    Each task pre-checks its bucket with a HEAD request and only scans it
    when the bucket is readable, so a slow HEAD delays that bucket alone.
    """

    def __init__(self, scanner: ObjectScanner, governor: ConcurrencyGovernor,
                 executor: Executor,
                 client_factory: Callable[[EndpointConfig], StorageClient] = create_client):
        self.scanner = scanner
        self.governor = governor
        self.executor = executor
        self.client_factory = client_factory

    def check_and_scan(self, client: StorageClient, bucket: str,
                       endpoint: EndpointConfig) -> ScanResult:
        """HEAD pre-check, then the full scan of an accessible bucket."""
        with self.governor.slot():
            status = client.head_bucket(bucket)

        if status is HeadStatus.FORBIDDEN:
            logger.debug("Bucket %s is not accessible from endpoint %s", bucket, endpoint.name)
            return ScanResult(bucket, SCAN_FORBIDDEN)
        if status is HeadStatus.ERROR:
            logger.warning("Error checking the bucket head for %s on endpoint %s, skipping",
                           bucket, endpoint.name)
            return ScanResult(bucket, SCAN_SKIPPED, error="HeadBucket failed")

        return self.scanner.scan_bucket(client, bucket, endpoint.region)

    def discover(self, endpoint: EndpointConfig) -> EndpointResult:
        """Scan every accessible bucket of an endpoint and wait for all of them."""
        result = EndpointResult(endpoint=endpoint.name)

        try:
            client = self.client_factory(endpoint)
        except (BotoCoreError, ValueError) as e:
            logger.error("Error creating service client for endpoint %s: %s", endpoint.name, e)
            result.error = str(e)
            return result

        logger.info("Using service client for endpoint: %s (%s)",
                    endpoint.name, endpoint.endpoint_url)

        try:
            with self.governor.slot():
                buckets = client.list_buckets()
        except StorageError as e:
            logger.error("Error while listing buckets on endpoint %s: %s", endpoint.name, e)
            result.error = str(e)
            return result

        result.buckets_total = len(buckets)

        futures = {
            self.executor.submit(self.check_and_scan, client, bucket, endpoint): bucket
            for bucket in buckets
        }

        for future in as_completed(futures):
            bucket = futures[future]
            try:
                result.scan_results.append(future.result())
            except Exception as e:
                logger.exception("Scan of bucket %s crashed", bucket)
                result.scan_results.append(ScanResult(bucket, SCAN_FAILED, error=str(e)))

        return result
