"""
Per-bucket access-log scanning.
"""

import logging
from concurrent.futures import Executor, wait
from dataclasses import dataclass
from typing import Optional

from .governor import ConcurrencyGovernor
from .log_parser import parse_log_line
from .models import BucketMetrics
from .s3_client import StorageClient, StorageError
from .store import MetricsStore

logger = logging.getLogger(__name__)


SCAN_SCANNED = "scanned"
SCAN_EMPTY = "empty"
SCAN_FAILED = "failed"
SCAN_FORBIDDEN = "forbidden"
SCAN_SKIPPED = "skipped"


@dataclass
class ScanResult:
    """Outcome of one bucket task (pre-check plus scan)."""
    bucket: str
    status: str
    objects_scanned: int = 0
    objects_failed: int = 0
    observations: int = 0
    error: Optional[str] = None


class ObjectScanner:
    """
    Scans the log objects of one bucket at a time.

    Object downloads are fanned out to the given executor; each download
    holds a governor slot while the request and its body stream are open.
    Counters are staged in the store and only published once every object
    task of the bucket has finished.
    """

    def __init__(self, store: MetricsStore, governor: ConcurrencyGovernor,
                 executor: Executor, page_size: int = 1000, log_prefix: str = "logs/"):
        self.store = store
        self.governor = governor
        self.executor = executor
        self.page_size = page_size
        self.log_prefix = log_prefix

    def _load_tags(self, client: StorageClient, bucket: str):
        try:
            with self.governor.slot():
                tags = client.get_bucket_tagging(bucket)
        except StorageError as e:
            if e.no_such_bucket:
                logger.warning("Bucket %s does not exist", bucket)
            else:
                logger.warning("Error retrieving tags for bucket %s: %s", bucket, e)
            return
        self.store.set_tags(bucket, tags)

    def _process_object(self, client: StorageClient, bucket: str, key: str,
                        metrics: BucketMetrics) -> int:
        """
        Download one log object and fold its lines into the open scan.

        Lines are counted into a private BucketMetrics first and merged into
        the staged entry only once the body has been read to the end.
        """
        partial = BucketMetrics()
        count = 0
        try:
            with self.governor.slot():
                for line in client.get_object(bucket, key):
                    for obs in parse_log_line(line):
                        partial.record(obs.method, obs.request_size, obs.response_size)
                        count += 1
        except StorageError as e:
            if e.access_denied:
                logger.warning("Access denied for object %s in bucket %s", key, bucket)
            else:
                logger.warning("Error downloading object %s from bucket %s: %s", key, bucket, e)
            metrics.mark_object(failed=True)
            return 0

        metrics.merge(partial)
        metrics.mark_object()
        return count

    def scan_bucket(self, client: StorageClient, bucket: str,
                    region: Optional[str] = None) -> ScanResult:
        """
        Scan every object under the log prefix of a bucket.

        Returns SCAN_EMPTY without touching the store when the first page
        is empty, SCAN_FAILED when the owner lookup or a listing call
        fails, SCAN_SCANNED after the new counters were committed.
        """
        region = region if region is not None else client.region

        self._load_tags(client, bucket)

        try:
            with self.governor.slot():
                owner = client.get_bucket_owner(bucket)
        except StorageError as e:
            logger.error("Error retrieving ACL for bucket %s: %s", bucket, e)
            return ScanResult(bucket, SCAN_FAILED, error=str(e))

        metrics = None
        futures = []
        token = None
        list_error = None

        while True:
            try:
                with self.governor.slot():
                    page = client.list_objects(bucket, self.log_prefix, token, self.page_size)
            except StorageError as e:
                if e.no_such_bucket:
                    logger.error("Bucket %s does not exist", bucket)
                else:
                    logger.error("Error listing objects in bucket %s: %s", bucket, e)
                list_error = e
                break

            if metrics is None:
                if not page.keys:
                    logger.info("Bucket %s does not contain any objects with the %r prefix",
                                bucket, self.log_prefix)
                    return ScanResult(bucket, SCAN_EMPTY)
                metrics = self.store.begin_scan(bucket, region=region, owner=owner)

            for key in page.keys:
                futures.append(
                    self.executor.submit(self._process_object, client, bucket, key, metrics)
                )

            if not page.next_token:
                break
            token = page.next_token

        # Join every object task of this bucket before publishing
        wait(futures)

        observations = 0
        crashed = 0
        for future in futures:
            try:
                observations += future.result()
            except Exception:
                logger.exception("Object task for bucket %s crashed", bucket)
                crashed += 1

        if metrics is None or list_error is not None:
            if metrics is not None:
                self.store.abort_scan(bucket)
            return ScanResult(bucket, SCAN_FAILED, error=str(list_error))

        committed = self.store.commit_scan(bucket)
        logger.debug("Bucket %s scanned: %d objects, %d observations",
                     bucket, committed.objects_scanned, observations)

        return ScanResult(
            bucket,
            SCAN_SCANNED,
            objects_scanned=committed.objects_scanned,
            objects_failed=committed.objects_failed + crashed,
            observations=observations,
        )
