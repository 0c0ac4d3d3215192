"""
Prometheus exposition of the aggregated access-log counters.

Metrics exposed, per HTTP method (get, put, post, head):
- s3_total_<method>_request_size_in_bytes
- s3_total_<method>_response_size_in_bytes
- s3_total_number_of_<method>_requests
plus s3_exporter_buckets, the number of buckets with committed counters.

Labels: bucket, method, region, owner, enviroment, namespace, tenant.
The last three come from the bucket's tags. The environment label is named
"enviroment", as in the series already published; its tag is read under
either spelling.
"""

import logging
from typing import Dict, Iterator

from prometheus_client import start_http_server
from prometheus_client.core import GaugeMetricFamily, REGISTRY

from .models import HTTP_METHODS
from .store import MetricsStore

logger = logging.getLogger(__name__)

LABELS = ["bucket", "method", "region", "owner", "enviroment", "namespace", "tenant"]

# Label name -> tag keys it is read from (case-insensitive)
_TAG_KEYS = {
    "enviroment": ("environment", "enviroment"),
    "namespace": ("namespace",),
    "tenant": ("tenant",),
}


def tag_labels(tags: Dict[str, str]) -> Dict[str, str]:
    """Map a bucket's tag set onto the enviroment/namespace/tenant labels."""
    lowered = {k.lower(): v for k, v in tags.items()}
    labels = {}
    for label, keys in _TAG_KEYS.items():
        labels[label] = next((lowered[k] for k in keys if k in lowered), "")
    return labels


class BucketMetricsCollector:
    """Custom collector rendering a fresh store snapshot on every scrape."""

    def __init__(self, store: MetricsStore):
        self.store = store

    def _families(self) -> Dict[str, GaugeMetricFamily]:
        families = {}
        for method in HTTP_METHODS:
            m = method.lower()
            families[f"request_size:{method}"] = GaugeMetricFamily(
                f"s3_total_{m}_request_size_in_bytes",
                f"Gives the total size of s3 {method} Request in Bytes in one Bucket",
                labels=LABELS,
            )
            families[f"response_size:{method}"] = GaugeMetricFamily(
                f"s3_total_{m}_response_size_in_bytes",
                f"Gives the total size of s3 {method} Response in Bytes in one Bucket",
                labels=LABELS,
            )
            families[f"count:{method}"] = GaugeMetricFamily(
                f"s3_total_number_of_{m}_requests",
                f"Gives the total number of S3 {method} HTTP Requests in one Bucket",
                labels=LABELS,
            )
        return families

    def describe(self) -> Iterator[GaugeMetricFamily]:
        yield from self._families().values()
        yield GaugeMetricFamily("s3_exporter_buckets", "Number of buckets with access-log counters")

    def collect(self) -> Iterator[GaugeMetricFamily]:
        families = self._families()
        snapshot = self.store.snapshot()
        tags = self.store.tags_snapshot()

        for bucket, metrics in snapshot.items():
            extra = tag_labels(tags.get(bucket, {}))

            def values(method):
                return [bucket, method, metrics.region, metrics.owner,
                        extra["enviroment"], extra["namespace"], extra["tenant"]]

            for method, size in metrics.request_sizes.items():
                if method in HTTP_METHODS:
                    families[f"request_size:{method}"].add_metric(values(method), float(size))
            for method, size in metrics.response_sizes.items():
                if method in HTTP_METHODS:
                    families[f"response_size:{method}"].add_metric(values(method), float(size))
            for method, count in metrics.method_counts.items():
                if method in HTTP_METHODS:
                    families[f"count:{method}"].add_metric(values(method), float(count))

        yield from families.values()
        yield GaugeMetricFamily("s3_exporter_buckets",
                                "Number of buckets with access-log counters",
                                value=len(snapshot))


def register(store: MetricsStore, registry=REGISTRY) -> BucketMetricsCollector:
    """Register a collector for the store with a Prometheus registry."""
    collector = BucketMetricsCollector(store)
    registry.register(collector)
    return collector


def start_metrics_server(port: int, store: MetricsStore, addr: str = "0.0.0.0"):
    """Register the store and serve /metrics on the given port."""
    register(store)
    start_http_server(port, addr=addr)
    logger.info("Serving Prometheus metrics on %s:%d", addr, port)
