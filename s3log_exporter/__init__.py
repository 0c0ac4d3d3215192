"""
S3 Access Log Exporter

Scans the access-log objects of every bucket on a set of S3 endpoints and
aggregates per-bucket request counts and byte totals for Prometheus.
"""

from .models import BucketMetrics, CollectorConfig, EndpointConfig, Observation
from .log_parser import parse_log_line
from .store import MetricsStore
from .governor import ConcurrencyGovernor
from .s3_client import StorageClient, StorageError, HeadStatus
from .collector import Collector

__version__ = "1.0.0"
__all__ = [
    'BucketMetrics', 'CollectorConfig', 'EndpointConfig', 'Observation',
    'parse_log_line', 'MetricsStore', 'ConcurrencyGovernor',
    'StorageClient', 'StorageError', 'HeadStatus', 'Collector',
]
