"""
Access-log collector: discover -> scan -> aggregate, repeated on a fixed interval.
"""

import functools
import logging
import signal
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, List, Optional

from .discoverer import BucketDiscoverer, EndpointResult
from .governor import ConcurrencyGovernor
from .models import CollectorConfig, EndpointConfig
from .s3_client import StorageClient, create_client
from .scanner import ObjectScanner
from .storage import Storage
from .store import MetricsStore

logger = logging.getLogger(__name__)


class CollectorState:
    """Shared state for collector with thread-safe shutdown."""

    def __init__(self):
        self.running = True
        self.stats = {
            'cycles_completed': 0,
            'buckets_scanned': 0,
            'buckets_failed': 0,
            'endpoints_failed': 0,
            'last_cycle_buckets': 0,
            'last_cycle_time': 0,
        }
        self._lock = threading.Lock()

    def stop(self):
        """Signal collector to stop."""
        self.running = False

    def is_running(self) -> bool:
        """Check if collector should continue."""
        return self.running

    def record_cycle(self, scanned: int, failed: int, endpoints_failed: int, duration: float):
        with self._lock:
            self.stats['cycles_completed'] += 1
            self.stats['buckets_scanned'] += scanned
            self.stats['buckets_failed'] += failed
            self.stats['endpoints_failed'] += endpoints_failed
            self.stats['last_cycle_buckets'] = scanned
            self.stats['last_cycle_time'] = duration

    def get_stats(self) -> dict:
        with self._lock:
            return self.stats.copy()


class Collector:
    """
    Access-log collector for a set of storage endpoints.

    Each cycle:
    1. For every endpoint (sequentially), list buckets
    2. Concurrently HEAD each bucket and scan the readable ones' log objects
    3. Publish per-bucket counters to the store (full replace per bucket)
    4. Persist the snapshot to DuckDB and the JSON cache, if configured

    Every endpoint is rescanned every cycle. Buckets that disappear keep
    their last committed counters.
    """

    def __init__(self, config: CollectorConfig,
                 endpoints: List[EndpointConfig],
                 store: MetricsStore = None,
                 storage: Storage = None,
                 client_factory: Callable[[EndpointConfig], StorageClient] = None,
                 output_callback: Callable[[str], None] = None):
        self.config = config
        self.endpoints = list(endpoints)
        self.store = store or MetricsStore()
        self.storage = storage
        if storage is None and config.db_path:
            self.storage = Storage(config.db_path)
        self.client_factory = client_factory or functools.partial(
            create_client,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            max_retries=config.max_retries,
        )
        self.governor = ConcurrencyGovernor(config.max_concurrent)
        self.state = CollectorState()
        self.output = output_callback or print

        # JSON cache for dashboard (avoids DB lock)
        self._cache = None
        if config.cache_path:
            from .cache import StatsCache
            self._cache = StatsCache(config.cache_path)

        # Setup signal handlers
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle interrupt signals."""
        self.output("\nShutdown signal received, stopping after current cycle...")
        self.state.stop()

    def _persist(self):
        """Write the committed snapshot to DuckDB."""
        if not self.storage:
            return

        try:
            saved = self.storage.save_snapshot(self.store.snapshot(), self.store.tags_snapshot())
            self.storage.commit()
            logger.debug("Persisted %d buckets", saved)
        except Exception as e:
            self.output(f"  Warning: Failed to persist snapshot: {e}")

    def _update_cache(self):
        """Update JSON cache for dashboard access."""
        if not self._cache:
            return

        try:
            self._cache.publish(self.store)
        except Exception as e:
            self.output(f"  Warning: Failed to update cache: {e}")

    def scan_endpoints(self, verbose: bool = False) -> List[EndpointResult]:
        """Run discovery and scanning for every endpoint, joining all work."""
        results = []

        with ThreadPoolExecutor(max_workers=self.config.bucket_workers,
                                thread_name_prefix="bucket") as bucket_pool, \
                ThreadPoolExecutor(max_workers=self.config.object_workers,
                                   thread_name_prefix="object") as object_pool:
            scanner = ObjectScanner(
                self.store, self.governor, object_pool,
                page_size=self.config.page_size,
                log_prefix=self.config.log_prefix,
            )
            discoverer = BucketDiscoverer(scanner, self.governor, bucket_pool, self.client_factory)

            for endpoint in self.endpoints:
                if not self.state.is_running():
                    break

                endpoint_start = time.time()
                result = discoverer.discover(endpoint)
                results.append(result)

                if verbose:
                    if result.error:
                        self.output(f"  {endpoint.name}: FAILED ({result.error})")
                    else:
                        self.output(
                            f"  {endpoint.name}: {result.buckets_total} buckets, "
                            f"{result.buckets_scanned} scanned, "
                            f"{result.buckets_forbidden} forbidden, "
                            f"{result.buckets_skipped + result.buckets_failed} failed "
                            f"in {time.time() - endpoint_start:.1f}s"
                        )

        return results

    def run_once(self, verbose: bool = False) -> dict:
        """Run a single collection cycle across all endpoints."""
        cycle_start = time.time()

        if verbose:
            self.output("\n" + "=" * 60)
            self.output("COLLECTION CYCLE")
            self.output("=" * 60)
            self.output(f"  Endpoints:      {len(self.endpoints)}")
            self.output(f"  Max concurrent: {self.config.max_concurrent}")
            self.output(f"  Log prefix:     {self.config.log_prefix}")
            self.output("-" * 60)

        results = self.scan_endpoints(verbose=verbose)

        self._persist()
        self._update_cache()

        scanned = sum(r.buckets_scanned for r in results)
        failed = sum(r.buckets_failed + r.buckets_skipped for r in results)
        endpoints_failed = sum(1 for r in results if r.error)
        duration = time.time() - cycle_start
        self.state.record_cycle(scanned, failed, endpoints_failed, duration)

        summary = {
            'endpoints': len(results),
            'endpoints_failed': endpoints_failed,
            'buckets_total': sum(r.buckets_total for r in results),
            'buckets_scanned': scanned,
            'buckets_empty': sum(r.buckets_empty for r in results),
            'buckets_forbidden': sum(r.buckets_forbidden for r in results),
            'buckets_failed': failed,
            'observations': sum(s.observations for r in results for s in r.scan_results),
            'registry_size': len(self.store),
            'duration': duration,
        }

        if verbose:
            self.output("-" * 60)
            self.output(f"  Buckets scanned: {summary['buckets_scanned']}")
            self.output(f"  Observations:    {summary['observations']:,}")
            self.output(f"  Duration:        {duration:.1f}s")
            self.output("=" * 60 + "\n")

        return summary

    def run_continuous(self, verbose: bool = False):
        """
        Run collection forever.

        Each cycle scans all endpoints, then sleeps refresh_interval seconds.
        Only a shutdown signal ends the loop.
        """
        self.output("\n" + "=" * 60)
        self.output("CONTINUOUS COLLECTION MODE")
        self.output("=" * 60)
        self.output(f"  Endpoints:        {', '.join(e.name for e in self.endpoints)}")
        self.output(f"  Refresh interval: {self.config.refresh_interval_seconds}s")
        self.output(f"  Max concurrent:   {self.config.max_concurrent}")
        if self.storage:
            self.output(f"  Database:         {self.storage.db_path}")
        if self._cache:
            self.output(f"  Cache file:       {self.config.cache_path}")
        self.output("=" * 60)
        self.output("  Press Ctrl+C to stop\n")

        cycle = 0
        while self.state.is_running():
            cycle += 1

            self.output(f"[Cycle {cycle}] {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

            result = self.run_once(verbose=verbose)

            if not self.state.is_running():
                break

            self.output(f"  Scanned {result['buckets_scanned']} buckets "
                        f"({result['observations']:,} requests) in {result['duration']:.1f}s. "
                        f"Sleeping {self.config.refresh_interval_seconds}s...")

            # Sleep with interrupt check
            sleep_until = time.time() + self.config.refresh_interval_seconds
            while time.time() < sleep_until and self.state.is_running():
                time.sleep(min(1, max(0, sleep_until - time.time())))

        self.output("\n" + "=" * 60)
        self.output("COLLECTION STOPPED")
        self.output("=" * 60)
        stats = self.state.get_stats()
        self.output(f"  Cycles completed: {stats['cycles_completed']}")
        self.output(f"  Buckets scanned:  {stats['buckets_scanned']}")
        self.output(f"  Buckets failed:   {stats['buckets_failed']}")
        self.output("=" * 60 + "\n")

    def get_status(self) -> dict:
        """Get current collector status."""
        return {
            'registry_size': len(self.store),
            'scanning': self.store.scanning(),
            'collector_stats': self.state.get_stats(),
            'config': {
                'refresh_interval': self.config.refresh_interval_seconds,
                'max_concurrent': self.config.max_concurrent,
                'bucket_workers': self.config.bucket_workers,
                'object_workers': self.config.object_workers,
                'page_size': self.config.page_size,
                'log_prefix': self.config.log_prefix,
            }
        }

    def close(self):
        """Clean up resources."""
        if self.storage:
            self.storage.close()
