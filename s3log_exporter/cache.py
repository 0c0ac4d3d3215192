"""
Snapshot file shared between the collector and the dashboard.

The collector owns the DuckDB file while it runs, so the dashboard reads
this JSON file instead. Each cycle replaces it in one rename.
"""

import json
import os
from collections import defaultdict
from datetime import datetime
from typing import Dict, Any, Optional

from .store import MetricsStore

UPDATED_KEY = '_cache_updated'


class StatsCache:
    """Latest committed snapshot as a JSON document on disk."""

    def __init__(self, cache_path: str = "s3_access_cache.json"):
        self.cache_path = cache_path
        self.temp_path = cache_path + ".tmp"

    def write(self, data: Dict[str, Any]):
        """Replace the cache file; readers see the old or the new document, never a mix."""
        document = dict(data)
        document[UPDATED_KEY] = datetime.utcnow().isoformat()

        with open(self.temp_path, 'w') as f:
            json.dump(document, f, indent=2, default=str)
        os.replace(self.temp_path, self.cache_path)

    def publish(self, store: MetricsStore):
        self.write(build_cache_data(store))

    def read(self) -> Optional[Dict[str, Any]]:
        """Parsed cache document, or None when missing or unreadable."""
        try:
            with open(self.cache_path) as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError):
            return None

    def updated_at(self) -> Optional[datetime]:
        data = self.read()
        if not data:
            return None
        try:
            return datetime.fromisoformat(data[UPDATED_KEY])
        except (KeyError, TypeError, ValueError):
            return None

    def get_age_seconds(self) -> Optional[float]:
        updated = self.updated_at()
        if updated is None:
            return None
        return (datetime.utcnow() - updated).total_seconds()

    def exists(self) -> bool:
        return os.path.isfile(self.cache_path)


def build_cache_data(store: MetricsStore) -> Dict[str, Any]:
    """
    Build cache data from the store snapshot.

    Extracts all data needed for dashboard display.
    """
    snapshot = store.snapshot()
    tags = store.tags_snapshot()

    buckets = []
    by_owner = defaultdict(lambda: {'buckets': 0, 'requests': 0, 'response_bytes': 0})
    by_method = defaultdict(lambda: {'requests': 0, 'request_bytes': 0, 'response_bytes': 0})

    for name, metrics in snapshot.items():
        entry = metrics.to_dict()
        entry['bucket_name'] = name
        entry['tags'] = tags.get(name, {})
        entry['requests'] = sum(metrics.method_counts.values())
        entry['response_bytes'] = sum(metrics.response_sizes.values())
        entry['request_bytes'] = sum(metrics.request_sizes.values())
        buckets.append(entry)

        owner = by_owner[metrics.owner]
        owner['buckets'] += 1
        owner['requests'] += entry['requests']
        owner['response_bytes'] += entry['response_bytes']

        for method, count in metrics.method_counts.items():
            by_method[method]['requests'] += count
            by_method[method]['request_bytes'] += metrics.request_sizes.get(method, 0)
            by_method[method]['response_bytes'] += metrics.response_sizes.get(method, 0)

    buckets.sort(key=lambda b: b['bucket_name'])
    top_by_requests = sorted(buckets, key=lambda b: b['requests'], reverse=True)[:100]

    return {
        'summary': {
            'total_buckets': len(buckets),
            'total_owners': len(by_owner),
            'total_requests': sum(b['requests'] for b in buckets),
            'total_request_bytes': sum(b['request_bytes'] for b in buckets),
            'total_response_bytes': sum(b['response_bytes'] for b in buckets),
            'scanning': store.scanning(),
        },
        'top_by_requests': [
            {
                'bucket_name': b['bucket_name'], 'owner': b['owner'], 'region': b['region'],
                'requests': b['requests'], 'response_bytes': b['response_bytes'],
                'collected_at': b['collected_at'],
            } for b in top_by_requests
        ],
        'by_owner': [
            {'owner': owner, **values}
            for owner, values in sorted(by_owner.items(), key=lambda kv: -kv[1]['requests'])
        ],
        'by_method': {method: values for method, values in sorted(by_method.items())},
        'all_buckets': buckets,
    }
