"""
Command line interface for the S3 access-log exporter.
"""

import argparse
import json
import logging
import os
import sys
from typing import List

from .collector import Collector
from .models import CollectorConfig, EndpointConfig, DEFAULT_ENDPOINTS
from .storage import Storage


def format_bytes(b: int) -> str:
    """Format bytes to human readable."""
    if b is None:
        return "0 B"
    for unit in ['B', 'KB', 'MB', 'GB', 'TB', 'PB']:
        if b < 1024:
            return f"{b:.1f} {unit}"
        b /= 1024
    return f"{b:.1f} PB"


def parse_endpoints(specs: List[str], access_key: str, secret_key: str) -> List[EndpointConfig]:
    """
    Build endpoint configs from REGION=URL strings.

    Falls back to the default endpoints when none are given.
    """
    pairs = {}
    for spec in specs or []:
        region, sep, url = spec.partition('=')
        if not sep or not region or not url:
            raise ValueError(f"Invalid endpoint '{spec}', expected REGION=URL")
        pairs[region.strip()] = url.strip()

    if not pairs:
        pairs = dict(DEFAULT_ENDPOINTS)

    return [
        EndpointConfig(name=region, region=region, endpoint_url=url,
                       access_key=access_key, secret_key=secret_key)
        for region, url in pairs.items()
    ]


def setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s",
    )
    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def cmd_collect(args):
    """Run collection (once or continuous)."""
    access_key = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_key = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    if not access_key or not secret_key:
        print("ERROR: AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY must be set", file=sys.stderr)
        sys.exit(1)

    try:
        endpoints = parse_endpoints(args.endpoint, access_key, secret_key)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    config = CollectorConfig(
        refresh_interval_seconds=args.refresh_interval,
        max_concurrent=args.max_concurrent,
        bucket_workers=args.bucket_workers,
        object_workers=args.object_workers,
        page_size=args.page_size,
        log_prefix=args.prefix,
        connect_timeout=args.timeout,
        read_timeout=args.read_timeout,
        max_retries=args.retries,
        db_path=args.db,
        cache_path=args.cache,
        metrics_port=args.metrics_port,
    )

    collector = Collector(config, endpoints)

    if config.metrics_port:
        from .exporter import start_metrics_server
        start_metrics_server(config.metrics_port, collector.store)

    try:
        if args.continuous:
            collector.run_continuous(verbose=args.verbose)
        else:
            result = collector.run_once(verbose=True)
            print(f"\nScanned {result['buckets_scanned']} buckets "
                  f"({result['observations']:,} requests) in {result['duration']:.1f}s")
    finally:
        collector.close()


def cmd_status(args):
    """Show stored collection status."""
    storage = Storage(args.db, read_only=True)

    try:
        summary = storage.get_summary()

        print("\n" + "=" * 50)
        print("S3 ACCESS LOG STATUS")
        print("=" * 50)
        print(f"  Database:        {args.db}")
        print(f"  Total buckets:   {summary['total_buckets']}")
        print(f"  Total owners:    {summary['total_owners']}")
        print(f"  Total requests:  {summary['total_requests']:,}")
        print(f"  Request bytes:   {format_bytes(summary['total_request_bytes'])}")
        print(f"  Response bytes:  {format_bytes(summary['total_response_bytes'])}")
        print("-" * 50)
        if summary['newest_collection']:
            print(f"  Oldest data:     {summary['oldest_collection']}")
            print(f"  Newest data:     {summary['newest_collection']}")
        else:
            print("  No data collected yet")
        print("=" * 50 + "\n")
    finally:
        storage.close()


def cmd_query(args):
    """Query collected data."""
    storage = Storage(args.db, read_only=True)

    try:
        if args.type == 'top-buckets':
            results = storage.top_buckets_by_requests(args.limit)
            print(f"\nTop {args.limit} Buckets by Requests:")
            print("-" * 90)
            for r in results:
                print(f"  {r['bucket_name']:<40} {(r['owner'] or ''):<20} "
                      f"{r['requests']:>10,} req  {format_bytes(r['response_bytes']):>10}")

        elif args.type == 'by-owner':
            results = storage.summary_by_owner()
            print("\nSummary by Owner:")
            print("-" * 80)
            for r in results:
                print(f"  {(r['owner'] or ''):<30} {r['buckets']:>6} buckets  "
                      f"{r['requests']:>10,} req  {format_bytes(r['response_bytes']):>10}")

        elif args.type == 'by-method':
            results = storage.summary_by_method()
            print("\nSummary by Method:")
            print("-" * 80)
            for r in results:
                print(f"  {r['method']:<8} {r['buckets']:>6} buckets  {r['requests']:>10,} req  "
                      f"in {format_bytes(r['request_bytes']):>10}  "
                      f"out {format_bytes(r['response_bytes']):>10}")

        elif args.type == 'custom':
            if not args.sql:
                print("ERROR: --sql required for custom query")
                sys.exit(1)
            result = storage.query(args.sql)
            for row in result.fetchall():
                print("  " + "  ".join(str(v) for v in row))
    finally:
        storage.close()


def cmd_bucket(args):
    """Show stored stats for one bucket."""
    storage = Storage(args.db, read_only=True)

    try:
        stats = storage.get_bucket(args.bucket_name)

        if not stats:
            print(f"Bucket '{args.bucket_name}' not found in database")
            sys.exit(1)

        print(f"\nBucket: {stats['bucket_name']}")
        print("-" * 60)
        print(f"  Owner:        {stats['owner']}")
        print(f"  Region:       {stats['region']}")
        print(f"  Log objects:  {stats['objects_scanned']} ({stats['objects_failed']} failed)")
        print(f"  Collected at: {stats['collected_at']}")
        for key, value in sorted(stats['tags'].items()):
            print(f"  Tag {key}: {value}")
        print("-" * 60)
        for method, m in stats['methods'].items():
            print(f"  {method:<6} {m['request_count']:>10,} req  "
                  f"in {format_bytes(m['request_bytes']):>10}  "
                  f"out {format_bytes(m['response_bytes']):>10}")
        print("-" * 60)
    finally:
        storage.close()


def cmd_export(args):
    """Export stored stats as JSON."""
    storage = Storage(args.db, read_only=True)

    try:
        data = storage.export_buckets(limit=args.limit)
        if args.bucket:
            if args.bucket not in data:
                print(f"ERROR: Bucket '{args.bucket}' not found in database", file=sys.stderr)
                sys.exit(1)
            data = {args.bucket: data[args.bucket]}

        output = json.dumps(data, indent=4 if not args.compact else None)

        if args.output:
            with open(args.output, 'w') as f:
                f.write(output)
            print(f"Exported to {args.output}", file=sys.stderr)
        else:
            print(output)
    finally:
        storage.close()


def cmd_dashboard(args):
    """Launch CLI dashboard."""
    from .dashboard import run_dashboard_from_cache

    run_dashboard_from_cache(
        cache_path=args.cache,
        command=args.view,
        limit=args.limit,
        refresh=args.refresh
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='S3 Access Log Exporter',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One scan of all endpoints
  %(prog)s --db stats.duckdb collect

  # Run forever, serve Prometheus metrics on :9100
  %(prog)s --db stats.duckdb collect --continuous --metrics-port 9100

  # Custom endpoints
  %(prog)s collect --endpoint de=https://s3-eu-central-1.ionoscloud.com

  # Inspect stored data
  %(prog)s --db stats.duckdb status
  %(prog)s --db stats.duckdb query --type top-buckets
  %(prog)s --db stats.duckdb bucket my-bucket
  %(prog)s --db stats.duckdb export -o stats.json

  # Dashboard from the JSON cache
  %(prog)s dashboard --cache stats.json --view live
        """
    )

    parser.add_argument('--db', default='s3_access_stats.duckdb',
                        help='Database path (default: s3_access_stats.duckdb)')
    parser.add_argument('--log-level', default=os.getenv('LOG_LEVEL', 'INFO'),
                        help='Logging level (default: INFO, env LOG_LEVEL)')

    subparsers = parser.add_subparsers(dest='command', help='Command')

    # Collect
    collect_p = subparsers.add_parser('collect', help='Scan access logs')
    collect_p.add_argument('--continuous', '-c', action='store_true',
                           help='Run forever, one cycle every refresh interval')
    collect_p.add_argument('--refresh-interval', type=int, default=200,
                           help='Seconds between cycles in continuous mode (default: 200)')
    collect_p.add_argument('--endpoint', action='append', metavar='REGION=URL',
                           help='Storage endpoint, repeatable (default: IONOS de and eu-central-2)')
    collect_p.add_argument('--max-concurrent', type=int, default=10,
                           help='Maximum simultaneous storage requests (default: 10)')
    collect_p.add_argument('--bucket-workers', type=int, default=10,
                           help='Buckets scanned in parallel (default: 10)')
    collect_p.add_argument('--object-workers', type=int, default=10,
                           help='Log objects downloaded in parallel (default: 10)')
    collect_p.add_argument('--page-size', type=int, default=1000,
                           help='Objects per listing page (default: 1000)')
    collect_p.add_argument('--prefix', default='logs/',
                           help='Log object prefix (default: logs/)')
    collect_p.add_argument('--timeout', type=int, default=10,
                           help='Connect timeout seconds (default: 10)')
    collect_p.add_argument('--read-timeout', type=int, default=60,
                           help='Read timeout seconds (default: 60)')
    collect_p.add_argument('--retries', type=int, default=3,
                           help='Max attempts per request (default: 3)')
    collect_p.add_argument('--cache',
                           help='JSON cache file for dashboard (avoids DB lock)')
    collect_p.add_argument('--metrics-port', type=int,
                           help='Serve Prometheus metrics on this port')
    collect_p.add_argument('--verbose', '-v', action='store_true',
                           help='Verbose output')
    collect_p.set_defaults(func=cmd_collect)

    # Status
    status_p = subparsers.add_parser('status', help='Show collection status')
    status_p.set_defaults(func=cmd_status)

    # Query
    query_p = subparsers.add_parser('query', help='Query collected data')
    query_p.add_argument('--type', required=True,
                         choices=['top-buckets', 'by-owner', 'by-method', 'custom'],
                         help='Query type')
    query_p.add_argument('--limit', type=int, default=20,
                         help='Limit results (default: 20)')
    query_p.add_argument('--sql', help='Custom SQL for --type custom')
    query_p.set_defaults(func=cmd_query)

    # Bucket
    bucket_p = subparsers.add_parser('bucket', help='Get specific bucket info')
    bucket_p.add_argument('bucket_name', help='Bucket name')
    bucket_p.set_defaults(func=cmd_bucket)

    # Export
    export_p = subparsers.add_parser('export', help='Export stored stats as JSON')
    export_p.add_argument('--bucket', '-b',
                          help='Specific bucket to export (default: all buckets)')
    export_p.add_argument('--output', '-o',
                          help='Output file (default: stdout)')
    export_p.add_argument('--limit', type=int,
                          help='Limit number of buckets (default: no limit)')
    export_p.add_argument('--compact', action='store_true',
                          help='Compact JSON output (no indentation)')
    export_p.set_defaults(func=cmd_export)

    # Dashboard (rich terminal UI)
    dashboard_p = subparsers.add_parser('dashboard', help='Terminal dashboard over the JSON cache')
    dashboard_p.add_argument('--cache', required=True,
                             help='JSON cache file written by collect --cache')
    dashboard_p.add_argument('--view', default='status',
                             choices=['status', 'top', 'owners', 'methods', 'live'],
                             help='Dashboard view (default: status)')
    dashboard_p.add_argument('--limit', type=int, default=30,
                             help='Limit results (default: 30)')
    dashboard_p.add_argument('--refresh', type=int, default=5,
                             help='Refresh interval for --view live (default: 5s)')
    dashboard_p.set_defaults(func=cmd_dashboard)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == '__main__':
    main()
