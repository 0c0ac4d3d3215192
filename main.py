#!/usr/bin/env python3
"""
S3 Access Log Exporter - Main entry point.

Usage:
    python main.py --db stats.duckdb collect
    python main.py --db stats.duckdb collect --continuous --metrics-port 9100
    python main.py --db stats.duckdb status
    python main.py --db stats.duckdb query --type top-buckets
"""

from s3log_exporter.cli import main

if __name__ == '__main__':
    main()
