"""
CLI Dashboard for the S3 access-log collector.
Uses rich library for terminal UI and reads the JSON cache written by
the collector, so it never competes for the DuckDB lock.
"""

import time
from datetime import datetime
from typing import Any, Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .cache import StatsCache


def format_bytes(b: int) -> str:
    """Format bytes to human readable."""
    if b is None or b == 0:
        return "0 B"
    for unit in ['B', 'KB', 'MB', 'GB', 'TB', 'PB']:
        if abs(b) < 1024:
            return f"{b:.1f} {unit}"
        b /= 1024
    return f"{b:.1f} PB"


def format_age(seconds: float) -> str:
    """Format age in human readable form."""
    if seconds is None:
        return "N/A"
    if seconds < 60:
        return f"{int(seconds)}s"
    elif seconds < 3600:
        return f"{int(seconds/60)}m"
    elif seconds < 86400:
        return f"{int(seconds/3600)}h"
    else:
        return f"{int(seconds/86400)}d"


def _age_of(collected_at: Optional[str]) -> Optional[float]:
    if not collected_at:
        return None
    try:
        return (datetime.utcnow() - datetime.fromisoformat(collected_at)).total_seconds()
    except ValueError:
        return None


class Dashboard:
    """Terminal views over the collector's JSON cache."""

    def __init__(self, cache_path: str, console: Console = None):
        self.cache = StatsCache(cache_path)
        self.console = console or Console()
        self.running = True

    def _load(self) -> Optional[Dict[str, Any]]:
        data = self.cache.read()
        if data is None:
            self.console.print(f"\n[yellow]No cache data at {self.cache.cache_path} "
                               f"(start the collector with --cache)[/yellow]\n")
        return data

    def show_status(self):
        """Show current status dashboard."""
        data = self._load()
        if data is None:
            return

        summary = data['summary']
        age = self.cache.get_age_seconds()

        self.console.print()
        self.console.print(Panel.fit(
            "[bold blue]S3 ACCESS LOG DASHBOARD[/bold blue]",
            border_style="blue"
        ))

        summary_table = Table(title="Summary", show_header=False)
        summary_table.add_column("Metric", style="cyan")
        summary_table.add_column("Value", style="green")

        summary_table.add_row("Buckets", f"{summary['total_buckets']:,}")
        summary_table.add_row("Owners", f"{summary['total_owners']:,}")
        summary_table.add_row("Requests", f"{summary['total_requests']:,}")
        summary_table.add_row("Request bytes", format_bytes(summary['total_request_bytes']))
        summary_table.add_row("Response bytes", format_bytes(summary['total_response_bytes']))
        summary_table.add_row("Scanning now", f"{len(summary.get('scanning', [])):,}")
        summary_table.add_row("Cache age", format_age(age))

        self.console.print(summary_table)
        self.show_methods(data)

    def show_methods(self, data: Dict[str, Any] = None):
        """Show request totals per HTTP method."""
        data = data or self._load()
        if data is None:
            return

        table = Table(title="Requests by Method")
        table.add_column("Method", style="cyan")
        table.add_column("Requests", justify="right", style="green")
        table.add_column("Request bytes", justify="right")
        table.add_column("Response bytes", justify="right", style="yellow")

        for method, values in data['by_method'].items():
            table.add_row(
                method,
                f"{values['requests']:,}",
                format_bytes(values['request_bytes']),
                format_bytes(values['response_bytes'])
            )

        self.console.print(table)
        self.console.print()

    def show_top_buckets(self, limit: int = 20):
        """Show buckets with the most requests."""
        data = self._load()
        if data is None:
            return

        table = Table(title=f"Top {limit} Buckets by Requests")
        table.add_column("Bucket", style="cyan", max_width=40)
        table.add_column("Owner", style="blue", max_width=20)
        table.add_column("Region")
        table.add_column("Requests", justify="right", style="green")
        table.add_column("Response", justify="right", style="yellow")
        table.add_column("Age", justify="right", style="magenta")

        for b in data['top_by_requests'][:limit]:
            table.add_row(
                b['bucket_name'][:40],
                (b['owner'] or '')[:20],
                b['region'] or '-',
                f"{b['requests']:,}",
                format_bytes(b['response_bytes']),
                format_age(_age_of(b['collected_at']))
            )

        self.console.print()
        self.console.print(table)
        self.console.print()

    def show_owners(self, limit: int = 30):
        """Show request totals per bucket owner."""
        data = self._load()
        if data is None:
            return

        table = Table(title="Requests by Owner")
        table.add_column("Owner", style="cyan", max_width=30)
        table.add_column("Buckets", justify="right")
        table.add_column("Requests", justify="right", style="green")
        table.add_column("Response", justify="right", style="yellow")

        for o in data['by_owner'][:limit]:
            table.add_row(
                o['owner'][:30],
                f"{o['buckets']:,}",
                f"{o['requests']:,}",
                format_bytes(o['response_bytes'])
            )

        self.console.print()
        self.console.print(table)
        self.console.print()

    def live_monitor(self, refresh_seconds: int = 5):
        """Live monitoring dashboard with auto-refresh."""
        self.console.print("\n[bold]Live Monitor[/bold] (Press Ctrl+C to exit)\n")

        try:
            while self.running:
                self.console.clear()
                self.console.print(Panel.fit(
                    f"[bold blue]S3 ACCESS LOGS - LIVE MONITOR[/bold blue]\n"
                    f"[dim]Last update: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}[/dim]",
                    border_style="blue"
                ))

                data = self._load()
                if data is not None:
                    summary = data['summary']
                    self.console.print(
                        f"[cyan]Buckets:[/cyan] {summary['total_buckets']:,}  "
                        f"[cyan]Requests:[/cyan] {summary['total_requests']:,}  "
                        f"[cyan]Response:[/cyan] {format_bytes(summary['total_response_bytes'])}  "
                        f"[yellow]Scanning:[/yellow] {len(summary.get('scanning', [])):,}"
                    )
                    self.console.print()
                    self.console.print("[bold]Top 5 by Requests:[/bold]")
                    for b in data['top_by_requests'][:5]:
                        self.console.print(f"  {b['requests']:>12,}  {b['bucket_name'][:40]}")

                self.console.print(f"\n[dim]Refreshing in {refresh_seconds}s... (Ctrl+C to exit)[/dim]")

                for _ in range(refresh_seconds):
                    if not self.running:
                        break
                    time.sleep(1)

        except KeyboardInterrupt:
            self.running = False
            self.console.print("\n[yellow]Monitor stopped.[/yellow]")


def run_dashboard_from_cache(cache_path: str, command: str = 'status', **kwargs):
    """Run dashboard command."""
    dashboard = Dashboard(cache_path)

    if command == 'status':
        dashboard.show_status()
    elif command == 'top':
        dashboard.show_top_buckets(limit=kwargs.get('limit', 20))
    elif command == 'owners':
        dashboard.show_owners(limit=kwargs.get('limit', 30))
    elif command == 'methods':
        dashboard.show_methods()
    elif command == 'live':
        dashboard.live_monitor(refresh_seconds=kwargs.get('refresh', 5))
    else:
        dashboard.console.print(f"Unknown command: {command}")
