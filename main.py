#!/usr/bin/env python3
"""
Sales Dashboard Data Layer - Main Entry Point

Usage:
    python main.py period 2025-09-02 2025-09-08 --type weekly   # Coordinate one period
    python main.py report 2025-09-01 2025-09-30 --type monthly  # Coordinate, then print performance report
    python main.py setup                                        # Validate configuration
"""
import os
import sys
import json
import asyncio
import argparse
import logging
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('dashboard.log'),
    ]
)
logger = logging.getLogger(__name__)


def setup_environment():
    """Load environment variables from .env file if present."""
    env_file = PROJECT_ROOT / '.env'
    if env_file.exists():
        logger.info("Loading environment from .env file")
        with open(env_file) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ.setdefault(key.strip(), value.strip())


def build_coordinator():
    """Wire the coordinator from configuration."""
    from config.settings import get_config
    from sales_dashboard.core.request_coordinator import RequestCoordinator
    from sales_dashboard.core.retry_manager import build_retry_policies
    from sales_dashboard.data.cache_manager import create_cache_registry
    from sales_dashboard.tools.sales_api_client import SalesApiClient

    config = get_config()
    return RequestCoordinator(
        client=SalesApiClient(config.api),
        caches=create_cache_registry(config),
        retry_policies=build_retry_policies(config),
    ), config


async def run_period(args):
    from sales_dashboard.core.loading_state import LoadingStateCoordinator
    from sales_dashboard.core.period_data import coordinate_period

    coordinator, config = build_coordinator()
    loading = LoadingStateCoordinator.from_config(
        config.loading,
        on_change=lambda s: logger.debug(f"Loading: show={s.show_loading} progress={s.progress:.0f}%"),
    )
    session = await coordinate_period(coordinator, args.start, args.end, args.type, loading=loading)
    try:
        for _ in range(args.repeat - 1):
            await session.refetch()
    finally:
        session.close()
        coordinator.client.close()
    return session.view


def print_view(view, as_json: bool = False):
    if view.error is not None:
        print(f"\n❌ {view.error}")
        return

    result = view.result
    if result is None or result.is_idle:
        print("\nNo valid date range: nothing to load.")
        return

    if as_json:
        print(json.dumps({
            "current_total": result.current_total,
            "previous_amount": view.previous_amount,
            "percentage_change": view.percentage_change,
            "chart_data": [p.to_dict() for p in view.chart_data] if isinstance(view.chart_data, list) else None,
            "branches": result.branches.to_dict() if result.branches else None,
            "failed_calls": result.failed_calls,
            "stale_sources": list(result.stale_sources),
            "performance_metrics": view.performance_metrics.to_dict() if view.performance_metrics else None,
        }, indent=2, default=str))
        return

    from sales_dashboard.tools.sales_metrics import format_currency

    plan = result.plan
    print("\n" + "="*60)
    print(f"{plan.period_type.value.upper()} PERIOD {plan.current}")
    print("="*60)
    if result.current_total is not None:
        print(f"  Current total:  {format_currency(result.current_total)}")
    if view.previous_amount is not None:
        print(f"  Previous total: {format_currency(view.previous_amount)} ({plan.comparison})")
        print(f"  Change:         {view.percentage_change:+.1f}%")

    if isinstance(view.chart_data, list):
        print("\n" + "-"*60)
        print("CHART")
        print("-"*60)
        for point in view.chart_data:
            row = point.to_dict()
            label = row.get("day") or row.get("week") or row.get("hour")
            print(f"  {label:>6}  current={row['current']:>12,.2f}  previous={row['previous']:>12,.2f}")
    elif view.chart_data is not None:
        print("\n  Chart: unprocessed breakdown returned")

    if result.branches and result.branches.branches:
        print("\n" + "-"*60)
        print("BRANCHES")
        print("-"*60)
        for branch in result.branches.branches[:10]:
            print(f"  #{branch.rank:<3} {branch.name:<30} {format_currency(branch.total_sales):>12} ({branch.percentage:.1f}%)")
        print(f"  Average ticket: {format_currency(result.branches.average_ticket)}")

    if result.is_degraded:
        print("\n" + "-"*60)
        print("DEGRADED")
        print("-"*60)
        for name, error in result.failed_calls.items():
            print(f"  ❌ {name}: {error}")
        for name in result.stale_sources:
            print(f"  ⚠️  {name}: served from stale cache")

    if view.performance_metrics:
        m = view.performance_metrics
        print("\n" + "-"*60)
        print("PERFORMANCE")
        print("-"*60)
        print(f"  Total: {m.total_time_ms:.0f}ms, parallel phase: {m.parallel_execution_time_ms:.0f}ms")
        print(f"  Network calls: {m.network_calls}, cache hits: {m.cache_hits}, failed: {m.failed_calls}")
        if m.network_calls:
            print(f"  ~{m.improvement_percentage}% faster than sequential (slowest: {m.slowest_call})")


def cmd_period(args):
    """Coordinate one period and print the result."""
    logger.info(f"Coordinating {args.type} period {args.start}..{args.end}")
    view = asyncio.run(run_period(args))
    print_view(view, as_json=args.json)
    if view.error is not None:
        sys.exit(2)


def cmd_report(args):
    """Coordinate one period, then print the performance monitor report."""
    from sales_dashboard.core.observability import get_performance_monitor

    view = asyncio.run(run_period(args))
    print_view(view)

    monitor = get_performance_monitor()
    print("\n" + "="*60)
    print("PERFORMANCE REPORT")
    print("="*60)
    if args.format == "report":
        print(json.dumps(monitor.generate_report(), indent=2, default=str))
    else:
        print(monitor.export_metrics(args.format))


def cmd_setup(args):
    """Validate configuration and setup."""
    from config.settings import get_config, POLICIES_FILE

    print("\n" + "="*60)
    print("CONFIGURATION VALIDATION")
    print("="*60)

    config = get_config()

    print(f"\n📦 Sales API:")
    print(f"   Base URL: {config.api.base_url}")
    print(f"   Timeout: {config.api.timeout}s (batch {config.api.batch_timeout}s)")

    print(f"\n🗄️  Cache policies ({POLICIES_FILE}):")
    for name, policy in config.cache_policies.items():
        print(f"   {name}: ttl={policy.ttl}s max_size={policy.max_size} swr={policy.stale_while_revalidate}")

    print(f"\n🔄 Retry policies:")
    for name, policy in config.retry_policies.items():
        print(
            f"   {name}: attempts={policy.max_attempts} base={policy.base_delay}s "
            f"max={policy.max_delay}s x{policy.backoff_factor} jitter={policy.jitter}"
        )

    print(f"\n⏱️  Minimum loading time: {config.loading.minimum_loading_time}s")

    problems = config.validate()
    print()
    if problems:
        for name, problem in problems.items():
            print(f"   ❌ {name}: {problem}")
    else:
        print("   ✅ Configuration OK")
    print("="*60)


def add_period_arguments(parser):
    parser.add_argument('start', help='Start date (yyyy-MM-dd)')
    parser.add_argument('end', help='End date (yyyy-MM-dd)')
    parser.add_argument('--type', default='weekly', choices=['daily', 'weekly', 'monthly', 'custom'],
                        help='Period type (default: weekly)')
    parser.add_argument('--repeat', type=int, default=1,
                        help='Coordinate the period N times (later passes hit the cache)')


def main():
    setup_environment()

    parser = argparse.ArgumentParser(
        description="Sales Dashboard Data Layer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py period 2025-09-02 2025-09-08 --type weekly
  python main.py report 2025-09-01 2025-09-30 --type monthly --format csv
  python main.py setup

Environment Variables:
  SALES_API_BASE_URL    Upstream API root (default: http://localhost:8000)
  SALES_API_TOKEN       Bearer token for the upstream API
  LOG_LEVEL             Logging level (default: INFO)
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    period_parser = subparsers.add_parser('period', help='Coordinate one period')
    add_period_arguments(period_parser)
    period_parser.add_argument('--json', action='store_true', help='Print the result as JSON')
    period_parser.set_defaults(func=cmd_period)

    report_parser = subparsers.add_parser('report', help='Coordinate and print the performance report')
    add_period_arguments(report_parser)
    report_parser.add_argument('--format', default='report', choices=['report', 'json', 'csv'],
                               help='Report summary or raw metric export')
    report_parser.set_defaults(func=cmd_report)

    setup_parser = subparsers.add_parser('setup', help='Validate setup')
    setup_parser.set_defaults(func=cmd_setup)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
