"""
Command-line interface for Marketplace Hub operations.

Runs the token maintenance scheduler and exposes the manual operations
behind it: on-demand refresh and cleanup, token status inspection and
health checks.
"""

import argparse
import json
import signal
import sys
import threading
from typing import List, Optional

from marketplace_hub.database.connection import init_db
from marketplace_hub.services import Services, build_services
from marketplace_hub.utils.config import get_config, validate_configuration
from marketplace_hub.utils.exceptions import MarketplaceHubError
from marketplace_hub.utils.logger import get_logger, setup_logging

cli_logger = get_logger(__name__)


class MarketplaceHubCLI:
    """Command-line interface for Marketplace Hub operations."""

    def __init__(self, services: Optional[Services] = None):
        self.services = services

    def _init_services(self) -> Services:
        """Initialize services (lazy loading)."""
        if self.services is None:
            self.services = build_services(get_config())
            cli_logger.info("Services initialized successfully")
        return self.services

    def cmd_config(self, args) -> int:
        result = validate_configuration()
        if result["valid"]:
            print("✅ Configuration is valid")
            print(json.dumps(result["summary"], indent=2))
            return 0
        print(f"❌ Configuration validation failed: {result['error']}")
        return 1

    def cmd_init_db(self, args) -> int:
        services = self._init_services()
        init_db(services.engine)
        print("✅ Database tables created")
        return 0

    def cmd_serve(self, args) -> int:
        """Run the scheduler until SIGINT/SIGTERM."""
        services = self._init_services()
        stop_event = threading.Event()

        def handle_signal(signum, frame):
            cli_logger.info(f"Received signal {signum}, shutting down")
            stop_event.set()

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

        services.start()
        print("🚀 Scheduler running, press Ctrl+C to stop")
        try:
            stop_event.wait()
        finally:
            services.stop()
        print("⏹️  Stopped")
        return 0

    def cmd_refresh_tokens(self, args) -> int:
        services = self._init_services()
        if args.company:
            info = services.token_manager.refresh_tenant(args.company)
            print(f"✅ Refreshed company {info.company_id}, expires {info.token_expiry.isoformat()}")
            return 0

        result = services.scheduler.run_token_refresh_now()
        print(f"🔄 Refreshed {result.succeeded}/{result.total} tokens")
        for company_id, error in result.failures.items():
            print(f"  ❌ {company_id}: {error}")
        return 0 if result.failed == 0 else 1

    def cmd_cleanup(self, args) -> int:
        services = self._init_services()
        deleted = services.scheduler.run_cleanup_now(args.days)
        print(f"🧹 Deleted {deleted} stale token records")
        return 0

    def cmd_token_status(self, args) -> int:
        services = self._init_services()
        manager = services.token_manager

        if args.company:
            statuses = [manager.expiry_info(args.company)]
        else:
            statuses = manager.all_statuses()

        if args.json:
            print(json.dumps([s.to_dict() for s in statuses], indent=2))
            return 0

        if not statuses:
            print("No active companies")
            return 0

        for status in statuses:
            if status.is_expired:
                emoji = "❌"
            elif status.needs_refresh:
                emoji = "⚠️"
            else:
                emoji = "✅"
            hours = status.time_to_expiry.total_seconds() / 3600
            print(
                f"{emoji} {status.company_id} ({status.company_name}): "
                f"{hours:.1f}h left, status={status.status}, refreshes={status.refresh_count}"
            )
        return 0

    def cmd_mark_expired(self, args) -> int:
        services = self._init_services()
        services.token_manager.mark_expired(args.company_id)
        print(f"⛔ Company {args.company_id} marked as expired")
        return 0

    def cmd_cache_health(self, args) -> int:
        services = self._init_services()
        health = services.cache.health()
        print(json.dumps({"health": health, "stats": services.cache.stats()}, indent=2, default=str))
        return 0 if health["healthy"] else 1

    def cmd_health(self, args) -> int:
        services = self._init_services()
        health = services.health()
        emoji = "✅" if health["healthy"] else "❌"
        print(f"{emoji} Overall Status: {'HEALTHY' if health['healthy'] else 'UNHEALTHY'}")
        print(json.dumps(health, indent=2, default=str))
        return 0 if health["healthy"] else 1


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="marketplace-hub",
        description="Marketplace Hub CLI - token maintenance and system management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  marketplace-hub init-db                     # Create database tables
  marketplace-hub serve                       # Run scheduled token jobs
  marketplace-hub refresh-tokens              # Refresh all due tokens now
  marketplace-hub token-status --company 42   # Show one company's token
  marketplace-hub cleanup --days 7            # Purge old failed records
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("config", help="Validate configuration")
    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("serve", help="Run the token maintenance scheduler")

    refresh_parser = subparsers.add_parser("refresh-tokens", help="Refresh due tokens now")
    refresh_parser.add_argument(
        "--company",
        help="Refresh a single company regardless of the schedule"
    )

    cleanup_parser = subparsers.add_parser("cleanup", help="Purge stale token records")
    cleanup_parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Retention window in days (default: from configuration)"
    )

    status_parser = subparsers.add_parser("token-status", help="Show token expiry status")
    status_parser.add_argument("--company", help="Show a single company")
    status_parser.add_argument("--json", action="store_true", help="Print JSON")

    expire_parser = subparsers.add_parser("mark-expired", help="Deactivate a company's token")
    expire_parser.add_argument("company_id", help="External company id")

    subparsers.add_parser("cache-health", help="Show cache tier health and stats")
    subparsers.add_parser("health", help="Check database, cache and scheduler")

    return parser


COMMANDS = {
    "config": MarketplaceHubCLI.cmd_config,
    "init-db": MarketplaceHubCLI.cmd_init_db,
    "serve": MarketplaceHubCLI.cmd_serve,
    "refresh-tokens": MarketplaceHubCLI.cmd_refresh_tokens,
    "cleanup": MarketplaceHubCLI.cmd_cleanup,
    "token-status": MarketplaceHubCLI.cmd_token_status,
    "mark-expired": MarketplaceHubCLI.cmd_mark_expired,
    "cache-health": MarketplaceHubCLI.cmd_cache_health,
    "health": MarketplaceHubCLI.cmd_health,
}


def main(argv: Optional[List[str]] = None, cli: Optional[MarketplaceHubCLI] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging()

    if not args.command:
        parser.print_help()
        return 1

    cli = cli or MarketplaceHubCLI()

    try:
        return COMMANDS[args.command](cli, args)
    except KeyboardInterrupt:
        print("\n⏹️  Operation cancelled by user")
        return 130
    except MarketplaceHubError as e:
        cli_logger.error(f"{args.command} failed: {e}")
        print(f"❌ {e}")
        return 1
    except Exception as e:
        cli_logger.error(f"CLI operation failed: {e}", exc_info=True)
        print(f"❌ Operation failed: {e}")
        return 1


def cli_entry_point():
    """Entry point for console script."""
    sys.exit(main())


if __name__ == "__main__":
    cli_entry_point()
