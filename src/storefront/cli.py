"""
Command-line interface for Storefront maintenance operations.

Covers database setup, manual marketplace sync, commission approval,
configuration checks and key generation, so the same jobs the scheduler
runs can be triggered by hand or from cron.
"""

import argparse
import json
import sys
from typing import Any, Dict

from storefront.utils.logger import get_logger, setup_logging
from storefront.utils.config import get_config, validate_configuration, reload_config
from storefront.utils.dates import parse_datetime
from storefront.utils.exceptions import DataSyncError, StorefrontError


# Setup CLI-specific logging
cli_logger = get_logger(__name__)


def _print_sync_result(result: Dict[str, Any], verbose: bool = False) -> None:
    totals = result["totals"]
    print(f"📊 {result['message']}")
    print(
        f"   imported={totals['imported']} updated={totals['updated']} "
        f"skipped={totals['skipped']} errors={totals['errors']}"
    )
    if verbose:
        for run in result["runs"]:
            print(f"   • {run.channel_name or run.channel_id}: {run.status} - {run.message}")


class StorefrontCLI:
    """Command-line interface for Storefront operations."""

    def cmd_init_db(self, args) -> int:
        """Create all database tables."""
        from storefront.database.connection import init_db

        cli_logger.info("Creating database tables...")
        init_db()
        print("✅ Database tables created")
        return 0

    def cmd_sync(self, args) -> int:
        """Handle marketplace sync operations."""
        from storefront.database.connection import get_db_context
        from storefront.services.marketplace_store import MarketplaceOrderStore
        from storefront.services.marketplace_sync import MarketplaceSyncService, SyncRequest

        with get_db_context() as db:
            if args.sync_action == "history":
                runs = MarketplaceOrderStore(db).get_sync_history(args.limit)
                print(f"📋 Last {len(runs)} sync run(s):")
                for run in runs:
                    print(
                        f"  • {run.started_at:%Y-%m-%d %H:%M} {run.channel_name or '-'} "
                        f"[{run.status}] {run.message or ''}"
                    )
                return 0

            service = MarketplaceSyncService(db)
            if args.sync_action == "due":
                print("🔄 Syncing channels that are due...")
                result = service.sync_due_channels()
            else:
                print("🔄 Starting manual marketplace sync...")
                result = service.sync_orders(
                    SyncRequest(
                        channel_id=args.channel_id,
                        platform=args.platform,
                        since=parse_datetime(args.since, field="since"),
                        until=parse_datetime(args.until, field="until"),
                        limit=args.limit,
                    )
                )

            _print_sync_result(result, verbose=args.verbose)
            if not result["success"]:
                raise DataSyncError(result["message"], channel_id=args.channel_id)
            return 0

    def cmd_approve_commissions(self, args) -> int:
        """Approve pending commissions past the hold period."""
        from storefront.database.connection import get_db_context
        from storefront.services.affiliate_service import AffiliateService

        with get_db_context() as db:
            approved = AffiliateService(db).approve_pending_commissions()
        print(f"✅ Approved {approved} commission(s)")
        return 0

    def cmd_config(self, args) -> int:
        """Handle configuration commands."""
        if args.config_action == "validate":
            cli_logger.info("Validating configuration...")
            validation_result = validate_configuration()

            if validation_result["valid"]:
                print("✅ Configuration is valid")
                for warning in validation_result["warnings"]:
                    print(f"⚠️  {warning}")
                print(f"📊 Summary: {json.dumps(validation_result['summary'], indent=2)}")
                return 0

            print(f"❌ Configuration validation failed: {validation_result['error']}")
            return 1

        if args.config_action == "reload":
            from storefront.security.encryption import reset_encryptor

            reload_config()
            reset_encryptor()
            print("✅ Configuration reloaded successfully")
            return 0

        # show
        print("📋 Current configuration:")
        print(json.dumps(validate_configuration().get("summary", {}), indent=2))
        return 0

    def cmd_generate_key(self, args) -> int:
        """Print a new Fernet key for ENCRYPTION_MASTER_KEY."""
        from storefront.security.encryption import CredentialEncryptor

        print(CredentialEncryptor.generate_key())
        return 0

    def cmd_create_token(self, args) -> int:
        """Issue an access token, for local testing of the API."""
        from storefront.auth import create_access_token

        token = create_access_token(args.user_id, args.role, email=args.email, name=args.name)
        print(token)
        return 0


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="storefront",
        description="Storefront CLI - database, sync and affiliate maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  storefront init-db                          # Create tables
  storefront sync run --platform amazon       # Sync all enabled Amazon channels
  storefront sync run --channel-id mpch_...   # Sync one channel
  storefront sync due                         # Sync channels whose interval elapsed
  storefront approve-commissions              # Approve commissions past the hold period
  storefront config validate                  # Validate configuration
  storefront generate-key                     # New ENCRYPTION_MASTER_KEY
        """
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create database tables")

    # Sync commands
    sync_parser = subparsers.add_parser("sync", help="Marketplace order sync")
    sync_parser.add_argument(
        "sync_action",
        choices=["run", "due", "history"],
        help="Sync action to perform"
    )
    sync_parser.add_argument("--channel-id", help="Sync only this channel")
    sync_parser.add_argument("--platform", choices=["amazon", "ebay", "walmart"], help="Sync only this platform")
    sync_parser.add_argument("--since", help="ISO date; only orders created after it")
    sync_parser.add_argument("--until", help="ISO date; only orders created before it")
    sync_parser.add_argument("--limit", type=int, default=None, help="Page size / history length")

    subparsers.add_parser("approve-commissions", help="Approve pending affiliate commissions")

    # Configuration commands
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_parser.add_argument(
        "config_action",
        choices=["validate", "show", "reload"],
        help="Configuration action to perform"
    )

    subparsers.add_parser("generate-key", help="Generate a Fernet encryption key")

    token_parser = subparsers.add_parser("create-token", help="Issue an API access token")
    token_parser.add_argument("user_id", help="Token subject")
    token_parser.add_argument("--role", choices=["admin", "customer"], default="customer")
    token_parser.add_argument("--email")
    token_parser.add_argument("--name")

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging()

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "sync" and args.sync_action == "history" and args.limit is None:
        args.limit = 20

    cli = StorefrontCLI()
    handlers = {
        "init-db": cli.cmd_init_db,
        "sync": cli.cmd_sync,
        "approve-commissions": cli.cmd_approve_commissions,
        "config": cli.cmd_config,
        "generate-key": cli.cmd_generate_key,
        "create-token": cli.cmd_create_token,
    }

    try:
        return handlers[args.command](args)
    except KeyboardInterrupt:
        print("\n⏹️  Operation cancelled by user")
        return 130
    except StorefrontError as e:
        cli_logger.error(f"{args.command} failed: {e}")
        print(f"❌ {e.message}")
        return 1


def cli_entry_point():
    """Entry point for console script."""
    sys.exit(main())


if __name__ == "__main__":
    cli_entry_point()
