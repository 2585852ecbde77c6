"""
Command-line interface for Catalog Sync manual operations.

Manual sync triggers, registry audits, connection tests and configuration
inspection. Exit code is 0 on success and 1 on failure.
"""

import argparse
import json
import os
import sys
from typing import List, Optional

from catalog_sync.database.connection import get_db_context, init_db
from catalog_sync.database.repository import get_tenant, list_tenants
from catalog_sync.security.encryption import CredentialEncryptor, encrypt_credential
from catalog_sync.services.registry_guard import find_duplicate_upstream_ids
from catalog_sync.services.sync_service import (
    check_tenant_connection,
    run_all_tenant_syncs,
    run_tenant_sync,
)
from catalog_sync.utils.config import describe_configuration, reload_config
from catalog_sync.utils.exceptions import CatalogSyncError
from catalog_sync.utils.logger import get_logger, setup_logging


cli_logger = get_logger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


class CatalogSyncCLI:
    """Command-line interface for Catalog Sync operations."""

    def cmd_sync(self, args) -> int:
        """Handle sync commands."""
        if args.sync_action == "run":
            if not args.tenant:
                print("❌ --tenant is required for 'sync run'")
                return 1

            if args.queue:
                from catalog_sync.workers.tasks import sync_tenant_catalog
                task = sync_tenant_catalog.delay(args.tenant, credential=args.credential)
                print(f"📤 Queued sync for tenant {args.tenant} (task {task.id})")
                return 0

            cli_logger.info(f"Running manual sync for tenant {args.tenant}")
            outcome = run_tenant_sync(args.tenant, credential=args.credential, trigger="manual")
            _print_json(outcome.to_dict())
            if outcome.success:
                print(f"✅ Synced {outcome.synced_count}, deleted {outcome.deleted_count}, "
                      f"{len(outcome.errors)} error(s)")
                return 0
            print(f"❌ Sync failed: {outcome.errors[0] if outcome.errors else 'unknown error'}")
            return 1

        if args.sync_action == "all":
            if args.queue:
                from catalog_sync.workers.tasks import sync_all_tenants
                task = sync_all_tenants.delay(force=True)
                print(f"📤 Queued sync for all active tenants (task {task.id})")
                return 0

            outcomes = run_all_tenant_syncs(trigger="manual")
            _print_json({tenant_id: outcome.to_contract() for tenant_id, outcome in outcomes.items()})
            failed = [tenant_id for tenant_id, outcome in outcomes.items() if not outcome.success]
            if failed:
                print(f"❌ {len(failed)} of {len(outcomes)} tenant sync(s) failed: {', '.join(failed)}")
                return 1
            print(f"✅ {len(outcomes)} tenant(s) synced")
            return 0

        return 1

    def cmd_registry(self, args) -> int:
        """Audit the tenant registry for shared upstream ids."""
        with get_db_context() as db:
            tenants = list_tenants(db)
            duplicates = find_duplicate_upstream_ids(tenants)
            missing = [tenant.id for tenant in tenants if not (tenant.upstream_id or "").strip()]

        _print_json({
            "tenant_count": len(tenants),
            "conflicts": duplicates,
            "without_upstream_id": missing,
        })
        if duplicates:
            print(f"❌ {len(duplicates)} upstream id(s) shared by several tenants; "
                  "syncs for those tenants are refused")
            return 1
        print("✅ Every upstream id belongs to a single tenant")
        return 0

    def cmd_api(self, args) -> int:
        """Test marketplace connectivity for a tenant."""
        result = check_tenant_connection(args.tenant, credential=args.credential)
        _print_json(result)
        if result.get("success"):
            print("✅ Marketplace API connection successful")
            return 0
        print(f"❌ Marketplace API connection failed: {result.get('message')}")
        return 1

    def cmd_config(self, args) -> int:
        """Handle configuration commands."""
        if args.config_action == "reload":
            reload_config()
            print("✅ Configuration reloaded successfully")
            return 0

        result = describe_configuration()
        if not result["valid"]:
            print(f"❌ Configuration validation failed: {result['error']}")
            return 1

        if args.config_action == "show":
            print("📋 Current configuration:")
            _print_json(result["summary"])
        else:
            print("✅ Configuration is valid")
        return 0

    def cmd_db(self, args) -> int:
        """Create database tables."""
        init_db()
        print("✅ Database tables created")
        return 0

    def cmd_tenant(self, args) -> int:
        """Store an encrypted marketplace key for a tenant."""
        with get_db_context() as db:
            tenant = get_tenant(db, args.tenant)
            if tenant is None:
                print(f"❌ Tenant {args.tenant} not found")
                return 1
            tenant.api_credential = encrypt_credential(args.key) if args.key else None

        if args.key:
            print(f"🔐 Stored encrypted API key for tenant {args.tenant}")
        else:
            print(f"🗑️  Cleared API key for tenant {args.tenant}; app-level key will be used")
        return 0

    def cmd_security(self, args) -> int:
        """Generate a Fernet key for ENCRYPTION_MASTER_KEY."""
        print(CredentialEncryptor.generate_key())
        return 0


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="catalog-sync",
        description="Catalog Sync CLI - manual syncs and registry maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  catalog-sync sync run --tenant <id>       # Sync one tenant now
  catalog-sync sync run --tenant <id> --queue  # Hand the sync to a worker
  catalog-sync sync all                     # Sync every active tenant
  catalog-sync registry check               # Find shared upstream ids
  catalog-sync api test --tenant <id>       # Test marketplace credentials
  catalog-sync config show                  # Show configuration
        """
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override LOG_LEVEL for this invocation"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sync_parser = subparsers.add_parser("sync", help="Catalog synchronization")
    sync_parser.add_argument("sync_action", choices=["run", "all"], help="Sync action to perform")
    sync_parser.add_argument("--tenant", help="Local tenant id (for 'run')")
    sync_parser.add_argument("--credential", help="Tenant-scoped API key for this run only")
    sync_parser.add_argument("--queue", action="store_true", help="Dispatch to Celery instead of running inline")

    registry_parser = subparsers.add_parser("registry", help="Tenant registry audit")
    registry_parser.add_argument("registry_action", choices=["check"], help="Registry action to perform")

    api_parser = subparsers.add_parser("api", help="API testing")
    api_parser.add_argument("api_action", choices=["test"], default="test", nargs="?",
                            help="API action to perform")
    api_parser.add_argument("--tenant", required=True, help="Local tenant id")
    api_parser.add_argument("--credential", help="API key to test instead of the stored one")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_parser.add_argument("config_action", choices=["validate", "show", "reload"],
                               help="Configuration action to perform")

    db_parser = subparsers.add_parser("db", help="Database management")
    db_parser.add_argument("db_action", choices=["init"], help="Database action to perform")

    tenant_parser = subparsers.add_parser("tenant", help="Tenant credential management")
    tenant_parser.add_argument("tenant_action", choices=["set-credential"], help="Tenant action")
    tenant_parser.add_argument("--tenant", required=True, help="Local tenant id")
    tenant_parser.add_argument("--key", help="Marketplace API key (omit to clear)")

    security_parser = subparsers.add_parser("security", help="Encryption keys")
    security_parser.add_argument("security_action", choices=["generate-key"], help="Security action")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        os.environ["LOG_LEVEL"] = args.log_level
    setup_logging()

    if not args.command:
        parser.print_help()
        return 1

    cli = CatalogSyncCLI()
    handlers = {
        "sync": cli.cmd_sync,
        "registry": cli.cmd_registry,
        "api": cli.cmd_api,
        "config": cli.cmd_config,
        "db": cli.cmd_db,
        "tenant": cli.cmd_tenant,
        "security": cli.cmd_security,
    }

    try:
        return handlers[args.command](args)
    except KeyboardInterrupt:
        print("\n⏹️  Operation cancelled by user")
        return 130
    except CatalogSyncError as e:
        cli_logger.error(f"CLI operation failed: {e}")
        print(f"❌ {e.message}")
        return 1


def cli_entry_point():
    """Entry point for console script."""
    sys.exit(main())


if __name__ == "__main__":
    cli_entry_point()
