"""
RBI Registry operator CLI.

Usage:
    rbi-registry init
    rbi-registry load-psgc psgc.csv
    rbi-registry create-super-admin auth0|founder
    rbi-registry audit --verbose
    rbi-registry migrate-codes --dry-run
    rbi-registry migrate-codes --barangay 042114014

All commands read the database location from settings (.env / environment)
unless ``--database-url`` is given.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time

import structlog
from rich.console import Console
from rich.table import Table

from rbi_registry.config import RegistrySettings, settings
from rbi_registry.errors import RegistryError
from rbi_registry.geography.catalog import CatalogCache
from rbi_registry.geography.loader import read_units_csv
from rbi_registry.households.migration import LegacyCodeMigration
from rbi_registry.registry import CivilRegistry
from rbi_registry.schema import RoleName
from rbi_registry.store.audit import run_consistency_checks
from rbi_registry.store.service import RegistryStore

console = Console()


def configure_logging(config: RegistrySettings | None = None) -> None:
    """Configure structured logging from ``config``, or the process settings."""
    config = config or settings
    logging.basicConfig(level=logging.getLevelName(config.log_level), format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if config.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _store(args: argparse.Namespace) -> RegistryStore:
    return RegistryStore(
        args.database_url or settings.database_url_sync,
        sqlite_busy_timeout=settings.sqlite_busy_timeout_seconds,
    )


# ════════════════════════════════════════════════════════════════
# Commands
# ════════════════════════════════════════════════════════════════


def cmd_init(args: argparse.Namespace) -> int:
    store = _store(args)
    store.initialize()
    console.print("[bold green]✓[/bold green] Schema ready, role catalog seeded")
    return 0


def cmd_load_psgc(args: argparse.Namespace) -> int:
    units = read_units_csv(args.csv_path)
    store = _store(args)
    store.initialize()
    count = store.upsert_geographic_units(units)
    console.print(f"[bold green]✓[/bold green] Loaded [bold]{count}[/bold] geographic units")
    return 0


def cmd_create_super_admin(args: argparse.Namespace) -> int:
    store = _store(args)
    registry = CivilRegistry(store, CatalogCache(store.load_geographic_units))
    principal = registry.assignment.provision_principal(
        args.external_identity_id, RoleName.SUPER_ADMIN,
    )
    console.print(
        f"[bold green]✓[/bold green] Super admin created: {principal.id} "
        f"({principal.external_identity_id})"
    )
    return 0


def cmd_audit(args: argparse.Namespace) -> int:
    """Run the consistency audit and print a summary (and findings with -v)."""
    console.print("\n[bold blue]═══ Registry Consistency Audit ═══[/bold blue]\n")
    store = _store(args)

    start_time = time.time()
    report = run_consistency_checks(store)
    elapsed = time.time() - start_time

    console.print(f"  Principals checked: [bold]{report.principals_checked}[/bold]")
    console.print(f"  Households checked: [bold]{report.households_checked}[/bold]")
    console.print(f"  Residents checked:  [bold]{report.residents_checked}[/bold]")
    console.print(f"  Audit time: {elapsed:.3f}s")

    if report.is_consistent:
        console.print("  [bold green]✓ CONSISTENT[/bold green]")
    else:
        console.print(f"  [bold red]✗ {len(report.findings)} FINDINGS[/bold red]")
        for check, count in sorted(report.by_check().items()):
            console.print(f"    {check}: {count}")

    if args.verbose and report.findings:
        table = Table(show_lines=True)
        table.add_column("Check", style="cyan")
        table.add_column("Subject", style="yellow")
        table.add_column("Detail")
        for finding in report.findings:
            table.add_row(finding.check, finding.subject, finding.detail)
        console.print(table)

    console.print("\n[bold blue]═══ Audit Complete ═══[/bold blue]\n")
    return 0 if report.is_consistent else 1


def cmd_migrate_codes(args: argparse.Namespace) -> int:
    store = _store(args)
    migration = LegacyCodeMigration(store)

    if args.barangay:
        reports = [migration.migrate_barangay(args.barangay, dry_run=args.dry_run)]
    else:
        reports = migration.migrate_all(dry_run=args.dry_run)

    title = "Planned" if args.dry_run else "Migrated"
    table = Table(title=f"{title} household codes")
    table.add_column("Barangay", style="cyan")
    table.add_column("Households", justify="right")
    table.add_column("Sequences adopted", justify="right")
    table.add_column("Residents repointed", justify="right")
    for report in reports:
        table.add_row(
            report.barangay_code,
            str(report.households_renamed),
            str(report.sequences_adopted),
            str(report.residents_repointed),
        )
    console.print(table)

    if args.verbose:
        for report in reports:
            for old, new in report.renamed.items():
                console.print(f"  {old} → {new}")

    if not args.dry_run:
        audit = run_consistency_checks(store)
        if not audit.is_consistent:
            console.print("[bold red]✗ Post-migration audit reported findings[/bold red]")
            return 1
        console.print("[bold green]✓ Post-migration audit clean[/bold green]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rbi-registry",
        description="RBI Registry administration: schema, reference data, audits, migrations",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy database URL (defaults to .env settings)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create tables and seed the role catalog").set_defaults(func=cmd_init)

    load = sub.add_parser("load-psgc", help="Load PSGC reference units from CSV")
    load.add_argument("csv_path", help="CSV with code,name,level,parent_code columns")
    load.set_defaults(func=cmd_load_psgc)

    admin = sub.add_parser("create-super-admin", help="Provision a SUPER_ADMIN principal")
    admin.add_argument("external_identity_id")
    admin.set_defaults(func=cmd_create_super_admin)

    audit = sub.add_parser("audit", help="Verify registry invariants")
    audit.add_argument("--verbose", "-v", action="store_true", help="List every finding")
    audit.set_defaults(func=cmd_audit)

    migrate = sub.add_parser("migrate-codes", help="Rewrite legacy household codes")
    migrate.add_argument("--barangay", default=None, help="Only migrate this barangay")
    migrate.add_argument("--dry-run", action="store_true", help="Plan without writing")
    migrate.add_argument("--verbose", "-v", action="store_true", help="Show every rename")
    migrate.set_defaults(func=cmd_migrate_codes)

    return parser


def main(argv: list[str] | None = None) -> None:
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        code = args.func(args)
    except RegistryError as exc:
        console.print(f"[bold red]✗ {exc.kind.value}:[/bold red] {exc.message}")
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
