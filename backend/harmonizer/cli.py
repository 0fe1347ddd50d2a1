"""Command-line entry point for the loan harmonization run.

Usage:
    loan-harmonizer validate
    loan-harmonizer dry-run --tenant <uuid> --batch-size 25
    loan-harmonizer migrate --batch-delay 5 --report-dir reports/
    loan-harmonizer verify
"""

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from pydantic import ValidationError

if TYPE_CHECKING:
    from harmonizer.config import MigrationConfig

logger = logging.getLogger("harmonizer.cli")

COMMANDS = ("validate", "dry-run", "migrate", "verify")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="loan-harmonizer",
        description="Reconcile loan balances, backfill journals and map legacy statuses.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("--tenant", default=None, help="Only process loans of this tenant")
    parser.add_argument("--batch-size", type=int, default=None, help="Loans per batch")
    parser.add_argument(
        "--batch-delay", type=float, default=None, help="Seconds to pause between batches"
    )
    parser.add_argument("--report-dir", default=None, help="Directory for the JSON report")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
        type=str.upper,
    )
    return parser.parse_args(argv)


async def _validate() -> int:
    from harmonizer.database import async_session
    from harmonizer.services.migration.validation import validate_prerequisites

    async with async_session() as db:
        check = await validate_prerequisites(db)
    if check["is_valid"]:
        print(f"Prerequisites OK ({check['loan_count']} loans)")
        return 0
    if check["error"]:
        print(f"Prerequisite check failed: {check['error']}")
    else:
        print("Missing required columns: " + ", ".join(check["missing_columns"]))
    return 1


async def _run(config: "MigrationConfig") -> int:
    from harmonizer.database import async_session
    from harmonizer.services.migration.batch_driver import run_migration
    from harmonizer.services.migration.report import build_report, write_report

    if not config.dry_run and await _validate() != 0:
        logger.error("Prerequisites not met; aborting migration")
        return 1

    results = await run_migration(async_session, config)
    report = build_report(config, results)
    path = write_report(report, config.report_dir)
    summary = report["summary"]
    print(
        f"{'Dry run' if config.dry_run else 'Migration'} complete: "
        f"{results.successful}/{results.total} succeeded ({summary['successRate']}), "
        f"{results.failed} failed, {results.journal_entries_created} journal entries. "
        f"Report: {path}"
    )
    return 0


async def _verify(tenant_id: str | None) -> int:
    from harmonizer.database import async_session
    from harmonizer.services.migration.validation import verify_migration

    async with async_session() as db:
        outcome = await verify_migration(db, tenant_id)
    for key, value in outcome["metrics"].items():
        print(f"{key}: {value}")
    for issue in outcome["issues"]:
        print(f"  - {issue}")
    return 0 if outcome["is_valid"] else 1


async def _dispatch(args: argparse.Namespace, config: "MigrationConfig") -> int:
    from harmonizer.database import engine

    try:
        if args.command == "validate":
            return await _validate()
        if args.command == "verify":
            return await _verify(config.tenant_id)
        return await _run(config)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    try:
        from harmonizer.config import MigrationConfig, settings

        config = MigrationConfig.from_settings(
            dry_run=args.command == "dry-run",
            tenant_id=args.tenant,
            batch_size=args.batch_size,
            batch_delay_seconds=args.batch_delay,
            report_dir=args.report_dir,
        )
    except ValidationError as exc:
        logging.basicConfig(level=logging.ERROR)
        logger.error("Invalid configuration: %s", exc)
        return 1

    logging.basicConfig(
        level=args.log_level or settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from harmonizer.services.migration.batch_driver import MigrationError

    try:
        return asyncio.run(_dispatch(args, config))
    except MigrationError as exc:
        logger.error("Migration aborted: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
