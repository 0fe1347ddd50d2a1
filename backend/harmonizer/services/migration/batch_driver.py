"""Batch driver for loan harmonization.

Selects every loan still awaiting migration and, one loan at a time:

1. re-applies payments to the installment rows
2. reconciles balance, arrears and status from stored figures, the
   re-applied schedule and payment history
3. backfills missing disbursement/payment journal entries
4. records missing repayment transactions
5. writes the harmonized figures and migration tracking fields

Each loan runs in its own session and is committed on success or rolled
back on failure; a failure is recorded and the run moves on.  Loans are
processed sequentially in fixed-size batches with a pause between batches
to spare the database.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from harmonizer.config import MigrationConfig, settings
from harmonizer.models.loan import Loan, MigrationStatus
from harmonizer.models.payment import LoanPayment, LoanSchedule
from harmonizer.schemas import LoanRecord, PaymentRecord, ProductAccounts, ScheduleRecord
from harmonizer.services.gl.journal_backfill import backfill_loan_journals
from harmonizer.services.migration.product_snapshot import build_product_snapshot
from harmonizer.services.migration.reconciler import (
    ReconciliationResult,
    reconcile_loan,
    total_paid,
)
from harmonizer.services.migration.schedule_sync import apply_allocations, sync_loan_schedules
from harmonizer.services.migration.status_mapper import is_mapped
from harmonizer.services.migration.transaction_sync import sync_transaction_records

logger = logging.getLogger(__name__)

MIGRATION_NOTES = "Migrated to unified loan system"


class MigrationError(Exception):
    """Base exception for loan migration errors."""


class PrerequisiteError(MigrationError):
    """The database is missing columns or tables the migration needs."""


@dataclass
class MigrationResults:
    total: int = 0
    successful: int = 0
    failed: int = 0
    status_changes: Counter = field(default_factory=Counter)
    errors: list[str] = field(default_factory=list)
    journal_entries_created: int = 0
    payment_entries_skipped: int = 0
    transactions_created: int = 0
    schedules_synced: int = 0
    payments_processed: int = 0
    unmapped_statuses: Counter = field(default_factory=Counter)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "statusChanges": dict(self.status_changes),
            "errors": list(self.errors),
            "journalEntriesCreated": self.journal_entries_created,
            "paymentEntriesSkipped": self.payment_entries_skipped,
            "transactionsCreated": self.transactions_created,
            "schedulesSynced": self.schedules_synced,
            "paymentsProcessed": self.payments_processed,
            "unmappedStatuses": dict(self.unmapped_statuses),
        }


@dataclass
class LoanWorkItem:
    """Everything read from the loan row up front, detached from any session."""

    record: LoanRecord
    accounts: ProductAccounts | None
    product_snapshot: dict[str, Any] | None
    grace_period_days: int
    grace_period_type: str


@dataclass
class LoanOutcome:
    reconciliation: ReconciliationResult
    journal_entries_created: int = 0
    payment_entries_skipped: int = 0
    transactions_created: int = 0
    schedules_synced: int = 0


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def fetch_loans_for_migration(
    db: AsyncSession, tenant_id: str | None = None
) -> list[Loan]:
    """Loans whose migration status is unset or pending, oldest first."""
    q = (
        select(Loan)
        .where(or_(
            Loan.migration_status.is_(None),
            Loan.migration_status == MigrationStatus.PENDING.value,
        ))
        .options(selectinload(Loan.loan_product), selectinload(Loan.client))
        .order_by(Loan.created_at)
    )
    if tenant_id:
        q = q.where(Loan.tenant_id == tenant_id)
    result = await db.execute(q)
    return list(result.scalars().all())


async def fetch_schedules(db: AsyncSession, loan_id: str) -> list[LoanSchedule]:
    result = await db.execute(
        select(LoanSchedule)
        .where(LoanSchedule.loan_id == loan_id)
        .order_by(LoanSchedule.installment_number)
    )
    return list(result.scalars().all())


async def fetch_payments(db: AsyncSession, loan_id: str) -> list[LoanPayment]:
    result = await db.execute(
        select(LoanPayment)
        .where(LoanPayment.loan_id == loan_id)
        .order_by(LoanPayment.payment_date)
    )
    return list(result.scalars().all())


def build_work_item(loan: Loan, currency_code: str = "KES") -> LoanWorkItem:
    product = loan.loan_product
    record = LoanRecord.model_validate(loan).model_copy(
        update={"office_id": loan.client.office_id if loan.client else None}
    )
    return LoanWorkItem(
        record=record,
        accounts=ProductAccounts.model_validate(product) if product else None,
        product_snapshot=build_product_snapshot(product, currency_code) if product else None,
        grace_period_days=(product.grace_period_days or 0) if product else 0,
        grace_period_type=(product.grace_period_type or "none") if product else "none",
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def build_loan_update(
    item: LoanWorkItem, rec: ReconciliationResult, now: datetime
) -> dict[str, Any]:
    """Column values written back to ``loans`` for a harmonized loan."""
    return {
        "calculated_outstanding_balance": rec.harmonized_outstanding,
        "corrected_interest_rate": item.record.interest_rate,
        "days_in_arrears": rec.days_in_arrears,
        "schedule_consistent": rec.schedule_consistent,
        "total_scheduled_amount": rec.total_scheduled,
        "total_paid_amount": rec.total_paid,
        "last_payment_date": rec.last_payment_date,
        "next_payment_date": rec.next_payment_date,
        "next_repayment_amount": rec.next_repayment_amount,
        "outstanding_balance": rec.harmonized_outstanding,
        "status": rec.new_status,
        "loan_product_snapshot": item.product_snapshot,
        "grace_period_days": item.grace_period_days,
        "grace_period_type": item.grace_period_type,
        "migration_status": MigrationStatus.COMPLETED.value,
        "migration_date": now,
        "migration_notes": MIGRATION_NOTES,
        "harmonized_at": now,
        "updated_at": now,
    }


async def migrate_loan(
    db: AsyncSession,
    item: LoanWorkItem,
    config: MigrationConfig,
    *,
    as_of: date,
    now: datetime,
) -> LoanOutcome:
    """Harmonize one loan inside *db*; the caller commits or rolls back."""
    loan = item.record
    if item.accounts is None:
        raise MigrationError(f"No loan product for loan {loan.loan_number}")

    schedule_rows = await fetch_schedules(db, loan.id)
    payments = [PaymentRecord.model_validate(p) for p in await fetch_payments(db, loan.id)]
    schedules = [ScheduleRecord.model_validate(s) for s in schedule_rows]

    # Arrears, status and the next installment are read from the installments
    # as they stand after payments are re-applied.
    paid = total_paid(payments)
    schedules_synced = 0
    if paid > 0:
        schedules = apply_allocations(schedules, paid)
        schedules_synced = await sync_loan_schedules(
            db, schedule_rows, paid, dry_run=config.dry_run
        )

    rec = reconcile_loan(
        loan,
        schedules,
        payments,
        as_of=as_of,
        tolerance=config.balance_tolerance,
        arrears_threshold_days=config.arrears_threshold_days,
    )
    outcome = LoanOutcome(reconciliation=rec, schedules_synced=schedules_synced)

    backfill = await backfill_loan_journals(
        db, loan, payments, item.accounts, dry_run=config.dry_run
    )
    outcome.journal_entries_created = backfill.entries_created + (
        len(backfill.previews) if config.dry_run else 0
    )
    outcome.payment_entries_skipped = backfill.payment_entries_skipped

    outcome.transactions_created = await sync_transaction_records(
        db, loan, payments, dry_run=config.dry_run
    )

    values = build_loan_update(item, rec, now)
    if config.dry_run:
        logger.info(
            "DRY RUN: would update loan %s: status %s → %s, outstanding %s → %s, arrears %d days",
            loan.loan_number, rec.old_status, rec.new_status,
            rec.old_outstanding, rec.harmonized_outstanding, rec.days_in_arrears,
        )
    else:
        await db.execute(update(Loan).where(Loan.id == loan.id).values(**values))
        logger.info(
            "Updated loan %s: status %s → %s, outstanding %s → %s",
            loan.loan_number, rec.old_status, rec.new_status,
            rec.old_outstanding, rec.harmonized_outstanding,
        )
    return outcome


def _record_outcome(results: MigrationResults, outcome: LoanOutcome) -> None:
    rec = outcome.reconciliation
    results.successful += 1
    if rec.status_changed:
        results.status_changes[rec.status_change_key] += 1
    if not is_mapped(rec.new_status):
        results.unmapped_statuses[rec.new_status] += 1
    results.journal_entries_created += outcome.journal_entries_created
    results.payment_entries_skipped += outcome.payment_entries_skipped
    results.transactions_created += outcome.transactions_created
    results.schedules_synced += outcome.schedules_synced
    results.payments_processed += rec.payments_count


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def run_migration(
    session_factory: async_sessionmaker[AsyncSession],
    config: MigrationConfig,
    *,
    as_of: date | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> MigrationResults:
    """Harmonize every loan awaiting migration.

    Raises :class:`MigrationError` if the loan table cannot be read; any
    failure after that is per loan and lands in ``results.errors``.
    """
    as_of = as_of or date.today()
    logger.info("Starting loan migration (%s)", config.model_dump())

    try:
        async with session_factory() as db:
            loans = await fetch_loans_for_migration(db, config.tenant_id)
            items = [build_work_item(ln, settings.default_currency_code) for ln in loans]
    except SQLAlchemyError as exc:
        raise MigrationError(f"Cannot read loans: {exc}") from exc

    results = MigrationResults(total=len(items))
    logger.info("Found %d loans to migrate", len(items))
    if not items:
        return results

    n_batches = (len(items) + config.batch_size - 1) // config.batch_size
    for batch_no, start in enumerate(range(0, len(items), config.batch_size), start=1):
        logger.info("Processing batch %d/%d", batch_no, n_batches)
        for item in items[start:start + config.batch_size]:
            number = item.record.loan_number
            async with session_factory() as db:
                try:
                    outcome = await migrate_loan(
                        db, item, config, as_of=as_of, now=datetime.now(timezone.utc)
                    )
                    if config.dry_run:
                        await db.rollback()
                    else:
                        await db.commit()
                except Exception as exc:
                    await db.rollback()
                    logger.exception("Error processing loan %s", number)
                    results.failed += 1
                    results.errors.append(f"Loan {number}: {exc}")
                    continue
            _record_outcome(results, outcome)

        if start + config.batch_size < len(items) and config.batch_delay_seconds > 0:
            logger.info("Waiting %.1f seconds before next batch", config.batch_delay_seconds)
            await sleep(config.batch_delay_seconds)

    log_results(results)
    return results


def log_results(results: MigrationResults) -> None:
    logger.info("Successful: %d/%d", results.successful, results.total)
    logger.info("Failed: %d/%d", results.failed, results.total)
    for change, count in results.status_changes.items():
        logger.info("Status change %s: %d loans", change, count)
    for status, count in results.unmapped_statuses.items():
        logger.warning("Unmapped status %r kept on %d loans", status, count)
    for error in results.errors[:10]:
        logger.warning("  - %s", error)
    if len(results.errors) > 10:
        logger.warning("  ... and %d more errors", len(results.errors) - 10)
