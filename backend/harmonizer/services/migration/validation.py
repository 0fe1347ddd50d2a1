"""Pre-flight and post-run checks for the loan migration."""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Any

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from harmonizer.models.gl import JournalEntry, JournalReferenceType
from harmonizer.models.loan import Loan, MigrationStatus
from harmonizer.models.payment import LoanPayment, LoanSchedule
from harmonizer.services.migration.batch_driver import PrerequisiteError

logger = logging.getLogger(__name__)

REQUIRED_LOAN_COLUMNS = (
    "migration_status",
    "calculated_outstanding_balance",
    "loan_product_snapshot",
    "days_in_arrears",
    "harmonized_at",
)

BALANCE_EPSILON = Decimal("0.01")


async def validate_prerequisites(db: AsyncSession) -> dict[str, Any]:
    """Check the ``loans`` table carries the harmonization columns."""
    try:
        columns = await db.run_sync(
            lambda sync_session: {
                c["name"] for c in inspect(sync_session.connection()).get_columns("loans")
            }
        )
        missing = [c for c in REQUIRED_LOAN_COLUMNS if c not in columns]
        loan_count = (await db.execute(select(func.count()).select_from(Loan))).scalar_one()
    except SQLAlchemyError as exc:
        logger.error("Prerequisite check failed: %s", exc)
        return {"is_valid": False, "missing_columns": [], "loan_count": None, "error": str(exc)}

    if missing:
        logger.error("Missing required columns on loans: %s", ", ".join(missing))
    else:
        logger.info("All required columns present; %d loans in table", loan_count)
    return {
        "is_valid": not missing,
        "missing_columns": missing,
        "loan_count": loan_count,
        "error": None,
    }


async def ensure_prerequisites(db: AsyncSession) -> None:
    """Raise :class:`PrerequisiteError` unless :func:`validate_prerequisites` passes."""
    check = await validate_prerequisites(db)
    if check["error"]:
        raise PrerequisiteError(check["error"])
    if not check["is_valid"]:
        raise PrerequisiteError(
            "Missing required columns: " + ", ".join(check["missing_columns"])
        )


async def verify_migration(db: AsyncSession, tenant_id: str | None = None) -> dict[str, Any]:
    """Audit migrated loans for journal, schedule and balance gaps."""
    status_q = select(Loan.migration_status, func.count()).group_by(Loan.migration_status)
    loans_q = select(
        Loan.id, Loan.loan_number, Loan.principal_amount, Loan.outstanding_balance
    ).where(Loan.migration_status == MigrationStatus.COMPLETED.value)
    if tenant_id:
        status_q = status_q.where(Loan.tenant_id == tenant_id)
        loans_q = loans_q.where(Loan.tenant_id == tenant_id)

    by_status: dict[str | None, int] = dict((await db.execute(status_q)).all())
    migrated = (await db.execute(loans_q)).all()
    loan_ids = [row.id for row in migrated]

    with_journal: set[str] = set()
    with_schedules: set[str] = set()
    paid: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    if loan_ids:
        with_journal = set((await db.execute(
            select(JournalEntry.reference_id).where(
                JournalEntry.reference_type == JournalReferenceType.LOAN_DISBURSEMENT.value,
                JournalEntry.reference_id.in_(loan_ids),
            )
        )).scalars().all())
        with_schedules = set((await db.execute(
            select(LoanSchedule.loan_id).where(LoanSchedule.loan_id.in_(loan_ids)).distinct()
        )).scalars().all())
        for loan_id, amount in (await db.execute(
            select(LoanPayment.loan_id, func.sum(LoanPayment.payment_amount))
            .where(LoanPayment.loan_id.in_(loan_ids))
            .group_by(LoanPayment.loan_id)
        )).all():
            paid[loan_id] = Decimal(str(amount or 0))

    issues: list[str] = []
    consistent = 0
    for row in migrated:
        if row.id not in with_journal:
            issues.append(f"Loan {row.loan_number}: no disbursement journal entry")
        if row.id not in with_schedules:
            issues.append(f"Loan {row.loan_number}: no repayment schedule")
        expected = Decimal(str(row.principal_amount or 0)) - paid[row.id]
        stored = Decimal(str(row.outstanding_balance or 0))
        if abs(expected - stored) < BALANCE_EPSILON:
            consistent += 1
        else:
            issues.append(
                f"Loan {row.loan_number}: balance {stored} does not match "
                f"principal less payments {expected}"
            )

    metrics = {
        "total_loans": sum(by_status.values()),
        "migrated": by_status.get(MigrationStatus.COMPLETED.value, 0),
        "pending": by_status.get(MigrationStatus.PENDING.value, 0) + by_status.get(None, 0),
        "failed": by_status.get(MigrationStatus.FAILED.value, 0),
        "with_disbursement_entry": len(with_journal),
        "with_schedules": len(with_schedules),
        "consistent_balances": consistent,
    }
    logger.info("Verification: %s, %d issue(s)", metrics, len(issues))
    return {"is_valid": not issues, "issues": issues, "metrics": metrics}
