"""Re-apply recorded payments to a loan's installments."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from harmonizer.models.payment import LoanSchedule, SchedulePaymentStatus
from harmonizer.schemas import ScheduleRecord, ZERO

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleAllocation:
    installment_number: int
    paid_amount: Decimal
    outstanding_amount: Decimal
    payment_status: str


def allocate_payments(
    schedules: Sequence[ScheduleRecord], amount_paid: Decimal
) -> list[ScheduleAllocation]:
    """Waterfall *amount_paid* across installments in installment order.

    Allocation stops once the amount is exhausted; installments after that
    point get no allocation and keep their stored figures.
    """
    allocations: list[ScheduleAllocation] = []
    remaining = amount_paid
    for s in sorted(schedules, key=lambda s: s.installment_number):
        applied = min(remaining, s.total_amount)
        if applied >= s.total_amount:
            status = SchedulePaymentStatus.PAID
        elif applied > 0:
            status = SchedulePaymentStatus.PARTIAL
        else:
            status = SchedulePaymentStatus.UNPAID
        allocations.append(ScheduleAllocation(
            installment_number=s.installment_number,
            paid_amount=applied,
            outstanding_amount=max(ZERO, s.total_amount - applied),
            payment_status=status.value,
        ))
        remaining -= applied
        if remaining <= 0:
            break
    return allocations


def apply_allocations(
    schedules: Sequence[ScheduleRecord], amount_paid: Decimal
) -> list[ScheduleRecord]:
    """Return *schedules* as they read once *amount_paid* has been allocated."""
    allocations = {a.installment_number: a for a in allocate_payments(schedules, amount_paid)}
    applied = []
    for s in schedules:
        a = allocations.get(s.installment_number)
        if a is None:
            applied.append(s)
            continue
        applied.append(s.model_copy(update={
            "paid_amount": a.paid_amount,
            "outstanding_amount": a.outstanding_amount,
            "payment_status": a.payment_status,
        }))
    return applied


async def sync_loan_schedules(
    db: AsyncSession,
    schedules: Sequence[LoanSchedule],
    amount_paid: Decimal,
    *,
    dry_run: bool = False,
) -> int:
    """Write allocations onto *schedules*; returns the number of installments touched."""
    if not schedules:
        return 0

    records = [ScheduleRecord.model_validate(s) for s in schedules]
    allocations = {a.installment_number: a for a in allocate_payments(records, amount_paid)}
    if dry_run:
        for a in allocations.values():
            logger.info(
                "DRY RUN: installment %d → paid=%s outstanding=%s status=%s",
                a.installment_number, a.paid_amount, a.outstanding_amount, a.payment_status,
            )
        return len(allocations)

    for row in schedules:
        a = allocations.get(row.installment_number)
        if a is None:
            continue
        row.paid_amount = a.paid_amount
        row.outstanding_amount = a.outstanding_amount
        row.payment_status = a.payment_status

    await db.flush()
    return len(allocations)
