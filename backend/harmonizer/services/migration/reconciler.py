"""Loan balance reconciler.

Produces one outstanding balance and delinquency status per loan from three
sources that can disagree:

1. ``loans.outstanding_balance`` (stored running figure)
2. the repayment schedule (unpaid installment outstanding amounts)
3. the payment history (principal minus everything paid)

Precedence: a positive schedule figure replaces the stored balance, and a
payment-derived figure that differs from the running value by more than the
tolerance replaces both.  Everything here is a pure function of its inputs.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Sequence

from harmonizer.models.loan import LoanStatus
from harmonizer.schemas import LoanRecord, PaymentRecord, ScheduleRecord, ZERO
from harmonizer.services.migration.status_mapper import map_status

DEFAULT_TOLERANCE = Decimal("1")
DEFAULT_ARREARS_THRESHOLD_DAYS = 30

_UNDISBURSED_STATUSES = ("pending", "approved")


@dataclass(frozen=True)
class ReconciliationResult:
    loan_id: str
    loan_number: str
    old_status: str
    new_status: str
    old_outstanding: Decimal
    harmonized_outstanding: Decimal
    days_in_arrears: int
    total_paid: Decimal
    total_scheduled: Decimal
    last_payment_date: date | None
    next_payment_date: date | None
    next_repayment_amount: Decimal | None
    schedule_consistent: bool
    schedules_count: int
    payments_count: int

    @property
    def status_changed(self) -> bool:
        return self.old_status != self.new_status

    @property
    def status_change_key(self) -> str:
        return f"{self.old_status} -> {self.new_status}"


def total_paid(payments: Sequence[PaymentRecord]) -> Decimal:
    return sum((p.payment_amount for p in payments), ZERO)


def schedule_outstanding(schedules: Sequence[ScheduleRecord]) -> Decimal:
    """Sum the outstanding amount of every installment not marked paid."""
    return sum((s.effective_outstanding for s in schedules if not s.is_paid), ZERO)


def harmonize_outstanding_balance(
    loan: LoanRecord,
    schedules: Sequence[ScheduleRecord],
    payments: Sequence[PaymentRecord],
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> Decimal:
    """Return the authoritative outstanding balance for *loan*."""
    outstanding = loan.outstanding_balance

    if schedules:
        from_schedule = schedule_outstanding(schedules)
        if from_schedule > 0:
            outstanding = from_schedule

    if payments:
        from_payments = loan.principal_amount - total_paid(payments)
        if abs(from_payments - outstanding) > tolerance:
            outstanding = max(ZERO, from_payments)

    return max(ZERO, outstanding)


def days_in_arrears(schedules: Sequence[ScheduleRecord], as_of: date) -> int:
    """Days since the earliest unpaid installment fell due; 0 if none is late."""
    overdue = [s.due_date for s in schedules if s.due_date < as_of and not s.is_paid]
    if not overdue:
        return 0
    return max(0, (as_of - min(overdue)).days)


def derive_status(
    current_status: str,
    harmonized_outstanding: Decimal,
    paid: Decimal,
    arrears_days: int,
    arrears_threshold_days: int = DEFAULT_ARREARS_THRESHOLD_DAYS,
) -> str:
    """First matching rule wins; the result goes through the legacy mapping."""
    if harmonized_outstanding <= 0 and paid > 0:
        status = LoanStatus.CLOSED.value
    elif arrears_days > arrears_threshold_days:
        status = LoanStatus.IN_ARREARS.value
    elif arrears_days > 0:
        status = LoanStatus.OVERDUE.value
    elif current_status in _UNDISBURSED_STATUSES:
        status = LoanStatus.PENDING_DISBURSEMENT.value
    else:
        status = current_status
    return map_status(status)


def next_installment(
    schedules: Sequence[ScheduleRecord], as_of: date
) -> ScheduleRecord | None:
    """First unpaid installment due today or later, in installment order."""
    for s in sorted(schedules, key=lambda s: s.installment_number):
        if not s.is_paid and s.due_date >= as_of:
            return s
    return None


def reconcile_loan(
    loan: LoanRecord,
    schedules: Sequence[ScheduleRecord],
    payments: Sequence[PaymentRecord],
    *,
    as_of: date,
    tolerance: Decimal = DEFAULT_TOLERANCE,
    arrears_threshold_days: int = DEFAULT_ARREARS_THRESHOLD_DAYS,
) -> ReconciliationResult:
    """Compute every harmonized figure for one loan."""
    tolerance = Decimal(str(tolerance))
    harmonized = harmonize_outstanding_balance(loan, schedules, payments, tolerance)
    arrears = days_in_arrears(schedules, as_of)
    paid = total_paid(payments)
    upcoming = next_installment(schedules, as_of)

    return ReconciliationResult(
        loan_id=loan.id,
        loan_number=loan.loan_number,
        old_status=loan.status,
        new_status=derive_status(
            loan.status, harmonized, paid, arrears, arrears_threshold_days
        ),
        old_outstanding=loan.outstanding_balance,
        harmonized_outstanding=harmonized,
        days_in_arrears=arrears,
        total_paid=paid,
        total_scheduled=sum((s.total_amount for s in schedules), ZERO),
        last_payment_date=max((p.payment_date for p in payments), default=None),
        next_payment_date=upcoming.due_date if upcoming else None,
        next_repayment_amount=upcoming.total_amount if upcoming else None,
        schedule_consistent=len(schedules) > 0,
        schedules_count=len(schedules),
        payments_count=len(payments),
    )
