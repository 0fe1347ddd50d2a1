"""Journal backfill for historical loans.

Creates the disbursement entry and one entry per repayment for loans that
were booked before accounting integration existed.  Accounts come from the
loan product's mapping:

==============  =========================  ==========================
Event           Debit                      Credit
==============  =========================  ==========================
Disbursement    loan portfolio             fund source
Principal       fund source (1)            loan portfolio
Interest        fund source (1)            interest income
Fee             fund source (1)            fee income
==============  =========================  ==========================

(1) falls back to the loan portfolio account when no fund source is mapped.

Each step checks for an existing entry first, so re-running is safe.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from harmonizer.models.gl import JournalReferenceType
from harmonizer.schemas import LoanRecord, PaymentRecord, ProductAccounts
from harmonizer.services.gl.journal_engine import (
    create_journal_entry,
    find_entry,
    _validate_accounts,
    _validate_balance,
)

logger = logging.getLogger(__name__)

UNDISBURSED_STATUSES = frozenset({"pending", "approved", "pending_disbursement"})


@dataclass
class BackfillResult:
    entries_created: int = 0
    payment_entries_skipped: int = 0
    previews: list[dict[str, Any]] = field(default_factory=list)


def _pair(
    debit_account: str | None,
    credit_account: str | None,
    amount: Decimal,
    description: str,
) -> list[dict[str, Any]]:
    return [
        {"account_id": debit_account, "debit_amount": amount,
         "credit_amount": Decimal("0"), "description": description},
        {"account_id": credit_account, "debit_amount": Decimal("0"),
         "credit_amount": amount, "description": description},
    ]


def build_disbursement_lines(
    loan: LoanRecord, accounts: ProductAccounts
) -> list[dict[str, Any]]:
    return _pair(
        accounts.loan_portfolio_account_id,
        accounts.fund_source_account_id,
        loan.principal_amount,
        f"Loan disbursement - {loan.loan_number}",
    )


def build_payment_lines(
    loan: LoanRecord, payment: PaymentRecord, accounts: ProductAccounts
) -> list[dict[str, Any]]:
    """Allocate a payment's breakdown into balanced debit/credit pairs.

    Components with a zero amount, or whose income account is not mapped,
    produce no lines.
    """
    cash_account = accounts.fund_source_account_id or accounts.loan_portfolio_account_id
    lines: list[dict[str, Any]] = []

    if payment.principal_amount > 0:
        lines += _pair(
            cash_account, accounts.loan_portfolio_account_id,
            payment.principal_amount, f"Principal payment - {loan.loan_number}",
        )
    if payment.interest_amount > 0 and accounts.interest_income_account_id:
        lines += _pair(
            cash_account, accounts.interest_income_account_id,
            payment.interest_amount, f"Interest payment - {loan.loan_number}",
        )
    if payment.fee_amount > 0 and accounts.fee_income_account_id:
        lines += _pair(
            cash_account, accounts.fee_income_account_id,
            payment.fee_amount, f"Fee payment - {loan.loan_number}",
        )
    return lines


async def _preview(
    db: AsyncSession,
    reference_type: str,
    reference_id: str,
    description: str,
    lines: list[dict],
) -> dict:
    """Validate *lines* as a real entry would be, without writing anything."""
    total_dr, total_cr = _validate_balance(lines)
    await _validate_accounts(db, [ln.get("account_id") for ln in lines])
    return {
        "reference_type": reference_type,
        "reference_id": reference_id,
        "description": description,
        "lines": [
            {**ln, "debit_amount": float(ln["debit_amount"]),
             "credit_amount": float(ln["credit_amount"])}
            for ln in lines
        ],
        "total_debit": float(total_dr),
        "total_credit": float(total_cr),
    }


async def backfill_disbursement(
    db: AsyncSession,
    loan: LoanRecord,
    accounts: ProductAccounts,
    result: BackfillResult,
    *,
    dry_run: bool = False,
) -> None:
    if loan.status in UNDISBURSED_STATUSES or loan.principal_amount <= 0:
        return
    ref_type = JournalReferenceType.LOAN_DISBURSEMENT.value
    if await find_entry(db, ref_type, loan.id) is not None:
        return

    lines = build_disbursement_lines(loan, accounts)
    description = f"Loan disbursement - {loan.loan_number}"
    if dry_run:
        result.previews.append(await _preview(db, ref_type, loan.id, description, lines))
        logger.info("DRY RUN: would create disbursement entry for loan %s", loan.loan_number)
        return

    await create_journal_entry(
        db,
        tenant_id=loan.tenant_id,
        lines=lines,
        reference_type=ref_type,
        reference_id=loan.id,
        description=description,
        transaction_date=loan.disbursement_date
        or (loan.created_at.date() if loan.created_at else None),
        office_id=loan.office_id,
    )
    result.entries_created += 1


async def backfill_payment(
    db: AsyncSession,
    loan: LoanRecord,
    payment: PaymentRecord,
    accounts: ProductAccounts,
    result: BackfillResult,
    *,
    dry_run: bool = False,
) -> None:
    ref_type = JournalReferenceType.LOAN_PAYMENT.value
    if await find_entry(db, ref_type, payment.id) is not None:
        return

    lines = build_payment_lines(loan, payment, accounts)
    if not lines:
        logger.warning(
            "Payment %s on loan %s has no allocatable components; no entry created",
            payment.id, loan.loan_number,
        )
        result.payment_entries_skipped += 1
        return

    description = f"Loan payment - {loan.loan_number} - {payment.id}"
    if dry_run:
        result.previews.append(await _preview(db, ref_type, payment.id, description, lines))
        logger.info(
            "DRY RUN: would create payment entry for %s on loan %s",
            payment.id, loan.loan_number,
        )
        return

    await create_journal_entry(
        db,
        tenant_id=loan.tenant_id,
        lines=lines,
        reference_type=ref_type,
        reference_id=payment.id,
        description=description,
        transaction_date=payment.payment_date,
        office_id=loan.office_id,
    )
    result.entries_created += 1


async def backfill_loan_journals(
    db: AsyncSession,
    loan: LoanRecord,
    payments: Sequence[PaymentRecord],
    accounts: ProductAccounts,
    *,
    dry_run: bool = False,
) -> BackfillResult:
    """Ensure *loan* has its disbursement entry and one entry per payment."""
    result = BackfillResult()
    if not accounts.accounting_enabled:
        logger.debug("Loan %s: product accounting disabled, skipping", loan.loan_number)
        return result

    await backfill_disbursement(db, loan, accounts, result, dry_run=dry_run)
    for payment in payments:
        await backfill_payment(db, loan, payment, accounts, result, dry_run=dry_run)
    return result
