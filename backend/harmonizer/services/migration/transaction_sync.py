"""Ensure every loan payment has a matching row in ``transactions``."""

import logging
import time
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from harmonizer.models.payment import PaymentType, Transaction, TransactionType
from harmonizer.schemas import LoanRecord, PaymentRecord

logger = logging.getLogger(__name__)

_KNOWN_PAYMENT_TYPES = {t.value for t in PaymentType}


def payment_type_for(method: str | None) -> str:
    """Map a free-text payment method onto the transaction payment types."""
    if method in _KNOWN_PAYMENT_TYPES:
        return method
    return PaymentType.CASH.value


def transaction_reference(payment_id: str) -> str:
    return f"TXN-{int(time.time() * 1000)}-{payment_id[-8:]}"


async def sync_transaction_records(
    db: AsyncSession,
    loan: LoanRecord,
    payments: Sequence[PaymentRecord],
    *,
    dry_run: bool = False,
) -> int:
    """Insert missing repayment transactions; returns how many were (or would be) created."""
    if not payments:
        return 0

    result = await db.execute(
        select(Transaction.external_transaction_id).where(
            Transaction.loan_id == loan.id,
            Transaction.external_transaction_id.in_([p.id for p in payments]),
        )
    )
    existing = set(result.scalars().all())

    created = 0
    for payment in payments:
        if payment.id in existing:
            continue
        created += 1
        if dry_run:
            logger.info(
                "DRY RUN: would record transaction for payment %s on loan %s",
                payment.id, loan.loan_number,
            )
            continue
        db.add(Transaction(
            tenant_id=loan.tenant_id,
            client_id=loan.client_id,
            loan_id=loan.id,
            amount=payment.payment_amount,
            transaction_type=TransactionType.LOAN_REPAYMENT.value,
            payment_type=payment_type_for(payment.payment_method),
            payment_status="completed",
            transaction_date=payment.payment_date,
            transaction_id=transaction_reference(payment.id),
            external_transaction_id=payment.id,
            description=f"Loan payment for {loan.loan_number}",
            reconciliation_status="reconciled",
        ))

    if created and not dry_run:
        await db.flush()
        logger.info("Recorded %d transaction(s) for loan %s", created, loan.loan_number)
    return created
