"""Core double-entry journal engine.

All backfilled accounting flows through this engine.  The fundamental
invariant is: **total debits == total credits** for every journal entry,
enforced at two layers:

1. Database CHECK constraint on line amounts
2. Application-level validation before persist

Entries are keyed by ``(reference_type, reference_id)``; the table carries a
unique constraint on that pair, and callers look it up before inserting.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select, func as sa_func
from sqlalchemy.ext.asyncio import AsyncSession

from harmonizer.models.gl import (
    ChartOfAccount,
    JournalEntry,
    JournalEntryLine,
    JournalEntryStatus,
)

logger = logging.getLogger(__name__)


class JournalEngineError(Exception):
    """Base exception for journal engine errors."""


class BalanceError(JournalEngineError):
    """Debits do not equal credits."""


class AccountMappingError(JournalEngineError):
    """A line references a missing or inactive account."""


# ---------------------------------------------------------------------------
# Entry-number generation
# ---------------------------------------------------------------------------

async def _next_entry_number(db: AsyncSession) -> str:
    """Generate the next sequential entry number: JE-YYYY-NNNNNN.

    Only numbers in exactly that shape count towards the sequence; entries
    written by the legacy system (``JE-YYYY-<epoch ms>[-<suffix>]``) are
    ignored.
    """
    year = datetime.now(timezone.utc).year
    prefix = f"JE-{year}-"

    result = await db.execute(
        select(sa_func.max(JournalEntry.entry_number))
        .where(JournalEntry.entry_number.regexp_match(f"^{prefix}[0-9]{{6}}$"))
    )
    last = result.scalar_one_or_none()

    if last:
        seq = int(last[len(prefix):]) + 1
    else:
        seq = 1

    return f"{prefix}{seq:06d}"


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _validate_balance(lines: list[dict]) -> tuple[Decimal, Decimal]:
    """Ensure total debits == total credits.  Returns (total_dr, total_cr)."""
    total_dr = sum(Decimal(str(ln.get("debit_amount", 0))) for ln in lines)
    total_cr = sum(Decimal(str(ln.get("credit_amount", 0))) for ln in lines)
    if total_dr != total_cr:
        raise BalanceError(
            f"Entry is not balanced: debits={total_dr}, credits={total_cr}"
        )
    if total_dr == 0:
        raise BalanceError("Entry has zero total; at least one non-zero line required")
    return total_dr, total_cr


async def _validate_accounts(db: AsyncSession, account_ids: list[str | None]) -> None:
    """Check all accounts are set, exist and are active."""
    if any(not aid for aid in account_ids):
        raise AccountMappingError("Journal line has no account mapped")

    result = await db.execute(
        select(ChartOfAccount).where(ChartOfAccount.id.in_(list(set(account_ids))))
    )
    accounts = {a.id: a for a in result.scalars().all()}
    for aid in account_ids:
        acct = accounts.get(aid)
        if acct is None:
            raise AccountMappingError(f"Account {aid} not found")
        if not acct.is_active:
            raise AccountMappingError(
                f"Account {acct.account_code} ({acct.account_name}) is inactive"
            )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def find_entry(
    db: AsyncSession, reference_type: str, reference_id: str
) -> JournalEntry | None:
    """Look up the entry recorded for a business event, if any."""
    result = await db.execute(
        select(JournalEntry).where(
            JournalEntry.reference_type == reference_type,
            JournalEntry.reference_id == reference_id,
        )
    )
    return result.scalar_one_or_none()


async def create_journal_entry(
    db: AsyncSession,
    *,
    tenant_id: str,
    lines: list[dict[str, Any]],
    reference_type: str,
    reference_id: str,
    description: str,
    transaction_date: date | None = None,
    office_id: str | None = None,
) -> JournalEntry:
    """Create a posted journal entry.

    Parameters
    ----------
    lines : list of dicts
        Each dict must have ``account_id``, ``debit_amount``, ``credit_amount``,
        and optionally ``description``.
    """
    if not lines or len(lines) < 2:
        raise JournalEngineError("A journal entry requires at least two lines")

    # 1. Balance validation
    total_dr, _ = _validate_balance(lines)

    # 2. Account validation
    await _validate_accounts(db, [ln.get("account_id") for ln in lines])

    # 3. Build entry
    entry = JournalEntry(
        tenant_id=tenant_id,
        entry_number=await _next_entry_number(db),
        transaction_date=transaction_date or date.today(),
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        status=JournalEntryStatus.POSTED.value,
        total_amount=total_dr,
        office_id=office_id,
    )
    db.add(entry)
    await db.flush()

    # 4. Build lines
    for idx, ln in enumerate(lines, start=1):
        db.add(JournalEntryLine(
            tenant_id=tenant_id,
            journal_entry_id=entry.id,
            line_number=idx,
            account_id=ln["account_id"],
            description=ln.get("description"),
            debit_amount=Decimal(str(ln.get("debit_amount", 0))),
            credit_amount=Decimal(str(ln.get("credit_amount", 0))),
        ))

    await db.flush()
    logger.info(
        "Created journal entry %s (%s %s, total=%s)",
        entry.entry_number, reference_type, reference_id, total_dr,
    )
    return entry
