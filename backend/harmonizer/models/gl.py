"""General Ledger models.

Double-entry bookkeeping tables shared with the core-banking application:
- Tenant-scoped chart of accounts
- Posted journal entries, each keyed by the business event that produced it
- Journal entry lines holding the debit or credit side
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    String,
    Numeric,
    Integer,
    Boolean,
    DateTime,
    Date,
    ForeignKey,
    Text,
    Index,
    CheckConstraint,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from harmonizer.database import Base


# ===================================================================
# Enumerations
# ===================================================================


class JournalEntryStatus(str, enum.Enum):
    DRAFT = "draft"
    POSTED = "posted"
    REVERSED = "reversed"


class JournalReferenceType(str, enum.Enum):
    LOAN_DISBURSEMENT = "loan_disbursement"
    LOAN_PAYMENT = "loan_payment"
    MANUAL = "manual"


def _uuid() -> str:
    return str(uuid.uuid4())


# ===================================================================
# Models
# ===================================================================


class ChartOfAccount(Base):
    """Chart of Accounts entry for one tenant."""

    __tablename__ = "chart_of_accounts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "account_code", name="uq_coa_tenant_code"),
    )

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False, index=True)
    account_code: Mapped[str] = mapped_column(String(30), nullable=False)
    account_name: Mapped[str] = mapped_column(String(200), nullable=False)
    account_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    journal_lines = relationship("JournalEntryLine", back_populates="account")


class JournalEntry(Base):
    """Posted double-entry journal entry header.

    ``(reference_type, reference_id)`` identifies the business event, so a
    loan can hold at most one disbursement entry and a payment at most one
    payment entry.
    """

    __tablename__ = "journal_entries"
    __table_args__ = (
        UniqueConstraint("reference_type", "reference_id", name="uq_je_reference"),
        Index("ix_je_entry_number", "entry_number"),
        Index("ix_je_transaction_date", "transaction_date"),
    )

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False, index=True)
    entry_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference_type: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(60), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=JournalEntryStatus.POSTED.value, nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    office_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    lines = relationship(
        "JournalEntryLine",
        back_populates="journal_entry",
        cascade="all, delete-orphan",
        order_by="JournalEntryLine.line_number",
    )

    @property
    def total_debits(self) -> Decimal:
        return sum((ln.debit_amount or Decimal("0")) for ln in self.lines)

    @property
    def total_credits(self) -> Decimal:
        return sum((ln.credit_amount or Decimal("0")) for ln in self.lines)

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


class JournalEntryLine(Base):
    """Individual debit or credit line within a journal entry."""

    __tablename__ = "journal_entry_lines"
    __table_args__ = (
        CheckConstraint(
            "(debit_amount = 0 AND credit_amount > 0) OR "
            "(debit_amount > 0 AND credit_amount = 0)",
            name="ck_jel_debit_or_credit",
        ),
        Index("ix_jel_account", "account_id"),
        Index("ix_jel_entry", "journal_entry_id"),
    )

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False)
    journal_entry_id: Mapped[str] = mapped_column(
        ForeignKey("journal_entries.id", ondelete="CASCADE"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[str] = mapped_column(
        ForeignKey("chart_of_accounts.id"), nullable=False
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    debit_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False
    )
    credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False
    )

    journal_entry = relationship("JournalEntry", back_populates="lines")
    account = relationship("ChartOfAccount", back_populates="journal_lines")
