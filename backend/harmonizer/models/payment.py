"""Loan schedule, payment and transaction models."""

import enum
import uuid
from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import (
    String, Numeric, Integer, DateTime, Date, ForeignKey, Text, Uuid, UniqueConstraint, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from harmonizer.database import Base


class SchedulePaymentStatus(str, enum.Enum):
    PAID = "paid"
    PARTIAL = "partial"
    UNPAID = "unpaid"


class TransactionType(str, enum.Enum):
    LOAN_REPAYMENT = "loan_repayment"
    LOAN_DISBURSEMENT = "loan_disbursement"


class PaymentType(str, enum.Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    MPESA = "mpesa"


def _uuid() -> str:
    return str(uuid.uuid4())


class LoanSchedule(Base):
    __tablename__ = "loan_schedules"
    __table_args__ = (
        UniqueConstraint("loan_id", "installment_number", name="uq_loan_schedule_installment"),
    )

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    tenant_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True)
    loan_id: Mapped[str] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    principal_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    interest_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    fee_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    paid_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), default=0, nullable=True)
    outstanding_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    payment_status: Mapped[str] = mapped_column(
        String(10), default=SchedulePaymentStatus.UNPAID.value, nullable=False
    )

    loan = relationship("Loan", back_populates="schedules")


class LoanPayment(Base):
    """Append-only repayment record."""

    __tablename__ = "loan_payments"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    tenant_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True)
    loan_id: Mapped[str] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    payment_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    principal_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    interest_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    fee_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    penalty_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    loan = relationship("Loan", back_populates="payments")


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("loan_id", "external_transaction_id", name="uq_transaction_loan_external"),
    )

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False)
    client_id: Mapped[str | None] = mapped_column(ForeignKey("clients.id"), nullable=True)
    loan_id: Mapped[str | None] = mapped_column(ForeignKey("loans.id"), nullable=True, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    payment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(60), nullable=False)
    external_transaction_id: Mapped[str | None] = mapped_column(String(60), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reconciliation_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
