"""Loan, loan product and client models."""

import enum
import uuid
from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import (
    String, Numeric, Integer, DateTime, Date, ForeignKey, Text, Boolean, JSON, Uuid, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from harmonizer.database import Base


class LoanStatus(str, enum.Enum):
    """Unified loan status vocabulary."""

    PENDING_DISBURSEMENT = "pending_disbursement"
    ACTIVE = "active"
    OVERDUE = "overdue"
    IN_ARREARS = "in_arrears"
    CLOSED = "closed"
    WRITTEN_OFF = "written_off"
    DEFAULTED = "defaulted"


class MigrationStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class AccountingType(str, enum.Enum):
    NONE = "none"
    CASH = "cash"
    ACCRUAL_PERIODIC = "accrual_periodic"
    ACCRUAL_UPFRONT = "accrual_upfront"


def _uuid() -> str:
    return str(uuid.uuid4())


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False, index=True)
    office_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    loans = relationship("Loan", back_populates="client")


class LoanProduct(Base):
    __tablename__ = "loan_products"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    short_name: Mapped[str | None] = mapped_column(String(20), nullable=True)
    currency_code: Mapped[str | None] = mapped_column(String(3), nullable=True)

    # Terms
    min_principal: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    max_principal: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    default_principal: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    min_interest_rate: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)
    max_interest_rate: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)
    default_interest_rate: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)
    min_term: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_term: Mapped[int | None] = mapped_column(Integer, nullable=True)
    default_term: Mapped[int | None] = mapped_column(Integer, nullable=True)
    repayment_frequency: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Interest calculation
    days_in_year_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    days_in_month_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    amortization_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    interest_calculation_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    interest_calculation_period: Mapped[str | None] = mapped_column(String(40), nullable=True)
    grace_period_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    grace_period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Features
    allow_partial_payments: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    require_guarantor: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    require_collateral: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    auto_calculate_repayment: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    # Accounting
    accounting_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    loan_portfolio_account_id: Mapped[str | None] = mapped_column(
        ForeignKey("chart_of_accounts.id"), nullable=True
    )
    fund_source_account_id: Mapped[str | None] = mapped_column(
        ForeignKey("chart_of_accounts.id"), nullable=True
    )
    interest_income_account_id: Mapped[str | None] = mapped_column(
        ForeignKey("chart_of_accounts.id"), nullable=True
    )
    fee_income_account_id: Mapped[str | None] = mapped_column(
        ForeignKey("chart_of_accounts.id"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    loans = relationship("Loan", back_populates="loan_product")


class Loan(Base):
    __tablename__ = "loans"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False, index=True)
    loan_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    client_id: Mapped[str] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    loan_product_id: Mapped[str | None] = mapped_column(
        ForeignKey("loan_products.id"), nullable=True, index=True
    )

    # Loan details
    principal_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    interest_rate: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)
    outstanding_balance: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    # Free text: legacy rows carry statuses outside LoanStatus
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    disbursement_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Harmonized figures
    calculated_outstanding_balance: Mapped[Decimal | None] = mapped_column(
        Numeric(15, 2), nullable=True
    )
    corrected_interest_rate: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)
    days_in_arrears: Mapped[int | None] = mapped_column(Integer, nullable=True)
    schedule_consistent: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    total_scheduled_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    total_paid_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    last_payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_repayment_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    loan_product_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    grace_period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    grace_period_type: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Migration tracking
    migration_status: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    migration_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    migration_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    harmonized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    client = relationship("Client", back_populates="loans")
    loan_product = relationship("LoanProduct", back_populates="loans")
    schedules = relationship(
        "LoanSchedule",
        back_populates="loan",
        order_by="LoanSchedule.installment_number",
    )
    payments = relationship(
        "LoanPayment",
        back_populates="loan",
        order_by="LoanPayment.payment_date",
    )
