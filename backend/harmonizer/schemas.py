"""Pydantic schemas: typed loan records for reconciliation and API payloads."""

import math
from datetime import datetime, date
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Optional
from pydantic import BaseModel, BeforeValidator, Field

ZERO = Decimal("0")


def coerce_money(value: Any) -> Decimal:
    """Coerce a stored money figure: missing, null, NaN or negative becomes 0."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return ZERO
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO
    if not amount.is_finite() or amount < 0:
        return ZERO
    return amount


def _optional_money(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return coerce_money(value)


Money = Annotated[Decimal, BeforeValidator(coerce_money)]
OptionalMoney = Annotated[Optional[Decimal], BeforeValidator(_optional_money)]


# ── Reconciliation records ───────────────────────────

class LoanRecord(BaseModel):
    id: str
    loan_number: str = ""
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    office_id: Optional[str] = None
    status: str = "pending"
    principal_amount: Money = ZERO
    outstanding_balance: Money = ZERO
    interest_rate: Optional[Decimal] = None
    disbursement_date: Optional[date] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ScheduleRecord(BaseModel):
    id: Optional[str] = None
    installment_number: int
    due_date: date
    total_amount: Money = ZERO
    paid_amount: Money = ZERO
    # None or 0 means "not recorded"; it is derived as total - paid
    outstanding_amount: OptionalMoney = None
    payment_status: str = "unpaid"

    model_config = {"from_attributes": True}

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"

    @property
    def effective_outstanding(self) -> Decimal:
        if self.outstanding_amount:
            return self.outstanding_amount
        return self.total_amount - self.paid_amount


class PaymentRecord(BaseModel):
    id: str
    payment_amount: Money = ZERO
    payment_date: date
    payment_method: Optional[str] = None
    principal_amount: Money = ZERO
    interest_amount: Money = ZERO
    fee_amount: Money = ZERO
    penalty_amount: Money = ZERO

    model_config = {"from_attributes": True}


class ProductAccounts(BaseModel):
    """Accounting configuration of a loan product."""

    accounting_type: Optional[str] = None
    loan_portfolio_account_id: Optional[str] = None
    fund_source_account_id: Optional[str] = None
    interest_income_account_id: Optional[str] = None
    fee_income_account_id: Optional[str] = None

    model_config = {"from_attributes": True}

    @property
    def accounting_enabled(self) -> bool:
        return bool(self.accounting_type) and self.accounting_type != "none"


# ── Migration API ────────────────────────────────────

class MigrationRunRequest(BaseModel):
    dry_run: bool = True
    tenant_id: Optional[str] = None
    batch_size: Optional[int] = Field(None, ge=1, le=500)


class MigrationRunResponse(BaseModel):
    timestamp: datetime
    config: dict[str, Any]
    results: dict[str, Any]
    summary: dict[str, Any]


class ValidationResponse(BaseModel):
    is_valid: bool
    missing_columns: list[str] = []
    loan_count: Optional[int] = None
    error: Optional[str] = None


class VerificationResponse(BaseModel):
    is_valid: bool
    issues: list[str]
    metrics: dict[str, Any]
