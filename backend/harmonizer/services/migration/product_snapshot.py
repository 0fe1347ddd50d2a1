"""Immutable loan-product snapshot stored on each harmonized loan."""

from decimal import Decimal
from typing import Any

from harmonizer.models.loan import LoanProduct

DEFAULT_INTEREST_PARAMS = {
    "days_in_year_type": "365",
    "days_in_month_type": "actual",
    "amortization_type": "equal_installments",
    "interest_calculation_method": "declining_balance",
    "interest_calculation_period": "same_as_repayment_period",
    "grace_period_type": "none",
}


def _num(value: Decimal | int | None, default: float) -> float:
    # Zero is treated as "not configured", same as null
    return float(value) if value else default


def build_product_snapshot(product: LoanProduct, currency_code: str = "KES") -> dict[str, Any]:
    """Return the product's terms as a JSON-ready dict, filling defaults."""
    return {
        "id": product.id,
        "name": product.name,
        "short_name": product.short_name,
        "currency_code": product.currency_code or currency_code,
        "min_principal": _num(product.min_principal, 0),
        "max_principal": _num(product.max_principal, 999999999),
        "default_principal": (
            float(product.default_principal) if product.default_principal is not None else None
        ),
        "min_interest_rate": _num(product.min_interest_rate, 0),
        "max_interest_rate": _num(product.max_interest_rate, 100),
        "default_interest_rate": _num(product.default_interest_rate, 15),
        "min_term": product.min_term or 1,
        "max_term": product.max_term or 60,
        "default_term": product.default_term or 12,
        "repayment_frequency": product.repayment_frequency or "monthly",
        "grace_period_days": product.grace_period_days or 0,
        **{
            key: getattr(product, key) or default
            for key, default in DEFAULT_INTEREST_PARAMS.items()
        },
        "allow_partial_payments": product.allow_partial_payments is not False,
        "require_guarantor": bool(product.require_guarantor),
        "require_collateral": bool(product.require_collateral),
        "auto_calculate_repayment": product.auto_calculate_repayment is not False,
        "created_at": product.created_at.isoformat() if product.created_at else None,
        "updated_at": product.updated_at.isoformat() if product.updated_at else None,
    }
