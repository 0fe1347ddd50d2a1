"""Legacy → unified loan status mapping."""

import logging

from harmonizer.models.loan import LoanStatus

logger = logging.getLogger(__name__)

LOAN_STATUS_MAPPING: dict[str, str] = {
    "pending": LoanStatus.PENDING_DISBURSEMENT.value,
    "approved": LoanStatus.PENDING_DISBURSEMENT.value,
    "pending_disbursement": LoanStatus.PENDING_DISBURSEMENT.value,
    "disbursed": LoanStatus.ACTIVE.value,
    "active": LoanStatus.ACTIVE.value,
    "overdue": LoanStatus.OVERDUE.value,
    "in_arrears": LoanStatus.IN_ARREARS.value,
    "closed": LoanStatus.CLOSED.value,
    "written_off": LoanStatus.WRITTEN_OFF.value,
    "defaulted": LoanStatus.DEFAULTED.value,
}


def is_mapped(status: str | None) -> bool:
    return status in LOAN_STATUS_MAPPING


def map_status(status: str) -> str:
    """Translate a legacy status; unknown values pass through unchanged."""
    mapped = LOAN_STATUS_MAPPING.get(status)
    if mapped is None:
        logger.warning("Unmapped loan status %r passed through unchanged", status)
        return status
    return mapped
