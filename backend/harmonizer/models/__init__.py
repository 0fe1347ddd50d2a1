"""SQLAlchemy models for the core-banking tables touched by loan harmonization."""

from harmonizer.models.loan import (
    Client,
    Loan,
    LoanProduct,
    LoanStatus,
    MigrationStatus,
    AccountingType,
)
from harmonizer.models.payment import (
    LoanSchedule,
    LoanPayment,
    Transaction,
    SchedulePaymentStatus,
    TransactionType,
    PaymentType,
)
from harmonizer.models.gl import (
    ChartOfAccount,
    JournalEntry,
    JournalEntryLine,
    JournalEntryStatus,
    JournalReferenceType,
)

__all__ = [
    "Client",
    "Loan",
    "LoanProduct",
    "LoanStatus",
    "MigrationStatus",
    "AccountingType",
    "LoanSchedule",
    "LoanPayment",
    "Transaction",
    "SchedulePaymentStatus",
    "TransactionType",
    "PaymentType",
    # General Ledger
    "ChartOfAccount",
    "JournalEntry",
    "JournalEntryLine",
    "JournalEntryStatus",
    "JournalReferenceType",
]
