"""Tests for the harmonization batch driver.

Tests cover:
- Work item construction from loan rows
- Per-loan pipeline (reconcile, schedules, journals, transactions, update)
- Batching, inter-batch delay and result aggregation
- Per-loan failure isolation and hard failures
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from sqlalchemy.exc import OperationalError

from harmonizer.config import MigrationConfig
from harmonizer.models.loan import Client, Loan, LoanProduct
from harmonizer.models.payment import LoanPayment, LoanSchedule
from harmonizer.services.gl.journal_backfill import BackfillResult
from harmonizer.services.migration.batch_driver import (
    LoanOutcome,
    MigrationError,
    build_loan_update,
    build_work_item,
    migrate_loan,
    run_migration,
)
from harmonizer.services.migration.reconciler import ReconciliationResult

MODULE = "harmonizer.services.migration.batch_driver"
AS_OF = date(2024, 6, 30)
NOW = datetime(2024, 6, 30, 2, 30, tzinfo=timezone.utc)


def _product(**overrides) -> LoanProduct:
    values = dict(
        id="prod-1",
        tenant_id="t-1",
        name="Biashara",
        accounting_type="cash",
        loan_portfolio_account_id="acc-portfolio",
        fund_source_account_id="acc-fund",
        grace_period_days=7,
        grace_period_type="principal",
    )
    values.update(overrides)
    return LoanProduct(**values)


def _loan(number: str = "LN-1", with_product: bool = True, **overrides) -> Loan:
    values = dict(
        id=f"loan-{number}",
        tenant_id="t-1",
        loan_number=number,
        client_id="c-1",
        status="active",
        principal_amount=Decimal("10000"),
        interest_rate=Decimal("14.5"),
        outstanding_balance=Decimal("8000"),
        disbursement_date=date(2024, 1, 2),
    )
    values.update(overrides)
    loan = Loan(**values)
    loan.client = Client(id="c-1", tenant_id="t-1", office_id="office-1")
    loan.loan_product = _product() if with_product else None
    return loan


def _rec(old="active", new="active", payments=0) -> ReconciliationResult:
    return ReconciliationResult(
        loan_id="loan-1",
        loan_number="LN-1",
        old_status=old,
        new_status=new,
        old_outstanding=Decimal("8000"),
        harmonized_outstanding=Decimal("7000"),
        days_in_arrears=0,
        total_paid=Decimal("3000"),
        total_scheduled=Decimal("0"),
        last_payment_date=None,
        next_payment_date=None,
        next_repayment_amount=None,
        schedule_consistent=False,
        schedules_count=0,
        payments_count=payments,
    )


def _factory(db):
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = db
    return factory


def _config(**overrides) -> MigrationConfig:
    values = dict(batch_size=2, batch_delay_seconds=0.5)
    values.update(overrides)
    return MigrationConfig(**values)


# ===================================================================
# Work items and loan updates (pure)
# ===================================================================


class TestWorkItem:

    def test_reads_loan_product_and_office(self):
        item = build_work_item(_loan())
        assert item.record.loan_number == "LN-1"
        assert item.record.office_id == "office-1"
        assert item.record.principal_amount == Decimal("10000")
        assert item.accounts.loan_portfolio_account_id == "acc-portfolio"
        assert item.accounts.accounting_enabled
        assert item.product_snapshot["name"] == "Biashara"
        assert item.grace_period_days == 7
        assert item.grace_period_type == "principal"

    def test_loan_without_product(self):
        item = build_work_item(_loan(with_product=False))
        assert item.accounts is None
        assert item.product_snapshot is None
        assert item.grace_period_type == "none"

    def test_null_money_columns_coerced(self):
        item = build_work_item(_loan(outstanding_balance=None))
        assert item.record.outstanding_balance == Decimal("0")

    def test_loan_update_values(self):
        item = build_work_item(_loan())
        values = build_loan_update(item, _rec(new="closed"), NOW)
        assert values["status"] == "closed"
        assert values["outstanding_balance"] == Decimal("7000")
        assert values["calculated_outstanding_balance"] == Decimal("7000")
        assert values["corrected_interest_rate"] == Decimal("14.5")
        assert values["migration_status"] == "completed"
        assert values["harmonized_at"] == NOW
        assert values["migration_date"] == NOW
        assert values["loan_product_snapshot"]["id"] == "prod-1"


# ===================================================================
# Per-loan pipeline (mock DB)
# ===================================================================


class TestMigrateLoan:

    def _schedules(self):
        return [LoanSchedule(
            id="s-1", loan_id="loan-LN-1", installment_number=1,
            due_date=date(2024, 2, 1), total_amount=Decimal("3000"),
            paid_amount=Decimal("0"), payment_status="unpaid",
        )]

    def _payments(self):
        return [LoanPayment(
            id="pay-1", loan_id="loan-LN-1", payment_amount=Decimal("3000"),
            payment_date=date(2024, 2, 1), principal_amount=Decimal("3000"),
        )]

    @pytest.mark.asyncio
    async def test_full_pipeline_writes_loan(self):
        db = AsyncMock()
        item = build_work_item(_loan())
        with patch(f"{MODULE}.fetch_schedules", return_value=self._schedules()), \
             patch(f"{MODULE}.fetch_payments", return_value=self._payments()), \
             patch(f"{MODULE}.sync_loan_schedules", return_value=1) as mock_sync, \
             patch(f"{MODULE}.backfill_loan_journals",
                   return_value=BackfillResult(entries_created=2)), \
             patch(f"{MODULE}.sync_transaction_records", return_value=1):
            outcome = await migrate_loan(db, item, _config(), as_of=AS_OF, now=NOW)

        rec = outcome.reconciliation
        assert rec.total_paid == Decimal("3000")
        assert rec.harmonized_outstanding == Decimal("7000")
        assert outcome.schedules_synced == 1
        assert outcome.journal_entries_created == 2
        assert outcome.transactions_created == 1
        assert mock_sync.await_args.args[2] == Decimal("3000")
        db.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_arrears_read_after_payments_applied(self):
        db = AsyncMock()
        item = build_work_item(_loan(
            principal_amount=Decimal("1000"), outstanding_balance=Decimal("1000"),
        ))
        schedules = [
            LoanSchedule(
                id="s-1", loan_id="loan-LN-1", installment_number=1,
                due_date=date(2024, 5, 1), total_amount=Decimal("500"),
                paid_amount=Decimal("0"), payment_status="unpaid",
            ),
            LoanSchedule(
                id="s-2", loan_id="loan-LN-1", installment_number=2,
                due_date=date(2024, 8, 1), total_amount=Decimal("500"),
                paid_amount=Decimal("0"), payment_status="unpaid",
            ),
        ]
        payments = [LoanPayment(
            id="pay-1", loan_id="loan-LN-1", payment_amount=Decimal("500"),
            payment_date=date(2024, 5, 1), principal_amount=Decimal("500"),
        )]
        with patch(f"{MODULE}.fetch_schedules", return_value=schedules), \
             patch(f"{MODULE}.fetch_payments", return_value=payments), \
             patch(f"{MODULE}.backfill_loan_journals", return_value=BackfillResult()), \
             patch(f"{MODULE}.sync_transaction_records", return_value=0):
            outcome = await migrate_loan(db, item, _config(), as_of=AS_OF, now=NOW)

        assert [s.payment_status for s in schedules] == ["paid", "unpaid"]
        rec = outcome.reconciliation
        assert rec.days_in_arrears == 0
        assert rec.new_status == "active"
        assert rec.harmonized_outstanding == Decimal("500")
        assert rec.next_payment_date == date(2024, 8, 1)
        assert rec.next_repayment_amount == Decimal("500")
        assert outcome.schedules_synced == 1

        update_stmt = db.execute.await_args.args[0]
        written = update_stmt.compile().params
        assert written["status"] == "active"
        assert written["days_in_arrears"] == 0

    @pytest.mark.asyncio
    async def test_partial_payment_keeps_installment_overdue(self):
        db = AsyncMock()
        item = build_work_item(_loan(
            principal_amount=Decimal("1000"), outstanding_balance=Decimal("1000"),
        ))
        schedules = [LoanSchedule(
            id="s-1", loan_id="loan-LN-1", installment_number=1,
            due_date=date(2024, 6, 20), total_amount=Decimal("1000"),
            paid_amount=Decimal("0"), payment_status="unpaid",
        )]
        payments = [LoanPayment(
            id="pay-1", loan_id="loan-LN-1", payment_amount=Decimal("400"),
            payment_date=date(2024, 6, 20), principal_amount=Decimal("400"),
        )]
        with patch(f"{MODULE}.fetch_schedules", return_value=schedules), \
             patch(f"{MODULE}.fetch_payments", return_value=payments), \
             patch(f"{MODULE}.backfill_loan_journals", return_value=BackfillResult()), \
             patch(f"{MODULE}.sync_transaction_records", return_value=0):
            outcome = await migrate_loan(db, item, _config(), as_of=AS_OF, now=NOW)

        rec = outcome.reconciliation
        assert schedules[0].payment_status == "partial"
        assert rec.days_in_arrears == 10
        assert rec.new_status == "overdue"
        assert rec.harmonized_outstanding == Decimal("600")

    @pytest.mark.asyncio
    async def test_nothing_paid_leaves_schedules(self):
        db = AsyncMock()
        item = build_work_item(_loan())
        with patch(f"{MODULE}.fetch_schedules", return_value=self._schedules()), \
             patch(f"{MODULE}.fetch_payments", return_value=[]), \
             patch(f"{MODULE}.sync_loan_schedules") as mock_sync, \
             patch(f"{MODULE}.backfill_loan_journals", return_value=BackfillResult()), \
             patch(f"{MODULE}.sync_transaction_records", return_value=0):
            outcome = await migrate_loan(db, item, _config(), as_of=AS_OF, now=NOW)

        mock_sync.assert_not_called()
        assert outcome.schedules_synced == 0

    @pytest.mark.asyncio
    async def test_dry_run_does_not_update_loan(self):
        db = AsyncMock()
        item = build_work_item(_loan())
        previews = BackfillResult(previews=[{"reference_id": "loan-LN-1"}])
        with patch(f"{MODULE}.fetch_schedules", return_value=[]), \
             patch(f"{MODULE}.fetch_payments", return_value=[]), \
             patch(f"{MODULE}.backfill_loan_journals", return_value=previews), \
             patch(f"{MODULE}.sync_transaction_records", return_value=0):
            outcome = await migrate_loan(
                db, item, _config(dry_run=True), as_of=AS_OF, now=NOW
            )

        db.execute.assert_not_awaited()
        assert outcome.journal_entries_created == 1

    @pytest.mark.asyncio
    async def test_missing_product_fails(self):
        db = AsyncMock()
        item = build_work_item(_loan(with_product=False))
        with pytest.raises(MigrationError, match="No loan product for loan LN-1"):
            await migrate_loan(db, item, _config(), as_of=AS_OF, now=NOW)


# ===================================================================
# Driver
# ===================================================================


class TestRunMigration:

    @pytest.mark.asyncio
    async def test_batches_with_delay_between(self):
        db = AsyncMock()
        sleep = AsyncMock()
        loans = [_loan("LN-1"), _loan("LN-2"), _loan("LN-3")]
        outcome = LoanOutcome(reconciliation=_rec(), journal_entries_created=1)
        with patch(f"{MODULE}.fetch_loans_for_migration", return_value=loans), \
             patch(f"{MODULE}.migrate_loan", return_value=outcome) as mock_migrate:
            results = await run_migration(_factory(db), _config(), as_of=AS_OF, sleep=sleep)

        assert mock_migrate.await_count == 3
        sleep.assert_awaited_once_with(0.5)
        assert results.total == 3
        assert results.successful == 3
        assert results.failed == 0
        assert results.journal_entries_created == 3
        assert db.commit.await_count == 3

    @pytest.mark.asyncio
    async def test_single_batch_never_sleeps(self):
        sleep = AsyncMock()
        outcome = LoanOutcome(reconciliation=_rec())
        with patch(f"{MODULE}.fetch_loans_for_migration", return_value=[_loan()]), \
             patch(f"{MODULE}.migrate_loan", return_value=outcome):
            await run_migration(_factory(AsyncMock()), _config(), as_of=AS_OF, sleep=sleep)
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_loan_is_rolled_back_and_run_continues(self):
        db = AsyncMock()
        ok = LoanOutcome(reconciliation=_rec())
        loans = [_loan("LN-1"), _loan("LN-2"), _loan("LN-3")]
        with patch(f"{MODULE}.fetch_loans_for_migration", return_value=loans), \
             patch(f"{MODULE}.migrate_loan",
                   side_effect=[ok, ValueError("bad schedule"), ok]):
            results = await run_migration(
                _factory(db), _config(batch_size=10), as_of=AS_OF, sleep=AsyncMock()
            )

        assert results.successful == 2
        assert results.failed == 1
        assert results.errors == ["Loan LN-2: bad schedule"]
        db.rollback.assert_awaited_once()
        assert db.commit.await_count == 2

    @pytest.mark.asyncio
    async def test_status_changes_and_unmapped_counted(self):
        outcomes = [
            LoanOutcome(reconciliation=_rec("active", "in_arrears", payments=2)),
            LoanOutcome(reconciliation=_rec("active", "in_arrears", payments=1)),
            LoanOutcome(reconciliation=_rec("frozen", "frozen")),
        ]
        loans = [_loan("LN-1"), _loan("LN-2"), _loan("LN-3")]
        with patch(f"{MODULE}.fetch_loans_for_migration", return_value=loans), \
             patch(f"{MODULE}.migrate_loan", side_effect=outcomes):
            results = await run_migration(
                _factory(AsyncMock()), _config(batch_size=10), as_of=AS_OF, sleep=AsyncMock()
            )

        data = results.to_dict()
        assert data["statusChanges"] == {"active -> in_arrears": 2}
        assert data["unmappedStatuses"] == {"frozen": 1}
        assert data["paymentsProcessed"] == 3

    @pytest.mark.asyncio
    async def test_dry_run_rolls_back_every_loan(self):
        db = AsyncMock()
        with patch(f"{MODULE}.fetch_loans_for_migration", return_value=[_loan()]), \
             patch(f"{MODULE}.migrate_loan", return_value=LoanOutcome(reconciliation=_rec())):
            await run_migration(
                _factory(db), _config(dry_run=True), as_of=AS_OF, sleep=AsyncMock()
            )
        db.commit.assert_not_awaited()
        db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_product_recorded_as_failure(self):
        db = AsyncMock()
        with patch(f"{MODULE}.fetch_loans_for_migration",
                   return_value=[_loan(with_product=False)]):
            results = await run_migration(_factory(db), _config(), as_of=AS_OF)

        assert results.failed == 1
        assert results.errors == ["Loan LN-1: No loan product for loan LN-1"]

    @pytest.mark.asyncio
    async def test_no_loans(self):
        with patch(f"{MODULE}.fetch_loans_for_migration", return_value=[]):
            results = await run_migration(_factory(AsyncMock()), _config(), as_of=AS_OF)
        assert results.to_dict()["total"] == 0

    @pytest.mark.asyncio
    async def test_unreadable_loans_abort_run(self):
        with patch(f"{MODULE}.fetch_loans_for_migration",
                   side_effect=OperationalError("SELECT", {}, Exception("down"))):
            with pytest.raises(MigrationError, match="Cannot read loans"):
                await run_migration(_factory(AsyncMock()), _config(), as_of=AS_OF)
