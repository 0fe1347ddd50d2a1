"""Tests for record schemas, money coercion and run configuration."""

import pytest
from decimal import Decimal
from datetime import date

from pydantic import ValidationError

from harmonizer.config import MigrationConfig, Settings
from harmonizer.schemas import (
    LoanRecord,
    MigrationRunRequest,
    ProductAccounts,
    ScheduleRecord,
    coerce_money,
)


class TestCoerceMoney:

    @pytest.mark.parametrize("raw", [None, "", "abc", float("nan"), float("inf"), -5, "-0.01"])
    def test_invalid_or_negative_becomes_zero(self, raw):
        assert coerce_money(raw) == Decimal("0")

    @pytest.mark.parametrize("raw,expected", [
        (1500, Decimal("1500")),
        ("2500.75", Decimal("2500.75")),
        (Decimal("0.10"), Decimal("0.10")),
        (99.5, Decimal("99.5")),
    ])
    def test_valid_amounts(self, raw, expected):
        assert coerce_money(raw) == expected


class TestRecords:

    def test_loan_defaults(self):
        loan = LoanRecord(id="l1", principal_amount=None, outstanding_balance="NaN")
        assert loan.status == "pending"
        assert loan.principal_amount == Decimal("0")
        assert loan.outstanding_balance == Decimal("0")

    def test_schedule_outstanding_recorded_vs_derived(self):
        recorded = ScheduleRecord(
            installment_number=1, due_date=date(2024, 1, 1),
            total_amount=500, paid_amount=200, outstanding_amount=250,
        )
        derived = ScheduleRecord(
            installment_number=1, due_date=date(2024, 1, 1),
            total_amount=500, paid_amount=200,
        )
        assert recorded.effective_outstanding == Decimal("250")
        assert derived.effective_outstanding == Decimal("300")

    def test_stored_zero_outstanding_on_unpaid_installment_derived(self):
        sched = ScheduleRecord(
            installment_number=1, due_date=date(2024, 1, 1),
            total_amount=500, paid_amount=200, outstanding_amount=0, payment_status="partial",
        )
        assert sched.effective_outstanding == Decimal("300")

    def test_paid_flag(self):
        sched = ScheduleRecord(installment_number=1, due_date=date(2024, 1, 1), payment_status="paid")
        assert sched.is_paid

    @pytest.mark.parametrize("accounting_type,enabled", [
        (None, False), ("", False), ("none", False), ("cash", True), ("accrual_periodic", True),
    ])
    def test_accounting_enabled(self, accounting_type, enabled):
        assert ProductAccounts(accounting_type=accounting_type).accounting_enabled is enabled


class TestRunRequest:

    def test_defaults_to_dry_run(self):
        assert MigrationRunRequest().dry_run is True

    def test_batch_size_bounds(self):
        with pytest.raises(ValidationError):
            MigrationRunRequest(batch_size=0)
        with pytest.raises(ValidationError):
            MigrationRunRequest(batch_size=501)


class TestConfig:

    def test_from_settings_uses_settings_values(self):
        source = Settings(
            _env_file=None,
            migration_batch_size=10,
            migration_batch_delay_seconds=0,
            balance_tolerance=0.5,
            arrears_threshold_days=60,
            report_dir="/tmp/reports",
        )
        config = MigrationConfig.from_settings(source)
        assert config.batch_size == 10
        assert config.batch_delay_seconds == 0
        assert config.balance_tolerance == 0.5
        assert config.arrears_threshold_days == 60
        assert config.report_dir == "/tmp/reports"
        assert config.dry_run is False

    def test_none_overrides_ignored(self):
        source = Settings(_env_file=None, migration_batch_size=10)
        config = MigrationConfig.from_settings(source, batch_size=None, tenant_id="t-1", dry_run=True)
        assert config.batch_size == 10
        assert config.tenant_id == "t-1"
        assert config.dry_run is True

    def test_invalid_batch_size_rejected(self):
        with pytest.raises(ValidationError):
            MigrationConfig(batch_size=0)

    def test_log_level_normalised(self):
        assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_level="chatty")
