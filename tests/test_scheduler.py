"""
Test suite for amortization schedules

Flat schedules: equal principal and interest shares per installment, with the
last installment absorbing the rounding residual.
"""

import pytest
from decimal import Decimal
from datetime import date

from loan_ledger.config import LedgerConfig
from loan_ledger.currency import Currency, Money
from loan_ledger.errors import StateError
from loan_ledger.models import CreateLoanRequest, InstallmentStatus
from loan_ledger.scheduler import add_months, installment_id, split_evenly, INSTALLMENTS_TABLE
from loan_ledger.service import LoanLedger
from loan_ledger.storage import InMemoryStorage


def loan_request(**overrides):
    values = dict(
        employment_id="EMP-001",
        principal="1000000",
        installments_total=6,
        first_payment_date=date(2025, 1, 31),
        interest_rate="24",
    )
    values.update(overrides)
    return CreateLoanRequest(**values)


class TestAddMonths:
    """Test month arithmetic"""

    def test_simple_months(self):
        assert add_months(date(2025, 1, 15), 0) == date(2025, 1, 15)
        assert add_months(date(2025, 1, 15), 1) == date(2025, 2, 15)
        assert add_months(date(2025, 11, 15), 3) == date(2026, 2, 15)

    def test_month_end_is_clamped(self):
        assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2025, 1, 31), 3) == date(2025, 4, 30)
        assert add_months(date(2025, 1, 31), 2) == date(2025, 3, 31)


class TestAmortizationScheduler:
    """Test schedule building and generation"""

    def setup_method(self):
        self.ledger = LoanLedger.for_organization(
            InMemoryStorage(), 1, config=LedgerConfig(storage_backend="memory")
        )

    def test_build_schedule_for_interest_bearing_loan(self):
        loan = self.ledger.create_loan(loan_request())
        schedule = self.ledger.preview_schedule(loan.id)

        assert [i.installment_number for i in schedule] == [1, 2, 3, 4, 5, 6]
        assert [i.amount.amount for i in schedule[:5]] == [Decimal('186666.67')] * 5
        assert schedule[-1].amount.amount == Decimal('186666.65')
        assert sum(i.amount.amount for i in schedule) == loan.total_amount.amount
        assert sum(i.principal_portion.amount for i in schedule) == Decimal('1000000.00')
        assert sum(i.interest_portion.amount for i in schedule) == Decimal('120000.00')
        assert all(i.interest_portion.amount == Decimal('20000.00') for i in schedule)
        assert all(i.status == InstallmentStatus.PENDING for i in schedule)
        assert all(i.amount_paid.is_zero() for i in schedule)

    def test_rounding_residual_is_bounded(self):
        loan = self.ledger.create_loan(loan_request(principal="1000000", installments_total=7,
                                                    interest_rate="17"))
        schedule = self.ledger.preview_schedule(loan.id)

        assert sum(i.amount.amount for i in schedule) == loan.total_amount.amount
        for installment in schedule:
            assert abs(installment.amount.amount - loan.installment_amount.amount) <= Decimal('0.01') * 6

    def test_tiny_principal_never_yields_negative_installments(self):
        loan = self.ledger.create_loan(loan_request(principal="0.15", installments_total=20,
                                                    interest_rate="0"))
        assert loan.installment_amount.amount == Decimal('0.01')

        schedule = self.ledger.preview_schedule(loan.id)

        assert len(schedule) == 20
        assert all(not i.amount.is_negative() for i in schedule)
        assert all(not i.principal_portion.is_negative() for i in schedule)
        assert all(not i.interest_portion.is_negative() for i in schedule)
        assert sum(i.amount.amount for i in schedule) == Decimal('0.15')
        assert sum(i.principal_portion.amount for i in schedule) == Decimal('0.15')
        assert [i.amount.amount for i in schedule[:15]] == [Decimal('0.01')] * 15
        assert [i.amount.amount for i in schedule[15:]] == [Decimal('0.00')] * 5

    def test_split_evenly_hands_the_residual_to_the_last_part(self):
        total = Money(Decimal('100.00'), Currency.COP)
        parts = split_evenly(total, total / Decimal(3), 3)
        assert [p.amount for p in parts] == [Decimal('33.33'), Decimal('33.33'), Decimal('33.34')]

    def test_split_evenly_takes_back_an_overshoot_from_the_end(self):
        total = Money(Decimal('0.05'), Currency.COP)
        parts = split_evenly(total, Money(Decimal('0.01'), Currency.COP), 8)
        assert [p.amount for p in parts] == [Decimal('0.01')] * 5 + [Decimal('0.00')] * 3

    def test_due_dates_are_monthly(self):
        loan = self.ledger.create_loan(loan_request())
        schedule = self.ledger.preview_schedule(loan.id)

        assert [i.due_date for i in schedule] == [
            date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31),
            date(2025, 4, 30), date(2025, 5, 31), date(2025, 6, 30),
        ]

    def test_preview_persists_nothing(self):
        loan = self.ledger.create_loan(loan_request())
        self.ledger.preview_schedule(loan.id)
        assert self.ledger.storage.count(INSTALLMENTS_TABLE) == 0

    def test_single_installment_loan(self):
        loan = self.ledger.create_loan(loan_request(principal="500000", installments_total=1,
                                                    interest_rate="12"))
        self.ledger.approve_loan(loan.id, "manager-1")

        installments = self.ledger.list_installments(loan.id)
        assert len(installments) == 1
        assert installments[0].amount.amount == Decimal('505000.00')

    def test_generate_requires_approved_loan(self):
        loan = self.ledger.create_loan(loan_request())
        with pytest.raises(StateError):
            self.ledger.scheduler.generate(loan)

    def test_generate_is_idempotent(self):
        loan = self.ledger.create_loan(loan_request())
        loan = self.ledger.approve_loan(loan.id, "manager-1")

        assert self.ledger.scheduler.generate(loan) is False
        installments = self.ledger.list_installments(loan.id)
        assert len(installments) == 6
        assert installments[0].id == installment_id(loan.id, 1)

    def test_guard_stops_a_racing_generation(self):
        loan = self.ledger.create_loan(loan_request())
        loan = self.ledger.approve_loan(loan.id, "manager-1")

        # A racing generator that already claimed the guard but whose rows are
        # not visible yet must make this call a no-op
        for installment in self.ledger.list_installments(loan.id):
            self.ledger.storage.delete(INSTALLMENTS_TABLE, installment.id)
        assert self.ledger.scheduler.generate(loan) is False
        assert self.ledger.list_installments(loan.id) == []
