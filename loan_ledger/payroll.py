"""
Payroll Deduction Feed Module

Pull-side integration for the payroll engine. For a pay period the engine asks
which installments should be deducted from wages, debits them on its side and
posts the deductions back. Posting uses one idempotency key per run and
installment so a re-run payroll never charges an installment twice.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from .currency import Money, parse_decimal
from .errors import ValidationError
from .models import Installment, Loan, LoanStatus, PaymentSource
from .origination import LoanOriginationManager
from .payments import PaymentLedger
from .scheduler import AmortizationScheduler


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Deduction:
    """One installment the payroll engine should deduct in a pay period"""
    loan_id: str
    loan_number: str
    employment_id: str
    installment_id: str
    installment_number: int
    due_date: date
    amount: Money
    capped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_id': self.loan_id,
            'loan_number': self.loan_number,
            'employment_id': self.employment_id,
            'installment_id': self.installment_id,
            'installment_number': self.installment_number,
            'due_date': self.due_date.isoformat(),
            'amount': str(self.amount.amount),
            'currency': self.amount.currency.code,
            'capped': self.capped,
        }


def deduction_key(run_id: str, installment_id: str) -> str:
    return f"payroll:{run_id}:{installment_id}"


class PayrollDeductionFeed:
    """
    Finds and posts payroll loan deductions for one organization
    """

    def __init__(
        self,
        origination: LoanOriginationManager,
        scheduler: AmortizationScheduler,
        payments: PaymentLedger
    ):
        self.origination = origination
        self.scheduler = scheduler
        self.payments = payments

    def find_deductions(
        self,
        period_start: date,
        period_end: date,
        gross_pay: Optional[Dict[str, Any]] = None
    ) -> List[Deduction]:
        """
        Deductions due in a pay period

        Every active loan with auto_deduct contributes its earliest unpaid
        installment due on or before ``period_end``. The amount is what remains
        on that installment, never more than the loan balance, and capped at
        ``max_deduction_pct`` of the employee's gross pay when ``gross_pay``
        holds an entry for the employment. ``capped`` reports the pay cap only.

        Args:
            period_start: First day of the pay period
            period_end: Last day of the pay period
            gross_pay: Optional mapping of employment id to gross pay

        Returns:
            Deductions ordered by employment and due date
        """
        if period_end < period_start:
            raise ValidationError("period_end must not be before period_start")
        gross_pay = gross_pay or {}

        deductions = []
        for loan in self.origination.list_loans(status=LoanStatus.ACTIVE):
            if not loan.auto_deduct:
                continue
            installment = self._next_due(loan, period_end)
            if installment is None:
                continue

            amount = min(installment.remaining, loan.balance)
            capped = False
            if loan.employment_id in gross_pay:
                gross = parse_decimal(gross_pay[loan.employment_id], "gross_pay")
                limit = Money(gross * loan.max_deduction_pct / Decimal('100'), loan.currency)
                if limit < amount:
                    amount = limit
                    capped = True
            if not amount.is_positive():
                logger.info("No deductible pay for loan %s in period ending %s",
                            loan.loan_number, period_end.isoformat())
                continue

            deductions.append(Deduction(
                loan_id=loan.id,
                loan_number=loan.loan_number,
                employment_id=loan.employment_id,
                installment_id=installment.id,
                installment_number=installment.installment_number,
                due_date=installment.due_date,
                amount=amount,
                capped=capped
            ))

        deductions.sort(key=lambda d: (d.employment_id, d.due_date, d.loan_number))
        return deductions

    def _next_due(self, loan: Loan, period_end: date) -> Optional[Installment]:
        for installment in self.scheduler.list_installments(loan.id):
            if installment.is_paid:
                continue
            if installment.due_date <= period_end:
                return installment
            return None
        return None

    def apply_deductions(self, run_id: str, deductions: Iterable[Deduction]) -> List[Installment]:
        """
        Post deductions taken by a payroll run

        Each deduction becomes a payroll payment keyed by run and installment,
        so posting the same run again leaves the ledger unchanged.

        Returns:
            The installments after posting
        """
        if not run_id:
            raise ValidationError("run_id is required")

        installments = []
        for deduction in deductions:
            installments.append(self.payments.register_payment(
                deduction.installment_id,
                deduction.amount.amount,
                idempotency_key=deduction_key(run_id, deduction.installment_id),
                source=PaymentSource.PAYROLL,
                payroll_run_id=run_id
            ))
        logger.info("Payroll run %s posted %d deductions", run_id, len(installments))
        return installments

    def run_payroll(
        self,
        run_id: str,
        period_start: date,
        period_end: date,
        gross_pay: Optional[Dict[str, Any]] = None
    ) -> Tuple[List[Deduction], List[Installment]]:
        """
        Find and post the deductions of a payroll run in one call

        Loans the run already deducted from are skipped, so repeating the run
        neither charges the same installment again nor moves on to the next
        one.

        Returns:
            (deductions posted by this call, installments after posting)
        """
        if not run_id:
            raise ValidationError("run_id is required")
        posted = {payment.loan_id for payment in self.payments.list_run_payments(run_id)}
        deductions = [d for d in self.find_deductions(period_start, period_end, gross_pay)
                      if d.loan_id not in posted]
        if posted:
            logger.info("Payroll run %s already posted for %d loans", run_id, len(posted))
        return deductions, self.apply_deductions(run_id, deductions)
