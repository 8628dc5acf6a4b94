"""
Amortization Scheduler Module

Generates the fixed installment schedule of an approved loan. The schedule is
flat: every installment carries the same share of principal and interest,
regardless of its position, unlike a reducing-balance table. The last
installment absorbs the cent-level rounding residual so that the schedule sums
exactly to the loan's total amount; no installment is ever negative.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from typing import List
import calendar
import logging

from .audit import AuditTrail, AuditEventType
from .currency import Money
from .errors import StateError
from .models import Loan, Installment, InstallmentStatus
from .storage import StorageInterface


logger = logging.getLogger(__name__)

INSTALLMENTS_TABLE = "loan_installments"


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def installment_id(loan_id: str, installment_number: int) -> str:
    return f"{loan_id}_{installment_number}"


def split_evenly(total: Money, share: Money, count: int) -> List[Money]:
    """
    Spread ``total`` over ``count`` parts of ``share`` each

    The last part takes the rounding residual. When ``share`` was rounded up
    so far that the last part would go negative, the overshoot is taken back
    one minor unit per part from the end instead, which keeps every part at
    zero or above and the sum equal to ``total``.
    """
    parts = [share] * count
    last = total - share * (count - 1)
    if not last.is_negative():
        parts[-1] = last
        return parts

    unit = Money(total.currency.quantum, total.currency)
    excess = share * count - total
    position = count - 1
    while excess.is_positive():
        parts[position] = parts[position] - unit
        excess = excess - unit
        position -= 1
    return parts


class AmortizationScheduler:
    """
    Builds and persists installment schedules
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail

    def build_schedule(self, loan: Loan) -> List[Installment]:
        """
        Compute the installments of a loan without persisting them

        Args:
            loan: Loan whose terms drive the schedule

        Returns:
            Installments numbered 1..installments_total
        """
        count = loan.installments_total
        divisor = Decimal(count)
        amounts = split_evenly(loan.total_amount, loan.installment_amount, count)
        principal_shares = split_evenly(loan.principal, loan.principal / divisor, count)
        interest_shares = split_evenly(loan.total_interest, loan.total_interest / divisor, count)

        now = datetime.now(timezone.utc)
        schedule = []
        for number, amount, principal_share, interest_share in zip(
                range(1, count + 1), amounts, principal_shares, interest_shares):
            schedule.append(Installment(
                id=installment_id(loan.id, number),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                installment_number=number,
                due_date=add_months(loan.first_payment_date, number - 1),
                currency=loan.currency,
                amount=amount,
                principal_portion=principal_share,
                interest_portion=interest_share,
                status=InstallmentStatus.PENDING
            ))
        return schedule

    def generate(self, loan: Loan) -> bool:
        """
        Persist the schedule of an approved loan, at most once

        A loan that already has installment rows is left untouched; the batch
        insert itself is guarded per loan so concurrent callers cannot both
        insert a schedule.

        Returns:
            True if installments were created, False if they already existed
        """
        if not loan.status.has_schedule:
            raise StateError(f"Loan {loan.loan_number} is {loan.status.value}; schedules exist only for approved loans")

        if self.storage.find(INSTALLMENTS_TABLE, {"loan_id": loan.id}):
            logger.info("Installments already exist for loan %s, skipping generation", loan.loan_number)
            return False

        schedule = self.build_schedule(loan)
        inserted = self.storage.insert_many_if_absent(
            INSTALLMENTS_TABLE,
            [installment.to_dict() for installment in schedule],
            guard_key=f"schedule:{loan.id}"
        )
        if not inserted:
            logger.info("Concurrent schedule generation detected for loan %s, skipping", loan.loan_number)
            return False

        self.audit_trail.log_event(
            event_type=AuditEventType.SCHEDULE_GENERATED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "installments": len(schedule),
                "installment_amount": loan.installment_amount.to_string(),
                "first_due_date": schedule[0].due_date.isoformat(),
                "last_due_date": schedule[-1].due_date.isoformat()
            }
        )
        logger.info("Generated %d installments for loan %s", len(schedule), loan.loan_number)
        return True

    def list_installments(self, loan_id: str) -> List[Installment]:
        """Installments of a loan ordered by number"""
        installments = [Installment.from_dict(data)
                        for data in self.storage.find(INSTALLMENTS_TABLE, {"loan_id": loan_id})]
        installments.sort(key=lambda i: i.installment_number)
        return installments

    def get_installment(self, installment_id: str):
        data = self.storage.load(INSTALLMENTS_TABLE, installment_id)
        if data:
            return Installment.from_dict(data)
        return None
