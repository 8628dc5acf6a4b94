"""
Portfolio Statistics Module

KPIs over one organization's loans. Reads one listing of loans and one listing
of installments and groups them in memory instead of querying installments
loan by loan.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, Optional
import logging

from .currency import Money
from .models import Installment, Loan, LoanStats, LoanStatus
from .origination import LOANS_TABLE
from .scheduler import INSTALLMENTS_TABLE
from .storage import StorageInterface


logger = logging.getLogger(__name__)


def _add_by_currency(totals: Dict[str, Decimal], amount: Money) -> None:
    code = amount.currency.code
    totals[code] = totals.get(code, Decimal('0')) + amount.amount


class StatsAggregator:
    """Read-only aggregation of loan counts and amounts"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def get_stats(self, as_of: Optional[date] = None) -> LoanStats:
        """
        Compute portfolio KPIs

        Args:
            as_of: Reference date for overdue detection (defaults to today)

        Returns:
            LoanStats where pending counts requested loans, total_disbursed sums
            principal over active and paid loans, total_balance sums balance
            over active loans (both across currencies, with per-currency
            breakdowns alongside) and overdue_installments counts unpaid
            installments of active loans due before ``as_of``
        """
        as_of = as_of or date.today()
        stats = LoanStats()

        active_ids = set()
        for data in self.storage.find(LOANS_TABLE, {}):
            loan = Loan.from_dict(data)
            stats.total += 1
            if loan.is_active:
                stats.active += 1
                stats.total_balance += loan.balance.amount
                stats.total_disbursed += loan.principal.amount
                _add_by_currency(stats.balance_by_currency, loan.balance)
                _add_by_currency(stats.disbursed_by_currency, loan.principal)
                active_ids.add(loan.id)
            elif loan.status == LoanStatus.REQUESTED:
                stats.pending += 1
            elif loan.status == LoanStatus.PAID:
                stats.paid += 1
                stats.total_disbursed += loan.principal.amount
                _add_by_currency(stats.disbursed_by_currency, loan.principal)

        if active_ids:
            for data in self.storage.find(INSTALLMENTS_TABLE, {}):
                if data.get('loan_id') not in active_ids:
                    continue
                if Installment.from_dict(data).is_overdue(as_of):
                    stats.overdue_installments += 1

        logger.debug("Computed stats over %d loans", stats.total)
        return stats
