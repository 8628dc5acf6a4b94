"""
Loan Ledger Service

LoanLedger wires origination, approval, scheduling, payments, statistics and
the payroll feed for a single organization. Build one per request (or per
payroll run) from a shared store with ``LoanLedger.for_organization``.
"""

from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from .approval import ApprovalWorkflow
from .audit import AuditTrail
from .config import LedgerConfig, get_config
from .directory import EmploymentDirectory, LoanListing, enrich_loans
from .models import (
    CreateLoanRequest, UpdateLoanRequest, Installment, Loan, LoanPayment,
    LoanStats, LoanStatus, LoanType, PaymentSource
)
from .origination import LoanOriginationManager
from .payments import PaymentLedger
from .payroll import Deduction, PayrollDeductionFeed
from .scheduler import AmortizationScheduler
from .stats import StatsAggregator
from .storage import StorageInterface, InMemoryStorage, SQLiteStorage
from .tenancy import OrganizationScopedStorage


def build_storage(config: Optional[LedgerConfig] = None) -> StorageInterface:
    """Create the unscoped store selected by ``storage_backend``"""
    config = config or get_config()
    backend = config.storage_backend.lower()
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(config.sqlite_path)
    raise ValueError(f"Unknown storage backend '{config.storage_backend}'")


class LoanLedger:
    """
    Employee loan ledger of one organization
    """

    def __init__(
        self,
        storage: StorageInterface,
        organization_id: int,
        directory: Optional[EmploymentDirectory] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.config = config or get_config()
        self.organization_id = organization_id
        self.storage = storage
        self.directory = directory

        self.audit_trail = AuditTrail(storage, enabled=self.config.enable_audit_logging)
        self.origination = LoanOriginationManager(storage, organization_id, self.audit_trail, self.config)
        self.scheduler = AmortizationScheduler(storage, self.audit_trail)
        self.approval = ApprovalWorkflow(storage, self.origination, self.scheduler, self.audit_trail)
        self.payments = PaymentLedger(storage, self.origination, self.scheduler,
                                      self.audit_trail, self.config)
        self.stats = StatsAggregator(storage)
        self.payroll = PayrollDeductionFeed(self.origination, self.scheduler, self.payments)

    @classmethod
    def for_organization(
        cls,
        storage: StorageInterface,
        organization_id: int,
        directory: Optional[EmploymentDirectory] = None,
        config: Optional[LedgerConfig] = None
    ) -> 'LoanLedger':
        """Ledger over an organization-scoped view of a shared store"""
        return cls(OrganizationScopedStorage(storage, organization_id), organization_id,
                   directory, config)

    # Loans

    def create_loan(self, request: CreateLoanRequest, requested_by: Optional[str] = None) -> Loan:
        return self.origination.create(request, requested_by)

    def update_loan(self, loan_id: str, request: UpdateLoanRequest,
                    updated_by: Optional[str] = None) -> Loan:
        return self.origination.update(loan_id, request, updated_by)

    def delete_loan(self, loan_id: str, deleted_by: Optional[str] = None) -> None:
        self.origination.delete(loan_id, deleted_by)

    def get_loan(self, loan_id: str) -> Loan:
        """Get a loan or raise NotFoundError"""
        return self.origination.require_loan(loan_id)

    def list_loans(
        self,
        status: Optional[LoanStatus] = None,
        employment_id: Optional[str] = None,
        loan_type: Optional[LoanType] = None
    ) -> List[LoanListing]:
        """Loans newest first, with the employee's name and code attached"""
        loans = self.origination.list_loans(status, employment_id, loan_type)
        return enrich_loans(loans, self.directory)

    def preview_schedule(self, loan_id: str) -> List[Installment]:
        """Installments the loan would get on approval, without persisting them"""
        return self.scheduler.build_schedule(self.get_loan(loan_id))

    # Approval

    def approve_loan(self, loan_id: str, approver_id: str) -> Loan:
        return self.approval.approve(loan_id, approver_id)

    def reject_loan(self, loan_id: str, approver_id: str, reason: str) -> Loan:
        return self.approval.reject(loan_id, approver_id, reason)

    def cancel_loan(self, loan_id: str, cancelled_by: Optional[str] = None) -> Loan:
        return self.approval.cancel(loan_id, cancelled_by)

    def mark_defaulted(self, loan_id: str, reason: Optional[str] = None,
                       marked_by: Optional[str] = None) -> Loan:
        return self.approval.mark_defaulted(loan_id, reason, marked_by)

    def write_off(self, loan_id: str, reason: Optional[str] = None,
                  written_off_by: Optional[str] = None) -> Loan:
        return self.approval.write_off(loan_id, reason, written_off_by)

    # Installments and payments

    def list_installments(self, loan_id: str) -> List[Installment]:
        """Installments of a loan ordered by number; empty until approval"""
        self.origination.require_loan(loan_id)
        return self.scheduler.list_installments(loan_id)

    def register_payment(
        self,
        installment_id: str,
        amount: Any,
        notes: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> Installment:
        return self.payments.register_payment(installment_id, amount, notes, idempotency_key,
                                              PaymentSource.MANUAL)

    def list_payments(self, loan_id: str) -> List[LoanPayment]:
        return self.payments.list_payments(loan_id)

    # Reporting

    def get_stats(self, as_of: Optional[date] = None) -> LoanStats:
        return self.stats.get_stats(as_of)

    def verify_audit_trail(self) -> bool:
        return self.audit_trail.verify_integrity()

    # Payroll

    def find_deductions(self, period_start: date, period_end: date,
                        gross_pay: Optional[Dict[str, Any]] = None) -> List[Deduction]:
        return self.payroll.find_deductions(period_start, period_end, gross_pay)

    def apply_deductions(self, run_id: str, deductions: Iterable[Deduction]) -> List[Installment]:
        return self.payroll.apply_deductions(run_id, deductions)

    def run_payroll(self, run_id: str, period_start: date, period_end: date,
                    gross_pay: Optional[Dict[str, Any]] = None):
        return self.payroll.run_payroll(run_id, period_start, period_end, gross_pay)

    # Catalog

    def loan_types(self) -> List[str]:
        return [loan_type.value for loan_type in LoanType]

    def active_employees(self):
        """Active employments for loan request pickers; empty without a directory"""
        if self.directory is None:
            return []
        return self.directory.list_active(self.organization_id)
