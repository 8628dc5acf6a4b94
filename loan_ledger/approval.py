"""
Approval Workflow Module

Moves a loan out of the requested state exactly once, either to active (which
generates its schedule) or to cancelled. Defaulted and written-off states are
set by external policy decisions and are recorded here as plain status
overwrites.
"""

from datetime import datetime, timezone, date
from typing import Optional
import logging

from .audit import AuditTrail, AuditEventType
from .errors import ValidationError, StateError, ConcurrencyConflict
from .logging_config import log_action
from .models import Loan, LoanStatus
from .origination import LoanOriginationManager, LOANS_TABLE
from .scheduler import AmortizationScheduler
from .storage import StorageInterface


logger = logging.getLogger(__name__)


class ApprovalWorkflow:
    """
    Loan state transitions driven by approvers and administrators
    """

    def __init__(
        self,
        storage: StorageInterface,
        origination: LoanOriginationManager,
        scheduler: AmortizationScheduler,
        audit_trail: AuditTrail
    ):
        self.storage = storage
        self.origination = origination
        self.scheduler = scheduler
        self.audit_trail = audit_trail

    def _save(self, loan: Loan) -> Loan:
        loan.updated_at = datetime.now(timezone.utc)
        loan.version = self.storage.save(LOANS_TABLE, loan.id, loan.to_dict(),
                                         expected_version=loan.version)
        return loan

    def _resume_approval(self, loan: Loan) -> Loan:
        """Finish an approval whose schedule generation may not have run"""
        if self.scheduler.generate(loan):
            logger.warning("Recovered missing schedule for approved loan %s", loan.loan_number)
        return loan

    def approve(self, loan_id: str, approver_id: str) -> Loan:
        """
        Approve a requested loan and generate its installments

        The status write and the schedule generation are separate steps.
        Calling approve again on a loan that is already approved and active
        re-runs the idempotent generation, which recovers from a failure
        between the two steps.

        Args:
            loan_id: Loan to approve
            approver_id: User approving the loan

        Returns:
            The active Loan

        Raises:
            StateError: loan is neither requested nor an already approved active loan
        """
        if not approver_id:
            raise ValidationError("approver_id is required")

        loan = self.origination.require_loan(loan_id)
        if loan.status == LoanStatus.ACTIVE and loan.approved_at is not None:
            return self._resume_approval(loan)
        if loan.status != LoanStatus.REQUESTED:
            raise StateError(f"Loan {loan.loan_number} is {loan.status.value}, not requested")

        now = datetime.now(timezone.utc)
        loan.status = LoanStatus.ACTIVE
        loan.approved_by = approver_id
        loan.approved_at = now
        loan.disbursement_date = date.today()
        try:
            self._save(loan)
        except ConcurrencyConflict:
            # Someone else moved the loan first; an approval is resumable, anything else is not
            current = self.origination.require_loan(loan_id)
            if current.status == LoanStatus.ACTIVE and current.approved_at is not None:
                return self._resume_approval(current)
            raise StateError(f"Loan {current.loan_number} is {current.status.value}, not requested")

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_APPROVED,
            entity_type="loan",
            entity_id=loan.id,
            user_id=approver_id,
            metadata={
                "loan_number": loan.loan_number,
                "disbursement_date": loan.disbursement_date.isoformat(),
                "total_amount": loan.total_amount.to_string()
            }
        )
        log_action(logger, "info", f"Loan {loan.loan_number} approved",
                   user_id=approver_id, action="approve", resource=f"loan/{loan.id}",
                   organization_id=loan.organization_id)

        self.scheduler.generate(loan)
        return loan

    def reject(self, loan_id: str, approver_id: str, reason: str) -> Loan:
        """
        Reject a requested loan

        Raises:
            ValidationError: missing approver or reason
            StateError: loan is not requested
        """
        if not approver_id:
            raise ValidationError("approver_id is required")
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")

        loan = self._require_requested(loan_id)
        loan.status = LoanStatus.CANCELLED
        loan.rejected_by = approver_id
        loan.rejected_at = datetime.now(timezone.utc)
        loan.rejection_reason = reason.strip()
        self._save_transition(loan, LoanStatus.REQUESTED)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_REJECTED,
            entity_type="loan",
            entity_id=loan.id,
            user_id=approver_id,
            metadata={"loan_number": loan.loan_number, "reason": loan.rejection_reason}
        )
        logger.info("Loan %s rejected by %s", loan.loan_number, approver_id)
        return loan

    def cancel(self, loan_id: str, cancelled_by: Optional[str] = None) -> Loan:
        """
        Administratively cancel a requested loan

        Raises:
            StateError: loan is not requested
        """
        loan = self._require_requested(loan_id)
        loan.status = LoanStatus.CANCELLED
        self._save_transition(loan, LoanStatus.REQUESTED)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_CANCELLED,
            entity_type="loan",
            entity_id=loan.id,
            user_id=cancelled_by,
            metadata={"loan_number": loan.loan_number}
        )
        logger.info("Loan %s cancelled", loan.loan_number)
        return loan

    def mark_defaulted(self, loan_id: str, reason: Optional[str] = None,
                       marked_by: Optional[str] = None) -> Loan:
        """Flag an active loan as defaulted; balance and installments are untouched"""
        return self._overwrite_status(
            loan_id, LoanStatus.DEFAULTED, (LoanStatus.ACTIVE,),
            AuditEventType.LOAN_DEFAULTED, reason, marked_by
        )

    def write_off(self, loan_id: str, reason: Optional[str] = None,
                  written_off_by: Optional[str] = None) -> Loan:
        """Write off an active or defaulted loan; balance and installments are untouched"""
        return self._overwrite_status(
            loan_id, LoanStatus.WRITTEN_OFF, (LoanStatus.ACTIVE, LoanStatus.DEFAULTED),
            AuditEventType.LOAN_WRITTEN_OFF, reason, written_off_by
        )

    def _require_requested(self, loan_id: str) -> Loan:
        loan = self.origination.require_loan(loan_id)
        if loan.status != LoanStatus.REQUESTED:
            raise StateError(f"Loan {loan.loan_number} is {loan.status.value}, not requested")
        return loan

    def _save_transition(self, loan: Loan, previous: LoanStatus) -> None:
        try:
            self._save(loan)
        except ConcurrencyConflict:
            current = self.origination.require_loan(loan.id)
            if current.status != previous:
                raise StateError(f"Loan {current.loan_number} changed to {current.status.value} concurrently")
            raise

    def _overwrite_status(self, loan_id, target, allowed_from, event_type, reason, user_id) -> Loan:
        loan = self.origination.require_loan(loan_id)
        if loan.status not in allowed_from:
            allowed = ", ".join(s.value for s in allowed_from)
            raise StateError(f"Loan {loan.loan_number} is {loan.status.value}; expected one of: {allowed}")

        previous = loan.status
        loan.status = target
        if reason:
            loan.metadata = {**loan.metadata, f"{target.value}_reason": reason}
        self._save_transition(loan, previous)

        self.audit_trail.log_event(
            event_type=event_type,
            entity_type="loan",
            entity_id=loan.id,
            user_id=user_id,
            metadata={"loan_number": loan.loan_number, "previous_status": previous.value,
                      "reason": reason}
        )
        log_action(logger, "warning", f"Loan {loan.loan_number} moved from {previous.value} to {target.value}",
                   user_id=user_id, action=target.value, resource=f"loan/{loan.id}",
                   organization_id=loan.organization_id, extra={"reason": reason})
        return loan
