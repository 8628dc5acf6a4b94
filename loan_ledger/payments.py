"""
Payment Ledger Module

Applies a payment to a single installment and recomputes the owning loan's
balance, paid-installment count and status in the same unit of work.

A payment larger than the installment's remaining amount is not spread over
later installments: the installment is marked paid and the whole amount is
taken off the loan balance, which never drops below zero.
"""

from datetime import datetime, timezone, date
from typing import Any, List, Optional
import logging
import uuid

from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .currency import Money, parse_decimal
from .errors import ValidationError, StateError, NotFoundError, ConcurrencyConflict
from .models import Installment, InstallmentStatus, LoanPayment, LoanStatus, PaymentSource
from .origination import LoanOriginationManager, LOANS_TABLE
from .scheduler import AmortizationScheduler, INSTALLMENTS_TABLE
from .storage import StorageInterface


logger = logging.getLogger(__name__)

PAYMENTS_TABLE = "loan_payments"


class PaymentLedger:
    """
    Registers installment payments for one organization
    """

    def __init__(
        self,
        storage: StorageInterface,
        origination: LoanOriginationManager,
        scheduler: AmortizationScheduler,
        audit_trail: AuditTrail,
        config: Optional[LedgerConfig] = None
    ):
        self.storage = storage
        self.origination = origination
        self.scheduler = scheduler
        self.audit_trail = audit_trail
        self.config = config or get_config()

    def register_payment(
        self,
        installment_id: str,
        amount: Any,
        notes: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        source: PaymentSource = PaymentSource.MANUAL,
        payroll_run_id: Optional[str] = None
    ) -> Installment:
        """
        Apply a payment to an installment of an active loan

        The installment, the loan and the payment record are written inside
        one atomic block with version-checked writes. A version conflict rolls
        the block back and the payment is re-applied on fresh reads, up to
        ``payment_conflict_retries`` times.

        Args:
            installment_id: Installment receiving the payment
            amount: Positive amount (Decimal, integer or numeric string)
            notes: Replaces the installment notes when given
            idempotency_key: A key already recorded makes the call a no-op
            source: Manual entry or payroll deduction
            payroll_run_id: Payroll run that produced the deduction

        Returns:
            The installment after the payment

        Raises:
            ValidationError: amount is not positive
            NotFoundError: installment or loan does not exist in this organization
            StateError: the loan is not active
            ConcurrencyConflict: conflicting writes persisted past the retry budget
        """
        value = parse_decimal(amount, "amount")
        if value <= 0:
            raise ValidationError("Payment amount must be greater than zero")

        attempts = max(1, self.config.payment_conflict_retries)
        for attempt in range(1, attempts + 1):
            try:
                return self._apply_payment(installment_id, value, notes, idempotency_key,
                                           source, payroll_run_id)
            except ConcurrencyConflict:
                if attempt == attempts:
                    logger.error("Payment on installment %s conflicted %d times, giving up",
                                 installment_id, attempts)
                    raise
                logger.warning("Payment on installment %s conflicted, retrying (%d/%d)",
                               installment_id, attempt, attempts)

    def _apply_payment(self, installment_id, value, notes, idempotency_key, source,
                       payroll_run_id) -> Installment:
        with self.storage.atomic():
            if idempotency_key:
                recorded = self.find_payment_by_key(idempotency_key)
                if recorded is not None:
                    logger.info("Payment %s already registered, skipping", idempotency_key)
                    return self._require_installment(recorded.installment_id)

            installment = self._require_installment(installment_id)
            loan = self.origination.require_loan(installment.loan_id)
            if not loan.is_active:
                raise StateError(f"Loan {loan.loan_number} is {loan.status.value}; payments need an active loan")

            payment_amount = Money(value, loan.currency)
            if not payment_amount.is_positive():
                raise ValidationError("Payment amount rounds to zero")

            now = datetime.now(timezone.utc)
            today = date.today()
            was_paid = installment.is_paid

            installment.amount_paid = installment.amount_paid + payment_amount
            fully_paid = installment.amount_paid >= installment.amount
            installment.status = InstallmentStatus.PAID if fully_paid else InstallmentStatus.PARTIAL
            installment.paid_at = (installment.paid_at or now) if fully_paid else None
            if notes is not None:
                installment.notes = notes
            if payroll_run_id is not None:
                installment.payroll_run_id = payroll_run_id
            installment.updated_at = now

            loan.balance = (loan.balance - payment_amount).max_zero()
            if fully_paid and not was_paid:
                loan.installments_paid += 1
            loan.status = LoanStatus.PAID if loan.balance.is_zero() else LoanStatus.ACTIVE
            loan.last_payment_date = today
            loan.updated_at = now

            installment.version = self.storage.save(
                INSTALLMENTS_TABLE, installment.id, installment.to_dict(),
                expected_version=installment.version
            )
            loan.version = self.storage.save(
                LOANS_TABLE, loan.id, loan.to_dict(), expected_version=loan.version
            )

            payment = LoanPayment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                installment_id=installment.id,
                installment_number=installment.installment_number,
                currency=loan.currency,
                amount=payment_amount,
                balance_after=loan.balance,
                payment_date=today,
                source=source,
                notes=notes,
                idempotency_key=idempotency_key,
                payroll_run_id=payroll_run_id
            )
            self.storage.save(PAYMENTS_TABLE, payment.id, payment.to_dict(), expected_version=0)

            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_REGISTERED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "payment_id": payment.id,
                    "installment_number": installment.installment_number,
                    "amount": payment_amount.to_string(),
                    "installment_status": installment.status.value,
                    "balance": loan.balance.to_string(),
                    "source": source.value
                }
            )
            if loan.status == LoanStatus.PAID:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_PAID_OFF,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"loan_number": loan.loan_number,
                              "installments_paid": loan.installments_paid}
                )

        if loan.status == LoanStatus.PAID:
            logger.info("Loan %s paid off", loan.loan_number)
        logger.info("Payment of %s registered on installment %d of loan %s, balance %s",
                    payment_amount.to_string(), installment.installment_number,
                    loan.loan_number, loan.balance.to_string())
        return installment

    def _require_installment(self, installment_id: str) -> Installment:
        installment = self.scheduler.get_installment(installment_id)
        if installment is None:
            raise NotFoundError(f"Installment {installment_id} not found")
        return installment

    def find_payment_by_key(self, idempotency_key: str) -> Optional[LoanPayment]:
        """Payment recorded under an idempotency key, if any"""
        matches = self.storage.find(PAYMENTS_TABLE, {"idempotency_key": idempotency_key})
        if matches:
            return LoanPayment.from_dict(matches[0])
        return None

    def list_payments(self, loan_id: str) -> List[LoanPayment]:
        """Payment history of a loan, oldest first"""
        self.origination.require_loan(loan_id)
        payments = [LoanPayment.from_dict(data)
                    for data in self.storage.find(PAYMENTS_TABLE, {"loan_id": loan_id})]
        payments.sort(key=lambda p: p.created_at)
        return payments

    def list_run_payments(self, payroll_run_id: str) -> List[LoanPayment]:
        """Payments posted by a payroll run"""
        return [LoanPayment.from_dict(data)
                for data in self.storage.find(PAYMENTS_TABLE, {"payroll_run_id": payroll_run_id})]
