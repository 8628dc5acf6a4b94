"""
Loan Origination Module

Validates and creates loan requests, and edits, deletes or reads them while
they are still in the requested state. Terms are frozen once a loan leaves
that state because only then can a schedule be generated from them.

Interest uses the flat scheme: the annual rate is applied once per
installment month over the whole principal,
``total_interest = principal * rate * installments / 100 / 12``.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from typing import Any, List, Optional, Tuple
import logging
import uuid

from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .currency import Money, Currency, parse_decimal
from .errors import ValidationError, StateError, NotFoundError, ConcurrencyConflict
from .models import Loan, LoanStatus, LoanType, CreateLoanRequest, UpdateLoanRequest
from .storage import StorageInterface


logger = logging.getLogger(__name__)

LOANS_TABLE = "employee_loans"
SEQUENCES_TABLE = "loan_number_sequences"

_SEQUENCE_ATTEMPTS = 10


def calculate_loan_totals(principal: Money, interest_rate: Decimal,
                          installments_total: int) -> Tuple[Money, Money, Money]:
    """
    Derive flat-scheme totals

    Returns:
        (total_interest, total_amount, installment_amount)
    """
    total_interest = Money(
        principal.amount * interest_rate * Decimal(installments_total) / Decimal('100') / Decimal('12'),
        principal.currency
    )
    total_amount = principal + total_interest
    installment_amount = total_amount / Decimal(installments_total)
    return total_interest, total_amount, installment_amount


class LoanOriginationManager:
    """
    Creates and edits loan requests for one organization
    """

    def __init__(
        self,
        storage: StorageInterface,
        organization_id: int,
        audit_trail: AuditTrail,
        config: Optional[LedgerConfig] = None
    ):
        self.storage = storage
        self.organization_id = organization_id
        self.audit_trail = audit_trail
        self.config = config or get_config()

    # Validation

    def _validate_currency(self, code: Optional[str]) -> Currency:
        try:
            return Currency.from_code(code or self.config.default_currency)
        except ValueError as e:
            raise ValidationError(str(e))

    def _validate_loan_type(self, value: Optional[str]) -> LoanType:
        try:
            return LoanType(value or self.config.default_loan_type)
        except ValueError:
            raise ValidationError(f"Unknown loan type '{value}'")

    def _validate_principal(self, value: Any, currency: Currency) -> Money:
        if value is None:
            raise ValidationError("principal is required")
        principal = Money.parse(value, currency, "principal")
        if not principal.is_positive():
            raise ValidationError("principal must be greater than zero")
        return principal

    def _validate_interest_rate(self, value: Any) -> Decimal:
        rate = parse_decimal(value if value is not None else 0, "interest_rate")
        if rate < 0:
            raise ValidationError("interest_rate cannot be negative")
        return rate

    def _validate_installments(self, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError("installments_total must be an integer")
        if value < 1:
            raise ValidationError("installments_total must be at least 1")
        return value

    def _validate_first_payment_date(self, value: Any) -> date:
        if value is None:
            raise ValidationError("first_payment_date is required")
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value))
        except ValueError:
            raise ValidationError(f"first_payment_date is not an ISO date: {value!r}")

    def _validate_max_deduction_pct(self, value: Any) -> Decimal:
        pct = parse_decimal(value if value is not None else self.config.default_max_deduction_pct,
                            "max_deduction_pct")
        if pct <= 0 or pct > 100:
            raise ValidationError("max_deduction_pct must be greater than 0 and at most 100")
        return pct

    # Loan numbers

    def _next_loan_number(self, year: int) -> str:
        """Allocate the next sequence number for (organization, year) with a conditional write"""
        key = f"{self.organization_id}:{year}"
        for _ in range(_SEQUENCE_ATTEMPTS):
            current = self.storage.load(SEQUENCES_TABLE, key)
            expected_version = current['_version'] if current else 0
            next_value = (current['last_value'] if current else 0) + 1
            try:
                self.storage.save(
                    SEQUENCES_TABLE, key,
                    {'id': key, 'year': year, 'last_value': next_value},
                    expected_version=expected_version
                )
            except ConcurrencyConflict:
                continue
            return f"{self.config.loan_number_prefix}-{year}-{next_value:05d}"
        raise ConcurrencyConflict(f"Could not allocate a loan number for {year}")

    # Operations

    def create(self, request: CreateLoanRequest, requested_by: Optional[str] = None) -> Loan:
        """
        Originate a loan request

        Args:
            request: Loan terms and policy
            requested_by: User creating the request, for the audit trail

        Returns:
            The requested Loan; no installments exist yet
        """
        if not request.employment_id:
            raise ValidationError("employment_id is required")
        currency = self._validate_currency(request.currency)
        principal = self._validate_principal(request.principal, currency)
        interest_rate = self._validate_interest_rate(request.interest_rate)
        installments_total = self._validate_installments(request.installments_total)
        first_payment_date = self._validate_first_payment_date(request.first_payment_date)
        loan_type = self._validate_loan_type(request.loan_type)
        max_deduction_pct = self._validate_max_deduction_pct(request.max_deduction_pct)
        auto_deduct = (self.config.default_auto_deduct
                       if request.auto_deduct is None else request.auto_deduct)

        total_interest, total_amount, installment_amount = calculate_loan_totals(
            principal, interest_rate, installments_total
        )

        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            organization_id=self.organization_id,
            employment_id=request.employment_id,
            loan_number=self._next_loan_number(now.year),
            currency=currency,
            principal=principal,
            interest_rate=interest_rate,
            installments_total=installments_total,
            total_interest=total_interest,
            total_amount=total_amount,
            installment_amount=installment_amount,
            balance=total_amount,
            first_payment_date=first_payment_date,
            loan_type=loan_type,
            description=request.description,
            status=LoanStatus.REQUESTED,
            installments_paid=0,
            requested_at=now,
            auto_deduct=auto_deduct,
            max_deduction_pct=max_deduction_pct,
            notes=request.notes,
            metadata=dict(request.metadata or {})
        )

        loan.version = self.storage.save(LOANS_TABLE, loan.id, loan.to_dict(), expected_version=0)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_REQUESTED,
            entity_type="loan",
            entity_id=loan.id,
            user_id=requested_by,
            metadata={
                "loan_number": loan.loan_number,
                "employment_id": loan.employment_id,
                "principal": loan.principal.to_string(),
                "interest_rate": str(interest_rate),
                "installments_total": installments_total,
                "total_amount": loan.total_amount.to_string()
            }
        )
        logger.info("Loan %s requested for employment %s (%s)",
                    loan.loan_number, loan.employment_id, loan.total_amount.to_string())
        return loan

    def update(self, loan_id: str, request: UpdateLoanRequest,
               updated_by: Optional[str] = None) -> Loan:
        """
        Edit a requested loan, recomputing derived totals when terms change

        Raises:
            NotFoundError: loan does not exist in this organization
            StateError: loan is no longer requested, also when it left that state
                between the read and the write
        """
        loan = self.require_loan(loan_id)
        if loan.status != LoanStatus.REQUESTED:
            raise StateError(f"Loan {loan.loan_number} is {loan.status.value}; only requested loans can be edited")

        changes = request.changes()

        currency = self._validate_currency(changes['currency']) if 'currency' in changes else loan.currency
        principal = (self._validate_principal(changes['principal'], currency)
                     if 'principal' in changes else Money(loan.principal.amount, currency))
        interest_rate = (self._validate_interest_rate(changes['interest_rate'])
                         if 'interest_rate' in changes else loan.interest_rate)
        installments_total = (self._validate_installments(changes['installments_total'])
                              if 'installments_total' in changes else loan.installments_total)

        if 'first_payment_date' in changes:
            loan.first_payment_date = self._validate_first_payment_date(changes['first_payment_date'])
        if 'loan_type' in changes:
            loan.loan_type = self._validate_loan_type(changes['loan_type'])
        if 'max_deduction_pct' in changes:
            loan.max_deduction_pct = self._validate_max_deduction_pct(changes['max_deduction_pct'])
        if 'auto_deduct' in changes:
            loan.auto_deduct = bool(changes['auto_deduct'])
        if 'description' in changes:
            loan.description = changes['description']
        if 'notes' in changes:
            loan.notes = changes['notes']

        if request.changes_terms:
            total_interest, total_amount, installment_amount = calculate_loan_totals(
                principal, interest_rate, installments_total
            )
            loan.currency = currency
            loan.principal = principal
            loan.interest_rate = interest_rate
            loan.installments_total = installments_total
            loan.total_interest = total_interest
            loan.total_amount = total_amount
            loan.installment_amount = installment_amount
            loan.balance = total_amount

        loan.updated_at = datetime.now(timezone.utc)
        try:
            loan.version = self.storage.save(LOANS_TABLE, loan.id, loan.to_dict(),
                                             expected_version=loan.version)
        except ConcurrencyConflict:
            current = self.require_loan(loan.id)
            if current.status != LoanStatus.REQUESTED:
                raise StateError(f"Loan {current.loan_number} changed to {current.status.value} "
                                 "concurrently; only requested loans can be edited")
            raise

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_UPDATED,
            entity_type="loan",
            entity_id=loan.id,
            user_id=updated_by,
            metadata={"fields": sorted(changes.keys())}
        )
        logger.info("Loan %s updated: %s", loan.loan_number, ", ".join(sorted(changes)))
        return loan

    def delete(self, loan_id: str, deleted_by: Optional[str] = None) -> None:
        """
        Physically delete a requested loan

        Raises:
            NotFoundError: loan does not exist in this organization
            StateError: loan is no longer requested
        """
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            if loan.status != LoanStatus.REQUESTED:
                raise StateError(f"Loan {loan.loan_number} is {loan.status.value}; only requested loans can be deleted")
            self.storage.delete(LOANS_TABLE, loan.id)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_DELETED,
            entity_type="loan",
            entity_id=loan.id,
            user_id=deleted_by,
            metadata={"loan_number": loan.loan_number}
        )
        logger.info("Loan %s deleted", loan.loan_number)

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        data = self.storage.load(LOANS_TABLE, loan_id)
        if data:
            return Loan.from_dict(data)
        return None

    def require_loan(self, loan_id: str) -> Loan:
        """Get loan by ID or raise NotFoundError"""
        loan = self.get_loan(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan

    def list_loans(
        self,
        status: Optional[LoanStatus] = None,
        employment_id: Optional[str] = None,
        loan_type: Optional[LoanType] = None
    ) -> List[Loan]:
        """List the organization's loans, newest first"""
        filters = {}
        if status is not None:
            filters['status'] = status.value
        if employment_id is not None:
            filters['employment_id'] = employment_id
        if loan_type is not None:
            filters['loan_type'] = loan_type.value

        loans = [Loan.from_dict(data) for data in self.storage.find(LOANS_TABLE, filters)]
        loans.sort(key=lambda loan: loan.created_at, reverse=True)
        return loans
