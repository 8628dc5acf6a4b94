"""
Pydantic schemas for API requests and responses
"""

from datetime import date
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..currency import Money
from ..directory import LoanListing
from ..models import (
    CreateLoanRequest, UpdateLoanRequest, Installment, Loan, LoanPayment
)
from ..payroll import Deduction


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (COP, USD, etc.)")

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


def _money(money: Optional[Money]) -> Optional[Dict[str, str]]:
    return MoneyModel.from_money(money).model_dump() if money is not None else None


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


# Loan schemas
class CreateLoanBody(BaseModel):
    employment_id: str
    principal: str = Field(..., description="Decimal amount as string")
    installments_total: int
    first_payment_date: date
    currency: Optional[str] = None
    interest_rate: str = Field("0", description="Annual percentage as string")
    loan_type: Optional[str] = None
    description: Optional[str] = None
    auto_deduct: Optional[bool] = None
    max_deduction_pct: Optional[str] = None
    notes: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_request(self) -> CreateLoanRequest:
        return CreateLoanRequest(**self.model_dump())


class UpdateLoanBody(BaseModel):
    loan_type: Optional[str] = None
    description: Optional[str] = None
    currency: Optional[str] = None
    principal: Optional[str] = None
    interest_rate: Optional[str] = None
    installments_total: Optional[int] = None
    first_payment_date: Optional[date] = None
    auto_deduct: Optional[bool] = None
    max_deduction_pct: Optional[str] = None
    notes: Optional[str] = None

    def to_request(self) -> UpdateLoanRequest:
        return UpdateLoanRequest(**self.model_dump(exclude_unset=True))


class ApproveLoanBody(BaseModel):
    approver_id: str


class RejectLoanBody(BaseModel):
    approver_id: str
    reason: str


class StatusOverrideBody(BaseModel):
    reason: Optional[str] = None


# Payment schemas
class RegisterPaymentBody(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None


# Payroll schemas
class PayrollRunBody(BaseModel):
    period_start: date
    period_end: date
    gross_pay: Dict[str, str] = Field(default_factory=dict,
                                      description="Gross pay per employment id, as strings")


# Response payloads
def loan_payload(loan: Loan, listing: Optional[LoanListing] = None) -> Dict[str, Any]:
    payload = {
        "id": loan.id,
        "loan_number": loan.loan_number,
        "employment_id": loan.employment_id,
        "loan_type": loan.loan_type.value,
        "description": loan.description,
        "status": loan.status.value,
        "principal": _money(loan.principal),
        "interest_rate": str(loan.interest_rate),
        "installments_total": loan.installments_total,
        "installments_paid": loan.installments_paid,
        "total_interest": _money(loan.total_interest),
        "total_amount": _money(loan.total_amount),
        "installment_amount": _money(loan.installment_amount),
        "balance": _money(loan.balance),
        "progress_pct": str(loan.progress_pct),
        "first_payment_date": _iso(loan.first_payment_date),
        "disbursement_date": _iso(loan.disbursement_date),
        "last_payment_date": _iso(loan.last_payment_date),
        "requested_at": _iso(loan.requested_at),
        "approved_by": loan.approved_by,
        "approved_at": _iso(loan.approved_at),
        "rejected_by": loan.rejected_by,
        "rejected_at": _iso(loan.rejected_at),
        "rejection_reason": loan.rejection_reason,
        "auto_deduct": loan.auto_deduct,
        "max_deduction_pct": str(loan.max_deduction_pct),
        "notes": loan.notes,
        "metadata": loan.metadata,
    }
    if listing is not None:
        payload["employee_name"] = listing.employee_name
        payload["employee_code"] = listing.employee_code
    return payload


def installment_payload(installment: Installment, as_of: Optional[date] = None) -> Dict[str, Any]:
    as_of = as_of or date.today()
    return {
        "id": installment.id,
        "loan_id": installment.loan_id,
        "installment_number": installment.installment_number,
        "due_date": installment.due_date.isoformat(),
        "amount": _money(installment.amount),
        "principal_portion": _money(installment.principal_portion),
        "interest_portion": _money(installment.interest_portion),
        "amount_paid": _money(installment.amount_paid),
        "remaining": _money(installment.remaining),
        "status": installment.effective_status(as_of).value,
        "paid_at": _iso(installment.paid_at),
        "notes": installment.notes,
        "payroll_run_id": installment.payroll_run_id,
    }


def payment_payload(payment: LoanPayment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "loan_id": payment.loan_id,
        "installment_id": payment.installment_id,
        "installment_number": payment.installment_number,
        "amount": _money(payment.amount),
        "balance_after": _money(payment.balance_after),
        "payment_date": payment.payment_date.isoformat(),
        "source": payment.source.value,
        "notes": payment.notes,
        "idempotency_key": payment.idempotency_key,
        "payroll_run_id": payment.payroll_run_id,
    }


def deductions_payload(deductions: List[Deduction]) -> List[Dict[str, Any]]:
    return [deduction.to_dict() for deduction in deductions]
