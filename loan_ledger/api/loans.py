"""
Loan, installment, payroll and catalog endpoints

Ledger errors are not caught here; the application's exception handler maps
them to status codes.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from .dependencies import get_ledger, get_user_id
from .schemas import (
    CreateLoanBody, UpdateLoanBody, ApproveLoanBody, RejectLoanBody,
    StatusOverrideBody, RegisterPaymentBody, PayrollRunBody,
    loan_payload, installment_payload, payment_payload, deductions_payload
)
from ..currency import Currency
from ..errors import ValidationError
from ..models import LoanStatus, LoanType
from ..service import LoanLedger


router = APIRouter()
installments_router = APIRouter()
payroll_router = APIRouter()
catalog_router = APIRouter()


def _parse_enum(enum_type, value: Optional[str], name: str):
    if value is None:
        return None
    try:
        return enum_type(value)
    except ValueError:
        raise ValidationError(f"Unknown {name} '{value}'")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    body: CreateLoanBody,
    ledger: LoanLedger = Depends(get_ledger),
    user_id: Optional[str] = Depends(get_user_id)
):
    """Request a new employee loan"""
    loan = ledger.create_loan(body.to_request(), requested_by=user_id)
    return loan_payload(loan)


@router.get("")
async def list_loans(
    status_filter: Optional[str] = Query(None, alias="status"),
    employment_id: Optional[str] = None,
    loan_type: Optional[str] = None,
    ledger: LoanLedger = Depends(get_ledger)
):
    """List loans newest first, with employee name and code"""
    listings = ledger.list_loans(
        status=_parse_enum(LoanStatus, status_filter, "status"),
        employment_id=employment_id,
        loan_type=_parse_enum(LoanType, loan_type, "loan type")
    )
    return {"loans": [loan_payload(listing.loan, listing) for listing in listings]}


@router.get("/stats")
async def get_stats(
    as_of: Optional[date] = None,
    ledger: LoanLedger = Depends(get_ledger)
):
    """Portfolio KPIs"""
    return ledger.get_stats(as_of).to_dict()


@router.get("/{loan_id}")
async def get_loan(loan_id: str, ledger: LoanLedger = Depends(get_ledger)):
    return loan_payload(ledger.get_loan(loan_id))


@router.patch("/{loan_id}")
async def update_loan(
    loan_id: str,
    body: UpdateLoanBody,
    ledger: LoanLedger = Depends(get_ledger),
    user_id: Optional[str] = Depends(get_user_id)
):
    """Edit a requested loan"""
    loan = ledger.update_loan(loan_id, body.to_request(), updated_by=user_id)
    return loan_payload(loan)


@router.delete("/{loan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_loan(
    loan_id: str,
    ledger: LoanLedger = Depends(get_ledger),
    user_id: Optional[str] = Depends(get_user_id)
):
    """Delete a requested loan"""
    ledger.delete_loan(loan_id, deleted_by=user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{loan_id}/approve")
async def approve_loan(
    loan_id: str,
    body: ApproveLoanBody,
    ledger: LoanLedger = Depends(get_ledger)
):
    """Approve a requested loan and generate its installments"""
    return loan_payload(ledger.approve_loan(loan_id, body.approver_id))


@router.post("/{loan_id}/reject")
async def reject_loan(
    loan_id: str,
    body: RejectLoanBody,
    ledger: LoanLedger = Depends(get_ledger)
):
    return loan_payload(ledger.reject_loan(loan_id, body.approver_id, body.reason))


@router.post("/{loan_id}/cancel")
async def cancel_loan(
    loan_id: str,
    ledger: LoanLedger = Depends(get_ledger),
    user_id: Optional[str] = Depends(get_user_id)
):
    return loan_payload(ledger.cancel_loan(loan_id, cancelled_by=user_id))


@router.post("/{loan_id}/default")
async def mark_defaulted(
    loan_id: str,
    body: StatusOverrideBody,
    ledger: LoanLedger = Depends(get_ledger),
    user_id: Optional[str] = Depends(get_user_id)
):
    return loan_payload(ledger.mark_defaulted(loan_id, body.reason, marked_by=user_id))


@router.post("/{loan_id}/write-off")
async def write_off_loan(
    loan_id: str,
    body: StatusOverrideBody,
    ledger: LoanLedger = Depends(get_ledger),
    user_id: Optional[str] = Depends(get_user_id)
):
    return loan_payload(ledger.write_off(loan_id, body.reason, written_off_by=user_id))


@router.get("/{loan_id}/installments")
async def list_installments(loan_id: str, ledger: LoanLedger = Depends(get_ledger)):
    """Installments ordered by number, with overdue status derived for today"""
    installments = ledger.list_installments(loan_id)
    return {"installments": [installment_payload(i) for i in installments]}


@router.get("/{loan_id}/payments")
async def list_payments(loan_id: str, ledger: LoanLedger = Depends(get_ledger)):
    payments = ledger.list_payments(loan_id)
    return {"payments": [payment_payload(p) for p in payments]}


@installments_router.post("/{installment_id}/payments")
async def register_payment(
    installment_id: str,
    body: RegisterPaymentBody,
    ledger: LoanLedger = Depends(get_ledger)
):
    """Register a payment against one installment"""
    installment = ledger.register_payment(
        installment_id, body.amount, notes=body.notes, idempotency_key=body.idempotency_key
    )
    loan = ledger.get_loan(installment.loan_id)
    return {
        "installment": installment_payload(installment),
        "loan": loan_payload(loan)
    }


@payroll_router.get("/deductions")
async def find_deductions(
    period_start: date,
    period_end: date,
    ledger: LoanLedger = Depends(get_ledger)
):
    """Installments the payroll engine should deduct in a pay period"""
    deductions = ledger.find_deductions(period_start, period_end)
    return {"deductions": deductions_payload(deductions)}


@payroll_router.post("/runs/{run_id}")
async def post_payroll_run(
    run_id: str,
    body: PayrollRunBody,
    ledger: LoanLedger = Depends(get_ledger)
):
    """Compute and post the deductions of a payroll run; posting a run twice is a no-op"""
    deductions, installments = ledger.run_payroll(run_id, body.period_start, body.period_end,
                                                  body.gross_pay)
    return {
        "run_id": run_id,
        "deductions": deductions_payload(deductions),
        "installments": [installment_payload(i) for i in installments]
    }


@catalog_router.get("")
async def get_catalog(ledger: LoanLedger = Depends(get_ledger)):
    """Loan types, currencies, statuses and active employees for request forms"""
    return {
        "loan_types": ledger.loan_types(),
        "currencies": [currency.code for currency in Currency],
        "statuses": [loan_status.value for loan_status in LoanStatus],
        "employees": [
            {"employment_id": e.employment_id, "name": e.name, "code": e.code}
            for e in ledger.active_employees()
        ]
    }
