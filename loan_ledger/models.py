"""
Loan Ledger Records

Loan, Installment and LoanPayment records plus the request objects accepted
by the origination manager. Amounts are Money, rates and percentages are
Decimal, and every record serializes to a flat JSON-safe dictionary.
"""

from decimal import Decimal
from datetime import datetime, date
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional, Tuple
from enum import Enum

from .currency import Money, Currency
from .storage import StorageRecord


class LoanStatus(Enum):
    """Loan lifecycle states"""
    REQUESTED = "requested"       # Draft, terms still editable
    ACTIVE = "active"             # Approved, schedule generated, being repaid
    PAID = "paid"                 # Balance reached zero
    CANCELLED = "cancelled"       # Rejected or cancelled before approval
    DEFAULTED = "defaulted"       # Externally flagged as in default
    WRITTEN_OFF = "written_off"   # Externally written off as uncollectible

    @property
    def has_schedule(self) -> bool:
        """States in which the installment rows exist"""
        return self in (LoanStatus.ACTIVE, LoanStatus.PAID,
                        LoanStatus.DEFAULTED, LoanStatus.WRITTEN_OFF)


class InstallmentStatus(Enum):
    """Installment payment states; OVERDUE is derived, never stored"""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class LoanType(Enum):
    """Purpose of an employee loan"""
    GENERAL = "general"
    ADVANCE = "advance"
    EMERGENCY = "emergency"
    EDUCATION = "education"
    HOUSING = "housing"
    VEHICLE = "vehicle"
    CALAMITY = "calamity"


class PaymentSource(Enum):
    """Where a payment was registered from"""
    MANUAL = "manual"
    PAYROLL = "payroll"


class _LedgerRecord(StorageRecord):
    """
    Serialization shared by ledger records. Subclasses list which fields hold
    Money, Decimal, dates, datetimes and enums.
    """
    MONEY_FIELDS: Tuple[str, ...] = ()
    DECIMAL_FIELDS: Tuple[str, ...] = ()
    DATE_FIELDS: Tuple[str, ...] = ()
    DATETIME_FIELDS: Tuple[str, ...] = ()
    ENUM_FIELDS: Dict[str, type] = {}

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for f in fields(self):
            if f.name == 'version':
                continue
            value = getattr(self, f.name)
            if isinstance(value, Money):
                value = str(value.amount)
            elif isinstance(value, Currency):
                value = value.code
            elif isinstance(value, Enum):
                value = value.value
            elif isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, (datetime, date)):
                value = value.isoformat()
            result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        data = dict(data)
        currency = Currency.from_code(data['currency'])
        data['currency'] = currency

        for name in cls.MONEY_FIELDS:
            if data.get(name) is not None:
                data[name] = Money(Decimal(data[name]), currency)
        for name in cls.DECIMAL_FIELDS:
            if data.get(name) is not None:
                data[name] = Decimal(data[name])
        for name in cls.DATE_FIELDS:
            if isinstance(data.get(name), str):
                data[name] = date.fromisoformat(data[name])
        for name in cls.DATETIME_FIELDS:
            if isinstance(data.get(name), str):
                data[name] = datetime.fromisoformat(data[name])
        for name, enum_type in cls.ENUM_FIELDS.items():
            if data.get(name) is not None:
                data[name] = enum_type(data[name])

        return super().from_dict(data)


@dataclass
class Loan(_LedgerRecord):
    """Employee loan with its terms, derived totals and ledger state"""
    organization_id: int
    employment_id: str
    loan_number: str
    currency: Currency
    principal: Money
    interest_rate: Decimal              # Annual percentage, e.g. 24 for 24%
    installments_total: int
    total_interest: Money
    total_amount: Money
    installment_amount: Money
    balance: Money
    first_payment_date: date
    loan_type: LoanType = LoanType.GENERAL
    description: Optional[str] = None
    status: LoanStatus = LoanStatus.REQUESTED
    installments_paid: int = 0

    requested_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    disbursement_date: Optional[date] = None
    last_payment_date: Optional[date] = None

    auto_deduct: bool = True
    max_deduction_pct: Decimal = Decimal('30')
    notes: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    version: int = 0

    MONEY_FIELDS = ('principal', 'total_interest', 'total_amount', 'installment_amount', 'balance')
    DECIMAL_FIELDS = ('interest_rate', 'max_deduction_pct')
    DATE_FIELDS = ('first_payment_date', 'disbursement_date', 'last_payment_date')
    DATETIME_FIELDS = ('requested_at', 'approved_at', 'rejected_at')
    ENUM_FIELDS = {'status': LoanStatus, 'loan_type': LoanType}

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    @property
    def amount_repaid(self) -> Money:
        """Total amount repaid so far, derived from the balance"""
        return self.total_amount - self.balance

    @property
    def progress_pct(self) -> Decimal:
        """Share of the total amount repaid, 0-100"""
        if self.total_amount.is_zero():
            return Decimal('0')
        return (self.amount_repaid.amount / self.total_amount.amount * 100).quantize(Decimal('0.01'))


@dataclass
class Installment(_LedgerRecord):
    """One scheduled repayment unit of a loan"""
    loan_id: str
    installment_number: int
    due_date: date
    currency: Currency
    amount: Money
    principal_portion: Money
    interest_portion: Money
    status: InstallmentStatus = InstallmentStatus.PENDING
    amount_paid: Money = None
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    payroll_run_id: Optional[str] = None
    version: int = 0

    MONEY_FIELDS = ('amount', 'principal_portion', 'interest_portion', 'amount_paid')
    DATE_FIELDS = ('due_date',)
    DATETIME_FIELDS = ('paid_at',)
    ENUM_FIELDS = {'status': InstallmentStatus}

    def __post_init__(self):
        if self.amount_paid is None:
            self.amount_paid = Money.zero(self.currency)

    @property
    def remaining(self) -> Money:
        """Amount still owed on this installment, never negative"""
        return (self.amount - self.amount_paid).max_zero()

    @property
    def is_paid(self) -> bool:
        return self.status == InstallmentStatus.PAID

    def is_overdue(self, as_of: date) -> bool:
        """Unpaid and past its due date"""
        return not self.is_paid and self.due_date < as_of

    def effective_status(self, as_of: date) -> InstallmentStatus:
        """Stored status, or OVERDUE when unpaid past the due date"""
        if self.is_overdue(as_of):
            return InstallmentStatus.OVERDUE
        return self.status


@dataclass
class LoanPayment(_LedgerRecord):
    """Record of one registered payment"""
    loan_id: str
    installment_id: str
    installment_number: int
    currency: Currency
    amount: Money
    balance_after: Money
    payment_date: date
    source: PaymentSource = PaymentSource.MANUAL
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None
    payroll_run_id: Optional[str] = None

    MONEY_FIELDS = ('amount', 'balance_after')
    DATE_FIELDS = ('payment_date',)
    ENUM_FIELDS = {'source': PaymentSource}


@dataclass
class CreateLoanRequest:
    """Input for originating a loan"""
    employment_id: str
    principal: Any                      # Decimal, int or numeric string
    installments_total: int
    first_payment_date: Optional[date]
    currency: Optional[str] = None
    interest_rate: Any = Decimal('0')
    loan_type: Optional[str] = None
    description: Optional[str] = None
    auto_deduct: Optional[bool] = None
    max_deduction_pct: Any = None
    notes: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UpdateLoanRequest:
    """Partial update of a requested loan; None means unchanged"""
    loan_type: Optional[str] = None
    description: Optional[str] = None
    currency: Optional[str] = None
    principal: Any = None
    interest_rate: Any = None
    installments_total: Optional[int] = None
    first_payment_date: Optional[date] = None
    auto_deduct: Optional[bool] = None
    max_deduction_pct: Any = None
    notes: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)
                if getattr(self, f.name) is not None}

    @property
    def changes_terms(self) -> bool:
        """Whether derived totals must be recomputed"""
        terms = ('currency', 'principal', 'interest_rate', 'installments_total')
        return any(name in self.changes() for name in terms)


@dataclass
class LoanStats:
    """
    Portfolio KPIs for one organization

    ``total_disbursed`` and ``total_balance`` add amounts across currencies and
    are only meaningful for a single-currency portfolio. The per-currency
    breakdowns, keyed by ISO code, are the figures to use otherwise.
    """
    total: int = 0
    active: int = 0
    pending: int = 0
    paid: int = 0
    total_disbursed: Decimal = Decimal('0')
    total_balance: Decimal = Decimal('0')
    overdue_installments: int = 0
    disbursed_by_currency: Dict[str, Decimal] = field(default_factory=dict)
    balance_by_currency: Dict[str, Decimal] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'active': self.active,
            'pending': self.pending,
            'paid': self.paid,
            'total_disbursed': str(self.total_disbursed),
            'total_balance': str(self.total_balance),
            'overdue_installments': self.overdue_installments,
            'disbursed_by_currency': {code: str(amount) for code, amount in self.disbursed_by_currency.items()},
            'balance_by_currency': {code: str(amount) for code, amount in self.balance_by_currency.items()},
        }
