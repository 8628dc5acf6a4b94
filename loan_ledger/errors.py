"""
Error Taxonomy Module

Every failure raised by the ledger derives from LoanLedgerError so that API
and payroll callers can map the error kind to a response.
"""


class LoanLedgerError(Exception):
    """Base exception for all ledger errors"""

    kind = "ledger_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LoanLedgerError, ValueError):
    """Malformed input, raised before any persistence call"""

    kind = "validation_error"


class StateError(LoanLedgerError):
    """Operation attempted from a disallowed loan status"""

    kind = "state_error"


class NotFoundError(LoanLedgerError):
    """Loan or installment does not exist within the organization scope"""

    kind = "not_found"


class ConcurrencyConflict(LoanLedgerError):
    """A conditional write found a newer version than the one it read"""

    kind = "concurrency_conflict"


class PersistenceError(LoanLedgerError):
    """Underlying store failure"""

    kind = "persistence_error"
