"""
Employee Loan Ledger

Organization-scoped employee loans with a flat-interest amortization schedule,
installment-level payment application and payroll auto-deduction support.
All monetary math uses Decimal.
"""

__version__ = "1.0.0"
