"""
Employment Directory Module

The employee directory is an external collaborator. The ledger only needs to
turn an employment id into a display name and employee code when listing
loans; ledger math never depends on it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .models import Loan


UNASSIGNED_NAME = "Unassigned"


@dataclass(frozen=True)
class EmployeeRef:
    """Named view of a directory entry"""
    employment_id: str
    name: str
    code: Optional[str] = None
    organization_id: Optional[int] = None
    is_active: bool = True


@dataclass(frozen=True)
class LoanListing:
    """A loan paired with its employee's display fields"""
    loan: Loan
    employee_name: str
    employee_code: Optional[str]


class EmploymentDirectory(ABC):
    """Read-only lookup of employments"""

    @abstractmethod
    def resolve(self, employment_id: str) -> Optional[EmployeeRef]:
        """Resolve an employment id, or None when unknown"""
        pass

    @abstractmethod
    def list_active(self, organization_id: int) -> List[EmployeeRef]:
        """Active employments of an organization, for loan request pickers"""
        pass


class InMemoryEmploymentDirectory(EmploymentDirectory):
    """Directory backed by a dictionary, used by tests and local runs"""

    def __init__(self, employees: Iterable[EmployeeRef] = ()):
        self._employees: Dict[str, EmployeeRef] = {}
        for employee in employees:
            self.add(employee)

    def add(self, employee: EmployeeRef) -> None:
        self._employees[employee.employment_id] = employee

    def resolve(self, employment_id: str) -> Optional[EmployeeRef]:
        return self._employees.get(employment_id)

    def list_active(self, organization_id: int) -> List[EmployeeRef]:
        employees = [e for e in self._employees.values()
                     if e.is_active and e.organization_id == organization_id]
        return sorted(employees, key=lambda e: e.name)


def enrich_loans(loans: Iterable[Loan], directory: Optional[EmploymentDirectory]) -> List[LoanListing]:
    """Attach employee name and code to each loan"""
    listings = []
    for loan in loans:
        employee = directory.resolve(loan.employment_id) if directory else None
        listings.append(LoanListing(
            loan=loan,
            employee_name=employee.name if employee else UNASSIGNED_NAME,
            employee_code=employee.code if employee else None,
        ))
    return listings
