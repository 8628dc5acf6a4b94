"""
Request-scoped dependencies

The shared store and directory live in one process-wide LedgerSystem; every
request gets its own LoanLedger bound to the organization in the
``X-Organization-Id`` header.
"""

from typing import Optional

from fastapi import Depends, Header

from ..config import LedgerConfig, get_config
from ..directory import EmploymentDirectory, InMemoryEmploymentDirectory
from ..service import LoanLedger, build_storage
from ..storage import StorageInterface


class LedgerSystem:
    """Shared store, directory and configuration of the API process"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        directory: Optional[EmploymentDirectory] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.config = config or get_config()
        self.storage = storage or build_storage(self.config)
        self.directory = directory or InMemoryEmploymentDirectory()

    def ledger_for(self, organization_id: int) -> LoanLedger:
        return LoanLedger.for_organization(self.storage, organization_id,
                                           self.directory, self.config)


# Global system instance, created on first use
ledger_system: Optional[LedgerSystem] = None


def get_ledger_system() -> LedgerSystem:
    """Dependency to get the ledger system instance"""
    global ledger_system
    if ledger_system is None:
        ledger_system = LedgerSystem()
    return ledger_system


def get_organization_id(
    organization_id: int = Header(..., alias="X-Organization-Id")
) -> int:
    return organization_id


def get_user_id(
    user_id: Optional[str] = Header(None, alias="X-User-Id")
) -> Optional[str]:
    return user_id


def get_ledger(
    organization_id: int = Depends(get_organization_id),
    system: LedgerSystem = Depends(get_ledger_system)
) -> LoanLedger:
    """Dependency to get the caller organization's ledger"""
    return system.ledger_for(organization_id)
