"""
Organization Scoping Module

Every loan, installment and payment belongs to exactly one organization.
OrganizationScopedStorage wraps any StorageInterface, stamps the organization
id on every write and hides records of other organizations on every read.

The organization is an explicit constructor argument, never ambient state, so
each request builds its own scoped view.
"""

from typing import Dict, List, Optional, Any

from .storage import StorageInterface
from .errors import ValidationError


ORGANIZATION_KEY = "organization_id"


class OrganizationScopedStorage(StorageInterface):
    """Storage wrapper that isolates one organization's records"""

    def __init__(self, inner_storage: StorageInterface, organization_id: int):
        if organization_id is None:
            raise ValidationError("organization_id is required")
        self.inner = inner_storage
        self.organization_id = organization_id

    def _stamp(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = data.copy()
        data[ORGANIZATION_KEY] = self.organization_id
        return data

    def _visible(self, data: Optional[Dict[str, Any]]) -> bool:
        return data is not None and data.get(ORGANIZATION_KEY) == self.organization_id

    def save(self, table: str, record_id: str, data: Dict[str, Any],
             expected_version: Optional[int] = None) -> int:
        """Save a record stamped with the organization"""
        existing = self.inner.load(table, record_id)
        if existing is not None and not self._visible(existing):
            # Never overwrite another organization's record
            raise ValidationError(f"Record {record_id} belongs to another organization")
        return self.inner.save(table, record_id, self._stamp(data), expected_version)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record if it belongs to this organization"""
        result = self.inner.load(table, record_id)
        if not self._visible(result):
            return None
        return result

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load every record of this organization"""
        return self.find(table, {})

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record after verifying ownership"""
        if not self._visible(self.inner.load(table, record_id)):
            return False
        return self.inner.delete(table, record_id)

    def exists(self, table: str, record_id: str) -> bool:
        """Check if record exists and belongs to this organization"""
        return self._visible(self.inner.load(table, record_id))

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records with the organization filter added"""
        return self.inner.find(table, self._stamp(filters))

    def insert_many_if_absent(self, table: str, records: List[Dict[str, Any]],
                              guard_key: str) -> bool:
        """Insert a guarded batch; the guard key is namespaced per organization"""
        return self.inner.insert_many_if_absent(
            table,
            [self._stamp(record) for record in records],
            f"org:{self.organization_id}:{guard_key}"
        )

    def count(self, table: str) -> int:
        """Count records of this organization"""
        return len(self.find(table, {}))

    def clear_table(self, table: str) -> None:
        """Clearing is an administrative operation on the unscoped store"""
        raise PermissionError("Cannot clear a table through an organization scope")

    def close(self) -> None:
        """Close underlying storage"""
        self.inner.close()

    def begin_transaction(self) -> None:
        self.inner.begin_transaction()

    def commit(self) -> None:
        self.inner.commit()

    def rollback(self) -> None:
        self.inner.rollback()
