"""
Audit Trail Module

Append-only record of loan state changes. Each event stores the SHA-256 digest
of its predecessor, so editing or removing an earlier event breaks every
digest after it. The chain lives in the same store as the loans and, behind
an organization-scoped store, each organization keeps a chain of its own.
"""

import hashlib
import json
import uuid
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal

from .storage import StorageInterface, StorageRecord


AUDIT_TABLE = "audit_events"


class AuditEventType(Enum):
    """State changes recorded in the trail"""
    LOAN_REQUESTED = "loan_requested"
    LOAN_UPDATED = "loan_updated"
    LOAN_DELETED = "loan_deleted"
    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"
    LOAN_CANCELLED = "loan_cancelled"
    LOAN_DEFAULTED = "loan_defaulted"
    LOAN_WRITTEN_OFF = "loan_written_off"
    LOAN_PAID_OFF = "loan_paid_off"
    SCHEDULE_GENERATED = "schedule_generated"
    PAYMENT_REGISTERED = "payment_registered"


def _plain(value):
    """Reduce metadata values to JSON types so digests are reproducible"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    event_type: AuditEventType
    entity_type: str
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None
    sequence: int = 0  # position in the chain, starting at 0

    def __post_init__(self):
        self.metadata = _plain(self.metadata or {})

    def digest(self) -> str:
        """SHA-256 over every field except ``current_hash`` and ``updated_at``"""
        payload = {key: value for key, value in self.to_dict().items()
                   if key not in ('current_hash', 'updated_at')}
        canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(canonical.encode('utf-8')).hexdigest()

    def is_intact(self) -> bool:
        return self.current_hash == self.digest()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['event_type'] = AuditEventType(data['event_type'])
        return super().from_dict(data)


class AuditTrail:
    """
    Hash-chained audit trail over a storage backend
    """

    def __init__(self, storage: StorageInterface, table_name: str = AUDIT_TABLE,
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled

    def _chain(self) -> List[Dict[str, Any]]:
        records = self.storage.find(self.table_name, {})
        records.sort(key=lambda record: record.get('sequence', 0))
        return records

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Append an event to the chain

        Reading the chain head and appending happen in one storage
        transaction, so concurrent writers cannot fork the chain. Inside an
        enclosing transaction the event is rolled back together with the
        change it describes.

        Args:
            event_type: What happened
            entity_type: Kind of entity, e.g. "loan"
            entity_id: ID of the entity
            metadata: Event details; Decimals, enums and datetimes are stringified
            user_id: User who initiated the change, if known

        Returns:
            The stored AuditEvent, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        with self.storage.atomic():
            chain = self._chain()
            head = chain[-1] if chain else None
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=head['current_hash'] if head else "",
                current_hash="",
                metadata=metadata or {},
                user_id=user_id,
                sequence=head['sequence'] + 1 if head else 0
            )
            event.current_hash = event.digest()
            self.storage.save(self.table_name, event.id, event.to_dict(), expected_version=0)
            return event

    def get_events(self) -> List[AuditEvent]:
        """All events in chain order"""
        return [AuditEvent.from_dict(record) for record in self._chain()]

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        return [event for event in self.get_events()
                if event.entity_type == entity_type and event.entity_id == entity_id]

    def verify_integrity(self) -> bool:
        """True when every event is intact and links to the one before it"""
        previous_hash = ""
        for position, event in enumerate(self.get_events()):
            if event.sequence != position or event.previous_hash != previous_hash:
                return False
            if not event.is_intact():
                return False
            previous_hash = event.current_hash
        return True
