"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every workflow state change is logged here.
"""

import hashlib
import json
import threading
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    WORKFLOW_CREATED = "workflow_created"
    WORKFLOW_STEP_ACTIONED = "workflow_step_actioned"
    WORKFLOW_ADVANCED = "workflow_advanced"
    WORKFLOW_APPROVED = "workflow_approved"
    WORKFLOW_REJECTED = "workflow_rejected"
    WORKFLOW_SLA_BREACHED = "workflow_sla_breached"
    WORKFLOW_SLA_WARNING = "workflow_sla_warning"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str  # workflow, workflow_step, budget, otb, sku
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None

    def __post_init__(self):
        if self.metadata:
            self._serialize_metadata()

    def _serialize_metadata(self) -> None:
        """Convert metadata values to JSON-serializable format"""
        def convert_value(value):
            if isinstance(value, datetime):
                return value.isoformat()
            elif isinstance(value, Enum):
                return value.value
            elif isinstance(value, dict):
                return {k: convert_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [convert_value(v) for v in value]
            else:
                return value

        self.metadata = {k: convert_value(v) for k, v in self.metadata.items()}

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }

        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        """Create AuditEvent from dictionary with proper enum deserialization"""
        if isinstance(data['event_type'], str):
            data['event_type'] = AuditEventType(data['event_type'])
        return super().from_dict(data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self._last_hash: Optional[str] = None
        self._lock = threading.Lock()
        self._load_last_hash()

    def _load_last_hash(self) -> None:
        """Load the hash of the most recent audit event"""
        events = self.storage.load_all(self.table_name)
        if events:
            sorted_events = sorted(events, key=lambda x: (x.get('created_at', ''), x.get('sequence', 0)))
            self._last_hash = sorted_events[-1].get('current_hash')

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of user who initiated the action

        Returns:
            Created AuditEvent
        """
        with self._lock:
            now = datetime.now(timezone.utc)

            # Re-load last hash to ensure we have the most recent one
            self._load_last_hash()

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash or "",
                current_hash="",
                user_id=user_id,
                metadata=metadata or {}
            )
            event.current_hash = event.calculate_hash()

            data = event.to_dict()
            # Events logged within the same clock tick keep their chain order
            data['sequence'] = self.storage.count(self.table_name)
            self.storage.save(self.table_name, event.id, data)

            self._last_hash = event.current_hash
            return event

    def _load_events(self) -> List[AuditEvent]:
        rows = sorted(self.storage.load_all(self.table_name),
                      key=lambda x: (x.get('created_at', ''), x.get('sequence', 0)))
        events = []
        for row in rows:
            row.pop('sequence', None)
            events.append(AuditEvent.from_dict(row))
        return events

    def get_events_for_entity(self, entity_type: str, entity_id: str,
                              limit: Optional[int] = None) -> List[AuditEvent]:
        """Get audit events for one entity, oldest first"""
        events = [e for e in self._load_events()
                  if e.entity_type == entity_type and e.entity_id == entity_id]
        if limit:
            events = events[-limit:]
        return events

    def get_all_events(self, event_type: Optional[AuditEventType] = None,
                       limit: Optional[int] = None) -> List[AuditEvent]:
        """Get all audit events, optionally of one type, oldest first"""
        events = self._load_events()
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if limit:
            events = events[-limit:]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self._load_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)
