"""
Entity Status Projector Module

Applies a workflow's terminal outcome to the business entity it guards.
The engine only signals approved/rejected plus the reference; how that maps
onto a budget, OTB plan or SKU proposal record lives here.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Tuple
import logging

from .storage import StorageInterface
from .errors import NotFoundError


logger = logging.getLogger(__name__)


class EntityStatusProjector(ABC):
    """Receives terminal workflow outcomes"""

    @abstractmethod
    def on_approved(self, reference_type: str, reference_id: str) -> None:
        pass

    @abstractmethod
    def on_rejected(self, reference_type: str, reference_id: str) -> None:
        pass


# reference_type -> (table, stamps rejected_at on rejection)
ENTITY_TABLES: Dict[str, Tuple[str, bool]] = {
    'budget': ('budget_allocations', True),
    'otb': ('otb_plans', False),
    'sku': ('sku_proposals', False),
}


class StorageEntityStatusProjector(EntityStatusProjector):
    """Writes APPROVED/REJECTED onto the entity records in storage"""

    def __init__(self, storage: StorageInterface, tables: Dict[str, Tuple[str, bool]] = None):
        self.storage = storage
        self.tables = tables or ENTITY_TABLES

    def on_approved(self, reference_type: str, reference_id: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self._update(reference_type, reference_id,
                     {'status': 'APPROVED', 'approved_at': now, 'updated_at': now})

    def on_rejected(self, reference_type: str, reference_id: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        _, stamps_rejection = self._table_for(reference_type)
        updates = {'status': 'REJECTED', 'updated_at': now}
        if stamps_rejection:
            updates['rejected_at'] = now
        self._update(reference_type, reference_id, updates)

    def _table_for(self, reference_type: str) -> Tuple[str, bool]:
        if reference_type not in self.tables:
            raise ValueError(f"Unknown reference type: {reference_type}")
        return self.tables[reference_type]

    def _update(self, reference_type: str, reference_id: str, updates: Dict[str, str]) -> None:
        table, _ = self._table_for(reference_type)
        if not self.storage.compare_and_set(table, reference_id, {}, updates):
            raise NotFoundError(f"{reference_type} {reference_id} not found")
        logger.info(f"{reference_type} {reference_id} set to {updates['status']}")
