"""
Notification Sink Module

The workflow engine enqueues user-facing alerts through a NotificationSink.
Delivery (email, push) happens elsewhere; this module provides the enqueue
contract, an in-app sink backed by storage, and a webhook sink that forwards
notifications to an external notification service.
"""

from datetime import datetime, timezone, timedelta
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Iterable
from enum import Enum
from abc import ABC, abstractmethod
import logging
import uuid

import requests

from .storage import StorageInterface, StorageRecord
from .errors import NotFoundError


logger = logging.getLogger(__name__)


class NotificationPriority(Enum):
    """Notification priority levels"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class NotificationType(Enum):
    """Types of notifications"""
    # Budget notifications
    BUDGET_SUBMITTED = "BUDGET_SUBMITTED"
    BUDGET_APPROVED = "BUDGET_APPROVED"
    BUDGET_REJECTED = "BUDGET_REJECTED"

    # OTB notifications
    OTB_SUBMITTED = "OTB_SUBMITTED"
    OTB_APPROVED = "OTB_APPROVED"
    OTB_REJECTED = "OTB_REJECTED"

    # SKU notifications
    SKU_APPROVED = "SKU_APPROVED"
    SKU_REJECTED = "SKU_REJECTED"

    # Workflow notifications
    WORKFLOW_ASSIGNED = "WORKFLOW_ASSIGNED"
    WORKFLOW_REMINDER = "WORKFLOW_REMINDER"
    SLA_WARNING = "SLA_WARNING"
    SLA_BREACHED = "SLA_BREACHED"

    SYSTEM_ALERT = "SYSTEM_ALERT"


@dataclass
class Notification(StorageRecord):
    """Individual notification for one user"""
    user_id: str
    notification_type: NotificationType
    priority: NotificationPriority
    title: str
    message: str
    reference_url: Optional[str] = None
    reference_id: Optional[str] = None
    reference_type: Optional[str] = None
    is_read: bool = False
    read_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        data['notification_type'] = NotificationType(data['notification_type'])
        data['priority'] = NotificationPriority(data['priority'])
        if data.get('read_at'):
            data['read_at'] = datetime.fromisoformat(data['read_at'])
        return super().from_dict(data)


class NotificationSink(ABC):
    """Where the workflow engine enqueues notifications"""

    @abstractmethod
    def notify(self, user_ids: Iterable[str], notification_type: NotificationType,
               title: str, message: str, reference_url: Optional[str],
               priority: NotificationPriority,
               reference_id: Optional[str] = None,
               reference_type: Optional[str] = None) -> List[Notification]:
        """Enqueue one notification per user. Errors propagate to the caller."""
        pass

    @staticmethod
    def build(user_id: str, notification_type: NotificationType, title: str,
              message: str, reference_url: Optional[str], priority: NotificationPriority,
              reference_id: Optional[str] = None,
              reference_type: Optional[str] = None) -> Notification:
        now = datetime.now(timezone.utc)
        return Notification(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            notification_type=notification_type,
            priority=priority,
            title=title,
            message=message,
            reference_url=reference_url,
            reference_id=reference_id,
            reference_type=reference_type
        )


class InAppNotificationSink(NotificationSink):
    """Stores notifications for in-app display"""

    def __init__(self, storage: StorageInterface, table: str = "notifications"):
        self.storage = storage
        self.table = table

    def notify(self, user_ids, notification_type, title, message, reference_url,
               priority, reference_id=None, reference_type=None):
        created = []
        for user_id in user_ids:
            notification = self.build(user_id, notification_type, title, message,
                                      reference_url, priority, reference_id, reference_type)
            self.storage.save(self.table, notification.id, notification.to_dict())
            created.append(notification)

        if created:
            logger.debug(f"Enqueued {len(created)} {notification_type.value} notification(s)")
        return created

    def get_notification(self, notification_id: str) -> Optional[Notification]:
        data = self.storage.load(self.table, notification_id)
        return Notification.from_dict(data) if data else None

    def get_user_notifications(self, user_id: str, unread_only: bool = False,
                               limit: int = 20, offset: int = 0) -> Dict[str, Any]:
        """
        Page through a user's notifications, newest first.

        Returns a dict with ``notifications``, ``unread_count`` and ``has_more``.
        """
        rows = self.storage.find(self.table, {'user_id': user_id})
        unread_count = sum(1 for row in rows if not row.get('is_read'))
        if unread_only:
            rows = [row for row in rows if not row.get('is_read')]

        rows.sort(key=lambda row: row['created_at'], reverse=True)
        page = [Notification.from_dict(row) for row in rows[offset:offset + limit]]

        return {
            'notifications': page,
            'unread_count': unread_count,
            'has_more': len(page) == limit
        }

    def mark_as_read(self, notification_id: str) -> Notification:
        now = datetime.now(timezone.utc).isoformat()
        if not self.storage.compare_and_set(self.table, notification_id, {},
                                            {'is_read': True, 'read_at': now, 'updated_at': now}):
            raise NotFoundError(f"Notification {notification_id} not found")
        return self.get_notification(notification_id)

    def mark_all_as_read(self, user_id: str) -> int:
        """Mark every unread notification of a user as read; returns how many changed"""
        now = datetime.now(timezone.utc).isoformat()
        changed = 0
        for row in self.storage.find(self.table, {'user_id': user_id, 'is_read': False}):
            if self.storage.compare_and_set(self.table, row['id'], {'is_read': False},
                                            {'is_read': True, 'read_at': now, 'updated_at': now}):
                changed += 1
        return changed

    def delete_old_notifications(self, days_old: int = 30) -> int:
        """Delete read notifications older than ``days_old`` days"""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_old)
        deleted = 0
        for row in self.storage.find(self.table, {'is_read': True}):
            if datetime.fromisoformat(row['created_at']) < cutoff:
                if self.storage.delete(self.table, row['id']):
                    deleted += 1
        return deleted


class WebhookNotificationSink(NotificationSink):
    """Forwards each notification to an external notification service"""

    def __init__(self, url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def notify(self, user_ids, notification_type, title, message, reference_url,
               priority, reference_id=None, reference_type=None):
        sent = []
        for user_id in user_ids:
            notification = self.build(user_id, notification_type, title, message,
                                      reference_url, priority, reference_id, reference_type)
            payload = {
                "notification_id": notification.id,
                "user_id": notification.user_id,
                "type": notification.notification_type.value,
                "priority": notification.priority.value,
                "title": notification.title,
                "message": notification.message,
                "reference_id": notification.reference_id,
                "reference_type": notification.reference_type,
                "reference_url": notification.reference_url,
                "timestamp": notification.created_at.isoformat()
            }

            response = self.session.post(
                self.url,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"}
            )
            response.raise_for_status()
            sent.append(notification)
        return sent


_OUTCOME_TYPES = {
    ('budget', 'approved'): NotificationType.BUDGET_APPROVED,
    ('budget', 'rejected'): NotificationType.BUDGET_REJECTED,
    ('otb', 'approved'): NotificationType.OTB_APPROVED,
    ('otb', 'rejected'): NotificationType.OTB_REJECTED,
    ('sku', 'approved'): NotificationType.SKU_APPROVED,
    ('sku', 'rejected'): NotificationType.SKU_REJECTED,
}

_ENTITY_URLS = {
    'budget': '/budget/{reference_id}',
    'otb': '/otb-analysis/{reference_id}',
    'sku': '/sku-proposal/{reference_id}',
}


def outcome_notification_type(reference_type: str, outcome: str) -> NotificationType:
    """Notification type for a terminal outcome on an entity"""
    return _OUTCOME_TYPES.get((reference_type, outcome), NotificationType.SYSTEM_ALERT)


def entity_url(reference_type: str, reference_id: str) -> str:
    """UI path of the guarded entity"""
    template = _ENTITY_URLS.get(reference_type)
    return template.format(reference_id=reference_id) if template else '/'


def approval_url(workflow_id: str) -> str:
    return f"/approvals/{workflow_id}"
