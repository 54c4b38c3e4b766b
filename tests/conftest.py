"""
Shared fixtures for the approval workflow tests
"""

import pytest
from datetime import datetime, timezone, timedelta
from types import MappingProxyType

from merch_planning.storage import InMemoryStorage, SQLiteStorage
from merch_planning.audit import AuditTrail
from merch_planning.directory import UserDirectory
from merch_planning.definitions import (
    WorkflowDefinition, WorkflowType, StepTemplate, UserRole
)
from merch_planning.entity_status import EntityStatusProjector
from merch_planning.notifications import InAppNotificationSink
from merch_planning.workflows import WorkflowEngine
from merch_planning.sla import SLAMonitor


class FrozenClock:
    """Controllable clock for deadline tests"""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSink(InAppNotificationSink):
    """In-app sink that also keeps every notify() call for assertions"""

    def __init__(self, storage):
        super().__init__(storage)
        self.calls = []

    def notify(self, user_ids, notification_type, title, message, reference_url,
               priority, reference_id=None, reference_type=None):
        user_ids = list(user_ids)
        self.calls.append({
            'user_ids': user_ids,
            'type': notification_type,
            'title': title,
            'message': message,
            'reference_url': reference_url,
            'priority': priority,
            'reference_id': reference_id,
            'reference_type': reference_type
        })
        return super().notify(user_ids, notification_type, title, message, reference_url,
                              priority, reference_id, reference_type)

    def calls_of(self, notification_type):
        return [call for call in self.calls if call['type'] == notification_type]


class RecordingProjector(EntityStatusProjector):
    """Projector that records terminal outcomes"""

    def __init__(self):
        self.outcomes = []

    def on_approved(self, reference_type, reference_id):
        self.outcomes.append(('approved', reference_type, reference_id))

    def on_rejected(self, reference_type, reference_id):
        self.outcomes.append(('rejected', reference_type, reference_id))


# Two steps with short SLAs, used by the end-to-end scenarios
TWO_STEP_DEFINITIONS = MappingProxyType({
    WorkflowType.BUDGET_APPROVAL: WorkflowDefinition(
        workflow_type=WorkflowType.BUDGET_APPROVAL,
        name="Budget Approval",
        description="Two-step budget approval",
        steps=(
            StepTemplate("Finance Review", "Verify amounts", UserRole.FINANCE_HEAD, sla_hours=4),
            StepTemplate("BOD Approval", "Board sign-off", UserRole.BOD_MEMBER, sla_hours=8),
        ),
        sla_hours=24,
    ),
})


@pytest.fixture
def storage(request, tmp_path):
    """
    In-memory storage by default; parametrize indirectly with "sqlite" to run
    against a database file instead.
    """
    if getattr(request, "param", "memory") == "sqlite":
        storage = SQLiteStorage(tmp_path / "approvals.db")
    else:
        storage = InMemoryStorage()
    yield storage
    storage.close()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def directory(storage):
    directory = UserDirectory(storage)
    directory.add_user("fin-1", UserRole.FINANCE_HEAD, name="Finance Head One")
    directory.add_user("fin-2", UserRole.FINANCE_HEAD, name="Finance Head Two")
    directory.add_user("fin-old", UserRole.FINANCE_HEAD, status="INACTIVE")
    directory.add_user("bod-1", UserRole.BOD_MEMBER, name="Board Member")
    directory.add_user("bm-1", UserRole.BRAND_MANAGER)
    directory.add_user("ml-1", UserRole.MERCHANDISE_LEAD)
    directory.add_user("bp-1", UserRole.BRAND_PLANNER)
    directory.add_user("fu-1", UserRole.FINANCE_USER)
    directory.add_user("planner-1", UserRole.BRAND_PLANNER)
    return directory


@pytest.fixture
def sink(storage):
    return RecordingSink(storage)


@pytest.fixture
def projector():
    return RecordingProjector()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def workflow_engine(storage, sink, projector, directory, audit_trail, clock):
    """Engine over the production catalog"""
    return WorkflowEngine(storage, sink, projector, directory.users_with_role,
                          audit_trail, clock=clock)


@pytest.fixture
def two_step_engine(storage, sink, projector, directory, audit_trail, clock):
    """Engine over a two-step budget chain (4h and 8h step SLAs)"""
    return WorkflowEngine(storage, sink, projector, directory.users_with_role,
                          audit_trail, definitions=TWO_STEP_DEFINITIONS, clock=clock)


@pytest.fixture
def sla_monitor(two_step_engine):
    return SLAMonitor(two_step_engine, warning_hours=4)
