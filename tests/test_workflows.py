"""
Test suite for workflow engine module

Tests workflow creation, step actions (approve/reject/skip), sequential
advancement guards, terminal outcomes, notification fan-out, queries and
concurrent actions on the same step.
"""

import sqlite3
import threading
from datetime import timedelta

import pytest

from merch_planning.audit import AuditEventType
from merch_planning.definitions import WorkflowType, ReferenceType, UserRole, WORKFLOW_DEFINITIONS
from merch_planning.errors import UnknownWorkflowType, NotFoundError, InvalidStateError, WorkflowError
from merch_planning.notifications import NotificationType, NotificationPriority
from merch_planning.storage import InMemoryStorage, SQLiteStorage
from merch_planning.workflows import (
    WorkflowEngine, WorkflowStatus, StepStatus, WorkflowAction,
    INSTANCES_TABLE, STEPS_TABLE, summarize_by_type, get_progress_percentage
)

from conftest import RecordingProjector, RecordingSink, TWO_STEP_DEFINITIONS


def assert_single_active_step(engine, workflow_id):
    """At most one IN_PROGRESS step, and current_step points at it"""
    details = engine.get_workflow_details(workflow_id)
    active = [s for s in details.steps if s.status == StepStatus.IN_PROGRESS]
    workflow = details.workflow

    if workflow.status == WorkflowStatus.IN_PROGRESS:
        assert len(active) == 1
        assert workflow.current_step == active[0].step_number
        for step in details.steps:
            if step.step_number < workflow.current_step:
                assert step.status in (StepStatus.APPROVED, StepStatus.SKIPPED)
            elif step.step_number > workflow.current_step:
                assert step.status == StepStatus.PENDING
    else:
        assert active == []


@pytest.fixture
def b1_workflow(two_step_engine):
    """Two-step budget workflow for B-1 with a 24h overall SLA"""
    return two_step_engine.create_workflow(
        WorkflowType.BUDGET_APPROVAL, "B-1", ReferenceType.BUDGET, "planner-1", sla_hours=24
    )


class TestCreateWorkflow:
    """Test workflow instance creation"""

    def test_create_budget_workflow(self, workflow_engine, clock):
        workflow = workflow_engine.create_workflow(
            WorkflowType.BUDGET_APPROVAL, "budget-42", "budget", "planner-1", sla_hours=72
        )

        assert workflow.status == WorkflowStatus.IN_PROGRESS
        assert workflow.current_step == 1
        assert workflow.total_steps == 2
        assert workflow.reference_id == "budget-42"
        assert workflow.reference_type == "budget"
        assert workflow.initiated_by == "planner-1"
        assert workflow.sla_deadline == clock.now + timedelta(hours=72)
        assert workflow.sla_breached is False
        assert workflow.completed_at is None

        stored = workflow_engine.get_workflow(workflow.id)
        assert stored == workflow

    def test_steps_created_upfront(self, workflow_engine, clock):
        workflow = workflow_engine.create_workflow(
            WorkflowType.OTB_APPROVAL, "otb-7", ReferenceType.OTB, "planner-1"
        )
        steps = workflow_engine.get_steps(workflow.id)

        assert [s.step_number for s in steps] == [1, 2, 3, 4]
        assert [s.name for s in steps] == [
            "Brand Manager Review", "Finance Review", "Merchandise Review", "BOD Approval"
        ]
        assert steps[0].status == StepStatus.IN_PROGRESS
        assert steps[0].required_role == "BRAND_MANAGER"
        assert steps[0].due_at == clock.now + timedelta(hours=24)

        for step in steps[1:]:
            assert step.status == StepStatus.PENDING
            assert step.due_at is None

    def test_no_overall_deadline_without_sla_hours(self, workflow_engine):
        workflow = workflow_engine.create_workflow(
            WorkflowType.SKU_APPROVAL, "sku-1", ReferenceType.SKU, "planner-1"
        )
        assert workflow.sla_deadline is None

    def test_accepts_string_workflow_type(self, workflow_engine):
        workflow = workflow_engine.create_workflow("SKU_APPROVAL", "sku-2", "sku", "planner-1")
        assert workflow.workflow_type == WorkflowType.SKU_APPROVAL
        assert workflow.total_steps == 3

    def test_unknown_workflow_type(self, workflow_engine, storage):
        with pytest.raises(UnknownWorkflowType) as exc_info:
            workflow_engine.create_workflow("PAYROLL_APPROVAL", "x-1", "budget", "planner-1")

        assert exc_info.value.reason == "unknown_workflow_type"
        assert isinstance(exc_info.value, ValueError)
        assert storage.count(INSTANCES_TABLE) == 0

    def test_type_missing_from_registry(self, two_step_engine):
        with pytest.raises(UnknownWorkflowType):
            two_step_engine.create_workflow(WorkflowType.OTB_APPROVAL, "otb-1", "otb", "planner-1")

    def test_first_step_role_notified(self, workflow_engine, sink):
        workflow = workflow_engine.create_workflow(
            WorkflowType.BUDGET_APPROVAL, "budget-42", "budget", "planner-1"
        )

        assigned = sink.calls_of(NotificationType.WORKFLOW_ASSIGNED)
        assert len(assigned) == 1
        call = assigned[0]
        # Inactive users are not notified
        assert call['user_ids'] == ["fin-1", "fin-2"]
        assert call['priority'] == NotificationPriority.HIGH
        assert call['reference_url'] == f"/approvals/{workflow.id}"
        assert "Finance Review" in call['message']

        inbox = sink.get_user_notifications("fin-1")
        assert inbox['unread_count'] == 1

    def test_creation_is_audited(self, workflow_engine, audit_trail):
        workflow = workflow_engine.create_workflow(
            WorkflowType.BUDGET_APPROVAL, "budget-42", "budget", "planner-1"
        )
        events = audit_trail.get_events_for_entity("workflow", workflow.id)

        assert [e.event_type for e in events] == [AuditEventType.WORKFLOW_CREATED]
        assert events[0].metadata['reference_id'] == "budget-42"
        assert events[0].user_id == "planner-1"


@pytest.mark.parametrize("storage", ["memory", "sqlite"], indirect=True)
class TestProcessAction:
    """Test approve/reject/skip transitions"""

    def test_approve_moves_to_next_step(self, two_step_engine, b1_workflow, clock):
        clock.advance(hours=1)
        result = two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", "approve")

        assert result.status == "moved_to_next"
        assert result.next_step == 2
        assert result.workflow.current_step == 2
        assert result.workflow.status == WorkflowStatus.IN_PROGRESS

        steps = two_step_engine.get_steps(b1_workflow.id)
        assert steps[0].status == StepStatus.APPROVED
        assert steps[0].action_by == "fin-1"
        assert steps[0].action_at == clock.now
        assert steps[0].action_type == "approve"
        assert steps[1].status == StepStatus.IN_PROGRESS
        # The step SLA starts when the step becomes active
        assert steps[1].due_at == clock.now + timedelta(hours=8)

    def test_next_step_role_notified(self, two_step_engine, b1_workflow, sink):
        two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", WorkflowAction.APPROVE)

        assigned = sink.calls_of(NotificationType.WORKFLOW_ASSIGNED)
        assert [call['user_ids'] for call in assigned] == [["fin-1", "fin-2"], ["bod-1"]]
        assert assigned[-1]['priority'] == NotificationPriority.HIGH

    def test_approving_last_step_completes(self, two_step_engine, b1_workflow, projector, sink, clock):
        two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", "approve")
        clock.advance(hours=2)
        result = two_step_engine.process_workflow_action(b1_workflow.id, 2, "bod-1", "approve")

        assert result.status == "completed"
        assert result.next_step is None
        assert result.workflow.status == WorkflowStatus.APPROVED
        assert result.workflow.completed_at == clock.now
        assert result.workflow.current_step == result.workflow.total_steps
        assert projector.outcomes == [('approved', 'budget', 'B-1')]

        approved = sink.calls_of(NotificationType.BUDGET_APPROVED)
        assert len(approved) == 1
        assert approved[0]['user_ids'] == ["planner-1"]
        assert approved[0]['priority'] == NotificationPriority.MEDIUM
        assert approved[0]['reference_url'] == "/budget/B-1"

    def test_reject_short_circuits(self, two_step_engine, b1_workflow, projector, sink, clock):
        result = two_step_engine.process_workflow_action(
            b1_workflow.id, 1, "fin-1", "reject", comment="insufficient detail"
        )

        assert result.status == "rejected"
        assert result.workflow.status == WorkflowStatus.REJECTED
        assert result.workflow.completed_at == clock.now

        steps = two_step_engine.get_steps(b1_workflow.id)
        assert steps[0].status == StepStatus.REJECTED
        assert steps[0].action_comment == "insufficient detail"
        assert steps[1].status == StepStatus.PENDING
        assert steps[1].due_at is None
        assert projector.outcomes == [('rejected', 'budget', 'B-1')]

        rejected = sink.calls_of(NotificationType.BUDGET_REJECTED)
        assert len(rejected) == 1
        assert rejected[0]['user_ids'] == ["planner-1"]
        assert rejected[0]['priority'] == NotificationPriority.HIGH
        assert "Reason: insufficient detail" in rejected[0]['message']

    def test_reject_without_comment(self, two_step_engine, b1_workflow, sink):
        two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", "reject")

        message = sink.calls_of(NotificationType.BUDGET_REJECTED)[0]['message']
        assert message == "Your budget request has been rejected."

    def test_reject_later_step_leaves_remaining_pending(self, workflow_engine, projector):
        workflow = workflow_engine.create_workflow(WorkflowType.OTB_APPROVAL, "otb-9", "otb", "planner-1")
        workflow_engine.process_workflow_action(workflow.id, 1, "bm-1", "approve")
        result = workflow_engine.process_workflow_action(workflow.id, 2, "fin-1", "reject")

        assert result.workflow.status == WorkflowStatus.REJECTED
        statuses = [s.status for s in workflow_engine.get_steps(workflow.id)]
        assert statuses == [StepStatus.APPROVED, StepStatus.REJECTED, StepStatus.PENDING, StepStatus.PENDING]
        assert projector.outcomes == [('rejected', 'otb', 'otb-9')]

    def test_skip_advances(self, workflow_engine):
        workflow = workflow_engine.create_workflow(WorkflowType.OTB_APPROVAL, "otb-3", "otb", "planner-1")
        workflow_engine.process_workflow_action(workflow.id, 1, "bm-1", "approve")
        workflow_engine.process_workflow_action(workflow.id, 2, "fin-1", "approve")
        result = workflow_engine.process_workflow_action(workflow.id, 3, "ml-1", "skip", "not needed this season")

        assert result.status == "moved_to_next"
        assert result.next_step == 4
        step = workflow_engine.get_steps(workflow.id)[2]
        assert step.status == StepStatus.SKIPPED
        assert step.action_comment == "not needed this season"

    def test_skipping_last_step_completes(self, two_step_engine, b1_workflow, projector):
        two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", "approve")
        result = two_step_engine.process_workflow_action(b1_workflow.id, 2, "bod-1", "skip")

        assert result.status == "completed"
        assert result.workflow.status == WorkflowStatus.APPROVED
        assert result.workflow.completed_at is not None
        assert projector.outcomes == [('approved', 'budget', 'B-1')]

    def test_sku_rejection_notification_type(self, workflow_engine, sink):
        workflow = workflow_engine.create_workflow(WorkflowType.SKU_APPROVAL, "sku-5", "sku", "planner-1")
        workflow_engine.process_workflow_action(workflow.id, 1, "bp-1", "reject")

        assert len(sink.calls_of(NotificationType.SKU_REJECTED)) == 1

    def test_actions_are_audited(self, two_step_engine, b1_workflow, audit_trail):
        two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", "approve")
        two_step_engine.process_workflow_action(b1_workflow.id, 2, "bod-1", "approve")

        events = audit_trail.get_events_for_entity("workflow", b1_workflow.id)
        assert [e.event_type for e in events] == [
            AuditEventType.WORKFLOW_CREATED,
            AuditEventType.WORKFLOW_STEP_ACTIONED,
            AuditEventType.WORKFLOW_ADVANCED,
            AuditEventType.WORKFLOW_STEP_ACTIONED,
            AuditEventType.WORKFLOW_APPROVED,
        ]
        assert audit_trail.verify_integrity()['valid'] is True


@pytest.mark.parametrize("storage", ["memory", "sqlite"], indirect=True)
class TestActionGuards:
    """Test the preconditions that keep advancement strictly sequential"""

    def test_workflow_not_found(self, two_step_engine):
        with pytest.raises(NotFoundError) as exc_info:
            two_step_engine.process_workflow_action("missing", 1, "fin-1", "approve")
        assert exc_info.value.reason == "workflow_not_found"

    def test_step_not_found(self, two_step_engine, b1_workflow):
        with pytest.raises(NotFoundError) as exc_info:
            two_step_engine.process_workflow_action(b1_workflow.id, 5, "fin-1", "approve")
        assert exc_info.value.reason == "step_not_found"

    def test_pending_step_cannot_be_acted_on(self, two_step_engine, b1_workflow):
        with pytest.raises(InvalidStateError) as exc_info:
            two_step_engine.process_workflow_action(b1_workflow.id, 2, "bod-1", "approve")

        assert exc_info.value.reason == "step_not_active"
        assert_single_active_step(two_step_engine, b1_workflow.id)

    @pytest.mark.parametrize("action", ["approve", "reject", "skip"])
    def test_pending_step_rejected_for_every_action(self, two_step_engine, b1_workflow, action):
        with pytest.raises(InvalidStateError):
            two_step_engine.process_workflow_action(b1_workflow.id, 2, "admin", action)

    def test_same_step_twice(self, two_step_engine, b1_workflow):
        two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", "approve")

        with pytest.raises(InvalidStateError) as exc_info:
            two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-2", "approve")
        assert exc_info.value.reason == "step_not_active"

    def test_concluded_workflow(self, two_step_engine, b1_workflow):
        two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", "reject")

        with pytest.raises(InvalidStateError) as exc_info:
            two_step_engine.process_workflow_action(b1_workflow.id, 2, "bod-1", "approve")
        assert exc_info.value.reason == "workflow_concluded"
        assert exc_info.value.message == "Workflow already concluded"

    def test_unknown_action_on_missing_workflow(self, two_step_engine):
        with pytest.raises(NotFoundError) as exc_info:
            two_step_engine.process_workflow_action("missing", 1, "fin-1", "escalate")
        assert exc_info.value.reason == "workflow_not_found"

    def test_unknown_action_on_pending_step(self, two_step_engine, b1_workflow):
        with pytest.raises(InvalidStateError):
            two_step_engine.process_workflow_action(b1_workflow.id, 2, "bod-1", "escalate")

    def test_unknown_action(self, two_step_engine, b1_workflow):
        with pytest.raises(ValueError) as exc_info:
            two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", "escalate")
        assert not isinstance(exc_info.value, WorkflowError)

    def test_process_action_alias(self, two_step_engine, b1_workflow):
        result = two_step_engine.process_action(b1_workflow.id, 1, "fin-1", "approve")
        assert result.status == "moved_to_next"


class TestInvariants:
    """Single active step and current_step tracking across full chains"""

    @pytest.mark.parametrize("workflow_type", list(WORKFLOW_DEFINITIONS))
    def test_full_approval_chain(self, workflow_engine, workflow_type):
        definition = WORKFLOW_DEFINITIONS[workflow_type]
        workflow = workflow_engine.create_workflow(workflow_type, "ref-1", "budget", "planner-1")
        assert_single_active_step(workflow_engine, workflow.id)

        for step_number in range(1, definition.total_steps + 1):
            result = workflow_engine.process_workflow_action(workflow.id, step_number, "admin", "approve")
            assert_single_active_step(workflow_engine, workflow.id)

        assert result.status == "completed"
        final = workflow_engine.get_workflow(workflow.id)
        assert final.status == WorkflowStatus.APPROVED
        assert final.current_step == final.total_steps

    def test_terminal_workflow_is_immutable(self, two_step_engine, b1_workflow, storage):
        two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", "reject")
        before = storage.load(INSTANCES_TABLE, b1_workflow.id)

        for step_number in (1, 2):
            with pytest.raises(InvalidStateError):
                two_step_engine.process_workflow_action(b1_workflow.id, step_number, "admin", "approve")

        assert storage.load(INSTANCES_TABLE, b1_workflow.id) == before


class FailingInstanceWrites(InMemoryStorage):
    """Storage whose conditional instance writes fail"""

    def compare_and_set(self, table, record_id, expected, updates):
        if table == INSTANCES_TABLE:
            raise RuntimeError("disk full")
        return super().compare_and_set(table, record_id, expected, updates)


class FailingFirstStepSave(SQLiteStorage):
    """SQLite storage whose first write to the steps table fails after creating it"""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.fail_next_step_save = True

    def save(self, table, record_id, data):
        if table == STEPS_TABLE and self.fail_next_step_save:
            self.fail_next_step_save = False
            self._ensure_table(table)
            raise sqlite3.OperationalError("disk I/O error")
        super().save(table, record_id, data)


class TestAtomicity:
    """Step and instance writes land together or not at all"""

    def test_failed_instance_write_rolls_back_steps(self, clock):
        storage = FailingInstanceWrites()
        engine = WorkflowEngine(storage, RecordingSink(storage), RecordingProjector(),
                                lambda role: [], definitions=TWO_STEP_DEFINITIONS, clock=clock)
        workflow = engine.create_workflow(WorkflowType.BUDGET_APPROVAL, "B-1", "budget", "planner-1")

        with pytest.raises(RuntimeError, match="disk full"):
            engine.process_workflow_action(workflow.id, 1, "fin-1", "approve")

        steps = engine.get_steps(workflow.id)
        assert steps[0].status == StepStatus.IN_PROGRESS
        assert steps[0].action_by is None
        assert steps[1].status == StepStatus.PENDING
        assert engine.get_workflow(workflow.id).current_step == 1

    def test_failed_creation_on_fresh_database_can_be_retried(self, tmp_path, clock):
        storage = FailingFirstStepSave(tmp_path / "fresh.db")
        engine = WorkflowEngine(storage, RecordingSink(storage), RecordingProjector(),
                                lambda role: [], definitions=TWO_STEP_DEFINITIONS, clock=clock)
        try:
            with pytest.raises(sqlite3.OperationalError):
                engine.create_workflow(WorkflowType.BUDGET_APPROVAL, "B-1", "budget", "planner-1")

            workflow = engine.create_workflow(WorkflowType.BUDGET_APPROVAL, "B-1", "budget", "planner-1")

            assert [s.step_number for s in engine.get_steps(workflow.id)] == [1, 2]
            assert storage.count(INSTANCES_TABLE) == 1
        finally:
            storage.close()

    def test_projector_failure_propagates(self, storage, sink, directory, clock):
        class BrokenProjector(RecordingProjector):
            def on_approved(self, reference_type, reference_id):
                raise ConnectionError("entity store unavailable")

        engine = WorkflowEngine(storage, sink, BrokenProjector(), directory.users_with_role,
                                definitions=TWO_STEP_DEFINITIONS, clock=clock)
        workflow = engine.create_workflow(WorkflowType.BUDGET_APPROVAL, "B-1", "budget", "planner-1")
        engine.process_workflow_action(workflow.id, 1, "fin-1", "approve")

        with pytest.raises(ConnectionError):
            engine.process_workflow_action(workflow.id, 2, "bod-1", "approve")

        # The transition itself was committed before the projector ran
        assert engine.get_workflow(workflow.id).status == WorkflowStatus.APPROVED

    def test_notification_failure_propagates(self, storage, projector, directory, clock):
        class BrokenSink(RecordingSink):
            def notify(self, *args, **kwargs):
                raise ConnectionError("queue unavailable")

        engine = WorkflowEngine(storage, BrokenSink(storage), projector, directory.users_with_role,
                                definitions=TWO_STEP_DEFINITIONS, clock=clock)
        with pytest.raises(ConnectionError):
            engine.create_workflow(WorkflowType.BUDGET_APPROVAL, "B-1", "budget", "planner-1")


@pytest.mark.parametrize("storage", ["memory", "sqlite"], indirect=True)
class TestConcurrency:
    """Concurrent actions on one step"""

    def test_only_one_concurrent_approval_wins(self, two_step_engine, b1_workflow):
        workers = 8
        barrier = threading.Barrier(workers)
        outcomes = []
        lock = threading.Lock()

        def approve(user_id):
            barrier.wait()
            try:
                result = two_step_engine.process_workflow_action(b1_workflow.id, 1, user_id, "approve")
                outcome = result.status
            except InvalidStateError as e:
                outcome = e.reason
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=approve, args=(f"fin-{i}",)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("moved_to_next") == 1
        assert outcomes.count("step_not_active") == workers - 1
        assert_single_active_step(two_step_engine, b1_workflow.id)
        assert two_step_engine.get_workflow(b1_workflow.id).current_step == 2

    def test_workflows_are_independent(self, two_step_engine):
        first = two_step_engine.create_workflow(WorkflowType.BUDGET_APPROVAL, "B-1", "budget", "planner-1")
        second = two_step_engine.create_workflow(WorkflowType.BUDGET_APPROVAL, "B-2", "budget", "planner-1")

        two_step_engine.process_workflow_action(first.id, 1, "fin-1", "reject")
        result = two_step_engine.process_workflow_action(second.id, 1, "fin-1", "approve")

        assert result.status == "moved_to_next"
        assert two_step_engine.get_workflow(first.id).status == WorkflowStatus.REJECTED


class TestQueries:
    """Test workflow lookups"""

    def test_get_workflow_details(self, two_step_engine, b1_workflow):
        details = two_step_engine.get_workflow_details(b1_workflow.id)

        assert details.workflow.id == b1_workflow.id
        assert [s.step_number for s in details.steps] == [1, 2]
        assert details.active_step.step_number == 1

    def test_get_workflow_details_not_found(self, two_step_engine):
        with pytest.raises(NotFoundError):
            two_step_engine.get_workflow_details("missing")
        assert two_step_engine.get_workflow("missing") is None

    def test_pending_by_role(self, two_step_engine, b1_workflow, clock):
        clock.advance(minutes=5)
        other = two_step_engine.create_workflow(WorkflowType.BUDGET_APPROVAL, "B-2", "budget", "planner-1")

        pending = two_step_engine.get_pending_workflows("fin-1", UserRole.FINANCE_HEAD)
        assert [d.workflow.id for d in pending] == [other.id, b1_workflow.id]
        assert all(len(d.steps) == 1 and d.steps[0].step_number == 1 for d in pending)

        assert two_step_engine.get_pending_workflows("bod-1", "BOD_MEMBER") == []

    def test_pending_follows_active_step(self, two_step_engine, b1_workflow):
        two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", "approve")

        assert two_step_engine.get_pending_workflows("fin-1", "FINANCE_HEAD") == []
        pending = two_step_engine.get_pending_workflows("bod-1", "BOD_MEMBER")
        assert len(pending) == 1
        assert pending[0].active_step.step_number == 2

    def test_pending_by_assigned_user(self, two_step_engine, b1_workflow, storage):
        step = two_step_engine.get_steps(b1_workflow.id)[0]
        storage.compare_and_set(STEPS_TABLE, step.id, {}, {'assigned_user_id': "fu-1"})

        pending = two_step_engine.get_pending_workflows("fu-1", "FINANCE_USER")
        assert [d.workflow.id for d in pending] == [b1_workflow.id]

    def test_concluded_workflows_not_pending(self, two_step_engine, b1_workflow):
        two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", "reject")
        assert two_step_engine.get_pending_workflows("fin-1", "FINANCE_HEAD") == []

    def test_workflows_for_reference(self, two_step_engine, b1_workflow, clock):
        two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", "reject")
        clock.advance(hours=1)
        resubmitted = two_step_engine.create_workflow(WorkflowType.BUDGET_APPROVAL, "B-1", "budget", "planner-1")
        two_step_engine.create_workflow(WorkflowType.BUDGET_APPROVAL, "B-3", "budget", "planner-1")

        history = two_step_engine.get_workflows_for_reference("B-1", ReferenceType.BUDGET)
        assert [w.id for w in history] == [resubmitted.id, b1_workflow.id]

    def test_list_workflows_and_summary(self, workflow_engine):
        budget = workflow_engine.create_workflow(WorkflowType.BUDGET_APPROVAL, "b-1", "budget", "planner-1")
        workflow_engine.create_workflow(WorkflowType.OTB_APPROVAL, "o-1", "otb", "planner-1")
        workflow_engine.create_workflow(WorkflowType.OTB_APPROVAL, "o-2", "otb", "planner-1")
        workflow_engine.process_workflow_action(budget.id, 1, "fin-1", "reject")

        in_progress = workflow_engine.list_workflows(status=WorkflowStatus.IN_PROGRESS)
        assert len(in_progress) == 2
        assert len(workflow_engine.list_workflows(workflow_type="BUDGET_APPROVAL")) == 1

        summary = summarize_by_type(workflow_engine.list_workflows())
        assert summary == {'budget': 1, 'otb': 2, 'sku': 0, 'total': 3}


class TestProgress:

    @pytest.mark.parametrize("total_steps,current_step,status,expected", [
        (2, 1, WorkflowStatus.IN_PROGRESS, 0),
        (2, 2, WorkflowStatus.IN_PROGRESS, 50),
        (3, 2, "IN_PROGRESS", 33),
        (8, 2, "IN_PROGRESS", 13),
        (2, 2, WorkflowStatus.APPROVED, 100),
        (4, 1, WorkflowStatus.REJECTED, 100),
        (2, 1, "PENDING", 0),
        (0, 1, "IN_PROGRESS", 0),
    ])
    def test_get_progress_percentage(self, total_steps, current_step, status, expected):
        assert get_progress_percentage(total_steps, current_step, status) == expected

    def test_progress_of_live_workflow(self, two_step_engine, b1_workflow):
        two_step_engine.process_workflow_action(b1_workflow.id, 1, "fin-1", "approve")
        workflow = two_step_engine.get_workflow(b1_workflow.id)

        assert get_progress_percentage(workflow.total_steps, workflow.current_step, workflow.status) == 50
