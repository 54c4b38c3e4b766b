"""
Workflow Engine Module

Sequential, role-gated approval chains for budget allocations, OTB plans and
SKU proposals. Each workflow instance owns one step per template of its
definition; exactly one step is active at a time and actions advance the
chain one step per call. A rejection anywhere ends the chain.
"""

from datetime import datetime, timezone, timedelta
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Any, Union
from enum import Enum
import logging
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .definitions import (
    WORKFLOW_DEFINITIONS, WorkflowDefinition, WorkflowType, ReferenceType, UserRole, lookup
)
from .directory import RoleResolver
from .entity_status import EntityStatusProjector
from .errors import NotFoundError, InvalidStateError
from .logging_config import log_action
from .notifications import (
    NotificationSink, NotificationType, NotificationPriority,
    outcome_notification_type, entity_url, approval_url
)


logger = logging.getLogger(__name__)

INSTANCES_TABLE = "workflow_instances"
STEPS_TABLE = "workflow_steps"


class WorkflowStatus(Enum):
    """Status of entire workflow instances"""
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class StepStatus(Enum):
    """Status of individual workflow steps"""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SKIPPED = "SKIPPED"


class WorkflowAction(Enum):
    """Actions an approver can take on the active step"""
    APPROVE = "approve"
    REJECT = "reject"
    SKIP = "skip"


ACTION_STEP_STATUS = {
    WorkflowAction.APPROVE: StepStatus.APPROVED,
    WorkflowAction.REJECT: StepStatus.REJECTED,
    WorkflowAction.SKIP: StepStatus.SKIPPED,
}


def _parse_datetime(value):
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WorkflowStep(StorageRecord):
    """One role-gated approval gate within a workflow instance"""
    workflow_id: str
    step_number: int
    name: str
    status: StepStatus
    description: Optional[str] = None
    required_role: Optional[str] = None
    assigned_user_id: Optional[str] = None
    sla_hours: Optional[float] = None
    due_at: Optional[datetime] = None
    action_by: Optional[str] = None
    action_at: Optional[datetime] = None
    action_type: Optional[str] = None
    action_comment: Optional[str] = None
    sla_warning_sent_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowStep':
        data['status'] = StepStatus(data['status'])
        for key in ('due_at', 'action_at', 'sla_warning_sent_at'):
            data[key] = _parse_datetime(data.get(key))
        return super().from_dict(data)


@dataclass
class WorkflowInstance(StorageRecord):
    """One run of an approval chain guarding one business entity"""
    workflow_type: WorkflowType
    reference_id: str
    reference_type: str
    status: WorkflowStatus
    current_step: int
    total_steps: int
    initiated_by: str
    sla_deadline: Optional[datetime] = None
    sla_breached: bool = False
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != WorkflowStatus.IN_PROGRESS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowInstance':
        data['workflow_type'] = WorkflowType(data['workflow_type'])
        data['status'] = WorkflowStatus(data['status'])
        data['sla_deadline'] = _parse_datetime(data.get('sla_deadline'))
        data['completed_at'] = _parse_datetime(data.get('completed_at'))
        return super().from_dict(data)


@dataclass
class WorkflowDetails:
    """A workflow instance together with its steps, ordered by step number"""
    workflow: WorkflowInstance
    steps: List[WorkflowStep] = field(default_factory=list)

    @property
    def active_step(self) -> Optional[WorkflowStep]:
        for step in self.steps:
            if step.status == StepStatus.IN_PROGRESS:
                return step
        return None


@dataclass
class ActionResult:
    """Outcome of processing one workflow action"""
    status: str  # rejected, moved_to_next, completed
    workflow: WorkflowInstance
    next_step: Optional[int] = None


def _enum_value(value):
    return value.value if isinstance(value, Enum) else value


class WorkflowEngine:
    """
    Creates workflow instances and advances them on approve/reject/skip.

    The engine holds no workflow state between calls; everything lives in
    the storage handle it is given. Collaborators are injected:

    - ``notifier`` enqueues user-facing notifications
    - ``projector`` applies terminal outcomes to the guarded entity
    - ``resolve_users_by_role`` maps a role to the users to notify
    """

    def __init__(self, storage: StorageInterface, notifier: NotificationSink,
                 projector: EntityStatusProjector, resolve_users_by_role: RoleResolver,
                 audit_manager: Optional[AuditTrail] = None,
                 definitions: Mapping[WorkflowType, WorkflowDefinition] = WORKFLOW_DEFINITIONS,
                 clock: Optional[Callable[[], datetime]] = None):
        self.storage = storage
        self.notifier = notifier
        self.projector = projector
        self.resolve_users_by_role = resolve_users_by_role
        self.audit = audit_manager
        self.definitions = definitions
        self.clock = clock or _utcnow

    # Creation

    def create_workflow(self, workflow_type: Union[WorkflowType, str], reference_id: str,
                        reference_type: Union[ReferenceType, str], initiated_by: str,
                        sla_hours: Optional[float] = None) -> WorkflowInstance:
        """Start an approval chain for an entity; step 1 becomes active immediately"""
        definition = lookup(workflow_type, self.definitions)
        reference_type = _enum_value(reference_type)

        now = self.clock()
        sla_deadline = now + timedelta(hours=sla_hours) if sla_hours else None

        instance = WorkflowInstance(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            workflow_type=definition.workflow_type,
            reference_id=reference_id,
            reference_type=reference_type,
            status=WorkflowStatus.IN_PROGRESS,
            current_step=1,
            total_steps=definition.total_steps,
            initiated_by=initiated_by,
            sla_deadline=sla_deadline
        )

        steps = []
        for index, template in enumerate(definition.steps):
            is_first = index == 0
            steps.append(WorkflowStep(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                workflow_id=instance.id,
                step_number=index + 1,
                name=template.name,
                description=template.description,
                status=StepStatus.IN_PROGRESS if is_first else StepStatus.PENDING,
                required_role=_enum_value(template.required_role),
                sla_hours=template.sla_hours,
                # SLA clocks only start once a step is active
                due_at=self._due_at(now, template.sla_hours) if is_first else None
            ))

        with self.storage.atomic():
            self.storage.save(INSTANCES_TABLE, instance.id, instance.to_dict())
            for step in steps:
                self.storage.save(STEPS_TABLE, step.id, step.to_dict())

        self.log_audit(
            AuditEventType.WORKFLOW_CREATED, instance.id,
            {
                'workflow_type': definition.workflow_type.value,
                'reference_type': reference_type,
                'reference_id': reference_id,
                'total_steps': instance.total_steps,
                'sla_deadline': sla_deadline
            },
            initiated_by
        )
        log_action(logger, "info", f"Created {definition.workflow_type.value} workflow {instance.id}",
                   user_id=initiated_by, action="create_workflow",
                   resource=f"{reference_type}:{reference_id}")

        if steps:
            self._notify_step_assignees(instance, steps[0])

        return instance

    # Actions

    def process_workflow_action(self, workflow_id: str, step_number: int, action_by: str,
                                action: Union[WorkflowAction, str],
                                comment: Optional[str] = None) -> ActionResult:
        """
        Apply approve/reject/skip to the active step.

        Raises:
            NotFoundError: unknown workflow or step number
            InvalidStateError: workflow already concluded, or the step is not
                the active one (including losing a race to a concurrent action)
            ValueError: unknown action
        """
        workflow = self.get_workflow(workflow_id)
        if not workflow:
            raise NotFoundError(f"Workflow {workflow_id} not found", reason="workflow_not_found")

        if workflow.status != WorkflowStatus.IN_PROGRESS:
            raise InvalidStateError("Workflow already concluded", reason="workflow_concluded")

        step = self._find_step(workflow_id, step_number)
        if not step:
            raise NotFoundError(f"Step {step_number} not found on workflow {workflow_id}",
                                reason="step_not_found")

        if step.status != StepStatus.IN_PROGRESS:
            raise InvalidStateError("Step is not the active step", reason="step_not_active")

        action = WorkflowAction(_enum_value(action))

        now = self.clock()
        next_step = None
        if action != WorkflowAction.REJECT:
            next_step = self._find_step(workflow_id, step_number + 1)

        with self.storage.atomic():
            claimed = self.storage.compare_and_set(
                STEPS_TABLE, step.id,
                {'status': StepStatus.IN_PROGRESS.value},
                {
                    'status': ACTION_STEP_STATUS[action].value,
                    'action_by': action_by,
                    'action_at': now.isoformat(),
                    'action_type': action.value,
                    'action_comment': comment,
                    'updated_at': now.isoformat()
                }
            )
            if not claimed:
                raise InvalidStateError("Step is not the active step", reason="step_not_active")

            expected = {'status': WorkflowStatus.IN_PROGRESS.value, 'current_step': step_number}
            if action == WorkflowAction.REJECT:
                updates = {
                    'status': WorkflowStatus.REJECTED.value,
                    'completed_at': now.isoformat(),
                    'updated_at': now.isoformat()
                }
            elif next_step:
                updates = {'current_step': next_step.step_number, 'updated_at': now.isoformat()}
                due_at = self._due_at(now, next_step.sla_hours)
                activated = self.storage.compare_and_set(
                    STEPS_TABLE, next_step.id,
                    {'status': StepStatus.PENDING.value},
                    {
                        'status': StepStatus.IN_PROGRESS.value,
                        'due_at': due_at.isoformat() if due_at else None,
                        'updated_at': now.isoformat()
                    }
                )
                if not activated:
                    raise InvalidStateError(f"Step {next_step.step_number} is not pending",
                                            reason="step_not_active")
            else:
                updates = {
                    'status': WorkflowStatus.APPROVED.value,
                    'completed_at': now.isoformat(),
                    'updated_at': now.isoformat()
                }

            if not self.storage.compare_and_set(INSTANCES_TABLE, workflow_id, expected, updates):
                raise InvalidStateError("Workflow already concluded", reason="workflow_concluded")

        workflow = self.get_workflow(workflow_id)

        self.log_audit(
            AuditEventType.WORKFLOW_STEP_ACTIONED, workflow_id,
            {'step_number': step_number, 'action': action.value, 'comment': comment},
            action_by
        )
        log_action(logger, "info", f"Step {step_number} of workflow {workflow_id}: {action.value}",
                   user_id=action_by, action=action.value,
                   resource=f"{workflow.reference_type}:{workflow.reference_id}")

        if action == WorkflowAction.REJECT:
            return self._conclude_rejected(workflow, action_by, comment)

        if next_step:
            return self._move_to_next(workflow, next_step.step_number, action_by)

        return self._conclude_approved(workflow, action_by)

    process_action = process_workflow_action

    def _move_to_next(self, workflow: WorkflowInstance, next_step_number: int,
                      action_by: str) -> ActionResult:
        self.log_audit(AuditEventType.WORKFLOW_ADVANCED, workflow.id,
                       {'current_step': next_step_number}, action_by)

        step = self._find_step(workflow.id, next_step_number)
        self._notify_step_assignees(workflow, step)

        return ActionResult(status="moved_to_next", workflow=workflow, next_step=next_step_number)

    def _conclude_rejected(self, workflow: WorkflowInstance, action_by: str,
                           comment: Optional[str]) -> ActionResult:
        self.log_audit(AuditEventType.WORKFLOW_REJECTED, workflow.id,
                       {'reference_type': workflow.reference_type,
                        'reference_id': workflow.reference_id}, action_by)

        self.projector.on_rejected(workflow.reference_type, workflow.reference_id)

        message = f"Your {workflow.reference_type} request has been rejected."
        if comment:
            message = f"{message} Reason: {comment}"
        self.notifier.notify(
            [workflow.initiated_by],
            outcome_notification_type(workflow.reference_type, 'rejected'),
            "Request Rejected",
            message,
            entity_url(workflow.reference_type, workflow.reference_id),
            NotificationPriority.HIGH,
            reference_id=workflow.reference_id,
            reference_type=workflow.reference_type
        )

        return ActionResult(status="rejected", workflow=workflow)

    def _conclude_approved(self, workflow: WorkflowInstance, action_by: str) -> ActionResult:
        self.log_audit(AuditEventType.WORKFLOW_APPROVED, workflow.id,
                       {'reference_type': workflow.reference_type,
                        'reference_id': workflow.reference_id}, action_by)

        self.projector.on_approved(workflow.reference_type, workflow.reference_id)

        self.notifier.notify(
            [workflow.initiated_by],
            outcome_notification_type(workflow.reference_type, 'approved'),
            "Request Approved",
            f"Your {workflow.reference_type} request has been approved.",
            entity_url(workflow.reference_type, workflow.reference_id),
            NotificationPriority.MEDIUM,
            reference_id=workflow.reference_id,
            reference_type=workflow.reference_type
        )

        return ActionResult(status="completed", workflow=workflow)

    # Queries

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowInstance]:
        """Get a workflow instance by ID"""
        data = self.storage.load(INSTANCES_TABLE, workflow_id)
        if not data:
            return None
        return WorkflowInstance.from_dict(data)

    def get_steps(self, workflow_id: str) -> List[WorkflowStep]:
        """All steps of a workflow ordered by step number"""
        rows = self.storage.find(STEPS_TABLE, {'workflow_id': workflow_id})
        steps = [WorkflowStep.from_dict(row) for row in rows]
        return sorted(steps, key=lambda s: s.step_number)

    def get_workflow_details(self, workflow_id: str) -> WorkflowDetails:
        """Workflow with its steps; raises NotFoundError"""
        workflow = self.get_workflow(workflow_id)
        if not workflow:
            raise NotFoundError(f"Workflow {workflow_id} not found", reason="workflow_not_found")
        return WorkflowDetails(workflow=workflow, steps=self.get_steps(workflow_id))

    def get_pending_workflows(self, user_id: Optional[str],
                              role: Optional[Union[UserRole, str]]) -> List[WorkflowDetails]:
        """
        In-progress workflows whose active step is assigned to the user or
        gated on the role, newest first. Each result carries only its active step.
        """
        role = _enum_value(role)
        pending = []

        active_steps = self.storage.find(STEPS_TABLE, {'status': StepStatus.IN_PROGRESS.value})
        for row in active_steps:
            step = WorkflowStep.from_dict(row)
            assigned_match = user_id and step.assigned_user_id == user_id
            role_match = role and step.required_role == role
            if not (assigned_match or role_match):
                continue

            workflow = self.get_workflow(step.workflow_id)
            if workflow and workflow.status == WorkflowStatus.IN_PROGRESS:
                pending.append(WorkflowDetails(workflow=workflow, steps=[step]))

        return sorted(pending, key=lambda d: d.workflow.created_at, reverse=True)

    def get_workflows_for_reference(self, reference_id: str,
                                    reference_type: Union[ReferenceType, str]) -> List[WorkflowInstance]:
        """Every workflow that has guarded an entity, newest first"""
        rows = self.storage.find(INSTANCES_TABLE, {
            'reference_id': reference_id,
            'reference_type': _enum_value(reference_type)
        })
        workflows = [WorkflowInstance.from_dict(row) for row in rows]
        return sorted(workflows, key=lambda w: w.created_at, reverse=True)

    def list_workflows(self, status: Optional[WorkflowStatus] = None,
                       workflow_type: Optional[Union[WorkflowType, str]] = None) -> List[WorkflowInstance]:
        """Get workflows with optional filters, newest first"""
        filters = {}
        if status:
            filters['status'] = _enum_value(status)
        if workflow_type:
            filters['workflow_type'] = _enum_value(workflow_type)

        workflows = [WorkflowInstance.from_dict(row)
                     for row in self.storage.find(INSTANCES_TABLE, filters)]
        return sorted(workflows, key=lambda w: w.created_at, reverse=True)

    # Private helper methods

    def _find_step(self, workflow_id: str, step_number: int) -> Optional[WorkflowStep]:
        rows = self.storage.find(STEPS_TABLE, {'workflow_id': workflow_id, 'step_number': step_number})
        if not rows:
            return None
        return WorkflowStep.from_dict(rows[0])

    @staticmethod
    def _due_at(start: datetime, sla_hours: Optional[float]) -> Optional[datetime]:
        if not sla_hours:
            return None
        return start + timedelta(hours=sla_hours)

    def _notify_step_assignees(self, workflow: WorkflowInstance, step: WorkflowStep) -> None:
        """Fan out a WORKFLOW_ASSIGNED notification to every user holding the step's role"""
        if not step.required_role:
            return

        user_ids = self.resolve_users_by_role(step.required_role)
        if not user_ids:
            logger.warning(f"No active users with role {step.required_role} for workflow {workflow.id}")
            return

        self.notifier.notify(
            user_ids,
            NotificationType.WORKFLOW_ASSIGNED,
            "New Approval Required",
            f"You have a new {workflow.reference_type} approval request: {step.name}",
            approval_url(workflow.id),
            NotificationPriority.HIGH,
            reference_id=workflow.reference_id,
            reference_type=workflow.reference_type
        )

    def log_audit(self, event_type: AuditEventType, workflow_id: str,
                  metadata: Dict[str, Any], user_id: Optional[str]) -> None:
        if self.audit:
            self.audit.log_event(event_type, 'workflow', workflow_id, metadata, user_id)


def summarize_by_type(workflows: List[WorkflowInstance]) -> Dict[str, int]:
    """Counts per entity kind, as shown on the approvals dashboard"""
    summary = {
        'budget': sum(1 for w in workflows if w.workflow_type == WorkflowType.BUDGET_APPROVAL),
        'otb': sum(1 for w in workflows if w.workflow_type == WorkflowType.OTB_APPROVAL),
        'sku': sum(1 for w in workflows if w.workflow_type == WorkflowType.SKU_APPROVAL),
    }
    summary['total'] = len(workflows)
    return summary


def get_progress_percentage(total_steps: int, current_step: int,
                            status: Union[WorkflowStatus, str]) -> int:
    """Share of the chain already decided, 0-100; concluded workflows are 100"""
    status = _enum_value(status)
    if status in (WorkflowStatus.APPROVED.value, WorkflowStatus.REJECTED.value):
        return 100
    if status == StepStatus.PENDING.value or total_steps <= 0:
        return 0
    # Halves round up
    return int((current_step - 1) * 100 / total_steps + 0.5)
