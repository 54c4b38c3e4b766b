"""
Workflow Definition Registry

Static catalog of the approval chains used by merchandise planning. Each
workflow type maps to one immutable definition with its ordered step
templates. The catalog is built at import time and never mutated.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

from .errors import UnknownWorkflowType


class WorkflowType(Enum):
    """Workflow types with a registered approval chain"""
    BUDGET_APPROVAL = "BUDGET_APPROVAL"
    OTB_APPROVAL = "OTB_APPROVAL"
    SKU_APPROVAL = "SKU_APPROVAL"


class ReferenceType(Enum):
    """Business entities guarded by a workflow"""
    BUDGET = "budget"
    OTB = "otb"
    SKU = "sku"


class UserRole(Enum):
    """Roles that approval steps are gated on"""
    ADMIN = "ADMIN"
    FINANCE_HEAD = "FINANCE_HEAD"
    FINANCE_USER = "FINANCE_USER"
    BOD_MEMBER = "BOD_MEMBER"
    BRAND_MANAGER = "BRAND_MANAGER"
    BRAND_PLANNER = "BRAND_PLANNER"
    MERCHANDISE_LEAD = "MERCHANDISE_LEAD"


@dataclass(frozen=True)
class StepTemplate:
    """Definition of a single approval step"""
    name: str
    description: str
    required_role: Optional[UserRole] = None
    sla_hours: Optional[float] = None
    skippable: bool = False


@dataclass(frozen=True)
class WorkflowDefinition:
    """Ordered approval chain for one workflow type"""
    workflow_type: WorkflowType
    name: str
    description: str
    steps: Tuple[StepTemplate, ...]
    sla_hours: Optional[float] = None  # recommended overall SLA

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def step(self, step_number: int) -> Optional[StepTemplate]:
        """Template for a 1-indexed step number, or None when out of range"""
        if 1 <= step_number <= len(self.steps):
            return self.steps[step_number - 1]
        return None


WORKFLOW_DEFINITIONS: Mapping[WorkflowType, WorkflowDefinition] = MappingProxyType({
    WorkflowType.BUDGET_APPROVAL: WorkflowDefinition(
        workflow_type=WorkflowType.BUDGET_APPROVAL,
        name="Budget Approval",
        description="Approval workflow for budget allocations",
        sla_hours=72,
        steps=(
            StepTemplate(
                name="Finance Review",
                description="Review budget allocation details and verify amounts",
                required_role=UserRole.FINANCE_HEAD,
                sla_hours=24,
            ),
            StepTemplate(
                name="BOD Approval",
                description="Final approval by Board of Directors",
                required_role=UserRole.BOD_MEMBER,
                sla_hours=48,
            ),
        ),
    ),
    WorkflowType.OTB_APPROVAL: WorkflowDefinition(
        workflow_type=WorkflowType.OTB_APPROVAL,
        name="OTB Plan Approval",
        description="Approval workflow for OTB plans",
        sla_hours=96,
        steps=(
            StepTemplate(
                name="Brand Manager Review",
                description="Review OTB allocations and category breakdown",
                required_role=UserRole.BRAND_MANAGER,
                sla_hours=24,
            ),
            StepTemplate(
                name="Finance Review",
                description="Verify budget alignment and financial metrics",
                required_role=UserRole.FINANCE_HEAD,
                sla_hours=24,
            ),
            StepTemplate(
                name="Merchandise Review",
                description="Review sizing and SKU selection strategy",
                required_role=UserRole.MERCHANDISE_LEAD,
                sla_hours=24,
                skippable=True,
            ),
            StepTemplate(
                name="BOD Approval",
                description="Final approval by Board of Directors",
                required_role=UserRole.BOD_MEMBER,
                sla_hours=24,
            ),
        ),
    ),
    WorkflowType.SKU_APPROVAL: WorkflowDefinition(
        workflow_type=WorkflowType.SKU_APPROVAL,
        name="SKU Proposal Approval",
        description="Approval workflow for SKU proposals",
        sla_hours=72,
        steps=(
            StepTemplate(
                name="Brand Planner Review",
                description="Verify SKU details and alignment with OTB plan",
                required_role=UserRole.BRAND_PLANNER,
                sla_hours=24,
            ),
            StepTemplate(
                name="Brand Manager Approval",
                description="Approve SKU selection and quantities",
                required_role=UserRole.BRAND_MANAGER,
                sla_hours=24,
            ),
            StepTemplate(
                name="Finance Sign-off",
                description="Final financial verification and sign-off",
                required_role=UserRole.FINANCE_USER,
                sla_hours=24,
            ),
        ),
    ),
})


def coerce_workflow_type(workflow_type: Union[WorkflowType, str]) -> WorkflowType:
    """Accept a WorkflowType or its string value"""
    if isinstance(workflow_type, WorkflowType):
        return workflow_type
    try:
        return WorkflowType(workflow_type)
    except ValueError:
        raise UnknownWorkflowType(workflow_type) from None


def lookup(workflow_type: Union[WorkflowType, str],
           registry: Mapping[WorkflowType, WorkflowDefinition] = WORKFLOW_DEFINITIONS) -> WorkflowDefinition:
    """Resolve the definition for a workflow type or raise UnknownWorkflowType"""
    resolved = coerce_workflow_type(workflow_type)
    definition = registry.get(resolved)
    if definition is None:
        raise UnknownWorkflowType(workflow_type)
    return definition


def get_step_index(workflow_type: Union[WorkflowType, str], step_name: str) -> int:
    """0-based index of the named step, or -1"""
    for index, step in enumerate(lookup(workflow_type).steps):
        if step.name == step_name:
            return index
    return -1


def get_next_assignee_role(workflow_type: Union[WorkflowType, str],
                           current_step: int) -> Optional[UserRole]:
    """Role that must act after the 1-indexed ``current_step``"""
    next_step = lookup(workflow_type).step(current_step + 1)
    return next_step.required_role if next_step else None


DEFAULT_STEP_SLA_HOURS = 24


def calculate_estimated_completion(workflow_type: Union[WorkflowType, str], current_step: int,
                                   now: Optional[datetime] = None,
                                   registry: Mapping[WorkflowType, WorkflowDefinition] = WORKFLOW_DEFINITIONS) -> datetime:
    """
    Expected completion time if every remaining step, the current one
    included, takes its full SLA. Steps without an SLA count as
    DEFAULT_STEP_SLA_HOURS.
    """
    now = now or datetime.now(timezone.utc)
    remaining = lookup(workflow_type, registry).steps[max(current_step - 1, 0):]
    hours = sum(step.sla_hours or DEFAULT_STEP_SLA_HOURS for step in remaining)
    return now + timedelta(hours=hours)


def can_user_act_on_step(user_role: Union[UserRole, str], user_id: str,
                         required_role: Optional[str] = None,
                         assigned_user_id: Optional[str] = None) -> bool:
    """True when the user is assigned, holds the required role, or is an admin"""
    role_value = user_role.value if isinstance(user_role, UserRole) else user_role

    if assigned_user_id and assigned_user_id == user_id:
        return True
    if required_role and required_role == role_value:
        return True
    return role_value == UserRole.ADMIN.value
