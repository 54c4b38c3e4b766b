"""
FastAPI REST API Module

HTTP surface over the approval workflow operations: create a workflow, act
on its active step, read details and pending approvals, and trigger an SLA
scan.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from fastapi import FastAPI, HTTPException, Depends, Request, status
from pydantic import BaseModel, Field

from .definitions import calculate_estimated_completion
from .errors import WorkflowError, UnknownWorkflowType, NotFoundError, InvalidStateError
from .system import ApprovalSystem
from .sla import SLAMonitor
from .workflows import WorkflowDetails, get_progress_percentage


class CreateWorkflowRequest(BaseModel):
    workflow_type: str = Field(..., description="BUDGET_APPROVAL, OTB_APPROVAL or SKU_APPROVAL")
    reference_id: str
    reference_type: str = Field(..., description="budget, otb or sku")
    initiated_by: str
    sla_hours: Optional[float] = Field(None, gt=0, description="Overall SLA in hours")


class WorkflowActionRequest(BaseModel):
    action_by: str
    action: Literal["approve", "reject", "skip"]
    comment: Optional[str] = None


def details_to_dict(details: WorkflowDetails, monitor: Optional[SLAMonitor] = None) -> Dict[str, Any]:
    workflow = details.workflow
    data = workflow.to_dict()
    data['progress'] = get_progress_percentage(workflow.total_steps, workflow.current_step, workflow.status)

    steps = []
    for step in details.steps:
        step_data = step.to_dict()
        if monitor:
            step_data['sla_status'] = monitor.step_sla_status(step)
        steps.append(step_data)
    data['steps'] = steps

    if monitor and not workflow.is_terminal:
        engine = monitor.engine
        data['estimated_completion'] = calculate_estimated_completion(
            workflow.workflow_type, workflow.current_step, engine.clock(), engine.definitions
        ).isoformat()
    return data


def _http_error(error: WorkflowError) -> HTTPException:
    if isinstance(error, UnknownWorkflowType):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, InvalidStateError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail={"error": error.reason, "message": error.message})


def get_approval_system(request: Request) -> ApprovalSystem:
    return request.app.state.system


def create_app(system: ApprovalSystem) -> FastAPI:
    """Build the API around an explicitly constructed ApprovalSystem"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        system.start()
        yield
        system.close()

    app = FastAPI(
        title="Merchandise Planning Approvals API",
        description="Approval workflows for budgets, OTB plans and SKU proposals",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.system = system

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.post("/workflows", status_code=status.HTTP_201_CREATED)
    def create_workflow(request: CreateWorkflowRequest,
                        system: ApprovalSystem = Depends(get_approval_system)):
        """Start an approval workflow"""
        try:
            workflow = system.create_workflow(
                request.workflow_type, request.reference_id, request.reference_type,
                request.initiated_by, request.sla_hours
            )
        except WorkflowError as e:
            raise _http_error(e)
        return details_to_dict(system.get_workflow_details(workflow.id), system.sla_monitor)

    @app.get("/workflows/pending")
    def get_pending_workflows(user_id: Optional[str] = None, role: Optional[str] = None,
                              system: ApprovalSystem = Depends(get_approval_system)):
        """Workflows waiting on a user or role"""
        pending = system.get_pending_workflows(user_id, role)
        return {"workflows": [details_to_dict(d, system.sla_monitor) for d in pending], "total": len(pending)}

    @app.get("/workflows/{workflow_id}")
    def get_workflow(workflow_id: str, system: ApprovalSystem = Depends(get_approval_system)):
        """Workflow with all of its steps"""
        try:
            return details_to_dict(system.get_workflow_details(workflow_id), system.sla_monitor)
        except WorkflowError as e:
            raise _http_error(e)

    @app.post("/workflows/{workflow_id}/steps/{step_number}/actions")
    def process_workflow_action(workflow_id: str, step_number: int, request: WorkflowActionRequest,
                                system: ApprovalSystem = Depends(get_approval_system)):
        """Approve, reject or skip the active step"""
        try:
            result = system.process_workflow_action(
                workflow_id, step_number, request.action_by, request.action, request.comment
            )
        except WorkflowError as e:
            raise _http_error(e)

        response = {"status": result.status, "workflow": result.workflow.to_dict()}
        if result.next_step is not None:
            response["next_step"] = result.next_step
        return response

    @app.post("/sla/check")
    def check_sla_breaches(system: ApprovalSystem = Depends(get_approval_system)):
        """Run one SLA scan now"""
        return system.check_sla_breaches().to_dict()

    return app
