"""
Approval system wiring.

Builds storage, collaborators, the workflow engine and the SLA monitor from
configuration, and exposes the operations the surrounding application calls.
"""

from typing import List, Optional

from .config import MerchPlanningConfig, get_config
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .directory import UserDirectory
from .entity_status import EntityStatusProjector, StorageEntityStatusProjector
from .notifications import NotificationSink, InAppNotificationSink, WebhookNotificationSink
from .workflows import WorkflowEngine, WorkflowInstance, WorkflowDetails, ActionResult
from .sla import SLAMonitor, SLAScheduler, SLAScanResult


class ApprovalSystem:
    """Approval workflow service with all components initialized"""

    def __init__(self, config: Optional[MerchPlanningConfig] = None,
                 storage: Optional[StorageInterface] = None,
                 notifier: Optional[NotificationSink] = None,
                 projector: Optional[EntityStatusProjector] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)

        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.directory = UserDirectory(self.storage)

        if notifier is None:
            if self.config.notification_webhook_url:
                notifier = WebhookNotificationSink(self.config.notification_webhook_url,
                                                   timeout=self.config.notification_webhook_timeout)
            else:
                notifier = InAppNotificationSink(self.storage)
        self.notifier = notifier
        self.projector = projector or StorageEntityStatusProjector(self.storage)

        self.engine = WorkflowEngine(
            self.storage, self.notifier, self.projector,
            self.directory.users_with_role, self.audit_trail
        )
        self.sla_monitor = SLAMonitor(
            self.engine,
            warning_hours=self.config.sla_warning_hours,
            send_warnings=self.config.sla_warning_notifications
        )
        self.sla_scheduler = SLAScheduler(self.sla_monitor, self.config.sla_scan_interval_seconds)

    def create_workflow(self, workflow_type, reference_id: str, reference_type, initiated_by: str,
                        sla_hours: Optional[float] = None) -> WorkflowInstance:
        return self.engine.create_workflow(workflow_type, reference_id, reference_type,
                                           initiated_by, sla_hours)

    def process_workflow_action(self, workflow_id: str, step_number: int, action_by: str,
                                action, comment: Optional[str] = None) -> ActionResult:
        return self.engine.process_workflow_action(workflow_id, step_number, action_by,
                                                   action, comment)

    def get_workflow_details(self, workflow_id: str) -> WorkflowDetails:
        return self.engine.get_workflow_details(workflow_id)

    def get_pending_workflows(self, user_id: Optional[str], role) -> List[WorkflowDetails]:
        return self.engine.get_pending_workflows(user_id, role)

    def check_sla_breaches(self) -> SLAScanResult:
        return self.sla_monitor.check_sla_breaches()

    def start(self) -> None:
        """Start background SLA scanning when an interval is configured"""
        if self.config.sla_scan_interval_seconds > 0:
            self.sla_scheduler.start()

    def close(self) -> None:
        self.sla_scheduler.stop()
        self.storage.close()
