"""
SLA Monitor Module

Scans in-flight workflows against their deadlines. Overall workflow
deadlines that have passed are flagged once and escalated to the initiator;
active steps whose due time falls inside the warning window are counted and
their approvers warned once.
"""

from datetime import datetime, timezone, timedelta
from dataclasses import dataclass
from typing import Dict, Optional
import logging
import threading

from .audit import AuditEventType
from .notifications import NotificationType, NotificationPriority, entity_url, approval_url
from .workflows import (
    WorkflowEngine, WorkflowInstance, WorkflowStep, WorkflowStatus, StepStatus,
    INSTANCES_TABLE, STEPS_TABLE
)


logger = logging.getLogger(__name__)

DEFAULT_WARNING_HOURS = 4


@dataclass
class SLAScanResult:
    """Counts produced by one SLA scan"""
    breached_count: int
    warning_count: int

    def to_dict(self):
        return {'breached_count': self.breached_count, 'warning_count': self.warning_count}


def format_time_remaining(remaining: timedelta) -> str:
    """Human-readable remaining time such as ``3h 20m``"""
    minutes = max(int(remaining.total_seconds() // 60), 0)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def get_sla_status(due_at: Optional[datetime], completed_at: Optional[datetime] = None,
                   now: Optional[datetime] = None,
                   warning_hours: float = DEFAULT_WARNING_HOURS) -> Dict[str, str]:
    """
    Classify a deadline as ``ok``, ``warning`` or ``breached``.

    Measured at ``completed_at`` when the work is done, otherwise at ``now``.
    Returns a dict with ``status`` and a short ``message``.
    """
    if not due_at:
        return {'status': 'ok', 'message': 'No SLA set'}

    reference = completed_at or now or datetime.now(timezone.utc)
    hours_remaining = (due_at - reference).total_seconds() / 3600

    if hours_remaining < 0:
        return {'status': 'breached', 'message': f"Overdue by {abs(hours_remaining):.1f} hours"}
    if hours_remaining < warning_hours:
        return {'status': 'warning', 'message': f"Due in {hours_remaining:.1f} hours"}
    return {'status': 'ok', 'message': f"{hours_remaining:.0f} hours remaining"}


class SLAMonitor:
    """Breach and warning detection over the engine's storage"""

    def __init__(self, engine: WorkflowEngine, warning_hours: float = DEFAULT_WARNING_HOURS,
                 send_warnings: bool = True):
        self.engine = engine
        self.storage = engine.storage
        self.warning_window = timedelta(hours=warning_hours)
        self.send_warnings = send_warnings

    def step_sla_status(self, step: WorkflowStep) -> Dict[str, str]:
        """SLA status of one step, measured at its action time once acted on"""
        return get_sla_status(step.due_at, step.action_at, self.engine.clock(),
                              self.warning_window.total_seconds() / 3600)

    def check_sla_breaches(self) -> SLAScanResult:
        """
        Run one scan.

        Each newly breached workflow is flagged with a compare-and-set on
        ``sla_breached`` and notified exactly once; workflows already flagged,
        or flagged by a concurrent scan, are not counted.
        """
        now = self.engine.clock()

        breached = 0
        for workflow in self._breach_candidates(now):
            if self._flag_breach(workflow, now):
                breached += 1

        warnings = 0
        for step in self._warning_candidates(now):
            warnings += 1
            if self.send_warnings:
                self.emit_step_warning(step, now)

        if breached or warnings:
            logger.info(f"SLA scan: {breached} breached, {warnings} approaching deadline")

        return SLAScanResult(breached_count=breached, warning_count=warnings)

    def _breach_candidates(self, now: datetime):
        rows = self.storage.find(INSTANCES_TABLE, {
            'status': WorkflowStatus.IN_PROGRESS.value,
            'sla_breached': False
        })
        for row in rows:
            workflow = WorkflowInstance.from_dict(row)
            if workflow.sla_deadline and workflow.sla_deadline < now:
                yield workflow

    def _warning_candidates(self, now: datetime):
        horizon = now + self.warning_window
        rows = self.storage.find(STEPS_TABLE, {'status': StepStatus.IN_PROGRESS.value})
        for row in rows:
            step = WorkflowStep.from_dict(row)
            if step.due_at and now < step.due_at < horizon:
                yield step

    def _flag_breach(self, workflow: WorkflowInstance, now: datetime) -> bool:
        flipped = self.storage.compare_and_set(
            INSTANCES_TABLE, workflow.id,
            {'status': WorkflowStatus.IN_PROGRESS.value, 'sla_breached': False},
            {'sla_breached': True, 'updated_at': now.isoformat()}
        )
        if not flipped:
            return False

        logger.warning(f"Workflow {workflow.id} breached its SLA deadline {workflow.sla_deadline.isoformat()}")
        self.engine.log_audit(AuditEventType.WORKFLOW_SLA_BREACHED, workflow.id,
                              {'sla_deadline': workflow.sla_deadline}, 'system')

        self.engine.notifier.notify(
            [workflow.initiated_by],
            NotificationType.SLA_BREACHED,
            "SLA Breached",
            f"Workflow for {workflow.reference_type} has exceeded SLA deadline.",
            entity_url(workflow.reference_type, workflow.reference_id),
            NotificationPriority.CRITICAL,
            reference_id=workflow.reference_id,
            reference_type=workflow.reference_type
        )
        return True

    def emit_step_warning(self, step: WorkflowStep, now: Optional[datetime] = None) -> bool:
        """
        Warn the approvers of an active step that its deadline is close.

        Sent at most once per step; returns False when the warning was
        already sent (or the step is no longer active).
        """
        now = now or self.engine.clock()
        marked = self.storage.compare_and_set(
            STEPS_TABLE, step.id,
            {'status': StepStatus.IN_PROGRESS.value, 'sla_warning_sent_at': None},
            {'sla_warning_sent_at': now.isoformat()}
        )
        if not marked:
            return False

        workflow = self.engine.get_workflow(step.workflow_id)
        if not workflow:
            return False

        if step.assigned_user_id:
            recipients = [step.assigned_user_id]
        else:
            recipients = self.engine.resolve_users_by_role(step.required_role) if step.required_role else []

        self.engine.log_audit(AuditEventType.WORKFLOW_SLA_WARNING, workflow.id,
                              {'step_number': step.step_number, 'due_at': step.due_at}, 'system')

        if not recipients:
            logger.warning(f"No recipients for SLA warning on step {step.step_number} of workflow {workflow.id}")
            return True

        remaining = format_time_remaining(step.due_at - now)
        self.engine.notifier.notify(
            recipients,
            NotificationType.SLA_WARNING,
            "SLA Deadline Approaching",
            f"You have {remaining} remaining to complete {step.name} "
            f"for {workflow.reference_type} {workflow.reference_id}.",
            approval_url(workflow.id),
            NotificationPriority.HIGH,
            reference_id=workflow.reference_id,
            reference_type=workflow.reference_type
        )
        return True


class SLAScheduler:
    """Runs SLA scans on a fixed interval in a background thread"""

    def __init__(self, monitor: SLAMonitor, interval_seconds: float = 300):
        self.monitor = monitor
        self.interval_seconds = interval_seconds
        self.last_result: Optional[SLAScanResult] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Optional[SLAScanResult]:
        """One scan; failures are logged so the schedule keeps going"""
        try:
            self.last_result = self.monitor.check_sla_breaches()
            return self.last_result
        except Exception as e:
            logger.error(f"SLA scan failed: {e}", exc_info=True)
            return None

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval_seconds)

    def start(self) -> None:
        """Start the scanner thread"""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="sla-scanner")
        self._thread.daemon = True
        self._thread.start()
        logger.info(f"SLA scanner started (every {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the scanner thread"""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        logger.info("SLA scanner stopped")
