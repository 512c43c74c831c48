"""Constants and enums for the workflow automation engine."""

from enum import Enum


class TriggerType(str, Enum):
    """What causes a workflow execution to start."""

    LEAD_STAGE_CHANGE = "lead_stage_change"
    CLIENT_CREATED = "client_created"
    EVENT_DATE_APPROACHING = "event_date_approaching"
    PAYMENT_OVERDUE = "payment_overdue"
    RSVP_RECEIVED = "rsvp_received"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    CONTRACT_SIGNED = "contract_signed"
    SCHEDULED = "scheduled"
    MANUAL = "manual"


# Trigger types fed by business events (as opposed to cron ticks or manual calls)
EVENT_TRIGGER_TYPES = frozenset(
    t.value for t in TriggerType if t not in (TriggerType.SCHEDULED, TriggerType.MANUAL)
)


class StepType(str, Enum):
    """Kind of node in a workflow's step graph."""

    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    SEND_WHATSAPP = "send_whatsapp"
    WAIT = "wait"
    CONDITION = "condition"
    CREATE_TASK = "create_task"
    UPDATE_LEAD = "update_lead"
    UPDATE_CLIENT = "update_client"
    CREATE_NOTIFICATION = "create_notification"
    WEBHOOK = "webhook"


# Step types that call out to a collaborator
ACTION_STEP_TYPES = frozenset(
    t.value for t in StepType if t not in (StepType.WAIT, StepType.CONDITION)
)


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    s.value for s in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED)
)


class WaitUnit(str, Enum):
    """Unit of a wait step's duration."""

    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class ConditionType(str, Enum):
    """Shorthand condition kinds that imply an operator."""

    FIELD_EQUALS = "field_equals"
    FIELD_CONTAINS = "field_contains"
    DATE_PASSED = "date_passed"
    DAYS_BEFORE = "days_before"


class ConditionOperator(str, Enum):
    """Comparison applied by a condition step."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class LogStatus(str, Enum):
    """Outcome recorded on an execution log entry."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    WAITING = "waiting"
    RESUMED = "resumed"
    CANCELLED = "cancelled"
    INFO = "info"
    WARNING = "warning"


class JobStatus(str, Enum):
    """Status of a row in the durable job queue."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(str, Enum):
    """Kinds of queued jobs."""

    WORKFLOW_STEP = "workflow_step"
