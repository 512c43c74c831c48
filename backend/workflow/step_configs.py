"""Typed step definitions.

Every step type gets its own pydantic model carrying only the fields
that type needs. Definitions are validated when a step is authored, so
the interpreter never sees a malformed configuration at runtime.

Usage:
    definition = parse_step_definition({"step_type": "wait", "wait_duration": 60})
    columns = definition_to_columns(definition)
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    PositiveInt,
    TypeAdapter,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError

from core.constants import ConditionOperator, ConditionType, StepType, WaitUnit
from core.exceptions import ValidationError

# Field a date-based condition reads when none is given
DEFAULT_DATE_FIELD = "event_date"

VALUELESS_OPERATORS = frozenset({ConditionOperator.IS_EMPTY, ConditionOperator.IS_NOT_EMPTY})


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ─── Action configs ────────────────────────────────────────


class EmailConfig(_Strict):
    """Configuration for ``send_email``."""

    subject: Optional[str] = Field(default=None, description="Email subject line")
    body: Optional[str] = Field(default=None, description="Plain body, used without a template")
    template_id: Optional[str] = Field(default=None, description="Email template to render")
    to: Optional[str] = Field(default=None, description="Recipient override")

    @model_validator(mode="after")
    def _needs_subject_or_template(self):
        if not self.subject and not self.template_id:
            raise ValueError("send_email requires 'subject' or 'template_id'")
        return self


class MessageConfig(_Strict):
    """Configuration for ``send_sms`` and ``send_whatsapp``."""

    message: Optional[str] = Field(default=None, description="Message text")
    template_id: Optional[str] = Field(default=None, description="Message template to render")
    to: Optional[str] = Field(default=None, description="Phone number override")

    @model_validator(mode="after")
    def _needs_message_or_template(self):
        if not self.message and not self.template_id:
            raise ValueError("message steps require 'message' or 'template_id'")
        return self


class CreateTaskConfig(_Strict):
    """Configuration for ``create_task``."""

    title: str = Field(min_length=1, description="Task title")
    description: Optional[str] = Field(default=None, description="Task description")
    due_in_days: Optional[int] = Field(default=None, ge=0, description="Due date offset from now")
    assignee_id: Optional[str] = Field(default=None, description="User to assign")
    priority: Optional[str] = Field(default=None, description="Task priority")


class UpdateRecordConfig(_Strict):
    """Configuration for ``update_lead`` and ``update_client``."""

    fields: dict[str, Any] = Field(min_length=1, description="Field values to write")


class NotificationConfig(_Strict):
    """Configuration for ``create_notification``."""

    title: str = Field(min_length=1, description="Notification title")
    message: Optional[str] = Field(default=None, description="Notification body")
    user_id: Optional[str] = Field(default=None, description="Recipient user, defaults to company admins")
    link: Optional[str] = Field(default=None, description="Deep link shown with the notification")


class WebhookConfig(_Strict):
    """Configuration for ``webhook``."""

    url: HttpUrl = Field(description="Target URL (http or https)")
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = Field(default="POST")
    headers: dict[str, str] = Field(default_factory=dict)
    body: Optional[dict[str, Any]] = Field(default=None, description="JSON body merged with entity context")
    timeout_seconds: float = Field(default=30.0, gt=0, le=120)


# ─── Step variants ─────────────────────────────────────────


class _StepBase(_Strict):
    name: Optional[str] = Field(default=None, description="Display name")
    is_active: bool = Field(default=True, description="Disabled steps are passed through")


class SendEmailStep(_StepBase):
    step_type: Literal["send_email"]
    config: EmailConfig


class SendSmsStep(_StepBase):
    step_type: Literal["send_sms"]
    config: MessageConfig


class SendWhatsappStep(_StepBase):
    step_type: Literal["send_whatsapp"]
    config: MessageConfig


class CreateTaskStep(_StepBase):
    step_type: Literal["create_task"]
    config: CreateTaskConfig


class UpdateLeadStep(_StepBase):
    step_type: Literal["update_lead"]
    config: UpdateRecordConfig


class UpdateClientStep(_StepBase):
    step_type: Literal["update_client"]
    config: UpdateRecordConfig


class CreateNotificationStep(_StepBase):
    step_type: Literal["create_notification"]
    config: NotificationConfig


class WebhookStep(_StepBase):
    step_type: Literal["webhook"]
    config: WebhookConfig


class WaitStep(_StepBase):
    step_type: Literal["wait"]
    wait_duration: PositiveInt
    wait_unit: WaitUnit = WaitUnit.MINUTES


class ConditionStep(_StepBase):
    """Branching step.

    ``condition_type`` is a shorthand: ``field_equals`` and
    ``field_contains`` imply their operator, the date-based types read
    ``event_date`` unless a field is given. Without a type, both a field
    and an operator are required.
    """

    step_type: Literal["condition"]
    condition_type: Optional[ConditionType] = None
    condition_field: Optional[str] = Field(default=None, min_length=1)
    condition_operator: Optional[ConditionOperator] = None
    condition_value: Optional[str] = None
    on_true_step_id: Optional[str] = None
    on_false_step_id: Optional[str] = None

    @model_validator(mode="after")
    def _resolve_shorthand(self):
        ctype = self.condition_type
        if ctype == ConditionType.FIELD_EQUALS and self.condition_operator is None:
            self.condition_operator = ConditionOperator.EQUALS
        elif ctype == ConditionType.FIELD_CONTAINS and self.condition_operator is None:
            self.condition_operator = ConditionOperator.CONTAINS
        elif ctype in (ConditionType.DATE_PASSED, ConditionType.DAYS_BEFORE):
            if not self.condition_field:
                self.condition_field = DEFAULT_DATE_FIELD
            if ctype == ConditionType.DAYS_BEFORE:
                try:
                    days = int(self.condition_value)
                except (TypeError, ValueError):
                    raise ValueError("days_before requires an integer 'condition_value'")
                if days < 0:
                    raise ValueError("days_before requires a non-negative 'condition_value'")
            return self

        if not self.condition_field:
            raise ValueError("condition requires 'condition_field'")
        if self.condition_operator is None:
            raise ValueError("condition requires 'condition_operator' or 'condition_type'")
        if self.condition_operator not in VALUELESS_OPERATORS and self.condition_value is None:
            raise ValueError(
                f"operator '{self.condition_operator.value}' requires 'condition_value'"
            )
        return self


StepDefinition = Annotated[
    Union[
        SendEmailStep,
        SendSmsStep,
        SendWhatsappStep,
        CreateTaskStep,
        UpdateLeadStep,
        UpdateClientStep,
        CreateNotificationStep,
        WebhookStep,
        WaitStep,
        ConditionStep,
    ],
    Field(discriminator="step_type"),
]

_adapter: TypeAdapter = TypeAdapter(StepDefinition)


def _format_errors(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        # First location segment is the union tag
        loc = ".".join(str(p) for p in err["loc"][1:])
        msg = err["msg"].removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def parse_step_definition(data: dict[str, Any]):
    """Validate a raw step definition into its typed variant.

    Raises:
        ValidationError: unknown step type or a config that does not fit it
    """
    if "step_type" not in data:
        raise ValidationError("step_type is required")
    try:
        return _adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {data.get('step_type')} step: {_format_errors(exc)}")


def definition_to_columns(definition) -> dict[str, Any]:
    """Flatten a typed definition into WorkflowStep column values.

    Columns that do not belong to the step type are reset to None so a
    step whose type changed keeps no stale wait or condition data.
    """
    columns: dict[str, Any] = {
        "step_type": definition.step_type,
        "name": definition.name,
        "is_active": definition.is_active,
        "config": None,
        "wait_duration": None,
        "wait_unit": None,
        "condition_type": None,
        "condition_field": None,
        "condition_operator": None,
        "condition_value": None,
        "on_true_step_id": None,
        "on_false_step_id": None,
    }
    if isinstance(definition, WaitStep):
        columns["wait_duration"] = definition.wait_duration
        columns["wait_unit"] = definition.wait_unit.value
    elif isinstance(definition, ConditionStep):
        columns.update(
            condition_type=definition.condition_type.value if definition.condition_type else None,
            condition_field=definition.condition_field,
            condition_operator=(
                definition.condition_operator.value if definition.condition_operator else None
            ),
            condition_value=definition.condition_value,
            on_true_step_id=definition.on_true_step_id,
            on_false_step_id=definition.on_false_step_id,
        )
    else:
        columns["config"] = definition.config.model_dump(mode="json", exclude_none=True)
    return columns


def step_to_definition_data(step) -> dict[str, Any]:
    """Rebuild the raw definition dict of a stored WorkflowStep."""
    data: dict[str, Any] = {
        "step_type": step.step_type,
        "name": step.name,
        "is_active": step.is_active,
    }
    if step.step_type == StepType.WAIT.value:
        data.update(wait_duration=step.wait_duration, wait_unit=step.wait_unit or WaitUnit.MINUTES.value)
    elif step.step_type == StepType.CONDITION.value:
        for key in (
            "condition_type",
            "condition_field",
            "condition_operator",
            "condition_value",
            "on_true_step_id",
            "on_false_step_id",
        ):
            value = getattr(step, key)
            if value is not None:
                data[key] = value
    else:
        data["config"] = dict(step.config or {})
    return data


def merge_step_definition(step, changes: dict[str, Any]):
    """Apply a partial update to a stored step and re-validate the result.

    Top-level keys in ``changes`` replace the stored ones; ``config`` is
    replaced as a whole. Changing ``step_type`` drops the type-specific
    fields of the old type.
    """
    current = step_to_definition_data(step)
    new_type = changes.get("step_type", step.step_type)
    if new_type != step.step_type:
        current = {"name": current["name"], "is_active": current["is_active"]}
    current.update(changes)
    current["step_type"] = new_type
    return parse_step_definition(current)
