"""Pre-built workflow templates.

Each template lists its steps in order. A condition step may name its
branch targets by relative position (``on_true_offset`` /
``on_false_offset``); they are resolved to real step ids when a workflow
is created from the template.
"""

from core.constants import TriggerType

WORKFLOW_TEMPLATES = [
    {
        "name": "New Lead Follow-Up",
        "description": "Automatically send follow-up emails to new leads",
        "trigger_type": TriggerType.LEAD_STAGE_CHANGE.value,
        "steps": [
            {"step_type": "wait", "name": "Wait 1 day", "wait_duration": 1440, "wait_unit": "minutes"},
            {
                "step_type": "send_email",
                "name": "Send follow-up email",
                "config": {"subject": "Following up on your inquiry"},
            },
            {"step_type": "wait", "name": "Wait 3 days", "wait_duration": 4320, "wait_unit": "minutes"},
            {
                "step_type": "create_task",
                "name": "Create follow-up task",
                "config": {"title": "Follow up with lead"},
            },
        ],
    },
    {
        "name": "Payment Reminder",
        "description": "Send reminders for overdue payments",
        "trigger_type": TriggerType.PAYMENT_OVERDUE.value,
        "steps": [
            {
                "step_type": "send_email",
                "name": "Send reminder email",
                "config": {"subject": "Payment Reminder"},
            },
            {"step_type": "wait", "name": "Wait 7 days", "wait_duration": 10080, "wait_unit": "minutes"},
            {
                "step_type": "send_sms",
                "name": "Send SMS reminder",
                "config": {"message": "Payment is overdue"},
            },
        ],
    },
    {
        "name": "RSVP Thank You",
        "description": "Send thank you message when guest RSVPs",
        "trigger_type": TriggerType.RSVP_RECEIVED.value,
        "steps": [
            {
                "step_type": "send_email",
                "name": "Send thank you email",
                "config": {"subject": "Thank you for your RSVP!"},
            },
        ],
    },
    {
        "name": "Wedding Countdown",
        "description": "Send countdown reminders before wedding",
        "trigger_type": TriggerType.EVENT_DATE_APPROACHING.value,
        "steps": [
            {
                "step_type": "condition",
                "name": "Check 30 days before",
                "condition_type": "days_before",
                "condition_value": "30",
                "on_true_offset": 1,
            },
            {
                "step_type": "send_email",
                "name": "Send 30-day reminder",
                "config": {"subject": "30 Days Until Your Big Day!"},
            },
            {
                "step_type": "condition",
                "name": "Check 7 days before",
                "condition_type": "days_before",
                "condition_value": "7",
                "on_true_offset": 1,
            },
            {
                "step_type": "send_email",
                "name": "Send 7-day reminder",
                "config": {"subject": "One Week to Go!"},
            },
            {
                "step_type": "condition",
                "name": "Check 1 day before",
                "condition_type": "days_before",
                "condition_value": "1",
                "on_true_offset": 1,
            },
            {
                "step_type": "send_email",
                "name": "Send final reminder",
                "config": {"subject": "Tomorrow is the Big Day!"},
            },
        ],
    },
    {
        "name": "Proposal Follow-Up",
        "description": "Follow up on sent proposals",
        "trigger_type": TriggerType.PROPOSAL_ACCEPTED.value,
        "steps": [
            {
                "step_type": "send_email",
                "name": "Send congratulations email",
                "config": {"subject": "Welcome! Let's Plan Your Dream Wedding"},
            },
            {
                "step_type": "create_task",
                "name": "Create onboarding task",
                "config": {"title": "Complete client onboarding"},
            },
        ],
    },
]


def list_templates() -> list[dict]:
    """Return template summaries with their index."""
    return [
        {
            "index": index,
            "name": template["name"],
            "description": template["description"],
            "trigger_type": template["trigger_type"],
            "step_count": len(template["steps"]),
        }
        for index, template in enumerate(WORKFLOW_TEMPLATES)
    ]
