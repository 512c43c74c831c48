"""Messaging actions: email, SMS, WhatsApp and in-app notifications."""

from tasks.base_task import CollaboratorAction


class SendEmailAction(CollaboratorAction):
    """Send an email to the execution's entity."""

    step_type = "send_email"
    display_name = "Send Email"
    collaborator_method = "send_email"


class SendSmsAction(CollaboratorAction):
    """Send an SMS to the execution's entity."""

    step_type = "send_sms"
    display_name = "Send SMS"
    collaborator_method = "send_sms"


class SendWhatsappAction(CollaboratorAction):
    """Send a WhatsApp message to the execution's entity."""

    step_type = "send_whatsapp"
    display_name = "Send WhatsApp"
    collaborator_method = "send_whatsapp"


class CreateNotificationAction(CollaboratorAction):
    """Create an in-app notification for company users."""

    step_type = "create_notification"
    display_name = "Create Notification"
    collaborator_method = "create_notification"


MESSAGING_ACTION_TYPES = {
    "send_email": SendEmailAction,
    "send_sms": SendSmsAction,
    "send_whatsapp": SendWhatsappAction,
    "create_notification": CreateNotificationAction,
}
