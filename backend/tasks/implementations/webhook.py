"""Webhook action: an outbound HTTP call described by the step config."""

from tasks.base_task import ActionResult, CollaboratorAction


class WebhookAction(CollaboratorAction):
    """Call an external URL.

    Config:
        url: Target URL (http or https)
        method: GET, POST, PUT, PATCH or DELETE (default: POST)
        headers: Extra request headers
        body: JSON body, sent with entity_id and execution context
        timeout_seconds: Request timeout (default: 30)
    """

    step_type = "webhook"
    display_name = "Webhook"
    collaborator_method = "call_webhook"

    async def execute(self, config, entity_id, context) -> ActionResult:
        result = await super().execute(config, entity_id, context)
        if "statusCode" in result.output:
            result.output["status_code"] = result.output.pop("statusCode")
        return result


WEBHOOK_ACTION_TYPES = {
    "webhook": WebhookAction,
}
