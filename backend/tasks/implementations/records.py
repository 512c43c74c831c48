"""Record actions: follow-up tasks and lead/client field updates."""

from tasks.base_task import ActionResult, CollaboratorAction


class CreateTaskAction(CollaboratorAction):
    """Create a follow-up task linked to the entity.

    The created task id is kept in the execution's data.
    """

    step_type = "create_task"
    display_name = "Create Task"
    collaborator_method = "create_task"

    async def execute(self, config, entity_id, context) -> ActionResult:
        result = await super().execute(config, entity_id, context)
        # Collaborators answer in either naming style
        if "taskId" in result.output:
            result.output["task_id"] = result.output.pop("taskId")
        return result


class UpdateLeadAction(CollaboratorAction):
    """Write field values to a lead."""

    step_type = "update_lead"
    display_name = "Update Lead"
    collaborator_method = "update_lead"


class UpdateClientAction(CollaboratorAction):
    """Write field values to a client."""

    step_type = "update_client"
    display_name = "Update Client"
    collaborator_method = "update_client"


RECORD_ACTION_TYPES = {
    "create_task": CreateTaskAction,
    "update_lead": UpdateLeadAction,
    "update_client": UpdateClientAction,
}
