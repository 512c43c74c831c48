"""Tests for workflow and step authoring services."""

import pytest

from core.exceptions import NotFoundError, ValidationError
from services.workflow_service import WorkflowService
from workflow.templates import WORKFLOW_TEMPLATES

EMAIL = {"step_type": "send_email", "name": "Email", "config": {"subject": "Hi"}}
SMS = {"step_type": "send_sms", "name": "SMS", "config": {"message": "Hi"}}
TASK = {"step_type": "create_task", "name": "Task", "config": {"title": "Call"}}
WAIT = {"step_type": "wait", "name": "Wait", "wait_duration": 1, "wait_unit": "days"}


def _orders(steps):
    return [(s.name, s.step_order) for s in sorted(steps, key=lambda s: s.step_order)]


@pytest.mark.integration
class TestWorkflowService:
    async def test_create_with_steps(self, make_workflow):
        wf = await make_workflow(steps=[EMAIL, WAIT, TASK])
        assert _orders(wf.steps) == [("Email", 0), ("Wait", 1), ("Task", 2)]
        assert wf.is_active is True
        assert wf.timezone == "UTC"

    async def test_name_required(self, db_session, company_id):
        with pytest.raises(ValidationError):
            await WorkflowService(db_session).create_workflow(company_id, "   ")

    async def test_unknown_trigger_type(self, db_session, company_id):
        with pytest.raises(ValidationError, match="Unknown trigger type"):
            await WorkflowService(db_session).create_workflow(company_id, "WF", trigger_type="telepathy")

    async def test_scheduled_needs_valid_cron(self, db_session, company_id):
        service = WorkflowService(db_session)
        with pytest.raises(ValidationError, match="cron_expression"):
            await service.create_workflow(company_id, "WF", trigger_type="scheduled")
        with pytest.raises(ValidationError, match="Invalid cron"):
            await service.create_workflow(
                company_id, "WF", trigger_type="scheduled", cron_expression="every day"
            )

    async def test_unknown_timezone(self, db_session, company_id):
        with pytest.raises(ValidationError, match="timezone"):
            await WorkflowService(db_session).create_workflow(company_id, "WF", timezone="Mars/Olympus")

    async def test_update_and_deactivate(self, make_workflow, session_factory, company_id):
        wf = await make_workflow()
        async with session_factory() as session:
            async with session.begin():
                service = WorkflowService(session)
                updated = await service.update_workflow(
                    wf.id, company_id, {"name": "Renamed", "trigger_config": {"new_stage": "won"}}
                )
                assert updated.name == "Renamed"
                inactive = await service.set_active(wf.id, company_id, False)
                assert inactive.is_active is False

    async def test_other_company_cannot_see_workflow(self, make_workflow, db_session):
        wf = await make_workflow()
        with pytest.raises(NotFoundError):
            await WorkflowService(db_session).get_workflow(wf.id, "someone-else")

    async def test_list_filters(self, make_workflow, db_session, company_id):
        await make_workflow(name="A")
        await make_workflow(name="B", is_active=False)
        await make_workflow(name="C", trigger_type="rsvp_received")
        service = WorkflowService(db_session)

        items, total = await service.list_workflows(company_id)
        assert total == 3
        _, active = await service.list_workflows(company_id, is_active=True)
        assert active == 2
        items, _ = await service.list_workflows(company_id, trigger_type="rsvp_received")
        assert [w.name for w in items] == ["C"]

    async def test_delete_workflow(self, make_workflow, session_factory, company_id):
        wf = await make_workflow(steps=[EMAIL])
        async with session_factory() as session:
            async with session.begin():
                await WorkflowService(session).delete_workflow(wf.id, company_id)
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await WorkflowService(session).get_workflow(wf.id, company_id)
            assert await WorkflowService(session).steps.list_steps(wf.id) == []


@pytest.mark.integration
class TestStepService:
    async def test_append(self, make_workflow, db_session, company_id):
        wf = await make_workflow(steps=[EMAIL])
        step = await WorkflowService(db_session).steps.add_step(wf.id, company_id, SMS)
        assert step.step_order == 1

    async def test_insert_after_shifts_later_steps(self, make_workflow, db_session, company_id):
        wf = await make_workflow(steps=[EMAIL, TASK])
        steps = WorkflowService(db_session).steps
        await steps.add_step(wf.id, company_id, SMS, insert_after_step_id=wf.steps[0].id)
        assert _orders(await steps.list_steps(wf.id)) == [("Email", 0), ("SMS", 1), ("Task", 2)]

    async def test_insert_after_unknown_step(self, make_workflow, db_session, company_id):
        wf = await make_workflow(steps=[EMAIL])
        with pytest.raises(NotFoundError):
            await WorkflowService(db_session).steps.add_step(
                wf.id, company_id, SMS, insert_after_step_id="missing"
            )

    async def test_invalid_step_rejected(self, make_workflow, db_session, company_id):
        wf = await make_workflow()
        with pytest.raises(ValidationError):
            await WorkflowService(db_session).steps.add_step(
                wf.id, company_id, {"step_type": "send_email", "config": {}}
            )

    async def test_add_to_other_company_workflow(self, make_workflow, db_session):
        wf = await make_workflow()
        with pytest.raises(NotFoundError):
            await WorkflowService(db_session).steps.add_step(wf.id, "someone-else", EMAIL)

    async def test_update_step_revalidates(self, make_workflow, db_session, company_id):
        wf = await make_workflow(steps=[WAIT])
        steps = WorkflowService(db_session).steps
        step = await steps.update_step(wf.id, company_id, wf.steps[0].id, {"wait_duration": 3})
        assert step.wait_duration == 3
        assert step.wait_unit == "days"
        with pytest.raises(ValidationError):
            await steps.update_step(wf.id, company_id, wf.steps[0].id, {"wait_duration": -1})

    async def test_update_step_type_drops_old_fields(self, make_workflow, db_session, company_id):
        wf = await make_workflow(steps=[WAIT])
        step = await WorkflowService(db_session).steps.update_step(
            wf.id, company_id, wf.steps[0].id, {"step_type": "send_sms", "config": {"message": "Hi"}}
        )
        assert step.step_type == "send_sms"
        assert step.wait_duration is None
        assert step.config == {"message": "Hi"}

    async def test_branch_target_must_be_later_step(self, make_workflow, db_session, company_id):
        wf = await make_workflow(steps=[EMAIL, TASK])
        steps = WorkflowService(db_session).steps
        condition = {
            "step_type": "condition",
            "condition_field": "status",
            "condition_operator": "equals",
            "condition_value": "x",
        }
        with pytest.raises(ValidationError, match="later step"):
            await steps.add_step(wf.id, company_id, {**condition, "on_true_step_id": wf.steps[0].id})
        with pytest.raises(ValidationError, match="same workflow"):
            await steps.add_step(wf.id, company_id, {**condition, "on_true_step_id": "elsewhere"})

        cond = await steps.add_step(
            wf.id, company_id, condition, insert_after_step_id=wf.steps[0].id
        )
        updated = await steps.update_step(wf.id, company_id, cond.id, {"on_true_step_id": wf.steps[1].id})
        assert updated.on_true_step_id == wf.steps[1].id
        with pytest.raises(ValidationError, match="itself"):
            await steps.update_step(wf.id, company_id, cond.id, {"on_false_step_id": cond.id})

    async def test_delete_clears_branches_and_closes_gap(self, make_workflow, db_session, company_id):
        wf = await make_workflow(steps=[
            {
                "step_type": "condition",
                "name": "Check",
                "condition_field": "status",
                "condition_operator": "equals",
                "condition_value": "x",
            },
            EMAIL,
            TASK,
        ])
        steps = WorkflowService(db_session).steps
        cond_id, email_id = wf.steps[0].id, wf.steps[1].id
        await steps.update_step(wf.id, company_id, cond_id, {"on_true_step_id": email_id})

        await steps.delete_step(wf.id, company_id, email_id)
        remaining = await steps.list_steps(wf.id)
        assert _orders(remaining) == [("Check", 0), ("Task", 1)]
        assert remaining[0].on_true_step_id is None

    async def test_reorder(self, make_workflow, db_session, company_id):
        wf = await make_workflow(steps=[EMAIL, SMS, TASK])
        ids = [s.id for s in wf.steps]
        reordered = await WorkflowService(db_session).steps.reorder_steps(
            wf.id, company_id, [ids[2], ids[0], ids[1]]
        )
        assert _orders(reordered) == [("Task", 0), ("Email", 1), ("SMS", 2)]

    async def test_reorder_rejects_wrong_ids(self, make_workflow, db_session, company_id):
        wf = await make_workflow(steps=[EMAIL, SMS])
        steps = WorkflowService(db_session).steps
        ids = [s.id for s in wf.steps]
        with pytest.raises(ValidationError, match="repeat"):
            await steps.reorder_steps(wf.id, company_id, [ids[0], ids[0]])
        with pytest.raises(ValidationError, match="exactly"):
            await steps.reorder_steps(wf.id, company_id, [ids[0]])
        with pytest.raises(ValidationError, match="exactly"):
            await steps.reorder_steps(wf.id, company_id, [*ids, "stranger"])
        assert _orders(await steps.list_steps(wf.id)) == [("Email", 0), ("SMS", 1)]

    async def test_reorder_rejects_backward_branch(self, make_workflow, db_session, company_id):
        wf = await make_workflow(steps=[
            {
                "step_type": "condition",
                "name": "Check",
                "condition_field": "status",
                "condition_operator": "equals",
                "condition_value": "x",
            },
            EMAIL,
        ])
        steps = WorkflowService(db_session).steps
        cond_id, email_id = wf.steps[0].id, wf.steps[1].id
        await steps.update_step(wf.id, company_id, cond_id, {"on_true_step_id": email_id})
        with pytest.raises(ValidationError, match="backwards"):
            await steps.reorder_steps(wf.id, company_id, [email_id, cond_id])


@pytest.mark.integration
class TestTemplates:
    async def test_every_template_instantiates(self, db_session, company_id):
        service = WorkflowService(db_session)
        for index, template in enumerate(WORKFLOW_TEMPLATES):
            wf = await service.create_from_template(company_id, index)
            assert wf.name == template["name"]
            assert wf.is_active is False
            assert wf.trigger_type == template["trigger_type"]
            assert [s.step_order for s in wf.steps] == list(range(len(template["steps"])))

    async def test_branch_offsets_resolved(self, db_session, company_id):
        index = next(i for i, t in enumerate(WORKFLOW_TEMPLATES) if t["name"] == "Wedding Countdown")
        wf = await WorkflowService(db_session).create_from_template(company_id, index, name="Countdown")
        assert wf.name == "Countdown"
        first_check, first_email = wf.steps[0], wf.steps[1]
        assert first_check.on_true_step_id == first_email.id
        assert first_check.condition_field == "event_date"

    async def test_unknown_template(self, db_session, company_id):
        with pytest.raises(NotFoundError):
            await WorkflowService(db_session).create_from_template(company_id, 99)
