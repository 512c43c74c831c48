"""Tests for the job runner: retries, failures, cancellation and recovery."""

from datetime import timedelta

import pytest

from core.exceptions import NotFoundError
from core.utils import utc_now
from services.execution_service import ExecutionService
from services.job_service import JobService

EMAIL = {"step_type": "send_email", "name": "Email", "config": {"subject": "Hi"}}
SMS = {"step_type": "send_sms", "name": "SMS", "config": {"message": "Hi"}}
WAIT_DAY = {"step_type": "wait", "name": "Wait", "wait_duration": 1, "wait_unit": "days"}


async def _start(engine, workflow, company_id):
    execution = await engine.trigger_manual(workflow.id, "client", "client-1", company_id=company_id)
    return execution.id


async def _jobs(session_factory, execution_id):
    async with session_factory() as session:
        return list(await JobService(session).list_for_execution(execution_id))


@pytest.mark.integration
class TestRetries:
    async def test_failed_step_retried_with_backoff(
        self, engine, make_workflow, company_id, collaborators, clock, drain, session_factory
    ):
        collaborators.failures["send_email"] = 1
        wf = await make_workflow(steps=[EMAIL])
        execution_id = await _start(engine, wf, company_id)
        start = clock.now()

        summary = await engine.run_due_jobs()
        assert summary.retried == 1

        [job] = await _jobs(session_factory, execution_id)
        assert job.status == "pending"
        assert job.attempts == 1
        assert job.scheduled_at == start + timedelta(seconds=60)
        assert job.error == "send_email unavailable"

        execution, logs = (await engine.get_execution_detail(execution_id)).values()
        assert execution.status == "running"
        assert execution.claim_expires_at is None
        assert logs[-1].status == "failed"
        assert logs[-1].error == "send_email unavailable"

        clock.advance(seconds=60)
        await drain()
        execution = (await engine.get_execution_detail(execution_id))["execution"]
        assert execution.status == "completed"
        assert collaborators.methods_called() == ["send_email", "send_email"]

    async def test_retry_resumes_at_failing_step(
        self, engine, make_workflow, company_id, collaborators, clock, drain, session_factory
    ):
        collaborators.failures["send_sms"] = 1
        wf = await make_workflow(steps=[EMAIL, SMS])
        execution_id = await _start(engine, wf, company_id)

        await engine.run_due_jobs()
        [job] = await _jobs(session_factory, execution_id)
        assert job.payload["step_index"] == 1

        clock.advance(minutes=1)
        await drain()
        assert collaborators.methods_called() == ["send_email", "send_sms", "send_sms"]

    async def test_exhausted_attempts_fail_execution(
        self, engine, make_workflow, company_id, collaborators, clock, session_factory
    ):
        collaborators.failures["send_email"] = None
        wf = await make_workflow(steps=[EMAIL])
        execution_id = await _start(engine, wf, company_id)

        await engine.run_due_jobs()
        clock.advance(seconds=60)
        await engine.run_due_jobs()
        clock.advance(seconds=120)
        summary = await engine.run_due_jobs()
        assert summary.failed == 1

        [job] = await _jobs(session_factory, execution_id)
        assert job.status == "failed"
        assert job.attempts == 3

        execution, logs = (await engine.get_execution_detail(execution_id)).values()
        assert execution.status == "failed"
        assert execution.error == "Failed after 3 attempts: send_email unavailable"
        assert execution.completed_at == clock.now()
        assert logs[-1].message == "Execution failed"
        assert len(collaborators.calls) == 3

    async def test_crash_after_advancing_retries_the_crashed_step(
        self, engine, make_workflow, company_id, collaborators, clock, drain, session_factory, monkeypatch
    ):
        wf = await make_workflow(steps=[EMAIL, WAIT_DAY])
        execution_id = await _start(engine, wf, company_id)

        start_wait = engine.interpreter._start_wait
        crashes = []

        async def _flaky_start_wait(*args, **kwargs):
            if not crashes:
                crashes.append(1)
                raise RuntimeError("database hiccup")
            return await start_wait(*args, **kwargs)

        monkeypatch.setattr(engine.interpreter, "_start_wait", _flaky_start_wait)

        summary = await engine.run_due_jobs()
        assert summary.retried == 1
        [job] = await _jobs(session_factory, execution_id)
        assert job.payload["step_index"] == 1
        assert job.error == "RuntimeError: database hiccup"

        clock.advance(seconds=60)
        await drain()
        execution = (await engine.get_execution_detail(execution_id))["execution"]
        assert execution.status == "waiting"
        assert execution.claim_expires_at is None
        assert collaborators.methods_called() == ["send_email"]

    async def test_retry_policy_from_settings(
        self, engine, settings, make_workflow, company_id, collaborators, session_factory
    ):
        settings.JOB_RETRY_POLICY = "none"
        collaborators.failures["send_email"] = 1
        wf = await make_workflow(steps=[EMAIL])
        execution_id = await _start(engine, wf, company_id)

        summary = await engine.run_due_jobs()
        assert summary.failed == 1
        [job] = await _jobs(session_factory, execution_id)
        assert job.status == "failed"
        execution = (await engine.get_execution_detail(execution_id))["execution"]
        assert execution.error == "Failed after 1 attempts: send_email unavailable"


@pytest.mark.integration
class TestCancel:
    async def test_cancel_waiting_execution(
        self, engine, make_workflow, company_id, collaborators, clock, drain
    ):
        wf = await make_workflow(steps=[WAIT_DAY, SMS])
        execution_id = await _start(engine, wf, company_id)
        await drain()

        assert await engine.cancel_execution(execution_id, company_id) == {"success": True}
        execution, logs = (await engine.get_execution_detail(execution_id)).values()
        assert execution.status == "cancelled"
        assert execution.next_resume_at is None
        assert logs[-1].message == "Execution cancelled"

        # The queued resume job becomes a no-op
        clock.advance(days=1)
        summary = await engine.run_due_jobs()
        assert summary.outcomes == {"stale": 1}
        assert collaborators.calls == []

    async def test_cancel_finished_execution(self, engine, make_workflow, company_id, drain):
        wf = await make_workflow(steps=[EMAIL])
        execution_id = await _start(engine, wf, company_id)
        await drain()
        assert await engine.cancel_execution(execution_id) == {"success": False}

    async def test_cancel_unknown_or_foreign(self, engine, make_workflow, company_id):
        wf = await make_workflow(steps=[EMAIL])
        execution_id = await _start(engine, wf, company_id)
        with pytest.raises(NotFoundError):
            await engine.cancel_execution("missing")
        with pytest.raises(NotFoundError):
            await engine.cancel_execution(execution_id, "someone-else")


@pytest.mark.integration
class TestRecovery:
    async def test_stuck_processing_job_released(self, engine, make_workflow, company_id, clock, session_factory):
        wf = await make_workflow(steps=[EMAIL])
        execution_id = await _start(engine, wf, company_id)
        # A worker took the job and died
        async with session_factory() as session:
            async with session.begin():
                await JobService(session).fetch_due(clock.now())

        result = await engine.recover_stalled(now=clock.now() + timedelta(seconds=601))
        assert result["released_jobs"] == 1
        [job] = await _jobs(session_factory, execution_id)
        assert job.status == "pending"

    async def test_execution_without_job_requeued(self, engine, make_workflow, company_id, clock, session_factory):
        wf = await make_workflow(steps=[EMAIL])
        execution_id = await _start(engine, wf, company_id)
        [job] = await _jobs(session_factory, execution_id)
        async with session_factory() as session:
            async with session.begin():
                await JobService(session).complete(job.id, clock.now())

        later = utc_now() + timedelta(hours=1)
        result = await engine.recover_stalled(now=later)
        assert result == {"released_jobs": 0, "requeued_executions": 1}

        logs = (await engine.get_execution_detail(execution_id))["logs"]
        assert logs[-1].status == "info"
        assert logs[-1].message == "Re-enqueued after stalling"

        await engine.run_due_jobs(now=later)
        execution = (await engine.get_execution_detail(execution_id))["execution"]
        assert execution.status == "completed"

    async def test_execution_with_open_job_left_alone(self, engine, make_workflow, company_id, session_factory):
        wf = await make_workflow(steps=[EMAIL])
        execution_id = await _start(engine, wf, company_id)

        result = await engine.recover_stalled(now=utc_now() + timedelta(hours=1))
        assert result["requeued_executions"] == 0
        assert len(await _jobs(session_factory, execution_id)) == 1

    async def test_find_stalled_ignores_finished(self, engine, make_workflow, company_id, drain, session_factory):
        wf = await make_workflow(steps=[EMAIL])
        await _start(engine, wf, company_id)
        await drain()
        async with session_factory() as session:
            assert await ExecutionService(session).find_stalled(utc_now() + timedelta(hours=1)) == []


@pytest.mark.integration
class TestQueueMaintenance:
    async def test_cleanup_old_jobs(self, engine, make_workflow, company_id, clock, drain, session_factory):
        wf = await make_workflow(steps=[WAIT_DAY, SMS])
        execution_id = await _start(engine, wf, company_id)
        await drain()

        assert await engine.cleanup_old_jobs(days=7) == 0
        clock.advance(days=8)
        assert await engine.cleanup_old_jobs(days=7) == 1

        # The pending resume job is kept
        jobs = await _jobs(session_factory, execution_id)
        assert [j.status for j in jobs] == ["pending"]

    async def test_job_stats(self, engine, make_workflow, company_id, drain):
        wf = await make_workflow(steps=[WAIT_DAY, SMS])
        await _start(engine, wf, company_id)
        await drain()

        stats = await engine.get_job_stats(company_id)
        assert stats["completed"] == 1
        assert stats["pending"] == 1
        assert stats["failed"] == 0
        assert stats["total"] == 2
        assert (await engine.get_job_stats("someone-else"))["total"] == 0
