"""Tests for collaborator clients and action steps."""

import json

import httpx
import pytest

from integrations.collaborators import HttpCollaborators, validate_webhook_url
from tasks.base_task import ActionResult
from tasks.registry import ActionRegistry


@pytest.mark.unit
class TestValidateWebhookUrl:
    @pytest.mark.parametrize("url", [
        "http://localhost/hook",
        "http://127.0.0.1:8000/hook",
        "http://10.0.0.5/hook",
        "http://192.168.1.20/hook",
        "https://example.com:6379/",
        "ftp://example.com/file",
        "http:///nohost",
    ])
    def test_rejects_unsafe_targets(self, url):
        with pytest.raises(ValueError):
            validate_webhook_url(url)

    def test_accepts_public_url(self):
        validate_webhook_url("https://hooks.example.com/automation")


@pytest.mark.unit
class TestActionResult:
    def test_success_response(self):
        result = ActionResult.from_response({"success": True, "message_id": "m-1", "error": None})
        assert result.success is True
        assert result.output == {"message_id": "m-1"}
        assert result.error is None

    def test_failure_response(self):
        result = ActionResult.from_response({"success": False, "error": "bounced"})
        assert result.success is False
        assert result.error == "bounced"

    def test_failure_without_message(self):
        result = ActionResult.from_response({})
        assert result.success is False
        assert result.error == "Collaborator reported failure"


@pytest.mark.unit
class TestActionRegistry:
    def test_every_action_step_type_registered(self):
        registry = ActionRegistry()
        assert set(registry.available_types) == {
            "send_email",
            "send_sms",
            "send_whatsapp",
            "create_task",
            "update_lead",
            "update_client",
            "create_notification",
            "webhook",
        }
        assert registry.get("wait") is None

    async def test_create_task_normalizes_task_id(self, collaborators):
        action = ActionRegistry().create_instance("create_task", collaborators)
        result = await action.run({"title": "Call"}, "lead-1", {"execution_id": "ex-1"})
        assert result.success
        assert "task_id" in result.output
        assert "taskId" not in result.output
        assert result.duration_ms >= 0

    async def test_collaborator_failure(self, collaborators):
        collaborators.failures["update_lead"] = None
        action = ActionRegistry().create_instance("update_lead", collaborators)
        result = await action.run({"fields": {"stage": "won"}}, "lead-1")
        assert not result.success
        assert result.error == "update_lead unavailable"

    async def test_exception_becomes_failed_result(self):
        http = HttpCollaborators("http://crm.internal")
        action = ActionRegistry().create_instance("webhook", http)
        result = await action.run({"url": "http://10.1.2.3/hook"}, "lead-1")
        assert not result.success
        assert "private IP" in result.error


@pytest.mark.integration
class TestHttpCollaborators:
    async def test_actions_posted_to_surrounding_system(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"taskId": "t-9"})

        http = HttpCollaborators("http://crm.internal/", api_key="secret", transport=httpx.MockTransport(handler))
        response = await http.create_task({"title": "Call"}, "lead-1", {"company_id": "c-1"})
        await http.aclose()

        assert response == {"taskId": "t-9", "success": True}
        request = seen[0]
        assert request.method == "POST"
        assert request.url == "http://crm.internal/actions/create-task"
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {
            "config": {"title": "Call"},
            "entity_id": "lead-1",
            "context": {"company_id": "c-1"},
        }

    async def test_fetch_entity(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/entities/client/c-1":
                return httpx.Response(200, json={"rsvp_status": "confirmed"})
            return httpx.Response(404)

        http = HttpCollaborators("http://crm.internal", transport=httpx.MockTransport(handler))
        assert await http.fetch_entity("client", "c-1") == {"rsvp_status": "confirmed"}
        assert await http.fetch_entity("client", "gone") is None
        await http.aclose()

    async def test_server_error_raises(self):
        http = HttpCollaborators(
            "http://crm.internal",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        with pytest.raises(httpx.HTTPStatusError):
            await http.send_email({"subject": "Hi"}, "lead-1")
        await http.aclose()

    async def test_webhook_call(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(500 if "fail" in request.url.path else 202)

        http = HttpCollaborators("http://crm.internal", transport=httpx.MockTransport(handler))
        ok = await http.call_webhook(
            {"url": "https://hooks.example.com/ok", "body": {"event": "rsvp"}}, "guest-1", {"company_id": "c-1"}
        )
        failed = await http.call_webhook({"url": "https://hooks.example.com/fail", "method": "GET"}, "guest-1")

        assert ok == {"success": True, "status_code": 202, "error": None}
        assert failed == {"success": False, "status_code": 500, "error": "HTTP 500"}
        assert json.loads(seen[0].content) == {
            "event": "rsvp",
            "entity_id": "guest-1",
            "context": {"company_id": "c-1"},
        }
        assert seen[1].method == "GET"
