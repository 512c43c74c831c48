"""
Collaborator contracts consumed by the automation engine.

The engine never sends email or writes CRM records itself: it calls out
to the surrounding system through a Collaborators implementation. Every
action returns a result dict ``{"success": bool, "error"?: str, ...}``;
``create_task`` may add ``task_id`` and ``call_webhook`` adds
``status_code``.

HttpCollaborators is the production implementation. It posts each
action to the surrounding system's internal endpoints and performs
webhook calls directly.
"""

import ipaddress
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx
import structlog

logger = structlog.get_logger(__name__)


class Collaborators(ABC):
    """Side-effecting services the interpreter dispatches action steps to.

    ``context`` carries ``company_id``, ``execution_id``, ``workflow_id``
    and ``entity_type`` of the running execution.
    """

    @abstractmethod
    async def send_email(self, config: dict, entity_id: Optional[str], context: Optional[dict] = None) -> dict:
        ...

    @abstractmethod
    async def send_sms(self, config: dict, entity_id: Optional[str], context: Optional[dict] = None) -> dict:
        ...

    @abstractmethod
    async def send_whatsapp(self, config: dict, entity_id: Optional[str], context: Optional[dict] = None) -> dict:
        ...

    @abstractmethod
    async def create_task(self, config: dict, entity_id: Optional[str], context: Optional[dict] = None) -> dict:
        ...

    @abstractmethod
    async def update_lead(self, config: dict, entity_id: Optional[str], context: Optional[dict] = None) -> dict:
        ...

    @abstractmethod
    async def update_client(self, config: dict, entity_id: Optional[str], context: Optional[dict] = None) -> dict:
        ...

    @abstractmethod
    async def create_notification(self, config: dict, entity_id: Optional[str], context: Optional[dict] = None) -> dict:
        ...

    @abstractmethod
    async def call_webhook(self, config: dict, entity_id: Optional[str], context: Optional[dict] = None) -> dict:
        ...

    @abstractmethod
    async def fetch_entity(self, entity_type: str, entity_id: str) -> Optional[dict]:
        """Return the current state of a record, or None if it does not exist."""
        ...

    async def aclose(self) -> None:
        """Release any held resources."""
        return None


# ─── SSRF guard for outbound webhooks ──────────────────────

FORBIDDEN_PORTS = (5432, 6379)  # postgres, redis


def validate_webhook_url(url: str) -> None:
    """Reject webhook targets on loopback, private networks or internal ports.

    Raises:
        ValueError: If the URL is unsafe
    """
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname")
    if hostname.lower() in ("localhost", "127.0.0.1", "::1"):
        raise ValueError("Connections to localhost are not allowed")

    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        ip = None  # a domain name
    if ip is not None and (ip.is_private or ip.is_loopback or ip.is_reserved):
        raise ValueError(f"Connections to private IP {hostname} are not allowed")

    if parsed.port in FORBIDDEN_PORTS:
        raise ValueError(f"Connections to internal port {parsed.port} are not allowed")


class HttpCollaborators(Collaborators):
    """Collaborators backed by the surrounding system's internal HTTP API.

    Actions are posted as ``POST {base_url}/actions/{action}`` with body
    ``{"config", "entity_id", "context"}``; entities are read with
    ``GET {base_url}/entities/{entity_type}/{entity_id}``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings) -> "HttpCollaborators":
        return cls(
            base_url=settings.COLLABORATOR_BASE_URL,
            api_key=settings.COLLABORATOR_API_KEY,
            timeout_seconds=settings.COLLABORATOR_TIMEOUT_SECONDS,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.timeout_seconds),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post_action(
        self,
        action: str,
        config: dict,
        entity_id: Optional[str],
        context: Optional[dict],
    ) -> dict:
        response = await self._get_client().post(
            f"/actions/{action}",
            json={"config": config, "entity_id": entity_id, "context": context or {}},
        )
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"data": data}
        data.setdefault("success", True)
        return data

    async def send_email(self, config, entity_id, context=None):
        return await self._post_action("send-email", config, entity_id, context)

    async def send_sms(self, config, entity_id, context=None):
        return await self._post_action("send-sms", config, entity_id, context)

    async def send_whatsapp(self, config, entity_id, context=None):
        return await self._post_action("send-whatsapp", config, entity_id, context)

    async def create_task(self, config, entity_id, context=None):
        return await self._post_action("create-task", config, entity_id, context)

    async def update_lead(self, config, entity_id, context=None):
        return await self._post_action("update-lead", config, entity_id, context)

    async def update_client(self, config, entity_id, context=None):
        return await self._post_action("update-client", config, entity_id, context)

    async def create_notification(self, config, entity_id, context=None):
        return await self._post_action("create-notification", config, entity_id, context)

    async def call_webhook(self, config, entity_id, context=None):
        """Send the configured request to an external URL.

        The JSON body is the configured ``body`` plus ``entity_id`` and the
        execution context. Any 2xx/3xx status counts as success.
        """
        url = str(config["url"])
        validate_webhook_url(url)
        method = config.get("method", "POST").upper()
        kwargs: Dict[str, Any] = {
            "headers": config.get("headers") or {},
            "timeout": config.get("timeout_seconds", 30.0),
        }
        if method in ("POST", "PUT", "PATCH"):
            kwargs["json"] = {**(config.get("body") or {}), "entity_id": entity_id, "context": context or {}}

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            return {"success": False, "error": f"Request timed out after {kwargs['timeout']}s"}
        except httpx.HTTPError as e:
            return {"success": False, "error": f"Webhook request failed: {e}"}

        success = 200 <= response.status_code < 400
        logger.info("Webhook called", url=url, method=method, status_code=response.status_code)
        return {
            "success": success,
            "status_code": response.status_code,
            "error": None if success else f"HTTP {response.status_code}",
        }

    async def fetch_entity(self, entity_type, entity_id):
        response = await self._get_client().get(f"/entities/{entity_type}/{entity_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()
