"""
Simulator Agent Client

Thin async HTTP client for the REST API exposed by every simulator agent.
Transport failures and non-2xx answers are translated into the AgentError
hierarchy so callers can branch on them without touching httpx.
"""
from __future__ import annotations

import logging
from typing import Any, Literal
from urllib.parse import quote

import httpx

from simdash.core.config import Settings, settings
from simdash.schemas.agent import (
    AgentDeviceState,
    MalformedPayloadError,
    normalize_device_list,
    parse_device_list,
)

logger = logging.getLogger(__name__)

DeviceCommand = Literal["on", "off", "delete"]


class AgentError(RuntimeError):
    """Raised when a simulator agent cannot serve a request."""

    def __init__(self, message: str, *, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class AgentUnreachableError(AgentError):
    """Timeout, refused connection or any other transport failure."""


class AgentResponseError(AgentError):
    """The agent answered with a non-2xx status."""


class AgentPayloadError(AgentError):
    """The agent answered with a body that cannot be used."""


class SimulatorClient:
    """Issue requests against simulator agents addressed by their base url."""

    def __init__(
        self,
        config: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or settings
        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(self._config.agent_timeout_s),
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        base_url: str,
        path: str,
        *,
        json: Any = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        url = f"{base_url.rstrip('/')}{path}"
        try:
            response = await self._client.request(
                method,
                url,
                json=json,
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.TimeoutException as e:
            raise AgentUnreachableError(f"timed out calling {method} {url}", url=url) from e
        except httpx.TransportError as e:
            raise AgentUnreachableError(f"cannot reach {url}: {e}", url=url) from e

        if response.is_error:
            raise AgentResponseError(
                f"{method} {url} returned {response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise AgentPayloadError(
                f"{response.request.url} returned a non-JSON body",
                url=str(response.request.url),
                status_code=response.status_code,
            ) from e

    # ------------------------------------------------------------------
    # Reads

    async def probe(self, base_url: str) -> None:
        """Short-timeout liveness check; raises AgentError when the agent is down."""
        await self._request("GET", base_url, "/configuration", timeout=self._config.probe_timeout_s)

    async def fetch_configuration(self, base_url: str) -> Any:
        response = await self._request("GET", base_url, "/configuration")
        return self._json(response)

    async def fetch_devices(self, base_url: str) -> list[AgentDeviceState]:
        """Return the agent's authoritative device list, normalized."""
        response = await self._request("GET", base_url, "/devices")
        payload = self._json(response)
        try:
            return normalize_device_list(parse_device_list(payload))
        except MalformedPayloadError as e:
            raise AgentPayloadError(str(e), url=str(response.request.url)) from e

    async def fetch_device(self, base_url: str, device_id: str) -> dict[str, Any]:
        response = await self._request(
            "GET",
            base_url,
            f"/device/{quote(device_id, safe='')}",
            timeout=self._config.device_timeout_s,
        )
        payload = self._json(response)
        if not isinstance(payload, dict):
            raise AgentPayloadError(
                f"device {device_id} snapshot is not a JSON object",
                url=str(response.request.url),
            )
        # Some agents wrap the snapshot as {device_id: {...}}
        nested = payload.get(device_id)
        if len(payload) == 1 and isinstance(nested, dict):
            return nested
        return payload

    # ------------------------------------------------------------------
    # Commands

    async def send_device_command(
        self, base_url: str, device_id: str, command: DeviceCommand
    ) -> Any:
        response = await self._request(
            "POST", base_url, f"/device/{quote(device_id, safe='')}/{command}"
        )
        return self._json(response)

    async def create_device(
        self,
        base_url: str,
        device_id: str,
        *,
        action: str | None = None,
        broker: str | None = None,
    ) -> Any:
        response = await self._request(
            "POST",
            base_url,
            f"/device/{quote(device_id, safe='')}",
            json={"action": action, "broker": broker},
        )
        return self._json(response)

    async def create_devices(self, base_url: str, devices: dict[str, Any]) -> Any:
        response = await self._request("POST", base_url, "/devices", json={"devices": devices})
        return self._json(response)

    async def push_configuration(self, base_url: str, config: dict[str, Any]) -> Any:
        response = await self._request("POST", base_url, "/configuration", json=config)
        return self._json(response)

    async def reboot(self, base_url: str) -> Any:
        response = await self._request("POST", base_url, "/reboot")
        logger.info(f"Reboot requested for simulator at {base_url}")
        return self._json(response)
