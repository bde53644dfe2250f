"""Administrative simulator reboot."""
from __future__ import annotations

import logging
from typing import Any

from simdash.services.addressing import format_simulator_url
from simdash.services.agent_client import SimulatorClient
from simdash.services.registry import SimulatorRegistry

logger = logging.getLogger(__name__)


class RebootTracker:
    """Forward a reboot to the agent, then hold its devices in the rebooting state.

    The local rebooting presentation is only applied once the agent accepted
    the request; an AgentError from the forward propagates to the caller and
    leaves the stored devices untouched.
    """

    def __init__(self, client: SimulatorClient, registry: SimulatorRegistry) -> None:
        self._client = client
        self._registry = registry

    async def reboot(self, simulator_url: str) -> Any:
        url = format_simulator_url(simulator_url)
        body = await self._client.reboot(url)
        marked = await self._registry.force_reboot(url)
        logger.info(f"Reboot forwarded to {url}; {marked} devices marked rebooting")
        return body
