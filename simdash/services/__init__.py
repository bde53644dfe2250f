"""Service layer (agent client, registry, schedulers, reconciliation)."""

from .agent_client import (
    AgentError,
    AgentPayloadError,
    AgentResponseError,
    AgentUnreachableError,
    SimulatorClient,
)
from .identity import IdentityResolver
from .poller import PollReport, SimulatorPoller
from .reboot import RebootTracker
from .registry import SimulatorRegistry
from .syncer import DeviceSyncService, SimulatorSyncResult, SyncReport

__all__ = [
    "AgentError",
    "AgentPayloadError",
    "AgentResponseError",
    "AgentUnreachableError",
    "SimulatorClient",
    "IdentityResolver",
    "PollReport",
    "SimulatorPoller",
    "RebootTracker",
    "SimulatorRegistry",
    "DeviceSyncService",
    "SimulatorSyncResult",
    "SyncReport",
]
