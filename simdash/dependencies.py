"""FastAPI dependencies and the process-wide service instances."""
from __future__ import annotations

from simdash.core.config import Settings, settings
from simdash.db.database import async_session, get_db
from simdash.services import (
    DeviceSyncService,
    IdentityResolver,
    RebootTracker,
    SimulatorClient,
    SimulatorPoller,
    SimulatorRegistry,
)

# Global service instances, started and stopped by the application lifespan
agent_client = SimulatorClient(config=settings)
registry = SimulatorRegistry(session_factory=async_session, config=settings)
identity_resolver = IdentityResolver(session_factory=async_session, client=agent_client)
poller = SimulatorPoller(
    session_factory=async_session, client=agent_client, registry=registry, config=settings
)
syncer = DeviceSyncService(
    session_factory=async_session,
    client=agent_client,
    registry=registry,
    resolver=identity_resolver,
    config=settings,
)
reboot_tracker = RebootTracker(client=agent_client, registry=registry)

get_session = get_db


def get_settings() -> Settings:
    return settings


def get_agent_client() -> SimulatorClient:
    return agent_client


def get_registry() -> SimulatorRegistry:
    return registry


def get_syncer() -> DeviceSyncService:
    return syncer


def get_reboot_tracker() -> RebootTracker:
    return reboot_tracker
