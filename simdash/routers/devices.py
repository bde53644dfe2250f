from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends

from simdash.core.config import Settings
from simdash.dependencies import get_agent_client, get_registry, get_settings
from simdash.routers.utils import (
    agent_failure,
    bad_request,
    device_not_found,
    require_simulator_url,
)
from simdash.schemas.api_models import DeviceCreate, DevicesCreate, DevicesResponse
from simdash.services import AgentError, SimulatorClient, SimulatorRegistry
from simdash.services.addressing import format_simulator_url

logger = logging.getLogger(__name__)

router = APIRouter()


async def refresh_device_later(
    client: SimulatorClient,
    registry: SimulatorRegistry,
    simulator_url: str,
    device_id: str,
    delay_s: float,
) -> None:
    """Re-read a device shortly after a command so the registry reflects its new state."""
    await asyncio.sleep(delay_s)
    try:
        snapshot = await client.fetch_device(simulator_url, device_id)
    except AgentError as e:
        logger.error(f"Failed to update device state for {device_id}: {e}")
        return
    await registry.apply_state_update(device_id, snapshot)


async def _resolve(registry: SimulatorRegistry, device_id: str) -> str:
    simulator_url = await registry.resolve_simulator_url(device_id)
    if simulator_url is None:
        device_not_found()
    return simulator_url


async def _switch(
    device_id: str,
    command: str,
    background: BackgroundTasks,
    client: SimulatorClient,
    registry: SimulatorRegistry,
    config: Settings,
) -> Any:
    simulator_url = await _resolve(registry, device_id)
    try:
        body = await client.send_device_command(simulator_url, device_id, command)
    except AgentError as e:
        agent_failure(e, "Error controlling device")

    background.add_task(
        refresh_device_later,
        client,
        registry,
        simulator_url,
        device_id,
        config.command_refresh_delay_s,
    )
    return body


@router.get("/devices", response_model=DevicesResponse, response_model_exclude_none=True)
async def list_device_states(registry: SimulatorRegistry = Depends(get_registry)):
    states = await registry.snapshot_all()
    response: dict[str, Any] = {"devices": states}

    offline = await registry.offline_simulator_ids()
    if offline:
        response["warnings"] = {"graceful_degradation": True, "offline_simulators": offline}
    return response


@router.post("/devices")
async def create_devices(
    payload: DevicesCreate,
    client: SimulatorClient = Depends(get_agent_client),
    registry: SimulatorRegistry = Depends(get_registry),
):
    simulator_url = format_simulator_url(require_simulator_url(payload.simulatorUrl))
    if payload.devices is None:
        bad_request("Devices object is required")

    try:
        body = await client.create_devices(simulator_url, payload.devices)
    except AgentError as e:
        agent_failure(e, "Error creating devices")

    for key, entry in payload.devices.items():
        device_id = str(entry.get("id") or key)
        await registry.record_device_observation(device_id, simulator_url, payload.simulatorId)
    return body


@router.get("/device/{device_id}")
async def get_device(
    device_id: str,
    client: SimulatorClient = Depends(get_agent_client),
    registry: SimulatorRegistry = Depends(get_registry),
):
    simulator_url = await _resolve(registry, device_id)
    try:
        snapshot = await client.fetch_device(simulator_url, device_id)
    except AgentError as e:
        agent_failure(e, "Error communicating with device")
    await registry.apply_state_update(device_id, snapshot)
    return snapshot


@router.post("/device/{device_id}")
async def create_device(
    device_id: str,
    payload: DeviceCreate,
    client: SimulatorClient = Depends(get_agent_client),
    registry: SimulatorRegistry = Depends(get_registry),
):
    simulator_url = format_simulator_url(require_simulator_url(payload.simulatorUrl))
    await registry.record_device_observation(device_id, simulator_url, payload.simulatorId)
    try:
        return await client.create_device(
            simulator_url, device_id, action=payload.action, broker=payload.broker
        )
    except AgentError as e:
        agent_failure(e, "Error creating device")


@router.post("/device/{device_id}/on")
async def turn_on(
    device_id: str,
    background: BackgroundTasks,
    client: SimulatorClient = Depends(get_agent_client),
    registry: SimulatorRegistry = Depends(get_registry),
    config: Settings = Depends(get_settings),
):
    return await _switch(device_id, "on", background, client, registry, config)


@router.post("/device/{device_id}/off")
async def turn_off(
    device_id: str,
    background: BackgroundTasks,
    client: SimulatorClient = Depends(get_agent_client),
    registry: SimulatorRegistry = Depends(get_registry),
    config: Settings = Depends(get_settings),
):
    return await _switch(device_id, "off", background, client, registry, config)


@router.post("/device/{device_id}/delete")
async def delete_device(
    device_id: str,
    client: SimulatorClient = Depends(get_agent_client),
    registry: SimulatorRegistry = Depends(get_registry),
):
    simulator_url = await _resolve(registry, device_id)
    try:
        body = await client.send_device_command(simulator_url, device_id, "delete")
    except AgentError as e:
        agent_failure(e, "Error deleting device")
    await registry.evict_device(device_id)
    return body
