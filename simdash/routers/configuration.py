from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from simdash import crud
from simdash.dependencies import get_agent_client, get_reboot_tracker, get_registry, get_session
from simdash.models import SimulatorStatus
from simdash.routers.utils import agent_failure, bad_request, config_devices, require_simulator_url
from simdash.schemas.agent import extract_devices_from_config
from simdash.schemas.api_models import ConfigurationUpdate, RebootRequest
from simdash.services import AgentError, RebootTracker, SimulatorClient, SimulatorRegistry
from simdash.services.addressing import format_simulator_url, provisional_simulator_id

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/configuration")
async def get_configuration(
    session: AsyncSession = Depends(get_session),
    client: SimulatorClient = Depends(get_agent_client),
):
    """Collect the configuration of every reachable simulator, keyed by simulator id."""
    simulators = await crud.list_simulators(session)
    if not simulators:
        return {"message": "No simulators found in database"}

    configs = {}
    for simulator in simulators:
        if not simulator.url:
            logger.debug(f"Skipping simulator {simulator.id} without URL")
            continue
        try:
            config = await client.fetch_configuration(simulator.url)
        except AgentError as e:
            logger.warning(f"Error fetching config for {simulator.id}: {e}")
            continue
        if config:
            configs[simulator.id] = config

    if not configs:
        return {
            "message": "Could not retrieve configurations from any simulators",
            "simulatorCount": len(simulators),
        }
    return configs


@router.post("/configuration")
async def update_configuration(
    payload: ConfigurationUpdate,
    session: AsyncSession = Depends(get_session),
    client: SimulatorClient = Depends(get_agent_client),
    registry: SimulatorRegistry = Depends(get_registry),
):
    try:
        simulator_url = format_simulator_url(require_simulator_url(payload.simulatorUrl))
        simulator_id = provisional_simulator_id(simulator_url)
    except ValueError as e:
        bad_request(str(e))

    simulator = await crud.get_simulator_by_url(session, simulator_url)
    if simulator is None:
        simulator = await crud.get_simulator(session, simulator_id)
    if simulator is None:
        simulator = await crud.create_simulator(
            session,
            simulator_id=simulator_id,
            url=simulator_url,
            status=SimulatorStatus.AWAITING.value,
        )
        logger.info(f"Registered simulator {simulator.id} at {simulator_url}")
    simulator_id = simulator.id

    try:
        body = await client.push_configuration(simulator_url, payload.config)
    except AgentError as e:
        agent_failure(e, "Error updating configuration")

    devices = config_devices(payload.config) or extract_devices_from_config(payload.config)
    for device in devices:
        await registry.record_device_observation(device["id"], simulator_url, simulator_id)
    return body


@router.post("/reboot")
async def reboot_simulator(
    payload: RebootRequest,
    tracker: RebootTracker = Depends(get_reboot_tracker),
):
    simulator_url = require_simulator_url(payload.simulatorUrl)
    try:
        return await tracker.reboot(simulator_url)
    except AgentError as e:
        agent_failure(e, "Error rebooting simulator")
