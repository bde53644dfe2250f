from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from simdash import crud
from simdash.dependencies import get_registry, get_session, get_syncer
from simdash.models import SimulatorStatus
from simdash.routers.utils import bad_request, build_simulator_payload, build_sync_report, build_sync_result
from simdash.schemas.api_models import Simulator, SimulatorCreate, SimulatorSyncResult, SyncReport
from simdash.services import DeviceSyncService, SimulatorRegistry
from simdash.services.addressing import format_simulator_url, provisional_simulator_id

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=list[Simulator])
async def list_simulators(registry: SimulatorRegistry = Depends(get_registry)):
    simulators = await registry.list_simulators()
    return [build_simulator_payload(simulator) for simulator in simulators]


@router.post("", response_model=Simulator, status_code=status.HTTP_201_CREATED)
async def register_simulator(
    payload: SimulatorCreate,
    session: AsyncSession = Depends(get_session),
):
    """Register a simulator in the awaiting state until it is first contacted."""
    try:
        url = format_simulator_url(payload.url)
        simulator_id = payload.id or provisional_simulator_id(url)
    except ValueError as e:
        bad_request(str(e))

    existing = await crud.get_simulator_by_url(session, url)
    if existing is None:
        existing = await crud.get_simulator(session, simulator_id)
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "Simulator already registered", "id": existing.id},
        )

    simulator = await crud.create_simulator(
        session,
        simulator_id=simulator_id,
        url=url,
        title=payload.title or "Simulator",
        status=SimulatorStatus.AWAITING.value,
    )
    logger.info(f"Registered simulator {simulator.id} at {url}")
    simulator = await crud.get_simulator(session, simulator.id, with_devices=True)
    return build_simulator_payload(simulator)


@router.post("/sync", response_model=SyncReport)
async def sync_all(syncer: DeviceSyncService = Depends(get_syncer)):
    report = await syncer.trigger()
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "Synchronization already in progress"},
        )
    return build_sync_report(report)


@router.post("/{simulator_id}/sync", response_model=SimulatorSyncResult)
async def sync_one(simulator_id: str, syncer: DeviceSyncService = Depends(get_syncer)):
    try:
        result = await syncer.sync_simulator(simulator_id)
    except LookupError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "Simulator not found"},
        )
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "Synchronization already in progress"},
        )
    return build_sync_result(result)
