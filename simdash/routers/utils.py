"""Shared utilities for API routers."""

from __future__ import annotations

from typing import Any, NoReturn

from fastapi import HTTPException, status

from simdash.models import Simulator as SimulatorRow
from simdash.schemas.api_models import (
    DeviceState,
    Simulator,
    SimulatorSyncResult,
    SyncReport,
)
from simdash.services import agent_client
from simdash.services import syncer
from simdash.services.registry import as_utc, device_state


def bad_request(message: str) -> NoReturn:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"error": message})


def require_simulator_url(value: str | None) -> str:
    if not value or not value.strip():
        bad_request("Simulator URL is required")
    return value


def device_not_found() -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"error": "Device not found"},
    )


def agent_failure(error: agent_client.AgentError, what: str) -> NoReturn:
    """Re-raise an agent failure as the agent's status code, or 502 when it has none."""

    raise HTTPException(
        status_code=error.status_code or status.HTTP_502_BAD_GATEWAY,
        detail={"error": what, "details": str(error)},
    ) from error


def build_simulator_payload(simulator: SimulatorRow) -> Simulator:
    return Simulator(
        id=simulator.id,
        url=simulator.url,
        title=simulator.title,
        status=simulator.status,
        createdAt=as_utc(simulator.created_at),
        lastSeen=as_utc(simulator.last_seen),
        devices=[DeviceState(**device_state(device)) for device in simulator.devices],
    )


def build_sync_result(result: syncer.SimulatorSyncResult) -> SimulatorSyncResult:
    return SimulatorSyncResult(
        simulatorId=result.simulator_id,
        outcome=result.outcome,
        inserted=result.inserted,
        updated=result.updated,
        removed=result.removed,
        detail=result.detail,
    )


def build_sync_report(report: syncer.SyncReport) -> SyncReport:
    return SyncReport(
        startedAt=report.started_at,
        finishedAt=report.finished_at,
        mergedSimulators=report.merged_simulators,
        results=[build_sync_result(result) for result in report.results],
    )


def config_devices(config: Any) -> list[dict[str, Any]]:
    """Devices described in a pushed configuration, ``{id, action, broker}`` each."""

    if not isinstance(config, dict):
        return []
    entries = config.get("devices")
    if not isinstance(entries, dict):
        return []
    devices = []
    for key, entry in entries.items():
        entry = entry if isinstance(entry, dict) else {}
        devices.append(
            {
                "id": str(entry.get("id") or entry.get("Id") or key),
                "action": entry.get("action") or entry.get("Action"),
                "broker": entry.get("broker") or entry.get("Broker"),
            }
        )
    return devices
