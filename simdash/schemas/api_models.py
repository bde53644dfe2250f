from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class DeviceCreate(BaseModel):
    action: Optional[str] = None
    broker: Optional[str] = None
    simulatorUrl: Optional[str] = None
    simulatorId: Optional[str] = None


class DevicesCreate(BaseModel):
    simulatorUrl: Optional[str] = None
    simulatorId: Optional[str] = None
    devices: Optional[dict[str, dict[str, Any]]] = None


class ConfigurationUpdate(BaseModel):
    simulatorUrl: Optional[str] = None
    config: dict[str, Any] = Field(default_factory=dict)


class RebootRequest(BaseModel):
    simulatorUrl: Optional[str] = None


class SimulatorCreate(BaseModel):
    url: str
    title: Optional[str] = None
    id: Optional[str] = None


class DeviceState(BaseModel):
    id: str
    simulatorId: str
    on: bool
    rebooting: bool
    action: Optional[str] = None
    broker: Optional[str] = None
    lastUpdated: Optional[datetime] = None


class Simulator(BaseModel):
    id: str
    url: Optional[str] = None
    title: str
    status: str
    createdAt: datetime
    lastSeen: Optional[datetime] = None
    devices: list[DeviceState] = Field(default_factory=list)


class DegradationWarning(BaseModel):
    graceful_degradation: bool = True
    offline_simulators: list[str]
    message: str = "Some simulators are offline. Device data may be stale or incomplete."


class DevicesResponse(BaseModel):
    devices: dict[str, DeviceState]
    warnings: Optional[DegradationWarning] = None


class SimulatorSyncResult(BaseModel):
    simulatorId: str
    outcome: str
    inserted: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    detail: Optional[str] = None


class SyncReport(BaseModel):
    startedAt: datetime
    finishedAt: Optional[datetime] = None
    mergedSimulators: int = 0
    results: list[SimulatorSyncResult] = Field(default_factory=list)
