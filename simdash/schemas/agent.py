"""Payloads reported by simulator agents.

``GET /devices`` answers either with an envelope ``{"devices": {id: state}}`` or
with the bare ``{id: state}`` map. Both are parsed into an explicit variant and
normalized into a list of :class:`AgentDeviceState`; anything matching neither
shape is rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator


class MalformedPayloadError(ValueError):
    """Raised when an agent payload matches none of the accepted shapes."""


class AgentDeviceState(BaseModel):
    """Normalized state of one device as reported by its agent."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    on: bool = False
    rebooting: bool = False
    action: str | None = None
    broker: str | None = None

    @field_validator("on", "rebooting", mode="before")
    @classmethod
    def _null_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    def mutable_fields(self) -> dict[str, Any]:
        return {
            "on": self.on,
            "rebooting": self.rebooting,
            "action": self.action,
            "broker": self.broker,
        }


@dataclass(frozen=True, slots=True)
class EnvelopedDeviceList:
    devices: Mapping[str, Mapping[str, Any]]


@dataclass(frozen=True, slots=True)
class BareDeviceList:
    devices: Mapping[str, Mapping[str, Any]]


DeviceListPayload = EnvelopedDeviceList | BareDeviceList


def _is_state_map(value: Any) -> bool:
    return isinstance(value, dict) and all(isinstance(state, dict) for state in value.values())


def parse_device_list(payload: Any) -> DeviceListPayload:
    """Classify a ``GET /devices`` body."""

    if not isinstance(payload, dict):
        raise MalformedPayloadError(
            f"device list must be a JSON object, got {type(payload).__name__}"
        )
    inner = payload.get("devices")
    if _is_state_map(inner):
        return EnvelopedDeviceList(devices=inner)
    if _is_state_map(payload):
        return BareDeviceList(devices=payload)
    raise MalformedPayloadError("device list is neither an envelope nor a bare id->state map")


def normalize_device_list(parsed: DeviceListPayload) -> list[AgentDeviceState]:
    match parsed:
        case EnvelopedDeviceList(devices=devices) | BareDeviceList(devices=devices):
            pass
        case _:
            raise MalformedPayloadError(f"unsupported device list variant {parsed!r}")

    states: list[AgentDeviceState] = []
    for device_id, state in devices.items():
        try:
            states.append(AgentDeviceState.model_validate({**state, "id": str(device_id)}))
        except ValidationError as e:
            raise MalformedPayloadError(f"invalid state for device {device_id}: {e}") from e
    return states


def _agent_sections(config: Any) -> list[dict]:
    if not isinstance(config, dict):
        return []
    return [section for section in config.values() if isinstance(section, dict)]


def extract_canonical_id(config: Any) -> str | None:
    """Return the agent-reported ``general.Id`` from a ``/configuration`` body.

    The body is keyed by the agent's network address. Every top-level section
    is inspected; the id is returned only when the sections that carry one agree.
    Disagreeing sections yield ``None`` rather than whichever section comes first.
    """

    candidates: set[str] = set()
    for section in _agent_sections(config):
        general = section.get("general")
        if not isinstance(general, dict):
            continue
        canonical = general.get("Id")
        if isinstance(canonical, str) and canonical.strip():
            candidates.add(canonical.strip())
    if len(candidates) != 1:
        return None
    return candidates.pop()


def extract_devices_from_config(config: Any) -> list[dict[str, str | None]]:
    """Return ``{id, action, broker}`` for each device described in a configuration."""

    devices: list[dict[str, str | None]] = []
    for section in _agent_sections(config):
        entries = section.get("devices")
        if not isinstance(entries, dict):
            continue
        for key, entry in entries.items():
            if not isinstance(entry, dict):
                continue
            devices.append(
                {
                    "id": str(entry.get("Id") or entry.get("id") or key),
                    "action": entry.get("Action") or entry.get("action"),
                    "broker": entry.get("Broker") or entry.get("broker"),
                }
            )
    return devices
