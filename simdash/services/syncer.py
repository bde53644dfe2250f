"""
Device Sync Service

Full reconciliation of the persisted store against each simulator's
authoritative device list. Per simulator, in sequence:

1. resolve the simulator's canonical identity,
2. fetch ``GET /devices`` and normalize it,
3. diff it against the stored devices of that simulator and apply the
   inserts, updates and deletes.

An unreachable simulator is marked offline and its stored devices are left as
they are (stale rather than lost). The registry cache is invalidated once,
after every simulator of the pass has been handled.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from simdash import crud
from simdash.core.config import Settings, settings
from simdash.models import Device, Simulator, SimulatorStatus
from simdash.schemas.agent import AgentDeviceState
from simdash.services.agent_client import AgentError, AgentPayloadError, SimulatorClient
from simdash.services.identity import IdentityResolver
from simdash.services.registry import STATE_FIELDS, STORE_ERRORS, SimulatorRegistry, as_utc
from simdash.services.scheduler import PeriodicService

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


@dataclass(frozen=True)
class DeviceDiff:
    to_insert: tuple[AgentDeviceState, ...] = ()
    to_update: tuple[AgentDeviceState, ...] = ()
    to_delete: tuple[str, ...] = ()
    unchanged: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.to_insert or self.to_update or self.to_delete)


def compute_device_diff(
    authoritative: Iterable[AgentDeviceState],
    stored: Mapping[str, Mapping[str, Any]],
) -> DeviceDiff:
    """Three-way diff of an agent's device list against the stored devices.

    *stored* maps device id to its stored mutable fields. Devices present on
    both sides are only listed for update when a mutable field differs.
    """
    reported: dict[str, AgentDeviceState] = {state.id: state for state in authoritative}

    to_insert = []
    to_update = []
    unchanged = []
    for device_id, state in reported.items():
        current = stored.get(device_id)
        if current is None:
            to_insert.append(state)
        elif any(current.get(key) != value for key, value in state.mutable_fields().items()):
            to_update.append(state)
        else:
            unchanged.append(device_id)

    to_delete = sorted(device_id for device_id in stored if device_id not in reported)
    return DeviceDiff(
        to_insert=tuple(to_insert),
        to_update=tuple(to_update),
        to_delete=tuple(to_delete),
        unchanged=tuple(unchanged),
    )


@dataclass
class SimulatorSyncResult:
    simulator_id: str
    outcome: str
    inserted: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    detail: str | None = None


@dataclass
class SyncReport:
    started_at: datetime
    finished_at: datetime | None = None
    merged_simulators: int = 0
    results: list[SimulatorSyncResult] = field(default_factory=list)

    def result_for(self, simulator_id: str) -> SimulatorSyncResult | None:
        for result in self.results:
            if result.simulator_id == simulator_id:
                return result
        return None


class DeviceSyncService(PeriodicService):
    """Periodic reconciliation of stored devices with what the agents report."""

    name = "device sync service"

    def __init__(
        self,
        session_factory: SessionFactory,
        client: SimulatorClient,
        registry: SimulatorRegistry,
        resolver: IdentityResolver,
        config: Settings | None = None,
    ) -> None:
        self._config = config or settings
        super().__init__(self._config.sync_interval_s)
        self._session_factory = session_factory
        self._client = client
        self._registry = registry
        self._resolver = resolver

    async def run_pass(self) -> SyncReport:
        report = SyncReport(started_at=datetime.now(UTC))
        logger.info("Starting synchronization with all simulators")
        try:
            report.merged_simulators = await self._resolver.consolidate_duplicates()
            try:
                async with self._session_factory() as session:
                    simulator_ids = [sim.id for sim in await crud.list_simulators(session)]
            except STORE_ERRORS as e:
                logger.error(f"Cannot list simulators to sync: {e}")
                return report

            reconciled: set[str] = set()
            for simulator_id in simulator_ids:
                if simulator_id in reconciled:
                    continue
                # Earlier identity migrations may have moved or removed this record
                try:
                    async with self._session_factory() as session:
                        simulator = await crud.get_simulator(session, simulator_id)
                except STORE_ERRORS as e:
                    logger.error(f"Failed to load simulator {simulator_id}: {e}")
                    report.results.append(
                        SimulatorSyncResult(simulator_id, "error", detail=str(e))
                    )
                    continue
                if simulator is None:
                    logger.debug(f"Simulator {simulator_id} no longer exists, skipping")
                    continue

                result = await self._sync_guarded(simulator)
                reconciled.update((simulator_id, result.simulator_id))
                report.results.append(result)
        finally:
            self._registry.invalidate_all()
            report.finished_at = datetime.now(UTC)

        synced = sum(1 for result in report.results if result.outcome == "synced")
        logger.info(f"Synchronization completed: {synced}/{len(report.results)} simulators synced")
        return report

    async def sync_simulator(self, simulator_id: str) -> SimulatorSyncResult | None:
        """Sync a single simulator now; None when a pass is already running.

        Raises LookupError when the simulator is unknown.
        """
        if self.running:
            logger.warning(f"{self.name} pass in progress, not syncing {simulator_id}")
            return None
        async with self._run_lock:
            try:
                async with self._session_factory() as session:
                    simulator = await crud.get_simulator(session, simulator_id)
                if simulator is None:
                    raise LookupError(f"Simulator with ID {simulator_id} not found")
                return await self._sync_guarded(simulator)
            finally:
                self._registry.invalidate_all()

    async def _sync_guarded(self, simulator: Simulator) -> SimulatorSyncResult:
        try:
            return await self.sync_simulator_record(simulator)
        except STORE_ERRORS as e:
            logger.error(f"Failed to sync simulator {simulator.id}: {e}")
            return SimulatorSyncResult(simulator.id, "error", detail=str(e))

    async def sync_simulator_record(self, simulator: Simulator) -> SimulatorSyncResult:
        """Reconcile one simulator's devices; never raises for agent failures."""
        simulator = await self._resolver.resolve(simulator)
        if not simulator.url:
            logger.debug(f"Simulator {simulator.id} has no URL, skipping sync")
            return SimulatorSyncResult(simulator.id, "skipped", detail="no url")

        try:
            reported = await self._client.fetch_devices(simulator.url)
        except AgentPayloadError as e:
            logger.warning(
                f"Malformed device list from simulator {simulator.id}, skipping this pass: {e}"
            )
            return SimulatorSyncResult(simulator.id, "malformed", detail=str(e))
        except AgentError as e:
            await self._mark_offline(simulator.id)
            logger.warning(
                f"Graceful degradation: simulator {simulator.id} unreachable ({e}); "
                f"keeping previously synced devices, which may now be stale"
            )
            return SimulatorSyncResult(simulator.id, "offline", detail=str(e))

        logger.debug(
            f"Simulator {simulator.id} reports {len(reported)} devices: "
            f"{', '.join(state.id for state in reported)}"
        )
        try:
            return await self._apply(simulator.id, reported)
        except IntegrityError as e:
            logger.warning(
                f"Device id conflict while syncing simulator {simulator.id}, retrying: {e}"
            )
        return await self._apply(simulator.id, reported)

    async def _apply(
        self,
        simulator_id: str,
        reported: list[AgentDeviceState],
    ) -> SimulatorSyncResult:
        now = datetime.now(UTC)
        result = SimulatorSyncResult(simulator_id, "synced")

        async with self._session_factory() as session:
            await session.execute(
                update(Simulator)
                .where(Simulator.id == simulator_id)
                .values(status=SimulatorStatus.ONLINE.value, last_seen=now)
                .execution_options(synchronize_session=False)
            )

            stored = {device.id: device for device in await crud.list_devices(session, simulator_id)}
            diff = compute_device_diff(
                reported,
                {
                    device_id: {key: getattr(device, key) for key in STATE_FIELDS}
                    for device_id, device in stored.items()
                },
            )

            for state in diff.to_insert:
                await self._insert_device(session, simulator_id, state, now)
                result.inserted.append(state.id)

            for state in diff.to_update:
                device = stored[state.id]
                for key, value in state.mutable_fields().items():
                    setattr(device, key, value)
                device.last_updated = now
                result.updated.append(state.id)

            # A rebooting device the agent confirms must outrank its pending grace-window clear
            for device_id in diff.unchanged:
                device = stored[device_id]
                issued_at = self._registry.pending_reboot_issued_at(device_id)
                if (
                    device.rebooting
                    and issued_at is not None
                    and as_utc(device.last_updated) <= issued_at
                ):
                    device.last_updated = now

            if diff.to_delete:
                await session.execute(
                    delete(Device)
                    .where(Device.simulator_id == simulator_id, Device.id.in_(diff.to_delete))
                    .execution_options(synchronize_session=False)
                )
                result.removed.extend(diff.to_delete)
                logger.info(
                    f"Removed devices {', '.join(diff.to_delete)} no longer reported by "
                    f"simulator {simulator_id}"
                )

            await session.commit()

        if not diff.is_empty:
            logger.info(
                f"Synchronized simulator {simulator_id}: {len(result.inserted)} added, "
                f"{len(result.updated)} updated, {len(result.removed)} removed"
            )
        return result

    async def _insert_device(
        self,
        session: AsyncSession,
        simulator_id: str,
        state: AgentDeviceState,
        now: datetime,
    ) -> None:
        existing = await session.get(Device, state.id)
        if existing is None:
            session.add(
                Device(id=state.id, simulator_id=simulator_id, last_updated=now, **state.mutable_fields())
            )
            logger.info(f"Adding device {state.id} to simulator {simulator_id}")
            return

        # Device ids are fleet-wide; the agent that reports it now owns it
        logger.warning(
            f"Device {state.id} already registered under simulator {existing.simulator_id}, "
            f"re-pointing to {simulator_id}"
        )
        existing.simulator_id = simulator_id
        for key, value in state.mutable_fields().items():
            setattr(existing, key, value)
        existing.last_updated = now

    async def _mark_offline(self, simulator_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Simulator)
                .where(Simulator.id == simulator_id)
                .values(status=SimulatorStatus.OFFLINE.value)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
