"""
Simulator Poller

Periodically probes every known simulator. A successful probe marks the
simulator online and refreshes the snapshot of each of its devices; a failed
probe marks it offline. Simulators not seen for longer than the staleness
threshold are forced offline regardless of the probe outcome.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from simdash import crud
from simdash.core.config import Settings, settings
from simdash.models import Simulator, SimulatorStatus
from simdash.services.agent_client import AgentError, SimulatorClient
from simdash.services.registry import STORE_ERRORS, SimulatorRegistry
from simdash.services.scheduler import PeriodicService

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


@dataclass
class PollReport:
    online: list[str] = field(default_factory=list)
    offline: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class SimulatorPoller(PeriodicService):
    """
    Liveness checks for the simulator fleet.

    Each simulator is handled on its own: an unreachable agent or a store
    error for one simulator never stops the others from being polled.
    """

    name = "simulator poller"

    def __init__(
        self,
        session_factory: SessionFactory,
        client: SimulatorClient,
        registry: SimulatorRegistry,
        config: Settings | None = None,
    ) -> None:
        self._config = config or settings
        super().__init__(self._config.poll_interval_s)
        self._session_factory = session_factory
        self._client = client
        self._registry = registry
        self._stale_after = timedelta(seconds=self._config.stale_after_s)

    async def run_pass(self) -> PollReport:
        report = PollReport()
        try:
            async with self._session_factory() as session:
                simulators = await crud.list_simulators(session)
        except STORE_ERRORS as e:
            logger.error(f"Cannot list simulators to poll: {e}")
            return report

        for simulator in simulators:
            if not simulator.url:
                continue
            try:
                online = await self.poll_simulator(simulator)
            except STORE_ERRORS as e:
                logger.error(f"Store error while polling simulator {simulator.id}: {e}")
                report.errors.append(simulator.id)
                continue
            (report.online if online else report.offline).append(simulator.id)

        try:
            report.stale = await self.mark_stale_offline()
        except STORE_ERRORS as e:
            logger.error(f"Cannot mark stale simulators offline: {e}")
        return report

    async def poll_simulator(self, simulator: Simulator) -> bool:
        """Probe one simulator; returns whether it answered."""
        try:
            await self._client.probe(simulator.url)
        except AgentError as e:
            logger.warning(f"Simulator {simulator.id} unreachable at {simulator.url}: {e}")
            await self._set_status(simulator.id, SimulatorStatus.OFFLINE)
            return False

        await self._set_status(simulator.id, SimulatorStatus.ONLINE, last_seen=datetime.now(UTC))
        await self._refresh_devices(simulator)
        return True

    async def mark_stale_offline(self) -> list[str]:
        """Force offline every simulator whose last contact is older than the threshold."""
        cutoff = datetime.now(UTC) - self._stale_after
        async with self._session_factory() as session:
            stale_ids = list(
                (
                    await session.execute(
                        select(Simulator.id).where(
                            Simulator.last_seen.isnot(None),
                            Simulator.last_seen < cutoff,
                            Simulator.status != SimulatorStatus.OFFLINE.value,
                        )
                    )
                ).scalars()
            )
            if not stale_ids:
                return []

            await session.execute(
                update(Simulator)
                .where(Simulator.id.in_(stale_ids))
                .values(status=SimulatorStatus.OFFLINE.value)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        logger.info(f"Marked {len(stale_ids)} stale simulators offline: {', '.join(stale_ids)}")
        return stale_ids

    async def _set_status(
        self,
        simulator_id: str,
        status: SimulatorStatus,
        last_seen: datetime | None = None,
    ) -> None:
        values: dict = {"status": status.value}
        if last_seen is not None:
            values["last_seen"] = last_seen
        async with self._session_factory() as session:
            await session.execute(
                update(Simulator)
                .where(Simulator.id == simulator_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def _refresh_devices(self, simulator: Simulator) -> None:
        async with self._session_factory() as session:
            devices = await crud.list_devices(session, simulator.id)

        for device in devices:
            try:
                snapshot = await self._client.fetch_device(simulator.url, device.id)
            except AgentError as e:
                logger.warning(f"Error polling device {device.id} on {simulator.id}: {e}")
                continue
            await self._registry.apply_state_update(device.id, snapshot)
