"""
Simulator Registry

Store-backed lookup of device -> simulator -> url and device -> last known
state, fronted by an in-process cache. The cache is a disposable projection of
the persisted store: a miss always falls back to the store and nothing is ever
served from the cache that the store has not held.

Store failures are logged and reported as False / None so the command path
never sees an exception from here.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, Callable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from simdash import crud
from simdash.core.config import Settings, settings
from simdash.models import Device, Simulator, SimulatorStatus
from simdash.services.addressing import format_simulator_url, provisional_simulator_id
from simdash.services.cache import Cache, MemoryCache

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]

# Device fields an observation is allowed to change
STATE_FIELDS = ("on", "rebooting", "action", "broker")

STORE_ERRORS = (SQLAlchemyError, OSError, TimeoutError)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def device_state(device: Device) -> dict[str, Any]:
    last_updated = as_utc(device.last_updated)
    return {
        "id": device.id,
        "simulatorId": device.simulator_id,
        "on": bool(device.on),
        "rebooting": bool(device.rebooting),
        "action": device.action,
        "broker": device.broker,
        "lastUpdated": last_updated.isoformat() if last_updated else None,
    }


def _coerce_state(partial: Mapping[str, Any]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for field in STATE_FIELDS:
        if field not in partial:
            continue
        value = partial[field]
        if field in ("on", "rebooting"):
            value = bool(value)
        elif value is not None:
            value = str(value)
        changes[field] = value
    return changes


class SimulatorRegistry:
    """
    Resolve devices to their owning simulator and keep their last known state.

    Two caches are kept, ``device -> simulator url`` and ``device -> state``.
    Both are invalidated per device on every write made through the registry
    and wholesale by the syncer at the end of each reconciliation pass.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        config: Settings | None = None,
        url_cache: Cache[str] | None = None,
        state_cache: Cache[dict[str, Any]] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or settings
        self._urls: Cache[str] = url_cache if url_cache is not None else MemoryCache()
        self._states: Cache[dict[str, Any]] = (
            state_cache if state_cache is not None else MemoryCache()
        )
        self._pending_clears: set[asyncio.Task[None]] = set()
        self._reboots_issued: dict[str, datetime] = {}

    # ------------------------------------------------------------------
    # Lookups

    async def resolve_simulator_url(self, device_id: str) -> str | None:
        """Return the base url of the simulator hosting *device_id*, or None if unknown."""
        cached = self._urls.get(device_id)
        if cached is not None:
            return cached

        stmt = (
            select(Simulator.url)
            .join(Device, Device.simulator_id == Simulator.id)
            .where(Device.id == device_id)
        )
        try:
            async with self._session_factory() as session:
                url = (await session.execute(stmt)).scalar_one_or_none()
        except STORE_ERRORS as e:
            logger.error(f"Store lookup for device {device_id} failed: {e}")
            return None

        if not url:
            return None
        self._urls.put(device_id, url)
        return url

    async def get_state(self, device_id: str) -> dict[str, Any] | None:
        cached = self._states.get(device_id)
        if cached is not None:
            return cached
        try:
            async with self._session_factory() as session:
                device = await crud.get_device(session, device_id)
        except STORE_ERRORS as e:
            logger.error(f"Store lookup for device {device_id} failed: {e}")
            return None
        if device is None:
            return None
        state = device_state(device)
        self._states.put(device_id, state)
        return state

    async def snapshot_all(self) -> dict[str, dict[str, Any]]:
        """Read every device from the store, refresh the cache and return id -> state."""
        stmt = (
            select(Device, Simulator.url)
            .join(Simulator, Device.simulator_id == Simulator.id)
            .order_by(Device.id.asc())
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except STORE_ERRORS as e:
            logger.error(f"Failed to snapshot device states: {e}")
            return {}

        snapshot: dict[str, dict[str, Any]] = {}
        for device, url in rows:
            state = device_state(device)
            snapshot[device.id] = state
            self._states.put(device.id, state)
            if url:
                self._urls.put(device.id, url)
        return snapshot

    async def list_simulators(self) -> list[Simulator]:
        """All simulators with their devices attached, oldest first."""
        try:
            async with self._session_factory() as session:
                return await crud.list_simulators(session, with_devices=True)
        except STORE_ERRORS as e:
            logger.error(f"Failed to list simulators: {e}")
            return []

    async def offline_simulator_ids(self) -> list[str]:
        stmt = (
            select(Simulator.id)
            .where(Simulator.status == SimulatorStatus.OFFLINE.value)
            .order_by(Simulator.id.asc())
        )
        try:
            async with self._session_factory() as session:
                return list((await session.execute(stmt)).scalars().all())
        except STORE_ERRORS as e:
            logger.error(f"Failed to list offline simulators: {e}")
            return []

    # ------------------------------------------------------------------
    # Writes

    async def record_device_observation(
        self,
        device_id: str,
        simulator_url: str,
        simulator_id: str | None = None,
    ) -> bool:
        """Upsert the simulator at *simulator_url* and attach *device_id* to it."""
        try:
            url = format_simulator_url(simulator_url)
        except ValueError as e:
            logger.warning(f"Ignoring observation of device {device_id}: {e}")
            return False

        try:
            async with self._session_factory() as session:
                simulator = await crud.get_simulator_by_url(session, url)
                if simulator is None:
                    candidate_id = simulator_id or provisional_simulator_id(url)
                    simulator = await session.get(Simulator, candidate_id)
                    if simulator is None:
                        simulator = Simulator(
                            id=candidate_id,
                            url=url,
                            status=SimulatorStatus.AWAITING.value,
                        )
                        session.add(simulator)
                        await session.flush()
                        logger.info(f"Registered simulator {candidate_id} at {url}")
                    elif simulator.url != url:
                        logger.info(
                            f"Simulator {candidate_id} moved from {simulator.url} to {url}"
                        )
                        simulator.url = url

                device = await session.get(Device, device_id)
                if device is None:
                    session.add(
                        Device(
                            id=device_id,
                            simulator_id=simulator.id,
                            last_updated=datetime.now(UTC),
                        )
                    )
                elif device.simulator_id != simulator.id:
                    logger.warning(
                        f"Device {device_id} re-pointed from simulator "
                        f"{device.simulator_id} to {simulator.id}"
                    )
                    device.simulator_id = simulator.id
                await session.commit()
        except STORE_ERRORS as e:
            logger.error(f"Failed to record device {device_id} at {url}: {e}")
            return False
        finally:
            self._urls.invalidate(device_id)
            self._states.invalidate(device_id)
        return True

    async def apply_state_update(self, device_id: str, partial_state: Mapping[str, Any]) -> bool:
        """Merge the recognized fields of *partial_state* into the stored device."""
        changes = _coerce_state(partial_state)
        try:
            async with self._session_factory() as session:
                device = await crud.get_device(session, device_id)
                if device is None:
                    logger.debug(f"State update for unknown device {device_id} ignored")
                    return False
                for key, value in changes.items():
                    setattr(device, key, value)
                device.last_updated = datetime.now(UTC)
                await session.commit()
                state = device_state(device)
        except STORE_ERRORS as e:
            logger.error(f"Failed to apply state update for device {device_id}: {e}")
            self._states.invalidate(device_id)
            return False

        self._states.put(device_id, state)
        return True

    async def evict_device(self, device_id: str) -> bool:
        """Delete a device record; returns whether one existed."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(Device).where(Device.id == device_id))
                await session.commit()
        except STORE_ERRORS as e:
            logger.error(f"Failed to evict device {device_id}: {e}")
            return False
        finally:
            self._urls.invalidate(device_id)
            self._states.invalidate(device_id)
        existed = bool(result.rowcount)
        if existed:
            logger.info(f"Evicted device {device_id}")
        return existed

    def invalidate_all(self) -> None:
        self._urls.clear()
        self._states.clear()

    # ------------------------------------------------------------------
    # Reboot grace window

    async def force_reboot(self, simulator_url: str) -> int:
        """
        Present every device of the simulator at *simulator_url* as rebooting.

        Devices are set to ``on=False, rebooting=True`` now; after the grace
        window the flag is cleared on every device that has not been observed
        since. Returns the number of devices marked.
        """
        try:
            url = format_simulator_url(simulator_url)
        except ValueError as e:
            logger.warning(f"Cannot mark simulator as rebooting: {e}")
            return 0

        issued_at = datetime.now(UTC)
        try:
            async with self._session_factory() as session:
                simulator = await crud.get_simulator_by_url(session, url)
                if simulator is None:
                    logger.warning(f"No simulator registered at {url}, nothing to mark rebooting")
                    return 0
                devices = await crud.list_devices(session, simulator.id)
                for device in devices:
                    device.on = False
                    device.rebooting = True
                    device.last_updated = issued_at
                simulator.status = SimulatorStatus.REBOOTING.value
                simulator_id = simulator.id
                await session.commit()
                states = [device_state(device) for device in devices]
        except STORE_ERRORS as e:
            logger.error(f"Failed to mark simulator at {url} as rebooting: {e}")
            return 0

        for state in states:
            self._states.put(state["id"], state)
        device_ids = [state["id"] for state in states]
        logger.info(
            f"Simulator {simulator_id} rebooting, {len(device_ids)} devices held for "
            f"{self._config.reboot_grace_s}s"
        )

        for device_id in device_ids:
            self._reboots_issued[device_id] = issued_at
        task = asyncio.create_task(
            self._clear_rebooting_after(simulator_id, device_ids, issued_at)
        )
        self._pending_clears.add(task)
        task.add_done_callback(self._pending_clears.discard)
        task.add_done_callback(lambda _: self._forget_reboot(device_ids, issued_at))
        return len(device_ids)

    async def _clear_rebooting_after(
        self,
        simulator_id: str,
        device_ids: list[str],
        issued_at: datetime,
    ) -> None:
        await asyncio.sleep(self._config.reboot_grace_s)

        # A device observed after the reboot was issued keeps its observed state
        clear_devices = (
            update(Device)
            .where(
                Device.id.in_(device_ids),
                Device.rebooting.is_(True),
                Device.last_updated <= issued_at,
            )
            .values(rebooting=False)
            .execution_options(synchronize_session=False)
        )
        settle_simulator = (
            update(Simulator)
            .where(
                Simulator.id == simulator_id,
                Simulator.status == SimulatorStatus.REBOOTING.value,
            )
            .values(status=SimulatorStatus.OFFLINE.value)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(clear_devices)
                await session.execute(settle_simulator)
                await session.commit()
        except STORE_ERRORS as e:
            logger.error(f"Failed to clear rebooting flag for simulator {simulator_id}: {e}")
            return
        finally:
            for device_id in device_ids:
                self._states.invalidate(device_id)

        logger.info(
            f"Grace window over for simulator {simulator_id}: "
            f"cleared rebooting on {result.rowcount} of {len(device_ids)} devices"
        )

    def pending_reboot_issued_at(self, device_id: str) -> datetime | None:
        """When the reboot holding *device_id* was issued, while its clear is pending."""
        return self._reboots_issued.get(device_id)

    def _forget_reboot(self, device_ids: list[str], issued_at: datetime) -> None:
        for device_id in device_ids:
            # a later reboot of the same device owns the entry
            if self._reboots_issued.get(device_id) == issued_at:
                del self._reboots_issued[device_id]

    async def wait_for_pending(self) -> None:
        """Wait for outstanding grace-window clears (used on shutdown and in tests)."""
        if self._pending_clears:
            await asyncio.gather(*self._pending_clears, return_exceptions=True)

    async def cancel_pending(self) -> None:
        for task in list(self._pending_clears):
            task.cancel()
        await self.wait_for_pending()
