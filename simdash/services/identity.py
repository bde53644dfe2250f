"""
Simulator Identity Resolver

A simulator is first known under a provisional id (its network location or a
placeholder chosen at registration). Once its ``/configuration`` reveals the
canonical ``general.Id``, every record pointing at the provisional id is moved
to the canonical one and the provisional record is removed.

Duplicate simulator records sharing one url are consolidated onto a single
survivor: an id that is not shaped like a network address wins over one that
is, otherwise the earliest-created record wins.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from typing import Callable

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from simdash import crud
from simdash.models import Device, RoomMembership, Simulator
from simdash.schemas.agent import extract_canonical_id
from simdash.services.addressing import looks_like_network_address
from simdash.services.agent_client import AgentError, SimulatorClient
from simdash.services.registry import STORE_ERRORS, as_utc

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


def pick_survivor(simulators: Sequence[Simulator]) -> Simulator:
    """Choose which of several records for one url is kept."""
    return min(
        simulators,
        key=lambda sim: (looks_like_network_address(sim.id), as_utc(sim.created_at), sim.id),
    )


async def move_simulator_references(
    session: AsyncSession,
    from_ids: Sequence[str],
    to_id: str,
) -> None:
    """Re-point devices and room memberships from *from_ids* to *to_id*."""
    if not from_ids:
        return

    await session.execute(
        update(Device)
        .where(Device.simulator_id.in_(from_ids))
        .values(simulator_id=to_id)
        .execution_options(synchronize_session=False)
    )

    rooms = set(
        (
            await session.execute(
                select(RoomMembership.room_id).where(RoomMembership.simulator_id.in_(from_ids))
            )
        ).scalars()
    )
    if not rooms:
        return
    await session.execute(
        delete(RoomMembership)
        .where(RoomMembership.simulator_id.in_(from_ids))
        .execution_options(synchronize_session=False)
    )
    already_member = set(
        (
            await session.execute(
                select(RoomMembership.room_id).where(
                    RoomMembership.simulator_id == to_id,
                    RoomMembership.room_id.in_(rooms),
                )
            )
        ).scalars()
    )
    for room_id in sorted(rooms - already_member):
        session.add(RoomMembership(room_id=room_id, simulator_id=to_id))


class IdentityResolver:
    """Replace provisional simulator ids with the canonical ids agents report."""

    def __init__(self, session_factory: SessionFactory, client: SimulatorClient) -> None:
        self._session_factory = session_factory
        self._client = client

    async def resolve(self, simulator: Simulator) -> Simulator:
        """Return the simulator record to keep working with, migrated if needed."""
        if not simulator.url:
            return simulator

        try:
            config = await self._client.fetch_configuration(simulator.url)
        except AgentError as e:
            logger.warning(f"Cannot read configuration of simulator {simulator.id}: {e}")
            return simulator

        canonical_id = extract_canonical_id(config)
        if canonical_id is None:
            logger.debug(f"Simulator {simulator.id} reported no canonical id")
            return simulator
        if canonical_id == simulator.id:
            return simulator

        try:
            async with self._session_factory() as session:
                migrated = await self.migrate(session, simulator.id, canonical_id)
        except STORE_ERRORS as e:
            logger.error(
                f"Failed to migrate simulator {simulator.id} to canonical id {canonical_id}: {e}"
            )
            return simulator
        return migrated or simulator

    async def migrate(
        self,
        session: AsyncSession,
        provisional_id: str,
        canonical_id: str,
    ) -> Simulator | None:
        """
        Move everything recorded under *provisional_id* to *canonical_id*.

        The canonical record is created from (or refreshed with) the
        provisional record's url, title, status and last_seen. Running this
        again once the provisional record is gone changes nothing.
        """
        provisional = await session.get(Simulator, provisional_id)
        canonical = await session.get(Simulator, canonical_id)
        if provisional is None or provisional_id == canonical_id:
            return canonical

        if canonical is None:
            canonical = Simulator(
                id=canonical_id,
                url=provisional.url,
                title=provisional.title,
                status=provisional.status,
                last_seen=provisional.last_seen,
                created_at=provisional.created_at,
            )
            session.add(canonical)
        else:
            canonical.url = provisional.url
            canonical.title = provisional.title
            canonical.status = provisional.status
            canonical.last_seen = provisional.last_seen
        await session.flush()

        await move_simulator_references(session, [provisional_id], canonical_id)
        await session.execute(
            delete(Simulator)
            .where(Simulator.id == provisional_id)
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        logger.info(f"Simulator {provisional_id} now identified as {canonical_id}")
        return canonical

    async def consolidate_duplicates(self) -> int:
        """Collapse simulators sharing one url; returns the number of records removed."""
        removed = 0
        try:
            async with self._session_factory() as session:
                by_url: dict[str, list[Simulator]] = defaultdict(list)
                for simulator in await crud.list_simulators(session):
                    if simulator.url:
                        by_url[simulator.url].append(simulator)

                for url, group in by_url.items():
                    if len(group) < 2:
                        continue
                    survivor = pick_survivor(group)
                    losers = [sim.id for sim in group if sim.id != survivor.id]
                    await move_simulator_references(session, losers, survivor.id)
                    await session.execute(
                        delete(Simulator)
                        .where(Simulator.id.in_(losers))
                        .execution_options(synchronize_session=False)
                    )
                    logger.warning(
                        f"Merged duplicate simulators {', '.join(losers)} at {url} into {survivor.id}"
                    )
                    removed += len(losers)

                if removed:
                    await session.commit()
        except STORE_ERRORS as e:
            logger.error(f"Failed to consolidate duplicate simulators: {e}")
            return 0
        return removed
