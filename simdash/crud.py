"""CRUD helpers shared by routers and services."""

from __future__ import annotations

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from simdash.models import Device, Room, RoomMembership, Simulator, SimulatorStatus


# ---------------------------------------------------------------------------
# Simulator helpers


async def list_simulators(
    session: AsyncSession,
    *,
    with_devices: bool = False,
) -> list[Simulator]:
    """Return all simulators ordered by creation time."""

    stmt: Select[tuple[Simulator]] = select(Simulator).order_by(
        Simulator.created_at.asc(), Simulator.id.asc()
    )
    if with_devices:
        stmt = stmt.options(selectinload(Simulator.devices))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_simulator(
    session: AsyncSession,
    simulator_id: str,
    *,
    with_devices: bool = False,
) -> Simulator | None:
    stmt: Select[tuple[Simulator]] = select(Simulator).where(Simulator.id == simulator_id)
    if with_devices:
        stmt = stmt.options(selectinload(Simulator.devices)).execution_options(
            populate_existing=True
        )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_simulator_by_url(session: AsyncSession, url: str) -> Simulator | None:
    """Return the oldest simulator registered for *url*."""

    stmt: Select[tuple[Simulator]] = (
        select(Simulator)
        .where(Simulator.url == url)
        .order_by(Simulator.created_at.asc(), Simulator.id.asc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_simulator(
    session: AsyncSession,
    *,
    simulator_id: str,
    url: str | None,
    title: str = "Simulator",
    status: str = SimulatorStatus.AWAITING.value,
) -> Simulator:
    simulator = Simulator(id=simulator_id, url=url, title=title, status=status)
    session.add(simulator)
    await session.commit()
    await session.refresh(simulator)
    return simulator


# ---------------------------------------------------------------------------
# Device helpers


async def get_device(session: AsyncSession, device_id: str) -> Device | None:
    stmt: Select[tuple[Device]] = select(Device).where(Device.id == device_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_devices(
    session: AsyncSession,
    simulator_id: str | None = None,
) -> list[Device]:
    stmt: Select[tuple[Device]] = select(Device)
    if simulator_id is not None:
        stmt = stmt.where(Device.simulator_id == simulator_id)
    stmt = stmt.order_by(Device.id.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Room helpers


async def create_room(session: AsyncSession, *, room_id: str, title: str) -> Room:
    room = Room(id=room_id, title=title)
    session.add(room)
    await session.commit()
    await session.refresh(room)
    return room


async def add_simulator_to_room(session: AsyncSession, room_id: str, simulator_id: str) -> None:
    membership = await session.get(RoomMembership, (room_id, simulator_id))
    if membership is None:
        session.add(RoomMembership(room_id=room_id, simulator_id=simulator_id))
        await session.commit()


async def room_simulator_ids(session: AsyncSession, room_id: str) -> list[str]:
    stmt = (
        select(RoomMembership.simulator_id)
        .where(RoomMembership.room_id == room_id)
        .order_by(RoomMembership.simulator_id.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
