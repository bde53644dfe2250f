from __future__ import annotations

from sqlalchemy import Column, ForeignKey, String
from sqlalchemy.orm import Mapped

from . import Base


class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[str] = Column(String, primary_key=True, index=True)
    title: Mapped[str] = Column(String, nullable=False)


class RoomMembership(Base):
    """Simulator grouped into a room."""

    __tablename__ = "room_simulators"

    room_id: Mapped[str] = Column(
        String, ForeignKey("rooms.id", ondelete="CASCADE"), primary_key=True
    )
    simulator_id: Mapped[str] = Column(
        String,
        ForeignKey("simulators.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
