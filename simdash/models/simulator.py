"""
Simulator Model

One row per simulator agent. The id starts out provisional (derived from the
agent's network location or chosen by the registration flow) and is replaced by
the agent-reported canonical id once the agent reveals it.
"""
from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import Mapped, relationship

from . import Base


class SimulatorStatus(str, Enum):
    AWAITING = "awaiting"
    ONLINE = "online"
    OFFLINE = "offline"
    REBOOTING = "rebooting"


class Simulator(Base):
    __tablename__ = "simulators"

    id: Mapped[str] = Column(String, primary_key=True, index=True)
    # Not unique at the database level; duplicate urls are consolidated by the identity resolver
    url: Mapped[str | None] = Column(String, index=True, nullable=True)
    title: Mapped[str] = Column(String, nullable=False, default="Simulator")
    status: Mapped[str] = Column(String, nullable=False, default=SimulatorStatus.AWAITING.value)
    created_at: Mapped[datetime] = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    last_seen: Mapped[datetime | None] = Column(DateTime(timezone=True), nullable=True)

    devices = relationship(
        "Device",
        back_populates="simulator",
        order_by="Device.id",
    )

    def __repr__(self):
        return f"<Simulator(id={self.id}, url={self.url}, status={self.status})>"
