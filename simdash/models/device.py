from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, relationship

from . import Base


class Device(Base):
    """A virtual device hosted by exactly one simulator.

    Device ids are unique across the whole fleet, so the primary key is the
    device id alone.
    """

    __tablename__ = "devices"

    id: Mapped[str] = Column(String, primary_key=True, index=True)
    simulator_id: Mapped[str] = Column(
        String,
        ForeignKey("simulators.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    on: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    rebooting: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    action: Mapped[str | None] = Column(String, nullable=True)
    broker: Mapped[str | None] = Column(String, nullable=True)
    last_updated: Mapped[datetime] = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    simulator = relationship("Simulator", back_populates="devices")
