from sqlalchemy.orm import declarative_base

Base = declarative_base()

from .simulator import Simulator, SimulatorStatus  # noqa: E402
from .device import Device  # noqa: E402
from .room import Room, RoomMembership  # noqa: E402

__all__ = [
    "Base",
    "Simulator",
    "SimulatorStatus",
    "Device",
    "Room",
    "RoomMembership",
]
