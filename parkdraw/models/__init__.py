from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .building import Building  # noqa: F401
from .participant import Participant  # noqa: F401
from .spot import ParkingSpot  # noqa: F401
from .lottery import (  # noqa: F401
    LotterySessionRecord,
    LotteryResultRecord,
    PreAllocation,
)

__all__ = [
    "Base",
    "Building",
    "Participant",
    "ParkingSpot",
    "LotterySessionRecord",
    "LotteryResultRecord",
    "PreAllocation",
]
