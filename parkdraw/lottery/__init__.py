"""Pure lottery engine: draw orders, spot matching and choice ceremonies."""

from .choice import ChoiceSession, DrawnParticipant, TurnStatus, run_choice_lottery
from .engine import run_general_lottery, run_sector_lottery
from .errors import (
    EntitlementExceeded,
    ErrorCode,
    IncompleteGroup,
    InsufficientSpots,
    InvalidConfiguration,
    InvalidTransition,
    LotteryError,
    OutOfTurn,
    PersistError,
    PublishError,
    SessionFinalized,
    SpotUnavailable,
)
from .linked import LinkedAllocation, assign_linked_group, run_linked_lottery
from .types import (
    LotteryMode,
    LotteryOptions,
    LotteryOutcome,
    LotteryResult,
    LotterySession,
    Participant,
    ParkingSpot,
    Priority,
    SessionStatus,
    SpotSize,
    SpotType,
    Tier,
)

__all__ = [
    "ChoiceSession",
    "DrawnParticipant",
    "TurnStatus",
    "run_choice_lottery",
    "run_general_lottery",
    "run_sector_lottery",
    "LinkedAllocation",
    "assign_linked_group",
    "run_linked_lottery",
    "ErrorCode",
    "LotteryError",
    "InsufficientSpots",
    "OutOfTurn",
    "SpotUnavailable",
    "IncompleteGroup",
    "InvalidConfiguration",
    "InvalidTransition",
    "SessionFinalized",
    "EntitlementExceeded",
    "PersistError",
    "PublishError",
    "LotteryMode",
    "LotteryOptions",
    "LotteryOutcome",
    "LotteryResult",
    "LotterySession",
    "Participant",
    "ParkingSpot",
    "Priority",
    "SessionStatus",
    "SpotSize",
    "SpotType",
    "Tier",
]
