"""Domain errors raised by the lottery engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence


class ErrorCode(Enum):
    """Engine error codes."""

    INSUFFICIENT_SPOTS = "INSUFFICIENT_SPOTS"
    OUT_OF_TURN = "OUT_OF_TURN"
    SPOT_UNAVAILABLE = "SPOT_UNAVAILABLE"
    INCOMPLETE_GROUP = "INCOMPLETE_GROUP"
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    SESSION_FINALIZED = "SESSION_FINALIZED"
    ENTITLEMENT_EXCEEDED = "ENTITLEMENT_EXCEEDED"
    PERSIST_ERROR = "PERSIST_ERROR"
    PUBLISH_ERROR = "PUBLISH_ERROR"


@dataclass(eq=False)
class LotteryError(Exception):
    """Base engine error with a code and a user-safe message."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class InsufficientSpots(LotteryError):
    """Reported (not raised) when the pool cannot cover every entitlement."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            code=ErrorCode.INSUFFICIENT_SPOTS,
            message=f"{required} spots required but only {available} available",
        )
        self.required = required
        self.available = available


class OutOfTurn(LotteryError):
    """Raised when a pick is attempted by a participant whose turn it is not."""

    def __init__(self, participant_id: str, current_id: Optional[str]) -> None:
        super().__init__(
            code=ErrorCode.OUT_OF_TURN,
            message=(
                f"Participant {participant_id} cannot pick now"
                + (f"; current turn belongs to {current_id}" if current_id else "")
            ),
        )
        self.participant_id = participant_id
        self.current_id = current_id


class SpotUnavailable(LotteryError):
    """Raised when a pick targets a spot outside the remaining pool."""

    def __init__(self, spot_id: str) -> None:
        super().__init__(
            code=ErrorCode.SPOT_UNAVAILABLE,
            message=f"Spot {spot_id} is not available",
        )
        self.spot_id = spot_id


class IncompleteGroup(LotteryError):
    """Raised when a linked group cannot be assigned as a whole."""

    def __init__(self, group_id: str, occupied: Sequence[str]) -> None:
        super().__init__(
            code=ErrorCode.INCOMPLETE_GROUP,
            message=(
                f"Linked group {group_id} is not entirely free "
                f"(occupied: {', '.join(occupied)})"
            ),
        )
        self.group_id = group_id
        self.occupied = tuple(occupied)


class InvalidConfiguration(LotteryError):
    """Raised before any assignment when the draw inputs are unusable."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.INVALID_CONFIGURATION, message=message)


class InvalidTransition(LotteryError):
    """Raised when a choice-session operation is not valid in its current state."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            code=ErrorCode.INVALID_TRANSITION,
            message=f"Cannot {operation}: {reason}",
        )
        self.operation = operation
        self.reason = reason


class SessionFinalized(LotteryError):
    """Raised when a completed session is asked to change."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.SESSION_FINALIZED,
            message="Session is finalized; start a new session to make corrections",
        )


class EntitlementExceeded(LotteryError):
    """Raised when an assignment would give a participant more spots than allowed."""

    def __init__(self, participant_id: str, entitlement: int) -> None:
        super().__init__(
            code=ErrorCode.ENTITLEMENT_EXCEEDED,
            message=f"Participant {participant_id} is entitled to {entitlement} spot(s)",
        )
        self.participant_id = participant_id
        self.entitlement = entitlement


class PersistError(LotteryError):
    """Raised by the storage workflows, e.g. when a completed session would be overwritten."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.PERSIST_ERROR, message=message)


class PublishError(LotteryError):
    """Raised when public results cannot be validated or written."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(code=ErrorCode.PUBLISH_ERROR, message=message)
        self.status_code = status_code


__all__ = [
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
]
