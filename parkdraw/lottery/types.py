"""Value objects shared by the lottery engine and its collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

from .errors import InsufficientSpots


class Priority(str, Enum):
    """Priority label stored on each result, strongest first."""

    SPECIAL_NEEDS = "special-needs"
    ELDERLY = "elderly"
    UP_TO_DATE = "up-to-date"
    NORMAL = "normal"


class Tier(str, Enum):
    """Draw-order tiers. Participants of an earlier tier are drawn first."""

    PCD = "pcd"
    ELDERLY = "elderly"
    NORMAL = "normal"
    DELINQUENT = "delinquent"


DEFAULT_TIER_ORDER: Tuple[Tier, ...] = (
    Tier.PCD,
    Tier.ELDERLY,
    Tier.NORMAL,
    Tier.DELINQUENT,
)


class LotteryMode(str, Enum):
    GENERAL = "general"
    SECTOR = "sector"
    CHOICE = "choice"
    LINKED = "linked"


class SessionStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class SpotType(str, Enum):
    COMMON = "common"
    PCD = "pcd"
    ELDERLY = "elderly"
    LARGE = "large"
    SMALL = "small"
    MOTORCYCLE = "motorcycle"
    LINKED = "linked"
    FREE = "free"
    COVERED = "covered"
    UNCOVERED = "uncovered"


class SpotSize(str, Enum):
    SMALL = "P"
    MEDIUM = "M"
    LARGE = "G"
    EXTRA_LARGE = "XG"


@dataclass(frozen=True)
class Participant:
    """A resident taking part in a draw.

    Attributes
    ----------
    id : str
        Stable identifier of the participant.
    name : str
        Display name of the resident.
    block, unit : str
        Unit identifier inside the building.
    sector : Optional[str]
        Sector the participant belongs to, used by sector draws.
    number_of_spots : Optional[int]
        Entitlement. ``None`` means the mode's default (1, or 3 for linked draws).
    group_id : Optional[str]
        Residents sharing a ``group_id`` are placed together in one spot group.
    preferred_floors : Tuple[str, ...]
        Floors the participant would like, relaxed first when unavailable.
    """

    id: str
    name: str = ""
    block: str = ""
    unit: str = ""
    sector: Optional[str] = None
    has_special_needs: bool = False
    is_elderly: bool = False
    is_up_to_date: bool = True
    has_large_car: bool = False
    has_small_car: bool = False
    has_motorcycle: bool = False
    number_of_spots: Optional[int] = None
    group_id: Optional[str] = None
    prefers_covered: bool = False
    prefers_uncovered: bool = False
    prefers_linked_spot: bool = False
    prefers_unlinked_spot: bool = False
    prefers_small_spot: bool = False
    preferred_floors: Tuple[str, ...] = ()

    @property
    def priority(self) -> Priority:
        if self.has_special_needs:
            return Priority.SPECIAL_NEEDS
        if self.is_elderly:
            return Priority.ELDERLY
        if self.is_up_to_date:
            return Priority.UP_TO_DATE
        return Priority.NORMAL

    @property
    def unit_label(self) -> str:
        return f"{self.block} - {self.unit}" if self.block else self.unit

    def entitlement(self, default: int = 1) -> int:
        """Return how many spots this participant may receive."""
        if self.number_of_spots is None:
            return default
        return max(1, int(self.number_of_spots))

    def snapshot(self) -> Dict[str, object]:
        """Public view of the participant stored alongside results."""
        return {
            "id": self.id,
            "name": self.name,
            "block": self.block,
            "unit": self.unit,
            "hasSpecialNeeds": self.has_special_needs,
            "isElderly": self.is_elderly,
            "isUpToDate": self.is_up_to_date,
            "hasLargeCar": self.has_large_car,
            "prefersCovered": self.prefers_covered,
            "prefersUncovered": self.prefers_uncovered,
            "prefersLinkedSpot": self.prefers_linked_spot,
            "prefersUnlinkedSpot": self.prefers_unlinked_spot,
            "numberOfSpots": self.entitlement(),
        }


@dataclass(frozen=True)
class ParkingSpot:
    """A parking spot that can be drawn."""

    id: str
    number: str = ""
    floor: str = ""
    sector: Optional[str] = None
    types: FrozenSet[SpotType] = frozenset()
    size: SpotSize = SpotSize.MEDIUM
    is_covered: bool = False
    is_uncovered: bool = False
    group_id: Optional[str] = None

    def has_type(self, spot_type: SpotType) -> bool:
        return spot_type in self.types

    @property
    def is_large(self) -> bool:
        return (
            SpotType.LARGE in self.types
            or self.size in (SpotSize.LARGE, SpotSize.EXTRA_LARGE)
        )

    @property
    def is_small(self) -> bool:
        return SpotType.SMALL in self.types or self.size == SpotSize.SMALL

    @property
    def is_motorcycle(self) -> bool:
        return SpotType.MOTORCYCLE in self.types

    @property
    def covered(self) -> bool:
        return self.is_covered or SpotType.COVERED in self.types

    @property
    def uncovered(self) -> bool:
        return self.is_uncovered or SpotType.UNCOVERED in self.types

    @property
    def linked(self) -> bool:
        return SpotType.LINKED in self.types or self.group_id is not None

    def snapshot(self) -> Dict[str, object]:
        """Public view of the spot stored alongside results."""
        return {
            "id": self.id,
            "number": self.number,
            "floor": self.floor,
            "type": sorted(t.value for t in self.types),
            "size": self.size.value,
            "isCovered": self.covered,
            "isUncovered": self.uncovered,
        }


@dataclass(frozen=True)
class LotteryOptions:
    """Knobs for a draw.

    Attributes
    ----------
    seed : Optional[str]
        Seed of the random permutation. ``None`` lets the engine pick one
        and report it on the outcome so the draw can be replayed.
    tier_order : Tuple[Tier, ...]
        Order in which tiers are drawn. Must list every :class:`Tier` once.
    prioritize_special_needs, prioritize_elders : bool
        When ``False`` those participants are drawn with everyone else.
    delinquent_last : bool
        Place participants who are not up to date in the last tier.
    pre_allocations : Mapping[str, Tuple[str, ...]]
        Fixed participant id -> spot ids assignments applied before the draw.
    default_entitlement : Optional[int]
        Entitlement used for participants without ``number_of_spots``.
        ``None`` means the mode's default.
    """

    seed: Optional[str] = None
    tier_order: Tuple[Tier, ...] = DEFAULT_TIER_ORDER
    prioritize_special_needs: bool = True
    prioritize_elders: bool = True
    delinquent_last: bool = True
    pre_allocations: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    default_entitlement: Optional[int] = None

    def settings(self) -> Dict[str, object]:
        """Return the options as a JSON-friendly mapping."""
        return {
            "tier_order": [tier.value for tier in self.tier_order],
            "prioritize_special_needs": self.prioritize_special_needs,
            "prioritize_elders": self.prioritize_elders,
            "delinquent_last": self.delinquent_last,
            "pre_allocations": {
                pid: list(spot_ids) for pid, spot_ids in self.pre_allocations.items()
            },
            "default_entitlement": self.default_entitlement,
        }


@dataclass(frozen=True)
class LotteryResult:
    """Outcome of the draw for one participant.

    Attributes
    ----------
    participant_id : str
        Participant the result belongs to.
    spot_ids : Tuple[str, ...]
        Assigned spots; empty when the participant was left unassigned.
    rank : int
        1-based position in the draw order.
    priority : Priority
        Label derived from the participant's flags.
    relaxed : Tuple[str, ...]
        Preferences dropped to find a spot, least important first.
    pre_allocated : bool
        ``True`` when the spots came from a fixed pre-allocation.
    sector : Optional[str]
        Sector the participant was drawn in, for sector draws.
    """

    participant_id: str
    spot_ids: Tuple[str, ...]
    rank: int
    priority: Priority = Priority.NORMAL
    relaxed: Tuple[str, ...] = ()
    pre_allocated: bool = False
    sector: Optional[str] = None

    @property
    def assigned(self) -> bool:
        return bool(self.spot_ids)

    def to_json(self) -> dict:
        return {
            "participant_id": self.participant_id,
            "spot_ids": list(self.spot_ids),
            "rank": self.rank,
            "priority": self.priority.value,
            "relaxed": list(self.relaxed),
            "pre_allocated": self.pre_allocated,
            "sector": self.sector,
        }

    @classmethod
    def from_json(cls, data: Mapping) -> "LotteryResult":
        return cls(
            participant_id=data["participant_id"],
            spot_ids=tuple(data.get("spot_ids") or ()),
            rank=int(data["rank"]),
            priority=Priority(data.get("priority", Priority.NORMAL.value)),
            relaxed=tuple(data.get("relaxed") or ()),
            pre_allocated=bool(data.get("pre_allocated", False)),
            sector=data.get("sector"),
        )


@dataclass(frozen=True)
class LotteryOutcome:
    """Ordered results of a finished draw plus the seed that produced them."""

    mode: LotteryMode
    results: Tuple[LotteryResult, ...]
    seed: str
    participant_ids: Tuple[str, ...]
    spot_ids: Tuple[str, ...]
    shortage: Optional[InsufficientSpots] = None

    @property
    def insufficient_spots(self) -> bool:
        return self.shortage is not None

    @property
    def unassigned(self) -> Tuple[str, ...]:
        return tuple(r.participant_id for r in self.results if not r.spot_ids)

    @property
    def assigned_spot_ids(self) -> Tuple[str, ...]:
        return tuple(sid for r in self.results for sid in r.spot_ids)

    def result_for(self, participant_id: str) -> Optional[LotteryResult]:
        for result in self.results:
            if result.participant_id == participant_id:
                return result
        return None

    def to_session(
        self,
        *,
        session_id: str,
        building_id: str,
        created_at: datetime,
        name: str = "",
        settings: Optional[Mapping] = None,
    ) -> "LotterySession":
        """Wrap the outcome in a completed :class:`LotterySession`."""
        return LotterySession(
            id=session_id,
            building_id=building_id,
            name=name,
            mode=self.mode,
            created_at=created_at,
            seed=self.seed,
            results=self.results,
            participant_ids=self.participant_ids,
            spot_ids=self.spot_ids,
            settings=dict(settings or {}),
            status=SessionStatus.COMPLETED,
        )


@dataclass(frozen=True)
class LotterySession:
    """A ceremony run as stored and published."""

    id: str
    building_id: str
    mode: LotteryMode
    created_at: datetime
    results: Tuple[LotteryResult, ...]
    name: str = ""
    seed: Optional[str] = None
    participant_ids: Tuple[str, ...] = ()
    spot_ids: Tuple[str, ...] = ()
    settings: Mapping[str, object] = field(default_factory=dict)
    status: SessionStatus = SessionStatus.COMPLETED

    @property
    def is_finalized(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    @property
    def unassigned(self) -> Tuple[str, ...]:
        return tuple(r.participant_id for r in self.results if not r.spot_ids)


__all__ = [
    "Priority",
    "Tier",
    "DEFAULT_TIER_ORDER",
    "LotteryMode",
    "SessionStatus",
    "SpotType",
    "SpotSize",
    "Participant",
    "ParkingSpot",
    "LotteryOptions",
    "LotteryResult",
    "LotteryOutcome",
    "LotterySession",
]
