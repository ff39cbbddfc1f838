"""Participant/spot matching with ordered preference relaxation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
import logging
import random
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from .types import Participant, ParkingSpot, SpotType

logger = logging.getLogger(__name__)

FLOORS_LABEL = "floors"


class Preference(IntEnum):
    """Soft preferences, most important first.

    Large vehicles and motorcycles are hard constraints handled by
    :func:`is_compatible` and never appear here.
    """

    PCD = 1
    ELDERLY = 2
    SMALL_SPOT = 4
    COVERED = 5
    UNCOVERED = 6
    LINKED = 7
    FREE = 8
    COMMON = 10

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class SpotChoice:
    """A spot picked for a participant and the preferences given up for it."""

    spot: ParkingSpot
    relaxed: Tuple[str, ...] = ()


def participant_preferences(participant: Participant) -> Tuple[Preference, ...]:
    prefs = []
    if participant.has_special_needs:
        prefs.append(Preference.PCD)
    if participant.is_elderly:
        prefs.append(Preference.ELDERLY)
    if participant.has_small_car or participant.prefers_small_spot:
        prefs.append(Preference.SMALL_SPOT)
    if participant.prefers_covered:
        prefs.append(Preference.COVERED)
    if participant.prefers_uncovered:
        prefs.append(Preference.UNCOVERED)
    if participant.prefers_linked_spot:
        prefs.append(Preference.LINKED)
    if participant.prefers_unlinked_spot:
        prefs.append(Preference.FREE)
    if not prefs:
        # Without designations a participant aims for an undesignated spot
        # first, leaving PCD/elderly spots to whoever needs them.
        prefs.append(Preference.COMMON)
    return tuple(sorted(prefs))


def spot_preferences(spot: ParkingSpot) -> FrozenSet[Preference]:
    prefs = set()
    if spot.has_type(SpotType.PCD):
        prefs.add(Preference.PCD)
    if spot.has_type(SpotType.ELDERLY):
        prefs.add(Preference.ELDERLY)
    if spot.is_small:
        prefs.add(Preference.SMALL_SPOT)
    if spot.covered:
        prefs.add(Preference.COVERED)
    if spot.uncovered:
        prefs.add(Preference.UNCOVERED)
    if spot.linked:
        prefs.add(Preference.LINKED)
    if spot.has_type(SpotType.FREE) or not spot.linked:
        prefs.add(Preference.FREE)
    if spot.has_type(SpotType.COMMON) or not (
        spot.has_type(SpotType.PCD) or spot.has_type(SpotType.ELDERLY)
    ):
        prefs.add(Preference.COMMON)
    return frozenset(prefs)


def is_compatible(participant: Participant, spot: ParkingSpot) -> bool:
    """Hard constraints that are never relaxed."""
    if participant.has_large_car and not spot.is_large:
        return False
    if spot.is_motorcycle and not participant.has_motorcycle:
        return False
    return True


def candidate_pool(
    participant: Participant, spots: Iterable[ParkingSpot]
) -> List[ParkingSpot]:
    """Return the spots ``participant`` may receive at all.

    Motorcycle owners are restricted to motorcycle spots while any remain.
    """
    pool = [spot for spot in spots if is_compatible(participant, spot)]
    if participant.has_motorcycle:
        motorcycle_spots = [spot for spot in pool if spot.is_motorcycle]
        if motorcycle_spots:
            return motorcycle_spots
    return pool


def choose_spot(
    participant: Participant,
    free_spots: Sequence[ParkingSpot],
    rng: random.Random,
) -> Optional[SpotChoice]:
    """Pick the best remaining spot for ``participant``.

    Preferences are tried in full first. While nothing matches, preferred
    floors are dropped, then the least important preference, and so on
    until only the hard constraints remain.

    Parameters
    ----------
    participant : Participant
        Participant being served.
    free_spots : Sequence[ParkingSpot]
        Spots still available, in a stable order.
    rng : random.Random
        Breaks ties between equally good spots.

    Returns
    -------
    Optional[SpotChoice]
        ``None`` when no spot satisfies the hard constraints.
    """
    pool = candidate_pool(participant, free_spots)
    if not pool:
        return None

    prefs = participant_preferences(participant)
    floors = set(participant.preferred_floors)
    spot_prefs = {spot.id: spot_preferences(spot) for spot in pool}

    for keep in range(len(prefs), -1, -1):
        required = prefs[:keep]
        dropped = tuple(p.label for p in reversed(prefs[keep:]))
        for use_floors in ((True, False) if floors else (False,)):
            candidates = [
                spot
                for spot in pool
                if all(p in spot_prefs[spot.id] for p in required)
                and (not use_floors or spot.floor in floors)
            ]
            if not candidates:
                continue
            spot = candidates[rng.randrange(len(candidates))]
            relaxed = dropped
            if floors and not use_floors:
                relaxed = (FLOORS_LABEL,) + dropped
            if relaxed:
                logger.debug(
                    f"Participant {participant.id} relaxed {', '.join(relaxed)} for spot {spot.id}"
                )
            return SpotChoice(spot=spot, relaxed=relaxed)
    return None  # pragma: no cover - the empty requirement always matches


def spot_groups(spots: Iterable[ParkingSpot]) -> Dict[str, Tuple[str, ...]]:
    """Map each linked-group id to its member spot ids, in input order."""
    groups: Dict[str, List[str]] = {}
    for spot in spots:
        if spot.group_id is not None:
            groups.setdefault(spot.group_id, []).append(spot.id)
    return {group_id: tuple(ids) for group_id, ids in groups.items()}


def merge_relaxed(*parts: Iterable[str]) -> Tuple[str, ...]:
    """Concatenate relaxed labels keeping the first occurrence of each."""
    merged: List[str] = []
    for part in parts:
        for label in part:
            if label not in merged:
                merged.append(label)
    return tuple(merged)


__all__ = [
    "Preference",
    "SpotChoice",
    "FLOORS_LABEL",
    "participant_preferences",
    "spot_preferences",
    "is_compatible",
    "candidate_pool",
    "choose_spot",
    "spot_groups",
    "merge_relaxed",
]
