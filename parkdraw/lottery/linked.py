"""Linked-spot draws where a group of spots is handed out as one unit."""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import random
from typing import Dict, List, Optional, Sequence, Tuple

from .engine import apply_pre_allocations, shortage_for, take_spots, validate_inputs
from .errors import IncompleteGroup, InvalidConfiguration, SpotUnavailable
from .matching import is_compatible, spot_groups
from .shuffle import draw_order, make_rng, resolve_seed
from .types import (
    LotteryMode,
    LotteryOptions,
    LotteryOutcome,
    LotteryResult,
    Participant,
    ParkingSpot,
)

logger = logging.getLogger(__name__)

LINKED_DEFAULT_ENTITLEMENT = 3


@dataclass(frozen=True)
class LinkedAllocation:
    """Immutable record of which spots each participant holds.

    Attributes
    ----------
    spots : Tuple[ParkingSpot, ...]
        The spot pool, in a stable order.
    assignments : Tuple[Tuple[str, Tuple[str, ...]], ...]
        ``(participant_id, spot_ids)`` pairs in assignment order.
    """

    spots: Tuple[ParkingSpot, ...]
    assignments: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()

    @property
    def groups(self) -> Dict[str, Tuple[str, ...]]:
        return spot_groups(self.spots)

    @property
    def taken(self) -> frozenset:
        return frozenset(sid for _, spot_ids in self.assignments for sid in spot_ids)

    def spots_of(self, participant_id: str) -> Tuple[str, ...]:
        for pid, spot_ids in self.assignments:
            if pid == participant_id:
                return spot_ids
        return ()

    def free_spots(self) -> List[ParkingSpot]:
        taken = self.taken
        return [spot for spot in self.spots if spot.id not in taken]

    def with_spots(self, participant_id: str, spot_ids: Sequence[str]) -> "LinkedAllocation":
        """Return a copy where ``participant_id`` additionally holds ``spot_ids``."""
        held = self.spots_of(participant_id) + tuple(spot_ids)
        others = tuple(item for item in self.assignments if item[0] != participant_id)
        return replace(self, assignments=others + ((participant_id, held),))

    def assign_spot(self, participant_id: str, spot_id: str) -> "LinkedAllocation":
        if spot_id not in {spot.id for spot in self.spots} or spot_id in self.taken:
            raise SpotUnavailable(spot_id)
        return self.with_spots(participant_id, (spot_id,))


def assign_linked_group(
    state: LinkedAllocation, participant_id: str, group_id: str
) -> LinkedAllocation:
    """Give every spot of ``group_id`` to ``participant_id`` at once.

    Parameters
    ----------
    state : LinkedAllocation
        Current allocation. It is never modified.
    participant_id : str
        Participant receiving the group.
    group_id : str
        Linked-group identifier shared by the member spots.

    Returns
    -------
    LinkedAllocation
        New allocation including the group.

    Raises
    ------
    InvalidConfiguration
        If no spot carries ``group_id``.
    IncompleteGroup
        If any member spot is already taken.
    """
    members = state.groups.get(group_id)
    if not members:
        raise InvalidConfiguration(f"unknown linked group {group_id}")
    taken = state.taken
    occupied = [sid for sid in members if sid in taken]
    if occupied:
        raise IncompleteGroup(group_id, occupied)
    logger.debug(f"Assigned linked group {group_id} to participant {participant_id}")
    return state.with_spots(participant_id, members)


def _best_group(
    participant: Participant,
    need: int,
    state: LinkedAllocation,
    rng: random.Random,
) -> Optional[str]:
    """Exact-size free group if any, else the largest free group that fits."""
    taken = state.taken
    by_id = {spot.id: spot for spot in state.spots}
    fitting = [
        gid
        for gid, ids in state.groups.items()
        if len(ids) <= need
        and not any(sid in taken for sid in ids)
        and all(is_compatible(participant, by_id[sid]) for sid in ids)
    ]
    if not fitting:
        return None
    best_size = max(len(state.groups[gid]) for gid in fitting)
    best = [gid for gid in fitting if len(state.groups[gid]) == best_size]
    return best[rng.randrange(len(best))]


def _top_up(
    participant: Participant,
    need: int,
    state: LinkedAllocation,
    rng: random.Random,
) -> Tuple[LinkedAllocation, Tuple[str, ...]]:
    """Add single spots that belong to no linked group.

    Group members are only ever handed out as a whole group, so a
    participant stays short rather than receive part of one.
    """
    loose = [spot for spot in state.free_spots() if spot.group_id is None]
    chosen, relaxed = take_spots(participant, need, loose, rng)
    for sid in chosen:
        state = state.assign_spot(participant.id, sid)
    return state, relaxed


def run_linked_lottery(
    participants: Sequence[Participant],
    spots: Sequence[ParkingSpot],
    options: Optional[LotteryOptions] = None,
) -> LotteryOutcome:
    """Draw whole linked groups for participants entitled to several spots.

    Each participant, in tiered draw order, receives a free group of exactly
    their entitlement when one exists, otherwise the largest free group that
    fits, and is then topped up with spots outside any linked group. A group
    is never split; participants stay short instead. Unless overridden by
    ``options.default_entitlement`` participants without ``number_of_spots``
    are entitled to three spots.

    Raises
    ------
    InvalidConfiguration
        If the inputs are unusable; nothing is assigned in that case.
    """
    options = options or LotteryOptions()
    validate_inputs(participants, spots, options, LINKED_DEFAULT_ENTITLEMENT)
    default_entitlement = options.default_entitlement or LINKED_DEFAULT_ENTITLEMENT

    seed = resolve_seed(options.seed)
    rng = make_rng(seed)
    results, remaining, pool = apply_pre_allocations(participants, spots, options)
    order = draw_order(remaining, options, rng)

    state = LinkedAllocation(spots=tuple(pool))
    relaxed_by_id: Dict[str, Tuple[str, ...]] = {}
    for participant in order:
        need = participant.entitlement(default_entitlement)
        group_id = _best_group(participant, need, state, rng)
        if group_id is not None:
            state = assign_linked_group(state, participant.id, group_id)
        missing = need - len(state.spots_of(participant.id))
        if missing > 0:
            state, relaxed_by_id[participant.id] = _top_up(participant, missing, state, rng)

    start_rank = len(results) + 1
    results.extend(
        LotteryResult(
            participant_id=participant.id,
            spot_ids=state.spots_of(participant.id),
            rank=start_rank + position,
            priority=participant.priority,
            relaxed=relaxed_by_id.get(participant.id, ()),
        )
        for position, participant in enumerate(order)
    )
    return LotteryOutcome(
        mode=LotteryMode.LINKED,
        results=tuple(results),
        seed=seed,
        participant_ids=tuple(p.id for p in participants),
        spot_ids=tuple(s.id for s in spots),
        shortage=shortage_for(order, pool, default_entitlement),
    )


__all__ = [
    "LINKED_DEFAULT_ENTITLEMENT",
    "LinkedAllocation",
    "assign_linked_group",
    "run_linked_lottery",
]
