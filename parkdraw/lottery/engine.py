"""General and sector draws.

Both draws walk a tiered, seeded permutation of the participants and give
each one the best remaining spot(s). The functions are pure: the same
participants, spots and seed always produce the same outcome.
"""

from __future__ import annotations

import logging
import random
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import InsufficientSpots, InvalidConfiguration
from .matching import choose_spot, is_compatible, merge_relaxed, spot_groups
from .shuffle import derive_seed, draw_order, make_rng, resolve_seed, validate_tier_order
from .types import (
    LotteryMode,
    LotteryOptions,
    LotteryOutcome,
    LotteryResult,
    Participant,
    ParkingSpot,
)

logger = logging.getLogger(__name__)


def validate_inputs(
    participants: Sequence[Participant],
    spots: Sequence[ParkingSpot],
    options: LotteryOptions,
    default_entitlement: int = 1,
) -> None:
    """Reject unusable inputs before anything is assigned.

    ``default_entitlement`` is the draw mode's entitlement for participants
    without ``number_of_spots``; ``options.default_entitlement`` overrides it.

    Raises
    ------
    InvalidConfiguration
        If there are no participants, ids are missing or duplicated, the
        tier order is incomplete, the default entitlement is not positive,
        or a pre-allocation references unknown or doubly-used spots, exceeds
        the participant's entitlement or gives them a spot their vehicle
        may not use.
    """
    if not participants:
        raise InvalidConfiguration("at least one participant is required")

    participant_ids = [p.id for p in participants]
    if any(not pid for pid in participant_ids):
        raise InvalidConfiguration("every participant needs an id")
    if len(set(participant_ids)) != len(participant_ids):
        raise InvalidConfiguration("participant ids must be unique")

    spot_ids = [s.id for s in spots]
    if any(not sid for sid in spot_ids):
        raise InvalidConfiguration("every spot needs an id")
    if len(set(spot_ids)) != len(spot_ids):
        raise InvalidConfiguration("spot ids must be unique")

    validate_tier_order(options.tier_order)
    if options.default_entitlement is not None and options.default_entitlement < 1:
        raise InvalidConfiguration("default_entitlement must be at least 1")

    participants_by_id = {p.id: p for p in participants}
    spots_by_id = {s.id: s for s in spots}
    default = options.default_entitlement or default_entitlement
    seen: set = set()
    for pid, allocated in options.pre_allocations.items():
        if pid not in participants_by_id:
            raise InvalidConfiguration(f"pre-allocation for unknown participant {pid}")
        if not allocated:
            raise InvalidConfiguration(f"pre-allocation for {pid} lists no spots")
        for sid in allocated:
            if sid not in spots_by_id:
                raise InvalidConfiguration(f"pre-allocation references unknown spot {sid}")
            if sid in seen:
                raise InvalidConfiguration(f"spot {sid} is pre-allocated twice")
            seen.add(sid)
            if not is_compatible(participants_by_id[pid], spots_by_id[sid]):
                raise InvalidConfiguration(
                    f"pre-allocated spot {sid} is not usable by participant {pid}"
                )
        entitlement = participants_by_id[pid].entitlement(default)
        if len(allocated) > entitlement:
            raise InvalidConfiguration(
                f"pre-allocation for {pid} lists {len(allocated)} spots but the "
                f"entitlement is {entitlement}"
            )


def apply_pre_allocations(
    participants: Sequence[Participant],
    spots: Sequence[ParkingSpot],
    options: LotteryOptions,
) -> Tuple[List[LotteryResult], List[Participant], List[ParkingSpot]]:
    """Take pre-allocated participants and spots out of the draw.

    Returns
    -------
    Tuple[List[LotteryResult], List[Participant], List[ParkingSpot]]
        Results for the pre-allocated participants (ranked first, in
        pre-allocation order), then the participants and spots left for
        the draw in their input order.
    """
    by_id = {p.id: p for p in participants}
    results: List[LotteryResult] = []
    taken: set = set()
    for pid, allocated in options.pre_allocations.items():
        results.append(
            LotteryResult(
                participant_id=pid,
                spot_ids=tuple(allocated),
                rank=len(results) + 1,
                priority=by_id[pid].priority,
                pre_allocated=True,
            )
        )
        taken.update(allocated)
    if results:
        logger.debug(f"Applied {len(results)} pre-allocation(s)")
    remaining_participants = [p for p in participants if p.id not in options.pre_allocations]
    remaining_spots = [s for s in spots if s.id not in taken]
    return results, remaining_participants, remaining_spots


def shortage_for(
    participants: Sequence[Participant], spots: Sequence[ParkingSpot], default_entitlement: int
) -> Optional[InsufficientSpots]:
    required = sum(p.entitlement(default_entitlement) for p in participants)
    if required > len(spots):
        return InsufficientSpots(required=required, available=len(spots))
    return None


def _resident_groups(order: Sequence[Participant]) -> Dict[str, List[Participant]]:
    """Residents sharing a group id (two or more) in draw order."""
    groups: Dict[str, List[Participant]] = {}
    for participant in order:
        if participant.group_id:
            groups.setdefault(participant.group_id, []).append(participant)
    return {gid: members for gid, members in groups.items() if len(members) >= 2}


def take_spots(
    participant: Participant,
    need: int,
    free: List[ParkingSpot],
    rng: random.Random,
) -> Tuple[List[str], Tuple[str, ...]]:
    """Take up to ``need`` spots one at a time from ``free`` (mutated)."""
    chosen: List[str] = []
    relaxed: Tuple[str, ...] = ()
    while len(chosen) < need:
        choice = choose_spot(participant, free, rng)
        if choice is None:
            break
        chosen.append(choice.spot.id)
        free.remove(choice.spot)
        relaxed = merge_relaxed(relaxed, choice.relaxed)
    return chosen, relaxed


def _take_keeping_groups(
    participant: Participant,
    need: int,
    free: List[ParkingSpot],
    groups: Mapping[str, Tuple[str, ...]],
    rng: random.Random,
) -> Tuple[List[str], Tuple[str, ...]]:
    """Like :func:`take_spots`, but spots of intact linked groups go last.

    Single spots only come out of a whole free group once nothing else is
    left for the participant.
    """
    free_ids = {spot.id for spot in free}
    intact = {
        sid
        for ids in groups.values()
        if all(member in free_ids for member in ids)
        for sid in ids
    }
    outside = [spot for spot in free if spot.id not in intact]
    chosen, relaxed = take_spots(participant, need, outside, rng)
    if len(chosen) < need:
        inside = [spot for spot in free if spot.id in intact]
        extra, extra_relaxed = take_spots(participant, need - len(chosen), inside, rng)
        chosen.extend(extra)
        relaxed = merge_relaxed(relaxed, extra_relaxed)
    taken = set(chosen)
    free[:] = [spot for spot in free if spot.id not in taken]
    return chosen, relaxed


def _place_resident_group(
    members: Sequence[Participant],
    free: List[ParkingSpot],
    groups: Mapping[str, Tuple[str, ...]],
    rng: random.Random,
    default_entitlement: int,
) -> Optional[Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]]]:
    """Seat a whole resident group inside one free spot group.

    Spot groups are tried smallest first. ``free`` is only mutated when
    every member receives their full entitlement.
    """
    total = sum(m.entitlement(default_entitlement) for m in members)
    free_by_id = {spot.id: spot for spot in free}
    candidates = [
        gid
        for gid, ids in groups.items()
        if len(ids) >= total and all(sid in free_by_id for sid in ids)
    ]
    candidates.sort(key=lambda gid: len(groups[gid]))

    for gid in candidates:
        trial = [free_by_id[sid] for sid in groups[gid]]
        placed: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {}
        for member in members:
            need = member.entitlement(default_entitlement)
            chosen, relaxed = take_spots(member, need, trial, rng)
            if len(chosen) < need:
                break
            placed[member.id] = (tuple(chosen), relaxed)
        else:
            used = {sid for spot_ids, _ in placed.values() for sid in spot_ids}
            free[:] = [spot for spot in free if spot.id not in used]
            logger.debug(
                f"Placed resident group of {len(members)} in spot group {gid}"
            )
            return placed
    return None


def _linked_group_for(
    participant: Participant,
    size: int,
    free: Sequence[ParkingSpot],
    groups: Mapping[str, Tuple[str, ...]],
    rng: random.Random,
) -> Optional[Tuple[str, ...]]:
    """A free spot group of exactly ``size`` compatible spots, if any."""
    free_by_id = {spot.id: spot for spot in free}
    candidates = [
        gid
        for gid, ids in groups.items()
        if len(ids) == size
        and all(sid in free_by_id for sid in ids)
        and all(is_compatible(participant, free_by_id[sid]) for sid in ids)
    ]
    if not candidates:
        return None
    return groups[candidates[rng.randrange(len(candidates))]]


def allocate(
    order: Sequence[Participant],
    spots: Sequence[ParkingSpot],
    rng: random.Random,
    *,
    default_entitlement: int = 1,
    start_rank: int = 1,
    sector: Optional[str] = None,
) -> List[LotteryResult]:
    """Walk ``order`` and assign spots greedily.

    Parameters
    ----------
    order : Sequence[Participant]
        Participants in draw order.
    spots : Sequence[ParkingSpot]
        The spot pool. Never more than one participant gets a spot.
    rng : random.Random
        Generator used to break ties between equally good spots.
    default_entitlement : int, default: 1
        Entitlement for participants without ``number_of_spots``.
    start_rank : int, default: 1
        Rank given to the first participant of ``order``.
    sector : Optional[str], default: None
        Sector recorded on the produced results.

    Returns
    -------
    List[LotteryResult]
        One result per participant, in draw order.
    """
    free: List[ParkingSpot] = list(spots)
    groups = spot_groups(spots)
    resident_groups = _resident_groups(order)
    placed: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {}

    for participant in order:
        if participant.id in placed:
            continue

        members = resident_groups.get(participant.group_id or "")
        if members:
            seated = _place_resident_group(members, free, groups, rng, default_entitlement)
            if seated is not None:
                placed.update(seated)
                continue
            logger.debug(
                f"No spot group fits resident group {participant.group_id}; "
                "assigning members individually"
            )
            resident_groups.pop(participant.group_id or "", None)

        need = participant.entitlement(default_entitlement)
        chosen: List[str] = []
        relaxed: Tuple[str, ...] = ()
        if need > 1:
            group = _linked_group_for(participant, need, free, groups, rng)
            if group is not None:
                chosen = list(group)
                free[:] = [spot for spot in free if spot.id not in group]
        if len(chosen) < need:
            if participant.prefers_linked_spot:
                extra, relaxed = take_spots(participant, need - len(chosen), free, rng)
            else:
                extra, relaxed = _take_keeping_groups(
                    participant, need - len(chosen), free, groups, rng
                )
            chosen.extend(extra)
        placed[participant.id] = (tuple(chosen), relaxed)
        if not chosen:
            logger.debug(f"Participant {participant.id} left unassigned")

    return [
        LotteryResult(
            participant_id=participant.id,
            spot_ids=placed[participant.id][0],
            rank=start_rank + position,
            priority=participant.priority,
            relaxed=placed[participant.id][1],
            sector=sector,
        )
        for position, participant in enumerate(order)
    ]


def run_general_lottery(
    participants: Sequence[Participant],
    spots: Sequence[ParkingSpot],
    options: Optional[LotteryOptions] = None,
) -> LotteryOutcome:
    """Run a randomized draw over the whole building.

    Parameters
    ----------
    participants : Sequence[Participant]
        Non-empty list of participants.
    spots : Sequence[ParkingSpot]
        Spots in the draw pool. Fewer spots than entitlements is allowed.
    options : Optional[LotteryOptions], default: None
        Seed, tier order and pre-allocations.

    Returns
    -------
    LotteryOutcome
        Pre-allocated results first, then one result per participant in
        draw order. ``shortage`` is set when the pool cannot cover every
        entitlement.

    Raises
    ------
    InvalidConfiguration
        If the inputs are unusable; nothing is assigned in that case.
    """
    options = options or LotteryOptions()
    validate_inputs(participants, spots, options)
    default_entitlement = options.default_entitlement or 1

    seed = resolve_seed(options.seed)
    rng = make_rng(seed)
    results, remaining, pool = apply_pre_allocations(participants, spots, options)
    order = draw_order(remaining, options, rng)
    results.extend(
        allocate(
            order,
            pool,
            rng,
            default_entitlement=default_entitlement,
            start_rank=len(results) + 1,
        )
    )

    outcome = LotteryOutcome(
        mode=LotteryMode.GENERAL,
        results=tuple(results),
        seed=seed,
        participant_ids=tuple(p.id for p in participants),
        spot_ids=tuple(s.id for s in spots),
        shortage=shortage_for(order, pool, default_entitlement),
    )
    logger.debug(
        f"General draw assigned {len(outcome.assigned_spot_ids)} spot(s); "
        f"{len(outcome.unassigned)} participant(s) unassigned"
    )
    return outcome


def run_sector_lottery(
    participants: Sequence[Participant],
    spots: Sequence[ParkingSpot],
    sector_map: Optional[Mapping[str, str]] = None,
    options: Optional[LotteryOptions] = None,
) -> LotteryOutcome:
    """Run an independent draw per sector.

    Participants only receive spots of their own sector. ``sector_map``
    (participant id -> sector) overrides ``Participant.sector``. Each sector
    draws with its own generator derived from the seed and the sector name.

    Raises
    ------
    InvalidConfiguration
        If a participant or spot has no sector, or ``sector_map`` names an
        unknown participant.
    """
    options = options or LotteryOptions()
    validate_inputs(participants, spots, options)
    sector_map = dict(sector_map or {})
    default_entitlement = options.default_entitlement or 1

    known = {p.id for p in participants}
    unknown = sorted(pid for pid in sector_map if pid not in known)
    if unknown:
        raise InvalidConfiguration(f"sector map references unknown participants: {', '.join(unknown)}")

    sector_of: Dict[str, str] = {}
    for participant in participants:
        sector = sector_map.get(participant.id) or participant.sector
        if not sector:
            raise InvalidConfiguration(f"participant {participant.id} has no sector")
        sector_of[participant.id] = sector
    for spot in spots:
        if not spot.sector:
            raise InvalidConfiguration(f"spot {spot.id} has no sector")

    seed = resolve_seed(options.seed)
    results, remaining, pool = apply_pre_allocations(participants, spots, options)

    required = 0
    short_available = 0
    for sector in sorted({sector_of[p.id] for p in remaining}):
        members = [p for p in remaining if sector_of[p.id] == sector]
        sector_spots = [s for s in pool if s.sector == sector]
        if not sector_spots:
            logger.debug(f"Sector {sector} has no spots for {len(members)} participant(s)")

        rng = make_rng(derive_seed(seed, sector))
        order = draw_order(members, options, rng)
        results.extend(
            allocate(
                order,
                sector_spots,
                rng,
                default_entitlement=default_entitlement,
                start_rank=len(results) + 1,
                sector=sector,
            )
        )
        sector_shortage = shortage_for(members, sector_spots, default_entitlement)
        if sector_shortage is not None:
            required += sector_shortage.required
            short_available += sector_shortage.available

    return LotteryOutcome(
        mode=LotteryMode.SECTOR,
        results=tuple(results),
        seed=seed,
        participant_ids=tuple(p.id for p in participants),
        spot_ids=tuple(s.id for s in spots),
        shortage=InsufficientSpots(required, short_available) if required else None,
    )


__all__ = [
    "validate_inputs",
    "apply_pre_allocations",
    "shortage_for",
    "take_spots",
    "allocate",
    "run_general_lottery",
    "run_sector_lottery",
]
