"""Seeded permutations and priority tiers that decide the draw order."""

from __future__ import annotations

import hashlib
import logging
import os
import random
from typing import Dict, List, MutableSequence, Optional, Sequence, Tuple, TypeVar

from .errors import InvalidConfiguration
from .types import LotteryOptions, Participant, Tier

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEED_RANDOM_BYTES = 16


def resolve_seed(seed: Optional[object]) -> str:
    """Return ``seed`` as text, generating a fresh one when it is ``None``.

    A generated seed is the SHA-256 hex digest of OS randomness so that the
    draw can still be replayed from the value recorded on the outcome.
    """
    if seed is None:
        generated = hashlib.sha256(os.urandom(SEED_RANDOM_BYTES)).hexdigest()
        logger.debug(f"Generated draw seed {generated[:16]}...")
        return generated
    text = str(seed).strip()
    if not text:
        raise InvalidConfiguration("seed must not be empty")
    return text


def derive_seed(seed: str, *labels: str) -> str:
    """Derive an independent sub-seed, e.g. one per sector."""
    payload = "|".join((seed,) + tuple(labels))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def make_rng(seed: str) -> random.Random:
    return random.Random(seed)


def fisher_yates(items: Sequence[T], rng: random.Random) -> List[T]:
    """Return a uniformly shuffled copy of ``items``.

    Walks from the last index down, swapping each element with one drawn
    from the not-yet-fixed prefix, so a given ``rng`` state always yields
    the same permutation.
    """
    shuffled: MutableSequence[T] = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randrange(i + 1)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return list(shuffled)


def tier_of(participant: Participant, options: LotteryOptions) -> Tier:
    """Return the draw tier ``participant`` belongs to under ``options``."""
    if options.prioritize_special_needs and participant.has_special_needs:
        return Tier.PCD
    if options.prioritize_elders and participant.is_elderly:
        return Tier.ELDERLY
    if options.delinquent_last and not participant.is_up_to_date:
        return Tier.DELINQUENT
    return Tier.NORMAL


def validate_tier_order(tier_order: Sequence[Tier]) -> Tuple[Tier, ...]:
    order = tuple(Tier(t) for t in tier_order)
    if len(set(order)) != len(order) or set(order) != set(Tier):
        raise InvalidConfiguration(
            "tier_order must list every tier exactly once: "
            + ", ".join(t.value for t in Tier)
        )
    return order


def draw_order(
    participants: Sequence[Participant],
    options: LotteryOptions,
    rng: random.Random,
) -> List[Participant]:
    """Partition ``participants`` into tiers and shuffle each tier.

    Parameters
    ----------
    participants : Sequence[Participant]
        Participants in input order.
    options : LotteryOptions
        Supplies the tier order and which priorities are honoured.
    rng : random.Random
        Seeded generator; tiers are shuffled in ``tier_order`` sequence.

    Returns
    -------
    List[Participant]
        The concatenated, shuffled tiers.
    """
    order = validate_tier_order(options.tier_order)
    tiers: Dict[Tier, List[Participant]] = {tier: [] for tier in order}
    for participant in participants:
        tiers[tier_of(participant, options)].append(participant)

    drawn: List[Participant] = []
    for tier in order:
        members = tiers[tier]
        if members:
            logger.debug(f"Shuffling tier {tier.value} with {len(members)} participant(s)")
        drawn.extend(fisher_yates(members, rng))
    return drawn


__all__ = [
    "resolve_seed",
    "derive_seed",
    "make_rng",
    "fisher_yates",
    "tier_of",
    "validate_tier_order",
    "draw_order",
]
