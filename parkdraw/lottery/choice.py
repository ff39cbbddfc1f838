"""Choice ceremonies: the draw fixes the order, participants pick their spots.

A :class:`ChoiceSession` is an immutable value. Every operation returns a new
session or raises a :class:`~parkdraw.lottery.errors.LotteryError`, so a
rejected operation never leaves a half-applied state behind.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .engine import validate_inputs
from .errors import (
    EntitlementExceeded,
    IncompleteGroup,
    InsufficientSpots,
    InvalidConfiguration,
    InvalidTransition,
    OutOfTurn,
    SessionFinalized,
    SpotUnavailable,
)
from .matching import spot_groups
from .shuffle import draw_order, fisher_yates, make_rng, resolve_seed
from .types import (
    LotteryMode,
    LotteryOptions,
    LotteryOutcome,
    LotteryResult,
    Participant,
    ParkingSpot,
    Priority,
    SessionStatus,
)

logger = logging.getLogger(__name__)


class TurnStatus(str, Enum):
    WAITING = "waiting"
    CHOOSING = "choosing"
    COMPLETED = "completed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class DrawnParticipant:
    """A participant's place in the choice order and what they hold so far."""

    participant_id: str
    draw_order: int
    entitlement: int
    priority: Priority = Priority.NORMAL
    spot_ids: Tuple[str, ...] = ()
    status: TurnStatus = TurnStatus.WAITING
    absent: bool = False
    pre_allocated: Tuple[str, ...] = ()

    @property
    def remaining(self) -> int:
        return max(0, self.entitlement - len(self.spot_ids))

    def reset(self) -> "DrawnParticipant":
        return replace(
            self,
            spot_ids=self.pre_allocated,
            status=TurnStatus.COMPLETED
            if self.pre_allocated and len(self.pre_allocated) >= self.entitlement
            else TurnStatus.WAITING,
            absent=False,
        )

    def to_json(self) -> dict:
        return {
            "participant_id": self.participant_id,
            "draw_order": self.draw_order,
            "entitlement": self.entitlement,
            "priority": self.priority.value,
            "spot_ids": list(self.spot_ids),
            "status": self.status.value,
            "absent": self.absent,
            "pre_allocated": list(self.pre_allocated),
        }

    @classmethod
    def from_json(cls, data: Mapping) -> "DrawnParticipant":
        return cls(
            participant_id=data["participant_id"],
            draw_order=int(data["draw_order"]),
            entitlement=int(data["entitlement"]),
            priority=Priority(data.get("priority", Priority.NORMAL.value)),
            spot_ids=tuple(data.get("spot_ids") or ()),
            status=TurnStatus(data.get("status", TurnStatus.WAITING.value)),
            absent=bool(data.get("absent", False)),
            pre_allocated=tuple(data.get("pre_allocated") or ()),
        )


@dataclass(frozen=True)
class ChoiceSnapshot:
    """State captured before an operator action, used by undo."""

    action: str
    order: Tuple[DrawnParticipant, ...]
    available_spot_ids: Tuple[str, ...]
    turn: int
    status: SessionStatus

    def to_json(self) -> dict:
        return {
            "action": self.action,
            "order": [entry.to_json() for entry in self.order],
            "available_spot_ids": list(self.available_spot_ids),
            "turn": self.turn,
            "status": self.status.value,
        }

    @classmethod
    def from_json(cls, data: Mapping) -> "ChoiceSnapshot":
        return cls(
            action=data["action"],
            order=tuple(DrawnParticipant.from_json(item) for item in data["order"]),
            available_spot_ids=tuple(data["available_spot_ids"]),
            turn=int(data["turn"]),
            status=SessionStatus(data["status"]),
        )


PICK = "pick"


@dataclass(frozen=True)
class ChoiceSession:
    """State of a choice ceremony.

    Attributes
    ----------
    order : Tuple[DrawnParticipant, ...]
        Participants in draw order.
    spot_ids : Tuple[str, ...]
        Every spot of the ceremony, pre-allocated ones included.
    available_spot_ids : Tuple[str, ...]
        Spots that can still be picked.
    spot_groups : Tuple[Tuple[str, Tuple[str, ...]], ...]
        Linked groups as ``(group_id, spot_ids)`` pairs.
    status : SessionStatus
        ``NOT_STARTED`` -> ``IN_PROGRESS`` -> ``COMPLETED``.
    turn : int
        Index into ``order`` of the participant choosing now. Equal to
        ``len(order)`` once everyone had a turn.
    history : Tuple[ChoiceSnapshot, ...]
        States before each operator action, newest last.
    seed : Optional[str]
        Seed that produced ``order``.
    """

    order: Tuple[DrawnParticipant, ...]
    spot_ids: Tuple[str, ...]
    available_spot_ids: Tuple[str, ...]
    spot_groups: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()
    status: SessionStatus = SessionStatus.NOT_STARTED
    turn: int = 0
    history: Tuple[ChoiceSnapshot, ...] = ()
    seed: Optional[str] = None

    # -- queries -----------------------------------------------------------

    @property
    def current(self) -> Optional[DrawnParticipant]:
        """Participant whose turn it is, if any."""
        if self.status != SessionStatus.IN_PROGRESS or self.turn >= len(self.order):
            return None
        return self.order[self.turn]

    @property
    def is_finalized(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    def entry(self, participant_id: str) -> DrawnParticipant:
        return self.order[self._index_of(participant_id)]

    def pending_absent(self) -> Tuple[DrawnParticipant, ...]:
        """Absent participants that still miss spots."""
        return tuple(
            e
            for e in self.order
            if e.status == TurnStatus.SKIPPED and e.absent and e.remaining > 0
        )

    def results(self) -> Tuple[LotteryResult, ...]:
        return tuple(
            LotteryResult(
                participant_id=e.participant_id,
                spot_ids=e.spot_ids,
                rank=e.draw_order,
                priority=e.priority,
                pre_allocated=bool(e.pre_allocated),
            )
            for e in self.order
        )

    def to_outcome(self) -> LotteryOutcome:
        """Return the ceremony results as an outcome of a choice draw."""
        required = sum(e.entitlement - len(e.pre_allocated) for e in self.order)
        pool = len(self.spot_ids) - sum(len(e.pre_allocated) for e in self.order)
        return LotteryOutcome(
            mode=LotteryMode.CHOICE,
            results=self.results(),
            seed=self.seed or "",
            participant_ids=tuple(e.participant_id for e in self.order),
            spot_ids=self.spot_ids,
            shortage=InsufficientSpots(required, pool) if required > pool else None,
        )

    # -- transitions -------------------------------------------------------

    def start(self) -> "ChoiceSession":
        """``NOT_STARTED`` -> ``IN_PROGRESS`` with the first open turn."""
        self._require("start the session", SessionStatus.NOT_STARTED)
        return self._next_turn(self.order, self.available_spot_ids)

    def pick_spot(self, participant_id: str, spot_id: str) -> "ChoiceSession":
        """Give ``spot_id`` to the participant whose turn it is.

        Raises
        ------
        OutOfTurn
            If ``participant_id`` is not the current participant.
        SpotUnavailable
            If ``spot_id`` is not in the remaining pool.
        """
        current = self._require_turn("pick a spot", participant_id)
        if spot_id not in self.available_spot_ids:
            raise SpotUnavailable(spot_id)
        logger.debug(f"Participant {participant_id} picked spot {spot_id}")
        return self._record(PICK)._after_pick(
            replace(current, spot_ids=current.spot_ids + (spot_id,)),
            tuple(sid for sid in self.available_spot_ids if sid != spot_id),
        )

    def pick_group(self, participant_id: str, group_id: str) -> "ChoiceSession":
        """Give a whole linked group to the current participant.

        Raises
        ------
        InvalidConfiguration
            If ``group_id`` is unknown.
        IncompleteGroup
            If any member spot is no longer available.
        EntitlementExceeded
            If the group is larger than the remaining entitlement.
        """
        current = self._require_turn("pick a linked group", participant_id)
        members = dict(self.spot_groups).get(group_id)
        if not members:
            raise InvalidConfiguration(f"unknown linked group {group_id}")
        occupied = [sid for sid in members if sid not in self.available_spot_ids]
        if occupied:
            raise IncompleteGroup(group_id, occupied)
        if len(members) > current.remaining:
            raise EntitlementExceeded(participant_id, current.entitlement)
        logger.debug(f"Participant {participant_id} picked linked group {group_id}")
        return self._record(PICK)._after_pick(
            replace(current, spot_ids=current.spot_ids + members),
            tuple(sid for sid in self.available_spot_ids if sid not in members),
        )

    def skip_turn(self, absent: bool = True) -> "ChoiceSession":
        """Skip the current participant, by default as absent, and advance."""
        self._require("skip a turn", SessionStatus.IN_PROGRESS)
        current = self.current
        if current is None:
            raise InvalidTransition("skip a turn", "no participant is choosing")
        order = list(self.order)
        order[self.turn] = replace(current, status=TurnStatus.SKIPPED, absent=absent)
        logger.debug(f"Participant {current.participant_id} skipped (absent={absent})")
        return self._record("skip")._next_turn(order, self.available_spot_ids)

    def undo_last_pick(self) -> "ChoiceSession":
        """Return the last picked spot(s) to the pool and rewind the turn."""
        self._require("undo the last pick", SessionStatus.IN_PROGRESS)
        if not self.history or self.history[-1].action != PICK:
            raise InvalidTransition("undo the last pick", "the last action was not a pick")
        snapshot = self.history[-1]
        return replace(
            self,
            order=snapshot.order,
            available_spot_ids=snapshot.available_spot_ids,
            turn=snapshot.turn,
            status=snapshot.status,
            history=self.history[:-1],
        )

    def finish(self) -> "ChoiceSession":
        """End the ceremony; participants who did not choose are marked skipped."""
        self._require("finish the session", SessionStatus.IN_PROGRESS)
        order = tuple(
            replace(e, status=TurnStatus.SKIPPED)
            if e.status in (TurnStatus.WAITING, TurnStatus.CHOOSING)
            else e
            for e in self.order
        )
        logger.debug("Choice session finished by operator")
        return replace(self, order=order, turn=len(order), status=SessionStatus.COMPLETED)

    def reset_session(self) -> "ChoiceSession":
        """Drop every pick and go back to ``NOT_STARTED`` with the same order."""
        if self.is_finalized:
            raise SessionFinalized()
        pre_allocated = {sid for e in self.order for sid in e.pre_allocated}
        return replace(
            self,
            order=tuple(e.reset() for e in self.order),
            available_spot_ids=tuple(sid for sid in self.spot_ids if sid not in pre_allocated),
            status=SessionStatus.NOT_STARTED,
            turn=0,
            history=(),
        )

    def give_second_chance(self, participant_id: str) -> "ChoiceSession":
        """Reopen a skipped participant as the current turn."""
        self._require("give a second chance", SessionStatus.IN_PROGRESS)
        index = self._index_of(participant_id)
        entry = self.order[index]
        if entry.status != TurnStatus.SKIPPED:
            raise InvalidTransition(
                "give a second chance", f"participant {participant_id} was not skipped"
            )
        if not self.available_spot_ids:
            raise InvalidTransition("give a second chance", "no spots are left")
        order = list(self.order)
        current = self.current
        if current is not None:
            order[self.turn] = replace(current, status=TurnStatus.WAITING)
        order[index] = replace(entry, status=TurnStatus.CHOOSING, absent=False)
        logger.debug(f"Participant {participant_id} got a second chance")
        return replace(
            self._record("second_chance"),
            order=tuple(order),
            turn=index,
        )

    def randomize_absent(self, seed: Optional[object] = None) -> "ChoiceSession":
        """Assign random remaining spots to absent participants and complete.

        Only valid once every participant had a turn. Absent participants are
        served in a seeded random order, each up to their entitlement.
        """
        self._require("randomize absent participants", SessionStatus.IN_PROGRESS)
        if self.current is not None:
            raise InvalidTransition(
                "randomize absent participants", "participants are still choosing"
            )
        rng = make_rng(resolve_seed(seed))
        order = list(self.order)
        available = list(self.available_spot_ids)
        pending = [
            i
            for i, e in enumerate(order)
            if e.status == TurnStatus.SKIPPED and e.absent and e.remaining > 0
        ]
        for index in fisher_yates(pending, rng):
            entry = order[index]
            picked: List[str] = []
            while available and len(picked) < entry.remaining:
                picked.append(available.pop(rng.randrange(len(available))))
            order[index] = replace(
                entry,
                spot_ids=entry.spot_ids + tuple(picked),
                status=TurnStatus.COMPLETED if picked else entry.status,
            )
        logger.debug(f"Randomized spots for {len(pending)} absent participant(s)")
        return replace(
            self,
            order=tuple(order),
            available_spot_ids=tuple(available),
            status=SessionStatus.COMPLETED,
        )

    def replace_spot(
        self, participant_id: str, old_spot_id: str, new_spot_id: str
    ) -> "ChoiceSession":
        """Swap a picked spot for one still in the pool."""
        self._require("replace a spot", SessionStatus.IN_PROGRESS)
        index = self._index_of(participant_id)
        entry = self.order[index]
        if old_spot_id not in entry.spot_ids:
            raise InvalidTransition(
                "replace a spot", f"participant {participant_id} does not hold {old_spot_id}"
            )
        if new_spot_id not in self.available_spot_ids:
            raise SpotUnavailable(new_spot_id)
        order = list(self.order)
        order[index] = replace(
            entry,
            spot_ids=tuple(new_spot_id if sid == old_spot_id else sid for sid in entry.spot_ids),
        )
        available = tuple(sid for sid in self.available_spot_ids if sid != new_spot_id)
        return replace(
            self._record("replace"),
            order=tuple(order),
            available_spot_ids=available + (old_spot_id,),
        )

    # -- serialization -----------------------------------------------------

    def to_json(self) -> dict:
        return {
            "order": [e.to_json() for e in self.order],
            "spot_ids": list(self.spot_ids),
            "available_spot_ids": list(self.available_spot_ids),
            "spot_groups": {gid: list(ids) for gid, ids in self.spot_groups},
            "status": self.status.value,
            "turn": self.turn,
            "history": [snapshot.to_json() for snapshot in self.history],
            "seed": self.seed,
        }

    @classmethod
    def from_json(cls, data: Mapping) -> "ChoiceSession":
        return cls(
            order=tuple(DrawnParticipant.from_json(item) for item in data["order"]),
            spot_ids=tuple(data["spot_ids"]),
            available_spot_ids=tuple(data["available_spot_ids"]),
            spot_groups=tuple(
                (gid, tuple(ids)) for gid, ids in (data.get("spot_groups") or {}).items()
            ),
            status=SessionStatus(data["status"]),
            turn=int(data.get("turn", 0)),
            history=tuple(ChoiceSnapshot.from_json(item) for item in data.get("history") or ()),
            seed=data.get("seed"),
        )

    # -- internals ---------------------------------------------------------

    def _index_of(self, participant_id: str) -> int:
        for index, entry in enumerate(self.order):
            if entry.participant_id == participant_id:
                return index
        raise InvalidConfiguration(f"participant {participant_id} is not in this session")

    def _require(self, operation: str, status: SessionStatus) -> None:
        if self.is_finalized:
            raise SessionFinalized()
        if self.status != status:
            raise InvalidTransition(operation, f"session is {self.status.value}")

    def _require_turn(self, operation: str, participant_id: str) -> DrawnParticipant:
        self._require(operation, SessionStatus.IN_PROGRESS)
        current = self.current
        if current is None or current.participant_id != participant_id:
            raise OutOfTurn(participant_id, current.participant_id if current else None)
        return current

    def _record(self, action: str) -> "ChoiceSession":
        snapshot = ChoiceSnapshot(
            action=action,
            order=self.order,
            available_spot_ids=self.available_spot_ids,
            turn=self.turn,
            status=self.status,
        )
        return replace(self, history=self.history + (snapshot,))

    def _after_pick(
        self, entry: DrawnParticipant, available: Tuple[str, ...]
    ) -> "ChoiceSession":
        order = list(self.order)
        if entry.remaining > 0 and available:
            order[self.turn] = entry
            return replace(self, order=tuple(order), available_spot_ids=available)
        order[self.turn] = replace(entry, status=TurnStatus.COMPLETED)
        return self._next_turn(order, available)

    def _next_turn(
        self, order: Sequence[DrawnParticipant], available: Tuple[str, ...]
    ) -> "ChoiceSession":
        """Point at the first waiting participant or settle the session.

        With the pool empty everyone still waiting is skipped. Without a
        waiting participant the session completes unless absent participants
        could still be served from the remaining spots.
        """
        entries = list(order)
        if not available:
            entries = [
                replace(e, status=TurnStatus.SKIPPED)
                if e.status in (TurnStatus.WAITING, TurnStatus.CHOOSING)
                else e
                for e in entries
            ]
        for index, entry in enumerate(entries):
            if entry.status == TurnStatus.WAITING:
                entries[index] = replace(entry, status=TurnStatus.CHOOSING)
                return replace(
                    self,
                    order=tuple(entries),
                    available_spot_ids=available,
                    turn=index,
                    status=SessionStatus.IN_PROGRESS,
                )
        settled = replace(
            self,
            order=tuple(entries),
            available_spot_ids=available,
            turn=len(entries),
            status=SessionStatus.IN_PROGRESS,
        )
        if available and settled.pending_absent():
            return settled
        logger.debug("Every participant had a turn; choice session completed")
        return replace(settled, status=SessionStatus.COMPLETED)


def run_choice_lottery(
    participants: Sequence[Participant],
    spots: Sequence[ParkingSpot],
    options: Optional[LotteryOptions] = None,
) -> ChoiceSession:
    """Draw the order of a choice ceremony.

    Parameters
    ----------
    participants : Sequence[Participant]
        Non-empty list of participants.
    spots : Sequence[ParkingSpot]
        Spots that can be picked.
    options : Optional[LotteryOptions], default: None
        Seed, tier order, pre-allocations and default entitlement.

    Returns
    -------
    ChoiceSession
        A ``NOT_STARTED`` session. Participants whose pre-allocation covers
        their entitlement come first and are already completed.
    """
    options = options or LotteryOptions()
    validate_inputs(participants, spots, options)
    default_entitlement = options.default_entitlement or 1

    seed = resolve_seed(options.seed)
    rng = make_rng(seed)
    pre_allocations: Dict[str, Tuple[str, ...]] = {
        pid: tuple(ids) for pid, ids in options.pre_allocations.items()
    }
    by_id = {p.id: p for p in participants}

    def _entitlement(participant: Participant) -> int:
        return participant.entitlement(default_entitlement)

    settled = [
        by_id[pid]
        for pid in pre_allocations
        if len(pre_allocations[pid]) >= _entitlement(by_id[pid])
    ]
    settled_ids = {p.id for p in settled}
    drawn = draw_order([p for p in participants if p.id not in settled_ids], options, rng)

    order = tuple(
        DrawnParticipant(
            participant_id=participant.id,
            draw_order=position,
            entitlement=_entitlement(participant),
            priority=participant.priority,
            pre_allocated=pre_allocations.get(participant.id, ()),
        ).reset()
        for position, participant in enumerate(settled + drawn, start=1)
    )
    taken = {sid for ids in pre_allocations.values() for sid in ids}
    logger.debug(f"Choice order drawn for {len(order)} participant(s)")
    return ChoiceSession(
        order=order,
        spot_ids=tuple(s.id for s in spots),
        available_spot_ids=tuple(s.id for s in spots if s.id not in taken),
        spot_groups=tuple(spot_groups(spots).items()),
        seed=seed,
    )


__all__ = [
    "TurnStatus",
    "DrawnParticipant",
    "ChoiceSnapshot",
    "ChoiceSession",
    "run_choice_lottery",
]
