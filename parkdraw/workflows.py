import logging
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db.utils import dt_iso, parse_iso, utcnow
from .lottery import types as lt
from .lottery.choice import ChoiceSession, run_choice_lottery
from .lottery.engine import run_general_lottery, run_sector_lottery
from .lottery.errors import PersistError
from .lottery.linked import run_linked_lottery
from .models import (
    Building,
    LotteryResultRecord,
    LotterySessionRecord,
    Participant,
    ParkingSpot,
    PreAllocation,
)
from .models.id_type import new_id

if TYPE_CHECKING:
    from .publishing.api import PublicResultsClient

logger = logging.getLogger(__name__)

DrawInputs = Tuple[
    list[lt.Participant], list[lt.ParkingSpot], dict[str, Tuple[str, ...]]
]


def register_building(session: Session, building: Building) -> Building:
    """Persist a new building.

    Raises
    ------
    ValueError
        If another building already uses ``building.name``.
    """
    existing = Building.get_by_name(session, building.name)
    if existing is not None and existing is not building:
        raise ValueError(f"A building named '{building.name}' already exists.")

    session.add(building)
    session.flush()
    logger.info(f"Registered building {building.id} ({building.name})")
    return building


def add_pre_allocation(
    session: Session, participant: Participant, spot: ParkingSpot
) -> PreAllocation:
    """Fix ``spot`` to ``participant`` for every future draw of their building.

    Raises
    ------
    ValueError
        If the spot is not available or is already pre-allocated, or if the
        participant and the spot belong to different buildings.
    """
    if not spot.is_available:
        raise ValueError(f"Spot {spot.number} is {spot.status} and cannot be pre-allocated.")
    taken = session.scalar(select(PreAllocation).where(PreAllocation.spot_id == spot.id))
    if taken is not None:
        raise ValueError(f"Spot {spot.number} is already pre-allocated.")

    allocation = PreAllocation(participant=participant, spot=spot)
    session.add(allocation)
    session.flush()
    return allocation


def collect_draw_inputs(session: Session, building: Building) -> DrawInputs:
    """Gather what a new draw of ``building`` starts from.

    Returns
    -------
    tuple
        Active participants and available spots as engine values, plus the
        stored pre-allocations restricted to those participants and spots.
    """
    if building.id is None or session.get(Building, building.id) is None:
        raise ValueError("Building must be persisted before running a lottery.")

    participants = [p.to_entry() for p in Participant.active_for_building(session, building.id)]
    spots = [s.to_entry() for s in ParkingSpot.available_for_building(session, building.id)]

    participant_ids = {p.id for p in participants}
    spot_ids = {s.id for s in spots}
    pre_allocations: dict[str, Tuple[str, ...]] = {}
    for pid, ids in PreAllocation.mapping_for(session, building.id).items():
        kept = tuple(sid for sid in ids if sid in spot_ids)
        if pid in participant_ids and kept:
            pre_allocations[pid] = kept
    return participants, spots, pre_allocations


def _draw_options(
    options: Optional[lt.LotteryOptions],
    seed: Optional[str],
    pre_allocations: Mapping[str, Tuple[str, ...]],
) -> lt.LotteryOptions:
    options = options or lt.LotteryOptions()
    return replace(
        options,
        seed=seed if seed is not None else options.seed,
        pre_allocations=options.pre_allocations or dict(pre_allocations),
    )


def _entries_by_id(
    session: Session, participant_ids: Sequence[str], spot_ids: Sequence[str]
) -> Tuple[dict[str, lt.Participant], dict[str, lt.ParkingSpot]]:
    """Engine values for the given ids, inactive and occupied ones included."""
    participants = session.scalars(
        select(Participant).where(Participant.id.in_(list(participant_ids)))
    )
    spots = session.scalars(select(ParkingSpot).where(ParkingSpot.id.in_(list(spot_ids))))
    return (
        {p.id: p.to_entry() for p in participants},
        {s.id: s.to_entry() for s in spots},
    )


def _write_results(
    session: Session,
    record: LotterySessionRecord,
    lottery_session: lt.LotterySession,
    participants: Optional[Sequence[lt.Participant]],
    spots: Optional[Sequence[lt.ParkingSpot]],
    completed_at: datetime,
) -> None:
    if participants is None or spots is None:
        participants_by_id, spots_by_id = _entries_by_id(
            session, lottery_session.participant_ids, lottery_session.spot_ids
        )
    else:
        participants_by_id = {p.id: p for p in participants}
        spots_by_id = {s.id: s for s in spots}

    for result in lottery_session.results:
        record.results.extend(
            LotteryResultRecord.rows_for(result, participants_by_id, spots_by_id)
        )
    record.status = lt.SessionStatus.COMPLETED.value
    record.completed_at = completed_at


def save_session(
    session: Session,
    lottery_session: lt.LotterySession,
    participants: Optional[Sequence[lt.Participant]] = None,
    spots: Optional[Sequence[lt.ParkingSpot]] = None,
) -> LotterySessionRecord:
    """Store a finalized lottery session and its result rows.

    A record left ``in_progress`` by a choice ceremony with the same id is
    completed in place.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    lottery_session : LotterySession
        Completed session to store.
    participants, spots : Optional[Sequence]
        Engine values used for the result snapshots. Loaded from the
        database when omitted.

    Returns
    -------
    LotterySessionRecord
        The stored record; the caller commits.

    Raises
    ------
    PersistError
        If the session is not finalized, its building does not exist or a
        completed session with the same id is already stored.
    """
    if not lottery_session.is_finalized:
        raise PersistError(f"session {lottery_session.id} is not finalized")

    building = session.get(Building, lottery_session.building_id)
    if building is None:
        raise PersistError(f"building {lottery_session.building_id} does not exist")

    record = session.get(LotterySessionRecord, lottery_session.id)
    if record is not None and record.is_completed:
        raise PersistError(f"session {lottery_session.id} is already stored and completed")
    if record is None:
        record = LotterySessionRecord(
            id=lottery_session.id,
            building=building,
            mode=lottery_session.mode,
            status=lt.SessionStatus.IN_PROGRESS,
            name=lottery_session.name,
            seed=lottery_session.seed,
            settings=lottery_session.settings,
            participant_ids=list(lottery_session.participant_ids),
            spot_ids=list(lottery_session.spot_ids),
            created_at=lottery_session.created_at,
        )
        session.add(record)

    _write_results(session, record, lottery_session, participants, spots, utcnow())
    session.flush()
    logger.info(
        f"Stored {lottery_session.mode.value} session {record.id} for building "
        f"{building.id} with {len(lottery_session.results)} result(s)"
    )
    return record


def load_sessions(session: Session, building_id: str) -> list[lt.LotterySession]:
    """Completed sessions of a building, newest first."""
    return [
        record.to_session()
        for record in LotterySessionRecord.for_building(session, building_id)
        if record.is_completed
    ]


def run_building_lottery(
    session: Session,
    building: Building,
    *,
    mode: "lt.LotteryMode | str" = lt.LotteryMode.GENERAL,
    seed: Optional[str] = None,
    name: str = "",
    sector_map: Optional[Mapping[str, str]] = None,
    options: Optional[lt.LotteryOptions] = None,
    now: Optional[datetime] = None,
) -> LotterySessionRecord:
    """Draw the spots of ``building`` and store the session.

    Active participants, available spots and stored pre-allocations are
    gathered from the database. General, sector and linked draws are stored
    completed; a choice draw is stored ``in_progress`` with its live state,
    see :func:`start_choice_ceremony`.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    building : Building
        Persisted building to draw for.
    mode : LotteryMode | str, default: ``general``
        Kind of draw.
    seed : Optional[str], default: None
        Seed of the draw; overrides ``options.seed``.
    name : str, default: ""
        Session name shown on results.
    sector_map : Optional[Mapping[str, str]], default: None
        Participant id -> sector overrides for sector draws.
    options : Optional[LotteryOptions], default: None
        Tier order, entitlement and priority switches.
    now : Optional[datetime], default: None
        Creation timestamp of the session.

    Returns
    -------
    LotterySessionRecord
        The stored session; the caller commits.
    """
    mode = lt.LotteryMode(mode)
    if mode == lt.LotteryMode.CHOICE:
        return start_choice_ceremony(
            session, building, seed=seed, name=name, options=options, now=now
        )

    participants, spots, pre_allocations = collect_draw_inputs(session, building)
    draw_options = _draw_options(options, seed, pre_allocations)

    if mode == lt.LotteryMode.SECTOR:
        outcome = run_sector_lottery(participants, spots, sector_map, draw_options)
    elif mode == lt.LotteryMode.LINKED:
        outcome = run_linked_lottery(participants, spots, draw_options)
    else:
        outcome = run_general_lottery(participants, spots, draw_options)

    if outcome.shortage is not None:
        logger.warning(f"Building {building.id}: {outcome.shortage}")

    settings = draw_options.settings()
    if sector_map:
        settings["sector_map"] = dict(sector_map)
    lottery_session = outcome.to_session(
        session_id=new_id(),
        building_id=building.id,
        created_at=now or utcnow(),
        name=name,
        settings=settings,
    )
    return save_session(session, lottery_session, participants, spots)


def start_choice_ceremony(
    session: Session,
    building: Building,
    *,
    seed: Optional[str] = None,
    name: str = "",
    options: Optional[lt.LotteryOptions] = None,
    now: Optional[datetime] = None,
) -> LotterySessionRecord:
    """Draw the choice order of ``building`` and open the ceremony.

    The session is stored ``in_progress`` with the serialized
    :class:`ChoiceSession` as live state. It becomes a completed session
    with result rows once the ceremony completes.
    """
    participants, spots, pre_allocations = collect_draw_inputs(session, building)
    draw_options = _draw_options(options, seed, pre_allocations)
    choice = run_choice_lottery(participants, spots, draw_options).start()

    record = LotterySessionRecord(
        building=building,
        mode=lt.LotteryMode.CHOICE,
        status=lt.SessionStatus.IN_PROGRESS,
        name=name,
        seed=choice.seed,
        settings=draw_options.settings(),
        participant_ids=[p.id for p in participants],
        spot_ids=[s.id for s in spots],
        created_at=now or utcnow(),
    )
    session.add(record)
    _store_choice_state(session, record, choice)
    logger.info(
        f"Opened choice ceremony {record.id} for building {building.id} "
        f"with {len(choice.order)} participant(s)"
    )
    return record


def load_choice_session(
    session: Session, session_id: str
) -> Tuple[LotterySessionRecord, ChoiceSession]:
    """Restore the live state of a choice ceremony."""
    record = session.get(LotterySessionRecord, session_id)
    if record is None:
        raise ValueError(f"Lottery session {session_id} does not exist.")
    if record.mode != lt.LotteryMode.CHOICE.value or record.live_state is None:
        raise ValueError(f"Lottery session {session_id} is not a choice ceremony.")
    return record, ChoiceSession.from_json(record.live_state)


def _store_choice_state(
    session: Session, record: LotterySessionRecord, choice: ChoiceSession
) -> None:
    record.live_state = choice.to_json()
    if choice.is_finalized and not record.is_completed:
        lottery_session = choice.to_outcome().to_session(
            session_id=record.id,
            building_id=record.building_id,
            created_at=record.created_at,
            name=record.name,
            settings=record.settings,
        )
        _write_results(session, record, lottery_session, None, None, utcnow())
        logger.info(f"Choice ceremony {record.id} completed")
    session.flush()


def apply_choice_action(
    session: Session,
    session_id: str,
    action: Callable[[ChoiceSession], ChoiceSession],
) -> ChoiceSession:
    """Run ``action`` on the stored ceremony and persist the new state.

    Engine errors raised by ``action`` propagate and leave the stored state
    untouched.
    """
    record, choice = load_choice_session(session, session_id)
    updated = action(choice)
    _store_choice_state(session, record, updated)
    return updated


def pick_spot(session: Session, session_id: str, participant_id: str, spot_id: str) -> ChoiceSession:
    return apply_choice_action(session, session_id, lambda c: c.pick_spot(participant_id, spot_id))


def pick_group(session: Session, session_id: str, participant_id: str, group_id: str) -> ChoiceSession:
    return apply_choice_action(session, session_id, lambda c: c.pick_group(participant_id, group_id))


def skip_turn(session: Session, session_id: str, absent: bool = True) -> ChoiceSession:
    return apply_choice_action(session, session_id, lambda c: c.skip_turn(absent=absent))


def undo_last_pick(session: Session, session_id: str) -> ChoiceSession:
    return apply_choice_action(session, session_id, lambda c: c.undo_last_pick())


def give_second_chance(session: Session, session_id: str, participant_id: str) -> ChoiceSession:
    return apply_choice_action(session, session_id, lambda c: c.give_second_chance(participant_id))


def randomize_absent(session: Session, session_id: str, seed: Optional[str] = None) -> ChoiceSession:
    return apply_choice_action(session, session_id, lambda c: c.randomize_absent(seed))


def replace_spot(
    session: Session, session_id: str, participant_id: str, old_spot_id: str, new_spot_id: str
) -> ChoiceSession:
    return apply_choice_action(
        session, session_id, lambda c: c.replace_spot(participant_id, old_spot_id, new_spot_id)
    )


def finish_choice(session: Session, session_id: str) -> ChoiceSession:
    return apply_choice_action(session, session_id, lambda c: c.finish())


def publish_session(
    session: Session,
    session_id: str,
    *,
    published_by: Optional[str] = None,
    client: Optional["PublicResultsClient"] = None,
) -> dict:
    """Publish a completed stored session on the building's public page.

    Returns
    -------
    dict
        The document written to the public results store.
    """
    record = session.get(LotterySessionRecord, session_id)
    if record is None:
        raise ValueError(f"Lottery session {session_id} does not exist.")
    if not record.is_completed:
        raise ValueError(f"Lottery session {session_id} is not completed.")

    if client is None:
        from .publishing.api import PublicResultsClient

        client = PublicResultsClient()

    lottery_session = record.to_session()
    participants, spots = _entries_by_id(
        session, lottery_session.participant_ids, lottery_session.spot_ids
    )
    return client.publish_results(
        record.building_id,
        lottery_session,
        list(participants.values()),
        list(spots.values()),
        building_name=record.building.name,
        company=record.building.company,
        published_by=published_by,
    )


def export_session(
    session: Session, session_id: str, format: str
) -> bytes:
    """Render a completed stored session with :func:`parkdraw.export.export_to_document`."""
    from .export import export_to_document

    record = session.get(LotterySessionRecord, session_id)
    if record is None:
        raise ValueError(f"Lottery session {session_id} does not exist.")
    if not record.is_completed:
        raise ValueError(f"Lottery session {session_id} is not completed.")

    lottery_session = record.to_session()
    participants, spots = _entries_by_id(
        session, lottery_session.participant_ids, lottery_session.spot_ids
    )
    return export_to_document(
        lottery_session,
        list(participants.values()),
        list(spots.values()),
        format,
        building_name=record.building.name,
    )


# -------- backups --------

BACKUP_VERSION = "1.0.0"
SUPPORTED_BACKUP_VERSIONS = (BACKUP_VERSION,)

PARTICIPANT_FIELDS = (
    "id",
    "name",
    "block",
    "unit",
    "sector",
    "has_special_needs",
    "is_elderly",
    "is_up_to_date",
    "has_large_car",
    "has_small_car",
    "has_motorcycle",
    "number_of_spots",
    "group_id",
    "prefers_covered",
    "prefers_uncovered",
    "prefers_linked_spot",
    "prefers_unlinked_spot",
    "prefers_small_spot",
    "preferred_floors",
    "is_active",
)
SPOT_FIELDS = (
    "id",
    "number",
    "floor",
    "sector",
    "types",
    "size",
    "is_covered",
    "is_uncovered",
    "group_id",
    "status",
)


def _fields(obj: Any, names: Iterable[str]) -> dict[str, Any]:
    data = {name: getattr(obj, name) for name in names}
    data["created_at"] = dt_iso(obj.created_at)
    return data


def _building_backup(session: Session, building: Building) -> dict[str, Any]:
    records = LotterySessionRecord.for_building(session, building.id)
    allocations = sorted(
        building.pre_allocations, key=lambda a: (a.participant_id, a.spot_id)
    )
    return {
        "info": building.to_json(),
        "participants": [
            _fields(p, PARTICIPANT_FIELDS) for p in sorted(building.participants, key=lambda p: p.id)
        ],
        "parking_spots": [
            _fields(s, SPOT_FIELDS) for s in sorted(building.spots, key=lambda s: s.id)
        ],
        "pre_allocations": [
            {"participant_id": a.participant_id, "spot_id": a.spot_id} for a in allocations
        ],
        "lottery_sessions": [
            {**record.to_json(), "live_state": record.live_state} for record in records
        ],
    }


def export_backup(
    session: Session, building_ids: Optional[Sequence[str]] = None
) -> dict[str, Any]:
    """Serialize buildings with their residents, spots and sessions.

    Parameters
    ----------
    session : Session
        Open database session.
    building_ids : Optional[Sequence[str]], default: None
        Buildings to include; every building when omitted.

    Returns
    -------
    dict
        A JSON-serializable backup document, accepted by :func:`import_backup`.

    Raises
    ------
    ValueError
        If one of ``building_ids`` does not exist.
    """
    if building_ids is None:
        buildings = list(session.scalars(select(Building).order_by(Building.name, Building.id)))
    else:
        buildings = []
        for building_id in building_ids:
            building = session.get(Building, building_id)
            if building is None:
                raise ValueError(f"Building {building_id} does not exist.")
            buildings.append(building)

    backup = {
        "version": BACKUP_VERSION,
        "exported_at": dt_iso(utcnow()),
        "buildings": {b.id: _building_backup(session, b) for b in buildings},
    }
    logger.info(f"Exported backup of {len(buildings)} building(s)")
    return backup


def _restore_session(building: Building, data: Mapping[str, Any]) -> LotterySessionRecord:
    record = LotterySessionRecord(
        id=data["id"],
        building=building,
        mode=data["mode"],
        status=data["status"],
        name=data.get("name") or "",
        seed=data.get("seed"),
        settings=data.get("settings"),
        participant_ids=data.get("participant_ids"),
        spot_ids=data.get("spot_ids"),
        live_state=data.get("live_state"),
        created_at=parse_iso(data.get("created_at")),
        completed_at=parse_iso(data.get("completed_at")),
    )
    for row in data.get("results") or ():
        record.results.append(
            LotteryResultRecord(
                participant_id=row["participant_id"],
                rank=row["rank"],
                priority=row["priority"],
                spot_id=row.get("spot_id"),
                relaxed=row.get("relaxed"),
                pre_allocated=row.get("pre_allocated", False),
                sector=row.get("sector"),
                participant_snapshot=row.get("participant_snapshot"),
                spot_snapshot=row.get("spot_snapshot"),
                created_at=parse_iso(row.get("created_at")),
            )
        )
    return record


def _restore_building(
    session: Session, building_id: str, data: Mapping[str, Any]
) -> Building:
    info = data["info"]
    building = register_building(
        session,
        Building(
            id=building_id,
            name=info["name"],
            address=info.get("address"),
            company=info.get("company"),
            created_at=parse_iso(info.get("created_at")),
        ),
    )

    participants: dict[str, Participant] = {}
    for item in data.get("participants") or ():
        participant = Participant(
            building=building, **{k: item[k] for k in PARTICIPANT_FIELDS if k in item}
        )
        if item.get("created_at"):
            participant.created_at = parse_iso(item["created_at"])
        participants[participant.id] = participant

    spots: dict[str, ParkingSpot] = {}
    for item in data.get("parking_spots") or ():
        spot = ParkingSpot(building=building, **{k: item[k] for k in SPOT_FIELDS if k in item})
        if item.get("created_at"):
            spot.created_at = parse_iso(item["created_at"])
        spots[spot.id] = spot

    session.add_all(list(participants.values()) + list(spots.values()))
    for item in data.get("pre_allocations") or ():
        try:
            participant = participants[item["participant_id"]]
            spot = spots[item["spot_id"]]
        except KeyError as e:
            raise ValueError(
                f"Backup of building {building_id} pre-allocates unknown id {e.args[0]}"
            ) from e
        session.add(PreAllocation(participant=participant, spot=spot))
    for item in data.get("lottery_sessions") or ():
        session.add(_restore_session(building, item))
    session.flush()
    return building


def import_backup(
    session: Session, data: Mapping[str, Any], *, overwrite: bool = False
) -> list[Building]:
    """Restore buildings from a document produced by :func:`export_backup`.

    Buildings keep their ids. An existing building with the same id is
    replaced only when ``overwrite`` is set.

    Raises
    ------
    ValueError
        If the backup version is not supported, the document is malformed,
        or a building already exists and ``overwrite`` is not set.
    """
    version = data.get("version") if isinstance(data, Mapping) else None
    if version not in SUPPORTED_BACKUP_VERSIONS:
        raise ValueError(f"Unsupported backup version {version!r}.")
    buildings = data.get("buildings")
    if not isinstance(buildings, Mapping):
        raise ValueError("Backup has no buildings section.")

    restored: list[Building] = []
    for building_id, payload in buildings.items():
        existing = session.get(Building, building_id)
        if existing is not None:
            if not overwrite:
                raise ValueError(f"Building '{existing.name}' already exists.")
            session.delete(existing)
            session.flush()
            logger.info(f"Replacing building {building_id} from backup")
        restored.append(_restore_building(session, building_id, payload))

    logger.info(f"Imported {len(restored)} building(s) from backup version {version}")
    return restored
