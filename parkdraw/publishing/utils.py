"""Helpers for building public result documents."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

import requests
from dotenv import load_dotenv

from parkdraw.db.utils import dt_iso, utcnow
from parkdraw.lottery import types as lt
from parkdraw.lottery.choice import ChoiceSession, TurnStatus
from parkdraw.lottery.errors import PublishError

logger = logging.getLogger(__name__)

# Ensure environment variables from .env are loaded when this module is imported.
load_dotenv()

LIVE_STATUSES = {
    lt.SessionStatus.NOT_STARTED: "drawing",
    lt.SessionStatus.IN_PROGRESS: "in_progress",
    lt.SessionStatus.COMPLETED: "completed",
}


def open_session() -> requests.Session:
    """Return a requests session preset for the Realtime Database REST API."""
    session = requests.Session()
    session.headers.update({"Accept": "application/json"})
    return session


def public_priority(priority: "lt.Priority | str") -> str:
    """Public pages group up-to-date residents with everyone else."""
    value = lt.Priority(priority)
    if value in (lt.Priority.SPECIAL_NEEDS, lt.Priority.ELDERLY):
        return value.value
    return lt.Priority.NORMAL.value


def _index(items: Sequence[Any]) -> dict[str, Any]:
    return {item.id: item for item in items}


def _participant_snapshot(
    participant_id: str, participants: Mapping[str, lt.Participant]
) -> dict[str, Any]:
    participant = participants.get(participant_id)
    if participant is None:
        return {"id": participant_id, "block": "", "unit": "", "name": "N/A"}
    return participant.snapshot()


def build_results_payload(
    building_id: str,
    lottery_session: lt.LotterySession,
    participants: Sequence[lt.Participant],
    spots: Sequence[lt.ParkingSpot],
    *,
    building_name: str,
    company: Optional[str] = None,
    published_by: Optional[str] = None,
    published_at: Optional[datetime] = None,
) -> dict[str, Any]:
    """Build the document stored at ``public/results/{building_id}``.

    One entry is produced per assigned spot, plus one entry without a spot
    for each unassigned participant.

    Raises
    ------
    PublishError
        If ``building_id`` is empty or the session has no results.
    """
    if not building_id:
        raise PublishError("a building id is required to publish results")
    if not lottery_session.results:
        raise PublishError("there are no results to publish")

    participants_by_id = _index(participants)
    spots_by_id = _index(spots)
    timestamp = dt_iso(lottery_session.created_at)

    entries: list[dict[str, Any]] = []
    for result in lottery_session.results:
        participant = _participant_snapshot(result.participant_id, participants_by_id)
        spot_ids = result.spot_ids or (None,)
        for spot_id in spot_ids:
            spot = spots_by_id.get(spot_id) if spot_id else None
            entries.append(
                {
                    "id": f"{result.participant_id}:{spot_id}" if spot_id else result.participant_id,
                    "rank": result.rank,
                    "participantSnapshot": participant,
                    "spotSnapshot": spot.snapshot() if spot is not None else None,
                    "priority": public_priority(result.priority),
                    "timestamp": timestamp,
                }
            )

    payload: dict[str, Any] = {
        "building": building_id,
        "buildingName": building_name or "Condominium",
        "sessionName": lottery_session.name or "Lottery",
        "sessionId": lottery_session.id,
        "mode": lottery_session.mode.value,
        "date": timestamp,
        "totalParticipants": len(lottery_session.participant_ids),
        "totalSpots": len(lottery_session.spot_ids),
        "publishedAt": dt_iso(published_at or utcnow()),
        "results": entries,
    }
    if company:
        payload["company"] = company
    if published_by:
        payload["publishedBy"] = published_by
    return payload


def build_choice_live_payload(
    building_id: str,
    choice_session: ChoiceSession,
    participants: Sequence[lt.Participant],
    spots: Sequence[lt.ParkingSpot],
    *,
    building_name: str,
    session_name: str = "",
    company: Optional[str] = None,
    updated_at: Optional[datetime] = None,
) -> dict[str, Any]:
    """Build the document stored at ``public/live/{building_id}`` during a ceremony."""
    if not building_id:
        raise PublishError("a building id is required to publish a live ceremony")

    participants_by_id = _index(participants)
    spots_by_id = _index(spots)
    drawn = []
    for entry in choice_session.order:
        snapshot = _participant_snapshot(entry.participant_id, participants_by_id)
        snapshot.update(
            {
                "drawOrder": entry.draw_order,
                "status": entry.status.value,
                "absent": entry.absent,
                "numberOfSpots": entry.entitlement,
                "allocatedSpots": [
                    spots_by_id[sid].snapshot() if sid in spots_by_id else {"id": sid}
                    for sid in entry.spot_ids
                ],
            }
        )
        drawn.append(snapshot)

    payload: dict[str, Any] = {
        "building": building_id,
        "buildingName": building_name or "Condominium",
        "sessionName": session_name or "Choice lottery",
        "status": LIVE_STATUSES[choice_session.status],
        "updatedAt": dt_iso(updated_at or utcnow()),
        "currentTurnIndex": choice_session.turn,
        "totalParticipants": len(choice_session.order),
        "completedCount": sum(
            1 for e in choice_session.order if e.status == TurnStatus.COMPLETED or e.spot_ids
        ),
        "drawnOrder": drawn,
    }
    if company:
        payload["company"] = company
    return payload


__all__ = [
    "open_session",
    "public_priority",
    "build_results_payload",
    "build_choice_live_payload",
]
