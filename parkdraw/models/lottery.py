"""Stored lottery sessions, their result rows and fixed pre-allocations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Mapping, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from parkdraw.db.utils import dt_iso
from parkdraw.lottery import types as lt
from .base import Base
from .id_type import ID_TYPE, UUID_TYPE, new_id

if TYPE_CHECKING:
    from .building import Building
    from .participant import Participant
    from .spot import ParkingSpot


class LotterySessionRecord(Base):
    """One ceremony run. Completed sessions are never rewritten."""

    __tablename__ = "lottery_sessions"

    id: Mapped[str] = mapped_column(UUID_TYPE, primary_key=True, default=new_id)
    building_id: Mapped[str] = mapped_column(
        ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    mode: Mapped[str] = mapped_column(String(20), nullable=False)
    """A :class:`parkdraw.lottery.LotteryMode` value."""

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    """A :class:`parkdraw.lottery.SessionStatus` value."""

    seed: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    """Seed that reproduces the draw order."""

    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    participant_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    spot_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    live_state: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    """Serialized :class:`parkdraw.lottery.ChoiceSession` while a ceremony runs."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    building: Mapped["Building"] = relationship(back_populates="sessions")
    results: Mapped[list["LotteryResultRecord"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by=lambda: [LotteryResultRecord.rank, LotteryResultRecord.id],
    )

    def __init__(
        self,
        *,
        building: "Building",
        mode: "lt.LotteryMode | str",
        status: "lt.SessionStatus | str" = lt.SessionStatus.NOT_STARTED,
        name: str = "",
        seed: Optional[str] = None,
        settings: Optional[Mapping[str, Any]] = None,
        participant_ids: Optional[list[str]] = None,
        spot_ids: Optional[list[str]] = None,
        live_state: Optional[dict] = None,
        created_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
        id: Optional[str] = None,
    ) -> None:
        self.id = id or new_id()
        self.building = building
        self.mode = lt.LotteryMode(mode).value
        self.status = lt.SessionStatus(status).value
        self.name = name
        self.seed = seed
        self.settings = dict(settings or {})
        self.participant_ids = list(participant_ids or [])
        self.spot_ids = list(spot_ids or [])
        self.live_state = live_state
        if created_at is not None:
            self.created_at = created_at
        self.completed_at = completed_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<LotterySessionRecord(id={self.id}, mode={self.mode}, status={self.status})>"

    @property
    def is_completed(self) -> bool:
        return self.status == lt.SessionStatus.COMPLETED.value

    @classmethod
    def for_building(cls, session: Session, building_id: str) -> list["LotterySessionRecord"]:
        """Sessions of a building, newest first."""
        stmt = (
            select(cls)
            .where(cls.building_id == building_id)
            .order_by(cls.created_at.desc(), cls.id.desc())
        )
        return list(session.scalars(stmt))

    def to_session(self) -> lt.LotterySession:
        """Rebuild the engine session from the stored result rows.

        Rows sharing a rank belong to one participant holding several spots.
        """
        grouped: dict[int, LotteryResultRecord] = {}
        spots: dict[int, list[str]] = {}
        for row in self.results:
            grouped.setdefault(row.rank, row)
            if row.spot_id is not None:
                spots.setdefault(row.rank, []).append(row.spot_id)
        results = tuple(
            grouped[rank].to_result(spots.get(rank, ())) for rank in sorted(grouped)
        )
        return lt.LotterySession(
            id=self.id,
            building_id=self.building_id,
            name=self.name,
            mode=lt.LotteryMode(self.mode),
            created_at=self.created_at,
            seed=self.seed,
            results=results,
            participant_ids=tuple(self.participant_ids or ()),
            spot_ids=tuple(self.spot_ids or ()),
            settings=dict(self.settings or {}),
            status=lt.SessionStatus(self.status),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "building_id": self.building_id,
            "name": self.name,
            "mode": self.mode,
            "status": self.status,
            "seed": self.seed,
            "settings": self.settings,
            "participant_ids": self.participant_ids,
            "spot_ids": self.spot_ids,
            "created_at": dt_iso(self.created_at),
            "completed_at": dt_iso(self.completed_at),
            "results": [row.to_json() for row in self.results],
        }


class LotteryResultRecord(Base):
    """One assigned spot (or an unassigned participant) of a session.

    Participant and spot ids are not foreign keys: results outlive edits to
    the building and carry snapshots of what was drawn.
    """

    __tablename__ = "lottery_results"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("lottery_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    participant_id: Mapped[str] = mapped_column(UUID_TYPE, nullable=False)
    spot_id: Mapped[Optional[str]] = mapped_column(UUID_TYPE, nullable=True)
    """``NULL`` when the participant was left unassigned."""

    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    relaxed: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    pre_allocated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sector: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    participant_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    spot_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    session: Mapped["LotterySessionRecord"] = relationship(back_populates="results")

    def __init__(
        self,
        *,
        participant_id: str,
        rank: int,
        priority: "lt.Priority | str",
        spot_id: Optional[str] = None,
        relaxed: Optional[list[str]] = None,
        pre_allocated: bool = False,
        sector: Optional[str] = None,
        participant_snapshot: Optional[dict] = None,
        spot_snapshot: Optional[dict] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.participant_id = participant_id
        self.rank = rank
        self.priority = lt.Priority(priority).value
        self.spot_id = spot_id
        self.relaxed = list(relaxed or [])
        self.pre_allocated = pre_allocated
        self.sector = sector
        self.participant_snapshot = dict(participant_snapshot or {})
        self.spot_snapshot = spot_snapshot
        if created_at is not None:
            self.created_at = created_at

    @classmethod
    def rows_for(
        cls,
        result: lt.LotteryResult,
        participants: Mapping[str, lt.Participant],
        spots: Mapping[str, lt.ParkingSpot],
    ) -> list["LotteryResultRecord"]:
        """Expand one engine result into one row per spot (or one empty row)."""
        participant = participants.get(result.participant_id)
        snapshot = participant.snapshot() if participant is not None else {}
        common = dict(
            participant_id=result.participant_id,
            rank=result.rank,
            priority=result.priority,
            relaxed=list(result.relaxed),
            pre_allocated=result.pre_allocated,
            sector=result.sector,
            participant_snapshot=snapshot,
        )
        if not result.spot_ids:
            return [cls(**common)]
        return [
            cls(
                spot_id=spot_id,
                spot_snapshot=spots[spot_id].snapshot() if spot_id in spots else None,
                **common,
            )
            for spot_id in result.spot_ids
        ]

    def to_result(self, spot_ids) -> lt.LotteryResult:
        return lt.LotteryResult(
            participant_id=self.participant_id,
            spot_ids=tuple(spot_ids),
            rank=self.rank,
            priority=lt.Priority(self.priority),
            relaxed=tuple(self.relaxed or ()),
            pre_allocated=self.pre_allocated,
            sector=self.sector,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "spot_id": self.spot_id,
            "rank": self.rank,
            "priority": self.priority,
            "relaxed": self.relaxed,
            "pre_allocated": self.pre_allocated,
            "sector": self.sector,
            "participant_snapshot": self.participant_snapshot,
            "spot_snapshot": self.spot_snapshot,
            "created_at": dt_iso(self.created_at),
        }


class PreAllocation(Base):
    """A spot fixed to a resident before any draw (e.g. deeded spots)."""

    __tablename__ = "pre_allocations"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    building_id: Mapped[str] = mapped_column(
        ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    participant_id: Mapped[str] = mapped_column(
        ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    spot_id: Mapped[str] = mapped_column(
        ForeignKey("parking_spots.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    building: Mapped["Building"] = relationship(back_populates="pre_allocations")
    participant: Mapped["Participant"] = relationship()
    spot: Mapped["ParkingSpot"] = relationship()

    __table_args__ = (UniqueConstraint("spot_id", name="pre_allocations_spot_id_key"),)

    def __init__(self, *, participant: "Participant", spot: "ParkingSpot") -> None:
        if participant.building is not spot.building:
            raise ValueError("participant and spot must belong to the same building")
        self.building = participant.building
        self.participant = participant
        self.spot = spot

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<PreAllocation(participant_id={self.participant_id}, spot_id={self.spot_id})>"

    @classmethod
    def mapping_for(cls, session: Session, building_id: str) -> dict[str, tuple[str, ...]]:
        """Participant id -> pre-allocated spot ids, in creation order."""
        stmt = (
            select(cls)
            .where(cls.building_id == building_id)
            .order_by(cls.created_at, cls.id)
        )
        mapping: dict[str, list[str]] = {}
        for row in session.scalars(stmt):
            mapping.setdefault(row.participant_id, []).append(row.spot_id)
        return {pid: tuple(ids) for pid, ids in mapping.items()}
