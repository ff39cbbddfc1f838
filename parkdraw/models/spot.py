"""Parking spots of a building."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional, Sequence

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from parkdraw.lottery import types as lt
from .base import Base
from .id_type import UUID_TYPE, new_id

if TYPE_CHECKING:
    from .building import Building

SPOT_STATUSES = ("available", "occupied", "reserved")


class ParkingSpot(Base):
    """A drawable spot. Spots sharing ``group_id`` form a linked group."""

    __tablename__ = "parking_spots"

    id: Mapped[str] = mapped_column(UUID_TYPE, primary_key=True, default=new_id)
    building_id: Mapped[str] = mapped_column(
        ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False, index=True
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False)
    floor: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    sector: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    """List of :class:`parkdraw.lottery.SpotType` values."""

    size: Mapped[str] = mapped_column(String(2), nullable=False, default="M")
    is_covered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_uncovered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    group_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="available")
    """Only ``available`` spots enter new draws."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    building: Mapped["Building"] = relationship(back_populates="spots")

    def __init__(
        self,
        *,
        building: "Building",
        number: str,
        floor: str = "",
        sector: Optional[str] = None,
        types: Optional[Sequence["lt.SpotType | str"]] = None,
        size: "lt.SpotSize | str" = lt.SpotSize.MEDIUM,
        is_covered: bool = False,
        is_uncovered: bool = False,
        group_id: Optional[str] = None,
        status: str = "available",
        id: Optional[str] = None,
    ) -> None:
        if status not in SPOT_STATUSES:
            raise ValueError(f"status must be one of {', '.join(SPOT_STATUSES)}")
        self.id = id or new_id()
        self.building = building
        self.number = number
        self.floor = floor
        self.sector = sector
        self.types = [lt.SpotType(t).value for t in (types or [])]
        self.size = lt.SpotSize(size).value
        self.is_covered = is_covered
        self.is_uncovered = is_uncovered
        self.group_id = group_id
        self.status = status

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<ParkingSpot(id={self.id}, number={self.number}, floor={self.floor})>"

    @property
    def is_available(self) -> bool:
        return self.status == "available"

    @classmethod
    def available_for_building(cls, session: Session, building_id: str) -> list["ParkingSpot"]:
        stmt = (
            select(cls)
            .where(cls.building_id == building_id, cls.status == "available")
            .order_by(cls.floor, cls.number, cls.id)
        )
        return list(session.scalars(stmt))

    def to_entry(self) -> lt.ParkingSpot:
        """Convert to the engine's immutable spot."""
        return lt.ParkingSpot(
            id=self.id,
            number=self.number,
            floor=self.floor,
            sector=self.sector,
            types=frozenset(lt.SpotType(t) for t in self.types or ()),
            size=lt.SpotSize(self.size),
            is_covered=self.is_covered,
            is_uncovered=self.is_uncovered,
            group_id=self.group_id,
        )

    def to_json(self) -> dict[str, Any]:
        data = self.to_entry().snapshot()
        data.update(
            {
                "building_id": self.building_id,
                "sector": self.sector,
                "group_id": self.group_id,
                "status": self.status,
            }
        )
        return data
