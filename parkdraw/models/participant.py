"""Residents registered for a building's parking lottery."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional, Sequence

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from parkdraw.lottery import types as lt
from .base import Base
from .id_type import UUID_TYPE, new_id

if TYPE_CHECKING:
    from .building import Building


class Participant(Base):
    """A resident (unit) taking part in the building's draws."""

    __tablename__ = "participants"

    id: Mapped[str] = mapped_column(UUID_TYPE, primary_key=True, default=new_id)
    building_id: Mapped[str] = mapped_column(
        ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False, index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    block: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    unit: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    sector: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    has_special_needs: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_elderly: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_up_to_date: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    """``False`` for delinquent residents, who are drawn last."""

    has_large_car: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_small_car: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_motorcycle: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    number_of_spots: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Entitlement; ``NULL`` means the draw mode's default."""

    group_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    """Residents sharing this value are seated together in one spot group."""

    prefers_covered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    prefers_uncovered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    prefers_linked_spot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    prefers_unlinked_spot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    prefers_small_spot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    preferred_floors: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    """Inactive residents are kept for history but excluded from new draws."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    building: Mapped["Building"] = relationship(back_populates="participants")

    def __init__(
        self,
        *,
        building: "Building",
        name: str,
        block: str = "",
        unit: str = "",
        sector: Optional[str] = None,
        has_special_needs: bool = False,
        is_elderly: bool = False,
        is_up_to_date: bool = True,
        has_large_car: bool = False,
        has_small_car: bool = False,
        has_motorcycle: bool = False,
        number_of_spots: Optional[int] = None,
        group_id: Optional[str] = None,
        prefers_covered: bool = False,
        prefers_uncovered: bool = False,
        prefers_linked_spot: bool = False,
        prefers_unlinked_spot: bool = False,
        prefers_small_spot: bool = False,
        preferred_floors: Optional[Sequence[str]] = None,
        is_active: bool = True,
        id: Optional[str] = None,
    ) -> None:
        self.id = id or new_id()
        self.building = building
        self.name = name
        self.block = block
        self.unit = unit
        self.sector = sector
        self.has_special_needs = has_special_needs
        self.is_elderly = is_elderly
        self.is_up_to_date = is_up_to_date
        self.has_large_car = has_large_car
        self.has_small_car = has_small_car
        self.has_motorcycle = has_motorcycle
        self.number_of_spots = number_of_spots
        self.group_id = group_id
        self.prefers_covered = prefers_covered
        self.prefers_uncovered = prefers_uncovered
        self.prefers_linked_spot = prefers_linked_spot
        self.prefers_unlinked_spot = prefers_unlinked_spot
        self.prefers_small_spot = prefers_small_spot
        self.preferred_floors = list(preferred_floors or [])
        self.is_active = is_active

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<Participant(id={self.id}, unit={self.block}/{self.unit}, name={self.name})>"

    @classmethod
    def active_for_building(cls, session: Session, building_id: str) -> list["Participant"]:
        """Active residents of a building in a stable (block, unit, id) order."""
        stmt = (
            select(cls)
            .where(cls.building_id == building_id, cls.is_active.is_(True))
            .order_by(cls.block, cls.unit, cls.id)
        )
        return list(session.scalars(stmt))

    def to_entry(self) -> lt.Participant:
        """Convert to the engine's immutable participant."""
        return lt.Participant(
            id=self.id,
            name=self.name,
            block=self.block,
            unit=self.unit,
            sector=self.sector,
            has_special_needs=self.has_special_needs,
            is_elderly=self.is_elderly,
            is_up_to_date=self.is_up_to_date,
            has_large_car=self.has_large_car,
            has_small_car=self.has_small_car,
            has_motorcycle=self.has_motorcycle,
            number_of_spots=self.number_of_spots,
            group_id=self.group_id,
            prefers_covered=self.prefers_covered,
            prefers_uncovered=self.prefers_uncovered,
            prefers_linked_spot=self.prefers_linked_spot,
            prefers_unlinked_spot=self.prefers_unlinked_spot,
            prefers_small_spot=self.prefers_small_spot,
            preferred_floors=tuple(self.preferred_floors or ()),
        )

    def to_json(self) -> dict[str, Any]:
        data = self.to_entry().snapshot()
        data.update(
            {
                "building_id": self.building_id,
                "sector": self.sector,
                "number_of_spots": self.number_of_spots,
                "group_id": self.group_id,
                "is_active": self.is_active,
            }
        )
        return data
