"""Buildings (condominiums) owning residents, spots and lottery sessions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import DateTime, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from parkdraw.db.utils import dt_iso
from .base import Base
from .id_type import UUID_TYPE, new_id

if TYPE_CHECKING:
    from .lottery import LotterySessionRecord, PreAllocation
    from .participant import Participant
    from .spot import ParkingSpot


class Building(Base):
    """A condominium whose parking spots are drawn among its residents."""

    __tablename__ = "buildings"

    id: Mapped[str] = mapped_column(UUID_TYPE, primary_key=True, default=new_id)
    """UUID primary key; also the key of the public results document."""

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Management company shown on public results and exports."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    participants: Mapped[list["Participant"]] = relationship(
        back_populates="building", cascade="all, delete-orphan"
    )
    spots: Mapped[list["ParkingSpot"]] = relationship(
        back_populates="building", cascade="all, delete-orphan"
    )
    sessions: Mapped[list["LotterySessionRecord"]] = relationship(
        back_populates="building", cascade="all, delete-orphan"
    )
    pre_allocations: Mapped[list["PreAllocation"]] = relationship(
        back_populates="building", cascade="all, delete-orphan"
    )

    def __init__(
        self,
        *,
        name: str,
        address: Optional[str] = None,
        company: Optional[str] = None,
        id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.id = id or new_id()
        self.name = name
        self.address = address
        self.company = company
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<Building(id={self.id}, name={self.name})>"

    @classmethod
    def get_by_name(cls, session: Session, name: str) -> Optional["Building"]:
        return session.scalar(select(cls).where(cls.name == name))

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "company": self.company,
            "created_at": dt_iso(self.created_at),
        }
