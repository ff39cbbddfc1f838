"""initial schema: buildings, residents, spots and lottery sessions

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "buildings",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_buildings")),
    )

    op.create_table(
        "participants",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("building_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("block", sa.String(length=50), nullable=False),
        sa.Column("unit", sa.String(length=50), nullable=False),
        sa.Column("sector", sa.String(length=100), nullable=True),
        sa.Column("has_special_needs", sa.Boolean(), nullable=False),
        sa.Column("is_elderly", sa.Boolean(), nullable=False),
        sa.Column("is_up_to_date", sa.Boolean(), nullable=False),
        sa.Column("has_large_car", sa.Boolean(), nullable=False),
        sa.Column("has_small_car", sa.Boolean(), nullable=False),
        sa.Column("has_motorcycle", sa.Boolean(), nullable=False),
        sa.Column("number_of_spots", sa.Integer(), nullable=True),
        sa.Column("group_id", sa.String(length=100), nullable=True),
        sa.Column("prefers_covered", sa.Boolean(), nullable=False),
        sa.Column("prefers_uncovered", sa.Boolean(), nullable=False),
        sa.Column("prefers_linked_spot", sa.Boolean(), nullable=False),
        sa.Column("prefers_unlinked_spot", sa.Boolean(), nullable=False),
        sa.Column("prefers_small_spot", sa.Boolean(), nullable=False),
        sa.Column("preferred_floors", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["building_id"],
            ["buildings.id"],
            name=op.f("fk_participants_building_id_buildings"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_participants")),
    )
    op.create_index(
        op.f("ix_participants_building_id"), "participants", ["building_id"], unique=False
    )

    op.create_table(
        "parking_spots",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("building_id", sa.String(length=36), nullable=False),
        sa.Column("number", sa.String(length=50), nullable=False),
        sa.Column("floor", sa.String(length=50), nullable=False),
        sa.Column("sector", sa.String(length=100), nullable=True),
        sa.Column("types", sa.JSON(), nullable=False),
        sa.Column("size", sa.String(length=2), nullable=False),
        sa.Column("is_covered", sa.Boolean(), nullable=False),
        sa.Column("is_uncovered", sa.Boolean(), nullable=False),
        sa.Column("group_id", sa.String(length=100), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["building_id"],
            ["buildings.id"],
            name=op.f("fk_parking_spots_building_id_buildings"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_parking_spots")),
    )
    op.create_index(
        op.f("ix_parking_spots_building_id"), "parking_spots", ["building_id"], unique=False
    )

    op.create_table(
        "lottery_sessions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("building_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("mode", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("seed", sa.String(length=128), nullable=True),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("participant_ids", sa.JSON(), nullable=False),
        sa.Column("spot_ids", sa.JSON(), nullable=False),
        sa.Column("live_state", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["building_id"],
            ["buildings.id"],
            name=op.f("fk_lottery_sessions_building_id_buildings"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_lottery_sessions")),
    )
    op.create_index(
        op.f("ix_lottery_sessions_building_id"),
        "lottery_sessions",
        ["building_id"],
        unique=False,
    )

    op.create_table(
        "lottery_results",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("session_id", sa.String(length=36), nullable=False),
        sa.Column("participant_id", sa.String(length=36), nullable=False),
        sa.Column("spot_id", sa.String(length=36), nullable=True),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("priority", sa.String(length=20), nullable=False),
        sa.Column("relaxed", sa.JSON(), nullable=False),
        sa.Column("pre_allocated", sa.Boolean(), nullable=False),
        sa.Column("sector", sa.String(length=100), nullable=True),
        sa.Column("participant_snapshot", sa.JSON(), nullable=False),
        sa.Column("spot_snapshot", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["session_id"],
            ["lottery_sessions.id"],
            name=op.f("fk_lottery_results_session_id_lottery_sessions"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_lottery_results")),
    )
    op.create_index(
        op.f("ix_lottery_results_session_id"), "lottery_results", ["session_id"], unique=False
    )

    op.create_table(
        "pre_allocations",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("building_id", sa.String(length=36), nullable=False),
        sa.Column("participant_id", sa.String(length=36), nullable=False),
        sa.Column("spot_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["building_id"],
            ["buildings.id"],
            name=op.f("fk_pre_allocations_building_id_buildings"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["participant_id"],
            ["participants.id"],
            name=op.f("fk_pre_allocations_participant_id_participants"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["spot_id"],
            ["parking_spots.id"],
            name=op.f("fk_pre_allocations_spot_id_parking_spots"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_pre_allocations")),
        sa.UniqueConstraint("spot_id", name="pre_allocations_spot_id_key"),
    )
    op.create_index(
        op.f("ix_pre_allocations_building_id"), "pre_allocations", ["building_id"], unique=False
    )
    op.create_index(
        op.f("ix_pre_allocations_participant_id"),
        "pre_allocations",
        ["participant_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_pre_allocations_participant_id"), table_name="pre_allocations")
    op.drop_index(op.f("ix_pre_allocations_building_id"), table_name="pre_allocations")
    op.drop_table("pre_allocations")
    op.drop_index(op.f("ix_lottery_results_session_id"), table_name="lottery_results")
    op.drop_table("lottery_results")
    op.drop_index(op.f("ix_lottery_sessions_building_id"), table_name="lottery_sessions")
    op.drop_table("lottery_sessions")
    op.drop_index(op.f("ix_parking_spots_building_id"), table_name="parking_spots")
    op.drop_table("parking_spots")
    op.drop_index(op.f("ix_participants_building_id"), table_name="participants")
    op.drop_table("participants")
    op.drop_table("buildings")
