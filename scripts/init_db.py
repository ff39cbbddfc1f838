from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import func, inspect, select

from parkdraw.db.engine import get_sessionmaker, make_engine
from parkdraw.models import Building, LotterySessionRecord, ParkingSpot, Participant

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def upgrade_db(target_revision: str = "head") -> None:
    """Migrate the configured database (``DB_URL``) to ``target_revision``."""
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    command.upgrade(alembic_cfg, target_revision)


def report() -> None:
    """Print the tables and how many buildings, residents, spots and sessions exist."""
    engine = make_engine()
    print("Tables:", ", ".join(sorted(inspect(engine).get_table_names())))

    Session = get_sessionmaker(engine)
    with Session() as session:
        for model in (Building, Participant, ParkingSpot, LotterySessionRecord):
            count = session.scalar(select(func.count()).select_from(model))
            print(f"  {model.__tablename__}: {count}")


def main() -> None:
    upgrade_db()
    report()


if __name__ == "__main__":
    main()
