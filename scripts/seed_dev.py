from datetime import datetime, timezone

from parkdraw.db.engine import make_engine, session_scope
from parkdraw.lottery import LotteryMode, SpotSize, SpotType
from parkdraw.models import Base, Building, ParkingSpot, Participant
from parkdraw.workflows import add_pre_allocation, register_building, run_building_lottery


def main() -> None:
    """Reset the development database and run a sample general draw."""
    engine = make_engine()

    # Every child table cascades from buildings, so a plain drop_all is enough.
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    now = datetime.now(timezone.utc)

    with session_scope(engine) as session:
        building = register_building(
            session,
            Building(
                name="Residencial Jardim das Flores",
                address="Rua das Palmeiras, 120",
                company="Example Property Management",
            ),
        )

        residents = [
            Participant(building=building, name="Ana Souza", block="A", unit="101", has_special_needs=True),
            Participant(building=building, name="Carlos Lima", block="A", unit="102", is_elderly=True),
            Participant(building=building, name="Beatriz Rocha", block="A", unit="201", prefers_covered=True),
            Participant(building=building, name="Daniel Alves", block="B", unit="101", has_large_car=True),
            Participant(building=building, name="Elisa Martins", block="B", unit="102", has_motorcycle=True),
            Participant(building=building, name="Fernando Dias", block="B", unit="201", is_up_to_date=False),
            Participant(building=building, name="Gabriela Nunes", block="B", unit="202", number_of_spots=2),
        ]
        session.add_all(residents)

        spots = [
            ParkingSpot(building=building, number="01", floor="G1", types=[SpotType.PCD], is_covered=True),
            ParkingSpot(building=building, number="02", floor="G1", types=[SpotType.ELDERLY], is_covered=True),
            ParkingSpot(building=building, number="03", floor="G1", is_covered=True),
            ParkingSpot(building=building, number="04", floor="G1", types=[SpotType.LARGE], size=SpotSize.LARGE),
            ParkingSpot(building=building, number="05", floor="G2", types=[SpotType.MOTORCYCLE], size=SpotSize.SMALL),
            ParkingSpot(building=building, number="06", floor="G2", is_uncovered=True),
            ParkingSpot(building=building, number="07", floor="G2", is_uncovered=True),
            ParkingSpot(building=building, number="08", floor="G2", is_uncovered=True),
            ParkingSpot(building=building, number="09", floor="G2", group_id="G2-A", types=[SpotType.LINKED]),
            ParkingSpot(building=building, number="10", floor="G2", group_id="G2-A", types=[SpotType.LINKED]),
        ]
        session.add_all(spots)
        session.flush()

        # Deeded spot of unit A-201
        add_pre_allocation(session, residents[2], spots[2])

        record = run_building_lottery(
            session,
            building,
            mode=LotteryMode.GENERAL,
            seed="seed-dev",
            name="Sample draw",
            now=now,
        )

    print(f"Seeded building {building.id} with session {record.id}:")
    for row in record.results:
        unit = f"{row.participant_snapshot.get('block')}-{row.participant_snapshot.get('unit')}"
        spot = (row.spot_snapshot or {}).get("number", "N/A")
        print(f"  {row.rank:>2}. {unit:<6} -> {spot}")


if __name__ == "__main__":
    main()
