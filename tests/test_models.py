import unittest
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from parkdraw.lottery import types as lt
from parkdraw.models import (
    Base,
    Building,
    LotteryResultRecord,
    LotterySessionRecord,
    ParkingSpot,
    Participant,
    PreAllocation,
)


class DBTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)

    def tearDown(self):
        self.engine.dispose()

    def _building(self, session, name="Ed. Aurora"):
        building = Building(name=name, company="Acme Admin")
        session.add(building)
        session.flush()
        return building


class TestBuildingAndResidents(DBTestCase):
    def test_get_by_name(self):
        with self.Session.begin() as session:
            building = self._building(session)
        with self.Session() as session:
            found = Building.get_by_name(session, "Ed. Aurora")
            self.assertIsNotNone(found)
            self.assertEqual(found.id, building.id)
            self.assertEqual(found.to_json()["company"], "Acme Admin")
            self.assertIsNone(Building.get_by_name(session, "Other"))

    def test_participant_to_entry(self):
        with self.Session.begin() as session:
            building = self._building(session)
            resident = Participant(
                building=building,
                name="Joana",
                block="B",
                unit="12",
                is_elderly=True,
                number_of_spots=2,
                preferred_floors=["G1", "G2"],
                prefers_covered=True,
            )
            session.add(resident)
            session.flush()
            entry = resident.to_entry()

        self.assertIsInstance(entry, lt.Participant)
        self.assertEqual(entry.id, resident.id)
        self.assertEqual(entry.preferred_floors, ("G1", "G2"))
        self.assertEqual(entry.priority, lt.Priority.ELDERLY)
        self.assertEqual(entry.entitlement(), 2)
        self.assertTrue(entry.prefers_covered)
        self.assertEqual(resident.to_json()["building_id"], building.id)

    def test_active_for_building_skips_inactive(self):
        with self.Session.begin() as session:
            building = self._building(session)
            session.add_all(
                [
                    Participant(building=building, name="A", block="1", unit="1"),
                    Participant(building=building, name="B", block="1", unit="2", is_active=False),
                ]
            )
        with self.Session() as session:
            names = [p.name for p in Participant.active_for_building(session, building.id)]
            self.assertEqual(names, ["A"])

    def test_spot_to_entry_and_availability(self):
        with self.Session.begin() as session:
            building = self._building(session)
            spot = ParkingSpot(
                building=building,
                number="17",
                floor="G1",
                types=["pcd", lt.SpotType.COVERED],
                size="G",
                group_id="north",
            )
            session.add_all([spot, ParkingSpot(building=building, number="18", status="occupied")])
            session.flush()
            entry = spot.to_entry()

        self.assertEqual(entry.types, frozenset({lt.SpotType.PCD, lt.SpotType.COVERED}))
        self.assertTrue(entry.is_large)
        self.assertTrue(entry.covered)
        self.assertEqual(entry.group_id, "north")
        with self.Session() as session:
            numbers = [s.number for s in ParkingSpot.available_for_building(session, building.id)]
            self.assertEqual(numbers, ["17"])

    def test_spot_rejects_unknown_status_and_type(self):
        building = Building(name="X")
        with self.assertRaises(ValueError):
            ParkingSpot(building=building, number="1", status="broken")
        with self.assertRaises(ValueError):
            ParkingSpot(building=building, number="1", types=["helipad"])


class TestPreAllocation(DBTestCase):
    def test_participant_and_spot_must_share_building(self):
        with self.Session.begin() as session:
            first = self._building(session, "First")
            second = self._building(session, "Second")
            resident = Participant(building=first, name="R")
            spot = ParkingSpot(building=second, number="1")
            with self.assertRaises(ValueError):
                PreAllocation(participant=resident, spot=spot)

    def test_spot_can_only_be_pre_allocated_once(self):
        with self.Session() as session:
            building = self._building(session)
            r1 = Participant(building=building, name="R1")
            r2 = Participant(building=building, name="R2")
            spot = ParkingSpot(building=building, number="1")
            session.add_all([r1, r2, spot])
            session.flush()
            session.add(PreAllocation(participant=r1, spot=spot))
            session.flush()
            self.assertEqual(PreAllocation.mapping_for(session, building.id), {r1.id: (spot.id,)})

            session.add(PreAllocation(participant=r2, spot=spot))
            with self.assertRaises(IntegrityError):
                session.flush()
            session.rollback()


class TestLotteryRecords(DBTestCase):
    def test_results_roundtrip_through_rows(self):
        created = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        participants = {
            "p1": lt.Participant(id="p1", name="Ana", block="A", unit="1", number_of_spots=2),
            "p2": lt.Participant(id="p2", name="Bia", block="A", unit="2"),
        }
        spots = {
            "s1": lt.ParkingSpot(id="s1", number="1"),
            "s2": lt.ParkingSpot(id="s2", number="2"),
        }
        results = (
            lt.LotteryResult(participant_id="p1", spot_ids=("s1", "s2"), rank=1, priority=lt.Priority.UP_TO_DATE),
            lt.LotteryResult(participant_id="p2", spot_ids=(), rank=2, relaxed=("covered",)),
        )

        with self.Session.begin() as session:
            building = self._building(session)
            record = LotterySessionRecord(
                building=building,
                mode=lt.LotteryMode.GENERAL,
                status=lt.SessionStatus.COMPLETED,
                name="March draw",
                seed="abc",
                participant_ids=["p1", "p2"],
                spot_ids=["s1", "s2"],
                created_at=created,
            )
            for result in results:
                record.results.extend(LotteryResultRecord.rows_for(result, participants, spots))
            session.add(record)
            session.flush()

            self.assertEqual(len(record.results), 3)
            self.assertIsNone(record.results[2].spot_id)
            self.assertEqual(record.results[0].participant_snapshot["name"], "Ana")
            self.assertEqual(record.results[1].spot_snapshot["number"], "2")

            restored = record.to_session()
            self.assertEqual(restored.results, results)
            self.assertEqual(restored.mode, lt.LotteryMode.GENERAL)
            self.assertTrue(restored.is_finalized)
            self.assertEqual(restored.unassigned, ("p2",))
            self.assertEqual(len(record.to_json()["results"]), 3)

    def test_for_building_lists_newest_first(self):
        with self.Session.begin() as session:
            building = self._building(session)
            old = LotterySessionRecord(
                building=building,
                mode="general",
                created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
            )
            new = LotterySessionRecord(
                building=building,
                mode="sector",
                created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            )
            session.add_all([old, new])
        with self.Session() as session:
            modes = [r.mode for r in LotterySessionRecord.for_building(session, building.id)]
            self.assertEqual(modes, ["sector", "general"])


if __name__ == "__main__":
    unittest.main()
