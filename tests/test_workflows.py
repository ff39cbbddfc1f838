import csv
import io
import json
import unittest
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from parkdraw.lottery import (
    LotteryMode,
    LotteryOptions,
    OutOfTurn,
    PersistError,
    SessionStatus,
)
from parkdraw.lottery import types as lt
from parkdraw.models import Base, Building, LotterySessionRecord, ParkingSpot, Participant
from parkdraw.workflows import (
    add_pre_allocation,
    collect_draw_inputs,
    export_backup,
    export_session,
    finish_choice,
    import_backup,
    load_choice_session,
    load_sessions,
    pick_spot,
    publish_session,
    register_building,
    replace_spot,
    run_building_lottery,
    save_session,
    skip_turn,
    start_choice_ceremony,
    undo_last_pick,
)


class DummyPublicClient:
    def __init__(self):
        self.calls: list[dict] = []

    def publish_results(self, building_id, lottery_session, participants, spots, **kwargs):
        self.calls.append(
            {
                "building_id": building_id,
                "session": lottery_session,
                "participants": participants,
                "spots": spots,
                **kwargs,
            }
        )
        return {"building": building_id, "results": list(lottery_session.results)}


class WorkflowTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)

        with self.Session.begin() as session:
            self.building = register_building(
                session, Building(name="Cond. Primavera", company="Acme")
            )
            self.residents = [
                Participant(building=self.building, name="Ana", block="A", unit="10", has_special_needs=True),
                Participant(building=self.building, name="Bruno", block="A", unit="2"),
                Participant(building=self.building, name="Caio", block="B", unit="1"),
                Participant(building=self.building, name="Inactive", block="B", unit="9", is_active=False),
            ]
            self.spots = [
                ParkingSpot(building=self.building, number=str(n), floor="G1") for n in range(1, 4)
            ] + [ParkingSpot(building=self.building, number="99", status="reserved")]
            session.add_all(self.residents + self.spots)

    def tearDown(self):
        self.engine.dispose()

    def _get(self, session, obj):
        return session.get(type(obj), obj.id)


class TestBuildingWorkflows(WorkflowTestCase):
    def test_register_building_rejects_duplicate_names(self):
        with self.Session() as session:
            with self.assertRaises(ValueError):
                register_building(session, Building(name="Cond. Primavera"))

    def test_collect_draw_inputs_filters_inactive_and_unavailable(self):
        with self.Session.begin() as session:
            add_pre_allocation(
                session, self._get(session, self.residents[2]), self._get(session, self.spots[0])
            )
            building = session.get(Building, self.building.id)
            participants, spots, pre = collect_draw_inputs(session, building)

        self.assertEqual({p.name for p in participants}, {"Ana", "Bruno", "Caio"})
        self.assertEqual({s.number for s in spots}, {"1", "2", "3"})
        self.assertEqual(pre, {self.residents[2].id: (self.spots[0].id,)})

    def test_add_pre_allocation_rejects_reserved_and_taken_spots(self):
        with self.Session() as session:
            with self.assertRaises(ValueError):
                add_pre_allocation(
                    session, self._get(session, self.residents[0]), self._get(session, self.spots[3])
                )
            add_pre_allocation(
                session, self._get(session, self.residents[0]), self._get(session, self.spots[1])
            )
            with self.assertRaises(ValueError):
                add_pre_allocation(
                    session, self._get(session, self.residents[1]), self._get(session, self.spots[1])
                )


class TestDrawWorkflows(WorkflowTestCase):
    def test_general_draw_is_stored_and_loaded(self):
        now = datetime(2026, 5, 1, 10, 0, tzinfo=timezone.utc)
        with self.Session.begin() as session:
            add_pre_allocation(
                session, self._get(session, self.residents[1]), self._get(session, self.spots[2])
            )
            building = session.get(Building, self.building.id)
            record = run_building_lottery(
                session, building, mode="general", seed="wf", name="May draw", now=now
            )
            self.assertTrue(record.is_completed)
            self.assertIsNotNone(record.completed_at)
            self.assertEqual(len(record.results), 3)

        with self.Session() as session:
            sessions = load_sessions(session, self.building.id)
        self.assertEqual(len(sessions), 1)
        stored = sessions[0]
        self.assertEqual(stored.name, "May draw")
        self.assertEqual(stored.seed, "wf")
        self.assertEqual(stored.mode, LotteryMode.GENERAL)
        self.assertEqual(stored.results[0].participant_id, self.residents[1].id)
        self.assertEqual(stored.results[0].spot_ids, (self.spots[2].id,))
        self.assertTrue(stored.results[0].pre_allocated)
        self.assertEqual(stored.results[1].participant_id, self.residents[0].id)
        assigned = [sid for r in stored.results for sid in r.spot_ids]
        self.assertEqual(len(assigned), len(set(assigned)))

    def test_same_seed_gives_same_stored_results(self):
        with self.Session.begin() as session:
            building = session.get(Building, self.building.id)
            first = run_building_lottery(session, building, seed="again").to_session()
            second = run_building_lottery(session, building, seed="again").to_session()
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(first.results, second.results)

    def test_completed_session_cannot_be_saved_twice(self):
        with self.Session.begin() as session:
            building = session.get(Building, self.building.id)
            record = run_building_lottery(session, building, seed="once")
            stored = record.to_session()
            with self.assertRaises(PersistError):
                save_session(session, stored)

    def test_save_session_requires_finalized_session_and_building(self):
        pending = lt.LotterySession(
            id="x",
            building_id=self.building.id,
            mode=LotteryMode.GENERAL,
            created_at=datetime.now(timezone.utc),
            results=(),
            status=SessionStatus.IN_PROGRESS,
        )
        orphan = lt.LotterySession(
            id="y",
            building_id="missing",
            mode=LotteryMode.GENERAL,
            created_at=datetime.now(timezone.utc),
            results=(),
        )
        with self.Session() as session:
            with self.assertRaises(PersistError):
                save_session(session, pending)
            with self.assertRaises(PersistError):
                save_session(session, orphan)

    def test_sector_draw_records_sector_map(self):
        with self.Session.begin() as session:
            for spot in self.spots:
                session.get(ParkingSpot, spot.id).sector = "north"
            building = session.get(Building, self.building.id)
            sector_map = {r.id: "north" for r in self.residents[:3]}
            record = run_building_lottery(
                session, building, mode=LotteryMode.SECTOR, seed="sec", sector_map=sector_map
            )
            self.assertEqual(record.settings["sector_map"], sector_map)
            self.assertEqual({row.sector for row in record.results}, {"north"})

    def test_publish_and_export_stored_session(self):
        client = DummyPublicClient()
        with self.Session.begin() as session:
            building = session.get(Building, self.building.id)
            record = run_building_lottery(session, building, seed="pub", name="Public")
            payload = publish_session(session, record.id, published_by="admin", client=client)
            document = export_session(session, record.id, "csv")

        self.assertEqual(payload["building"], self.building.id)
        call = client.calls[0]
        self.assertEqual(call["building_name"], "Cond. Primavera")
        self.assertEqual(call["company"], "Acme")
        self.assertEqual(call["published_by"], "admin")
        self.assertEqual(len(call["participants"]), 3)

        rows = list(csv.reader(io.StringIO(document.decode("utf-8"))))
        self.assertEqual(rows[0][0], "Position")
        self.assertEqual(len(rows), 4)


class TestChoiceWorkflows(WorkflowTestCase):
    def test_ceremony_state_survives_reload(self):
        with self.Session.begin() as session:
            building = session.get(Building, self.building.id)
            record = start_choice_ceremony(session, building, seed="live", name="Choice")
            session_id = record.id
            self.assertEqual(record.status, SessionStatus.IN_PROGRESS.value)
            self.assertEqual(record.mode, LotteryMode.CHOICE.value)

        with self.Session.begin() as session:
            _, choice = load_choice_session(session, session_id)
            current = choice.current.participant_id
            # PCD resident chooses first
            self.assertEqual(current, self.residents[0].id)
            pick_spot(session, session_id, current, self.spots[0].id)
            replace_spot(session, session_id, current, self.spots[0].id, self.spots[1].id)

        with self.Session() as session:
            _, restored = load_choice_session(session, session_id)
            self.assertEqual(restored.entry(current).spot_ids, (self.spots[1].id,))
            self.assertNotEqual(restored.current.participant_id, current)

    def test_rejected_action_keeps_stored_state(self):
        with self.Session.begin() as session:
            building = session.get(Building, self.building.id)
            session_id = start_choice_ceremony(session, building, seed="keep").id

        with self.Session() as session:
            record, before = load_choice_session(session, session_id)
            waiting = before.order[1].participant_id
            with self.assertRaises(OutOfTurn):
                pick_spot(session, session_id, waiting, self.spots[0].id)
            self.assertEqual(record.live_state, before.to_json())

    def test_completed_ceremony_writes_results(self):
        with self.Session.begin() as session:
            building = session.get(Building, self.building.id)
            session_id = start_choice_ceremony(session, building, seed="done").id

        with self.Session.begin() as session:
            _, choice = load_choice_session(session, session_id)
            first = choice.current.participant_id
            pick_spot(session, session_id, first, self.spots[1].id)
            undo_last_pick(session, session_id)
            pick_spot(session, session_id, first, self.spots[2].id)
            skip_turn(session, session_id)
            finished = finish_choice(session, session_id)
            self.assertTrue(finished.is_finalized)

        with self.Session() as session:
            record = session.get(LotterySessionRecord, session_id)
            self.assertTrue(record.is_completed)
            stored = load_sessions(session, self.building.id)[0]
        self.assertEqual(stored.id, session_id)
        self.assertEqual(stored.mode, LotteryMode.CHOICE)
        self.assertEqual(stored.results[0].spot_ids, (self.spots[2].id,))
        self.assertEqual(len(stored.unassigned), 2)

    def test_run_building_lottery_in_choice_mode_opens_ceremony(self):
        with self.Session.begin() as session:
            building = session.get(Building, self.building.id)
            record = run_building_lottery(
                session, building, mode="choice", options=LotteryOptions(seed="opt")
            )
            self.assertEqual(record.seed, "opt")
            self.assertFalse(record.is_completed)
        with self.Session() as session:
            self.assertEqual(load_sessions(session, self.building.id), [])

    def test_open_ceremony_cannot_be_exported(self):
        with self.Session.begin() as session:
            building = session.get(Building, self.building.id)
            record = run_building_lottery(session, building, mode="choice", seed="open")
            with self.assertRaises(ValueError):
                export_session(session, record.id, "csv")

class TestBackupWorkflows(WorkflowTestCase):
    def _draw(self):
        with self.Session.begin() as session:
            add_pre_allocation(
                session, self._get(session, self.residents[2]), self._get(session, self.spots[0])
            )
            building = session.get(Building, self.building.id)
            run_building_lottery(session, building, seed="backup", name="Backup draw")
            start_choice_ceremony(session, building, seed="live", name="Ceremony")

    def test_backup_roundtrip_into_empty_database(self):
        self._draw()
        with self.Session() as session:
            document = json.loads(json.dumps(export_backup(session)))

        entry = document["buildings"][self.building.id]
        self.assertEqual(document["version"], "1.0.0")
        self.assertEqual(len(entry["participants"]), 4)
        self.assertEqual(len(entry["parking_spots"]), 4)
        self.assertEqual(len(entry["lottery_sessions"]), 2)
        self.assertEqual(
            entry["pre_allocations"],
            [{"participant_id": self.residents[2].id, "spot_id": self.spots[0].id}],
        )

        target = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(target)
        Target = sessionmaker(bind=target, future=True, expire_on_commit=False)
        try:
            with Target.begin() as session:
                restored = import_backup(session, document)
                self.assertEqual([b.id for b in restored], [self.building.id])

            with Target() as session:
                again = export_backup(session, [self.building.id])
                self.assertEqual(again["buildings"], document["buildings"])
                stored = load_sessions(session, self.building.id)
                self.assertEqual(len(stored), 1)
                self.assertEqual(stored[0].name, "Backup draw")
                self.assertTrue(any(r.pre_allocated for r in stored[0].results))
                ceremony = [
                    r
                    for r in LotterySessionRecord.for_building(session, self.building.id)
                    if not r.is_completed
                ][0]
                _, choice = load_choice_session(session, ceremony.id)
                self.assertEqual(choice.to_json(), ceremony.live_state)
        finally:
            target.dispose()

    def test_import_rejects_unknown_versions_and_existing_buildings(self):
        with self.Session() as session:
            document = export_backup(session, [self.building.id])
            with self.assertRaises(ValueError):
                import_backup(session, {**document, "version": "9.9.9"})
            with self.assertRaises(ValueError):
                import_backup(session, {"version": "1.0.0"})
            with self.assertRaises(ValueError):
                import_backup(session, document)
            with self.assertRaises(ValueError):
                export_backup(session, ["missing"])

    def test_import_with_overwrite_replaces_building(self):
        with self.Session.begin() as session:
            document = export_backup(session, [self.building.id])
            session.get(Participant, self.residents[0].id).name = "Renamed"
            session.add(Participant(building=session.get(Building, self.building.id), name="Extra"))

        with self.Session.begin() as session:
            import_backup(session, document, overwrite=True)

        with self.Session() as session:
            building = session.get(Building, self.building.id)
            names = sorted(p.name for p in building.participants)
        self.assertEqual(names, ["Ana", "Bruno", "Caio", "Inactive"])


if __name__ == "__main__":
    unittest.main()
