import unittest

from parkdraw.lottery import (
    ChoiceSession,
    EntitlementExceeded,
    IncompleteGroup,
    InvalidConfiguration,
    InvalidTransition,
    LotteryMode,
    LotteryOptions,
    OutOfTurn,
    Participant,
    ParkingSpot,
    SessionFinalized,
    SessionStatus,
    SpotUnavailable,
    TurnStatus,
    run_choice_lottery,
)


class ChoiceSessionTestCase(unittest.TestCase):
    def setUp(self):
        self.participants = [Participant(id="p1"), Participant(id="p2"), Participant(id="p3")]
        self.spots = [ParkingSpot(id=f"s{i}") for i in range(1, 5)]
        self.drawn = run_choice_lottery(
            self.participants, self.spots, LotteryOptions(seed="choice")
        )
        self.session = self.drawn.start()
        self.ids = [e.participant_id for e in self.session.order]


class TestChoiceTurns(ChoiceSessionTestCase):
    def test_drawn_session_waits_for_start(self):
        self.assertEqual(self.drawn.status, SessionStatus.NOT_STARTED)
        self.assertIsNone(self.drawn.current)
        self.assertEqual(sorted(self.ids), ["p1", "p2", "p3"])
        self.assertEqual([e.draw_order for e in self.session.order], [1, 2, 3])

    def test_start_opens_first_turn(self):
        self.assertEqual(self.session.status, SessionStatus.IN_PROGRESS)
        self.assertEqual(self.session.current.participant_id, self.ids[0])
        self.assertEqual(self.session.current.status, TurnStatus.CHOOSING)
        with self.assertRaises(InvalidTransition):
            self.session.start()

    def test_out_of_turn_pick_is_rejected(self):
        with self.assertRaises(OutOfTurn) as ctx:
            self.session.pick_spot(self.ids[1], "s1")
        self.assertEqual(ctx.exception.current_id, self.ids[0])
        self.assertEqual(self.session.available_spot_ids, ("s1", "s2", "s3", "s4"))
        self.assertEqual(self.session.current.participant_id, self.ids[0])
        self.assertEqual(self.session.history, ())

    def test_unavailable_spot_is_rejected(self):
        with self.assertRaises(SpotUnavailable):
            self.session.pick_spot(self.ids[0], "unknown")
        after = self.session.pick_spot(self.ids[0], "s1")
        with self.assertRaises(SpotUnavailable):
            after.pick_spot(self.ids[1], "s1")

    def test_pick_advances_turn(self):
        after = self.session.pick_spot(self.ids[0], "s2")
        self.assertEqual(after.entry(self.ids[0]).spot_ids, ("s2",))
        self.assertEqual(after.entry(self.ids[0]).status, TurnStatus.COMPLETED)
        self.assertEqual(after.current.participant_id, self.ids[1])
        self.assertNotIn("s2", after.available_spot_ids)

    def test_pick_undo_pick_matches_single_pick(self):
        picked = self.session.pick_spot(self.ids[0], "s1")
        undone = picked.undo_last_pick()
        self.assertEqual(undone, self.session)
        self.assertEqual(undone.pick_spot(self.ids[0], "s1"), picked)

    def test_undo_requires_a_pick(self):
        with self.assertRaises(InvalidTransition):
            self.session.undo_last_pick()
        with self.assertRaises(InvalidTransition):
            self.session.skip_turn().undo_last_pick()

    def test_last_pick_completes_the_session(self):
        session = self.session
        for pid, sid in zip(self.ids, ("s1", "s2", "s3")):
            session = session.pick_spot(pid, sid)
        self.assertTrue(session.is_finalized)
        self.assertEqual(session.available_spot_ids, ("s4",))
        with self.assertRaises(SessionFinalized):
            session.pick_spot(self.ids[0], "s4")
        with self.assertRaises(SessionFinalized):
            session.undo_last_pick()
        with self.assertRaises(SessionFinalized):
            session.reset_session()

        outcome = session.to_outcome()
        self.assertEqual(outcome.mode, LotteryMode.CHOICE)
        self.assertEqual([r.rank for r in outcome.results], [1, 2, 3])
        self.assertEqual(outcome.assigned_spot_ids, ("s1", "s2", "s3"))
        self.assertFalse(outcome.insufficient_spots)


class TestAbsentParticipants(ChoiceSessionTestCase):
    def test_skip_marks_absent_and_advances(self):
        skipped = self.session.skip_turn()
        entry = skipped.entry(self.ids[0])
        self.assertEqual(entry.status, TurnStatus.SKIPPED)
        self.assertTrue(entry.absent)
        self.assertEqual(skipped.current.participant_id, self.ids[1])

    def test_second_chance_reopens_skipped_participant(self):
        skipped = self.session.skip_turn()
        reopened = skipped.give_second_chance(self.ids[0])
        self.assertEqual(reopened.current.participant_id, self.ids[0])
        self.assertEqual(reopened.entry(self.ids[1]).status, TurnStatus.WAITING)

        picked = reopened.pick_spot(self.ids[0], "s3")
        self.assertEqual(picked.entry(self.ids[0]).spot_ids, ("s3",))
        self.assertEqual(picked.current.participant_id, self.ids[1])

    def test_second_chance_only_for_skipped(self):
        with self.assertRaises(InvalidTransition):
            self.session.give_second_chance(self.ids[1])
        with self.assertRaises(InvalidConfiguration):
            self.session.give_second_chance("stranger")

    def test_randomize_absent_serves_remaining_spots(self):
        with self.assertRaises(InvalidTransition):
            self.session.randomize_absent("early")

        session = self.session.skip_turn()
        session = session.pick_spot(self.ids[1], "s1")
        session = session.pick_spot(self.ids[2], "s2")
        self.assertEqual(session.status, SessionStatus.IN_PROGRESS)
        self.assertIsNone(session.current)
        self.assertEqual(len(session.pending_absent()), 1)

        done = session.randomize_absent("fill")
        self.assertTrue(done.is_finalized)
        absent_spots = done.entry(self.ids[0]).spot_ids
        self.assertEqual(len(absent_spots), 1)
        self.assertIn(absent_spots[0], ("s3", "s4"))
        self.assertEqual(done.entry(self.ids[0]).status, TurnStatus.COMPLETED)
        assigned = [sid for e in done.order for sid in e.spot_ids]
        self.assertEqual(len(assigned), len(set(assigned)))

    def test_finish_skips_everyone_still_waiting(self):
        finished = self.session.pick_spot(self.ids[0], "s1").finish()
        self.assertTrue(finished.is_finalized)
        self.assertEqual(finished.entry(self.ids[1]).status, TurnStatus.SKIPPED)
        self.assertEqual(finished.entry(self.ids[2]).status, TurnStatus.SKIPPED)
        self.assertEqual(finished.to_outcome().unassigned, (self.ids[1], self.ids[2]))

    def test_replace_spot_swaps_with_a_free_spot(self):
        session = self.session.pick_spot(self.ids[0], "s1")
        swapped = session.replace_spot(self.ids[0], "s1", "s4")
        self.assertEqual(swapped.entry(self.ids[0]).spot_ids, ("s4",))
        self.assertIn("s1", swapped.available_spot_ids)
        self.assertNotIn("s4", swapped.available_spot_ids)
        self.assertEqual(swapped.current.participant_id, self.ids[1])

        with self.assertRaises(SpotUnavailable):
            session.replace_spot(self.ids[0], "s1", "s1")
        with self.assertRaises(InvalidTransition):
            session.replace_spot(self.ids[1], "s2", "s3")

    def test_reset_returns_to_drawn_state(self):
        session = self.session.pick_spot(self.ids[0], "s1").skip_turn()
        self.assertEqual(session.reset_session(), self.drawn)


class TestChoiceGroupsAndOrder(unittest.TestCase):
    def setUp(self):
        self.participants = [
            Participant(id="solo"),
            Participant(id="fam", number_of_spots=2, is_elderly=True),
        ]
        self.spots = [
            ParkingSpot(id="g1", group_id="G"),
            ParkingSpot(id="g2", group_id="G"),
            ParkingSpot(id="s1"),
        ]
        self.session = run_choice_lottery(
            self.participants, self.spots, LotteryOptions(seed="groups")
        ).start()

    def test_priority_participant_chooses_first(self):
        self.assertEqual(self.session.current.participant_id, "fam")

    def test_pick_group_takes_every_member(self):
        after = self.session.pick_group("fam", "G")
        self.assertEqual(after.entry("fam").spot_ids, ("g1", "g2"))
        self.assertEqual(after.available_spot_ids, ("s1",))
        self.assertEqual(after.current.participant_id, "solo")

    def test_pick_group_rejects_partial_groups(self):
        after = self.session.pick_spot("fam", "g1")
        self.assertEqual(after.current.participant_id, "fam")
        with self.assertRaises(IncompleteGroup) as ctx:
            after.pick_group("fam", "G")
        self.assertEqual(ctx.exception.occupied, ("g1",))

    def test_pick_group_respects_entitlement(self):
        after = self.session.pick_spot("fam", "s1")
        with self.assertRaises(EntitlementExceeded):
            after.pick_group("fam", "G")
        with self.assertRaises(InvalidConfiguration):
            after.pick_group("fam", "missing")

    def test_pre_allocated_participants_come_first(self):
        session = run_choice_lottery(
            self.participants,
            self.spots,
            LotteryOptions(seed="pre", pre_allocations={"solo": ("s1",)}),
        )
        first = session.order[0]
        self.assertEqual(first.participant_id, "solo")
        self.assertEqual(first.status, TurnStatus.COMPLETED)
        self.assertEqual(first.spot_ids, ("s1",))
        self.assertNotIn("s1", session.available_spot_ids)
        self.assertEqual(session.start().current.participant_id, "fam")

    def test_pre_allocations_beyond_entitlement_are_rejected(self):
        with self.assertRaises(InvalidConfiguration):
            run_choice_lottery(
                self.participants,
                self.spots,
                LotteryOptions(pre_allocations={"solo": ("g1", "s1")}),
            )
        with self.assertRaises(InvalidConfiguration):
            run_choice_lottery(
                [Participant(id="big", has_large_car=True)],
                self.spots,
                LotteryOptions(pre_allocations={"big": ("s1",)}),
            )

    def test_partial_pre_allocation_keeps_a_turn(self):
        session = run_choice_lottery(
            self.participants,
            self.spots,
            LotteryOptions(seed="part", pre_allocations={"fam": ("s1",)}),
        ).start()
        self.assertEqual(session.entry("fam").spot_ids, ("s1",))
        self.assertEqual(session.current.participant_id, "fam")
        with self.assertRaises(EntitlementExceeded):
            session.pick_group("fam", "G")

    def test_json_roundtrip_restores_session(self):
        session = self.session.pick_spot("fam", "s1").skip_turn()
        self.assertEqual(ChoiceSession.from_json(session.to_json()), session)


if __name__ == "__main__":
    unittest.main()
