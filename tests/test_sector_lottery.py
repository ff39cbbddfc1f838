import unittest

from parkdraw.lottery import (
    InvalidConfiguration,
    LotteryMode,
    LotteryOptions,
    Participant,
    ParkingSpot,
    run_sector_lottery,
)


class TestSectorLottery(unittest.TestCase):
    def setUp(self):
        self.participants = [
            Participant(id="a1", sector="A"),
            Participant(id="a2", sector="A"),
            Participant(id="b1", sector="B"),
            Participant(id="b2", sector="B"),
        ]
        self.spots = [
            ParkingSpot(id="b-spot-1", sector="B"),
            ParkingSpot(id="b-spot-2", sector="B"),
        ]

    def test_sector_without_spots_leaves_its_participants_unassigned(self):
        outcome = run_sector_lottery(self.participants, self.spots, options=LotteryOptions(seed="ab"))

        self.assertEqual(outcome.mode, LotteryMode.SECTOR)
        self.assertEqual(set(outcome.unassigned), {"a1", "a2"})
        self.assertEqual(outcome.result_for("b1").sector, "B")
        self.assertEqual(
            set(outcome.result_for("b1").spot_ids + outcome.result_for("b2").spot_ids),
            {"b-spot-1", "b-spot-2"},
        )
        self.assertTrue(outcome.insufficient_spots)
        self.assertEqual(outcome.shortage.required, 2)
        self.assertEqual(outcome.shortage.available, 0)
        self.assertEqual(sorted(r.rank for r in outcome.results), [1, 2, 3, 4])

    def test_participants_only_receive_spots_of_their_sector(self):
        spots = self.spots + [ParkingSpot(id="a-spot", sector="A")]
        outcome = run_sector_lottery(self.participants, spots, options=LotteryOptions(seed="own"))
        a_spots = [sid for pid in ("a1", "a2") for sid in outcome.result_for(pid).spot_ids]
        self.assertEqual(a_spots, ["a-spot"])
        b_spots = {sid for pid in ("b1", "b2") for sid in outcome.result_for(pid).spot_ids}
        self.assertEqual(b_spots, {"b-spot-1", "b-spot-2"})

    def test_sector_map_overrides_participant_sector(self):
        outcome = run_sector_lottery(
            self.participants,
            self.spots,
            sector_map={"a1": "B", "a2": "B"},
            options=LotteryOptions(seed="map"),
        )
        self.assertEqual(len(outcome.assigned_spot_ids), 2)
        self.assertEqual({r.sector for r in outcome.results}, {"B"})

    def test_same_seed_reproduces_each_sector(self):
        spots = self.spots + [ParkingSpot(id="a-spot", sector="A")]
        first = run_sector_lottery(self.participants, spots, options=LotteryOptions(seed="s"))
        second = run_sector_lottery(self.participants, spots, options=LotteryOptions(seed="s"))
        self.assertEqual(first.results, second.results)

    def test_missing_sectors_are_rejected(self):
        with self.assertRaises(InvalidConfiguration):
            run_sector_lottery(self.participants + [Participant(id="nowhere")], self.spots)
        with self.assertRaises(InvalidConfiguration):
            run_sector_lottery(self.participants, self.spots + [ParkingSpot(id="loose")])
        with self.assertRaises(InvalidConfiguration):
            run_sector_lottery(self.participants, self.spots, sector_map={"ghost": "A"})

    def test_pre_allocated_spot_is_kept_out_of_the_sector_draw(self):
        options = LotteryOptions(seed="pre", pre_allocations={"b1": ("b-spot-2",)})
        outcome = run_sector_lottery(self.participants, self.spots, options=options)
        self.assertEqual(outcome.results[0].participant_id, "b1")
        self.assertTrue(outcome.results[0].pre_allocated)
        self.assertEqual(outcome.result_for("b2").spot_ids, ("b-spot-1",))


if __name__ == "__main__":
    unittest.main()
