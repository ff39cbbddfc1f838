import csv
import io
import json
import unittest
from dataclasses import replace
from datetime import datetime, timezone

from openpyxl import load_workbook

from parkdraw.export import (
    COLUMNS,
    build_rows,
    export_to_document,
    natural_key,
    spot_type_label,
)
from parkdraw.lottery import types as lt


class ExportTestCase(unittest.TestCase):
    def setUp(self):
        self.participants = [
            lt.Participant(id="p10", name="Dora", block="A", unit="10", is_elderly=True),
            lt.Participant(id="p2", name="Eli", block="A", unit="2"),
            lt.Participant(id="p3", name="Fabi", block="B", unit="1"),
        ]
        self.spots = [
            lt.ParkingSpot(
                id="s1",
                number="1",
                floor="G1",
                types=frozenset({lt.SpotType.ELDERLY, lt.SpotType.COVERED}),
            ),
            lt.ParkingSpot(id="s2", number="2", floor="G2", size=lt.SpotSize.LARGE),
            lt.ParkingSpot(id="s3", number="3", floor="G2", is_uncovered=True),
        ]
        self.session = lt.LotterySession(
            id="sess",
            building_id="b1",
            mode=lt.LotteryMode.GENERAL,
            created_at=datetime(2026, 6, 1, 18, 0, tzinfo=timezone.utc),
            results=(
                lt.LotteryResult(
                    participant_id="p10",
                    spot_ids=("s1", "s3"),
                    rank=1,
                    priority=lt.Priority.ELDERLY,
                ),
                lt.LotteryResult(
                    participant_id="p2", spot_ids=("s2",), rank=2, priority=lt.Priority.UP_TO_DATE
                ),
                lt.LotteryResult(participant_id="p3", spot_ids=(), rank=3),
            ),
            name="June draw",
            seed="june",
            participant_ids=("p10", "p2", "p3"),
            spot_ids=("s1", "s2", "s3"),
        )

    def export(self, fmt):
        return export_to_document(
            self.session, self.participants, self.spots, fmt, building_name="Cond. Mar"
        )


class TestRows(ExportTestCase):
    def test_rows_follow_draw_order(self):
        rows = build_rows(self.session, self.participants, self.spots)
        self.assertEqual([(r.position, r.spot) for r in rows], [(1, "1"), (1, "3"), (2, "2"), (3, "N/A")])
        self.assertEqual(rows[0].priority, "Elderly")
        self.assertEqual(rows[2].priority, "Up to date")
        self.assertEqual(rows[3].floor, "N/A")
        self.assertEqual(rows[0].timestamp, "2026-06-01T18:00:00+00:00")

    def test_spot_type_label(self):
        self.assertEqual(spot_type_label(self.spots[0]), "Elderly, Covered")
        self.assertEqual(spot_type_label(self.spots[1]), "Common")
        self.assertEqual(spot_type_label(self.spots[2]), "Uncovered")

    def test_natural_key_orders_numbers(self):
        self.assertEqual(sorted(["10", "2", "1A", "B"], key=natural_key), ["1A", "2", "10", "B"])


class TestDocuments(ExportTestCase):
    def test_csv(self):
        rows = list(csv.reader(io.StringIO(self.export("csv").decode("utf-8"))))
        self.assertEqual(rows[0], COLUMNS)
        self.assertEqual([r[3] for r in rows[1:]], ["Dora", "Dora", "Eli", "Fabi"])
        self.assertEqual(rows[4][4], "N/A")

    def test_json(self):
        document = json.loads(self.export("JSON"))
        self.assertEqual(document["session"]["name"], "June draw")
        self.assertEqual(document["session"]["mode"], "general")
        self.assertEqual(len(document["rows"]), 4)
        self.assertEqual(document["rows"][2]["participant"], "Eli")

    def test_xlsx_is_sorted_by_block_and_unit(self):
        wb = load_workbook(io.BytesIO(self.export("xlsx")))
        ws = wb["Results"]
        values = list(ws.iter_rows(values_only=True))
        self.assertEqual(list(values[0]), COLUMNS)
        self.assertEqual([(r[1], r[2]) for r in values[1:]], [("A", "2"), ("A", "10"), ("A", "10"), ("B", "1")])
        self.assertEqual(wb["Session"]["B1"].value, "June draw")

    def test_pdf(self):
        self.assertTrue(self.export("pdf").startswith(b"%PDF"))

    def test_pdf_escapes_markup_in_names(self):
        self.session = replace(self.session, name="<b>Final</b> & draw")
        document = export_to_document(
            self.session, self.participants, self.spots, "pdf", building_name="Tower <A> & Co"
        )
        self.assertTrue(document.startswith(b"%PDF"))

    def test_unknown_format(self):
        with self.assertRaises(ValueError):
            self.export("docx")

    def test_unfinished_session_is_rejected(self):
        self.session = replace(self.session, status=lt.SessionStatus.IN_PROGRESS)
        for fmt in ("csv", "pdf"):
            with self.assertRaises(ValueError):
                self.export(fmt)


if __name__ == "__main__":
    unittest.main()
