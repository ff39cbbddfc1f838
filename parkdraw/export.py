"""Result documents (CSV, JSON, XLSX, PDF) derived from a finished session.

Rows are one per assigned spot; unassigned participants appear once with
``N/A`` in the spot columns. CSV and JSON keep the draw order, while the
spreadsheet and the printable report are sorted by block and unit the way
building managers read them.
"""

from __future__ import annotations

import csv
import json
import logging
import re
from dataclasses import asdict, dataclass
from io import BytesIO, StringIO
from typing import Optional, Sequence
from xml.sax.saxutils import escape

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .db.utils import dt_iso
from .lottery import types as lt

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("csv", "json", "xlsx", "pdf")
NOT_AVAILABLE = "N/A"

COLUMNS = [
    "Position",
    "Block",
    "Unit",
    "Participant",
    "Spot",
    "Floor",
    "Spot type",
    "Size",
    "Priority",
    "Date/Time",
]
COLUMN_WIDTHS = [10, 10, 10, 28, 10, 12, 30, 8, 12, 22]

PRIORITY_LABELS = {
    lt.Priority.SPECIAL_NEEDS: "PcD",
    lt.Priority.ELDERLY: "Elderly",
    lt.Priority.UP_TO_DATE: "Up to date",
    lt.Priority.NORMAL: "Normal",
}

HEADER_BLUE = "1C3D5A"
ROW_SHADE = colors.HexColor("#F7F6F3")


@dataclass(frozen=True)
class ExportRow:
    position: int
    block: str
    unit: str
    participant: str
    spot: str
    floor: str
    spot_type: str
    size: str
    priority: str
    timestamp: str

    def as_list(self) -> list:
        return [
            self.position,
            self.block,
            self.unit,
            self.participant,
            self.spot,
            self.floor,
            self.spot_type,
            self.size,
            self.priority,
            self.timestamp,
        ]


def natural_key(text: str) -> tuple:
    """Sort key treating digit runs as numbers, so ``"2"`` sorts before ``"10"``."""
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part.lower())
        for part in re.split(r"(\d+)", text or "")
        if part
    )


def spot_type_label(spot: lt.ParkingSpot) -> str:
    """Designations of ``spot`` plus its coverage; ``Common`` when it has none."""
    labels = [
        t.value.capitalize()
        for t in sorted(spot.types, key=lambda t: t.value)
        if t not in (lt.SpotType.COMMON, lt.SpotType.COVERED, lt.SpotType.UNCOVERED)
    ]
    if spot.covered:
        labels.append("Covered")
    elif spot.uncovered:
        labels.append("Uncovered")
    return ", ".join(labels) or "Common"


def build_rows(
    lottery_session: lt.LotterySession,
    participants: Sequence[lt.Participant],
    spots: Sequence[lt.ParkingSpot],
) -> list[ExportRow]:
    """Flatten a session into export rows in draw order."""
    participants_by_id = {p.id: p for p in participants}
    spots_by_id = {s.id: s for s in spots}
    timestamp = dt_iso(lottery_session.created_at) or ""

    rows: list[ExportRow] = []
    for result in lottery_session.results:
        participant = participants_by_id.get(result.participant_id)
        for spot_id in result.spot_ids or (None,):
            spot = spots_by_id.get(spot_id) if spot_id else None
            rows.append(
                ExportRow(
                    position=result.rank,
                    block=participant.block if participant else NOT_AVAILABLE,
                    unit=participant.unit if participant else NOT_AVAILABLE,
                    participant=participant.name if participant else NOT_AVAILABLE,
                    spot=spot.number if spot else NOT_AVAILABLE,
                    floor=spot.floor if spot else NOT_AVAILABLE,
                    spot_type=spot_type_label(spot) if spot else NOT_AVAILABLE,
                    size=spot.size.value if spot else NOT_AVAILABLE,
                    priority=PRIORITY_LABELS[result.priority],
                    timestamp=timestamp,
                )
            )
    return rows


def sort_by_unit(rows: Sequence[ExportRow]) -> list[ExportRow]:
    return sorted(rows, key=lambda r: (natural_key(r.block), natural_key(r.unit), r.position))


def _to_csv(rows: Sequence[ExportRow]) -> bytes:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(COLUMNS)
    for row in rows:
        writer.writerow(row.as_list())
    return buffer.getvalue().encode("utf-8")


def _to_json(lottery_session: lt.LotterySession, rows: Sequence[ExportRow]) -> bytes:
    document = {
        "session": {
            "id": lottery_session.id,
            "building_id": lottery_session.building_id,
            "name": lottery_session.name,
            "mode": lottery_session.mode.value,
            "seed": lottery_session.seed,
            "created_at": dt_iso(lottery_session.created_at),
        },
        "rows": [asdict(row) for row in rows],
    }
    return json.dumps(document, ensure_ascii=False, indent=2).encode("utf-8")


def _to_xlsx(lottery_session: lt.LotterySession, rows: Sequence[ExportRow]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Results"

    header_fill = PatternFill(start_color=HEADER_BLUE, end_color=HEADER_BLUE, fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF")
    ws.append(COLUMNS)
    for col_idx in range(1, len(COLUMNS) + 1):
        cell = ws.cell(row=1, column=col_idx)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center")
    for row in sort_by_unit(rows):
        ws.append(row.as_list())
    for col_idx, width in enumerate(COLUMN_WIDTHS, start=1):
        ws.column_dimensions[get_column_letter(col_idx)].width = width
    ws.freeze_panes = "A2"

    info = wb.create_sheet("Session")
    info.append(["Session", lottery_session.name])
    info.append(["Mode", lottery_session.mode.value])
    info.append(["Date", dt_iso(lottery_session.created_at)])
    info.append(["Seed", lottery_session.seed or ""])
    info.column_dimensions["A"].width = 12
    info.column_dimensions["B"].width = 70

    output = BytesIO()
    wb.save(output)
    return output.getvalue()


def _to_pdf(
    lottery_session: lt.LotterySession,
    rows: Sequence[ExportRow],
    building_name: Optional[str],
) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        leftMargin=1.5 * cm,
        rightMargin=1.5 * cm,
        topMargin=1.5 * cm,
        bottomMargin=1.5 * cm,
        title=lottery_session.name or "Parking lottery results",
    )
    styles = getSampleStyleSheet()
    story = [
        Paragraph("Parking Spot Lottery Report", styles["Title"]),
        Paragraph(
            # Paragraph text is markup; names may contain <, > or &
            escape(
                f"{building_name or lottery_session.building_id} | "
                f"{lottery_session.name or 'Lottery'} | {dt_iso(lottery_session.created_at)}"
            ),
            styles["Normal"],
        ),
        Spacer(1, 0.4 * cm),
    ]

    data = [COLUMNS] + [[str(value) for value in row.as_list()] for row in sort_by_unit(rows)]
    table = Table(data, repeatRows=1)
    style_cmds = [
        ("FONTNAME", (0, 0), (-1, -1), "Helvetica"),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(f"#{HEADER_BLUE}")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ]
    for i in range(2, len(data), 2):
        style_cmds.append(("BACKGROUND", (0, i), (-1, i), ROW_SHADE))
    table.setStyle(TableStyle(style_cmds))
    story.append(table)

    doc.build(story)
    return buffer.getvalue()


def export_to_document(
    lottery_session: lt.LotterySession,
    participants: Sequence[lt.Participant],
    spots: Sequence[lt.ParkingSpot],
    format: str,
    *,
    building_name: Optional[str] = None,
) -> bytes:
    """Render ``lottery_session`` as a document.

    Parameters
    ----------
    lottery_session : LotterySession
        Session whose results are exported.
    participants, spots : Sequence
        Participants and spots referenced by the results.
    format : str
        One of ``csv``, ``json``, ``xlsx`` or ``pdf``.
    building_name : Optional[str], default: None
        Heading of the PDF report; the building id is used when omitted.

    Returns
    -------
    bytes
        The encoded document.

    Raises
    ------
    ValueError
        If ``format`` is not supported or the session is not finalized.
    """
    fmt = (format or "").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format '{format}'; use one of {', '.join(EXPORT_FORMATS)}")
    if not lottery_session.is_finalized:
        raise ValueError(f"Lottery session {lottery_session.id} is not finalized.")

    rows = build_rows(lottery_session, participants, spots)
    logger.debug(f"Exporting session {lottery_session.id} as {fmt} ({len(rows)} rows)")
    if fmt == "csv":
        return _to_csv(rows)
    if fmt == "json":
        return _to_json(lottery_session, rows)
    if fmt == "xlsx":
        return _to_xlsx(lottery_session, rows)
    return _to_pdf(lottery_session, rows, building_name)


__all__ = [
    "EXPORT_FORMATS",
    "COLUMNS",
    "ExportRow",
    "natural_key",
    "spot_type_label",
    "build_rows",
    "sort_by_unit",
    "export_to_document",
]
