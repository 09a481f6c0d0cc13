"""Aggregate statistics recovered from the painted output workbooks.

Only the :class:`~mara_doctor.shared.Fill` colours and the label row are
read, so the numbers can be recomputed from any saved report.
"""

from __future__ import annotations

from collections import Counter
from typing import Optional

import pandas as pd

from mara_doctor.contracts import build_contract
from mara_doctor.shared import (
    FIRST_DATA_ROW,
    LABEL_ROW,
    QUALITY_FIRST_DATA_ROW,
    QUALITY_SHEET_TITLE,
    REFERENCE_LABEL,
    STATUS_LABEL,
    Fill,
)

FILL_BY_RGB = {fill.value: fill for fill in Fill}


def fill_of(cell) -> Optional[Fill]:
    fill = cell.fill
    if fill is None or fill.fill_type != "solid":
        return None
    rgb = fill.fgColor.rgb
    if not isinstance(rgb, str):
        return None
    return FILL_BY_RGB.get(rgb.upper())


def percent(part: int, whole: int) -> float:
    return round(100.0 * part / whole, 1) if whole else 0.0


def reconcile_stats(workbook) -> dict:
    counts = Counter()
    for ws in workbook.worksheets:
        label_row = [cell.value for cell in ws[LABEL_ROW]] if ws.max_row >= LABEL_ROW else []
        companions = [index for index, value in enumerate(label_row, start=1) if value == REFERENCE_LABEL]
        status_columns = [index for index, value in enumerate(label_row, start=1) if value == STATUS_LABEL]
        if not companions or not status_columns:
            continue
        counts["sheets"] += 1
        status_column = status_columns[-1]
        for row in range(FIRST_DATA_ROW, ws.max_row + 1):
            status = fill_of(ws.cell(row=row, column=status_column))
            if status is Fill.MATCH:
                counts["rows_ok"] += 1
            elif status is Fill.MISMATCH:
                counts["rows_deviation"] += 1
            else:
                continue
            for col in companions:
                painted = fill_of(ws.cell(row=row, column=col))
                if painted is Fill.MATCH:
                    counts["fields_match"] += 1
                elif painted is Fill.MISMATCH:
                    counts["fields_mismatch"] += 1
                elif painted is Fill.REFERENCE_MISSING:
                    counts["fields_reference_missing"] += 1
                else:
                    counts["fields_unpainted"] += 1
    rows = counts["rows_ok"] + counts["rows_deviation"]
    fields = counts["fields_match"] + counts["fields_mismatch"] + counts["fields_reference_missing"]
    return {
        "contract": build_contract("mara_doctor.stats"),
        "kind": "reconcile",
        "counts": {
            "sheets": counts["sheets"],
            "rows": rows,
            "rows_ok": counts["rows_ok"],
            "rows_deviation": counts["rows_deviation"],
            "fields_match": counts["fields_match"],
            "fields_mismatch": counts["fields_mismatch"],
            "fields_reference_missing": counts["fields_reference_missing"],
            "fields_unpainted": counts["fields_unpainted"],
        },
        "percentages": {
            "rows_ok": percent(counts["rows_ok"], rows),
            "rows_deviation": percent(counts["rows_deviation"], rows),
            "fields_match": percent(counts["fields_match"], fields),
            "fields_mismatch": percent(counts["fields_mismatch"], fields),
            "fields_reference_missing": percent(counts["fields_reference_missing"], fields),
        },
    }


def completeness_stats(workbook) -> dict:
    ws = workbook[QUALITY_SHEET_TITLE] if QUALITY_SHEET_TITLE in workbook.sheetnames else workbook.worksheets[0]
    counts = Counter()
    for row in ws.iter_rows(min_row=QUALITY_FIRST_DATA_ROW):
        fills = [fill_of(cell) for cell in row]
        invalid = fills.count(Fill.INVALID)
        if invalid:
            counts["rows_incomplete"] += 1
            counts["cells_flagged"] += invalid
        elif Fill.COMPLETE in fills:
            counts["rows_complete"] += 1
    rows = counts["rows_complete"] + counts["rows_incomplete"]
    return {
        "contract": build_contract("mara_doctor.stats"),
        "kind": "completeness",
        "counts": {
            "rows": rows,
            "rows_complete": counts["rows_complete"],
            "rows_incomplete": counts["rows_incomplete"],
            "cells_flagged": counts["cells_flagged"],
        },
        "percentages": {
            "rows_complete": percent(counts["rows_complete"], rows),
            "rows_incomplete": percent(counts["rows_incomplete"], rows),
        },
    }


def detect_kind(workbook) -> str:
    if QUALITY_SHEET_TITLE in workbook.sheetnames:
        return "completeness"
    return "reconcile"


def workbook_stats(workbook, kind: str = "auto") -> dict:
    if kind == "auto":
        kind = detect_kind(workbook)
    if kind == "completeness":
        return completeness_stats(workbook)
    if kind == "reconcile":
        return reconcile_stats(workbook)
    raise ValueError(f"Unknown statistics kind: {kind}")


def stats_frame(stats: dict) -> pd.DataFrame:
    counts = stats.get("counts", {})
    percentages = stats.get("percentages", {})
    frame = pd.DataFrame(
        [{"metric": name, "count": value, "percent": percentages.get(name)} for name, value in counts.items()]
    )
    return frame.set_index("metric") if not frame.empty else frame


def render_stats_text(stats: dict) -> str:
    frame = stats_frame(stats)
    title = "Abgleich" if stats.get("kind") == "reconcile" else "Vollständigkeit"
    if frame.empty:
        return f"mara-doctor stats ({title})\nNo rows found.\n"
    return f"mara-doctor stats ({title})\n{frame.fillna('').to_string()}\n"
