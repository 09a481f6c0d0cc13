"""Completeness and plausibility report for a raw MARA export.

The report is a fresh single-sheet workbook: values of the first worksheet
are copied as they are, header rows keep their formatting, and every data
row is painted either entirely green (complete) or only on its flagged cells
(red). No reference data is involved.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from copy import copy
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from openpyxl import Workbook
from openpyxl.cell.cell import MergedCell
from openpyxl.styles import Alignment
from openpyxl.worksheet.cell_range import CellRange

from mara_doctor import __version__ as TOOL_VERSION
from mara_doctor.columns import Column
from mara_doctor.config import EngineConfig
from mara_doctor.contracts import build_contract, build_run_summary
from mara_doctor.normalizers import parse_number, parse_weight
from mara_doctor.shared import (
    CODE_SEGMENTS,
    HEADER_CODE,
    HEADER_DESCRIPTION,
    HEADER_GROSS_WEIGHT,
    HEADER_HEIGHT,
    HEADER_LENGTH,
    HEADER_NET_WEIGHT,
    HEADER_WIDTH,
    MANDATORY_COLUMN_RANGES,
    QUALITY_FIRST_DATA_ROW,
    QUALITY_HEADER_ROW,
    QUALITY_SHEET_TITLE,
    Fill,
    is_blank,
)
from mara_doctor.workbook_io import load_workbook_bytes, workbook_to_bytes

logger = logging.getLogger(__name__)

TEXT_MEASURE_RE = re.compile(r"\d{1,4}[\s×xX*/]{1,3}\d{1,4}")
FORMATTED_HEADER_ROWS = 3


class QualityFlag(str, Enum):
    PRESENT_VALID = "present_valid"
    MISSING = "missing"
    INVALID = "invalid"


@dataclass(frozen=True)
class QualityColumns:
    code: Optional[int] = None
    length: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    description: Optional[int] = None
    net_weight: Optional[int] = None
    gross_weight: Optional[int] = None

    @property
    def measurements(self) -> list:
        return [col for col in (self.length, self.width, self.height) if col]


@dataclass
class QualityRow:
    row: int
    flags: dict = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.flags


@dataclass
class CompletenessResult:
    workbook: bytes
    source_sheet: str
    rows: list = field(default_factory=list)

    def stats(self) -> Counter:
        counts = Counter()
        for row in self.rows:
            counts["rows_complete" if row.complete else "rows_incomplete"] += 1
            for flag in row.flags.values():
                counts[f"cells_{flag.value}"] += 1
        counts["rows_checked"] = len(self.rows)
        return counts


def valid_composite_code(value) -> bool:
    if value is None:
        return False
    parts = [part.strip() for part in str(value).split("/")]
    if len(parts) != len(CODE_SEGMENTS):
        return False
    return all(part in allowed for part, allowed in zip(parts, CODE_SEGMENTS))


def has_text_measure(value) -> bool:
    return value is not None and bool(TEXT_MEASURE_RE.search(str(value)))


def column_by_header(ws, name: str) -> Optional[int]:
    for col in range(1, ws.max_column + 1):
        value = ws.cell(row=QUALITY_HEADER_ROW, column=col).value
        if value is not None and str(value).strip() == name:
            return col
    return None


def locate_columns(ws) -> QualityColumns:
    return QualityColumns(
        code=column_by_header(ws, HEADER_CODE),
        length=column_by_header(ws, HEADER_LENGTH),
        width=column_by_header(ws, HEADER_WIDTH),
        height=column_by_header(ws, HEADER_HEIGHT),
        description=column_by_header(ws, HEADER_DESCRIPTION),
        net_weight=column_by_header(ws, HEADER_NET_WEIGHT),
        gross_weight=column_by_header(ws, HEADER_GROSS_WEIGHT),
    )


def _value(ws, row: int, col: Optional[int]):
    return ws.cell(row=row, column=col).value if col else None


def evaluate_row(ws, row: int, columns: QualityColumns) -> QualityRow:
    """Run every rule on one row. Rules are independent; a cell keeps its first flag."""
    result = QualityRow(row=row)

    def flag(col: Optional[int], kind: QualityFlag) -> None:
        if col:
            result.flags.setdefault(col, kind)

    for start, end in MANDATORY_COLUMN_RANGES:
        for col in range(start.index, min(end.index, ws.max_column) + 1):
            if is_blank(ws.cell(row=row, column=col).value):
                flag(col, QualityFlag.MISSING)

    code = _value(ws, row, columns.code)
    if not is_blank(code) and not valid_composite_code(code):
        flag(columns.code, QualityFlag.INVALID)

    measures = [parse_number(_value(ws, row, col)) if col else None for col in (columns.length, columns.width, columns.height)]
    if any(value is not None and value < 0 for value in measures):
        for col in columns.measurements:
            flag(col, QualityFlag.INVALID)
    elif all(value is None or value == 0 for value in measures) and not has_text_measure(_value(ws, row, columns.description)):
        for col in columns.measurements:
            flag(col, QualityFlag.INVALID)

    net_raw = _value(ws, row, columns.net_weight)
    gross_raw = _value(ws, row, columns.gross_weight)
    net = parse_weight(net_raw)
    gross = parse_weight(gross_raw)
    if not is_blank(net_raw) and (net is None or net <= 0):
        flag(columns.net_weight, QualityFlag.INVALID)
    if not is_blank(gross_raw) and (gross is None or gross <= 0):
        flag(columns.gross_weight, QualityFlag.INVALID)
    if net is not None and gross is not None and gross < net:
        # only the gross weight is considered wrong
        flag(columns.gross_weight, QualityFlag.INVALID)
    return result


def clone_sheet(src, dst) -> None:
    for key, dim in src.column_dimensions.items():
        if not dim.width:
            continue
        start = dim.min or Column.from_letter(key).index
        for index in range(start, (dim.max or start) + 1):
            dst.column_dimensions[Column(index).letter].width = dim.width
    for row in src.iter_rows():
        for cell in row:
            if isinstance(cell, MergedCell) or cell.value is None:
                continue
            dst.cell(row=cell.row, column=cell.column, value=cell.value)
    for row in src.iter_rows(min_row=1, max_row=FORMATTED_HEADER_ROWS):
        for cell in row:
            if cell.has_style and not isinstance(cell, MergedCell):
                dst.cell(row=cell.row, column=cell.column)._style = copy(cell._style)
    for merged in src.merged_cells.ranges:
        if merged.max_row <= FORMATTED_HEADER_ROWS:
            dst.merge_cells(str(merged))


def apply_banners(ws, banners) -> None:
    for ref, title in banners:
        target = CellRange(ref)
        for merged in list(ws.merged_cells.ranges):
            if not target.isdisjoint(merged):
                ws.unmerge_cells(str(merged))
        if target.size["columns"] > 1 or target.size["rows"] > 1:
            ws.merge_cells(ref)
        anchor = ws.cell(row=target.min_row, column=target.min_col)
        anchor.value = title
        anchor.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def check_completeness(workbook, config: Optional[EngineConfig] = None) -> tuple:
    """Build the report workbook for the first sheet of ``workbook``.

    Returns ``(report_workbook, source_sheet_title, quality_rows)``.
    """
    config = config or EngineConfig()
    src = workbook.worksheets[0] if workbook.worksheets else None
    if src is None:
        raise ValueError("No worksheet found in workbook.")

    report = Workbook()
    dst = report.active
    dst.title = QUALITY_SHEET_TITLE
    clone_sheet(src, dst)
    apply_banners(dst, config.quality_banners)

    columns = locate_columns(src)
    missing = [name for name, col in vars(columns).items() if col is None]
    if missing:
        logger.warning("Columns not found in header row %d: %s", QUALITY_HEADER_ROW, ", ".join(missing))

    complete_fill = Fill.COMPLETE.pattern()
    invalid_fill = Fill.INVALID.pattern()
    rows = []
    for row in range(QUALITY_FIRST_DATA_ROW, src.max_row + 1):
        if all(is_blank(cell.value) for cell in src[row]):
            continue
        result = evaluate_row(src, row, columns)
        if result.complete:
            for col in range(1, src.max_column + 1):
                dst.cell(row=row, column=col).fill = complete_fill
        else:
            for col in result.flags:
                dst.cell(row=row, column=col).fill = invalid_fill
        rows.append(result)
    complete = sum(1 for item in rows if item.complete)
    logger.info("Completeness: %d of %d rows complete", complete, len(rows))
    return report, src.title, rows


def check_completeness_bytes(data: bytes, config: Optional[EngineConfig] = None) -> CompletenessResult:
    workbook = load_workbook_bytes(data)
    report, source_sheet, rows = check_completeness(workbook, config)
    return CompletenessResult(workbook=workbook_to_bytes(report), source_sheet=source_sheet, rows=rows)


def build_structured_summary(
    result: CompletenessResult,
    *,
    input_path: Path,
    output_path: Optional[Path],
    config: Optional[EngineConfig] = None,
) -> dict:
    contract = build_contract("mara_doctor.completeness_summary")
    stats = result.stats()
    checked = stats["rows_checked"]
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "input_file": str(input_path),
        "output_file": str(output_path) if output_path else None,
        "source_sheet": result.source_sheet,
        "stats": dict(stats),
        "complete_pct": round(100.0 * stats["rows_complete"] / checked, 1) if checked else 0.0,
        "flagged_rows": [
            {"row": item.row, "cells": {Column(col).address(item.row): flag.value for col, flag in sorted(item.flags.items())}}
            for item in result.rows
            if not item.complete
        ],
        "run_summary": build_run_summary(
            command="completeness",
            input_path=input_path,
            output_path=output_path,
            config=config,
            sheets=[result.source_sheet],
            metrics={
                "rows_checked": checked,
                "rows_complete": stats["rows_complete"],
                "rows_incomplete": stats["rows_incomplete"],
                "cells_missing": stats["cells_missing"],
                "cells_invalid": stats["cells_invalid"],
            },
        ),
    }
