from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from openpyxl.styles import Alignment

from mara_doctor import __version__ as TOOL_VERSION
from mara_doctor.comparators import Comparison, CompareContext, compare_field
from mara_doctor.config import EngineConfig
from mara_doctor.contracts import build_contract, build_run_summary
from mara_doctor.layout import LayoutPlan, apply_layout, plan_layout
from mara_doctor.lookup import EMPTY_RECORD, ReferenceLookup, ReferenceRecord, normalize_identifier
from mara_doctor.shared import (
    FIELDS,
    FIRST_DATA_ROW,
    IDENTIFIER_COLUMN,
    LABEL_ROW,
    STATUS_TEXT_DEVIATION,
    STATUS_TEXT_OK,
    Fill,
    is_blank,
)
from mara_doctor.workbook_io import load_workbook_bytes, workbook_to_bytes

logger = logging.getLogger(__name__)

# before the label row is inserted, data starts where the label row will go
RAW_FIRST_DATA_ROW = LABEL_ROW


class Verdict(str, Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    REFERENCE_MISSING = "reference_missing"
    SOURCE_MISSING = "source_missing"


class RowStatus(str, Enum):
    OK = "ok"
    DEVIATION = "deviation"
    UNRECONCILED = "unreconciled"


@dataclass
class RowResult:
    row: int
    identifier: str
    status: RowStatus
    verdicts: dict = field(default_factory=dict)


@dataclass
class SheetResult:
    title: str
    plan: LayoutPlan
    rows: list = field(default_factory=list)

    def counts(self) -> Counter:
        counts = Counter()
        for row in self.rows:
            counts[f"rows_{row.status.value}"] += 1
            for verdict in row.verdicts.values():
                counts[f"fields_{verdict.value}"] += 1
        return counts


@dataclass
class ReconcileResult:
    workbook: bytes
    sheets: list
    identifiers_requested: int
    identifiers_found: int

    def stats(self) -> Counter:
        total = Counter()
        for sheet in self.sheets:
            total.update(sheet.counts())
        total["sheets_processed"] = len(self.sheets)
        total["identifiers_requested"] = self.identifiers_requested
        total["identifiers_found"] = self.identifiers_found
        return total


def has_prefix(identifier: str, config: EngineConfig) -> bool:
    return bool(identifier) and identifier.startswith(config.identifier_prefix.upper())


def row_is_blank(ws, row: int, last_column: int) -> bool:
    return all(is_blank(ws.cell(row=row, column=col).value) for col in range(1, last_column + 1))


def collect_identifiers(workbook, config: EngineConfig) -> set:
    """Identifiers of all sheets that carry the canonical prefix, read before any layout change."""
    identifiers = set()
    for ws in workbook.worksheets:
        if ws.max_column < IDENTIFIER_COLUMN.index:
            continue
        for row in range(RAW_FIRST_DATA_ROW, ws.max_row + 1):
            identifier = normalize_identifier(ws.cell(row=row, column=IDENTIFIER_COLUMN.index).value)
            if has_prefix(identifier, config):
                identifiers.add(identifier)
    return identifiers


def classify(comparison: Comparison, source) -> Verdict:
    if not comparison.has_reference:
        return Verdict.REFERENCE_MISSING
    if is_blank(source):
        return Verdict.SOURCE_MISSING
    return Verdict.MATCH if comparison.equal else Verdict.MISMATCH


def row_status(verdicts: dict, config: EngineConfig) -> RowStatus:
    for key, verdict in verdicts.items():
        if key not in config.required_fields:
            continue
        if verdict is Verdict.MISMATCH:
            return RowStatus.DEVIATION
        if verdict is Verdict.SOURCE_MISSING and config.flag_required_source_missing:
            return RowStatus.DEVIATION
    return RowStatus.OK


def cell_value(value):
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def reconcile_row(ws, row: int, plan: LayoutPlan, record: ReferenceRecord, identifier: str, config: EngineConfig) -> RowResult:
    context = CompareContext(
        identifier=identifier,
        identifier_prefix=config.identifier_prefix,
        weight_tolerance_pct=config.weight_tolerance_pct,
    )
    verdicts = {}
    for pair in plan.pairs:
        source = ws.cell(row=row, column=pair.source.index).value
        comparison = compare_field(pair.field, source, record, context)
        verdict = classify(comparison, source)
        target = ws.cell(row=row, column=pair.reference.index)
        if verdict is Verdict.REFERENCE_MISSING:
            target.fill = Fill.REFERENCE_MISSING.pattern()
        else:
            target.value = cell_value(comparison.reference)
            if verdict is Verdict.MATCH:
                target.fill = Fill.MATCH.pattern()
            elif verdict is Verdict.MISMATCH:
                target.fill = Fill.MISMATCH.pattern()
        verdicts[pair.field.key] = verdict

    status = row_status(verdicts, config)
    status_cell = ws.cell(row=row, column=plan.status_column.index)
    status_cell.fill = (Fill.MISMATCH if status is RowStatus.DEVIATION else Fill.MATCH).pattern()
    status_cell.alignment = Alignment(horizontal="center", vertical="center")
    if config.status_text:
        status_cell.value = STATUS_TEXT_DEVIATION if status is RowStatus.DEVIATION else STATUS_TEXT_OK
    return RowResult(row=row, identifier=identifier, status=status, verdicts=verdicts)


def reconcile_sheet(ws, records: dict, config: EngineConfig) -> SheetResult:
    plan = plan_layout(ws.max_column)
    apply_layout(ws, plan)
    identifier_column = plan.locate(IDENTIFIER_COLUMN) if IDENTIFIER_COLUMN.index <= plan.original_max_column else None
    last_column = plan.status_column.index - 1
    result = SheetResult(title=ws.title, plan=plan)
    for row in range(FIRST_DATA_ROW, ws.max_row + 1):
        if row_is_blank(ws, row, last_column):
            continue
        identifier = ""
        if identifier_column is not None:
            identifier = normalize_identifier(ws.cell(row=row, column=identifier_column.index).value)
        if not has_prefix(identifier, config):
            result.rows.append(RowResult(row=row, identifier=identifier, status=RowStatus.UNRECONCILED))
            continue
        record = records.get(identifier, EMPTY_RECORD)
        result.rows.append(reconcile_row(ws, row, plan, record, identifier, config))
    counts = result.counts()
    logger.info(
        "Sheet %s: %d rows ok, %d with deviations, %d unreconciled",
        ws.title,
        counts["rows_ok"],
        counts["rows_deviation"],
        counts["rows_unreconciled"],
    )
    return result


def reconcile_workbook(workbook, lookup: ReferenceLookup, config: Optional[EngineConfig] = None) -> tuple:
    """Transform and reconcile every sheet of ``workbook`` in place.

    All identifiers are resolved in one batch before the first row is
    compared. Returns ``(sheet_results, identifiers_requested, identifiers_found)``.
    """
    config = config or EngineConfig()
    identifiers = collect_identifiers(workbook, config)
    records = lookup.lookup_many(identifiers, config.lookup_concurrency) if identifiers else {}
    sheets = [reconcile_sheet(ws, records, config) for ws in workbook.worksheets]
    return sheets, len(identifiers), len(records)


def reconcile_bytes(data: bytes, lookup: ReferenceLookup, config: Optional[EngineConfig] = None) -> ReconcileResult:
    workbook = load_workbook_bytes(data)
    sheets, requested, found = reconcile_workbook(workbook, lookup, config)
    return ReconcileResult(
        workbook=workbook_to_bytes(workbook),
        sheets=sheets,
        identifiers_requested=requested,
        identifiers_found=found,
    )


def build_structured_summary(
    result: ReconcileResult,
    *,
    input_path: Path,
    output_path: Optional[Path],
    config: EngineConfig,
) -> dict:
    contract = build_contract("mara_doctor.reconcile_summary")
    stats = result.stats()
    warnings = []
    if result.identifiers_requested and not result.identifiers_found:
        warnings.append("The reference lookup returned no data for any identifier.")
    for sheet in result.sheets:
        if len(sheet.plan.pairs) < len(FIELDS):
            warnings.append(f"Sheet '{sheet.title}' has only {len(sheet.plan.pairs)} of {len(FIELDS)} comparison columns.")
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "input_file": str(input_path),
        "output_file": str(output_path) if output_path else None,
        "config": config.to_dict(),
        "sheets": [
            {
                "title": sheet.title,
                "pairs": [
                    {"field": pair.field.key, "label": pair.label, "source": pair.source.letter, "reference": pair.reference.letter}
                    for pair in sheet.plan.pairs
                ],
                "status_column": sheet.plan.status_column.letter,
                "counts": dict(sheet.counts()),
            }
            for sheet in result.sheets
        ],
        "stats": dict(stats),
        "warnings": warnings,
        "run_summary": build_run_summary(
            command="reconcile",
            input_path=input_path,
            output_path=output_path,
            config=config,
            sheets=[sheet.title for sheet in result.sheets],
            metrics={
                "sheets_processed": stats["sheets_processed"],
                "identifiers_requested": stats["identifiers_requested"],
                "identifiers_found": stats["identifiers_found"],
                "rows_ok": stats["rows_ok"],
                "rows_deviation": stats["rows_deviation"],
                "rows_unreconciled": stats["rows_unreconciled"],
            },
            warnings=warnings,
        ),
    }
