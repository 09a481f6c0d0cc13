"""Side-by-side layout for reconciliation sheets.

Every paired field column gets a companion column directly to its right, a
label row is inserted below the header rows and a status column is appended.
The new position of every column is computed up front by :func:`plan_layout`;
:func:`apply_layout` performs the structural edit on an openpyxl worksheet.
"""

from __future__ import annotations

import logging
from copy import copy
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from openpyxl.cell.cell import MergedCell
from openpyxl.styles import Alignment, Font
from openpyxl.utils import column_index_from_string

from mara_doctor.columns import Column
from mara_doctor.shared import (
    FIELDS,
    FIRST_DATA_ROW,
    HEADER_CODE_ROW,
    HEADER_NAME_ROW,
    LABEL_ROW,
    REFERENCE_LABEL,
    SOURCE_LABEL,
    STATUS_CODE,
    STATUS_LABEL,
    STATUS_NAME,
    FieldSpec,
    Fill,
)

logger = logging.getLogger(__name__)

HEADER_ROWS = (1, HEADER_CODE_ROW, HEADER_NAME_ROW)
MERGED_HEADER_ROWS = (HEADER_CODE_ROW, HEADER_NAME_ROW)
STATUS_COLUMN_WIDTH = 16
CENTERED = Alignment(horizontal="center", vertical="center", wrap_text=True)


@dataclass(frozen=True)
class ColumnPair:
    field: FieldSpec
    original: Column
    source: Column
    reference: Column

    @property
    def label(self) -> str:
        return self.field.label


class ColumnRemap:
    """New position of every column that does not get a companion."""

    def __init__(self, mapping: dict[Column, Column]) -> None:
        self._mapping = dict(sorted(mapping.items()))

    def __getitem__(self, column: Column) -> Column:
        return self._mapping[column]

    def __contains__(self, column: object) -> bool:
        return column in self._mapping

    def __len__(self) -> int:
        return len(self._mapping)

    def __iter__(self) -> Iterator[Column]:
        return iter(self._mapping)

    def get(self, column: Column, default: Optional[Column] = None) -> Optional[Column]:
        return self._mapping.get(column, default)

    def items(self):
        return self._mapping.items()

    def letters(self) -> dict[str, str]:
        return {old.letter: new.letter for old, new in self._mapping.items()}

    def is_monotonic(self) -> bool:
        targets = list(self._mapping.values())
        return all(left < right for left, right in zip(targets, targets[1:]))


@dataclass(frozen=True)
class LayoutPlan:
    pairs: tuple
    remap: ColumnRemap
    original_max_column: int

    @property
    def status_column(self) -> Column:
        return Column(self.original_max_column + len(self.pairs) + 1)

    def shift_index(self, index: int) -> int:
        return index + sum(1 for pair in self.pairs if pair.original.index < index)

    def locate(self, original: Column) -> Column:
        """New position of an original column, paired or not."""
        for pair in self.pairs:
            if pair.original == original:
                return pair.source
        found = self.remap.get(original)
        if found is not None:
            return found
        return Column(self.shift_index(original.index))

    def pair_for(self, key: str) -> Optional[ColumnPair]:
        return next((pair for pair in self.pairs if pair.field.key == key), None)


def plan_layout(max_column: int, fields: Iterable[FieldSpec] = FIELDS) -> LayoutPlan:
    ordered = sorted(fields, key=lambda spec: spec.column)
    pairs: list[ColumnPair] = []
    inserted = 0
    for spec in ordered:
        if spec.column.index > max_column:
            logger.info("Sheet has %d columns; skipping pair for %s (%s)", max_column, spec.label, spec.column)
            continue
        source = spec.column.shifted(inserted)
        pairs.append(ColumnPair(field=spec, original=spec.column, source=source, reference=source.next()))
        inserted += 1

    paired = {pair.original.index for pair in pairs}
    mapping = {}
    for index in range(1, max_column + 1):
        if index in paired:
            continue
        offset = sum(1 for original in paired if original < index)
        mapping[Column(index)] = Column(index + offset)
    return LayoutPlan(pairs=tuple(pairs), remap=ColumnRemap(mapping), original_max_column=max_column)


def _snapshot_columns(ws) -> dict[int, tuple]:
    columns = {}
    for key, dim in ws.column_dimensions.items():
        start = dim.min or column_index_from_string(key)
        end = dim.max or start
        if dim.width is None and not dim.hidden:
            continue
        for index in range(start, end + 1):
            columns[index] = (dim.width, dim.hidden)
    return columns


def _restore_columns(ws, plan: LayoutPlan, snapshot: dict[int, tuple]) -> None:
    for key in list(ws.column_dimensions.keys()):
        del ws.column_dimensions[key]
    for index, (width, hidden) in snapshot.items():
        target = ws.column_dimensions[Column(plan.shift_index(index)).letter]
        if width is not None:
            target.width = width
        target.hidden = hidden
    for pair in plan.pairs:
        width, _ = snapshot.get(pair.original.index, (None, False))
        if width is not None:
            ws.column_dimensions[pair.reference.letter].width = width
    ws.column_dimensions[plan.status_column.letter].width = STATUS_COLUMN_WIDTH


def _shift_row_heights(ws) -> None:
    moved = {}
    for index in sorted(list(ws.row_dimensions.keys()), reverse=True):
        if index < LABEL_ROW:
            continue
        dim = ws.row_dimensions[index]
        moved[index + 1] = (dim.height, dim.hidden)
        del ws.row_dimensions[index]
    for index, (height, hidden) in moved.items():
        ws.row_dimensions[index].height = height
        ws.row_dimensions[index].hidden = hidden


def _shift_row(row: int) -> int:
    return row + 1 if row >= LABEL_ROW else row


def _remerge(ws, plan: LayoutPlan, bounds: list[tuple]) -> set:
    """Re-create the original merged ranges at their new positions.

    A header merge ending on a paired column is widened to include the
    companion column. Merges reaching from the header rows into the data
    are dropped since the label row is inserted between them. Returns the
    occupied header cells.
    """
    sources = {pair.original.index: pair for pair in plan.pairs}
    occupied = set()
    for min_col, min_row, max_col, max_row in bounds:
        if min_row < LABEL_ROW <= max_row:
            logger.warning(
                "Sheet %s: dropping merge %s%d:%s%d across the label row", ws.title, Column(min_col).letter, min_row, Column(max_col).letter, max_row
            )
            continue
        new_min_col = plan.shift_index(min_col)
        new_max_col = plan.shift_index(max_col)
        if max_col in sources and max_row < LABEL_ROW:
            new_max_col = sources[max_col].reference.index
        new_min_row, new_max_row = _shift_row(min_row), _shift_row(max_row)
        if (new_min_col, new_min_row) == (new_max_col, new_max_row):
            continue
        ws.merge_cells(start_row=new_min_row, start_column=new_min_col, end_row=new_max_row, end_column=new_max_col)
        for row in range(new_min_row, new_max_row + 1):
            for col in range(new_min_col, new_max_col + 1):
                occupied.add((row, col))
    return occupied


def _copy_header(ws, pair: ColumnPair) -> None:
    for row in HEADER_ROWS:
        source = ws.cell(row=row, column=pair.source.index)
        target = ws.cell(row=row, column=pair.reference.index)
        if source.has_style:
            target._style = copy(source._style)
        if row in MERGED_HEADER_ROWS and not isinstance(target, MergedCell):
            target.value = source.value


def _merge_pair_headers(ws, pair: ColumnPair, occupied: set) -> None:
    for row in MERGED_HEADER_ROWS:
        cells = {(row, pair.source.index), (row, pair.reference.index)}
        if cells <= occupied:
            continue
        if cells & occupied:
            logger.warning(
                "Sheet %s: header %s%d overlaps an existing merge; %s%d stays unmerged",
                ws.title,
                pair.source.letter,
                row,
                pair.reference.letter,
                row,
            )
            continue
        ws.merge_cells(start_row=row, start_column=pair.source.index, end_row=row, end_column=pair.reference.index)
        ws.cell(row=row, column=pair.source.index).alignment = CENTERED
        occupied.update(cells)


def style_label_cell(cell, reference_side: bool) -> None:
    cell.fill = (Fill.REFERENCE_LABEL if reference_side else Fill.SOURCE_LABEL).pattern()
    cell.font = Font(bold=True)
    cell.alignment = CENTERED


def apply_layout(ws, plan: LayoutPlan) -> None:
    """Insert companion columns, the label row and the status column into ``ws``."""
    bounds = [tuple(merged.bounds) for merged in ws.merged_cells.ranges]
    for merged in list(ws.merged_cells.ranges):
        ws.unmerge_cells(str(merged))
    columns = _snapshot_columns(ws)

    # right to left so earlier insertion points stay valid
    for pair in reversed(plan.pairs):
        ws.insert_cols(pair.original.index + 1)
    ws.insert_rows(LABEL_ROW)
    _shift_row_heights(ws)

    occupied = _remerge(ws, plan, bounds)
    for pair in plan.pairs:
        _copy_header(ws, pair)
        _merge_pair_headers(ws, pair, occupied)
        source_label = ws.cell(row=LABEL_ROW, column=pair.source.index, value=SOURCE_LABEL)
        reference_label = ws.cell(row=LABEL_ROW, column=pair.reference.index, value=REFERENCE_LABEL)
        style_label_cell(source_label, reference_side=False)
        style_label_cell(reference_label, reference_side=True)

    status = plan.status_column
    ws.cell(row=HEADER_CODE_ROW, column=status.index, value=STATUS_CODE).alignment = CENTERED
    ws.cell(row=HEADER_NAME_ROW, column=status.index, value=STATUS_NAME).alignment = CENTERED
    style_label_cell(ws.cell(row=LABEL_ROW, column=status.index, value=STATUS_LABEL), reference_side=False)

    _restore_columns(ws, plan, columns)
    last_row = max(ws.max_row, LABEL_ROW)
    ws.auto_filter.ref = f"A{LABEL_ROW}:{status.letter}{last_row}"
    ws.freeze_panes = f"A{FIRST_DATA_ROW}"
    logger.debug("Sheet %s: %d pairs, status column %s", ws.title, len(plan.pairs), status)
