from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Union

from mara_doctor.lookup import ReferenceRecord, record_value
from mara_doctor.normalizers import (
    code_segments,
    map_classification_to_code,
    normalize_part_number,
    normalize_text,
    parse_dimensions,
    parse_number,
    parse_weight,
)
from mara_doctor.shared import DEFAULT_IDENTIFIER_PREFIX, FieldKind, FieldSpec, is_blank, text

WEIGHT_ABS_TOLERANCE = 1e-9

ReferenceValue = Union[str, float, None]


@dataclass(frozen=True)
class Comparison:
    """Outcome of one field comparison.

    ``reference`` is ``None`` when the lookup had nothing usable for the
    field; ``equal`` is only meaningful when a reference value exists.
    """

    reference: ReferenceValue
    equal: bool

    @property
    def has_reference(self) -> bool:
        return self.reference is not None


NO_REFERENCE = Comparison(None, False)


@dataclass(frozen=True)
class CompareContext:
    identifier: str = ""
    identifier_prefix: str = DEFAULT_IDENTIFIER_PREFIX
    weight_tolerance_pct: float = 0.0


def eq_text(source, reference) -> bool:
    return normalize_text(source) == normalize_text(reference)


def eq_part(source, reference) -> bool:
    left = normalize_part_number(source)
    return bool(left) and left == normalize_part_number(reference)


def eq_code(source, reference_code: str) -> bool:
    segments = code_segments(source)
    return bool(segments) and segments[0] == reference_code.upper()


def eq_weight(source, reference, tolerance_pct: float = 0.0) -> bool:
    left = parse_weight(source)
    right = parse_weight(reference)
    if left is None or right is None:
        return False
    diff = round(abs(left - right), 9)
    if diff <= WEIGHT_ABS_TOLERANCE:
        return True
    return tolerance_pct > 0 and diff <= abs(right) * tolerance_pct / 100.0


def eq_dimension(source, reference, kind: str) -> bool:
    left = parse_number(source)
    right = parse_dimensions(reference).member(kind)
    return left is not None and right is not None and left == right


def compare_text(spec: FieldSpec, source, record: ReferenceRecord, context: CompareContext) -> Comparison:
    reference = record_value(record, spec.reference_field)
    if reference is None:
        return NO_REFERENCE
    return Comparison(reference, eq_text(text(source), reference))


def compare_identifier(spec: FieldSpec, source, record: ReferenceRecord, context: CompareContext) -> Comparison:
    # a source value that already is a canonical identifier wins over any alternate number
    prefix = context.identifier_prefix.upper()
    if prefix and text(source).strip().upper().startswith(prefix):
        return Comparison(context.identifier or text(source).strip(), True)
    alternate = record_value(record, spec.reference_field)
    reference = alternate if alternate is not None else (context.identifier or None)
    if reference is None:
        return NO_REFERENCE
    candidate = source if not is_blank(source) else context.identifier
    return Comparison(reference, eq_part(candidate, reference))


def compare_composite_code(spec: FieldSpec, source, record: ReferenceRecord, context: CompareContext) -> Comparison:
    code = map_classification_to_code(record_value(record, spec.reference_field))
    if code is None:
        return NO_REFERENCE
    return Comparison(code, eq_code(source, code))


def compare_weight(spec: FieldSpec, source, record: ReferenceRecord, context: CompareContext) -> Comparison:
    raw = record_value(record, spec.reference_field)
    weight = parse_weight(raw)
    if weight is None:
        return NO_REFERENCE
    return Comparison(weight, eq_weight(source, raw, context.weight_tolerance_pct))


def compare_dimension(spec: FieldSpec, source, record: ReferenceRecord, context: CompareContext) -> Comparison:
    raw = record_value(record, spec.reference_field)
    member = parse_dimensions(raw).member(spec.kind.value)
    if member is None:
        return NO_REFERENCE
    return Comparison(member, eq_dimension(source, raw, spec.kind.value))


Comparator = Callable[[FieldSpec, object, ReferenceRecord, CompareContext], Comparison]

COMPARATORS: dict[FieldKind, Comparator] = {
    FieldKind.TEXT: compare_text,
    FieldKind.IDENTIFIER: compare_identifier,
    FieldKind.COMPOSITE_CODE: compare_composite_code,
    FieldKind.WEIGHT: compare_weight,
    FieldKind.LENGTH: compare_dimension,
    FieldKind.WIDTH: compare_dimension,
    FieldKind.HEIGHT: compare_dimension,
}


def compare_field(spec: FieldSpec, source, record: ReferenceRecord, context: Optional[CompareContext] = None) -> Comparison:
    return COMPARATORS[spec.kind](spec, source, record, context or CompareContext())
