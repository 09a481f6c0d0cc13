from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from openpyxl.styles import PatternFill

from mara_doctor.columns import Column

# Reconciliation sheet rows (after the label row has been inserted)
HEADER_CODE_ROW = 2
HEADER_NAME_ROW = 3
LABEL_ROW = 4
FIRST_DATA_ROW = LABEL_ROW + 1

# Completeness report rows (raw export, no label row)
QUALITY_HEADER_ROW = 3
QUALITY_FIRST_DATA_ROW = 4
QUALITY_SHEET_TITLE = "Qualitätsbericht"

IDENTIFIER_COLUMN = Column.from_letter("Z")
DEFAULT_IDENTIFIER_PREFIX = "A2V"

SOURCE_LABEL = "DB-Wert"
REFERENCE_LABEL = "Web-Wert"
STATUS_LABEL = "Status"
STATUS_CODE = "AMP"
STATUS_NAME = "Ampelbewertung"
STATUS_TEXT_OK = "OK"
STATUS_TEXT_DEVIATION = "Abweichung"


class Fill(str, Enum):
    """ARGB fill colours written by both engines.

    Statistics are computed by re-reading these colours from the output, so
    the values are part of the output format and must not change.
    """

    MATCH = "FFC6EFCE"
    MISMATCH = "FFFFC7CE"
    REFERENCE_MISSING = "FFFFE0B2"
    SOURCE_LABEL = "FFF2F2F2"
    REFERENCE_LABEL = "FFDDEBF7"
    COMPLETE = "FFCCFFCC"
    INVALID = "FFFFCCCC"

    def pattern(self) -> PatternFill:
        return PatternFill("solid", fgColor=self.value)


class FieldKind(str, Enum):
    TEXT = "text"
    IDENTIFIER = "identifier"
    COMPOSITE_CODE = "composite_code"
    WEIGHT = "weight"
    LENGTH = "length"
    WIDTH = "width"
    HEIGHT = "height"


@dataclass(frozen=True)
class FieldSpec:
    key: str
    column: Column
    label: str
    kind: FieldKind
    reference_field: str


# Reference record field names as delivered by the product lookup
REF_TITLE = "Produkttitel"
REF_ALT_PART_NUMBER = "Weitere Artikelnummer"
REF_CLASSIFICATION = "Materialklassifizierung"
REF_MATERIAL = "Werkstoff"
REF_WEIGHT = "Gewicht"
REF_DIMENSIONS = "Abmessung"
REFERENCE_FIELDS = (
    REF_TITLE,
    REF_ALT_PART_NUMBER,
    REF_CLASSIFICATION,
    REF_MATERIAL,
    REF_WEIGHT,
    REF_DIMENSIONS,
)
NOT_FOUND_MARKERS = {"nicht gefunden", "not found"}

# Ordered by column; the layout planner relies on this order.
FIELDS = (
    FieldSpec("title", Column.from_letter("C"), "Materialkurztext", FieldKind.TEXT, REF_TITLE),
    FieldSpec("part_number", Column.from_letter("E"), "Herstellartikelnummer", FieldKind.IDENTIFIER, REF_ALT_PART_NUMBER),
    FieldSpec("inspection_code", Column.from_letter("N"), "Fert./Prüfhinweis", FieldKind.COMPOSITE_CODE, REF_CLASSIFICATION),
    FieldSpec("material", Column.from_letter("P"), "Werkstoff", FieldKind.TEXT, REF_MATERIAL),
    FieldSpec("net_weight", Column.from_letter("S"), "Nettogewicht", FieldKind.WEIGHT, REF_WEIGHT),
    FieldSpec("length", Column.from_letter("U"), "Länge", FieldKind.LENGTH, REF_DIMENSIONS),
    FieldSpec("width", Column.from_letter("V"), "Breite", FieldKind.WIDTH, REF_DIMENSIONS),
    FieldSpec("height", Column.from_letter("W"), "Höhe", FieldKind.HEIGHT, REF_DIMENSIONS),
)
FIELDS_BY_KEY = {spec.key: spec for spec in FIELDS}
DEFAULT_REQUIRED_FIELDS = frozenset({"part_number", "inspection_code", "net_weight", "length", "width", "height"})

# Fert./Prüfhinweis: five slash-delimited segments, one allowed set per position
CODE_SEGMENTS = (
    frozenset({"OHNE", "1", "2", "3"}),
    frozenset({"N", "3.2", "3.1", "2.2", "2.1"}),
    frozenset({"N", "CL1", "CL2", "CL3"}),
    frozenset({"N", "J"}),
    frozenset({"N", "A1", "A2", "A3", "A5", "A+"}),
)

# Completeness: mandatory columns B..J, N, R..W
MANDATORY_COLUMN_RANGES = (
    (Column.from_letter("B"), Column.from_letter("J")),
    (Column.from_letter("N"), Column.from_letter("N")),
    (Column.from_letter("R"), Column.from_letter("W")),
)

HEADER_CODE = "Fert./Prüfhinweis"
HEADER_LENGTH = "Länge"
HEADER_WIDTH = "Breite"
HEADER_HEIGHT = "Höhe"
HEADER_DESCRIPTION = "Materialkurztext"
HEADER_NET_WEIGHT = "Nettogewicht"
HEADER_GROSS_WEIGHT = "Bruttogewicht"

DEFAULT_QUALITY_BANNERS = (
    ("B1:X1", "DB AG SAP R/3 K MARA Stammdaten Stand 20.Mai 2025"),
    ("Y1", "SAP Klassifizierung aus Okt24"),
    ("Z1:AB1", "Zusatz Herstellerdaten aus Abfragen in 2024"),
)


def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def text(value) -> str:
    if value is None:
        return ""
    return str(value)
