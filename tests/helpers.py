from __future__ import annotations

import io
from pathlib import Path

from openpyxl import Workbook
from openpyxl.utils import column_index_from_string

HEADER_NAMES = {
    "A": "Material",
    "B": "Werk",
    "C": "Materialkurztext",
    "D": "Basismengeneinheit",
    "E": "Herstellartikelnummer",
    "F": "Hersteller",
    "G": "Warengruppe",
    "H": "Materialart",
    "I": "Sparte",
    "J": "Einkäufergruppe",
    "N": "Fert./Prüfhinweis",
    "P": "Werkstoff",
    "R": "Bruttogewicht",
    "S": "Nettogewicht",
    "T": "Gewichtseinheit",
    "U": "Länge",
    "V": "Breite",
    "W": "Höhe",
    "Z": "A2V",
}

IDENTIFIER = "A2V12345678"

VALID_ROW = {
    "A": "10000001",
    "B": "0001",
    "C": "Schraube M8x40",
    "D": "ST",
    "E": IDENTIFIER,
    "F": "Muster GmbH",
    "G": "2101",
    "H": "ERSA",
    "I": "01",
    "J": "E01",
    "N": "OHNE/N/N/N/N",
    "P": "Stahl",
    "R": 5.5,
    "S": 5.2,
    "T": "KG",
    "U": 40,
    "V": 8,
    "W": 8,
    "Z": IDENTIFIER,
}

MATCHING_REFERENCE = {
    "A2V": IDENTIFIER,
    "Produkttitel": "schraube  M8x40",
    "Weitere Artikelnummer": "Nicht gefunden",
    "Materialklassifizierung": "ohne",
    "Werkstoff": "STAHL",
    "Gewicht": "5,2 kg",
    "Abmessung": "40 x 8 x 8 mm",
}


def export_row(**overrides) -> dict:
    row = dict(VALID_ROW)
    row.update(overrides)
    return row


def build_export(rows: list[dict], *, title: str = "MARA", last_column: str = "Z") -> Workbook:
    """Raw MARA export: banner row, code row, name row, data from row 4."""
    workbook = Workbook()
    ws = workbook.active
    ws.title = title
    ws["B1"] = "MARA Stammdaten"
    ws[f"{last_column}1"] = "Export"
    for letter, name in HEADER_NAMES.items():
        if column_index_from_string(letter) > column_index_from_string(last_column):
            continue
        ws[f"{letter}2"] = letter
        ws[f"{letter}3"] = name
    for offset, row in enumerate(rows):
        for letter, value in row.items():
            ws[f"{letter}{4 + offset}"] = value
    return workbook


def workbook_bytes(workbook: Workbook) -> bytes:
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def save_export(path: Path, rows: list[dict], **kwargs) -> Path:
    build_export(rows, **kwargs).save(path)
    return path


def reference_csv(records: list[dict]) -> bytes:
    headers = list(records[0])
    lines = [";".join(headers)]
    lines.extend(";".join(str(record.get(name, "")) for name in headers) for record in records)
    return ("\n".join(lines) + "\n").encode("utf-8")


def fill_rgb(cell) -> str | None:
    if cell.fill is None or cell.fill.fill_type != "solid":
        return None
    return cell.fill.fgColor.rgb
