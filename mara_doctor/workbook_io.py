from __future__ import annotations

import io
import os
import tempfile
import zipfile
from pathlib import Path

from openpyxl import Workbook, load_workbook

MODERN_WORKBOOK_FORMATS = {".xlsx", ".xlsm"}


def is_encrypted_ooxml(data: bytes) -> bool:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = set(archive.namelist())
    except zipfile.BadZipFile:
        # encrypted OOXML is an OLE container, not a zip
        return data[:8] == b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" and b"E\x00n\x00c\x00r\x00y\x00p\x00t\x00e\x00d\x00P\x00a\x00c\x00k\x00a\x00g\x00e" in data
    return {"EncryptedPackage", "EncryptionInfo"}.issubset(names)


def load_workbook_bytes(data: bytes) -> Workbook:
    if not data:
        raise ValueError("No file uploaded.")
    if is_encrypted_ooxml(data):
        raise ValueError("Password-protected / encrypted OOXML workbooks are not supported")
    try:
        workbook = load_workbook(io.BytesIO(data))
    except Exception as exc:
        raise ValueError(f"Could not read workbook: {exc}") from exc
    if not workbook.worksheets:
        raise ValueError("No worksheet found in workbook.")
    return workbook


def load_workbook_path(path: Path) -> Workbook:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if path.suffix.lower() not in MODERN_WORKBOOK_FORMATS:
        raise ValueError(f"Expected an .xlsx/.xlsm file, got: {path.suffix or '[missing extension]'}")
    return load_workbook_bytes(path.read_bytes())


def workbook_to_bytes(workbook: Workbook) -> bytes:
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def write_bytes_atomic(data: bytes, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{output_path.stem}.", suffix=output_path.suffix, dir=str(output_path.parent))
    os.close(fd)
    temp_path = Path(tmp_name)
    try:
        temp_path.write_bytes(data)
        os.replace(temp_path, output_path)
    finally:
        if temp_path.exists():
            temp_path.unlink()
