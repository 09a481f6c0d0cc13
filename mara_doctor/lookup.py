"""Reference-record lookups.

A lookup turns a set of identifiers into ``identifier -> ReferenceRecord``.
Records map reference field names to :class:`LookupValue`; the "Nicht
gefunden" marker of the product lookup is translated into ``NOT_FOUND`` here
so that nothing downstream compares against that literal.
"""

from __future__ import annotations

import io
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Protocol
from urllib.parse import quote

import chardet
import pandas as pd
import requests

from mara_doctor.shared import NOT_FOUND_MARKERS, REFERENCE_FIELDS, is_blank

logger = logging.getLogger(__name__)

TABLE_SUFFIXES = {".csv", ".txt", ".xlsx", ".xlsm", ".xls", ".ods"}
DEFAULT_IDENTIFIER_HEADERS = ("A2V", "A2V-Nummer", "Identifier", "identifier", "Materialnummer")


@dataclass(frozen=True)
class LookupValue:
    found: bool
    value: Optional[str] = None

    @classmethod
    def of(cls, raw: Any) -> "LookupValue":
        if raw is None:
            return NOT_FOUND
        try:
            if pd.isna(raw):
                return NOT_FOUND
        except (TypeError, ValueError):
            pass
        value = str(raw).strip()
        if not value or value.casefold() in NOT_FOUND_MARKERS:
            return NOT_FOUND
        return cls(True, value)


NOT_FOUND = LookupValue(False)

ReferenceRecord = Mapping[str, LookupValue]
EMPTY_RECORD: ReferenceRecord = {}


def build_record(raw: Mapping[str, Any]) -> dict[str, LookupValue]:
    return {field: LookupValue.of(raw.get(field)) for field in REFERENCE_FIELDS if field in raw}


def record_value(record: ReferenceRecord, field: str) -> Optional[str]:
    entry = record.get(field, NOT_FOUND)
    return entry.value if entry.found else None


def normalize_identifier(value) -> str:
    if is_blank(value):
        return ""
    return str(value).strip().upper()


class ReferenceLookup(Protocol):
    def lookup_many(self, identifiers: Iterable[str], concurrency: int) -> dict[str, ReferenceRecord]:
        ...


class HttpReferenceLookup:
    """Fetch one JSON record per identifier from ``<base_url>/<identifier>``.

    Requests run on a thread pool bounded by ``concurrency``. A failed or
    non-JSON response degrades to an empty record for that identifier.
    Without an injected ``session`` every worker thread opens its own
    ``requests.Session``; those are closed when ``lookup_many`` returns.
    """

    def __init__(self, base_url: str, *, timeout: float = 30.0, session: Optional[requests.Session] = None) -> None:
        if not base_url.strip():
            raise ValueError("Lookup URL must not be empty.")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session
        self._local = threading.local()
        self._opened: list[requests.Session] = []
        self._lock = threading.Lock()

    def url_for(self, identifier: str) -> str:
        return f"{self.base_url}/{quote(identifier, safe='')}"

    def _thread_session(self) -> requests.Session:
        if self.session is not None:
            return self.session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
            with self._lock:
                self._opened.append(session)
        return session

    def close(self) -> None:
        with self._lock:
            opened, self._opened = self._opened, []
        for session in opened:
            session.close()
        self._local = threading.local()

    def fetch(self, identifier: str) -> dict[str, LookupValue]:
        try:
            response = self._thread_session().get(self.url_for(identifier), timeout=self.timeout)
            if response.status_code == 404:
                logger.debug("No reference record for %s", identifier)
                return {}
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Lookup failed for %s: %s", identifier, exc)
            return {}
        if not isinstance(payload, dict):
            logger.warning("Lookup for %s returned %s instead of an object", identifier, type(payload).__name__)
            return {}
        return build_record(payload)

    def lookup_many(self, identifiers: Iterable[str], concurrency: int) -> dict[str, ReferenceRecord]:
        wanted = sorted({item for item in identifiers if item})
        if not wanted:
            return {}
        workers = max(1, min(concurrency, len(wanted)))
        try:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                records = list(pool.map(self.fetch, wanted))
        finally:
            self.close()
        found = {identifier: record for identifier, record in zip(wanted, records) if record}
        logger.info("Looked up %d identifiers, %d with reference data", len(wanted), len(found))
        return found


class TableReferenceLookup:
    """Serve reference records from a CSV or spreadsheet table.

    The table needs an identifier column (``A2V`` by default) and any of the
    reference field columns; missing columns simply yield no value.
    """

    def __init__(self, frame: pd.DataFrame, identifier_column: Optional[str] = None) -> None:
        column = identifier_column or next((name for name in DEFAULT_IDENTIFIER_HEADERS if name in frame.columns), None)
        if column is None or column not in frame.columns:
            raise ValueError(
                "Reference table has no identifier column. "
                f"Expected one of: {', '.join(DEFAULT_IDENTIFIER_HEADERS)}"
            )
        self.records: dict[str, dict[str, LookupValue]] = {}
        for raw in frame.to_dict(orient="records"):
            identifier = normalize_identifier(raw.get(column))
            if not identifier:
                continue
            self.records[identifier] = build_record(raw)

    @classmethod
    def from_path(cls, path: Path, identifier_column: Optional[str] = None) -> "TableReferenceLookup":
        return cls.from_bytes(path.read_bytes(), path.suffix, identifier_column=identifier_column)

    @classmethod
    def from_bytes(cls, data: bytes, suffix: str, identifier_column: Optional[str] = None) -> "TableReferenceLookup":
        suffix = suffix.lower()
        if suffix not in TABLE_SUFFIXES:
            raise ValueError(f"Unsupported reference table type '{suffix}'. Supported: {', '.join(sorted(TABLE_SUFFIXES))}")
        if not data:
            raise ValueError("Reference table is empty.")
        try:
            if suffix in {".csv", ".txt"}:
                frame = read_reference_csv(data)
            else:
                frame = pd.read_excel(io.BytesIO(data), dtype=str, engine="odf" if suffix == ".ods" else None)
        except ImportError:
            raise
        except Exception as exc:
            raise ValueError(f"Could not read reference table: {exc}") from exc
        frame.columns = [str(name).strip() for name in frame.columns]
        return cls(frame, identifier_column=identifier_column)

    def lookup_many(self, identifiers: Iterable[str], concurrency: int) -> dict[str, ReferenceRecord]:
        return {identifier: self.records[identifier] for identifier in identifiers if identifier in self.records}


def read_reference_csv(data: bytes) -> pd.DataFrame:
    detected = chardet.detect(data[:100_000]).get("encoding") or "utf-8"
    try:
        decoded = data.decode(detected)
    except (LookupError, UnicodeDecodeError):
        decoded = data.decode("cp1252", errors="replace")
    decoded = decoded.lstrip("\ufeff")
    return pd.read_csv(io.StringIO(decoded), sep=None, engine="python", dtype=str, keep_default_na=False)
