"""Versioned contracts for the JSON summaries mara-doctor writes.

Every summary ends in a ``run_summary`` block. Its ``status`` says what the
CLI exit code says: ``ok``, ``findings`` when rows deviate from the reference
or are incomplete, ``warning`` when there are no findings but the run had
something worth a look (no reference data, missing comparison columns).
Two summaries written with the same engine settings share a
``config_fingerprint``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from mara_doctor import __version__ as TOOL_VERSION
from mara_doctor.config import EngineConfig

TOOL_NAME = "mara-doctor"

CONTRACT_VERSIONS = {
    "mara_doctor.reconcile_summary": "1.1.0",
    "mara_doctor.completeness_summary": "1.1.0",
    "mara_doctor.stats": "1.0.0",
}

# metrics that make a run end with findings
FINDING_METRICS = ("rows_deviation", "rows_incomplete")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    return {"name": name, "version": CONTRACT_VERSIONS[name]}


def config_fingerprint(config: EngineConfig) -> str:
    canonical = json.dumps(config.to_dict(), sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:12]


def run_status(metrics: Mapping[str, Any], warnings: Iterable[str] = ()) -> str:
    if any(metrics.get(key, 0) for key in FINDING_METRICS):
        return "findings"
    return "warning" if list(warnings) else "ok"


def build_run_summary(
    *,
    command: str,
    input_path: Path,
    output_path: Optional[Path] = None,
    metrics: Optional[dict[str, Any]] = None,
    warnings: Optional[list[str]] = None,
    config: Optional[EngineConfig] = None,
    sheets: Iterable[str] = (),
) -> dict[str, Any]:
    metrics = dict(metrics or {})
    warnings = list(warnings or [])
    return {
        "tool": TOOL_NAME,
        "tool_version": TOOL_VERSION,
        "command": command,
        "status": run_status(metrics, warnings),
        "generated_at": utc_now_iso(),
        "input_file": str(input_path),
        "output_file": str(output_path) if output_path else None,
        "sheets": list(sheets),
        "config_fingerprint": config_fingerprint(config) if config is not None else None,
        "warnings_count": len(warnings),
        "warnings": warnings,
        "metrics": metrics,
    }
