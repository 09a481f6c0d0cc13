"""Engine configuration and logging setup.

The engines never read the environment. The CLI and the web UI build an
:class:`EngineConfig` (defaults, a JSON file, or ``MARA_DOCTOR_*`` variables)
and pass it in explicitly.

Environment variables
---------------------
``MARA_DOCTOR_LOOKUP_CONCURRENCY``, ``MARA_DOCTOR_LOOKUP_TIMEOUT``,
``MARA_DOCTOR_WEIGHT_TOLERANCE_PCT``, ``MARA_DOCTOR_STATUS_TEXT``,
``MARA_DOCTOR_FLAG_REQUIRED_SOURCE_MISSING``, ``MARA_DOCTOR_REQUIRED_FIELDS``
(comma separated field keys) and ``MARA_DOCTOR_IDENTIFIER_PREFIX``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from mara_doctor.shared import DEFAULT_IDENTIFIER_PREFIX, DEFAULT_QUALITY_BANNERS, DEFAULT_REQUIRED_FIELDS, FIELDS_BY_KEY

ENV_PREFIX = "MARA_DOCTOR_"
TRUE_VALUES = {"1", "true", "yes", "on", "ja"}
FALSE_VALUES = {"0", "false", "no", "off", "nein", ""}


@dataclass(frozen=True)
class EngineConfig:
    lookup_concurrency: int = 4
    lookup_timeout: float = 30.0
    weight_tolerance_pct: float = 0.0
    status_text: bool = False
    flag_required_source_missing: bool = False
    required_fields: frozenset = DEFAULT_REQUIRED_FIELDS
    identifier_prefix: str = DEFAULT_IDENTIFIER_PREFIX
    quality_banners: tuple = field(default=DEFAULT_QUALITY_BANNERS)

    def __post_init__(self) -> None:
        if self.lookup_concurrency < 1:
            raise ValueError("lookup_concurrency must be at least 1")
        if self.lookup_timeout <= 0:
            raise ValueError("lookup_timeout must be positive")
        if self.weight_tolerance_pct < 0:
            raise ValueError("weight_tolerance_pct must not be negative")
        unknown = set(self.required_fields) - set(FIELDS_BY_KEY)
        if unknown:
            raise ValueError(f"Unknown required fields: {', '.join(sorted(unknown))}")
        object.__setattr__(self, "required_fields", frozenset(self.required_fields))
        object.__setattr__(self, "quality_banners", tuple(tuple(item) for item in self.quality_banners))

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "EngineConfig":
        known = {item.name for item in fields(cls)}
        unknown = set(payload) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**dict(payload))

    @classmethod
    def from_json_file(cls, path: Path) -> "EngineConfig":
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ValueError(f"Could not read config: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValueError("Config root must be a JSON object.")
        return cls.from_mapping(payload)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, base: Optional["EngineConfig"] = None) -> "EngineConfig":
        env = os.environ if environ is None else environ
        config = base or cls()
        overrides: dict[str, Any] = {}
        parsers = {
            "lookup_concurrency": int,
            "lookup_timeout": float,
            "weight_tolerance_pct": float,
            "status_text": parse_bool,
            "flag_required_source_missing": parse_bool,
            "required_fields": lambda raw: frozenset(part.strip() for part in raw.split(",") if part.strip()),
            "identifier_prefix": str.strip,
        }
        for name, parse in parsers.items():
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is None:
                continue
            try:
                overrides[name] = parse(raw)
            except ValueError as exc:
                raise ValueError(f"Invalid {ENV_PREFIX + name.upper()}={raw!r}: {exc}") from exc
        return replace(config, **overrides) if overrides else config

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["required_fields"] = sorted(self.required_fields)
        payload["quality_banners"] = [list(item) for item in self.quality_banners]
        return payload


def parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ValueError(f"expected a boolean, got {raw!r}")


class LabeledFormatter(logging.Formatter):
    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        return f"{label} {record.getMessage()}"


def setup_logging(*, verbose: bool = False, quiet: bool = False) -> logging.Logger:
    """Attach one labelled stderr handler to the package logger. Idempotent."""
    logger = logging.getLogger("mara_doctor")
    level = logging.DEBUG if verbose else (logging.WARNING if quiet else logging.INFO)
    logger.setLevel(level)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger
