from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from mara_doctor import __version__ as TOOL_VERSION
from mara_doctor import completeness, reconcile
from mara_doctor.config import EngineConfig, setup_logging
from mara_doctor.lookup import HttpReferenceLookup, TableReferenceLookup
from mara_doctor.stats import render_stats_text, workbook_stats
from mara_doctor.workbook_io import MODERN_WORKBOOK_FORMATS, load_workbook_path, write_bytes_atomic

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_FINDINGS = 3

OUTPUT_ROOT = "mara-doctor-output"
DEFAULT_CONFIG_PATH = "mara-doctor.json"


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class MaraDoctorArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def timestamp_token() -> str:
    override = os.environ.get("MARA_DOCTOR_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(input_path: Path) -> Path:
    return Path.cwd() / OUTPUT_ROOT / f"{input_path.stem}-{timestamp_token()}"


def determine_output_dir(args: argparse.Namespace, input_path: Path) -> Path:
    if getattr(args, "out_dir", None):
        return Path(args.out_dir)
    return default_output_dir(input_path)


def write_text(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def remove_generated_at(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: "1970-01-01T00:00:00Z" if key == "generated_at" else remove_generated_at(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [remove_generated_at(item) for item in value]
    return value


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def safe_output_path(explicit: Path | None, default_path: Path) -> Path:
    path = explicit or default_path
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, (ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def require_workbook(input_path: Path) -> None:
    suffix = input_path.suffix.lower()
    if suffix not in MODERN_WORKBOOK_FORMATS:
        raise CliError(
            f"Unsupported file type '{suffix or '[missing extension]'}'. "
            f"Supported: {', '.join(sorted(MODERN_WORKBOOK_FORMATS))}",
            EXIT_COMMAND_ERROR,
        )


def load_engine_config(args: argparse.Namespace) -> EngineConfig:
    base = EngineConfig.from_json_file(Path(args.config)) if getattr(args, "config", None) else EngineConfig()
    config = EngineConfig.from_env(base=base)
    overrides: dict[str, Any] = {}
    if getattr(args, "concurrency", None) is not None:
        overrides["lookup_concurrency"] = args.concurrency
    if getattr(args, "timeout", None) is not None:
        overrides["lookup_timeout"] = args.timeout
    if getattr(args, "weight_tolerance", None) is not None:
        overrides["weight_tolerance_pct"] = args.weight_tolerance
    if getattr(args, "status_text", False):
        overrides["status_text"] = True
    if getattr(args, "flag_source_missing", False):
        overrides["flag_required_source_missing"] = True
    return replace(config, **overrides) if overrides else config


def build_lookup(args: argparse.Namespace, config: EngineConfig):
    if args.reference:
        reference_path = Path(args.reference)
        if not reference_path.exists():
            raise CliError(f"Reference table not found: {reference_path}", EXIT_COMMAND_ERROR)
        return TableReferenceLookup.from_path(reference_path, identifier_column=args.identifier_column)
    return HttpReferenceLookup(args.lookup_url, timeout=config.lookup_timeout)


def render_reconcile_text(summary: dict[str, Any]) -> str:
    stats = summary.get("stats", {})
    lines = [
        "mara-doctor reconcile",
        f"Input: {summary.get('input_file', '[unknown]')}",
        f"Output: {summary.get('output_file', '[unknown]')}",
        f"Sheets processed: {stats.get('sheets_processed', 0)}",
        f"Identifiers: {stats.get('identifiers_found', 0)} of {stats.get('identifiers_requested', 0)} found",
        f"Rows OK: {stats.get('rows_ok', 0)}",
        f"Rows with deviations: {stats.get('rows_deviation', 0)}",
        f"Rows not reconciled: {stats.get('rows_unreconciled', 0)}",
        f"Fields: {stats.get('fields_match', 0)} match, {stats.get('fields_mismatch', 0)} mismatch, "
        f"{stats.get('fields_reference_missing', 0)} without reference",
    ]
    if summary.get("warnings"):
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in summary["warnings"])
    return "\n".join(lines) + "\n"


def render_completeness_text(summary: dict[str, Any]) -> str:
    stats = summary.get("stats", {})
    lines = [
        "mara-doctor completeness",
        f"Input: {summary.get('input_file', '[unknown]')}",
        f"Output: {summary.get('output_file', '[unknown]')}",
        f"Sheet: {summary.get('source_sheet', '[unknown]')}",
        f"Rows checked: {stats.get('rows_checked', 0)}",
        f"Complete rows: {stats.get('rows_complete', 0)} ({summary.get('complete_pct', 0.0)}%)",
        f"Incomplete rows: {stats.get('rows_incomplete', 0)}",
        f"Missing cells: {stats.get('cells_missing', 0)}",
        f"Invalid cells: {stats.get('cells_invalid', 0)}",
    ]
    return "\n".join(lines) + "\n"


def build_parser() -> argparse.ArgumentParser:
    parser = MaraDoctorArgumentParser(prog="mara-doctor", description="MARA export reconciliation and completeness checks.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    rec = subparsers.add_parser("reconcile", help="Compare an export against reference data and paint the result.")
    rec.add_argument("input", help="MARA export (.xlsx/.xlsm)")
    source = rec.add_mutually_exclusive_group(required=True)
    source.add_argument("--reference", help="Reference table (.csv/.xlsx/.xls/.ods) keyed by identifier")
    source.add_argument("--lookup-url", dest="lookup_url", help="Base URL of the product lookup service")
    rec.add_argument("--identifier-column", dest="identifier_column", help="Identifier column of the reference table")
    rec.add_argument("--concurrency", type=int, help="Parallel lookups")
    rec.add_argument("--timeout", type=float, help="Lookup timeout in seconds")
    rec.add_argument("--weight-tolerance", dest="weight_tolerance", type=float, help="Relative weight tolerance in percent")
    rec.add_argument("--status-text", dest="status_text", action="store_true", help="Write OK/Abweichung into the status column")
    rec.add_argument("--flag-source-missing", dest="flag_source_missing", action="store_true", help="Count empty required source values as deviations")
    rec.add_argument("--config", help="JSON config file")
    rec.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    rec.add_argument("--output", help="Explicit workbook output path")
    rec.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    rec.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    rec.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    comp = subparsers.add_parser("completeness", help="Check an export for missing and implausible values.")
    comp.add_argument("input", help="MARA export (.xlsx/.xlsm)")
    comp.add_argument("--config", help="JSON config file")
    comp.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    comp.add_argument("--output", help="Explicit workbook output path")
    comp.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    comp.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    comp.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    stats = subparsers.add_parser("stats", help="Count the painted results of an output workbook.")
    stats.add_argument("input", help="Workbook written by reconcile or completeness")
    stats.add_argument("--kind", choices=["auto", "reconcile", "completeness"], default="auto", help="Which kind of output workbook")
    stats.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    stats.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    stats.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default=DEFAULT_CONFIG_PATH, help="Config output path")

    subparsers.add_parser("version", help="Print version")
    return parser


def output_paths(args: argparse.Namespace, input_path: Path, suffix: str, summary_name: str) -> tuple[Path, Path]:
    out_dir = determine_output_dir(args, input_path)
    workbook_path = Path(args.output) if args.output else out_dir / f"{input_path.stem}-{suffix}.xlsx"
    return safe_output_path(workbook_path, workbook_path), safe_output_path(None, out_dir / summary_name)


def run_reconcile(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        eprint(f"File not found: {input_path}")
        return EXIT_COMMAND_ERROR

    try:
        require_workbook(input_path)
        config = load_engine_config(args)
        output_path, summary_path = output_paths(args, input_path, "abgleich", "reconcile-summary.json")
        lookup = build_lookup(args, config)
        result = reconcile.reconcile_bytes(input_path.read_bytes(), lookup, config)
        write_bytes_atomic(result.workbook, output_path)
        summary = remove_generated_at(
            reconcile.build_structured_summary(result, input_path=input_path, output_path=output_path, config=config)
        )
        write_json(summary_path, summary)
        if args.json:
            maybe_emit_json_stdout(summary, True)
        else:
            emit_human(render_reconcile_text(summary).rstrip(), quiet=args.quiet)
            emit_human(f"Reconciled workbook: {output_path}", quiet=args.quiet)
            emit_human(f"Summary: {summary_path}", quiet=args.quiet)
        return EXIT_FINDINGS if summary["run_summary"]["status"] == "findings" else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_completeness(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        eprint(f"File not found: {input_path}")
        return EXIT_COMMAND_ERROR

    try:
        require_workbook(input_path)
        config = load_engine_config(args)
        output_path, summary_path = output_paths(args, input_path, "qualitaet", "completeness-summary.json")
        result = completeness.check_completeness_bytes(input_path.read_bytes(), config)
        write_bytes_atomic(result.workbook, output_path)
        summary = remove_generated_at(
            completeness.build_structured_summary(result, input_path=input_path, output_path=output_path, config=config)
        )
        write_json(summary_path, summary)
        if args.json:
            maybe_emit_json_stdout(summary, True)
        else:
            emit_human(render_completeness_text(summary).rstrip(), quiet=args.quiet)
            emit_human(f"Quality report: {output_path}", quiet=args.quiet)
            emit_human(f"Summary: {summary_path}", quiet=args.quiet)
        return EXIT_FINDINGS if summary["run_summary"]["status"] == "findings" else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_stats(args: argparse.Namespace) -> int:
    try:
        payload = workbook_stats(load_workbook_path(Path(args.input)), kind=args.kind)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            print(render_stats_text(payload).rstrip())
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    write_json(config_path, EngineConfig().to_dict())
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        setup_logging(verbose=getattr(args, "verbose", False), quiet=getattr(args, "quiet", False))
        if args.command == "reconcile":
            return run_reconcile(args)
        if args.command == "completeness":
            return run_completeness(args)
        if args.command == "stats":
            return run_stats(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
