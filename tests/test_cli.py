from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from openpyxl import load_workbook

from tests.helpers import MATCHING_REFERENCE, export_row, reference_csv, save_export


ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "mara_doctor.cli"]
FIXED_STAMP = "20260301T010203Z"


def run_cli(*args: str, env: dict[str, str] | None = None, cwd: Path = ROOT) -> subprocess.CompletedProcess[str]:
    merged_env = dict(os.environ)
    merged_env["MARA_DOCTOR_OUTPUT_STAMP"] = FIXED_STAMP
    merged_env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT), merged_env.get("PYTHONPATH")]))
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        env=merged_env,
    )


class MaraDoctorCliTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmp.name)
        self.addCleanup(self._tmp.cleanup)
        self.reference = self.tmpdir / "reference.csv"
        self.reference.write_bytes(reference_csv([MATCHING_REFERENCE]))

    def test_reconcile_clean_export_returns_exit_0(self):
        export = save_export(self.tmpdir / "export.xlsx", [export_row()])
        out_dir = self.tmpdir / "out"
        proc = run_cli("reconcile", str(export), "--reference", str(self.reference), "--out", str(out_dir))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Reconciled workbook:", proc.stderr)
        output = out_dir / "export-abgleich.xlsx"
        self.assertTrue(output.exists())
        self.assertEqual(load_workbook(output).active["D4"].value, "Web-Wert")
        summary = json.loads((out_dir / "reconcile-summary.json").read_text(encoding="utf-8"))
        self.assertEqual(summary["stats"]["rows_ok"], 1)
        self.assertEqual(summary["run_summary"]["generated_at"], "1970-01-01T00:00:00Z")

    def test_reconcile_deviation_returns_exit_3(self):
        export = save_export(self.tmpdir / "export.xlsx", [export_row(S=9.9)])
        proc = run_cli("reconcile", str(export), "--reference", str(self.reference), "--out", str(self.tmpdir / "out"), "--json")
        self.assertEqual(proc.returncode, 3, proc.stderr)
        summary = json.loads(proc.stdout)
        self.assertEqual(summary["stats"]["rows_deviation"], 1)

    def test_reconcile_json_stdout_contains_only_json(self):
        export = save_export(self.tmpdir / "export.xlsx", [export_row()])
        proc = run_cli("reconcile", str(export), "--reference", str(self.reference), "--out", str(self.tmpdir / "out"), "--json", "-q")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["contract"]["name"], "mara_doctor.reconcile_summary")
        self.assertEqual(proc.stderr.strip(), "")

    def test_reconcile_flags_reach_the_config(self):
        export = save_export(self.tmpdir / "export.xlsx", [export_row()])
        proc = run_cli(
            "reconcile",
            str(export),
            "--reference",
            str(self.reference),
            "--out",
            str(self.tmpdir / "out"),
            "--status-text",
            "--concurrency",
            "2",
            "--json",
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        config = json.loads(proc.stdout)["config"]
        self.assertTrue(config["status_text"])
        self.assertEqual(config["lookup_concurrency"], 2)
        self.assertEqual(load_workbook(self.tmpdir / "out" / "export-abgleich.xlsx").active["AI5"].value, "OK")

    def test_reconcile_requires_a_reference_source(self):
        export = save_export(self.tmpdir / "export.xlsx", [export_row()])
        proc = run_cli("reconcile", str(export))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("--reference", proc.stderr)

    def test_reconcile_refuses_to_overwrite(self):
        export = save_export(self.tmpdir / "export.xlsx", [export_row()])
        existing = self.tmpdir / "result.xlsx"
        existing.write_bytes(b"keep")
        proc = run_cli("reconcile", str(export), "--reference", str(self.reference), "--output", str(existing))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Refusing to overwrite existing output", proc.stderr)
        self.assertEqual(existing.read_bytes(), b"keep")

    def test_default_output_directory_uses_stamp(self):
        export = save_export(self.tmpdir / "export.xlsx", [export_row()])
        proc = run_cli("completeness", str(export), cwd=self.tmpdir)
        self.assertEqual(proc.returncode, 0, proc.stderr)
        output_dir = self.tmpdir / "mara-doctor-output" / f"export-{FIXED_STAMP}"
        self.assertTrue((output_dir / "export-qualitaet.xlsx").exists())
        self.assertTrue((output_dir / "completeness-summary.json").exists())

    def test_completeness_incomplete_returns_exit_3(self):
        export = save_export(self.tmpdir / "export.xlsx", [export_row(), export_row(D=None)])
        proc = run_cli("completeness", str(export), "--out", str(self.tmpdir / "out"), "--json")
        self.assertEqual(proc.returncode, 3, proc.stderr)
        summary = json.loads(proc.stdout)
        self.assertEqual(summary["flagged_rows"], [{"row": 5, "cells": {"D5": "missing"}}])

    def test_stats_reads_painted_output(self):
        export = save_export(self.tmpdir / "export.xlsx", [export_row(), export_row(D=None)])
        out_dir = self.tmpdir / "out"
        run_cli("completeness", str(export), "--out", str(out_dir))
        proc = run_cli("stats", str(out_dir / "export-qualitaet.xlsx"), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["kind"], "completeness")
        self.assertEqual(payload["counts"]["rows_complete"], 1)

        text = run_cli("stats", str(out_dir / "export-qualitaet.xlsx"))
        self.assertEqual(text.returncode, 0, text.stderr)
        self.assertIn("rows_incomplete", text.stdout)

    def test_missing_input_returns_exit_1(self):
        proc = run_cli("completeness", str(self.tmpdir / "missing.xlsx"))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("File not found", proc.stderr)

    def test_unreadable_input_returns_exit_2(self):
        corrupt = self.tmpdir / "corrupt.xlsx"
        corrupt.write_bytes(b"this is not a zip file")
        proc = run_cli("completeness", str(corrupt), "--out", str(self.tmpdir / "out"))
        self.assertEqual(proc.returncode, 2)
        self.assertIn("Could not read workbook", proc.stderr)

    def test_unsupported_extension(self):
        path = self.tmpdir / "export.csv"
        path.write_text("a,b\n", encoding="utf-8")
        proc = run_cli("completeness", str(path))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unsupported file type '.csv'", proc.stderr)

    def test_config_init_writes_file_once(self):
        config_path = self.tmpdir / "mara-doctor.json"
        proc = run_cli("config", "init", "--path", str(config_path))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(config_path.read_text(encoding="utf-8"))
        self.assertEqual(payload["lookup_concurrency"], 4)
        again = run_cli("config", "init", "--path", str(config_path))
        self.assertEqual(again.returncode, 1)
        self.assertIn("Refusing to overwrite existing config", again.stderr)

    def test_config_file_is_used(self):
        config_path = self.tmpdir / "mara-doctor.json"
        config_path.write_text(json.dumps({"status_text": True}), encoding="utf-8")
        export = save_export(self.tmpdir / "export.xlsx", [export_row()])
        proc = run_cli(
            "reconcile", str(export), "--reference", str(self.reference), "--config", str(config_path), "--out", str(self.tmpdir / "out"), "--json"
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertTrue(json.loads(proc.stdout)["config"]["status_text"])

    def test_version_prints_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertRegex(proc.stdout.strip(), r"^\d+\.\d+\.\d+$")


if __name__ == "__main__":
    unittest.main()
