from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from openpyxl import load_workbook

ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "customs_doctor.cli"]
FIXED_STAMP = "20260301T010203Z"

DSV_SEA = "Registriernummer/MRN;Zollwert;Ursprung\n25DE1;1.234,56;CN\n25DE2;,5;US\n"
DSV_AIR = "Registrienummer/MRN;Arrival Date;Zollwert\n25DE3;2025-03-01;12\n"


def run_cli(*args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    merged_env = dict(os.environ)
    merged_env["CUSTOMS_DOCTOR_OUTPUT_STAMP"] = FIXED_STAMP
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        env=merged_env,
    )


def write_dsv_inputs(tmpdir: str) -> tuple[Path, Path]:
    sea = Path(tmpdir) / "dsv-see-2025-03.csv"
    sea.write_text(DSV_SEA, encoding="utf-8")
    air = Path(tmpdir) / "dsv-air-2025-03.csv"
    air.write_text(DSV_AIR, encoding="utf-8")
    return sea, air


class CustomsDoctorCliTests(unittest.TestCase):
    def test_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(proc.stdout.strip(), "0.3.0")

    def test_families_lists_builtins(self):
        proc = run_cli("families")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        ids = [line.split()[0] for line in proc.stdout.splitlines()]
        self.assertEqual(ids, ["DHL", "FEDEX", "KN", "DSV", "SCHENKER", "UPS"])

    def test_families_show_emits_contract(self):
        proc = run_cli("families", "--show", "dsv")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["contract"]["name"], "customs_doctor.family")
        self.assertEqual(payload["id"], "DSV")
        self.assertEqual(payload["csv_delimiter"], ";")

    def test_families_show_unknown_returns_exit_1(self):
        proc = run_cli("families", "--show", "tnt")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unknown source family", proc.stderr)

    def test_merge_aligns_files_and_json_stdout_contains_only_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            sea, air = write_dsv_inputs(tmpdir)
            output = Path(tmpdir) / "dsv.xlsx"
            proc = run_cli("merge", str(sea), str(air), "--family", "DSV", "-o", str(output), "--json")
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertEqual(proc.stderr.strip(), "")
            summary = json.loads(proc.stdout)
            self.assertEqual(summary["family"], "DSV")
            self.assertEqual(summary["rows"]["merged"], 3)
            self.assertTrue(summary["columns"]["aligned"])
            self.assertEqual(summary["columns"]["side_channel_header"], ["Arrival Date"])
            self.assertEqual(summary["validation"]["numeric_fixes"], 5)
            self.assertEqual(summary["run_summary"]["generated_at"], "1970-01-01T00:00:00Z")

            wb = load_workbook(output)
            ws = wb["Consolidated"]
            self.assertEqual([c.value for c in ws[1]], ["Registriernummer/MRN", "Zollwert", "Ursprung"])
            self.assertEqual([c.value for c in ws[2]], ["25DE1", 1234.56, "CN"])
            self.assertEqual([c.value for c in ws[4]], ["25DE3", 12, None])
            self.assertIn("Side-Channel Fields", wb.sheetnames)
            wb.close()

    def test_merge_human_output_goes_to_stderr(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            sea, air = write_dsv_inputs(tmpdir)
            summary_path = Path(tmpdir) / "summary.json"
            proc = run_cli(
                "merge", str(sea), str(air), "--family", "dsv", "--dry-run", "--json-summary", str(summary_path)
            )
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertEqual(proc.stdout, "")
            self.assertIn("Rows merged: 3", proc.stderr)
            self.assertIn("Output: [dry run]", proc.stderr)
            summary = json.loads(summary_path.read_text(encoding="utf-8"))
            self.assertIsNone(summary["output_file"])
            self.assertEqual(sorted(p.name for p in Path(tmpdir).iterdir()), sorted([sea.name, air.name, "summary.json"]))

    def test_merge_with_warnings_returns_exit_3(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "ups-2025-02.csv"
            header = ",".join(f"Feld{idx}" for idx in range(30))
            values = ["" for _ in range(30)]
            values[0] = "1Z999AA10123456784"
            values[1] = "Kabelbaum"
            values[28] = "BADCODE"
            path.write_text(f"{header}\n{','.join(values)}\n", encoding="utf-8")
            proc = run_cli("merge", str(path), "--family", "UPS", "--dry-run", "--json")
            self.assertEqual(proc.returncode, 3, proc.stderr)
            summary = json.loads(proc.stdout)
            self.assertEqual(summary["run_summary"]["status"], "warnings")
            self.assertIn("Zolltarifnummer (col 28)", summary["itemized"][0])

    def test_merge_with_unreadable_file_returns_exit_6(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            sea, _ = write_dsv_inputs(tmpdir)
            corrupt = Path(tmpdir) / "dsv-broken.xlsx"
            corrupt.write_bytes(b"not a workbook")
            proc = run_cli("merge", str(sea), str(corrupt), "--family", "DSV", "--dry-run", "--json")
            self.assertEqual(proc.returncode, 6, proc.stderr)
            summary = json.loads(proc.stdout)
            self.assertEqual([item["source"] for item in summary["skipped_files"]], ["dsv-broken.xlsx"])
            self.assertEqual(summary["run_summary"]["status"], "partial")

    def test_merge_with_nothing_readable_returns_exit_2(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            corrupt = Path(tmpdir) / "broken.xlsx"
            corrupt.write_bytes(b"not a workbook")
            proc = run_cli("merge", str(corrupt), "--family", "KN", "--dry-run")
            self.assertEqual(proc.returncode, 2)
            self.assertIn("No input file could be parsed", proc.stderr)

    def test_merge_command_errors_return_exit_1(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            sea, _ = write_dsv_inputs(tmpdir)
            cases = [
                (("merge", str(sea)), "needs --family"),
                (("merge", str(sea), "--family", "TNT"), "Unknown source family"),
                (("merge", str(Path(tmpdir) / "missing.csv"), "--family", "KN"), "File not found"),
                (("merge", str(sea), "--family", "KN", "--family-config", str(Path(tmpdir) / "none.json")), "not found"),
                (("frobnicate",), "invalid choice"),
            ]
            for args, message in cases:
                with self.subTest(args=args):
                    proc = run_cli(*args)
                    self.assertEqual(proc.returncode, 1)
                    self.assertIn(message, proc.stderr)

    def test_unsupported_input_type_returns_exit_1(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            pdf = Path(tmpdir) / "export.pdf"
            pdf.write_bytes(b"%PDF-1.4")
            proc = run_cli("merge", str(pdf), "--family", "KN")
            self.assertEqual(proc.returncode, 1)
            self.assertIn("Unsupported file type", proc.stderr)

    def test_existing_output_needs_force(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            sea, air = write_dsv_inputs(tmpdir)
            output = Path(tmpdir) / "dsv.xlsx"
            output.write_bytes(b"placeholder")
            proc = run_cli("merge", str(sea), str(air), "--family", "DSV", "-o", str(output), "-q")
            self.assertEqual(proc.returncode, 1)
            self.assertIn("Refusing to overwrite", proc.stderr)
            self.assertEqual(output.read_bytes(), b"placeholder")

            proc = run_cli("merge", str(sea), str(air), "--family", "DSV", "-o", str(output), "-q", "--force")
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertEqual(load_workbook(output).sheetnames[0], "Consolidated")

    def test_family_config_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = Path(tmpdir) / "acme.json"
            config.write_text(
                json.dumps(
                    {
                        "id": "acme",
                        "label": "ACME Logistics",
                        "csv_delimiter": "|",
                        "numeric_mode": "full",
                        "numeric_columns": [1],
                    }
                ),
                encoding="utf-8",
            )
            data = Path(tmpdir) / "acme.txt"
            data.write_text("MRN|Wert\nA1|1.234,5\nA2|7\n", encoding="utf-8")
            proc = run_cli("merge", str(data), "--family-config", str(config), "--dry-run", "--json")
            self.assertEqual(proc.returncode, 0, proc.stderr)
            summary = json.loads(proc.stdout)
            self.assertEqual(summary["family"], "ACME")
            self.assertEqual(summary["validation"]["numeric_fixes"], 3)


if __name__ == "__main__":
    unittest.main()
