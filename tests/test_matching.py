from __future__ import annotations

import csv
import tempfile
import unittest
from pathlib import Path

from commission_recon.matching import run_matching


def _write_csv(path: Path, fieldnames: list[str], rows: list[dict[str, str]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)


class MatchingTests(unittest.TestCase):
    def test_run_matching_with_csv_exports(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            data_dir = Path(tmp) / "data"
            _write_csv(
                data_dir / "raw/master/registry.csv",
                ["id", "OTG Comp Billing item", "Account **CARRIER**", "ST", "COMP 1", "COMP 2"],
                [
                    {"id": "MR-1", "OTG Comp Billing item": "525251", "Account **CARRIER**": "Acme Co",
                     "ST": "TX", "COMP 1": "RD1", "COMP 2": "RD2"},
                    {"id": "MR-2", "OTG Comp Billing item": "525252", "Account **CARRIER**": "Beta LLC",
                     "ST": "CA", "COMP 1": "OVR", "COMP 2": ""},
                ],
            )
            _write_csv(
                data_dir / "raw/statements/statement_lines.csv",
                ["line_id", "carrier_statement", "account_name", "billing_item",
                 "invoice_total", "commission_amount"],
                [
                    {"line_id": "L-1", "carrier_statement": "Lumen", "account_name": "Acme Co",
                     "billing_item": "525251", "invoice_total": "1,000.00", "commission_amount": "$100.00"},
                    {"line_id": "L-2", "carrier_statement": "Lumen", "account_name": "Beta LLC",
                     "billing_item": "525252", "invoice_total": "500.00", "commission_amount": "(25.00)"},
                    {"line_id": "L-3", "carrier_statement": "Lumen", "account_name": "Unknown",
                     "billing_item": "999999", "invoice_total": "10.00", "commission_amount": "1.00"},
                ],
            )

            result = run_matching(data_dir)

        totals = result["totals"]
        self.assertEqual(totals["statement_rows"], 3)
        self.assertEqual(totals["statement_rows"], totals["matched"] + totals["unmatched"])
        self.assertEqual(totals["matched"], 2)
        self.assertEqual(totals["matched_commission"], 75.0)
        self.assertEqual(totals["unmatched_commission"], 1.0)
        self.assertEqual(totals["role_totals"]["RD1"], 20.0)
        self.assertEqual(totals["role_totals"]["RD2"], 10.0)
        self.assertEqual(totals["role_totals"]["OVR"], -2.5)
        self.assertEqual(totals["role_totals"]["OTG"], 70.0 - 22.5)

        first = result["matched"][0]
        self.assertEqual(first["master_record_id"], "MR-1")
        self.assertEqual(first["jurisdiction"], "TX")
        self.assertEqual(first["role_split_cents"]["OTG"], 7000)
        self.assertEqual(result["unmatched"][0]["billing_item"], "999999")

    def test_run_matching_handles_missing_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            result = run_matching(Path(tmp))
            self.assertEqual(result["totals"]["statement_rows"], 0)
            self.assertEqual(result["totals"]["matched"], 0)
            self.assertEqual(result["totals"]["unmatched"], 0)
            self.assertEqual(result["matched"], [])


if __name__ == "__main__":
    unittest.main()
