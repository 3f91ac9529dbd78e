from __future__ import annotations

import unittest

from commission_recon.config import load_role_table
from commission_recon.master_index import (
    build_jurisdiction_lookup,
    build_master_index,
    extract_role_codes,
)
from commission_recon.models import CarrierStatementRow, MasterRecord, load_registry
from commission_recon.resolver import resolve_candidate

TABLE = load_role_table()


def _record(**fields: str) -> MasterRecord:
    return MasterRecord.from_dict(fields, position=0)


class ExtractRoleCodesTests(unittest.TestCase):
    def test_first_slot_kept_verbatim(self) -> None:
        record = _record(**{"COMP 1": "custom-code", "COMP 2": "rd2"})
        self.assertEqual(extract_role_codes(record, TABLE), ["CUSTOM-CODE", "RD2"])

    def test_first_slot_na_skipped(self) -> None:
        record = _record(**{"COMP 1": "N/A", "COMP 2": "RD2"})
        self.assertEqual(extract_role_codes(record, TABLE), ["RD2"])

    def test_invalid_slot_falls_back_to_legacy_column(self) -> None:
        record = _record(
            **{
                "COMP 1": "RD1",
                "COMP 2": "MISSING",
                "before 07/2025 COMP 2": "RD2",
                "COMP 3": "NOT ON FILE",
                "COMP 4": "",
                "before 07/2025 COMP 4": "HA5",
            }
        )
        self.assertEqual(extract_role_codes(record, TABLE), ["RD1", "RD2", "HA5"])

    def test_field_names_resolve_case_insensitively(self) -> None:
        record = MasterRecord.from_dict(
            {"otg comp billing item": "525251", "comp 1": "RM1", "COMP-2": "RM2"}, position=4
        )
        self.assertEqual(record.billing_item, "525251")
        self.assertEqual(record.record_id, "row-4")
        self.assertEqual(extract_role_codes(record, TABLE), ["RM1", "RM2"])


class MasterIndexTests(unittest.TestCase):
    def test_duplicates_grouped_in_registry_order(self) -> None:
        records = load_registry(
            [
                {"id": "A", "OTG Comp Billing item": "525 251", "COMP 1": "RD1"},
                {"id": "B", "OTG Comp Billing item": " 525  251 ", "COMP 1": "RD3"},
                {"id": "C", "OTG Comp Billing item": "999"},
                {"id": "D", "OTG Comp Billing item": "  "},
            ]
        )
        index = build_master_index(records, TABLE)
        self.assertEqual(set(index), {"525 251", "999"})
        self.assertEqual([c.record.record_id for c in index["525 251"]], ["A", "B"])
        self.assertEqual(index["999"][0].codes, ())

    def test_jurisdiction_lookup_keeps_first_valid(self) -> None:
        records = load_registry(
            [
                {"OTG Comp Billing item": "1", "ST": "Texas"},
                {"OTG Comp Billing item": "1", "ST": "tx"},
                {"OTG Comp Billing item": "1", "ST": "CA"},
                {"OTG Comp Billing item": "2"},
            ]
        )
        self.assertEqual(build_jurisdiction_lookup(records), {"1": "TX"})


class ResolverTests(unittest.TestCase):
    def _candidates(self, *raw: dict[str, str]):
        records = load_registry([{"OTG Comp Billing item": "525251", **r} for r in raw])
        return build_master_index(records, TABLE)["525251"]

    def _row(self, account: str = "") -> CarrierStatementRow:
        return CarrierStatementRow.from_dict(
            {"billing_item": "525251", "account_name": account, "commission_amount": "10"}
        )

    def test_no_candidates(self) -> None:
        self.assertIsNone(resolve_candidate([], self._row()))

    def test_prefers_the_only_candidate_with_codes(self) -> None:
        candidates = self._candidates(
            {"id": "A", "Account **CARRIER**": "Acme Co", "COMP 1": "N/A"},
            {"id": "B", "Account **CARRIER**": "Other", "COMP 1": "RD1"},
        )
        self.assertEqual(resolve_candidate(candidates, self._row("Acme Co")).record.record_id, "B")

    def test_exact_account_name(self) -> None:
        candidates = self._candidates(
            {"id": "A", "Account **CARRIER**": "Acme Holdings", "COMP 1": "RD1"},
            {"id": "B", "Account **CARRIER**": "acme  co", "COMP 1": "RD3"},
        )
        self.assertEqual(resolve_candidate(candidates, self._row("ACME CO")).record.record_id, "B")

    def test_account_name_containment(self) -> None:
        candidates = self._candidates(
            {"id": "A", "Account **CARRIER**": "Beta", "COMP 1": "RD1"},
            {"id": "B", "Account **CARRIER**": "Acme", "COMP 1": "RD3"},
        )
        self.assertEqual(
            resolve_candidate(candidates, self._row("Acme Co - Dallas")).record.record_id, "B"
        )

    def test_falls_back_to_first_with_codes(self) -> None:
        candidates = self._candidates(
            {"id": "A", "Account **CARRIER**": "Beta", "COMP 1": "RD1"},
            {"id": "B", "Account **CARRIER**": "Gamma", "COMP 1": "RD3"},
        )
        self.assertEqual(resolve_candidate(candidates, self._row("Acme")).record.record_id, "A")

    def test_no_codes_anywhere_takes_first(self) -> None:
        candidates = self._candidates(
            {"id": "A", "Account **CARRIER**": "Beta"},
            {"id": "B", "Account **CARRIER**": "Gamma"},
        )
        self.assertEqual(resolve_candidate(candidates, self._row("")).record.record_id, "A")


if __name__ == "__main__":
    unittest.main()
