from __future__ import annotations

import unittest
from decimal import Decimal

from commission_recon.allocation import allocate_role_splits
from commission_recon.config import load_role_table
from commission_recon.disputes import (
    DisputeType,
    detect_all_disputes,
    detect_canceled_missing,
    detect_changed_rates,
    detect_new_accounts,
    detect_zeros_and_chargebacks,
)
from commission_recon.models import CarrierStatementRow, MatchedRow, load_registry

TABLE = load_role_table()


def _row(billing: str, amount: str, account: str = "Acme Co", **extra: str) -> CarrierStatementRow:
    return CarrierStatementRow.from_dict(
        {"billing_item": billing, "account_name": account, "commission_amount": amount, **extra}
    )


def _matched(row: CarrierStatementRow, expected: str | None = None) -> MatchedRow:
    return MatchedRow(
        row=row,
        master_record_id="MR-1",
        provider="Vendor A",
        jurisdiction="TX",
        splits=allocate_role_splits(row.commission_cents, ["RD1"], TABLE),
        expected_comp_percent=Decimal(expected) if expected else None,
    )


class NewAccountTests(unittest.TestCase):
    def test_deduplicated_by_signature(self) -> None:
        rows = [
            _row("900001", "10", account="New Co", carrier_statement="Lumen"),
            _row("900001", "12", account="NEW CO", carrier_statement="lumen"),
            _row("900001", "10", account="New Co", carrier_statement="GoTo"),
        ]
        disputes = detect_new_accounts(rows)
        self.assertEqual(len(disputes), 2)
        self.assertTrue(all(d.dispute_type is DisputeType.NEW_ACCOUNT for d in disputes))
        self.assertEqual(disputes[0].actual_cents, 1000)
        self.assertIn("Lumen", disputes[0].explanation)


class ZeroAndChargebackTests(unittest.TestCase):
    def test_zero_with_expected_amount(self) -> None:
        disputes = detect_zeros_and_chargebacks(
            [_matched(_row("1", "0.004", invoice_total="250.00"), expected="0.10")]
        )
        self.assertEqual([d.dispute_type for d in disputes], [DisputeType.ZERO])
        self.assertEqual(disputes[0].expected_cents, 2500)
        self.assertEqual(disputes[0].jurisdiction, "TX")
        self.assertIn("$0.0040", disputes[0].explanation)

    def test_tiny_negative_is_zero_and_chargeback(self) -> None:
        disputes = detect_zeros_and_chargebacks([_matched(_row("1", "-0.004"))])
        self.assertEqual(
            [d.dispute_type for d in disputes], [DisputeType.ZERO, DisputeType.CHARGEBACK]
        )
        self.assertIsNone(disputes[0].expected_cents)

    def test_chargeback_only(self) -> None:
        disputes = detect_zeros_and_chargebacks([_matched(_row("1", "(5.00)"))])
        self.assertEqual([d.dispute_type for d in disputes], [DisputeType.CHARGEBACK])
        self.assertIn("-$5.00", disputes[0].explanation)

    def test_half_cent_is_not_zero(self) -> None:
        self.assertEqual(detect_zeros_and_chargebacks([_matched(_row("1", "0.005"))]), [])


class CanceledTests(unittest.TestCase):
    def test_registry_items_missing_from_statements(self) -> None:
        records = load_registry(
            [
                {"OTG Comp Billing item": "525251", "Account **CARRIER**": "Acme Co"},
                {"OTG Comp Billing item": "525252", "Account **CARRIER**": "Beta", "H": "ZMap"},
                {"OTG Comp Billing item": "525253", "Account **CARRIER**": "Gamma", "W": "Usage"},
                {"OTG Comp Billing item": "525254", "Account **CARRIER**": "Delta", "W": "MRC",
                 "Monthly Unit Price": "$80.00"},
                {"OTG Comp Billing item": "", "Account **CARRIER**": "Blank"},
            ]
        )
        disputes = detect_canceled_missing([_row(" 525251 ", "10")], records)
        self.assertEqual([d.billing_item for d in disputes], ["525252", "525253", "525254"])
        self.assertIn("ZMap", disputes[0].explanation)
        self.assertIn("Non-MRC", disputes[1].explanation)
        self.assertEqual(
            disputes[2].explanation, "Item in Master Data not found in carrier statements"
        )
        self.assertEqual(disputes[2].expected_cents, 8000)


class ChangedRateTests(unittest.TestCase):
    def test_flags_differences_over_fifty_dollars(self) -> None:
        previous = [_matched(_row("A", "100.00")), _matched(_row("B", "100.00"))]
        current = [
            _matched(_row("A", "100.00")),
            _matched(_row("A", "50.01")),
            _matched(_row("B", "150.00")),
            _matched(_row("C", "75.00")),
        ]
        disputes = detect_changed_rates(current, previous)
        self.assertEqual([d.billing_item for d in disputes], ["A", "C"])
        self.assertEqual(disputes[0].difference_cents, 5001)
        self.assertEqual(disputes[0].expected_cents, 10000)
        self.assertEqual(disputes[0].actual_cents, 15001)
        self.assertIn("$100.00", disputes[0].explanation)
        self.assertEqual(disputes[1].difference_cents, 7500)

    def test_disabled_without_prior_period(self) -> None:
        self.assertEqual(detect_changed_rates([_matched(_row("A", "999"))], None), [])
        self.assertEqual(detect_changed_rates([_matched(_row("A", "999"))], []), [])


class DetectAllTests(unittest.TestCase):
    def test_rule_order_and_serialization(self) -> None:
        records = load_registry([{"OTG Comp Billing item": "GONE"}, {"OTG Comp Billing item": "A"}])
        statement_rows = [_row("A", "-1.00"), _row("NEW", "3.00")]
        matched = [_matched(statement_rows[0])]
        unmatched = [statement_rows[1]]
        disputes = detect_all_disputes(
            statement_rows, matched, unmatched, records, previous=[_matched(_row("A", "60"))]
        )
        self.assertEqual(
            [d.dispute_type for d in disputes],
            [
                DisputeType.NEW_ACCOUNT,
                DisputeType.CHARGEBACK,
                DisputeType.CANCELED,
                DisputeType.CHANGED_RATE,
            ],
        )
        payload = disputes[1].to_dict()
        self.assertEqual(payload["type"], "chargeback")
        self.assertEqual(payload["actual_amount"], -1.0)
        self.assertIsNone(payload["expected_amount"])
        self.assertTrue(payload["detected_at"].endswith("+00:00"))


if __name__ == "__main__":
    unittest.main()
