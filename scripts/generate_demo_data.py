#!/usr/bin/env python3
"""Generate synthetic commission reconciliation demo data.

Creates:
- data/raw/master/registry.csv
- data/raw/statements/statement_lines.csv (two processing periods)
- data/demo_cases/case_manifest.csv
"""

from __future__ import annotations

import argparse
import csv
import random
from datetime import date
from pathlib import Path
from typing import Iterable


CARRIERS = ["Lumen", "GoTo", "MetTel", "Allstream"]
PROVIDERS = ["Vendor A", "Vendor B", "Vendor C"]
STATES = ["TX", "CA", "NY", "FL", "IL", "WA"]
COMPANY_WORDS = [
    "Acme", "Summit", "Harbor", "Pioneer", "Cedar",
    "Beacon", "Granite", "Maple", "Orion", "Atlas",
]
COMPANY_SUFFIXES = ["Co", "LLC", "Inc", "Group", "Partners"]

# Codes that commonly show up in COMP 1-4.
DIRECT_CODES = ["RD1", "RD3", "RM1", "RM3", "OVR"]
SECONDARY_CODES = ["RD2", "RD4", "RM2", "RM4", "RD5", "RD2-05", "RD4-05", "RM1-15"]
HA_CODES = ["HA1", "HA2", "HA5", "HA6"]

REGISTRY_FIELDS = [
    "id",
    "OTG Comp Billing item",
    "Account **CARRIER**",
    "Service Provider",
    "ST",
    "COMP 1",
    "COMP 2",
    "COMP 3",
    "COMP 4",
    "before 07/2025 COMP 2",
    "before 07/2025 COMP 3",
    "before 07/2025 COMP 4",
    "EXPECTED/Mo. OTG Comp %",
    "Monthly Unit Price",
    "VP NOTES",
    "H",
    "W",
]
STATEMENT_FIELDS = [
    "statement_id",
    "period",
    "line_id",
    "carrier_statement",
    "account_name",
    "account_number",
    "billing_item",
    "provider",
    "jurisdiction",
    "invoice_total",
    "commission_amount",
    "bill_period",
    "bill_description",
]


def company_name(rng: random.Random) -> str:
    return f"{rng.choice(COMPANY_WORDS)} {rng.choice(COMPANY_WORDS)} {rng.choice(COMPANY_SUFFIXES)}"


def billing_item(idx: int) -> str:
    return f"{525000 + idx}"


def month_key(d: date) -> str:
    return f"{d.year}-{d.month:02d}"


def prior_month(d: date) -> date:
    return date(d.year - 1, 12, 1) if d.month == 1 else date(d.year, d.month - 1, 1)


def write_csv(path: Path, rows: Iterable[dict], fieldnames: list[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def registry_record(rng: random.Random, idx: int, carrier: str) -> dict:
    codes = [rng.choice(DIRECT_CODES), rng.choice(SECONDARY_CODES + [""])]
    if rng.random() < 0.3:
        codes.append(rng.choice(HA_CODES))
    codes += [""] * (4 - len(codes))
    price = round(rng.uniform(40.0, 2500.0), 2)
    return {
        "id": f"MR-{idx:05d}",
        "OTG Comp Billing item": billing_item(idx),
        "Account **CARRIER**": carrier,
        "Service Provider": rng.choice(PROVIDERS),
        "ST": rng.choice(STATES),
        "COMP 1": codes[0],
        "COMP 2": codes[1],
        "COMP 3": codes[2],
        "COMP 4": codes[3],
        "before 07/2025 COMP 2": "",
        "before 07/2025 COMP 3": "",
        "before 07/2025 COMP 4": "",
        "EXPECTED/Mo. OTG Comp %": f"{rng.choice([8, 10, 12, 15])}%",
        "Monthly Unit Price": f"{price:.2f}",
        "VP NOTES": "",
        "H": "",
        "W": "MRC",
    }


def generate(args: argparse.Namespace) -> None:
    rng = random.Random(args.seed)
    current = date.today().replace(day=1)
    previous = prior_month(current)

    registry: list[dict] = []
    case_rows: list[dict] = []
    for idx in range(1, args.records + 1):
        record = registry_record(rng, idx, CARRIERS[idx % len(CARRIERS)])

        # A handful of records whose codes only survive in the legacy columns.
        if idx % 17 == 0:
            record["before 07/2025 COMP 2"] = record["COMP 2"] or "RD2"
            record["COMP 2"] = "MISSING"
        # ZMap and usage-billed items exercise the canceled explanations.
        if idx % 23 == 0:
            record["H"] = "ZMap"
        if idx % 29 == 0:
            record["W"] = "Usage"
        registry.append(record)

        # Duplicate registry entries for the same billing item.
        if idx % 11 == 0:
            dup = dict(record)
            dup["id"] = f"MR-{idx:05d}-D"
            dup["COMP 1"] = "N/A"
            dup["COMP 2"] = ""
            dup["COMP 3"] = ""
            dup["COMP 4"] = ""
            dup["VP NOTES"] = "Duplicate entry, no codes"
            registry.append(dup)

    statement_rows: list[dict] = []
    line_no = 0
    active = [r for r in registry if not r["id"].endswith("-D")]
    for period_date in (previous, current):
        period = month_key(period_date)
        for record in active:
            idx = int(record["id"].split("-")[1])
            # Some items drop off the current statements (canceled/missing).
            if period_date == current and idx % 13 == 0:
                case_rows.append(
                    {
                        "billing_item": record["OTG Comp Billing item"],
                        "period": period,
                        "expected_outcome": "canceled",
                        "notes": "Absent from current period statements",
                    }
                )
                continue

            line_no += 1
            carrier = record["Account **CARRIER**"]
            invoice = float(record["Monthly Unit Price"])
            pct = float(record["EXPECTED/Mo. OTG Comp %"].rstrip("%")) / 100
            commission = round(invoice * pct, 2)
            outcome = "matched"

            if period_date == current:
                if idx % 19 == 0:
                    commission = 0.0
                    outcome = "zero"
                elif idx % 31 == 0:
                    commission = -round(commission, 2)
                    outcome = "chargeback"
                elif idx % 37 == 0:
                    commission = round(commission + rng.uniform(60.0, 150.0), 2)
                    outcome = "changed_rate"

            statement_rows.append(
                {
                    "statement_id": f"STMT-{period_date:%Y%m}-{carrier.upper()}",
                    "period": period,
                    "line_id": f"L-{line_no:05d}",
                    "carrier_statement": carrier,
                    "account_name": carrier,
                    "account_number": f"AC-{idx:05d}",
                    "billing_item": record["OTG Comp Billing item"],
                    "provider": "",
                    "jurisdiction": "",
                    "invoice_total": f"{invoice:.2f}",
                    # Negative amounts appear in accounting notation.
                    "commission_amount": (
                        f"(${abs(commission):,.2f})" if commission < 0 else f"${commission:,.2f}"
                    ),
                    "bill_period": period,
                    "bill_description": "Monthly recurring charge",
                }
            )
            if outcome != "matched":
                case_rows.append(
                    {
                        "billing_item": record["OTG Comp Billing item"],
                        "period": period,
                        "expected_outcome": outcome,
                        "notes": f"commission {commission:.2f}",
                    }
                )

        # Lines for accounts the registry does not know about.
        for n in range(args.unknown_lines):
            line_no += 1
            carrier = CARRIERS[n % len(CARRIERS)]
            item = f"9{rng.randint(10000, 99999)}"
            statement_rows.append(
                {
                    "statement_id": f"STMT-{period_date:%Y%m}-{carrier.upper()}",
                    "period": period,
                    "line_id": f"L-{line_no:05d}",
                    "carrier_statement": carrier,
                    "account_name": company_name(rng),
                    "account_number": f"AC-X{n:03d}",
                    "billing_item": item,
                    "provider": rng.choice(PROVIDERS),
                    "jurisdiction": rng.choice(STATES),
                    "invoice_total": f"{rng.uniform(100.0, 900.0):.2f}",
                    "commission_amount": f"{rng.uniform(10.0, 90.0):.2f}",
                    "bill_period": period,
                    "bill_description": "Monthly recurring charge",
                }
            )
            case_rows.append(
                {
                    "billing_item": item,
                    "period": period,
                    "expected_outcome": "new_account",
                    "notes": "Not in master registry",
                }
            )

    write_csv(args.output / "raw/master/registry.csv", registry, REGISTRY_FIELDS)
    write_csv(args.output / "raw/statements/statement_lines.csv", statement_rows, STATEMENT_FIELDS)
    write_csv(
        args.output / "demo_cases/case_manifest.csv",
        case_rows,
        ["billing_item", "period", "expected_outcome", "notes"],
    )
    print(
        f"Generated {len(registry)} registry records and {len(statement_rows)} statement lines "
        f"for {month_key(previous)} and {month_key(current)} in {args.output}"
    )


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Generate synthetic demo data.")
    p.add_argument("--seed", type=int, default=42)
    p.add_argument("--records", type=int, default=120)
    p.add_argument("--unknown-lines", type=int, default=6)
    p.add_argument("--output", type=Path, default=Path("data"))
    return p.parse_args()


if __name__ == "__main__":
    generate(parse_args())
