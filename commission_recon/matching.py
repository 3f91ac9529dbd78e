from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Sequence

from commission_recon.allocation import allocate_role_splits
from commission_recon.config import get_role_table
from commission_recon.master_index import build_jurisdiction_lookup, build_master_index
from commission_recon.models import (
    CarrierStatementRow,
    MasterRecord,
    MatchedRow,
    load_registry,
    normalize_jurisdiction,
    normalize_key,
)
from commission_recon.money import cents_to_float
from commission_recon.resolver import resolve_candidate
from commission_recon.roles import RoleTable

logger = logging.getLogger(__name__)


@dataclass
class MatchOutcome:
    matched: list[MatchedRow] = field(default_factory=list)
    unmatched: list[CarrierStatementRow] = field(default_factory=list)
    duplicate_candidate_rows: int = 0

    @property
    def total_rows(self) -> int:
        return len(self.matched) + len(self.unmatched)


def match_statement_rows(
    rows: Sequence[CarrierStatementRow],
    records: Sequence[MasterRecord],
    table: RoleTable | None = None,
) -> MatchOutcome:
    """Partition statement rows into matched and unmatched.

    Every input row lands in exactly one of the two lists, in input order.
    """
    table = table or get_role_table()
    outcome = MatchOutcome()
    if not rows:
        return outcome

    index = build_master_index(records, table)
    jurisdictions = build_jurisdiction_lookup(records)

    for row in rows:
        if not row.billing_item.strip():
            outcome.unmatched.append(row)
            continue

        key = normalize_key(row.billing_item)
        candidates = index.get(key, [])
        candidate = resolve_candidate(candidates, row)
        if candidate is None or not isinstance(candidate.codes, (list, tuple)):
            outcome.unmatched.append(row)
            continue
        if len(candidates) > 1:
            outcome.duplicate_candidate_rows += 1

        provider = row.provider or candidate.provider
        jurisdiction = normalize_jurisdiction(row.jurisdiction) or jurisdictions.get(key, "")

        outcome.matched.append(
            MatchedRow(
                row=row,
                master_record_id=candidate.record.record_id,
                provider=provider,
                jurisdiction=jurisdiction,
                splits=allocate_role_splits(row.commission_cents, candidate.codes, table),
                expected_comp_percent=candidate.record.expected_comp_percent,
                notes=candidate.notes,
            )
        )

    logger.info(
        f"Matching complete: {len(rows):,} rows, {len(outcome.matched):,} matched, "
        f"{len(outcome.unmatched):,} unmatched, "
        f"{outcome.duplicate_candidate_rows:,} resolved among duplicate records."
    )
    return outcome


def summarize_outcome(outcome: MatchOutcome, table: RoleTable | None = None) -> dict[str, Any]:
    table = table or get_role_table()
    role_totals = {role: 0 for role in table.roles}
    for matched in outcome.matched:
        for role, cents in matched.splits.cents.items():
            role_totals[role] = role_totals.get(role, 0) + cents

    return {
        "statement_rows": outcome.total_rows,
        "matched": len(outcome.matched),
        "unmatched": len(outcome.unmatched),
        "duplicate_candidate_rows": outcome.duplicate_candidate_rows,
        "matched_commission": cents_to_float(sum(m.commission_cents for m in outcome.matched)),
        "matched_invoice_total": cents_to_float(
            sum(m.row.invoice_total_cents for m in outcome.matched)
        ),
        "unmatched_commission": cents_to_float(sum(r.commission_cents for r in outcome.unmatched)),
        "role_totals": {role: cents_to_float(c) for role, c in role_totals.items()},
    }


def _read_csv(path: Path) -> list[dict[str, str]]:
    if not path.exists():
        return []
    with path.open(newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def read_statement_rows(path: Path) -> list[CarrierStatementRow]:
    return [CarrierStatementRow.from_dict(r) for r in _read_csv(path)]


def read_registry(path: Path) -> list[MasterRecord]:
    return load_registry(_read_csv(path))


def rows_to_dicts(rows: Iterable[CarrierStatementRow]) -> list[dict[str, Any]]:
    return [r.to_dict() for r in rows]


def run_matching(data_dir: Path, table: RoleTable | None = None) -> dict[str, Any]:
    """Match the normalized CSV exports under ``data_dir``."""
    records = read_registry(data_dir / "raw/master/registry.csv")
    rows = read_statement_rows(data_dir / "raw/statements/statement_lines.csv")
    outcome = match_statement_rows(rows, records, table)

    return {
        "totals": summarize_outcome(outcome, table),
        "matched": [m.to_dict() for m in outcome.matched],
        "unmatched": rows_to_dicts(outcome.unmatched),
        "sample_matched": [m.to_dict() for m in outcome.matched[:20]],
    }
