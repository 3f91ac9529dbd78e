"""Statement processing workflow on top of the sqlite store.

``process_statement`` is the pure path: match, detect disputes and build
seller statements for one batch of rows. The ``ingest``/``retract``/
``regenerate`` functions apply that work to a stored period and are
serialized per period with ``period_lock``.
"""

from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence

from commission_recon import persistence as store
from commission_recon.config import get_role_table
from commission_recon.disputes import Dispute, detect_all_disputes
from commission_recon.matching import MatchOutcome, match_statement_rows
from commission_recon.models import CarrierStatementRow, MasterRecord, MatchedRow
from commission_recon.money import format_cents
from commission_recon.roles import RoleTable
from commission_recon.seller_statements import (
    SellerStatements,
    add_to_seller_statements,
    generate_seller_statements,
    remove_from_seller_statements,
)

logger = logging.getLogger(__name__)

_PERIOD = re.compile(r"^(\d{4})-(\d{2})$")

_PERIOD_LOCKS: dict[str, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def validate_period(period: str) -> str:
    match = _PERIOD.match(period or "")
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise ValueError(f"invalid processing period {period!r}; expected YYYY-MM")
    return period


def previous_period(period: str) -> str:
    """The processing month before ``period`` ("2025-01" -> "2024-12")."""
    validate_period(period)
    year, month = (int(p) for p in period.split("-"))
    if month == 1:
        return f"{year - 1}-12"
    return f"{year}-{month - 1:02d}"


@contextmanager
def period_lock(period: str) -> Iterator[None]:
    """Serialize writers of one processing period; other periods run freely."""
    with _LOCKS_GUARD:
        lock = _PERIOD_LOCKS.setdefault(period, threading.RLock())
    with lock:
        yield


@dataclass
class ProcessingResult:
    period: str
    statement_rows: list[CarrierStatementRow]
    outcome: MatchOutcome
    disputes: list[Dispute]
    seller_statements: SellerStatements
    summary: str = ""

    @property
    def matched(self) -> list[MatchedRow]:
        return self.outcome.matched

    @property
    def unmatched(self) -> list[CarrierStatementRow]:
        return self.outcome.unmatched

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "statement_rows": len(self.statement_rows),
            "matched": len(self.matched),
            "unmatched": len(self.unmatched),
            "disputes": len(self.disputes),
            "seller_statements": [g.to_dict() for g in self.seller_statements.values()],
            "summary": self.summary,
        }


def build_summary(
    rows: Sequence[CarrierStatementRow],
    matched: Sequence[MatchedRow],
    disputes: Sequence[Dispute],
    statements: SellerStatements,
) -> str:
    by_type: dict[str, int] = {}
    for d in disputes:
        by_type[d.dispute_type.value] = by_type.get(d.dispute_type.value, 0) + 1

    lines = [
        "Carrier statement processing complete",
        f"- Total rows: {len(rows)}",
        f"- Matched rows: {len(matched)}",
        f"- Unmatched rows: {len(rows) - len(matched)}",
        f"- Total disputes: {len(disputes)}",
    ]
    lines += [f"  - {name}: {count}" for name, count in sorted(by_type.items())]
    lines.append(f"- Total commission: {format_cents(sum(m.commission_cents for m in matched))}")
    lines.append(
        f"- Total seller commission: {format_cents(sum(g.total_seller_cents for g in statements.values()))}"
    )
    lines += [
        f"  - {g.role_group}: {len(g.items)} items, {format_cents(g.total_seller_cents)}"
        for g in statements.values()
    ]
    return "\n".join(lines)


def process_statement(
    period: str,
    rows: Sequence[CarrierStatementRow],
    records: Sequence[MasterRecord],
    previous: Sequence[MatchedRow] | None = None,
    table: RoleTable | None = None,
) -> ProcessingResult:
    table = table or get_role_table()
    outcome = match_statement_rows(rows, records, table)
    disputes = detect_all_disputes(rows, outcome.matched, outcome.unmatched, records, previous)
    statements = generate_seller_statements(period, outcome.matched, table)
    return ProcessingResult(
        period=period,
        statement_rows=list(rows),
        outcome=outcome,
        disputes=disputes,
        seller_statements=statements,
        summary=build_summary(rows, outcome.matched, disputes, statements),
    )


def parse_statement_rows(
    raw_rows: Sequence[Mapping[str, Any]], carrier: str = "", statement_id: str = ""
) -> list[CarrierStatementRow]:
    """Parse extractor output; an unparseable amount raises ValueError with its line number.

    Rows without a carrier statement name take ``carrier``. With a
    ``statement_id`` each row is stamped with it and its 1-based line number,
    which together identify the row's contribution.
    """
    rows = []
    for i, raw in enumerate(raw_rows, start=1):
        try:
            row = CarrierStatementRow.from_dict(raw)
        except ValueError as exc:
            raise ValueError(f"statement line {i}: {exc}") from exc
        if carrier and not row.carrier_statement:
            row = replace(row, carrier_statement=carrier)
        if statement_id:
            row = replace(row, statement_id=statement_id, line_number=i)
        rows.append(row)
    return rows


def ingest_statement(
    db_path: Path,
    period: str,
    statement_id: str,
    carrier: str,
    raw_rows: Sequence[Mapping[str, Any]],
    filename: str | None = None,
    table: RoleTable | None = None,
) -> dict[str, Any]:
    """Store one carrier statement and fold its rows into the period.

    Re-ingesting a known statement id replaces its rows and regenerates the
    period, so the stored aggregates never count the old version.
    """
    validate_period(period)
    table = table or get_role_table()
    rows = parse_statement_rows(raw_rows, carrier, statement_id)

    with period_lock(period):
        existing = store.get_statement(db_path, statement_id)
        if existing and existing["period"] != period:
            raise ValueError(
                f"statement {statement_id} already belongs to period {existing['period']}"
            )
        store.upsert_statement(db_path, statement_id, period, carrier, rows, filename)
        if existing:
            logger.info(f"Statement {statement_id} re-submitted; regenerating {period}.")
            result = regenerate_period(db_path, period, table)
            store.log_audit_event(
                db_path,
                event_type="statement",
                action="replaced",
                entity_type="statement",
                entity_id=statement_id,
                detail=f"{len(rows)} rows",
            )
            return {"statement_id": statement_id, "period": period, "regenerated": result}

        records = store.load_master_registry(db_path)
        previous = store.load_matches(db_path, previous_period(period))
        result = process_statement(period, rows, records, previous, table)

        store.store_matches(db_path, period, statement_id, result.matched)
        store.update_statement_results(db_path, statement_id, len(result.matched), result.unmatched)
        store.save_disputes(db_path, period, statement_id, result.disputes)

        current = store.load_seller_statements(db_path, period)
        merged, merge = add_to_seller_statements(current, period, result.matched, table)
        store.save_seller_statements(db_path, period, merged)

        store.log_audit_event(
            db_path,
            event_type="statement",
            action="ingested",
            entity_type="statement",
            entity_id=statement_id,
            detail=(
                f"{len(rows)} rows, {len(result.matched)} matched, "
                f"{len(result.disputes)} disputes, {merge.added_items} items added"
            ),
        )

    logger.info(f"Ingested statement {statement_id} ({carrier}) into {period}.")
    payload = result.to_dict()
    payload.update(
        {
            "statement_id": statement_id,
            "carrier": carrier,
            "added_items": merge.added_items,
            "merged_items": merge.merged_items,
            "skipped_contributions": merge.skipped_contributions,
        }
    )
    return payload


def retract_statement(
    db_path: Path, statement_id: str, table: RoleTable | None = None
) -> dict[str, Any]:
    """Withdraw a statement's contributions from its period."""
    statement = store.get_statement(db_path, statement_id)
    if statement is None:
        raise KeyError(f"statement {statement_id} not found")
    period = statement["period"]
    table = table or get_role_table()

    with period_lock(period):
        retracted = store.load_matches(db_path, period, statement_id)
        current = store.load_seller_statements(db_path, period)
        remaining, removal = remove_from_seller_statements(current, retracted)
        store.delete_matches(db_path, period, statement_id)

        # Removal is by item key, so re-add what other statements put under those keys.
        keys = {m.merge_key for m in retracted}
        survivors = [m for m in store.load_matches(db_path, period) if m.merge_key in keys]
        if survivors:
            remaining, _ = add_to_seller_statements(remaining, period, survivors, table)

        store.save_seller_statements(db_path, period, remaining)
        store.delete_disputes(db_path, period, statement_id)
        store.delete_statement(db_path, statement_id)
        store.log_audit_event(
            db_path,
            event_type="statement",
            action="retracted",
            entity_type="statement",
            entity_id=statement_id,
            detail=f"{len(retracted)} matched rows, {removal.removed_items} items removed",
        )

    logger.info(f"Retracted statement {statement_id} from {period}.")
    return {
        "statement_id": statement_id,
        "period": period,
        "retracted_rows": len(retracted),
        "removed_items": removal.removed_items,
        "removed_groups": removal.removed_groups,
        "restored_rows": len(survivors),
    }


@dataclass
class RegenerationResult:
    period: str
    statements: int = 0
    matched: int = 0
    unmatched: int = 0
    disputes: int = 0
    groups: int = 0
    failed: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "statements": self.statements,
            "matched": self.matched,
            "unmatched": self.unmatched,
            "disputes": self.disputes,
            "groups": self.groups,
            "failed": list(self.failed),
        }


def regenerate_period(
    db_path: Path, period: str, table: RoleTable | None = None
) -> dict[str, Any]:
    """Rebuild matches, disputes and seller statements for ``period``.

    A statement that fails to load or match is logged and left out; the rest
    of the period is still rebuilt.
    """
    validate_period(period)
    table = table or get_role_table()
    result = RegenerationResult(period=period)

    with period_lock(period):
        records = store.load_master_registry(db_path)
        previous = store.load_matches(db_path, previous_period(period))

        processed: list[tuple[str, ProcessingResult]] = []
        for statement in store.list_statements(db_path, period):
            statement_id = statement["statement_id"]
            try:
                rows = store.load_statement_rows(db_path, statement_id)
                processed.append(
                    (statement_id, process_statement(period, rows, records, previous, table))
                )
            except Exception as exc:
                logger.error(f"Regeneration of {period} skipped statement {statement_id}: {exc}")
                result.failed.append({"statement_id": statement_id, "error": str(exc)})

        store.delete_matches(db_path, period)
        store.delete_disputes(db_path, period)
        all_matched: list[MatchedRow] = []
        for statement_id, processing in processed:
            store.store_matches(db_path, period, statement_id, processing.matched)
            store.update_statement_results(
                db_path, statement_id, len(processing.matched), processing.unmatched
            )
            store.save_disputes(db_path, period, statement_id, processing.disputes)
            all_matched.extend(processing.matched)
            result.statements += 1
            result.matched += len(processing.matched)
            result.unmatched += len(processing.unmatched)
            result.disputes += len(processing.disputes)

        statements = generate_seller_statements(period, all_matched, table)
        store.replace_seller_statements(db_path, period, statements)
        result.groups = len(statements)

        store.log_audit_event(
            db_path,
            event_type="period",
            action="regenerated",
            entity_type="period",
            entity_id=period,
            detail=(
                f"{result.statements} statements, {result.matched} matched, "
                f"{len(result.failed)} failed"
            ),
        )

    logger.info(
        f"Regenerated {period}: {result.statements} statements, {result.matched} matched, "
        f"{result.groups} seller statement groups, {len(result.failed)} failed."
    )
    return result.to_dict()
