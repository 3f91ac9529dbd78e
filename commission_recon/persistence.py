from __future__ import annotations

import json
import logging
import sqlite3
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Sequence

from commission_recon.config import BATCH_PACING_SECONDS, MAX_BATCH_WRITES
from commission_recon.disputes import Dispute
from commission_recon.models import (
    CarrierStatementRow,
    MasterRecord,
    MatchedRow,
    contribution_ids,
    load_registry,
)
from commission_recon.roles import group_document_id
from commission_recon.seller_statements import (
    SellerStatementGroup,
    SellerStatementItem,
    SellerStatements,
    merge_duplicate_documents,
    select_canonical_groups,
)

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def get_conn(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path) -> None:
    with get_conn(db_path) as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS master_records (
                position INTEGER PRIMARY KEY,
                record_id TEXT NOT NULL,
                billing_item TEXT NOT NULL,
                payload TEXT NOT NULL,
                loaded_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS statements (
                statement_id TEXT PRIMARY KEY,
                period TEXT NOT NULL,
                carrier TEXT NOT NULL,
                filename TEXT,
                row_count INTEGER NOT NULL,
                matched_count INTEGER NOT NULL DEFAULT 0,
                unmatched_count INTEGER NOT NULL DEFAULT 0,
                total_commission_cents INTEGER NOT NULL DEFAULT 0,
                rows_json TEXT NOT NULL,
                unmatched_json TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS matches (
                period TEXT NOT NULL,
                statement_id TEXT NOT NULL,
                match_key TEXT NOT NULL,
                billing_item TEXT NOT NULL,
                account_name TEXT NOT NULL,
                commission_cents INTEGER NOT NULL,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (period, statement_id, match_key)
            );

            CREATE TABLE IF NOT EXISTS seller_statements (
                doc_id TEXT PRIMARY KEY,
                period TEXT NOT NULL,
                role_group TEXT NOT NULL,
                items_json TEXT NOT NULL,
                total_commission_cents INTEGER NOT NULL,
                total_seller_cents INTEGER NOT NULL,
                processed_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS disputes (
                dispute_id TEXT PRIMARY KEY,
                period TEXT NOT NULL,
                statement_id TEXT,
                type TEXT NOT NULL,
                billing_item TEXT NOT NULL,
                account_name TEXT NOT NULL,
                payload TEXT NOT NULL,
                detected_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS audit_events (
                event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                action TEXT NOT NULL,
                entity_type TEXT,
                entity_id TEXT,
                actor TEXT NOT NULL DEFAULT 'system',
                detail TEXT,
                old_value TEXT,
                new_value TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_matches_period ON matches(period);
            CREATE INDEX IF NOT EXISTS idx_seller_statements_period ON seller_statements(period);
            CREATE INDEX IF NOT EXISTS idx_disputes_period ON disputes(period);
            """
        )


# ---------------------------------------------------------------------------
# Chunked writes
# ---------------------------------------------------------------------------

def _chunks(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def write_in_chunks(
    db_path: Path,
    sql: str,
    params: Sequence[Sequence[Any]],
    batch_size: int = MAX_BATCH_WRITES,
    pacing_seconds: float = BATCH_PACING_SECONDS,
) -> int:
    """Run ``sql`` once per params tuple, one transaction per chunk.

    A failing chunk raises; chunks committed before it stay committed.
    """
    if not params:
        return 0
    total_batches = (len(params) + batch_size - 1) // batch_size
    for number, chunk in enumerate(_chunks(params, batch_size), start=1):
        with get_conn(db_path) as conn:
            conn.executemany(sql, chunk)
        if total_batches > 1:
            logger.info(f"Committed batch {number}/{total_batches} ({len(chunk)} writes).")
        if number < total_batches and pacing_seconds:
            time.sleep(pacing_seconds)
    return len(params)


# ---------------------------------------------------------------------------
# Master registry
# ---------------------------------------------------------------------------

def save_master_registry(db_path: Path, raw_records: Sequence[Mapping[str, Any]]) -> int:
    """Replace the stored registry, preserving load order."""
    loaded_at = utc_now()
    records = load_registry(list(raw_records))
    with get_conn(db_path) as conn:
        conn.execute("DELETE FROM master_records")
    return write_in_chunks(
        db_path,
        """
        INSERT INTO master_records(position, record_id, billing_item, payload, loaded_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        [
            (r.position, r.record_id, r.billing_item, json.dumps(dict(r.raw), default=str), loaded_at)
            for r in records
        ],
    )


def load_master_registry(db_path: Path) -> list[MasterRecord]:
    with get_conn(db_path) as conn:
        rows = conn.execute("SELECT payload FROM master_records ORDER BY position").fetchall()
    return load_registry([json.loads(row["payload"]) for row in rows])


# ---------------------------------------------------------------------------
# Carrier statements
# ---------------------------------------------------------------------------

def upsert_statement(
    db_path: Path,
    statement_id: str,
    period: str,
    carrier: str,
    rows: Sequence[CarrierStatementRow],
    filename: str | None = None,
) -> None:
    now = utc_now()
    with get_conn(db_path) as conn:
        conn.execute(
            """
            INSERT INTO statements(
                statement_id, period, carrier, filename, row_count,
                total_commission_cents, rows_json, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(statement_id) DO UPDATE SET
                period=excluded.period,
                carrier=excluded.carrier,
                filename=excluded.filename,
                row_count=excluded.row_count,
                total_commission_cents=excluded.total_commission_cents,
                rows_json=excluded.rows_json,
                updated_at=excluded.updated_at
            """,
            (
                statement_id,
                period,
                carrier,
                filename,
                len(rows),
                sum(r.commission_cents for r in rows),
                json.dumps([r.to_dict() for r in rows]),
                now,
                now,
            ),
        )


def update_statement_results(
    db_path: Path,
    statement_id: str,
    matched_count: int,
    unmatched: Sequence[CarrierStatementRow],
) -> None:
    with get_conn(db_path) as conn:
        conn.execute(
            """
            UPDATE statements
            SET matched_count = ?, unmatched_count = ?, unmatched_json = ?, updated_at = ?
            WHERE statement_id = ?
            """,
            (
                matched_count,
                len(unmatched),
                json.dumps([r.to_dict() for r in unmatched]),
                utc_now(),
                statement_id,
            ),
        )


def _statement_summary(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "statement_id": row["statement_id"],
        "period": row["period"],
        "carrier": row["carrier"],
        "filename": row["filename"],
        "row_count": row["row_count"],
        "matched_count": row["matched_count"],
        "unmatched_count": row["unmatched_count"],
        "total_commission_cents": row["total_commission_cents"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def get_statement(db_path: Path, statement_id: str) -> dict[str, Any] | None:
    with get_conn(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM statements WHERE statement_id = ?", (statement_id,)
        ).fetchone()
    return None if row is None else _statement_summary(row)


def list_statements(db_path: Path, period: str | None = None) -> list[dict[str, Any]]:
    with get_conn(db_path) as conn:
        if period:
            rows = conn.execute(
                "SELECT * FROM statements WHERE period = ? ORDER BY carrier, statement_id",
                (period,),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM statements ORDER BY period DESC, carrier, statement_id"
            ).fetchall()
    return [_statement_summary(row) for row in rows]


def load_statement_rows(db_path: Path, statement_id: str) -> list[CarrierStatementRow]:
    with get_conn(db_path) as conn:
        row = conn.execute(
            "SELECT rows_json FROM statements WHERE statement_id = ?", (statement_id,)
        ).fetchone()
    if row is None:
        raise KeyError(f"statement {statement_id} not found")
    return [CarrierStatementRow.from_dict(r) for r in json.loads(row["rows_json"])]


def load_unmatched_rows(db_path: Path, period: str) -> list[CarrierStatementRow]:
    with get_conn(db_path) as conn:
        rows = conn.execute(
            "SELECT unmatched_json FROM statements WHERE period = ? ORDER BY created_at, statement_id",
            (period,),
        ).fetchall()
    return [CarrierStatementRow.from_dict(r) for row in rows for r in json.loads(row["unmatched_json"])]


def delete_statement(db_path: Path, statement_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM statements WHERE statement_id = ?", (statement_id,))
        return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Matches
# ---------------------------------------------------------------------------

def store_matches(
    db_path: Path,
    period: str,
    statement_id: str,
    matched_rows: Sequence[MatchedRow],
) -> int:
    """Persist matched rows keyed by contribution id. Re-storing is idempotent."""
    keys = contribution_ids(m.row for m in matched_rows)

    created_at = utc_now()
    return write_in_chunks(
        db_path,
        """
        INSERT OR REPLACE INTO matches(
            period, statement_id, match_key, billing_item, account_name,
            commission_cents, payload, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                period,
                statement_id,
                key,
                m.billing_item,
                m.account_name,
                m.commission_cents,
                json.dumps(m.to_dict()),
                created_at,
            )
            for key, m in zip(keys, matched_rows)
        ],
    )


def load_matches(
    db_path: Path, period: str, statement_id: str | None = None
) -> list[MatchedRow]:
    with get_conn(db_path) as conn:
        if statement_id:
            rows = conn.execute(
                "SELECT payload FROM matches WHERE period = ? AND statement_id = ? ORDER BY rowid",
                (period, statement_id),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT payload FROM matches WHERE period = ? ORDER BY rowid",
                (period,),
            ).fetchall()
    return [MatchedRow.from_dict(json.loads(row["payload"])) for row in rows]


def delete_matches(db_path: Path, period: str, statement_id: str | None = None) -> int:
    with get_conn(db_path) as conn:
        if statement_id:
            keys = conn.execute(
                "SELECT period, statement_id, match_key FROM matches WHERE period = ? AND statement_id = ?",
                (period, statement_id),
            ).fetchall()
        else:
            keys = conn.execute(
                "SELECT period, statement_id, match_key FROM matches WHERE period = ?",
                (period,),
            ).fetchall()
    return write_in_chunks(
        db_path,
        "DELETE FROM matches WHERE period = ? AND statement_id = ? AND match_key = ?",
        [tuple(k) for k in keys],
    )


# ---------------------------------------------------------------------------
# Seller statements
# ---------------------------------------------------------------------------

def _group_from_row(row: sqlite3.Row) -> SellerStatementGroup:
    return SellerStatementGroup(
        period=row["period"],
        role_group=row["role_group"],
        items=[SellerStatementItem.from_dict(i) for i in json.loads(row["items_json"])],
        total_commission_cents=row["total_commission_cents"],
        total_seller_cents=row["total_seller_cents"],
        processed_at=row["processed_at"],
    )


def list_seller_statement_documents(
    db_path: Path, period: str
) -> list[tuple[str, SellerStatementGroup]]:
    with get_conn(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM seller_statements WHERE period = ? ORDER BY processed_at, doc_id",
            (period,),
        ).fetchall()
    return [(row["doc_id"], _group_from_row(row)) for row in rows]


def load_seller_statements(db_path: Path, period: str) -> SellerStatements:
    statements, _ = select_canonical_groups(period, list_seller_statement_documents(db_path, period))
    return statements


def _upsert_groups(db_path: Path, groups: Iterable[SellerStatementGroup]) -> int:
    processed_at = utc_now()
    params = []
    for group in groups:
        group.processed_at = processed_at
        params.append(
            (
                group.document_id,
                group.period,
                group.role_group,
                json.dumps([i.to_dict() for i in group.items]),
                group.total_commission_cents,
                group.total_seller_cents,
                processed_at,
            )
        )
    return write_in_chunks(
        db_path,
        """
        INSERT OR REPLACE INTO seller_statements(
            doc_id, period, role_group, items_json,
            total_commission_cents, total_seller_cents, processed_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        params,
    )


def delete_seller_statement_documents(db_path: Path, doc_ids: Sequence[str]) -> int:
    return write_in_chunks(
        db_path,
        "DELETE FROM seller_statements WHERE doc_id = ?",
        [(doc_id,) for doc_id in doc_ids],
    )


def save_seller_statements(db_path: Path, period: str, statements: SellerStatements) -> int:
    """Write a period's merged groups under their canonical ids.

    Canonical records for groups no longer present are deleted. Records under
    other ids are left for ``merge_duplicate_seller_statements``.
    """
    written = _upsert_groups(db_path, statements.values())
    stale = [
        doc_id
        for doc_id, group in list_seller_statement_documents(db_path, period)
        if group.role_group not in statements
        and doc_id == group_document_id(period, group.role_group)
    ]
    delete_seller_statement_documents(db_path, stale)
    return written


def replace_seller_statements(db_path: Path, period: str, statements: SellerStatements) -> int:
    """Drop every record of the period, then write ``statements``."""
    existing = [doc_id for doc_id, _ in list_seller_statement_documents(db_path, period)]
    delete_seller_statement_documents(db_path, existing)
    return _upsert_groups(db_path, statements.values())


def merge_duplicate_seller_statements(db_path: Path, period: str) -> dict[str, Any]:
    documents = list_seller_statement_documents(db_path, period)
    merged, obsolete = merge_duplicate_documents(period, documents)
    _upsert_groups(db_path, merged.values())
    delete_seller_statement_documents(db_path, obsolete)
    return {
        "period": period,
        "documents": len(documents),
        "groups": len(merged),
        "removed_documents": obsolete,
    }


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------

def save_disputes(
    db_path: Path, period: str, statement_id: str | None, disputes: Sequence[Dispute]
) -> int:
    return write_in_chunks(
        db_path,
        """
        INSERT OR REPLACE INTO disputes(
            dispute_id, period, statement_id, type, billing_item, account_name, payload, detected_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                d.dispute_id,
                period,
                statement_id,
                d.dispute_type.value,
                d.billing_item,
                d.account_name,
                json.dumps(d.to_dict()),
                d.detected_at.isoformat(),
            )
            for d in disputes
        ],
    )


def delete_disputes(db_path: Path, period: str, statement_id: str | None = None) -> int:
    with get_conn(db_path) as conn:
        if statement_id:
            cur = conn.execute(
                "DELETE FROM disputes WHERE period = ? AND statement_id = ?", (period, statement_id)
            )
        else:
            cur = conn.execute("DELETE FROM disputes WHERE period = ?", (period,))
        return cur.rowcount


def list_disputes(
    db_path: Path, period: str, dispute_type: str | None = None, limit: int = 1000
) -> list[dict[str, Any]]:
    with get_conn(db_path) as conn:
        if dispute_type:
            rows = conn.execute(
                """
                SELECT statement_id, payload FROM disputes
                WHERE period = ? AND type = ?
                ORDER BY detected_at, rowid
                LIMIT ?
                """,
                (period, dispute_type, limit),
            ).fetchall()
        else:
            rows = conn.execute(
                """
                SELECT statement_id, payload FROM disputes
                WHERE period = ?
                ORDER BY detected_at, rowid
                LIMIT ?
                """,
                (period, limit),
            ).fetchall()
    return [{**json.loads(row["payload"]), "statement_id": row["statement_id"]} for row in rows]


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------

def log_audit_event(
    db_path: Path,
    event_type: str,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    actor: str = "system",
    detail: str | None = None,
    old_value: str | None = None,
    new_value: str | None = None,
) -> None:
    with get_conn(db_path) as conn:
        conn.execute(
            """
            INSERT INTO audit_events(
                event_type, action, entity_type, entity_id, actor, detail, old_value, new_value, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (event_type, action, entity_type, entity_id, actor, detail, old_value, new_value, utc_now()),
        )


def list_audit_events(
    db_path: Path,
    entity_type: str | None = None,
    entity_id: str | None = None,
    limit: int = 100,
) -> list[dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if entity_type:
        clauses.append("entity_type = ?")
        params.append(entity_type)
    if entity_id:
        clauses.append("entity_id = ?")
        params.append(entity_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"""
            SELECT event_id, event_type, action, entity_type, entity_id, actor,
                   detail, old_value, new_value, created_at
            FROM audit_events
            {where}
            ORDER BY event_id DESC
            LIMIT ?
            """,
            (*params, limit),
        ).fetchall()
    return [dict(row) for row in rows]
