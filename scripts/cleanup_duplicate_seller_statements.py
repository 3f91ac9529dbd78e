#!/usr/bin/env python3
"""Merge duplicate seller statement records for a processing period.

Lists the records per role group and, with --apply, folds every duplicate
into the record stored under the deterministic id and deletes the rest.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from commission_recon.config import DB_PATH
from commission_recon.persistence import (
    init_db,
    list_seller_statement_documents,
    log_audit_event,
    merge_duplicate_seller_statements,
)
from commission_recon.roles import group_document_id


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Clean up duplicate seller statement records.")
    p.add_argument("period", help="Processing period, YYYY-MM")
    p.add_argument("--db", type=Path, default=DB_PATH)
    p.add_argument("--apply", action="store_true", help="Write changes (default is a dry run)")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    init_db(args.db)

    by_group: dict[str, list[str]] = {}
    for doc_id, group in list_seller_statement_documents(args.db, args.period):
        by_group.setdefault(group.role_group, []).append(doc_id)

    duplicates = {g: ids for g, ids in by_group.items() if len(ids) > 1}
    for role_group, ids in sorted(by_group.items()):
        canonical = group_document_id(args.period, role_group)
        marker = "DUPLICATES" if role_group in duplicates else "ok"
        print(f"{role_group:8} {marker:10} canonical={canonical} records={', '.join(ids)}")

    if not duplicates:
        print("No duplicate seller statements found.")
        return
    if not args.apply:
        print(f"{len(duplicates)} role groups have duplicates. Re-run with --apply to merge them.")
        return

    result = merge_duplicate_seller_statements(args.db, args.period)
    log_audit_event(
        args.db, event_type="seller_statements", action="merged_duplicates",
        entity_type="period", entity_id=args.period, actor="operator",
        detail=f"removed {len(result['removed_documents'])} records",
    )
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
