from __future__ import annotations

import logging
from typing import Iterable

from commission_recon.models import Candidate, MasterRecord
from commission_recon.roles import RoleTable

logger = logging.getLogger(__name__)

MasterIndex = dict[str, list[Candidate]]


def extract_role_codes(record: MasterRecord, table: RoleTable) -> list[str]:
    codes: list[str] = []

    first = record.role_slots[0].strip()
    if first and first.upper() != "N/A":
        codes.append(first.upper())

    for slot in range(1, 4):
        value = record.role_slots[slot]
        if not table.is_valid_code(value):
            legacy = record.legacy_slots[slot]
            if table.is_valid_code(legacy):
                value = legacy
        if table.is_valid_code(value):
            codes.append(value.strip().upper())

    return codes


def build_master_index(records: Iterable[MasterRecord], table: RoleTable) -> MasterIndex:
    """Group registry records by normalized billing key, preserving load order."""
    index: MasterIndex = {}
    skipped = 0
    for record in records:
        key = record.billing_key
        if not key:
            skipped += 1
            continue
        index.setdefault(key, []).append(
            Candidate(
                record=record,
                codes=tuple(extract_role_codes(record, table)),
                provider=record.provider,
                notes=record.notes,
                account_name=record.account_name,
            )
        )

    duplicated = sum(1 for candidates in index.values() if len(candidates) > 1)
    logger.info(
        f"Master index built: {len(index):,} billing items, "
        f"{duplicated:,} with duplicate records, {skipped:,} records without a billing item."
    )
    return index


def build_jurisdiction_lookup(records: Iterable[MasterRecord]) -> dict[str, str]:
    """Billing key -> first valid jurisdiction in registry order."""
    lookup: dict[str, str] = {}
    for record in records:
        key = record.billing_key
        if key and record.jurisdiction and key not in lookup:
            lookup[key] = record.jurisdiction
    return lookup
