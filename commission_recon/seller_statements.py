"""Per-period seller statements: full build and incremental add/remove.

A period's statements are a ``dict`` of role group name -> ``SellerStatementGroup``.
Full regeneration is an add onto an empty period, so both paths produce the
same state for the same matched rows.

Each item remembers the contribution ids it absorbed; re-submitting a row that
is already counted is a no-op. Callers must still serialize merges for the
same period.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from commission_recon.config import get_role_table
from commission_recon.models import MatchedRow, contribution_ids
from commission_recon.money import cents_to_float
from commission_recon.roles import RoleGroup, RoleTable, group_document_id

logger = logging.getLogger(__name__)


@dataclass
class SellerStatementItem:
    billing_item: str
    account_name: str
    provider: str = ""
    jurisdiction: str = ""
    notes: str = ""
    commission_cents: int = 0
    seller_cents: int = 0
    contributions: list[str] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.billing_item, self.account_name)

    def sort_key(self) -> tuple[str, str, str]:
        return (self.provider.lower(), self.account_name.lower(), self.billing_item.lower())

    def to_dict(self) -> dict[str, Any]:
        return {
            "billing_item": self.billing_item,
            "account_name": self.account_name,
            "provider": self.provider,
            "jurisdiction": self.jurisdiction,
            "notes": self.notes,
            "commission_cents": self.commission_cents,
            "seller_cents": self.seller_cents,
            "commission_amount": cents_to_float(self.commission_cents),
            "seller_amount": cents_to_float(self.seller_cents),
            "contributions": list(self.contributions),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SellerStatementItem":
        return cls(
            billing_item=str(data.get("billing_item", "")),
            account_name=str(data.get("account_name", "")),
            provider=str(data.get("provider", "")),
            jurisdiction=str(data.get("jurisdiction", "")),
            notes=str(data.get("notes", "")),
            commission_cents=int(data.get("commission_cents", 0)),
            seller_cents=int(data.get("seller_cents", 0)),
            contributions=[str(c) for c in data.get("contributions", [])],
        )


@dataclass
class SellerStatementGroup:
    period: str
    role_group: str
    items: list[SellerStatementItem] = field(default_factory=list)
    total_commission_cents: int = 0
    total_seller_cents: int = 0
    processed_at: str = field(default="", compare=False)

    @property
    def document_id(self) -> str:
        return group_document_id(self.period, self.role_group)

    def recompute(self) -> None:
        """Re-derive totals from items and restore display order."""
        self.items.sort(key=SellerStatementItem.sort_key)
        self.total_commission_cents = sum(i.commission_cents for i in self.items)
        self.total_seller_cents = sum(i.seller_cents for i in self.items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.document_id,
            "period": self.period,
            "role_group": self.role_group,
            "items": [i.to_dict() for i in self.items],
            "item_count": len(self.items),
            "total_commission_cents": self.total_commission_cents,
            "total_seller_cents": self.total_seller_cents,
            "total_commission": cents_to_float(self.total_commission_cents),
            "total_seller": cents_to_float(self.total_seller_cents),
            "processed_at": self.processed_at,
        }


SellerStatements = dict[str, SellerStatementGroup]


@dataclass
class MergeResult:
    updated_groups: int = 0
    added_items: int = 0
    merged_items: int = 0
    removed_items: int = 0
    removed_groups: int = 0
    skipped_contributions: int = 0


def _group_share(row: MatchedRow, group: RoleGroup) -> int | None:
    """Seller share of ``row`` for ``group``, or None when it does not contribute."""
    values = [row.splits[role] for role in group.roles]
    if not any(values):
        return None
    return sum(values)


def _ordered(statements: SellerStatements, table: RoleTable) -> SellerStatements:
    names = [n for n in table.group_names() if n in statements]
    names += [n for n in statements if n not in names]
    return {n: statements[n] for n in names}


def add_to_seller_statements(
    statements: SellerStatements,
    period: str,
    rows: Sequence[MatchedRow],
    table: RoleTable | None = None,
) -> tuple[SellerStatements, MergeResult]:
    """Merge matched rows into a period's seller statements.

    Returns a new mapping; ``statements`` is left untouched.
    """
    table = table or get_role_table()
    merged: SellerStatements = copy.deepcopy(statements)
    result = MergeResult()
    ids = contribution_ids(m.row for m in rows)

    for group in table.groups:
        current = merged.get(group.name) or SellerStatementGroup(period=period, role_group=group.name)
        index = {item.key: item for item in current.items}
        changed = False

        for row, contribution in zip(rows, ids):
            billing_item = row.billing_item.strip()
            if not billing_item:
                continue
            share = _group_share(row, group)
            if share is None:
                continue

            item = index.get(row.merge_key)
            if item is None:
                item = SellerStatementItem(
                    billing_item=billing_item,
                    account_name=row.account_name,
                    provider=row.provider,
                    jurisdiction=row.jurisdiction,
                    notes=row.notes,
                )
                current.items.append(item)
                index[item.key] = item
                result.added_items += 1
            elif contribution in item.contributions:
                result.skipped_contributions += 1
                continue
            else:
                result.merged_items += 1
                item.provider = item.provider or row.provider
                item.jurisdiction = item.jurisdiction or row.jurisdiction
                item.notes = item.notes or row.notes

            item.commission_cents += row.commission_cents
            item.seller_cents += share
            item.contributions.append(contribution)
            changed = True

        if changed:
            current.recompute()
            merged[group.name] = current
            result.updated_groups += 1

    if result.skipped_contributions:
        logger.warning(
            f"Skipped {result.skipped_contributions} contributions already counted in {period} seller statements."
        )
    logger.info(
        f"Added {result.added_items} items ({result.merged_items} merged) "
        f"to {result.updated_groups} seller statement groups for {period}."
    )
    return _ordered(merged, table), result


def remove_from_seller_statements(
    statements: SellerStatements,
    rows: Iterable[MatchedRow],
) -> tuple[SellerStatements, MergeResult]:
    """Drop the items keyed by the retracted rows from every group."""
    keys = {row.merge_key for row in rows if row.billing_item.strip()}
    result = MergeResult()
    if not keys:
        return copy.deepcopy(statements), result

    remaining: SellerStatements = {}
    for name, group in statements.items():
        kept = [copy.deepcopy(i) for i in group.items if i.key not in keys]
        removed = len(group.items) - len(kept)
        if not removed:
            remaining[name] = copy.deepcopy(group)
            continue

        result.removed_items += removed
        result.updated_groups += 1
        if not kept:
            result.removed_groups += 1
            continue
        updated = SellerStatementGroup(
            period=group.period,
            role_group=group.role_group,
            items=kept,
            processed_at=group.processed_at,
        )
        updated.recompute()
        remaining[name] = updated

    logger.info(
        f"Removed {result.removed_items} items from {result.updated_groups} seller statement groups "
        f"({result.removed_groups} emptied)."
    )
    return remaining, result


def generate_seller_statements(
    period: str,
    rows: Sequence[MatchedRow],
    table: RoleTable | None = None,
) -> SellerStatements:
    """Full rebuild of a period's seller statements from its matched rows."""
    statements, _ = add_to_seller_statements({}, period, rows, table)
    return statements


def statement_totals(statements: SellerStatements) -> dict[str, Any]:
    groups = [
        {
            "role_group": g.role_group,
            "items": len(g.items),
            "total_commission": cents_to_float(g.total_commission_cents),
            "total_seller": cents_to_float(g.total_seller_cents),
        }
        for g in statements.values()
    ]
    return {
        "groups": groups,
        "total_seller": cents_to_float(sum(g.total_seller_cents for g in statements.values())),
    }


@dataclass
class DuplicateGroup:
    role_group: str
    document_ids: list[str]
    kept: str


def select_canonical_groups(
    period: str,
    documents: Iterable[tuple[str, SellerStatementGroup]],
) -> tuple[SellerStatements, list[DuplicateGroup]]:
    """Pick one stored record per role group.

    The record stored under the deterministic id wins; otherwise the first
    one found. Conflicts are logged and returned for remediation.
    """
    chosen: dict[str, tuple[str, SellerStatementGroup]] = {}
    seen: dict[str, list[str]] = {}

    for doc_id, group in documents:
        canonical_id = group_document_id(period, group.role_group)
        seen.setdefault(group.role_group, []).append(doc_id)
        if doc_id != canonical_id:
            logger.warning(
                f"Seller statement {doc_id} for {group.role_group} uses a non-canonical id; "
                f"expected {canonical_id}."
            )
        if group.role_group not in chosen or doc_id == canonical_id:
            chosen[group.role_group] = (doc_id, group)

    duplicates: list[DuplicateGroup] = []
    for role_group, doc_ids in seen.items():
        if len(doc_ids) > 1:
            kept = chosen[role_group][0]
            duplicates.append(DuplicateGroup(role_group=role_group, document_ids=doc_ids, kept=kept))
            logger.error(
                f"Duplicate seller statements for {role_group} in {period}: {', '.join(doc_ids)}; "
                f"using {kept}. Run cleanup_duplicate_seller_statements to merge them."
            )

    return {name: group for name, (_, group) in chosen.items()}, duplicates


def merge_duplicate_documents(
    period: str,
    documents: Sequence[tuple[str, SellerStatementGroup]],
) -> tuple[SellerStatements, list[str]]:
    """Collapse duplicate records per role group into one canonical group.

    Items from the canonical record come first; later copies of an item key
    are dropped rather than summed. Returns the merged groups and the
    non-canonical ids that can be deleted.
    """
    by_group: dict[str, list[tuple[str, SellerStatementGroup]]] = {}
    for doc_id, group in documents:
        by_group.setdefault(group.role_group, []).append((doc_id, group))

    merged: SellerStatements = {}
    obsolete: list[str] = []
    for role_group, docs in by_group.items():
        canonical_id = group_document_id(period, role_group)
        docs = sorted(docs, key=lambda d: d[0] != canonical_id)
        items: dict[tuple[str, str], SellerStatementItem] = {}
        for doc_id, group in docs:
            for item in group.items:
                if item.key in items:
                    existing = items[item.key]
                    if (existing.commission_cents, existing.seller_cents) != (
                        item.commission_cents,
                        item.seller_cents,
                    ):
                        logger.warning(
                            f"Duplicate item {item.key} in {doc_id} differs from the kept copy; "
                            f"keeping the kept copy."
                        )
                    continue
                items[item.key] = copy.deepcopy(item)
            if doc_id != canonical_id:
                obsolete.append(doc_id)

        group = SellerStatementGroup(period=period, role_group=role_group, items=list(items.values()))
        group.recompute()
        merged[role_group] = group
        if len(docs) > 1:
            logger.info(f"Merged {len(docs)} records for {role_group} into {canonical_id}.")

    return merged, obsolete
