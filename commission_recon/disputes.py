from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Sequence

from commission_recon.config import CHANGED_RATE_THRESHOLD_CENTS, ZERO_TOLERANCE
from commission_recon.models import CarrierStatementRow, MasterRecord, MatchedRow, normalize_key
from commission_recon.money import cents_to_float, format_cents, to_cents

logger = logging.getLogger(__name__)


class DisputeType(str, Enum):
    NEW_ACCOUNT = "new_account"
    ZERO = "zero"
    CHARGEBACK = "chargeback"
    CANCELED = "canceled"
    CHANGED_RATE = "changed_rate"


def _now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


@dataclass(frozen=True)
class Dispute:
    dispute_type: DisputeType
    account_name: str
    billing_item: str
    explanation: str
    actual_cents: int | None = None
    expected_cents: int | None = None
    difference_cents: int | None = None
    jurisdiction: str = ""
    account_number: str = ""
    provider: str = ""
    carrier_statement: str = ""
    bill_description: str = ""
    bill_period: str = ""
    detected_at: datetime = field(default_factory=_now)
    dispute_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        def amount(cents: int | None) -> float | None:
            return None if cents is None else cents_to_float(cents)

        return {
            "dispute_id": self.dispute_id,
            "type": self.dispute_type.value,
            "account_name": self.account_name,
            "billing_item": self.billing_item,
            "explanation": self.explanation,
            "actual_amount": amount(self.actual_cents),
            "expected_amount": amount(self.expected_cents),
            "difference": amount(self.difference_cents),
            "jurisdiction": self.jurisdiction,
            "account_number": self.account_number,
            "provider": self.provider,
            "carrier_statement": self.carrier_statement,
            "bill_description": self.bill_description,
            "bill_period": self.bill_period,
            "detected_at": self.detected_at.isoformat(),
        }


def _row_context(row: CarrierStatementRow) -> dict[str, Any]:
    return {
        "account_name": row.account_name,
        "billing_item": row.billing_item,
        "jurisdiction": row.jurisdiction,
        "account_number": row.account_number,
        "provider": row.provider,
        "carrier_statement": row.carrier_statement,
        "bill_description": row.bill_description,
        "bill_period": row.bill_period,
    }


def _matched_context(row: MatchedRow) -> dict[str, Any]:
    context = _row_context(row.row)
    context["provider"] = row.provider
    context["jurisdiction"] = row.jurisdiction
    return context


def detect_new_accounts(unmatched: Sequence[CarrierStatementRow]) -> list[Dispute]:
    """Unmatched statement lines, one dispute per distinct line signature."""
    disputes: list[Dispute] = []
    seen: set[str] = set()
    for row in unmatched:
        signature = "|".join(
            [row.account_name, row.billing_item, row.provider, row.carrier_statement]
        ).lower()
        if signature in seen:
            continue
        seen.add(signature)
        disputes.append(
            Dispute(
                dispute_type=DisputeType.NEW_ACCOUNT,
                actual_cents=row.commission_cents,
                explanation=(
                    f"New account found in {row.carrier_statement or 'carrier'} statement "
                    f"that is not in Master Data"
                ),
                **_row_context(row),
            )
        )
    return disputes


def _expected_commission_cents(row: MatchedRow) -> int | None:
    if not row.expected_comp_percent:
        return None
    return to_cents(row.row.invoice_total * row.expected_comp_percent)


def detect_zeros_and_chargebacks(matched: Sequence[MatchedRow]) -> list[Dispute]:
    disputes: list[Dispute] = []
    for row in matched:
        amount = row.commission_amount
        if abs(amount) < ZERO_TOLERANCE:
            disputes.append(
                Dispute(
                    dispute_type=DisputeType.ZERO,
                    actual_cents=row.commission_cents,
                    expected_cents=_expected_commission_cents(row),
                    explanation=f"Commission amount rounds to $0.00 (actual: ${amount:.4f})",
                    **_matched_context(row),
                )
            )
        if amount < 0:
            disputes.append(
                Dispute(
                    dispute_type=DisputeType.CHARGEBACK,
                    actual_cents=row.commission_cents,
                    explanation=(
                        f"Negative commission amount (chargeback): {format_cents(row.commission_cents)}"
                    ),
                    **_matched_context(row),
                )
            )
    return disputes


def detect_canceled_missing(
    statement_rows: Sequence[CarrierStatementRow],
    records: Sequence[MasterRecord],
) -> list[Dispute]:
    """Registry records whose billing item never shows up on the statements."""
    found = {normalize_key(r.billing_item) for r in statement_rows if r.billing_item.strip()}
    disputes: list[Dispute] = []
    for record in records:
        key = record.billing_key
        if not key or key in found:
            continue

        explanation = "Item in Master Data not found in carrier statements"
        if "zmap" in record.zmap_marker.lower():
            explanation = "ZMap item in Master Data not found in carrier statements"
        elif record.billing_type and record.billing_type.upper() != "MRC":
            explanation = "Non-MRC billing item in Master Data not found in carrier statements"

        disputes.append(
            Dispute(
                dispute_type=DisputeType.CANCELED,
                account_name=record.account_name,
                billing_item=record.billing_item,
                expected_cents=record.expected_amount_cents,
                explanation=explanation,
                jurisdiction=record.jurisdiction,
                provider=record.provider,
            )
        )
    return disputes


def _totals_by_item(rows: Sequence[MatchedRow]) -> dict[str, int]:
    totals: dict[str, int] = {}
    for row in rows:
        key = normalize_key(row.billing_item)
        totals[key] = totals.get(key, 0) + row.commission_cents
    return totals


def detect_changed_rates(
    matched: Sequence[MatchedRow],
    previous: Sequence[MatchedRow] | None,
    threshold_cents: int = CHANGED_RATE_THRESHOLD_CENTS,
) -> list[Dispute]:
    """Billing items whose commission moved more than the threshold since last period."""
    if not previous:
        return []

    current_totals = _totals_by_item(matched)
    previous_totals = _totals_by_item(previous)
    representatives: dict[str, MatchedRow] = {}
    for row in matched:
        representatives.setdefault(normalize_key(row.billing_item), row)

    disputes: list[Dispute] = []
    for key, current in current_totals.items():
        prior = previous_totals.get(key, 0)
        difference = current - prior
        if abs(difference) <= threshold_cents:
            continue
        row = representatives[key]
        context = _matched_context(row)
        context.pop("bill_description")
        context.pop("bill_period")
        disputes.append(
            Dispute(
                dispute_type=DisputeType.CHANGED_RATE,
                expected_cents=prior,
                actual_cents=current,
                difference_cents=difference,
                explanation=(
                    f"Commission changed from {format_cents(prior)} to {format_cents(current)} "
                    f"(difference: {format_cents(difference)})"
                ),
                **context,
            )
        )
    return disputes


def detect_all_disputes(
    statement_rows: Sequence[CarrierStatementRow],
    matched: Sequence[MatchedRow],
    unmatched: Sequence[CarrierStatementRow],
    records: Sequence[MasterRecord],
    previous: Sequence[MatchedRow] | None = None,
) -> list[Dispute]:
    disputes: list[Dispute] = []
    disputes.extend(detect_new_accounts(unmatched))
    disputes.extend(detect_zeros_and_chargebacks(matched))
    disputes.extend(detect_canceled_missing(statement_rows, records))
    disputes.extend(detect_changed_rates(matched, previous))

    counts: dict[str, int] = {}
    for d in disputes:
        counts[d.dispute_type.value] = counts.get(d.dispute_type.value, 0) + 1
    logger.info(f"Dispute detection complete: {len(disputes)} disputes {counts}.")
    return disputes
