"""Domain models shared by matching, aggregation and dispute detection."""

from __future__ import annotations

import hashlib
import re
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping

from commission_recon import fields as f
from commission_recon.money import cents_to_float, parse_currency, parse_percent, to_cents

_JURISDICTION = re.compile(r"^[A-Z]{2}$")


def normalize_key(value: Any) -> str:
    """Trim, upper-case and collapse internal whitespace."""
    return " ".join(str(value or "").split()).upper()


def normalize_jurisdiction(value: Any) -> str:
    """Two-letter jurisdiction code, or '' when ``value`` is not one."""
    code = str(value or "").strip().upper()
    return code if _JURISDICTION.match(code) else ""


@dataclass(frozen=True)
class MasterRecord:
    """One master registry entry with its fields resolved by synonym."""

    record_id: str
    position: int
    billing_item: str
    account_name: str
    provider: str
    notes: str
    jurisdiction: str
    role_slots: tuple[str, str, str, str]
    legacy_slots: tuple[str, str, str, str]
    expected_comp_percent: Decimal | None
    expected_amount_cents: int
    zmap_marker: str = ""
    billing_type: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], position: int = 0) -> "MasterRecord":
        slots = tuple(f.resolve_text(raw, f.role_slot_fields(i)) for i in range(1, 5))
        legacy = ("",) + tuple(f.resolve_text(raw, f.legacy_slot_fields(i)) for i in range(2, 5))
        expected_amount = f.resolve_field(raw, f.EXPECTED_AMOUNT_FIELDS, 0)
        try:
            expected_cents = to_cents(expected_amount)
        except ValueError:
            expected_cents = 0
        return cls(
            record_id=f.resolve_text(raw, f.RECORD_ID_FIELDS) or f"row-{position}",
            position=position,
            billing_item=f.resolve_text(raw, f.BILLING_ITEM_FIELDS),
            account_name=f.resolve_text(raw, f.ACCOUNT_NAME_FIELDS),
            provider=f.resolve_text(raw, f.PROVIDER_FIELDS),
            notes=f.resolve_text(raw, f.NOTES_FIELDS),
            jurisdiction=normalize_jurisdiction(f.resolve_field(raw, f.JURISDICTION_FIELDS)),
            role_slots=slots,  # type: ignore[arg-type]
            legacy_slots=legacy,  # type: ignore[arg-type]
            expected_comp_percent=parse_percent(f.resolve_field(raw, f.EXPECTED_PERCENT_FIELDS)),
            expected_amount_cents=expected_cents,
            zmap_marker=f.resolve_text(raw, f.ZMAP_MARKER_FIELDS),
            billing_type=f.resolve_text(raw, f.BILLING_TYPE_FIELDS),
            raw=dict(raw),
        )

    @property
    def billing_key(self) -> str:
        return normalize_key(self.billing_item)


def load_registry(raw_records: list[Mapping[str, Any]]) -> list[MasterRecord]:
    return [MasterRecord.from_dict(raw, position=i) for i, raw in enumerate(raw_records)]


@dataclass(frozen=True)
class CarrierStatementRow:
    account_name: str
    billing_item: str
    commission_amount: Decimal
    invoice_total: Decimal = Decimal("0")
    provider: str = ""
    jurisdiction: str = ""
    account_number: str = ""
    carrier_statement: str = ""
    bill_description: str = ""
    bill_period: str = ""
    line_id: str = ""
    statement_id: str = ""
    line_number: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CarrierStatementRow":
        def text(name: str) -> str:
            return f.resolve_text(data, f.STATEMENT_FIELDS[name])

        return cls(
            account_name=text("account_name"),
            billing_item=text("billing_item"),
            commission_amount=parse_currency(
                f.resolve_field(data, f.STATEMENT_FIELDS["commission_amount"])
            ),
            invoice_total=parse_currency(f.resolve_field(data, f.STATEMENT_FIELDS["invoice_total"])),
            provider=text("provider"),
            jurisdiction=text("jurisdiction").upper(),
            account_number=text("account_number"),
            carrier_statement=text("carrier_statement"),
            bill_description=text("bill_description"),
            bill_period=text("bill_period"),
            line_id=text("line_id"),
            statement_id=str(data.get("statement_id") or ""),
            line_number=int(data.get("line_number") or 0),
        )

    @property
    def commission_cents(self) -> int:
        return to_cents(self.commission_amount)

    @property
    def invoice_total_cents(self) -> int:
        return to_cents(self.invoice_total)

    def contribution_id(self) -> str:
        """Stable identity of this line for merge deduplication.

        Stored statement lines are identified by statement and position. Loose
        rows fall back to the carrier line id, then to a digest of their values;
        see ``contribution_ids`` for rows that repeat within one batch.
        """
        if self.statement_id and self.line_number:
            return f"{self.statement_id}#{self.line_number}"
        if self.line_id:
            return f"{self.carrier_statement}:{self.line_id}"
        parts = [
            self.carrier_statement,
            normalize_key(self.billing_item),
            self.account_name,
            self.account_number,
            str(self.commission_cents),
            str(self.invoice_total_cents),
            self.bill_period,
            self.bill_description,
        ]
        return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_name": self.account_name,
            "billing_item": self.billing_item,
            "commission_amount": str(self.commission_amount),
            "invoice_total": str(self.invoice_total),
            "provider": self.provider,
            "jurisdiction": self.jurisdiction,
            "account_number": self.account_number,
            "carrier_statement": self.carrier_statement,
            "bill_description": self.bill_description,
            "bill_period": self.bill_period,
            "line_id": self.line_id,
            "statement_id": self.statement_id,
            "line_number": self.line_number,
        }


def contribution_ids(rows: Iterable[CarrierStatementRow]) -> list[str]:
    """Contribution ids for a batch; repeats of the same id get an occurrence suffix."""
    seen: Counter[str] = Counter()
    ids = []
    for row in rows:
        base = row.contribution_id()
        seen[base] += 1
        ids.append(base if seen[base] == 1 else f"{base}~{seen[base]}")
    return ids


@dataclass(frozen=True)
class RoleSplitMap:
    """Role -> cents. Entries always sum to the originating commission."""

    cents: Mapping[str, int]
    residual_role: str = "OTG"

    def __getitem__(self, role: str) -> int:
        return self.cents.get(role, 0)

    def total_cents(self) -> int:
        return sum(self.cents.values())

    def non_residual_cents(self) -> int:
        return sum(v for k, v in self.cents.items() if k != self.residual_role)

    def amounts(self) -> dict[str, float]:
        return {role: cents_to_float(c) for role, c in self.cents.items()}

    @classmethod
    def from_cents(cls, data: Mapping[str, Any], residual_role: str = "OTG") -> "RoleSplitMap":
        return cls(cents={str(k): int(v) for k, v in data.items()}, residual_role=residual_role)


@dataclass(frozen=True)
class Candidate:
    record: MasterRecord
    codes: tuple[str, ...]
    provider: str = ""
    notes: str = ""
    account_name: str = ""


@dataclass(frozen=True)
class MatchedRow:
    row: CarrierStatementRow
    master_record_id: str
    provider: str
    jurisdiction: str
    splits: RoleSplitMap
    expected_comp_percent: Decimal | None = None
    notes: str = ""

    @property
    def billing_item(self) -> str:
        return self.row.billing_item

    @property
    def account_name(self) -> str:
        return self.row.account_name

    @property
    def commission_amount(self) -> Decimal:
        return self.row.commission_amount

    @property
    def commission_cents(self) -> int:
        return self.row.commission_cents

    @property
    def merge_key(self) -> tuple[str, str]:
        return (self.row.billing_item.strip(), self.row.account_name)

    def to_dict(self) -> dict[str, Any]:
        data = self.row.to_dict()
        data.update(
            {
                "provider": self.provider,
                "jurisdiction": self.jurisdiction,
                "master_record_id": self.master_record_id,
                "expected_comp_percent": (
                    None if self.expected_comp_percent is None else str(self.expected_comp_percent)
                ),
                "notes": self.notes,
                "residual_role": self.splits.residual_role,
                "role_splits": self.splits.amounts(),
                "role_split_cents": dict(self.splits.cents),
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MatchedRow":
        pct = data.get("expected_comp_percent")
        residual = str(data.get("residual_role") or "OTG")
        return cls(
            row=CarrierStatementRow.from_dict(data),
            master_record_id=str(data.get("master_record_id", "")),
            provider=str(data.get("provider", "")),
            jurisdiction=str(data.get("jurisdiction", "")),
            splits=RoleSplitMap.from_cents(data.get("role_split_cents") or {}, residual),
            expected_comp_percent=None if pct in (None, "") else Decimal(str(pct)),
            notes=str(data.get("notes", "")),
        )
