from __future__ import annotations

from typing import Any, Mapping, Sequence

# Priority-ordered field names. Exact names are tried first, then the same
# names case-insensitively.
BILLING_ITEM_FIELDS = (
    "OTG Comp Billing item",
    "OTG Comp Billing Item",
    "otgCompBillingItem",
    "billing_item",
    "serviceType",
)
ACCOUNT_NAME_FIELDS = ("clientName", "Account **CARRIER**", "accountName", "account_name")
PROVIDER_FIELDS = ("Service Provider", "serviceProvider", "provider")
NOTES_FIELDS = ("VP NOTES", "VP NOTE", "NOTES", "vpNotes", "notes")
JURISDICTION_FIELDS = ("ST", "State", "state", "jurisdiction")
EXPECTED_PERCENT_FIELDS = ("EXPECTED/Mo. OTG Comp %", "expectedCompPercent", "splitPercentage")
EXPECTED_AMOUNT_FIELDS = ("expectedAmount", "Monthly Unit Price", "expected_amount")
RECORD_ID_FIELDS = ("id", "ID", "record_id")
ZMAP_MARKER_FIELDS = ("H", "Column H")
BILLING_TYPE_FIELDS = ("W", "Column W", "Billing Type")

STATEMENT_FIELDS: dict[str, tuple[str, ...]] = {
    "account_name": ("account_name", "accountName", "Account Name"),
    "billing_item": ("billing_item", "otgCompBillingItem", "OTG Comp Billing item"),
    "commission_amount": ("commission_amount", "commissionAmount", "Commission Amount"),
    "invoice_total": ("invoice_total", "invoiceTotal", "Invoice Total"),
    "provider": ("provider", "Provider", "Service Provider"),
    "jurisdiction": ("jurisdiction", "state", "State", "ST"),
    "account_number": ("account_number", "accountNumber", "Account Number"),
    "carrier_statement": ("carrier_statement", "carrierStatement", "carrier"),
    "bill_description": ("bill_description", "billDescription"),
    "bill_period": ("bill_period", "billPeriod"),
    "line_id": ("line_id", "lineId"),
}


def role_slot_fields(slot: int) -> tuple[str, ...]:
    return (
        f"COMP {slot}",
        f"Comp {slot}",
        f"COMP{slot}",
        f"Comp{slot}",
        f"COMP-{slot}",
        f"Comp-{slot}",
    )


def legacy_slot_fields(slot: int) -> tuple[str, ...]:
    return (f"before 07/2025 COMP {slot}", f"before 07/2025 Comp {slot}")


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def resolve_field(record: Mapping[str, Any], names: Sequence[str], default: Any = None) -> Any:
    for name in names:
        value = record.get(name)
        if _present(value):
            return value

    folded = {str(key).strip().lower(): key for key in record}
    for name in names:
        key = folded.get(name.lower())
        if key is not None and _present(record[key]):
            return record[key]
    return default


def resolve_text(record: Mapping[str, Any], names: Sequence[str]) -> str:
    value = resolve_field(record, names, "")
    return str(value).strip()
