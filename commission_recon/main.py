from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from commission_recon.config import DATA_DIR, DB_PATH, get_role_table
from commission_recon.disputes import DisputeType
from commission_recon.matching import run_matching
from commission_recon.persistence import (
    init_db,
    list_audit_events,
    list_disputes,
    list_statements,
    load_master_registry,
    load_matches,
    load_seller_statements,
    load_unmatched_rows,
    log_audit_event,
    merge_duplicate_seller_statements,
    save_master_registry,
)
from commission_recon.pipeline import (
    ingest_statement,
    regenerate_period,
    retract_statement,
    validate_period,
)
from commission_recon.seller_statements import statement_totals


app = FastAPI(title="Commission Reconciliation", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:8001"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class MasterRegistryRequest(BaseModel):
    records: list[dict[str, Any]]


class IngestStatementRequest(BaseModel):
    carrier: str
    rows: list[dict[str, Any]]
    statement_id: str | None = None
    filename: str | None = None


class RegenerateRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


def _check_period(period: str) -> str:
    try:
        return validate_period(period)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/health")
def health() -> JSONResponse:
    return JSONResponse({"ok": True, "service": "commission-recon"})


@app.get("/api/v1/health")
def api_health() -> JSONResponse:
    return JSONResponse({"ok": True})


@app.get("/api/v1/role-table")
def api_role_table() -> JSONResponse:
    table = get_role_table()
    return JSONResponse(
        {
            "roles": list(table.roles),
            "percentages": {code: str(pct) for code, pct in table.percentages.items()},
            "aliases": {
                code: {"role": role, "percent": str(pct)} for code, (role, pct) in table.aliases.items()
            },
            "groups": [{"name": g.name, "roles": list(g.roles)} for g in table.groups],
            "residual_role": table.residual_role,
        }
    )


# ---------------------------------------------------------------------------
# Master registry
# ---------------------------------------------------------------------------

@app.put("/api/v1/master-registry")
def api_replace_master_registry(payload: MasterRegistryRequest) -> JSONResponse:
    try:
        count = save_master_registry(DB_PATH, payload.records)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit_event(
        DB_PATH, event_type="master_registry", action="replaced",
        entity_type="master_registry", detail=f"{count} records",
    )
    return JSONResponse({"ok": True, "count": count})


@app.get("/api/v1/master-registry")
def api_master_registry(limit: int = 500) -> JSONResponse:
    records = load_master_registry(DB_PATH)
    rows = [
        {
            "record_id": r.record_id,
            "billing_item": r.billing_item,
            "account_name": r.account_name,
            "provider": r.provider,
            "jurisdiction": r.jurisdiction,
            "role_slots": list(r.role_slots),
        }
        for r in records[:limit]
    ]
    return JSONResponse({"rows": rows, "count": len(records)})


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

@app.post("/api/v1/periods/{period}/statements")
def api_ingest_statement(period: str, payload: IngestStatementRequest) -> JSONResponse:
    _check_period(period)
    carrier = payload.carrier.strip()
    if not carrier:
        raise HTTPException(status_code=400, detail="carrier is required")
    statement_id = payload.statement_id or (
        f"{datetime.now(UTC).strftime('stmt-%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:8]}"
    )
    try:
        result = ingest_statement(
            DB_PATH, period, statement_id, carrier, payload.rows, filename=payload.filename
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse({"ok": True, **result})


@app.get("/api/v1/periods/{period}/statements")
def api_list_statements(period: str) -> JSONResponse:
    rows = list_statements(DB_PATH, _check_period(period))
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.delete("/api/v1/statements/{statement_id}")
def api_retract_statement(statement_id: str) -> JSONResponse:
    try:
        result = retract_statement(DB_PATH, statement_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Statement not found")
    return JSONResponse({"ok": True, **result})


@app.post("/api/v1/periods/{period}/regenerate")
def api_regenerate_period(period: str, payload: RegenerateRequest | None = None) -> JSONResponse:
    _check_period(period)
    result = regenerate_period(DB_PATH, period)
    if payload and payload.reason:
        log_audit_event(
            DB_PATH, event_type="period", action="regenerate_requested",
            entity_type="period", entity_id=period, actor="analyst", detail=payload.reason,
        )
    return JSONResponse({"ok": True, **result})


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

@app.get("/api/v1/periods/{period}/matches")
def api_matches(period: str, statement_id: str | None = None, limit: int = 500) -> JSONResponse:
    matches = load_matches(DB_PATH, _check_period(period), statement_id)
    rows = [m.to_dict() for m in matches[:limit]]
    return JSONResponse({"rows": rows, "count": len(matches)})


@app.get("/api/v1/periods/{period}/unmatched")
def api_unmatched(period: str, limit: int = 500) -> JSONResponse:
    unmatched = load_unmatched_rows(DB_PATH, _check_period(period))
    rows = [r.to_dict() for r in unmatched[:limit]]
    return JSONResponse({"rows": rows, "count": len(unmatched)})


@app.get("/api/v1/periods/{period}/seller-statements")
def api_seller_statements(period: str, role_group: str | None = None) -> JSONResponse:
    statements = load_seller_statements(DB_PATH, _check_period(period))
    if role_group:
        if role_group not in get_role_table().group_names():
            raise HTTPException(status_code=400, detail="unknown role group")
        statements = {k: v for k, v in statements.items() if k == role_group}
    rows = [g.to_dict() for g in statements.values()]
    return JSONResponse({"rows": rows, "count": len(rows), "totals": statement_totals(statements)})


@app.post("/api/v1/periods/{period}/seller-statements/merge-duplicates")
def api_merge_duplicate_seller_statements(period: str) -> JSONResponse:
    result = merge_duplicate_seller_statements(DB_PATH, _check_period(period))
    log_audit_event(
        DB_PATH, event_type="seller_statements", action="merged_duplicates",
        entity_type="period", entity_id=period, actor="analyst",
        detail=f"removed {len(result['removed_documents'])} records",
    )
    return JSONResponse({"ok": True, **result})


@app.get("/api/v1/periods/{period}/disputes")
def api_disputes(period: str, type: str | None = None, limit: int = 1000) -> JSONResponse:
    if type and type not in {t.value for t in DisputeType}:
        raise HTTPException(status_code=400, detail="invalid dispute type filter")
    rows = list_disputes(DB_PATH, _check_period(period), dispute_type=type, limit=limit)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/audit")
def api_audit_events(
    entity_type: str | None = None,
    entity_id: str | None = None,
    limit: int = 200,
) -> JSONResponse:
    rows = list_audit_events(DB_PATH, entity_type=entity_type, entity_id=entity_id, limit=limit)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/demo/match-summary")
def api_demo_match_summary() -> JSONResponse:
    result = run_matching(DATA_DIR)
    return JSONResponse({"totals": result["totals"], "sample_matched": result["sample_matched"]})


@app.on_event("startup")
def on_startup() -> None:
    init_db(DB_PATH)
