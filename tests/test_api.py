from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient

from commission_recon import main
from commission_recon.persistence import init_db

REGISTRY = [
    {"id": "MR-1", "OTG Comp Billing item": "525251", "Account **CARRIER**": "Acme Co",
     "ST": "TX", "COMP 1": "RD1", "COMP 2": "RD2"},
    {"id": "MR-2", "OTG Comp Billing item": "525252", "Account **CARRIER**": "Beta",
     "COMP 1": "RM1-15"},
]

LINES = [
    {"line_id": "L-1", "carrier_statement": "Lumen", "billing_item": "525251",
     "account_name": "Acme Co", "commission_amount": "$100.00", "invoice_total": "1,000.00"},
    {"line_id": "L-2", "carrier_statement": "Lumen", "billing_item": "999999",
     "account_name": "Nobody", "commission_amount": "4.00"},
]


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        db_path = Path(self._tmp.name) / "recon.db"
        init_db(db_path)
        self._patch = mock.patch.object(main, "DB_PATH", db_path)
        self._patch.start()
        self.client = TestClient(main.app)

    def tearDown(self) -> None:
        self._patch.stop()
        self._tmp.cleanup()

    def _load(self) -> dict:
        self.assertEqual(
            self.client.put("/api/v1/master-registry", json={"records": REGISTRY}).status_code, 200
        )
        resp = self.client.post(
            "/api/v1/periods/2025-03/statements",
            json={"carrier": "Lumen", "statement_id": "S-1", "rows": LINES},
        )
        self.assertEqual(resp.status_code, 200)
        return resp.json()

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json()["ok"], True)
        self.assertEqual(self.client.get("/api/v1/health").status_code, 200)

    def test_role_table(self) -> None:
        body = self.client.get("/api/v1/role-table").json()
        self.assertEqual(body["residual_role"], "OTG")
        self.assertEqual(body["aliases"]["RM1-15"], {"role": "RM1", "percent": "15"})

    def test_master_registry(self) -> None:
        resp = self.client.put("/api/v1/master-registry", json={"records": REGISTRY})
        self.assertEqual(resp.json()["count"], 2)
        body = self.client.get("/api/v1/master-registry").json()
        self.assertEqual([r["record_id"] for r in body["rows"]], ["MR-1", "MR-2"])

    def test_ingest_and_report(self) -> None:
        body = self._load()
        self.assertEqual(body["matched"], 1)
        self.assertEqual(body["unmatched"], 1)

        matches = self.client.get("/api/v1/periods/2025-03/matches").json()
        self.assertEqual(matches["count"], 1)
        self.assertEqual(matches["rows"][0]["role_split_cents"]["RD1"], 2000)
        self.assertEqual(matches["rows"][0]["jurisdiction"], "TX")

        sellers = self.client.get("/api/v1/periods/2025-03/seller-statements").json()
        self.assertEqual([g["role_group"] for g in sellers["rows"]], ["RD1/2", "OTG"])
        self.assertEqual(sellers["totals"]["total_seller"], 100.0)

        rd = self.client.get(
            "/api/v1/periods/2025-03/seller-statements", params={"role_group": "RD1/2"}
        ).json()
        self.assertEqual(rd["count"], 1)
        self.assertEqual(rd["rows"][0]["id"], "2025-03_RD1_2")
        self.assertEqual(rd["rows"][0]["total_seller"], 30.0)

        disputes = self.client.get(
            "/api/v1/periods/2025-03/disputes", params={"type": "new_account"}
        ).json()
        self.assertEqual(disputes["count"], 1)
        self.assertEqual(disputes["rows"][0]["billing_item"], "999999")

        statements = self.client.get("/api/v1/periods/2025-03/statements").json()
        self.assertEqual(statements["rows"][0]["statement_id"], "S-1")

        unmatched = self.client.get("/api/v1/periods/2025-03/unmatched").json()
        self.assertEqual(unmatched["count"], 1)
        self.assertEqual(unmatched["rows"][0]["account_name"], "Nobody")

    def test_regenerate_and_retract(self) -> None:
        self._load()
        resp = self.client.post("/api/v1/periods/2025-03/regenerate", json={"reason": "registry fix"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["statements"], 1)

        resp = self.client.delete("/api/v1/statements/S-1")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.client.get("/api/v1/periods/2025-03/seller-statements").json()["count"], 0)

        audit = self.client.get("/api/v1/audit", params={"entity_type": "statement"}).json()
        self.assertEqual([r["action"] for r in audit["rows"]], ["retracted", "ingested"])

    def test_merge_duplicates_endpoint(self) -> None:
        self._load()
        resp = self.client.post("/api/v1/periods/2025-03/seller-statements/merge-duplicates")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["removed_documents"], [])

    def test_bad_requests(self) -> None:
        self.assertEqual(self.client.get("/api/v1/periods/2025-13/matches").status_code, 400)
        self.assertEqual(
            self.client.get("/api/v1/periods/2025-03/disputes", params={"type": "bogus"}).status_code,
            400,
        )
        self.assertEqual(
            self.client.get(
                "/api/v1/periods/2025-03/seller-statements", params={"role_group": "XX"}
            ).status_code,
            400,
        )
        resp = self.client.post(
            "/api/v1/periods/2025-03/statements",
            json={"carrier": "Lumen", "rows": [{"billing_item": "1", "commission_amount": "abc"}]},
        )
        self.assertEqual(resp.status_code, 400)
        resp = self.client.post(
            "/api/v1/periods/2025-03/statements", json={"carrier": "  ", "rows": []}
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.client.delete("/api/v1/statements/missing").status_code, 404)


if __name__ == "__main__":
    unittest.main()
