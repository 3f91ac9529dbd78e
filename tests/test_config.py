from __future__ import annotations

import os
import tempfile
import unittest
from decimal import Decimal
from pathlib import Path
from unittest import mock

from commission_recon.config import get_role_table, load_role_table, reset_role_table
from commission_recon.roles import group_document_id

SMALL_TABLE = """
residual_role: OTG
roles: [RD1, OTG]
percentages:
  RD1: 25
groups:
  - {name: RD1, roles: [RD1]}
  - {name: OTG, roles: [OTG]}
"""


class RoleTableTests(unittest.TestCase):
    def tearDown(self) -> None:
        reset_role_table()

    def test_default_table(self) -> None:
        table = load_role_table()
        self.assertEqual(table.residual_role, "OTG")
        self.assertEqual(len(table.roles), 17)
        self.assertEqual(table.percentages["HA5"], Decimal(100))
        self.assertEqual(table.rate_for("RD2-05"), ("RD2", Decimal(5)))
        self.assertEqual(table.rate_for("RM1-15"), ("RM1", Decimal(15)))
        self.assertEqual(
            table.group_names(), ["RD1/2", "RD3/4", "RM1/2", "RM3/4", "OVR/RD5", "OTG"]
        )
        self.assertEqual(table.near_zero_cents, 3)

    def test_table_is_read_only(self) -> None:
        table = load_role_table()
        with self.assertRaises(TypeError):
            table.percentages["RD1"] = Decimal(99)  # type: ignore[index]

    def test_code_validation(self) -> None:
        table = load_role_table()
        self.assertTrue(table.is_valid_code("rd1"))
        self.assertTrue(table.is_valid_code("OTG.0-ZF"))
        self.assertTrue(table.is_valid_code("HA9"))
        self.assertFalse(table.is_valid_code("N/A"))
        self.assertFalse(table.is_valid_code("NOT ON FILE"))
        self.assertFalse(table.is_valid_code("RD1 MISSING"))
        self.assertFalse(table.is_valid_code("XYZ"))
        self.assertFalse(table.is_valid_code(None))

    def test_env_override_and_cache_reset(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "roles.yaml"
            path.write_text(SMALL_TABLE, encoding="utf-8")
            with mock.patch.dict(os.environ, {"COMMISSION_RECON_ROLE_TABLE": str(path)}):
                reset_role_table()
                table = get_role_table()
                self.assertEqual(table.roles, ("RD1", "OTG"))
                self.assertIs(get_role_table(), table)
            reset_role_table()
            self.assertEqual(len(get_role_table().roles), 17)

    def test_negative_percentage_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "roles.yaml"
            path.write_text(SMALL_TABLE.replace("RD1: 25", "RD1: -5"), encoding="utf-8")
            with self.assertRaises(ValueError):
                load_role_table(path)

    def test_group_with_unknown_role_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "roles.yaml"
            path.write_text(SMALL_TABLE.replace("roles: [RD1]}", "roles: [RD9]}"), encoding="utf-8")
            with self.assertRaises(ValueError):
                load_role_table(path)

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_role_table("/nonexistent/roles.yaml")

    def test_group_document_id(self) -> None:
        self.assertEqual(group_document_id("2025-03", "RD1/2"), "2025-03_RD1_2")
        self.assertEqual(group_document_id("2025-03", "OTG"), "2025-03_OTG")


if __name__ == "__main__":
    unittest.main()
