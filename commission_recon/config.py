"""
Central configuration: filesystem locations, store batching limits, dispute
thresholds and the cached role table.

The role table is read from YAML once, validated, and frozen into a
``RoleTable``. Call ``reset_role_table()`` to drop the cache (tests do).
"""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from commission_recon.roles import RoleGroup, RoleTable

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
DB_PATH = Path(os.environ.get("COMMISSION_RECON_DB", str(DATA_DIR / "recon.db")))
DEFAULT_ROLE_TABLE_PATH = Path(__file__).resolve().parent / "role_table.yaml"

# The backing store accepts at most 500 operations per atomic submission.
MAX_BATCH_WRITES = 450
BATCH_PACING_SECONDS = 0.3

ZERO_TOLERANCE = Decimal("0.005")
CHANGED_RATE_THRESHOLD_CENTS = 5000


class AliasConfig(BaseModel):
    base: str
    pct: Decimal = Field(ge=0)


class RoleGroupConfig(BaseModel):
    name: str
    roles: list[str] = Field(min_length=1, max_length=2)


class RoleTableConfig(BaseModel):
    residual_role: str = "OTG"
    near_zero_cents: int = Field(default=3, ge=0)
    roles: list[str]
    percentages: dict[str, Decimal]
    aliases: dict[str, AliasConfig] = Field(default_factory=dict)
    discarded_slots: list[str] = Field(default_factory=list)
    residual_slots: list[str] = Field(default_factory=list)
    groups: list[RoleGroupConfig]

    @model_validator(mode="after")
    def _check_rates(self) -> "RoleTableConfig":
        negative = [code for code, pct in self.percentages.items() if pct < 0]
        if negative:
            raise ValueError(f"negative percentages for {negative}")
        return self

    def to_table(self) -> RoleTable:
        return RoleTable(
            roles=tuple(r.upper() for r in self.roles),
            percentages={code.upper(): pct for code, pct in self.percentages.items()},
            aliases={
                code.upper(): (alias.base.upper(), alias.pct)
                for code, alias in self.aliases.items()
            },
            groups=tuple(
                RoleGroup(name=g.name, roles=tuple(r.upper() for r in g.roles))
                for g in self.groups
            ),
            residual_role=self.residual_role.upper(),
            discarded_slots=frozenset(s.upper() for s in self.discarded_slots),
            residual_slots=frozenset(s.upper() for s in self.residual_slots),
            near_zero_cents=self.near_zero_cents,
        )


_ROLE_TABLE_CACHE: dict[str, RoleTable] = {}


def load_role_table(path: str | Path | None = None) -> RoleTable:
    """Read and validate a role table file. Not cached."""
    if path is None:
        path = os.environ.get("COMMISSION_RECON_ROLE_TABLE") or DEFAULT_ROLE_TABLE_PATH
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Role table not found: {path}")

    with path.open("r", encoding="utf-8") as f:
        raw: Any = yaml.safe_load(f)
    return RoleTableConfig.model_validate(raw).to_table()


def get_role_table() -> RoleTable:
    """Process-wide role table, loaded on first use."""
    table = _ROLE_TABLE_CACHE.get("default")
    if table is None:
        table = load_role_table()
        _ROLE_TABLE_CACHE["default"] = table
    return table


def reset_role_table() -> None:
    _ROLE_TABLE_CACHE.clear()
