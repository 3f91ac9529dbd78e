"""Immutable role tables consumed by the allocator and the aggregator."""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

_HA_PATTERN = re.compile(r"^HA\d+$", re.IGNORECASE)


@dataclass(frozen=True)
class RoleGroup:
    name: str
    roles: tuple[str, ...]


def group_document_id(period: str, role_group: str) -> str:
    """Deterministic seller statement id for a (period, role group)."""
    return f"{period}_{role_group.replace('/', '_')}"


@dataclass(frozen=True)
class RoleTable:
    roles: tuple[str, ...]
    percentages: Mapping[str, Decimal]
    aliases: Mapping[str, tuple[str, Decimal]]
    groups: tuple[RoleGroup, ...]
    residual_role: str = "OTG"
    discarded_slots: frozenset[str] = frozenset()
    residual_slots: frozenset[str] = frozenset()
    near_zero_cents: int = 3
    invalid_markers: tuple[str, ...] = ("NOT ON", "MISSING")
    max_code_length: int = 20

    def __post_init__(self) -> None:
        object.__setattr__(self, "percentages", MappingProxyType(dict(self.percentages)))
        object.__setattr__(self, "aliases", MappingProxyType(dict(self.aliases)))
        if self.residual_role not in self.roles:
            raise ValueError(f"residual role {self.residual_role!r} missing from role list")
        for group in self.groups:
            unknown = [r for r in group.roles if r not in self.roles]
            if unknown:
                raise ValueError(f"role group {group.name!r} references unknown roles {unknown}")

    def is_ha(self, code: str) -> bool:
        return bool(_HA_PATTERN.match(str(code or "").strip()))

    def is_residual_code(self, code: str) -> bool:
        return str(code or "").strip().upper().startswith(self.residual_role)

    def is_valid_code(self, value: object) -> bool:
        """True if ``value`` is a recognised role code."""
        if not isinstance(value, str):
            return False
        upper = value.strip().upper()
        if not upper or upper == "N/A" or len(upper) > self.max_code_length:
            return False
        if any(marker in upper for marker in self.invalid_markers):
            return False
        if upper in self.percentages or upper in self.aliases:
            return True
        return self.is_ha(upper) or self.is_residual_code(upper)

    def rate_for(self, code: str) -> tuple[str, Decimal]:
        """(role the share is credited to, percentage) for one code."""
        alias = self.aliases.get(code)
        if alias is not None:
            return alias
        return code, self.percentages.get(code, Decimal(0))

    def group_names(self) -> list[str]:
        return [g.name for g in self.groups]

    def empty_shares(self) -> dict[str, int]:
        return {role: 0 for role in self.roles}
