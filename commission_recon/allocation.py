"""Role split allocation.

Turns one signed commission amount and a resolved candidate's role codes into
a ``RoleSplitMap`` whose entries sum to the amount exactly, in cents.

Rules, in order:
    A. |amount| <= near_zero_cents: everything goes to the residual role.
    B. Each code is credited its table percentage; alias codes credit their
       base role at the alias rate.
    C. Residual-prefixed codes (OTG, OTG.0-ZF, ...) get no direct share.
    D. Discarded HA slots get nothing; residual HA slots are credited to the
       residual role instead of an HA bucket.
    E. The residual role absorbs whatever the loop left unallocated.
    F. Negative amounts: residual = amount - sum(other roles).
"""

from __future__ import annotations

import logging
from typing import Sequence

from commission_recon.config import get_role_table
from commission_recon.models import RoleSplitMap
from commission_recon.money import percent_of
from commission_recon.roles import RoleTable

logger = logging.getLogger(__name__)


class AllocationError(ArithmeticError):
    """Role shares failed to sum to the commission amount."""


def allocate_role_splits(
    amount_cents: int,
    codes: Sequence[str],
    table: RoleTable | None = None,
) -> RoleSplitMap:
    table = table or get_role_table()
    residual = table.residual_role
    shares = table.empty_shares()

    if abs(amount_cents) <= table.near_zero_cents:
        shares[residual] = amount_cents
        return RoleSplitMap(cents=shares, residual_role=residual)

    for code in codes:
        raw = str(code or "").strip().upper()
        if not raw:
            continue

        role, pct = table.rate_for(raw)
        if role.startswith(residual):
            continue
        if not pct:
            continue

        share = percent_of(amount_cents, pct)
        if not share:
            continue

        if table.is_ha(role):
            if role in table.discarded_slots:
                continue
            if role in table.residual_slots:
                shares[residual] += share
                continue

        if role in shares:
            shares[role] += share
        else:
            shares[residual] += share

    # Two passes: the second only fires if the first left a remainder.
    for _ in range(2):
        remainder = amount_cents - sum(shares.values())
        if not remainder:
            break
        shares[residual] += remainder

    if amount_cents < 0:
        others = {role: c for role, c in shares.items() if role != residual}
        opposite = sorted(role for role, c in others.items() if c > 0)
        if opposite:
            logger.warning(
                f"Negative commission {amount_cents} cents has positive non-residual shares "
                f"{opposite} for codes {list(codes)}; residual forced to the remainder."
            )
        shares[residual] = amount_cents - sum(others.values())

    total = sum(shares.values())
    if total != amount_cents:
        raise AllocationError(
            f"role shares sum to {total} cents, expected {amount_cents} (codes={list(codes)})"
        )
    return RoleSplitMap(cents=shares, residual_role=residual)
