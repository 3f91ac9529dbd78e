from __future__ import annotations

from typing import Sequence

from commission_recon.models import Candidate, CarrierStatementRow, normalize_key


def has_usable_codes(codes: Sequence[str]) -> bool:
    return any(c and str(c).strip() and str(c).strip().upper() != "N/A" for c in codes)


def resolve_candidate(
    candidates: Sequence[Candidate], row: CarrierStatementRow
) -> Candidate | None:
    """Pick the registry record a statement line belongs to.

    Tie-breaks, first hit wins: narrow to candidates with usable role codes
    when only some have them; a lone candidate; exact account name; account
    name containment either way; first code set and not N/A; registry order.
    """
    if not candidates:
        return None

    pool = list(candidates)
    if len(pool) > 1:
        with_codes = [c for c in pool if has_usable_codes(c.codes)]
        if 0 < len(with_codes) < len(pool):
            pool = with_codes

    if len(pool) == 1:
        return pool[0]

    account = normalize_key(row.account_name)
    if account:
        for candidate in pool:
            if normalize_key(candidate.account_name) == account:
                return candidate
        for candidate in pool:
            master_account = normalize_key(candidate.account_name)
            if master_account and (master_account in account or account in master_account):
                return candidate

    for candidate in pool:
        if candidate.codes and candidate.codes[0] != "N/A":
            return candidate

    return pool[0]
