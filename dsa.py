"""EU Digital Services Act: ad sets delivering to EU/EEA countries need
dsa_beneficiary and dsa_payor."""

from __future__ import annotations

from typing import FrozenSet, Iterable

DSA_COUNTRIES: FrozenSet[str] = frozenset({
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR", "HU", "IE",
    "IT", "LV", "LT", "LU", "MT", "NL", "PL", "PT", "RO", "SK", "SI", "ES", "SE",
    "IS", "LI", "NO",
})


def requires_dsa(included_countries: Iterable[str] | None) -> bool:
    return any(str(c).strip().upper() in DSA_COUNTRIES for c in (included_countries or ()))
