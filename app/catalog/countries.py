from __future__ import annotations

WEST_AFRICA = "WEST_AFRICA"
CENTRAL_AFRICA = "CENTRAL_AFRICA"

# national_lengths: digit count of the national significant number (after the calling code)
COUNTRY_META: dict[str, dict[str, object]] = {
    "BJ": {"name": "Benin", "calling_code": "229", "currency_code": "XOF", "national_lengths": (8,), "region": WEST_AFRICA},
    "BF": {"name": "Burkina Faso", "calling_code": "226", "currency_code": "XOF", "national_lengths": (8,), "region": WEST_AFRICA},
    "CI": {"name": "Cote d'Ivoire", "calling_code": "225", "currency_code": "XOF", "national_lengths": (10,), "region": WEST_AFRICA},
    "GN": {"name": "Guinea", "calling_code": "224", "currency_code": "GNF", "national_lengths": (9,), "region": WEST_AFRICA},
    "ML": {"name": "Mali", "calling_code": "223", "currency_code": "XOF", "national_lengths": (8,), "region": WEST_AFRICA},
    "NE": {"name": "Niger", "calling_code": "227", "currency_code": "XOF", "national_lengths": (8,), "region": WEST_AFRICA},
    "NG": {"name": "Nigeria", "calling_code": "234", "currency_code": "NGN", "national_lengths": (10,), "region": WEST_AFRICA},
    "SN": {"name": "Senegal", "calling_code": "221", "currency_code": "XOF", "national_lengths": (9,), "region": WEST_AFRICA},
    "TG": {"name": "Togo", "calling_code": "228", "currency_code": "XOF", "national_lengths": (8,), "region": WEST_AFRICA},
    "CM": {"name": "Cameroon", "calling_code": "237", "currency_code": "XAF", "national_lengths": (9,), "region": CENTRAL_AFRICA},
    "CG": {"name": "Congo-Brazzaville", "calling_code": "242", "currency_code": "XAF", "national_lengths": (9,), "region": CENTRAL_AFRICA},
    "CD": {"name": "DR Congo", "calling_code": "243", "currency_code": "CDF", "national_lengths": (9,), "region": CENTRAL_AFRICA},
}


def _normalize_code(value: str | None) -> str:
    return (value or "").strip().upper()


CALLING_CODES: dict[str, str] = {}
for code, meta in COUNTRY_META.items():
    calling = str(meta["calling_code"])
    if calling in CALLING_CODES:
        raise RuntimeError(f"Duplicate calling code {calling}: {CALLING_CODES[calling]}, {code}")
    CALLING_CODES[calling] = code

# longest first so "+2250..." never resolves to a shorter code
_CALLING_CODES_BY_LENGTH = sorted(CALLING_CODES, key=len, reverse=True)

SUPPORTED_COUNTRIES = sorted(COUNTRY_META.keys())


def is_supported_country(code: str | None) -> bool:
    return _normalize_code(code) in COUNTRY_META


def currency_for_country(code: str | None) -> str | None:
    meta = COUNTRY_META.get(_normalize_code(code))
    if not meta:
        return None
    return str(meta.get("currency_code"))


def name_for_country(code: str | None) -> str | None:
    meta = COUNTRY_META.get(_normalize_code(code))
    if not meta:
        return None
    return str(meta.get("name"))


def calling_code_for_country(code: str | None) -> str | None:
    meta = COUNTRY_META.get(_normalize_code(code))
    if not meta:
        return None
    return str(meta.get("calling_code"))


def national_lengths(code: str | None) -> tuple[int, ...]:
    meta = COUNTRY_META.get(_normalize_code(code))
    if not meta:
        return ()
    return tuple(meta.get("national_lengths") or ())


def country_for_digits(digits: str) -> tuple[str, str] | None:
    """Split international digits (no '+') into (country_code, calling_code)."""
    for calling in _CALLING_CODES_BY_LENGTH:
        if digits.startswith(calling):
            return CALLING_CODES[calling], calling
    return None
