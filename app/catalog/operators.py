from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from app.catalog.countries import (
    COUNTRY_META,
    SUPPORTED_COUNTRIES,
    calling_code_for_country,
    currency_for_country,
    name_for_country,
)


@dataclass(frozen=True)
class OperatorEntry:
    country_code: str
    prefixes: tuple[str, ...]
    operator_name: str
    operator_code: str
    mobile_money_supported: bool = True


@dataclass(frozen=True)
class OperatorMatch:
    operator_code: Optional[str]
    operator_name: Optional[str]
    mobile_money_supported: bool
    prefix: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.operator_code is not None


NO_MATCH = OperatorMatch(operator_code=None, operator_name=None, mobile_money_supported=False)


DEFAULT_OPERATORS: tuple[OperatorEntry, ...] = (
    # Benin
    OperatorEntry("BJ", ("97", "96", "61", "62", "66", "67"), "MTN Benin", "MTN_BJ"),
    OperatorEntry("BJ", ("95", "94", "60", "64", "65"), "Moov Benin", "MOOV_BJ"),
    OperatorEntry("BJ", ("90", "91", "40", "41"), "Celtiis Benin", "CELTIIS_BJ"),
    # Senegal
    OperatorEntry("SN", ("77",), "Orange Senegal", "ORANGE_SN"),
    OperatorEntry("SN", ("76",), "Free Senegal", "FREE_SN"),
    OperatorEntry("SN", ("78",), "Wave Senegal", "WAVE_SN"),
    OperatorEntry("SN", ("70",), "Expresso Senegal", "EXPRESSO_SN", mobile_money_supported=False),
    # Cote d'Ivoire
    OperatorEntry("CI", ("07",), "Orange Cote d'Ivoire", "ORANGE_CI"),
    OperatorEntry("CI", ("05",), "MTN Cote d'Ivoire", "MTN_CI"),
    OperatorEntry("CI", ("01",), "Moov Cote d'Ivoire", "MOOV_CI"),
    OperatorEntry("CI", ("02",), "Wave Cote d'Ivoire", "WAVE_CI"),
    # Togo
    OperatorEntry("TG", ("90", "91", "92", "93", "70"), "Togocom", "TOGOCOM_TG"),
    OperatorEntry("TG", ("99", "98", "97", "96", "79"), "Moov Togo", "MOOV_TG"),
    # Mali
    OperatorEntry("ML", ("7",), "Orange Mali", "ORANGE_ML"),
    OperatorEntry("ML", ("6", "9"), "Moov Mali", "MOOV_ML"),
    # Burkina Faso
    OperatorEntry("BF", ("07", "77"), "Orange Burkina", "ORANGE_BF"),
    OperatorEntry("BF", ("06", "76"), "Moov Burkina", "MOOV_BF"),
    # Congo-Brazzaville
    OperatorEntry("CG", ("06",), "MTN Congo", "MTN_CG"),
    # Cameroon
    OperatorEntry("CM", ("69",), "Orange Cameroun", "ORANGE_CM"),
    OperatorEntry("CM", ("67",), "MTN Cameroun", "MTN_CM"),
    # Guinea
    OperatorEntry("GN", ("62",), "Orange Guinee", "ORANGE_GN"),
    OperatorEntry("GN", ("66",), "MTN Guinee", "MTN_GN"),
    # Niger
    OperatorEntry("NE", ("97",), "Airtel Niger", "AIRTEL_NE"),
    OperatorEntry("NE", ("90",), "Moov Niger", "MOOV_NE"),
    # DR Congo
    OperatorEntry("CD", ("89",), "Orange RDC", "ORANGE_CD"),
    OperatorEntry("CD", ("81",), "Vodacom RDC", "VODACOM_CD"),
    OperatorEntry("CD", ("99",), "Airtel RDC", "AIRTEL_CD"),
)


def _normalize(value: str | None) -> str:
    return (value or "").strip().upper()


class OperatorDirectory:
    """
    Read-only (country, prefix) -> operator table.

    Built once; lookups never mutate it, so a single instance is shared across threads.
    Two operators claiming the same prefix in one country is rejected at construction.
    """

    def __init__(self, entries: Iterable[OperatorEntry]):
        by_country: dict[str, list[tuple[str, OperatorEntry]]] = {}
        by_code: dict[str, OperatorEntry] = {}
        claimed: dict[tuple[str, str], str] = {}

        for entry in entries:
            country = _normalize(entry.country_code)
            code = _normalize(entry.operator_code)
            if country not in COUNTRY_META:
                raise ValueError(f"Operator {code}: unknown country {country!r}")
            if code in by_code:
                raise ValueError(f"Duplicate operator code: {code}")
            if not entry.prefixes:
                raise ValueError(f"Operator {code}: no prefixes configured")

            for prefix in entry.prefixes:
                if not prefix or not prefix.isdigit():
                    raise ValueError(f"Operator {code}: invalid prefix {prefix!r}")
                owner = claimed.get((country, prefix))
                if owner is not None:
                    raise ValueError(f"Prefix {country}/{prefix} claimed by both {owner} and {code}")
                claimed[(country, prefix)] = code
                by_country.setdefault(country, []).append((prefix, entry))

            by_code[code] = entry

        # longest prefix first: the first hit is the most specific one
        self._by_country = {
            country: tuple(sorted(items, key=lambda item: len(item[0]), reverse=True))
            for country, items in by_country.items()
        }
        self._by_code = by_code

    @property
    def entries(self) -> list[OperatorEntry]:
        return list(self._by_code.values())

    def lookup(self, country_code: str, national_number: str) -> OperatorMatch:
        number = (national_number or "").strip()
        for prefix, entry in self._by_country.get(_normalize(country_code), ()):
            if number.startswith(prefix):
                return OperatorMatch(
                    operator_code=entry.operator_code,
                    operator_name=entry.operator_name,
                    mobile_money_supported=entry.mobile_money_supported,
                    prefix=prefix,
                )
        return NO_MATCH

    def operators_for_country(self, country_code: str, *, mobile_money_only: bool = True) -> list[OperatorEntry]:
        country = _normalize(country_code)
        return [
            e for e in self._by_code.values()
            if _normalize(e.country_code) == country and (e.mobile_money_supported or not mobile_money_only)
        ]

    def operator_by_code(self, operator_code: str | None) -> OperatorEntry | None:
        return self._by_code.get(_normalize(operator_code))

    def is_valid_operator(self, operator_code: str | None) -> bool:
        return self.operator_by_code(operator_code) is not None

    def supported_countries(self) -> list[dict[str, str | None]]:
        return [
            {
                "code": code,
                "name": name_for_country(code),
                "phone_prefix": f"+{calling_code_for_country(code)}",
                "currency": currency_for_country(code),
            }
            for code in SUPPORTED_COUNTRIES
        ]


_DEFAULT_DIRECTORY: OperatorDirectory | None = None


def default_directory() -> OperatorDirectory:
    global _DEFAULT_DIRECTORY
    if _DEFAULT_DIRECTORY is None:
        _DEFAULT_DIRECTORY = OperatorDirectory(DEFAULT_OPERATORS)
    return _DEFAULT_DIRECTORY
