# app/verification/phone.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

from app.catalog.countries import (
    calling_code_for_country,
    country_for_digits,
    is_supported_country,
    national_lengths,
)
from app.errors import PhoneFormatError

if TYPE_CHECKING:
    from app.catalog.operators import OperatorDirectory

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class PhoneNumber:
    raw_input: str
    normalized_e164: str
    country_code: str
    calling_code: str
    national_number: str
    operator_code: Optional[str] = None


def _lengths_text(lengths: tuple[int, ...]) -> str:
    return " or ".join(str(n) for n in lengths)


def normalize(
    raw_phone: str,
    assumed_country: str | None = None,
    *,
    directory: "OperatorDirectory | None" = None,
) -> PhoneNumber:
    """
    Parse a raw phone string into an E.164 PhoneNumber.

    Accepted shapes: "+221 77 456 78 90", "00221774567890", "774567890" (with
    assumed_country="SN") and "221774567890". An E.164 input comes back unchanged.
    When a directory is given, operator_code is filled from its prefix table.

    Raises PhoneFormatError for anything that can't be resolved to a supported
    country with a valid national length.
    """
    if raw_phone is None or not isinstance(raw_phone, str):
        raise TypeError("raw_phone must be a string")

    text = raw_phone.strip()
    if not text:
        raise PhoneFormatError("Phone number is required")

    digits = _NON_DIGITS.sub("", text)
    if not digits:
        raise PhoneFormatError("Phone number contains no digits")

    international = text.startswith("+")
    if not international and digits.startswith("00"):
        digits = digits[2:]
        international = True

    assumed = (assumed_country or "").strip().upper()

    if international:
        split = country_for_digits(digits)
        if split is None:
            raise PhoneFormatError("Unrecognized country calling code")
        country, calling = split
        national = digits[len(calling):]
    elif assumed:
        if not is_supported_country(assumed):
            raise PhoneFormatError(f"Unsupported country: {assumed}")
        country = assumed
        calling = calling_code_for_country(assumed) or ""
        lengths = national_lengths(assumed)
        # "221774567890" typed without '+' is already international
        if digits.startswith(calling) and len(digits) not in lengths and len(digits) - len(calling) in lengths:
            national = digits[len(calling):]
        else:
            national = digits
    else:
        split = country_for_digits(digits)
        if split is None:
            raise PhoneFormatError("Country could not be determined, add the international prefix")
        country, calling = split
        national = digits[len(calling):]

    lengths = national_lengths(country)
    if len(national) not in lengths:
        raise PhoneFormatError(
            f"Invalid phone length for {country}: expected {_lengths_text(lengths)} digits, got {len(national)}"
        )

    operator_code = None
    if directory is not None:
        operator_code = directory.lookup(country, national).operator_code

    return PhoneNumber(
        raw_input=raw_phone,
        normalized_e164=f"+{calling}{national}",
        country_code=country,
        calling_code=calling,
        national_number=national,
        operator_code=operator_code,
    )
