from __future__ import annotations

import re
from typing import Any


_PHONE_RE = re.compile(r"\+\d{6,15}")

_SENSITIVE_KEY_MARKERS = (
    "token",
    "authorization",
    "secret",
    "api_key",
    "password",
)

# holder names come back from live verification; keep the initial only
_NAME_KEYS = ("account_name", "accountname", "holder_name")


def mask_phone(value: str | None) -> str | None:
    if value is None:
        return None
    if len(value) <= 8:
        return value
    prefix = value[:6]
    suffix = value[-2:]
    return f"{prefix}****{suffix}"


def mask_name(value: str | None) -> str | None:
    if not value:
        return value
    return f"{value.strip()[:1]}***"


def redact_text(value: str) -> str:
    def _phone_replace(match: re.Match) -> str:
        return mask_phone(match.group(0)) or ""

    masked = _PHONE_RE.sub(_phone_replace, value)

    if "bearer" in masked.lower():
        return "[REDACTED]"

    return masked


def _is_sensitive_key(key: str) -> bool:
    key_l = (key or "").lower()
    return any(marker in key_l for marker in _SENSITIVE_KEY_MARKERS)


def redact_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, list):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in payload.items():
        if _is_sensitive_key(k):
            out[k] = "[REDACTED]"
        elif (k or "").lower() in _NAME_KEYS and isinstance(v, str):
            out[k] = mask_name(v)
        else:
            out[k] = redact_value(v)
    return out
