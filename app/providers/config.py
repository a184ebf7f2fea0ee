

# app/providers/config.py
from __future__ import annotations

from dataclasses import dataclass

from settings import settings


def gateway_mode() -> str:
    return (settings.GATEWAY_MODE or "sandbox").strip().lower()


@dataclass(frozen=True)
class GatewayConfig:
    mode: str  # "sandbox" | "real"
    base_url: str
    api_key: str
    auth_mode: str
    timeout_s: float


def gateway_config() -> GatewayConfig:
    mode = gateway_mode()
    if mode == "real":
        base = settings.GATEWAY_REAL_BASE_URL
        key = settings.GATEWAY_REAL_API_KEY
    else:
        base = settings.GATEWAY_SANDBOX_BASE_URL
        key = settings.GATEWAY_SANDBOX_API_KEY
    return GatewayConfig(
        mode=mode,
        base_url=(base or "").strip().rstrip("/"),
        api_key=(key or "").strip(),
        auth_mode=(settings.GATEWAY_AUTH_MODE or "bearer").strip().lower(),
        timeout_s=float(settings.GATEWAY_HTTP_TIMEOUT_S),
    )


def auth_headers(mode: str, api_key: str) -> dict[str, str]:
    mode = (mode or "bearer").lower()
    api_key = (api_key or "").strip()

    if mode in ("none", "noauth") or not api_key:
        return {}
    if mode == "x-api-key":
        return {"X-Api-Key": api_key}
    return {"Authorization": f"Bearer {api_key}"}
