


# app/providers/factory.py
from __future__ import annotations

from typing import Any, Dict, Optional

from settings import settings

_GATEWAY_CACHE: Dict[str, Any] = {}


def get_gateway(name: Optional[str] = None):
    key = (name or settings.GATEWAY_PROVIDER or "").strip().upper()
    if not key:
        return None

    key = key.replace("-", "_").replace(" ", "_")

    if key in _GATEWAY_CACHE:
        return _GATEWAY_CACHE[key]

    gateway = None

    if key == "HTTP":
        from app.providers.gateway import HttpGatewayClient
        gateway = HttpGatewayClient()

    elif key == "MOCK":
        from app.providers.mock import MockGateway
        gateway = MockGateway()

    else:
        return None

    _GATEWAY_CACHE[key] = gateway
    return gateway
