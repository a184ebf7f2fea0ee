

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Optional, Any


@dataclass(frozen=True)
class MobileMoneyVerificationResult:
    valid: bool
    api_verified: bool = False
    account_name: Optional[str] = None
    country: Optional[str] = None
    operator: Optional[str] = None
    operator_code: Optional[str] = None
    mobile_money_supported: bool = False
    error_message: Optional[str] = None
    normalized_phone: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
