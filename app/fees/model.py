

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class Money:
    # minor units; XOF has no subdivision so 1 == 1 franc
    amount: int
    currency: str = "XOF"


@dataclass(frozen=True)
class FeeBreakdown:
    gateway_fee: int
    app_fee: int
    total_fee: int
    display_percent: int
    actual_gateway_percent: Decimal
    capped: bool
    currency: str = "XOF"
    effective_percent: Decimal = Decimal("0")
