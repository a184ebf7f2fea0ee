# app/fees/calculator.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

from app.errors import InvalidAmountError, InvalidFeeError
from app.fees.model import FeeBreakdown, Money
from settings import settings

logger = logging.getLogger("mbotamapay")

HUNDRED = Decimal("100")


def _ceil(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_CEILING)


@dataclass(frozen=True)
class PlatformPolicy:
    """
    Fee policy: gateway % + platform markup %, rounded up to the next whole
    percent, capped at cap_percent.

    Subclass and override total_percent() for another markup formula; the cap,
    floor protection and display rounding stay in compute_fee_breakdown.
    """

    cap_percent: Decimal = Decimal("7.0")
    markup_percent: Decimal = Decimal("1.0")
    round_to_whole_percent: bool = True
    min_fee_amount: int = 0

    def total_percent(self, actual_gateway_percent: Decimal) -> Decimal:
        raw = actual_gateway_percent + self.markup_percent
        return _ceil(raw) if self.round_to_whole_percent else raw


def default_policy() -> PlatformPolicy:
    return PlatformPolicy(
        cap_percent=Decimal(settings.FEE_CAP_PERCENT),
        markup_percent=Decimal(settings.FEE_MARKUP_PERCENT),
        round_to_whole_percent=bool(settings.FEE_ROUND_TO_WHOLE_PERCENT),
        min_fee_amount=int(settings.FEE_MIN_AMOUNT),
    )


def _validate(transfer_amount: Money, payin: Money, payout: Money) -> str:
    if not isinstance(transfer_amount.amount, int) or isinstance(transfer_amount.amount, bool):
        raise InvalidAmountError("Transfer amount must be an integer number of minor units")
    if transfer_amount.amount <= 0:
        raise InvalidAmountError(f"Transfer amount must be positive, got {transfer_amount.amount}")

    for label, fee in (("payin", payin), ("payout", payout)):
        if not isinstance(fee.amount, int) or isinstance(fee.amount, bool):
            raise InvalidFeeError(f"Gateway {label} fee must be an integer number of minor units")
        if fee.amount < 0:
            raise InvalidFeeError(f"Gateway {label} fee must not be negative, got {fee.amount}")

    currency = (transfer_amount.currency or "").strip().upper()
    for fee in (payin, payout):
        if (fee.currency or "").strip().upper() != currency:
            raise InvalidFeeError(f"Fee currency {fee.currency} does not match transfer currency {currency}")
    return currency


def compute_fee_breakdown(
    transfer_amount: Money,
    gateway_payin_fee: Money,
    gateway_payout_fee: Money,
    policy: PlatformPolicy | None = None,
) -> FeeBreakdown:
    """
    Split the fee charged on a settled transfer into gateway cost and platform margin.

    Rounding always goes up (total fee and display percent) so the platform never
    under-collects against what it displays. When the gateway alone costs more than
    the cap allows, the total fee floors at the gateway fee and the platform keeps
    nothing (app_fee == 0, capped == True).

    Pure: same inputs give the same FeeBreakdown.
    """
    policy = policy or default_policy()
    currency = _validate(transfer_amount, gateway_payin_fee, gateway_payout_fee)

    amount = Decimal(transfer_amount.amount)
    gateway_fee = gateway_payin_fee.amount + gateway_payout_fee.amount
    actual_percent = Decimal(gateway_fee) * HUNDRED / amount

    raw_percent = policy.total_percent(actual_percent)
    capped = raw_percent > policy.cap_percent
    effective = policy.cap_percent if capped else raw_percent
    if capped:
        logger.info("Fee cap applied: %s%% -> %s%%", raw_percent, policy.cap_percent)

    total_fee = int(_ceil(amount * effective / HUNDRED))
    app_fee = total_fee - gateway_fee

    if app_fee < 0 or actual_percent > effective:
        # gateway cost alone is over the cap: charge cost, no margin
        total_fee = gateway_fee
        app_fee = 0
        capped = True
        effective = actual_percent

    if policy.min_fee_amount and total_fee < policy.min_fee_amount:
        max_fee = max(int(_ceil(amount * policy.cap_percent / HUNDRED)), gateway_fee)
        total_fee = min(policy.min_fee_amount, max_fee)
        if total_fee < policy.min_fee_amount:
            capped = True
        app_fee = total_fee - gateway_fee
        effective = max(effective, Decimal(total_fee) * HUNDRED / amount)

    display_percent = int(_ceil(effective))

    logger.debug(
        "Fee calculation: amount=%s gateway=%s%% effective=%s%% total=%s app=%s capped=%s",
        transfer_amount.amount, actual_percent, effective, total_fee, app_fee, capped,
    )

    return FeeBreakdown(
        gateway_fee=gateway_fee,
        app_fee=app_fee,
        total_fee=total_fee,
        display_percent=display_percent,
        actual_gateway_percent=actual_percent,
        capped=capped,
        currency=currency,
        effective_percent=effective,
    )


def compute_fee_breakdown_from_percent(
    transfer_amount: Money,
    gateway_percent: Decimal | None = None,
    policy: PlatformPolicy | None = None,
) -> FeeBreakdown:
    """Preview variant: gateway cost is a quoted percentage instead of reported fees."""
    pct = Decimal(settings.FEE_DEFAULT_GATEWAY_PERCENT) if gateway_percent is None else Decimal(gateway_percent)
    if pct < 0:
        raise InvalidFeeError(f"Gateway percent must not be negative, got {pct}")
    if not isinstance(transfer_amount.amount, int) or transfer_amount.amount <= 0:
        raise InvalidAmountError(f"Transfer amount must be positive, got {transfer_amount.amount}")

    gateway_fee = int(_ceil(Decimal(transfer_amount.amount) * pct / HUNDRED))
    return compute_fee_breakdown(
        transfer_amount,
        Money(gateway_fee, transfer_amount.currency),
        Money(0, transfer_amount.currency),
        policy,
    )
