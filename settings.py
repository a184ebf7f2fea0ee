

# settings.py
from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENV: str = "dev"

    # -----------------------
    # Fees
    # -----------------------
    FEE_CAP_PERCENT: Decimal = Field(default=Decimal("7.0"), gt=0)
    FEE_MARKUP_PERCENT: Decimal = Field(default=Decimal("1.0"), ge=0)
    FEE_ROUND_TO_WHOLE_PERCENT: bool = True
    FEE_MIN_AMOUNT: int = Field(default=0, ge=0)
    # quoted gateway cost used for previews (payin + payout)
    FEE_DEFAULT_GATEWAY_PERCENT: Decimal = Field(default=Decimal("2.70"), ge=0)

    # -----------------------
    # Mobile money verification
    # -----------------------
    MM_VERIFY_TIMEOUT_S: float = 5.0
    MM_LIVE_VERIFICATION: bool = True
    MM_DEFAULT_COUNTRY: str = ""

    # -----------------------
    # Gateway (sandbox/real)
    # -----------------------
    GATEWAY_PROVIDER: str = "HTTP"  # "HTTP" or "MOCK"
    GATEWAY_MODE: Literal["sandbox", "real"] = "sandbox"
    GATEWAY_AUTH_MODE: str = "bearer"  # "bearer" or "x-api-key"
    GATEWAY_HTTP_TIMEOUT_S: float = 20.0

    GATEWAY_SANDBOX_BASE_URL: str = ""
    GATEWAY_SANDBOX_API_KEY: str = ""

    GATEWAY_REAL_BASE_URL: str = ""
    GATEWAY_REAL_API_KEY: str = ""

    # -----------------------
    # Refunds
    # -----------------------
    REFUND_REASON_MIN_LENGTH: int = 10
    REFUND_REASON_MAX_LENGTH: int = 500
    REFUND_WINDOW_DAYS: int = 7
    REFUND_AUTO_DISPATCH: bool = True
    REFUND_INITIATE_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    REFUND_INITIATE_BACKOFF_S: float = Field(default=0.5, ge=0)
    REFUND_STATUS_MAX_POLLS: int = Field(default=5, ge=1)
    REFUND_POLL_BACKOFF_SECONDS: int = 30
    # how long a dispatch owns a PROCESSING refund before the worker may resend it
    REFUND_DISPATCH_LEASE_S: int = Field(default=300, ge=1)


settings = Settings()


def _missing(*names: str) -> list[str]:
    return [n for n in names if not str(getattr(settings, n, "") or "").strip()]


def validate_env_settings() -> None:
    env = (settings.ENV or "dev").strip().lower()
    mode = (settings.GATEWAY_MODE or "sandbox").strip().lower()
    if env == "dev" and mode == "sandbox":
        return

    missing: list[str] = []
    if mode == "real":
        missing += _missing("GATEWAY_REAL_BASE_URL", "GATEWAY_REAL_API_KEY")
    else:
        missing += _missing("GATEWAY_SANDBOX_BASE_URL")

    if settings.FEE_MARKUP_PERCENT > settings.FEE_CAP_PERCENT:
        raise RuntimeError(
            "Settings validation failed. "
            f"FEE_MARKUP_PERCENT={settings.FEE_MARKUP_PERCENT} exceeds FEE_CAP_PERCENT={settings.FEE_CAP_PERCENT}"
        )

    if missing:
        raise RuntimeError(
            f"Settings validation failed. env={env} mode={mode} "
            "Missing required env vars: " + ", ".join(sorted(set(missing)))
        )
