from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Any, ClassVar, Literal
from decimal import Decimal
import json
from pathlib import Path
import os


_DEFAULT_ENV_FILE = str(Path(__file__).resolve().parents[3] / ".env")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=True,
    )

    API_V1_STR: str = "/api/v1"

    # JWT configuration (provide a fallback for local development)
    SECRET_KEY: str = "fallback_secret_for_dev_only"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Database URL
    # Use an absolute path so running the app from different directories
    # (e.g., repo root or backend/) always resolves the same DB file.
    BASE_DIR: ClassVar[Path] = Path(__file__).resolve().parents[2]
    SQLALCHEMY_DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'marketplace.db'}"

    # CORS origins
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Storefront base URL; providers send the browser back here after payment
    SITE_URL: str = "http://localhost:5173"
    # Public base URL of this API, used to build provider notify URLs
    PUBLIC_API_URL: str = "http://localhost:8000"

    # Default currency code used across the application
    DEFAULT_CURRENCY: str = "ZAR"

    # Marketplace commission charged on each order line
    COMMISSION_RATE: Decimal = Decimal("0.08")
    # Largest tolerated gap between a claimed amount and the stored order total
    AMOUNT_EPSILON: Decimal = Decimal("0.005")

    # Outbound provider calls; a timeout is reported as a provider error
    PROVIDER_TIMEOUT_SECONDS: float = 10.0

    # What a failed/cancelled provider outcome does to the order:
    #   retry  -> status=failed, the buyer may pay the same order again
    #   cancel -> status=cancelled, the order is closed
    FAILED_PAYMENT_POLICY: Literal["retry", "cancel"] = "retry"

    # When true, initiation fails if the payment record cannot be written.
    # Default keeps the redirect flowing and lets the webhook recreate it.
    STRICT_PAYMENT_RECORD: bool = False

    # CardLink (hosted card checkout links, HMAC-signed webhooks)
    CARDLINK_SECRET_KEY: str = ""
    CARDLINK_WEBHOOK_SECRET: str = ""
    # Empty means: derive sandbox/live from the secret key
    CARDLINK_API_URL: str = ""

    # QRPay (scan-to-pay; reference and QR payload minted locally)
    QRPAY_MERCHANT_ID: str = ""
    QRPAY_API_KEY: str = ""

    # FormPay (signed hosted form, form-encoded notifications)
    FORMPAY_MERCHANT_ID: str = ""
    FORMPAY_MERCHANT_KEY: str = ""
    FORMPAY_PASSPHRASE: str = ""
    FORMPAY_SANDBOX: bool = True

    LOG_LEVEL: str = "INFO"

    @field_validator("CORS_ORIGINS", mode="before")
    def split_origins(cls, v: Any) -> list[str]:
        """Parse comma-separated or JSON list of origins from environment."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return parsed
            except json.JSONDecodeError:
                pass
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator(
        "CARDLINK_SECRET_KEY",
        "CARDLINK_WEBHOOK_SECRET",
        "QRPAY_MERCHANT_ID",
        "FORMPAY_MERCHANT_ID",
        "FORMPAY_MERCHANT_KEY",
        "FORMPAY_PASSPHRASE",
        mode="before",
    )
    def strip_whitespace(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("SITE_URL", "PUBLIC_API_URL", "CARDLINK_API_URL", mode="before")
    def strip_trailing_slash(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().rstrip("/")
        return v


def load_settings() -> "Settings":
    return Settings(_env_file=os.getenv("ENV_FILE", _DEFAULT_ENV_FILE))


settings = load_settings()
