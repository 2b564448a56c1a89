# config.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - CONFIGURATION
# ============================================================================
# Environment-driven settings for the webhook pipeline, the coupon resolver
# and every outbound integration client.
# ============================================================================

import os
from dataclasses import dataclass


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# ============================================================================
# SECTION 1: CORE SETTINGS
# ============================================================================

class Settings:
    """Process-wide settings read from the environment"""

    SERVICE_NAME: str = os.getenv("SERVICE_NAME", "storefront-fulfillment")
    VERSION: str = "1.0.0"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Gateway identity, used in logs and in price-correction markers
    GATEWAY_NAME: str = os.getenv("GATEWAY_NAME", "bridgerpay")

    # Price reconciliation: metadata copy may drift at most this many units
    PRICE_TOLERANCE: float = float(os.getenv("PRICE_TOLERANCE", "1"))

    # Affiliate attribution window for returning customers
    AFFILIATE_LIFETIME_DAYS: int = int(os.getenv("AFFILIATE_LIFETIME_DAYS", "60"))

    # Upper bound on auto-apply candidates pulled per lookup
    COUPON_QUERY_LIMIT: int = int(os.getenv("COUPON_QUERY_LIMIT", "100"))

    # Default timeout for every outbound call
    INTEGRATION_TIMEOUT_SECONDS: float = float(os.getenv("INTEGRATION_TIMEOUT_SECONDS", "15.0"))

    # Storage backend: "memory" or "postgres"
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "memory")

    # JSON file with programs, product mappings and add-ons
    CATALOGUE_PATH: str = os.getenv("CATALOGUE_PATH", "")

    CORS_ORIGINS: list[str] = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]

    @property
    def price_fixed_by(self) -> str:
        return f"{self.GATEWAY_NAME}-webhook"


settings = Settings()


# ============================================================================
# SECTION 2: INTEGRATION CLIENT CONFIGS
# ============================================================================

@dataclass
class AffiliateConfig:
    """Commission-tracking (AffiliateWP) REST API."""
    api_url: str
    public_key: str
    token: str
    timeout_seconds: float = 15.0

    @classmethod
    def from_env(cls) -> "AffiliateConfig":
        return cls(
            api_url=os.getenv("AFFILIATEWP_API_URL", "").rstrip("/"),
            public_key=os.getenv("AFFILIATEWP_API_PUBLIC_KEY", ""),
            token=os.getenv("AFFILIATEWP_API_TOKEN", ""),
            timeout_seconds=float(os.getenv("AFFILIATEWP_TIMEOUT", str(settings.INTEGRATION_TIMEOUT_SECONDS))),
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.public_key and self.token)


@dataclass
class HyrosConfig:
    """Purchase-attribution tracker."""
    api_url: str
    api_key: str
    enabled: bool = False
    timeout_seconds: float = 15.0

    @classmethod
    def from_env(cls) -> "HyrosConfig":
        return cls(
            api_url=os.getenv("HYROS_API_URL", "https://api.hyros.com/v1/api/v1.0").rstrip("/"),
            api_key=os.getenv("HYROS_API_KEY", ""),
            enabled=_env_bool("HYROS_ENABLED"),
            timeout_seconds=float(os.getenv("HYROS_TIMEOUT", str(settings.INTEGRATION_TIMEOUT_SECONDS))),
        )


@dataclass
class KlaviyoConfig:
    """Marketing-event tracker."""
    api_url: str
    api_key: str
    enabled: bool = False
    revision: str = "2024-07-15"
    timeout_seconds: float = 15.0

    @classmethod
    def from_env(cls) -> "KlaviyoConfig":
        return cls(
            api_url=os.getenv("KLAVIYO_API_URL", "https://a.klaviyo.com/api").rstrip("/"),
            api_key=os.getenv("KLAVIYO_API_KEY", ""),
            enabled=_env_bool("KLAVIYO_ENABLED"),
            revision=os.getenv("KLAVIYO_REVISION", "2024-07-15"),
            timeout_seconds=float(os.getenv("KLAVIYO_TIMEOUT", str(settings.INTEGRATION_TIMEOUT_SECONDS))),
        )


@dataclass
class BackofficeConfig:
    """Back-office order ingestion webhook."""
    webhook_url: str
    currency: str = "USD"
    timeout_seconds: float = 15.0

    @classmethod
    def from_env(cls) -> "BackofficeConfig":
        return cls(
            webhook_url=os.getenv("BACKOFFICE_WEBHOOK_URL", ""),
            currency=os.getenv("BACKOFFICE_CURRENCY", "USD"),
            timeout_seconds=float(os.getenv("BACKOFFICE_TIMEOUT", str(settings.INTEGRATION_TIMEOUT_SECONDS))),
        )
