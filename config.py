import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from errors import ConfigurationError

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean-like flag from environment.

    Accepted falsy values: "0", "false", "off", "no" (case-insensitive).
    Anything else unrecognised (or unset) falls back to `default`.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in {"0", "false", "off", "no"}:
        return False
    if value in {"1", "true", "on", "yes"}:
        return True
    return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number", details=raw)


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./booking.db"
    log_level: str = "INFO"

    stripe_secret_key: str = ""
    stripe_publishable_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_use_stub: bool = False
    success_url: str = "https://example.com/success"
    cancel_url: str = "https://example.com/cancel"
    frontend_url: str = "http://localhost:5173"

    upi_payee_vpa: str = "pay@flynow"
    upi_payee_name: str = "FlyNow"
    qr_service_url: str = "https://api.qrserver.com/v1/create-qr-code/"
    qr_expires_in: int = 300

    fx_api_url: str = "https://api.exchangerate-api.com/v4/latest"

    amadeus_api_key: str = ""
    amadeus_api_secret: str = ""
    use_prod_apis: bool = False

    deals_cache_ttl: float = 600.0
    client_deals_ttl: float = 300.0
    request_timeout: float = 8.0

    strict_confirmation: bool = False

    @property
    def amadeus_base_url(self) -> str:
        if self.use_prod_apis:
            return "https://api.amadeus.com"
        return "https://test.api.amadeus.com"

    def validate(self) -> "Settings":
        # client tier must never outlive the server tier
        if self.client_deals_ttl > self.deals_cache_ttl:
            raise ConfigurationError(
                "CLIENT_DEALS_TTL must not exceed DEALS_CACHE_TTL",
                details=f"{self.client_deals_ttl} > {self.deals_cache_ttl}",
            )
        if self.request_timeout <= 0:
            raise ConfigurationError("REQUEST_TIMEOUT must be positive")
        return self


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build Settings from the process environment (and a .env file, if present).
    Values not set in the environment keep the dataclass defaults.
    """
    load_dotenv(env_file)
    defaults = Settings()
    settings = Settings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
        stripe_publishable_key=os.getenv("STRIPE_PUBLISHABLE_KEY", ""),
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        stripe_use_stub=_env_flag("STRIPE_USE_STUB", default=False),
        success_url=os.getenv("STRIPE_SUCCESS_URL", defaults.success_url),
        cancel_url=os.getenv("STRIPE_CANCEL_URL", defaults.cancel_url),
        frontend_url=os.getenv("FRONTEND_URL", defaults.frontend_url),
        upi_payee_vpa=os.getenv("UPI_PAYEE_VPA", defaults.upi_payee_vpa),
        upi_payee_name=os.getenv("UPI_PAYEE_NAME", defaults.upi_payee_name),
        qr_service_url=os.getenv("QR_SERVICE_URL", defaults.qr_service_url),
        fx_api_url=os.getenv("FX_API_URL", defaults.fx_api_url),
        amadeus_api_key=os.getenv("AMADEUS_API_KEY", ""),
        amadeus_api_secret=os.getenv("AMADEUS_API_SECRET", ""),
        use_prod_apis=_env_flag("USE_PROD_APIS", default=False),
        deals_cache_ttl=_env_float("DEALS_CACHE_TTL", defaults.deals_cache_ttl),
        client_deals_ttl=_env_float("CLIENT_DEALS_TTL", defaults.client_deals_ttl),
        request_timeout=_env_float("REQUEST_TIMEOUT", defaults.request_timeout),
        strict_confirmation=_env_flag("PAYMENTS_STRICT_CONFIRMATION", default=False),
    )
    return settings.validate()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
