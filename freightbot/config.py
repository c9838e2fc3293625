"""
Centralized configuration with environment variable overrides.

Session lifetime, freight thresholds, provider endpoints and ranking
weights are all configurable here. Components receive the values they
need through their constructors; only entry points read ``settings``.
"""

import logging
import os
import re
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

ENVIRONMENTS = ("development", "production", "test")
POSTAL_CODE_PATTERN = re.compile(r"^\d{8}$")


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


@dataclass(frozen=True)
class SessionConfig:
    """Conversation session lifetime and fallback sweep cadence."""

    ttl_hours: int = _safe_int("SESSION_TTL_HOURS", "6")
    sweep_interval_seconds: int = _safe_int("SESSION_SWEEP_INTERVAL", "600")

    @property
    def ttl_seconds(self) -> int:
        return self.ttl_hours * 3600


@dataclass(frozen=True)
class FreightConfig:
    """Freight calculation rules: weights, bounds, thresholds and ranking."""

    origin_postal_code: str = os.getenv("ORIGIN_CEP", "01001000")
    default_unit_weight: float = _safe_float("DEFAULT_UNIT_WEIGHT_KG", "0.3")
    max_quantity: int = _safe_int("MAX_QUANTITY", "9999")
    max_options: int = _safe_int("MAX_FREIGHT_OPTIONS", "3")
    cache_ttl_seconds: int = _safe_int("FREIGHT_CACHE_TTL", "600")
    light_max_weight: float = _safe_float("LIGHT_MAX_WEIGHT_KG", "10")
    mixed_max_weight: float = _safe_float("MIXED_MAX_WEIGHT_KG", "15")
    price_weight: float = _safe_float("RANKING_PRICE_WEIGHT", "0.6")
    time_weight: float = _safe_float("RANKING_TIME_WEIGHT", "0.4")
    margin_weight: float = _safe_float("RANKING_MARGIN_WEIGHT", "0.0")


@dataclass(frozen=True)
class ProviderConfig:
    """Quote provider endpoints and retry policy."""

    melhorenvio_url: str = os.getenv(
        "MELHORENVIO_API_URL", "https://sandbox.melhorenvio.com.br"
    )
    melhorenvio_token: str = os.getenv("MELHORENVIO_TOKEN", "")
    request_timeout_sec: float = _safe_float("MELHORENVIO_TIMEOUT", "10.0")
    call_timeout_sec: float = _safe_float("PROVIDER_CALL_TIMEOUT", "15.0")
    max_retries: int = _safe_int("PROVIDER_MAX_RETRIES", "2")
    retry_base_delay_sec: float = _safe_float("PROVIDER_RETRY_DELAY", "0.5")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    session: SessionConfig = field(default_factory=SessionConfig)
    freight: FreightConfig = field(default_factory=FreightConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    environment: str = os.getenv("APP_ENV", "development")
    redis_url: str = os.getenv("REDIS_URL", "")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    app_name: str = os.getenv("APP_NAME", "freightbot")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.environment not in ENVIRONMENTS:
        raise ValueError(
            f"APP_ENV must be one of {ENVIRONMENTS}, got {config.environment!r}"
        )
    if config.is_production and not config.redis_url:
        raise ValueError("REDIS_URL is required when APP_ENV is production")
    if config.session.ttl_hours < 1:
        raise ValueError(
            f"SESSION_TTL_HOURS must be >= 1, got {config.session.ttl_hours}"
        )
    if config.session.sweep_interval_seconds < 1:
        raise ValueError(
            "SESSION_SWEEP_INTERVAL must be >= 1, "
            f"got {config.session.sweep_interval_seconds}"
        )

    freight = config.freight
    if not POSTAL_CODE_PATTERN.match(freight.origin_postal_code):
        raise ValueError(
            f"ORIGIN_CEP must be 8 digits (e.g. 01001000), got {freight.origin_postal_code!r}"
        )
    if freight.default_unit_weight <= 0:
        raise ValueError(
            f"DEFAULT_UNIT_WEIGHT_KG must be > 0, got {freight.default_unit_weight}"
        )
    if freight.max_quantity < 1:
        raise ValueError(f"MAX_QUANTITY must be >= 1, got {freight.max_quantity}")
    if freight.max_options < 1:
        raise ValueError(f"MAX_FREIGHT_OPTIONS must be >= 1, got {freight.max_options}")
    if freight.cache_ttl_seconds < 1:
        raise ValueError(
            f"FREIGHT_CACHE_TTL must be >= 1, got {freight.cache_ttl_seconds}"
        )
    if not 0 < freight.light_max_weight <= freight.mixed_max_weight:
        raise ValueError(
            "Weight thresholds must satisfy 0 < LIGHT_MAX_WEIGHT_KG <= MIXED_MAX_WEIGHT_KG, "
            f"got {freight.light_max_weight} and {freight.mixed_max_weight}"
        )

    for weight_name, weight_value in [
        ("RANKING_PRICE_WEIGHT", freight.price_weight),
        ("RANKING_TIME_WEIGHT", freight.time_weight),
        ("RANKING_MARGIN_WEIGHT", freight.margin_weight),
    ]:
        if weight_value < 0:
            raise ValueError(f"{weight_name} must be >= 0, got {weight_value}")

    providers = config.providers
    if providers.max_retries < 0:
        raise ValueError(f"PROVIDER_MAX_RETRIES must be >= 0, got {providers.max_retries}")
    if providers.request_timeout_sec <= 0 or providers.call_timeout_sec <= 0:
        raise ValueError("MELHORENVIO_TIMEOUT and PROVIDER_CALL_TIMEOUT must be > 0")
    if providers.retry_base_delay_sec < 0:
        raise ValueError(
            f"PROVIDER_RETRY_DELAY must be >= 0, got {providers.retry_base_delay_sec}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Configuration loaded for '%s' (%s)", config.app_name, config.environment)
    return config


# Singleton instance
settings = load_config()
