"""
Centralized Configuration Settings for Seller Watch Search

All configuration values are consolidated here for easy management.
Values come from the environment (optionally a .env file) and are exposed
as dataclass settings objects so the pipeline receives validated values
and tests can build their own instances.
"""

import logging
import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ============================================================
# ENVIRONMENT LOADING
# ============================================================
BASE_DIR = Path(__file__).parent.parent


def load_environment(env_path: Optional[Path] = None) -> bool:
    """Load a .env file into os.environ. Returns True if a file was found."""
    env_path = env_path or BASE_DIR / ".env"
    if env_path.exists():
        load_dotenv(env_path)
        logger.info(f"[CONFIG] Loaded .env from {env_path}")
        return True
    logger.info(f"[CONFIG] No .env file found at {env_path}")
    return False


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = int(raw)
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {raw!r}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


# ============================================================
# EBAY ENDPOINTS
# ============================================================
API_BASE = {
    "production": "https://api.ebay.com",
    "sandbox": "https://api.sandbox.ebay.com",
}

SHOPPING_API_URL = {
    "production": "https://open.api.ebay.com/shopping",
    "sandbox": "https://open.api.sandbox.ebay.com/shopping",
}

# Public site host per marketplace (used for HTML pages)
MARKETPLACE_SITES: Dict[str, str] = {
    "EBAY_US": "www.ebay.com",
    "EBAY_GB": "www.ebay.co.uk",
    "EBAY_DE": "www.ebay.de",
    "EBAY_AU": "www.ebay.com.au",
    "EBAY_CA": "www.ebay.ca",
    "EBAY_FR": "www.ebay.fr",
    "EBAY_IT": "www.ebay.it",
    "EBAY_ES": "www.ebay.es",
}

# Shopping API site ids per marketplace
SHOPPING_SITE_IDS: Dict[str, str] = {
    "EBAY_US": "0",
    "EBAY_CA": "2",
    "EBAY_GB": "3",
    "EBAY_AU": "15",
    "EBAY_FR": "71",
    "EBAY_DE": "77",
    "EBAY_IT": "101",
    "EBAY_ES": "186",
}

MARKETPLACE_CURRENCIES: Dict[str, str] = {
    "EBAY_US": "USD",
    "EBAY_GB": "GBP",
    "EBAY_DE": "EUR",
    "EBAY_AU": "AUD",
    "EBAY_CA": "CAD",
    "EBAY_FR": "EUR",
    "EBAY_IT": "EUR",
    "EBAY_ES": "EUR",
}

BROWSE_SCOPE = "https://api.ebay.com/oauth/api_scope/buy.browse"
FALLBACK_SCOPE = "https://api.ebay.com/oauth/api_scope"


# ============================================================
# SETTINGS OBJECTS
# ============================================================

@dataclass
class EbaySettings:
    """Credentials and marketplace targeting"""
    client_id: str = ""
    client_secret: str = ""
    environment: str = "production"        # production | sandbox
    marketplace_id: str = "EBAY_US"
    item_location_country: Optional[str] = None  # e.g. "US"; None disables the filter

    def __post_init__(self):
        if self.environment not in API_BASE:
            raise ValueError(f"EBAY_ENV must be production or sandbox, got {self.environment!r}")

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def api_base(self) -> str:
        return API_BASE[self.environment]

    @property
    def shopping_url(self) -> str:
        return SHOPPING_API_URL[self.environment]

    @property
    def site_host(self) -> str:
        return MARKETPLACE_SITES.get(self.marketplace_id, "www.ebay.com")

    @property
    def currency(self) -> str:
        return MARKETPLACE_CURRENCIES.get(self.marketplace_id, "USD")

    @property
    def shopping_site_id(self) -> str:
        return SHOPPING_SITE_IDS.get(self.marketplace_id, "0")


@dataclass
class SearchSettings:
    """Retrieval defaults"""
    max_results_per_seller: int = 50
    max_results_cap: int = 1000
    max_sellers: int = 100
    concurrency: int = 3                # parallel legacy-id lookups (CONCURRENCY)
    page_limit: int = 200               # Browse API max page size
    search_timeout: float = 30.0
    item_timeout: float = 20.0
    token_timeout: float = 20.0
    web_timeout: float = 15.0
    page_retries: int = 3
    retry_delay: float = 0.8            # linear backoff base (seconds x attempt)


@dataclass
class CacheSettings:
    """Process-lifetime cache sizes and TTLs (seconds)"""
    default_ttl: int = 900
    token_max_size: int = 5
    watch_ttl: int = 6 * 60 * 60
    watch_max_size: int = 5000


@dataclass
class EnrichmentSettings:
    """Watch-count enrichment policy"""
    source_order: Tuple[str, ...] = ("html", "shopping", "aggregator")
    html_concurrency: int = 2
    api_concurrency: int = 3
    html_delay_range: Tuple[float, float] = (3.0, 6.0)
    item_delay_scale: float = 1.5        # extra delay factor between consecutive items
    html_timeout: float = 15.0
    html_attempts: int = 2
    shopping_timeout: float = 12.0
    shopping_attempts: int = 2
    shopping_batch_size: int = 20
    cooldown_seconds: int = 30 * 60
    aggregator_timeout: float = 20.0
    aggregator_attempts: int = 2
    aggregator_url_template: str = "https://www.watchcount.com/live/-/-/all?seller={seller}&site={marketplace}"
    retry_delay: float = 1.0


@dataclass
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    simulation_mode: bool = False


@dataclass
class Settings:
    """Top-level settings container passed into AppState"""
    ebay: EbaySettings = field(default_factory=EbaySettings)
    search: SearchSettings = field(default_factory=SearchSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    enrichment: EnrichmentSettings = field(default_factory=EnrichmentSettings)
    server: ServerSettings = field(default_factory=ServerSettings)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current environment."""
        ebay = EbaySettings(
            client_id=os.getenv("EBAY_CLIENT_ID", os.getenv("EBAY_APP_ID", "")),
            client_secret=os.getenv("EBAY_CLIENT_SECRET", os.getenv("EBAY_CERT_ID", "")),
            environment=os.getenv("EBAY_ENV", "production").strip().lower(),
            marketplace_id=os.getenv("EBAY_MARKETPLACE_ID", "EBAY_US"),
            item_location_country=os.getenv("EBAY_ITEM_LOCATION_COUNTRY") or None,
        )
        if ebay.has_credentials:
            logger.info(f"[CONFIG] eBay client id loaded ({ebay.client_id[:8]}...)")
        else:
            logger.warning("[CONFIG] WARNING: EBAY_CLIENT_ID/EBAY_CLIENT_SECRET not set")

        # One knob bounds both the legacy-id lookups and the Shopping batches
        concurrency = _env_int("CONCURRENCY", 3)
        search = SearchSettings(
            max_results_per_seller=_env_int("MAX_RESULTS_PER_SELLER", 50),
            concurrency=concurrency,
        )
        cache = CacheSettings(
            default_ttl=_env_int("CACHE_TTL_SECONDS", 900),
            watch_ttl=_env_int("WATCH_CACHE_TTL_SECONDS", 6 * 60 * 60),
        )

        order = os.getenv("WATCH_SOURCE_ORDER", "html,shopping,aggregator")
        enrichment = EnrichmentSettings(
            source_order=tuple(s.strip().lower() for s in order.split(",") if s.strip()),
            api_concurrency=concurrency,
            html_delay_range=(
                _env_float("WATCH_HTML_DELAY_MIN", 3.0),
                _env_float("WATCH_HTML_DELAY_MAX", 6.0),
            ),
            cooldown_seconds=_env_int("WATCH_COOLDOWN_SECONDS", 30 * 60),
        )
        template = os.getenv("WATCH_AGGREGATOR_URL")
        if template:
            enrichment.aggregator_url_template = template

        server = ServerSettings(
            host=os.getenv("HOST", "127.0.0.1"),
            port=int(os.getenv("PORT", "8000")),
            debug=_env_bool("DEBUG"),
            simulation_mode=_env_bool("SIMULATION_MODE"),
        )
        if server.simulation_mode:
            logger.warning("[CONFIG] SIMULATION_MODE enabled - results are fabricated sample data")

        return cls(ebay=ebay, search=search, cache=cache, enrichment=enrichment, server=server)
