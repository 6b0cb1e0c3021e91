"""
Application State Management for Seller Watch Search

Centralized, injectable process state: settings, the shared HTTP client,
the token and watch-count caches, and per-source cooldowns. Every pipeline
component is built from here, so tests construct a fresh AppState per case
instead of relying on module globals.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from config import Settings
from services.cooldown import CooldownRegistry
from services.ebay_auth import TokenProvider
from services.ebay_browse import BrowseClient
from services.web_resolver import WebIdResolver
from smart_cache import TTLCache
from pipeline.listing_enrichment import WatchCountEnricher
from pipeline.orchestrator import SearchOrchestrator
from pipeline.retrieval import ListingRetriever
from pipeline.simulation import SimulatedRetriever
from pipeline.watch_sources import build_watch_sources

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """
    Centralized application state.

    Shared across concurrent requests: a request can observe another
    request's cached token, cached watch counts, or a tripped cooldown.
    """

    settings: Settings = field(default_factory=Settings)
    http_client: Optional[httpx.AsyncClient] = None
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)
    rng: Optional[random.Random] = field(default=None, repr=False)

    token_cache: Optional[TTLCache] = None
    watch_cache: Optional[TTLCache] = None
    cooldowns: CooldownRegistry = field(default_factory=CooldownRegistry)

    _orchestrator: Optional[SearchOrchestrator] = field(default=None, repr=False)
    _enricher: Optional[WatchCountEnricher] = field(default=None, repr=False)

    stats: Dict[str, Any] = field(default_factory=lambda: {
        "total_requests": 0,
        "search_requests": 0,
        "sold_requests": 0,
        "debug_requests": 0,
        "session_start": datetime.now().isoformat(),
    })

    def __post_init__(self):
        if self.token_cache is None:
            self.token_cache = TTLCache(
                max_size=self.settings.cache.token_max_size,
                ttl_seconds=self.settings.cache.default_ttl,
            )
        if self.watch_cache is None:
            self.watch_cache = TTLCache(
                max_size=self.settings.cache.watch_max_size,
                ttl_seconds=self.settings.cache.watch_ttl,
            )

    @property
    def simulation_mode(self) -> bool:
        return self.settings.server.simulation_mode

    @property
    def debug_mode(self) -> bool:
        return self.settings.server.debug

    def client(self) -> httpx.AsyncClient:
        """Shared outbound client, created on first use"""
        if self.http_client is None:
            self.http_client = httpx.AsyncClient()
        return self.http_client

    async def close(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None
            self._orchestrator = None
            self._enricher = None

    def increment_stat(self, key: str, amount: int = 1) -> None:
        if key in self.stats:
            self.stats[key] += amount

    # ============================================================
    # Component builders
    # ============================================================

    def build_token_provider(self) -> TokenProvider:
        return TokenProvider(
            self.settings.ebay,
            self.client(),
            self.token_cache,
            timeout=self.settings.search.token_timeout,
            sleep=self.sleep,
        )

    def build_browse_client(self) -> BrowseClient:
        return BrowseClient(
            self.settings.ebay,
            self.settings.search,
            self.client(),
            self.build_token_provider(),
            sleep=self.sleep,
        )

    def build_retriever(self):
        if self.simulation_mode:
            return SimulatedRetriever()
        browse = self.build_browse_client()
        resolver = WebIdResolver(self.settings.ebay, self.settings.search, self.client(), browse)
        return ListingRetriever(
            browse, resolver, self.settings.search, self.settings.ebay.item_location_country
        )

    def enricher(self) -> WatchCountEnricher:
        if self._enricher is None:
            sources = build_watch_sources(
                self.settings.ebay,
                self.settings.enrichment,
                self.client(),
                self.cooldowns,
                sleep=self.sleep,
                rng=self.rng,
                token_provider=self.build_token_provider(),
            )
            self._enricher = WatchCountEnricher(
                sources, self.watch_cache, cache_ttl=self.settings.cache.watch_ttl
            )
        return self._enricher

    def orchestrator(self) -> SearchOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = SearchOrchestrator(self.build_retriever(), self.enricher())
            logger.info(
                f"[STATE] Orchestrator ready (simulation={self.simulation_mode}, "
                f"watch sources={','.join(s.name for s in self._enricher.sources)})"
            )
        return self._orchestrator

    def get_status(self) -> Dict[str, Any]:
        return {
            "simulation_mode": self.simulation_mode,
            "credentials_configured": self.settings.ebay.has_credentials,
            "marketplace": self.settings.ebay.marketplace_id,
            "watch_sources": list(self.settings.enrichment.source_order),
            "watch_cache": self.watch_cache.get_stats(),
            "cooldowns": self.cooldowns.snapshot(),
            "stats": self.stats,
        }


# ============================================================
# FastAPI Dependency Injection Helpers
# ============================================================

def get_app_state_from_request(request) -> "AppState":
    """
    Usage in routes:
        @router.post("/endpoint")
        async def endpoint(request: Request):
            app_state = get_app_state_from_request(request)
    """
    return request.app.state.app_state
