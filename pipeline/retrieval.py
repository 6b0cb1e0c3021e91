"""
Per-seller listing retrieval

The Browse API silently caps how many items a seller-filtered query will
page through, and refuses some queries outright as too broad (errorId
12023). Retrieval is therefore an ordered list of strategies, each run
only when its condition holds against the shared RetrievalContext:

1. primary           linear paging, location filter applied (if configured)
2. primary-bands     price-banded paging, when primary was too broad
3. unfiltered        linear paging without the location filter, when short
4. unfiltered-bands  price-banded paging, when unfiltered was too broad
5. web               scraped ids for 2x the shortfall, when still short
6. web-last-resort   one more scrape when nothing was found at all

Results from every strategy are merged by dedup key and capped at
max_results. Application errors from the API end the API strategies and
fall through to the web ones; exhausted transient retries propagate.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from config import SearchSettings
from services.deduplication import count_unique, dedup_key, merge_unique
from services.ebay_browse import BrowseClient, PriceBand
from services.exceptions import EbayAPIError, QueryTooBroadError
from services.web_resolver import WebIdResolver
from pipeline.normalizer import ListingRecord, normalize

logger = logging.getLogger(__name__)

PRICE_BANDS: List[PriceBand] = [
    (0, 20),
    (20, 50),
    (50, 100),
    (100, 200),
    (200, 500),
    (500, 1000),
    (1000, 5000),
    (5000, None),
]

# Guard against a continuation chain that never ends
MAX_PAGES_PER_QUERY = 50


class Signal(Enum):
    OK = "ok"
    TOO_BROAD = "too_broad"
    EXHAUSTED = "exhausted"   # ran fine, found nothing
    FAILED = "failed"         # upstream application error


@dataclass
class StrategyResult:
    items: List[Dict[str, Any]] = field(default_factory=list)
    signal: Signal = Signal.OK
    error: Optional[Exception] = None


@dataclass
class RetrievalContext:
    seller: str
    max_results: int
    title_search: Optional[str] = None
    location_country: Optional[str] = None
    items: List[Dict[str, Any]] = field(default_factory=list)
    signals: Dict[str, Signal] = field(default_factory=dict)

    @property
    def shortfall(self) -> int:
        return max(0, self.max_results - len(self.items))

    @property
    def is_short(self) -> bool:
        return self.shortfall > 0

    @property
    def api_failed(self) -> bool:
        return Signal.FAILED in self.signals.values()

    def signal_of(self, name: str) -> Optional[Signal]:
        return self.signals.get(name)


@dataclass
class Strategy:
    name: str
    run: Callable[[RetrievalContext], Awaitable[StrategyResult]]
    applies: Callable[[RetrievalContext], bool]


class ListingRetriever:
    """
    Usage:
        retriever = ListingRetriever(browse_client, web_resolver, settings.search, "US")
        records = await retriever.fetch_seller_listings("some_seller", 50)
    """

    def __init__(
        self,
        browse: BrowseClient,
        resolver: WebIdResolver,
        search: SearchSettings,
        location_country: Optional[str] = None,
    ):
        self.browse = browse
        self.resolver = resolver
        self.search = search
        self.location_country = location_country
        self.strategies = self._build_strategies()

    def _build_strategies(self) -> List[Strategy]:
        return [
            Strategy(
                "primary",
                lambda ctx: self._linear(ctx, ctx.location_country),
                lambda ctx: True,
            ),
            Strategy(
                "primary-bands",
                lambda ctx: self._price_bands(ctx, ctx.location_country),
                lambda ctx: ctx.signal_of("primary") is Signal.TOO_BROAD,
            ),
            Strategy(
                "unfiltered",
                lambda ctx: self._linear(ctx, None),
                lambda ctx: bool(ctx.location_country) and ctx.is_short and not ctx.api_failed,
            ),
            Strategy(
                "unfiltered-bands",
                lambda ctx: self._price_bands(ctx, None),
                lambda ctx: ctx.signal_of("unfiltered") is Signal.TOO_BROAD and ctx.is_short,
            ),
            Strategy(
                "web",
                lambda ctx: self._web(ctx, 2 * ctx.shortfall),
                lambda ctx: ctx.is_short,
            ),
            Strategy(
                "web-last-resort",
                lambda ctx: self._web(ctx, ctx.max_results),
                lambda ctx: len(ctx.items) == 0,
            ),
        ]

    async def fetch_seller_listings(
        self,
        seller: str,
        max_results: int,
        title_search: Optional[str] = None,
    ) -> List[ListingRecord]:
        if max_results <= 0:
            return []

        ctx = RetrievalContext(
            seller=seller,
            max_results=max_results,
            title_search=title_search,
            location_country=self.location_country,
        )
        await self.run_strategies(ctx)

        records = []
        for raw in ctx.items:
            record = normalize(raw)
            if not record.seller_handle:
                record = record.with_seller(seller)
            records.append(record)

        logger.info(
            f"[SEARCH] {seller}: {len(records)}/{max_results} listings "
            f"({', '.join(f'{k}={v.value}' for k, v in ctx.signals.items())})"
        )
        return records

    async def fetch_sold_listings(self, seller: str, max_results: int) -> List[ListingRecord]:
        """Completed/sold listings; only the public search page exposes these"""
        if max_results <= 0:
            return []
        items = await self.resolver.fetch_sold_items(seller, max_results)
        records = []
        for raw in merge_unique([], items, limit=max_results):
            record = normalize(raw)
            if not record.seller_handle:
                record = record.with_seller(seller)
            records.append(record)
        logger.info(f"[SEARCH] {seller}: {len(records)}/{max_results} sold listings")
        return records

    async def run_strategies(self, ctx: RetrievalContext) -> RetrievalContext:
        for strategy in self.strategies:
            if not strategy.applies(ctx):
                continue
            result = await strategy.run(ctx)
            ctx.signals[strategy.name] = result.signal
            before = len(ctx.items)
            ctx.items = merge_unique(ctx.items, result.items, limit=ctx.max_results)
            logger.debug(
                f"[SEARCH] {ctx.seller}: {strategy.name} -> {result.signal.value}, "
                f"+{len(ctx.items) - before} unique"
            )
            if result.error:
                logger.warning(f"[SEARCH] {ctx.seller}: {strategy.name} failed: {result.error}")
            if not ctx.is_short:
                break
        return ctx

    async def _page_through(
        self,
        ctx: RetrievalContext,
        location_country: Optional[str],
        price_band: Optional[PriceBand],
        budget: int,
    ) -> StrategyResult:
        """Sequential paging: each request depends on the previous page"""
        collected: List[Dict[str, Any]] = []
        offset = 0
        next_url = None

        for _ in range(MAX_PAGES_PER_QUERY):
            if len(collected) >= budget:
                break
            limit = min(self.search.page_limit, budget - len(collected))
            try:
                page = await self.browse.search_page(
                    ctx.seller,
                    limit=limit,
                    offset=offset,
                    q=ctx.title_search or "*",
                    next_url=next_url,
                    location_country=location_country,
                    price_band=price_band,
                )
            except QueryTooBroadError:
                return StrategyResult(collected, Signal.TOO_BROAD)
            except EbayAPIError as e:
                return StrategyResult(collected, Signal.FAILED, e)

            collected.extend(page.items)
            offset += len(page.items)
            next_url = page.next_url

            if not page.items:
                break
            if not next_url and (page.total is None or offset >= page.total):
                break

        return StrategyResult(collected[:budget], Signal.OK if collected else Signal.EXHAUSTED)

    async def _linear(self, ctx: RetrievalContext, location_country: Optional[str]) -> StrategyResult:
        return await self._page_through(ctx, location_country, None, ctx.max_results)

    async def _price_bands(self, ctx: RetrievalContext, location_country: Optional[str]) -> StrategyResult:
        """Re-run paging inside each price band; a band still too broad is skipped"""
        collected: List[Dict[str, Any]] = []
        skipped = 0
        for band in PRICE_BANDS:
            have = count_unique(ctx.items + collected)
            if have >= ctx.max_results:
                break
            result = await self._page_through(ctx, location_country, band, ctx.max_results - have)
            if result.signal is Signal.TOO_BROAD:
                skipped += 1
                logger.info(f"[SEARCH] {ctx.seller}: band {band} still too broad, skipping")
                continue
            if result.signal is Signal.FAILED:
                return StrategyResult(collected, Signal.FAILED, result.error)
            collected.extend(result.items)

        if collected:
            return StrategyResult(collected, Signal.OK)
        if skipped == len(PRICE_BANDS):
            return StrategyResult([], Signal.TOO_BROAD)
        return StrategyResult([], Signal.EXHAUSTED)

    async def _web(self, ctx: RetrievalContext, desired: int) -> StrategyResult:
        held = {key for key in (dedup_key(item) for item in ctx.items) if key}
        items = await self.resolver.fetch_seller_items(ctx.seller, desired, exclude=held)
        return StrategyResult(items, Signal.OK if items else Signal.EXHAUSTED)
