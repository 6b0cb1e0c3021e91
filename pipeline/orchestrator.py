"""
Search Orchestrator

Single entry point for a multi-seller search.

Flow:
1. Retrieve each seller's listings (sequentially, one seller at a time)
2. Concatenate per-seller results (no cross-seller dedup)
3. Normalize
4. Enrich watch counts
5. Sort for display

A seller that fails is logged and skipped; the rest of the request
carries on. Only configuration errors (missing credentials) abort.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from services.exceptions import ConfigurationError
from pipeline.listing_enrichment import WatchCountEnricher
from pipeline.normalizer import ListingRecord, normalize
from pipeline.sorting import sort_listings

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    """Final result of a multi-seller search"""
    records: List[ListingRecord]
    sellers: List[str]
    max_per_seller: int
    failed_sellers: List[str] = field(default_factory=list)
    elapsed_ms: int = 0

    @property
    def total(self) -> int:
        return len(self.records)


class SearchOrchestrator:
    """
    Usage:
        orchestrator = SearchOrchestrator(retriever, enricher)
        result = await orchestrator.search(["seller_a", "seller_b"], 50)

    The retriever is a ListingRetriever or a SimulatedRetriever.
    """

    def __init__(self, retriever, enricher: Optional[WatchCountEnricher] = None):
        self.retriever = retriever
        self.enricher = enricher

        self.stats = {
            "searches": 0,
            "sold_searches": 0,
            "seller_failures": 0,
            "records_returned": 0,
        }

    async def _collect(self, sellers: List[str], fetch) -> Tuple[List[ListingRecord], List[str]]:
        records: List[ListingRecord] = []
        failed: List[str] = []
        for seller in sellers:
            try:
                seller_records = await fetch(seller)
            except ConfigurationError:
                raise
            except Exception as e:
                logger.error(f"[SEARCH] Seller '{seller}' failed, skipping: {type(e).__name__}: {e}")
                failed.append(seller)
                self.stats["seller_failures"] += 1
                continue
            records.extend(seller_records)
        return records, failed

    async def search(
        self,
        sellers: List[str],
        max_per_seller: int,
        title_search: Optional[str] = None,
    ) -> SearchResult:
        start = time.time()
        self.stats["searches"] += 1

        records, failed = await self._collect(
            sellers,
            lambda seller: self.retriever.fetch_seller_listings(seller, max_per_seller, title_search),
        )
        records = [normalize(r) for r in records]

        if self.enricher is not None and records:
            records = await self.enricher.enrich(records)

        records = sort_listings(records)
        elapsed_ms = int((time.time() - start) * 1000)
        self.stats["records_returned"] += len(records)
        logger.info(
            f"[SEARCH] {len(records)} listings from {len(sellers) - len(failed)}/{len(sellers)} sellers "
            f"in {elapsed_ms}ms"
        )
        return SearchResult(records, list(sellers), max_per_seller, failed, elapsed_ms)

    async def search_sold(self, sellers: List[str], max_per_seller: int) -> SearchResult:
        """Sold/completed listings; no watch-count enrichment"""
        start = time.time()
        self.stats["sold_searches"] += 1

        records, failed = await self._collect(
            sellers,
            lambda seller: self.retriever.fetch_sold_listings(seller, max_per_seller),
        )
        records = sort_listings([normalize(r) for r in records])
        elapsed_ms = int((time.time() - start) * 1000)
        logger.info(f"[SEARCH] {len(records)} sold listings from {len(sellers)} sellers in {elapsed_ms}ms")
        return SearchResult(records, list(sellers), max_per_seller, failed, elapsed_ms)
