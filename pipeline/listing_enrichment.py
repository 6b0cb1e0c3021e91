"""
Watch-count enrichment for search results.

Fills in ListingRecord.watch_count from the shared cache first, then from
each configured source in order. A source only sees the records still
missing a value, and results are written back by original position, so
the output always has the input's length and order.

Enrichment is best-effort: a record nobody could resolve keeps
watch_count=None, and nothing here raises to the caller.
"""

import logging
from typing import List, Optional

from services.deduplication import extract_legacy_id
from smart_cache import TTLCache
from pipeline.normalizer import ListingRecord
from pipeline.watch_sources import WatchSource, WatchTarget

logger = logging.getLogger(__name__)


def watch_cache_key(legacy_id: str) -> str:
    return f"watch:{legacy_id}"


class WatchCountEnricher:
    """
    Usage:
        enricher = WatchCountEnricher(sources, state.watch_cache)
        records = await enricher.enrich(records)
    """

    def __init__(
        self,
        sources: List[WatchSource],
        cache: TTLCache,
        cache_ttl: Optional[float] = None,
    ):
        self.sources = sources
        self.cache = cache
        self.cache_ttl = cache_ttl

    async def enrich(self, records: List[ListingRecord]) -> List[ListingRecord]:
        results = list(records)
        pending: List[WatchTarget] = []
        cache_hits = 0

        for index, record in enumerate(results):
            if record.watch_count is not None:
                continue
            legacy_id = extract_legacy_id(record)
            if not legacy_id:
                continue
            cached = self.cache.get(watch_cache_key(legacy_id))
            if cached is not None:
                results[index] = record.with_watch_count(cached)
                cache_hits += 1
                continue
            pending.append(WatchTarget(index, legacy_id, record.url, record.seller_handle))

        if cache_hits:
            logger.info(f"[WATCH] {cache_hits} watch counts from cache")

        for source in self.sources:
            if not pending:
                break
            try:
                found = await source.fetch(pending)
            except Exception as e:
                logger.error(f"[WATCH] {source.name} source error: {e}")
                continue

            for legacy_id, count in found.items():
                self.cache.set(watch_cache_key(legacy_id), count, ttl_seconds=self.cache_ttl)

            remaining = []
            for target in pending:
                count = found.get(target.legacy_id)
                if count is None:
                    remaining.append(target)
                else:
                    results[target.index] = results[target.index].with_watch_count(count)
            pending = remaining

        if pending:
            logger.info(f"[WATCH] {len(pending)} listings left without a watch count")
        return results
