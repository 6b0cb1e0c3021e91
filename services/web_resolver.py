"""
Web-scrape item id resolver

When the Browse API under-returns for a seller, the public search results
page (no auth) still lists the seller's items. This module pulls legacy
item ids out of that page and materializes them through the Browse
get_item_by_legacy_id endpoint.

Everything here is best-effort: failures return empty results and are
logged, never raised.
"""

import logging
import re
from typing import Any, Collection, Dict, List, Optional

import httpx

from config import EbaySettings, SearchSettings
from services.browser_headers import browser_headers
from services.ebay_browse import BrowseClient
from services.rate_limiter import ConcurrencyLimiter

logger = logging.getLogger(__name__)

# Ordered: path-style links first, then query-style links
ITEM_ID_PATTERNS = [
    re.compile(r"/itm/(?:[^/\"'?#<>\s]+/)?(\d{6,})(?=[/?\"'#])"),
    re.compile(r"[?&;]item=(\d{6,})"),
]

# Template row eBay renders at the top of every result list
PLACEHOLDER_IDS = {"123456"}

MAX_PAGE_SIZE = 240


def extract_item_ids(html: str, desired: int, exclude: Optional[Collection[str]] = None) -> List[str]:
    """
    Scan raw markup for item ids, in pattern order, deduplicated.

    Ids in `exclude` are skipped and do not count toward `desired`; the
    page lists a seller's items in the same order the API does, so the
    ones already held sit at the top.
    """
    ids: List[str] = []
    seen = set(exclude or ())
    for pattern in ITEM_ID_PATTERNS:
        for match in pattern.finditer(html):
            item_id = match.group(1)
            if item_id in seen or item_id in PLACEHOLDER_IDS:
                continue
            seen.add(item_id)
            ids.append(item_id)
            if len(ids) >= desired:
                return ids
    return ids


class WebIdResolver:
    """
    Usage:
        resolver = WebIdResolver(settings.ebay, settings.search, http_client, browse_client)
        items = await resolver.fetch_seller_items("some_seller", 40)
    """

    def __init__(
        self,
        ebay: EbaySettings,
        search: SearchSettings,
        http_client: httpx.AsyncClient,
        browse: BrowseClient,
    ):
        self.ebay = ebay
        self.search = search
        self.http_client = http_client
        self.browse = browse

    @property
    def search_page_url(self) -> str:
        return f"https://{self.ebay.site_host}/sch/i.html"

    async def resolve_legacy_ids(
        self,
        seller: str,
        desired: int,
        sold: bool = False,
        exclude: Optional[Collection[str]] = None,
    ) -> List[str]:
        if desired <= 0:
            return []

        params: Dict[str, Any] = {"_ssn": seller, "_sop": 10, "_ipg": MAX_PAGE_SIZE}
        if sold:
            params.update({"LH_Sold": 1, "LH_Complete": 1})

        try:
            response = await self.http_client.get(
                self.search_page_url,
                params=params,
                headers=browser_headers(),
                timeout=self.search.web_timeout,
                follow_redirects=True,
            )
        except httpx.HTTPError as e:
            logger.warning(f"[WEB] Search page fetch failed for '{seller}': {e}")
            return []

        if response.status_code != 200:
            logger.warning(f"[WEB] HTTP {response.status_code} for seller '{seller}'")
            return []

        ids = extract_item_ids(response.text, desired, exclude)
        logger.info(f"[WEB] '{seller}': {len(ids)} item ids scraped (wanted {desired})")
        return ids

    async def materialize(self, legacy_ids: List[str]) -> List[Dict[str, Any]]:
        """Fetch full items for ids; individual failures are dropped"""
        limiter = ConcurrencyLimiter(self.search.concurrency)

        async def fetch(legacy_id: str) -> Optional[Dict[str, Any]]:
            try:
                return await self.browse.get_item_by_legacy_id(legacy_id)
            except Exception as e:
                logger.debug(f"[WEB] Legacy item {legacy_id} lookup failed: {e}")
                return None

        results = await limiter.map(fetch, legacy_ids)
        items = [item for item in results if item]
        logger.info(f"[WEB] Materialized {len(items)}/{len(legacy_ids)} items")
        return items

    async def fetch_seller_items(
        self,
        seller: str,
        desired: int,
        sold: bool = False,
        exclude: Optional[Collection[str]] = None,
    ) -> List[Dict[str, Any]]:
        ids = await self.resolve_legacy_ids(seller, desired, sold=sold, exclude=exclude)
        if not ids:
            return []
        items = await self.materialize(ids)
        return items[:desired]

    async def fetch_sold_items(self, seller: str, max_results: int) -> List[Dict[str, Any]]:
        """Completed and sold listings for a seller"""
        return await self.fetch_seller_items(seller, max_results, sold=True)
