"""
eBay Browse API client

Wraps the two Browse endpoints the pipeline needs:
- item_summary/search, filtered by seller (paged, continuation aware)
- item/get_item_by_legacy_id, used to materialize scraped item ids

HTTP outcomes are mapped onto the exception hierarchy so callers can
branch on them: QueryTooBroadError (errorId 12023), TransientUpstreamError
(401/429/5xx/transport, retried here), EbayAPIError (everything else).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from config import EbaySettings, SearchSettings
from services.ebay_auth import TokenProvider
from services.exceptions import EbayAPIError, QueryTooBroadError, TransientUpstreamError
from services.rate_limiter import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

# (low, high); high=None means open-ended
PriceBand = Tuple[float, Optional[float]]


@dataclass
class SearchPage:
    """One page of item_summary/search results"""
    items: List[Dict[str, Any]] = field(default_factory=list)
    total: Optional[int] = None
    next_url: Optional[str] = None
    offset: int = 0


def _format_price(value: float) -> str:
    return f"{value:g}"


def build_filter(
    seller: str,
    location_country: Optional[str] = None,
    price_band: Optional[PriceBand] = None,
    currency: str = "USD",
) -> str:
    """Browse filter grammar: sellers:{name},itemLocationCountry:US,price:[lo..hi]"""
    filters = [f"sellers:{{{seller}}}"]
    if location_country:
        filters.append(f"itemLocationCountry:{location_country}")
    if price_band:
        low, high = price_band
        high_str = _format_price(high) if high is not None else ""
        filters.append(f"price:[{_format_price(low)}..{high_str}]")
        filters.append(f"priceCurrency:{currency}")
    return ",".join(filters)


def _error_id(response: httpx.Response) -> Optional[int]:
    try:
        body = response.json()
    except ValueError:
        return None
    errors = body.get("errors") if isinstance(body, dict) else None
    if errors and isinstance(errors, list):
        try:
            return int(errors[0].get("errorId"))
        except (TypeError, ValueError):
            return None
    return None


class BrowseClient:
    """
    Thin async client for the Browse API.

    Usage:
        client = BrowseClient(settings.ebay, settings.search, http_client, token_provider)
        page = await client.search_page("some_seller", limit=200)
    """

    def __init__(
        self,
        ebay: EbaySettings,
        search: SearchSettings,
        http_client: httpx.AsyncClient,
        token_provider: TokenProvider,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.ebay = ebay
        self.search = search
        self.http_client = http_client
        self.token_provider = token_provider
        self.page_policy = RetryPolicy(
            attempts=search.page_retries, base_delay=search.retry_delay, backoff="linear"
        )
        self._sleep = sleep

    @property
    def search_url(self) -> str:
        return f"{self.ebay.api_base}/buy/browse/v1/item_summary/search"

    @property
    def legacy_item_url(self) -> str:
        return f"{self.ebay.api_base}/buy/browse/v1/item/get_item_by_legacy_id"

    async def _headers(self) -> Dict[str, str]:
        token = await self.token_provider.get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "X-EBAY-C-MARKETPLACE-ID": self.ebay.marketplace_id,
        }

    def _check_response(self, response: httpx.Response, context: str) -> None:
        status = response.status_code
        if status == 200:
            return
        if status == 401:
            # Token expired or revoked; next attempt fetches a fresh one
            self.token_provider.invalidate()
            raise TransientUpstreamError("ebay", f"{context}: unauthorized", status_code=status)
        if status == 429 or status >= 500:
            raise TransientUpstreamError(
                "ebay", f"{context}: upstream temporary error {status}", status_code=status
            )
        error_id = _error_id(response)
        if status == 400 and error_id == QueryTooBroadError.ERROR_ID:
            raise QueryTooBroadError()
        logger.error(f"[BROWSE] {context} error {status}: {response.text[:300]}")
        raise EbayAPIError(
            message=f"eBay Browse error: {status}",
            status_code=status,
            error_id=error_id,
        )

    async def search_page(
        self,
        seller: str,
        limit: int,
        offset: int = 0,
        q: str = "*",
        next_url: Optional[str] = None,
        location_country: Optional[str] = None,
        price_band: Optional[PriceBand] = None,
    ) -> SearchPage:
        """Fetch one search page, retrying transient failures"""
        return await retry_async(
            lambda: self._search_once(seller, limit, offset, q, next_url, location_country, price_band),
            self.page_policy,
            label=f"browse search {seller}",
            sleep=self._sleep,
        )

    async def _search_once(
        self,
        seller: str,
        limit: int,
        offset: int,
        q: str,
        next_url: Optional[str],
        location_country: Optional[str],
        price_band: Optional[PriceBand],
    ) -> SearchPage:
        headers = await self._headers()

        if next_url:
            response = await self.http_client.get(
                next_url, headers=headers, timeout=self.search.search_timeout
            )
        else:
            params = {
                "q": q or "*",
                "filter": build_filter(seller, location_country, price_band, self.ebay.currency),
                "limit": str(min(limit, self.search.page_limit)),
                "offset": str(offset),
            }
            response = await self.http_client.get(
                self.search_url, headers=headers, params=params, timeout=self.search.search_timeout
            )

        self._check_response(response, "search")

        data = response.json()
        items = data.get("itemSummaries") or []
        total = data.get("total")
        logger.debug(f"[BROWSE] {seller}: {len(items)} items at offset {offset} (total={total})")
        return SearchPage(
            items=items,
            total=int(total) if total is not None else None,
            next_url=data.get("next"),
            offset=int(data.get("offset", offset) or 0),
        )

    async def get_item_by_legacy_id(self, legacy_id: str) -> Dict[str, Any]:
        """Fetch a single item by its legacy numeric id (no retry)"""
        headers = await self._headers()
        response = await self.http_client.get(
            self.legacy_item_url,
            headers=headers,
            params={"legacy_item_id": str(legacy_id)},
            timeout=self.search.item_timeout,
        )
        self._check_response(response, f"legacy item {legacy_id}")
        return response.json()
