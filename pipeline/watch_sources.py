"""
Watch-count sources

Three independent, best-effort places a listing's watch count can come from:

- html        the item's own page, scraped with rotated browser headers;
              a bot-challenge page or 429 trips its cooldown
- shopping    eBay Shopping API (GetMultipleItems / GetSingleItem), guarded
              by a process-wide cooldown once it signals an IP/rate limit
- aggregator  a third-party aggregation site, one request per seller

Every source takes the outstanding WatchTargets and returns a
{legacy_id: count} map for the ones it could resolve. A source never
raises for an upstream failure; misses are simply absent from the map.
"""

import asyncio
import json
import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Pattern
from urllib.parse import quote

import httpx
from bs4 import BeautifulSoup

from config import EbaySettings, EnrichmentSettings
from services.browser_headers import browser_headers
from services.cooldown import CooldownRegistry
from services.deduplication import legacy_id_from_item_id, legacy_id_from_url
from services.ebay_auth import TokenProvider
from services.exceptions import RateLimitError, TransientUpstreamError, WatchSearchException
from services.rate_limiter import ConcurrencyLimiter, RetryPolicy, retry_async

logger = logging.getLogger(__name__)


# ============================================================
# PATTERN TABLES
# ============================================================

def _digits(match: "re.Match") -> Optional[int]:
    raw = match.group(1).replace(",", "").strip()
    return int(raw) if raw.isdigit() else None


@dataclass(frozen=True)
class WatchPattern:
    name: str
    regex: Pattern
    extract: Callable[["re.Match"], Optional[int]] = _digits


# Ordered most specific first; the first pattern that yields a number wins.
# New marketplace phrasing is added here, not in the fetch code.
WATCH_PATTERNS: List[WatchPattern] = [
    WatchPattern("embedded-json", re.compile(r'"watchCount"\s*:\s*"?(\d+)')),
    WatchPattern("watchers", re.compile(r"([\d,]+)\s+watchers?\b", re.IGNORECASE)),
    WatchPattern(
        "people-watching",
        re.compile(r"([\d,]+)\s+(?:people|users|others)\s+(?:are\s+)?watching", re.IGNORECASE),
    ),
    WatchPattern(
        "watch-list",
        re.compile(r"([\d,]+)\s+(?:people\s+)?(?:have\s+)?added\s+this\s+to\s+their\s+watch\s*list", re.IGNORECASE),
    ),
    WatchPattern("watching", re.compile(r"([\d,]+)\s+watching\b", re.IGNORECASE)),
    WatchPattern("ja-watching-item", re.compile(r"([\d,]+)\s*人がこの商品をウォッチ中です")),
    WatchPattern("ja-watching", re.compile(r"([\d,]+)\s*人がウォッチ(?:中|しています)")),
    WatchPattern("ja-watch-list", re.compile(r"ウォッチリスト(?:に追加した人数)?\s*[:：]?\s*([\d,]+)")),
]

# Bot-wall indicators; a page containing any of these is a block signal, not data
CHALLENGE_MARKERS = [
    "Pardon Our Interruption",
    "/splashui/challenge",
    "Checking your browser",
    "captcha",
    "Please verify yourself",
    "セキュリティ確認",
]


def extract_watch_count(html: str, patterns: Iterable[WatchPattern] = WATCH_PATTERNS) -> Optional[int]:
    for pattern in patterns:
        match = pattern.regex.search(html)
        if not match:
            continue
        value = pattern.extract(match)
        if value is not None:
            return value
    return None


def is_challenge_page(html: str) -> bool:
    lowered = html.lower()
    return any(marker.lower() in lowered for marker in CHALLENGE_MARKERS)


@dataclass(frozen=True)
class WatchTarget:
    """A record still missing a watch count, addressed by legacy id"""
    index: int
    legacy_id: str
    url: Optional[str] = None
    seller: Optional[str] = None


class WatchSource:
    name = "base"

    async def fetch(self, targets: List[WatchTarget]) -> Dict[str, int]:
        raise NotImplementedError


# ============================================================
# HTML ITEM PAGES
# ============================================================

class HtmlWatchSource(WatchSource):
    """
    Scrape each item page; slow on purpose to stay under bot detection.

    A bot-challenge page or an HTTP 429 means every further page fetch will
    miss too, so either one trips the cooldown for this source and the
    remaining items are skipped without a request.
    """

    name = "html"

    def __init__(
        self,
        ebay: EbaySettings,
        settings: EnrichmentSettings,
        http_client: httpx.AsyncClient,
        cooldowns: Optional[CooldownRegistry] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.ebay = ebay
        self.settings = settings
        self.http_client = http_client
        self.cooldowns = cooldowns or CooldownRegistry()
        self.policy = RetryPolicy(
            attempts=settings.html_attempts, base_delay=settings.retry_delay, backoff="linear"
        )
        self._sleep = sleep
        self._rng = rng or random.Random()

    def item_url(self, target: WatchTarget) -> str:
        return target.url or f"https://{self.ebay.site_host}/itm/{target.legacy_id}"

    def delay_for(self, position: int) -> float:
        low, high = self.settings.html_delay_range
        delay = self._rng.uniform(low, high)
        if position > 0:
            delay *= self.settings.item_delay_scale
        return delay

    async def fetch(self, targets: List[WatchTarget]) -> Dict[str, int]:
        if self.cooldowns.is_blocked(self.name):
            logger.info(f"[WATCH] html: cooling down ({self.cooldowns.remaining(self.name):.0f}s left), skipping")
            return {}

        limiter = ConcurrencyLimiter(self.settings.html_concurrency)
        counts = await limiter.map(self._fetch_one, list(enumerate(targets)))

        found = {}
        for target, count in zip(targets, counts):
            if count is not None:
                found[target.legacy_id] = count
        logger.info(f"[WATCH] html: {len(found)}/{len(targets)} watch counts")
        return found

    async def _fetch_one(self, positioned) -> Optional[int]:
        position, target = positioned
        if self.cooldowns.is_blocked(self.name):
            return None
        await self._sleep(self.delay_for(position))
        if self.cooldowns.is_blocked(self.name):
            return None

        url = self.item_url(target)
        try:
            return await retry_async(
                lambda: self._fetch_page(url),
                self.policy,
                label=f"html {target.legacy_id}",
                sleep=self._sleep,
            )
        except RateLimitError as e:
            if not self.cooldowns.is_blocked(self.name):
                self.cooldowns.trip(self.name, self.settings.cooldown_seconds, e.details.get("reason", ""))
            return None
        except (WatchSearchException, httpx.HTTPError) as e:
            logger.debug(f"[WATCH] html {target.legacy_id} gave up: {e}")
            return None

    async def _fetch_page(self, url: str) -> Optional[int]:
        response = await self.http_client.get(
            url,
            headers=browser_headers(self._rng),
            timeout=self.settings.html_timeout,
            follow_redirects=True,
        )
        if response.status_code == 429:
            raise RateLimitError("ebay-html", reason="HTTP 429")
        if response.status_code >= 500:
            raise TransientUpstreamError("ebay-html", f"HTTP {response.status_code}", status_code=response.status_code)
        if response.status_code != 200:
            logger.debug(f"[WATCH] html {url}: HTTP {response.status_code}")
            return None

        html = response.text
        if is_challenge_page(html):
            logger.warning(f"[WATCH] html challenge page for {url}")
            raise RateLimitError("ebay-html", reason="bot challenge page")
        return extract_watch_count(html)


# ============================================================
# SHOPPING API
# ============================================================

SHOPPING_API_VERSION = "1199"
RATE_LIMIT_ERROR_CODES = {"1.21", "1.22"}


def _shopping_errors(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    errors = data.get("Errors") or []
    if isinstance(errors, dict):
        errors = [errors]
    return [e for e in errors if isinstance(e, dict)]


def _is_rate_limited(errors: List[Dict[str, Any]]) -> Optional[str]:
    """Return a reason string when any error signals an IP/call limit"""
    for error in errors:
        code = str(error.get("ErrorCode", "")).strip()
        message = f"{error.get('ShortMessage', '')} {error.get('LongMessage', '')}".strip()
        if code in RATE_LIMIT_ERROR_CODES or "limit" in message.lower():
            return f"{code} {message}".strip()
    return None


def parse_shopping_items(data: Dict[str, Any]) -> Dict[str, int]:
    items = data.get("Item") or []
    if isinstance(items, dict):
        items = [items]
    found = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        item_id = str(item.get("ItemID") or "")
        count = item.get("WatchCount")
        if item_id and count is not None and str(count).isdigit():
            found[item_id] = int(count)
    return found


class ShoppingWatchSource(WatchSource):
    """
    Shopping API lookups, batched when more than one id is outstanding.

    The first rate-limit signal trips a cooldown for this source; calls
    already queued behind it see the block and skip the network.
    """

    name = "shopping"

    def __init__(
        self,
        ebay: EbaySettings,
        settings: EnrichmentSettings,
        http_client: httpx.AsyncClient,
        cooldowns: CooldownRegistry,
        token_provider: Optional[TokenProvider] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.ebay = ebay
        self.settings = settings
        self.http_client = http_client
        self.cooldowns = cooldowns
        self.token_provider = token_provider
        self.policy = RetryPolicy(
            attempts=settings.shopping_attempts, base_delay=settings.retry_delay, backoff="exponential"
        )
        self._sleep = sleep

    async def fetch(self, targets: List[WatchTarget]) -> Dict[str, int]:
        if not self.ebay.client_id:
            logger.debug("[WATCH] shopping: no app id configured, skipping")
            return {}
        if self.cooldowns.is_blocked(self.name):
            logger.info(f"[WATCH] shopping: cooling down ({self.cooldowns.remaining(self.name):.0f}s left), skipping")
            return {}

        ids = list(dict.fromkeys(t.legacy_id for t in targets))
        if len(ids) == 1:
            calls = [("GetSingleItem", ids)]
        else:
            size = self.settings.shopping_batch_size
            calls = [("GetMultipleItems", ids[i:i + size]) for i in range(0, len(ids), size)]

        limiter = ConcurrencyLimiter(self.settings.api_concurrency)
        results = await limiter.map(self._guarded_call, calls, default={})

        found: Dict[str, int] = {}
        for result in results:
            found.update(result)
        logger.info(f"[WATCH] shopping: {len(found)}/{len(ids)} watch counts")
        return found

    async def _guarded_call(self, call) -> Dict[str, int]:
        callname, ids = call
        if self.cooldowns.is_blocked(self.name):
            return {}
        try:
            return await retry_async(
                lambda: self._call(callname, ids),
                self.policy,
                label=f"shopping {callname}",
                sleep=self._sleep,
            )
        except RateLimitError as e:
            self.cooldowns.trip(self.name, self.settings.cooldown_seconds, e.details.get("reason", ""))
            return {}
        except (WatchSearchException, httpx.HTTPError) as e:
            logger.warning(f"[WATCH] shopping {callname} failed: {e}")
            return {}

    async def _call(self, callname: str, ids: List[str]) -> Dict[str, int]:
        params = {
            "callname": callname,
            "responseencoding": "JSON",
            "appid": self.ebay.client_id,
            "siteid": self.ebay.shopping_site_id,
            "version": SHOPPING_API_VERSION,
            "ItemID": ",".join(ids),
            "IncludeSelector": "Details",
        }
        headers: Dict[str, str] = {}
        if self.token_provider is not None:
            headers["X-EBAY-API-IAF-TOKEN"] = await self.token_provider.get_token()
        response = await self.http_client.get(
            self.ebay.shopping_url,
            params=params,
            headers=headers,
            timeout=self.settings.shopping_timeout,
        )
        if response.status_code == 429:
            raise RateLimitError("shopping", reason="HTTP 429")
        if response.status_code >= 500:
            raise TransientUpstreamError("shopping", f"HTTP {response.status_code}", status_code=response.status_code)

        try:
            data = response.json()
        except ValueError:
            logger.debug(f"[WATCH] shopping {callname}: non-JSON body (HTTP {response.status_code})")
            return {}

        errors = _shopping_errors(data)
        reason = _is_rate_limited(errors)
        if reason:
            raise RateLimitError("shopping", reason=reason)
        if response.status_code != 200:
            logger.debug(f"[WATCH] shopping {callname}: HTTP {response.status_code}")
            return {}
        if errors and data.get("Ack") == "Failure":
            message = str(errors[0].get("LongMessage") or errors[0].get("ShortMessage") or "")
            if self.token_provider is not None and "token" in message.lower():
                self.token_provider.invalidate()
            logger.debug(f"[WATCH] shopping {callname}: {errors[0].get('ShortMessage')}")
            return {}
        return parse_shopping_items(data)


# ============================================================
# AGGREGATION SITE
# ============================================================

WATCH_KEYS = ("watchCount", "watch_count", "watchers", "watches")
ID_KEYS = ("legacyItemId", "itemId", "item_id", "sku", "productID", "url", "link")

ROW_COUNT_RE = re.compile(r"([\d,]+)\s*(?:watchers?|watching|watches)\b", re.IGNORECASE)
LINK_ADJACENT_RE = re.compile(
    r"/itm/(?:[^\"'\s<>/?#]+/)?(\d{6,})[^<]*</a>.{0,400}?([\d,]+)\s*(?:watchers?|watching|watches)\b",
    re.IGNORECASE | re.DOTALL,
)
LOOSE_LINK_RE = re.compile(
    r"/itm/(?:[^\"'\s<>/?#]+/)?(\d{6,}).{0,200}?>\s*([\d,]+)\s*<",
    re.DOTALL,
)


def _legacy_id_from_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return legacy_id_from_item_id(text) or legacy_id_from_url(text) or (text if re.fullmatch(r"\d{6,}", text) else None)


def _walk_json(node: Any, found: Dict[str, int]) -> None:
    if isinstance(node, dict):
        count = next((node[k] for k in WATCH_KEYS if node.get(k) is not None), None)
        if count is not None and str(count).replace(",", "").isdigit():
            for key in ID_KEYS:
                legacy_id = _legacy_id_from_value(node.get(key))
                if legacy_id:
                    found.setdefault(legacy_id, int(str(count).replace(",", "")))
                    break
        for value in node.values():
            _walk_json(value, found)
    elif isinstance(node, list):
        for value in node:
            _walk_json(value, found)


def parse_structured(soup: BeautifulSoup) -> Dict[str, int]:
    """Embedded JSON and JSON-LD script blocks"""
    found: Dict[str, int] = {}
    for script in soup.find_all("script"):
        script_type = (script.get("type") or "").lower()
        if "json" not in script_type:
            continue
        try:
            data = json.loads(script.string or "")
        except ValueError:
            continue
        _walk_json(data, found)
    return found


def parse_table_rows(soup: BeautifulSoup) -> Dict[str, int]:
    found: Dict[str, int] = {}
    for row in soup.find_all("tr"):
        link = row.find("a", href=re.compile(r"/itm/"))
        if link is None:
            continue
        legacy_id = legacy_id_from_url(link["href"])
        if not legacy_id:
            continue

        count = None
        for cell in row.find_all(["td", "th"]):
            classes = " ".join(cell.get("class") or []).lower()
            text = cell.get_text(" ", strip=True).replace(",", "")
            if "watch" in classes and text.isdigit():
                count = int(text)
                break
        if count is None:
            match = ROW_COUNT_RE.search(row.get_text(" ", strip=True))
            if match:
                count = int(match.group(1).replace(",", ""))
        if count is not None:
            found.setdefault(legacy_id, count)
    return found


def parse_link_adjacent(html: str) -> Dict[str, int]:
    """Loosest pass: a count phrase shortly after an item link"""
    for regex in (LINK_ADJACENT_RE, LOOSE_LINK_RE):
        found: Dict[str, int] = {}
        for match in regex.finditer(html):
            found.setdefault(match.group(1), int(match.group(2).replace(",", "")))
        if found:
            return found
    return {}


def parse_aggregator_page(html: str) -> Dict[str, int]:
    soup = BeautifulSoup(html, "html.parser")
    for parser in (parse_structured, parse_table_rows):
        found = parser(soup)
        if found:
            return found
    return parse_link_adjacent(html)


class AggregatorWatchSource(WatchSource):
    """One page per distinct seller, mapped back onto the outstanding ids"""

    name = "aggregator"

    def __init__(
        self,
        ebay: EbaySettings,
        settings: EnrichmentSettings,
        http_client: httpx.AsyncClient,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.ebay = ebay
        self.settings = settings
        self.http_client = http_client
        self.policy = RetryPolicy(
            attempts=settings.aggregator_attempts, base_delay=settings.retry_delay, backoff="linear"
        )
        self._sleep = sleep

    def seller_url(self, seller: str) -> str:
        return self.settings.aggregator_url_template.format(
            seller=quote(seller, safe=""), marketplace=self.ebay.marketplace_id
        )

    async def fetch(self, targets: List[WatchTarget]) -> Dict[str, int]:
        sellers = list(dict.fromkeys(t.seller for t in targets if t.seller))
        wanted = {t.legacy_id for t in targets}

        found: Dict[str, int] = {}
        for seller in sellers:
            counts = await self._seller_counts(seller)
            found.update({k: v for k, v in counts.items() if k in wanted})
        logger.info(f"[WATCH] aggregator: {len(found)}/{len(wanted)} watch counts from {len(sellers)} sellers")
        return found

    async def _seller_counts(self, seller: str) -> Dict[str, int]:
        try:
            html = await retry_async(
                lambda: self._fetch_page(seller),
                self.policy,
                label=f"aggregator {seller}",
                sleep=self._sleep,
            )
        except (WatchSearchException, httpx.HTTPError) as e:
            logger.warning(f"[WATCH] aggregator {seller} failed: {e}")
            return {}
        if not html:
            return {}
        return parse_aggregator_page(html)

    async def _fetch_page(self, seller: str) -> Optional[str]:
        response = await self.http_client.get(
            self.seller_url(seller),
            headers=browser_headers(),
            timeout=self.settings.aggregator_timeout,
            follow_redirects=True,
        )
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientUpstreamError("aggregator", f"HTTP {response.status_code}", status_code=response.status_code)
        if response.status_code != 200:
            logger.debug(f"[WATCH] aggregator {seller}: HTTP {response.status_code}")
            return None
        return response.text


# ============================================================
# FACTORY
# ============================================================

def build_watch_sources(
    ebay: EbaySettings,
    settings: EnrichmentSettings,
    http_client: httpx.AsyncClient,
    cooldowns: CooldownRegistry,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
    token_provider: Optional[TokenProvider] = None,
) -> List[WatchSource]:
    """Instantiate sources in the configured order; unknown names are skipped"""
    factories = {
        "html": lambda: HtmlWatchSource(ebay, settings, http_client, cooldowns, sleep=sleep, rng=rng),
        "shopping": lambda: ShoppingWatchSource(
            ebay, settings, http_client, cooldowns, token_provider=token_provider, sleep=sleep
        ),
        "aggregator": lambda: AggregatorWatchSource(ebay, settings, http_client, sleep=sleep),
    }
    sources = []
    for name in settings.source_order:
        factory = factories.get(name)
        if factory is None:
            logger.warning(f"[WATCH] Unknown watch source '{name}' in source order, ignoring")
            continue
        sources.append(factory())
    return sources
