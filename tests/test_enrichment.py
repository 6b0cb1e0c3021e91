"""
Tests for watch-count sources and the enricher.
"""

import asyncio
import json

import httpx
import pytest

from config import EbaySettings, EnrichmentSettings
from services.cooldown import CooldownRegistry
from services.exceptions import MissingCredentialsError
from smart_cache import TTLCache
from pipeline.listing_enrichment import WatchCountEnricher, watch_cache_key
from pipeline.normalizer import ListingRecord
from pipeline.watch_sources import (
    AggregatorWatchSource,
    HtmlWatchSource,
    ShoppingWatchSource,
    WatchSource,
    WatchTarget,
    build_watch_sources,
    extract_watch_count,
    is_challenge_page,
    parse_aggregator_page,
)
from tests.conftest import FakeClock, SleepRecorder, mock_client


def _ebay():
    return EbaySettings(client_id="app-id", client_secret="secret")


def _enrichment(**overrides):
    settings = EnrichmentSettings(html_delay_range=(0.0, 0.0))
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


def _record(legacy_id, seller="seller_a", **fields):
    return ListingRecord(
        item_id=f"v1|{legacy_id}|0",
        url=f"https://www.ebay.com/itm/{legacy_id}",
        seller_handle=seller,
        **fields,
    )


def _target(legacy_id, index=0, seller="seller_a"):
    return WatchTarget(index, str(legacy_id), f"https://www.ebay.com/itm/{legacy_id}", seller)


class StubTokenProvider:
    def __init__(self, token="app-token", error=None):
        self.token = token
        self.error = error
        self.invalidated = 0

    async def get_token(self):
        if self.error is not None:
            raise self.error
        return self.token

    def invalidate(self):
        self.invalidated += 1


# ============================================================
# PATTERN TABLE
# ============================================================

@pytest.mark.parametrize("html,expected", [
    ('<span class="x">12 watchers</span>', 12),
    ("<div>1,204 watchers</div>", 1204),
    ("<p>3 people are watching this.</p>", 3),
    ("<p>27 people have added this to their watch list</p>", 27),
    ("<b>9 watching</b>", 9),
    ("<span>5人がこの商品をウォッチ中です。</span>", 5),
    ("<span>14人がウォッチ中</span>", 14),
    ("<html>no signal here</html>", None),
])
def test_watch_patterns(html, expected):
    assert extract_watch_count(html) == expected


def test_first_pattern_wins():
    html = '<script>{"watchCount": 7}</script><span>12 watchers</span>'
    assert extract_watch_count(html) == 7


def test_challenge_detection():
    assert is_challenge_page("<title>Pardon Our Interruption...</title>")
    assert is_challenge_page('<form action="/splashui/challenge">')
    assert not is_challenge_page("<span>4 watchers</span>")


# ============================================================
# HTML SOURCE
# ============================================================

def test_html_source_reads_item_page():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, text="<span>8 watchers</span>")

    source = HtmlWatchSource(_ebay(), _enrichment(), mock_client(handler), sleep=SleepRecorder())
    found = asyncio.run(source.fetch([_target(146716939745)]))

    assert found == {"146716939745": 8}
    assert seen[0].url.path == "/itm/146716939745"
    assert "User-Agent" in seen[0].headers
    assert "Accept-Language" in seen[0].headers


def test_html_challenge_page_is_a_miss():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, text="<h1>Pardon Our Interruption</h1> 99 watchers")

    source = HtmlWatchSource(_ebay(), _enrichment(), mock_client(handler), sleep=SleepRecorder())

    assert asyncio.run(source.fetch([_target(146716939745)])) == {}
    assert len(calls) == 1


def test_html_retries_server_errors_then_gives_up():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    source = HtmlWatchSource(_ebay(), _enrichment(), mock_client(handler), sleep=SleepRecorder())

    assert asyncio.run(source.fetch([_target(146716939745)])) == {}
    assert len(calls) == 2


def test_html_delay_scaled_between_items():
    sleeper = SleepRecorder()

    def handler(request):
        return httpx.Response(200, text="1 watchers")

    settings = _enrichment(html_delay_range=(2.0, 2.0), item_delay_scale=1.5, html_concurrency=1)
    source = HtmlWatchSource(_ebay(), settings, mock_client(handler), sleep=sleeper)
    asyncio.run(source.fetch([_target(111111111, 0), _target(222222222, 1)]))

    assert sleeper.delays[:2] == pytest.approx([2.0, 3.0])


def test_html_challenge_pages_trip_cooldown_for_the_batch():
    clock = FakeClock()
    cooldowns = CooldownRegistry(clock=clock)
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, text="<title>Pardon Our Interruption...</title>")

    source = HtmlWatchSource(_ebay(), _enrichment(), mock_client(handler), cooldowns, sleep=SleepRecorder())
    targets = [_target(300000000 + i, i) for i in range(20)]

    assert asyncio.run(source.fetch(targets)) == {}
    assert len(calls) <= 2
    assert cooldowns.is_blocked("html")
    assert "challenge" in cooldowns.snapshot()["html"]["reason"]

    made = len(calls)
    assert asyncio.run(source.fetch(targets)) == {}
    assert len(calls) == made

    clock.advance(1801)
    asyncio.run(source.fetch(targets[:1]))
    assert len(calls) == made + 1


def test_html_429_trips_cooldown_without_retry():
    cooldowns = CooldownRegistry(clock=FakeClock())
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(429, text="Too many requests")

    source = HtmlWatchSource(_ebay(), _enrichment(html_concurrency=1), mock_client(handler), cooldowns, sleep=SleepRecorder())
    targets = [_target(300000000 + i, i) for i in range(5)]

    assert asyncio.run(source.fetch(targets)) == {}
    assert len(calls) == 1
    assert cooldowns.is_blocked("html")
    assert not cooldowns.is_blocked("shopping")


# ============================================================
# SHOPPING SOURCE + COOLDOWN
# ============================================================

def _shopping_ok(request):
    ids = request.url.params["ItemID"].split(",")
    items = [{"ItemID": i, "WatchCount": int(i[-2:])} for i in ids]
    if request.url.params["callname"] == "GetSingleItem":
        return httpx.Response(200, json={"Ack": "Success", "Item": items[0]})
    return httpx.Response(200, json={"Ack": "Success", "Item": items})


def test_shopping_batches_and_single_item():
    calls = []

    def handler(request):
        calls.append(request)
        return _shopping_ok(request)

    source = ShoppingWatchSource(
        _ebay(), _enrichment(), mock_client(handler), CooldownRegistry(),
        token_provider=StubTokenProvider(), sleep=SleepRecorder(),
    )

    targets = [_target(100000000 + i, i) for i in range(45)]
    found = asyncio.run(source.fetch(targets))
    assert len(found) == 45
    assert [c.url.params["callname"] for c in calls] == ["GetMultipleItems"] * 3
    assert sorted(len(c.url.params["ItemID"].split(",")) for c in calls) == [5, 20, 20]
    assert calls[0].url.params["IncludeSelector"] == "Details"
    assert calls[0].url.params["appid"] == "app-id"
    assert all(c.headers["X-EBAY-API-IAF-TOKEN"] == "app-token" for c in calls)

    calls.clear()
    found = asyncio.run(source.fetch([_target(146716939745)]))
    assert found == {"146716939745": 45}
    assert calls[0].url.params["callname"] == "GetSingleItem"


def test_rate_limit_trips_cooldown_and_skips_network():
    clock = FakeClock()
    cooldowns = CooldownRegistry(clock=clock)
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(429, text="Too many requests")
        return _shopping_ok(request)

    source = ShoppingWatchSource(_ebay(), _enrichment(), mock_client(handler), cooldowns, sleep=SleepRecorder())
    targets = [_target(146716939745)]

    assert asyncio.run(source.fetch(targets)) == {}
    assert len(calls) == 1
    assert cooldowns.is_blocked("shopping")

    for _ in range(5):
        clock.advance(60)
        assert asyncio.run(source.fetch(targets)) == {}
    assert len(calls) == 1

    clock.advance(30 * 60)
    assert asyncio.run(source.fetch(targets)) == {"146716939745": 45}
    assert len(calls) == 2


@pytest.mark.parametrize("error", [
    {"ErrorCode": "1.21", "ShortMessage": "Call usage"},
    {"ErrorCode": "1.22", "ShortMessage": "Blocked"},
    {"ErrorCode": "10.87", "LongMessage": "You have exceeded your IP limit."},
])
def test_rate_limit_error_bodies_trip_cooldown(error):
    cooldowns = CooldownRegistry(clock=FakeClock())

    def handler(request):
        return httpx.Response(200, json={"Ack": "Failure", "Errors": [error]})

    source = ShoppingWatchSource(_ebay(), _enrichment(), mock_client(handler), cooldowns, sleep=SleepRecorder())
    asyncio.run(source.fetch([_target(146716939745)]))

    assert cooldowns.is_blocked("shopping")


def test_ordinary_shopping_failure_does_not_trip():
    cooldowns = CooldownRegistry(clock=FakeClock())

    def handler(request):
        return httpx.Response(200, json={"Ack": "Failure", "Errors": [{"ErrorCode": "10.12", "ShortMessage": "Invalid item ID."}]})

    source = ShoppingWatchSource(_ebay(), _enrichment(), mock_client(handler), cooldowns, sleep=SleepRecorder())

    assert asyncio.run(source.fetch([_target(146716939745)])) == {}
    assert not cooldowns.is_blocked("shopping")


def test_shopping_token_failure_is_a_miss():
    calls = []

    def handler(request):
        calls.append(request)
        return _shopping_ok(request)

    cooldowns = CooldownRegistry(clock=FakeClock())
    tokens = StubTokenProvider(error=MissingCredentialsError())
    source = ShoppingWatchSource(
        _ebay(), _enrichment(), mock_client(handler), cooldowns,
        token_provider=tokens, sleep=SleepRecorder(),
    )

    assert asyncio.run(source.fetch([_target(146716939745)])) == {}
    assert calls == []
    assert not cooldowns.is_blocked("shopping")


def test_shopping_invalid_token_reply_drops_cached_token():
    def handler(request):
        return httpx.Response(200, json={
            "Ack": "Failure",
            "Errors": [{"ErrorCode": "1.33", "ShortMessage": "Token not available in request."}],
        })

    tokens = StubTokenProvider()
    source = ShoppingWatchSource(
        _ebay(), _enrichment(), mock_client(handler), CooldownRegistry(clock=FakeClock()),
        token_provider=tokens, sleep=SleepRecorder(),
    )

    assert asyncio.run(source.fetch([_target(146716939745)])) == {}
    assert tokens.invalidated == 1


# ============================================================
# AGGREGATOR SOURCE
# ============================================================

def test_aggregator_structured_data():
    data = {"itemListElement": [
        {"url": "https://www.ebay.com/itm/146716939745", "watchCount": 11},
        {"itemId": "v1|146716939746|0", "watchers": "4"},
    ]}
    html = f'<script type="application/ld+json">{json.dumps(data)}</script>'
    assert parse_aggregator_page(html) == {"146716939745": 11, "146716939746": 4}


def test_aggregator_table_rows():
    html = """
    <table>
      <tr><th>Item</th><th>Watchers</th></tr>
      <tr><td><a href="https://www.ebay.com/itm/146716939745">Seiko</a></td><td class="watch-count">23</td></tr>
      <tr><td><a href="https://www.ebay.com/itm/146716939746">Omega</a></td><td>6 watchers</td></tr>
    </table>
    """
    assert parse_aggregator_page(html) == {"146716939745": 23, "146716939746": 6}


def test_aggregator_link_adjacent_text():
    html = '<div><a href="https://www.ebay.com/itm/146716939745">Seiko</a> <span>15 watchers</span></div>'
    assert parse_aggregator_page(html) == {"146716939745": 15}


def test_aggregator_queried_once_per_seller():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(
            200,
            text='<a href="https://www.ebay.com/itm/146716939745">a</a> 5 watchers'
                 '<a href="https://www.ebay.com/itm/146716939746">b</a> 6 watchers',
        )

    source = AggregatorWatchSource(_ebay(), _enrichment(), mock_client(handler), sleep=SleepRecorder())
    targets = [_target(146716939745, 0), _target(146716939746, 1), _target(146716939747, 2, seller="other")]
    found = asyncio.run(source.fetch(targets))

    assert found == {"146716939745": 5, "146716939746": 6}
    assert len(calls) == 2
    assert calls[0].url.params["seller"] == "seller_a"


# ============================================================
# ENRICHER
# ============================================================

class StaticSource(WatchSource):
    def __init__(self, name, counts, fail=False):
        self.name = name
        self.counts = counts
        self.fail = fail
        self.seen = []

    async def fetch(self, targets):
        self.seen.append([t.legacy_id for t in targets])
        if self.fail:
            raise RuntimeError("source exploded")
        return {t.legacy_id: self.counts[t.legacy_id] for t in targets if t.legacy_id in self.counts}


def test_enricher_cascades_only_missing_and_keeps_order():
    html = StaticSource("html", {"111111111": 4})
    shopping = StaticSource("shopping", {"222222222": 9})
    aggregator = StaticSource("aggregator", {"333333333": 1})
    cache = TTLCache(clock=FakeClock())
    enricher = WatchCountEnricher([html, shopping, aggregator], cache)

    records = [
        _record(111111111),
        ListingRecord(title="no identity"),
        _record(222222222),
        _record(444444444, watch_count=2),
        _record(333333333),
        _record(555555555),
    ]
    result = asyncio.run(enricher.enrich(records))

    assert [r.watch_count for r in result] == [4, None, 9, 2, 1, None]
    assert result[1] is records[1]
    assert html.seen == [["111111111", "222222222", "333333333", "555555555"]]
    assert shopping.seen == [["222222222", "333333333", "555555555"]]
    assert aggregator.seen == [["333333333", "555555555"]]
    assert cache.get(watch_cache_key("222222222")) == 9


def test_enricher_uses_cache_before_sources():
    cache = TTLCache(clock=FakeClock())
    cache.set(watch_cache_key("111111111"), 13)
    source = StaticSource("html", {"111111111": 99})

    result = asyncio.run(WatchCountEnricher([source], cache).enrich([_record(111111111)]))

    assert result[0].watch_count == 13
    assert source.seen == []


def test_cached_value_expires_after_ttl():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    source = StaticSource("html", {"111111111": 5})
    enricher = WatchCountEnricher([source], cache, cache_ttl=3600)

    asyncio.run(enricher.enrich([_record(111111111)]))
    assert cache.get(watch_cache_key("111111111")) == 5
    clock.advance(3601)
    assert cache.get(watch_cache_key("111111111")) is None


def test_enricher_never_raises():
    broken = StaticSource("html", {}, fail=True)
    backup = StaticSource("shopping", {"111111111": 3})

    result = asyncio.run(
        WatchCountEnricher([broken, backup], TTLCache(clock=FakeClock())).enrich([_record(111111111)])
    )

    assert result[0].watch_count == 3


def test_source_order_from_settings():
    settings = _enrichment(source_order=("shopping", "bogus", "html"))
    sources = build_watch_sources(_ebay(), settings, mock_client(lambda r: httpx.Response(404)), CooldownRegistry())
    assert [s.name for s in sources] == ["shopping", "html"]


def test_cooldown_snapshot_and_reset():
    clock = FakeClock()
    cooldowns = CooldownRegistry(clock=clock)
    cooldowns.trip("shopping", 1800, "1.21 Call usage")

    snapshot = cooldowns.snapshot()["shopping"]
    assert snapshot["blocked"] is True
    assert snapshot["remaining_seconds"] == 1800.0
    assert snapshot["trips"] == 1

    cooldowns.reset("shopping")
    assert not cooldowns.is_blocked("shopping")
    assert cooldowns.snapshot() == {}
