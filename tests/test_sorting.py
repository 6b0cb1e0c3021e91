"""
Tests for display ordering.
"""

from pipeline.normalizer import ListingRecord
from pipeline.sorting import listed_timestamp, sort_listings


def test_watch_count_descending_absent_last():
    records = [
        ListingRecord(item_id="a", watch_count=5),
        ListingRecord(item_id="b", watch_count=None),
        ListingRecord(item_id="c", watch_count=10),
    ]
    assert [r.watch_count for r in sort_listings(records)] == [10, 5, None]


def test_zero_watch_count_selects_watch_mode():
    records = [
        ListingRecord(item_id="a", listed_at="2024-06-01", watch_count=None),
        ListingRecord(item_id="b", listed_at="2024-01-01", watch_count=0),
    ]
    assert [r.item_id for r in sort_listings(records)] == ["b", "a"]


def test_newest_first_without_watch_counts():
    records = [
        ListingRecord(listed_at="2024-01-01", price_value=20),
        ListingRecord(listed_at="2024-06-01", price_value=10),
    ]
    assert [r.listed_at for r in sort_listings(records)] == ["2024-06-01", "2024-01-01"]


def test_price_breaks_timestamp_ties_and_absent_price_last():
    records = [
        ListingRecord(item_id="none", listed_at="2024-03-01T00:00:00Z"),
        ListingRecord(item_id="pricey", listed_at="2024-03-01T00:00:00Z", price_value="99.00"),
        ListingRecord(item_id="cheap", listed_at="2024-03-01T00:00:00Z", price_value="5.00"),
        ListingRecord(item_id="undated", price_value="1.00"),
    ]
    assert [r.item_id for r in sort_listings(records)] == ["cheap", "pricey", "none", "undated"]


def test_ties_keep_input_order():
    records = [ListingRecord(item_id=str(i), watch_count=3) for i in range(5)]
    assert [r.item_id for r in sort_listings(records)] == ["0", "1", "2", "3", "4"]


def test_unparsable_timestamp_is_epoch():
    assert listed_timestamp("not a date") == 0.0
    assert listed_timestamp(None) == 0.0
    assert listed_timestamp("1970-01-01T00:00:10Z") == 10.0
