"""
Display ordering for search results.

Watch count descending when any record has one (unknown sorts last);
otherwise newest first, cheapest first on equal timestamps.
"""

import math
from datetime import timezone
from typing import List, Optional

from dateutil import parser as dt_parser

from pipeline.normalizer import ListingRecord


def listed_timestamp(listed_at: Optional[str]) -> float:
    """Epoch seconds for an ISO-8601 string; 0 when absent or unparsable"""
    if not listed_at:
        return 0.0
    try:
        parsed = dt_parser.isoparse(listed_at)
    except (ValueError, OverflowError):
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def sort_listings(records: List[ListingRecord]) -> List[ListingRecord]:
    if any(r.watch_count is not None for r in records):
        return sorted(
            records,
            key=lambda r: r.watch_count if r.watch_count is not None else -1,
            reverse=True,
        )

    def recency_key(record: ListingRecord):
        price = record.price_float
        return (
            -listed_timestamp(record.listed_at),
            price if price is not None else math.inf,
        )

    return sorted(records, key=recency_key)
