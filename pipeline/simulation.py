"""
Simulation mode retriever.

Stands in for ListingRetriever when SIMULATION_MODE is on, so the UI and
the HTTP surface can be exercised without eBay credentials. Output is
deterministic per seller and every record is labelled as simulated.
"""

import logging
import random
import zlib
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pipeline.normalizer import ListingRecord

logger = logging.getLogger(__name__)

MAX_SIMULATED_PER_SELLER = 5
SIMULATED_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _seller_rng(seller: str, salt: str = "") -> random.Random:
    return random.Random(zlib.crc32(f"{salt}{seller}".encode("utf-8")))


def simulated_listings(
    seller: str,
    max_results: int,
    title_search: Optional[str] = None,
    sold: bool = False,
) -> List[ListingRecord]:
    rng = _seller_rng(seller, "sold:" if sold else "")
    count = min(max_results, MAX_SIMULATED_PER_SELLER)
    label = "Sold sample" if sold else "Sample"

    records = []
    for i in range(count):
        legacy_id = str(100000000000 + rng.randrange(899999999999))
        title = f"[SIMULATED] {label} item {i + 1} from {seller}"
        if title_search:
            title = f"{title} ({title_search})"
        records.append(ListingRecord(
            item_id=f"v1|{legacy_id}|0",
            title=title,
            price_value=f"{rng.randint(500, 50000) / 100:.2f}",
            price_currency="USD",
            url=f"https://www.ebay.com/itm/{legacy_id}",
            seller_handle=seller,
            listed_at=(SIMULATED_EPOCH + timedelta(hours=rng.randint(0, 24 * 300))).isoformat().replace("+00:00", "Z"),
            watch_count=None if sold else rng.randint(1, 50),
        ))
    return records


class SimulatedRetriever:
    """Same interface as ListingRetriever, no network"""

    async def fetch_seller_listings(
        self,
        seller: str,
        max_results: int,
        title_search: Optional[str] = None,
    ) -> List[ListingRecord]:
        logger.info(f"[SIMULATION] Fabricating listings for {seller}")
        return simulated_listings(seller, max_results, title_search)

    async def fetch_sold_listings(self, seller: str, max_results: int) -> List[ListingRecord]:
        logger.info(f"[SIMULATION] Fabricating sold listings for {seller}")
        return simulated_listings(seller, max_results, sold=True)
