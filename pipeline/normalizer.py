"""
Canonical listing record and the normalizer that produces it.

Every source shape (Browse item summaries, Browse item details, the
presentation dict, an existing ListingRecord) maps onto ListingRecord.
A field the source lacks stays None: a missing watch count means
"unknown", which the enricher and the sorter treat differently from 0.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional, Union

PriceValue = Union[str, float, int]


@dataclass(frozen=True)
class ListingRecord:
    """Normalized listing. Immutable; enrichment returns a new record."""
    item_id: Optional[str] = None
    title: Optional[str] = None
    price_value: Optional[PriceValue] = None
    price_currency: Optional[str] = None
    url: Optional[str] = None
    seller_handle: Optional[str] = None
    listed_at: Optional[str] = None
    watch_count: Optional[int] = None

    def with_watch_count(self, watch_count: int) -> "ListingRecord":
        return replace(self, watch_count=watch_count)

    def with_seller(self, seller_handle: str) -> "ListingRecord":
        return replace(self, seller_handle=seller_handle)

    @property
    def price_float(self) -> Optional[float]:
        if self.price_value is None or self.price_value == "":
            return None
        try:
            return float(self.price_value)
        except (TypeError, ValueError):
            return None

    def to_dict(self) -> Dict[str, Any]:
        """Presentation shape consumed by the front-end and CSV export"""
        return {
            "sellerId": self.seller_handle,
            "itemId": self.item_id,
            "title": self.title,
            "priceValue": self.price_float,
            "priceCurrency": self.price_currency,
            "watchCount": self.watch_count,
            "url": self.url,
            "listedAt": self.listed_at,
        }


def _first(source: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = source.get(key)
        if value is not None and value != "":
            return value
    return None


def _watch_count(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def normalize(source: Union[ListingRecord, Mapping[str, Any]]) -> ListingRecord:
    """Map any supported item shape onto a ListingRecord (pure)"""
    if isinstance(source, ListingRecord):
        return source

    price = source.get("price")
    if isinstance(price, Mapping):
        price_value = _first(price, "value", "convertedFromValue")
        price_currency = _first(price, "currency", "convertedFromCurrency")
    else:
        price_value = _first(source, "priceValue", "price_value")
        price_currency = _first(source, "priceCurrency", "price_currency")

    seller = source.get("seller")
    if isinstance(seller, Mapping):
        seller_handle = _first(seller, "username")
    else:
        seller_handle = _first(source, "sellerId", "seller_handle", "sellerHandle")

    return ListingRecord(
        item_id=_first(source, "itemId", "item_id"),
        title=_first(source, "title"),
        price_value=price_value,
        price_currency=price_currency,
        url=_first(source, "itemWebUrl", "url", "viewItemURL"),
        seller_handle=seller_handle,
        listed_at=_first(source, "itemCreationDate", "listedAt", "itemOriginDate", "listed_at"),
        watch_count=_watch_count(_first(source, "watchCount", "watch_count")),
    )
