"""
Listing identity and deduplication.

Legacy item ids are the numeric ids the secondary APIs and item pages use.
They can be recovered from three surface forms, tried in order:

    composite item id   v1|146716939745|0
    item page path      https://www.ebay.com/itm/146716939745?hash=...
    query parameter     ...?item=146716939745

The same extraction is used as the dedup key and for addressing
watch-count sources.
"""

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional, Set

logger = logging.getLogger(__name__)

LEGACY_ID_RE = re.compile(r"^\d{6,}$")
COMPOSITE_ID_RE = re.compile(r"^[^|]*\|(\d{6,})\|")
URL_PATH_RE = re.compile(r"/itm/(?:[^/?#]+/)?(\d{6,})(?=[/?#]|$)")
URL_QUERY_RE = re.compile(r"[?&]item=(\d{6,})(?=&|#|$)")


def _field(source: Any, attr: str, *keys: str) -> Optional[str]:
    if source is None:
        return None
    if isinstance(source, Mapping):
        for key in keys:
            value = source.get(key)
            if value:
                return str(value)
        return None
    value = getattr(source, attr, None)
    return str(value) if value else None


def legacy_id_from_item_id(item_id: Optional[str]) -> Optional[str]:
    if not item_id:
        return None
    item_id = item_id.strip()
    if LEGACY_ID_RE.match(item_id):
        return item_id
    match = COMPOSITE_ID_RE.match(item_id)
    return match.group(1) if match else None


def legacy_id_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    match = URL_PATH_RE.search(url)
    if match:
        return match.group(1)
    match = URL_QUERY_RE.search(url)
    return match.group(1) if match else None


def extract_legacy_id(source: Any) -> Optional[str]:
    """
    Legacy numeric id for a ListingRecord or a raw item mapping.

    Composite id first, then URL path, then URL query. Returns None when
    nothing matches.
    """
    item_id = _field(source, "item_id", "itemId", "item_id")
    legacy = legacy_id_from_item_id(item_id)
    if legacy:
        return legacy
    url = _field(source, "url", "url", "itemWebUrl", "viewItemURL")
    return legacy_id_from_url(url)


def dedup_key(source: Any) -> Optional[str]:
    """Identity of a listing: its legacy id, else its raw item id"""
    legacy = extract_legacy_id(source)
    if legacy:
        return legacy
    return _field(source, "item_id", "itemId", "item_id")


def merge_unique(existing: List[Any], incoming: Iterable[Any], limit: Optional[int] = None) -> List[Any]:
    """
    Append incoming items whose identity is not already present.

    First-seen wins. Items without any identity cannot collide and are
    always kept. Stops once limit items are held.
    """
    merged = list(existing)
    seen: Set[str] = {k for k in (dedup_key(item) for item in merged) if k}
    for item in incoming:
        if limit is not None and len(merged) >= limit:
            break
        key = dedup_key(item)
        if key and key in seen:
            continue
        if key:
            seen.add(key)
        merged.append(item)
    return merged


def count_unique(items: Iterable[Any]) -> int:
    return len(merge_unique([], items))
