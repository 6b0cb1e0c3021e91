"""
Request parsing for the search endpoints.

Turns the JSON body of /api/search and /api/sold into a validated
SearchRequest. Sellers may arrive as a list or as one comma/newline
separated string, and any entry may be a seller profile or store URL
instead of a bare handle.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional
from urllib.parse import parse_qs, unquote, urlparse

from config import SearchSettings
from services.exceptions import InvalidRequestError, ValidationError

logger = logging.getLogger(__name__)

SELLER_SPLIT_RE = re.compile(r"[,\n\r]+")
SELLER_PATH_RE = re.compile(r"/(?:usr|str)/([^/?#]+)")
SELLER_QUERY_KEYS = ("_ssn", "sid")


@dataclass
class SearchRequest:
    sellers: List[str]
    max_per_seller: int
    title_search: Optional[str] = None


def resolve_seller_handle(token: str) -> str:
    """
    Bare handle for a seller token.

        https://www.ebay.com/usr/some_seller        -> some_seller
        https://www.ebay.com/str/somestore          -> somestore
        https://www.ebay.com/sch/i.html?_ssn=abc    -> abc
        some_seller                                 -> some_seller
    """
    token = token.strip()
    if "/" not in token and "?" not in token:
        return token

    parsed = urlparse(token if "://" in token else f"https://{token}")
    match = SELLER_PATH_RE.search(parsed.path)
    if match:
        return unquote(match.group(1))

    query = parse_qs(parsed.query)
    for key in SELLER_QUERY_KEYS:
        values = query.get(key)
        if values and values[0].strip():
            return values[0].strip()
    return token


def split_sellers(value: Any) -> List[str]:
    if isinstance(value, str):
        tokens = SELLER_SPLIT_RE.split(value)
    elif isinstance(value, (list, tuple)):
        tokens = []
        for entry in value:
            if not isinstance(entry, str):
                raise InvalidRequestError("sellers must be strings", field="sellers")
            tokens.extend(SELLER_SPLIT_RE.split(entry))
    else:
        raise InvalidRequestError("sellers must be a list or a string", field="sellers")

    sellers = []
    for token in tokens:
        token = token.strip()
        if token:
            sellers.append(resolve_seller_handle(token))
    return sellers


def _parse_max_per_seller(value: Any, search: SearchSettings) -> int:
    if value is None or value == "":
        return search.max_results_per_seller
    if isinstance(value, bool):
        raise ValidationError("maxPerSeller must be a positive integer", field="maxPerSeller")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError("maxPerSeller must be a positive integer", field="maxPerSeller")
    if isinstance(value, float) and value != number:
        raise ValidationError("maxPerSeller must be a positive integer", field="maxPerSeller")
    if number < 1 or number > search.max_results_cap:
        raise ValidationError(
            f"maxPerSeller must be between 1 and {search.max_results_cap}", field="maxPerSeller"
        )
    return number


def parse_search_request(body: Any, search: SearchSettings) -> SearchRequest:
    """Validate a request body; raises ValidationError on bad input"""
    if not isinstance(body, Mapping):
        raise InvalidRequestError("body must be a JSON object")

    if "sellers" not in body:
        raise ValidationError("sellers is required", field="sellers")
    sellers = split_sellers(body.get("sellers"))
    if not sellers:
        raise ValidationError("At least one seller is required", field="sellers")
    if len(sellers) > search.max_sellers:
        raise ValidationError(f"At most {search.max_sellers} sellers per request", field="sellers")

    title_search = body.get("titleSearch")
    if title_search is not None and not isinstance(title_search, str):
        raise ValidationError("titleSearch must be a string", field="titleSearch")
    title_search = title_search.strip() if title_search else None

    request = SearchRequest(
        sellers=sellers,
        max_per_seller=_parse_max_per_seller(body.get("maxPerSeller"), search),
        title_search=title_search or None,
    )
    logger.info(
        f"[REQUEST] {len(request.sellers)} sellers, maxPerSeller={request.max_per_seller}"
        + (f", titleSearch='{request.title_search}'" if request.title_search else "")
    )
    return request
