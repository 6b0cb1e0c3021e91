"""
Response building for the search endpoints.

Shapes a SearchResult into the JSON body the front-end consumes:
{"items": [...], "meta": {"sellers", "maxPerSeller", "total"}}.
"""

import logging
from typing import Any, Dict

from pipeline.orchestrator import SearchResult

logger = logging.getLogger(__name__)


def build_search_response(result: SearchResult) -> Dict[str, Any]:
    response = {
        "items": [record.to_dict() for record in result.records],
        "meta": {
            "sellers": result.sellers,
            "maxPerSeller": result.max_per_seller,
            "total": result.total,
        },
    }
    if result.failed_sellers:
        response["meta"]["failedSellers"] = result.failed_sellers
        logger.info(f"[RESPONSE] Partial result, failed sellers: {result.failed_sellers}")
    return response
