"""
Debug endpoints for watch-count extraction.

- POST /api/debug/watchcount:       run the enricher for one item URL
- POST /api/debug/watchcount/batch: run it for several URLs, one at a time
  with a long randomized pause in between, and report a success summary
"""

import json
import logging
import random
from typing import Any, Dict, List

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from services.app_state import AppState, get_app_state_from_request
from services.deduplication import legacy_id_from_url
from services.exceptions import InvalidRequestError
from pipeline.normalizer import ListingRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/debug", tags=["debug"])

BATCH_DELAY_RANGE = (8.0, 18.0)


async def _read_body(request: Request) -> Dict[str, Any]:
    try:
        body = json.loads(await request.body() or b"{}")
    except ValueError as e:
        raise InvalidRequestError("body is not valid JSON") from e
    if not isinstance(body, dict):
        raise InvalidRequestError("body must be a JSON object")
    return body


async def _watch_count_for_url(state: AppState, url: str) -> Dict[str, Any]:
    legacy_id = legacy_id_from_url(url)
    if not legacy_id:
        return {
            "url": url,
            "success": False,
            "error": "Invalid eBay URL format",
            "watchCount": None,
        }

    item_id = f"v1|{legacy_id}|0"
    record = ListingRecord(item_id=item_id, url=url)
    enriched = await state.enricher().enrich([record])
    watch_count = enriched[0].watch_count
    logger.info(f"[DEBUG] {url}: watchCount={watch_count}")
    return {
        "url": url,
        "success": True,
        "watchCount": watch_count,
        "itemId": item_id,
        "legacyId": legacy_id,
    }


@router.post("/watchcount")
async def debug_watchcount(request: Request):
    state = get_app_state_from_request(request)
    state.increment_stat("debug_requests")

    body = await _read_body(request)
    url = body.get("url")
    if not url or not isinstance(url, str):
        raise InvalidRequestError("URL is required", field="url")

    result = await _watch_count_for_url(state, url.strip())
    result["success"] = result["watchCount"] is not None
    return JSONResponse(result)


@router.post("/watchcount/batch")
async def debug_watchcount_batch(request: Request):
    state = get_app_state_from_request(request)
    state.increment_stat("debug_requests")

    body = await _read_body(request)
    urls = body.get("urls")
    if not isinstance(urls, list) or not all(isinstance(u, str) for u in urls):
        raise InvalidRequestError("URLs array is required", field="urls")

    rng = state.rng or random
    results: List[Dict[str, Any]] = []
    for i, url in enumerate(urls):
        logger.info(f"[DEBUG] Processing URL {i + 1}/{len(urls)}: {url}")
        results.append(await _watch_count_for_url(state, url.strip()))

        if i < len(urls) - 1:
            delay = rng.uniform(*BATCH_DELAY_RANGE)
            logger.info(f"[DEBUG] Waiting {delay:.1f}s before next request")
            await state.sleep(delay)

    successful = sum(1 for r in results if r["success"] and r["watchCount"] is not None)
    success_rate = round(successful / len(urls) * 100) if urls else 0
    logger.info(f"[DEBUG] Batch complete. Success rate: {successful}/{len(urls)} ({success_rate}%)")

    return JSONResponse({
        "success": True,
        "results": results,
        "summary": {
            "total": len(urls),
            "successful": successful,
            "successRate": success_rate,
        },
    })
