"""
Search endpoints.

- POST /api/search: active listings for up to 100 sellers, watch-count enriched
- POST /api/sold:   sold/completed listings for the same seller input
"""

import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from services.app_state import get_app_state_from_request
from services.exceptions import InvalidRequestError
from pipeline.request_parser import parse_search_request
from pipeline.response_builder import build_search_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["search"])


async def _read_json(request: Request):
    body = await request.body()
    if not body:
        raise InvalidRequestError("empty request body")
    try:
        return json.loads(body)
    except ValueError as e:
        raise InvalidRequestError("body is not valid JSON") from e


@router.post("/search")
async def search_listings(request: Request):
    state = get_app_state_from_request(request)
    state.increment_stat("total_requests")
    state.increment_stat("search_requests")

    search_request = parse_search_request(await _read_json(request), state.settings.search)
    result = await state.orchestrator().search(
        search_request.sellers,
        search_request.max_per_seller,
        search_request.title_search,
    )
    return JSONResponse(build_search_response(result))


@router.post("/sold")
async def search_sold_listings(request: Request):
    state = get_app_state_from_request(request)
    state.increment_stat("total_requests")
    state.increment_stat("sold_requests")

    search_request = parse_search_request(await _read_json(request), state.settings.search)
    result = await state.orchestrator().search_sold(
        search_request.sellers,
        search_request.max_per_seller,
    )
    return JSONResponse(build_search_response(result))
