"""Search router: /api/search and /api/search/history/* endpoints."""

from typing import Optional

from fastapi import APIRouter, Header, Query
from starlette.requests import Request

from searchcredits.deps import get_server, http_error
from searchcredits.domain import SearchRequest, SearchType
from searchcredits.errors import SearchEngineError
from searchcredits.models import SearchBody

router = APIRouter()


async def _caller_id(srv, x_api_key: str, authorization: str) -> Optional[str]:
    caller = await srv.auth.resolve_account(x_api_key, authorization)
    return caller["account_id"] if caller else None


@router.post("/api/search")
async def perform_search(
    request: Request,
    body: SearchBody,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    account_id = await _caller_id(srv, x_api_key, authorization)
    search = SearchRequest(
        address=body.address,
        search_type=body.search_type,
        latitude=body.latitude,
        longitude=body.longitude,
    )
    try:
        result = await srv.orchestrator.perform_search(account_id, search)
    except (SearchEngineError, ValueError) as e:
        raise http_error(e)
    return result.to_dict()


@router.post("/api/search/history/{history_id}/upgrade")
async def upgrade_search(
    request: Request,
    history_id: str,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    account_id = await _caller_id(srv, x_api_key, authorization)
    try:
        result = await srv.orchestrator.upgrade_search(account_id, history_id)
    except (SearchEngineError, ValueError) as e:
        raise http_error(e)
    return result.to_dict()


@router.get("/api/search/history")
async def list_history(
    request: Request,
    limit: int = Query(default=20, ge=1, le=100),
    search_type: Optional[SearchType] = None,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await srv.auth.get_current_account(x_api_key, authorization)
    records = await srv.recorder.list_history(caller["account_id"], limit=limit, search_type=search_type)
    return [r.to_dict() for r in records]


@router.get("/api/search/history/{history_id}")
async def get_history(
    request: Request,
    history_id: str,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await srv.auth.get_current_account(x_api_key, authorization)
    try:
        record = await srv.recorder.get_history(caller["account_id"], history_id)
    except SearchEngineError as e:
        raise http_error(e)
    return record.to_dict()


@router.get("/api/search/stats")
async def search_stats(
    request: Request,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await srv.auth.get_current_account(x_api_key, authorization)
    return await srv.recorder.history_stats(caller["account_id"])
