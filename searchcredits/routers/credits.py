"""Credits router: /api/credits/* endpoints for the calling account."""

from fastapi import APIRouter, Header, Query
from starlette.requests import Request

from searchcredits.deps import get_server, http_error
from searchcredits.errors import SearchEngineError

router = APIRouter()


@router.get("/api/credits/balance")
async def get_balance(
    request: Request,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await srv.auth.get_current_account(x_api_key, authorization)
    try:
        balance = await srv.ledger.get_balance(caller["account_id"])
    except SearchEngineError as e:
        raise http_error(e)
    return balance.to_dict()


@router.get("/api/credits/transactions")
async def list_transactions(
    request: Request,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await srv.auth.get_current_account(x_api_key, authorization)
    txs = await srv.ledger.history(caller["account_id"], limit=limit, offset=offset)
    return [tx.to_dict() for tx in txs]


@router.get("/api/credits/usage")
async def usage(
    request: Request,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await srv.auth.get_current_account(x_api_key, authorization)
    try:
        return await srv.ledger.usage_stats(caller["account_id"])
    except SearchEngineError as e:
        raise http_error(e)
