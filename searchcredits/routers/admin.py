"""Admin router: /api/admin/* endpoints, gated by the admin key."""

from fastapi import APIRouter, Header
from starlette.requests import Request

from searchcredits.deps import get_server, http_error
from searchcredits.errors import SearchEngineError
from searchcredits.models import GrantRequest, RefundRequest

router = APIRouter()


@router.get("/api/admin/balances")
async def list_balances(
    request: Request,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    await srv.auth.require_admin(x_api_key, authorization)
    return [b.to_dict() for b in await srv.storage.balances.list_all()]


@router.post("/api/admin/credits/{account_id}/grant")
async def grant_credits(
    request: Request,
    account_id: str,
    req: GrantRequest,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    await srv.auth.require_admin(x_api_key, authorization)
    try:
        tx = await srv.ledger.credit(
            account_id, req.amount, req.action_type,
            description=req.description, reference_id=req.reference_id,
        )
    except (SearchEngineError, ValueError) as e:
        raise http_error(e)
    return tx.to_dict()


@router.post("/api/admin/credits/{account_id}/refund")
async def refund_credits(
    request: Request,
    account_id: str,
    req: RefundRequest,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    await srv.auth.require_admin(x_api_key, authorization)
    try:
        tx = await srv.ledger.refund(account_id, req.amount, req.reference_id, description=req.description)
    except (SearchEngineError, ValueError) as e:
        raise http_error(e)
    return tx.to_dict()


@router.get("/api/admin/reconcile/{account_id}")
async def reconcile(
    request: Request,
    account_id: str,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    await srv.auth.require_admin(x_api_key, authorization)
    try:
        return await srv.ledger.check_invariant(account_id)
    except SearchEngineError as e:
        raise http_error(e)
