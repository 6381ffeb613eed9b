"""Auth router: /api/auth/* endpoints."""

from fastapi import APIRouter, Header, HTTPException
from starlette.requests import Request

from searchcredits.deps import get_server
from searchcredits.models import LoginRequest, RegisterRequest

router = APIRouter()


@router.post("/api/auth/register")
async def auth_register(request: Request, req: RegisterRequest):
    srv = get_server(request)
    try:
        acct = await srv.auth.register(req.account_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=500, detail=str(e))
    balance = await srv.ledger.get_balance(acct["account_id"])
    return {
        "account_id": acct["account_id"],
        "api_key": acct["api_key"],
        "available_credits": balance.available_credits,
    }


@router.post("/api/auth/login")
async def auth_login(request: Request, req: LoginRequest):
    srv = get_server(request)
    try:
        acct = await srv.auth.login(req.account_id, req.api_key)
    except PermissionError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return {
        "account_id": acct["account_id"],
        "token": acct["token"],
    }


@router.get("/api/auth/me")
async def auth_me(
    request: Request,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    acct = await srv.auth.get_current_account(x_api_key, authorization)
    return {
        "account_id": acct["account_id"],
        "role": acct["role"],
    }
