"""
auth.py - API key + JWT authentication.

Identity is issued elsewhere; this service only maps credentials to an
account id:
  1. Authorization: Bearer <jwt> (issued by /api/auth/login)
  2. X-API-Key header

resolve_account() checks the bearer token first, then the API key. The
admin key resolves to a synthetic "_admin" account with the admin role.
"""

import logging
import secrets
import time
from typing import TYPE_CHECKING, Optional

import jwt as pyjwt
from fastapi import Header, HTTPException

if TYPE_CHECKING:
    from searchcredits.account import AccountService
    from searchcredits.storage import AccountRepo

logger = logging.getLogger("auth")

DEFAULT_ADMIN_KEY = "admin-test-key-do-not-use-in-production"
ADMIN_ACCOUNT_ID = "_admin"
JWT_TTL = 86400  # 24 hours
JWT_ALGORITHM = "HS256"


class AuthService:
    """API key + JWT authentication and admin gating."""

    def __init__(
        self,
        account_repo: "AccountRepo",
        accounts: "AccountService",
        admin_key: str = DEFAULT_ADMIN_KEY,
        jwt_secret: str = "",
    ):
        self._repo = account_repo
        self._accounts = accounts
        self._admin_key = admin_key
        self._jwt_secret = jwt_secret or secrets.token_hex(32)
        if not jwt_secret:
            logger.warning(
                "No --jwt-secret provided; generated ephemeral secret "
                "(JWTs will invalidate on restart)"
            )

    @staticmethod
    def generate_api_key() -> str:
        return secrets.token_hex(16)

    # -------------------------------------------------------------------
    # JWT
    # -------------------------------------------------------------------

    def issue_jwt(self, account_id: str) -> str:
        now = int(time.time())
        payload = {
            "sub": account_id,
            "account_id": account_id,
            "iat": now,
            "exp": now + JWT_TTL,
        }
        return pyjwt.encode(payload, self._jwt_secret, algorithm=JWT_ALGORITHM)

    def decode_jwt(self, token: str) -> Optional[dict]:
        try:
            return pyjwt.decode(token, self._jwt_secret, algorithms=[JWT_ALGORITHM])
        except pyjwt.ExpiredSignatureError:
            logger.debug("Rejected expired JWT")
            return None
        except pyjwt.InvalidTokenError:
            logger.debug("Rejected invalid JWT")
            return None

    # -------------------------------------------------------------------
    # Registration / login
    # -------------------------------------------------------------------

    async def register(self, account_id: str) -> dict:
        account_id = account_id.strip()
        if not account_id or account_id.startswith("_"):
            raise ValueError("account_id must be non-empty and may not start with '_'")
        existing = await self._repo.get(account_id)
        if existing is not None:
            raise ValueError(f"Account '{account_id}' already exists")
        acct = await self._accounts.create_account(account_id)
        if acct is None:
            raise RuntimeError("Failed to create account")
        api_key = self.generate_api_key()
        await self._repo.set_api_key(account_id, api_key)
        acct["api_key"] = api_key
        logger.info("Registered account %s", account_id)
        return acct

    async def login(self, account_id: str, api_key: str) -> dict:
        """Exchange an account's API key for a JWT."""
        acct = await self._repo.get(account_id)
        stored = (acct or {}).get("api_key") or ""
        if not stored or not secrets.compare_digest(api_key.encode(), stored.encode()):
            logger.warning("Rejected login for %s", account_id)
            raise PermissionError("Invalid account id or API key")
        acct["token"] = self.issue_jwt(account_id)
        return acct

    # -------------------------------------------------------------------
    # FastAPI dependencies
    # -------------------------------------------------------------------

    async def resolve_account(
        self,
        x_api_key: str = Header(default=""),
        authorization: str = Header(default=""),
    ) -> Optional[dict]:
        """Resolve JWT or API key to account. Returns None if no valid credentials."""
        if authorization.startswith("Bearer "):
            claims = self.decode_jwt(authorization[7:])
            if claims:
                acct = await self._repo.get(claims.get("account_id", ""))
                if acct:
                    return {**acct, "role": "user"}

        if not x_api_key:
            return None

        if secrets.compare_digest(x_api_key, self._admin_key):
            return {
                "account_id": ADMIN_ACCOUNT_ID,
                "role": "admin",
                "api_key": x_api_key,
            }

        acct = await self._repo.get_by_api_key(x_api_key)
        if acct is None:
            return None
        return {**acct, "role": "user"}

    async def get_current_account(
        self,
        x_api_key: str = Header(default=""),
        authorization: str = Header(default=""),
    ) -> dict:
        acct = await self.resolve_account(x_api_key, authorization)
        if acct is None:
            raise HTTPException(
                status_code=401,
                detail="Missing or invalid credentials. Pass Authorization: Bearer <jwt> or X-API-Key header.",
            )
        return acct

    async def require_admin(
        self,
        x_api_key: str = Header(default=""),
        authorization: str = Header(default=""),
    ) -> dict:
        acct = await self.get_current_account(x_api_key, authorization)
        if acct["role"] != "admin":
            raise HTTPException(status_code=403, detail="Admin access required")
        return acct
