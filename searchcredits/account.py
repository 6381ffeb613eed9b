"""
account.py - Account service.

Async account management backed by StorageManager's AccountRepo. Creating
an account also provisions its credit balance through the ledger, which
applies the signup grant exactly once.
"""

import logging
from typing import TYPE_CHECKING, Dict, Optional

from searchcredits.ledger import DEFAULT_SIGNUP_CREDITS

if TYPE_CHECKING:
    from searchcredits.ledger import CreditLedger
    from searchcredits.storage import AccountRepo

logger = logging.getLogger("account")


class AccountService:
    """Account service backed by SQLite via AccountRepo."""

    def __init__(self, repo: "AccountRepo", ledger: "CreditLedger",
                 signup_credits: int = DEFAULT_SIGNUP_CREDITS):
        if signup_credits < 0:
            raise ValueError("signup_credits must be non-negative")
        self._repo = repo
        self._ledger = ledger
        self.signup_credits = signup_credits

    async def create_account(self, account_id: str) -> Optional[dict]:
        acct = await self._repo.create(account_id)
        if acct is None:
            return None
        balance = await self._ledger.provision(account_id, self.signup_credits)
        logger.info("Created/found account %s (credits=%d)", account_id, balance.available_credits)
        return acct

    async def get_account(self, account_id: str) -> Optional[dict]:
        return await self._repo.get(account_id)

    async def list_accounts(self) -> Dict[str, dict]:
        return await self._repo.list_all()
