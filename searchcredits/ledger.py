"""
ledger.py - Credit ledger.

Sole owner of balance state. Every mutation is one write unit holding a
conditional UPDATE on credit_balances plus the matching credit_transactions
append, so the balance and the audit log commit together or not at all.

The spend guard lives in the UPDATE's WHERE clause (available_credits >= ?),
never in application code: two concurrent debits against a balance of 1
cannot both match the row.
"""

import logging
import sqlite3
import time
from typing import TYPE_CHECKING, List, Optional

from searchcredits.domain import CREDIT_ACTIONS, ActionType, CreditBalance, CreditTransaction
from searchcredits.errors import (
    AccountNotFound,
    DuplicateTransaction,
    InsufficientCredits,
    InvalidTransaction,
    LedgerWriteFailed,
)

if TYPE_CHECKING:
    from searchcredits.recorder import TransactionRecorder
    from searchcredits.storage import BalanceRepo, TransactionRepo

logger = logging.getLogger("ledger")

SMART_SEARCH_COST = 1
DEFAULT_SIGNUP_CREDITS = 5
TRANSACTIONS_TABLE = "credit_transactions"


class CreditLedger:
    """Atomic credit balance mutations with an append-only transaction log."""

    def __init__(
        self,
        balance_repo: "BalanceRepo",
        transaction_repo: "TransactionRepo",
        recorder: "TransactionRecorder",
    ):
        self._balances = balance_repo
        self._transactions = transaction_repo
        self._recorder = recorder

    async def get_balance(self, account_id: str) -> CreditBalance:
        balance = await self._balances.get(account_id)
        if balance is None:
            raise AccountNotFound(f"No credit balance for account {account_id}", account_id=account_id)
        return balance

    async def provision(self, account_id: str, initial_credits: int = DEFAULT_SIGNUP_CREDITS) -> CreditBalance:
        """Create the balance row once; the signup grant is applied only on creation."""
        if initial_credits < 0:
            raise ValueError("initial_credits must be non-negative")
        now = time.time()
        async with self._balances.unit() as db:
            created = await self._balances.create(db, account_id, now)
            if created and initial_credits > 0:
                await self._balances.add(db, account_id, initial_credits, now)
                await self._recorder.record_transaction(
                    db, account_id, ActionType.BONUS,
                    balance_after=initial_credits,
                    credits_added=initial_credits,
                    description="Signup credit grant",
                )
        if created:
            logger.info("Provisioned balance for %s with %d credits", account_id, initial_credits)
        return await self.get_balance(account_id)

    async def reserve_and_consume(
        self,
        account_id: str,
        amount: int,
        *,
        reference_id: Optional[str] = None,
        reference_table: Optional[str] = None,
        description: str = "Smart search",
        action_type: ActionType = ActionType.SMART_SEARCH,
    ) -> CreditTransaction:
        if amount < 1:
            raise ValueError("amount must be at least 1")
        now = time.time()
        try:
            async with self._balances.unit() as db:
                if not await self._balances.consume(db, account_id, amount, now):
                    available = await self._balances.available(db, account_id)
                    if available is None:
                        raise AccountNotFound(f"No credit balance for account {account_id}",
                                              account_id=account_id)
                    raise InsufficientCredits(required=amount, available=available,
                                              account_id=account_id, reference_id=reference_id)
                balance_after = await self._balances.available(db, account_id)
                tx = await self._recorder.record_transaction(
                    db, account_id, action_type,
                    balance_after=balance_after,
                    credits_consumed=amount,
                    description=description,
                    reference_id=reference_id,
                    reference_table=reference_table,
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateTransaction(
                f"Credits already consumed for reference {reference_id}",
                account_id=account_id, reference_id=reference_id,
            ) from e
        except sqlite3.Error as e:
            logger.exception("Debit failed for account %s", account_id)
            raise LedgerWriteFailed(str(e), account_id=account_id, reference_id=reference_id) from e

        logger.info("Debited %d credit(s) from %s (balance %d, ref=%s)",
                    amount, account_id, balance_after, reference_id)
        return tx

    async def credit(
        self,
        account_id: str,
        amount: int,
        action_type: ActionType,
        description: str = "",
        reference_id: Optional[str] = None,
    ) -> CreditTransaction:
        if amount < 1:
            raise ValueError("amount must be at least 1")
        if action_type not in CREDIT_ACTIONS:
            raise ValueError(f"{action_type.value} cannot be applied as a credit")
        now = time.time()
        try:
            async with self._balances.unit() as db:
                if not await self._balances.add(db, account_id, amount, now):
                    raise AccountNotFound(f"No credit balance for account {account_id}", account_id=account_id)
                balance_after = await self._balances.available(db, account_id)
                tx = await self._recorder.record_transaction(
                    db, account_id, action_type,
                    balance_after=balance_after,
                    credits_added=amount,
                    description=description or f"{action_type.value} - {amount} credits added",
                    reference_id=reference_id,
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateTransaction(
                f"Credit already applied for reference {reference_id}",
                account_id=account_id, reference_id=reference_id,
            ) from e
        except sqlite3.Error as e:
            logger.exception("Credit failed for account %s", account_id)
            raise LedgerWriteFailed(str(e), account_id=account_id) from e

        logger.info("Credited %d to %s via %s (balance %d)",
                    amount, account_id, action_type.value, balance_after)
        return tx

    async def refund(
        self, account_id: str, amount: int, reference_id: str, description: str = "",
    ) -> CreditTransaction:
        """Compensating credit against an earlier consumption; one refund per consumption."""
        if amount < 1:
            raise ValueError("amount must be at least 1")
        original = await self._transactions.get(reference_id)
        if original is None or original.account_id != account_id:
            raise InvalidTransaction(f"Transaction {reference_id} not found for account",
                                     account_id=account_id, reference_id=reference_id)
        if original.credits_consumed < amount:
            raise InvalidTransaction(
                f"Refund of {amount} exceeds {original.credits_consumed} consumed by {reference_id}",
                account_id=account_id, reference_id=reference_id,
            )
        now = time.time()
        try:
            async with self._balances.unit() as db:
                prior = await self._transactions.list_by_reference(reference_id)
                if any(tx.action_type is ActionType.REFUND for tx in prior):
                    raise DuplicateTransaction(f"Transaction {reference_id} already refunded",
                                               account_id=account_id, reference_id=reference_id)
                if not await self._balances.unspend(db, account_id, amount, now):
                    raise InvalidTransaction(f"Refund of {amount} exceeds total spent",
                                             account_id=account_id, reference_id=reference_id)
                balance_after = await self._balances.available(db, account_id)
                tx = await self._recorder.record_transaction(
                    db, account_id, ActionType.REFUND,
                    balance_after=balance_after,
                    credits_added=amount,
                    description=description or f"Refund for {original.action_type.value}",
                    reference_id=reference_id,
                    reference_table=TRANSACTIONS_TABLE,
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateTransaction(f"Transaction {reference_id} already refunded",
                                       account_id=account_id, reference_id=reference_id) from e
        except sqlite3.Error as e:
            logger.exception("Refund failed for account %s", account_id)
            raise LedgerWriteFailed(str(e), account_id=account_id, reference_id=reference_id) from e

        logger.info("Refunded %d to %s for %s (balance %d)", amount, account_id, reference_id, balance_after)
        return tx

    # -------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------

    async def history(self, account_id: str, limit: int = 50, offset: int = 0) -> List[CreditTransaction]:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if offset < 0:
            raise ValueError("offset must be non-negative")
        return await self._transactions.list_for_account(account_id, limit=limit, offset=offset)

    async def charge_for(self, reference_id: str) -> Optional[CreditTransaction]:
        """The consumption that paid for ``reference_id``, if any."""
        for tx in await self._transactions.list_by_reference(reference_id):
            if tx.credits_consumed > 0:
                return tx
        return None

    async def usage_stats(self, account_id: str) -> dict:
        balance = await self.get_balance(account_id)
        by_action = await self._transactions.consumption_by_action(account_id)
        actions = sum(a["count"] for a in by_action)
        credits = sum(a["credits"] for a in by_action)
        return {
            "total_earned": balance.total_earned,
            "total_spent": balance.total_spent,
            "current_balance": balance.available_credits,
            "most_used_action": by_action[0]["action_type"] if by_action else None,
            "average_credits_per_action": round(credits / actions, 2) if actions else 0.0,
            "by_action": by_action,
        }

    async def check_invariant(self, account_id: str) -> dict:
        """Compare the balance row with what the transaction log says it should be."""
        balance = await self.get_balance(account_id)
        totals = await self._transactions.totals(account_id)
        expected_spent = totals["consumed"] - totals["refunded"]
        expected_earned = totals["earned"]
        ok = (
            balance.available_credits == balance.total_earned - balance.total_spent
            and balance.total_spent == expected_spent
            and balance.total_earned == expected_earned
            and balance.available_credits >= 0
        )
        if not ok:
            logger.error("Ledger mismatch for %s: balance=%s log=%s", account_id, balance, totals)
        return {
            "account_id": account_id,
            "ok": ok,
            "available_credits": balance.available_credits,
            "total_earned": balance.total_earned,
            "total_spent": balance.total_spent,
            "log_earned": expected_earned,
            "log_spent": expected_spent,
            "transactions": totals["count"],
        }
