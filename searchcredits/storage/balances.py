from typing import List, Optional

import aiosqlite

from searchcredits.domain import CreditBalance

from ._tx import immediate

_COLUMNS = "account_id, available_credits, total_earned, total_spent, last_updated"


def _row_to_balance(row) -> CreditBalance:
    return CreditBalance(
        account_id=row[0],
        available_credits=row[1],
        total_earned=row[2],
        total_spent=row[3],
        last_updated=row[4],
    )


class BalanceRepo:
    """Conditional writes against the credit_balances table.

    The mutating methods do not commit: callers run them inside ``unit()``
    together with the matching credit_transactions insert.
    """

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    def unit(self):
        return immediate(self._db)

    async def create(self, db: aiosqlite.Connection, account_id: str, now: float) -> bool:
        cursor = await db.execute(
            "INSERT OR IGNORE INTO credit_balances (account_id, last_updated) VALUES (?, ?)",
            (account_id, now),
        )
        return cursor.rowcount == 1

    async def get(self, account_id: str) -> Optional[CreditBalance]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM credit_balances WHERE account_id = ?",
            (account_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_balance(row) if row else None

    async def available(self, db: aiosqlite.Connection, account_id: str) -> Optional[int]:
        async with db.execute(
            "SELECT available_credits FROM credit_balances WHERE account_id = ?",
            (account_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def consume(self, db: aiosqlite.Connection, account_id: str, amount: int, now: float) -> bool:
        """Decrement iff the balance covers ``amount``. False means nothing changed."""
        cursor = await db.execute(
            "UPDATE credit_balances "
            "SET available_credits = available_credits - ?, total_spent = total_spent + ?, last_updated = ? "
            "WHERE account_id = ? AND available_credits >= ?",
            (amount, amount, now, account_id, amount),
        )
        return cursor.rowcount == 1

    async def add(self, db: aiosqlite.Connection, account_id: str, amount: int, now: float) -> bool:
        cursor = await db.execute(
            "UPDATE credit_balances "
            "SET available_credits = available_credits + ?, total_earned = total_earned + ?, last_updated = ? "
            "WHERE account_id = ?",
            (amount, amount, now, account_id),
        )
        return cursor.rowcount == 1

    async def unspend(self, db: aiosqlite.Connection, account_id: str, amount: int, now: float) -> bool:
        """Give back previously spent credits (refund)."""
        cursor = await db.execute(
            "UPDATE credit_balances "
            "SET available_credits = available_credits + ?, total_spent = total_spent - ?, last_updated = ? "
            "WHERE account_id = ? AND total_spent >= ?",
            (amount, amount, now, account_id, amount),
        )
        return cursor.rowcount == 1

    async def list_all(self) -> List[CreditBalance]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM credit_balances ORDER BY account_id"
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_balance(row))
        return results
