from typing import List, Optional

import aiosqlite

from searchcredits.domain import ActionType, CreditTransaction

_COLUMNS = (
    "id, account_id, action_type, credits_consumed, credits_added, balance_after, "
    "description, reference_id, reference_table, transaction_hash, created_at"
)


def _row_to_tx(row) -> CreditTransaction:
    return CreditTransaction(
        id=row[0],
        account_id=row[1],
        action_type=ActionType(row[2]),
        credits_consumed=row[3],
        credits_added=row[4],
        balance_after=row[5],
        description=row[6],
        reference_id=row[7],
        reference_table=row[8],
        transaction_hash=row[9],
        created_at=row[10],
    )


class TransactionRepo:
    """Append + read queries for the credit_transactions audit log."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def insert(self, db: aiosqlite.Connection, tx: CreditTransaction):
        """Append a row inside the caller's write unit (no commit here)."""
        await db.execute(
            f"INSERT INTO credit_transactions ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                tx.id, tx.account_id, tx.action_type.value, tx.credits_consumed, tx.credits_added,
                tx.balance_after, tx.description, tx.reference_id, tx.reference_table,
                tx.transaction_hash, tx.created_at,
            ),
        )

    async def get(self, tx_id: str) -> Optional[CreditTransaction]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM credit_transactions WHERE id = ?",
            (tx_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_tx(row) if row else None

    async def get_by_hash(self, transaction_hash: str) -> Optional[CreditTransaction]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM credit_transactions WHERE transaction_hash = ?",
            (transaction_hash,),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_tx(row) if row else None

    async def list_by_reference(self, reference_id: str) -> List[CreditTransaction]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM credit_transactions WHERE reference_id = ? ORDER BY created_at",
            (reference_id,),
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_tx(row))
        return results

    async def list_for_account(self, account_id: str, limit: int = 50, offset: int = 0) -> List[CreditTransaction]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM credit_transactions WHERE account_id = ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (account_id, limit, offset),
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_tx(row))
        return results

    async def totals(self, account_id: str) -> dict:
        """Sums over the log, split so refunds can be netted against spend."""
        async with self._db.execute(
            "SELECT "
            "  COALESCE(SUM(credits_consumed), 0), "
            "  COALESCE(SUM(CASE WHEN action_type != 'refund' THEN credits_added ELSE 0 END), 0), "
            "  COALESCE(SUM(CASE WHEN action_type = 'refund' THEN credits_added ELSE 0 END), 0), "
            "  COUNT(*) "
            "FROM credit_transactions WHERE account_id = ?",
            (account_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return {
            "consumed": row[0],
            "earned": row[1],
            "refunded": row[2],
            "count": row[3],
        }

    async def consumption_by_action(self, account_id: str) -> List[dict]:
        results = []
        async with self._db.execute(
            "SELECT action_type, COUNT(*), SUM(credits_consumed) FROM credit_transactions "
            "WHERE account_id = ? AND credits_consumed > 0 "
            "GROUP BY action_type ORDER BY COUNT(*) DESC, action_type",
            (account_id,),
        ) as cursor:
            async for row in cursor:
                results.append({"action_type": row[0], "count": row[1], "credits": row[2]})
        return results
