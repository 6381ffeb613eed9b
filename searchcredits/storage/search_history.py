import json
from typing import List, Optional

import aiosqlite

from searchcredits.domain import SearchHistoryRecord, SearchType

from ._tx import immediate

# A record is "charged" once any debit references it; charged records are never undone.
_UNCHARGED = (
    "NOT EXISTS (SELECT 1 FROM credit_transactions "
    "WHERE reference_id = search_history.id AND credits_consumed > 0)"
)

_COLUMNS = (
    "id, account_id, address, normalized_address, latitude, longitude, search_type, "
    "credits_used, result_json, transaction_hash, created_at, updated_at"
)


def _row_to_record(row) -> SearchHistoryRecord:
    return SearchHistoryRecord(
        id=row[0],
        account_id=row[1],
        address=row[2],
        normalized_address=row[3],
        latitude=row[4],
        longitude=row[5],
        search_type=SearchType(row[6]),
        credits_used=row[7],
        result_payload=json.loads(row[8]) if row[8] else {},
        transaction_hash=row[9],
        created_at=row[10],
        updated_at=row[11],
    )


class SearchHistoryRepo:
    """CRUD operations for the search_history table."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    def unit(self):
        return immediate(self._db)

    async def insert(self, record: SearchHistoryRecord):
        async with self.unit() as db:
            await db.execute(
                f"INSERT INTO search_history ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id, record.account_id, record.address, record.normalized_address,
                    record.latitude, record.longitude, record.search_type.value, record.credits_used,
                    json.dumps(record.result_payload, default=str), record.transaction_hash,
                    record.created_at, record.updated_at,
                ),
            )

    async def get(self, history_id: str) -> Optional[SearchHistoryRecord]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM search_history WHERE id = ?",
            (history_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_record(row) if row else None

    async def get_by_hash(self, transaction_hash: str) -> Optional[SearchHistoryRecord]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM search_history WHERE transaction_hash = ?",
            (transaction_hash,),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_record(row) if row else None

    async def update_tier(
        self,
        history_id: str,
        search_type: SearchType,
        credits_used: int,
        payload: dict,
        now: float,
        expected_type: SearchType,
        uncharged_only: bool = False,
    ) -> bool:
        """Swap tier/payload in place, guarded on the current tier."""
        query = (
            "UPDATE search_history SET search_type = ?, credits_used = ?, result_json = ?, updated_at = ? "
            "WHERE id = ? AND search_type = ?"
        )
        if uncharged_only:
            query += f" AND {_UNCHARGED}"
        async with self.unit() as db:
            cursor = await db.execute(
                query,
                (search_type.value, credits_used, json.dumps(payload, default=str), now,
                 history_id, expected_type.value),
            )
        return cursor.rowcount == 1

    async def delete_uncharged(self, history_id: str) -> bool:
        """Delete the record unless a debit already references it."""
        async with self.unit() as db:
            cursor = await db.execute(
                f"DELETE FROM search_history WHERE id = ? AND {_UNCHARGED}", (history_id,),
            )
        return cursor.rowcount == 1

    async def list_for_account(
        self, account_id: str, limit: int = 20, search_type: Optional[SearchType] = None,
    ) -> List[SearchHistoryRecord]:
        query = f"SELECT {_COLUMNS} FROM search_history WHERE account_id = ?"
        params: tuple = (account_id,)
        if search_type is not None:
            query += " AND search_type = ?"
            params += (search_type.value,)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params += (limit,)
        results = []
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                results.append(_row_to_record(row))
        return results

    async def stats(self, account_id: str) -> dict:
        async with self._db.execute(
            "SELECT COUNT(*), "
            "  COALESCE(SUM(CASE WHEN search_type = 'basic' THEN 1 ELSE 0 END), 0), "
            "  COALESCE(SUM(CASE WHEN search_type = 'smart' THEN 1 ELSE 0 END), 0), "
            "  COALESCE(SUM(credits_used), 0) "
            "FROM search_history WHERE account_id = ?",
            (account_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return {
            "total_searches": row[0],
            "basic_searches": row[1],
            "smart_searches": row[2],
            "total_credits_used": row[3],
        }
