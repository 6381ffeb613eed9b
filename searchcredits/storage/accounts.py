import logging
import sqlite3
import time
from typing import Dict, Optional

import aiosqlite

from ._tx import immediate

logger = logging.getLogger("storage")

_COLUMNS = "account_id, api_key, created_at, updated_at"


def _row_to_dict(row) -> dict:
    return {
        "account_id": row[0],
        "api_key": row[1],
        "created_at": row[2],
        "updated_at": row[3],
    }


class AccountRepo:
    """CRUD operations for the accounts table."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    def unit(self):
        return immediate(self._db)

    async def create(self, account_id: str) -> Optional[dict]:
        now = time.time()
        try:
            async with self.unit() as db:
                await db.execute(
                    "INSERT OR IGNORE INTO accounts (account_id, created_at, updated_at) VALUES (?, ?, ?)",
                    (account_id, now, now),
                )
        except sqlite3.Error:
            logger.exception("Failed to create account %s", account_id)
            return None
        return await self.get(account_id)

    async def get(self, account_id: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM accounts WHERE account_id = ?",
            (account_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def get_by_api_key(self, api_key: str) -> Optional[dict]:
        if not api_key:
            return None
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM accounts WHERE api_key = ? AND api_key != ''",
            (api_key,),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def set_api_key(self, account_id: str, api_key: str):
        now = time.time()
        async with self.unit() as db:
            await db.execute(
                "UPDATE accounts SET api_key = ?, updated_at = ? WHERE account_id = ?",
                (api_key, now, account_id),
            )

    async def list_all(self) -> Dict[str, dict]:
        result = {}
        async with self._db.execute(f"SELECT {_COLUMNS} FROM accounts") as cursor:
            async for row in cursor:
                result[row[0]] = _row_to_dict(row)
        return result
