import logging
from typing import Optional

import aiosqlite

from ._migrate import run_migrations
from .accounts import AccountRepo
from .balances import BalanceRepo
from .search_history import SearchHistoryRepo
from .transactions import TransactionRepo

logger = logging.getLogger("storage")

# Seconds another process's writer may hold the lock before we give up
BUSY_TIMEOUT = 5.0


class StorageManager:
    """Top-level manager: opens the database, runs migrations, exposes repos."""

    def __init__(self, db_path: str = "searchcredits.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self.accounts: Optional[AccountRepo] = None
        self.balances: Optional[BalanceRepo] = None
        self.transactions: Optional[TransactionRepo] = None
        self.history: Optional[SearchHistoryRepo] = None

    async def initialize(self):
        # Autocommit mode: write units open their own BEGIN IMMEDIATE
        self._db = await aiosqlite.connect(self.db_path, timeout=BUSY_TIMEOUT, isolation_level=None)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await run_migrations(self._db, logger)

        self.accounts = AccountRepo(self._db)
        self.balances = BalanceRepo(self._db)
        self.transactions = TransactionRepo(self._db)
        self.history = SearchHistoryRepo(self._db)

        logger.info("Storage initialized: %s", self.db_path)

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Storage closed")
