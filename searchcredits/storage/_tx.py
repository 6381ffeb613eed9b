"""
Write units over a shared aiosqlite connection.

A single connection is a single SQLite transaction scope, so every
multi-statement write runs inside ``immediate(db)``: the per-connection
lock keeps other coroutines' statements out of the open transaction, and
BEGIN IMMEDIATE takes the database write lock up front so writers in other
processes queue on the busy timeout instead of interleaving.
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiosqlite

_locks: "weakref.WeakKeyDictionary[aiosqlite.Connection, asyncio.Lock]" = weakref.WeakKeyDictionary()


def _lock_for(db: aiosqlite.Connection) -> asyncio.Lock:
    lock = _locks.get(db)
    if lock is None:
        lock = asyncio.Lock()
        _locks[db] = lock
    return lock


@asynccontextmanager
async def immediate(db: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    async with _lock_for(db):
        await db.execute("BEGIN IMMEDIATE")
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        await db.commit()
