"""
recorder.py - Transaction recorder.

Writes the immutable audit rows: search history records and credit
transactions. Each search record carries a content hash over
(account, normalized address, tier, time bucket); the UNIQUE index on that
hash turns a repeated submission inside one bucket into a lookup of the
existing record instead of a second row.

Credit transaction rows are appended here but only ever from inside a
ledger write unit; the balance mutation itself belongs to the ledger.
"""

import hashlib
import logging
import re
import sqlite3
import time
import uuid
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple

import aiosqlite

from searchcredits.domain import (
    ActionType,
    CreditTransaction,
    SearchHistoryRecord,
    SearchRequest,
    SearchType,
)
from searchcredits.errors import HistoryNotFound, HistoryWriteFailed

if TYPE_CHECKING:
    from searchcredits.storage import SearchHistoryRepo, TransactionRepo

logger = logging.getLogger("recorder")

DEFAULT_HASH_BUCKET_SEC = 60
HISTORY_TABLE = "search_history"

_WS_RE = re.compile(r"\s+")
_TRAILING_RE = re.compile(r"[\s.,;]+$")


def normalize_address(address: str) -> str:
    """Canonical form used for hashing: trimmed, single-spaced, case-folded."""
    collapsed = _WS_RE.sub(" ", address.strip())
    collapsed = _TRAILING_RE.sub("", collapsed)
    return collapsed.replace(" ,", ",").casefold()


def history_hash(account_id: str, normalized_address: str, search_type: SearchType, bucket: int) -> str:
    material = f"{account_id}|{normalized_address}|{search_type.value}|{bucket}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def transaction_hash(action_type: ActionType, account_id: str, reference_id: Optional[str], nonce: str) -> str:
    # A referenced transaction is keyed by its reference alone, so it can exist once.
    key = reference_id if reference_id else f"nonce:{nonce}"
    material = f"{action_type.value}|{account_id}|{key}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class TransactionRecorder:
    """Appends search history and credit transaction rows."""

    def __init__(
        self,
        history_repo: "SearchHistoryRepo",
        transaction_repo: "TransactionRepo",
        bucket_sec: int = DEFAULT_HASH_BUCKET_SEC,
        clock: Callable[[], float] = time.time,
    ):
        if bucket_sec < 1:
            raise ValueError("bucket_sec must be at least 1")
        self._history = history_repo
        self._transactions = transaction_repo
        self._bucket_sec = bucket_sec
        self._clock = clock

    # -------------------------------------------------------------------
    # Search history
    # -------------------------------------------------------------------

    def hash_for(self, account_id: str, request: SearchRequest) -> str:
        bucket = int(self._clock() // self._bucket_sec)
        return history_hash(account_id, normalize_address(request.address), request.search_type, bucket)

    async def find_duplicate(self, account_id: str, request: SearchRequest) -> Optional[SearchHistoryRecord]:
        return await self._history.get_by_hash(self.hash_for(account_id, request))

    async def record_history(
        self, account_id: str, request: SearchRequest, result_payload: dict,
    ) -> Tuple[SearchHistoryRecord, bool]:
        """Write a history row. Returns (record, created); created is False on a replay."""
        now = self._clock()
        tx_hash = self.hash_for(account_id, request)
        credits_used = 1 if request.search_type is SearchType.SMART else 0
        record = SearchHistoryRecord(
            id=str(uuid.uuid4()),
            account_id=account_id,
            address=request.address.strip(),
            normalized_address=normalize_address(request.address),
            latitude=request.latitude,
            longitude=request.longitude,
            search_type=request.search_type,
            credits_used=credits_used,
            result_payload=result_payload,
            transaction_hash=tx_hash,
            created_at=now,
            updated_at=now,
        )
        try:
            await self._history.insert(record)
        except sqlite3.IntegrityError as e:
            existing = await self._history.get_by_hash(tx_hash)
            if existing is not None:
                logger.info("Duplicate search %s for account %s (hash %s)",
                            existing.id, account_id, tx_hash[:12])
                return existing, False
            raise HistoryWriteFailed(str(e), account_id=account_id, address=request.address) from e
        except sqlite3.Error as e:
            logger.exception("History write failed for account %s", account_id)
            raise HistoryWriteFailed(str(e), account_id=account_id, address=request.address) from e

        logger.info("Recorded %s search %s for account %s",
                    record.search_type.value, record.id, account_id)
        return record, True

    async def get_history(self, account_id: str, history_id: str) -> SearchHistoryRecord:
        record = await self._history.get(history_id)
        if record is None or record.account_id != account_id:
            raise HistoryNotFound(f"Search history {history_id} not found",
                                  account_id=account_id, history_id=history_id)
        return record

    async def list_history(
        self, account_id: str, limit: int = 20, search_type: Optional[SearchType] = None,
    ) -> List[SearchHistoryRecord]:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        return await self._history.list_for_account(account_id, limit=limit, search_type=search_type)

    async def history_stats(self, account_id: str) -> dict:
        return await self._history.stats(account_id)

    async def delete_history(self, history_id: str) -> bool:
        """Compensation primitive: remove a record no debit references.

        Returns False when the record is gone or has been charged meanwhile.
        """
        deleted = await self._history.delete_uncharged(history_id)
        if deleted:
            logger.info("Deleted search history %s", history_id)
        return deleted

    async def upgrade_history(self, record: SearchHistoryRecord, payload: dict) -> SearchHistoryRecord:
        now = self._clock()
        try:
            updated = await self._history.update_tier(
                record.id, SearchType.SMART, 1, payload, now, expected_type=SearchType.BASIC,
            )
        except sqlite3.Error as e:
            logger.exception("History upgrade failed for %s", record.id)
            raise HistoryWriteFailed(str(e), account_id=record.account_id, history_id=record.id) from e
        if not updated:
            raise HistoryWriteFailed(f"Search history {record.id} changed concurrently",
                                     account_id=record.account_id, history_id=record.id)
        logger.info("Upgraded search %s to smart", record.id)
        return await self._history.get(record.id)

    async def revert_upgrade(self, record: SearchHistoryRecord) -> bool:
        """Put a record back to the basic tier it had before ``upgrade_history``, unless charged."""
        reverted = await self._history.update_tier(
            record.id, SearchType.BASIC, 0, record.result_payload, record.updated_at,
            expected_type=SearchType.SMART, uncharged_only=True,
        )
        if reverted:
            logger.info("Reverted search %s to basic", record.id)
        return reverted

    # -------------------------------------------------------------------
    # Credit transactions
    # -------------------------------------------------------------------

    async def record_transaction(
        self,
        db: aiosqlite.Connection,
        account_id: str,
        action_type: ActionType,
        *,
        balance_after: int,
        credits_consumed: int = 0,
        credits_added: int = 0,
        description: str = "",
        reference_id: Optional[str] = None,
        reference_table: Optional[str] = None,
    ) -> CreditTransaction:
        """Append a credit transaction inside the ledger's open write unit."""
        tx_id = str(uuid.uuid4())
        tx = CreditTransaction(
            id=tx_id,
            account_id=account_id,
            action_type=action_type,
            credits_consumed=credits_consumed,
            credits_added=credits_added,
            balance_after=balance_after,
            description=description,
            reference_id=reference_id,
            reference_table=reference_table,
            transaction_hash=transaction_hash(action_type, account_id, reference_id, tx_id),
            created_at=self._clock(),
        )
        await self._transactions.insert(db, tx)
        return tx
