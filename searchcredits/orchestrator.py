"""
orchestrator.py - Credit-metered search orchestration.

One call to perform_search() leaves the store in one of two states:
nothing happened, or the search is fully recorded and (for smart searches)
fully charged. The steps run strictly in order:

  1. resolve the account (Unauthenticated)
  2. smart only: optimistic balance pre-check (InsufficientCredits)
  3. run the executor; smart aborts on SearchFailed / ProviderUnavailable
  4. write the history record (HistoryWriteFailed, nothing charged yet)
  5. smart only: atomic debit referencing the record; on failure the record
     is compensated (deleted, or reverted for upgrades) and the ledger error
     is re-raised, or ReconciliationNeeded if compensation also fails. A
     record some other worker has already charged is never compensated;
     the search stands instead
  6. return the SearchResult

History is written before the debit so the only failure window left is
"record exists, charge failed", which compensation can undo. Steps 4-5 run
shielded from caller cancellation so a dropped connection cannot stop the
run between them.
"""

import asyncio
import logging
import sqlite3
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from searchcredits.domain import (
    ExecutorOutcome,
    ExecutorResult,
    SearchHistoryRecord,
    SearchRequest,
    SearchResult,
    SearchType,
)
from searchcredits.errors import (
    AlreadyUpgraded,
    DuplicateTransaction,
    InsufficientCredits,
    LedgerWriteFailed,
    ProviderUnavailable,
    ReconciliationNeeded,
    SearchEngineError,
    SearchFailed,
    Unauthenticated,
)
from searchcredits.ledger import SMART_SEARCH_COST
from searchcredits.recorder import HISTORY_TABLE

if TYPE_CHECKING:
    from searchcredits.account import AccountService
    from searchcredits.executor import SearchExecutor
    from searchcredits.ledger import CreditLedger
    from searchcredits.recorder import TransactionRecorder

logger = logging.getLogger("orchestrator")


def _unhandled(value) -> SearchEngineError:
    return SearchEngineError(f"Unhandled variant {value!r}")


class SearchOrchestrator:
    """Sequences executor, recorder and ledger into one consistent operation."""

    def __init__(
        self,
        accounts: "AccountService",
        ledger: "CreditLedger",
        executor: "SearchExecutor",
        recorder: "TransactionRecorder",
    ):
        self._accounts = accounts
        self._ledger = ledger
        self._executor = executor
        self._recorder = recorder

    async def perform_search(self, account_id: Optional[str], request: SearchRequest) -> SearchResult:
        account_id = await self._resolve(account_id)
        if not request.address or not request.address.strip():
            raise ValueError("address is required")

        replay = await self._recorder.find_duplicate(account_id, request)
        if replay is not None:
            return await asyncio.shield(self._replay(replay))

        if request.search_type is SearchType.BASIC:
            result = await self._executor.basic(request.address)
        elif request.search_type is SearchType.SMART:
            await self._precheck(account_id, request.address)
            result = await self._executor.smart(request.address, request.coordinates)
            self._raise_for_outcome(result, account_id, request.address)
        else:
            raise _unhandled(request.search_type)

        return await asyncio.shield(self._commit(account_id, request, result.payload))

    async def upgrade_search(self, account_id: Optional[str], history_id: str) -> SearchResult:
        """Re-run a stored basic search as smart and charge for it in place."""
        account_id = await self._resolve(account_id)
        record = await self._recorder.get_history(account_id, history_id)
        if record.search_type is SearchType.SMART:
            raise AlreadyUpgraded(f"Search {history_id} is already a smart search",
                                  account_id=account_id, history_id=history_id)

        await self._precheck(account_id, record.address)
        coords = SearchRequest(record.address, SearchType.SMART, record.latitude, record.longitude).coordinates
        result = await self._executor.smart(record.address, coords)
        self._raise_for_outcome(result, account_id, record.address)

        return await asyncio.shield(self._commit_upgrade(record, result.payload))

    # -------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------

    async def _resolve(self, account_id: Optional[str]) -> str:
        if not account_id:
            raise Unauthenticated("Authentication required")
        account = await self._accounts.get_account(account_id)
        if account is None:
            raise Unauthenticated(f"Unknown account {account_id}", account_id=account_id)
        return account["account_id"]

    async def _precheck(self, account_id: str, address: str):
        balance = await self._ledger.get_balance(account_id)
        if balance.available_credits < SMART_SEARCH_COST:
            logger.warning("Smart search refused for %s (%r): %d credits available",
                           account_id, address, balance.available_credits)
            raise InsufficientCredits(required=SMART_SEARCH_COST, available=balance.available_credits,
                                      account_id=account_id, address=address)

    def _raise_for_outcome(self, result: ExecutorResult, account_id: str, address: str):
        if result.outcome is ExecutorOutcome.SUCCESS:
            return
        if result.outcome is ExecutorOutcome.REPORTED_FAILURE:
            logger.warning("Smart search failed for %s (%r): %s", account_id, address, result.error)
            raise SearchFailed(result.error, account_id=account_id, address=address)
        if result.outcome is ExecutorOutcome.UNAVAILABLE:
            logger.warning("Provider unavailable for %s (%r): %s", account_id, address, result.error)
            raise ProviderUnavailable(result.error or "Property data provider unavailable",
                                      account_id=account_id, address=address)
        raise _unhandled(result.outcome)

    async def _commit(self, account_id: str, request: SearchRequest, payload: dict) -> SearchResult:
        record, created = await self._recorder.record_history(account_id, request, payload)
        if not created:
            return await self._replay(record)

        if record.search_type is SearchType.BASIC:
            return SearchResult.from_record(record)
        if record.search_type is SearchType.SMART:
            await self._charge(record, lambda: self._recorder.delete_history(record.id))
            return SearchResult.from_record(record)
        raise _unhandled(record.search_type)

    async def _commit_upgrade(self, record: SearchHistoryRecord, payload: dict) -> SearchResult:
        upgraded = await self._recorder.upgrade_history(record, payload)
        await self._charge(upgraded, lambda: self._recorder.revert_upgrade(record))
        return SearchResult.from_record(upgraded)

    async def _charge(self, record: SearchHistoryRecord, undo: Callable[[], Awaitable[bool]]):
        try:
            await self._debit(record)
        except DuplicateTransaction:
            # a concurrent replay of this request already carried the charge
            logger.info("Search %s was charged by a concurrent replay", record.id)
        except (InsufficientCredits, LedgerWriteFailed) as e:
            if await self._compensate(record, undo, e):
                raise

    async def _debit(self, record: SearchHistoryRecord):
        await self._ledger.reserve_and_consume(
            record.account_id, SMART_SEARCH_COST,
            reference_id=record.id,
            reference_table=HISTORY_TABLE,
            description=f"Smart search: {record.address}",
        )

    async def _compensate(self, record: SearchHistoryRecord, undo: Callable[[], Awaitable[bool]],
                          cause: SearchEngineError) -> bool:
        """Undo ``record`` after a failed debit.

        Returns True when the record was undone and ``cause`` stands, False
        when another worker charged the record first and the search stands.
        The undo itself refuses charged records, so both cannot happen.
        """
        try:
            undone = await undo()
        except Exception:
            logger.exception("Compensation raised for search %s", record.id)
            undone = False
        if undone:
            logger.warning("Compensated search %s for %s after %s", record.id, record.account_id, cause.code)
            return True

        try:
            charged = await self._ledger.charge_for(record.id) is not None
        except sqlite3.Error:
            logger.exception("Charge lookup failed for search %s", record.id)
            charged = False
        if charged:
            logger.info("Search %s was charged by a concurrent replay; keeping it", record.id)
            return False

        logger.error(
            "RECONCILIATION NEEDED: search %s for account %s is recorded but not charged (%s)",
            record.id, record.account_id, cause.code,
        )
        raise ReconciliationNeeded(
            f"Search {record.id} recorded without a matching debit",
            account_id=record.account_id, history_id=record.id,
        ) from cause

    async def _replay(self, record: SearchHistoryRecord) -> SearchResult:
        """Answer a repeated submission from the stored record without a new charge."""
        if record.search_type is SearchType.SMART:
            if await self._ledger.charge_for(record.id) is None:
                # The original attempt has not charged yet (still in flight or
                # interrupted); the debit's reference hash lets only one of us land it.
                try:
                    await self._debit(record)
                    logger.info("Replay of search %s carried its pending charge", record.id)
                except DuplicateTransaction:
                    logger.info("Search %s was charged concurrently", record.id)
                except InsufficientCredits:
                    # the original may have spent the last credit between our read and debit
                    if await self._ledger.charge_for(record.id) is None:
                        raise
                    logger.info("Search %s was charged concurrently", record.id)
        elif record.search_type is not SearchType.BASIC:
            raise _unhandled(record.search_type)
        logger.info("Replayed search %s for %s", record.id, record.account_id)
        return SearchResult.from_record(record, duplicate=True)
