"""
test_ledger.py - Unit tests for the credit ledger.

Every test ends by checking that the balance row still agrees with the
transaction log, since that agreement is what the ledger exists to keep.
"""

import asyncio

import pytest

from searchcredits.domain import ActionType
from searchcredits.errors import (
    AccountNotFound,
    DuplicateTransaction,
    InsufficientCredits,
    InvalidTransaction,
)
from searchcredits.ledger import DEFAULT_SIGNUP_CREDITS

pytestmark = pytest.mark.asyncio


async def _assert_consistent(ledger, account_id):
    report = await ledger.check_invariant(account_id)
    assert report["ok"], report


# ── Provisioning ────────────────────────────────────────────────────────────

class TestProvision:

    async def test_signup_grant(self, accounts, ledger):
        await accounts.create_account("alice")
        balance = await ledger.get_balance("alice")
        assert balance.available_credits == DEFAULT_SIGNUP_CREDITS
        assert balance.total_earned == DEFAULT_SIGNUP_CREDITS
        assert balance.total_spent == 0
        txs = await ledger.history("alice")
        assert [tx.action_type for tx in txs] == [ActionType.BONUS]
        assert txs[0].balance_after == DEFAULT_SIGNUP_CREDITS
        await _assert_consistent(ledger, "alice")

    async def test_grant_applied_once(self, accounts, ledger):
        await accounts.create_account("alice")
        await accounts.create_account("alice")
        balance = await ledger.get_balance("alice")
        assert balance.available_credits == DEFAULT_SIGNUP_CREDITS
        assert len(await ledger.history("alice")) == 1

    async def test_zero_grant_writes_no_transaction(self, make_account, ledger):
        await make_account("alice", credits=0)
        assert (await ledger.get_balance("alice")).available_credits == 0
        assert await ledger.history("alice") == []

    async def test_unknown_account(self, ledger):
        with pytest.raises(AccountNotFound):
            await ledger.get_balance("ghost")


# ── Debits ──────────────────────────────────────────────────────────────────

class TestReserveAndConsume:

    async def test_debit_records_transaction(self, make_account, ledger):
        await make_account("alice", credits=3)
        tx = await ledger.reserve_and_consume("alice", 1, reference_id="h-1", reference_table="search_history")
        assert tx.action_type is ActionType.SMART_SEARCH
        assert tx.credits_consumed == 1
        assert tx.balance_after == 2
        assert tx.reference_id == "h-1"
        balance = await ledger.get_balance("alice")
        assert balance.available_credits == 2
        assert balance.total_spent == 1
        await _assert_consistent(ledger, "alice")

    async def test_insufficient_changes_nothing(self, make_account, ledger):
        await make_account("alice", credits=0)
        with pytest.raises(InsufficientCredits) as exc:
            await ledger.reserve_and_consume("alice", 1)
        assert exc.value.available == 0
        assert exc.value.required == 1
        balance = await ledger.get_balance("alice")
        assert balance.available_credits == 0
        assert balance.total_spent == 0
        assert await ledger.history("alice") == []

    async def test_same_reference_charged_once(self, make_account, ledger):
        await make_account("alice", credits=5)
        await ledger.reserve_and_consume("alice", 1, reference_id="h-1")
        with pytest.raises(DuplicateTransaction):
            await ledger.reserve_and_consume("alice", 1, reference_id="h-1")
        assert (await ledger.get_balance("alice")).available_credits == 4
        await _assert_consistent(ledger, "alice")

    async def test_unreferenced_debits_are_distinct(self, make_account, ledger):
        await make_account("alice", credits=5)
        await ledger.reserve_and_consume("alice", 1)
        await ledger.reserve_and_consume("alice", 1)
        assert (await ledger.get_balance("alice")).available_credits == 3

    async def test_unknown_account(self, ledger):
        with pytest.raises(AccountNotFound):
            await ledger.reserve_and_consume("ghost", 1)

    async def test_rejects_non_positive_amount(self, make_account, ledger):
        await make_account("alice")
        with pytest.raises(ValueError):
            await ledger.reserve_and_consume("alice", 0)

    async def test_concurrent_debits_never_overdraw(self, make_account, ledger):
        await make_account("alice", credits=1)
        results = await asyncio.gather(
            *[ledger.reserve_and_consume("alice", 1, reference_id=f"h-{i}") for i in range(5)],
            return_exceptions=True,
        )
        ok = [r for r in results if not isinstance(r, Exception)]
        refused = [r for r in results if isinstance(r, InsufficientCredits)]
        assert len(ok) == 1
        assert len(refused) == 4
        balance = await ledger.get_balance("alice")
        assert balance.available_credits == 0
        assert balance.total_spent == 1
        await _assert_consistent(ledger, "alice")


# ── Credits and refunds ─────────────────────────────────────────────────────

class TestCredit:

    async def test_purchase(self, make_account, ledger):
        await make_account("alice", credits=0)
        tx = await ledger.credit("alice", 10, ActionType.PURCHASE)
        assert tx.credits_added == 10
        assert tx.balance_after == 10
        assert "10 credits added" in tx.description
        balance = await ledger.get_balance("alice")
        assert balance.total_earned == 10
        await _assert_consistent(ledger, "alice")

    async def test_rejects_debit_action(self, make_account, ledger):
        await make_account("alice")
        with pytest.raises(ValueError):
            await ledger.credit("alice", 1, ActionType.SMART_SEARCH)
        with pytest.raises(ValueError):
            await ledger.credit("alice", 1, ActionType.REFUND)

    async def test_same_reference_applied_once(self, make_account, ledger):
        await make_account("alice", credits=0)
        await ledger.credit("alice", 5, ActionType.PURCHASE, reference_id="order-1")
        with pytest.raises(DuplicateTransaction):
            await ledger.credit("alice", 5, ActionType.PURCHASE, reference_id="order-1")
        assert (await ledger.get_balance("alice")).available_credits == 5

    async def test_unknown_account(self, ledger):
        with pytest.raises(AccountNotFound):
            await ledger.credit("ghost", 1, ActionType.PURCHASE)


class TestRefund:

    async def test_refund_restores_balance(self, make_account, ledger):
        await make_account("alice", credits=2)
        debit = await ledger.reserve_and_consume("alice", 1, reference_id="h-1")
        refund = await ledger.refund("alice", 1, debit.id)
        assert refund.action_type is ActionType.REFUND
        assert refund.reference_table == "credit_transactions"
        balance = await ledger.get_balance("alice")
        assert balance.available_credits == 2
        assert balance.total_spent == 0
        assert balance.total_earned == 2
        await _assert_consistent(ledger, "alice")

    async def test_one_refund_per_consumption(self, make_account, ledger):
        await make_account("alice", credits=2)
        debit = await ledger.reserve_and_consume("alice", 1)
        await ledger.refund("alice", 1, debit.id)
        with pytest.raises(DuplicateTransaction):
            await ledger.refund("alice", 1, debit.id)
        assert (await ledger.get_balance("alice")).available_credits == 2

    async def test_refund_validation(self, make_account, ledger):
        await make_account("alice", credits=2)
        await make_account("bob", credits=2)
        debit = await ledger.reserve_and_consume("alice", 1)
        with pytest.raises(InvalidTransaction):
            await ledger.refund("alice", 2, debit.id)
        with pytest.raises(InvalidTransaction):
            await ledger.refund("bob", 1, debit.id)
        with pytest.raises(InvalidTransaction):
            await ledger.refund("alice", 1, "missing")
        grant = (await ledger.history("alice"))[-1]
        with pytest.raises(InvalidTransaction):
            await ledger.refund("alice", 1, grant.id)


# ── Read side ───────────────────────────────────────────────────────────────

class TestReadSide:

    async def test_history_paging_newest_first(self, make_account, ledger):
        await make_account("alice", credits=5)
        for i in range(3):
            await ledger.reserve_and_consume("alice", 1, reference_id=f"h-{i}")
        page = await ledger.history("alice", limit=2)
        assert [tx.reference_id for tx in page] == ["h-2", "h-1"]
        rest = await ledger.history("alice", limit=2, offset=2)
        assert [tx.reference_id for tx in rest] == ["h-0", None]

    async def test_charge_for(self, make_account, ledger):
        await make_account("alice", credits=5)
        assert await ledger.charge_for("h-1") is None
        tx = await ledger.reserve_and_consume("alice", 1, reference_id="h-1")
        assert (await ledger.charge_for("h-1")).id == tx.id

    async def test_usage_stats(self, make_account, ledger):
        await make_account("alice", credits=5)
        await ledger.reserve_and_consume("alice", 1)
        await ledger.reserve_and_consume("alice", 1)
        stats = await ledger.usage_stats("alice")
        assert stats["total_earned"] == 5
        assert stats["total_spent"] == 2
        assert stats["current_balance"] == 3
        assert stats["most_used_action"] == "smart_search"
        assert stats["average_credits_per_action"] == 1.0

    async def test_usage_stats_without_spend(self, make_account, ledger):
        await make_account("alice", credits=5)
        stats = await ledger.usage_stats("alice")
        assert stats["most_used_action"] is None
        assert stats["average_credits_per_action"] == 0.0

    async def test_invariant_detects_tampering(self, make_account, ledger, storage):
        await make_account("alice", credits=5)
        async with storage.balances.unit() as db:
            await db.execute(
                "UPDATE credit_balances SET total_earned = 6, available_credits = 6 WHERE account_id = 'alice'"
            )
        report = await ledger.check_invariant("alice")
        assert report["ok"] is False
        assert report["log_earned"] == 5
