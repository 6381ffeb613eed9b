"""Shared fixtures for the searchcredits unit test suite."""

import pytest
import pytest_asyncio

from searchcredits.account import AccountService
from searchcredits.executor import SearchExecutor
from searchcredits.ledger import CreditLedger
from searchcredits.orchestrator import SearchOrchestrator
from searchcredits.provider import StubPropertyProvider
from searchcredits.recorder import TransactionRecorder
from searchcredits.storage import StorageManager


# ── Constants ───────────────────────────────────────────────────────────────

# Start of a 60s hash bucket, so +59s stays inside it and +60s leaves it
T0 = 1_700_000_040.0


class FakeClock:
    """Injectable clock for the recorder's hash buckets."""

    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


# ── Fixtures ────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def storage():
    sm = StorageManager(":memory:")
    await sm.initialize()
    yield sm
    await sm.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorder(storage, clock):
    return TransactionRecorder(storage.history, storage.transactions, clock=clock)


@pytest.fixture
def ledger(storage, recorder):
    return CreditLedger(storage.balances, storage.transactions, recorder)


@pytest.fixture
def accounts(storage, ledger):
    return AccountService(storage.accounts, ledger)


@pytest.fixture
def provider():
    return StubPropertyProvider()


@pytest.fixture
def executor(provider):
    return SearchExecutor(provider, timeout=1.0)


@pytest.fixture
def orchestrator(accounts, ledger, executor, recorder):
    return SearchOrchestrator(accounts, ledger, executor, recorder)


@pytest.fixture
def make_account(storage, ledger):
    """Factory: create an account holding exactly ``credits``."""

    async def _make(account_id: str = "alice", credits: int = 5):
        await storage.accounts.create(account_id)
        await ledger.provision(account_id, credits)
        return account_id

    return _make
