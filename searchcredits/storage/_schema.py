SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied_at REAL NOT NULL
);

-- Accounts: opaque ids linked to an external identity
CREATE TABLE IF NOT EXISTS accounts (
    account_id  TEXT PRIMARY KEY,
    api_key     TEXT NOT NULL DEFAULT '',
    created_at  REAL NOT NULL,
    updated_at  REAL NOT NULL
);

-- Credit balances: one row per account, mutated only by the ledger
CREATE TABLE IF NOT EXISTS credit_balances (
    account_id        TEXT PRIMARY KEY,
    available_credits INTEGER NOT NULL DEFAULT 0 CHECK (available_credits >= 0),
    total_earned      INTEGER NOT NULL DEFAULT 0 CHECK (total_earned >= 0),
    total_spent       INTEGER NOT NULL DEFAULT 0 CHECK (total_spent >= 0),
    last_updated      REAL NOT NULL,
    CHECK (available_credits = total_earned - total_spent),
    FOREIGN KEY (account_id) REFERENCES accounts(account_id)
);

-- Credit transactions: append-only audit trail for every balance change
CREATE TABLE IF NOT EXISTS credit_transactions (
    id               TEXT PRIMARY KEY,
    account_id       TEXT NOT NULL,
    action_type      TEXT NOT NULL CHECK (action_type IN ('smart_search', 'purchase', 'subscription_renewal', 'refund', 'bonus')),
    credits_consumed INTEGER NOT NULL DEFAULT 0,
    credits_added    INTEGER NOT NULL DEFAULT 0,
    balance_after    INTEGER NOT NULL,
    description      TEXT NOT NULL DEFAULT '',
    reference_id     TEXT,
    reference_table  TEXT,
    transaction_hash TEXT NOT NULL,
    created_at       REAL NOT NULL,
    FOREIGN KEY (account_id) REFERENCES accounts(account_id)
);

-- Search history: one row per determinate search outcome
CREATE TABLE IF NOT EXISTS search_history (
    id                 TEXT PRIMARY KEY,
    account_id         TEXT NOT NULL,
    address            TEXT NOT NULL,
    normalized_address TEXT NOT NULL,
    latitude           REAL,
    longitude          REAL,
    search_type        TEXT NOT NULL CHECK (search_type IN ('basic', 'smart')),
    credits_used       INTEGER NOT NULL DEFAULT 0,
    result_json        TEXT NOT NULL DEFAULT '{}',
    transaction_hash   TEXT NOT NULL,
    created_at         REAL NOT NULL,
    updated_at         REAL NOT NULL,
    FOREIGN KEY (account_id) REFERENCES accounts(account_id)
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_accounts_api_key ON accounts(api_key);
CREATE INDEX IF NOT EXISTS idx_credit_tx_account ON credit_transactions(account_id, created_at);
CREATE INDEX IF NOT EXISTS idx_credit_tx_reference ON credit_transactions(reference_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_credit_tx_hash ON credit_transactions(transaction_hash);
CREATE INDEX IF NOT EXISTS idx_history_account ON search_history(account_id, created_at);
CREATE UNIQUE INDEX IF NOT EXISTS idx_history_hash ON search_history(transaction_hash);
"""
