SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied_at REAL NOT NULL
);

-- Accounts: users, admins and the platform treasury
CREATE TABLE IF NOT EXISTS accounts (
    account_id          TEXT PRIMARY KEY,
    username            TEXT NOT NULL UNIQUE COLLATE NOCASE,
    password_hash       TEXT NOT NULL DEFAULT '',
    api_key             TEXT NOT NULL DEFAULT '',
    role                TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin', 'system')),
    referral_code       TEXT NOT NULL UNIQUE,
    referred_by         TEXT,
    mining_power        REAL NOT NULL DEFAULT 1.0 CHECK (mining_power >= 1.0),
    lifetime_purchases  REAL NOT NULL DEFAULT 0.0,
    has_first_purchase  INTEGER NOT NULL DEFAULT 0,
    unlock_paid         INTEGER NOT NULL DEFAULT 0,
    unlock_paid_at      REAL,
    mining_access_expires_at REAL,
    mining_access_renewals   INTEGER NOT NULL DEFAULT 0,
    last_mined_at       REAL,
    is_blocked          INTEGER NOT NULL DEFAULT 0,
    created_at          REAL NOT NULL,
    updated_at          REAL NOT NULL,
    FOREIGN KEY (referred_by) REFERENCES accounts(account_id)
);

-- Segmented balances: one row per account
CREATE TABLE IF NOT EXISTS balances (
    account_id        TEXT PRIMARY KEY,
    purchased         REAL NOT NULL DEFAULT 0.0 CHECK (purchased >= 0),
    mining            REAL NOT NULL DEFAULT 0.0 CHECK (mining >= 0),
    commission        REAL NOT NULL DEFAULT 0.0 CHECK (commission >= 0),
    withdrawal_count  INTEGER NOT NULL DEFAULT 0,
    gate_open         INTEGER NOT NULL DEFAULT 0,
    updated_at        REAL NOT NULL,
    FOREIGN KEY (account_id) REFERENCES accounts(account_id)
);

-- Transactions: append-only log of every balance change
CREATE TABLE IF NOT EXISTS transactions (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    tx_id             TEXT NOT NULL UNIQUE,
    account_id        TEXT NOT NULL,
    type              TEXT NOT NULL CHECK (type IN ('purchase', 'transfer', 'mining', 'commission', 'withdrawal', 'lottery', 'reversal')),
    amount            REAL NOT NULL,
    purchased_delta   REAL NOT NULL DEFAULT 0.0,
    mining_delta      REAL NOT NULL DEFAULT 0.0,
    commission_delta  REAL NOT NULL DEFAULT 0.0,
    usd_value         REAL,
    from_account      TEXT,
    to_account        TEXT,
    commission_amount REAL,
    commission_rate   REAL,
    correlation_id    TEXT NOT NULL DEFAULT '',
    idempotency_key   TEXT,
    description       TEXT NOT NULL DEFAULT '',
    status            TEXT NOT NULL DEFAULT 'completed' CHECK (status IN ('pending', 'completed', 'failed')),
    created_at        REAL NOT NULL,
    FOREIGN KEY (account_id) REFERENCES accounts(account_id)
);

-- Commission events: one row per distributed source transaction (dedupe key)
CREATE TABLE IF NOT EXISTS commission_events (
    source_tx_id    TEXT PRIMARY KEY,
    source_account  TEXT NOT NULL,
    base_amount     REAL NOT NULL,
    total_credited  REAL NOT NULL DEFAULT 0.0,
    created_at      REAL NOT NULL
);

-- Lottery draws: one row per weekly draw window
CREATE TABLE IF NOT EXISTS lottery_draws (
    draw_id        TEXT PRIMARY KEY,
    scheduled_at   REAL NOT NULL,
    total_tickets  INTEGER NOT NULL DEFAULT 0,
    prize_pool     REAL NOT NULL DEFAULT 0.0,
    carried_over   REAL NOT NULL DEFAULT 0.0,
    status         TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'completed', 'cancelled')),
    resolved_at    REAL,
    created_at     REAL NOT NULL
);

-- Lottery tickets
CREATE TABLE IF NOT EXISTS lottery_tickets (
    ticket_id      TEXT PRIMARY KEY,
    account_id     TEXT NOT NULL,
    draw_id        TEXT NOT NULL,
    ticket_number  INTEGER NOT NULL,
    purchased_at   REAL NOT NULL,
    FOREIGN KEY (account_id) REFERENCES accounts(account_id),
    FOREIGN KEY (draw_id) REFERENCES lottery_draws(draw_id)
);

-- Lottery winners, ordered by rank within a draw
CREATE TABLE IF NOT EXISTS lottery_winners (
    draw_id        TEXT NOT NULL,
    rank           INTEGER NOT NULL,
    account_id     TEXT NOT NULL,
    ticket_id      TEXT NOT NULL,
    prize_amount   REAL NOT NULL,
    PRIMARY KEY (draw_id, rank),
    FOREIGN KEY (draw_id) REFERENCES lottery_draws(draw_id)
);

-- Administrator-tunable configuration overrides (JSON values)
CREATE TABLE IF NOT EXISTS config (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  REAL NOT NULL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_accounts_referred_by ON accounts(referred_by);
CREATE INDEX IF NOT EXISTS idx_accounts_api_key ON accounts(api_key);
CREATE INDEX IF NOT EXISTS idx_transactions_account ON transactions(account_id, created_at);
CREATE INDEX IF NOT EXISTS idx_transactions_correlation ON transactions(correlation_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_transactions_idempotency
    ON transactions(account_id, idempotency_key) WHERE idempotency_key IS NOT NULL;
CREATE UNIQUE INDEX IF NOT EXISTS idx_tickets_draw_number ON lottery_tickets(draw_id, ticket_number);
CREATE INDEX IF NOT EXISTS idx_tickets_account ON lottery_tickets(account_id, draw_id);
CREATE INDEX IF NOT EXISTS idx_draws_status ON lottery_draws(status, scheduled_at);
"""
