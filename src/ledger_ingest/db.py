"""Database connection helper and schema."""

from __future__ import annotations

import psycopg
from psycopg.rows import dict_row

from ledger_ingest.config import get_database_url

SCHEMA = """\
CREATE TABLE IF NOT EXISTS raw_message (
    id BIGSERIAL PRIMARY KEY,
    source VARCHAR(20) NOT NULL,
    external_id TEXT UNIQUE,
    sender TEXT NOT NULL,
    body TEXT NOT NULL,
    received_at TIMESTAMPTZ NOT NULL,
    processed BOOLEAN NOT NULL DEFAULT FALSE,
    processed_at TIMESTAMPTZ,
    admitted BOOLEAN NOT NULL DEFAULT FALSE
);

CREATE INDEX IF NOT EXISTS raw_message_unprocessed_idx
    ON raw_message (id) WHERE NOT processed;

CREATE TABLE IF NOT EXISTS transaction (
    id BIGSERIAL PRIMARY KEY,
    raw_message_id BIGINT REFERENCES raw_message (id),
    amount NUMERIC(15, 2) NOT NULL,
    currency VARCHAR(10) NOT NULL,
    merchant_name TEXT,
    category VARCHAR(100),
    transaction_type VARCHAR(10) NOT NULL,
    transaction_date TIMESTAMPTZ NOT NULL,
    description TEXT,
    dedupe_key CHAR(64) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS transaction_dedupe_idx
    ON transaction (dedupe_key, transaction_date);

CREATE TABLE IF NOT EXISTS ledger_entry (
    id BIGSERIAL PRIMARY KEY,
    raw_message_id BIGINT REFERENCES raw_message (id),
    entry_type VARCHAR(20) NOT NULL,
    instrument_type VARCHAR(20) NOT NULL,
    symbol VARCHAR(50),
    name VARCHAR(255) NOT NULL,
    quantity NUMERIC(20, 6) NOT NULL,
    price NUMERIC(18, 4),
    amount NUMERIC(18, 2) NOT NULL,
    currency VARCHAR(10) NOT NULL,
    ledger_date TIMESTAMPTZ NOT NULL,
    description TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS holding_aggregate (
    id BIGSERIAL PRIMARY KEY,
    raw_message_id BIGINT REFERENCES raw_message (id),
    instrument_type VARCHAR(20) NOT NULL,
    symbol VARCHAR(50) NOT NULL DEFAULT '',
    name VARCHAR(255),
    quantity NUMERIC(20, 6) NOT NULL,
    average_price NUMERIC(18, 4),
    current_value NUMERIC(18, 2),
    currency VARCHAR(10) NOT NULL,
    last_updated TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    UNIQUE (instrument_type, symbol)
);
"""


def get_connection() -> psycopg.Connection[dict[str, object]]:
    """Create and return a new database connection."""
    return psycopg.connect(get_database_url(), row_factory=dict_row)


def init_schema(conn: psycopg.Connection[dict[str, object]]) -> None:
    """Create tables and indexes if they do not exist."""
    conn.execute(SCHEMA)
    conn.commit()
