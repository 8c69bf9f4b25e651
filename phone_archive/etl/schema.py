"""
Schema definitions for archive.db.

This module defines the DDL for the relational store that holds ingested
messages and calls, the per-phone aggregate cache, and device subscriptions.

Design Decisions:
    1. Record ids are content fingerprints (TEXT), so re-ingestion dedups on
       the primary key
    2. Store both raw and normalized phone values for debugging and audit
    3. Timestamps are INTEGER epoch milliseconds, as written by the device
    4. phones is a derived cache - every column is recomputable from
       messages and calls
    5. subscriptions are never hard-deleted (is_active is the soft delete)
    6. etl_state tracks ingestion progress as key/value pairs
"""

import sqlite3
from pathlib import Path
from typing import List
import logging

logger = logging.getLogger(__name__)

# Schema version for migration tracking
SCHEMA_VERSION = "1.0.0"

SCHEMA_DDL = """
-- =============================================================================
-- messages: SMS and MMS records
-- =============================================================================
-- id is the content fingerprint of (phone, timestamp, type, direction,
-- first 100 chars of body). direction keeps the device's numeric code.
--
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    phone TEXT NOT NULL,
    phone_raw TEXT,
    type TEXT NOT NULL CHECK (type IN ('sms', 'mms')),
    direction INTEGER NOT NULL,
    body TEXT,
    timestamp INTEGER NOT NULL,
    readable_date TEXT,
    contact_name TEXT,
    subscription_id TEXT,
    sim_slot INTEGER,
    created_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_phone_timestamp
    ON messages(phone, timestamp);

CREATE INDEX IF NOT EXISTS idx_messages_subscription
    ON messages(subscription_id);

-- =============================================================================
-- calls: Call log records
-- =============================================================================
-- id is the content fingerprint of (phone, timestamp, type code, duration).
--
CREATE TABLE IF NOT EXISTS calls (
    id TEXT PRIMARY KEY,
    phone TEXT NOT NULL,
    phone_raw TEXT,
    call_type TEXT NOT NULL CHECK (call_type IN (
        'incoming', 'outgoing', 'missed', 'voicemail', 'rejected', 'blocked', 'unknown'
    )),
    duration INTEGER NOT NULL DEFAULT 0 CHECK (duration >= 0),
    timestamp INTEGER NOT NULL,
    readable_date TEXT,
    contact_name TEXT,
    subscription_id TEXT,
    created_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_calls_phone_timestamp
    ON calls(phone, timestamp);

CREATE INDEX IF NOT EXISTS idx_calls_subscription
    ON calls(subscription_id);

-- =============================================================================
-- phones: Per-phone aggregate (cache, rebuilt from messages and calls)
-- =============================================================================
CREATE TABLE IF NOT EXISTS phones (
    phone TEXT PRIMARY KEY,
    display_name TEXT,
    message_count INTEGER NOT NULL DEFAULT 0,
    last_message_at INTEGER,
    call_count INTEGER NOT NULL DEFAULT 0,
    last_call_at INTEGER,
    updated_at INTEGER NOT NULL
);

-- =============================================================================
-- subscriptions: Device lines / SIMs
-- =============================================================================
CREATE TABLE IF NOT EXISTS subscriptions (
    subscription_id TEXT PRIMARY KEY,
    phone_number TEXT,
    label TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0, 1)),
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

-- =============================================================================
-- etl_state: Ingestion bookkeeping
-- =============================================================================
-- Common keys:
--   - 'schema_version': Current schema version
--   - 'last_sync': Timestamp of the last successful ingestion
--   - 'last_messages_ingest' / 'last_calls_ingest': Source of the last archive
--
CREATE TABLE IF NOT EXISTS etl_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

INSERT OR REPLACE INTO etl_state (key, value, updated_at)
VALUES ('schema_version', '{schema_version}', datetime('now'));
""".format(
    schema_version=SCHEMA_VERSION
)

REQUIRED_TABLES = {
    "messages",
    "calls",
    "phones",
    "subscriptions",
    "etl_state",
}


def create_schema(db_path: Path) -> None:
    """
    Create the archive.db schema if it doesn't exist.

    Idempotent - every table and index uses IF NOT EXISTS.

    Args:
        db_path: Path to the archive.db file. Parent directory will be created
                 if it doesn't exist.

    Raises:
        sqlite3.Error: If schema creation fails.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    logger.info(f"Creating/verifying schema at: {db_path}")

    conn = sqlite3.connect(str(db_path))
    try:
        conn.executescript(SCHEMA_DDL)
        conn.commit()

        logger.info(f"Schema created/verified successfully (version {SCHEMA_VERSION})")
    except sqlite3.Error as e:
        logger.error(f"Schema creation failed: {e}")
        raise
    finally:
        conn.close()


def get_table_names(db_path: Path) -> List[str]:
    """
    Get all table names in the archive database.

    Args:
        db_path: Path to the archive.db file.

    Returns:
        List of table names.
    """
    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;")
        return [row[0] for row in cursor.fetchall()]
    finally:
        conn.close()


def verify_schema(db_path: Path) -> bool:
    """
    Verify that the schema exists and has all required tables.

    Args:
        db_path: Path to the archive.db file.

    Returns:
        True if schema is valid, False otherwise.
    """
    if not db_path.exists():
        return False

    existing_tables = set(get_table_names(db_path))
    return REQUIRED_TABLES.issubset(existing_tables)
