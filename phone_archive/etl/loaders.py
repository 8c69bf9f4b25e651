"""
ETL Loaders for archive.db.

This module persists parsed records and maintains the derived per-phone
aggregates. All operations are idempotent (safe to run multiple times).

Design Decisions:
    1. INSERT OR IGNORE for records - ids are content fingerprints, so the
       first write of a logical event wins and re-ingestion never overwrites
    2. Writes are chunked; each chunk is one store transaction
    3. Aggregates are recomputed from live COUNT/MAX scans, never
       incremented, so they converge under concurrent or repeated ingestion
    4. display_name merges as "last non-null wins"
    5. Subscriptions are discovered from the data and only ever soft-deleted

Partial commits:
    A chunk that fails is rolled back and the error propagates, but chunks
    committed before it stay in the store. Re-running the same ingestion is
    safe (ignored duplicates) and completes the remainder.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar, Union

from phone_archive.database import ArchiveStore, Statement
from phone_archive.etl.extractors import Call, Message

logger = logging.getLogger(__name__)

DEFAULT_INSERT_BATCH_SIZE = 100
DEFAULT_STATS_BATCH_SIZE = 50

# (phone, display_name) pair driving an aggregate recompute
PhoneEntry = Tuple[str, Optional[str]]

T = TypeVar("T")


@dataclass
class InsertCounts:
    """Outcome of a bulk insert."""

    inserted: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.skipped


def _now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def _now_iso() -> str:
    """Get current UTC timestamp in ISO-8601 format."""
    return datetime.now(tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _chunks(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most size items."""
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start : start + size]


# =============================================================================
# Record inserts
# =============================================================================

INSERT_MESSAGE_SQL = """
    INSERT OR IGNORE INTO messages
        (id, phone, phone_raw, type, direction, body, timestamp,
         readable_date, contact_name, subscription_id, sim_slot, created_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

INSERT_CALL_SQL = """
    INSERT OR IGNORE INTO calls
        (id, phone, phone_raw, call_type, duration, timestamp,
         readable_date, contact_name, subscription_id, created_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""


def _message_statement(message: Message, now: int) -> Statement:
    return (
        INSERT_MESSAGE_SQL,
        (
            message.id,
            message.phone,
            message.phone_raw,
            str(message.kind),
            message.direction,
            message.body,
            message.timestamp,
            message.readable_date,
            message.contact_name,
            message.subscription_id,
            message.sim_slot,
            now,
        ),
    )


def _call_statement(call: Call, now: int) -> Statement:
    return (
        INSERT_CALL_SQL,
        (
            call.id,
            call.phone,
            call.phone_raw,
            str(call.call_type),
            call.duration,
            call.timestamp,
            call.readable_date,
            call.contact_name,
            call.subscription_id,
            now,
        ),
    )


def _batch_insert(
    store: ArchiveStore,
    statements: Sequence[Statement],
    batch_size: int,
    table: str,
) -> InsertCounts:
    """Run insert statements chunk by chunk and tally affected rows."""
    counts = InsertCounts()

    for chunk_number, chunk in enumerate(_chunks(statements, batch_size), start=1):
        try:
            results = store.batch(chunk)
        except Exception as e:
            logger.error(
                f"Insert into {table} failed at chunk {chunk_number} "
                f"({counts.total} rows already committed): {e}"
            )
            raise

        for changes in results:
            if changes > 0:
                counts.inserted += 1
            else:
                counts.skipped += 1

    logger.info(
        f"Loaded {counts.inserted} new rows into {table} (skipped {counts.skipped} duplicates)"
    )
    return counts


def batch_insert_messages(
    store: ArchiveStore,
    messages: Sequence[Message],
    batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
) -> InsertCounts:
    """
    Insert messages, ignoring ids that already exist.

    Args:
        store: Connected archive store.
        messages: Parsed Message records.
        batch_size: Records per store transaction.

    Returns:
        InsertCounts; duplicates (in the store or earlier in the same list)
        are counted as skipped.

    Raises:
        sqlite3.Error: If a chunk fails. Earlier chunks remain committed.
    """
    if not messages:
        return InsertCounts()

    now = _now_ms()
    statements = [_message_statement(message, now) for message in messages]
    return _batch_insert(store, statements, batch_size, "messages")


def batch_insert_calls(
    store: ArchiveStore,
    calls: Sequence[Call],
    batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
) -> InsertCounts:
    """
    Insert calls, ignoring ids that already exist.

    Args:
        store: Connected archive store.
        calls: Parsed Call records.
        batch_size: Records per store transaction.

    Returns:
        InsertCounts.

    Raises:
        sqlite3.Error: If a chunk fails. Earlier chunks remain committed.
    """
    if not calls:
        return InsertCounts()

    now = _now_ms()
    statements = [_call_statement(call, now) for call in calls]
    return _batch_insert(store, statements, batch_size, "calls")


def insert_message(store: ArchiveStore, message: Message) -> bool:
    """
    Insert a single message.

    Returns:
        True if a new row was written, False if the id already existed.
    """
    query, parameters = _message_statement(message, _now_ms())
    return store.execute(query, parameters) > 0


# =============================================================================
# Phone aggregates
# =============================================================================

RECOMPUTE_PHONE_SQL = """
    INSERT INTO phones
        (phone, display_name, message_count, last_message_at,
         call_count, last_call_at, updated_at)
    VALUES (
        :phone,
        :display_name,
        (SELECT COUNT(*) FROM messages WHERE phone = :phone),
        (SELECT MAX(timestamp) FROM messages WHERE phone = :phone),
        (SELECT COUNT(*) FROM calls WHERE phone = :phone),
        (SELECT MAX(timestamp) FROM calls WHERE phone = :phone),
        :updated_at
    )
    ON CONFLICT(phone) DO UPDATE SET
        display_name = COALESCE(excluded.display_name, phones.display_name),
        message_count = excluded.message_count,
        last_message_at = excluded.last_message_at,
        call_count = excluded.call_count,
        last_call_at = excluded.last_call_at,
        updated_at = excluded.updated_at;
"""


def _recompute_statement(phone: str, display_name: Optional[str], now: int) -> Statement:
    return (
        RECOMPUTE_PHONE_SQL,
        {"phone": phone, "display_name": display_name, "updated_at": now},
    )


def recompute_phone_stats(
    store: ArchiveStore,
    phone: str,
    display_name: Optional[str] = None,
) -> None:
    """
    Recompute the aggregate row of one phone from a live scan.

    Creates the row if missing. An existing display_name is kept unless a
    non-null one is supplied.

    Args:
        store: Connected archive store.
        phone: Normalized phone key.
        display_name: Newest known contact name, if any.
    """
    query, parameters = _recompute_statement(phone, display_name, _now_ms())
    store.execute(query, parameters)
    logger.debug(f"Recomputed phone stats for {phone}")


def recompute_phone_stats_batch(
    store: ArchiveStore,
    entries: Sequence[PhoneEntry],
    batch_size: int = DEFAULT_STATS_BATCH_SIZE,
) -> int:
    """
    Recompute aggregates for many phones.

    Args:
        store: Connected archive store.
        entries: (phone, display_name) pairs.
        batch_size: Phones per store transaction, independent of the record
            insert batch size.

    Returns:
        Number of phones recomputed.
    """
    if not entries:
        return 0

    now = _now_ms()
    recomputed = 0
    for chunk in _chunks(entries, batch_size):
        store.batch([_recompute_statement(phone, name, now) for phone, name in chunk])
        recomputed += len(chunk)

    logger.info(f"Recomputed phone stats for {recomputed} phones")
    return recomputed


def collect_phone_entries(records: Iterable[Union[Message, Call]]) -> List[PhoneEntry]:
    """
    Unique phones touched by a batch, in first-seen order.

    Each phone is paired with the first non-null contact name among its
    records.

    Args:
        records: Parsed messages and/or calls.

    Returns:
        List of (phone, display_name) pairs.
    """
    names: Dict[str, Optional[str]] = {}
    for record in records:
        if record.phone not in names:
            names[record.phone] = record.contact_name
        elif names[record.phone] is None and record.contact_name:
            names[record.phone] = record.contact_name
    return list(names.items())


def rebuild_phone_stats(
    store: ArchiveStore,
    batch_size: int = DEFAULT_STATS_BATCH_SIZE,
) -> int:
    """
    Rebuild the whole phones table from messages and calls.

    Rows for phones without any remaining activity are removed. Every other
    phone is recomputed, with its display_name taken from its most recent
    named record when one exists.

    Args:
        store: Connected archive store.
        batch_size: Phones per store transaction.

    Returns:
        Number of phones recomputed.
    """
    removed = store.execute(
        """
        DELETE FROM phones
        WHERE phone NOT IN (SELECT phone FROM messages)
        AND phone NOT IN (SELECT phone FROM calls);
        """
    )
    if removed:
        logger.info(f"Removed {removed} phone aggregates with no activity")

    phones = [
        row["phone"]
        for row in store.fetch_all(
            "SELECT phone FROM messages UNION SELECT phone FROM calls ORDER BY phone;"
        )
    ]

    latest_names: Dict[str, str] = {}
    named_rows = store.fetch_all(
        """
        SELECT phone, contact_name FROM (
            SELECT phone, contact_name, timestamp FROM messages WHERE contact_name IS NOT NULL
            UNION ALL
            SELECT phone, contact_name, timestamp FROM calls WHERE contact_name IS NOT NULL
        )
        ORDER BY timestamp DESC;
        """
    )
    for row in named_rows:
        latest_names.setdefault(row["phone"], row["contact_name"])

    return recompute_phone_stats_batch(
        store,
        [(phone, latest_names.get(phone)) for phone in phones],
        batch_size=batch_size,
    )


# =============================================================================
# Subscriptions
# =============================================================================


def default_subscription_label(subscription_id: str) -> str:
    """Label given to subscriptions registered by discovery."""
    return f"SIM {subscription_id}"


def discover_subscriptions(store: ArchiveStore) -> List[str]:
    """
    Register every subscription id present in messages or calls.

    Ids already in the subscriptions table are left untouched, so running
    discovery repeatedly changes nothing after the first run.

    Args:
        store: Connected archive store.

    Returns:
        Sorted list of all subscription ids found in the data.
    """
    rows = store.fetch_all(
        """
        SELECT subscription_id FROM messages WHERE subscription_id IS NOT NULL
        UNION
        SELECT subscription_id FROM calls WHERE subscription_id IS NOT NULL
        ORDER BY subscription_id;
        """
    )
    discovered = [row["subscription_id"] for row in rows]

    now = _now_ms()
    results = store.batch(
        [
            (
                """
                INSERT OR IGNORE INTO subscriptions
                    (subscription_id, phone_number, label, is_active, created_at, updated_at)
                VALUES (?, NULL, ?, 1, ?, ?);
                """,
                (subscription_id, default_subscription_label(subscription_id), now, now),
            )
            for subscription_id in discovered
        ]
    )

    registered = sum(1 for changes in results if changes > 0)
    logger.info(
        f"Discovered {len(discovered)} subscriptions ({registered} newly registered)"
    )
    return discovered


def upsert_subscription(
    store: ArchiveStore,
    subscription_id: str,
    label: str,
    phone_number: Optional[str] = None,
    is_active: bool = True,
) -> bool:
    """
    Create or update a subscription.

    A missing phone_number keeps the stored one.

    Returns:
        True if a row was written.
    """
    now = _now_ms()
    changes = store.execute(
        """
        INSERT INTO subscriptions
            (subscription_id, phone_number, label, is_active, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(subscription_id) DO UPDATE SET
            phone_number = COALESCE(excluded.phone_number, subscriptions.phone_number),
            label = excluded.label,
            is_active = excluded.is_active,
            updated_at = excluded.updated_at;
        """,
        (subscription_id, phone_number, label, 1 if is_active else 0, now, now),
    )
    logger.info(f"Upserted subscription {subscription_id} ({label})")
    return changes > 0


def deactivate_subscription(store: ArchiveStore, subscription_id: str) -> bool:
    """
    Soft-delete a subscription.

    Returns:
        True if the subscription existed.
    """
    changes = store.execute(
        "UPDATE subscriptions SET is_active = 0, updated_at = ? WHERE subscription_id = ?;",
        (_now_ms(), subscription_id),
    )
    if changes:
        logger.info(f"Deactivated subscription {subscription_id}")
    return changes > 0


# =============================================================================
# ETL state
# =============================================================================


def update_etl_state(store: ArchiveStore, key: str, value: str) -> None:
    """
    Update or insert an ETL state value.

    Args:
        store: Connected archive store.
        key: State key (e.g., 'last_sync').
        value: State value.
    """
    store.execute(
        "INSERT OR REPLACE INTO etl_state (key, value, updated_at) VALUES (?, ?, ?);",
        (key, value, _now_iso()),
    )
    logger.debug(f"Updated ETL state: {key} = {value}")


def get_etl_state(store: ArchiveStore, key: str) -> Optional[str]:
    """
    Get an ETL state value.

    Returns:
        State value, or None if not found.
    """
    return store.fetch_scalar("SELECT value FROM etl_state WHERE key = ?;", (key,))


def get_loaded_message_count(store: ArchiveStore) -> int:
    """Number of rows in messages."""
    return store.get_row_count("messages")


def get_loaded_call_count(store: ArchiveStore) -> int:
    """Number of rows in calls."""
    return store.get_row_count("calls")


def get_loaded_phone_count(store: ArchiveStore) -> int:
    """Number of rows in phones."""
    return store.get_row_count("phones")
