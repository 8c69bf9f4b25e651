"""
Ingestion pipeline orchestration.

This module turns a raw archive into persisted records: it sniffs the
archive type, parses it, inserts the records and recomputes the aggregates
of every phone the archive touched.

Pipeline Steps:
    1. Sniff the archive type (<smses> or <calls>)
    2. Parse records (phone normalization + content ids per record)
    3. Insert records in chunks (INSERT OR IGNORE)
    4. Recompute phone aggregates for touched phones, in chunks
    5. Record ingestion state

Failure Semantics:
    - A malformed archive raises ArchiveFormatError before anything is written
    - A store failure during step 3 or 4 propagates; chunks committed before
      the failure stay committed (at-least-once, not atomic). Re-running the
      same archive is safe and completes the remainder.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from phone_archive.database import ArchiveStore
from phone_archive.etl.extractors import (
    ArchiveKind,
    ArchiveText,
    Call,
    Direction,
    Message,
    MessageKind,
    parse_archive,
)
from phone_archive.etl.identity import generate_message_id
from phone_archive.etl.loaders import (
    DEFAULT_INSERT_BATCH_SIZE,
    DEFAULT_STATS_BATCH_SIZE,
    InsertCounts,
    batch_insert_calls,
    batch_insert_messages,
    collect_phone_entries,
    get_etl_state,
    get_loaded_call_count,
    get_loaded_message_count,
    get_loaded_phone_count,
    insert_message,
    recompute_phone_stats,
    recompute_phone_stats_batch,
    update_etl_state,
)
from phone_archive.etl.normalizers import normalize_phone
from phone_archive.etl.schema import verify_schema

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    """Result of ingesting one archive."""

    success: bool
    archive_kind: Optional[ArchiveKind] = None
    total: int = 0
    inserted: int = 0
    skipped: int = 0
    unique_phones: int = 0
    source: Optional[str] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """User-visible counts."""
        return {
            "success": self.success,
            "type": str(self.archive_kind) if self.archive_kind else None,
            "total": self.total,
            "inserted": self.inserted,
            "skipped": self.skipped,
            "uniquePhones": self.unique_phones,
        }

    def __str__(self) -> str:
        status = "SUCCESS" if self.success else f"FAILED: {self.error}"
        kind = str(self.archive_kind) if self.archive_kind else "unknown"
        source = f" from {self.source}" if self.source else ""
        return (
            f"Ingest {status} ({kind}{source})\n"
            f"  Records: {self.total} parsed, {self.inserted} inserted, {self.skipped} skipped\n"
            f"  Phones: {self.unique_phones} updated\n"
            f"  Duration: {self.duration_seconds:.2f}s"
        )


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def ingest_messages(
    store: ArchiveStore,
    records: Sequence[Message],
    insert_batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
    stats_batch_size: int = DEFAULT_STATS_BATCH_SIZE,
) -> InsertCounts:
    """
    Insert parsed messages and refresh the aggregates of their phones.

    Args:
        store: Connected archive store.
        records: Parsed messages.
        insert_batch_size: Records per insert transaction.
        stats_batch_size: Phones per aggregate transaction.

    Returns:
        InsertCounts (inserted, skipped).
    """
    counts = batch_insert_messages(store, records, batch_size=insert_batch_size)
    recompute_phone_stats_batch(
        store, collect_phone_entries(records), batch_size=stats_batch_size
    )
    return counts


def ingest_calls(
    store: ArchiveStore,
    records: Sequence[Call],
    insert_batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
    stats_batch_size: int = DEFAULT_STATS_BATCH_SIZE,
) -> InsertCounts:
    """
    Insert parsed calls and refresh the aggregates of their phones.

    Args:
        store: Connected archive store.
        records: Parsed calls.
        insert_batch_size: Records per insert transaction.
        stats_batch_size: Phones per aggregate transaction.

    Returns:
        InsertCounts (inserted, skipped).
    """
    counts = batch_insert_calls(store, records, batch_size=insert_batch_size)
    recompute_phone_stats_batch(
        store, collect_phone_entries(records), batch_size=stats_batch_size
    )
    return counts


def ingest_archive(
    store: ArchiveStore,
    text: ArchiveText,
    source: Optional[str] = None,
    insert_batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
    stats_batch_size: int = DEFAULT_STATS_BATCH_SIZE,
) -> IngestResult:
    """
    Ingest a messages or calls archive.

    Args:
        store: Connected archive store.
        text: Raw archive XML.
        source: Where the archive came from (file name), for bookkeeping.
        insert_batch_size: Records per insert transaction.
        stats_batch_size: Phones per aggregate transaction.

    Returns:
        IngestResult with counts.

    Raises:
        ArchiveFormatError: If the archive is malformed (nothing written).
        sqlite3.Error: If the store fails (earlier chunks stay committed).
    """
    start_time = time.monotonic()

    logger.info(f"Ingesting archive{f' {source}' if source else ''}...")
    kind, records = parse_archive(text)

    if not records:
        logger.info(f"Archive contains no {kind}")
        return IngestResult(
            success=True,
            archive_kind=kind,
            source=source,
            duration_seconds=time.monotonic() - start_time,
        )

    if kind is ArchiveKind.MESSAGES:
        counts = ingest_messages(store, records, insert_batch_size, stats_batch_size)
    else:
        counts = ingest_calls(store, records, insert_batch_size, stats_batch_size)

    unique_phones = len({record.phone for record in records})

    update_etl_state(store, f"last_{kind}_ingest", source or "upload")
    update_etl_state(store, "last_sync", _now_iso())

    duration = time.monotonic() - start_time
    logger.info(
        f"Ingested {len(records)} {kind}: {counts.inserted} inserted, "
        f"{counts.skipped} skipped, {unique_phones} phones in {duration:.2f}s"
    )

    return IngestResult(
        success=True,
        archive_kind=kind,
        total=len(records),
        inserted=counts.inserted,
        skipped=counts.skipped,
        unique_phones=unique_phones,
        source=source,
        duration_seconds=duration,
    )


def build_forwarded_sms(
    sender: str,
    content: str,
    timestamp: Optional[int] = None,
    sim_slot: Optional[int] = None,
) -> Message:
    """
    Build the Message for one SMS pushed by a forwarding app.

    Forwarded messages are always incoming. Without a timestamp the current
    time is used.

    Raises:
        ValueError: If the timestamp is outside the representable date range.
    """
    if timestamp is None:
        timestamp = int(time.time() * 1000)

    try:
        readable_date = (
            datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )
    except (ValueError, OverflowError, OSError) as e:
        raise ValueError(f"timestamp out of range: {timestamp}") from e

    phone = normalize_phone(sender).normalized
    direction = int(Direction.RECEIVED)

    return Message(
        id=generate_message_id(phone, timestamp, MessageKind.SMS, direction, content),
        phone=phone,
        phone_raw=sender,
        kind=MessageKind.SMS,
        direction=direction,
        body=content,
        timestamp=timestamp,
        readable_date=readable_date,
        sim_slot=sim_slot,
    )


def ingest_forwarded_sms(
    store: ArchiveStore,
    sender: str,
    content: str,
    timestamp: Optional[int] = None,
    sim_slot: Optional[int] = None,
) -> Tuple[bool, Message]:
    """
    Ingest one forwarded SMS.

    Returns:
        Tuple of (inserted, message). The phone aggregate is only recomputed
        when the message was new.
    """
    message = build_forwarded_sms(sender, content, timestamp=timestamp, sim_slot=sim_slot)
    inserted = insert_message(store, message)

    if inserted:
        recompute_phone_stats(store, message.phone)
        logger.info(f"Forwarded SMS from {message.phone} stored as {message.id}")
    else:
        logger.info(f"Forwarded SMS {message.id} already stored")

    return inserted, message


def get_etl_status(db_path: Path) -> dict:
    """
    Get current ingestion status from archive.db.

    Args:
        db_path: Path to archive.db.

    Returns:
        Dictionary with status information.
    """
    if not db_path.exists():
        return {"exists": False}

    schema_valid = verify_schema(db_path)
    if not schema_valid:
        return {"exists": True, "schema_valid": False}

    with ArchiveStore(db_path) as store:
        return {
            "exists": True,
            "schema_valid": True,
            "message_count": get_loaded_message_count(store),
            "call_count": get_loaded_call_count(store),
            "phone_count": get_loaded_phone_count(store),
            "latest_message_at": store.fetch_scalar("SELECT MAX(timestamp) FROM messages;"),
            "latest_call_at": store.fetch_scalar("SELECT MAX(timestamp) FROM calls;"),
            "last_sync": get_etl_state(store, "last_sync"),
            "last_messages_ingest": get_etl_state(store, "last_messages_ingest"),
            "last_calls_ingest": get_etl_state(store, "last_calls_ingest"),
            "schema_version": get_etl_state(store, "schema_version"),
        }
