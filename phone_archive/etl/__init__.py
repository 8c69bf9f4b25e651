"""
ETL (Extract, Transform, Load) module for Phone Archive.

This module turns phone backup archives (XML exports of SMS/MMS and call
logs) into rows of a relational store you can query by phone number.

Architecture Overview:
    Backup archives (XML)      archive.db
    ├── <smses> export    →    ├── messages
    └── <calls> export    →    ├── calls
                               ├── phones        (derived aggregate cache)
                               ├── subscriptions (device lines / SIMs)
                               └── etl_state

Key Design Decisions:
    1. Phones are normalized before keying (E.164, sender IDs uppercased)
    2. Record ids are content fingerprints, so re-ingestion is idempotent
    3. Per-phone aggregates are always recomputed from live scans
    4. Concurrency is left to the store's conflict resolution - no locks
"""

from phone_archive.etl.schema import create_schema, SCHEMA_VERSION
from phone_archive.etl.normalizers import (
    normalize_phone,
    NormalizedPhone,
    CountryRules,
    AUSTRALIA,
)
from phone_archive.etl.identity import (
    generate_message_id,
    generate_call_id,
)
from phone_archive.etl.extractors import (
    parse_messages_xml,
    parse_calls_xml,
    parse_archive,
    detect_archive_kind,
    ArchiveFormatError,
    ArchiveKind,
    Message,
    MessageKind,
    Direction,
    Call,
    CallType,
)
from phone_archive.etl.loaders import (
    batch_insert_messages,
    batch_insert_calls,
    recompute_phone_stats,
    recompute_phone_stats_batch,
    rebuild_phone_stats,
    discover_subscriptions,
    InsertCounts,
)
from phone_archive.etl.pipeline import (
    ingest_messages,
    ingest_calls,
    ingest_archive,
    ingest_forwarded_sms,
    get_etl_status,
    IngestResult,
)
from phone_archive.etl.validation import validate_archive, ValidationResult

__all__ = [
    # Schema
    "create_schema",
    "SCHEMA_VERSION",
    # Normalizers
    "normalize_phone",
    "NormalizedPhone",
    "CountryRules",
    "AUSTRALIA",
    # Identity
    "generate_message_id",
    "generate_call_id",
    # Extractors
    "parse_messages_xml",
    "parse_calls_xml",
    "parse_archive",
    "detect_archive_kind",
    "ArchiveFormatError",
    "ArchiveKind",
    "Message",
    "MessageKind",
    "Direction",
    "Call",
    "CallType",
    # Loaders
    "batch_insert_messages",
    "batch_insert_calls",
    "recompute_phone_stats",
    "recompute_phone_stats_batch",
    "rebuild_phone_stats",
    "discover_subscriptions",
    "InsertCounts",
    # Pipeline
    "ingest_messages",
    "ingest_calls",
    "ingest_archive",
    "ingest_forwarded_sms",
    "get_etl_status",
    "IngestResult",
    # Validation
    "validate_archive",
    "ValidationResult",
]
