"""
Phone Archive - ingest phone backup archives into a queryable store.

This package provides functionality to:
- Parse SMS/MMS and call log XML exports
- Store them deduplicated, keyed by normalized phone number
- Sync the newest archive from a remote folder
- Serve the archive over a small HTTP API
"""

__version__ = "0.1.0"

from phone_archive.config import get_config, Config
from phone_archive.database import ArchiveStore, open_store

__all__ = [
    "get_config",
    "Config",
    "ArchiveStore",
    "open_store",
]
