"""
Pytest fixtures for Phone Archive tests.

This module provides shared fixtures for testing the ingestion pipeline,
including sample archives and temporary stores.

Fixture Categories:
    1. Archive fixtures (sample messages and calls XML)
    2. Store fixtures (empty and populated archive.db)
    3. Configuration fixtures (isolated global Config)

Design Notes:
    - Fixtures use tmp_path for isolation between tests
    - Sample archives follow the backup app's export format
"""

from pathlib import Path
from typing import Iterator

import pytest

from phone_archive.config import Config, set_config
from phone_archive.database import ArchiveStore, open_store
from phone_archive.etl.pipeline import ingest_archive


def pytest_configure(config):
    config.addinivalue_line("markers", "property: hypothesis property-based tests")
    config.addinivalue_line("markers", "integration: tests spanning several modules")


# =============================================================================
# Sample archives
# =============================================================================

# Two SMS from the same domestic mobile (written two ways), one SMS from an
# alphanumeric sender, one MMS with a text part. Timestamps are epoch ms.
SAMPLE_MESSAGES_XML = """<?xml version='1.0' encoding='UTF-8' standalone='yes' ?>
<smses count="4">
  <sms protocol="0" address="0412 345 678" date="1700000000000" type="1"
       body="Hello there" readable_date="15 Nov 2023 08:13:20"
       contact_name="Alice" sub_id="1" />
  <sms protocol="0" address="+61412345678" date="1700000060000" type="2"
       body="Hi Alice" readable_date="15 Nov 2023 08:14:20"
       contact_name="(Unknown)" sub_id="1" />
  <sms protocol="0" address="TPG" date="1700000120000" type="1"
       body="Your bill is ready" readable_date="null"
       contact_name="(Unknown)" sub_id="-1" />
  <mms date="1700000180000" msg_box="2" address="0498 765 432"
       readable_date="15 Nov 2023 08:16:20" contact_name="Bob" sub_id="2">
    <parts>
      <part seq="-1" ct="application/smil" text="null" />
      <part seq="0" ct="text/plain" text="Look at this" />
    </parts>
  </mms>
</smses>
"""

# Three calls with a number and one withheld call (empty number).
SAMPLE_CALLS_XML = """<?xml version='1.0' encoding='UTF-8' standalone='yes' ?>
<calls count="4">
  <call number="0412345678" duration="65" date="1700000300000" type="1"
        readable_date="15 Nov 2023 08:18:20" contact_name="Alice"
        subscription_id="1" />
  <call number="0412345678" duration="0" date="1700000400000" type="3"
        readable_date="15 Nov 2023 08:20:00" contact_name="Alice"
        subscription_id="1" />
  <call number="+14155551234" duration="120" date="1700000500000" type="2"
        readable_date="15 Nov 2023 08:21:40" contact_name="(Unknown)"
        subscription_id="2" />
  <call number="" duration="10" date="1700000600000" type="1"
        readable_date="15 Nov 2023 08:23:20" contact_name="(Unknown)"
        subscription_id="1" />
</calls>
"""


@pytest.fixture
def messages_xml() -> str:
    """Sample SMS/MMS archive."""
    return SAMPLE_MESSAGES_XML


@pytest.fixture
def calls_xml() -> str:
    """Sample call log archive."""
    return SAMPLE_CALLS_XML


@pytest.fixture
def messages_xml_file(tmp_path: Path) -> Path:
    """Sample SMS/MMS archive written to disk."""
    path = tmp_path / "sms-20231115.xml"
    path.write_text(SAMPLE_MESSAGES_XML, encoding="utf-8")
    return path


# =============================================================================
# Store fixtures
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path for a fresh archive.db (not created yet)."""
    return tmp_path / "archive" / "archive.db"


@pytest.fixture
def store(db_path: Path) -> Iterator[ArchiveStore]:
    """Connected store over an empty archive.db with the schema created."""
    archive = open_store(db_path)
    try:
        yield archive
    finally:
        archive.close()


@pytest.fixture
def populated_store(store: ArchiveStore) -> ArchiveStore:
    """Store with both sample archives ingested."""
    ingest_archive(store, SAMPLE_MESSAGES_XML, source="sms.xml")
    ingest_archive(store, SAMPLE_CALLS_XML, source="calls.xml")
    return store


# =============================================================================
# Configuration fixtures
# =============================================================================


@pytest.fixture
def config(db_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Config]:
    """
    Install an isolated global Config pointing at the test database.

    Environment variables that Config reads are cleared so the host
    environment cannot leak in.
    """
    for name in (
        "PHONE_ARCHIVE_DB_PATH",
        "PHONE_ARCHIVE_API_KEY",
        "GDRIVE_CREDENTIALS",
        "GDRIVE_FOLDER_ID",
        "PHONE_ARCHIVE_INSERT_BATCH_SIZE",
        "PHONE_ARCHIVE_STATS_BATCH_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)

    cfg = Config(db_path=str(db_path))
    set_config(cfg)
    try:
        yield cfg
    finally:
        set_config(None)
