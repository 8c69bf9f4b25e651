"""
Scheduled sync from the remote archive folder.

Runs unattended (cron, systemd timer, POST /sync): fetch the newest archive
from the configured folder and ingest it. Re-syncing the same archive only
reports skips, so the job can run as often as wanted.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from phone_archive.config import Config
from phone_archive.database import ArchiveStore
from phone_archive.etl.pipeline import ingest_archive
from phone_archive.gdrive import DriveClient, DriveSession, ServiceAccountCredentials

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one sync run."""

    success: bool
    file_name: Optional[str] = None
    total: int = 0
    inserted: int = 0
    skipped: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.success:
            result.update(
                fileName=self.file_name,
                total=self.total,
                inserted=self.inserted,
                skipped=self.skipped,
            )
        else:
            result["error"] = self.error
        return result


def sync_from_drive(
    store: ArchiveStore,
    config: Config,
    client: Optional[DriveClient] = None,
) -> SyncResult:
    """
    Ingest the most recent archive of the configured remote folder.

    Never raises: configuration problems, remote failures, malformed
    archives and store errors all come back as success=False.

    Args:
        store: Connected archive store.
        config: Configuration holding the remote folder settings.
        client: Optional pre-built DriveClient; by default one is built from
                config.gdrive_credentials for this run only.

    Returns:
        SyncResult.
    """
    missing = config.validate_gdrive()
    if missing:
        logger.warning(f"Sync skipped: {missing} not configured")
        return SyncResult(success=False, error=f"{missing} not configured")

    session: Optional[DriveSession] = None
    try:
        if client is None:
            credentials = ServiceAccountCredentials.from_json(config.gdrive_credentials)
            session = DriveSession(credentials)
            client = DriveClient(session)

        latest = client.get_latest_xml(config.gdrive_folder_id)
        if latest is None:
            logger.info("Sync complete: no archives in folder")
            return SyncResult(success=True)

        drive_file, content = latest
        result = ingest_archive(
            store,
            content,
            source=drive_file.name,
            insert_batch_size=config.insert_batch_size,
            stats_batch_size=config.stats_batch_size,
        )

        logger.info(
            f"Sync complete: {drive_file.name} - {result.inserted} inserted, "
            f"{result.skipped} skipped"
        )
        return SyncResult(
            success=True,
            file_name=drive_file.name,
            total=result.total,
            inserted=result.inserted,
            skipped=result.skipped,
        )
    except Exception as e:
        logger.exception("Remote archive sync failed")
        return SyncResult(success=False, error=str(e) or type(e).__name__)
    finally:
        if session is not None:
            session.close()
