"""
Configuration module for Phone Archive.

Handles configuration settings including the database path, the API key and
the remote archive source.

Settings resolve in order: explicit constructor argument, environment
variable, default. Only the edges (CLI, HTTP API) read the configuration;
the ingestion pipeline takes explicit arguments.

Environment Variables:
    PHONE_ARCHIVE_DB_PATH: archive.db location (default ~/.phone_archive/archive.db)
    PHONE_ARCHIVE_API_KEY: X-API-Key expected by the HTTP API (unset = dev mode)
    GDRIVE_CREDENTIALS: Service-account JSON for the remote archive folder
    GDRIVE_FOLDER_ID: Folder holding the exported archives
    PHONE_ARCHIVE_INSERT_BATCH_SIZE: Records per insert transaction
    PHONE_ARCHIVE_STATS_BATCH_SIZE: Phones per aggregate transaction
"""

import os
from pathlib import Path
from typing import Optional

from phone_archive.etl.loaders import DEFAULT_INSERT_BATCH_SIZE, DEFAULT_STATS_BATCH_SIZE


def _env_int(name: str, default: int) -> int:
    """Read a positive integer from the environment, falling back to default."""
    value = os.getenv(name)
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


class Config:
    """Configuration class for Phone Archive."""

    # Default path for archive.db
    DEFAULT_ARCHIVE_PATH = Path.home() / ".phone_archive"
    DEFAULT_DB_NAME = "archive.db"

    def __init__(
        self,
        db_path: Optional[str] = None,
        api_key: Optional[str] = None,
        gdrive_credentials: Optional[str] = None,
        gdrive_folder_id: Optional[str] = None,
        insert_batch_size: Optional[int] = None,
        stats_batch_size: Optional[int] = None,
    ):
        """
        Initialize configuration.

        Args:
            db_path: Optional path to archive.db. If not provided, reads
                    PHONE_ARCHIVE_DB_PATH, then defaults to
                    ~/.phone_archive/archive.db
            api_key: Optional API key. If not provided, reads PHONE_ARCHIVE_API_KEY.
            gdrive_credentials: Optional service-account JSON text. If not
                    provided, reads GDRIVE_CREDENTIALS.
            gdrive_folder_id: Optional remote folder id. If not provided,
                    reads GDRIVE_FOLDER_ID.
            insert_batch_size: Optional records per insert transaction.
            stats_batch_size: Optional phones per aggregate transaction.
        """
        env_db_path = os.getenv("PHONE_ARCHIVE_DB_PATH")
        if db_path:
            self._db_path = Path(db_path)
        elif env_db_path:
            self._db_path = Path(env_db_path)
        else:
            self._db_path = self.DEFAULT_ARCHIVE_PATH / self.DEFAULT_DB_NAME

        self.api_key: Optional[str] = api_key or os.getenv("PHONE_ARCHIVE_API_KEY") or None
        self.gdrive_credentials: Optional[str] = (
            gdrive_credentials or os.getenv("GDRIVE_CREDENTIALS") or None
        )
        self.gdrive_folder_id: Optional[str] = (
            gdrive_folder_id or os.getenv("GDRIVE_FOLDER_ID") or None
        )

        self.insert_batch_size = insert_batch_size or _env_int(
            "PHONE_ARCHIVE_INSERT_BATCH_SIZE", DEFAULT_INSERT_BATCH_SIZE
        )
        self.stats_batch_size = stats_batch_size or _env_int(
            "PHONE_ARCHIVE_STATS_BATCH_SIZE", DEFAULT_STATS_BATCH_SIZE
        )

    @property
    def db_path(self) -> Path:
        """Get the archive.db file path."""
        return self._db_path

    @property
    def db_path_str(self) -> str:
        """Get the archive.db file path as a string."""
        return str(self._db_path)

    @property
    def auth_enabled(self) -> bool:
        """True when the HTTP API requires an X-API-Key header."""
        return bool(self.api_key)

    def validate(self) -> bool:
        """
        Validate that archive.db exists and is readable.

        Returns:
            True if archive.db exists and is readable, False otherwise.
        """
        return self._db_path.exists() and os.access(self._db_path, os.R_OK)

    def validate_gdrive(self) -> Optional[str]:
        """
        Check the remote archive settings.

        Returns:
            None when both settings are present, otherwise the name of the
            first missing one.
        """
        if not self.gdrive_credentials:
            return "GDRIVE_CREDENTIALS"
        if not self.gdrive_folder_id:
            return "GDRIVE_FOLDER_ID"
        return None


# Global configuration instance
_config: Optional[Config] = None


def get_config(db_path: Optional[str] = None) -> Config:
    """
    Get or create the global configuration instance.

    Args:
        db_path: Optional path to archive.db.

    Returns:
        Config instance.
    """
    global _config
    if _config is None or db_path is not None:
        _config = Config(db_path)
    return _config


def set_config(config: Optional[Config]) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Config instance to use, or None to re-read the environment
                on the next get_config().
    """
    global _config
    _config = config
