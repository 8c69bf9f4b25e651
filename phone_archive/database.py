"""
Store connection module.

Provides the relational store the ingestion pipeline writes to: prepared
statement execution with affected-row counts, grouped batch execution, and
parameterized reads returning plain dict rows.
"""

import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging

logger = logging.getLogger(__name__)

# A prepared statement and its bound parameters
Parameters = Union[Sequence[Any], Mapping[str, Any]]
Statement = Tuple[str, Parameters]


class ArchiveStore:
    """
    Connection manager for archive.db.

    Each write method runs in its own transaction. batch() groups N
    statements into one transaction: either all of them apply or none do.
    Callers that issue several batches get no atomicity across them.
    """

    def __init__(self, db_path: Union[str, Path]):
        """
        Initialize the store.

        Args:
            db_path: Path to archive.db.
        """
        self.db_path = Path(db_path)
        self._connection: Optional[sqlite3.Connection] = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def connect(self) -> sqlite3.Connection:
        """
        Open the read-write connection.

        Returns:
            SQLite connection object.

        Raises:
            sqlite3.Error: If connection fails.
        """
        if self._connection is not None:
            return self._connection

        try:
            # One store serves one request, but FastAPI may resolve the
            # dependency and run the endpoint on different worker threads
            self._connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            logger.debug(f"Connected to store: {self.db_path}")
            return self._connection
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to store: {e}")
            raise

    def close(self) -> None:
        """Close the connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
            logger.debug("Store connection closed")

    @property
    def connection(self) -> sqlite3.Connection:
        """
        Get the open connection.

        Raises:
            RuntimeError: If connection not established.
        """
        if self._connection is None:
            raise RuntimeError("Store connection not established. Call connect() first.")
        return self._connection

    def execute(self, query: str, parameters: Parameters = ()) -> int:
        """
        Execute one write statement in its own transaction.

        Args:
            query: SQL statement.
            parameters: Bound parameters.

        Returns:
            Number of rows affected.
        """
        with self.connection:
            cursor = self.connection.execute(query, parameters)
            return cursor.rowcount

    def batch(self, statements: Sequence[Statement]) -> List[int]:
        """
        Execute N write statements as one transaction.

        Args:
            statements: (query, parameters) pairs.

        Returns:
            Rows affected by each statement, in order.

        Raises:
            sqlite3.Error: If any statement fails; the whole batch is rolled back.
        """
        if not statements:
            return []

        results: List[int] = []
        with self.connection:
            with closing(self.connection.cursor()) as cursor:
                for query, parameters in statements:
                    cursor.execute(query, parameters)
                    results.append(cursor.rowcount)
        return results

    def fetch_all(self, query: str, parameters: Parameters = ()) -> List[Dict[str, Any]]:
        """
        Run a SELECT and return every row.

        Args:
            query: SQL query.
            parameters: Bound parameters.

        Returns:
            List of rows as dictionaries.
        """
        with closing(self.connection.cursor()) as cursor:
            cursor.execute(query, parameters)
            return [dict(row) for row in cursor.fetchall()]

    def fetch_one(self, query: str, parameters: Parameters = ()) -> Optional[Dict[str, Any]]:
        """
        Run a SELECT and return the first row.

        Returns:
            Row as a dictionary, or None if there are no rows.
        """
        with closing(self.connection.cursor()) as cursor:
            cursor.execute(query, parameters)
            row = cursor.fetchone()
            return dict(row) if row else None

    def fetch_scalar(self, query: str, parameters: Parameters = ()) -> Any:
        """
        Run a SELECT and return the first column of the first row.

        Returns:
            The value, or None if there are no rows.
        """
        with closing(self.connection.cursor()) as cursor:
            cursor.execute(query, parameters)
            row = cursor.fetchone()
            return row[0] if row else None

    def get_table_names(self) -> List[str]:
        """
        Get all table names in the database.

        Returns:
            List of table names.
        """
        query = "SELECT `name` FROM `sqlite_master` WHERE `type`='table';"
        return [row["name"] for row in self.fetch_all(query)]

    def get_row_count(self, table_name: str) -> int:
        """
        Get row count for a table.

        SQLite does not support binding identifiers, so only table names that
        exist in sqlite_master are accepted.

        Args:
            table_name: Name of the table.

        Returns:
            Number of rows in the table.

        Raises:
            ValueError: If the table does not exist.
        """
        if table_name not in self.get_table_names():
            raise ValueError(f"Unknown table name: {table_name!r}")
        return self.fetch_scalar(f"SELECT COUNT(*) FROM `{table_name}`;") or 0


def open_store(db_path: Union[str, Path]) -> ArchiveStore:
    """
    Create the schema if needed and return a connected store.

    Args:
        db_path: Path to archive.db.

    Returns:
        Connected ArchiveStore. The caller closes it.
    """
    from phone_archive.etl.schema import create_schema

    path = Path(db_path)
    create_schema(path)
    store = ArchiveStore(path)
    store.connect()
    return store
