import duckdb
import logging
from pathlib import Path
from typing import Optional, Union

from ..exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)


class ConnectionHandler:
    """Owns the single DuckDB connection of an ItemDatabase."""

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        """
        Parameters:
            db_path: Path to the DuckDB file, or ":memory:" (case-insensitive)
                for a transient in-memory database. File paths are resolved to
                an absolute Path.
            read_only: Open the database in read-only mode.
        """
        if isinstance(db_path, str) and db_path.lower() == ":memory:":
            self.db_path_resolved = Path(":memory:")
            logger.info("Using in-memory DuckDB database.")
        else:
            self.db_path_resolved = Path(db_path).resolve()
            logger.info(
                f"ConnectionHandler initialized for DB at: {self.db_path_resolved}"  # noqa: E501
            )

        self.read_only: bool = read_only
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        # True when the schema still has to be created (fresh file or memory).
        self.is_new_db: bool = False

    @property
    def is_memory(self) -> bool:
        return str(self.db_path_resolved) == ":memory:"

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        """
        Return the open connection, connecting first if needed.

        Raises:
            DatabaseConnectionError: If DuckDB fails to connect, or a
                read-only connection is requested for a missing file.
        """
        if self._connection is None:
            if self.is_memory:
                self.is_new_db = True
            else:
                self.is_new_db = not self.db_path_resolved.exists()
                if self.read_only and self.is_new_db:
                    raise DatabaseConnectionError(
                        f"Cannot open missing database {self.db_path_resolved} "
                        "in read-only mode."
                    )
                self.db_path_resolved.parent.mkdir(parents=True, exist_ok=True)
            try:
                self._connection = duckdb.connect(
                    database=str(self.db_path_resolved),
                    read_only=self.read_only,
                )
                logger.info("Successfully connected to the database.")
            except duckdb.Error as e:
                raise DatabaseConnectionError(
                    f"Failed to connect to database: {e}", original_exception=e
                ) from e
        return self._connection

    def close_connection(self) -> None:
        """Closes the connection if it exists; a later get_connection()
        reconnects."""
        if self._connection:
            try:
                self._connection.close()
                logger.info(
                    f"Database connection to {self.db_path_resolved} closed."
                )
            except duckdb.Error as e:
                logger.error(f"Error closing the database connection: {e}")
            finally:
                self._connection = None

    def __enter__(self) -> duckdb.DuckDBPyConnection:
        return self.get_connection()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close_connection()
