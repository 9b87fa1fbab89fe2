"""SQLite portfolio store implementation.

This module provides the SQLitePortfolioStore class for persisting rebalancer
state, including connection management, table creation, and transactional
writes.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from rebalancer.portfolio.models import Portfolio
from rebalancer.storage.base import DataKey, PortfolioStore
from rebalancer.utils.exceptions import StorageError
from rebalancer.utils.logging import get_logger

logger = get_logger(__name__)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLitePortfolioStore(PortfolioStore):
    """Persists rebalancer state in a SQLite database.

    Records are stored as JSON text so balances beyond 64 bits survive.
    Outside ``transaction()`` each write commits on its own.

    Attributes:
        db_path: Path to the SQLite database file, or ":memory:" (each
            thread then sees its own private database).
    """

    def __init__(self, db_path: str):
        """Initialize store and create tables.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self.create_tables()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(self.db_path)
            self._local.connection.row_factory = sqlite3.Row
            self._local.depth = 0
        return self._local.connection

    def create_tables(self) -> None:
        """Create necessary database tables if they don't exist."""
        schema_path = Path(__file__).parent / "schema.sql"
        try:
            with open(schema_path, "r", encoding="utf-8") as f:
                schema = f.read()

            conn = self._get_connection()
            conn.executescript(schema)
            conn.commit()
            logger.info("Rebalancer store initialized at %s", self.db_path)
        except (OSError, sqlite3.Error) as e:
            logger.error("Failed to create tables: %s", e)
            raise StorageError(f"Store initialization failed: {e}") from e

    def _write(self, sql: str, params: tuple) -> None:
        conn = self._get_connection()
        try:
            conn.execute(sql, params)
            if self._local.depth == 0:
                conn.commit()
        except sqlite3.Error as e:
            if self._local.depth == 0:
                conn.rollback()
            logger.error("Write failed: %s", e)
            raise StorageError(f"Failed to write state: {e}") from e

    def _read_one(self, sql: str, params: tuple) -> Optional[sqlite3.Row]:
        conn = self._get_connection()
        try:
            return conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            logger.error("Read failed: %s", e)
            raise StorageError(f"Failed to read state: {e}") from e

    def get(self, key: DataKey, default: Any = None) -> Any:
        row = self._read_one("SELECT value FROM settings WHERE key = ?", (key.value,))
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except ValueError as e:
            raise StorageError(f"Corrupt value for {key.value}: {e}") from e

    def set(self, key: DataKey, value: Any) -> None:
        self._write(
            """
            INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
            value=excluded.value,
            updated_at=excluded.updated_at
            """,
            (key.value, json.dumps(value), _utcnow()),
        )

    def get_portfolio(self, portfolio_id: int) -> Optional[Portfolio]:
        row = self._read_one("SELECT record FROM portfolios WHERE id = ?", (portfolio_id,))
        if row is None:
            return None
        try:
            return Portfolio.from_dict(json.loads(row["record"]))
        except (ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Corrupt record for portfolio {portfolio_id}: {e}") from e

    def set_portfolio(self, portfolio_id: int, portfolio: Portfolio) -> None:
        self._write(
            """
            INSERT INTO portfolios (id, user, record, updated_at) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
            user=excluded.user,
            record=excluded.record,
            updated_at=excluded.updated_at
            """,
            (portfolio_id, portfolio.user, json.dumps(portfolio.to_dict()), _utcnow()),
        )

    def portfolio_ids(self) -> list[int]:
        conn = self._get_connection()
        try:
            rows = conn.execute("SELECT id FROM portfolios ORDER BY id ASC").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list portfolios: {e}") from e
        return [row["id"] for row in rows]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        conn = self._get_connection()
        self._local.depth += 1
        try:
            yield
        except BaseException:
            if self._local.depth == 1:
                conn.rollback()
                logger.debug("Transaction rolled back")
            raise
        else:
            if self._local.depth == 1:
                try:
                    conn.commit()
                except sqlite3.Error as e:
                    conn.rollback()
                    raise StorageError(f"Commit failed: {e}") from e
        finally:
            self._local.depth -= 1

    def close(self):
        """Close the thread-local connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection
