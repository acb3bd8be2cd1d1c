# src/optirollup/storage/database.py
from typing import Any, Dict, Iterator, Optional, Tuple
import sqlite3
import json
import os
import threading

from ..exceptions import DatabaseError

TABLES = ("batches", "deposits", "withdrawals", "validators", "meta")


class Database:
    def __init__(self, db_path: str):
        """Initialize database connection"""
        self.db_path = db_path
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._local = threading.local()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get thread-local database connection"""
        if not hasattr(self._local, 'conn'):
            self._local.conn = sqlite3.connect(self.db_path)
            self._local.conn.row_factory = sqlite3.Row
        return self._local.conn

    @staticmethod
    def _table(table: str) -> str:
        if table not in TABLES:
            raise DatabaseError(f"Unknown table: {table}")
        return table

    def _init_db(self):
        """Initialize one id-keyed table per entity"""
        conn = self._get_conn()
        with conn:
            for table in TABLES:
                conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        body TEXT NOT NULL
                    )
                """)

    def put(self, table: str, key: str, value: Any) -> None:
        """Store a row"""
        try:
            conn = self._get_conn()
            with conn:
                conn.execute(
                    f"INSERT OR REPLACE INTO {self._table(table)} (id, body) VALUES (?, ?)",
                    (str(key), json.dumps(value))
                )
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise DatabaseError(f"Error storing {table}/{key}: {str(e)}") from e

    def get(self, table: str, key: str) -> Optional[Any]:
        """Retrieve a row by id"""
        try:
            conn = self._get_conn()
            cursor = conn.execute(
                f"SELECT body FROM {self._table(table)} WHERE id = ?",
                (str(key),)
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return json.loads(row['body'])
        except (sqlite3.Error, ValueError) as e:
            raise DatabaseError(f"Error retrieving {table}/{key}: {str(e)}") from e

    def batch_write(self, table: str, items: Dict[str, Any]) -> bool:
        """Write multiple rows atomically"""
        try:
            conn = self._get_conn()
            with conn:
                for key, value in items.items():
                    conn.execute(
                        f"INSERT OR REPLACE INTO {self._table(table)} (id, body) VALUES (?, ?)",
                        (str(key), json.dumps(value))
                    )
            return True
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise DatabaseError(f"Error in batch write to {table}: {str(e)}") from e

    def items(self, table: str) -> Iterator[Tuple[str, Any]]:
        """Iterate over all rows of a table"""
        try:
            conn = self._get_conn()
            rows = conn.execute(f"SELECT id, body FROM {self._table(table)}").fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Error reading {table}: {str(e)}") from e
        for row in rows:
            yield row['id'], json.loads(row['body'])

    def count(self, table: str) -> int:
        conn = self._get_conn()
        return conn.execute(f"SELECT COUNT(*) FROM {self._table(table)}").fetchone()[0]

    def close(self):
        """Close database connection"""
        if hasattr(self._local, 'conn'):
            self._local.conn.close()
            delattr(self._local, 'conn')
