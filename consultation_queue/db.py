"""Database operations for the consultation queue."""
import threading

import psycopg2
from psycopg2 import sql
from psycopg2.extras import RealDictCursor
from typing import List, Optional, Dict, Any, Iterable, Tuple
from contextlib import contextmanager
from datetime import datetime

from consultation_queue import settings
from consultation_queue.errors import StoreError
from consultation_queue.logging_conf import logger

# Columns an update may touch; id and created_at are immutable
UPDATABLE_COLUMNS = {
    "status",
    "position",
    "updated_at",
    "approved_at",
    "declined_at",
    "admin_notes",
    "decline_reason",
}

ORDERINGS = {
    "position": "position ASC, created_at ASC",
    "created_at": "created_at ASC",
    "-created_at": "created_at DESC",
}


class Database:
    """
    Database connection and operations for queue entries.

    Connections are per thread: a transaction never spans two threads.
    """

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or settings.DATABASE_URL
        self._local = threading.local()
        self._connections = []
        self._connections_lock = threading.Lock()

    @property
    def conn(self):
        """Get or create the calling thread's database connection."""
        conn = getattr(self._local, "conn", None)
        if conn is None or conn.closed:
            try:
                conn = psycopg2.connect(self.dsn)
            except psycopg2.Error as e:
                raise StoreError(f"Cannot connect to database: {e}") from e
            self._local.conn = conn
            with self._connections_lock:
                self._connections = [c for c in self._connections if not c.closed]
                self._connections.append(conn)
        return conn

    def close(self):
        """Close every connection opened by this instance."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            if not conn.closed:
                conn.close()
        self._local = threading.local()

    def connect_listener(self):
        """Open a separate autocommit connection for LISTEN."""
        try:
            conn = psycopg2.connect(self.dsn)
        except psycopg2.Error as e:
            raise StoreError(f"Cannot connect to database: {e}") from e
        conn.set_isolation_level(psycopg2.extensions.ISOLATION_LEVEL_AUTOCOMMIT)
        return conn

    @contextmanager
    def cursor(self):
        """Context manager for cursor with auto-commit/rollback."""
        cur = self.conn.cursor(cursor_factory=RealDictCursor)
        try:
            yield cur
            self.conn.commit()
        except psycopg2.Error as e:
            self.conn.rollback()
            raise StoreError(str(e).strip() or e.__class__.__name__) from e
        except Exception:
            self.conn.rollback()
            raise
        finally:
            cur.close()

    def insert_waiting_entry(
        self,
        first_name: str,
        last_name: str,
        email: str,
        reason: str,
        queue_type: str,
        created_at: datetime,
    ) -> Dict[str, Any]:
        """Insert a waiting entry at the next free position and return the row."""
        with self.cursor() as cur:
            # Serializes concurrent submissions for the same queue across processes
            cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (f"queue_entries:{queue_type}",))
            cur.execute("""
                INSERT INTO queue_entries
                    (first_name, last_name, email, reason, queue_type, status, position, created_at)
                SELECT %s, %s, %s, %s, %s, 'waiting', COALESCE(MAX(position), 0) + 1, %s
                FROM queue_entries
                WHERE queue_type = %s AND status = 'waiting'
                RETURNING *
            """, (first_name, last_name, email, reason, queue_type, created_at, queue_type))
            row = cur.fetchone()
        logger.info(f"Inserted {queue_type} entry {row['id']} at position {row['position']}")
        return row

    def max_waiting_position(self, queue_type: str) -> Optional[int]:
        with self.cursor() as cur:
            cur.execute("""
                SELECT MAX(position) AS max_position
                FROM queue_entries
                WHERE queue_type = %s AND status = 'waiting'
            """, (queue_type,))
            return cur.fetchone()["max_position"]

    def count_entries(self, queue_type: Optional[str] = None, status: Optional[str] = None) -> int:
        conditions, params = self._filters(queue_type, [status] if status else None)
        query = sql.SQL("SELECT COUNT(*) AS total FROM queue_entries {where}").format(where=conditions)
        with self.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchone()["total"]

    def count_updated_between(self, status: str, start: datetime, end: datetime) -> int:
        """Count entries in `status` whose updated_at falls in [start, end)."""
        with self.cursor() as cur:
            cur.execute("""
                SELECT COUNT(*) AS total
                FROM queue_entries
                WHERE status = %s AND updated_at >= %s AND updated_at < %s
            """, (status, start, end))
            return cur.fetchone()["total"]

    def fetch_entries(
        self,
        queue_type: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
        order_by: str = "position",
    ) -> List[Dict[str, Any]]:
        """Fetch entries filtered by queue type and status set."""
        if order_by not in ORDERINGS:
            raise ValueError(f"Unsupported ordering: {order_by}")
        conditions, params = self._filters(queue_type, statuses)
        query = sql.SQL("SELECT * FROM queue_entries {where} ORDER BY {order}").format(
            where=conditions,
            order=sql.SQL(ORDERINGS[order_by]),
        )
        with self.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def get_entry(self, entry_id) -> Optional[Dict[str, Any]]:
        with self.cursor() as cur:
            cur.execute("SELECT * FROM queue_entries WHERE id = %s", (entry_id,))
            return cur.fetchone()

    def update_entry(self, entry_id, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update the given columns of one entry and return the new row."""
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {', '.join(sorted(unknown))}")
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in fields
        )
        query = sql.SQL("UPDATE queue_entries SET {} WHERE id = %s RETURNING *").format(assignments)
        with self.cursor() as cur:
            cur.execute(query, (*fields.values(), entry_id))
            return cur.fetchone()

    def update_positions(self, updates: List[Tuple[Any, int]]) -> int:
        """Write several (id, position) pairs in one transaction."""
        if not updates:
            return 0
        with self.cursor() as cur:
            for entry_id, position in updates:
                cur.execute(
                    "UPDATE queue_entries SET position = %s WHERE id = %s",
                    (position, entry_id),
                )
        return len(updates)

    def delete_entry(self, entry_id) -> bool:
        with self.cursor() as cur:
            cur.execute("DELETE FROM queue_entries WHERE id = %s RETURNING id", (entry_id,))
            return cur.fetchone() is not None

    def get_admin_codes(self) -> Dict[str, Any]:
        """Return {role: code, ..., 'last_updated': ts} or {} when none are stored."""
        with self.cursor() as cur:
            cur.execute("SELECT role, code, updated_at FROM admin_codes")
            rows = cur.fetchall()
        if not rows:
            return {}
        codes = {row["role"]: row["code"] for row in rows}
        codes["last_updated"] = max(row["updated_at"] for row in rows)
        return codes

    def store_admin_codes(self, codes: Dict[str, str], updated_at: datetime) -> None:
        with self.cursor() as cur:
            for role, code in codes.items():
                cur.execute("""
                    INSERT INTO admin_codes (role, code, updated_at)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (role) DO UPDATE
                    SET code = EXCLUDED.code, updated_at = EXCLUDED.updated_at
                """, (role, code, updated_at))
        logger.info(f"Stored admin codes for: {', '.join(sorted(codes))}")

    def _filters(self, queue_type: Optional[str], statuses: Optional[Iterable[str]]):
        clauses = []
        params: List[Any] = []
        if queue_type:
            clauses.append(sql.SQL("queue_type = %s"))
            params.append(queue_type)
        if statuses:
            clauses.append(sql.SQL("status = ANY(%s)"))
            params.append(list(statuses))
        if not clauses:
            return sql.SQL(""), params
        return sql.SQL("WHERE ") + sql.SQL(" AND ").join(clauses), params
