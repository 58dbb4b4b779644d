import sqlite3
import logging
import threading
import time
from contextlib import contextmanager
from .config import DB_PATH, POOL_MAX_SIZE, POOL_HEALTH_CHECK_INTERVAL, SQLITE_BUSY_TIMEOUT_MS

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Thread-safe SQLite connection pool with health checks and automatic cleanup.

    Features:
    - One connection per thread (SQLite threading requirement)
    - Foreign keys enforced on every connection (ratings cascade on delete)
    - Periodic health checks via SELECT 1
    - Automatic cleanup of dead thread connections
    - Explicit transaction nesting tracking
    """

    def __init__(self, db_path, max_size: int = POOL_MAX_SIZE, health_check_interval: int = POOL_HEALTH_CHECK_INTERVAL):
        self._db_path = db_path
        self._max_size = max_size
        self._health_check_interval = health_check_interval

        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._last_health_check: dict[int, float] = {}
        self._transaction_depth: dict[int, int] = {}
        self._last_cleanup = time.time()
        self._cleanup_interval = 60

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")

        return conn

    def _health_check(self, conn: sqlite3.Connection) -> bool:
        """Verify connection is still valid."""
        try:
            conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False

    def _maybe_cleanup(self):
        """Periodically close connections owned by threads that have exited."""
        now = time.time()
        if now - self._last_cleanup < self._cleanup_interval:
            return

        self._last_cleanup = now
        alive_threads = {t.ident for t in threading.enumerate()}
        dead_threads = set(self._connections.keys()) - alive_threads

        for thread_id in dead_threads:
            conn = self._connections.pop(thread_id, None)
            self._last_health_check.pop(thread_id, None)
            self._transaction_depth.pop(thread_id, None)

            if conn:
                try:
                    conn.close()
                    logger.debug(f"Cleaned up connection for dead thread {thread_id}")
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")

        if dead_threads:
            logger.info(f"Connection pool cleanup: removed {len(dead_threads)} dead connections, {len(self._connections)} remaining")

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection for the current thread, creating if necessary."""
        thread_id = threading.get_ident()
        now = time.time()

        with self._lock:
            self._maybe_cleanup()

            conn = self._connections.get(thread_id)

            if conn is not None:
                last_check = self._last_health_check.get(thread_id, 0)
                if now - last_check > self._health_check_interval:
                    if not self._health_check(conn):
                        logger.warning(f"Connection for thread {thread_id} failed health check, replacing")
                        try:
                            conn.close()
                        except sqlite3.Error as e:
                            logger.debug(f"Ignoring close failure on stale connection: {e}")
                        conn = None
                    else:
                        self._last_health_check[thread_id] = now

            if conn is None:
                if len(self._connections) >= self._max_size:
                    # Force cleanup before creating new connection
                    self._last_cleanup = 0
                    self._maybe_cleanup()

                    if len(self._connections) >= self._max_size:
                        raise RuntimeError(
                            f"Connection pool exhausted ({self._max_size} connections). "
                            f"Possible connection leak or too many threads."
                        )

                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._last_health_check[thread_id] = now
                self._transaction_depth[thread_id] = 0
                logger.debug(f"Created connection for thread {thread_id} (pool size: {len(self._connections)})")

            return conn

    def get_transaction_depth(self) -> int:
        """Get current transaction nesting depth for this thread."""
        return self._transaction_depth.get(threading.get_ident(), 0)

    def increment_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = self._transaction_depth.get(thread_id, 0) + 1

    def decrement_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._transaction_depth.get(thread_id, 1)
            self._transaction_depth[thread_id] = max(0, depth - 1)

    def close_all(self):
        """Close all connections (call on application shutdown)."""
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")

            self._connections.clear()
            self._last_health_check.clear()
            self._transaction_depth.clear()
            logger.debug("Connection pool closed")


# Global pool instance
_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


SCHEMA = """
    CREATE TABLE IF NOT EXISTS viewers (
        viewer_id INTEGER NOT NULL,
        viewer_name TEXT NOT NULL,
        PRIMARY KEY (viewer_id),
        CHECK (typeof(viewer_id) = 'integer' AND viewer_id > 0),
        CHECK (length(viewer_name) > 0)
    ) WITHOUT ROWID;

    CREATE TABLE IF NOT EXISTS movies (
        movie_id INTEGER NOT NULL,
        movie_name TEXT NOT NULL,
        movie_description TEXT NOT NULL,
        PRIMARY KEY (movie_id),
        CHECK (typeof(movie_id) = 'integer' AND movie_id > 0)
    ) WITHOUT ROWID;

    -- A row means "watched"; opinion is NULL until the viewer likes or dislikes the movie
    CREATE TABLE IF NOT EXISTS ratings (
        viewer_id INTEGER NOT NULL
            REFERENCES viewers (viewer_id) ON DELETE CASCADE,
        movie_id INTEGER NOT NULL
            REFERENCES movies (movie_id) ON DELETE CASCADE,
        opinion TEXT CHECK (opinion IN ('LIKE', 'DISLIKE')),
        PRIMARY KEY (viewer_id, movie_id)
    ) WITHOUT ROWID;

    CREATE INDEX IF NOT EXISTS idx_ratings_movie ON ratings(movie_id);
    CREATE INDEX IF NOT EXISTS idx_ratings_opinion ON ratings(movie_id, opinion);
"""

TABLES = ("ratings", "viewers", "movies")  # dependents first


def init_db() -> None:
    """Create the schema. Existing tables are left untouched."""
    DB_PATH.parent.mkdir(exist_ok=True, parents=True)
    with get_db() as conn:
        conn.executescript(SCHEMA)


def clear_tables() -> None:
    """Delete every row but keep the schema."""
    with get_db() as conn:
        for table in TABLES:
            conn.execute(f"DELETE FROM {table}")
    logger.info("Cleared all tables")


def drop_tables() -> None:
    """Remove the schema entirely."""
    with get_db() as conn:
        for table in TABLES:
            conn.execute(f"DROP TABLE IF EXISTS {table}")
    logger.info("Dropped all tables")


def _get_pool() -> ConnectionPool:
    """Get or create the global connection pool."""
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                DB_PATH.parent.mkdir(exist_ok=True, parents=True)
                _pool = ConnectionPool(DB_PATH)
    return _pool


@contextmanager
def get_db(read_only: bool = False):
    """
    Get database connection with proper transaction handling.

    Args:
        read_only: If True, skip commit on exit (optimization for read operations)

    Handles nested calls correctly:
    - Only the outermost context commits/rollbacks
    - Inner contexts are no-ops for transaction control
    """
    pool = _get_pool()
    conn = pool.get_connection()

    is_outermost = pool.get_transaction_depth() == 0
    pool.increment_transaction_depth()

    try:
        yield conn

        if is_outermost and not read_only:
            conn.commit()

    except Exception:
        if is_outermost:
            conn.rollback()
        raise

    finally:
        pool.decrement_transaction_depth()


def close_pool():
    """Close the connection pool. Call on application shutdown."""
    global _pool
    if _pool is not None:
        _pool.close_all()
        _pool = None


def load_viewing_rows(conn) -> list[tuple[int, int | None, str | None]]:
    """
    Load every viewer together with their rating rows in a single statement.

    Viewers without any rating appear once with movie_id None, so the result
    carries both the full viewer set and all watch pairs from one read.
    """
    cursor = conn.execute("""
        SELECT v.viewer_id, r.movie_id, r.opinion
        FROM viewers v
        LEFT JOIN ratings r ON r.viewer_id = v.viewer_id
    """)
    return [(row['viewer_id'], row['movie_id'], row['opinion']) for row in cursor.fetchall()]


def get_table_counts() -> dict[str, int]:
    """Row counts per table, used by the stats command."""
    with get_db(read_only=True) as conn:
        counts = {table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] for table in TABLES}
        counts['opinions'] = conn.execute(
            "SELECT COUNT(*) FROM ratings WHERE opinion IS NOT NULL"
        ).fetchone()[0]
        return counts
