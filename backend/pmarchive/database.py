import asyncio
import logging
import random
import sqlite3
from contextlib import asynccontextmanager

import aiosqlite

from . import config

DB_PATH = config.DB_PATH

_logger = logging.getLogger("pmarchive.db")


async def _configure(db: aiosqlite.Connection):
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    await db.execute("PRAGMA busy_timeout = 5000")


class ConnectionPool:
    """Lightweight async connection pool for aiosqlite.

    Falls back to direct connections if the pool is exhausted (no blocking).
    """

    def __init__(self, db_path, size: int = 4):
        self._db_path = db_path
        self._size = size
        self._pool: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=size)
        self._closed = False

    async def _create_connection(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(self._db_path)
        await _configure(db)
        await db.execute("PRAGMA synchronous = NORMAL")
        return db

    async def initialize(self):
        for _ in range(self._size):
            await self._pool.put(await self._create_connection())
        _logger.info("Connection pool initialized with %d connections", self._size)

    async def acquire(self) -> aiosqlite.Connection:
        try:
            return self._pool.get_nowait()
        except asyncio.QueueEmpty:
            # Overflow connection, closed on release
            return await self._create_connection()

    async def release(self, conn: aiosqlite.Connection):
        if self._closed:
            await conn.close()
            return
        if conn.in_transaction:
            await conn.rollback()
        try:
            self._pool.put_nowait(conn)
        except asyncio.QueueFull:
            await conn.close()

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self):
        self._closed = True
        while not self._pool.empty():
            try:
                conn = self._pool.get_nowait()
                await conn.close()
            except asyncio.QueueEmpty:
                break
        _logger.info("Connection pool closed")


# Global pool instance (initialized in lifespan, None during tests)
_pool: ConnectionPool | None = None


async def init_pool(db_path=None):
    global _pool
    _pool = ConnectionPool(db_path or DB_PATH)
    await _pool.initialize()


async def close_pool():
    global _pool
    if _pool:
        await _pool.close()
        _pool = None


async def get_db():
    """Yield an aiosqlite connection with retry on transient failures.

    Borrows from the pool when one is initialized, otherwise opens a direct
    connection (tests).
    """
    pool = _pool
    if pool and not pool.closed:
        db = await pool.acquire()
        try:
            yield db
        finally:
            await pool.release(db)
        return

    retries = 3
    delay = 0.1
    last_err = None
    for attempt in range(retries):
        try:
            db = await aiosqlite.connect(DB_PATH)
            await _configure(db)
            break
        except (sqlite3.OperationalError, OSError) as exc:
            last_err = exc
            if attempt < retries - 1:
                await asyncio.sleep(delay + random.uniform(0, delay * 0.5))
                delay *= 3
    else:
        raise last_err
    try:
        yield db
    finally:
        await db.close()


@asynccontextmanager
async def transaction(db: aiosqlite.Connection):
    """Run a block as one write transaction: commit on success, roll back on any error.

    BEGIN IMMEDIATE takes the SQLite write lock up front so reads performed
    inside the block see a state no other writer can change before commit.
    """
    await db.execute("BEGIN IMMEDIATE")
    try:
        yield db
    except BaseException:
        await db.rollback()
        raise
    else:
        await db.commit()


# ---------------------------------------------------------------------------
# Schema Migration System
# ---------------------------------------------------------------------------

SCHEMA_VERSION = 2


async def _get_schema_version(db: aiosqlite.Connection) -> int:
    try:
        row = await (await db.execute(
            "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
        )).fetchone()
        return row["version"] if row else 0
    except sqlite3.OperationalError:
        # Fresh database
        return 0


async def _migration_001(db: aiosqlite.Connection):
    """Entity store: projects, users, messages with mirrored archive flags."""
    await db.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            full_name TEXT NOT NULL,
            email TEXT NOT NULL DEFAULT '',
            department TEXT NOT NULL DEFAULT '',
            title TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL DEFAULT 'Active',
            is_archived INTEGER NOT NULL DEFAULT 0,
            archive_date TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT
        )
    """)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS projects (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            project_name TEXT NOT NULL,
            project_owner TEXT NOT NULL DEFAULT '',
            priority TEXT NOT NULL DEFAULT 'Medium',
            status TEXT NOT NULL DEFAULT 'ToDo',
            due_date TEXT,
            is_archived INTEGER NOT NULL DEFAULT 0,
            archive_date TEXT,
            created_by TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT
        )
    """)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            content TEXT NOT NULL,
            sender_id TEXT NOT NULL,
            receiver_id TEXT,
            project_id INTEGER,
            message_type INTEGER NOT NULL DEFAULT 3,
            time_sent TEXT NOT NULL DEFAULT (datetime('now')),
            is_archived INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY (sender_id) REFERENCES users(id),
            FOREIGN KEY (receiver_id) REFERENCES users(id),
            FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE SET NULL
        )
    """)
    await db.execute("CREATE INDEX IF NOT EXISTS idx_projects_archived ON projects(is_archived)")
    await db.execute("CREATE INDEX IF NOT EXISTS idx_users_archived ON users(is_archived)")
    await db.execute("CREATE INDEX IF NOT EXISTS idx_messages_archived ON messages(is_archived)")


async def _migration_002(db: aiosqlite.Connection):
    """Archive ledger, one row per (entity, archiver)."""
    await db.execute("""
        CREATE TABLE IF NOT EXISTS archives (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            entity_id TEXT NOT NULL,
            entity_type TEXT NOT NULL,
            archived_by TEXT NOT NULL,
            archived_date TEXT NOT NULL,
            version BLOB NOT NULL
        )
    """)
    await db.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_archives_entity_user "
        "ON archives(entity_id, entity_type, archived_by)"
    )
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_archives_user_date "
        "ON archives(archived_by, archived_date)"
    )


_MIGRATIONS = [
    (1, _migration_001),
    (2, _migration_002),
]


async def run_migrations(db: aiosqlite.Connection) -> bool:
    """Apply pending migrations in order.

    Returns True if migrations were applied, False if schema was already current.
    """
    await db.execute("""
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    current = await _get_schema_version(db)
    if current >= SCHEMA_VERSION:
        _logger.info("Database schema is up to date (version %d)", current)
        return False

    _logger.info("Database schema version %d, applying migrations up to %d", current, SCHEMA_VERSION)
    for version, migration_fn in _MIGRATIONS:
        if version <= current:
            continue
        _logger.info("Applying migration %d...", version)
        await migration_fn(db)
        await db.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, datetime('now'))",
            (version,),
        )

    await db.commit()
    _logger.info("All migrations applied, schema now at version %d", SCHEMA_VERSION)
    return True


async def init_db(db_path=None):
    async with aiosqlite.connect(db_path or DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        # WAL lets readers proceed while an archive transaction holds the write lock
        await db.execute("PRAGMA journal_mode = WAL")
        await db.execute("PRAGMA foreign_keys = ON")
        await db.execute("PRAGMA busy_timeout = 5000")

        if await run_migrations(db):
            await db.execute("ANALYZE")
            _logger.info("ANALYZE completed after schema migration")

        await db.commit()
