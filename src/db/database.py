# manages connection to the local embedded store, provides helper methods internal to db package
import asyncio
import os
from contextlib import asynccontextmanager
from pathlib import Path
from sqlite3 import Row

import aiosqlite

from utils.logger import get_logger

_logger = get_logger(__name__)

_SQL_DIR = Path(__file__).resolve().parent

DB_PATH = "data/scango.sqlite"
DB_INIT_SCRIPTS = [
    _SQL_DIR / "tables.sql",
    _SQL_DIR / "seed-data.sql",
]

_initialized = False
_init_lock = asyncio.Lock()


def configure(path: str) -> None:
    """Point the local store at another file; schema is re-checked on next connect."""
    global DB_PATH, _initialized
    DB_PATH = path
    _initialized = False


async def _init_db(conn: aiosqlite.Connection) -> None:
    for script in DB_INIT_SCRIPTS:
        if not os.path.exists(script) or os.path.getsize(script) == 0:
            continue
        _logger.info(f"Initializing database with script {script.name}...")
        with open(script, "r", encoding="utf-8") as f:
            await conn.executescript(f.read())
    await conn.commit()


async def _table_exists(conn: aiosqlite.Connection, table_name: str) -> bool:
    cur = await conn.execute(
        """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table'
          AND name = ?;
        """,
        (table_name,),
    )
    row = await cur.fetchone()
    await cur.close()
    return row is not None


@asynccontextmanager
async def connect() -> aiosqlite.Connection:
    """Async context manager yielding an aiosqlite connection with FK enabled.

    Ensures the database is initialized (tables and seed data) on first use.
    """
    global _initialized
    parent = os.path.dirname(DB_PATH)
    if parent:
        os.makedirs(parent, exist_ok=True)
    conn = await aiosqlite.connect(DB_PATH)
    conn.row_factory = Row
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 2000;")

    try:
        if not _initialized:
            async with _init_lock:
                if not _initialized:
                    if not await _table_exists(conn, "receipts"):
                        _logger.info("Initializing database...")
                        await _init_db(conn)
                    _initialized = True
        yield conn
    finally:
        await conn.close()
