from importlib.resources import files
from pathlib import Path

import aiosqlite

_SCHEMA = files("webhook_pipeline").joinpath("schema.sql").read_text()


async def open_db(db_path: str, busy_timeout_ms: int = 5000) -> aiosqlite.Connection:
    """Open the job database, creating its directory and schema on first use."""
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(db_path)
    # WAL lets the status endpoints read while a worker holds the write lock
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA synchronous=NORMAL")
    await conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    await conn.executescript(_SCHEMA)
    return conn
