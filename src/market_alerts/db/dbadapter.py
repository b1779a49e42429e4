import asyncio
import aiosqlite
import json
import time
from typing import List, Optional

from market_alerts.logger import get_logger

logger = get_logger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS universe_overrides (
universe_id TEXT PRIMARY KEY,
symbols TEXT NOT NULL,
ts INTEGER
);
"""


class UniverseStore:
    """Persisted per-universe symbol overrides, one record per universe id."""

    def __init__(self, db_path: str = "scanner.db") -> None:
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._conn_lock = asyncio.Lock()

    async def init(self):
        """Open the database connection and ensure schema exists."""
        async with self._conn_lock:
            if self._conn:
                return
            self._conn = await aiosqlite.connect(self.db_path)
            await self._conn.execute(CREATE_TABLE_SQL)
            await self._conn.commit()
            logger.info("Universe store ready at %s", self.db_path)

    async def close(self) -> None:
        """Close the DB connection."""
        async with self._conn_lock:
            if self._conn:
                await self._conn.close()
                self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("UniverseStore not initialized. Call .init() before use.")
        return self._conn

    async def get_symbols(self, universe_id: str) -> Optional[List[str]]:
        """Return the saved symbol list for universe_id, or None when there is no override."""
        conn = self._require_conn()
        sql = "SELECT symbols FROM universe_overrides WHERE universe_id = ?"
        async with conn.execute(sql, (universe_id,)) as cur:
            row = await cur.fetchone()
        if not row:
            return None
        return list(json.loads(row[0]))

    async def save_symbols(self, universe_id: str, symbols: List[str]) -> None:
        """Insert or replace the override for universe_id."""
        conn = self._require_conn()
        await conn.execute(
            "REPLACE INTO universe_overrides (universe_id, symbols, ts) VALUES (?, ?, ?)",
            (universe_id, json.dumps(list(symbols)), int(time.time())),
        )
        await conn.commit()

    async def delete_symbols(self, universe_id: str) -> bool:
        """Drop an override so the universe falls back to its defaults."""
        conn = self._require_conn()
        cur = await conn.execute("DELETE FROM universe_overrides WHERE universe_id = ?", (universe_id,))
        await conn.commit()
        return cur.rowcount > 0

