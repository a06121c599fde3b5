# screener/storage/database.py
import time

import aiosqlite


class KeyValueStore:
    """aiosqlite 上的简单键值存储"""

    def __init__(self, path: str):
        self.path = path
        self.conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        self.conn = await aiosqlite.connect(self.path)
        await self._create_tables()

    async def close(self) -> None:
        if self.conn:
            await self.conn.close()
            self.conn = None

    async def _create_tables(self) -> None:
        assert self.conn is not None
        await self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            );
        """)
        await self.conn.commit()

    async def get_item(self, key: str) -> str | None:
        assert self.conn is not None
        cursor = await self.conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row[0] if row else None

    async def set_item(self, key: str, value: str) -> None:
        assert self.conn is not None
        await self.conn.execute(
            """
            INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, int(time.time() * 1000)),
        )
        await self.conn.commit()

    async def remove_item(self, key: str) -> None:
        assert self.conn is not None
        await self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        await self.conn.commit()
