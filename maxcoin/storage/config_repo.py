import json
import time
from typing import Any, Dict

import aiosqlite


class ConfigRepo:
    """Key/value store for configuration overrides (values JSON-encoded)."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def get_all(self) -> Dict[str, Any]:
        result = {}
        async with self._db.execute("SELECT key, value FROM config") as cursor:
            async for row in cursor:
                result[row[0]] = json.loads(row[1])
        return result

    async def set_many(self, values: Dict[str, Any]):
        now = time.time()
        for key, value in values.items():
            await self._db.execute(
                "INSERT INTO config (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
                (key, json.dumps(value), now),
            )

    async def clear(self):
        await self._db.execute("DELETE FROM config")
