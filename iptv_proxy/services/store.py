"""
SQLite-backed document store.
Holds the channel catalog and the generated EPG as whole documents,
so a reader always sees either the previous or the new version.
"""
import logging
from pathlib import Path
from typing import Optional

import aiosqlite
from pydantic import ValidationError

from iptv_proxy.config import get_settings
from iptv_proxy.models.channel import CATALOG_VERSION, ChannelCatalog

logger = logging.getLogger(__name__)

CATALOG_KEY = "catalog"
EPG_KEY = "epg"


class DocumentStore:
    """Async key/value store of versioned documents."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or get_settings().database_path
        self._ensure_directory()

    def _ensure_directory(self):
        """Create data directory if it doesn't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self):
        """Create the documents table if it doesn't exist."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    key TEXT PRIMARY KEY,
                    version INTEGER NOT NULL DEFAULT 1,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            await db.commit()

    async def get(self, key: str) -> Optional[tuple[int, str]]:
        """Get (version, value) for a key, or None if it was never stored."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT version, value FROM documents WHERE key = ?",
                (key,)
            )
            row = await cursor.fetchone()
            if row:
                return row[0], row[1]
            return None

    async def set(self, key: str, value: str, version: int = 1):
        """Replace the whole document stored under key."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """INSERT OR REPLACE INTO documents (key, version, value, updated_at)
                   VALUES (?, ?, ?, CURRENT_TIMESTAMP)""",
                (key, version, value)
            )
            await db.commit()

    async def delete(self, key: str):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM documents WHERE key = ?", (key,))
            await db.commit()

    # ==================== CATALOG ====================

    async def save_catalog(self, catalog: ChannelCatalog):
        await self.set(CATALOG_KEY, catalog.model_dump_json(), version=catalog.version)

    async def load_catalog(self) -> Optional[ChannelCatalog]:
        """Load the stored catalog; None if absent, unreadable or of another version."""
        row = await self.get(CATALOG_KEY)
        if row is None:
            return None

        version, value = row
        if version != CATALOG_VERSION:
            logger.warning(f"Ignoring stored catalog with version {version} (expected {CATALOG_VERSION})")
            return None

        try:
            return ChannelCatalog.model_validate_json(value)
        except ValidationError as e:
            logger.error(f"Stored catalog is invalid, ignoring it: {e}")
            return None

    # ==================== EPG ====================

    async def save_epg(self, xmltv: str):
        await self.set(EPG_KEY, xmltv)

    async def load_epg(self) -> Optional[str]:
        row = await self.get(EPG_KEY)
        return row[1] if row else None


# Singleton instance
_store: Optional[DocumentStore] = None


async def get_store() -> DocumentStore:
    """Get or create document store singleton."""
    global _store
    if _store is None:
        _store = DocumentStore()
        await _store.initialize()
    return _store
