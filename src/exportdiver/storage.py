"""Conversation-set storage: the on-disk layout and the SQLite set registry."""

from __future__ import annotations

import re
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from .config import (
    ASSET_INDEX_FILENAME,
    COMPANION_HTML,
    CONVERSATIONS_DIRNAME,
    MEDIA_DIRNAME,
    SET_NAME_MAX_LENGTH,
    SETS_DIR,
)
from .errors import InvalidSetName, SetExistsError
from .models import ConversationSet, SetRoots

_UNSAFE_NAME_CHARS = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")


def sanitize_set_name(name: str) -> str:
    """Make a user-supplied set name safe to use as a directory name."""
    cleaned = _UNSAFE_NAME_CHARS.sub("-", name or "")
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()[:SET_NAME_MAX_LENGTH].strip()
    if not cleaned or cleaned in (".", ".."):
        raise InvalidSetName(f"Invalid conversation-set name: {name!r}")
    return cleaned


class StorageLayout(Protocol):
    def name_to_roots(self, set_name: str) -> SetRoots: ...


class DirectoryLayout:
    """One directory per set under ``base_dir``."""

    def __init__(self, base_dir: Path = SETS_DIR):
        self.base_dir = base_dir

    def name_to_roots(self, set_name: str) -> SetRoots:
        set_root = self.base_dir / set_name
        return SetRoots(
            set_root=set_root,
            media_root=set_root / MEDIA_DIRNAME,
            index_path=set_root / ASSET_INDEX_FILENAME,
            conversations_dir=set_root / CONVERSATIONS_DIRNAME,
            html_path=set_root / COMPANION_HTML,
        )


class SetRegistry:
    """SQLite-backed registry of committed conversation-sets."""

    def __init__(self, db_path: Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _migrate(self):
        with self._lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS conversation_sets (
                    name TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    archive_size INTEGER NOT NULL DEFAULT 0,
                    conversation_count INTEGER NOT NULL DEFAULT 0,
                    media_count INTEGER NOT NULL DEFAULT 0
                );
            """)
            self.conn.commit()

    def exists(self, name: str) -> bool:
        with self._lock:
            row = self.conn.execute(
                "SELECT 1 FROM conversation_sets WHERE name = ?", (name,)
            ).fetchone()
        return row is not None

    def register(
        self,
        name: str,
        archive_size: int = 0,
        conversation_count: int = 0,
        media_count: int = 0,
    ) -> ConversationSet:
        entry = ConversationSet(
            name=name,
            created_at=datetime.now(timezone.utc),
            archive_size=archive_size,
            conversation_count=conversation_count,
            media_count=media_count,
        )
        with self._lock:
            try:
                self.conn.execute(
                    """INSERT INTO conversation_sets
                       (name, created_at, archive_size, conversation_count, media_count)
                       VALUES (?, ?, ?, ?, ?)""",
                    (name, entry.created_at.isoformat(), archive_size,
                     conversation_count, media_count),
                )
            except sqlite3.IntegrityError as e:
                self.conn.rollback()
                raise SetExistsError(f"Conversation-set already exists: {name}") from e
            self.conn.commit()
        return entry

    def replace(
        self,
        name: str,
        archive_size: int = 0,
        conversation_count: int = 0,
        media_count: int = 0,
    ) -> ConversationSet:
        """Register ``name``, overwriting any existing row."""
        self.delete(name)
        return self.register(name, archive_size, conversation_count, media_count)

    def get(self, name: str) -> ConversationSet | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM conversation_sets WHERE name = ?", (name,)
            ).fetchone()
        return _row_to_set(row) if row else None

    def list_sets(self) -> list[ConversationSet]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM conversation_sets ORDER BY created_at DESC"
            ).fetchall()
        return [_row_to_set(r) for r in rows]

    def delete(self, name: str) -> bool:
        with self._lock:
            cur = self.conn.execute("DELETE FROM conversation_sets WHERE name = ?", (name,))
            self.conn.commit()
        return cur.rowcount > 0

    def close(self):
        with self._lock:
            self.conn.close()


def _row_to_set(row: sqlite3.Row) -> ConversationSet:
    return ConversationSet(
        name=row["name"],
        created_at=datetime.fromisoformat(row["created_at"]),
        archive_size=row["archive_size"],
        conversation_count=row["conversation_count"],
        media_count=row["media_count"],
    )
