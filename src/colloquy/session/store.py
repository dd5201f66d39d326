"""
Session Store — SQLite-backed durable storage for chat sessions.

Thin adapter over aiosqlite: it stores and returns records exactly as given
and makes no policy decisions (no timestamps are invented here; dedup and
last_modified handling live in the persistence manager).

Usage:
    store = SessionStore()
    await store.start()

    await store.save_session(session)
    session = await store.get_session(session.id)
    recent = await store.list_sessions(limit=20)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import aiosqlite

import colloquy.core.config as config_module
from colloquy.chat.models import Message, MessageMetadata, Session, Settings
from colloquy.chat.personas import Persona

logger = logging.getLogger(__name__)

SETTINGS_KEY = "default"


class SessionStore:
    """
    SQLite-backed session persistence.

    Three tables:
    - sessions: one row per conversation (title, persona, timestamps)
    - messages: ordered turns of a session (reactions and metadata as JSON)
    - settings: a single row keyed "default" holding the Settings JSON

    Single writer, multiple readers (WAL).
    """

    def __init__(self, db_path: Path | str | None = None):
        if db_path is None:
            db_path = config_module.config.store.db_path
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        """Open the database and create tables."""
        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                session_id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                persona TEXT NOT NULL DEFAULT 'none',
                created_at REAL NOT NULL,
                last_modified REAL NOT NULL
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                message_id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                content TEXT NOT NULL,
                is_user INTEGER NOT NULL,
                is_system INTEGER NOT NULL DEFAULT 0,
                timestamp REAL NOT NULL,
                reactions TEXT NOT NULL DEFAULT '[]',
                metadata TEXT,
                sequence INTEGER NOT NULL,
                PRIMARY KEY (session_id, message_id),
                FOREIGN KEY (session_id) REFERENCES sessions(session_id)
                    ON DELETE CASCADE
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_session
            ON messages(session_id, sequence)
        """)
        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_sessions_modified
            ON sessions(last_modified)
        """)

        await self._db.commit()
        logger.info("SessionStore started (db=%s)", self.db_path)

    async def stop(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    # ─── Session CRUD ─────────────────────────────────────────────

    async def save_session(self, session: Session) -> None:
        """Upsert the session row and replace its messages in one transaction."""
        assert self._db is not None, "SessionStore not started"

        try:
            await self._db.execute(
                """
                INSERT INTO sessions
                    (session_id, title, persona, created_at, last_modified)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    title = excluded.title,
                    persona = excluded.persona,
                    created_at = excluded.created_at,
                    last_modified = excluded.last_modified
                """,
                (
                    session.id,
                    session.title,
                    session.persona.value,
                    session.created_at,
                    session.last_modified,
                ),
            )
            await self._db.execute(
                "DELETE FROM messages WHERE session_id = ?", (session.id,)
            )
            await self._db.executemany(
                """
                INSERT INTO messages
                    (message_id, session_id, content, is_user, is_system,
                     timestamp, reactions, metadata, sequence)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        m.id,
                        session.id,
                        m.content,
                        int(m.is_user),
                        int(m.is_system),
                        m.timestamp,
                        json.dumps(list(m.reactions)),
                        json.dumps(m.metadata.to_dict()) if m.metadata else None,
                        seq,
                    )
                    for seq, m in enumerate(session.messages)
                ],
            )
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise

    async def get_session(self, session_id: str) -> Session | None:
        """Get a session with its messages. Returns None if not found."""
        assert self._db is not None, "SessionStore not started"

        async with self._db.execute(
            "SELECT session_id, title, persona, created_at, last_modified "
            "FROM sessions WHERE session_id = ?",
            (session_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return await self._row_to_session(row)

    async def list_sessions(self, limit: int = 100) -> list[Session]:
        """Sessions ordered by last_modified, most recent first."""
        assert self._db is not None, "SessionStore not started"

        async with self._db.execute(
            "SELECT session_id, title, persona, created_at, last_modified "
            "FROM sessions ORDER BY last_modified DESC LIMIT ?",
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [await self._row_to_session(row) for row in rows]

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and its messages. Returns True if it existed."""
        assert self._db is not None, "SessionStore not started"

        await self._db.execute(
            "DELETE FROM messages WHERE session_id = ?", (session_id,)
        )
        cursor = await self._db.execute(
            "DELETE FROM sessions WHERE session_id = ?", (session_id,)
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def delete_all_sessions(self) -> None:
        assert self._db is not None, "SessionStore not started"

        await self._db.execute("DELETE FROM messages")
        await self._db.execute("DELETE FROM sessions")
        await self._db.commit()

    # ─── Settings ─────────────────────────────────────────────────

    async def save_settings(self, settings: Settings) -> None:
        assert self._db is not None, "SessionStore not started"

        await self._db.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (SETTINGS_KEY, json.dumps(settings.to_dict())),
        )
        await self._db.commit()

    async def load_settings(self) -> Settings:
        """Stored settings, or defaults when none were saved yet."""
        assert self._db is not None, "SessionStore not started"

        async with self._db.execute(
            "SELECT value FROM settings WHERE key = ?", (SETTINGS_KEY,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return Settings()
        return Settings.from_dict(json.loads(row[0]))

    async def clear_all(self) -> None:
        """Delete every session and reset settings."""
        assert self._db is not None, "SessionStore not started"

        await self._db.execute("DELETE FROM messages")
        await self._db.execute("DELETE FROM sessions")
        await self._db.execute("DELETE FROM settings")
        await self._db.commit()

    # ─── Internals ────────────────────────────────────────────────

    async def _row_to_session(self, row) -> Session:
        try:
            persona = Persona(row[2])
        except ValueError:
            persona = Persona.NONE
        return Session(
            id=row[0],
            title=row[1],
            persona=persona,
            created_at=row[3],
            last_modified=row[4],
            messages=tuple(await self._get_messages(row[0])),
        )

    async def _get_messages(self, session_id: str) -> list[Message]:
        assert self._db is not None, "SessionStore not started"

        async with self._db.execute(
            """
            SELECT message_id, content, is_user, is_system, timestamp,
                   reactions, metadata
            FROM messages WHERE session_id = ? ORDER BY sequence ASC
            """,
            (session_id,),
        ) as cursor:
            rows = await cursor.fetchall()

        return [
            Message(
                id=row[0],
                content=row[1],
                is_user=bool(row[2]),
                is_system=bool(row[3]),
                timestamp=row[4],
                reactions=tuple(json.loads(row[5]) if row[5] else ()),
                metadata=MessageMetadata.from_dict(
                    json.loads(row[6]) if row[6] else None
                ),
            )
            for row in rows
        ]
