"""
Session Persistence Manager — safe saves on top of the SessionStore.

Rules:
- At most one save in flight per session id. A second request for the same
  id while the first is running is dropped (returns None), not queued.
  Callers that must land their copy wait with wait_saved() and retry.
- A saved copy gets last_modified = max(now, previous), so the value never
  goes backwards. The caller gets that copy back.
- The `recent` index mirrors the store ordering: replaced in place after a
  save, inserted at the front for a session it hasn't seen.

Every store failure surfaces as PersistenceError.

Export/import uses plain JSON produced by Session/Settings.to_dict(), so
timestamps and ids round-trip exactly.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

from colloquy.chat.errors import PersistenceError
from colloquy.chat.models import Session, Settings
from colloquy.core.config import config
from colloquy.core.metrics import metrics
from colloquy.session.store import SessionStore

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1


class PersistenceManager:
    def __init__(self, store: SessionStore, recent_limit: int | None = None):
        self._store = store
        self._recent_limit = recent_limit or config.store.recent_limit
        self._pending: dict[str, asyncio.Event] = {}
        self.recent: list[Session] = []

    async def start(self) -> None:
        try:
            await self._store.start()
        except Exception as e:
            raise PersistenceError(f"Failed to open session store: {e}") from e
        await self.list()

    async def stop(self) -> None:
        await self._store.stop()

    def is_saving(self, session_id: str) -> bool:
        return session_id in self._pending

    async def wait_saved(self, session_id: str) -> None:
        """Wait for the in-flight save of this session, if any, to finish."""
        event = self._pending.get(session_id)
        if event is not None:
            await event.wait()

    # ─── Sessions ─────────────────────────────────────────────────

    async def save(self, session: Session) -> Session | None:
        # Check-and-insert with no await in between: atomic on the event loop.
        if session.id in self._pending:
            metrics.inc("persistence.saves_dropped")
            logger.debug(
                "Save already in flight, dropping duplicate",
                extra={"session_id": session.id},
            )
            return None
        self._pending[session.id] = asyncio.Event()
        metrics.gauge_inc("persistence.pending")

        saved = session.with_last_modified(max(time.time(), session.last_modified))
        try:
            await self._store.save_session(saved)
        except Exception as e:
            metrics.inc("errors.persistence")
            logger.error(
                f"Failed to save session: {e}",
                extra={"session_id": session.id},
                exc_info=True,
            )
            raise PersistenceError(f"Failed to save session {session.id}: {e}") from e
        finally:
            self._pending.pop(session.id).set()
            metrics.gauge_dec("persistence.pending")

        metrics.inc("persistence.saves")
        self._index(saved)
        return saved

    async def load(self, session_id: str) -> Session:
        try:
            session = await self._store.get_session(session_id)
        except Exception as e:
            raise PersistenceError(f"Failed to load session {session_id}: {e}") from e
        if session is None:
            raise PersistenceError(f"Session not found: {session_id}")
        return session

    async def list(self) -> list[Session]:
        """All stored sessions, most recently modified first."""
        try:
            sessions = await self._store.list_sessions(self._recent_limit)
        except Exception as e:
            raise PersistenceError(f"Failed to list sessions: {e}") from e
        self.recent = list(sessions)
        return list(sessions)

    async def delete(self, session_id: str) -> None:
        try:
            await self._store.delete_session(session_id)
        except Exception as e:
            raise PersistenceError(f"Failed to delete session {session_id}: {e}") from e
        self.recent = [s for s in self.recent if s.id != session_id]
        metrics.inc("persistence.deletes")

    async def clear_all(self) -> None:
        try:
            await self._store.clear_all()
        except Exception as e:
            raise PersistenceError(f"Failed to clear data: {e}") from e
        self.recent = []

    # ─── Settings ─────────────────────────────────────────────────

    async def save_settings(self, settings: Settings) -> None:
        try:
            await self._store.save_settings(settings)
        except Exception as e:
            raise PersistenceError(f"Failed to save settings: {e}") from e

    async def load_settings(self) -> Settings:
        try:
            return await self._store.load_settings()
        except Exception as e:
            raise PersistenceError(f"Failed to load settings: {e}") from e

    # ─── Export / Import ──────────────────────────────────────────

    async def export_session(self, session_id: str) -> str:
        session = await self.load(session_id)
        return json.dumps(
            {"version": EXPORT_VERSION, "session": session.to_dict()}, indent=2
        )

    async def import_session(self, data: str) -> Session:
        """Store an exported session as-is (id and timestamps preserved)."""
        payload = _parse(data)
        try:
            session = Session.from_dict(payload.get("session", payload))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Invalid session export: {e}") from e
        await self._write(session)
        self._index(session)
        logger.info("Session imported", extra={"session_id": session.id})
        return session

    async def export_bundle(self) -> str:
        sessions = await self.list()
        settings = await self.load_settings()
        return json.dumps(
            {
                "version": EXPORT_VERSION,
                "exported_at": time.time(),
                "settings": settings.to_dict(),
                "sessions": [s.to_dict() for s in sessions],
            },
            indent=2,
        )

    async def import_bundle(self, data: str) -> tuple[Settings, list[Session]]:
        """Replace every stored session and the settings with the bundle's."""
        payload = _parse(data)
        try:
            sessions = [Session.from_dict(s) for s in payload.get("sessions", [])]
            settings = Settings.from_dict(payload.get("settings"))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Invalid export bundle: {e}") from e

        try:
            await self._store.delete_all_sessions()
        except Exception as e:
            raise PersistenceError(f"Failed to clear sessions: {e}") from e
        for session in sessions:
            await self._write(session)
        await self.save_settings(settings)
        await self.list()
        logger.info(f"Imported {len(sessions)} sessions")
        return settings, sessions

    # ─── Internals ────────────────────────────────────────────────

    async def _write(self, session: Session) -> None:
        try:
            await self._store.save_session(session)
        except Exception as e:
            raise PersistenceError(f"Failed to save session {session.id}: {e}") from e

    def _index(self, session: Session) -> None:
        for i, existing in enumerate(self.recent):
            if existing.id == session.id:
                self.recent[i] = session
                return
        self.recent.insert(0, session)


def _parse(data: str) -> dict[str, Any]:
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise PersistenceError(f"Import data is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise PersistenceError("Import data must be a JSON object")
    return payload
