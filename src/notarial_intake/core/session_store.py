# ============================================================================
# src/notarial_intake/core/session_store.py
# ============================================================================
"""
Session Store

Persists the canonical record of each intake session to SQLite so a session
can be resumed after a restart. Raw sqlite3, one row per session, JSON for
the record and the last wizard snapshot.

RecordPersister sits in front of the store and debounces writes: merges
arrive page by page, but only the last state within the debounce window is
written. The batch flushes it when it ends.
"""

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent.parent.parent / "data" / "sessions.db"


class SessionStore:
    """
    SQLite-backed store of the last known record per session.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._init_database()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------
    def _init_database(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        cur = conn.cursor()

        cur.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                session_id      TEXT PRIMARY KEY,
                case_id         TEXT,
                updated_at      TEXT NOT NULL,
                record_data     TEXT NOT NULL,
                wizard_data     TEXT
            )
        """)
        cur.execute("""
            CREATE INDEX IF NOT EXISTS idx_sessions_updated
            ON sessions (updated_at DESC)
        """)

        conn.commit()
        conn.close()
        logger.info(f"Session store initialized: {self.db_path}")

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------
    def save(
        self,
        session_id: str,
        record: Dict[str, Any],
        wizard: Optional[Dict[str, Any]] = None,
        case_id: Optional[str] = None,
    ) -> None:
        """
        Persist the record of one session, replacing the previous one.

        Args:
            session_id: Session the record belongs to
            record: CaseRecord.to_dict() output
            wizard: WizardSnapshot.to_dict() output
            case_id: Case the session works on, if known
        """
        try:
            record_json = json.dumps(record, default=str)
            wizard_json = json.dumps(wizard, default=str) if wizard is not None else None
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Record for session {session_id} is not serializable: {e}") from e

        try:
            conn = sqlite3.connect(str(self.db_path))
            cur = conn.cursor()
            cur.execute("""
                INSERT OR REPLACE INTO sessions
                    (session_id, case_id, updated_at, record_data, wizard_data)
                VALUES (?, ?, ?, ?, ?)
            """, (
                session_id,
                case_id,
                datetime.now(timezone.utc).isoformat(),
                record_json,
                wizard_json,
            ))
            conn.commit()
            conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to save session {session_id}: {e}") from e

        logger.debug(f"Saved record for session {session_id}")

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------
    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored record dict of a session, or None."""
        row = self._fetch(session_id)
        return json.loads(row[0]) if row else None

    def load_wizard(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Return the last stored wizard snapshot of a session, or None."""
        row = self._fetch(session_id)
        if row and row[1]:
            return json.loads(row[1])
        return None

    def _fetch(self, session_id: str):
        conn = sqlite3.connect(str(self.db_path))
        cur = conn.cursor()
        cur.execute(
            "SELECT record_data, wizard_data FROM sessions WHERE session_id = ?",
            (session_id,),
        )
        row = cur.fetchone()
        conn.close()
        return row

    def list_sessions(self, limit: int = 100) -> List[str]:
        """Session ids, most recently updated first."""
        conn = sqlite3.connect(str(self.db_path))
        cur = conn.cursor()
        cur.execute(
            "SELECT session_id FROM sessions ORDER BY updated_at DESC LIMIT ?",
            (limit,),
        )
        rows = cur.fetchall()
        conn.close()
        return [r[0] for r in rows]

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------
    def delete(self, session_id: str) -> bool:
        """Delete a session. Returns True if a row was removed."""
        conn = sqlite3.connect(str(self.db_path))
        cur = conn.cursor()
        cur.execute("DELETE FROM sessions WHERE session_id = ?", (session_id,))
        deleted = cur.rowcount > 0
        conn.commit()
        conn.close()
        return deleted


class RecordPersister:
    """
    Debounced writer for one session.

    Example:
        persister = RecordPersister(store, "session-1", debounce=1.5)
        persister.schedule(record.to_dict(), snapshot.to_dict())
        ...
        await persister.flush()
    """

    def __init__(
        self,
        store: SessionStore,
        session_id: str,
        debounce: float = 1.5,
        case_id: Optional[str] = None,
    ):
        self.store = store
        self.session_id = session_id
        self.case_id = case_id
        self.debounce = debounce
        self.saves = 0
        self._pending: Optional[tuple] = None
        self._task: Optional[asyncio.Task] = None
        self._writing = False
        self.logger = logging.getLogger(__name__)

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def schedule(self, record: Dict[str, Any], wizard: Optional[Dict[str, Any]] = None) -> None:
        """Remember the latest state; arms the debounce timer if it is idle."""
        self._pending = (record, wizard)
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._delayed_write())

    async def _delayed_write(self):
        await asyncio.sleep(self.debounce)
        self._writing = True
        try:
            await self._write_pending()
        finally:
            self._writing = False

    async def flush(self) -> None:
        """Write the pending state now, if any."""
        if self._task is not None and not self._task.done():
            if self._writing:
                # a save is already running in a thread; let it land
                await self._task
            else:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
        self._task = None
        await self._write_pending()

    async def _write_pending(self) -> None:
        if self._pending is None:
            return
        record, wizard = self._pending
        self._pending = None
        try:
            await asyncio.to_thread(self.store.save, self.session_id, record, wizard, self.case_id)
            self.saves += 1
        except PersistenceError as e:
            # Keep the state so the next flush retries it
            if self._pending is None:
                self._pending = (record, wizard)
            self.logger.error(f"Persisting session {self.session_id} failed: {e}")
