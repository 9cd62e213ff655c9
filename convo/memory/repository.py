# convo/memory/repository.py
"""
SQLite-backed stores consumed by the conversation orchestrator.

Every store is bound to one owner (the signed-in user) and opens a short-lived
connection per call. Session summary fields (last_message, message_count) are
never incremented: they are recomputed from the messages table inside the same
transaction as every message insert or delete.
"""

import json
import sqlite3
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from convo.memory.db import get_connection, init_db
from convo.memory.models import ROLES, Message, Session, UserMemory, now_iso
from convo.utils.logging import get_logger

logger = get_logger(__name__)

SHARED_PREFIX = "Shared: "


def initialize(db_path: Union[str, Path]) -> None:
    """
    Initialize DB schema. Call once at startup.
    """
    init_db(db_path)


def _new_id() -> str:
    return uuid.uuid4().hex


def _row_to_session(row: sqlite3.Row, shared: bool = False) -> Session:
    name = row["name"]
    if shared:
        name = f"{SHARED_PREFIX}{name}"
    return Session(
        id=row["id"],
        owner_id=row["owner_id"],
        name=name,
        last_message=row["last_message"],
        message_count=row["message_count"] or 0,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        shared=shared,
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        session_id=row["session_id"],
        role=row["role"],
        content=row["content"],
        timestamp=row["timestamp"],
    )


def _sync_session_summary(cur: sqlite3.Cursor, session_id: str) -> None:
    """
    Recompute message_count and last_message from the messages table.
    """
    cur.execute("SELECT COUNT(*) FROM messages WHERE session_id = ?", (session_id,))
    count = cur.fetchone()[0]

    cur.execute(
        """
        SELECT content FROM messages
        WHERE session_id = ?
        ORDER BY timestamp DESC, rowid DESC
        LIMIT 1
        """,
        (session_id,),
    )
    last = cur.fetchone()

    cur.execute(
        """
        UPDATE sessions
        SET last_message = ?, message_count = ?, updated_at = ?
        WHERE id = ?
        """,
        (last["content"] if last else None, count, now_iso(), session_id),
    )


class _OwnedStore:
    def __init__(self, db_path: Union[str, Path], owner_id: str) -> None:
        if not owner_id:
            raise ValueError("owner_id must not be empty")
        self.db_path = str(db_path)
        self.owner_id = owner_id

    def _can_access(self, cur: sqlite3.Cursor, session_id: str) -> bool:
        cur.execute(
            """
            SELECT 1 FROM sessions s
            WHERE s.id = ?
              AND (
                s.owner_id = ?
                OR EXISTS (
                    SELECT 1 FROM shared_sessions sh
                    WHERE sh.session_id = s.id AND sh.shared_with = ? AND sh.is_active = 1
                )
              )
            """,
            (session_id, self.owner_id, self.owner_id),
        )
        return cur.fetchone() is not None


class SessionRepository(_OwnedStore):
    """Session registry for one owner, including sessions shared with them."""

    def create(self, name: str) -> Optional[Session]:
        """
        Insert a new session and return it, or None if the insert failed.
        """
        created_at = now_iso()
        session_id = _new_id()
        try:
            conn = get_connection(self.db_path)
            try:
                conn.execute(
                    """
                    INSERT INTO sessions (id, owner_id, name, last_message, message_count, created_at, updated_at)
                    VALUES (?, ?, ?, NULL, 0, ?, ?)
                    """,
                    (session_id, self.owner_id, name, created_at, created_at),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error("Failed to create session %r for owner=%s: %s", name, self.owner_id, e)
            return None

        logger.info("Session created id=%s owner=%s name=%r", session_id, self.owner_id, name)
        return Session(
            id=session_id,
            owner_id=self.owner_id,
            name=name,
            last_message=None,
            message_count=0,
            created_at=created_at,
            updated_at=created_at,
        )

    def list(self) -> List[Session]:
        """
        Own sessions plus active shares, most recently updated first.
        """
        conn = get_connection(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM sessions WHERE owner_id = ?",
                (self.owner_id,),
            )
            sessions = [_row_to_session(row) for row in cur.fetchall()]

            cur.execute(
                """
                SELECT s.* FROM sessions s
                JOIN shared_sessions sh ON sh.session_id = s.id
                WHERE sh.shared_with = ? AND sh.is_active = 1 AND s.owner_id != ?
                """,
                (self.owner_id, self.owner_id),
            )
            sessions.extend(_row_to_session(row, shared=True) for row in cur.fetchall())
        finally:
            conn.close()

        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return sessions

    def get(self, session_id: str) -> Optional[Session]:
        conn = get_connection(self.db_path)
        try:
            cur = conn.cursor()
            if not self._can_access(cur, session_id):
                return None
            cur.execute("SELECT * FROM sessions WHERE id = ?", (session_id,))
            row = cur.fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return _row_to_session(row, shared=row["owner_id"] != self.owner_id)

    def share(self, session_id: str, with_owner_id: str) -> bool:
        """
        Grant another user access to one of this owner's sessions.
        Returns False if the session is not owned by this owner.
        """
        with_owner_id = (with_owner_id or "").strip()
        if not with_owner_id or with_owner_id == self.owner_id:
            return False

        conn = get_connection(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT 1 FROM sessions WHERE id = ? AND owner_id = ?",
                (session_id, self.owner_id),
            )
            if cur.fetchone() is None:
                logger.warning("Share refused: session=%s not owned by owner=%s", session_id, self.owner_id)
                return False
            cur.execute(
                """
                INSERT INTO shared_sessions (session_id, shared_with, is_active, created_at)
                VALUES (?, ?, 1, ?)
                ON CONFLICT (session_id, shared_with) DO UPDATE SET is_active = 1
                """,
                (session_id, with_owner_id, now_iso()),
            )
            conn.commit()
        finally:
            conn.close()

        logger.info("Session %s shared by owner=%s with %s", session_id, self.owner_id, with_owner_id)
        return True


class MessageRepository(_OwnedStore):
    """Ordered message log, keyed by session."""

    def save(self, session_id: str, role: str, content: str) -> Optional[Message]:
        """
        Insert a message row, refresh the session summary, and return the message.
        Returns None when the session is not accessible or the write fails.
        """
        if role not in ROLES:
            raise ValueError(f"Unsupported message role: {role!r}")

        message_id = _new_id()
        timestamp = now_iso()
        try:
            conn = get_connection(self.db_path)
            try:
                cur = conn.cursor()
                if not self._can_access(cur, session_id):
                    logger.error("Cannot save message: session=%s not accessible to owner=%s",
                                 session_id, self.owner_id)
                    return None
                cur.execute(
                    """
                    INSERT INTO messages (id, session_id, owner_id, role, content, timestamp)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (message_id, session_id, self.owner_id, role, content, timestamp),
                )
                _sync_session_summary(cur, session_id)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error("Failed to save %s message in session=%s: %s", role, session_id, e)
            return None

        logger.info("Message saved id=%s session=%s role=%s len=%d",
                    message_id, session_id, role, len(content))
        return Message(
            id=message_id,
            session_id=session_id,
            role=role,
            content=content,
            timestamp=timestamp,
        )

    def list(self, session_id: str) -> List[Message]:
        """
        All messages of a session in chronological order.
        """
        conn = get_connection(self.db_path)
        try:
            cur = conn.cursor()
            if not self._can_access(cur, session_id):
                return []
            cur.execute(
                """
                SELECT id, session_id, role, content, timestamp
                FROM messages
                WHERE session_id = ?
                ORDER BY timestamp ASC, rowid ASC
                """,
                (session_id,),
            )
            rows = cur.fetchall()
        finally:
            conn.close()

        return [_row_to_message(row) for row in rows]

    def delete(self, message_id: str) -> None:
        """
        Delete a message from any session this owner can access, shared ones
        included. Raises LookupError when there is no such message, and
        sqlite3.Error on storage failure.
        """
        conn = get_connection(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute("SELECT session_id FROM messages WHERE id = ?", (message_id,))
            row = cur.fetchone()
            if row is None or not self._can_access(cur, row["session_id"]):
                raise LookupError(f"Message {message_id} not found for owner {self.owner_id}")
            cur.execute("DELETE FROM messages WHERE id = ?", (message_id,))
            _sync_session_summary(cur, row["session_id"])
            conn.commit()
        finally:
            conn.close()

        logger.info("Message deleted id=%s", message_id)


class ProfileRepository(_OwnedStore):
    """The owner's profile, read as a UserMemory snapshot for prompting."""

    FIELDS = ("name", "location", "tone", "projects", "facts", "context")

    def get(self) -> Dict[str, Any]:
        conn = get_connection(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM profiles WHERE owner_id = ?", (self.owner_id,))
            row = cur.fetchone()
        finally:
            conn.close()

        if row is None:
            return {"name": "", "location": "", "tone": "", "projects": [], "facts": [], "context": ""}
        return {
            "name": row["name"],
            "location": row["location"],
            "tone": row["tone"],
            "projects": json.loads(row["projects"] or "[]"),
            "facts": json.loads(row["facts"] or "[]"),
            "context": row["context"],
        }

    def update(self, **fields: Any) -> Dict[str, Any]:
        unknown = set(fields) - set(self.FIELDS)
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)}")

        profile = self.get()
        for key, value in fields.items():
            if value is None:
                continue
            if key in ("projects", "facts"):
                profile[key] = [str(v).strip() for v in value if str(v).strip()]
            else:
                profile[key] = str(value).strip()

        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO profiles (owner_id, name, location, tone, projects, facts, context, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (owner_id) DO UPDATE SET
                    name = excluded.name,
                    location = excluded.location,
                    tone = excluded.tone,
                    projects = excluded.projects,
                    facts = excluded.facts,
                    context = excluded.context,
                    updated_at = excluded.updated_at
                """,
                (
                    self.owner_id,
                    profile["name"],
                    profile["location"],
                    profile["tone"],
                    json.dumps(profile["projects"]),
                    json.dumps(profile["facts"]),
                    profile["context"],
                    now_iso(),
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return profile

    def snapshot(self) -> UserMemory:
        profile = self.get()
        return UserMemory(
            name=profile["name"],
            location=profile["location"],
            tone=profile["tone"],
            projects=list(profile["projects"]),
            facts=list(profile["facts"]),
            session_context=profile["context"],
        )


class PreferenceRepository(_OwnedStore):
    """Small per-owner key/value settings (remembered session, selected model)."""

    def get(self, key: str) -> Optional[str]:
        conn = get_connection(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT value FROM preferences WHERE owner_id = ? AND key = ?",
                (self.owner_id, key),
            )
            row = cur.fetchone()
        finally:
            conn.close()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO preferences (owner_id, key, value) VALUES (?, ?, ?)
                ON CONFLICT (owner_id, key) DO UPDATE SET value = excluded.value
                """,
                (self.owner_id, key, value),
            )
            conn.commit()
        finally:
            conn.close()
