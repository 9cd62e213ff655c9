# convo/memory/db.py

import sqlite3
from pathlib import Path
from typing import Union


def get_connection(db_path: Union[str, Path]) -> sqlite3.Connection:
    """
    Return a SQLite connection.
    Uses Row factory to allow dict-like access.
    Caller is responsible for closing.
    """
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: Union[str, Path]) -> None:
    """
    Initialize the database schema if it does not exist.
    Safe to call multiple times.
    """
    conn = get_connection(db_path)
    cur = conn.cursor()

    # sessions: one row per conversation thread; summary fields are denormalized
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            name TEXT NOT NULL,
            last_message TEXT,
            message_count INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )

    # messages: user and assistant turns, ordered by timestamp then rowid
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS messages (
            id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            role TEXT NOT NULL,            -- 'user' or 'assistant'
            content TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            FOREIGN KEY (session_id) REFERENCES sessions (id)
        )
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_messages_session ON messages (session_id, timestamp)"
    )

    # shared_sessions: read access granted by a session owner to another user
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS shared_sessions (
            session_id TEXT NOT NULL,
            shared_with TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            PRIMARY KEY (session_id, shared_with),
            FOREIGN KEY (session_id) REFERENCES sessions (id)
        )
        """
    )

    # profiles: one row per user; list fields are stored as JSON arrays
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS profiles (
            owner_id TEXT PRIMARY KEY,
            name TEXT NOT NULL DEFAULT '',
            location TEXT NOT NULL DEFAULT '',
            tone TEXT NOT NULL DEFAULT '',
            projects TEXT NOT NULL DEFAULT '[]',
            facts TEXT NOT NULL DEFAULT '[]',
            context TEXT NOT NULL DEFAULT '',
            updated_at TEXT NOT NULL
        )
        """
    )

    # preferences: small per-user key/value pairs (active session, selected model)
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS preferences (
            owner_id TEXT NOT NULL,
            key TEXT NOT NULL,
            value TEXT NOT NULL,
            PRIMARY KEY (owner_id, key)
        )
        """
    )

    conn.commit()
    conn.close()
