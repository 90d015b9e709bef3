"""SQLite persistence layer for Telegram subscribers."""

from __future__ import annotations

import sqlite3
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from . import config


@dataclass
class Subscriber:
    chat_id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


def _get_connection() -> sqlite3.Connection:
    Path(config.SQLITE_DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(config.SQLITE_DB_PATH)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db() -> None:
    """Create tables if they don't exist."""
    with closing(_get_connection()) as conn, conn:
        conn.execute("""
          CREATE TABLE IF NOT EXISTS subscribers (
            chat_id INTEGER PRIMARY KEY,
            username TEXT,
            first_name TEXT,
            last_name TEXT,
            subscribed_at INTEGER DEFAULT (strftime('%s', 'now')),
            is_active INTEGER DEFAULT 1
          )
        """)
        conn.execute("""
          CREATE TABLE IF NOT EXISTS subscription_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            chat_id INTEGER,
            action TEXT NOT NULL,
            timestamp INTEGER DEFAULT (strftime('%s', 'now')),
            FOREIGN KEY (chat_id) REFERENCES subscribers(chat_id)
          )
        """)


def add_subscriber(subscriber: Subscriber) -> None:
    """Insert or reactivate a subscriber and record the action."""
    with closing(_get_connection()) as conn, conn:
        conn.execute(
            """
            INSERT INTO subscribers (chat_id, username, first_name, last_name, is_active)
            VALUES (?, ?, ?, ?, 1)
            ON CONFLICT(chat_id) DO UPDATE SET
              username   = excluded.username,
              first_name = excluded.first_name,
              last_name  = excluded.last_name,
              is_active  = 1
            """,
            (
                int(subscriber.chat_id),
                subscriber.username or None,
                subscriber.first_name or None,
                subscriber.last_name or None,
            ),
        )
        conn.execute(
            "INSERT INTO subscription_history (chat_id, action) VALUES (?, 'subscribe')",
            (int(subscriber.chat_id),),
        )


def deactivate_subscriber(chat_id: int) -> bool:
    """Deactivate a subscriber. Returns True if they were active."""
    with closing(_get_connection()) as conn, conn:
        cur = conn.execute(
            "UPDATE subscribers SET is_active = 0 WHERE chat_id = ? AND is_active = 1",
            (int(chat_id),),
        )
        if cur.rowcount > 0:
            conn.execute(
                "INSERT INTO subscription_history (chat_id, action) VALUES (?, 'unsubscribe')",
                (int(chat_id),),
            )
            return True
        return False


def get_active_subscribers() -> List[Subscriber]:
    with closing(_get_connection()) as conn:
        cur = conn.execute(
            "SELECT chat_id, username, first_name, last_name FROM subscribers "
            "WHERE is_active = 1 ORDER BY subscribed_at, chat_id"
        )
        return [
            Subscriber(chat_id=int(r[0]), username=r[1], first_name=r[2], last_name=r[3])
            for r in cur.fetchall()
        ]


def is_subscribed(chat_id: int) -> bool:
    with closing(_get_connection()) as conn:
        cur = conn.execute(
            "SELECT is_active FROM subscribers WHERE chat_id = ? LIMIT 1",
            (int(chat_id),),
        )
        row = cur.fetchone()
        return row is not None and row[0] == 1


def get_statistics() -> Dict[str, int]:
    """Return active/inactive/total subscriber counts."""
    with closing(_get_connection()) as conn:
        cur = conn.execute("""
            SELECT
              COUNT(CASE WHEN is_active = 1 THEN 1 END),
              COUNT(CASE WHEN is_active = 0 THEN 1 END),
              COUNT(*)
            FROM subscribers
        """)
        active, inactive, total = cur.fetchone()
        return {"active": int(active), "inactive": int(inactive), "total": int(total)}


__all__ = [
    "Subscriber",
    "init_db",
    "add_subscriber",
    "deactivate_subscriber",
    "get_active_subscribers",
    "is_subscribed",
    "get_statistics",
]
