"""SQLite persistence for chat history, sessions and settings."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from chatrelay.models.chat import ChatSession, Role, StoredMessage

log = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        reasoning TEXT,
        model_id TEXT,
        chat_id TEXT,
        timestamp TEXT NOT NULL,
        rating INTEGER,
        feedback TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_model ON messages(model_id)",
    """
    CREATE TABLE IF NOT EXISTS chats (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        model_id TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)

_MESSAGE_COLUMNS = (
    "id, role, content, reasoning, model_id, chat_id, timestamp, rating, feedback"
)


class ChatStore:
    """Persists chat messages, sessions and key/value settings to SQLite."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    @property
    def db_path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        """Create the database file and tables. Safe to call on every startup."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            for statement in _SCHEMA:
                await db.execute(statement)
            await db.commit()
        log.info("chat_store.initialized path=%s", self._db_path)

    # ── Messages ──────────────────────────────────────────────────────────

    async def add_message(self, message: StoredMessage) -> StoredMessage:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                f"INSERT INTO messages ({_MESSAGE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    message.id,
                    message.role.value,
                    message.content,
                    message.reasoning,
                    message.model_id,
                    message.chat_id,
                    message.timestamp.isoformat(),
                    message.rating,
                    message.feedback,
                ),
            )
            await db.commit()
        return message

    async def get_messages(self, limit: int | None = None) -> list[StoredMessage]:
        """All messages, oldest first."""
        query = f"SELECT {_MESSAGE_COLUMNS} FROM messages ORDER BY timestamp ASC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def get_messages_by_model(self, model_id: str) -> list[StoredMessage]:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages "
                "WHERE model_id = ? ORDER BY timestamp ASC",
                (model_id,),
            )
            rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def clear_all_messages(self) -> int:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute("DELETE FROM messages")
            await db.commit()
            removed = cursor.rowcount
        log.info("chat_store.messages_cleared removed=%d", removed)
        return removed

    async def clear_messages_by_model(self, model_id: str) -> int:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "DELETE FROM messages WHERE model_id = ?", (model_id,)
            )
            await db.commit()
            removed = cursor.rowcount
        log.info("chat_store.messages_cleared model=%s removed=%d", model_id, removed)
        return removed

    async def update_message_rating(
        self,
        message_id: str,
        rating: int,
        feedback: str | None = None,
    ) -> bool:
        """Attach a rating to a message. Returns False if the id is unknown."""
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "UPDATE messages SET rating = ?, feedback = ? WHERE id = ?",
                (rating, feedback, message_id),
            )
            await db.commit()
            return cursor.rowcount > 0

    # ── Chats ─────────────────────────────────────────────────────────────

    async def get_all_chats(self) -> list[ChatSession]:
        """All chat sessions, newest first."""
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT id, title, model_id, created_at FROM chats "
                "ORDER BY created_at DESC"
            )
            rows = await cursor.fetchall()
        return [
            ChatSession(
                id=row[0],
                title=row[1],
                model_id=row[2],
                created_at=datetime.fromisoformat(row[3]),
            )
            for row in rows
        ]

    async def add_chat(self, chat: ChatSession) -> ChatSession:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT INTO chats (id, title, model_id, created_at) VALUES (?, ?, ?, ?)",
                (chat.id, chat.title, chat.model_id, chat.created_at.isoformat()),
            )
            await db.commit()
        return chat

    async def delete_chat(self, chat_id: str) -> bool:
        """Delete a chat and the messages filed under it."""
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute("DELETE FROM chats WHERE id = ?", (chat_id,))
            deleted = cursor.rowcount > 0
            await db.execute("DELETE FROM messages WHERE chat_id = ?", (chat_id,))
            await db.commit()
        return deleted

    # ── Settings ──────────────────────────────────────────────────────────

    async def get_setting(self, key: str) -> str | None:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            )
            row = await cursor.fetchone()
        return row[0] if row else None

    async def set_setting(self, key: str, value: str) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                """
                INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, datetime.now(UTC).isoformat()),
            )
            await db.commit()

    async def delete_setting(self, key: str) -> bool:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute("DELETE FROM settings WHERE key = ?", (key,))
            await db.commit()
            return cursor.rowcount > 0

    @staticmethod
    def _row_to_message(row: tuple) -> StoredMessage:
        return StoredMessage(
            id=row[0],
            role=Role(row[1]),
            content=row[2],
            reasoning=row[3],
            model_id=row[4],
            chat_id=row[5],
            timestamp=datetime.fromisoformat(row[6]),
            rating=row[7],
            feedback=row[8],
        )
