"""SQLite store for channel conversations, messages and unified groups."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, TypeVar

from ..errors import StoreError
from ..utils.config import CONFIG_DIR
from .records import (
    Attachment,
    ChannelConversation,
    ConversationCategory,
    Message,
    Participant,
    UnifiedConversationGroup,
)

logger = logging.getLogger(__name__)

DB_PATH = CONFIG_DIR / "inbox.db"
SCHEMA_VERSION = 1

# Stay well below SQLITE_MAX_VARIABLE_NUMBER on older builds
MAX_BATCH_VARIABLES = 500

_LIVE = "c.is_archived = 0 AND c.date_deleted IS NULL"

T = TypeVar("T")

InvalidationListener = Callable[[ConversationCategory, int], None]


def _chunks(items: Sequence[T], size: int = MAX_BATCH_VARIABLES) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _placeholders(count: int) -> str:
    return ", ".join("?" * count)


def _unique(items: Iterable[T]) -> list[T]:
    return list(dict.fromkeys(items))


class ConversationStore(Protocol):
    """Read side of the store used by the conversation list."""

    def get_groups_page(self, limit: int, offset: int) -> list[UnifiedConversationGroup]: ...

    def get_chats_page(
        self, category: ConversationCategory, limit: int, offset: int
    ) -> list[ChannelConversation]: ...

    def count(self, category: ConversationCategory) -> int: ...

    def get_chats(self, guids: Sequence[str]) -> dict[str, ChannelConversation]: ...

    def get_group_members(self, group_ids: Sequence[int]) -> dict[int, list[str]]: ...

    def get_latest_messages(self, chat_guids: Sequence[str]) -> dict[str, Message]: ...

    def get_messages(self, guids: Sequence[str]) -> dict[str, Message]: ...

    def get_participants(self, chat_guids: Sequence[str]) -> dict[str, list[Participant]]: ...

    def get_attachments(self, message_guids: Sequence[str]) -> dict[str, list[Attachment]]: ...

    def add_listener(self, listener: InvalidationListener) -> Callable[[], None]: ...


class SQLiteConversationStore:
    """
    SQLite-backed conversation store.

    One connection is shared between threads and guarded by a lock held
    only for the duration of a single call. Every write bumps the
    invalidation counter of the categories it can affect and notifies
    listeners after the lock is released.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._counters = {category: 0 for category in ConversationCategory}
        self._listeners: list[InvalidationListener] = []
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._session() as conn:
            version = conn.execute("PRAGMA user_version").fetchone()[0]
            if version < SCHEMA_VERSION:
                self._create_schema(conn)
                conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database tables."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS chats (
                guid TEXT PRIMARY KEY,
                chat_identifier TEXT,
                display_name TEXT,
                is_group INTEGER DEFAULT 0,
                last_message_date INTEGER,
                unread_count INTEGER DEFAULT 0,
                is_pinned INTEGER DEFAULT 0,
                is_muted INTEGER DEFAULT 0,
                is_archived INTEGER DEFAULT 0,
                date_deleted INTEGER,
                draft_text TEXT,
                snooze_until INTEGER,
                avatar_path TEXT,
                grouping_checked INTEGER DEFAULT 0,
                updated_at INTEGER DEFAULT (strftime('%s', 'now'))
            );

            CREATE INDEX IF NOT EXISTS idx_chats_last_message_date
                ON chats(last_message_date DESC);

            CREATE TABLE IF NOT EXISTS handles (
                id INTEGER PRIMARY KEY,
                address TEXT NOT NULL,
                cached_display_name TEXT,
                cached_avatar_path TEXT,
                inferred_name TEXT,
                is_self INTEGER DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS chat_handles (
                chat_guid TEXT NOT NULL REFERENCES chats(guid) ON DELETE CASCADE,
                handle_id INTEGER NOT NULL REFERENCES handles(id) ON DELETE CASCADE,
                PRIMARY KEY (chat_guid, handle_id)
            );

            CREATE TABLE IF NOT EXISTS messages (
                guid TEXT PRIMARY KEY,
                chat_guid TEXT NOT NULL REFERENCES chats(guid) ON DELETE CASCADE,
                handle_id INTEGER,
                text TEXT,
                date_created INTEGER NOT NULL,
                is_from_me INTEGER DEFAULT 0,
                has_attachments INTEGER DEFAULT 0,
                associated_message_guid TEXT,
                associated_message_type INTEGER,
                item_type INTEGER DEFAULT 0,
                group_action_type INTEGER DEFAULT 0,
                group_title TEXT,
                date_deleted INTEGER,
                date_delivered INTEGER,
                date_read INTEGER,
                error INTEGER DEFAULT 0,
                balloon_bundle_id TEXT,
                expressive_send_style_id TEXT,
                updated_at INTEGER DEFAULT (strftime('%s', 'now'))
            );

            CREATE INDEX IF NOT EXISTS idx_messages_chat_date
                ON messages(chat_guid, date_created DESC);
            CREATE INDEX IF NOT EXISTS idx_messages_handle
                ON messages(handle_id, chat_guid);

            CREATE TABLE IF NOT EXISTS attachments (
                guid TEXT PRIMARY KEY,
                message_guid TEXT NOT NULL REFERENCES messages(guid) ON DELETE CASCADE,
                mime_type TEXT,
                uti TEXT,
                transfer_name TEXT,
                total_bytes INTEGER DEFAULT 0,
                is_sticker INTEGER DEFAULT 0,
                has_live_photo INTEGER DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_attachments_message
                ON attachments(message_guid);

            -- Unified groups only hold explicit overrides
            CREATE TABLE IF NOT EXISTS unified_groups (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                canonical_key TEXT NOT NULL UNIQUE,
                primary_chat_guid TEXT NOT NULL,
                display_name TEXT,
                avatar_path TEXT,
                unread_override INTEGER,
                is_pinned INTEGER DEFAULT 0,
                is_muted INTEGER DEFAULT 0,
                snooze_until INTEGER,
                category TEXT
            );

            -- A chat belongs to at most one group
            CREATE TABLE IF NOT EXISTS unified_group_members (
                group_id INTEGER NOT NULL REFERENCES unified_groups(id) ON DELETE CASCADE,
                chat_guid TEXT NOT NULL UNIQUE REFERENCES chats(guid) ON DELETE CASCADE,
                PRIMARY KEY (group_id, chat_guid)
            );

            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at INTEGER DEFAULT (strftime('%s', 'now'))
            );
        """)

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Hold the connection lock for one unit of work and commit it."""
        with self._lock:
            conn = self._get_conn()
            try:
                yield conn
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(f"Store query failed: {e}") from e
            except BaseException:
                conn.rollback()
                raise
            conn.commit()

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    # Invalidation

    def add_listener(self, listener: InvalidationListener) -> Callable[[], None]:
        """Register a callback for category invalidations. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    @property
    def invalidation_counters(self) -> dict[ConversationCategory, int]:
        with self._lock:
            return dict(self._counters)

    def _invalidate(self, categories: Iterable[ConversationCategory]) -> None:
        with self._lock:
            bumped = []
            for category in set(categories):
                self._counters[category] += 1
                bumped.append((category, self._counters[category]))
        for category, value in bumped:
            for listener in list(self._listeners):
                listener(category, value)

    # Chat writes

    def save_chats(self, chats: Iterable[ChannelConversation]) -> None:
        """Insert or update channel conversations, keeping group membership."""
        chats = list(chats)
        if not chats:
            return
        now = int(datetime.now().timestamp())
        with self._session() as conn:
            for chat in chats:
                conn.execute("""
                    INSERT INTO chats
                    (guid, chat_identifier, display_name, is_group, last_message_date,
                     unread_count, is_pinned, is_muted, is_archived, date_deleted,
                     draft_text, snooze_until, avatar_path, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(guid) DO UPDATE SET
                        chat_identifier = excluded.chat_identifier,
                        display_name = excluded.display_name,
                        is_group = excluded.is_group,
                        last_message_date = MAX(
                            COALESCE(chats.last_message_date, 0),
                            COALESCE(excluded.last_message_date, 0)
                        ),
                        unread_count = excluded.unread_count,
                        is_pinned = excluded.is_pinned,
                        is_muted = excluded.is_muted,
                        is_archived = excluded.is_archived,
                        date_deleted = excluded.date_deleted,
                        draft_text = excluded.draft_text,
                        snooze_until = excluded.snooze_until,
                        avatar_path = excluded.avatar_path,
                        updated_at = excluded.updated_at
                """, (
                    chat.guid,
                    chat.chat_identifier,
                    chat.display_name,
                    1 if chat.is_group else 0,
                    chat.last_message_date,
                    chat.unread_count,
                    1 if chat.is_pinned else 0,
                    1 if chat.is_muted else 0,
                    1 if chat.is_archived else 0,
                    chat.date_deleted,
                    chat.draft_text,
                    chat.snooze_until,
                    chat.avatar_path,
                    now,
                ))
        self._invalidate(self._categories_for(chats))

    def save_chat(self, chat: ChannelConversation) -> None:
        """Save or update a single chat."""
        self.save_chats([chat])

    def set_read_status(self, chat_guid: str, is_read: bool) -> None:
        """Clear the unread count, or raise it to at least one."""
        with self._session() as conn:
            conn.execute(
                """
                UPDATE chats
                SET unread_count = CASE WHEN ? THEN 0 ELSE MAX(COALESCE(unread_count, 0), 1) END
                WHERE guid = ?
                """,
                (is_read, chat_guid),
            )
        self._invalidate(ConversationCategory)

    @staticmethod
    def _categories_for(chats: Iterable[ChannelConversation]) -> set[ConversationCategory]:
        categories: set[ConversationCategory] = set()
        for chat in chats:
            if chat.is_group:
                categories.add(ConversationCategory.GROUP_CHATS)
            else:
                categories.add(ConversationCategory.UNIFIED_GROUPS)
                categories.add(ConversationCategory.DIRECT_CHATS)
        return categories

    # Message writes

    def save_messages(self, messages: Iterable[Message]) -> None:
        """Insert or replace messages and advance each chat's last message date."""
        messages = list(messages)
        if not messages:
            return
        with self._session() as conn:
            for msg in messages:
                conn.execute("""
                    INSERT INTO messages
                    (guid, chat_guid, handle_id, text, date_created, is_from_me,
                     has_attachments, associated_message_guid, associated_message_type,
                     item_type, group_action_type, group_title, date_deleted,
                     date_delivered, date_read, error, balloon_bundle_id,
                     expressive_send_style_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(guid) DO UPDATE SET
                        text = excluded.text,
                        has_attachments = excluded.has_attachments,
                        associated_message_guid = excluded.associated_message_guid,
                        associated_message_type = excluded.associated_message_type,
                        date_deleted = excluded.date_deleted,
                        date_delivered = excluded.date_delivered,
                        date_read = excluded.date_read,
                        error = excluded.error
                """, (
                    msg.guid,
                    msg.chat_guid,
                    msg.handle_id,
                    msg.text,
                    msg.date_created,
                    1 if msg.is_from_me else 0,
                    1 if msg.has_attachments else 0,
                    msg.associated_message_guid,
                    msg.associated_message_type,
                    msg.item_type,
                    msg.group_action_type,
                    msg.group_title,
                    msg.date_deleted,
                    msg.date_delivered,
                    msg.date_read,
                    msg.error,
                    msg.balloon_bundle_id,
                    msg.expressive_send_style_id,
                ))
                conn.execute("""
                    UPDATE chats
                    SET last_message_date = MAX(COALESCE(last_message_date, 0), ?)
                    WHERE guid = ?
                """, (msg.date_created, msg.chat_guid))
        self._invalidate(ConversationCategory)

    def save_attachments(self, attachments: Iterable[Attachment]) -> None:
        attachments = list(attachments)
        if not attachments:
            return
        with self._session() as conn:
            conn.executemany("""
                INSERT OR REPLACE INTO attachments
                (guid, message_guid, mime_type, uti, transfer_name, total_bytes,
                 is_sticker, has_live_photo)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, [
                (
                    a.guid,
                    a.message_guid,
                    a.mime_type,
                    a.uti,
                    a.transfer_name,
                    a.total_bytes,
                    1 if a.is_sticker else 0,
                    1 if a.has_live_photo else 0,
                )
                for a in attachments
            ])
        self._invalidate(ConversationCategory)

    def save_participants(self, chat_guid: str, participants: Iterable[Participant]) -> None:
        """Save handles and link them to a chat."""
        participants = list(participants)
        with self._session() as conn:
            for p in participants:
                conn.execute("""
                    INSERT INTO handles
                    (id, address, cached_display_name, cached_avatar_path, inferred_name, is_self)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        address = excluded.address,
                        cached_display_name = COALESCE(
                            excluded.cached_display_name, handles.cached_display_name
                        ),
                        cached_avatar_path = COALESCE(
                            excluded.cached_avatar_path, handles.cached_avatar_path
                        ),
                        inferred_name = COALESCE(excluded.inferred_name, handles.inferred_name),
                        is_self = excluded.is_self
                """, (
                    p.id,
                    p.address,
                    p.cached_display_name,
                    p.cached_avatar_path,
                    p.inferred_name,
                    1 if p.is_self else 0,
                ))
                conn.execute(
                    "INSERT OR IGNORE INTO chat_handles (chat_guid, handle_id) VALUES (?, ?)",
                    (chat_guid, p.id),
                )
        self._invalidate(ConversationCategory)

    # Unified groups

    def find_group_by_key(self, canonical_key: str) -> UnifiedConversationGroup | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM unified_groups WHERE canonical_key = ?", (canonical_key,)
            ).fetchone()
        return self._row_to_group(row) if row else None

    def get_group(self, group_id: int) -> UnifiedConversationGroup | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM unified_groups WHERE id = ?", (group_id,)
            ).fetchone()
        return self._row_to_group(row) if row else None

    def get_group_id_for_chat(self, chat_guid: str) -> int | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT group_id FROM unified_group_members WHERE chat_guid = ?", (chat_guid,)
            ).fetchone()
        return row["group_id"] if row else None

    def create_group(self, canonical_key: str, primary_chat_guid: str) -> int:
        """Create a group with a single member and return its id."""
        with self._session() as conn:
            cursor = conn.execute(
                "INSERT INTO unified_groups (canonical_key, primary_chat_guid) VALUES (?, ?)",
                (canonical_key, primary_chat_guid),
            )
            group_id: int = cursor.lastrowid  # type: ignore[assignment]
            conn.execute(
                "INSERT INTO unified_group_members (group_id, chat_guid) VALUES (?, ?)",
                (group_id, primary_chat_guid),
            )
        self._invalidate([ConversationCategory.UNIFIED_GROUPS, ConversationCategory.DIRECT_CHATS])
        return group_id

    def add_group_member(self, group_id: int, chat_guid: str) -> None:
        with self._session() as conn:
            conn.execute(
                "INSERT INTO unified_group_members (group_id, chat_guid) VALUES (?, ?)",
                (group_id, chat_guid),
            )
        self._invalidate([ConversationCategory.UNIFIED_GROUPS, ConversationCategory.DIRECT_CHATS])

    def set_group_primary(self, group_id: int, chat_guid: str) -> None:
        with self._session() as conn:
            conn.execute(
                "UPDATE unified_groups SET primary_chat_guid = ? WHERE id = ?",
                (chat_guid, group_id),
            )
        self._invalidate([ConversationCategory.UNIFIED_GROUPS])

    def update_group_overrides(self, group: UnifiedConversationGroup) -> None:
        """Persist the explicit overrides carried by a group."""
        with self._session() as conn:
            conn.execute("""
                UPDATE unified_groups
                SET display_name = ?, avatar_path = ?, unread_override = ?,
                    is_pinned = ?, is_muted = ?, snooze_until = ?, category = ?
                WHERE id = ?
            """, (
                group.display_name,
                group.avatar_path,
                group.unread_override,
                1 if group.is_pinned else 0,
                1 if group.is_muted else 0,
                group.snooze_until,
                group.category,
                group.id,
            ))
        self._invalidate([ConversationCategory.UNIFIED_GROUPS])

    def mark_grouping_checked(self, chat_guids: Sequence[str]) -> None:
        with self._session() as conn:
            for chunk in _chunks(list(chat_guids)):
                conn.execute(
                    f"UPDATE chats SET grouping_checked = 1 WHERE guid IN ({_placeholders(len(chunk))})",
                    tuple(chunk),
                )

    def get_unchecked_direct_chats(self, limit: int) -> list[ChannelConversation]:
        """1:1 chats that have not been through group assignment yet."""
        with self._session() as conn:
            rows = conn.execute("""
                SELECT * FROM chats
                WHERE is_group = 0 AND grouping_checked = 0
                ORDER BY guid
                LIMIT ?
            """, (limit,)).fetchall()
        return [self._row_to_chat(row) for row in rows]

    # Paged queries

    def get_groups_page(self, limit: int, offset: int) -> list[UnifiedConversationGroup]:
        """Groups with at least one live member, pinned first, then most recent."""
        with self._session() as conn:
            rows = conn.execute(f"""
                SELECT g.*,
                       CASE WHEN g.is_pinned = 1 OR MAX(c.is_pinned) = 1
                            THEN 1 ELSE 0 END AS sort_pinned,
                       MAX(COALESCE(c.last_message_date, 0)) AS sort_date
                FROM unified_groups g
                JOIN unified_group_members gm ON gm.group_id = g.id
                JOIN chats c ON c.guid = gm.chat_guid
                WHERE {_LIVE}
                GROUP BY g.id
                ORDER BY sort_pinned DESC, sort_date DESC, g.id
                LIMIT ? OFFSET ?
            """, (limit, offset)).fetchall()
        return [self._row_to_group(row) for row in rows]

    def get_chats_page(
        self, category: ConversationCategory, limit: int, offset: int
    ) -> list[ChannelConversation]:
        """Live chats outside any unified group, pinned first, then most recent."""
        is_group = self._is_group_flag(category)
        with self._session() as conn:
            rows = conn.execute(f"""
                SELECT c.* FROM chats c
                WHERE c.is_group = ? AND {_LIVE}
                  AND NOT EXISTS (
                      SELECT 1 FROM unified_group_members gm WHERE gm.chat_guid = c.guid
                  )
                ORDER BY c.is_pinned DESC, COALESCE(c.last_message_date, 0) DESC, c.guid
                LIMIT ? OFFSET ?
            """, (is_group, limit, offset)).fetchall()
        return [self._row_to_chat(row) for row in rows]

    def count(self, category: ConversationCategory) -> int:
        """Number of live entries in a category."""
        with self._session() as conn:
            if category is ConversationCategory.UNIFIED_GROUPS:
                row = conn.execute(f"""
                    SELECT COUNT(DISTINCT g.id) AS count
                    FROM unified_groups g
                    JOIN unified_group_members gm ON gm.group_id = g.id
                    JOIN chats c ON c.guid = gm.chat_guid
                    WHERE {_LIVE}
                """).fetchone()
            else:
                row = conn.execute(f"""
                    SELECT COUNT(*) AS count FROM chats c
                    WHERE c.is_group = ? AND {_LIVE}
                      AND NOT EXISTS (
                          SELECT 1 FROM unified_group_members gm WHERE gm.chat_guid = c.guid
                      )
                """, (self._is_group_flag(category),)).fetchone()
        return row["count"]

    @staticmethod
    def _is_group_flag(category: ConversationCategory) -> int:
        if category is ConversationCategory.GROUP_CHATS:
            return 1
        if category is ConversationCategory.DIRECT_CHATS:
            return 0
        raise ValueError(f"{category.value} is not a chat category")

    # Batched lookups

    def _select_in(
        self, conn: sqlite3.Connection, sql: str, keys: Sequence[Any]
    ) -> list[sqlite3.Row]:
        """Run ``sql`` (containing one ``{ids}`` marker) once per chunk of keys."""
        rows: list[sqlite3.Row] = []
        for chunk in _chunks(_unique(keys)):
            rows.extend(conn.execute(sql.format(ids=_placeholders(len(chunk))), tuple(chunk)))
        return rows

    def get_chats(self, guids: Sequence[str]) -> dict[str, ChannelConversation]:
        with self._session() as conn:
            rows = self._select_in(conn, "SELECT * FROM chats WHERE guid IN ({ids})", guids)
        return {row["guid"]: self._row_to_chat(row) for row in rows}

    def get_chat(self, guid: str) -> ChannelConversation | None:
        """Get a single chat by GUID."""
        return self.get_chats([guid]).get(guid)

    def get_group_members(self, group_ids: Sequence[int]) -> dict[int, list[str]]:
        with self._session() as conn:
            rows = self._select_in(
                conn,
                "SELECT group_id, chat_guid FROM unified_group_members "
                "WHERE group_id IN ({ids}) ORDER BY group_id, chat_guid",
                group_ids,
            )
        members: dict[int, list[str]] = {}
        for row in rows:
            members.setdefault(row["group_id"], []).append(row["chat_guid"])
        return members

    def get_latest_messages(self, chat_guids: Sequence[str]) -> dict[str, Message]:
        """Newest message per chat. Ties on timestamp go to the highest guid."""
        with self._session() as conn:
            rows = self._select_in(conn, """
                SELECT m.* FROM messages m
                JOIN (
                    SELECT chat_guid, MAX(date_created) AS max_date
                    FROM messages
                    WHERE chat_guid IN ({ids})
                    GROUP BY chat_guid
                ) latest
                  ON m.chat_guid = latest.chat_guid AND m.date_created = latest.max_date
                ORDER BY m.chat_guid, m.guid
            """, chat_guids)
        return {row["chat_guid"]: self._row_to_message(row) for row in rows}

    def get_messages(self, guids: Sequence[str]) -> dict[str, Message]:
        with self._session() as conn:
            rows = self._select_in(conn, "SELECT * FROM messages WHERE guid IN ({ids})", guids)
        return {row["guid"]: self._row_to_message(row) for row in rows}

    def get_participants(self, chat_guids: Sequence[str]) -> dict[str, list[Participant]]:
        """Participants per chat, with the date each last sent a message there."""
        with self._session() as conn:
            rows = self._select_in(conn, """
                SELECT ch.chat_guid, h.*,
                       (SELECT MAX(m.date_created) FROM messages m
                        WHERE m.handle_id = h.id AND m.chat_guid = ch.chat_guid
                          AND m.is_from_me = 0) AS last_message_date
                FROM chat_handles ch
                JOIN handles h ON h.id = ch.handle_id
                WHERE ch.chat_guid IN ({ids})
                ORDER BY ch.chat_guid, h.id
            """, chat_guids)
        participants: dict[str, list[Participant]] = {}
        for row in rows:
            participants.setdefault(row["chat_guid"], []).append(self._row_to_participant(row))
        return participants

    def get_attachments(self, message_guids: Sequence[str]) -> dict[str, list[Attachment]]:
        with self._session() as conn:
            rows = self._select_in(
                conn,
                "SELECT * FROM attachments WHERE message_guid IN ({ids}) "
                "ORDER BY message_guid, rowid",
                message_guids,
            )
        attachments: dict[str, list[Attachment]] = {}
        for row in rows:
            attachments.setdefault(row["message_guid"], []).append(self._row_to_attachment(row))
        return attachments

    # Row conversion

    def _row_to_chat(self, row: sqlite3.Row) -> ChannelConversation:
        return ChannelConversation(
            guid=row["guid"],
            chat_identifier=row["chat_identifier"],
            display_name=row["display_name"],
            is_group=bool(row["is_group"]),
            last_message_date=row["last_message_date"] or None,
            unread_count=row["unread_count"] or 0,
            is_pinned=bool(row["is_pinned"]),
            is_muted=bool(row["is_muted"]),
            is_archived=bool(row["is_archived"]),
            date_deleted=row["date_deleted"],
            draft_text=row["draft_text"],
            snooze_until=row["snooze_until"],
            avatar_path=row["avatar_path"],
        )

    def _row_to_group(self, row: sqlite3.Row) -> UnifiedConversationGroup:
        return UnifiedConversationGroup(
            id=row["id"],
            canonical_key=row["canonical_key"],
            primary_chat_guid=row["primary_chat_guid"],
            display_name=row["display_name"],
            avatar_path=row["avatar_path"],
            unread_override=row["unread_override"],
            is_pinned=bool(row["is_pinned"]),
            is_muted=bool(row["is_muted"]),
            snooze_until=row["snooze_until"],
            category=row["category"],
        )

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        return Message(
            guid=row["guid"],
            chat_guid=row["chat_guid"],
            handle_id=row["handle_id"],
            text=row["text"],
            date_created=row["date_created"],
            is_from_me=bool(row["is_from_me"]),
            has_attachments=bool(row["has_attachments"]),
            associated_message_guid=row["associated_message_guid"],
            associated_message_type=row["associated_message_type"],
            item_type=row["item_type"] or 0,
            group_action_type=row["group_action_type"] or 0,
            group_title=row["group_title"],
            date_deleted=row["date_deleted"],
            date_delivered=row["date_delivered"],
            date_read=row["date_read"],
            error=row["error"] or 0,
            balloon_bundle_id=row["balloon_bundle_id"],
            expressive_send_style_id=row["expressive_send_style_id"],
        )

    def _row_to_participant(self, row: sqlite3.Row) -> Participant:
        return Participant(
            id=row["id"],
            address=row["address"],
            cached_display_name=row["cached_display_name"],
            cached_avatar_path=row["cached_avatar_path"],
            inferred_name=row["inferred_name"],
            is_self=bool(row["is_self"]),
            last_message_date=row["last_message_date"],
        )

    def _row_to_attachment(self, row: sqlite3.Row) -> Attachment:
        return Attachment(
            guid=row["guid"],
            message_guid=row["message_guid"],
            mime_type=row["mime_type"],
            uti=row["uti"],
            transfer_name=row["transfer_name"],
            total_bytes=row["total_bytes"] or 0,
            is_sticker=bool(row["is_sticker"]),
            has_live_photo=bool(row["has_live_photo"]),
        )

    # Sync state

    def get_sync_state(self, key: str) -> str | None:
        """Get a sync state value."""
        with self._session() as conn:
            row = conn.execute("SELECT value FROM sync_state WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_sync_state(self, key: str, value: str) -> None:
        """Set a sync state value."""
        now = int(datetime.now().timestamp())
        with self._session() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO sync_state (key, value, updated_at)
                VALUES (?, ?, ?)
            """, (key, value, now))
