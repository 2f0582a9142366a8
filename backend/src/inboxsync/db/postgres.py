"""PostgreSQL client backing the inbox."""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import asyncpg

from inbox_models import (
    AttachmentRow,
    Contact,
    Creator,
    Direction,
    Message,
    TeamMember,
    Thread,
    ThreadNote,
    ThreadPreviewRow,
)
from inboxsync.config import settings
from inboxsync.errors import BackendError

logger = logging.getLogger(__name__)

# Postgres caps NOTIFY payloads just under 8000 bytes
NOTIFY_PAYLOAD_LIMIT = 7900


def schema_sql(channel: str) -> str:
    """SQL schema for inbox tables, procedures and change-feed triggers."""
    return f"""
-- Creators (managed accounts)
CREATE TABLE IF NOT EXISTS clients (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL,
    phone TEXT
);

-- Dashboard operators
CREATE TABLE IF NOT EXISTS team_members (
    id TEXT PRIMARY KEY,
    full_name TEXT NOT NULL
);

-- Named phone numbers
CREATE TABLE IF NOT EXISTS contacts (
    id BIGSERIAL PRIMARY KEY,
    phone_number TEXT NOT NULL UNIQUE,
    name TEXT
);

-- Conversation threads
CREATE TABLE IF NOT EXISTS threads (
    id BIGSERIAL PRIMARY KEY,
    group_id TEXT NOT NULL UNIQUE,
    name TEXT,
    client_id TEXT REFERENCES clients(id),
    participants TEXT[] DEFAULT '{{}}',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    last_read_at TIMESTAMPTZ
);

-- Messages
CREATE TABLE IF NOT EXISTS messages (
    id BIGSERIAL PRIMARY KEY,
    message_id TEXT NOT NULL UNIQUE,
    thread_id BIGINT NOT NULL REFERENCES threads(id),
    message_type TEXT NOT NULL DEFAULT 'text',
    direction TEXT NOT NULL,
    text TEXT,
    speech_text TEXT,
    sender_phone_number TEXT,
    sender_name TEXT,
    reaction TEXT,
    reaction_event TEXT,
    sent_by_team_member_id TEXT REFERENCES team_members(id),
    client_ref TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_messages_thread_created ON messages(thread_id, created_at DESC);

-- Message attachments
CREATE TABLE IF NOT EXISTS attachments (
    id BIGSERIAL PRIMARY KEY,
    message_id BIGINT NOT NULL REFERENCES messages(id),
    url TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_attachments_message ON attachments(message_id);

-- AI-extracted notes
CREATE TABLE IF NOT EXISTS thread_notes (
    id TEXT PRIMARY KEY,
    thread_id BIGINT NOT NULL REFERENCES threads(id),
    content TEXT NOT NULL,
    source_message TEXT NOT NULL,
    message_id TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_thread_notes_thread ON thread_notes(thread_id);

-- Threads with their latest message in one round trip
CREATE OR REPLACE FUNCTION get_threads_with_latest_messages(p_limit INT, p_offset INT)
RETURNS TABLE (
    thread_id BIGINT,
    group_id TEXT,
    thread_name TEXT,
    client_id TEXT,
    participants TEXT[],
    thread_created_at TIMESTAMPTZ,
    thread_updated_at TIMESTAMPTZ,
    last_read_at TIMESTAMPTZ,
    latest_message_text TEXT,
    latest_message_speech_text TEXT,
    latest_message_created_at TIMESTAMPTZ,
    latest_message_sender_name TEXT,
    latest_message_sender_phone TEXT
) AS $$
    SELECT t.id, t.group_id, t.name, t.client_id, t.participants,
           t.created_at, t.updated_at, t.last_read_at,
           lm.text, lm.speech_text, lm.created_at, lm.sender_name, lm.sender_phone_number
    FROM threads t
    LEFT JOIN LATERAL (
        SELECT m.text, m.speech_text, m.created_at, m.sender_name, m.sender_phone_number
        FROM messages m
        WHERE m.thread_id = t.id
        ORDER BY m.created_at DESC
        LIMIT 1
    ) lm ON TRUE
    ORDER BY COALESCE(lm.created_at, t.updated_at) DESC
    LIMIT p_limit OFFSET p_offset
$$ LANGUAGE sql STABLE;

CREATE OR REPLACE FUNCTION mark_thread_as_read(thread_id_param BIGINT)
RETURNS VOID AS $$
    UPDATE threads SET last_read_at = NOW() WHERE id = thread_id_param
$$ LANGUAGE sql;

-- Change feed
CREATE OR REPLACE FUNCTION notify_inbox_change() RETURNS trigger AS $$
DECLARE
    payload TEXT;
BEGIN
    payload := json_build_object(
        'table', TG_TABLE_NAME,
        'type', TG_OP,
        'new', CASE WHEN TG_OP = 'DELETE' THEN NULL ELSE row_to_json(NEW) END,
        'old', CASE WHEN TG_OP = 'INSERT' THEN NULL ELSE row_to_json(OLD) END
    )::text;
    -- NOTIFY rejects payloads of 8000 bytes or more; send keys only and let
    -- listeners fetch the row
    IF octet_length(payload) >= {NOTIFY_PAYLOAD_LIMIT} THEN
        payload := json_build_object(
            'table', TG_TABLE_NAME,
            'type', TG_OP,
            'truncated', TRUE,
            'new', CASE WHEN TG_OP = 'DELETE' THEN NULL ELSE json_build_object(
                'id', to_jsonb(NEW)->'id',
                'thread_id', to_jsonb(NEW)->'thread_id'
            ) END,
            'old', CASE WHEN TG_OP = 'INSERT' THEN NULL ELSE json_build_object(
                'id', to_jsonb(OLD)->'id',
                'thread_id', to_jsonb(OLD)->'thread_id'
            ) END
        )::text;
    END IF;
    PERFORM pg_notify('{channel}', payload);
    RETURN NULL;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS threads_change_feed ON threads;
CREATE TRIGGER threads_change_feed AFTER INSERT OR UPDATE OR DELETE ON threads
    FOR EACH ROW EXECUTE FUNCTION notify_inbox_change();

DROP TRIGGER IF EXISTS messages_change_feed ON messages;
CREATE TRIGGER messages_change_feed AFTER INSERT ON messages
    FOR EACH ROW EXECUTE FUNCTION notify_inbox_change();
"""


MESSAGE_COLUMNS = """
    m.id, m.message_id, m.thread_id, m.message_type, m.direction, m.text,
    m.speech_text, m.sender_phone_number, m.sender_name, m.reaction,
    m.reaction_event, m.sent_by_team_member_id, m.client_ref, m.created_at,
    tm.full_name AS team_member_name
"""


def _like_pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class Database:
    """PostgreSQL database client for the inbox tables."""

    def __init__(self, database_url: str | None = None):
        self._database_url = database_url
        self._pool: asyncpg.Pool | None = None

    @property
    def database_url(self) -> str:
        return self._database_url or settings.database_url

    async def connect(self):
        """Create connection pool."""
        self._pool = await asyncpg.create_pool(
            self.database_url,
            min_size=2,
            max_size=10,
        )
        logger.info("Connected to PostgreSQL")

    async def disconnect(self):
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self):
        """Get a connection from the pool, translating driver errors."""
        if not self._pool:
            raise BackendError("Database not connected")
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise BackendError(str(e)) from e

    async def ensure_tables_exist(self):
        """Create tables, procedures and triggers if they don't exist."""
        async with self.connection() as conn:
            await conn.execute(schema_sql(settings.realtime_channel))

    # ============= Thread Operations =============

    async def get_threads_with_latest_messages(
        self, offset: int, limit: int
    ) -> list[ThreadPreviewRow]:
        """Threads with their latest message preview, most recent activity first."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM get_threads_with_latest_messages($1, $2)",
                limit,
                offset,
            )
        return [ThreadPreviewRow(**dict(row)) for row in rows]

    async def list_threads(self, offset: int, limit: int) -> list[Thread]:
        """Plain thread fetch without previews."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT id, group_id, name, client_id, participants,
                       created_at, updated_at, last_read_at
                FROM threads
                ORDER BY updated_at DESC
                LIMIT $1 OFFSET $2
                """,
                limit,
                offset,
            )
        return [self._row_to_thread(row) for row in rows]

    async def get_thread(self, thread_id: int) -> Thread | None:
        async with self.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM threads WHERE id = $1", thread_id)
        if not row:
            return None
        return self._row_to_thread(row)

    async def get_or_create_thread(
        self, group_id: str, participants: list[str] | None = None
    ) -> Thread:
        """Resolve a thread by external group ID, creating it on first contact."""
        async with self.connection() as conn:
            # DO NOTHING leaves existing rows untouched so no change event fires
            row = await conn.fetchrow(
                """
                INSERT INTO threads (group_id, participants)
                VALUES ($1, $2)
                ON CONFLICT (group_id) DO NOTHING
                RETURNING *
                """,
                group_id,
                participants or [],
            )
            if not row:
                row = await conn.fetchrow("SELECT * FROM threads WHERE group_id = $1", group_id)
        return self._row_to_thread(row)

    async def mark_thread_as_read(self, thread_id: int) -> None:
        async with self.connection() as conn:
            await conn.execute("SELECT mark_thread_as_read($1)", thread_id)

    def _row_to_thread(self, row: asyncpg.Record) -> Thread:
        return Thread(
            id=row["id"],
            group_id=row["group_id"],
            name=row["name"],
            client_id=row["client_id"],
            participants=list(row["participants"]) if row["participants"] else [],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            last_read_at=row["last_read_at"],
        )

    # ============= Message Operations =============

    async def get_messages(self, thread_id: int, offset: int, limit: int) -> list[Message]:
        """One page of a thread's messages, newest first."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {MESSAGE_COLUMNS}
                FROM messages m
                LEFT JOIN team_members tm ON tm.id = m.sent_by_team_member_id
                WHERE m.thread_id = $1
                ORDER BY m.created_at DESC
                LIMIT $2 OFFSET $3
                """,
                thread_id,
                limit,
                offset,
            )
        return [self._row_to_message(row) for row in rows]

    async def get_message(self, id: int) -> Message | None:
        """A single message by row id."""
        async with self.connection() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {MESSAGE_COLUMNS}
                FROM messages m
                LEFT JOIN team_members tm ON tm.id = m.sent_by_team_member_id
                WHERE m.id = $1
                """,
                id,
            )
        if not row:
            return None
        return self._row_to_message(row)

    async def get_all_messages(self, thread_id: int) -> list[Message]:
        """A thread's full history, oldest first."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {MESSAGE_COLUMNS}
                FROM messages m
                LEFT JOIN team_members tm ON tm.id = m.sent_by_team_member_id
                WHERE m.thread_id = $1
                ORDER BY m.created_at ASC
                """,
                thread_id,
            )
        return [self._row_to_message(row) for row in rows]

    async def search_messages(self, thread_id: int, query: str) -> list[Message]:
        """Case-insensitive substring match over text and speech text, oldest first."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {MESSAGE_COLUMNS}
                FROM messages m
                LEFT JOIN team_members tm ON tm.id = m.sent_by_team_member_id
                WHERE m.thread_id = $1
                  AND (m.text ILIKE $2 OR m.speech_text ILIKE $2)
                ORDER BY m.created_at ASC
                """,
                thread_id,
                _like_pattern(query),
            )
        return [self._row_to_message(row) for row in rows]

    async def get_attachments(self, message_ids: list[int]) -> list[AttachmentRow]:
        """Attachments for a batch of messages in a single query."""
        if not message_ids:
            return []
        async with self.connection() as conn:
            rows = await conn.fetch(
                "SELECT id, message_id, url FROM attachments WHERE message_id = ANY($1::bigint[])",
                message_ids,
            )
        return [AttachmentRow(id=row["id"], message_id=row["message_id"], url=row["url"]) for row in rows]

    async def insert_message(
        self,
        thread_id: int,
        message_id: str,
        direction: Direction,
        text: str | None,
        speech_text: str | None = None,
        sender_phone_number: str | None = None,
        sender_name: str | None = None,
        message_type: str = "text",
        sent_by_team_member_id: str | None = None,
        client_ref: str | None = None,
        attachment_urls: list[str] | None = None,
    ) -> Message | None:
        """Insert a message once; returns None if message_id was already stored."""
        async with self.connection() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    INSERT INTO messages
                    (message_id, thread_id, message_type, direction, text, speech_text,
                     sender_phone_number, sender_name, sent_by_team_member_id, client_ref, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                    ON CONFLICT (message_id) DO NOTHING
                    RETURNING id
                    """,
                    message_id,
                    thread_id,
                    message_type,
                    direction.value,
                    text,
                    speech_text,
                    sender_phone_number,
                    sender_name,
                    sent_by_team_member_id,
                    client_ref,
                    datetime.now(timezone.utc),
                )
                if not row:
                    return None
                for url in attachment_urls or []:
                    await conn.execute(
                        "INSERT INTO attachments (message_id, url) VALUES ($1, $2)",
                        row["id"],
                        url,
                    )
                stored = await conn.fetchrow(
                    f"""
                    SELECT {MESSAGE_COLUMNS}
                    FROM messages m
                    LEFT JOIN team_members tm ON tm.id = m.sent_by_team_member_id
                    WHERE m.id = $1
                    """,
                    row["id"],
                )
        return self._row_to_message(stored)

    def _row_to_message(self, row: asyncpg.Record) -> Message:
        return Message(
            id=row["id"],
            message_id=row["message_id"],
            thread_id=row["thread_id"],
            message_type=row["message_type"],
            direction=Direction(row["direction"]),
            text=row["text"],
            speech_text=row["speech_text"],
            sender_phone_number=row["sender_phone_number"],
            sender_name=row["sender_name"],
            reaction=row["reaction"],
            reaction_event=row["reaction_event"],
            created_at=row["created_at"],
            sent_by_team_member_id=row["sent_by_team_member_id"],
            sent_by_team_member=(
                TeamMember(id=row["sent_by_team_member_id"], full_name=row["team_member_name"])
                if row["team_member_name"]
                else None
            ),
            client_ref=row["client_ref"],
            attachments=[],
        )

    # ============= Note Operations =============

    async def get_note_anchors(self, thread_id: int) -> set[str]:
        """message_ids of segments that already produced notes."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT DISTINCT message_id FROM thread_notes
                WHERE thread_id = $1 AND message_id IS NOT NULL
                """,
                thread_id,
            )
        return {row["message_id"] for row in rows}

    async def list_notes(self, thread_id: int) -> list[ThreadNote]:
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM thread_notes
                WHERE thread_id = $1
                ORDER BY created_at DESC
                """,
                thread_id,
            )
        return [self._row_to_note(row) for row in rows]

    async def create_note(
        self,
        thread_id: int,
        content: str,
        source_message: str,
        message_id: str | None,
    ) -> ThreadNote:
        note = ThreadNote(
            id=str(uuid.uuid4()),
            thread_id=thread_id,
            content=content,
            source_message=source_message,
            message_id=message_id,
            created_at=datetime.now(timezone.utc),
        )
        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO thread_notes (id, thread_id, content, source_message, message_id, created_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                note.id,
                note.thread_id,
                note.content,
                note.source_message,
                note.message_id,
                note.created_at,
            )
        return note

    def _row_to_note(self, row: asyncpg.Record) -> ThreadNote:
        return ThreadNote(
            id=row["id"],
            thread_id=row["thread_id"],
            content=row["content"],
            source_message=row["source_message"],
            message_id=row["message_id"],
            created_at=row["created_at"],
        )

    # ============= Directory Operations =============

    async def get_creator(self, client_id: str) -> Creator | None:
        async with self.connection() as conn:
            row = await conn.fetchrow(
                "SELECT id, username, phone FROM clients WHERE id = $1", client_id
            )
        if not row:
            return None
        return Creator(id=row["id"], username=row["username"], phone=row["phone"])

    async def list_contacts(self) -> list[Contact]:
        async with self.connection() as conn:
            rows = await conn.fetch("SELECT id, phone_number, name FROM contacts")
        return [
            Contact(id=row["id"], phone_number=row["phone_number"], name=row["name"])
            for row in rows
        ]
