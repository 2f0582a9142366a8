"""Unit tests for the SQL helpers that need no database."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest

from inboxsync.db.postgres import NOTIFY_PAYLOAD_LIMIT, Database, _like_pattern, schema_sql
from inboxsync.errors import BackendError


class RecordingConnection:
    """Returns queued rows from fetchrow and records each query."""

    def __init__(self, rows):
        self.rows = list(rows)
        self.queries: list[str] = []

    async def fetchrow(self, query, *args):
        self.queries.append(" ".join(query.split()))
        return self.rows.pop(0)


class SingleConnectionPool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


def thread_row(id=3, group_id="group-3"):
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    return {
        "id": id,
        "group_id": group_id,
        "name": None,
        "client_id": None,
        "participants": ["+15550001111"],
        "created_at": now,
        "updated_at": now,
        "last_read_at": None,
    }


def connected(conn) -> Database:
    database = Database("postgresql://localhost/none")
    database._pool = SingleConnectionPool(conn)
    return database


class TestLikePattern:
    def test_wraps_query(self):
        assert _like_pattern("pizza") == "%pizza%"

    def test_escapes_wildcards(self):
        assert _like_pattern("50%_off") == "%50\\%\\_off%"


class TestSchema:
    def test_notifies_configured_channel(self):
        sql = schema_sql("inbox_test")
        assert "pg_notify('inbox_test', payload)" in sql
        assert "CREATE OR REPLACE FUNCTION get_threads_with_latest_messages" in sql
        assert "CREATE OR REPLACE FUNCTION mark_thread_as_read" in sql

    def test_notify_payload_is_bounded(self):
        sql = schema_sql("inbox_test")
        assert NOTIFY_PAYLOAD_LIMIT < 8000
        assert f"IF octet_length(payload) >= {NOTIFY_PAYLOAD_LIMIT} THEN" in sql
        assert "'truncated', TRUE" in sql


class TestDatabase:
    @pytest.mark.asyncio
    async def test_requires_connection(self):
        with pytest.raises(BackendError, match="not connected"):
            await Database("postgresql://localhost/none").list_contacts()

    @pytest.mark.asyncio
    async def test_get_or_create_thread_inserts_new_group(self):
        conn = RecordingConnection([thread_row()])

        thread = await connected(conn).get_or_create_thread("group-3", ["+15550001111"])

        assert thread.id == 3
        assert len(conn.queries) == 1
        assert "ON CONFLICT (group_id) DO NOTHING" in conn.queries[0]

    @pytest.mark.asyncio
    async def test_get_or_create_thread_reads_existing_group_without_writing(self):
        conn = RecordingConnection([None, thread_row()])

        thread = await connected(conn).get_or_create_thread("group-3")

        assert thread.group_id == "group-3"
        assert "DO UPDATE" not in conn.queries[0]
        assert conn.queries[1] == "SELECT * FROM threads WHERE group_id = $1"
