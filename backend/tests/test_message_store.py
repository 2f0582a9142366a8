"""Unit tests for the open-thread message store."""

import asyncio

import pytest
from conftest import make_message, wait_for_call

from inbox_models import AttachmentRow, Direction, TeamMember
from inboxsync.stores.messages import MergeOutcome, MessageStore

SENDER = TeamMember(id="tm-1", full_name="Alex Operator")


def outbound(id, text, minutes, client_ref=None, thread_id=1):
    return make_message(
        id,
        thread_id=thread_id,
        text=text,
        minutes=minutes,
        direction=Direction.OUTBOUND,
        sender="team",
        client_ref=client_ref,
    )


class TestLoadThread:
    """Test paging message history."""

    @pytest.mark.asyncio
    async def test_first_page_is_ascending_with_attachments(self, backend):
        backend.add_messages(*(make_message(i, minutes=i) for i in range(1, 6)))
        backend.attachments.append(AttachmentRow(id=1, message_id=5, url="https://cdn.test/a.jpg"))
        store = MessageStore(backend, page_size=3)

        assert await store.load_thread(1)

        assert [m.id for m in store.messages] == [3, 4, 5]
        assert store.messages[-1].attachments[0].url == "https://cdn.test/a.jpg"
        assert store.has_more
        assert backend.called("get_attachments") == 1

    @pytest.mark.asyncio
    async def test_attachment_failure_is_tolerated(self, backend):
        backend.add_messages(make_message(1))
        backend.failing.add("get_attachments")
        store = MessageStore(backend)

        assert await store.load_thread(1)
        assert [m.id for m in store.messages] == [1]
        assert store.messages[0].attachments == []

    @pytest.mark.asyncio
    async def test_older_pages_prepend_without_duplicates(self, backend):
        backend.add_messages(*(make_message(i, minutes=i) for i in range(1, 8)))
        store = MessageStore(backend, page_size=3)

        await store.load_thread(1)
        await store.load_thread(1, page=1)
        await store.load_thread(1, page=2)

        ids = [m.id for m in store.messages]
        assert ids == [1, 2, 3, 4, 5, 6, 7]
        assert len(set(m.message_id for m in store.messages)) == len(ids)
        assert not store.has_more

    @pytest.mark.asyncio
    async def test_thread_switch_discards_superseded_fetch(self, backend):
        backend.add_messages(make_message(1, thread_id=1), make_message(2, thread_id=2))
        store = MessageStore(backend)
        backend.hold("get_messages")

        first = asyncio.create_task(store.load_thread(1))
        await wait_for_call(backend, "get_messages")
        assert await store.load_thread(2)

        assert await first is False
        assert store.thread_id == 2
        assert [m.id for m in store.messages] == [2]

    @pytest.mark.asyncio
    async def test_reload_keeps_unconfirmed_optimistic_entries(self, backend):
        backend.add_messages(make_message(1, minutes=1))
        store = MessageStore(backend)
        await store.load_thread(1)
        pending = store.send_optimistic(1, "on its way", SENDER, client_ref="ref-1")

        await store.load_thread(1)

        assert [m.message_id for m in store.messages] == ["msg-1", pending.message_id]


class TestAppendIncoming:
    """Test the reconciliation point for realtime messages."""

    @pytest.mark.asyncio
    async def test_merge_is_idempotent(self, backend):
        store = MessageStore(backend)
        await store.load_thread(1)
        message = make_message(10, minutes=1)

        assert store.append_incoming(message) == MergeOutcome.APPENDED
        assert store.append_incoming(message) == MergeOutcome.DUPLICATE
        assert len(store.messages) == 1

    @pytest.mark.asyncio
    async def test_late_delivery_is_inserted_in_time_order(self, backend):
        backend.add_messages(make_message(1, minutes=0))
        store = MessageStore(backend)
        await store.load_thread(1)

        assert store.append_incoming(make_message(3, minutes=5)) == MergeOutcome.APPENDED
        assert store.append_incoming(make_message(2, minutes=3)) == MergeOutcome.APPENDED

        assert [m.message_id for m in store.messages] == ["msg-1", "msg-2", "msg-3"]
        times = [m.created_at for m in store.messages]
        assert times == sorted(times)

    def test_confirmation_moves_to_server_timestamp(self, backend):
        store = MessageStore(backend)
        store.thread_id = 1
        pending = store.send_optimistic(1, "See you at 5", SENDER, client_ref="ref-1")
        store.append_incoming(make_message(7, minutes=2))

        outcome = store.append_incoming(outbound(99, "See you at 5", 1, client_ref="ref-1"))

        assert outcome == MergeOutcome.REPLACED
        assert not store.contains(pending.message_id)
        assert [m.message_id for m in store.messages] == ["msg-99", "msg-7"]

    def test_other_thread_is_ignored(self, backend):
        store = MessageStore(backend)
        store.thread_id = 1
        assert store.append_incoming(make_message(1, thread_id=2)) == MergeOutcome.IGNORED
        assert store.messages == []

    def test_confirmation_replaces_optimistic_by_client_ref(self, backend):
        store = MessageStore(backend)
        store.thread_id = 1
        pending = store.send_optimistic(1, "See you at 5", SENDER, client_ref="ref-1")

        outcome = store.append_incoming(outbound(99, "See you at 5", 1, client_ref="ref-1"))

        assert outcome == MergeOutcome.REPLACED
        assert len(store.messages) == 1
        assert store.messages[0].message_id == "msg-99"
        assert not store.contains(pending.message_id)

    def test_confirmation_without_ref_matches_oldest_same_text(self, backend):
        store = MessageStore(backend)
        store.thread_id = 1
        first = store.send_optimistic(1, "ok", SENDER)
        second = store.send_optimistic(1, "ok", SENDER)

        assert store.append_incoming(outbound(50, "ok", 1)) == MergeOutcome.REPLACED

        assert [m.message_id for m in store.messages] == ["msg-50", second.message_id]
        assert not store.contains(first.message_id)

    def test_mismatched_ref_is_not_matched_by_text(self, backend):
        store = MessageStore(backend)
        store.thread_id = 1
        store.send_optimistic(1, "same words", SENDER, client_ref="ref-a")

        outcome = store.append_incoming(outbound(51, "same words", 1, client_ref="ref-b"))

        assert outcome == MergeOutcome.APPENDED
        assert len(store.pending()) == 1

    def test_inbound_never_replaces_optimistic(self, backend):
        store = MessageStore(backend)
        store.thread_id = 1
        store.send_optimistic(1, "hi", SENDER)

        assert store.append_incoming(make_message(52, text="hi")) == MergeOutcome.APPENDED
        assert len(store.messages) == 2


class TestOptimistic:
    def test_not_appended_when_thread_closed(self, backend):
        store = MessageStore(backend)
        store.thread_id = 2
        message = store.send_optimistic(1, "hi", SENDER)

        assert message.is_optimistic
        assert message.id < 0
        assert store.messages == []

    def test_remove(self, backend):
        store = MessageStore(backend)
        store.thread_id = 1
        message = store.send_optimistic(1, "hi", SENDER)

        assert store.remove(message.message_id)
        assert not store.remove(message.message_id)
        assert store.messages == []
