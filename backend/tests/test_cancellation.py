"""Unit tests for request supersession."""

import asyncio

import pytest

from inboxsync.cancellation import RequestSlot
from inboxsync.errors import FetchSuperseded


class TestRequestSlot:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        slot = RequestSlot("threads")

        async def fetch():
            return 42

        assert await slot.run(fetch) == 42
        assert not slot.busy

    @pytest.mark.asyncio
    async def test_newer_run_supersedes_older(self):
        slot = RequestSlot("threads")
        started = asyncio.Event()
        never = asyncio.Event()

        async def slow():
            started.set()
            await never.wait()
            return "stale"

        async def fast():
            return "fresh"

        first = asyncio.create_task(slot.run(slow))
        await started.wait()
        assert await slot.run(fast) == "fresh"

        with pytest.raises(FetchSuperseded) as exc_info:
            await first
        assert exc_info.value.resource == "threads"

    @pytest.mark.asyncio
    async def test_cancel(self):
        slot = RequestSlot("messages")
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.Event().wait()

        pending = asyncio.create_task(slot.run(slow))
        await started.wait()
        assert slot.busy
        slot.cancel()

        with pytest.raises(FetchSuperseded):
            await pending

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        slot = RequestSlot("search")

        async def broken():
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await slot.run(broken)
