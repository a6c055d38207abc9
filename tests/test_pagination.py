"""
Tests for the pagination service.

Tests cover:
- Full pages served from the store without touching upstream
- Backfill on under-filled pages, from the chain head or the cursor's block
- Walking every page until upstream history is exhausted
- Stale and non-positive cursors
- Upstream failures and retries
- Concurrent requests for the same page
"""

import asyncio

import pytest

from conftest import FakeLogSource, dense_history, make_log
from message_explorer.backfill import BackfillController
from message_explorer.normalizer import normalize_log
from message_explorer.pagination import PaginationService
from message_explorer.upstream import UpstreamError

pytestmark = pytest.mark.anyio


def make_service(source, store) -> PaginationService:
    backfill = BackfillController(
        source=source, store=store, page_size=10, window=10000, max_depth=10, delay_seconds=0
    )
    return PaginationService(store=store, source=source, backfill=backfill, page_size=10)


def store_logs(store, logs):
    for log in logs:
        store.insert_if_absent(normalize_log(log))


class TestServedFromStore:

    async def test_full_page_does_not_query_upstream(self, store):
        source = FakeLogSource()
        store_logs(store, dense_history(12))

        page = await make_service(source, store).get_page()

        assert len(page.messages) == 10
        assert page.next_cursor == page.messages[-1].id
        assert page.backfilled == 0
        assert source.calls == []

    async def test_full_page_is_newest_first(self, store):
        store_logs(store, dense_history(12))

        page = await make_service(FakeLogSource(), store).get_page()

        blocks = [m.block_number for m in page.messages]
        assert blocks == sorted(blocks, reverse=True)
        assert blocks[0] == 999_500


class TestBackfillOnUnderfill:

    async def test_empty_store_backfills_from_head(self, store):
        source = FakeLogSource(dense_history(25), head=1_000_000)

        page = await make_service(source, store).get_page()

        assert source.calls[0] == (990_000, 999_999)
        assert len(page.messages) == 10
        assert page.backfilled == 10

    async def test_cursor_block_is_the_origin(self, store):
        source = FakeLogSource(dense_history(25))
        service = make_service(source, store)
        first = await service.get_page()
        source.calls.clear()

        await service.get_page(first.next_cursor)

        cursor_block = first.messages[-1].block_number
        assert source.calls[0] == (cursor_block - 10000, cursor_block - 1)

    async def test_partially_stored_page_is_completed(self, store):
        history = dense_history(25)
        store_logs(store, history[:3])
        source = FakeLogSource(history)

        page = await make_service(source, store).get_page()

        assert [m.nonce for m in page.messages] == [1000 + i for i in range(10)]
        assert store.count_in_block_range() == 10

    async def test_walk_until_exhausted(self, store):
        source = FakeLogSource(dense_history(25))
        service = make_service(source, store)

        sizes = []
        seen = []
        cursor = None
        for _ in range(4):
            page = await service.get_page(cursor)
            sizes.append(len(page.messages))
            seen.extend(page.messages)
            cursor = page.next_cursor

        assert sizes == [10, 10, 5, 0]
        assert cursor is None
        assert [m.nonce for m in seen] == [1000 + i for i in range(25)]
        assert store.count_in_block_range() == 25

    async def test_no_history_at_all(self, store):
        source = FakeLogSource([], head=1_000_000)

        page = await make_service(source, store).get_page()

        assert page.messages == []
        assert page.next_cursor is None
        assert len(source.calls) == 1

    async def test_order_comes_from_the_store(self, store):
        # Same-block events delivered in one window
        logs = [make_log(nonce=n, block=995_000) for n in range(5)]
        logs += [make_log(nonce=n, block=996_000) for n in range(5, 12)]
        source = FakeLogSource(logs)

        page = await make_service(source, store).get_page()

        keys = [(m.block_number, m.id) for m in page.messages]
        assert keys == sorted(keys, reverse=True)
        assert len(keys) == 10


class TestCursors:

    async def test_stale_cursor_matches_first_page(self, store):
        store_logs(store, dense_history(15))
        service = make_service(FakeLogSource(), store)

        fresh = await service.get_page(None)
        stale = await service.get_page(424242)

        assert [m.id for m in stale.messages] == [m.id for m in fresh.messages]
        assert stale.next_cursor == fresh.next_cursor

    @pytest.mark.parametrize("cursor", [0, -1])
    async def test_non_positive_cursor_is_first_page(self, store, cursor):
        store_logs(store, dense_history(15))
        service = make_service(FakeLogSource(), store)

        fresh = await service.get_page(None)
        page = await service.get_page(cursor)

        assert [m.id for m in page.messages] == [m.id for m in fresh.messages]

    async def test_block_filter_reads_store_only(self, store):
        store_logs(store, dense_history(5))
        source = FakeLogSource(dense_history(25))

        page = await make_service(source, store).get_page(None, from_block=996_000, to_block=999_999)

        assert [m.block_number for m in page.messages] == [999_500, 998_500, 997_500, 996_500]
        assert source.calls == []


class TestUpstreamFailure:

    async def test_failure_propagates(self, store):
        source = FakeLogSource(dense_history(25))
        source.fail_on_call = 1

        with pytest.raises(UpstreamError):
            await make_service(source, store).get_page()

    async def test_retry_with_same_cursor_converges(self, store):
        logs = [make_log(nonce=100 + i, block=991_000 + i * 2000) for i in range(3)]
        logs += [make_log(nonce=200 + i, block=980_500 + i * 1000) for i in range(8)]
        source = FakeLogSource(logs)
        source.fail_on_call = 2
        service = make_service(source, store)

        with pytest.raises(UpstreamError):
            await service.get_page()

        source.fail_on_call = None
        page = await service.get_page()

        assert len(page.messages) == 10
        assert store.count_in_block_range() == 11
        assert len({m.nonce for m in page.messages}) == 10


class TestConcurrentRequests:

    async def test_concurrent_first_pages_ingest_once(self, store):
        source = FakeLogSource(dense_history(25))
        service = make_service(source, store)

        pages = await asyncio.gather(*(service.get_page() for _ in range(8)))

        first = [m.nonce for m in pages[0].messages]
        assert first == [1000 + i for i in range(10)]
        for page in pages:
            assert [m.nonce for m in page.messages] == first
            assert page.next_cursor == pages[0].next_cursor
        assert store.count_in_block_range() == 10
