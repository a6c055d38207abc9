"""
Cursor pagination over stored messages with backfill on under-filled pages.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from starlette.concurrency import run_in_threadpool

from message_explorer.backfill import BackfillController
from message_explorer.metrics import record_backfill_pass
from message_explorer.storage import MessageStore
from message_explorer.upstream import UpstreamError, UpstreamLogSource

logger = logging.getLogger(__name__)


@dataclass
class Page:
    messages: list = field(default_factory=list)
    # None means there are no further pages
    next_cursor: Optional[int] = None
    backfilled: int = 0


class PaginationService:
    """
    Serves pages of `page_size` messages, newest first.

    The store is always the source of ordering: after a backfill the page is
    read again rather than merged from the fetched events.
    """

    def __init__(
        self,
        store: MessageStore,
        source: UpstreamLogSource,
        backfill: BackfillController,
        page_size: int = 10,
    ):
        self.store = store
        self.source = source
        self.backfill = backfill
        self.page_size = page_size

    async def get_page(
        self,
        cursor: Optional[int] = None,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
    ) -> Page:
        """
        Return the page following `cursor` (the id of the previous page's last
        message). A missing, non-positive or stale cursor means the first page.

        With a block filter the page is read from stored rows only.
        """
        cursor_row = None
        if cursor is not None and cursor > 0:
            cursor_row = await run_in_threadpool(self.store.find_by_id, cursor)
            if cursor_row is None:
                logger.info(f"Stale cursor {cursor}, serving first page")
        cursor_id = cursor_row.id if cursor_row is not None else None

        page = await run_in_threadpool(
            self.store.find_page, cursor_id, self.page_size, from_block, to_block
        )

        filtered = from_block is not None or to_block is not None
        if len(page) >= self.page_size or filtered:
            return self._build(page)

        if cursor_row is not None:
            origin = cursor_row.block_number
        else:
            origin = await self.source.current_block_height()

        logger.info(f"Page under-filled ({len(page)}/{self.page_size}), backfilling below block {origin}")
        try:
            events = await self.backfill.backfill(0, origin, 0)
        except UpstreamError:
            record_backfill_pass("failed")
            raise
        record_backfill_pass("completed")

        page = await run_in_threadpool(self.store.find_page, cursor_id, self.page_size)
        if len(page) < self.page_size:
            logger.info(f"Upstream exhausted below block {origin}: {len(page)} messages available")
        return self._build(page, backfilled=len(events))

    @staticmethod
    def _build(page: list, backfilled: int = 0) -> Page:
        next_cursor = page[-1].id if page else None
        return Page(messages=page, next_cursor=next_cursor, backfilled=backfilled)
