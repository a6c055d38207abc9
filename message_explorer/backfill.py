"""
On-demand backfill of upstream history.

Starting just below a known block, fixed-width windows are queried newest to
oldest until enough events have been found for one page, a window comes back
empty, or the depth bound is reached. Each window is written to the store as
soon as it arrives; inserts are idempotent on nonce, so a failed pass can be
retried without leaving duplicates behind.
"""

import asyncio
import logging

from starlette.concurrency import run_in_threadpool

from message_explorer.metrics import record_ingestion
from message_explorer.normalizer import normalize_logs
from message_explorer.schemas import NewMessage
from message_explorer.storage import MessageStore
from message_explorer.upstream import UpstreamLogSource

logger = logging.getLogger(__name__)


class BackfillController:
    """
    Args:
        source: Upstream log source
        store: Message store the fetched events are ingested into
        page_size: Number of events one pass tries to collect (N)
        window: Width of one eth_getLogs window in blocks (W)
        max_depth: Maximum number of windows per pass (D)
        delay_seconds: Pause before every upstream query
    """

    def __init__(
        self,
        source: UpstreamLogSource,
        store: MessageStore,
        page_size: int = 10,
        window: int = 10000,
        max_depth: int = 10,
        delay_seconds: float = 1.0,
    ):
        self.source = source
        self.store = store
        self.page_size = page_size
        self.window = window
        self.max_depth = max_depth
        self.delay_seconds = delay_seconds

    async def backfill(self, entries_so_far: int, last_block: int, depth: int = 0) -> list[NewMessage]:
        """
        Fetch and ingest events below `last_block` (exclusive).

        Returns the events found, newest first, with every window's events
        preceding those of the older windows after it.
        """
        if depth >= self.max_depth:
            logger.info(f"Backfill depth limit {self.max_depth} reached at block {last_block}")
            return []
        if last_block <= 0:
            return []

        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        from_block = max(0, last_block - self.window)
        to_block = last_block - 1
        raw_logs = await self.source.query_logs(from_block, to_block)
        events = normalize_logs(raw_logs)
        logger.info(f"Backfill window {from_block}..{to_block} (depth {depth}): {len(events)} events")

        if not events:
            return []

        await self.ingest(events)

        found = entries_so_far + len(events)
        if found >= self.page_size:
            return events

        older = await self.backfill(found, last_block - self.window, depth + 1)
        return events + older

    async def ingest(self, events: list[NewMessage]) -> int:
        """
        Store every event not yet present. Returns the number of new rows.
        """
        created = 0
        for event in events:
            existing = await run_in_threadpool(self.store.find_by_nonce, event.nonce)
            if existing is not None:
                record_ingestion("duplicate")
                continue

            # A concurrent pass may have stored the nonce since the lookup
            if await run_in_threadpool(self.store.insert_if_absent, event):
                created += 1
                record_ingestion("created")
            else:
                record_ingestion("duplicate")

        if created:
            logger.info(f"Ingested {created} new messages ({len(events) - created} already stored)")
        return created
