"""
Pytest configuration and shared fixtures.

Test settings are exported before the first application import so the
module-level engine and settings pick them up.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_messages.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ["BACKFILL_DELAY_SECONDS"] = "0"
os.environ["PAGE_SIZE"] = "10"
os.environ["BLOCK_WINDOW"] = "10000"
os.environ["MAX_BACKFILL_DEPTH"] = "10"

import pytest

# Clear settings cache before any app imports to ensure test env vars are used
from message_explorer.config import get_settings
get_settings.cache_clear()

from message_explorer.storage import Base, MessageStore, engine
from message_explorer.upstream import UpstreamError
import message_explorer.models  # noqa: F401  (registers the messages table)


EVENT_TOPIC = "0xe5944a34d67c652e0ebf2304b48432aae0b55e40f79ba8a21a4d7054c169ffac"


def make_log(nonce: int, block: int) -> dict:
    """Build an eth_getLogs entry the way the node returns it."""
    return {
        "address": "0x41ea857c32c8cb42eefa00af67862ecff4eb795a",
        "topics": [
            EVENT_TOPIC,
            "0x" + f"{nonce:064x}",
            "0x" + f"{nonce * 7919 + 1:064x}",
        ],
        "data": "0x" + f"{nonce:08x}" + "ab" * 60,
        "blockNumber": hex(block),
        "transactionHash": "0x" + f"{block * 1000 + nonce:064x}",
        "logIndex": "0x0",
        "removed": False,
    }


class FakeLogSource:
    """
    In-memory upstream. Logs are served ascending by block, like the node.

    fail_on_call: 1-based index of the query_logs call that raises UpstreamError
    """

    def __init__(self, logs=None, head: int = 1_000_000):
        self.logs = sorted(logs or [], key=lambda log: int(log["blockNumber"], 16))
        self.head = head
        self.calls = []
        self.fail_on_call = None

    async def query_logs(self, from_block: int, to_block: int) -> list[dict]:
        self.calls.append((from_block, to_block))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise UpstreamError("simulated provider outage")
        return [
            log for log in self.logs
            if from_block <= int(log["blockNumber"], 16) <= to_block
        ]

    async def current_block_height(self) -> int:
        return self.head


def dense_history(count: int = 25, newest_block: int = 999_500, step: int = 1000) -> list[dict]:
    """`count` events, one every `step` blocks, newest first by nonce order."""
    return [make_log(nonce=1000 + i, block=newest_block - i * step) for i in range(count)]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    """Fresh messages table for each test."""
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db) -> MessageStore:
    return MessageStore()
