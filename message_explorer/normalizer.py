"""
Maps raw eth_getLogs entries to NewMessage objects.
"""

import logging
from typing import Iterable, Optional

from pydantic import ValidationError

from message_explorer.schemas import NewMessage, RawLog
from message_explorer.upstream import MalformedLogError

logger = logging.getLogger(__name__)


def normalize_log(raw: dict) -> NewMessage:
    try:
        log = RawLog.model_validate(raw)
    except ValidationError as e:
        raise MalformedLogError(f"Malformed log entry: {e}") from e

    return NewMessage(
        nonce=int(log.topics[1], 16),
        message_hash=log.topics[2],
        message_bytes=log.data,
        transaction_hash=log.transaction_hash,
        block_number=log.block_number,
    )


def normalize_logs(raw_logs: Optional[Iterable[dict]]) -> list[NewMessage]:
    """
    Convert logs delivered in ascending block order into messages in
    descending block order (the order pages are served in).

    Empty or None input yields an empty list.
    """
    if not raw_logs:
        return []

    messages = [normalize_log(raw) for raw in raw_logs]
    messages.reverse()
    return messages
