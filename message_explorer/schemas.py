"""
Pydantic schemas for upstream payloads and API responses.

This module contains:
- Upstream models for validating raw eth_getLogs entries
- The internal NewMessage shape produced by the normalizer
- Response models for API responses
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


def parse_hex_int(value) -> int:
    """Parse a 0x-prefixed quantity (or a plain int) into an int."""
    if isinstance(value, bool):
        raise ValueError("expected a hex quantity")
    if isinstance(value, int):
        return value
    if not isinstance(value, str) or not value.lower().startswith("0x"):
        raise ValueError(f"expected a 0x-prefixed hex quantity, got {value!r}")
    return int(value, 16)


# =============================================================================
# Upstream Models
# =============================================================================

class RawLog(BaseModel):
    """
    One entry of an eth_getLogs result.

    Topic slots:
    - topics[0]: event signature
    - topics[1]: nonce (hex-encoded)
    - topics[2]: message hash
    """
    topics: list[str] = Field(..., description="Indexed event topics")
    data: str = Field(..., description="Raw message bytes (hex)")
    block_number: int = Field(..., alias="blockNumber")
    transaction_hash: str = Field(..., alias="transactionHash")

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }

    @field_validator("topics")
    @classmethod
    def validate_topics(cls, v: list[str]) -> list[str]:
        if len(v) < 3:
            raise ValueError(f"expected at least 3 topics, got {len(v)}")
        parse_hex_int(v[1])
        return v

    @field_validator("block_number", mode="before")
    @classmethod
    def validate_block_number(cls, v) -> int:
        return parse_hex_int(v)


class NewMessage(BaseModel):
    """A normalized message that has not been assigned a store id yet."""
    nonce: int
    message_hash: str
    message_bytes: str
    transaction_hash: str
    block_number: int


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class MessageResponse(BaseModel):
    """
    Response model for a single message.
    Fields are serialized in camelCase to match the explorer's wire format.
    """
    id: int = Field(..., description="Store-assigned id, used as pagination cursor")
    nonce: int = Field(..., description="Upstream sequence number")
    message_hash: str = Field(..., serialization_alias="messageHash")
    message_bytes: str = Field(..., serialization_alias="messageBytes")
    transaction_hash: str = Field(..., serialization_alias="transactionHash")
    block_number: int = Field(..., serialization_alias="blockNumber")

    model_config = {
        "populate_by_name": True,
        "from_attributes": True,  # Allow creating from ORM objects
    }


class MessagesPage(BaseModel):
    messages: list[MessageResponse] = Field(default_factory=list)
    cursor: Optional[int] = Field(
        None,
        description="Id to pass as ?id= for the next page; null when there are no further pages"
    )


class MessagesListResponse(BaseModel):
    """Response model for GET /messages: {"data": {"messages": [...], "cursor": ...}}"""
    data: MessagesPage


class StatsResponse(BaseModel):
    """
    Response model for GET /stats endpoint.

    - total_messages: number of ingested messages
    - first_block: lowest block number stored (null if no messages)
    - last_block: highest block number stored (null if no messages)
    """
    total_messages: int = Field(..., ge=0, description="Total number of messages")
    first_block: Optional[int] = Field(None, description="Oldest stored block number")
    last_block: Optional[int] = Field(None, description="Newest stored block number")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
