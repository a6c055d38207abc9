"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import BigInteger, Column, Index, Integer, String, Text

from message_explorer.storage import Base


class Message(Base):
    """
    One ledger event, stored exactly once.

    Table: messages
    Unique: nonce (deduplication key for idempotent ingestion)
    Index: (block_number, id) backs the descending keyset scan used for pagination
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nonce = Column(BigInteger, nullable=False, unique=True)
    message_hash = Column(String, nullable=False)
    message_bytes = Column(Text, nullable=False)
    transaction_hash = Column(String, nullable=False)
    block_number = Column(BigInteger, nullable=False)
    created_at = Column(String, nullable=False)  # Server time ISO-8601

    __table_args__ = (
        Index("ix_messages_block_number_id", "block_number", "id"),
    )
