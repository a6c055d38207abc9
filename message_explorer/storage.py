import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, create_engine, func, inspect, or_, text
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker, declarative_base

from message_explorer.config import settings
from message_explorer.schemas import NewMessage

logger = logging.getLogger(__name__)

# check_same_thread=False lets SQLite connections be used from the threadpool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from message_explorer.models import Message  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and the messages table exists, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        if not inspect(engine).has_table("messages"):
            logger.error("Database schema not applied: 'messages' table not found")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Message Store
# =============================================================================

class MessageStore:
    """
    Read/write contract over the messages table.

    Every method opens its own short-lived session, so a store instance can be
    shared by concurrent requests and called from worker threads.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def find_page(
        self,
        cursor_id: Optional[int],
        limit: int,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
    ) -> list:
        """
        Return up to `limit` messages ordered by (block_number desc, id desc).

        Args:
            cursor_id: Id of the last row of the previous page (exclusive). When
                absent, or when it no longer resolves to a row, reading starts
                from the newest message.
            limit: Maximum number of rows
            from_block: Optional inclusive lower block bound
            to_block: Optional inclusive upper block bound
        """
        from message_explorer.models import Message

        with self.session_factory() as db:
            query = db.query(Message)

            if from_block is not None:
                query = query.filter(Message.block_number >= from_block)
            if to_block is not None:
                query = query.filter(Message.block_number <= to_block)

            if cursor_id is not None:
                cursor_row = db.get(Message, cursor_id)
                if cursor_row is None:
                    logger.debug(f"Cursor {cursor_id} does not resolve, reading from newest")
                else:
                    query = query.filter(or_(
                        Message.block_number < cursor_row.block_number,
                        and_(
                            Message.block_number == cursor_row.block_number,
                            Message.id < cursor_row.id,
                        ),
                    ))

            query = query.order_by(Message.block_number.desc(), Message.id.desc())
            return query.limit(limit).all()

    def find_by_nonce(self, nonce: int):
        from message_explorer.models import Message

        with self.session_factory() as db:
            return db.query(Message).filter(Message.nonce == nonce).first()

    def find_by_id(self, message_id: int):
        from message_explorer.models import Message

        with self.session_factory() as db:
            return db.get(Message, message_id)

    def insert_if_absent(self, message: NewMessage) -> bool:
        """
        Insert a message unless a row with the same nonce exists.

        The existence check and the insert are one statement
        (INSERT ... ON CONFLICT (nonce) DO NOTHING), so concurrent backfills
        delivering the same nonce cannot create two rows. Dialects without
        that clause rely on the unique constraint and IntegrityError.

        Returns:
            True if a row was inserted, False if the nonce was already stored
        """
        from message_explorer.models import Message

        values = message.model_dump()
        values["created_at"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

        with self.session_factory() as db:
            dialect_name = db.get_bind().dialect.name

            if dialect_name in ("sqlite", "postgresql"):
                insert = sqlite_insert if dialect_name == "sqlite" else postgresql_insert
                stmt = (
                    insert(Message)
                    .values(**values)
                    .on_conflict_do_nothing(index_elements=["nonce"])
                )
                result = db.execute(stmt)
                db.commit()
                inserted = result.rowcount == 1
            else:
                try:
                    db.add(Message(**values))
                    db.commit()
                    inserted = True
                except IntegrityError:
                    db.rollback()
                    inserted = False

        if inserted:
            logger.debug(f"Message stored: nonce={message.nonce}, block={message.block_number}")
        else:
            logger.debug(f"Duplicate nonce ignored: {message.nonce}")
        return inserted

    def count_in_block_range(
        self,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
    ) -> int:
        """Count stored messages with from_block <= block_number <= to_block (bounds optional)."""
        from message_explorer.models import Message

        with self.session_factory() as db:
            query = db.query(func.count(Message.id))
            if from_block is not None:
                query = query.filter(Message.block_number >= from_block)
            if to_block is not None:
                query = query.filter(Message.block_number <= to_block)
            return query.scalar() or 0

    def get_stats(self, from_block: Optional[int] = None, to_block: Optional[int] = None) -> dict:
        """
        Get message statistics for the /stats endpoint.

        Args:
            from_block: Optional inclusive lower block bound
            to_block: Optional inclusive upper block bound

        Returns:
            Dictionary with total_messages, first_block and last_block
        """
        from message_explorer.models import Message

        total_messages = self.count_in_block_range(from_block, to_block)
        with self.session_factory() as db:
            query = db.query(func.min(Message.block_number), func.max(Message.block_number))
            if from_block is not None:
                query = query.filter(Message.block_number >= from_block)
            if to_block is not None:
                query = query.filter(Message.block_number <= to_block)
            first_block, last_block = query.one()

        logger.debug(f"Stats computed: {total_messages} messages, blocks {first_block}..{last_block}")

        return {
            "total_messages": total_messages,
            "first_block": first_block,
            "last_block": last_block,
        }
