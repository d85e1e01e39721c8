import logging
from typing import Collection, Optional

from sqlalchemy import create_engine, delete, inspect, select, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from outreach.repository import MessageRepository
from outreach.schemas import Message, Reply
from outreach.utils import as_utc

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()


def _optional_utc(value):
    return as_utc(value) if value is not None else None


class SqlRepository(MessageRepository):
    """
    Message and reply collections stored through SQLAlchemy.

    Each call opens its own session and commits before returning, so a
    mutation is complete by the time the store reads again.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url
        engine_kwargs = {"echo": False}
        if database_url.startswith("sqlite"):
            # check_same_thread=False is required for SQLite under FastAPI
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url == "sqlite://":
                # One shared connection, otherwise every session sees an empty DB
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init_db(self) -> None:
        """
        Initialize the database by creating all tables.
        Called when the application builds its store.
        """
        logger.debug(f"Initializing database with URL: {self.database_url}")
        try:
            # Import models to register them with Base.metadata
            from outreach import models  # noqa: F401

            Base.metadata.create_all(bind=self.engine)
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def check_health(self) -> bool:
        """
        Check if the database is reachable and schema is applied.

        Returns:
            True if DB is healthy and schema exists, False otherwise.
        """
        try:
            with self.SessionLocal() as db:
                db.execute(text("SELECT 1"))
            tables = inspect(self.engine)
            for table in ("messages", "replies"):
                if not tables.has_table(table):
                    logger.error(f"Database schema not applied: '{table}' table not found")
                    return False
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    # =========================================================================
    # Row conversion
    # =========================================================================

    @staticmethod
    def _to_message(row) -> Message:
        return Message(
            id=row.id,
            owner_id=row.owner_id,
            content=row.content,
            recipients=list(row.recipients),
            status=row.status,
            scheduled_time=_optional_utc(row.scheduled_time),
            sent_time=_optional_utc(row.sent_time),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    @staticmethod
    def _to_reply(row) -> Reply:
        return Reply(
            id=row.id,
            message_id=row.message_id,
            sender_id=row.sender_id,
            content=row.content,
            timestamp=as_utc(row.timestamp),
            created_at=as_utc(row.created_at),
        )

    # =========================================================================
    # Message Repository Functions
    # =========================================================================

    def insert_message(self, message: Message) -> None:
        from outreach.models import MessageRecord

        with self.SessionLocal() as db:
            values = message.model_dump(exclude={"reply_count"})
            values["status"] = message.status.value
            db.add(MessageRecord(**values))
            db.commit()
        logger.debug(f"Message row inserted: {message.id}")

    def get_message(self, message_id: str) -> Optional[Message]:
        from outreach.models import MessageRecord

        with self.SessionLocal() as db:
            row = db.scalars(select(MessageRecord).where(MessageRecord.id == message_id)).first()
            return self._to_message(row) if row is not None else None

    def replace_message(self, message: Message) -> None:
        from outreach.models import MessageRecord

        with self.SessionLocal() as db:
            row = db.scalars(select(MessageRecord).where(MessageRecord.id == message.id)).first()
            if row is None:
                raise KeyError(message.id)
            values = message.model_dump(exclude={"id", "reply_count"})
            values["status"] = message.status.value
            for field, value in values.items():
                setattr(row, field, value)
            db.commit()

    def delete_message(self, message_id: str) -> bool:
        from outreach.models import MessageRecord

        with self.SessionLocal() as db:
            result = db.execute(delete(MessageRecord).where(MessageRecord.id == message_id))
            db.commit()
            return result.rowcount > 0

    def list_messages(self, owner_id: str) -> list[Message]:
        from outreach.models import MessageRecord

        with self.SessionLocal() as db:
            rows = db.scalars(
                select(MessageRecord)
                .where(MessageRecord.owner_id == owner_id)
                .order_by(MessageRecord.seq.desc())
            ).all()
            return [self._to_message(row) for row in rows]

    def insert_reply(self, reply: Reply) -> None:
        from outreach.models import ReplyRecord

        with self.SessionLocal() as db:
            db.add(ReplyRecord(**reply.model_dump()))
            db.commit()

    def list_replies(self, message_ids: Optional[Collection[str]] = None) -> list[Reply]:
        from outreach.models import ReplyRecord

        query = select(ReplyRecord).order_by(ReplyRecord.seq.asc())
        if message_ids is not None:
            query = query.where(ReplyRecord.message_id.in_(list(message_ids)))
        with self.SessionLocal() as db:
            return [self._to_reply(row) for row in db.scalars(query).all()]

    def delete_replies(self, message_id: str) -> int:
        from outreach.models import ReplyRecord

        with self.SessionLocal() as db:
            result = db.execute(delete(ReplyRecord).where(ReplyRecord.message_id == message_id))
            db.commit()
            return result.rowcount
