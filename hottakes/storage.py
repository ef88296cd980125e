"""SQLAlchemy storage for posts, connections and messages.

Tables:
- posts: submitted hot takes with their embedding (JSON text, validated on read)
- connections: one row per unordered pair of posts, enforced by a unique
  constraint on the canonical (pair_low, pair_high) key
- messages: append-only log per connection
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import shortuuid
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .data_models import ConnectionView, MessageView, PostRecord
from .errors import StorageError

logger = logging.getLogger(__name__)

Base = declarative_base()

ConnectionStatusEnum = Enum(
    "accepted",
    name="connection_status",
    native_enum=False,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return shortuuid.uuid()


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def canonical_pair(post_x: str, post_y: str) -> Tuple[str, str]:
    """Order-independent key for a pair of post ids."""
    return (post_x, post_y) if post_x <= post_y else (post_y, post_x)


class PostRow(Base):
    __tablename__ = "posts"

    # seq gives a total insertion order for stable ranking and listing
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), unique=True, nullable=False, default=_new_id)
    text = Column(Text, nullable=False)
    owner_id = Column(String(255), nullable=True, index=True)
    embedding = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ConnectionRow(Base):
    __tablename__ = "connections"
    __table_args__ = (
        UniqueConstraint("pair_low", "pair_high", name="uq_connections_pair"),
        CheckConstraint("post_a_id <> post_b_id", name="ck_connections_distinct_posts"),
    )

    id = Column(String(32), primary_key=True, default=_new_id)
    post_a_id = Column(String(32), ForeignKey("posts.id", ondelete="CASCADE"), nullable=False)
    post_b_id = Column(String(32), ForeignKey("posts.id", ondelete="CASCADE"), nullable=False)
    pair_low = Column(String(32), nullable=False)
    pair_high = Column(String(32), nullable=False)
    user_a_id = Column(String(255), nullable=False, index=True)
    user_b_id = Column(String(255), nullable=False, index=True)
    status = Column(ConnectionStatusEnum, nullable=False, default="accepted")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class MessageRow(Base):
    __tablename__ = "messages"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), unique=True, nullable=False, default=_new_id)
    connection_id = Column(
        String(32), ForeignKey("connections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


def _post_record(row: PostRow) -> PostRecord:
    return PostRecord(
        id=row.id,
        text=row.text,
        created_at=_aware(row.created_at),
        owner_id=row.owner_id,
        embedding=row.embedding,
    )


def _connection_view(row: ConnectionRow) -> ConnectionView:
    return ConnectionView(
        id=row.id,
        post_a_id=row.post_a_id,
        post_b_id=row.post_b_id,
        user_a_id=row.user_a_id,
        user_b_id=row.user_b_id,
        status=row.status,
        created_at=_aware(row.created_at),
    )


def _message_view(row: MessageRow) -> MessageView:
    return MessageView(
        id=row.id,
        connection_id=row.connection_id,
        sender_id=row.sender_id,
        content=row.content,
        created_at=_aware(row.created_at),
    )


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite URLs get thread-safe settings for the web server."""
    if database_url.startswith("sqlite"):
        kwargs: Dict[str, object] = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


class SecretStore:
    """Thin SQLAlchemy wrapper holding every persisted record.

    Each public method runs in its own short session: commit on success,
    rollback on error. SQLAlchemy failures surface as `StorageError`.
    """

    def __init__(self, database_url: str = "sqlite:///hottakes.db", engine: Optional[Engine] = None) -> None:
        self._engine = engine if engine is not None else make_engine(database_url)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    @property
    def engine(self) -> Engine:
        return self._engine

    def init_db(self) -> None:
        """Create tables if they do not exist."""
        Base.metadata.create_all(self._engine)
        logger.info("Database tables ready (%s)", self._engine.url.render_as_string(hide_password=True))

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Storage operation failed: %s", exc)
            raise StorageError("Storage operation failed") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ---- posts ----
    def add_post(self, text: str, embedding: Sequence[float], owner_id: Optional[str] = None) -> PostRecord:
        row = PostRow(
            id=_new_id(),
            text=text,
            owner_id=owner_id,
            embedding=json.dumps(list(embedding)),
            created_at=_utcnow(),
        )
        with self.session() as session:
            session.add(row)
            session.flush()
            return _post_record(row)

    def get_post(self, post_id: str) -> Optional[PostRecord]:
        with self.session() as session:
            row = session.scalar(select(PostRow).where(PostRow.id == post_id))
            return _post_record(row) if row is not None else None

    def get_posts(self, post_ids: Iterable[str]) -> Dict[str, PostRecord]:
        ids = list(set(post_ids))
        if not ids:
            return {}
        with self.session() as session:
            rows = session.scalars(select(PostRow).where(PostRow.id.in_(ids)))
            return {row.id: _post_record(row) for row in rows}

    def fetch_candidates(self) -> List[PostRecord]:
        """Every stored post in insertion order."""
        with self.session() as session:
            rows = session.scalars(select(PostRow).order_by(PostRow.seq))
            return [_post_record(row) for row in rows]

    def list_posts(self, owner_id: str) -> List[PostRecord]:
        """Posts owned by `owner_id`, newest first."""
        with self.session() as session:
            rows = session.scalars(
                select(PostRow)
                .where(PostRow.owner_id == owner_id)
                .order_by(PostRow.created_at.desc(), PostRow.seq.desc())
            )
            return [_post_record(row) for row in rows]

    def claim_post(self, post_id: str, owner_id: str) -> Optional[PostRecord]:
        """Set the owner of an anonymous post; owned posts are left untouched.

        The update is conditional on `owner_id IS NULL`, so two concurrent
        claims cannot both win. Returns the post as it stands afterwards.
        """
        with self.session() as session:
            session.execute(
                update(PostRow)
                .where(PostRow.id == post_id, PostRow.owner_id.is_(None))
                .values(owner_id=owner_id)
            )
            row = session.scalar(select(PostRow).where(PostRow.id == post_id))
            return _post_record(row) if row is not None else None

    def delete_post(self, post_id: str) -> bool:
        """Delete a post with its connections and their messages."""
        with self.session() as session:
            connection_ids = list(
                session.scalars(
                    select(ConnectionRow.id).where(
                        or_(ConnectionRow.post_a_id == post_id, ConnectionRow.post_b_id == post_id)
                    )
                )
            )
            if connection_ids:
                session.execute(delete(MessageRow).where(MessageRow.connection_id.in_(connection_ids)))
                session.execute(delete(ConnectionRow).where(ConnectionRow.id.in_(connection_ids)))
            result = session.execute(delete(PostRow).where(PostRow.id == post_id))
            deleted = result.rowcount > 0
        if deleted:
            logger.info("Deleted post %s and %d connection(s)", post_id, len(connection_ids))
        return deleted

    # ---- connections ----
    def create_connection(
        self,
        post_a_id: str,
        post_b_id: str,
        user_a_id: str,
        user_b_id: str,
    ) -> Tuple[ConnectionView, bool]:
        """Insert a connection, or return the existing one for the same pair.

        Uniqueness is decided by the storage engine: a violation of
        `uq_connections_pair` means another request got there first.
        Returns `(connection, created)`.
        """
        low, high = canonical_pair(post_a_id, post_b_id)
        row = ConnectionRow(
            id=_new_id(),
            post_a_id=post_a_id,
            post_b_id=post_b_id,
            pair_low=low,
            pair_high=high,
            user_a_id=user_a_id,
            user_b_id=user_b_id,
            status="accepted",
            created_at=_utcnow(),
        )
        session = self._session_factory()
        try:
            session.add(row)
            session.commit()
            return _connection_view(row), True
        except IntegrityError as exc:
            session.rollback()
            existing = self.find_connection(post_a_id, post_b_id)
            if existing is None:
                logger.error("Error creating connection: %s", exc)
                raise StorageError("Failed to create connection") from exc
            return existing, False
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Error creating connection: %s", exc)
            raise StorageError("Failed to create connection") from exc
        finally:
            session.close()

    def find_connection(self, post_x: str, post_y: str) -> Optional[ConnectionView]:
        """Look up the connection for a pair of posts in either order."""
        low, high = canonical_pair(post_x, post_y)
        with self.session() as session:
            row = session.scalar(
                select(ConnectionRow).where(ConnectionRow.pair_low == low, ConnectionRow.pair_high == high)
            )
            return _connection_view(row) if row is not None else None

    def get_connection(self, connection_id: str) -> Optional[ConnectionView]:
        with self.session() as session:
            row = session.scalar(select(ConnectionRow).where(ConnectionRow.id == connection_id))
            return _connection_view(row) if row is not None else None

    def list_connections(self, user_id: str) -> List[ConnectionView]:
        """Connections involving `user_id`, newest first."""
        with self.session() as session:
            rows = session.scalars(
                select(ConnectionRow)
                .where(or_(ConnectionRow.user_a_id == user_id, ConnectionRow.user_b_id == user_id))
                .order_by(ConnectionRow.created_at.desc())
            )
            return [_connection_view(row) for row in rows]

    # ---- messages ----
    def add_message(self, connection_id: str, sender_id: str, content: str) -> MessageView:
        row = MessageRow(
            id=_new_id(),
            connection_id=connection_id,
            sender_id=sender_id,
            content=content,
            created_at=_utcnow(),
        )
        with self.session() as session:
            session.add(row)
            session.flush()
            return _message_view(row)

    def list_messages(self, connection_id: str) -> List[MessageView]:
        """Messages of one connection, oldest first."""
        with self.session() as session:
            rows = session.scalars(
                select(MessageRow)
                .where(MessageRow.connection_id == connection_id)
                .order_by(MessageRow.created_at, MessageRow.seq)
            )
            return [_message_view(row) for row in rows]
