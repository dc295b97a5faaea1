"""
SQLAlchemy-backed persistence for the notification engine.

Three record kinds are stored:
- notifications: one row per user-facing notification
- notification_settings: exactly one row per user (unique on user_id)
- notification_delivery_logs: one row per (notification, channel) attempt

Design decisions:
- One short-lived session per operation, each write committed on its own;
  no transaction spans notification, settings and ledger writes
- Repositories return Pydantic models, never ORM rows, so callers cannot
  lazily touch a closed session
- Settings creation is an atomic insert-if-absent, the only operation that
  needs row-level atomicity
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional
from uuid import uuid4

from pydantic_core import to_jsonable_python
from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    func,
    select,
    update,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from shared.models import (
    DeliveryChannel,
    DeliveryLogEntry,
    DeliveryStatus,
    DigestFrequency,
    Notification,
    NotificationSettings,
    NotificationType,
    SETTINGS_FIELDS,
    utcnow,
)

logger = logging.getLogger("data_store")


def _new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    """Declarative base for the notification tables."""


# =============================================================================
# Tables
# =============================================================================

class NotificationRecord(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_id_read", "user_id", "read"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class NotificationSettingsRecord(Base):
    __tablename__ = "notification_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    guest_confirmed: Mapped[dict] = mapped_column(JSON, nullable=False)
    guest_declined: Mapped[dict] = mapped_column(JSON, nullable=False)
    guest_pending: Mapped[dict] = mapped_column(JSON, nullable=False)
    invite_sent: Mapped[dict] = mapped_column(JSON, nullable=False)
    event_reminder: Mapped[dict] = mapped_column(JSON, nullable=False)
    event_updated: Mapped[dict] = mapped_column(JSON, nullable=False)
    system_alert: Mapped[dict] = mapped_column(JSON, nullable=False)
    digest_frequency: Mapped[str] = mapped_column(String(16), nullable=False, default=DigestFrequency.NONE.value)
    quiet_hours_start: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    quiet_hours_end: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class DeliveryLogRecord(Base):
    __tablename__ = "notification_delivery_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    notification_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    attempted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# =============================================================================
# Engine / Session bootstrap
# =============================================================================

class Database:
    """
    Engine and session factory for one database URL.

    In-memory SQLite URLs share a single connection so every session sees
    the same tables. That connection must not be used by two threads at
    once, so its sessions are handed out one at a time.
    """

    def __init__(self, url: str = "sqlite:///:memory:", echo: bool = False):
        self.url = url
        self.in_memory = self._is_in_memory(url)
        self.engine: Engine = self._create_engine(url, echo)
        # `expire_on_commit=False` keeps rows readable after commit
        self._sessionmaker = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False
        )
        self._lock = threading.RLock()
        self.session_factory = self._locked_session if self.in_memory else self._sessionmaker

    @staticmethod
    def _is_in_memory(url: str) -> bool:
        return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:")

    @classmethod
    def _create_engine(cls, url: str, echo: bool) -> Engine:
        if url.startswith("sqlite"):
            kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if cls._is_in_memory(url):
                kwargs["poolclass"] = StaticPool
            return create_engine(url, echo=echo, **kwargs)
        return create_engine(url, echo=echo, pool_pre_ping=True)

    @contextmanager
    def _locked_session(self) -> Iterator[Session]:
        with self._lock, self._sessionmaker() as session:
            yield session

    def create_all(self) -> None:
        """Ensure all tables exist."""
        with self._lock:
            Base.metadata.create_all(bind=self.engine, checkfirst=True)

    def drop_all(self) -> None:
        with self._lock:
            Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


# =============================================================================
# Notification Store
# =============================================================================

class NotificationStore:
    """Durable record of every notification generated for a user."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def create(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> Notification:
        """
        Persist a new notification.

        The payload is stored as JSON; datetimes become ISO strings.
        """
        now = utcnow()
        record = NotificationRecord(
            id=_new_id(),
            user_id=user_id,
            type=NotificationType(notification_type).value,
            title=title,
            message=message,
            data=to_jsonable_python(data or {}),
            read=False,
            created_at=now,
            updated_at=now,
        )
        with self.session_factory() as db:
            db.add(record)
            db.commit()
            return self._to_model(record)

    def get(self, notification_id: str) -> Optional[Notification]:
        with self.session_factory() as db:
            record = db.get(NotificationRecord, notification_id)
            return self._to_model(record) if record else None

    def list_for_user(
        self,
        user_id: str,
        *,
        offset: int = 0,
        limit: int = 20,
        unread_only: bool = False,
        notification_type: Optional[NotificationType] = None,
    ) -> tuple[list[Notification], int]:
        """
        Get one page of a user's notifications, newest first.

        Returns:
            Tuple of (notifications, total rows matching the filters)
        """
        conditions = [NotificationRecord.user_id == user_id]
        if unread_only:
            conditions.append(NotificationRecord.read.is_(False))
        if notification_type is not None:
            conditions.append(NotificationRecord.type == NotificationType(notification_type).value)

        with self.session_factory() as db:
            total = db.execute(
                select(func.count()).select_from(NotificationRecord).where(*conditions)
            ).scalar_one()
            records = db.execute(
                select(NotificationRecord)
                .where(*conditions)
                .order_by(NotificationRecord.created_at.desc(), NotificationRecord.id.desc())
                .offset(offset)
                .limit(limit)
            ).scalars().all()
            return [self._to_model(r) for r in records], total

    def count(self, user_id: str, *, unread_only: bool = False, since: Optional[datetime] = None) -> int:
        conditions = [NotificationRecord.user_id == user_id]
        if unread_only:
            conditions.append(NotificationRecord.read.is_(False))
        if since is not None:
            conditions.append(NotificationRecord.created_at >= since)
        with self.session_factory() as db:
            return db.execute(
                select(func.count()).select_from(NotificationRecord).where(*conditions)
            ).scalar_one()

    def count_unread(self, user_id: str) -> int:
        return self.count(user_id, unread_only=True)

    def count_by_type(self, user_id: str) -> dict[str, int]:
        with self.session_factory() as db:
            rows = db.execute(
                select(NotificationRecord.type, func.count())
                .where(NotificationRecord.user_id == user_id)
                .group_by(NotificationRecord.type)
            ).all()
            return {row[0]: row[1] for row in rows}

    def mark_read(self, notification_id: str, user_id: str) -> int:
        """Mark one unread notification of ``user_id`` read. Returns rows changed (0 if already read)."""
        with self.session_factory() as db:
            result = db.execute(
                update(NotificationRecord)
                .where(
                    NotificationRecord.id == notification_id,
                    NotificationRecord.user_id == user_id,
                    NotificationRecord.read.is_(False),
                )
                .values(read=True, updated_at=utcnow())
            )
            db.commit()
            return result.rowcount

    def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification of ``user_id`` read. Returns rows changed."""
        with self.session_factory() as db:
            result = db.execute(
                update(NotificationRecord)
                .where(
                    NotificationRecord.user_id == user_id,
                    NotificationRecord.read.is_(False),
                )
                .values(read=True, updated_at=utcnow())
            )
            db.commit()
            return result.rowcount

    @staticmethod
    def _to_model(record: NotificationRecord) -> Notification:
        return Notification(
            id=record.id,
            user_id=record.user_id,
            type=NotificationType(record.type),
            title=record.title,
            message=record.message,
            data=record.data or {},
            read=record.read,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


# =============================================================================
# Settings Store
# =============================================================================

_PREFERENCE_COLUMNS = tuple(SETTINGS_FIELDS.values())


class SettingsStore:
    """One NotificationSettings row per user."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get(self, user_id: str) -> Optional[NotificationSettings]:
        with self.session_factory() as db:
            record = self._select(db, user_id)
            return self._to_model(record) if record else None

    def get_or_create(self, defaults: NotificationSettings) -> NotificationSettings:
        """
        Return the row for ``defaults.user_id``, inserting ``defaults`` if absent.

        Concurrent first access for the same user yields exactly one row: the
        insert is a no-op when another writer got there first.
        """
        with self.session_factory() as db:
            record = self._select(db, defaults.user_id)
            if record is None:
                self._insert_if_absent(db, self._to_values(defaults, include_identity=True))
                record = self._select(db, defaults.user_id)
            return self._to_model(record)

    def save(self, settings: NotificationSettings) -> NotificationSettings:
        """Write every field of ``settings`` to the user's row, creating it if needed."""
        values = self._to_values(settings, include_identity=False)
        with self.session_factory() as db:
            self._insert_if_absent(db, self._to_values(settings, include_identity=True))
            db.execute(
                update(NotificationSettingsRecord)
                .where(NotificationSettingsRecord.user_id == settings.user_id)
                .values(**values, updated_at=utcnow())
            )
            db.commit()
            return self._to_model(self._select(db, settings.user_id))

    @staticmethod
    def _select(db, user_id: str) -> Optional[NotificationSettingsRecord]:
        return db.execute(
            select(NotificationSettingsRecord)
            .where(NotificationSettingsRecord.user_id == user_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @staticmethod
    def _insert_if_absent(db, values: dict[str, Any]) -> None:
        dialect = db.get_bind().dialect.name
        if dialect in ("sqlite", "postgresql"):
            insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
            db.execute(
                insert(NotificationSettingsRecord)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["user_id"])
            )
            db.commit()
            return
        try:
            db.add(NotificationSettingsRecord(**values))
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.debug(f"Settings row for {values['user_id']} created concurrently")

    @staticmethod
    def _to_values(settings: NotificationSettings, include_identity: bool) -> dict[str, Any]:
        values: dict[str, Any] = {
            column: getattr(settings, column).model_dump() for column in _PREFERENCE_COLUMNS
        }
        values.update(
            digest_frequency=DigestFrequency(settings.digest_frequency).value,
            quiet_hours_start=settings.quiet_hours_start,
            quiet_hours_end=settings.quiet_hours_end,
            timezone=settings.timezone,
        )
        if include_identity:
            now = utcnow()
            values.update(id=_new_id(), user_id=settings.user_id, created_at=now, updated_at=now)
        return values

    @staticmethod
    def _to_model(record: NotificationSettingsRecord) -> NotificationSettings:
        return NotificationSettings(
            id=record.id,
            user_id=record.user_id,
            digest_frequency=DigestFrequency(record.digest_frequency),
            quiet_hours_start=record.quiet_hours_start,
            quiet_hours_end=record.quiet_hours_end,
            timezone=record.timezone,
            created_at=record.created_at,
            updated_at=record.updated_at,
            **{column: getattr(record, column) for column in _PREFERENCE_COLUMNS},
        )


# =============================================================================
# Delivery Ledger
# =============================================================================

class DeliveryLedger:
    """
    Append-mostly log of delivery attempts.

    Entries start PENDING and move to a terminal status exactly once; the
    status updates are guarded so a settled entry never changes again.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def open_entry(self, notification_id: str, channel: DeliveryChannel) -> DeliveryLogEntry:
        record = DeliveryLogRecord(
            id=_new_id(),
            notification_id=notification_id,
            channel=DeliveryChannel.parse(channel).value,
            status=DeliveryStatus.PENDING.value,
            attempted_at=utcnow(),
            retry_count=0,
        )
        with self.session_factory() as db:
            db.add(record)
            db.commit()
            return self._to_model(record)

    def mark_sent(self, entry_id: str, delivered_at: Optional[datetime] = None) -> Optional[DeliveryLogEntry]:
        return self._settle(entry_id, DeliveryStatus.SENT, delivered_at=delivered_at or utcnow())

    def mark_failed(self, entry_id: str, error_message: str) -> Optional[DeliveryLogEntry]:
        return self._settle(entry_id, DeliveryStatus.FAILED, error_message=error_message)

    def get(self, entry_id: str) -> Optional[DeliveryLogEntry]:
        with self.session_factory() as db:
            record = db.get(DeliveryLogRecord, entry_id)
            return self._to_model(record) if record else None

    def list_for_notification(self, notification_id: str) -> list[DeliveryLogEntry]:
        with self.session_factory() as db:
            records = db.execute(
                select(DeliveryLogRecord)
                .where(DeliveryLogRecord.notification_id == notification_id)
                .order_by(DeliveryLogRecord.attempted_at, DeliveryLogRecord.channel)
            ).scalars().all()
            return [self._to_model(r) for r in records]

    def _settle(
        self,
        entry_id: str,
        status: DeliveryStatus,
        delivered_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> Optional[DeliveryLogEntry]:
        with self.session_factory() as db:
            result = db.execute(
                update(DeliveryLogRecord)
                .where(
                    DeliveryLogRecord.id == entry_id,
                    DeliveryLogRecord.status == DeliveryStatus.PENDING.value,
                )
                .values(status=status.value, delivered_at=delivered_at, error_message=error_message)
            )
            db.commit()
            if result.rowcount == 0:
                logger.warning(f"Delivery log entry {entry_id} is not pending, left unchanged")
            record = db.get(DeliveryLogRecord, entry_id, populate_existing=True)
            return self._to_model(record) if record else None

    @staticmethod
    def _to_model(record: DeliveryLogRecord) -> DeliveryLogEntry:
        return DeliveryLogEntry(
            id=record.id,
            notification_id=record.notification_id,
            channel=DeliveryChannel(record.channel),
            status=DeliveryStatus(record.status),
            attempted_at=record.attempted_at,
            delivered_at=record.delivered_at,
            error_message=record.error_message,
            retry_count=record.retry_count,
        )
