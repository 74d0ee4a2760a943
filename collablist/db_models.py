# PURPOSE: define how users, lists, members, tasks, ledger entries and push
# subscriptions look in the database.

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base, UTCDateTime


def now_utc():
    """Return timezone-aware UTC datetime (stored in DB)."""
    return datetime.now(UTC)


class UserDB(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    username: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now_utc)


class ListDB(Base):
    __tablename__ = "lists"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(UTCDateTime, default=now_utc)

    # Members are owned by the list: no independent lifecycle.
    members = relationship(
        "ListMemberDB",
        back_populates="list",
        cascade="all, delete-orphan",
        order_by="ListMemberDB.id",
        lazy="selectin",
    )


class ListMemberDB(Base):
    __tablename__ = "list_members"
    __table_args__ = (UniqueConstraint("list_id", "user_id", name="uq_list_member"),)

    id = Column(Integer, primary_key=True)
    list_id = Column(Integer, ForeignKey("lists.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String, nullable=False, default="viewer")  # viewer | editor | owner

    list = relationship("ListDB", back_populates="members")


class TaskDB(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    list_id = Column(Integer, ForeignKey("lists.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)  # creator
    text = Column(String, nullable=False)
    completed = Column(Boolean, nullable=False, default=False)
    due = Column(UTCDateTime, nullable=True)
    priority = Column(String, default="medium")
    category = Column(String, default="General")
    repeat = Column(String, nullable=True)  # daily | weekly | monthly | NULL
    last_completed_at = Column(UTCDateTime, nullable=True)
    # Ordered independently per recurrence class (repeat NULL vs not NULL)
    order = Column(Integer, nullable=False, default=1)
    created_at = Column(UTCDateTime, default=now_utc)
    updated_at = Column(UTCDateTime, default=now_utc)

    @property
    def recurring(self) -> bool:
        return self.repeat is not None


class NotificationLogDB(Base):
    """One row per reminder stage already sent for a task's due instant."""

    __tablename__ = "notification_log"
    __table_args__ = (
        UniqueConstraint("task_id", "due", "stage", name="uq_notification_slot"),
    )

    id = Column(Integer, primary_key=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    list_id = Column(Integer, nullable=False)
    due = Column(UTCDateTime, nullable=False)
    stage = Column(String, nullable=False)  # 15min | 5min | 0min
    sent_at = Column(UTCDateTime, nullable=False, default=now_utc)


class PushSubscriptionDB(Base):
    __tablename__ = "push_subscriptions"
    __table_args__ = (UniqueConstraint("user_id", "endpoint", name="uq_user_endpoint"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    endpoint = Column(String, nullable=False)
    p256dh = Column(String, nullable=False)
    auth = Column(String, nullable=False)
    created_at = Column(UTCDateTime, default=now_utc)


# Helpful indexes for scoping, sweeping and retention
Index("ix_tasks_list_order", TaskDB.list_id, TaskDB.order)
Index("ix_tasks_due", TaskDB.due)
Index("ix_tasks_repeat", TaskDB.repeat)
Index("ix_notification_log_task", NotificationLogDB.task_id)
Index("ix_notification_log_sent_at", NotificationLogDB.sent_at)
