"""
Entity auditing and read-only tracking, both applied at flush time.

The actor stamped into created_by/updated_by is whatever the UnitOfWork put
into ``session.info[CURRENT_ACTOR_KEY]`` when it began; nothing is read from
global state.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from loguru import logger
from sqlalchemy import DateTime, event, inspect
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import Field, SQLModel

CURRENT_ACTOR_KEY = "current_actor"
READ_ONLY_KEY = "read_only_identities"

# Microsecond precision on MySQL so updated_at can be strictly after created_at
AuditTimestamp = DateTime(timezone=True).with_variant(mysql.DATETIME(fsp=6), "mysql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditMixin(SQLModel):
    """Creation/modification timestamps and authors, maintained by the session."""
    created_at: Optional[datetime] = Field(default=None, sa_type=AuditTimestamp, description="Created at")
    updated_at: Optional[datetime] = Field(default=None, sa_type=AuditTimestamp, description="Last modified at")
    created_by: Optional[str] = Field(default=None, max_length=100, description="Created by")
    updated_by: Optional[str] = Field(default=None, max_length=100, description="Last modified by")


def _as_aware(value: datetime) -> datetime:
    # SQLite hands timestamps back naive
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _strictly_after(now: datetime, previous: Optional[datetime]) -> datetime:
    if previous is None:
        return now
    previous = _as_aware(previous)
    return now if now > previous else previous + timedelta(microseconds=1)


def _discard_pending_changes(state) -> None:
    """Accept in-memory values as the loaded state so the flush sees no diff."""
    for attr in state.attrs:
        if attr.history.has_changes():
            set_committed_value(state.obj(), attr.key, attr.value)


def _protect_created_fields(state) -> None:
    for key in ("created_at", "created_by"):
        history = state.attrs[key].history
        if history.has_changes() and history.deleted:
            logger.warning(f"Ignoring change to immutable {key} on {state.class_.__name__} {state.identity}")
            set_committed_value(state.obj(), key, history.deleted[0])


def mark_read_only(session: Session, entity) -> None:
    """Exclude a persistent entity from dirty checking for the rest of the session."""
    state = inspect(entity)
    if state.key is not None:
        session.info.setdefault(READ_ONLY_KEY, set()).add(state.key)


def is_read_only(session: Session, entity) -> bool:
    return inspect(entity).key in session.info.get(READ_ONLY_KEY, ())


@event.listens_for(Session, "before_flush")
def _before_flush(session: Session, flush_context, instances) -> None:
    actor = session.info.get(CURRENT_ACTOR_KEY)
    now = utcnow()

    for obj in session.new:
        if isinstance(obj, AuditMixin):
            obj.created_at = now
            obj.updated_at = now
            obj.created_by = actor
            obj.updated_by = actor

    for obj in session.dirty:
        state = inspect(obj)
        if is_read_only(session, obj):
            _discard_pending_changes(state)
            continue
        if not isinstance(obj, AuditMixin):
            continue
        if not session.is_modified(obj, include_collections=False):
            continue
        _protect_created_fields(state)
        obj.updated_at = _strictly_after(now, obj.updated_at or obj.created_at)
        obj.updated_by = actor
