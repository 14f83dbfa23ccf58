"""SQLAlchemy tables backing the document store."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ObjectRow(Base):
    """One stored object; class fields live in ``data``."""

    __tablename__ = 'parse_objects'
    __table_args__ = (
        UniqueConstraint('class_name', 'object_id', name='uq_parse_objects_class_object'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    class_name: Mapped[str] = mapped_column(String(128), index=True)
    object_id: Mapped[str] = mapped_column(String(32))
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime)


class RelationRow(Base):
    """Membership of ``related`` in the ``key`` relation of ``owning``."""

    __tablename__ = 'parse_relations'
    __table_args__ = (
        UniqueConstraint('owning_class', 'owning_id', 'key', 'related_id', name='uq_parse_relations_member'),
        Index('ix_parse_relations_owner', 'owning_class', 'owning_id', 'key'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owning_class: Mapped[str] = mapped_column(String(128))
    owning_id: Mapped[str] = mapped_column(String(32))
    key: Mapped[str] = mapped_column(String(128))
    related_class: Mapped[str] = mapped_column(String(128))
    related_id: Mapped[str] = mapped_column(String(32))


class SessionRow(Base):
    __tablename__ = 'parse_sessions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_token: Mapped[str] = mapped_column(String(64), unique=True)
    user_id: Mapped[str] = mapped_column(String(32), index=True)
    installation_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime)
