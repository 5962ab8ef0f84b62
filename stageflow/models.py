from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from stageflow.domain import utcnow


def _uuid() -> str:
  return str(uuid.uuid4())


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
  name: Mapped[str] = mapped_column(String, nullable=False)
  email: Mapped[str] = mapped_column(String, nullable=False, default="")
  role: Mapped[str] = mapped_column(String, nullable=False, index=True)
  active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Channel(Base):
  __tablename__ = "channels"

  id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
  name: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  # Columns and custom field definitions live on the channel document.
  columns: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
  custom_fields: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
  members: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
  manager_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
  column_assignments: Mapped[dict[str, list[str]]] = mapped_column(JSON, nullable=False, default=dict)
  external_channel_id: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"

  id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
  channel_id: Mapped[str] = mapped_column(String(64), ForeignKey("channels.id", ondelete="CASCADE"), nullable=False, index=True)
  column_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  assigned_to: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
  due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  custom_field_values: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
  notes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
  links: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
  completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class StageEvent(Base):
  __tablename__ = "stage_events"

  # Append-only; seq keeps insertion order when timestamps tie.
  seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, default=_uuid)
  task_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
  channel_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
  actor_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
  from_column_id: Mapped[str] = mapped_column(String(64), nullable=False)
  to_column_id: Mapped[str] = mapped_column(String(64), nullable=False)
  event_type: Mapped[str] = mapped_column(String, nullable=False)
  occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class CompletedTask(Base):
  __tablename__ = "completed_tasks"

  seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, default=_uuid)
  task_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
  channel_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
  completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
  # Full archived record (title, outputs, field values...) as written at completion.
  payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
