from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def new_id() -> str:
  return str(uuid.uuid4())


def parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


OWNER_ROLE = "owner"
MANAGER_ROLE = "channel_manager"


class FieldType(str, Enum):
  TEXT = "text"
  LINK = "link"
  NUMBER = "number"
  DATE = "date"
  DROPDOWN = "dropdown"
  CHECKBOX = "checkbox"


class StageEventType(str, Enum):
  STAGE_COMPLETED = "stage_completed"
  FINALIZED = "finalized"


# Value shape depends on the owning field's FieldType (see fields.coerce_field_value).
FieldValue = str | float | bool | datetime


class User(BaseModel):
  id: str = Field(default_factory=new_id)
  name: str
  email: str = ""
  role: str = "script_writer"
  active: bool = True

  @property
  def is_owner(self) -> bool:
    return self.role == OWNER_ROLE


class Column(BaseModel):
  id: str = Field(default_factory=new_id)
  name: str
  order: int = 0


class FieldPermissions(BaseModel):
  editable_by_roles: set[str] = Field(default_factory=set)
  editable_by_column_responsibility: bool = False
  editable_by_users: set[str] = Field(default_factory=set)


class CustomField(BaseModel):
  id: str = Field(default_factory=new_id)
  name: str
  type: FieldType = FieldType.TEXT
  order: int = 0
  show_on_card_front: bool = False
  dropdown_options: list[str] = Field(default_factory=list)
  # None means unrestricted, not deny-all.
  permissions: FieldPermissions | None = None
  required_in_columns: set[str] = Field(default_factory=set)


class Channel(BaseModel):
  id: str = Field(default_factory=new_id)
  name: str
  description: str = ""
  archived: bool = False
  columns: list[Column] = Field(default_factory=list)
  custom_fields: list[CustomField] = Field(default_factory=list)
  members: list[str] = Field(default_factory=list)
  manager_id: str | None = None
  column_assignments: dict[str, list[str]] = Field(default_factory=dict)
  external_channel_id: str | None = None
  created_at: datetime = Field(default_factory=utcnow)

  @field_validator("created_at", mode="before")
  @classmethod
  def _created_utc(cls, v: object) -> object:
    return parse_dt_utc(v)

  def ordered_columns(self) -> list[Column]:
    return sorted(self.columns, key=lambda c: c.order)

  def column(self, column_id: str) -> Column | None:
    return next((c for c in self.columns if c.id == column_id), None)

  def column_index(self, column_id: str) -> int:
    for idx, c in enumerate(self.ordered_columns()):
      if c.id == column_id:
        return idx
    return -1

  def terminal_column(self) -> Column:
    return self.ordered_columns()[-1]

  def is_terminal(self, column_id: str) -> bool:
    return bool(self.columns) and self.terminal_column().id == column_id

  def field(self, field_id: str) -> CustomField | None:
    return next((f for f in self.custom_fields if f.id == field_id), None)


class Task(BaseModel):
  id: str = Field(default_factory=new_id)
  channel_id: str
  column_id: str
  title: str
  description: str = ""
  assigned_to: str | None = None
  due_date: datetime | None = None
  custom_field_values: dict[str, Any] = Field(default_factory=dict)
  notes: list[str] = Field(default_factory=list)
  links: list[str] = Field(default_factory=list)
  completed: bool = False
  created_at: datetime = Field(default_factory=utcnow)
  updated_at: datetime = Field(default_factory=utcnow)

  @field_validator("due_date", "created_at", "updated_at", mode="before")
  @classmethod
  def _dates_utc(cls, v: object) -> object:
    return parse_dt_utc(v)


class StageEvent(BaseModel):
  model_config = ConfigDict(frozen=True)

  id: str = Field(default_factory=new_id)
  task_id: str
  channel_id: str
  actor_user_id: str
  from_column_id: str
  to_column_id: str
  event_type: StageEventType = StageEventType.STAGE_COMPLETED
  occurred_at: datetime = Field(default_factory=utcnow)

  @field_validator("occurred_at", mode="before")
  @classmethod
  def _occurred_utc(cls, v: object) -> object:
    return parse_dt_utc(v)


class TerminalOutputs(BaseModel):
  video_url: str | None = None
  thumbnail_url: str | None = None
  script_url: str | None = None
  audio_url: str | None = None
  other_links: list[str] = Field(default_factory=list)

  @field_validator("video_url", "thumbnail_url", "script_url", "audio_url", mode="before")
  @classmethod
  def _blank_to_none(cls, v: object) -> object:
    if isinstance(v, str) and not v.strip():
      return None
    return v.strip() if isinstance(v, str) else v

  @field_validator("other_links", mode="before")
  @classmethod
  def _split_links(cls, v: object) -> object:
    if v is None:
      return []
    if isinstance(v, str):
      v = v.splitlines()
    if isinstance(v, list):
      return [str(x).strip() for x in v if str(x).strip()]
    return v


class CompletedTask(BaseModel):
  model_config = ConfigDict(frozen=True)

  id: str = Field(default_factory=new_id)
  task_id: str
  title: str
  description: str = ""
  channel_id: str
  channel_name: str = ""
  column_id: str
  column_name: str = ""
  assigned_to: str | None = None
  assignees: list[str] = Field(default_factory=list)
  due_date: datetime | None = None
  completed_by: str
  completed_at: datetime = Field(default_factory=utcnow)
  task_created_at: datetime | None = None
  custom_field_values: dict[str, Any] = Field(default_factory=dict)
  notes: list[str] = Field(default_factory=list)
  links: list[str] = Field(default_factory=list)
  video_url: str | None = None
  thumbnail_url: str | None = None
  script_url: str | None = None
  audio_url: str | None = None
  other_links: list[str] = Field(default_factory=list)

  @field_validator("due_date", "completed_at", "task_created_at", mode="before")
  @classmethod
  def _dates_utc(cls, v: object) -> object:
    return parse_dt_utc(v)


def default_columns() -> list[Column]:
  return [
    Column(id="script", name="Script", order=0),
    Column(id="audio", name="Audio", order=1),
    Column(id="edit", name="Edit", order=2),
    Column(id="qa", name="QA", order=3),
    Column(id="upload", name="Upload", order=4),
  ]


class ChannelUpdate(BaseModel):
  """Partial channel update; only explicitly set fields are applied."""

  name: str | None = None
  description: str | None = None
  archived: bool | None = None
  columns: list[Column] | None = None
  custom_fields: list[CustomField] | None = None
  members: list[str] | None = None
  manager_id: str | None = None
  column_assignments: dict[str, list[str]] | None = None
  external_channel_id: str | None = None


class TaskUpdate(BaseModel):
  """Partial task update; only explicitly set fields are applied."""

  title: str | None = None
  description: str | None = None
  due_date: datetime | None = None
  assigned_to: str | None = None
  custom_field_values: dict[str, Any] | None = None
  notes: list[str] | None = None
  links: list[str] | None = None

  @field_validator("due_date", mode="before")
  @classmethod
  def _due_utc(cls, v: object) -> object:
    return parse_dt_utc(v)
