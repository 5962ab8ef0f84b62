from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from stageflow.domain import parse_dt_utc


class UserOut(BaseModel):
  id: str
  name: str
  email: str
  role: str
  active: bool = True


class UserCreateIn(BaseModel):
  id: str | None = Field(default=None, min_length=1, max_length=64)
  name: str = Field(min_length=1, max_length=120)
  email: str = Field(default="", max_length=320)
  role: str = Field(default="script_writer", min_length=1, max_length=64)


class ColumnIO(BaseModel):
  id: str | None = Field(default=None, min_length=1, max_length=64)
  name: str = Field(min_length=1, max_length=120)
  order: int = 0


class FieldPermissionsIO(BaseModel):
  editableByRoles: list[str] = []
  editableByColumnResponsibility: bool = False
  editableByUsers: list[str] = []


class CustomFieldIO(BaseModel):
  id: str | None = Field(default=None, min_length=1, max_length=64)
  name: str = Field(min_length=1, max_length=120)
  type: Literal["text", "link", "number", "date", "dropdown", "checkbox"] = "text"
  order: int = 0
  showOnCardFront: bool = False
  dropdownOptions: list[str] = []
  permissions: FieldPermissionsIO | None = None
  requiredInColumns: list[str] = []


class ChannelOut(BaseModel):
  id: str
  name: str
  description: str
  archived: bool
  columns: list[ColumnIO]
  customFields: list[CustomFieldIO]
  members: list[str]
  managerId: str | None
  columnAssignments: dict[str, list[str]]
  externalChannelId: str | None
  createdAt: datetime


class ChannelCreateIn(BaseModel):
  id: str | None = Field(default=None, min_length=1, max_length=64)
  name: str = Field(min_length=1, max_length=200)
  description: str = ""
  columns: list[ColumnIO] | None = None
  customFields: list[CustomFieldIO] = []
  members: list[str] = []
  managerId: str | None = None
  columnAssignments: dict[str, list[str]] = {}
  externalChannelId: str | None = None


class ChannelUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = None
  archived: bool | None = None
  columns: list[ColumnIO] | None = None
  customFields: list[CustomFieldIO] | None = None
  members: list[str] | None = None
  managerId: str | None = None
  columnAssignments: dict[str, list[str]] | None = None
  externalChannelId: str | None = None


class ColumnCreateIn(BaseModel):
  id: str | None = Field(default=None, min_length=1, max_length=64)
  name: str = Field(min_length=1, max_length=120)
  position: int | None = Field(default=None, ge=0)


class ColumnRenameIn(BaseModel):
  name: str = Field(min_length=1, max_length=120)


class ColumnReorderIn(BaseModel):
  columnIds: list[str]


class TaskOut(BaseModel):
  id: str
  channelId: str
  columnId: str
  title: str
  description: str
  assignedTo: str | None
  dueDate: datetime | None
  customFieldValues: dict[str, Any]
  notes: list[str]
  links: list[str]
  completed: bool
  createdAt: datetime
  updatedAt: datetime


class TaskCreateIn(BaseModel):
  columnId: str | None = None
  title: str = Field(min_length=1, max_length=500)
  description: str = ""
  assignedTo: str | None = None
  dueDate: datetime | None = None
  customFieldValues: dict[str, Any] = {}
  notes: list[str] = []
  links: list[str] = []

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return parse_dt_utc(v)


class TaskUpdateIn(BaseModel):
  title: str | None = Field(default=None, min_length=1, max_length=500)
  description: str | None = None
  assignedTo: str | None = None
  dueDate: datetime | None = None
  customFieldValues: dict[str, Any] | None = None
  notes: list[str] | None = None
  links: list[str] | None = None

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return parse_dt_utc(v)


class TaskMoveIn(BaseModel):
  columnId: str


class TaskCompleteIn(BaseModel):
  videoUrl: str | None = None
  thumbnailUrl: str | None = None
  scriptUrl: str | None = None
  audioUrl: str | None = None
  otherLinks: list[str] | str = []


class StageEventOut(BaseModel):
  id: str
  taskId: str
  channelId: str
  actorUserId: str
  fromColumnId: str
  toColumnId: str
  eventType: str
  occurredAt: datetime


class AdvanceOut(BaseModel):
  outcome: Literal["advanced", "awaiting_finalization"]
  task: TaskOut
  event: StageEventOut | None = None


class CompletedTaskOut(BaseModel):
  id: str
  taskId: str
  title: str
  description: str
  channelId: str
  channelName: str
  columnId: str
  columnName: str
  assignedTo: str | None
  assignees: list[str]
  dueDate: datetime | None
  completedBy: str
  completedAt: datetime
  taskCreatedAt: datetime | None
  customFieldValues: dict[str, Any]
  notes: list[str]
  links: list[str]
  videoUrl: str | None
  thumbnailUrl: str | None
  scriptUrl: str | None
  audioUrl: str | None
  otherLinks: list[str]


class EditableFieldsOut(BaseModel):
  taskId: str
  fieldIds: list[str]


class ColumnLoadOut(BaseModel):
  channelId: str
  channelName: str
  columnId: str
  columnName: str
  taskCount: int
  avgDays: float


class AgingTaskOut(BaseModel):
  taskId: str
  title: str
  channelId: str
  columnId: str
  columnName: str
  daysInColumn: int


class LeaderboardEntryOut(BaseModel):
  userId: str
  name: str
  role: str
  completed: int
  stageCompletions: int
  score: int


class ChannelMetricsOut(BaseModel):
  channelId: str
  name: str
  activeTasks: int
  completed: int
  stageCompletions: int
  avgCycleTime: float
  contribution: int


class AnalyticsOut(BaseModel):
  windowStart: datetime
  windowEnd: datetime
  inProgress: int
  overdue: int
  dueToday: int
  completed: int
  finalized: int
  stageCompletions: int
  throughput: float
  avgCycleTime: float
  onTimeRate: int
  bottlenecks: list[ColumnLoadOut]
  columnEfficiency: list[ColumnLoadOut]
  agingTasks: list[AgingTaskOut]
  leaderboard: list[LeaderboardEntryOut]
  channels: list[ChannelMetricsOut]
