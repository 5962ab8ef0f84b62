from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from stageflow import analytics, archival, lifecycle
from stageflow import columns as board
from stageflow.analytics import DateWindow, KpiBundle
from stageflow.config import Settings, settings as default_settings
from stageflow.domain import (
  Channel,
  ChannelUpdate,
  Column,
  CompletedTask,
  CustomField,
  StageEvent,
  Task,
  TaskUpdate,
  TerminalOutputs,
  User,
  default_columns,
  utcnow,
)
from stageflow.errors import ChannelNotFound, InvalidColumn, InvalidFieldValue, TaskNotFound, UserNotFound
from stageflow.fields import apply_field_values, normalize_custom_fields
from stageflow.permissions import editable_field_ids
from stageflow.repository import Repository

logger = logging.getLogger(__name__)


class StageflowService:
  """
  The operations collaborators call: channels, columns, tasks, transitions,
  completion and analytics.

  Task mutations are serialised per task and column edits per channel; each
  runs inside one repository transaction so a failure leaves nothing behind.
  """

  def __init__(
    self,
    repo: Repository,
    *,
    clock: Callable[[], datetime] = utcnow,
    config: Settings | None = None,
  ) -> None:
    self.repo = repo
    self._clock = clock
    self._config = config or default_settings
    self._task_locks: dict[str, asyncio.Lock] = {}
    self._channel_locks: dict[str, asyncio.Lock] = {}

  @asynccontextmanager
  async def _task_scope(self, task_id: str) -> AsyncIterator[None]:
    lock = self._task_locks.setdefault(task_id, asyncio.Lock())
    async with lock:
      async with self.repo.transaction():
        yield

  @asynccontextmanager
  async def _channel_scope(self, channel_id: str) -> AsyncIterator[None]:
    lock = self._channel_locks.setdefault(channel_id, asyncio.Lock())
    async with lock:
      async with self.repo.transaction():
        yield

  async def _require_user(self, user_id: str) -> User:
    u = await self.repo.get_user(user_id)
    if u is None:
      raise UserNotFound(user_id)
    return u

  async def _require_channel(self, channel_id: str) -> Channel:
    ch = await self.repo.get_channel(channel_id)
    if ch is None:
      raise ChannelNotFound(channel_id)
    return ch

  async def _require_task(self, task_id: str) -> Task:
    t = await self.repo.get_task(task_id)
    if t is None:
      raise TaskNotFound(task_id)
    return t

  # users

  async def create_user(self, name: str, *, email: str = "", role: str = "script_writer", user_id: str | None = None) -> User:
    u = User(name=name, email=email, role=role) if user_id is None else User(id=user_id, name=name, email=email, role=role)
    async with self.repo.transaction():
      await self.repo.save_user(u)
    return u

  async def get_user(self, user_id: str) -> User:
    return await self._require_user(user_id)

  async def list_users(self) -> list[User]:
    return await self.repo.list_users()

  # channels

  async def create_channel(
    self,
    name: str,
    *,
    description: str = "",
    columns: Sequence[Column] | None = None,
    custom_fields: Sequence[CustomField] | None = None,
    members: Sequence[str] | None = None,
    manager_id: str | None = None,
    column_assignments: Mapping[str, Sequence[str]] | None = None,
    external_channel_id: str | None = None,
    channel_id: str | None = None,
  ) -> Channel:
    if not (name or "").strip():
      raise InvalidFieldValue("Channel name is required")
    cols = board.normalize_columns(list(columns) if columns is not None else default_columns())
    col_ids = {c.id for c in cols}
    fields = normalize_custom_fields(list(custom_fields or []), col_ids)
    data: dict[str, Any] = {
      "name": name.strip(),
      "description": description,
      "columns": cols,
      "custom_fields": fields,
      "members": list(dict.fromkeys(members or [])),
      "manager_id": manager_id,
      "column_assignments": _clean_assignments(column_assignments or {}, col_ids),
      "external_channel_id": external_channel_id,
      "created_at": self._clock(),
    }
    if channel_id is not None:
      data["id"] = channel_id
    ch = Channel(**data)
    async with self.repo.transaction():
      await self.repo.save_channel(ch)
    logger.info("Channel %s created with %d column(s)", ch.id, len(ch.columns))
    return ch

  async def get_channel(self, channel_id: str) -> Channel:
    return await self._require_channel(channel_id)

  async def list_channels(self, *, include_archived: bool = True) -> list[Channel]:
    return await self.repo.list_channels(include_archived=include_archived)

  async def update_channel(self, channel_id: str, changes: ChannelUpdate) -> Channel:
    fields_set = changes.model_fields_set
    async with self._channel_scope(channel_id):
      ch = await self._require_channel(channel_id)
      if "columns" in fields_set:
        if changes.columns is None:
          raise InvalidColumn("A channel must have at least one column")
        tasks = await self.repo.list_tasks(channel_id=channel_id)
        ch = board.replace_columns(ch, changes.columns, tasks)
      col_ids = {c.id for c in ch.columns}

      update: dict[str, Any] = {}
      if "name" in fields_set:
        if not (changes.name or "").strip():
          raise InvalidFieldValue("Channel name is required")
        update["name"] = changes.name.strip()
      if "description" in fields_set:
        update["description"] = changes.description or ""
      if "archived" in fields_set:
        update["archived"] = bool(changes.archived)
      if "custom_fields" in fields_set:
        update["custom_fields"] = normalize_custom_fields(changes.custom_fields or [], col_ids)
      if "members" in fields_set:
        update["members"] = list(dict.fromkeys(changes.members or []))
      if "manager_id" in fields_set:
        update["manager_id"] = changes.manager_id
      if "column_assignments" in fields_set:
        update["column_assignments"] = _clean_assignments(changes.column_assignments or {}, col_ids)
      if "external_channel_id" in fields_set:
        update["external_channel_id"] = changes.external_channel_id

      ch = ch.model_copy(update=update, deep=True)
      await self.repo.save_channel(ch)
    logger.info("Channel %s updated (%s)", channel_id, ", ".join(sorted(fields_set)) or "no changes")
    return ch

  async def delete_channel(self, channel_id: str) -> None:
    async with self._channel_scope(channel_id):
      await self._require_channel(channel_id)
      task_ids = [t.id for t in await self.repo.list_tasks(channel_id=channel_id)]
      await self.repo.delete_channel(channel_id)
    self._channel_locks.pop(channel_id, None)
    for task_id in task_ids:
      self._task_locks.pop(task_id, None)
    logger.info("Channel %s deleted with its tasks, archive and stage events", channel_id)

  # column administration (never emits stage events)

  async def add_column(self, channel_id: str, name: str, *, position: int | None = None, column_id: str | None = None) -> Channel:
    async with self._channel_scope(channel_id):
      ch = board.add_column(await self._require_channel(channel_id), name, position=position, column_id=column_id)
      await self.repo.save_channel(ch)
    return ch

  async def rename_column(self, channel_id: str, column_id: str, name: str) -> Channel:
    async with self._channel_scope(channel_id):
      ch = board.rename_column(await self._require_channel(channel_id), column_id, name)
      await self.repo.save_channel(ch)
    return ch

  async def reorder_columns(self, channel_id: str, column_ids: Sequence[str]) -> Channel:
    async with self._channel_scope(channel_id):
      ch = board.reorder_columns(await self._require_channel(channel_id), column_ids)
      await self.repo.save_channel(ch)
    return ch

  async def delete_column(self, channel_id: str, column_id: str, *, destination_column_id: str | None = None) -> Channel:
    async with self._channel_scope(channel_id):
      ch = await self._require_channel(channel_id)
      tasks = await self.repo.list_tasks(channel_id=channel_id, column_id=column_id)
      ch, migrated = board.delete_column(ch, column_id, tasks, destination_column_id=destination_column_id)
      for t in migrated:
        await self.repo.save_task(t)
      await self.repo.save_channel(ch)
    logger.info("Column %s deleted from channel %s", column_id, channel_id)
    return ch

  # tasks

  async def create_task(
    self,
    channel_id: str,
    title: str,
    *,
    column_id: str | None = None,
    description: str = "",
    assigned_to: str | None = None,
    due_date: datetime | None = None,
    custom_field_values: Mapping[str, Any] | None = None,
    notes: Sequence[str] | None = None,
    links: Sequence[str] | None = None,
    acting_user_id: str | None = None,
  ) -> Task:
    if not (title or "").strip():
      raise InvalidFieldValue("Task title is required")
    async with self.repo.transaction():
      ch = await self._require_channel(channel_id)
      actor = await self._require_user(acting_user_id) if acting_user_id else None
      target = board.require_column(ch, column_id) if column_id else ch.ordered_columns()[0]
      if ch.is_terminal(target.id) and len(ch.columns) > 1:
        raise InvalidColumn("Tasks cannot be created in the terminal column", details={"columnId": target.id})
      now = self._clock()
      task = Task(
        channel_id=ch.id,
        column_id=target.id,
        title=title.strip(),
        description=description,
        assigned_to=assigned_to if assigned_to is not None else board.resolve_assignee(ch, target.id),
        due_date=due_date,
        notes=list(notes or []),
        links=list(links or []),
        created_at=now,
        updated_at=now,
      )
      if custom_field_values:
        task = task.model_copy(update={"custom_field_values": apply_field_values(ch, task, actor, custom_field_values)})
      await self.repo.save_task(task)
    logger.info("Task %s created in %s/%s", task.id, ch.id, task.column_id)
    return task

  async def get_task(self, task_id: str) -> Task:
    return await self._require_task(task_id)

  async def list_tasks(self, *, channel_id: str | None = None, column_id: str | None = None) -> list[Task]:
    return await self.repo.list_tasks(channel_id=channel_id, column_id=column_id)

  async def update_task(self, task_id: str, acting_user_id: str, changes: TaskUpdate) -> Task:
    fields_set = changes.model_fields_set
    async with self._task_scope(task_id):
      task = await self._require_task(task_id)
      actor = await self._require_user(acting_user_id)
      ch = await self._require_channel(task.channel_id)

      update: dict[str, Any] = {}
      if "custom_field_values" in fields_set and changes.custom_field_values:
        update["custom_field_values"] = apply_field_values(ch, task, actor, changes.custom_field_values)
      if "title" in fields_set:
        if not (changes.title or "").strip():
          raise InvalidFieldValue("Task title is required")
        update["title"] = changes.title.strip()
      if "description" in fields_set:
        update["description"] = changes.description or ""
      if "due_date" in fields_set:
        update["due_date"] = changes.due_date
      if "assigned_to" in fields_set:
        update["assigned_to"] = changes.assigned_to
      if "notes" in fields_set:
        update["notes"] = list(changes.notes or [])
      if "links" in fields_set:
        update["links"] = list(changes.links or [])
      update["updated_at"] = self._clock()

      task = task.model_copy(update=update, deep=True)
      await self.repo.save_task(task)
    return task

  async def delete_task(self, task_id: str) -> None:
    async with self._task_scope(task_id):
      await self._require_task(task_id)
      await self.repo.delete_task(task_id)
    self._task_locks.pop(task_id, None)
    logger.info("Task %s deleted", task_id)

  async def editable_fields(self, task_id: str, acting_user_id: str) -> list[str]:
    task = await self._require_task(task_id)
    actor = await self._require_user(acting_user_id)
    ch = await self._require_channel(task.channel_id)
    return editable_field_ids(actor, task, ch)

  # transitions

  async def advance_task(self, task_id: str, acting_user_id: str) -> lifecycle.AdvanceResult:
    async with self._task_scope(task_id):
      task = await self._require_task(task_id)
      actor = await self._require_user(acting_user_id)
      ch = await self._require_channel(task.channel_id)
      return await lifecycle.advance(self.repo, channel=ch, task=task, actor=actor, now=self._clock())

  async def move_task_to_column(self, task_id: str, column_id: str, acting_user_id: str) -> lifecycle.Transitioned:
    async with self._task_scope(task_id):
      task = await self._require_task(task_id)
      actor = await self._require_user(acting_user_id)
      ch = await self._require_channel(task.channel_id)
      return await lifecycle.move_to_column(self.repo, channel=ch, task=task, column_id=column_id, actor=actor, now=self._clock())

  async def complete_task(
    self,
    task_id: str,
    acting_user_id: str,
    terminal_outputs: TerminalOutputs | Mapping[str, Any] | None = None,
  ) -> CompletedTask:
    outputs = (
      terminal_outputs
      if isinstance(terminal_outputs, TerminalOutputs)
      else TerminalOutputs.model_validate(dict(terminal_outputs or {}))
    )
    async with self._task_scope(task_id):
      task = await self._require_task(task_id)
      actor = await self._require_user(acting_user_id)
      ch = await self._require_channel(task.channel_id)
      record = await archival.complete(
        self.repo,
        channel=ch,
        task=task,
        actor=actor,
        outputs=outputs,
        now=self._clock(),
        emit_finalized=self._config.emit_finalized_events,
      )
    self._task_locks.pop(task_id, None)
    return record

  # read side

  async def list_completed_tasks(self, *, channel_id: str | None = None) -> list[CompletedTask]:
    return await self.repo.list_completed_tasks(channel_id=channel_id)

  async def list_stage_events(self, *, channel_id: str | None = None, task_id: str | None = None) -> list[StageEvent]:
    return await self.repo.list_stage_events(channel_id=channel_id, task_id=task_id)

  async def get_analytics(
    self,
    *,
    channel_ids: Sequence[str] | None = None,
    user_ids: Sequence[str] | None = None,
    date_range: DateWindow | None = None,
  ) -> KpiBundle:
    now = self._clock()
    window = date_range or DateWindow.last_days(self._config.default_window_days, now=now)
    snap = await self.repo.snapshot()
    return analytics.build_kpis(
      snap,
      window=window,
      now=now,
      channel_ids=channel_ids,
      user_ids=user_ids,
      bottleneck_threshold_days=self._config.bottleneck_threshold_days,
      bottleneck_limit=self._config.bottleneck_limit,
      aging_limit=self._config.aging_task_limit,
    )


def _clean_assignments(assignments: Mapping[str, Sequence[str]], column_ids: set[str]) -> dict[str, list[str]]:
  return {cid: list(dict.fromkeys(uids)) for cid, uids in assignments.items() if cid in column_ids}
