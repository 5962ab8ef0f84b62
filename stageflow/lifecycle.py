from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from stageflow.columns import next_column, require_column, resolve_assignee
from stageflow.domain import Channel, Column, StageEvent, StageEventType, Task, User
from stageflow.events import record_stage_event
from stageflow.errors import InvalidColumn, RequiredFieldsMissing
from stageflow.fields import missing_required_fields
from stageflow.repository import Repository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transitioned:
  task: Task
  event: StageEvent | None
  outcome: Literal["advanced"] = "advanced"


@dataclass(frozen=True)
class AlreadyTerminal:
  """The task sits in the last column; only completion can move it on."""

  task: Task
  outcome: Literal["awaiting_finalization"] = "awaiting_finalization"


AdvanceResult = Transitioned | AlreadyTerminal


def ensure_can_leave(channel: Channel, task: Task) -> None:
  missing = missing_required_fields(channel, task)
  if missing:
    names = [f.name for f in missing]
    logger.warning("Task %s blocked in column %s; missing %s", task.id, task.column_id, ", ".join(names))
    raise RequiredFieldsMissing(names)


async def _transition(
  repo: Repository,
  *,
  channel: Channel,
  task: Task,
  to_column: Column,
  actor: User,
  now: datetime,
) -> Transitioned:
  ensure_can_leave(channel, task)
  from_column_id = task.column_id
  moved = task.model_copy(
    update={
      "column_id": to_column.id,
      "assigned_to": resolve_assignee(channel, to_column.id),
      "updated_at": now,
    },
    deep=True,
  )
  await repo.save_task(moved)
  ev = await record_stage_event(
    repo,
    task_id=task.id,
    channel_id=channel.id,
    actor_user_id=actor.id,
    from_column_id=from_column_id,
    to_column_id=to_column.id,
    event_type=StageEventType.STAGE_COMPLETED,
    occurred_at=now,
  )
  logger.info("Task %s moved %s -> %s by %s", task.id, from_column_id, to_column.id, actor.id)
  return Transitioned(task=moved, event=ev)


async def advance(repo: Repository, *, channel: Channel, task: Task, actor: User, now: datetime) -> AdvanceResult:
  require_column(channel, task.column_id)
  nxt = next_column(channel, task.column_id)
  if nxt is None:
    return AlreadyTerminal(task=task)
  return await _transition(repo, channel=channel, task=task, to_column=nxt, actor=actor, now=now)


async def move_to_column(
  repo: Repository,
  *,
  channel: Channel,
  task: Task,
  column_id: str,
  actor: User,
  now: datetime,
) -> Transitioned:
  """Manager drag-and-drop: any destination, same checks and event as ``advance``."""
  require_column(channel, task.column_id)
  target = channel.column(column_id)
  if target is None:
    raise InvalidColumn(f"Invalid column for channel {channel.id}: {column_id}", details={"columnId": column_id})
  if target.id == task.column_id:
    return Transitioned(task=task, event=None)
  return await _transition(repo, channel=channel, task=task, to_column=target, actor=actor, now=now)
