from __future__ import annotations

import logging
from datetime import datetime

from stageflow.domain import Channel, CompletedTask, StageEventType, Task, TerminalOutputs, User
from stageflow.errors import Forbidden, NotInTerminalColumn
from stageflow.events import record_stage_event
from stageflow.lifecycle import ensure_can_leave
from stageflow.permissions import can_finalize
from stageflow.repository import Repository

logger = logging.getLogger(__name__)


def build_completed_task(
  channel: Channel,
  task: Task,
  actor: User,
  outputs: TerminalOutputs,
  *,
  now: datetime,
) -> CompletedTask:
  column = channel.column(task.column_id)
  return CompletedTask(
    task_id=task.id,
    title=task.title,
    description=task.description,
    channel_id=channel.id,
    channel_name=channel.name,
    column_id=task.column_id,
    column_name=column.name if column else "",
    assigned_to=task.assigned_to,
    assignees=[task.assigned_to] if task.assigned_to else [],
    due_date=task.due_date,
    completed_by=actor.id,
    completed_at=now,
    task_created_at=task.created_at,
    custom_field_values=dict(task.custom_field_values),
    notes=list(task.notes),
    links=list(task.links),
    video_url=outputs.video_url,
    thumbnail_url=outputs.thumbnail_url,
    script_url=outputs.script_url,
    audio_url=outputs.audio_url,
    other_links=list(outputs.other_links),
  )


async def complete(
  repo: Repository,
  *,
  channel: Channel,
  task: Task,
  actor: User,
  outputs: TerminalOutputs,
  now: datetime,
  emit_finalized: bool = True,
) -> CompletedTask:
  """
  Archive a task that reached the terminal column and drop it from the board.

  With ``emit_finalized`` a single ``finalized`` stage event is written
  (from and to both the terminal column); column transitions are never
  re-logged here.
  """
  if not channel.is_terminal(task.column_id):
    raise NotInTerminalColumn(
      f"Task {task.id} is not in the terminal column of channel {channel.id}",
      details={"taskId": task.id, "columnId": task.column_id},
    )
  if not can_finalize(actor, channel):
    raise Forbidden("Only the owner or a channel manager can finalize tasks")
  ensure_can_leave(channel, task)

  record = build_completed_task(channel, task, actor, outputs, now=now)
  await repo.add_completed_task(record)
  if emit_finalized:
    await record_stage_event(
      repo,
      task_id=task.id,
      channel_id=channel.id,
      actor_user_id=actor.id,
      from_column_id=task.column_id,
      to_column_id=task.column_id,
      event_type=StageEventType.FINALIZED,
      occurred_at=now,
    )
  await repo.delete_task(task.id)
  logger.info("Task %s finalized in channel %s by %s", task.id, channel.id, actor.id)
  return record
