from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from stageflow.deps import get_acting_user_id, get_service
from stageflow.domain import CompletedTask, StageEvent, Task, TaskUpdate, TerminalOutputs
from stageflow.lifecycle import AlreadyTerminal
from stageflow.schemas import (
  AdvanceOut,
  CompletedTaskOut,
  EditableFieldsOut,
  StageEventOut,
  TaskCompleteIn,
  TaskCreateIn,
  TaskMoveIn,
  TaskOut,
  TaskUpdateIn,
)
from stageflow.service import StageflowService

router = APIRouter(tags=["tasks"])


def _task_out(t: Task) -> TaskOut:
  return TaskOut(
    id=t.id,
    channelId=t.channel_id,
    columnId=t.column_id,
    title=t.title,
    description=t.description,
    assignedTo=t.assigned_to,
    dueDate=t.due_date,
    customFieldValues=dict(t.custom_field_values),
    notes=list(t.notes),
    links=list(t.links),
    completed=t.completed,
    createdAt=t.created_at,
    updatedAt=t.updated_at,
  )


def _event_out(e: StageEvent) -> StageEventOut:
  return StageEventOut(
    id=e.id,
    taskId=e.task_id,
    channelId=e.channel_id,
    actorUserId=e.actor_user_id,
    fromColumnId=e.from_column_id,
    toColumnId=e.to_column_id,
    eventType=e.event_type.value,
    occurredAt=e.occurred_at,
  )


def _completed_out(r: CompletedTask) -> CompletedTaskOut:
  return CompletedTaskOut(
    id=r.id,
    taskId=r.task_id,
    title=r.title,
    description=r.description,
    channelId=r.channel_id,
    channelName=r.channel_name,
    columnId=r.column_id,
    columnName=r.column_name,
    assignedTo=r.assigned_to,
    assignees=list(r.assignees),
    dueDate=r.due_date,
    completedBy=r.completed_by,
    completedAt=r.completed_at,
    taskCreatedAt=r.task_created_at,
    customFieldValues=dict(r.custom_field_values),
    notes=list(r.notes),
    links=list(r.links),
    videoUrl=r.video_url,
    thumbnailUrl=r.thumbnail_url,
    scriptUrl=r.script_url,
    audioUrl=r.audio_url,
    otherLinks=list(r.other_links),
  )


@router.get("/channels/{channel_id}/tasks", response_model=list[TaskOut])
async def list_tasks(
  channel_id: str,
  columnId: str | None = Query(default=None),
  svc: StageflowService = Depends(get_service),
) -> list[TaskOut]:
  await svc.get_channel(channel_id)
  return [_task_out(t) for t in await svc.list_tasks(channel_id=channel_id, column_id=columnId)]


@router.post("/channels/{channel_id}/tasks", response_model=TaskOut)
async def create_task(
  channel_id: str,
  payload: TaskCreateIn,
  user_id: str = Depends(get_acting_user_id),
  svc: StageflowService = Depends(get_service),
) -> TaskOut:
  t = await svc.create_task(
    channel_id,
    payload.title,
    column_id=payload.columnId,
    description=payload.description,
    assigned_to=payload.assignedTo,
    due_date=payload.dueDate,
    custom_field_values=payload.customFieldValues,
    notes=payload.notes,
    links=payload.links,
    acting_user_id=user_id,
  )
  return _task_out(t)


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(task_id: str, svc: StageflowService = Depends(get_service)) -> TaskOut:
  return _task_out(await svc.get_task(task_id))


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
  task_id: str,
  payload: TaskUpdateIn,
  user_id: str = Depends(get_acting_user_id),
  svc: StageflowService = Depends(get_service),
) -> TaskOut:
  fields_set = payload.model_fields_set
  changes: dict = {}
  if "title" in fields_set:
    changes["title"] = payload.title
  if "description" in fields_set:
    changes["description"] = payload.description
  if "assignedTo" in fields_set:
    changes["assigned_to"] = payload.assignedTo
  if "dueDate" in fields_set:
    changes["due_date"] = payload.dueDate
  if "customFieldValues" in fields_set:
    changes["custom_field_values"] = payload.customFieldValues
  if "notes" in fields_set:
    changes["notes"] = payload.notes
  if "links" in fields_set:
    changes["links"] = payload.links
  t = await svc.update_task(task_id, user_id, TaskUpdate(**changes))
  return _task_out(t)


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, svc: StageflowService = Depends(get_service)) -> dict:
  await svc.delete_task(task_id)
  return {"ok": True}


@router.get("/tasks/{task_id}/editable-fields", response_model=EditableFieldsOut)
async def editable_fields(
  task_id: str,
  user_id: str = Depends(get_acting_user_id),
  svc: StageflowService = Depends(get_service),
) -> EditableFieldsOut:
  return EditableFieldsOut(taskId=task_id, fieldIds=await svc.editable_fields(task_id, user_id))


@router.post("/tasks/{task_id}/advance", response_model=AdvanceOut)
async def advance_task(
  task_id: str,
  user_id: str = Depends(get_acting_user_id),
  svc: StageflowService = Depends(get_service),
) -> AdvanceOut:
  res = await svc.advance_task(task_id, user_id)
  if isinstance(res, AlreadyTerminal):
    return AdvanceOut(outcome=res.outcome, task=_task_out(res.task))
  return AdvanceOut(outcome=res.outcome, task=_task_out(res.task), event=_event_out(res.event) if res.event else None)


@router.post("/tasks/{task_id}/move", response_model=AdvanceOut)
async def move_task(
  task_id: str,
  payload: TaskMoveIn,
  user_id: str = Depends(get_acting_user_id),
  svc: StageflowService = Depends(get_service),
) -> AdvanceOut:
  res = await svc.move_task_to_column(task_id, payload.columnId, user_id)
  return AdvanceOut(outcome=res.outcome, task=_task_out(res.task), event=_event_out(res.event) if res.event else None)


@router.post("/tasks/{task_id}/complete", response_model=CompletedTaskOut)
async def complete_task(
  task_id: str,
  payload: TaskCompleteIn,
  user_id: str = Depends(get_acting_user_id),
  svc: StageflowService = Depends(get_service),
) -> CompletedTaskOut:
  outputs = TerminalOutputs(
    video_url=payload.videoUrl,
    thumbnail_url=payload.thumbnailUrl,
    script_url=payload.scriptUrl,
    audio_url=payload.audioUrl,
    other_links=payload.otherLinks,
  )
  return _completed_out(await svc.complete_task(task_id, user_id, outputs))


@router.get("/channels/{channel_id}/completed", response_model=list[CompletedTaskOut])
async def list_completed(channel_id: str, svc: StageflowService = Depends(get_service)) -> list[CompletedTaskOut]:
  await svc.get_channel(channel_id)
  return [_completed_out(r) for r in await svc.list_completed_tasks(channel_id=channel_id)]


@router.get("/channels/{channel_id}/events", response_model=list[StageEventOut])
async def list_channel_events(
  channel_id: str,
  taskId: str | None = Query(default=None),
  svc: StageflowService = Depends(get_service),
) -> list[StageEventOut]:
  await svc.get_channel(channel_id)
  return [_event_out(e) for e in await svc.list_stage_events(channel_id=channel_id, task_id=taskId)]
