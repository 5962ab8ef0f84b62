from __future__ import annotations

from datetime import timedelta

import pytest

from stageflow.config import Settings
from stageflow.domain import ChannelUpdate, Column, CustomField, FieldType, StageEventType, TaskUpdate
from stageflow.errors import Forbidden, NotInTerminalColumn, RequiredFieldsMissing
from stageflow.service import StageflowService


async def _task_in_upload(svc, channel, **kwargs):
  t = await svc.create_task(channel.id, "Ship it", column_id="edit", **kwargs)
  res = await svc.advance_task(t.id, "editor")
  return res.task


@pytest.mark.anyio
async def test_complete_snapshots_the_task(svc, channel, clock) -> None:
  due = clock.now + timedelta(days=3)
  t = await _task_in_upload(svc, channel, due_date=due, notes=["n1"], custom_field_values={"notes": "final cut"})
  clock.advance(days=2)
  record = await svc.complete_task(
    t.id,
    "manager",
    {"video_url": "https://v.test/1", "thumbnail_url": "  ", "other_links": "https://a.test\n\nhttps://b.test\n"},
  )
  assert record.channel_name == "Science Shorts"
  assert record.column_id == "upload"
  assert record.completed_by == "manager"
  assert record.completed_at == clock.now
  assert record.task_created_at == t.created_at
  assert record.due_date == due
  assert record.notes == ["n1"]
  assert record.custom_field_values == {"notes": "final cut"}
  assert record.thumbnail_url is None
  assert record.other_links == ["https://a.test", "https://b.test"]


@pytest.mark.anyio
async def test_complete_emits_one_finalized_event(svc, channel) -> None:
  t = await _task_in_upload(svc, channel)
  await svc.complete_task(t.id, "owner")
  events = await svc.list_stage_events(task_id=t.id)
  assert [e.event_type for e in events] == [StageEventType.STAGE_COMPLETED, StageEventType.FINALIZED]
  assert events[-1].from_column_id == events[-1].to_column_id == "upload"


@pytest.mark.anyio
async def test_finalized_event_can_be_disabled(repo, clock, channel) -> None:
  quiet = StageflowService(repo, clock=clock, config=Settings(database_url="memory://", emit_finalized_events=False))
  t = await _task_in_upload(quiet, channel)
  await quiet.complete_task(t.id, "owner")
  events = await quiet.list_stage_events(task_id=t.id)
  assert [e.event_type for e in events] == [StageEventType.STAGE_COMPLETED]


@pytest.mark.anyio
async def test_only_owner_or_manager_can_complete(svc, channel) -> None:
  t = await _task_in_upload(svc, channel)
  with pytest.raises(Forbidden):
    await svc.complete_task(t.id, "editor")
  assert (await svc.get_task(t.id)).column_id == "upload"
  assert await svc.list_completed_tasks() == []


@pytest.mark.anyio
async def test_manager_role_completes_without_being_named_manager(svc, users) -> None:
  ch = await svc.create_channel("Solo", columns=[Column(id="only", name="Only")])
  assert ch.manager_id is None
  t = await svc.create_task(ch.id, "One step")
  record = await svc.complete_task(t.id, "manager")
  assert record.completed_by == "manager"


@pytest.mark.anyio
async def test_named_manager_completes_regardless_of_role(svc, users) -> None:
  ch = await svc.create_channel("Solo", columns=[Column(id="only", name="Only")], manager_id="editor")
  t = await svc.create_task(ch.id, "One step")
  with pytest.raises(Forbidden):
    await svc.complete_task(t.id, "writer")
  record = await svc.complete_task(t.id, "editor")
  assert record.completed_by == "editor"


@pytest.mark.anyio
async def test_complete_outside_terminal_column_fails(svc, channel) -> None:
  t = await svc.create_task(channel.id, "Early", column_id="edit")
  with pytest.raises(NotInTerminalColumn):
    await svc.complete_task(t.id, "owner")
  assert await svc.list_completed_tasks() == []


@pytest.mark.anyio
async def test_complete_checks_terminal_required_fields(svc, channel) -> None:
  fields = [*channel.custom_fields, CustomField(id="yt", name="YouTube ID", type=FieldType.TEXT, order=9, required_in_columns={"upload"})]
  await svc.update_channel(channel.id, ChannelUpdate(custom_fields=fields))
  t = await _task_in_upload(svc, channel)

  with pytest.raises(RequiredFieldsMissing) as ei:
    await svc.complete_task(t.id, "owner")
  assert ei.value.field_names == ["YouTube ID"]
  assert await svc.get_task(t.id) is not None
  assert [e.event_type for e in await svc.list_stage_events(task_id=t.id)] == [StageEventType.STAGE_COMPLETED]

  await svc.update_task(t.id, "owner", TaskUpdate(custom_field_values={"yt": "abc123"}))
  record = await svc.complete_task(t.id, "owner")
  assert record.custom_field_values["yt"] == "abc123"
