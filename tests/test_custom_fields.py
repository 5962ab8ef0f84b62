from __future__ import annotations

from datetime import datetime, timezone

import pytest

from stageflow.domain import CustomField, FieldType, TaskUpdate
from stageflow.errors import Forbidden, InvalidFieldValue
from stageflow.fields import coerce_field_value, is_empty_value


def test_empty_values() -> None:
  assert is_empty_value(None)
  assert is_empty_value("")
  assert is_empty_value("   ")
  assert not is_empty_value(False)
  assert not is_empty_value(0)
  assert not is_empty_value("x")


def test_coerce_number_and_checkbox() -> None:
  num = CustomField(id="n", name="N", type=FieldType.NUMBER)
  assert coerce_field_value(num, 3) == 3.0
  assert coerce_field_value(num, "2.5") == 2.5
  with pytest.raises(InvalidFieldValue):
    coerce_field_value(num, True)
  with pytest.raises(InvalidFieldValue):
    coerce_field_value(num, "abc")

  box = CustomField(id="b", name="B", type=FieldType.CHECKBOX)
  assert coerce_field_value(box, "true") is True
  assert coerce_field_value(box, False) is False
  with pytest.raises(InvalidFieldValue):
    coerce_field_value(box, "maybe")


def test_coerce_date_link_dropdown() -> None:
  date = CustomField(id="d", name="Publish", type=FieldType.DATE)
  assert coerce_field_value(date, "2024-05-03") == datetime(2024, 5, 3, tzinfo=timezone.utc)
  with pytest.raises(InvalidFieldValue):
    coerce_field_value(date, "not a date")

  link = CustomField(id="l", name="Link", type=FieldType.LINK)
  assert coerce_field_value(link, " https://x.test/a ") == "https://x.test/a"
  with pytest.raises(InvalidFieldValue):
    coerce_field_value(link, "https://x.test/a b")

  dd = CustomField(id="s", name="Status", type=FieldType.DROPDOWN, dropdown_options=["draft", "final"])
  assert coerce_field_value(dd, "final") == "final"
  with pytest.raises(InvalidFieldValue):
    coerce_field_value(dd, "other")


@pytest.mark.anyio
async def test_owner_can_edit_every_field(svc, channel) -> None:
  t = await svc.create_task(channel.id, "Task")
  assert await svc.editable_fields(t.id, "owner") == ["script_url", "audio_url", "notes", "video_len", "approved"]


@pytest.mark.anyio
async def test_each_permission_rule(svc, channel) -> None:
  t = await svc.create_task(channel.id, "Task", column_id="audio")
  # writer: role rule on script_url, unrestricted notes
  assert await svc.editable_fields(t.id, "writer") == ["script_url", "notes"]
  # audio: responsible for the task's current column
  assert await svc.editable_fields(t.id, "audio") == ["audio_url", "notes"]
  # editor: explicit user grant
  assert await svc.editable_fields(t.id, "editor") == ["notes", "video_len"]
  assert await svc.editable_fields(t.id, "manager") == ["notes", "approved"]


@pytest.mark.anyio
async def test_column_responsibility_follows_current_column(svc, channel) -> None:
  t = await svc.create_task(channel.id, "Task", column_id="script")
  assert "audio_url" not in await svc.editable_fields(t.id, "audio")


@pytest.mark.anyio
async def test_denied_update_lists_fields_and_writes_nothing(svc, channel) -> None:
  t = await svc.create_task(channel.id, "Task")
  with pytest.raises(Forbidden) as ei:
    await svc.update_task(
      t.id,
      "writer",
      TaskUpdate(custom_field_values={"script_url": "https://docs.test/s", "approved": True}),
    )
  assert ei.value.field_names == ["Approved"]
  after = await svc.get_task(t.id)
  assert after.custom_field_values == {}


@pytest.mark.anyio
async def test_unchanged_values_are_not_permission_checked(svc, channel) -> None:
  t = await svc.create_task(channel.id, "Task", custom_field_values={"approved": False})
  updated = await svc.update_task(
    t.id,
    "writer",
    TaskUpdate(custom_field_values={"approved": False, "notes": "ready"}),
  )
  assert updated.custom_field_values == {"approved": False, "notes": "ready"}


@pytest.mark.anyio
async def test_update_rejects_unknown_field_and_bad_type(svc, channel) -> None:
  t = await svc.create_task(channel.id, "Task")
  with pytest.raises(InvalidFieldValue):
    await svc.update_task(t.id, "owner", TaskUpdate(custom_field_values={"nope": "x"}))
  with pytest.raises(InvalidFieldValue):
    await svc.update_task(t.id, "owner", TaskUpdate(custom_field_values={"video_len": "long"}))


@pytest.mark.anyio
async def test_update_task_applies_only_set_fields(svc, channel, clock) -> None:
  t = await svc.create_task(channel.id, "Task", description="keep me")
  clock.advance(hours=1)
  updated = await svc.update_task(t.id, "writer", TaskUpdate(title="Renamed"))
  assert updated.title == "Renamed"
  assert updated.description == "keep me"
  assert updated.updated_at == clock.now
