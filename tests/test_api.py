from __future__ import annotations

import pytest
from httpx import AsyncClient

from conftest import as_user
from stageflow.domain import Column


@pytest.mark.anyio
async def test_health_and_version(client: AsyncClient) -> None:
  r = await client.get("/health")
  assert r.status_code == 200
  assert r.json() == {"ok": True}
  r = await client.get("/version")
  assert r.status_code == 200
  assert "version" in r.json()


@pytest.mark.anyio
async def test_channel_crud_over_http(client: AsyncClient, users) -> None:
  r = await client.post(
    "/channels",
    json={
      "name": "Podcast",
      "columns": [{"id": "record", "name": "Record"}, {"id": "publish", "name": "Publish", "order": 1}],
      "customFields": [{"id": "ep", "name": "Episode", "type": "number", "requiredInColumns": ["record", "ghost"]}],
      "columnAssignments": {"record": ["audio"]},
    },
  )
  assert r.status_code == 200, r.text
  ch = r.json()
  assert [c["id"] for c in ch["columns"]] == ["record", "publish"]
  assert ch["customFields"][0]["requiredInColumns"] == ["record"]

  r = await client.patch(f"/channels/{ch['id']}", json={"archived": True})
  assert r.status_code == 200
  assert r.json()["archived"] is True
  assert r.json()["name"] == "Podcast"

  r = await client.get("/channels", params={"includeArchived": "false"})
  assert r.status_code == 200
  assert ch["id"] not in [c["id"] for c in r.json()]

  r = await client.post(f"/channels/{ch['id']}/columns", json={"id": "edit", "name": "Edit", "position": 1})
  assert [c["id"] for c in r.json()["columns"]] == ["record", "edit", "publish"]

  r = await client.delete(f"/channels/{ch['id']}")
  assert r.status_code == 200
  r = await client.get(f"/channels/{ch['id']}")
  assert r.status_code == 404
  assert r.json()["detail"]["code"] == "ChannelNotFound"


@pytest.mark.anyio
async def test_task_flow_over_http(client: AsyncClient, channel) -> None:
  r = await client.post(f"/channels/{channel.id}/tasks", json={"title": "Volcanoes"}, headers=as_user("writer"))
  assert r.status_code == 200, r.text
  task = r.json()
  assert task["columnId"] == "script"
  assert task["assignedTo"] == "writer"

  r = await client.post(f"/tasks/{task['id']}/advance", headers=as_user("writer"))
  assert r.status_code == 400
  assert r.json()["detail"]["fields"] == ["Script URL"]

  r = await client.patch(
    f"/tasks/{task['id']}",
    json={"customFieldValues": {"script_url": "https://docs.test/volcano"}},
    headers=as_user("writer"),
  )
  assert r.status_code == 200, r.text

  r = await client.post(f"/tasks/{task['id']}/move", json={"columnId": "upload"}, headers=as_user("manager"))
  assert r.status_code == 200
  body = r.json()
  assert body["outcome"] == "advanced"
  assert body["event"]["fromColumnId"] == "script"
  assert body["event"]["toColumnId"] == "upload"

  r = await client.post(f"/tasks/{task['id']}/advance", headers=as_user("manager"))
  assert r.status_code == 200
  assert r.json()["outcome"] == "awaiting_finalization"
  assert r.json()["event"] is None

  r = await client.post(f"/tasks/{task['id']}/complete", json={"videoUrl": "https://v.test/1"}, headers=as_user("editor"))
  assert r.status_code == 403

  r = await client.post(
    f"/tasks/{task['id']}/complete",
    json={"videoUrl": "https://v.test/1", "otherLinks": "https://a.test\nhttps://b.test"},
    headers=as_user("manager"),
  )
  assert r.status_code == 200, r.text
  done = r.json()
  assert done["columnName"] == "Upload"
  assert done["otherLinks"] == ["https://a.test", "https://b.test"]

  r = await client.get(f"/tasks/{task['id']}")
  assert r.status_code == 404

  r = await client.get(f"/channels/{channel.id}/completed")
  assert [c["taskId"] for c in r.json()] == [task["id"]]

  r = await client.get(f"/channels/{channel.id}/events", params={"taskId": task["id"]})
  assert [e["eventType"] for e in r.json()] == ["stage_completed", "finalized"]


@pytest.mark.anyio
async def test_forbidden_field_edit_over_http(client: AsyncClient, channel) -> None:
  r = await client.post(f"/channels/{channel.id}/tasks", json={"title": "Locked"}, headers=as_user("writer"))
  tid = r.json()["id"]
  r = await client.patch(f"/tasks/{tid}", json={"customFieldValues": {"approved": True}}, headers=as_user("writer"))
  assert r.status_code == 403
  assert r.json()["detail"]["fields"] == ["Approved"]

  r = await client.get(f"/tasks/{tid}/editable-fields", headers=as_user("manager"))
  assert r.status_code == 200
  assert r.json()["fieldIds"] == ["notes", "approved"]


@pytest.mark.anyio
async def test_column_delete_conflict_over_http(client: AsyncClient, channel) -> None:
  await client.post(f"/channels/{channel.id}/tasks", json={"title": "Busy", "columnId": "edit"}, headers=as_user("owner"))
  r = await client.delete(f"/channels/{channel.id}/columns/edit")
  assert r.status_code == 409
  assert r.json()["detail"]["taskCount"] == 1

  r = await client.delete(f"/channels/{channel.id}/columns/edit", params={"destinationColumnId": "audio"})
  assert r.status_code == 200
  assert [c["id"] for c in r.json()["columns"]] == ["script", "audio", "upload"]


@pytest.mark.anyio
async def test_acting_user_header_is_required(client: AsyncClient, channel) -> None:
  r = await client.post(f"/channels/{channel.id}/tasks", json={"title": "Anon"})
  assert r.status_code == 401
  r = await client.post(f"/channels/{channel.id}/tasks", json={"title": "Ghost"}, headers=as_user("nobody"))
  assert r.status_code == 404
  assert r.json()["detail"]["code"] == "UserNotFound"
  r = await client.post(f"/channels/{channel.id}/tasks", json={"title": "Real"}, headers=as_user("writer"))
  r = await client.post(f"/tasks/{r.json()['id']}/advance", headers=as_user("nobody"))
  assert r.status_code == 404


@pytest.mark.anyio
async def test_analytics_over_http(client: AsyncClient, channel) -> None:
  r = await client.get("/analytics", params={"channelId": channel.id})
  assert r.status_code == 200
  body = r.json()
  assert body["completed"] == 0
  assert body["avgCycleTime"] == 0.0
  assert body["channels"][0]["channelId"] == channel.id

  r = await client.get("/analytics", params={"start": "2024-05-10T00:00:00Z"})
  assert r.status_code == 400
  r = await client.get("/analytics", params={"start": "2024-05-10T00:00:00Z", "end": "2024-05-01T00:00:00Z"})
  assert r.status_code == 400


@pytest.mark.anyio
async def test_analytics_date_only_end_covers_the_whole_day(client: AsyncClient, svc, users) -> None:
  ch = await svc.create_channel("Solo", columns=[Column(id="only", name="Only")])
  t = await svc.create_task(ch.id, "Morning release")
  await svc.complete_task(t.id, "owner")

  r = await client.get("/analytics", params={"channelId": ch.id, "start": "2024-05-01", "end": "2024-05-01"})
  assert r.status_code == 200, r.text
  body = r.json()
  assert body["completed"] == 1
  assert body["windowEnd"].startswith("2024-05-01T23:59:59")
