from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import T0
from stageflow import analytics
from stageflow.analytics import DateWindow
from stageflow.domain import Channel, Column, CompletedTask, StageEvent, StageEventType, Task, User


def _record(task_id: str, *, completed_days: float, due_days: float | None = None, created_days: float | None = 0, **kw) -> CompletedTask:
  return CompletedTask(
    task_id=task_id,
    title=task_id,
    channel_id=kw.pop("channel_id", "c1"),
    column_id="upload",
    completed_by="owner",
    completed_at=T0 + timedelta(days=completed_days),
    due_date=T0 + timedelta(days=due_days) if due_days is not None else None,
    task_created_at=T0 + timedelta(days=created_days) if created_days is not None else None,
    **kw,
  )


def test_avg_cycle_time_of_empty_set_is_zero() -> None:
  assert analytics.avg_cycle_time([]) == 0.0


def test_avg_cycle_time_truncates_days_and_skips_unknown_creation() -> None:
  records = [
    _record("a", completed_days=2.9),
    _record("b", completed_days=4.2),
    _record("c", completed_days=9, created_days=None),
  ]
  # 2 and 4 whole days; "c" has no creation time and no live task.
  assert analytics.avg_cycle_time(records) == 3.0


def test_cycle_time_falls_back_to_live_task() -> None:
  rec = _record("t1", completed_days=5, created_days=None)
  live = Task(id="t1", channel_id="c1", column_id="upload", title="t1", created_at=T0 + timedelta(days=1))
  assert analytics.avg_cycle_time([rec], [live]) == 4.0


def test_on_time_rate_rounds_two_of_three_to_67() -> None:
  records = [
    _record("a", completed_days=1, due_days=2),
    _record("b", completed_days=2, due_days=2),
    _record("c", completed_days=3, due_days=2),
    _record("d", completed_days=3),
  ]
  assert analytics.on_time_rate(records) == 67
  assert analytics.on_time_rate([]) == 0


def test_throughput_uses_window_days() -> None:
  window = DateWindow(start=T0, end=T0 + timedelta(days=10))
  records = [_record(str(i), completed_days=i) for i in range(1, 6)] + [_record("late", completed_days=11)]
  assert analytics.throughput(records, window) == 0.5
  short = DateWindow(start=T0, end=T0 + timedelta(hours=1))
  assert analytics.throughput([_record("x", completed_days=0.01)], short) == 1.0


def _board() -> Channel:
  return Channel(
    id="c1",
    name="Main",
    columns=[Column(id="script", name="Script", order=0), Column(id="edit", name="Edit", order=1)],
  )


def test_bottlenecks_only_above_threshold() -> None:
  now = T0 + timedelta(days=20)
  tasks = [
    Task(channel_id="c1", column_id="script", title="s1", updated_at=now - timedelta(days=6)),
    Task(channel_id="c1", column_id="script", title="s2", updated_at=now - timedelta(days=8)),
    Task(channel_id="c1", column_id="edit", title="e1", updated_at=now - timedelta(days=5)),
  ]
  found = analytics.bottlenecks(tasks, [_board()], now)
  assert [(b.column_id, b.task_count, b.avg_days) for b in found] == [("script", 2, 7.0)]

  eff = analytics.column_efficiency(tasks, [_board()], now)
  assert [c.column_id for c in eff] == ["script", "edit"]


def test_aging_tasks_sorted_oldest_first() -> None:
  now = T0 + timedelta(days=10)
  tasks = [
    Task(id="new", channel_id="c1", column_id="edit", title="new", updated_at=now - timedelta(days=1)),
    Task(id="old", channel_id="c1", column_id="script", title="old", updated_at=now - timedelta(days=9)),
  ]
  rows = analytics.aging_tasks(tasks, [_board()], now, limit=1)
  assert [(r.task_id, r.days_in_column) for r in rows] == [("old", 9)]


def test_leaderboard_scores_and_excludes_owners() -> None:
  window = DateWindow(start=T0, end=T0 + timedelta(days=7))
  users = [
    User(id="owner", name="Olive", role="owner"),
    User(id="a", name="Ann", role="script_writer"),
    User(id="b", name="Bob", role="video_editor"),
  ]
  records = [_record("r1", completed_days=1, assigned_to="b"), _record("r2", completed_days=8, assigned_to="b")]
  events = [
    StageEvent(task_id="t", channel_id="c1", actor_user_id="a", from_column_id="script", to_column_id="edit", occurred_at=T0 + timedelta(days=1)),
    StageEvent(
      task_id="t",
      channel_id="c1",
      actor_user_id="owner",
      from_column_id="edit",
      to_column_id="edit",
      event_type=StageEventType.FINALIZED,
      occurred_at=T0 + timedelta(days=2),
    ),
  ]
  board = analytics.leaderboard(users, records, events, window)
  assert [(e.user_id, e.score) for e in board] == [("a", 1), ("b", 1)]
  with_owner = analytics.leaderboard(users, records, events, window, include_owners=True)
  assert "owner" in [e.user_id for e in with_owner]


@pytest.mark.anyio
async def test_get_analytics_bundle(svc, channel, clock) -> None:
  t1 = await svc.create_task(channel.id, "One", column_id="edit", due_date=clock.now + timedelta(days=1))
  t2 = await svc.create_task(channel.id, "Two", column_id="edit", due_date=clock.now + timedelta(days=1))
  await svc.create_task(channel.id, "Overdue", due_date=clock.now - timedelta(days=1))

  clock.advance(days=2)
  await svc.advance_task(t1.id, "editor")
  await svc.complete_task(t1.id, "owner")
  await svc.advance_task(t2.id, "editor")

  k = await svc.get_analytics()
  assert k.completed == 1
  assert k.finalized == 1
  assert k.stage_completions == 2
  assert k.in_progress == 2
  assert k.overdue == 2
  assert k.avg_cycle_time == 2.0
  assert k.on_time_rate == 0
  assert [m.channel_id for m in k.channels] == [channel.id]
  assert k.channels[0].contribution == 100

  by_user = await svc.get_analytics(user_ids=["editor"])
  assert [e.user_id for e in by_user.leaderboard] == ["editor"]
  assert by_user.leaderboard[0].stage_completions == 2


@pytest.mark.anyio
async def test_get_analytics_filters_by_channel_and_window(svc, channel, clock) -> None:
  other = await svc.create_channel("Other")
  await svc.create_task(other.id, "Elsewhere")
  k = await svc.get_analytics(channel_ids=[channel.id])
  assert k.in_progress == 0
  assert [m.channel_id for m in k.channels] == [channel.id]

  empty = await svc.get_analytics(date_range=DateWindow(start=clock.now - timedelta(days=1), end=clock.now))
  assert empty.completed == 0
  assert empty.avg_cycle_time == 0.0
  assert empty.throughput == 0.0
