from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from pydantic import BaseModel

from stageflow.domain import OWNER_ROLE, Channel, CompletedTask, StageEvent, StageEventType, Task, User
from stageflow.repository import Snapshot


@dataclass(frozen=True)
class DateWindow:
  start: datetime
  end: datetime

  @classmethod
  def last_days(cls, days: int, *, now: datetime) -> DateWindow:
    return cls(start=now - timedelta(days=days), end=now)

  @property
  def days(self) -> float:
    return max(1.0, (self.end - self.start).total_seconds() / 86400.0)

  def contains(self, ts: datetime | None) -> bool:
    return ts is not None and self.start <= ts <= self.end


class ColumnLoad(BaseModel):
  channel_id: str
  channel_name: str
  column_id: str
  column_name: str
  task_count: int
  avg_days: float


class AgingTask(BaseModel):
  task_id: str
  title: str
  channel_id: str
  column_id: str
  column_name: str
  days_in_column: int


class LeaderboardEntry(BaseModel):
  user_id: str
  name: str
  role: str
  completed: int
  stage_completions: int
  score: int


class ChannelMetrics(BaseModel):
  channel_id: str
  name: str
  active_tasks: int
  completed: int
  stage_completions: int
  avg_cycle_time: float
  contribution: int


class KpiBundle(BaseModel):
  window_start: datetime
  window_end: datetime
  in_progress: int
  overdue: int
  due_today: int
  completed: int
  finalized: int
  stage_completions: int
  throughput: float
  avg_cycle_time: float
  on_time_rate: int
  bottlenecks: list[ColumnLoad]
  column_efficiency: list[ColumnLoad]
  aging_tasks: list[AgingTask]
  leaderboard: list[LeaderboardEntry]
  channels: list[ChannelMetrics]


def days_between(later: datetime, earlier: datetime) -> int:
  # Whole days, truncated toward zero.
  return int((later - earlier).total_seconds() / 86400.0)


def _round_half_up(value: float) -> int:
  return int(math.floor(value + 0.5))


def completed_in(records: Iterable[CompletedTask], window: DateWindow) -> list[CompletedTask]:
  return [r for r in records if window.contains(r.completed_at)]


def throughput(records: Iterable[CompletedTask], window: DateWindow) -> float:
  return len(completed_in(records, window)) / window.days


def cycle_time_days(record: CompletedTask, tasks_by_id: dict[str, Task]) -> int | None:
  created = record.task_created_at
  if created is None:
    original = tasks_by_id.get(record.task_id)
    if original is None:
      return None
    created = original.created_at
  return days_between(record.completed_at, created)


def avg_cycle_time(records: Iterable[CompletedTask], tasks: Iterable[Task] = ()) -> float:
  by_id = {t.id: t for t in tasks}
  values = [d for d in (cycle_time_days(r, by_id) for r in records) if d is not None]
  if not values:
    return 0.0
  return round(sum(values) / len(values), 1)


def on_time_rate(records: Iterable[CompletedTask]) -> int:
  with_due = [r for r in records if r.due_date is not None]
  if not with_due:
    return 0
  on_time = sum(1 for r in with_due if r.completed_at <= r.due_date)
  return _round_half_up(on_time * 100.0 / len(with_due))


def column_efficiency(tasks: Iterable[Task], channels: Iterable[Channel], now: datetime) -> list[ColumnLoad]:
  by_channel = {c.id: c for c in channels}
  totals: dict[tuple[str, str], list[int]] = {}
  for t in tasks:
    if t.completed:
      continue
    ch = by_channel.get(t.channel_id)
    if ch is None or ch.column(t.column_id) is None:
      continue
    totals.setdefault((ch.id, t.column_id), []).append(days_between(now, t.updated_at))

  out = []
  for (channel_id, column_id), days in totals.items():
    ch = by_channel[channel_id]
    col = ch.column(column_id)
    out.append(
      ColumnLoad(
        channel_id=channel_id,
        channel_name=ch.name,
        column_id=column_id,
        column_name=col.name if col else column_id,
        task_count=len(days),
        avg_days=round(sum(days) / len(days), 1),
      )
    )
  out.sort(key=lambda c: c.avg_days, reverse=True)
  return out


def bottlenecks(
  tasks: Iterable[Task],
  channels: Iterable[Channel],
  now: datetime,
  *,
  threshold_days: float = 5.0,
  limit: int = 5,
) -> list[ColumnLoad]:
  return [c for c in column_efficiency(tasks, channels, now) if c.avg_days > threshold_days][:limit]


def aging_tasks(tasks: Iterable[Task], channels: Iterable[Channel], now: datetime, *, limit: int = 10) -> list[AgingTask]:
  by_channel = {c.id: c for c in channels}
  rows = []
  for t in tasks:
    if t.completed:
      continue
    ch = by_channel.get(t.channel_id)
    col = ch.column(t.column_id) if ch else None
    if col is None:
      continue
    rows.append(
      AgingTask(
        task_id=t.id,
        title=t.title,
        channel_id=t.channel_id,
        column_id=t.column_id,
        column_name=col.name,
        days_in_column=days_between(now, t.updated_at),
      )
    )
  rows.sort(key=lambda r: r.days_in_column, reverse=True)
  return rows[:limit]


def leaderboard(
  users: Iterable[User],
  records: Iterable[CompletedTask],
  events: Iterable[StageEvent],
  window: DateWindow,
  *,
  include_owners: bool = False,
) -> list[LeaderboardEntry]:
  completed_by_user: dict[str, int] = {}
  for r in completed_in(records, window):
    if r.assigned_to:
      completed_by_user[r.assigned_to] = completed_by_user.get(r.assigned_to, 0) + 1
  stages_by_user: dict[str, int] = {}
  for e in events:
    if e.event_type == StageEventType.STAGE_COMPLETED and window.contains(e.occurred_at):
      stages_by_user[e.actor_user_id] = stages_by_user.get(e.actor_user_id, 0) + 1

  out = []
  for u in users:
    if u.role == OWNER_ROLE and not include_owners:
      continue
    done = completed_by_user.get(u.id, 0)
    stages = stages_by_user.get(u.id, 0)
    out.append(
      LeaderboardEntry(user_id=u.id, name=u.name, role=u.role, completed=done, stage_completions=stages, score=done + stages)
    )
  out.sort(key=lambda e: (-e.score, e.name))
  return out


def channel_metrics(
  channels: Iterable[Channel],
  tasks: Sequence[Task],
  records: Sequence[CompletedTask],
  events: Sequence[StageEvent],
  window: DateWindow,
  *,
  all_tasks: Sequence[Task] = (),
) -> list[ChannelMetrics]:
  in_window = completed_in(records, window)
  total_completed = len(in_window)
  out = []
  for ch in channels:
    done = [r for r in in_window if r.channel_id == ch.id]
    stages = sum(
      1
      for e in events
      if e.channel_id == ch.id and e.event_type == StageEventType.STAGE_COMPLETED and window.contains(e.occurred_at)
    )
    out.append(
      ChannelMetrics(
        channel_id=ch.id,
        name=ch.name,
        active_tasks=sum(1 for t in tasks if t.channel_id == ch.id and not t.completed),
        completed=len(done),
        stage_completions=stages,
        avg_cycle_time=avg_cycle_time(done, all_tasks),
        contribution=_round_half_up(len(done) * 100.0 / total_completed) if total_completed else 0,
      )
    )
  out.sort(key=lambda m: m.completed, reverse=True)
  return out


def overdue_count(tasks: Iterable[Task], now: datetime) -> int:
  return sum(1 for t in tasks if not t.completed and t.due_date is not None and t.due_date < now)


def due_today_count(tasks: Iterable[Task], now: datetime) -> int:
  today = now.date()
  return sum(1 for t in tasks if not t.completed and t.due_date is not None and t.due_date.date() == today)


def build_kpis(
  snapshot: Snapshot,
  *,
  window: DateWindow,
  now: datetime,
  channel_ids: Sequence[str] | None = None,
  user_ids: Sequence[str] | None = None,
  bottleneck_threshold_days: float = 5.0,
  bottleneck_limit: int = 5,
  aging_limit: int = 10,
) -> KpiBundle:
  """
  Derive the dashboard bundle from a detached snapshot.

  ``channel_ids`` narrows every collection to those channels; ``user_ids``
  narrows tasks and completed records by assignee, events by actor, and the
  leaderboard to those users.
  """
  chan_filter = set(channel_ids) if channel_ids else None
  user_filter = set(user_ids) if user_ids else None

  channels = [c for c in snapshot.channels if chan_filter is None or c.id in chan_filter]
  tasks = [
    t
    for t in snapshot.tasks
    if (chan_filter is None or t.channel_id in chan_filter) and (user_filter is None or t.assigned_to in user_filter)
  ]
  records = [
    r
    for r in snapshot.completed_tasks
    if (chan_filter is None or r.channel_id in chan_filter) and (user_filter is None or r.assigned_to in user_filter)
  ]
  events = [
    e
    for e in snapshot.stage_events
    if (chan_filter is None or e.channel_id in chan_filter) and (user_filter is None or e.actor_user_id in user_filter)
  ]
  users = [u for u in snapshot.users if user_filter is None or u.id in user_filter]

  window_records = completed_in(records, window)
  window_events = [e for e in events if window.contains(e.occurred_at)]

  return KpiBundle(
    window_start=window.start,
    window_end=window.end,
    in_progress=sum(1 for t in tasks if not t.completed),
    overdue=overdue_count(tasks, now),
    due_today=due_today_count(tasks, now),
    completed=len(window_records),
    finalized=sum(1 for e in window_events if e.event_type == StageEventType.FINALIZED),
    stage_completions=sum(1 for e in window_events if e.event_type == StageEventType.STAGE_COMPLETED),
    throughput=round(throughput(records, window), 2),
    avg_cycle_time=avg_cycle_time(window_records, snapshot.tasks),
    on_time_rate=on_time_rate(window_records),
    bottlenecks=bottlenecks(tasks, channels, now, threshold_days=bottleneck_threshold_days, limit=bottleneck_limit),
    column_efficiency=column_efficiency(tasks, channels, now),
    aging_tasks=aging_tasks(tasks, channels, now, limit=aging_limit),
    leaderboard=leaderboard(users, records, events, window, include_owners=user_filter is not None),
    channels=channel_metrics(channels, tasks, records, events, window, all_tasks=snapshot.tasks),
  )
