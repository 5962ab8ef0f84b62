from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status

from stageflow.analytics import DateWindow, KpiBundle
from stageflow.deps import get_service
from stageflow.domain import parse_dt_utc
from stageflow.schemas import AgingTaskOut, AnalyticsOut, ChannelMetricsOut, ColumnLoadOut, LeaderboardEntryOut
from stageflow.service import StageflowService

router = APIRouter(tags=["analytics"])


def _analytics_out(k: KpiBundle) -> AnalyticsOut:
  def load(c) -> ColumnLoadOut:
    return ColumnLoadOut(
      channelId=c.channel_id,
      channelName=c.channel_name,
      columnId=c.column_id,
      columnName=c.column_name,
      taskCount=c.task_count,
      avgDays=c.avg_days,
    )

  return AnalyticsOut(
    windowStart=k.window_start,
    windowEnd=k.window_end,
    inProgress=k.in_progress,
    overdue=k.overdue,
    dueToday=k.due_today,
    completed=k.completed,
    finalized=k.finalized,
    stageCompletions=k.stage_completions,
    throughput=k.throughput,
    avgCycleTime=k.avg_cycle_time,
    onTimeRate=k.on_time_rate,
    bottlenecks=[load(c) for c in k.bottlenecks],
    columnEfficiency=[load(c) for c in k.column_efficiency],
    agingTasks=[
      AgingTaskOut(
        taskId=a.task_id,
        title=a.title,
        channelId=a.channel_id,
        columnId=a.column_id,
        columnName=a.column_name,
        daysInColumn=a.days_in_column,
      )
      for a in k.aging_tasks
    ],
    leaderboard=[
      LeaderboardEntryOut(
        userId=e.user_id,
        name=e.name,
        role=e.role,
        completed=e.completed,
        stageCompletions=e.stage_completions,
        score=e.score,
      )
      for e in k.leaderboard
    ],
    channels=[
      ChannelMetricsOut(
        channelId=m.channel_id,
        name=m.name,
        activeTasks=m.active_tasks,
        completed=m.completed,
        stageCompletions=m.stage_completions,
        avgCycleTime=m.avg_cycle_time,
        contribution=m.contribution,
      )
      for m in k.channels
    ],
  )


def _parse_bound(raw: str | None, name: str, *, end_of_day: bool = False) -> datetime | None:
  try:
    dt = parse_dt_utc(raw)
  except ValueError as e:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {name}") from e
  # A bare date as the upper bound covers that whole day.
  if end_of_day and dt is not None and len(raw.strip()) == 10:
    dt = dt + timedelta(days=1) - timedelta(microseconds=1)
  return dt


@router.get("/analytics", response_model=AnalyticsOut)
async def get_analytics(
  channelId: list[str] | None = Query(default=None),
  userId: list[str] | None = Query(default=None),
  start: str | None = Query(default=None),
  end: str | None = Query(default=None),
  svc: StageflowService = Depends(get_service),
) -> AnalyticsOut:
  start_dt = _parse_bound(start, "start")
  end_dt = _parse_bound(end, "end", end_of_day=True)
  window = None
  if start_dt is not None or end_dt is not None:
    if start_dt is None or end_dt is None:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start and end must be given together")
    if end_dt < start_dt:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must not be before start")
    window = DateWindow(start=start_dt, end=end_dt)
  k = await svc.get_analytics(channel_ids=channelId, user_ids=userId, date_range=window)
  return _analytics_out(k)
