from __future__ import annotations

import logging
from datetime import datetime

from stageflow.domain import StageEvent, StageEventType, utcnow
from stageflow.repository import Repository

logger = logging.getLogger(__name__)


async def record_stage_event(
  repo: Repository,
  *,
  task_id: str,
  channel_id: str,
  actor_user_id: str,
  from_column_id: str,
  to_column_id: str,
  event_type: StageEventType = StageEventType.STAGE_COMPLETED,
  occurred_at: datetime | None = None,
) -> StageEvent:
  """
  Append one immutable stage event.

  Only the lifecycle and archival operations call this. Per task,
  ``occurred_at`` never goes backwards: a clock reading earlier than the
  task's latest event is clamped to that event's time.
  """
  ts = occurred_at or utcnow()
  last = await repo.last_stage_event(task_id)
  if last is not None and ts < last.occurred_at:
    ts = last.occurred_at
  ev = StageEvent(
    task_id=task_id,
    channel_id=channel_id,
    actor_user_id=actor_user_id,
    from_column_id=from_column_id,
    to_column_id=to_column_id,
    event_type=event_type,
    occurred_at=ts,
  )
  await repo.add_stage_event(ev)
  logger.debug("stage event %s %s: %s -> %s by %s", ev.event_type.value, task_id, from_column_id, to_column_id, actor_user_id)
  return ev
