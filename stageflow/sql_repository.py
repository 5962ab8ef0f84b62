from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stageflow import models
from stageflow.domain import Channel, CompletedTask, FieldType, StageEvent, Task, User, parse_dt_utc
from stageflow.repository import Snapshot


class SqlRepository:
  """
  Repository over SQLAlchemy's async ORM.

  ``transaction()`` binds one session to the running context; every call made
  inside it shares that session and commits (or rolls back) together. Calls
  made outside a transaction use a short-lived session of their own.
  """

  def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
    self._sessionmaker = sessionmaker
    self._current: ContextVar[AsyncSession | None] = ContextVar(f"stageflow_session_{id(self)}", default=None)

  @asynccontextmanager
  async def transaction(self) -> AsyncIterator[None]:
    if self._current.get() is not None:
      yield
      return
    async with self._sessionmaker() as db:
      token = self._current.set(db)
      try:
        yield
        await db.commit()
      except BaseException:
        await db.rollback()
        raise
      finally:
        self._current.reset(token)

  @asynccontextmanager
  async def _db(self) -> AsyncIterator[AsyncSession]:
    db = self._current.get()
    if db is not None:
      yield db
      return
    async with self._sessionmaker() as db:
      yield db
      await db.commit()

  # users

  async def get_user(self, user_id: str) -> User | None:
    async with self._db() as db:
      u = await db.get(models.User, user_id)
      return _user(u) if u else None

  async def list_users(self) -> list[User]:
    async with self._db() as db:
      res = await db.execute(select(models.User).order_by(models.User.name.asc()))
      return [_user(u) for u in res.scalars().all()]

  async def save_user(self, user: User) -> None:
    async with self._db() as db:
      await db.merge(models.User(id=user.id, name=user.name, email=user.email, role=user.role, active=user.active))
      await db.flush()

  # channels

  async def get_channel(self, channel_id: str) -> Channel | None:
    async with self._db() as db:
      c = await db.get(models.Channel, channel_id)
      return _channel(c) if c else None

  async def list_channels(self, *, include_archived: bool = True) -> list[Channel]:
    async with self._db() as db:
      q = select(models.Channel).order_by(models.Channel.created_at.asc())
      if not include_archived:
        q = q.where(models.Channel.archived.is_(False))
      res = await db.execute(q)
      return [_channel(c) for c in res.scalars().all()]

  async def save_channel(self, channel: Channel) -> None:
    data = channel.model_dump(mode="json")
    async with self._db() as db:
      await db.merge(
        models.Channel(
          id=channel.id,
          name=channel.name,
          description=channel.description,
          archived=channel.archived,
          columns=data["columns"],
          custom_fields=data["custom_fields"],
          members=data["members"],
          manager_id=channel.manager_id,
          column_assignments=data["column_assignments"],
          external_channel_id=channel.external_channel_id,
          created_at=channel.created_at,
        )
      )
      await db.flush()

  async def delete_channel(self, channel_id: str) -> None:
    async with self._db() as db:
      await db.execute(delete(models.StageEvent).where(models.StageEvent.channel_id == channel_id))
      await db.execute(delete(models.CompletedTask).where(models.CompletedTask.channel_id == channel_id))
      await db.execute(delete(models.Task).where(models.Task.channel_id == channel_id))
      await db.execute(delete(models.Channel).where(models.Channel.id == channel_id))

  # tasks

  async def get_task(self, task_id: str) -> Task | None:
    async with self._db() as db:
      t = await db.get(models.Task, task_id)
      if t is None:
        return None
      dates = await _date_fields(db, {t.channel_id})
      return _task(t, dates.get(t.channel_id, set()))

  async def list_tasks(self, *, channel_id: str | None = None, column_id: str | None = None) -> list[Task]:
    q = select(models.Task).order_by(models.Task.created_at.asc())
    if channel_id is not None:
      q = q.where(models.Task.channel_id == channel_id)
    if column_id is not None:
      q = q.where(models.Task.column_id == column_id)
    async with self._db() as db:
      rows = (await db.execute(q)).scalars().all()
      dates = await _date_fields(db, {t.channel_id for t in rows})
      return [_task(t, dates.get(t.channel_id, set())) for t in rows]

  async def save_task(self, task: Task) -> None:
    data = task.model_dump(mode="json")
    async with self._db() as db:
      await db.merge(
        models.Task(
          id=task.id,
          channel_id=task.channel_id,
          column_id=task.column_id,
          title=task.title,
          description=task.description,
          assigned_to=task.assigned_to,
          due_date=task.due_date,
          custom_field_values=data["custom_field_values"],
          notes=data["notes"],
          links=data["links"],
          completed=task.completed,
          created_at=task.created_at,
          updated_at=task.updated_at,
        )
      )
      await db.flush()

  async def delete_task(self, task_id: str) -> None:
    async with self._db() as db:
      await db.execute(delete(models.Task).where(models.Task.id == task_id))

  # stage events

  async def add_stage_event(self, event: StageEvent) -> None:
    async with self._db() as db:
      db.add(
        models.StageEvent(
          id=event.id,
          task_id=event.task_id,
          channel_id=event.channel_id,
          actor_user_id=event.actor_user_id,
          from_column_id=event.from_column_id,
          to_column_id=event.to_column_id,
          event_type=event.event_type.value,
          occurred_at=event.occurred_at,
        )
      )
      await db.flush()

  async def list_stage_events(self, *, channel_id: str | None = None, task_id: str | None = None) -> list[StageEvent]:
    q = select(models.StageEvent).order_by(models.StageEvent.seq.asc())
    if channel_id is not None:
      q = q.where(models.StageEvent.channel_id == channel_id)
    if task_id is not None:
      q = q.where(models.StageEvent.task_id == task_id)
    async with self._db() as db:
      res = await db.execute(q)
      return [_event(e) for e in res.scalars().all()]

  async def last_stage_event(self, task_id: str) -> StageEvent | None:
    q = select(models.StageEvent).where(models.StageEvent.task_id == task_id).order_by(models.StageEvent.seq.desc()).limit(1)
    async with self._db() as db:
      e = (await db.execute(q)).scalar_one_or_none()
      return _event(e) if e else None

  # archive

  async def add_completed_task(self, record: CompletedTask) -> None:
    async with self._db() as db:
      db.add(
        models.CompletedTask(
          id=record.id,
          task_id=record.task_id,
          channel_id=record.channel_id,
          completed_at=record.completed_at,
          payload=record.model_dump(mode="json"),
        )
      )
      await db.flush()

  async def list_completed_tasks(self, *, channel_id: str | None = None) -> list[CompletedTask]:
    q = select(models.CompletedTask).order_by(models.CompletedTask.seq.asc())
    if channel_id is not None:
      q = q.where(models.CompletedTask.channel_id == channel_id)
    async with self._db() as db:
      rows = (await db.execute(q)).scalars().all()
      dates = await _date_fields(db, {r.channel_id for r in rows})
      return [_completed(r, dates.get(r.channel_id, set())) for r in rows]

  async def snapshot(self) -> Snapshot:
    async with self._sessionmaker() as db:
      users = (await db.execute(select(models.User))).scalars().all()
      channels = (await db.execute(select(models.Channel))).scalars().all()
      tasks = (await db.execute(select(models.Task))).scalars().all()
      events = (await db.execute(select(models.StageEvent).order_by(models.StageEvent.seq.asc()))).scalars().all()
      completed = (await db.execute(select(models.CompletedTask).order_by(models.CompletedTask.seq.asc()))).scalars().all()
      domain_channels = [_channel(c) for c in channels]
      dates = {c.id: {f.id for f in c.custom_fields if f.type == FieldType.DATE} for c in domain_channels}
      return Snapshot(
        tasks=[_task(t, dates.get(t.channel_id, set())) for t in tasks],
        completed_tasks=[_completed(r, dates.get(r.channel_id, set())) for r in completed],
        stage_events=[_event(e) for e in events],
        channels=domain_channels,
        users=[_user(u) for u in users],
      )


def _user(u: models.User) -> User:
  return User(id=u.id, name=u.name, email=u.email, role=u.role, active=u.active)


def _channel(c: models.Channel) -> Channel:
  return Channel.model_validate(
    {
      "id": c.id,
      "name": c.name,
      "description": c.description,
      "archived": c.archived,
      "columns": c.columns or [],
      "custom_fields": c.custom_fields or [],
      "members": c.members or [],
      "manager_id": c.manager_id,
      "column_assignments": c.column_assignments or {},
      "external_channel_id": c.external_channel_id,
      "created_at": c.created_at,
    }
  )


async def _date_fields(db: AsyncSession, channel_ids: set[str]) -> dict[str, set[str]]:
  """Ids of the date-typed custom fields, per channel."""
  if not channel_ids:
    return {}
  res = await db.execute(select(models.Channel.id, models.Channel.custom_fields).where(models.Channel.id.in_(channel_ids)))
  return {cid: {f["id"] for f in (fields or []) if f.get("type") == FieldType.DATE.value} for cid, fields in res.all()}


def _field_values(raw: dict | None, date_fields: set[str] | frozenset[str]) -> dict:
  # JSON columns hold dates as ISO strings.
  values = dict(raw or {})
  for field_id in values.keys() & date_fields:
    values[field_id] = parse_dt_utc(values[field_id])
  return values


def _task(t: models.Task, date_fields: set[str] | frozenset[str] = frozenset()) -> Task:
  return Task.model_validate(
    {
      "id": t.id,
      "channel_id": t.channel_id,
      "column_id": t.column_id,
      "title": t.title,
      "description": t.description,
      "assigned_to": t.assigned_to,
      "due_date": t.due_date,
      "custom_field_values": _field_values(t.custom_field_values, date_fields),
      "notes": list(t.notes or []),
      "links": list(t.links or []),
      "completed": t.completed,
      "created_at": t.created_at,
      "updated_at": t.updated_at,
    }
  )


def _event(e: models.StageEvent) -> StageEvent:
  return StageEvent(
    id=e.id,
    task_id=e.task_id,
    channel_id=e.channel_id,
    actor_user_id=e.actor_user_id,
    from_column_id=e.from_column_id,
    to_column_id=e.to_column_id,
    event_type=e.event_type,
    occurred_at=e.occurred_at,
  )


def _completed(r: models.CompletedTask, date_fields: set[str] | frozenset[str] = frozenset()) -> CompletedTask:
  payload = dict(r.payload or {})
  payload["custom_field_values"] = _field_values(payload.get("custom_field_values"), date_fields)
  return CompletedTask.model_validate(payload)
