from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

from pydantic import BaseModel

from stageflow.domain import Channel, CompletedTask, StageEvent, Task, User


M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class Snapshot:
  """A consistent, detached copy of everything analytics reads."""

  tasks: list[Task] = field(default_factory=list)
  completed_tasks: list[CompletedTask] = field(default_factory=list)
  stage_events: list[StageEvent] = field(default_factory=list)
  channels: list[Channel] = field(default_factory=list)
  users: list[User] = field(default_factory=list)


class Repository(Protocol):
  def transaction(self) -> AbstractAsyncContextManager[None]: ...

  async def get_user(self, user_id: str) -> User | None: ...
  async def list_users(self) -> list[User]: ...
  async def save_user(self, user: User) -> None: ...

  async def get_channel(self, channel_id: str) -> Channel | None: ...
  async def list_channels(self, *, include_archived: bool = True) -> list[Channel]: ...
  async def save_channel(self, channel: Channel) -> None: ...
  async def delete_channel(self, channel_id: str) -> None: ...

  async def get_task(self, task_id: str) -> Task | None: ...
  async def list_tasks(self, *, channel_id: str | None = None, column_id: str | None = None) -> list[Task]: ...
  async def save_task(self, task: Task) -> None: ...
  async def delete_task(self, task_id: str) -> None: ...

  async def add_stage_event(self, event: StageEvent) -> None: ...
  async def list_stage_events(self, *, channel_id: str | None = None, task_id: str | None = None) -> list[StageEvent]: ...
  async def last_stage_event(self, task_id: str) -> StageEvent | None: ...

  async def add_completed_task(self, record: CompletedTask) -> None: ...
  async def list_completed_tasks(self, *, channel_id: str | None = None) -> list[CompletedTask]: ...

  async def snapshot(self) -> Snapshot: ...


def _copy(model: M) -> M:
  return model.model_copy(deep=True)


class InMemoryRepository:
  """
  Process-local repository used by tests and the ``memory://`` setting.

  Reads hand out deep copies. ``transaction()`` serialises writers and
  restores the previous state if the block raises.
  """

  def __init__(self) -> None:
    self._users: dict[str, User] = {}
    self._channels: dict[str, Channel] = {}
    self._tasks: dict[str, Task] = {}
    self._events: list[StageEvent] = []
    self._completed: list[CompletedTask] = []
    self._lock = asyncio.Lock()

  @asynccontextmanager
  async def transaction(self) -> AsyncIterator[None]:
    async with self._lock:
      saved = (
        dict(self._users),
        dict(self._channels),
        dict(self._tasks),
        list(self._events),
        list(self._completed),
      )
      try:
        yield
      except BaseException:
        self._users, self._channels, self._tasks, self._events, self._completed = saved
        raise

  async def get_user(self, user_id: str) -> User | None:
    u = self._users.get(user_id)
    return _copy(u) if u else None

  async def list_users(self) -> list[User]:
    return [_copy(u) for u in self._users.values()]

  async def save_user(self, user: User) -> None:
    self._users[user.id] = _copy(user)

  async def get_channel(self, channel_id: str) -> Channel | None:
    c = self._channels.get(channel_id)
    return _copy(c) if c else None

  async def list_channels(self, *, include_archived: bool = True) -> list[Channel]:
    return [_copy(c) for c in self._channels.values() if include_archived or not c.archived]

  async def save_channel(self, channel: Channel) -> None:
    self._channels[channel.id] = _copy(channel)

  async def delete_channel(self, channel_id: str) -> None:
    self._channels.pop(channel_id, None)
    self._tasks = {k: t for k, t in self._tasks.items() if t.channel_id != channel_id}
    self._events = [e for e in self._events if e.channel_id != channel_id]
    self._completed = [c for c in self._completed if c.channel_id != channel_id]

  async def get_task(self, task_id: str) -> Task | None:
    t = self._tasks.get(task_id)
    return _copy(t) if t else None

  async def list_tasks(self, *, channel_id: str | None = None, column_id: str | None = None) -> list[Task]:
    out = []
    for t in self._tasks.values():
      if channel_id is not None and t.channel_id != channel_id:
        continue
      if column_id is not None and t.column_id != column_id:
        continue
      out.append(_copy(t))
    return out

  async def save_task(self, task: Task) -> None:
    self._tasks[task.id] = _copy(task)

  async def delete_task(self, task_id: str) -> None:
    self._tasks.pop(task_id, None)

  async def add_stage_event(self, event: StageEvent) -> None:
    self._events = [*self._events, event]

  async def list_stage_events(self, *, channel_id: str | None = None, task_id: str | None = None) -> list[StageEvent]:
    return [
      e
      for e in self._events
      if (channel_id is None or e.channel_id == channel_id) and (task_id is None or e.task_id == task_id)
    ]

  async def last_stage_event(self, task_id: str) -> StageEvent | None:
    for e in reversed(self._events):
      if e.task_id == task_id:
        return e
    return None

  async def add_completed_task(self, record: CompletedTask) -> None:
    self._completed = [*self._completed, _copy(record)]

  async def list_completed_tasks(self, *, channel_id: str | None = None) -> list[CompletedTask]:
    return [_copy(c) for c in self._completed if channel_id is None or c.channel_id == channel_id]

  async def snapshot(self) -> Snapshot:
    async with self._lock:
      return Snapshot(
        tasks=[_copy(t) for t in self._tasks.values()],
        completed_tasks=[_copy(c) for c in self._completed],
        stage_events=list(self._events),
        channels=[_copy(c) for c in self._channels.values()],
        users=[_copy(u) for u in self._users.values()],
      )
