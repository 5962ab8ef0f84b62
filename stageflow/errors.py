from __future__ import annotations

from typing import Any


class StageflowError(RuntimeError):
  def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.details = details or {}


class InvalidColumn(StageflowError):
  pass


class NotInTerminalColumn(InvalidColumn):
  pass


class TaskNotFound(StageflowError):
  def __init__(self, task_id: str) -> None:
    super().__init__(f"Task not found: {task_id}", details={"taskId": task_id})
    self.task_id = task_id


class ChannelNotFound(StageflowError):
  def __init__(self, channel_id: str) -> None:
    super().__init__(f"Channel not found: {channel_id}", details={"channelId": channel_id})
    self.channel_id = channel_id


class UserNotFound(StageflowError):
  def __init__(self, user_id: str) -> None:
    super().__init__(f"User not found: {user_id}", details={"userId": user_id})
    self.user_id = user_id


class ColumnNotEmpty(StageflowError):
  def __init__(self, column_id: str, task_count: int) -> None:
    super().__init__(
      f"Column {column_id} has {task_count} active task(s); supply a destination column",
      details={"columnId": column_id, "taskCount": task_count},
    )
    self.column_id = column_id
    self.task_count = task_count


class RequiredFieldsMissing(StageflowError):
  def __init__(self, field_names: list[str]) -> None:
    super().__init__(
      f"Required fields missing: {', '.join(field_names)}",
      details={"fields": list(field_names)},
    )
    self.field_names = list(field_names)


class Forbidden(StageflowError):
  def __init__(self, message: str, *, field_names: list[str] | None = None) -> None:
    super().__init__(message, details={"fields": list(field_names or [])})
    self.field_names = list(field_names or [])


class InvalidFieldValue(StageflowError):
  pass
