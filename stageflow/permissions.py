from __future__ import annotations

from stageflow.domain import MANAGER_ROLE, Channel, CustomField, Task, User


def is_column_responsible(user: User, channel: Channel, column_id: str) -> bool:
  return user.id in (channel.column_assignments.get(column_id) or [])


def can_edit_field(field: CustomField, acting_user: User, task: Task, channel: Channel) -> bool:
  """
  Resolve whether ``acting_user`` may write ``field`` on ``task``.

  Owners bypass everything. A field without a permission object is
  unrestricted. Otherwise the first matching rule wins: role, column
  responsibility for the task's current column, explicit user grant.
  """
  if acting_user.is_owner:
    return True

  perms = field.permissions
  if perms is None:
    return True

  if acting_user.role in perms.editable_by_roles:
    return True

  if perms.editable_by_column_responsibility and is_column_responsible(acting_user, channel, task.column_id):
    return True

  if acting_user.id in perms.editable_by_users:
    return True

  return False


def editable_field_ids(acting_user: User, task: Task, channel: Channel) -> list[str]:
  return [f.id for f in sorted(channel.custom_fields, key=lambda f: f.order) if can_edit_field(f, acting_user, task, channel)]


def can_finalize(acting_user: User, channel: Channel) -> bool:
  """Owners, ``channel_manager`` role holders and the channel's named manager may finalize."""
  if acting_user.is_owner or acting_user.role == MANAGER_ROLE:
    return True
  return channel.manager_id is not None and channel.manager_id == acting_user.id
