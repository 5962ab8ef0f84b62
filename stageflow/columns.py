from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from stageflow.domain import Channel, Column, Task, new_id
from stageflow.errors import ColumnNotEmpty, InvalidColumn

logger = logging.getLogger(__name__)


def normalize_columns(columns: Sequence[Column]) -> list[Column]:
  """
  Return the columns re-numbered with dense zero-based order indices.

  Existing relative order is kept (stable on equal order values).
  """
  if not columns:
    raise InvalidColumn("A channel must have at least one column")
  seen: set[str] = set()
  for c in columns:
    if c.id in seen:
      raise InvalidColumn(f"Duplicate column id: {c.id}")
    seen.add(c.id)
  ordered = sorted(enumerate(columns), key=lambda pair: (pair[1].order, pair[0]))
  return [c.model_copy(update={"order": idx}) for idx, (_, c) in enumerate(ordered)]


def _renumber(columns: list[Column]) -> list[Column]:
  return [c.model_copy(update={"order": idx}) for idx, c in enumerate(columns)]


def require_column(channel: Channel, column_id: str) -> Column:
  col = channel.column(column_id)
  if col is None:
    raise InvalidColumn(f"Invalid column for channel {channel.id}: {column_id}", details={"columnId": column_id})
  return col


def next_column(channel: Channel, column_id: str) -> Column | None:
  cols = channel.ordered_columns()
  idx = channel.column_index(column_id)
  if idx < 0:
    raise InvalidColumn(f"Invalid column for channel {channel.id}: {column_id}", details={"columnId": column_id})
  return cols[idx + 1] if idx + 1 < len(cols) else None


def resolve_assignee(channel: Channel, column_id: str) -> str | None:
  assignees = channel.column_assignments.get(column_id) or []
  return assignees[0] if assignees else None


def add_column(channel: Channel, name: str, *, position: int | None = None, column_id: str | None = None) -> Channel:
  name = (name or "").strip()
  if not name:
    raise InvalidColumn("Column name is required")
  cid = column_id or new_id()
  if channel.column(cid) is not None:
    raise InvalidColumn(f"Duplicate column id: {cid}")
  cols = channel.ordered_columns()
  pos = len(cols) if position is None else max(0, min(int(position), len(cols)))
  cols.insert(pos, Column(id=cid, name=name, order=pos))
  return channel.model_copy(update={"columns": _renumber(cols)}, deep=True)


def rename_column(channel: Channel, column_id: str, name: str) -> Channel:
  require_column(channel, column_id)
  name = (name or "").strip()
  if not name:
    raise InvalidColumn("Column name is required")
  cols = [c.model_copy(update={"name": name}) if c.id == column_id else c for c in channel.ordered_columns()]
  return channel.model_copy(update={"columns": cols}, deep=True)


def reorder_columns(channel: Channel, column_ids: Sequence[str]) -> Channel:
  by_id = {c.id: c for c in channel.columns}
  if len(column_ids) != len(by_id) or set(column_ids) != set(by_id.keys()):
    raise InvalidColumn("columnIds must include all columns exactly once")
  return channel.model_copy(update={"columns": _renumber([by_id[cid] for cid in column_ids])}, deep=True)


def prune_column_references(channel: Channel, column_id: str) -> Channel:
  assignments = {k: list(v) for k, v in channel.column_assignments.items() if k != column_id}
  fields = [
    f.model_copy(update={"required_in_columns": {c for c in f.required_in_columns if c != column_id}})
    for f in channel.custom_fields
  ]
  return channel.model_copy(update={"column_assignments": assignments, "custom_fields": fields}, deep=True)


def delete_column(
  channel: Channel,
  column_id: str,
  tasks: Iterable[Task],
  *,
  destination_column_id: str | None = None,
) -> tuple[Channel, list[Task]]:
  """
  Remove a column from the channel.

  Tasks still sitting in the column block the delete unless a destination is
  supplied, in which case they are re-homed there. This is an administrative
  move: the returned tasks carry no stage event and keep their assignee.
  """
  require_column(channel, column_id)
  if len(channel.columns) <= 1:
    raise InvalidColumn("Cannot delete the last column of a channel")

  occupants = [t for t in tasks if t.channel_id == channel.id and t.column_id == column_id]
  if occupants and destination_column_id is None:
    raise ColumnNotEmpty(column_id, len(occupants))
  if destination_column_id is not None:
    if destination_column_id == column_id:
      raise InvalidColumn("Destination column must differ from the deleted column")
    require_column(channel, destination_column_id)

  migrated = [t.model_copy(update={"column_id": destination_column_id}, deep=True) for t in occupants]
  remaining = [c for c in channel.ordered_columns() if c.id != column_id]
  updated = prune_column_references(channel.model_copy(update={"columns": _renumber(remaining)}, deep=True), column_id)
  if migrated:
    logger.info("Migrated %d task(s) from column %s to %s in channel %s", len(migrated), column_id, destination_column_id, channel.id)
  return updated, migrated


def replace_columns(channel: Channel, columns: Sequence[Column], tasks: Iterable[Task]) -> Channel:
  """Swap in a full column list (settings form save), refusing to orphan active tasks."""
  normalized = normalize_columns(columns)
  new_ids = {c.id for c in normalized}
  removed = [c.id for c in channel.columns if c.id not in new_ids]
  task_list = list(tasks)
  for cid in removed:
    count = sum(1 for t in task_list if t.channel_id == channel.id and t.column_id == cid)
    if count:
      raise ColumnNotEmpty(cid, count)
  updated = channel.model_copy(update={"columns": normalized}, deep=True)
  for cid in removed:
    updated = prune_column_references(updated, cid)
  return updated
