from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from dateutil import parser as dateparser

from stageflow.domain import Channel, CustomField, FieldType, FieldValue, Task, User, parse_dt_utc
from stageflow.errors import Forbidden, InvalidFieldValue
from stageflow.permissions import can_edit_field


_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def is_empty_value(value: Any) -> bool:
  if value is None:
    return True
  if isinstance(value, str) and not value.strip():
    return True
  return False


def coerce_field_value(field: CustomField, raw: Any) -> FieldValue | None:
  """Validate ``raw`` against the field's declared type; ``None`` clears the value."""
  if raw is None:
    return None

  ftype = field.type
  if ftype in (FieldType.TEXT, FieldType.LINK, FieldType.DROPDOWN):
    if not isinstance(raw, str):
      raise InvalidFieldValue(f"{field.name}: expected text", details={"fieldId": field.id})
    if ftype == FieldType.LINK and raw.strip() and any(ch.isspace() for ch in raw.strip()):
      raise InvalidFieldValue(f"{field.name}: links cannot contain spaces", details={"fieldId": field.id})
    if ftype == FieldType.DROPDOWN and raw.strip() and field.dropdown_options and raw not in field.dropdown_options:
      raise InvalidFieldValue(f"{field.name}: '{raw}' is not one of the options", details={"fieldId": field.id})
    return raw.strip() if ftype == FieldType.LINK else raw

  if ftype == FieldType.NUMBER:
    if isinstance(raw, bool):
      raise InvalidFieldValue(f"{field.name}: expected a number", details={"fieldId": field.id})
    if isinstance(raw, (int, float)):
      return float(raw)
    if isinstance(raw, str):
      if not raw.strip():
        return None
      try:
        return float(raw.strip())
      except ValueError as e:
        raise InvalidFieldValue(f"{field.name}: expected a number", details={"fieldId": field.id}) from e
    raise InvalidFieldValue(f"{field.name}: expected a number", details={"fieldId": field.id})

  if ftype == FieldType.DATE:
    if isinstance(raw, str):
      if not raw.strip():
        return None
      # Free-form input ("2024-05-03", "May 3 2024", ISO timestamps).
      try:
        raw = dateparser.parse(raw.strip())
      except (ValueError, OverflowError) as e:
        raise InvalidFieldValue(f"{field.name}: expected a date", details={"fieldId": field.id}) from e
    if not isinstance(raw, datetime):
      raise InvalidFieldValue(f"{field.name}: expected a date", details={"fieldId": field.id})
    return parse_dt_utc(raw)

  if ftype == FieldType.CHECKBOX:
    if isinstance(raw, bool):
      return raw
    if isinstance(raw, str) and raw.strip().lower() in _TRUE | _FALSE:
      return raw.strip().lower() in _TRUE
    raise InvalidFieldValue(f"{field.name}: expected true or false", details={"fieldId": field.id})

  raise InvalidFieldValue(f"{field.name}: unsupported field type {ftype}", details={"fieldId": field.id})


def missing_required_fields(channel: Channel, task: Task, column_id: str | None = None) -> list[CustomField]:
  """Fields required in ``column_id`` (default: the task's current column) that hold no value."""
  col = column_id or task.column_id
  required = [f for f in sorted(channel.custom_fields, key=lambda f: f.order) if col in f.required_in_columns]
  return [f for f in required if is_empty_value(task.custom_field_values.get(f.id))]


def apply_field_values(
  channel: Channel,
  task: Task,
  acting_user: User | None,
  values: Mapping[str, Any],
) -> dict[str, Any]:
  """
  Merge ``values`` into the task's custom field values and return the new map.

  Every value is validated first and every field whose value changes must be
  editable by ``acting_user`` (``None`` skips the permission check, used for
  seeding values at creation time). The task itself is left untouched.
  """
  merged = dict(task.custom_field_values)
  denied: list[str] = []
  for field_id, raw in values.items():
    field = channel.field(field_id)
    if field is None:
      raise InvalidFieldValue(f"Unknown custom field: {field_id}", details={"fieldId": field_id})
    value = coerce_field_value(field, raw)
    if merged.get(field_id) == value:
      continue
    if acting_user is not None and not can_edit_field(field, acting_user, task, channel):
      denied.append(field.name)
      continue
    if value is None:
      merged.pop(field_id, None)
    else:
      merged[field_id] = value
  if denied:
    raise Forbidden(f"Not allowed to edit: {', '.join(denied)}", field_names=denied)
  return merged


def normalize_custom_fields(fields: Sequence[CustomField], column_ids: set[str]) -> list[CustomField]:
  seen: set[str] = set()
  out: list[CustomField] = []
  ordered = sorted(enumerate(fields), key=lambda pair: (pair[1].order, pair[0]))
  for idx, (_, f) in enumerate(ordered):
    if f.id in seen:
      raise InvalidFieldValue(f"Duplicate custom field id: {f.id}", details={"fieldId": f.id})
    if not f.name.strip():
      raise InvalidFieldValue("Custom field name is required", details={"fieldId": f.id})
    seen.add(f.id)
    options = [o for o in f.dropdown_options if o.strip()] if f.type == FieldType.DROPDOWN else []
    out.append(
      f.model_copy(
        update={
          "order": idx,
          "dropdown_options": options,
          "required_in_columns": {c for c in f.required_in_columns if c in column_ids},
        }
      )
    )
  return out
