from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from stageflow.deps import get_service
from stageflow.domain import Channel, ChannelUpdate, Column, CustomField, FieldPermissions, new_id
from stageflow.schemas import (
  ChannelCreateIn,
  ChannelOut,
  ChannelUpdateIn,
  ColumnCreateIn,
  ColumnIO,
  ColumnRenameIn,
  ColumnReorderIn,
  CustomFieldIO,
  FieldPermissionsIO,
)
from stageflow.service import StageflowService

router = APIRouter(tags=["channels"])


def _column_in(c: ColumnIO) -> Column:
  return Column(id=c.id or new_id(), name=c.name, order=c.order)


def _field_in(f: CustomFieldIO) -> CustomField:
  perms = None
  if f.permissions is not None:
    perms = FieldPermissions(
      editable_by_roles=set(f.permissions.editableByRoles),
      editable_by_column_responsibility=f.permissions.editableByColumnResponsibility,
      editable_by_users=set(f.permissions.editableByUsers),
    )
  return CustomField(
    id=f.id or new_id(),
    name=f.name,
    type=f.type,
    order=f.order,
    show_on_card_front=f.showOnCardFront,
    dropdown_options=list(f.dropdownOptions),
    permissions=perms,
    required_in_columns=set(f.requiredInColumns),
  )


def _field_out(f: CustomField) -> CustomFieldIO:
  perms = None
  if f.permissions is not None:
    perms = FieldPermissionsIO(
      editableByRoles=sorted(f.permissions.editable_by_roles),
      editableByColumnResponsibility=f.permissions.editable_by_column_responsibility,
      editableByUsers=sorted(f.permissions.editable_by_users),
    )
  return CustomFieldIO(
    id=f.id,
    name=f.name,
    type=f.type.value,
    order=f.order,
    showOnCardFront=f.show_on_card_front,
    dropdownOptions=list(f.dropdown_options),
    permissions=perms,
    requiredInColumns=sorted(f.required_in_columns),
  )


def _channel_out(c: Channel) -> ChannelOut:
  return ChannelOut(
    id=c.id,
    name=c.name,
    description=c.description,
    archived=c.archived,
    columns=[ColumnIO(id=col.id, name=col.name, order=col.order) for col in c.ordered_columns()],
    customFields=[_field_out(f) for f in sorted(c.custom_fields, key=lambda f: f.order)],
    members=list(c.members),
    managerId=c.manager_id,
    columnAssignments={k: list(v) for k, v in c.column_assignments.items()},
    externalChannelId=c.external_channel_id,
    createdAt=c.created_at,
  )


@router.get("/channels", response_model=list[ChannelOut])
async def list_channels(
  includeArchived: bool = Query(default=True),
  svc: StageflowService = Depends(get_service),
) -> list[ChannelOut]:
  return [_channel_out(c) for c in await svc.list_channels(include_archived=includeArchived)]


@router.post("/channels", response_model=ChannelOut)
async def create_channel(payload: ChannelCreateIn, svc: StageflowService = Depends(get_service)) -> ChannelOut:
  ch = await svc.create_channel(
    payload.name,
    description=payload.description,
    columns=[_column_in(c) for c in payload.columns] if payload.columns is not None else None,
    custom_fields=[_field_in(f) for f in payload.customFields],
    members=payload.members,
    manager_id=payload.managerId,
    column_assignments=payload.columnAssignments,
    external_channel_id=payload.externalChannelId,
    channel_id=payload.id,
  )
  return _channel_out(ch)


@router.get("/channels/{channel_id}", response_model=ChannelOut)
async def get_channel(channel_id: str, svc: StageflowService = Depends(get_service)) -> ChannelOut:
  return _channel_out(await svc.get_channel(channel_id))


@router.patch("/channels/{channel_id}", response_model=ChannelOut)
async def update_channel(channel_id: str, payload: ChannelUpdateIn, svc: StageflowService = Depends(get_service)) -> ChannelOut:
  fields_set = payload.model_fields_set
  changes: dict = {}
  if "name" in fields_set:
    changes["name"] = payload.name
  if "description" in fields_set:
    changes["description"] = payload.description
  if "archived" in fields_set:
    changes["archived"] = payload.archived
  if "columns" in fields_set:
    changes["columns"] = [_column_in(c) for c in payload.columns] if payload.columns is not None else None
  if "customFields" in fields_set:
    changes["custom_fields"] = [_field_in(f) for f in payload.customFields or []]
  if "members" in fields_set:
    changes["members"] = payload.members
  if "managerId" in fields_set:
    changes["manager_id"] = payload.managerId
  if "columnAssignments" in fields_set:
    changes["column_assignments"] = payload.columnAssignments
  if "externalChannelId" in fields_set:
    changes["external_channel_id"] = payload.externalChannelId
  ch = await svc.update_channel(channel_id, ChannelUpdate(**changes))
  return _channel_out(ch)


@router.delete("/channels/{channel_id}")
async def delete_channel(channel_id: str, svc: StageflowService = Depends(get_service)) -> dict:
  await svc.delete_channel(channel_id)
  return {"ok": True}


@router.post("/channels/{channel_id}/columns", response_model=ChannelOut)
async def add_column(channel_id: str, payload: ColumnCreateIn, svc: StageflowService = Depends(get_service)) -> ChannelOut:
  ch = await svc.add_column(channel_id, payload.name, position=payload.position, column_id=payload.id)
  return _channel_out(ch)


@router.patch("/channels/{channel_id}/columns/{column_id}", response_model=ChannelOut)
async def rename_column(
  channel_id: str,
  column_id: str,
  payload: ColumnRenameIn,
  svc: StageflowService = Depends(get_service),
) -> ChannelOut:
  return _channel_out(await svc.rename_column(channel_id, column_id, payload.name))


@router.post("/channels/{channel_id}/columns/reorder", response_model=ChannelOut)
async def reorder_columns(channel_id: str, payload: ColumnReorderIn, svc: StageflowService = Depends(get_service)) -> ChannelOut:
  return _channel_out(await svc.reorder_columns(channel_id, payload.columnIds))


@router.delete("/channels/{channel_id}/columns/{column_id}", response_model=ChannelOut)
async def delete_column(
  channel_id: str,
  column_id: str,
  destinationColumnId: str | None = Query(default=None),
  svc: StageflowService = Depends(get_service),
) -> ChannelOut:
  ch = await svc.delete_column(channel_id, column_id, destination_column_id=destinationColumnId)
  return _channel_out(ch)
