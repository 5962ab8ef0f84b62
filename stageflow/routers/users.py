from __future__ import annotations

from fastapi import APIRouter, Depends

from stageflow.deps import get_service
from stageflow.domain import User
from stageflow.schemas import UserCreateIn, UserOut
from stageflow.service import StageflowService

router = APIRouter(tags=["users"])


def _user_out(u: User) -> UserOut:
  return UserOut(id=u.id, name=u.name, email=u.email, role=u.role, active=u.active)


@router.get("/users", response_model=list[UserOut])
async def list_users(svc: StageflowService = Depends(get_service)) -> list[UserOut]:
  return [_user_out(u) for u in await svc.list_users()]


@router.post("/users", response_model=UserOut)
async def create_user(payload: UserCreateIn, svc: StageflowService = Depends(get_service)) -> UserOut:
  u = await svc.create_user(payload.name, email=payload.email, role=payload.role, user_id=payload.id)
  return _user_out(u)


@router.get("/users/{user_id}", response_model=UserOut)
async def get_user(user_id: str, svc: StageflowService = Depends(get_service)) -> UserOut:
  return _user_out(await svc.get_user(user_id))
