from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from stageflow.service import StageflowService


def get_service(request: Request) -> StageflowService:
  svc = getattr(request.app.state, "service", None)
  if svc is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")
  return svc


async def get_acting_user_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
  # Authentication happens upstream; the gateway forwards the user id.
  uid = (x_user_id or "").strip()
  if not uid:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
  return uid
