from __future__ import annotations

import logging
from time import monotonic

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stageflow.config import configure_logging, settings
from stageflow.db import init_db, make_engine, make_sessionmaker
from stageflow.errors import (
  ChannelNotFound,
  ColumnNotEmpty,
  Forbidden,
  InvalidFieldValue,
  StageflowError,
  TaskNotFound,
  UserNotFound,
)
from stageflow.repository import InMemoryRepository
from stageflow.routers.analytics import router as analytics_router
from stageflow.routers.channels import router as channels_router
from stageflow.routers.tasks import router as tasks_router
from stageflow.routers.users import router as users_router
from stageflow.service import StageflowService
from stageflow.sql_repository import SqlRepository

logger = logging.getLogger(__name__)

app = FastAPI(
  title="Stageflow API",
  version="0.1.0",
  docs_url="/docs" if settings.api_docs_enabled else None,
  redoc_url="/redoc" if settings.api_docs_enabled else None,
  openapi_url="/openapi.json" if settings.api_docs_enabled else None,
)


def status_for(exc: StageflowError) -> int:
  if isinstance(exc, (TaskNotFound, ChannelNotFound, UserNotFound)):
    return 404
  if isinstance(exc, Forbidden):
    return 403
  if isinstance(exc, ColumnNotEmpty):
    return 409
  if isinstance(exc, InvalidFieldValue):
    return 422
  return 400


@app.exception_handler(StageflowError)
async def _stageflow_error_handler(_, exc: StageflowError) -> JSONResponse:
  code = status_for(exc)
  return JSONResponse(
    status_code=code,
    content={"detail": {"message": exc.message, "code": type(exc).__name__, **exc.details}},
  )


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)

app.include_router(users_router)
app.include_router(channels_router)
app.include_router(tasks_router)
app.include_router(analytics_router)


@app.middleware("http")
async def _request_log_middleware(request, call_next):
  start = monotonic()
  response = await call_next(request)
  elapsed_ms = (monotonic() - start) * 1000.0
  logger.debug("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  return response


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version}


async def build_service() -> StageflowService:
  if settings.uses_memory_store():
    logger.info("Using in-memory repository")
    return StageflowService(InMemoryRepository())

  engine = make_engine()
  await init_db(engine)
  app.state.engine = engine
  return StageflowService(SqlRepository(make_sessionmaker(engine)))


@app.on_event("startup")
async def _startup() -> None:
  configure_logging()
  if getattr(app.state, "service", None) is None:
    app.state.service = await build_service()


@app.on_event("shutdown")
async def _shutdown() -> None:
  engine = getattr(app.state, "engine", None)
  if engine is not None:
    await engine.dispose()
