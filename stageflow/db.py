from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from stageflow.config import settings
from stageflow.models import Base

logger = logging.getLogger(__name__)


def make_engine(url: str | None = None) -> AsyncEngine:
  return create_async_engine(url or settings.database_url, pool_pre_ping=True)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
  return async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
  logger.info("Database schema ready (%s)", engine.url.render_as_string(hide_password=True))
