from __future__ import annotations

import logging

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  # "memory://" keeps everything in process (no database).
  database_url: str = "sqlite+aiosqlite:///./stageflow.db"
  app_version: str = "v2026-10-18"
  api_docs_enabled: bool = True
  log_level: str = "INFO"

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

  emit_finalized_events: bool = True
  bottleneck_threshold_days: float = 5.0
  bottleneck_limit: int = 5
  aging_task_limit: int = 10
  default_window_days: int = 30

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def uses_memory_store(self) -> bool:
    return self.database_url.strip().lower().startswith("memory://")


settings = Settings()


def configure_logging(level: str | None = None) -> None:
  logging.basicConfig(
    level=(level or settings.log_level).upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
  )
