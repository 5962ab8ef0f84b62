from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from stageflow.config import Settings
from stageflow.deps import get_service
from stageflow.domain import Column, CustomField, FieldPermissions, FieldType
from stageflow.main import app
from stageflow.repository import InMemoryRepository
from stageflow.service import StageflowService

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class Clock:
  def __init__(self, start: datetime = T0) -> None:
    self.now = start

  def __call__(self) -> datetime:
    return self.now

  def advance(self, **kwargs: float) -> datetime:
    self.now = self.now + timedelta(**kwargs)
    return self.now


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def clock() -> Clock:
  return Clock()


@pytest.fixture
def repo() -> InMemoryRepository:
  return InMemoryRepository()


@pytest.fixture
def svc(repo: InMemoryRepository, clock: Clock) -> StageflowService:
  return StageflowService(repo, clock=clock, config=Settings(database_url="memory://"))


@pytest.fixture
async def users(svc: StageflowService) -> dict[str, str]:
  owner = await svc.create_user("Olive Owner", role="owner", user_id="owner")
  manager = await svc.create_user("Max Manager", role="channel_manager", user_id="manager")
  writer = await svc.create_user("Wren Writer", role="script_writer", user_id="writer")
  audio = await svc.create_user("Ari Audio", role="audio_editor", user_id="audio")
  editor = await svc.create_user("Eve Editor", role="video_editor", user_id="editor")
  return {u.id: u.id for u in (owner, manager, writer, audio, editor)}


@pytest.fixture
async def channel(svc: StageflowService, users: dict[str, str]):
  """Script -> Audio -> Edit -> Upload with one field per permission rule."""
  return await svc.create_channel(
    "Science Shorts",
    channel_id="science",
    columns=[
      Column(id="script", name="Script", order=0),
      Column(id="audio", name="Audio", order=1),
      Column(id="edit", name="Edit", order=2),
      Column(id="upload", name="Upload", order=3),
    ],
    custom_fields=[
      CustomField(
        id="script_url",
        name="Script URL",
        type=FieldType.LINK,
        order=0,
        permissions=FieldPermissions(editable_by_roles={"script_writer"}),
        required_in_columns={"script"},
      ),
      CustomField(
        id="audio_url",
        name="Audio URL",
        type=FieldType.LINK,
        order=1,
        permissions=FieldPermissions(editable_by_column_responsibility=True),
        required_in_columns={"audio"},
      ),
      CustomField(
        id="notes",
        name="Notes",
        type=FieldType.TEXT,
        order=2,
      ),
      CustomField(
        id="video_len",
        name="Video length",
        type=FieldType.NUMBER,
        order=3,
        permissions=FieldPermissions(editable_by_users={"editor"}),
      ),
      CustomField(
        id="approved",
        name="Approved",
        type=FieldType.CHECKBOX,
        order=4,
        permissions=FieldPermissions(editable_by_roles={"channel_manager"}),
      ),
    ],
    members=["writer", "audio", "editor"],
    manager_id="manager",
    column_assignments={"script": ["writer"], "audio": ["audio"], "edit": ["editor"]},
  )


@pytest.fixture
async def client(svc: StageflowService) -> AsyncClient:
  app.dependency_overrides[get_service] = lambda: svc
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c
  app.dependency_overrides.pop(get_service, None)


def as_user(user_id: str) -> dict[str, str]:
  return {"X-User-Id": user_id}
