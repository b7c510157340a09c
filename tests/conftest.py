from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.core.config import SETTINGS
from app.main import app
from app.models.badge import badge_type_for
from app.services import badges, token_service
from app.services.metadata_store import metadata_store
from app.services.task_queue import task_queue

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

OWNER = SETTINGS.badge_owner
T1 = badge_type_for("first-contribution")
T2 = badge_type_for("code-reviewer")
T3 = badge_type_for("release-captain")


@pytest.fixture(autouse=True)
def reset_ledger_state() -> None:
    """Clear the ledger mappings and event log between tests."""
    repo = badges.badge_repo
    if hasattr(repo, "_held"):
        repo._held.clear()  # type: ignore[union-attr]
        repo._creators.clear()  # type: ignore[union-attr]
        repo._proposals.clear()  # type: ignore[union-attr]
    badges.event_log._events.clear()


@pytest.fixture(autouse=True)
def reset_metadata_store() -> None:
    if hasattr(metadata_store, "_store"):
        metadata_store._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_notification_directory() -> None:
    directory = badges.notification_directory
    if hasattr(directory, "_targets"):
        directory._targets.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(username: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(username=username)}"}


@pytest.fixture
def owner_headers() -> dict[str, str]:
    return auth(OWNER)
