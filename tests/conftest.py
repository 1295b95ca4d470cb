from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from course_core import worker
from course_core.api import dependencies
from course_core.main import app
from course_core.models.course import Course
from course_core.models.principal import Principal
from course_core.services.cache import cache_service
from course_core.services.task_queue import task_queue

# Ensure repo root is on sys.path so `import course_core` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TENANT = "tenant-a"


@pytest.fixture(autouse=True)
def reset_course_state() -> None:
    """Clear the in-memory course and progress stores between tests."""
    dependencies.course_repo._store.clear()
    dependencies.progress_repo._store.clear()


@pytest.fixture(autouse=True)
def reset_side_effect_state() -> None:
    dependencies.audit_logger.events.clear()
    dependencies.certificate_issuer._by_id.clear()
    dependencies.certificate_issuer._by_owner.clear()
    worker.achievement_tracker.stats.clear()
    worker.achievement_tracker.unlocked.clear()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_dependency_overrides() -> Iterator[None]:
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


# ---------------------------------------------------------------------------
# Identity helpers
# ---------------------------------------------------------------------------


def principal(
    user_id: str = "learner-1",
    role: str = "student",
    tenant_id: str = TENANT,
    full_name: str | None = None,
) -> Principal:
    return Principal(user_id=user_id, tenant_id=tenant_id, role=role, full_name=full_name)


def gateway_headers(
    user_id: str = "learner-1",
    role: str = "student",
    tenant_id: str = TENANT,
    full_name: str | None = None,
) -> dict[str, str]:
    """Headers the gateway forwards for an authenticated caller."""
    headers = {"X-User-Id": user_id, "X-Tenant-Id": tenant_id, "X-User-Role": role}
    if full_name:
        headers["X-User-Name"] = full_name
    return headers


@pytest.fixture
def author_headers() -> dict[str, str]:
    return gateway_headers(user_id="author-1", role="instructor")


@pytest.fixture
def reviewer_headers() -> dict[str, str]:
    return gateway_headers(user_id="reviewer-1", role="content-manager")


@pytest.fixture
def learner_headers() -> dict[str, str]:
    return gateway_headers(user_id="learner-1", role="student", full_name="Ana Silva")


# ---------------------------------------------------------------------------
# Domain helpers
# ---------------------------------------------------------------------------


def make_course(**overrides) -> Course:
    fields = {
        "tenant_id": TENANT,
        "title": "Forklift Safety",
        "created_by": "author-1",
        "now": 1_700_000_000,
        "category": "safety",
    }
    fields.update(overrides)
    return Course.new(**fields)


class FakeClock:
    """Deterministic epoch-seconds clock; each call advances one second."""

    def __init__(self, start: int = 1_700_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


def publish_course(client: TestClient, **fields) -> dict:
    """Create a course as author-1 and publish it as reviewer-1."""
    body = {"title": "Forklift Safety", "category": "safety", **fields}
    resp = client.post(
        "/v1/courses", json=body, headers=gateway_headers("author-1", "instructor")
    )
    assert resp.status_code == 201, resp.text
    course_id = resp.json()["id"]
    resp = client.post(
        f"/v1/courses/{course_id}/publish",
        headers=gateway_headers("reviewer-1", "content-manager"),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()
