"""Cache hit/miss/invalidation tests for progress reads.

Verifies the read-through cache pattern:
1. First GET is a cache miss (populates cache from the ledger)
2. Second GET is a cache hit (returns same data without reading the ledger)
3. A ledger write invalidates the entry so the next GET sees fresh data
4. Different learners have isolated cache entries
5. An unreachable cache never fails a read or a committed write
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from course_core.api import progress as progress_api
from course_core.services.cache import cache_service, progress_cache_key
from tests.conftest import TENANT, gateway_headers, publish_course


def _cache_ops(operation: str) -> float:
    value = REGISTRY.get_sample_value(
        "cache_operations_total", labels={"operation": operation}
    )
    return value or 0.0


def _start(client: TestClient, course_id: str, headers: dict[str, str]) -> None:
    resp = client.post(f"/v1/progress/{course_id}/attempts", headers=headers)
    assert resp.status_code == 201


def test_cache_miss_then_hit(
    client: TestClient, learner_headers: dict[str, str]
) -> None:
    course_id = publish_course(client)["id"]
    _start(client, course_id, learner_headers)
    misses, hits = _cache_ops("miss"), _cache_ops("hit")

    resp1 = client.get(f"/v1/progress/{course_id}", headers=learner_headers)
    resp2 = client.get(f"/v1/progress/{course_id}", headers=learner_headers)

    assert resp1.status_code == 200
    assert resp1.json() == resp2.json()
    assert _cache_ops("miss") - misses == 1
    assert _cache_ops("hit") - hits == 1


def test_cache_invalidated_on_write(
    client: TestClient, learner_headers: dict[str, str]
) -> None:
    course_id = publish_course(client)["id"]
    _start(client, course_id, learner_headers)

    resp1 = client.get(f"/v1/progress/{course_id}", headers=learner_headers)
    assert resp1.json()["current_attempt"] == 1
    key = progress_cache_key(TENANT, "learner-1", course_id)
    assert cache_service._store.get(key) is not None  # type: ignore[union-attr]

    _start(client, course_id, learner_headers)

    resp2 = client.get(f"/v1/progress/{course_id}", headers=learner_headers)
    assert resp2.json()["current_attempt"] == 2


def test_completion_invalidates_cached_progress(
    client: TestClient, learner_headers: dict[str, str]
) -> None:
    course_id = publish_course(client)["id"]
    _start(client, course_id, learner_headers)
    client.get(f"/v1/progress/{course_id}", headers=learner_headers)

    client.post(
        f"/v1/progress/{course_id}/attempts/complete",
        json={"final_score": 80},
        headers=learner_headers,
    )

    progress = client.get(f"/v1/progress/{course_id}", headers=learner_headers).json()
    assert progress["status"] == "completed"
    assert progress["best_score"] == 80


def test_missing_progress_is_not_cached(
    client: TestClient, learner_headers: dict[str, str]
) -> None:
    course_id = publish_course(client)["id"]

    assert client.get(
        f"/v1/progress/{course_id}", headers=learner_headers
    ).status_code == 404
    key = progress_cache_key(TENANT, "learner-1", course_id)
    assert cache_service._store.get(key) is None  # type: ignore[union-attr]


def test_cache_is_user_isolated(client: TestClient) -> None:
    """Learner A's cached progress must not leak to learner B."""
    course_id = publish_course(client)["id"]
    learner_a = gateway_headers("learner-a", "student")
    learner_b = gateway_headers("learner-b", "student")

    _start(client, course_id, learner_a)
    assert client.get(f"/v1/progress/{course_id}", headers=learner_a).status_code == 200

    resp = client.get(f"/v1/progress/{course_id}", headers=learner_b)
    assert resp.status_code == 404


class UnreachableCache:
    async def get(self, key: str) -> str | None:
        raise ConnectionError("redis down")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise ConnectionError("redis down")

    async def delete(self, key: str) -> None:
        raise ConnectionError("redis down")


def _cache_side_effect_failures() -> float:
    value = REGISTRY.get_sample_value(
        "side_effect_failures_total", labels={"effect": "cache"}
    )
    return value or 0.0


def test_completion_succeeds_when_cache_is_down(
    client: TestClient,
    learner_headers: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    course_id = publish_course(client)["id"]
    _start(client, course_id, learner_headers)
    monkeypatch.setattr(progress_api, "cache_service", UnreachableCache())
    failures = _cache_side_effect_failures()

    resp = client.post(
        f"/v1/progress/{course_id}/attempts/complete",
        json={"final_score": 80},
        headers=learner_headers,
    )

    assert resp.status_code == 200
    assert resp.json()["xp_awarded"]["xp_earned"] == 425
    assert _cache_side_effect_failures() - failures == 1


def test_start_succeeds_when_cache_is_down(
    client: TestClient,
    learner_headers: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    course_id = publish_course(client)["id"]
    monkeypatch.setattr(progress_api, "cache_service", UnreachableCache())

    resp = client.post(f"/v1/progress/{course_id}/attempts", headers=learner_headers)
    assert resp.status_code == 201
    assert resp.json()["current_attempt"] == 1


def test_read_falls_through_to_store_when_cache_is_down(
    client: TestClient,
    learner_headers: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    course_id = publish_course(client)["id"]
    _start(client, course_id, learner_headers)
    monkeypatch.setattr(progress_api, "cache_service", UnreachableCache())
    errors = _cache_ops("error")

    resp = client.get(f"/v1/progress/{course_id}", headers=learner_headers)

    assert resp.status_code == 200
    assert resp.json()["status"] == "in-progress"
    assert _cache_ops("error") - errors == 1
    missing = client.get("/v1/progress/no-such-course", headers=learner_headers)
    assert missing.status_code == 404
