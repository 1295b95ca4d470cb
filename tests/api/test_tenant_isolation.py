"""Cross-tenant isolation tests.

Every course and progress route is scoped to the X-Tenant-Id the gateway
forwards; a caller from tenant B never sees tenant A's courses or
progress, even with the right ids.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import gateway_headers, publish_course


def test_course_invisible_to_other_tenant(client: TestClient) -> None:
    course_id = publish_course(client)["id"]
    outsider = gateway_headers("author-1", "instructor", tenant_id="tenant-b")

    assert client.get(f"/v1/courses/{course_id}", headers=outsider).status_code == 404
    assert client.get("/v1/courses", headers=outsider).json() == []


def test_other_tenant_admin_cannot_archive(client: TestClient) -> None:
    course_id = publish_course(client)["id"]
    admin_b = gateway_headers("admin-b", "tenant-admin", tenant_id="tenant-b")

    resp = client.post(f"/v1/courses/{course_id}/archive", headers=admin_b)
    assert resp.status_code == 404

    owner_view = client.get(
        f"/v1/courses/{course_id}", headers=gateway_headers("author-1", "instructor")
    )
    assert owner_view.json()["status"] == "published"


def test_learner_cannot_start_other_tenant_course(client: TestClient) -> None:
    course_id = publish_course(client)["id"]
    learner_b = gateway_headers("learner-1", "student", tenant_id="tenant-b")

    resp = client.post(f"/v1/progress/{course_id}/attempts", headers=learner_b)
    assert resp.status_code == 404


def test_progress_scoped_to_tenant(client: TestClient) -> None:
    course_id = publish_course(client)["id"]
    learner_a = gateway_headers("learner-1", "student")
    learner_b = gateway_headers("learner-1", "student", tenant_id="tenant-b")

    client.post(f"/v1/progress/{course_id}/attempts", headers=learner_a)

    assert client.get("/v1/progress/library", headers=learner_b).json() == []
    resp = client.get(f"/v1/progress/{course_id}", headers=learner_b)
    assert resp.status_code == 404
