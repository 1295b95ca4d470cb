"""Demo: author → review → publish a course, then take it twice.

Run with:
    python scripts/demo_retake_flow.py

Uses FastAPI TestClient against the in-memory stores; no database or
Redis needed.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from course_core.main import app

TENANT = "demo-tenant"


def headers(user_id: str, role: str, name: str | None = None) -> dict[str, str]:
    h = {"X-User-Id": user_id, "X-Tenant-Id": TENANT, "X-User-Role": role}
    if name:
        h["X-User-Name"] = name
    return h


AUTHOR = headers("ines", "instructor")
REVIEWER = headers("rui", "content-manager")
LEARNER = headers("ana", "student", "Ana Learner")


def main() -> None:
    client = TestClient(app)

    # ── Authoring ───────────────────────────────────────────────────
    r = client.post(
        "/v1/courses",
        json={
            "title": "Safe Lifting",
            "category": "safety",
            "certificate_enabled": True,
            "certificate_requires_passing_score": True,
            "minimum_score_for_certificate": 80,
        },
        headers=AUTHOR,
    )
    course_id = r.json()["id"]
    print(f"1. POST /v1/courses              → {r.status_code}  {r.json()['status']}")

    r = client.post(f"/v1/courses/{course_id}/submit", headers=AUTHOR)
    print(f"2. submit                        → {r.status_code}  {r.json()['status']}")

    r = client.post(f"/v1/courses/{course_id}/approve", headers=REVIEWER)
    print(f"3. approve                       → {r.status_code}  {r.json()['status']}")

    r = client.post(f"/v1/courses/{course_id}/submit", headers=AUTHOR)
    print(f"4. submit again                  → {r.status_code}  (already published)")

    # ── First attempt: 70, no certificate ───────────────────────────
    client.post(f"/v1/progress/{course_id}/attempts", headers=LEARNER)
    r = client.post(
        f"/v1/progress/{course_id}/attempts/complete",
        json={"final_score": 70},
        headers=LEARNER,
    )
    body = r.json()
    print(
        f"5. complete attempt 1 (70)       → {r.status_code}  "
        f"xp={body['xp_awarded']['xp_earned']} cert={body['certificate_earned']}"
    )

    # ── Retake: 90, improvement XP and a certificate ────────────────
    client.post(f"/v1/progress/{course_id}/attempts", headers=LEARNER)
    r = client.post(
        f"/v1/progress/{course_id}/attempts/complete",
        json={"final_score": 90},
        headers=LEARNER,
    )
    body = r.json()
    print(
        f"6. complete attempt 2 (90)       → {r.status_code}  "
        f"xp={body['xp_awarded']['xp_earned']} cert={body['certificate_id']}"
    )

    # ── Retake at the same score earns nothing ──────────────────────
    client.post(f"/v1/progress/{course_id}/attempts", headers=LEARNER)
    r = client.post(
        f"/v1/progress/{course_id}/attempts/complete",
        json={"final_score": 90},
        headers=LEARNER,
    )
    print(
        f"7. complete attempt 3 (90)       → {r.status_code}  "
        f"xp={r.json()['xp_awarded']['xp_earned']}"
    )

    r = client.get(f"/v1/progress/{course_id}", headers=LEARNER)
    p = r.json()
    print(
        f"8. GET progress                  → {r.status_code}  best={p['best_score']} "
        f"total_xp={p['total_xp_earned']} attempts={p['current_attempt']}"
    )

    r = client.get(f"/v1/progress/{course_id}/attempts", headers=LEARNER)
    print(f"9. GET attempts                  → {[a['state'] for a in r.json()]}")


if __name__ == "__main__":
    main()
