from datetime import UTC, datetime, timedelta

from conftest import build_job_payload
from fastapi.testclient import TestClient

from placetrack.api.app import create_app
from placetrack.db.repositories import Repository
from placetrack.db.session import SessionLocal

ADMIN_HEADERS = {"X-User-Id": "1", "X-User-Role": "admin"}
STAFF_HEADERS = {"X-User-Id": "3", "X-User-Role": "placement_staff"}


def _seed() -> dict[str, int]:
    # own session, closed before any request so the API connection is never blocked
    with SessionLocal() as session:
        repo = Repository(session)
        cse = repo.create_department(name="Computer Science", code="CSE")
        ece = repo.create_department(name="Electronics", code="ECE")
        repo.create_student(user_id=501, department_id=cse.id, cgpa=8.2, backlogs=0, batch="2026")
        repo.create_student(user_id=502, department_id=cse.id, cgpa=7.0, backlogs=0, batch="2026")
        repo.create_student(user_id=503, department_id=ece.id, cgpa=9.0, backlogs=1, batch="2026")
        return {"cse": cse.id, "ece": ece.id}


def _student(user_id: int, session_id: str = "sess-1") -> dict[str, str]:
    return {"X-User-Id": str(user_id), "X-User-Role": "student", "X-Session-Id": session_id}


def test_missing_identity_is_unauthorized() -> None:
    client = TestClient(create_app())
    assert client.get("/api/jobs").status_code == 401
    assert client.get("/api/jobs", headers={"X-User-Id": "1", "X-User-Role": "janitor"}).status_code == 401


def test_create_and_list_jobs() -> None:
    ids = _seed()
    client = TestClient(create_app())

    created = client.post(
        "/api/jobs",
        json=build_job_payload(status="Active", eligibility={"min_cgpa": 7.5}),
        headers=ADMIN_HEADERS,
    )
    assert created.status_code == 201
    body = created.json()
    assert body["job"]["status"] == "Active"
    assert body["job"]["published_at"] is not None
    assert body["fanout"]["created"] == 3

    listed = client.get("/api/jobs", headers=_student(501))
    assert listed.status_code == 200
    assert listed.json()["pagination"]["total_items"] == 1

    dashboard = client.get("/api/jobs/student", headers=_student(502)).json()
    assert dashboard["jobs"][0]["eligibility"] == {"eligible": False, "reason": "Minimum CGPA required: 7.5"}
    assert dashboard["jobs"][0]["application_status"] == "Pending Response"

    departments = client.get("/api/jobs/utils/departments", headers=_student(501)).json()
    assert {row["id"] for row in departments} == {ids["cse"], ids["ece"]}
    assert "Internship" in client.get("/api/jobs/utils/job-types", headers=ADMIN_HEADERS).json()["job_types"]


def test_create_validation_errors() -> None:
    _seed()
    client = TestClient(create_app())

    past = build_job_payload(deadline=(datetime.now(UTC) - timedelta(days=1)).isoformat())
    resp = client.post("/api/jobs", json=past, headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Deadline must be in the future"

    unknown = build_job_payload(posting_type="Selected Departments", target_departments=[4040])
    resp = client.post("/api/jobs", json=unknown, headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "One or more selected departments are invalid"

    assert client.post("/api/jobs", json=build_job_payload(), headers=STAFF_HEADERS).status_code == 403
    assert client.post("/api/jobs", json={"title": "Only a title"}, headers=ADMIN_HEADERS).status_code == 400


def test_malformed_job_payload_is_a_bad_request() -> None:
    _seed()
    client = TestClient(create_app())

    missing_title = build_job_payload()
    del missing_title["title"]
    resp = client.post("/api/jobs", json=missing_title, headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    assert "title" in resp.json()["detail"]

    resp = client.post("/api/jobs", json=build_job_payload(posting_type="Nope"), headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    assert "posting_type" in resp.json()["detail"]

    resp = client.post("/api/jobs", content="not json", headers={**ADMIN_HEADERS, "Content-Type": "application/json"})
    assert resp.status_code == 400


def test_student_view_response_and_click_flow() -> None:
    _seed()
    client = TestClient(create_app())
    job_id = client.post("/api/jobs", json=build_job_payload(status="Active"), headers=ADMIN_HEADERS).json()["job"]["id"]

    view = client.post(f"/api/jobs/{job_id}/view", json={"duration": 30}, headers=_student(501))
    assert view.status_code == 200
    assert view.json()["eligibility_status"] == "Eligible"
    again = client.post(f"/api/jobs/{job_id}/view", json={"duration": 45}, headers=_student(501))
    assert again.json()["view_id"] == view.json()["view_id"]

    click = client.post(f"/api/jobs/{job_id}/application-click", headers=_student(501))
    assert click.status_code == 200
    assert click.json()["click_count"] == 1

    first = client.post(f"/api/jobs/{job_id}/response", json={"applied": True}, headers=_student(501))
    assert first.status_code == 200
    assert first.json()["status"] == "Applied"

    second = client.post(f"/api/jobs/{job_id}/response", json={"applied": False}, headers=_student(501))
    assert second.status_code == 400
    assert second.json()["detail"] == "Student has already responded"

    bad = client.post(f"/api/jobs/{job_id}/response", json={"applied": "maybe"}, headers=_student(502))
    assert bad.status_code == 400
    assert bad.json()["detail"] == "Applied status must be true or false"

    mine = client.get("/api/jobs/applications/my", headers=_student(501)).json()
    application = mine["applications"][0]
    assert application["job_id"] == job_id

    detail = client.get(f"/api/jobs/applications/{application['id']}", headers=_student(501))
    assert detail.status_code == 200
    actions = [entry["action"] for entry in detail.json()["journey"]]
    assert actions == ["Viewed", "Viewed", "Visited External Link", "Responded"]
    assert detail.json()["views"][0]["duration"] == 45

    assert client.get(f"/api/jobs/applications/{application['id']}", headers=_student(502)).status_code == 403


def test_monitoring_endpoints() -> None:
    ids = _seed()
    client = TestClient(create_app())
    job_id = client.post("/api/jobs", json=build_job_payload(status="Active"), headers=ADMIN_HEADERS).json()["job"]["id"]
    client.post(f"/api/jobs/{job_id}/view", json={"duration": 12}, headers=_student(503))
    client.post(f"/api/jobs/{job_id}/response", json={"applied": True}, headers=_student(503))

    applications = client.get(f"/api/jobs/{job_id}/applications?limit=2", headers=STAFF_HEADERS)
    assert applications.status_code == 200
    body = applications.json()
    assert body["statistics"] == {"total": 3, "applied": 1, "not_applied": 0, "pending": 2}
    assert body["pagination"]["total_pages"] == 2
    assert len(body["applications"]) == 2

    analytics = client.get(f"/api/jobs/{job_id}/analytics", headers=STAFF_HEADERS).json()
    assert analytics["overall_stats"]["total_applications"] == 1

    reconciliation = client.get(f"/api/jobs/{job_id}/reconciliation", headers=ADMIN_HEADERS).json()
    assert reconciliation["consistent"] is True

    with SessionLocal() as session:
        Repository(session).increment_view_count(job_id, ids["ece"])

    for query in ("", "?repair=true"):
        report = client.get(f"/api/jobs/{job_id}/reconciliation{query}", headers=ADMIN_HEADERS).json()
        assert report["consistent"] is False
        assert report["repaired"] is False
        assert report["stored_total_views"] == report["actual_total_views"] + 1

    repaired = client.post(f"/api/jobs/{job_id}/reconciliation", headers=ADMIN_HEADERS)
    assert repaired.status_code == 200
    assert repaired.json()["repaired"] is True
    assert client.get(f"/api/jobs/{job_id}/reconciliation", headers=ADMIN_HEADERS).json()["consistent"] is True

    assert client.get(f"/api/jobs/{job_id}/analytics", headers=_student(501)).status_code == 403
    assert client.get(f"/api/jobs/{job_id}/reconciliation", headers=STAFF_HEADERS).status_code == 403
    assert client.post(f"/api/jobs/{job_id}/reconciliation", headers=STAFF_HEADERS).status_code == 403
    assert client.get("/api/jobs/4242/analytics", headers=ADMIN_HEADERS).status_code == 404


def test_update_close_and_delete() -> None:
    _seed()
    client = TestClient(create_app())
    job_id = client.post("/api/jobs", json=build_job_payload(), headers=ADMIN_HEADERS).json()["job"]["id"]

    published = client.put(f"/api/jobs/{job_id}", json={"status": "Active"}, headers=ADMIN_HEADERS)
    assert published.status_code == 200
    assert published.json()["fanout"]["created"] == 3

    closed = client.put(f"/api/jobs/{job_id}", json={"status": "Closed"}, headers=ADMIN_HEADERS)
    assert closed.json()["job"]["closed_at"] is not None
    reopened = client.put(f"/api/jobs/{job_id}", json={"status": "Active"}, headers=ADMIN_HEADERS)
    assert reopened.status_code == 400

    response = client.post(f"/api/jobs/{job_id}/response", json={"applied": True}, headers=_student(501))
    assert response.status_code == 400
    assert response.json()["detail"] == "Job is no longer active or has expired"

    assert client.delete(f"/api/jobs/{job_id}", headers=ADMIN_HEADERS).status_code == 200
    assert client.get(f"/api/jobs/{job_id}", headers=ADMIN_HEADERS).status_code == 404


def test_health() -> None:
    client = TestClient(create_app())
    assert client.get("/health").json() == {"status": "ok"}
