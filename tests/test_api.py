from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from scholarform.app import create_app


def publish(client: TestClient, payload: dict[str, Any], call_id: str = "2025") -> dict[str, Any]:
    response = client.put(f"/api/calls/{call_id}/schema", json=payload)
    assert response.status_code == 200, response.text
    return response.json()


def new_application(client: TestClient, call_id: str = "2025") -> str:
    response = client.post(f"/api/calls/{call_id}/applications", json={"applicantId": "ana"})
    assert response.status_code == 201
    return response.json()["id"]


def submitted_application(client: TestClient, payload: dict[str, Any]) -> str:
    publish(client, payload)
    app_id = new_application(client)
    response = client.post(
        f"/api/applications/{app_id}/submit",
        json={"answers": {"nombre": "Ana", "region": "RM", "edad": "30"}, "changedBy": "ana"},
    )
    assert response.status_code == 200, response.text
    return app_id


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_schema_put_and_get(client, payload):
    saved = publish(client, payload)
    assert saved["version"] == 1

    body = client.get("/api/calls/2025/schema").json()
    assert body["version"] == 1
    assert [field["name"] for field in body["sections"][0]["fields"]][:2] == ["nombre", "region"]
    assert "issues" not in body
    assert client.get("/api/calls").json() == ["2025"]


def test_unknown_call_returns_empty_schema(client):
    body = client.get("/api/calls/nada/schema").json()
    assert body["sections"] == []
    assert body["version"] == 0


def test_stale_schema_put_is_conflict(client, payload):
    publish(client, payload)
    response = client.put("/api/calls/2025/schema", json=payload)
    assert response.status_code == 409
    assert "Recarga" in response.json()["detail"]


def test_invalid_schema_is_rejected(client):
    payload = {
        "sections": [
            {"title": "", "fields": [{"name": "a"}, {"name": "a"}]},
        ]
    }
    response = client.put("/api/calls/2025/schema", json=payload)
    assert response.status_code == 422
    assert response.json()["errors"]
    assert client.get("/api/calls").json() == []


def test_non_object_body_is_rejected(client):
    response = client.put("/api/calls/2025/schema", json=[1, 2])
    assert response.status_code == 400


def test_clone_schema(client, payload):
    publish(client, payload, "2024")
    response = client.post("/api/schemas/clone", json={"fromCallId": "2024", "toCallId": "2025"})
    assert response.status_code == 200
    assert response.json()["version"] == 1
    assert sorted(client.get("/api/calls").json()) == ["2024", "2025"]

    missing = client.post("/api/schemas/clone", json={"fromCallId": "1999", "toCallId": "2026"})
    assert missing.status_code == 404


def test_answers_round_trip(client, payload):
    publish(client, payload)
    app_id = new_application(client)

    response = client.put(
        f"/api/applications/{app_id}/answers",
        json={"answers": {"nombre": "Ana", "edad": "31", "intereses": "arte"}},
    )
    assert response.status_code == 200
    answers = client.get(f"/api/applications/{app_id}/answers").json()
    assert answers["edad"] == 31
    assert answers["intereses"] == ["arte"]


def test_submit_with_missing_required_is_unprocessable(client, payload):
    publish(client, payload)
    app_id = new_application(client)
    response = client.post(f"/api/applications/{app_id}/submit", json={"answers": {"edad": "40"}})
    assert response.status_code == 422
    assert [error["location"] for error in response.json()["errors"]] == ["nombre"]
    assert client.get(f"/api/applications/{app_id}").json()["status"] == "DRAFT"


def test_review_flow(client, payload):
    app_id = submitted_application(client, payload)

    assert client.get(f"/api/applications/{app_id}/transitions?role=reviewer").json() == ["start-review"]
    assert client.get(f"/api/applications/{app_id}/transitions?role=applicant").json() == []

    started = client.post(f"/api/applications/{app_id}/transitions", json={"action": "start-review"})
    assert started.json()["application"]["status"] == "IN_REVIEW"

    no_reason = client.post(f"/api/applications/{app_id}/transitions", json={"action": "request-fix"})
    assert no_reason.status_code == 409

    fix = client.post(
        f"/api/applications/{app_id}/transitions",
        json={"action": "request-fix", "reason": "falta cédula", "changedBy": "rev"},
    )
    assert fix.status_code == 200
    assert fix.json()["history"][-1]["reason"] == "falta cédula"

    resubmit = client.post(f"/api/applications/{app_id}/submit", json={})
    assert resubmit.json()["application"]["status"] == "SUBMITTED"

    history = client.get(f"/api/applications/{app_id}/history").json()
    assert [entry["toStatus"] for entry in history] == ["SUBMITTED", "IN_REVIEW", "NEEDS_FIX", "SUBMITTED"]


def test_repeated_transition_is_conflict(client, payload):
    app_id = submitted_application(client, payload)
    client.post(f"/api/applications/{app_id}/transitions", json={"action": "start-review"})
    again = client.post(f"/api/applications/{app_id}/transitions", json={"action": "start-review"})
    assert again.status_code == 409
    assert len(client.get(f"/api/applications/{app_id}/history").json()) == 2


def test_locked_answers_cannot_change(client, payload):
    app_id = submitted_application(client, payload)
    response = client.put(f"/api/applications/{app_id}/answers", json={"nombre": "Otra"})
    assert response.status_code == 409
    assert client.get(f"/api/applications/{app_id}/answers").json()["nombre"] == "Ana"


def test_rendered_form_for_admin_shows_labels(client, payload):
    app_id = submitted_application(client, payload)
    body = client.get(f"/api/applications/{app_id}/form?role=admin").json()
    assert body["mode"] == "review"
    assert body["editable"] is False
    fields = {field["name"]: field for field in body["sections"][0]["fields"]}
    assert fields["region"]["display"] == "Metropolitana"
    assert "nota_interna" in fields

    applicant = client.get(f"/api/applications/{app_id}/form").json()
    assert "nota_interna" not in {field["name"] for field in applicant["sections"][0]["fields"]}


def test_unknown_role_is_rejected(client, payload):
    publish(client, payload)
    app_id = new_application(client)
    assert client.get(f"/api/applications/{app_id}/form?role=rector").status_code == 422


def test_review_notes_and_filters(client, payload):
    app_id = submitted_application(client, payload)
    new_application(client)

    response = client.patch(f"/api/applications/{app_id}/review", json={"score": "6.5", "notes": "sólida"})
    assert response.json()["score"] == 6.5
    assert client.patch(f"/api/applications/{app_id}/review", json={"score": "alto"}).status_code == 400

    listed = client.get("/api/applications?status=SUBMITTED").json()
    assert [item["id"] for item in listed] == [app_id]
    assert len(client.get("/api/applications?callId=2025").json()) == 2


def test_missing_application(client):
    assert client.get("/api/applications/nada").status_code == 404
    assert client.get("/api/applications/nada/form").status_code == 404
    assert client.post("/api/applications/nada/transitions", json={"action": "approve"}).status_code == 404


@pytest.fixture
def token_client(settings):
    settings.auth_mode = "token"
    settings.admin_token = "s3cret"
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def test_token_auth_guards_admin_endpoints(token_client, payload):
    assert token_client.put("/api/calls/2025/schema", json=payload).status_code == 401
    response = token_client.put(
        "/api/calls/2025/schema", json=payload, headers={"X-Admin-Token": "s3cret"}
    )
    assert response.status_code == 200
    assert token_client.get("/api/calls/2025/schema").status_code == 200


def test_token_auth_guards_staff_view_of_rendered_form(token_client, payload):
    admin = {"X-Admin-Token": "s3cret"}
    assert token_client.put("/api/calls/2025/schema", json=payload, headers=admin).status_code == 200
    app_id = new_application(token_client)

    assert token_client.get(f"/api/applications/{app_id}/form?role=admin").status_code == 401
    assert token_client.get(f"/api/applications/{app_id}/form?role=reviewer").status_code == 401

    staff = token_client.get(f"/api/applications/{app_id}/form?role=admin", headers=admin)
    assert staff.status_code == 200
    assert "nota_interna" in {field["name"] for field in staff.json()["sections"][0]["fields"]}

    applicant = token_client.get(f"/api/applications/{app_id}/form")
    assert applicant.status_code == 200
    assert "nota_interna" not in {field["name"] for field in applicant.json()["sections"][0]["fields"]}
