from __future__ import annotations

import html
import re

from fastapi.testclient import TestClient


def builder_state(page: str) -> dict[str, str]:
    state = {}
    for name in ("schema_json", "journal_json"):
        match = re.search(rf'name="{name}" value="([^"]*)"', page)
        assert match, name
        state[name] = html.unescape(match.group(1))
    return state


def publish(client: TestClient, payload) -> None:
    assert client.put("/api/calls/2025/schema", json=payload).status_code == 200


def start_application(client: TestClient) -> str:
    response = client.post("/calls/2025/applications", data={"applicant_id": "ana"}, follow_redirects=False)
    assert response.status_code == 303
    return response.headers["location"].rsplit("/", 1)[-1]


def test_home_redirects_to_calls(client):
    response = client.get("/", follow_redirects=False)
    assert response.headers["location"] == "/admin/calls"
    assert client.get("/admin/calls").status_code == 200


def test_builder_edit_and_save(client):
    page = client.get("/admin/calls/2025/builder")
    assert page.status_code == 200
    state = builder_state(page.text)

    added = client.post(
        "/admin/calls/2025/builder", data={"op": "add_section", "title": "Antecedentes", **state}
    )
    assert "Antecedentes" in added.text
    assert "cambios sin guardar" in added.text

    saved = client.post("/admin/calls/2025/builder", data={"op": "save", **builder_state(added.text)})
    assert "Formulario guardado (versión 1)" in saved.text
    assert client.get("/api/calls/2025/schema").json()["sections"][0]["title"] == "Antecedentes"


def test_builder_reports_stale_save_and_reapplies(client, payload):
    page = client.get("/admin/calls/2025/builder")
    added = client.post(
        "/admin/calls/2025/builder",
        data={"op": "add_section", "title": "Mía", **builder_state(page.text)},
    )
    state = builder_state(added.text)

    publish(client, payload)

    stale = client.post("/admin/calls/2025/builder", data={"op": "save", **state})
    assert "Recargar y reaplicar" in stale.text

    reapplied = client.post("/admin/calls/2025/builder", data={"op": "reapply", **state})
    assert "Se recargó la última versión" in reapplied.text

    saved = client.post("/admin/calls/2025/builder", data={"op": "save", **builder_state(reapplied.text)})
    assert "versión 2" in saved.text
    titles = [section["title"] for section in client.get("/api/calls/2025/schema").json()["sections"]]
    assert titles == ["Datos", "Mía"]


def test_builder_unknown_operation_shows_error(client):
    state = builder_state(client.get("/admin/calls/2025/builder").text)
    response = client.post("/admin/calls/2025/builder", data={"op": "teleport", **state})
    assert response.status_code == 200
    assert "Operación desconocida" in response.text


def test_preview(client, payload):
    assert client.get("/calls/2025/preview").status_code == 404
    publish(client, payload)
    page = client.get("/calls/2025/preview")
    assert page.status_code == 200
    assert "Nombre" in page.text
    assert "Nota interna" not in page.text


def test_applicant_saves_and_submits(client, payload):
    publish(client, payload)
    app_id = start_application(client)

    page = client.get(f"/applications/{app_id}")
    assert page.status_code == 200
    assert "Guardar borrador" in page.text

    saved = client.post(f"/applications/{app_id}", data={"action": "save", "nombre": "Ana"})
    assert "Borrador guardado" in saved.text

    missing = client.post(f"/applications/{app_id}", data={"action": "submit", "nombre": ""})
    assert "Nombre: campo obligatorio" in missing.text
    assert client.get(f"/api/applications/{app_id}").json()["status"] == "DRAFT"

    sent = client.post(
        f"/applications/{app_id}",
        data={"action": "submit", "nombre": "Ana", "region": "RM", "edad": "30"},
    )
    assert "Postulación enviada" in sent.text
    assert "Guardar borrador" not in sent.text
    assert client.get(f"/api/applications/{app_id}").json()["status"] == "SUBMITTED"


def test_admin_review_and_transition(client, payload):
    publish(client, payload)
    app_id = start_application(client)
    client.post(
        f"/applications/{app_id}",
        data={"action": "submit", "nombre": "Ana", "region": "RM", "edad": "30"},
    )

    review = client.get(f"/admin/applications/{app_id}")
    assert review.status_code == 200
    assert "Metropolitana" in review.text
    assert client.get(f"/admin/applications/{app_id}?role=applicant").status_code == 400

    moved = client.post(
        f"/admin/applications/{app_id}/transition",
        data={"action": "start-review"},
        follow_redirects=False,
    )
    assert moved.status_code == 303

    refused = client.post(f"/admin/applications/{app_id}/transition", data={"action": "request-fix"})
    assert "Indica el motivo" in refused.text
    assert client.get(f"/api/applications/{app_id}").json()["status"] == "IN_REVIEW"

    scored = client.post(
        f"/admin/applications/{app_id}/review",
        data={"score": "5.5", "notes": "completa"},
        follow_redirects=False,
    )
    assert scored.status_code == 303
    assert client.get(f"/api/applications/{app_id}").json()["score"] == 5.5
