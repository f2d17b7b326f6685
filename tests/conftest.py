from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from scholarform.app import create_app
from scholarform.config import Settings
from scholarform.repo_json import JSONStorage
from scholarform.repo_sqlite import SQLiteStorage


def scholarship_payload() -> dict[str, Any]:
    return {
        "version": 0,
        "sections": [
            {
                "id": "sec_datos",
                "title": "Datos",
                "description": "Datos personales",
                "commentBox": True,
                "fields": [
                    {"id": "fld_nombre", "name": "nombre", "type": "text", "label": "Nombre", "required": True},
                    {
                        "id": "fld_region",
                        "name": "region",
                        "type": "select",
                        "label": "Región",
                        "options": [{"id": "opt_rm", "value": "RM", "label": "Metropolitana"}],
                    },
                    {"id": "fld_edad", "name": "edad", "type": "integer", "label": "Edad", "min": 18, "max": 99},
                    {
                        "id": "fld_intereses",
                        "name": "intereses",
                        "type": "checkbox",
                        "label": "Intereses",
                        "options": [
                            {"id": "opt_arte", "value": "arte", "label": "Arte"},
                            {"id": "opt_ciencia", "value": "ciencia", "label": "Ciencia"},
                        ],
                    },
                    {"id": "fld_nota", "name": "nota_interna", "type": "textarea", "label": "Nota interna", "adminOnly": True},
                    {"id": "fld_antiguo", "name": "antiguo", "type": "text", "label": "Antiguo", "active": False},
                ],
            }
        ],
    }


@pytest.fixture
def payload() -> dict[str, Any]:
    return scholarship_payload()


@pytest.fixture(params=["sqlite", "json"])
def storage(request: pytest.FixtureRequest, tmp_path: Any) -> Any:
    if request.param == "json":
        return JSONStorage(tmp_path / "store.json")
    return SQLiteStorage(tmp_path / "app.db")


@pytest.fixture
def settings(tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.setenv("STORAGE_BACKEND", "sqlite")
    monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "data" / "app.db"))
    monkeypatch.setenv("JSON_PATH", str(tmp_path / "data" / "store.json"))
    monkeypatch.setenv("AUTH_MODE", "none")
    return Settings()


@pytest.fixture
def client(settings: Settings) -> TestClient:
    with TestClient(create_app(settings)) as test_client:
        yield test_client
