from __future__ import annotations

import json

from typer.testing import CliRunner

from scholarform.cli import cli
from scholarform.schema import is_temporary_id
from scholarform.storage import init_storage

runner = CliRunner()


def test_normalize_prints_canonical_document(tmp_path):
    path = tmp_path / "schema.json"
    path.write_text(
        json.dumps({"sections": [{"title": "Datos", "fields": [{"name": "nombre", "type": "texto"}]}]}),
        encoding="utf-8",
    )

    result = runner.invoke(cli, ["normalize", str(path)])

    assert result.exit_code == 0
    document = json.loads(result.output.strip().splitlines()[-1])
    field = document["sections"][0]["fields"][0]
    assert field["type"] == "text"
    assert is_temporary_id(field["id"])


def test_normalize_rejects_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{nope", encoding="utf-8")
    result = runner.invoke(cli, ["normalize", str(path)])
    assert result.exit_code == 1


def test_clone_between_calls(settings, payload):
    storage = init_storage(settings)
    storage.schemas.save_schema("2024", payload, 0)

    result = runner.invoke(cli, ["clone", "2024", "2025"])

    assert result.exit_code == 0
    assert "2025: versión 1" in result.output
    assert storage.schemas.get_schema("2025")["version"] == 1


def test_clone_from_missing_call(settings):
    result = runner.invoke(cli, ["clone", "1999", "2025"])
    assert result.exit_code == 1
