from __future__ import annotations

from scholarform.binder import answers_from_form, bind, coerce_value, default_value_for, flatten
from scholarform.fields import make_field
from scholarform.schema import normalize_schema


def test_defaults_per_field_type():
    assert default_value_for(make_field("text", id="a", name="a")) == ""
    assert default_value_for(make_field("integer", id="b", name="b")) == ""
    assert default_value_for(make_field("checkbox", id="c", name="c")) == []
    assert default_value_for(make_field("select", id="d", name="d", multiple=True)) == []
    assert default_value_for(make_field("select", id="e", name="e")) == ""
    assert default_value_for(make_field("image", id="f", name="f")) is None


def test_flatten_of_bound_empty_answers_has_one_default_per_active_field(payload):
    schema = normalize_schema(payload)
    values = flatten(schema, bind(schema, {}))
    active = [field for _, field in schema.iter_fields() if field.active]
    assert set(values) == {field.name for field in active}
    for field in active:
        assert values[field.name] == default_value_for(field)


def test_binding_empty_answers_gives_empty_select(payload):
    schema = normalize_schema(payload)
    assert bind(schema, {})["region"] == ""


def test_bind_keeps_stored_values_and_does_not_mutate_input(payload):
    schema = normalize_schema(payload)
    stored = {"nombre": "Ana", "otro": 1}
    values = bind(schema, stored)
    assert values["nombre"] == "Ana"
    assert values["otro"] == 1
    assert stored == {"nombre": "Ana", "otro": 1}


def test_flatten_preserves_inactive_and_orphan_answers(payload):
    schema = normalize_schema(payload)
    values = flatten(schema, {"antiguo": "valor viejo", "eliminado": [1, 2], "edad": "21"})
    assert values["antiguo"] == "valor viejo"
    assert values["eliminado"] == [1, 2]
    assert values["edad"] == 21


def test_coerce_keeps_unconvertible_numbers_verbatim():
    field = make_field("decimal", id="x", name="x")
    assert coerce_value(field, "3,5") == "3,5"
    assert coerce_value(field, "3.5") == 3.5
    assert coerce_value(field, "") == ""


def test_coerce_multi_valued():
    field = make_field("checkbox", id="x", name="x")
    assert coerce_value(field, "a") == ["a"]
    assert coerce_value(field, ["a", "", None, "b"]) == ["a", "b"]
    assert coerce_value(field, None) == []


class FakeForm(dict):
    def getlist(self, key):
        value = self.get(key)
        if value is None:
            return []
        return value if isinstance(value, list) else [value]


def test_answers_from_form_skips_protected_fields(payload):
    schema = normalize_schema(payload)
    stored = {"nota_interna": "solo staff", "antiguo": "x"}
    form = FakeForm(
        {
            "nombre": "Ana",
            "edad": "30",
            "intereses": ["arte", "ciencia"],
            "nota_interna": "hackeado",
            "antiguo": "y",
        }
    )
    values = answers_from_form(schema, form, stored)
    assert values["nombre"] == "Ana"
    assert values["edad"] == 30
    assert values["intereses"] == ["arte", "ciencia"]
    assert values["nota_interna"] == "solo staff"
    assert values["antiguo"] == "x"


def test_unchecked_checkboxes_clear_the_answer(payload):
    schema = normalize_schema(payload)
    values = answers_from_form(schema, FakeForm({}), {"intereses": ["arte"]})
    assert values["intereses"] == []
