from __future__ import annotations

from typing import Any, Mapping

from scholarform.fields import (
    BaseField,
    ChoiceField,
    FileField,
    FormSchema,
    NumberField,
    is_multi_valued,
)


def default_value_for(field: BaseField) -> Any:
    if isinstance(field, FileField):
        return None
    if is_multi_valued(field):
        return []
    return ""


def normalize_number(value: Any, is_int: bool) -> Any:
    if value in (None, ""):
        return None
    try:
        return int(value) if is_int else float(value)
    except (TypeError, ValueError):
        return None


def coerce_value(field: BaseField, raw: Any) -> Any:
    """Bring a raw answer (typed JSON or an HTML form string) into the field's shape.

    Values that cannot be converted are kept verbatim rather than dropped.
    """
    if isinstance(field, FileField):
        return None if raw in (None, "") else raw
    if is_multi_valued(field):
        if raw is None or raw == "":
            return []
        if isinstance(raw, (list, tuple)):
            return [str(item) for item in raw if item not in (None, "")]
        return [str(raw)]
    if raw is None:
        return ""
    if isinstance(raw, (list, dict)):
        return raw
    if isinstance(field, NumberField):
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, (int, float)):
            return int(raw) if field.type == "integer" and float(raw).is_integer() else raw
        text = str(raw).strip()
        if not text:
            return ""
        number = normalize_number(text, field.type == "integer")
        return text if number is None else number
    if isinstance(field, ChoiceField):
        return str(raw)
    return raw if isinstance(raw, str) else str(raw)


def bind(schema: FormSchema, answers: Mapping[str, Any] | None) -> dict[str, Any]:
    values = dict(answers or {})
    for _, field in schema.iter_fields():
        if not field.active:
            continue
        if values.get(field.name) is None:
            values[field.name] = default_value_for(field)
    return values


def flatten(schema: FormSchema, values: Mapping[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    known: set[str] = set()
    for _, field in schema.iter_fields():
        known.add(field.name)
        if field.name not in values:
            continue
        raw = values[field.name]
        result[field.name] = coerce_value(field, raw) if field.active else raw
    # answers to fields that no longer exist stay as collected
    for key, value in values.items():
        if key not in known:
            result[key] = value
    return result


def answers_from_form(
    schema: FormSchema,
    form_data: Any,
    stored: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    values = bind(schema, stored)
    getlist = getattr(form_data, "getlist", None)
    for _, field in schema.iter_fields():
        if not field.active or field.admin_only or field.read_only:
            continue
        if isinstance(field, FileField):
            continue
        if is_multi_valued(field):
            if getlist is not None:
                values[field.name] = list(getlist(field.name))
            else:
                values[field.name] = form_data.get(field.name, [])
            continue
        if field.name in form_data:
            values[field.name] = form_data.get(field.name)
    return flatten(schema, values)
