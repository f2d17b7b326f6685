from __future__ import annotations

import math
from typing import Any, Callable, Iterable

from jsonschema import Draft7Validator

from scholarform.config import FIELD_TYPES, TMP_ID_PREFIX
from scholarform.errors import FieldError, SchemaMalformed
from scholarform.fields import (
    BaseField,
    ChoiceField,
    FileField,
    FormSchema,
    NumberField,
    Section,
    TextField,
    field_class_for,
    is_multi_valued,
)
from scholarform.utils import new_ulid, tmp_id

LEGACY_TYPE_TAGS = {
    "input": "text",
    "number": "integer",
}

SUGGESTED_NAMES = {
    "text": "text",
    "textarea": "description",
    "integer": "number",
    "decimal": "decimal",
    "date": "date",
    "select": "select",
    "radio": "radio",
    "checkbox": "checkbox",
    "file": "file",
    "image": "image",
}

SUGGESTED_LABELS = {
    "text": "Texto",
    "textarea": "Descripción",
    "integer": "Número",
    "decimal": "Decimal",
    "date": "Fecha",
    "select": "Selección",
    "radio": "Opción",
    "checkbox": "Opciones",
    "file": "Archivo",
    "image": "Imagen",
}

DEFAULT_SECTION_TITLE = "Sección"


def suggest_name(field_type: str) -> str:
    return SUGGESTED_NAMES.get(field_type, "field")


def suggest_label(field_type: str) -> str:
    return SUGGESTED_LABELS.get(field_type, "Campo")


def unique_name(taken: Iterable[str], base: str) -> str:
    used = set(taken)
    if base not in used:
        return base
    index = 1
    while f"{base}_{index}" in used:
        index += 1
    return f"{base}_{index}"


def is_temporary_id(value: str | None) -> bool:
    return not value or str(value).startswith(TMP_ID_PREFIX)


def resolve_field_type(raw_type: Any) -> str | None:
    tag = str(raw_type or "").strip().lower()
    tag = LEGACY_TYPE_TAGS.get(tag, tag)
    return tag if tag in FIELD_TYPES else None


def _pick(raw: dict[str, Any], camel: str, snake: str | None = None) -> Any:
    if camel in raw:
        return raw[camel]
    if snake and snake in raw:
        return raw[snake]
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _flag(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "on", "yes", "si", "sí"}:
            return True
        if lowered in {"0", "false", "off", "no", ""}:
            return False
        return default
    return bool(value)


class _Normalizer:
    def __init__(self) -> None:
        self.issues: list[SchemaMalformed] = []
        self.taken_names: set[str] = set()

    def issue(self, location: str, message: str) -> None:
        self.issues.append(SchemaMalformed(message, location))

    def number(self, value: Any, location: str) -> float | None:
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            self.issue(location, f"valor numérico inválido ({value!r})")
            return None
        try:
            parsed = float(value) if isinstance(value, (int, float)) else float(str(value).strip())
        except (ValueError, OverflowError):
            self.issue(location, f"valor numérico inválido ({value!r})")
            return None
        if not math.isfinite(parsed):
            self.issue(location, f"valor numérico inválido ({value!r})")
            return None
        return parsed

    def length(self, value: Any, location: str) -> int | None:
        parsed = self.number(value, location)
        if parsed is None:
            return None
        if parsed < 0:
            self.issue(location, "el largo máximo no puede ser negativo")
            return None
        return int(parsed)

    def step(self, value: Any, location: str) -> float | None:
        parsed = self.number(value, location)
        if parsed is not None and parsed <= 0:
            self.issue(location, "el paso debe ser mayor que cero")
            return None
        return parsed

    def schema(self, raw: Any) -> FormSchema:
        if isinstance(raw, FormSchema):
            raw = raw.model_dump(by_alias=True)
        if isinstance(raw, list):
            raw = {"sections": raw}
        if not isinstance(raw, dict):
            self.issue("schema", "el esquema no es un objeto; se usa uno vacío")
            return FormSchema()

        version_raw = raw.get("version")
        version = 0
        if version_raw is not None:
            parsed = self.number(version_raw, "version")
            version = max(int(parsed), 0) if parsed is not None else 0

        raw_sections = raw.get("sections")
        if raw_sections is None:
            raw_sections = []
        if not isinstance(raw_sections, list):
            self.issue("sections", "las secciones no son una lista")
            raw_sections = []

        # Names already present anywhere in the schema are reserved first so
        # generated names never collide with a later explicit one.
        for raw_section in raw_sections:
            if not isinstance(raw_section, dict):
                continue
            raw_fields = raw_section.get("fields")
            if not isinstance(raw_fields, list):
                continue
            for raw_field in raw_fields:
                if isinstance(raw_field, dict):
                    name = _text(raw_field.get("name"))
                    if name:
                        self.taken_names.add(name)

        sections: list[Section] = []
        for index, raw_section in enumerate(raw_sections, start=1):
            location = f"sección {index}"
            if not isinstance(raw_section, dict):
                self.issue(location, "la sección no es un objeto; se omite")
                continue
            sections.append(self.section(raw_section, location))
        return FormSchema(version=version, sections=sections)

    def section(self, raw: dict[str, Any], location: str) -> Section:
        raw_fields = raw.get("fields")
        if raw_fields is None:
            raw_fields = []
        if not isinstance(raw_fields, list):
            self.issue(location, "los campos no son una lista")
            raw_fields = []
        fields: list[BaseField] = []
        for index, raw_field in enumerate(raw_fields, start=1):
            field_location = f"{location}, campo {index}"
            if not isinstance(raw_field, dict):
                self.issue(field_location, "el campo no es un objeto; se omite")
                continue
            fields.append(self.field(raw_field, field_location))
        return Section(
            id=_text(raw.get("id")) or tmp_id("sec"),
            title=_text(raw.get("title")) or DEFAULT_SECTION_TITLE,
            description=_text(raw.get("description")),
            comment_box=_flag(_pick(raw, "commentBox", "comment_box"), False),
            fields=fields,
        )

    def field(self, raw: dict[str, Any], location: str) -> BaseField:
        field_type = resolve_field_type(raw.get("type"))
        if field_type is None:
            if raw.get("type") not in (None, ""):
                self.issue(location, f"tipo no soportado ({raw.get('type')!r}); se usa texto")
            field_type = "text"

        name = _text(raw.get("name"))
        if not name:
            name = unique_name(self.taken_names, suggest_name(field_type))
            self.taken_names.add(name)

        attrs: dict[str, Any] = {
            "id": _text(raw.get("id")) or tmp_id("fld"),
            "name": name,
            "label": _text(raw.get("label")) or suggest_label(field_type),
            "help_text": _text(_pick(raw, "helpText", "help_text")),
            "required": _flag(raw.get("required"), False),
            "active": _flag(raw.get("active"), True),
            "admin_only": _flag(_pick(raw, "adminOnly", "admin_only"), False),
            "read_only": _flag(_pick(raw, "readOnly", "read_only"), False),
            "placeholder": _text(raw.get("placeholder")),
        }
        cls = field_class_for(field_type)
        if cls is TextField:
            attrs["max_length"] = self.length(_pick(raw, "maxLength", "max_length"), location)
        elif cls is NumberField:
            attrs["min"] = self.number(raw.get("min"), location)
            attrs["max"] = self.number(raw.get("max"), location)
            attrs["step"] = self.step(raw.get("step"), location)
        elif cls is ChoiceField:
            attrs["multiple"] = _flag(raw.get("multiple"), False)
            attrs["options"] = self.options(raw.get("options"), location)
        return cls(type=field_type, **attrs)

    def options(self, raw_options: Any, location: str) -> list[dict[str, str]]:
        if raw_options is None:
            raw_options = []
        if not isinstance(raw_options, list):
            self.issue(location, "las opciones no son una lista")
            raw_options = []
        options: list[dict[str, str]] = []
        seen: set[str] = set()
        for raw in raw_options:
            if isinstance(raw, dict):
                value = _text(raw.get("value"))
                label = _text(raw.get("label"))
                option_id = _text(raw.get("id")) or tmp_id("opt")
            elif isinstance(raw, (str, int, float)) and not isinstance(raw, bool):
                value = label = _text(raw)
                option_id = tmp_id("opt")
            else:
                self.issue(location, "opción inválida; se omite")
                continue
            if value and value in seen:
                self.issue(location, f"valor de opción duplicado ({value})")
            seen.add(value)
            options.append({"id": option_id, "value": value, "label": label})
        if not options:
            options.append(empty_option())
        return options


def empty_option() -> dict[str, str]:
    return {"id": tmp_id("opt"), "value": "", "label": ""}


def normalize_schema_report(raw: Any) -> tuple[FormSchema, list[SchemaMalformed]]:
    normalizer = _Normalizer()
    schema = normalizer.schema(raw)
    return schema, normalizer.issues


def normalize_schema(raw: Any) -> FormSchema:
    schema, _ = normalize_schema_report(raw)
    return schema


def schema_to_payload(schema: FormSchema) -> dict[str, Any]:
    return schema.model_dump(by_alias=True, mode="json")


def assign_permanent_ids(
    payload: dict[str, Any], new_id: Callable[[], str] = new_ulid
) -> dict[str, Any]:
    def resolve(value: Any) -> str:
        return new_id() if is_temporary_id(value) else str(value)

    sections = []
    for section in payload.get("sections") or []:
        fields = []
        for field in section.get("fields") or []:
            updated = {**field, "id": resolve(field.get("id"))}
            if "options" in field:
                updated["options"] = [
                    {**option, "id": resolve(option.get("id"))}
                    for option in field.get("options") or []
                ]
            fields.append(updated)
        sections.append({**section, "id": resolve(section.get("id")), "fields": fields})
    return {**payload, "sections": sections}


def applicant_fields(schema: FormSchema) -> list[BaseField]:
    return [
        field
        for _, field in schema.iter_fields()
        if field.active and not field.admin_only
    ]


def build_property(field: BaseField) -> dict[str, Any]:
    prop: dict[str, Any]
    if isinstance(field, TextField):
        prop = {"type": "string"}
        if field.max_length is not None:
            prop["maxLength"] = field.max_length
    elif isinstance(field, NumberField):
        prop = {"type": "integer" if field.type == "integer" else "number"}
        if field.min is not None:
            prop["minimum"] = field.min
        if field.max is not None:
            prop["maximum"] = field.max
    elif isinstance(field, ChoiceField):
        values = [option.value for option in field.options if option.value]
        item: dict[str, Any] = {"type": "string"}
        if values:
            item["enum"] = values
        if is_multi_valued(field):
            prop = {"type": "array", "items": item, "uniqueItems": True}
        else:
            prop = item
    elif isinstance(field, FileField):
        prop = {}
    else:
        prop = {"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}$", "format": "date"}
    prop["title"] = field.label or field.name
    return prop


def json_schema_for(schema: FormSchema) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    required: list[str] = []
    for field in applicant_fields(schema):
        properties[field.name] = build_property(field)
        if field.required:
            required.append(field.name)
    result: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        result["required"] = required
    return result


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def validate_answers(schema: FormSchema, answers: dict[str, Any]) -> list[FieldError]:
    """Submit-time check of an answer map against the applicant-facing fields."""
    fields = {field.name: field for field in applicant_fields(schema)}
    cleaned = {
        key: value
        for key, value in answers.items()
        if key in fields and not _is_empty(value)
    }
    errors: list[FieldError] = []
    for name, field in fields.items():
        # attachments are collected by the documents module
        if isinstance(field, FileField):
            continue
        if field.required and name not in cleaned:
            errors.append(FieldError(name, f"{field.label or name}: campo obligatorio"))

    document = json_schema_for(schema)
    document.pop("required", None)
    validator = Draft7Validator(document, format_checker=Draft7Validator.FORMAT_CHECKER)
    for error in sorted(validator.iter_errors(cleaned), key=lambda err: list(err.path)):
        name = str(error.path[0]) if error.path else ""
        label = fields[name].label if name in fields else name
        errors.append(FieldError(name, f"{label}: {error.message}"))
    return errors
