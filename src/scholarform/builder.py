from __future__ import annotations

import logging
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Callable

from pydantic import ValidationError

from scholarform.config import NAME_PATTERN
from scholarform.errors import FieldError, ValidationFailed
from scholarform.fields import (
    FIELD_CLASSES,
    BaseField,
    ChoiceField,
    FormSchema,
    NumberField,
    Option,
    Section,
    field_class_for,
    field_options,
    is_option_type,
)
from scholarform.schema import (
    empty_option,
    resolve_field_type,
    suggest_label,
    suggest_name,
    unique_name,
)
from scholarform.utils import tmp_id

logger = logging.getLogger(__name__)

NEW_SECTION_TITLE = "Nueva sección"
NEW_OPTION_LABEL = "Nueva opción"

SECTION_PATCH_KEYS = {
    "title": "title",
    "description": "description",
    "commentBox": "comment_box",
    "comment_box": "comment_box",
}
OPTION_PATCH_KEYS = {"value", "label"}


def _field_key_map() -> dict[str, str]:
    mapping: dict[str, str] = {}
    for cls in FIELD_CLASSES:
        for name, info in cls.model_fields.items():
            mapping[name] = name
            if info.alias:
                mapping[info.alias] = name
    mapping.pop("id", None)
    return mapping


FIELD_PATCH_KEYS = _field_key_map()


@dataclass(frozen=True)
class Operation:
    name: str
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = dataclass_field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "args": list(self.args), "kwargs": dict(self.kwargs)}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Operation":
        return cls(str(raw.get("name") or ""), tuple(raw.get("args") or ()), dict(raw.get("kwargs") or {}))


OPERATIONS = frozenset(
    {
        "add_section",
        "update_section",
        "delete_section",
        "move_section",
        "add_field",
        "update_field",
        "delete_field",
        "move_field",
        "add_option",
        "update_option",
        "delete_option",
    }
)


def _pydantic_errors(exc: ValidationError, prefix: str) -> ValidationFailed:
    errors = [
        FieldError(
            ".".join([prefix, *(str(part) for part in err["loc"])]),
            err["msg"],
        )
        for err in exc.errors()
    ]
    return ValidationFailed("Datos de campo inválidos", errors)


def check_name(name: str, taken: set[str]) -> str:
    candidate = str(name or "").strip()
    if not candidate:
        raise ValidationFailed.at("name", "La clave interna es obligatoria")
    if not NAME_PATTERN.match(candidate):
        raise ValidationFailed.at(
            "name",
            "La clave interna debe comenzar con una letra y contener solo letras, números o _",
        )
    if candidate in taken:
        raise ValidationFailed.at("name", f"La clave interna ya existe en el formulario ({candidate})")
    return candidate


def _check_option_values(options: list[Option], location: str) -> None:
    seen: set[str] = set()
    for option in options:
        if not option.value:
            continue
        if option.value in seen:
            raise ValidationFailed.at(location, f"Valor de opción duplicado ({option.value})")
        seen.add(option.value)


def _check_range(field: BaseField, location: str) -> None:
    if isinstance(field, NumberField) and field.min is not None and field.max is not None:
        if field.min > field.max:
            raise ValidationFailed.at(location, "El mínimo no puede ser mayor que el máximo")


def new_option(existing: list[Option], option_id: str | None = None) -> Option:
    values = {option.value for option in existing}
    index = len(existing) + 1
    while f"opt_{index}" in values:
        index += 1
    return Option(id=option_id or tmp_id("opt"), value=f"opt_{index}", label=NEW_OPTION_LABEL)


def validate_for_save(schema: FormSchema) -> list[FieldError]:
    errors: list[FieldError] = []
    seen: set[str] = set()
    for index, section in enumerate(schema.sections, start=1):
        section_label = section.title or f"sección {index}"
        if not section.title.strip():
            errors.append(FieldError(f"sección {index}", "El título es obligatorio"))
        for field in section.fields:
            location = f"{section_label} / {field.name or field.id}"
            if not NAME_PATTERN.match(field.name or ""):
                errors.append(FieldError(location, "Clave interna inválida"))
            if field.name in seen:
                errors.append(FieldError(location, f"Clave interna duplicada ({field.name})"))
            seen.add(field.name)
            if isinstance(field, NumberField) and field.min is not None and field.max is not None:
                if field.min > field.max:
                    errors.append(FieldError(location, "El mínimo no puede ser mayor que el máximo"))
            if isinstance(field, ChoiceField):
                if not field.options:
                    errors.append(FieldError(location, "Debe tener al menos una opción"))
                values: set[str] = set()
                for option in field.options:
                    if not option.value:
                        errors.append(FieldError(location, "Hay opciones sin valor"))
                    elif option.value in values:
                        errors.append(FieldError(location, f"Valor de opción duplicado ({option.value})"))
                    values.add(option.value)
    return errors


def clone_schema(schema: FormSchema) -> FormSchema:
    """Return an independent copy of ``schema`` for another call.

    Every section, field and option gets a fresh temporary id so the copy
    never shares identity with the source once persisted.
    """
    cloned = schema.model_copy(deep=True)
    cloned.version = 0
    for section in cloned.sections:
        section.id = tmp_id("sec")
        for field in section.fields:
            field.id = tmp_id("fld")
            for option in field_options(field):
                option.id = tmp_id("opt")
    return cloned


class FormBuilder:
    def __init__(self, schema: FormSchema | None = None) -> None:
        self._schema = schema.model_copy(deep=True) if schema is not None else FormSchema()
        self.journal: list[Operation] = []

    @property
    def schema(self) -> FormSchema:
        return self._schema

    def snapshot(self) -> FormSchema:
        return self._schema.model_copy(deep=True)

    def validate(self) -> None:
        errors = validate_for_save(self._schema)
        if errors:
            raise ValidationFailed("El formulario tiene errores", errors)

    def _apply(self, operation: Operation, mutate: Callable[[FormSchema], Any]) -> Any:
        draft = self._schema.model_copy(deep=True)
        result = mutate(draft)
        self._schema = draft
        self.journal.append(operation)
        return result

    def apply(self, operation: Operation) -> Any:
        if operation.name not in OPERATIONS:
            raise ValidationFailed.at("operation", f"Operación desconocida ({operation.name})")
        try:
            return getattr(self, operation.name)(*operation.args, **operation.kwargs)
        except TypeError as exc:
            raise ValidationFailed.at(
                "operation", f"Argumentos inválidos para {operation.name}"
            ) from exc

    def replay(self, operations: list[Operation]) -> list[tuple[Operation, ValidationFailed]]:
        failures: list[tuple[Operation, ValidationFailed]] = []
        for operation in operations:
            try:
                self.apply(operation)
            except ValidationFailed as exc:
                logger.warning("Replay of %s failed: %s", operation.name, exc.message)
                failures.append((operation, exc))
        return failures

    @staticmethod
    def _section(draft: FormSchema, section_id: str) -> Section:
        section = draft.find_section(section_id)
        if section is None:
            raise ValidationFailed.at("section", f"Sección no encontrada ({section_id})")
        return section

    @staticmethod
    def _field_index(section: Section, field_id: str) -> int:
        for index, field in enumerate(section.fields):
            if field.id == field_id:
                return index
        raise ValidationFailed.at("field", f"Campo no encontrado ({field_id})")

    def _choice_field(self, draft: FormSchema, section_id: str, field_id: str) -> ChoiceField:
        section = self._section(draft, section_id)
        field = section.fields[self._field_index(section, field_id)]
        if not isinstance(field, ChoiceField):
            raise ValidationFailed.at("options", "Este tipo de campo no admite opciones")
        return field

    # sections

    def add_section(
        self,
        title: str = NEW_SECTION_TITLE,
        description: str = "",
        comment_box: bool = False,
        *,
        section_id: str | None = None,
    ) -> Section:
        if not str(title or "").strip():
            raise ValidationFailed.at("title", "El título es obligatorio")
        section = Section(
            id=section_id or tmp_id("sec"),
            title=str(title).strip(),
            description=str(description or "").strip(),
            comment_box=bool(comment_box),
        )

        def mutate(draft: FormSchema) -> Section:
            draft.sections.append(section)
            return section

        return self._apply(
            Operation(
                "add_section",
                (section.title, section.description, section.comment_box),
                {"section_id": section.id},
            ),
            mutate,
        )

    def update_section(self, section_id: str, patch: dict[str, Any]) -> Section:
        unknown = [key for key in patch if key not in SECTION_PATCH_KEYS]
        if unknown:
            raise ValidationFailed.at(unknown[0], f"Propiedad de sección desconocida ({unknown[0]})")

        def mutate(draft: FormSchema) -> Section:
            section = self._section(draft, section_id)
            for key, value in patch.items():
                attr = SECTION_PATCH_KEYS[key]
                if attr == "comment_box":
                    section.comment_box = bool(value)
                    continue
                text = str(value or "").strip()
                if attr == "title" and not text:
                    raise ValidationFailed.at("title", "El título es obligatorio")
                setattr(section, attr, text)
            return section

        return self._apply(Operation("update_section", (section_id, dict(patch))), mutate)

    def delete_section(self, section_id: str) -> None:
        def mutate(draft: FormSchema) -> None:
            section = self._section(draft, section_id)
            draft.sections.remove(section)

        self._apply(Operation("delete_section", (section_id,)), mutate)

    def move_section(self, section_id: str, index: int) -> None:
        def mutate(draft: FormSchema) -> None:
            section = self._section(draft, section_id)
            draft.sections.remove(section)
            position = max(0, min(int(index), len(draft.sections)))
            draft.sections.insert(position, section)

        self._apply(Operation("move_section", (section_id, index)), mutate)

    # fields

    def add_field(
        self,
        section_id: str,
        field_type: str,
        *,
        field_id: str | None = None,
        name: str | None = None,
        option_id: str | None = None,
    ) -> BaseField:
        resolved = resolve_field_type(field_type)
        if resolved is None:
            raise ValidationFailed.at("type", f"Tipo de campo no soportado ({field_type})")
        new_id = field_id or tmp_id("fld")
        seed_id = option_id or tmp_id("opt")

        def mutate(draft: FormSchema) -> BaseField:
            section = self._section(draft, section_id)
            taken = set(draft.field_names())
            if name is None:
                field_name = unique_name(taken, suggest_name(resolved))
            else:
                field_name = check_name(name, taken)
            attrs: dict[str, Any] = {
                "id": new_id,
                "name": field_name,
                "label": suggest_label(resolved),
            }
            if is_option_type(resolved):
                attrs["options"] = [new_option([], seed_id)]
            field = field_class_for(resolved)(type=resolved, **attrs)
            section.fields.append(field)
            return field

        field = self._apply(
            Operation(
                "add_field",
                (section_id, resolved),
                {"field_id": new_id, "name": name, "option_id": seed_id},
            ),
            mutate,
        )
        logger.debug("Added %s field %s to section %s", resolved, field.name, section_id)
        return field

    def update_field(
        self,
        section_id: str,
        field_id: str,
        patch: dict[str, Any],
        *,
        seed_option_id: str | None = None,
    ) -> BaseField:
        unknown = [key for key in patch if key not in FIELD_PATCH_KEYS]
        if unknown:
            raise ValidationFailed.at(unknown[0], f"Propiedad de campo desconocida ({unknown[0]})")
        requested = {FIELD_PATCH_KEYS[key]: value for key, value in patch.items()}
        seed_id = seed_option_id or tmp_id("opt")

        def mutate(draft: FormSchema) -> BaseField:
            changes = dict(requested)
            section = self._section(draft, section_id)
            index = self._field_index(section, field_id)
            current = section.fields[index]
            attrs = current.model_dump()

            target_type = current.type
            if "type" in changes:
                resolved = resolve_field_type(changes.pop("type"))
                if resolved is None:
                    raise ValidationFailed.at("type", "Tipo de campo no soportado")
                target_type = resolved
            cls = field_class_for(target_type)

            if "name" in changes:
                taken = {name for name in draft.field_names()}
                taken.discard(current.name)
                changes["name"] = check_name(changes["name"], taken)

            not_applicable = [key for key in changes if key not in cls.model_fields]
            if not_applicable:
                raise ValidationFailed.at(
                    not_applicable[0],
                    f"La propiedad {not_applicable[0]} no aplica al tipo {target_type}",
                )

            carried = {key: value for key, value in attrs.items() if key in cls.model_fields}
            carried.update(changes)
            carried["type"] = target_type
            if is_option_type(target_type) and not carried.get("options"):
                carried["options"] = [{**empty_option(), "id": seed_id}]
            try:
                updated = cls.model_validate(carried)
            except ValidationError as exc:
                raise _pydantic_errors(exc, current.name) from exc
            _check_range(updated, current.name)
            _check_option_values(field_options(updated), current.name)
            section.fields[index] = updated
            return updated

        return self._apply(
            Operation(
                "update_field",
                (section_id, field_id, dict(patch)),
                {"seed_option_id": seed_id},
            ),
            mutate,
        )

    def delete_field(self, section_id: str, field_id: str) -> None:
        def mutate(draft: FormSchema) -> None:
            section = self._section(draft, section_id)
            del section.fields[self._field_index(section, field_id)]

        self._apply(Operation("delete_field", (section_id, field_id)), mutate)

    def move_field(
        self,
        section_id: str,
        field_id: str,
        index: int,
        target_section_id: str | None = None,
    ) -> None:
        def mutate(draft: FormSchema) -> None:
            source = self._section(draft, section_id)
            field = source.fields.pop(self._field_index(source, field_id))
            target = self._section(draft, target_section_id) if target_section_id else source
            position = max(0, min(int(index), len(target.fields)))
            target.fields.insert(position, field)

        self._apply(
            Operation("move_field", (section_id, field_id, index, target_section_id)),
            mutate,
        )

    # options

    def add_option(
        self,
        section_id: str,
        field_id: str,
        *,
        option_id: str | None = None,
    ) -> Option:
        new_id = option_id or tmp_id("opt")

        def mutate(draft: FormSchema) -> Option:
            field = self._choice_field(draft, section_id, field_id)
            option = new_option(field.options, new_id)
            field.options.append(option)
            return option

        return self._apply(
            Operation("add_option", (section_id, field_id), {"option_id": new_id}),
            mutate,
        )

    def update_option(
        self,
        section_id: str,
        field_id: str,
        option_id: str,
        patch: dict[str, Any],
    ) -> Option:
        unknown = [key for key in patch if key not in OPTION_PATCH_KEYS]
        if unknown:
            raise ValidationFailed.at(unknown[0], f"Propiedad de opción desconocida ({unknown[0]})")

        def mutate(draft: FormSchema) -> Option:
            field = self._choice_field(draft, section_id, field_id)
            for option in field.options:
                if option.id == option_id:
                    break
            else:
                raise ValidationFailed.at("option", f"Opción no encontrada ({option_id})")
            for key, value in patch.items():
                setattr(option, key, str(value or "").strip())
            _check_option_values(field.options, field.name)
            return option

        return self._apply(
            Operation("update_option", (section_id, field_id, option_id, dict(patch))),
            mutate,
        )

    def delete_option(self, section_id: str, field_id: str, option_id: str) -> None:
        def mutate(draft: FormSchema) -> None:
            field = self._choice_field(draft, section_id, field_id)
            remaining = [option for option in field.options if option.id != option_id]
            if len(remaining) == len(field.options):
                raise ValidationFailed.at("option", f"Opción no encontrada ({option_id})")
            field.options = remaining

        self._apply(Operation("delete_option", (section_id, field_id, option_id)), mutate)
