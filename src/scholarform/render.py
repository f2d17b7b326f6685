"""Role-dependent interpretation of a form schema and its answers.

``render_form`` is a pure function of the schema, the answer map and the
explicit :class:`RenderContext`; templates only consume its output.
"""

from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from datetime import date
from enum import Enum
from typing import Any, Mapping

from scholarform.binder import bind
from scholarform.config import EMPTY_MARKER
from scholarform.fields import (
    BaseField,
    ChoiceField,
    DateField,
    FileField,
    FormSchema,
    NumberField,
    Section,
    TextField,
    is_multi_valued,
)
from scholarform.roles import Role

ATTACHMENT_HINT = "Archivo adjunto (ver módulo Documentos)"


class RenderMode(str, Enum):
    EDITABLE = "editable"
    REVIEW = "review"
    PREVIEW = "preview"


@dataclass(frozen=True)
class RenderContext:
    role: Role

    @classmethod
    def for_role(cls, role: Role | str) -> "RenderContext":
        return cls(role=Role(role))

    @property
    def mode(self) -> RenderMode:
        if self.role.is_staff:
            return RenderMode.REVIEW
        if self.role is Role.PUBLIC:
            return RenderMode.PREVIEW
        return RenderMode.EDITABLE


@dataclass(frozen=True)
class OptionView:
    value: str
    label: str
    selected: bool


@dataclass(frozen=True)
class FieldView:
    id: str
    name: str
    label: str
    type: str
    input_type: str
    value: Any
    display: str | list[str]
    is_empty: bool
    help_text: str = ""
    placeholder: str = ""
    required: bool = False
    disabled: bool = False
    multiple: bool = False
    admin_only: bool = False
    min: float | None = None
    max: float | None = None
    step: float | None = None
    max_length: int | None = None
    options: list[OptionView] = dataclass_field(default_factory=list)


@dataclass(frozen=True)
class SectionView:
    id: str
    title: str
    description: str
    fields: list[FieldView]
    show_comment_box: bool = False


@dataclass(frozen=True)
class RenderedForm:
    mode: RenderMode
    sections: list[SectionView]

    @property
    def editable(self) -> bool:
        return self.mode is RenderMode.EDITABLE

    def field_names(self) -> list[str]:
        return [view.name for section in self.sections for view in section.fields]


def label_for(field: BaseField, value: Any) -> str:
    if isinstance(field, ChoiceField):
        for option in field.options:
            if option.value == value:
                return option.label or option.value
    return str(value)


def is_empty_answer(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def _format_date(value: Any) -> str:
    text = str(value)
    try:
        return date.fromisoformat(text[:10]).strftime("%d-%m-%Y")
    except ValueError:
        return text


def display_value(field: BaseField, value: Any) -> str | list[str]:
    if is_empty_answer(value):
        return EMPTY_MARKER
    if isinstance(field, FileField):
        return ATTACHMENT_HINT
    if isinstance(value, (list, tuple)):
        return [label_for(field, item) for item in value]
    if isinstance(field, ChoiceField):
        return label_for(field, value)
    if isinstance(field, DateField):
        return _format_date(value)
    if isinstance(value, bool):
        return "Sí" if value else "No"
    return str(value)


def input_type(field: BaseField) -> str:
    if isinstance(field, NumberField):
        return "number"
    if isinstance(field, FileField):
        return "file"
    return field.type


def visible_in(mode: RenderMode, field: BaseField) -> bool:
    if not field.active:
        return False
    if mode is RenderMode.REVIEW:
        return True
    return not field.admin_only


def _field_view(field: BaseField, value: Any, mode: RenderMode) -> FieldView:
    selected: set[str] = set()
    if isinstance(value, (list, tuple)):
        selected = {str(item) for item in value}
    elif value not in (None, ""):
        selected = {str(value)}

    attrs: dict[str, Any] = {}
    if isinstance(field, TextField):
        attrs["max_length"] = field.max_length
    elif isinstance(field, NumberField):
        attrs["min"] = field.min
        attrs["max"] = field.max
        attrs["step"] = 1 if field.type == "integer" else (field.step or 0.01)
    elif isinstance(field, ChoiceField):
        attrs["multiple"] = is_multi_valued(field)
        attrs["options"] = [
            OptionView(option.value, option.label or option.value, option.value in selected)
            for option in field.options
        ]

    return FieldView(
        id=field.id,
        name=field.name,
        label=field.label or field.name,
        type=field.type,
        input_type=input_type(field),
        value=value,
        display=display_value(field, value),
        is_empty=is_empty_answer(value),
        help_text=field.help_text,
        placeholder=field.placeholder,
        required=field.required,
        disabled=mode is not RenderMode.EDITABLE or field.read_only,
        admin_only=field.admin_only,
        **attrs,
    )


def _section_view(section: Section, values: Mapping[str, Any], mode: RenderMode) -> SectionView:
    return SectionView(
        id=section.id,
        title=section.title,
        description=section.description,
        fields=[
            _field_view(field, values.get(field.name), mode)
            for field in section.fields
            if visible_in(mode, field)
        ],
        show_comment_box=section.comment_box and mode is RenderMode.REVIEW,
    )


def render_form(
    schema: FormSchema,
    answers: Mapping[str, Any] | None,
    context: RenderContext,
) -> RenderedForm:
    mode = context.mode
    values = bind(schema, answers)
    return RenderedForm(
        mode=mode,
        sections=[_section_view(section, values, mode) for section in schema.sections],
    )
