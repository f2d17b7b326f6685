from __future__ import annotations

from typing import Annotated, Any, Iterator, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from scholarform.config import FIELD_TYPES, OPTION_TYPES


class SchemaModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Option(SchemaModel):
    id: str
    value: str = ""
    label: str = ""


class BaseField(SchemaModel):
    id: str
    name: str
    label: str = ""
    help_text: str = ""
    required: bool = False
    active: bool = True
    admin_only: bool = False
    read_only: bool = False
    placeholder: str = ""


class TextField(BaseField):
    type: Literal["text", "textarea"] = "text"
    max_length: int | None = Field(default=None, ge=0)


class NumberField(BaseField):
    type: Literal["integer", "decimal"] = "integer"
    min: float | None = None
    max: float | None = None
    step: float | None = Field(default=None, gt=0)


class DateField(BaseField):
    type: Literal["date"] = "date"


class ChoiceField(BaseField):
    type: Literal["select", "radio", "checkbox"] = "select"
    multiple: bool = False
    options: list[Option] = Field(default_factory=list)


class FileField(BaseField):
    type: Literal["file", "image"] = "file"


FormField = Annotated[
    Union[TextField, NumberField, DateField, ChoiceField, FileField],
    Field(discriminator="type"),
]

FIELD_CLASSES: tuple[type[BaseField], ...] = (
    TextField,
    NumberField,
    DateField,
    ChoiceField,
    FileField,
)


class Section(SchemaModel):
    id: str
    title: str = ""
    description: str = ""
    comment_box: bool = False
    fields: list[FormField] = Field(default_factory=list)


class FormSchema(SchemaModel):
    version: int = 0
    sections: list[Section] = Field(default_factory=list)

    def iter_fields(self) -> Iterator[tuple[Section, BaseField]]:
        for section in self.sections:
            for field in section.fields:
                yield section, field

    def field_names(self) -> list[str]:
        return [field.name for _, field in self.iter_fields()]

    def find_section(self, section_id: str) -> Section | None:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def find_field(self, field_name: str) -> BaseField | None:
        for _, field in self.iter_fields():
            if field.name == field_name:
                return field
        return None


def _build_variant_map() -> dict[str, type[BaseField]]:
    mapping: dict[str, type[BaseField]] = {}
    for cls in FIELD_CLASSES:
        for tag in get_args(cls.model_fields["type"].annotation):
            mapping[tag] = cls
    missing = [t for t in FIELD_TYPES if t not in mapping]
    if missing:
        raise RuntimeError(f"field types without a model: {', '.join(missing)}")
    return mapping


FIELD_VARIANTS = _build_variant_map()


def field_class_for(field_type: str) -> type[BaseField]:
    return FIELD_VARIANTS[field_type]


def is_option_type(field_type: str) -> bool:
    return field_type in OPTION_TYPES


def field_options(field: BaseField) -> list[Option]:
    if isinstance(field, ChoiceField):
        return field.options
    return []


def is_multi_valued(field: BaseField) -> bool:
    if not isinstance(field, ChoiceField):
        return False
    return field.type == "checkbox" or (field.type == "select" and field.multiple)


def make_field(field_type: str, **attrs: Any) -> BaseField:
    cls = field_class_for(field_type)
    return cls(type=field_type, **attrs)
