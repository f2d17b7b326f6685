from __future__ import annotations

from enum import Enum
from typing import Any

from scholarform.errors import ValidationFailed


class Role(str, Enum):
    APPLICANT = "applicant"
    REVIEWER = "reviewer"
    ADMIN = "admin"
    PUBLIC = "public"

    @property
    def is_staff(self) -> bool:
        return self in (Role.REVIEWER, Role.ADMIN)


def parse_role(value: Any, default: Role = Role.APPLICANT) -> Role:
    if isinstance(value, Role):
        return value
    if value is None or str(value).strip() == "":
        return default
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        raise ValidationFailed.at("role", f"Rol desconocido ({value})") from None
