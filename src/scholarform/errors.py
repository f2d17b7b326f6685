"""Error taxonomy shared by the form engine and its persistence collaborator.

Every error here is local and recoverable: callers catch it, show the message
and keep working with the state they had before the failing operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class ScholarFormError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SchemaMalformed(ScholarFormError):
    """A persisted schema had to be degraded while normalizing.

    Collected as an issue by the normalizer; never raised out of it.
    """

    def __init__(self, message: str, location: str = "") -> None:
        super().__init__(message)
        self.location = location


@dataclass(frozen=True)
class FieldError:
    location: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"location": self.location, "message": self.message}


class ValidationFailed(ScholarFormError):
    def __init__(self, message: str, errors: list[FieldError] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])

    @classmethod
    def at(cls, location: str, message: str) -> "ValidationFailed":
        return cls(message, [FieldError(location, message)])

    def messages(self) -> list[str]:
        if not self.errors:
            return [self.message]
        return [f"{error.location}: {error.message}" for error in self.errors]


class TransitionIllegal(ScholarFormError):
    def __init__(self, message: str, status: Any = None, action: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.action = action


class PersistenceRejected(ScholarFormError):
    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


class StaleSchema(PersistenceRejected):
    def __init__(self, expected_version: int, actual_version: int) -> None:
        super().__init__(
            "El formulario fue modificado por otra persona "
            f"(versión {actual_version}, se editaba la {expected_version}). "
            "Recarga y vuelve a aplicar tus cambios.",
            status_code=409,
        )
        self.expected_version = expected_version
        self.actual_version = actual_version
