from __future__ import annotations

from typing import Any, Protocol


class SchemaRepository(Protocol):
    def get_schema(self, call_id: str) -> dict[str, Any] | None: ...

    def save_schema(
        self, call_id: str, payload: dict[str, Any], base_version: int
    ) -> dict[str, Any]: ...

    def list_call_ids(self) -> list[str]: ...


class ApplicationRepository(Protocol):
    def create_application(self, call_id: str, applicant_id: str) -> dict[str, Any]: ...

    def get_application(self, application_id: str) -> dict[str, Any] | None: ...

    def list_applications(
        self, call_id: str | None = None, status: str | None = None
    ) -> list[dict[str, Any]]: ...

    def get_answers(self, application_id: str) -> dict[str, Any]: ...

    def save_answers(self, application_id: str, answers: dict[str, Any]) -> dict[str, Any]: ...

    def update_review(
        self, application_id: str, score: float | None, notes: str | None
    ) -> dict[str, Any]: ...

    def apply_transition(
        self,
        application_id: str,
        expected_status: str,
        to_status: str,
        reason: str | None = None,
        changed_by: str | None = None,
    ) -> dict[str, Any]: ...


class HistoryRepository(Protocol):
    def list_history(self, application_id: str) -> list[dict[str, Any]]: ...


class Storage(Protocol):
    schemas: SchemaRepository
    applications: ApplicationRepository
    history: HistoryRepository
