"""Stateful editing sessions on top of the pure form engine.

``FormEditor`` owns a builder for one call's schema and talks to the
persistence collaborator; ``ApplicationSession`` does the same for one
applicant's answers.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from scholarform.binder import flatten
from scholarform.builder import FormBuilder, Operation, clone_schema
from scholarform.errors import PersistenceRejected, SchemaMalformed, ValidationFailed
from scholarform.fields import FileField, FormSchema
from scholarform.protocols import Storage
from scholarform.render import RenderContext, RenderedForm, render_form
from scholarform.roles import Role
from scholarform.schema import normalize_schema_report, schema_to_payload, validate_answers
from scholarform.workflow import (
    Transition,
    TransitionResult,
    ensure_answers_editable,
    request_transition,
)

logger = logging.getLogger(__name__)


def load_schema(storage: Storage, call_id: str) -> tuple[FormSchema, list[SchemaMalformed]]:
    payload = storage.schemas.get_schema(call_id)
    schema, issues = normalize_schema_report(payload or {})
    for issue in issues:
        logger.warning("Schema for call %s degraded at %s: %s", call_id, issue.location, issue.message)
    return schema, issues


class FormEditor:
    def __init__(self, storage: Storage, call_id: str) -> None:
        self._storage = storage
        self.call_id = call_id
        self.issues: list[SchemaMalformed] = []
        self.builder = FormBuilder()
        self.load()

    @property
    def schema(self) -> FormSchema:
        return self.builder.schema

    @property
    def base_version(self) -> int:
        return self.builder.schema.version

    @property
    def dirty(self) -> bool:
        return bool(self.builder.journal)

    def load(self) -> FormSchema:
        schema, self.issues = load_schema(self._storage, self.call_id)
        self.builder = FormBuilder(schema)
        return self.schema

    def resume(self, schema: FormSchema, journal: list[Operation]) -> FormSchema:
        """Continue a session whose working copy was kept by the client."""
        self.builder = FormBuilder(schema)
        self.builder.journal = list(journal)
        return self.schema

    def save(self) -> FormSchema:
        """Persist the working schema against the version it was loaded from.

        On any failure the in-memory schema and journal are left as they were.
        """
        self.builder.validate()
        payload = schema_to_payload(self.schema)
        try:
            stored = self._storage.schemas.save_schema(self.call_id, payload, self.base_version)
        except PersistenceRejected as exc:
            logger.warning("Save of call %s rejected: %s", self.call_id, exc.message)
            raise
        schema, _ = normalize_schema_report(stored)
        self.builder = FormBuilder(schema)
        logger.info("Call %s saved at version %s", self.call_id, schema.version)
        return self.schema

    def reload_and_reapply(self) -> list[tuple[Operation, ValidationFailed]]:
        """Reload the latest stored schema and replay the pending edits on top of it."""
        pending = list(self.builder.journal)
        self.load()
        failures = self.builder.replay(pending)
        if failures:
            logger.warning(
                "%s of %s pending edits on call %s could not be reapplied",
                len(failures),
                len(pending),
                self.call_id,
            )
        return failures

    def clone_from(self, source_call_id: str) -> FormSchema:
        source, _ = load_schema(self._storage, source_call_id)
        copy = clone_schema(source)
        copy.version = self.base_version
        self.builder = FormBuilder(copy)
        return self.schema


class ApplicationSession:
    def __init__(self, storage: Storage, application_id: str) -> None:
        self._storage = storage
        application = storage.applications.get_application(application_id)
        if application is None:
            raise PersistenceRejected("Postulación no encontrada", status_code=404)
        self.application = application
        self.schema, _ = load_schema(storage, application["call_id"])
        self.answers = storage.applications.get_answers(application_id)

    @property
    def id(self) -> str:
        return self.application["id"]

    @property
    def status(self) -> str:
        return self.application["status"]

    def render(self, role: Role | str) -> RenderedForm:
        return render_form(self.schema, self.answers, RenderContext.for_role(role))

    def writable_names(self) -> set[str]:
        return {
            field.name
            for _, field in self.schema.iter_fields()
            if field.active
            and not field.admin_only
            and not field.read_only
            and not isinstance(field, FileField)
        }

    def save_draft(self, values: Mapping[str, Any]) -> dict[str, Any]:
        ensure_answers_editable(self.status)
        writable = self.writable_names()
        merged = dict(self.answers)
        merged.update({key: value for key, value in values.items() if key in writable})
        self.answers = self._storage.applications.save_answers(self.id, flatten(self.schema, merged))
        return self.answers

    def submit(
        self, values: Mapping[str, Any] | None = None, *, changed_by: str | None = None
    ) -> TransitionResult:
        ensure_answers_editable(self.status)
        if values is not None:
            self.save_draft(values)
        errors = validate_answers(self.schema, self.answers)
        if errors:
            raise ValidationFailed("Faltan datos obligatorios o hay valores inválidos", errors)
        result = request_transition(
            self._storage,
            self.id,
            Transition.SUBMIT,
            role=Role.APPLICANT,
            changed_by=changed_by or self.application.get("applicant_id"),
        )
        self.application = result.application
        return result
