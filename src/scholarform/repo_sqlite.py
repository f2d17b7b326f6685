from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from scholarform.errors import PersistenceRejected, StaleSchema
from scholarform.models import (
    ApplicationHistoryModel,
    ApplicationModel,
    Base,
    FormSchemaModel,
)
from scholarform.schema import assign_permanent_ids
from scholarform.utils import dumps_json, loads_json, new_ulid, now_utc
from scholarform.workflow import DECISION_STATUSES, EDITABLE_STATUSES, ApplicationStatus

logger = logging.getLogger(__name__)

_EDITABLE = {status.value for status in EDITABLE_STATUSES}
_DECIDED = {status.value for status in DECISION_STATUSES}


class SQLiteSchemaRepo:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._Session = session_factory

    def get_schema(self, call_id: str) -> dict[str, Any] | None:
        with self._Session() as session:
            row = session.get(FormSchemaModel, call_id)
            return self._to_dict(row) if row else None

    def save_schema(
        self, call_id: str, payload: dict[str, Any], base_version: int
    ) -> dict[str, Any]:
        base = int(base_version)
        stored = assign_permanent_ids(payload)
        stored["version"] = base + 1
        values = {
            "schema_json": dumps_json(stored),
            "version": stored["version"],
            "updated_at": now_utc(),
        }
        with self._Session() as session:
            # the version check and the write are one statement, so two saves
            # from the same base cannot both succeed
            if base != 0:
                updated = (
                    session.query(FormSchemaModel)
                    .filter(FormSchemaModel.call_id == call_id, FormSchemaModel.version == base)
                    .update(values, synchronize_session=False)
                )
                if not updated:
                    session.rollback()
                    raise StaleSchema(base, self._current_version(session, call_id))
                session.commit()
            else:
                session.add(FormSchemaModel(call_id=call_id, **values))
                try:
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    raise StaleSchema(base, self._current_version(session, call_id)) from exc
        logger.info("Saved schema for call %s (version %s)", call_id, stored["version"])
        return stored

    @staticmethod
    def _current_version(session: Session, call_id: str) -> int:
        row = session.get(FormSchemaModel, call_id)
        return row.version if row else 0

    def list_call_ids(self) -> list[str]:
        with self._Session() as session:
            rows = session.query(FormSchemaModel.call_id).order_by(FormSchemaModel.call_id).all()
            return [row[0] for row in rows]

    @staticmethod
    def _to_dict(row: FormSchemaModel) -> dict[str, Any]:
        payload = loads_json(row.schema_json) or {}
        payload["version"] = row.version
        return payload


class SQLiteApplicationRepo:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._Session = session_factory

    def create_application(self, call_id: str, applicant_id: str) -> dict[str, Any]:
        now = now_utc()
        with self._Session() as session:
            row = ApplicationModel(
                id=new_ulid(),
                call_id=call_id,
                applicant_id=applicant_id,
                status=ApplicationStatus.DRAFT.value,
                answers_json=dumps_json({}),
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return self._to_dict(row)

    def get_application(self, application_id: str) -> dict[str, Any] | None:
        with self._Session() as session:
            row = session.get(ApplicationModel, application_id)
            return self._to_dict(row) if row else None

    def list_applications(
        self, call_id: str | None = None, status: str | None = None
    ) -> list[dict[str, Any]]:
        with self._Session() as session:
            query = session.query(ApplicationModel)
            if call_id:
                query = query.filter(ApplicationModel.call_id == call_id)
            if status:
                query = query.filter(ApplicationModel.status == status)
            rows = query.order_by(ApplicationModel.created_at.desc()).all()
            return [self._to_dict(row) for row in rows]

    def get_answers(self, application_id: str) -> dict[str, Any]:
        with self._Session() as session:
            row = self._require(session, application_id)
            return loads_json(row.answers_json) or {}

    def save_answers(self, application_id: str, answers: dict[str, Any]) -> dict[str, Any]:
        with self._Session() as session:
            row = self._require(session, application_id)
            if row.status not in _EDITABLE:
                raise PersistenceRejected(
                    "La postulación ya fue enviada y sus respuestas no se pueden modificar.",
                    status_code=409,
                )
            row.answers_json = dumps_json(answers)
            row.updated_at = now_utc()
            session.commit()
            return loads_json(row.answers_json) or {}

    def update_review(
        self, application_id: str, score: float | None, notes: str | None
    ) -> dict[str, Any]:
        with self._Session() as session:
            row = self._require(session, application_id)
            row.score = score
            row.notes = notes
            row.updated_at = now_utc()
            session.commit()
            return self._to_dict(row)

    def apply_transition(
        self,
        application_id: str,
        expected_status: str,
        to_status: str,
        reason: str | None = None,
        changed_by: str | None = None,
    ) -> dict[str, Any]:
        with self._Session() as session:
            # conditional update: only one of two concurrent requests matches
            now = now_utc()
            values: dict[str, Any] = {"status": to_status, "updated_at": now}
            if to_status == ApplicationStatus.SUBMITTED.value:
                values["submitted_at"] = now
            if to_status in _DECIDED:
                values["decided_at"] = now
            updated = (
                session.query(ApplicationModel)
                .filter(
                    ApplicationModel.id == application_id,
                    ApplicationModel.status == expected_status,
                )
                .update(values, synchronize_session=False)
            )
            if not updated:
                session.rollback()
                if session.get(ApplicationModel, application_id) is None:
                    raise PersistenceRejected("Postulación no encontrada", status_code=404)
                raise PersistenceRejected(
                    "El estado de la postulación cambió mientras se procesaba la acción. "
                    "Recarga la página.",
                    status_code=409,
                )
            session.add(
                ApplicationHistoryModel(
                    id=new_ulid(),
                    application_id=application_id,
                    from_status=expected_status,
                    to_status=to_status,
                    reason=reason,
                    changed_by=changed_by,
                    changed_at=now,
                )
            )
            session.commit()
            row = session.get(ApplicationModel, application_id)
            session.refresh(row)
            return self._to_dict(row)

    @staticmethod
    def _require(session: Any, application_id: str) -> ApplicationModel:
        row = session.get(ApplicationModel, application_id)
        if not row:
            raise PersistenceRejected("Postulación no encontrada", status_code=404)
        return row

    @staticmethod
    def _to_dict(row: ApplicationModel) -> dict[str, Any]:
        return {
            "id": row.id,
            "call_id": row.call_id,
            "applicant_id": row.applicant_id,
            "status": row.status,
            "score": row.score,
            "notes": row.notes,
            "submitted_at": row.submitted_at,
            "decided_at": row.decided_at,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }


class SQLiteHistoryRepo:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._Session = session_factory

    def list_history(self, application_id: str) -> list[dict[str, Any]]:
        with self._Session() as session:
            rows = (
                session.query(ApplicationHistoryModel)
                .filter(ApplicationHistoryModel.application_id == application_id)
                .order_by(ApplicationHistoryModel.changed_at, ApplicationHistoryModel.id)
                .all()
            )
            return [
                {
                    "id": row.id,
                    "application_id": row.application_id,
                    "from_status": row.from_status,
                    "to_status": row.to_status,
                    "reason": row.reason,
                    "changed_by": row.changed_by,
                    "changed_at": row.changed_at,
                }
                for row in rows
            ]


class SQLiteStorage:
    def __init__(self, db_path: Path) -> None:
        self._engine = create_engine(f"sqlite:///{db_path}", future=True)
        self._Session = sessionmaker(self._engine, expire_on_commit=False)
        Base.metadata.create_all(self._engine)
        self.schemas = SQLiteSchemaRepo(self._Session)
        self.applications = SQLiteApplicationRepo(self._Session)
        self.history = SQLiteHistoryRepo(self._Session)
