from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable

from filelock import FileLock
from tinydb import Query, TinyDB

from scholarform.errors import PersistenceRejected, StaleSchema
from scholarform.schema import assign_permanent_ids
from scholarform.utils import new_ulid, now_utc, parse_dt, to_iso
from scholarform.workflow import DECISION_STATUSES, EDITABLE_STATUSES, ApplicationStatus

logger = logging.getLogger(__name__)

_EDITABLE = {status.value for status in EDITABLE_STATUSES}
_DECIDED = {status.value for status in DECISION_STATUSES}


class JSONRepoBase:
    def __init__(self, path: Path, lock: FileLock) -> None:
        self._path = path
        self._lock = lock

    @contextmanager
    def _db(self) -> Iterable[TinyDB]:
        with self._lock:
            db = TinyDB(self._path)
            try:
                yield db
            finally:
                db.close()


class JSONSchemaRepo(JSONRepoBase):
    def get_schema(self, call_id: str) -> dict[str, Any] | None:
        with self._db() as db:
            item = db.table("form_schemas").get(Query().call_id == call_id)
        if not item:
            return None
        payload = dict(item.get("schema_json") or {})
        payload["version"] = item.get("version", 0)
        return payload

    def save_schema(
        self, call_id: str, payload: dict[str, Any], base_version: int
    ) -> dict[str, Any]:
        with self._db() as db:
            table = db.table("form_schemas")
            item = table.get(Query().call_id == call_id)
            current = item.get("version", 0) if item else 0
            if int(base_version) != current:
                raise StaleSchema(int(base_version), current)
            stored = assign_permanent_ids(payload)
            stored["version"] = current + 1
            record = {
                "call_id": call_id,
                "schema_json": stored,
                "version": stored["version"],
                "updated_at": to_iso(now_utc()),
            }
            table.upsert(record, Query().call_id == call_id)
        logger.info("Saved schema for call %s (version %s)", call_id, stored["version"])
        return stored

    def list_call_ids(self) -> list[str]:
        with self._db() as db:
            items = db.table("form_schemas").all()
        return sorted(item["call_id"] for item in items)


class JSONApplicationRepo(JSONRepoBase):
    def create_application(self, call_id: str, applicant_id: str) -> dict[str, Any]:
        now = to_iso(now_utc())
        record = {
            "id": new_ulid(),
            "call_id": call_id,
            "applicant_id": applicant_id,
            "status": ApplicationStatus.DRAFT.value,
            "answers_json": {},
            "score": None,
            "notes": None,
            "submitted_at": None,
            "decided_at": None,
            "created_at": now,
            "updated_at": now,
        }
        with self._db() as db:
            db.table("applications").insert(record)
        return self._from_record(record)

    def get_application(self, application_id: str) -> dict[str, Any] | None:
        with self._db() as db:
            item = db.table("applications").get(Query().id == application_id)
        return self._from_record(item) if item else None

    def list_applications(
        self, call_id: str | None = None, status: str | None = None
    ) -> list[dict[str, Any]]:
        with self._db() as db:
            items = db.table("applications").all()
        applications = [
            self._from_record(item)
            for item in items
            if (not call_id or item.get("call_id") == call_id)
            and (not status or item.get("status") == status)
        ]
        return sorted(applications, key=lambda x: x["created_at"], reverse=True)

    def get_answers(self, application_id: str) -> dict[str, Any]:
        with self._db() as db:
            item = self._require(db, application_id)
        return dict(item.get("answers_json") or {})

    def save_answers(self, application_id: str, answers: dict[str, Any]) -> dict[str, Any]:
        with self._db() as db:
            table = db.table("applications")
            item = self._require(db, application_id)
            if item.get("status") not in _EDITABLE:
                raise PersistenceRejected(
                    "La postulación ya fue enviada y sus respuestas no se pueden modificar.",
                    status_code=409,
                )
            item["answers_json"] = dict(answers)
            item["updated_at"] = to_iso(now_utc())
            table.update(item, Query().id == application_id)
        return dict(item["answers_json"])

    def update_review(
        self, application_id: str, score: float | None, notes: str | None
    ) -> dict[str, Any]:
        with self._db() as db:
            table = db.table("applications")
            item = self._require(db, application_id)
            item["score"] = score
            item["notes"] = notes
            item["updated_at"] = to_iso(now_utc())
            table.update(item, Query().id == application_id)
        return self._from_record(item)

    def apply_transition(
        self,
        application_id: str,
        expected_status: str,
        to_status: str,
        reason: str | None = None,
        changed_by: str | None = None,
    ) -> dict[str, Any]:
        with self._db() as db:
            table = db.table("applications")
            item = self._require(db, application_id)
            if item.get("status") != expected_status:
                raise PersistenceRejected(
                    "El estado de la postulación cambió mientras se procesaba la acción. "
                    "Recarga la página.",
                    status_code=409,
                )
            now = to_iso(now_utc())
            item["status"] = to_status
            item["updated_at"] = now
            if to_status == ApplicationStatus.SUBMITTED.value:
                item["submitted_at"] = now
            if to_status in _DECIDED:
                item["decided_at"] = now
            table.update(item, Query().id == application_id)
            db.table("application_history").insert(
                {
                    "id": new_ulid(),
                    "application_id": application_id,
                    "from_status": expected_status,
                    "to_status": to_status,
                    "reason": reason,
                    "changed_by": changed_by,
                    "changed_at": now,
                }
            )
        return self._from_record(item)

    @staticmethod
    def _require(db: TinyDB, application_id: str) -> dict[str, Any]:
        item = db.table("applications").get(Query().id == application_id)
        if not item:
            raise PersistenceRejected("Postulación no encontrada", status_code=404)
        return item

    @staticmethod
    def _from_record(record: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": record["id"],
            "call_id": record["call_id"],
            "applicant_id": record["applicant_id"],
            "status": record.get("status", ApplicationStatus.DRAFT.value),
            "score": record.get("score"),
            "notes": record.get("notes"),
            "submitted_at": parse_dt(record.get("submitted_at")),
            "decided_at": parse_dt(record.get("decided_at")),
            "created_at": parse_dt(record.get("created_at")),
            "updated_at": parse_dt(record.get("updated_at")),
        }


class JSONHistoryRepo(JSONRepoBase):
    def list_history(self, application_id: str) -> list[dict[str, Any]]:
        with self._db() as db:
            items = db.table("application_history").search(
                Query().application_id == application_id
            )
        # insertion order is chronological
        return [
            {
                "id": item["id"],
                "application_id": item["application_id"],
                "from_status": item.get("from_status"),
                "to_status": item["to_status"],
                "reason": item.get("reason"),
                "changed_by": item.get("changed_by"),
                "changed_at": parse_dt(item.get("changed_at")),
            }
            for item in items
        ]


class JSONStorage:
    def __init__(self, path: Path) -> None:
        self._lock = FileLock(f"{path}.lock")
        self.schemas = JSONSchemaRepo(path, self._lock)
        self.applications = JSONApplicationRepo(path, self._lock)
        self.history = JSONHistoryRepo(path, self._lock)
