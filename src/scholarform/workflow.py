from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from scholarform.config import EMPTY_MARKER
from scholarform.errors import PersistenceRejected, TransitionIllegal
from scholarform.protocols import Storage
from scholarform.roles import Role
from scholarform.utils import to_iso

logger = logging.getLogger(__name__)


class ApplicationStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    IN_REVIEW = "IN_REVIEW"
    NEEDS_FIX = "NEEDS_FIX"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Transition(str, Enum):
    SUBMIT = "submit"
    START_REVIEW = "start-review"
    REQUEST_FIX = "request-fix"
    APPROVE = "approve"
    REJECT = "reject"


TRANSITIONS: dict[ApplicationStatus, dict[Transition, ApplicationStatus]] = {
    ApplicationStatus.DRAFT: {Transition.SUBMIT: ApplicationStatus.SUBMITTED},
    ApplicationStatus.SUBMITTED: {Transition.START_REVIEW: ApplicationStatus.IN_REVIEW},
    ApplicationStatus.IN_REVIEW: {
        Transition.REQUEST_FIX: ApplicationStatus.NEEDS_FIX,
        Transition.APPROVE: ApplicationStatus.APPROVED,
        Transition.REJECT: ApplicationStatus.REJECTED,
    },
    # applicant resubmission
    ApplicationStatus.NEEDS_FIX: {Transition.SUBMIT: ApplicationStatus.SUBMITTED},
    ApplicationStatus.APPROVED: {},
    ApplicationStatus.REJECTED: {},
}

TERMINAL_STATUSES = frozenset({ApplicationStatus.APPROVED, ApplicationStatus.REJECTED})
EDITABLE_STATUSES = frozenset({ApplicationStatus.DRAFT, ApplicationStatus.NEEDS_FIX})
DECISION_STATUSES = TERMINAL_STATUSES

ACTION_ROLES: dict[Transition, frozenset[Role]] = {
    Transition.SUBMIT: frozenset({Role.APPLICANT}),
    Transition.START_REVIEW: frozenset({Role.REVIEWER, Role.ADMIN}),
    Transition.REQUEST_FIX: frozenset({Role.REVIEWER, Role.ADMIN}),
    Transition.APPROVE: frozenset({Role.REVIEWER, Role.ADMIN}),
    Transition.REJECT: frozenset({Role.REVIEWER, Role.ADMIN}),
}

REASON_REQUIRED = {
    Transition.REQUEST_FIX: "Indica el motivo de las correcciones solicitadas.",
    Transition.REJECT: "Indica el motivo del rechazo.",
}

STATUS_LABELS = {
    ApplicationStatus.DRAFT: "Borrador",
    ApplicationStatus.SUBMITTED: "Enviada",
    ApplicationStatus.IN_REVIEW: "En revisión",
    ApplicationStatus.NEEDS_FIX: "Requiere correcciones",
    ApplicationStatus.APPROVED: "Aprobada",
    ApplicationStatus.REJECTED: "Rechazada",
}

ACTION_LABELS = {
    Transition.SUBMIT: "enviar",
    Transition.START_REVIEW: "tomar en revisión",
    Transition.REQUEST_FIX: "solicitar correcciones",
    Transition.APPROVE: "aprobar",
    Transition.REJECT: "rechazar",
}


@dataclass(frozen=True)
class TransitionResult:
    application: dict[str, Any]
    history: list[dict[str, Any]]


def parse_status(value: Any) -> ApplicationStatus:
    if isinstance(value, ApplicationStatus):
        return value
    try:
        return ApplicationStatus(str(value or "").strip().upper())
    except ValueError:
        raise TransitionIllegal(f"Estado de postulación desconocido ({value})", status=value) from None


def parse_action(value: Any) -> Transition:
    if isinstance(value, Transition):
        return value
    try:
        return Transition(str(value or "").strip().lower())
    except ValueError:
        raise TransitionIllegal(f"Acción desconocida ({value})", action=value) from None


def status_label(value: Any) -> str:
    try:
        return STATUS_LABELS[ApplicationStatus(value)]
    except ValueError:
        return str(value or EMPTY_MARKER)


def _illegal_message(status: ApplicationStatus, action: Transition, role: Role | None) -> str:
    label = STATUS_LABELS[status].lower()
    verb = ACTION_LABELS[action]
    if status in TERMINAL_STATUSES:
        return f"La postulación ya está {label} y no admite más cambios."
    if role is Role.APPLICANT:
        return f"Tu postulación está {label}; por ahora no puedes {verb}."
    return f"No se puede {verb} una postulación en estado {label}."


def _role_message(action: Transition, role: Role) -> str:
    if role is Role.APPLICANT:
        return f"Solo el equipo revisor puede {ACTION_LABELS[action]} una postulación."
    if action is Transition.SUBMIT:
        return "Solo el postulante puede enviar su postulación."
    return "No tienes permisos para cambiar el estado de esta postulación."


def allowed_transitions(status: Any, role: Role | None = None) -> list[Transition]:
    current = parse_status(status)
    actions = list(TRANSITIONS[current])
    if role is None:
        return actions
    return [action for action in actions if role in ACTION_ROLES[action]]


def check_transition(
    status: Any,
    action: Any,
    *,
    reason: str | None = None,
    role: Role | None = None,
) -> ApplicationStatus:
    """Return the target status of ``action`` or raise :class:`TransitionIllegal`."""
    current = parse_status(status)
    requested = parse_action(action)
    if role is not None and role not in ACTION_ROLES[requested]:
        raise TransitionIllegal(_role_message(requested, role), status=current, action=requested)
    target = TRANSITIONS[current].get(requested)
    if target is None:
        raise TransitionIllegal(
            _illegal_message(current, requested, role), status=current, action=requested
        )
    if requested in REASON_REQUIRED and not str(reason or "").strip():
        raise TransitionIllegal(REASON_REQUIRED[requested], status=current, action=requested)
    return target


def ensure_answers_editable(status: Any) -> None:
    current = parse_status(status)
    if current not in EDITABLE_STATUSES:
        raise TransitionIllegal(
            f"La postulación está {STATUS_LABELS[current].lower()} y sus respuestas ya no se pueden modificar.",
            status=current,
        )


def request_transition(
    storage: Storage,
    application_id: str,
    action: Any,
    *,
    role: Role,
    reason: str | None = None,
    changed_by: str | None = None,
) -> TransitionResult:
    application = storage.applications.get_application(application_id)
    if application is None:
        raise PersistenceRejected("Postulación no encontrada", status_code=404)
    current = parse_status(application["status"])
    target = check_transition(current, action, reason=reason, role=role)
    clean_reason = str(reason or "").strip() or None
    try:
        updated = storage.applications.apply_transition(
            application_id,
            expected_status=current.value,
            to_status=target.value,
            reason=clean_reason,
            changed_by=changed_by,
        )
    except PersistenceRejected as exc:
        logger.warning(
            "Transition %s on %s rejected: %s", parse_action(action).value, application_id, exc.message
        )
        raise
    logger.info("Application %s moved %s -> %s", application_id, current.value, target.value)
    return TransitionResult(updated, storage.history.list_history(application_id))


def application_payload(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": record["id"],
        "callId": record["call_id"],
        "applicantId": record["applicant_id"],
        "status": record["status"],
        "score": record.get("score"),
        "notes": record.get("notes"),
        "submittedAt": to_iso(record.get("submitted_at")),
        "decidedAt": to_iso(record.get("decided_at")),
        "updatedAt": to_iso(record.get("updated_at")),
    }


def history_payload(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": record["id"],
        "applicationId": record["application_id"],
        "fromStatus": record.get("from_status"),
        "toStatus": record["to_status"],
        "reason": record.get("reason"),
        "changedBy": record.get("changed_by"),
        "changedAt": to_iso(record.get("changed_at")),
    }
