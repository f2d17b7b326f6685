from __future__ import annotations

from typing import Any

import pytest

from scholarform.errors import PersistenceRejected, TransitionIllegal
from scholarform.roles import Role
from scholarform.workflow import (
    TRANSITIONS,
    ApplicationStatus,
    Transition,
    allowed_transitions,
    check_transition,
    ensure_answers_editable,
    request_transition,
)

STAFF_ACTIONS = {Transition.START_REVIEW, Transition.REQUEST_FIX, Transition.APPROVE, Transition.REJECT}


def role_for(action: Transition) -> Role:
    return Role.REVIEWER if action in STAFF_ACTIONS else Role.APPLICANT


class RecordingApplications:
    def __init__(self, status: str) -> None:
        self.status = status
        self.calls: list[dict[str, Any]] = []
        self.history: list[dict[str, Any]] = []

    def get_application(self, application_id: str) -> dict[str, Any]:
        return {"id": application_id, "status": self.status}

    def apply_transition(self, application_id, expected_status, to_status, reason=None, changed_by=None):
        self.calls.append({"expected": expected_status, "to": to_status, "reason": reason})
        if expected_status != self.status:
            raise PersistenceRejected("estado cambiado", status_code=409)
        self.history.append(
            {"application_id": application_id, "from_status": self.status, "to_status": to_status, "reason": reason}
        )
        self.status = to_status
        return {"id": application_id, "status": to_status}


class RecordingHistory:
    def __init__(self, applications: RecordingApplications) -> None:
        self._applications = applications

    def list_history(self, application_id: str) -> list[dict[str, Any]]:
        return list(self._applications.history)


class RecordingStorage:
    def __init__(self, status: str = "DRAFT") -> None:
        self.schemas = None
        self.applications = RecordingApplications(status)
        self.history = RecordingHistory(self.applications)


def test_listed_transitions_succeed():
    for status, actions in TRANSITIONS.items():
        for action, target in actions.items():
            result = check_transition(status, action, reason="motivo", role=role_for(action))
            assert result is target


@pytest.mark.parametrize("status", list(ApplicationStatus))
@pytest.mark.parametrize("action", list(Transition))
def test_unlisted_transitions_fail_without_calling_storage(status, action):
    if action in TRANSITIONS[status]:
        return
    storage = RecordingStorage(status.value)
    with pytest.raises(TransitionIllegal):
        request_transition(storage, "app1", action, role=role_for(action), reason="motivo")
    assert storage.applications.calls == []


def test_review_workflow_with_fix_request():
    storage = RecordingStorage()
    request_transition(storage, "app1", "submit", role=Role.APPLICANT)
    request_transition(storage, "app1", "start-review", role=Role.REVIEWER)
    assert storage.applications.status == "IN_REVIEW"

    with pytest.raises(TransitionIllegal):
        request_transition(storage, "app1", "request-fix", role=Role.REVIEWER)
    assert len(storage.applications.calls) == 2

    before = len(storage.applications.history)
    result = request_transition(storage, "app1", "request-fix", role=Role.REVIEWER, reason="missing ID")
    assert result.application["status"] == "NEEDS_FIX"
    assert len(result.history) == before + 1
    entry = result.history[-1]
    assert entry["from_status"] == "IN_REVIEW"
    assert entry["to_status"] == "NEEDS_FIX"
    assert entry["reason"] == "missing ID"


def test_resubmission_from_needs_fix():
    assert check_transition("NEEDS_FIX", "submit", role=Role.APPLICANT) is ApplicationStatus.SUBMITTED


def test_blank_reason_is_rejected_for_reject():
    with pytest.raises(TransitionIllegal) as exc_info:
        check_transition("IN_REVIEW", "reject", reason="   ", role=Role.ADMIN)
    assert "motivo" in exc_info.value.message


def test_roles_are_enforced():
    with pytest.raises(TransitionIllegal):
        check_transition("SUBMITTED", "start-review", role=Role.APPLICANT)
    with pytest.raises(TransitionIllegal):
        check_transition("DRAFT", "submit", role=Role.REVIEWER)


def test_allowed_transitions_filtered_by_role():
    assert allowed_transitions("IN_REVIEW") == [Transition.REQUEST_FIX, Transition.APPROVE, Transition.REJECT]
    assert allowed_transitions("IN_REVIEW", Role.APPLICANT) == []
    assert allowed_transitions("NEEDS_FIX", Role.APPLICANT) == [Transition.SUBMIT]
    assert allowed_transitions("APPROVED", Role.ADMIN) == []


def test_unknown_status_and_action_are_illegal():
    with pytest.raises(TransitionIllegal):
        check_transition("ARCHIVED", "submit")
    with pytest.raises(TransitionIllegal):
        check_transition("DRAFT", "teleport")


def test_answers_editable_only_in_draft_and_needs_fix():
    ensure_answers_editable("DRAFT")
    ensure_answers_editable("NEEDS_FIX")
    for status in ("SUBMITTED", "IN_REVIEW", "APPROVED", "REJECTED"):
        with pytest.raises(TransitionIllegal):
            ensure_answers_editable(status)


def test_collaborator_rejection_is_propagated():
    storage = RecordingStorage("SUBMITTED")
    storage.applications.get_application = lambda application_id: {"id": application_id, "status": "DRAFT"}
    with pytest.raises(PersistenceRejected):
        request_transition(storage, "app1", "submit", role=Role.APPLICANT)
