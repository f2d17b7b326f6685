from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from scholarform.binder import normalize_number
from scholarform.builder import validate_for_save
from scholarform.editor import ApplicationSession, FormEditor, load_schema
from scholarform.errors import ValidationFailed
from scholarform.roles import Role, parse_role
from scholarform.schema import normalize_schema, schema_to_payload
from scholarform.workflow import (
    allowed_transitions,
    application_payload,
    history_payload,
    request_transition,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def admin_guard(request: Request) -> None:
    request.app.state.auth_provider.require_admin(request)


async def read_json_object(request: Request) -> dict[str, Any]:
    if not await request.body():
        return {}
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="El cuerpo debe ser JSON válido") from None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="El cuerpo debe ser un objeto JSON")
    return payload


def get_application_or_404(request: Request, application_id: str) -> dict[str, Any]:
    application = request.app.state.storage.applications.get_application(application_id)
    if not application:
        raise HTTPException(status_code=404, detail="Postulación no encontrada")
    return application


@router.get("/healthz", tags=["system"])
async def healthz() -> JSONResponse:
    return JSONResponse({"status": "ok"})


# schemas


@router.get("/api/calls", tags=["api/schemas"])
async def api_list_calls(request: Request) -> JSONResponse:
    return JSONResponse(request.app.state.storage.schemas.list_call_ids())


@router.get("/api/calls/{call_id}/schema", tags=["api/schemas"])
async def api_get_schema(request: Request, call_id: str) -> JSONResponse:
    schema, issues = load_schema(request.app.state.storage, call_id)
    body = schema_to_payload(schema)
    if issues:
        body["issues"] = [{"location": issue.location, "message": issue.message} for issue in issues]
    return JSONResponse(body)


@router.put("/api/calls/{call_id}/schema", tags=["api/schemas"])
async def api_save_schema(
    request: Request, call_id: str, _: Any = Depends(admin_guard)
) -> JSONResponse:
    storage = request.app.state.storage
    payload = await read_json_object(request)
    schema = normalize_schema(payload)
    errors = validate_for_save(schema)
    if errors:
        raise ValidationFailed("El formulario tiene errores", errors)
    stored = storage.schemas.save_schema(call_id, schema_to_payload(schema), schema.version)
    return JSONResponse(schema_to_payload(normalize_schema(stored)))


@router.post("/api/schemas/clone", tags=["api/schemas"])
async def api_clone_schema(request: Request, _: Any = Depends(admin_guard)) -> JSONResponse:
    payload = await read_json_object(request)
    source = str(payload.get("fromCallId") or "").strip()
    target = str(payload.get("toCallId") or "").strip()
    if not source or not target:
        raise HTTPException(status_code=400, detail="fromCallId y toCallId son obligatorios")
    if source == target:
        raise HTTPException(status_code=400, detail="El origen y el destino deben ser distintos")
    if request.app.state.storage.schemas.get_schema(source) is None:
        raise HTTPException(status_code=404, detail="Formulario de origen no encontrado")
    editor = FormEditor(request.app.state.storage, target)
    editor.clone_from(source)
    saved = editor.save()
    logger.info("Cloned schema from call %s to %s", source, target)
    return JSONResponse(schema_to_payload(saved))


# applications


@router.post("/api/calls/{call_id}/applications", tags=["api/applications"])
async def api_create_application(request: Request, call_id: str) -> JSONResponse:
    payload = await read_json_object(request)
    applicant_id = str(payload.get("applicantId") or "").strip()
    if not applicant_id:
        raise HTTPException(status_code=400, detail="applicantId es obligatorio")
    application = request.app.state.storage.applications.create_application(call_id, applicant_id)
    return JSONResponse(application_payload(application), status_code=201)


@router.get("/api/applications", tags=["api/applications"])
async def api_list_applications(request: Request, _: Any = Depends(admin_guard)) -> JSONResponse:
    call_id = request.query_params.get("callId") or None
    status = request.query_params.get("status") or None
    applications = request.app.state.storage.applications.list_applications(
        call_id=call_id, status=status
    )
    return JSONResponse([application_payload(item) for item in applications])


@router.get("/api/applications/{application_id}", tags=["api/applications"])
async def api_get_application(request: Request, application_id: str) -> JSONResponse:
    return JSONResponse(application_payload(get_application_or_404(request, application_id)))


@router.get("/api/applications/{application_id}/answers", tags=["api/applications"])
async def api_get_answers(request: Request, application_id: str) -> JSONResponse:
    get_application_or_404(request, application_id)
    return JSONResponse(request.app.state.storage.applications.get_answers(application_id))


@router.put("/api/applications/{application_id}/answers", tags=["api/applications"])
async def api_save_answers(request: Request, application_id: str) -> JSONResponse:
    payload = await read_json_object(request)
    values = payload.get("answers", payload)
    if not isinstance(values, dict):
        raise HTTPException(status_code=400, detail="answers debe ser un objeto")
    session = ApplicationSession(request.app.state.storage, application_id)
    return JSONResponse(session.save_draft(values))


@router.get("/api/applications/{application_id}/form", tags=["api/applications"])
async def api_rendered_form(request: Request, application_id: str) -> JSONResponse:
    role = parse_role(request.query_params.get("role"))
    if role.is_staff:
        admin_guard(request)
    session = ApplicationSession(request.app.state.storage, application_id)
    rendered = session.render(role)
    return JSONResponse(
        {
            "mode": rendered.mode.value,
            "editable": rendered.editable,
            "sections": [asdict(section) for section in rendered.sections],
        }
    )


@router.post("/api/applications/{application_id}/submit", tags=["api/applications"])
async def api_submit(request: Request, application_id: str) -> JSONResponse:
    payload = await read_json_object(request)
    values = payload.get("answers")
    if values is not None and not isinstance(values, dict):
        raise HTTPException(status_code=400, detail="answers debe ser un objeto")
    session = ApplicationSession(request.app.state.storage, application_id)
    result = session.submit(values, changed_by=payload.get("changedBy"))
    return JSONResponse(
        {
            "application": application_payload(result.application),
            "history": [history_payload(entry) for entry in result.history],
        }
    )


@router.get("/api/applications/{application_id}/transitions", tags=["api/applications"])
async def api_allowed_transitions(request: Request, application_id: str) -> JSONResponse:
    application = get_application_or_404(request, application_id)
    role = request.query_params.get("role")
    actions = allowed_transitions(
        application["status"], parse_role(role) if role else None
    )
    return JSONResponse([action.value for action in actions])


@router.post("/api/applications/{application_id}/transitions", tags=["api/applications"])
async def api_transition(
    request: Request, application_id: str, _: Any = Depends(admin_guard)
) -> JSONResponse:
    payload = await read_json_object(request)
    role = parse_role(payload.get("role"), default=Role.REVIEWER)
    result = request_transition(
        request.app.state.storage,
        application_id,
        payload.get("action"),
        role=role,
        reason=payload.get("reason"),
        changed_by=payload.get("changedBy"),
    )
    return JSONResponse(
        {
            "application": application_payload(result.application),
            "history": [history_payload(entry) for entry in result.history],
        }
    )


@router.patch("/api/applications/{application_id}/review", tags=["api/applications"])
async def api_update_review(
    request: Request, application_id: str, _: Any = Depends(admin_guard)
) -> JSONResponse:
    get_application_or_404(request, application_id)
    payload = await read_json_object(request)
    raw_score = payload.get("score")
    score = normalize_number(raw_score, is_int=False)
    if raw_score not in (None, "") and score is None:
        raise HTTPException(status_code=400, detail="score debe ser numérico")
    notes = payload.get("notes")
    application = request.app.state.storage.applications.update_review(
        application_id, score, str(notes) if notes is not None else None
    )
    return JSONResponse(application_payload(application))


@router.get("/api/applications/{application_id}/history", tags=["api/applications"])
async def api_history(request: Request, application_id: str) -> JSONResponse:
    get_application_or_404(request, application_id)
    history = request.app.state.storage.history.list_history(application_id)
    return JSONResponse([history_payload(entry) for entry in history])
