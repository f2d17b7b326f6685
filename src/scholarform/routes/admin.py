from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from scholarform.binder import normalize_number
from scholarform.builder import FIELD_PATCH_KEYS, NEW_SECTION_TITLE, Operation
from scholarform.config import FIELD_TYPES
from scholarform.editor import ApplicationSession, FormEditor
from scholarform.errors import PersistenceRejected, StaleSchema, TransitionIllegal, ValidationFailed
from scholarform.fields import FormSchema, field_class_for
from scholarform.roles import Role, parse_role
from scholarform.schema import normalize_schema, resolve_field_type, schema_to_payload
from scholarform.utils import dumps_json, loads_json
from scholarform.workflow import allowed_transitions, request_transition

logger = logging.getLogger(__name__)

router = APIRouter()

FIELD_TEXT_KEYS = ("name", "label", "helpText", "placeholder")
FIELD_FLAG_KEYS = ("required", "active", "adminOnly", "readOnly")
FIELD_NUMBER_KEYS = ("maxLength", "min", "max", "step")


def admin_guard(request: Request) -> None:
    request.app.state.auth_provider.require_admin(request)


def staff_role(request: Request) -> Role:
    role = parse_role(request.query_params.get("role"), default=Role.REVIEWER)
    if not role.is_staff:
        raise HTTPException(status_code=400, detail="La vista de revisión es solo para el equipo revisor")
    return role


def parse_journal(raw: Any) -> list[Operation]:
    if not raw:
        return []
    try:
        data = loads_json(str(raw))
    except ValueError:
        return []
    if not isinstance(data, list):
        return []
    return [Operation.from_dict(item) for item in data if isinstance(item, dict)]


def field_patch(form_data: Any) -> dict[str, Any]:
    patch: dict[str, Any] = {}
    for key in FIELD_TEXT_KEYS:
        if key in form_data:
            patch[key] = str(form_data.get(key, "")).strip()
    for key in FIELD_FLAG_KEYS:
        patch[key] = key in form_data
    field_type = resolve_field_type(form_data.get("type"))
    if field_type is None:
        return patch
    patch["type"] = field_type
    model_fields = field_class_for(field_type).model_fields
    for key in FIELD_NUMBER_KEYS:
        if key in form_data and FIELD_PATCH_KEYS[key] in model_fields:
            number = normalize_number(form_data.get(key), is_int=key == "maxLength")
            patch[key] = number
    if "multiple" in model_fields:
        patch["multiple"] = "multiple" in form_data
    return patch


def builder_operation(form_data: Any) -> Operation:
    op = str(form_data.get("op", ""))
    section_id = str(form_data.get("section_id", ""))
    field_id = str(form_data.get("field_id", ""))
    option_id = str(form_data.get("option_id", ""))
    index = normalize_number(form_data.get("index"), is_int=True) or 0

    if op == "add_section":
        return Operation(
            op,
            (
                str(form_data.get("title", "")).strip() or NEW_SECTION_TITLE,
                str(form_data.get("description", "")).strip(),
                "comment_box" in form_data,
            ),
        )
    if op == "update_section":
        return Operation(
            op,
            (
                section_id,
                {
                    "title": str(form_data.get("title", "")),
                    "description": str(form_data.get("description", "")),
                    "commentBox": "comment_box" in form_data,
                },
            ),
        )
    if op in {"delete_section"}:
        return Operation(op, (section_id,))
    if op == "move_section":
        return Operation(op, (section_id, index))
    if op == "add_field":
        return Operation(op, (section_id, str(form_data.get("field_type", "text"))))
    if op == "update_field":
        return Operation(op, (section_id, field_id, field_patch(form_data)))
    if op == "delete_field":
        return Operation(op, (section_id, field_id))
    if op == "move_field":
        target = str(form_data.get("target_section_id", "")) or None
        return Operation(op, (section_id, field_id, index, target))
    if op == "add_option":
        return Operation(op, (section_id, field_id))
    if op == "update_option":
        patch = {
            "value": str(form_data.get("value", "")),
            "label": str(form_data.get("label", "")),
        }
        return Operation(op, (section_id, field_id, option_id, patch))
    if op == "delete_option":
        return Operation(op, (section_id, field_id, option_id))
    raise ValidationFailed.at("op", f"Operación desconocida ({op})")


def render_builder(
    request: Request,
    call_id: str,
    editor: FormEditor,
    errors: list[str] | None = None,
    notices: list[str] | None = None,
    stale: bool = False,
) -> HTMLResponse:
    templates = request.app.state.templates
    schema: FormSchema = editor.schema
    return templates.TemplateResponse(
        "admin_builder.html",
        {
            "request": request,
            "call_id": call_id,
            "schema": schema,
            "schema_json": dumps_json(schema_to_payload(schema)),
            "journal_json": dumps_json([operation.as_dict() for operation in editor.builder.journal]),
            "field_types": FIELD_TYPES,
            "other_calls": [
                other
                for other in request.app.state.storage.schemas.list_call_ids()
                if other != call_id
            ],
            "issues": [f"{issue.location}: {issue.message}" for issue in editor.issues],
            "errors": errors or [],
            "notices": notices or [],
            "stale": stale,
        },
    )


@router.get("/", response_class=HTMLResponse, tags=["admin"])
async def home(request: Request) -> HTMLResponse:
    return RedirectResponse("/admin/calls")


@router.get("/admin/calls", response_class=HTMLResponse, tags=["admin"])
async def list_calls(request: Request, _: Any = Depends(admin_guard)) -> HTMLResponse:
    storage = request.app.state.storage
    templates = request.app.state.templates
    calls = [
        {
            "call_id": call_id,
            "applications": len(storage.applications.list_applications(call_id=call_id)),
        }
        for call_id in storage.schemas.list_call_ids()
    ]
    return templates.TemplateResponse(
        "admin_calls.html", {"request": request, "calls": calls, "errors": []}
    )


@router.get("/admin/calls/open", tags=["admin"])
async def open_call(request: Request, _: Any = Depends(admin_guard)) -> RedirectResponse:
    call_id = str(request.query_params.get("call_id", "")).strip()
    if not call_id or "/" in call_id:
        return RedirectResponse("/admin/calls", status_code=303)
    return RedirectResponse(f"/admin/calls/{quote(call_id)}/builder", status_code=303)


@router.get("/admin/calls/{call_id}/builder", response_class=HTMLResponse, tags=["admin"])
async def builder_page(
    request: Request, call_id: str, _: Any = Depends(admin_guard)
) -> HTMLResponse:
    editor = FormEditor(request.app.state.storage, call_id)
    return render_builder(request, call_id, editor)


@router.post("/admin/calls/{call_id}/builder", response_class=HTMLResponse, tags=["admin"])
async def builder_action(
    request: Request, call_id: str, _: Any = Depends(admin_guard)
) -> HTMLResponse:
    form_data = await request.form()
    editor = FormEditor(request.app.state.storage, call_id)
    errors: list[str] = []
    notices: list[str] = []
    stale = False

    raw_schema = str(form_data.get("schema_json", ""))
    try:
        working = normalize_schema(loads_json(raw_schema) or {}) if raw_schema else editor.schema
    except ValueError:
        working = editor.schema
        errors.append("No se pudo leer el formulario enviado; se cargó la versión guardada")
    editor.resume(working, parse_journal(form_data.get("journal_json")))

    op = str(form_data.get("op", ""))
    try:
        if op == "save":
            saved = editor.save()
            notices.append(f"Formulario guardado (versión {saved.version})")
        elif op == "reapply":
            failures = editor.reload_and_reapply()
            notices.append("Se recargó la última versión y se reaplicaron tus cambios")
            for operation, exc in failures:
                errors.append(f"No se pudo reaplicar {operation.name}: {exc.message}")
        elif op == "reload":
            editor.load()
            notices.append("Cambios descartados")
        elif op == "clone":
            source = str(form_data.get("source_call_id", "")).strip()
            if request.app.state.storage.schemas.get_schema(source) is None:
                raise ValidationFailed.at("source_call_id", "Formulario de origen no encontrado")
            editor.clone_from(source)
            notices.append(f"Se copió el formulario de {source}; guarda para confirmar")
        else:
            editor.builder.apply(builder_operation(form_data))
    except ValidationFailed as exc:
        errors.extend(exc.messages())
    except PersistenceRejected as exc:
        errors.append(exc.message)
        stale = isinstance(exc, StaleSchema)

    return render_builder(request, call_id, editor, errors, notices, stale)


@router.get("/admin/applications", response_class=HTMLResponse, tags=["admin"])
async def list_applications(request: Request, _: Any = Depends(admin_guard)) -> HTMLResponse:
    storage = request.app.state.storage
    templates = request.app.state.templates
    call_id = request.query_params.get("callId") or None
    status = request.query_params.get("status") or None
    applications = storage.applications.list_applications(call_id=call_id, status=status)
    return templates.TemplateResponse(
        "admin_applications.html",
        {
            "request": request,
            "applications": applications,
            "call_id": call_id or "",
            "status": status or "",
        },
    )


def render_review(
    request: Request,
    application_id: str,
    role: Role,
    errors: list[str] | None = None,
) -> HTMLResponse:
    storage = request.app.state.storage
    templates = request.app.state.templates
    session = ApplicationSession(storage, application_id)
    return templates.TemplateResponse(
        "admin_review.html",
        {
            "request": request,
            "application": session.application,
            "form": session.render(role),
            "history": storage.history.list_history(application_id),
            "actions": [action.value for action in allowed_transitions(session.status, role)],
            "role": role.value,
            "errors": errors or [],
        },
    )


@router.get("/admin/applications/{application_id}", response_class=HTMLResponse, tags=["admin"])
async def review_application(
    request: Request, application_id: str, _: Any = Depends(admin_guard)
) -> HTMLResponse:
    if request.app.state.storage.applications.get_application(application_id) is None:
        raise HTTPException(status_code=404, detail="Postulación no encontrada")
    return render_review(request, application_id, staff_role(request))


@router.post(
    "/admin/applications/{application_id}/transition",
    response_class=HTMLResponse,
    tags=["admin"],
)
async def transition_application(
    request: Request, application_id: str, _: Any = Depends(admin_guard)
) -> HTMLResponse:
    role = staff_role(request)
    form_data = await request.form()
    try:
        request_transition(
            request.app.state.storage,
            application_id,
            form_data.get("action"),
            role=role,
            reason=str(form_data.get("reason", "")),
            changed_by=str(form_data.get("changed_by", "")).strip() or role.value,
        )
    except (TransitionIllegal, PersistenceRejected) as exc:
        return render_review(request, application_id, role, [exc.message])
    return RedirectResponse(
        f"/admin/applications/{application_id}?role={role.value}", status_code=303
    )


@router.post(
    "/admin/applications/{application_id}/review",
    response_class=HTMLResponse,
    tags=["admin"],
)
async def review_notes(
    request: Request, application_id: str, _: Any = Depends(admin_guard)
) -> HTMLResponse:
    role = staff_role(request)
    storage = request.app.state.storage
    form_data = await request.form()
    raw_score = str(form_data.get("score", "")).strip()
    score = normalize_number(raw_score, is_int=False)
    if raw_score and score is None:
        return render_review(request, application_id, role, ["El puntaje debe ser numérico"])
    notes = str(form_data.get("notes", "")).strip() or None
    storage.applications.update_review(application_id, score, notes)
    return RedirectResponse(
        f"/admin/applications/{application_id}?role={role.value}", status_code=303
    )
