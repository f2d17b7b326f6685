from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from scholarform.binder import answers_from_form
from scholarform.editor import ApplicationSession
from scholarform.errors import PersistenceRejected, TransitionIllegal, ValidationFailed
from scholarform.roles import Role
from scholarform.workflow import EDITABLE_STATUSES, parse_status

logger = logging.getLogger(__name__)

router = APIRouter()


def render_application(
    request: Request,
    session: ApplicationSession,
    errors: list[str] | None = None,
    notices: list[str] | None = None,
) -> HTMLResponse:
    templates = request.app.state.templates
    locked = parse_status(session.status) not in EDITABLE_STATUSES
    return templates.TemplateResponse(
        "applicant_form.html",
        {
            "request": request,
            "application": session.application,
            "form": session.render(Role.APPLICANT),
            "history": request.app.state.storage.history.list_history(session.id),
            "locked": locked,
            "errors": errors or [],
            "notices": notices or [],
        },
    )


@router.post("/calls/{call_id}/applications", tags=["applicant"])
async def start_application(request: Request, call_id: str) -> RedirectResponse:
    storage = request.app.state.storage
    if storage.schemas.get_schema(call_id) is None:
        raise HTTPException(status_code=404, detail="Convocatoria no encontrada")
    form_data = await request.form()
    applicant_id = str(form_data.get("applicant_id", "")).strip()
    if not applicant_id:
        return RedirectResponse(f"/calls/{call_id}/preview", status_code=303)
    application = storage.applications.create_application(call_id, applicant_id)
    logger.info("Applicant %s started application %s", applicant_id, application["id"])
    return RedirectResponse(f"/applications/{application['id']}", status_code=303)


@router.get("/applications/{application_id}", response_class=HTMLResponse, tags=["applicant"])
async def application_page(request: Request, application_id: str) -> HTMLResponse:
    try:
        session = ApplicationSession(request.app.state.storage, application_id)
    except PersistenceRejected as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    notices = ["Postulación enviada"] if request.query_params.get("sent") else None
    return render_application(request, session, notices=notices)


@router.post("/applications/{application_id}", response_class=HTMLResponse, tags=["applicant"])
async def application_action(request: Request, application_id: str) -> HTMLResponse:
    try:
        session = ApplicationSession(request.app.state.storage, application_id)
    except PersistenceRejected as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    form_data = await request.form()
    action = str(form_data.get("action", "save"))
    values = answers_from_form(session.schema, form_data, session.answers)
    try:
        if action == "submit":
            session.submit(values)
        else:
            session.save_draft(values)
    except ValidationFailed as exc:
        # keep what the applicant typed on the re-rendered page
        session.answers = values
        return render_application(request, session, exc.messages())
    except (TransitionIllegal, PersistenceRejected) as exc:
        return render_application(request, session, [exc.message])
    if action == "submit":
        return RedirectResponse(f"/applications/{application_id}?sent=1", status_code=303)
    return render_application(request, session, notices=["Borrador guardado"])
