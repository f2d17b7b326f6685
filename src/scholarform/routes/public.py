from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse

from scholarform.editor import load_schema
from scholarform.render import RenderContext, render_form
from scholarform.roles import Role

router = APIRouter()


@router.get("/calls/{call_id}/preview", response_class=HTMLResponse, tags=["public"])
async def preview_form(request: Request, call_id: str) -> HTMLResponse:
    storage = request.app.state.storage
    templates = request.app.state.templates
    if storage.schemas.get_schema(call_id) is None:
        raise HTTPException(status_code=404, detail="Convocatoria no encontrada")
    schema, _ = load_schema(storage, call_id)
    return templates.TemplateResponse(
        "form_preview.html",
        {
            "request": request,
            "call_id": call_id,
            "form": render_form(schema, {}, RenderContext(Role.PUBLIC)),
            "errors": [],
        },
    )
