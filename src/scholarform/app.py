from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

import markupsafe
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates

from scholarform.auth import get_auth_provider
from scholarform.config import BASE_DIR, EMPTY_MARKER, Settings
from scholarform.errors import (
    PersistenceRejected,
    ScholarFormError,
    TransitionIllegal,
    ValidationFailed,
)
from scholarform.routes.admin import router as admin_router
from scholarform.routes.api import router as api_router
from scholarform.routes.applicant import router as applicant_router
from scholarform.routes.public import router as public_router
from scholarform.storage import init_storage
from scholarform.workflow import ACTION_LABELS, REASON_REQUIRED, status_label

logger = logging.getLogger(__name__)


def _tojson_attr(value: Any) -> markupsafe.Markup:
    """Escape a JSON document so it can be embedded in an HTML attribute."""
    return markupsafe.Markup(markupsafe.escape(json.dumps(value, ensure_ascii=False)))


def format_dt(value: Any) -> str:
    if isinstance(value, datetime):
        return value.astimezone().strftime("%d-%m-%Y %H:%M")
    return str(value or EMPTY_MARKER)


def _error_body(exc: ScholarFormError) -> dict[str, Any]:
    body: dict[str, Any] = {"detail": exc.message}
    if isinstance(exc, ValidationFailed) and exc.errors:
        body["errors"] = [error.as_dict() for error in exc.errors]
    return body


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationFailed)
    async def _validation_failed(request: Request, exc: ValidationFailed) -> JSONResponse:
        return JSONResponse(_error_body(exc), status_code=422)

    @app.exception_handler(TransitionIllegal)
    async def _transition_illegal(request: Request, exc: TransitionIllegal) -> JSONResponse:
        return JSONResponse(_error_body(exc), status_code=409)

    @app.exception_handler(PersistenceRejected)
    async def _persistence_rejected(request: Request, exc: PersistenceRejected) -> JSONResponse:
        return JSONResponse(_error_body(exc), status_code=exc.status_code)

    @app.exception_handler(ScholarFormError)
    async def _scholarform_error(request: Request, exc: ScholarFormError) -> JSONResponse:
        logger.warning("Unhandled engine error on %s: %s", request.url.path, exc.message)
        return JSONResponse(_error_body(exc), status_code=400)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()
    storage = init_storage(settings)
    auth = get_auth_provider(settings)

    app = FastAPI(
        title="scholarform",
        openapi_tags=[
            {"name": "admin", "description": "Diseñador y revisión (HTML)"},
            {"name": "applicant", "description": "Formulario de postulación (HTML)"},
            {"name": "public", "description": "Vista previa pública (HTML)"},
            {"name": "api/schemas", "description": "REST API: formularios"},
            {"name": "api/applications", "description": "REST API: postulaciones"},
            {"name": "system", "description": "Sistema"},
        ],
    )

    app.state.storage = storage
    app.state.settings = settings
    app.state.auth_provider = auth

    templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
    app.state.templates = templates

    templates.env.filters["tojson_attr"] = _tojson_attr
    templates.env.globals["format_dt"] = format_dt
    templates.env.globals["status_label"] = status_label
    templates.env.globals["action_labels"] = {action.value: label for action, label in ACTION_LABELS.items()}
    templates.env.globals["reason_required"] = {action.value for action in REASON_REQUIRED}
    templates.env.globals["empty_marker"] = EMPTY_MARKER

    register_error_handlers(app)

    app.include_router(admin_router)
    app.include_router(applicant_router)
    app.include_router(public_router)
    app.include_router(api_router)

    return app
