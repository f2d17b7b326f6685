from __future__ import annotations

import hmac
import logging
from typing import Protocol

from fastapi import HTTPException, Request

from scholarform.config import Settings

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Admin-Token"


class AuthProvider(Protocol):
    def require_admin(self, request: Request) -> None: ...


class NoAuthProvider:
    def require_admin(self, request: Request) -> None:
        return None


class TokenAuthProvider:
    def __init__(self, token: str) -> None:
        self._token = token

    def require_admin(self, request: Request) -> None:
        supplied = request.headers.get(TOKEN_HEADER) or request.cookies.get("admin_token") or ""
        if not self._token or not hmac.compare_digest(supplied, self._token):
            logger.warning("Rejected admin request to %s", request.url.path)
            raise HTTPException(status_code=401, detail="Se requiere autenticación de administrador")


def get_auth_provider(settings: Settings) -> AuthProvider:
    if settings.auth_mode == "token":
        return TokenAuthProvider(settings.admin_token)
    return NoAuthProvider()
