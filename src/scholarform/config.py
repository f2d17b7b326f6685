from __future__ import annotations

import os
import re
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent

FIELD_TYPES = (
    "text",
    "textarea",
    "integer",
    "decimal",
    "date",
    "select",
    "radio",
    "checkbox",
    "file",
    "image",
)
OPTION_TYPES = frozenset({"select", "radio", "checkbox"})
NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
TMP_ID_PREFIX = "tmp_"
EMPTY_MARKER = "—"


class Settings:
    def __init__(self) -> None:
        self.storage_backend = os.getenv("STORAGE_BACKEND", "sqlite").lower()
        self.sqlite_path = Path(os.getenv("SQLITE_PATH", "./data/app.db"))
        self.json_path = Path(os.getenv("JSON_PATH", "./data/jsonstore.json"))
        self.auth_mode = os.getenv("AUTH_MODE", "none").lower()
        self.admin_token = os.getenv("ADMIN_TOKEN", "")
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.host = os.getenv("HOST", "0.0.0.0")
        port_value = os.getenv("PORT", "8000")
        try:
            self.port = int(port_value)
        except ValueError:
            self.port = 8000


def ensure_dirs(settings: Settings) -> None:
    settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    settings.json_path.parent.mkdir(parents=True, exist_ok=True)
