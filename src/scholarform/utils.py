from __future__ import annotations

import secrets
import string
from datetime import datetime, timezone
from typing import Any

import orjson
import ulid

from scholarform.config import TMP_ID_PREFIX

_TMP_ALPHABET = string.ascii_lowercase + string.digits


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def parse_dt(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def dumps_json(value: Any) -> str:
    return orjson.dumps(value).decode("utf-8")


def loads_json(value: str | bytes | None) -> Any:
    if not value:
        return None
    return orjson.loads(value)


def new_ulid() -> str:
    value = ulid.new()
    return getattr(value, "str", str(value))


def tmp_id(prefix: str) -> str:
    suffix = "".join(secrets.choice(_TMP_ALPHABET) for _ in range(7))
    return f"{TMP_ID_PREFIX}{prefix}_{suffix}"
