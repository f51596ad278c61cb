from __future__ import annotations

import contextvars
import re
import uuid

import structlog

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)

# ASCII, 1..64 chars of [A-Za-z0-9._-]; anything else is regenerated.
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$", flags=re.ASCII)


def validate_request_id(value: str | None) -> str | None:
    """Return ``value`` when it is safe to echo back and log, otherwise None."""
    if not isinstance(value, str) or not 1 <= len(value) <= 64:
        return None
    if _REQUEST_ID_RE.fullmatch(value) is None:
        return None
    return value


def new_request_id() -> str:
    return uuid.uuid4().hex


def bind_request_id(rid: str) -> contextvars.Token:
    """Set the current request id and expose it to structlog-rendered log lines."""
    structlog.contextvars.bind_contextvars(request_id=rid)
    return request_id_var.set(rid)


def reset_request_id(token: contextvars.Token) -> None:
    structlog.contextvars.unbind_contextvars("request_id")
    request_id_var.reset(token)
