from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Optional

REQUEST_ID_HEADER = "X-Request-ID"

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def generate_request_id() -> str:
    return uuid.uuid4().hex


def set_request_id(request_id: str | None) -> None:
    """Store request id in context (None to clear)."""
    _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


def bind_request_id(incoming: str | None) -> str:
    """Adopt the caller's id when it is usable, otherwise mint one; returns the bound id."""
    request_id = (incoming or "").strip()[:128] or generate_request_id()
    set_request_id(request_id)
    return request_id
