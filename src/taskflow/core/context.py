"""Request correlation identifiers shared by the API and job workers."""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

REQUEST_ID_HEADER = "X-Request-ID"
UNBOUND_REQUEST_ID = "-"

_request_id_ctx_var: ContextVar[str] = ContextVar("request_id", default=UNBOUND_REQUEST_ID)


def get_request_id() -> str:
    """Return the request identifier for the current execution context."""

    return _request_id_ctx_var.get()


def current_request_id() -> str | None:
    """Return the bound request identifier, or ``None`` outside a request."""

    request_id = _request_id_ctx_var.get()
    if request_id == UNBOUND_REQUEST_ID:
        return None
    return request_id


def bind_request_id(request_id: str) -> Token[str]:
    return _request_id_ctx_var.set(request_id)


def reset_request_id(token: Token[str]) -> None:
    _request_id_ctx_var.reset(token)


@contextmanager
def request_context(request_id: str | None) -> Iterator[None]:
    """Bind ``request_id`` for the duration of a block (used by background jobs)."""

    token = _request_id_ctx_var.set(request_id or UNBOUND_REQUEST_ID)
    try:
        yield
    finally:
        _request_id_ctx_var.reset(token)


__all__ = [
    "REQUEST_ID_HEADER",
    "UNBOUND_REQUEST_ID",
    "bind_request_id",
    "current_request_id",
    "get_request_id",
    "request_context",
    "reset_request_id",
]
