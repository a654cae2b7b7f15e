"""Per-request and per-run context utilities."""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
person_id_ctx_var: ContextVar[str | None] = ContextVar("person_id", default=None)


def get_request_id() -> str | None:
    """Return the current request id if available."""
    return request_id_ctx_var.get()


def get_person_id() -> str | None:
    """Return the person the current generation run is for, if any."""
    return person_id_ctx_var.get()


@contextmanager
def bind_person(person_id: object) -> Iterator[None]:
    """Tag every log record emitted inside the block with ``person_id``."""
    token = person_id_ctx_var.set(str(person_id))
    try:
        yield
    finally:
        person_id_ctx_var.reset(token)
