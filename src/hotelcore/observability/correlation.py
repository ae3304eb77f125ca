"""Correlation IDs tie together the log lines, outbox rows and integration
log entries produced by one request or one background pass."""

import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Inbound IDs are echoed into logs and outbound headers
_ACCEPTED_ID = re.compile(r"[A-Za-z0-9._:-]{1,128}")

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Current ID, or "" outside any scope."""
    return correlation_id_var.get()


def current_correlation_id() -> str | None:
    """Current ID, or None outside any scope."""
    return correlation_id_var.get() or None


def set_correlation_id(cid: str) -> Token[str]:
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    correlation_id_var.reset(token)


def from_header(value: str | None) -> str:
    """Use the caller's ID when it is well formed, otherwise mint one."""
    if value and _ACCEPTED_ID.fullmatch(value):
        return value
    return generate_correlation_id()


@contextmanager
def correlation_scope(cid: str | None = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of a block.

    The sweeper and the publisher open one scope per pass.
    """
    cid = cid or generate_correlation_id()
    token = set_correlation_id(cid)
    try:
        yield cid
    finally:
        reset_correlation_id(token)
