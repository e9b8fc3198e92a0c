"""
dealguard.observability.context

Operation-scoped logging context.

Responsibilities:
- Bind deal / actor metadata into structlog contextvars for the duration of a
  service operation, restoring the previous context afterwards.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


@contextmanager
def operation_context(operation: str, **fields: Any) -> Iterator[None]:
    """
    Usage:
        with operation_context("deal.propose", deal_id=deal_id, actor=principal.subject):
            ...
    """

    bound = {"operation": operation, "operation_id": str(uuid.uuid4())}
    bound.update({k: str(v) for k, v in fields.items() if v is not None})
    tokens = structlog.contextvars.bind_contextvars(**bound)
    try:
        yield
    finally:
        # Nested operations must not wipe the caller's context.
        structlog.contextvars.reset_contextvars(**tokens)
