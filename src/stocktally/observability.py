"""Ingest-scoped observability helpers for stocktally."""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar, Token
from typing import Dict, Optional

logger = logging.getLogger(__name__)

_ingest_id_ctx: ContextVar[Optional[str]] = ContextVar("ingest_id", default=None)


def new_ingest_id() -> str:
    """Generate a new ingest identifier for correlating logs."""

    return str(uuid.uuid4())


def bind_ingest_id(value: Optional[str]) -> Optional[Token]:
    """Bind an ingest_id for the current context and return the reset token."""

    if value is None:
        return None
    return _ingest_id_ctx.set(value)


def reset_ingest_id(token: Optional[Token]) -> None:
    """Reset the ingest_id context using the provided token."""

    if token is None:
        return
    _ingest_id_ctx.reset(token)


def current_ingest_id() -> Optional[str]:
    """Return the active ingest_id if set."""

    return _ingest_id_ctx.get()


def log_event(message: str, **extra: object) -> None:
    """Log an event with the active ingest_id automatically attached."""

    payload = {"ingest_id": current_ingest_id(), **extra}
    logger.info(message, extra={"payload": payload})


class Stopwatch:
    """Named elapsed-time checkpoints, in milliseconds since creation."""

    def __init__(self) -> None:
        self._started = time.perf_counter()
        self.checkpoints: Dict[str, float] = {}

    def checkpoint(self, name: str) -> float:
        elapsed = round((time.perf_counter() - self._started) * 1000.0, 3)
        self.checkpoints[name] = elapsed
        return elapsed

    def as_dict(self) -> Dict[str, float]:
        return dict(self.checkpoints)
