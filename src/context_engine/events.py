"""Structured lifecycle events for debugging and tracing.

Every high-level operation (``ingest``, ``retrieve``, ``rerank``,
``delete``) emits a small set of events through an :class:`EventEmitter`.
Events carry an operation id (``op_id``) and a span id so a consumer can
group them into traces.  The emitter is purely observational: an observer
that raises is logged and ignored, it never changes control flow.

Usage::

    seen: list[DebugEvent] = []
    engine = ContextEngine(ContextEngineConfig(..., on_event=seen.append))
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

OpName = Literal["ingest", "retrieve", "rerank", "delete"]


def new_id() -> str:
    """Return a fresh correlation id."""
    return uuid4().hex


class DebugEvent(BaseModel):
    """One lifecycle event.

    Attributes
    ----------
    type:
        Event name, e.g. ``"ingest:embedding-batch"`` or ``"extractor:error"``.
    timestamp:
        Unix time in milliseconds.
    session_id:
        Identifier of the emitter (one per engine instance).
    op_id / span_id / parent_span_id:
        Correlation identifiers for trace grouping.
    op_name:
        High-level operation the event belongs to.
    data:
        Event-specific payload (counts, durations, ids).
    """

    type: str
    timestamp: float = Field(default_factory=lambda: time.time() * 1000)
    session_id: str
    op_id: str | None = None
    span_id: str | None = None
    parent_span_id: str | None = None
    op_name: OpName | None = None
    data: dict[str, Any] = Field(default_factory=dict)


EventObserver = Callable[[DebugEvent], None]


class EventEmitter:
    """Fan out :class:`DebugEvent` objects to an optional observer.

    Parameters
    ----------
    observer:
        Callable receiving every event.  When *None* and *buffer_size* is 0
        the emitter is effectively a no-op.
    buffer_size:
        Number of recent events kept for :meth:`get_buffer` replay.
    """

    def __init__(self, observer: EventObserver | None = None, *, buffer_size: int = 0) -> None:
        self.session_id = new_id()
        self._observer = observer
        self._buffer: deque[DebugEvent] = deque(maxlen=buffer_size or None)
        self._buffering = buffer_size > 0

    @property
    def enabled(self) -> bool:
        return self._observer is not None or self._buffering

    def emit(
        self,
        type: str,  # noqa: A002
        *,
        op_id: str | None = None,
        span_id: str | None = None,
        parent_span_id: str | None = None,
        op_name: OpName | None = None,
        **data: Any,
    ) -> None:
        """Build and dispatch an event.  Never raises."""
        if not self.enabled:
            return

        event = DebugEvent(
            type=type,
            session_id=self.session_id,
            op_id=op_id,
            span_id=span_id,
            parent_span_id=parent_span_id,
            op_name=op_name,
            data=data,
        )
        if self._buffering:
            self._buffer.append(event)

        if self._observer is None:
            return
        try:
            self._observer(event)
        except Exception:
            logger.warning("Event observer failed on %s", type, exc_info=True)

    def get_buffer(self) -> list[DebugEvent]:
        """Return buffered events, oldest first."""
        return list(self._buffer)

    def clear_buffer(self) -> None:
        self._buffer.clear()


class OpScope:
    """Bind the correlation ids of one operation to an emitter.

    Saves passing ``op_id``/``span_id``/``op_name`` at every call site.
    """

    def __init__(self, emitter: EventEmitter, op_name: OpName) -> None:
        self.emitter = emitter
        self.op_name: OpName = op_name
        self.op_id = new_id()
        self.span_id = new_id()

    def emit(self, type: str, **data: Any) -> None:  # noqa: A002
        self.emitter.emit(type, op_id=self.op_id, span_id=self.span_id, op_name=self.op_name, **data)

    def child(self, type: str, **data: Any) -> None:  # noqa: A002
        """Emit an event on a fresh child span of this operation."""
        self.emitter.emit(
            type,
            op_id=self.op_id,
            span_id=new_id(),
            parent_span_id=self.span_id,
            op_name=self.op_name,
            **data,
        )
