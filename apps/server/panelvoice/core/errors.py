from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class PanelvoiceError(Exception):
    """Base class for pipeline errors."""


class BackendInitFailure(PanelvoiceError):
    """A recognition or synthesis backend could not be brought up in time."""

    def __init__(self, backend: str, reason: str) -> None:
        super().__init__(f"{backend} backend failed to initialize: {reason}")
        self.backend = backend
        self.reason = reason


class RecognitionError(PanelvoiceError):
    pass


class SynthesisError(PanelvoiceError):
    pass


class InvalidTransition(PanelvoiceError):
    pass


class UnitStatusError(PanelvoiceError):
    pass


class EventKind(str, Enum):
    DETECTION_EMPTY = "detection_empty"
    RECOGNITION_FAILURE = "recognition_failure"
    ATTRIBUTION_AMBIGUOUS = "attribution_ambiguous"
    SYNTHESIS_FAILURE = "synthesis_failure"
    BACKEND_INIT_FAILURE = "backend_init_failure"
    BACKEND_FALLBACK = "backend_fallback"


_WARNING_KINDS = {
    EventKind.RECOGNITION_FAILURE,
    EventKind.SYNTHESIS_FAILURE,
    EventKind.BACKEND_INIT_FAILURE,
    EventKind.BACKEND_FALLBACK,
}


@dataclass(frozen=True)
class PipelineEvent:
    kind: EventKind
    context: dict[str, Any] = field(default_factory=dict)


EventListener = Callable[[PipelineEvent], None]


class EventChannel:
    """Fan-out for pipeline events. Every event is logged, then handed to subscribers."""

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, kind: EventKind, **context: Any) -> PipelineEvent:
        event = PipelineEvent(kind=kind, context=context)
        level = logging.WARNING if kind in _WARNING_KINDS else logging.INFO
        logger.log(level, "⚠️ %s %s" if level == logging.WARNING else "ℹ️ %s %s", kind.value, context)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed for %s", kind.value)
        return event
