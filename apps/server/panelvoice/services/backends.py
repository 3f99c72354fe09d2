from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable

from panelvoice.core.config import Settings
from panelvoice.core.errors import BackendInitFailure, EventChannel, EventKind
from panelvoice.services.ocr import TesseractRecognizer, TextRecognizer, build_recognizer
from panelvoice.services.tts import BROWSER_PROVIDER, TTSService, tts_service

logger = logging.getLogger(__name__)

OFFLINE_RECOGNIZER = TesseractRecognizer.name


def initialize_with_timeout(name: str, probe: Callable[[], None], timeout: float) -> None:
    """Run ``probe`` in a worker thread; raise ``BackendInitFailure`` if it fails or overruns."""
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"init-{name}")
    future = executor.submit(probe)
    try:
        future.result(timeout=timeout)
    except FutureTimeout as exc:
        raise BackendInitFailure(name, f"timed out after {timeout:.1f}s") from exc
    except Exception as exc:
        raise BackendInitFailure(name, str(exc)) from exc
    finally:
        # a hung probe keeps its thread; the caller does not wait on it
        executor.shutdown(wait=False)
    logger.info("✅ %s backend ready", name)


def init_recognizer(
    config: Settings,
    events: EventChannel,
    factory: Callable[[str], TextRecognizer] = build_recognizer,
) -> TextRecognizer:
    """Bring up the configured recognizer, falling back to the offline engine."""
    candidates = [config.ocr_provider]
    if config.ocr_provider != OFFLINE_RECOGNIZER:
        candidates.append(OFFLINE_RECOGNIZER)

    reasons: list[str] = []
    for name in candidates:
        try:
            recognizer = factory(name)
            initialize_with_timeout(name, recognizer.probe, config.backend_init_timeout_seconds)
        except (BackendInitFailure, ValueError) as exc:
            reasons.append(str(exc))
            events.emit(EventKind.BACKEND_INIT_FAILURE, backend=name, reason=str(exc))
            continue
        if name != config.ocr_provider:
            events.emit(EventKind.BACKEND_FALLBACK, requested=config.ocr_provider, using=name)
        return recognizer

    raise BackendInitFailure("recognition", "; ".join(reasons))


def init_synthesizer(
    config: Settings,
    events: EventChannel,
    service: TTSService | None = None,
) -> str:
    """Pick the first synthesis provider that comes up in time and return its name.

    Falls back to the local ``browser`` path when degraded synthesis is allowed.
    """
    service = service or tts_service
    chain = [p for p in service.provider_chain() if p != BROWSER_PROVIDER]
    requested = chain[0] if chain else BROWSER_PROVIDER

    reasons: list[str] = []
    for provider in chain:
        try:
            initialize_with_timeout(
                provider,
                lambda provider=provider: service.probe(provider, timeout=config.backend_init_timeout_seconds),
                config.backend_init_timeout_seconds,
            )
        except BackendInitFailure as exc:
            reasons.append(str(exc))
            events.emit(EventKind.BACKEND_INIT_FAILURE, backend=provider, reason=exc.reason)
            continue
        if provider != requested:
            events.emit(EventKind.BACKEND_FALLBACK, requested=requested, using=provider)
        return provider

    if config.allow_degraded_synthesis:
        events.emit(EventKind.BACKEND_FALLBACK, requested=requested, using=BROWSER_PROVIDER)
        return BROWSER_PROVIDER

    raise BackendInitFailure("synthesis", "; ".join(reasons) or "no providers configured")
