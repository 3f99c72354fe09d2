from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from PIL import UnidentifiedImageError

from panelvoice.core.config import settings
from panelvoice.core.errors import BackendInitFailure, EventChannel
from panelvoice.services.association import text_associator
from panelvoice.services.backends import init_recognizer
from panelvoice.services.detection import decode_image, region_detector
from panelvoice.services.pipeline import DialoguePipeline
from panelvoice.services.speaker import SpeakerAttributor
from panelvoice.services.store import job_store, profile_store
from panelvoice.services.voices import voice_resolver

logger = logging.getLogger(__name__)

events = EventChannel()


@lru_cache(maxsize=1)
def get_pipeline() -> DialoguePipeline:
    """Built on first use so backend probes run in the worker, not at import."""
    return DialoguePipeline(
        detector=region_detector,
        recognizer=init_recognizer(settings, events),
        associator=text_associator,
        attributor=SpeakerAttributor(events),
        resolver=voice_resolver,
        store=profile_store,
        events=events,
        skip_empty=settings.skip_empty_regions,
    )


def enqueue_page_job(user_id: str, image_path: str | Path) -> str:
    job = job_store.create_job(user_id=user_id)
    job_store.queue.enqueue_call(
        func=process_page,
        args=(job.job_id, user_id, str(image_path)),
        job_id=f"page-{job.job_id}",
        result_ttl=0,
        failure_ttl=86400,
        timeout=settings.job_timeout_seconds,
    )
    logger.info("📥 Queued page job %s for %s", job.job_id, user_id)
    return job.job_id


def process_page(job_id: str, user_id: str, image_path: str) -> None:
    job_store.update_job(job_id, status="processing", progress=10)
    try:
        pixels = decode_image(Path(image_path))
        job_store.update_job(job_id, progress=30)
        timeline = get_pipeline().run(pixels, user_id)
    except (BackendInitFailure, UnidentifiedImageError, OSError) as exc:
        logger.error("❌ Page job %s failed: %s", job_id, exc)
        job_store.update_job(job_id, status="failed", error=str(exc))
        raise
    except Exception as exc:
        logger.exception("❌ Page job %s crashed", job_id)
        job_store.update_job(job_id, status="failed", error=str(exc))
        raise

    job_store.update_job(job_id, status="ready", progress=100, timeline=timeline.to_payload())
    logger.info("✅ Page job %s ready: %d unit(s)", job_id, len(timeline))
