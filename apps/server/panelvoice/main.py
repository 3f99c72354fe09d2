from urllib.parse import urlparse

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from panelvoice.api.routes import jobs, speakers, timelines
from panelvoice.core.config import settings
from panelvoice.core.logging import setup_logging
from panelvoice.services.tts import tts_service

setup_logging(settings.log_level)

app = FastAPI(title="Panelvoice API", version="0.1.0")


def _add_origin_variants(raw: str, bucket: set[str]) -> None:
    cleaned = raw.strip().rstrip("/")
    if not cleaned:
        return
    bucket.add(cleaned)
    parsed = urlparse(cleaned)
    if parsed.scheme and parsed.netloc:
        bucket.add(f"{parsed.scheme}://{parsed.netloc}")


allow_origins: set[str] = set()
_add_origin_variants(settings.frontend_url, allow_origins)

default_dev_origins = {
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
}
for origin in default_dev_origins:
    _add_origin_variants(origin, allow_origins)

for origin in (settings.extra_cors_origins or "").split(","):
    _add_origin_variants(origin, allow_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(allow_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["meta"])
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/voices", tags=["meta"])
async def get_voices() -> dict[str, str]:
    """Available voice ids and their display names."""
    return tts_service.VOICE_DISPLAY_NAMES


app.include_router(timelines.router, prefix="/api/timelines", tags=["timelines"])
app.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])
app.include_router(speakers.router, prefix="/api/users", tags=["speakers"])
