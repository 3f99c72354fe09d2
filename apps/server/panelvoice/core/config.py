from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_env: str = "dev"
    log_level: str = "INFO"
    frontend_url: str = "http://localhost:3000"
    extra_cors_origins: str = ""
    upload_dir: str = "/tmp/panelvoice/uploads"
    redis_url: str = "redis://localhost:6379/0"
    job_queue_name: str = "panelvoice"
    job_timeout_seconds: int = 300

    s3_endpoint: str = "http://localhost:9000"
    s3_bucket: str = "panelvoice"
    s3_access_key: str = ""
    s3_secret_key: str = ""

    elevenlabs_api_key: str | None = None
    openai_api_key: str | None = None
    google_api_key: str | None = None

    # Recognition / synthesis backends
    ocr_provider: str = "google"
    tts_provider_priority: str = "openai,elevenlabs,google"
    backend_init_timeout_seconds: float = 10.0
    allow_degraded_synthesis: bool = True

    # Region detection
    edge_threshold: float = 30.0
    min_region_fraction: float = 0.05
    max_region_fraction: float = 0.5
    min_aspect_ratio: float = 0.3
    max_aspect_ratio: float = 3.0
    min_component_pixels: int = 20
    region_confidence: float = 0.9

    # Dialogue
    skip_empty_regions: bool = True
    default_voice_id: str = "voice_narrator_f"
    default_voice_provider: str = "openai"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
