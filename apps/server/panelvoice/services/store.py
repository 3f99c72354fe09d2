from __future__ import annotations

import uuid
from typing import Any

from redis import Redis
from rq import Queue

from panelvoice.core.config import settings
from panelvoice.models.schemas import JobStatus, UserProfile


def _redis_client() -> Redis:
    return Redis.from_url(settings.redis_url, decode_responses=True)


class ProfileStore:
    """Per-user character registry and voice preferences, one JSON blob per user.

    Read at the start of a pass, written once at its end. ``lock`` is the
    single-writer guard around that read-modify-write.
    """

    def __init__(self, redis: Redis | None = None, lock_timeout: int = 60) -> None:
        self.redis = redis or _redis_client()
        self.profile_key = "profiles"
        self.lock_timeout = lock_timeout

    def get(self, user_id: str) -> UserProfile:
        payload = self.redis.hget(self.profile_key, user_id)
        if payload is None:
            return UserProfile()
        return UserProfile.model_validate_json(payload)

    def set(self, user_id: str, profile: UserProfile) -> UserProfile:
        self.redis.hset(self.profile_key, user_id, profile.model_dump_json())
        return profile

    def lock(self, user_id: str) -> Any:
        return self.redis.lock(f"profile-lock:{user_id}", timeout=self.lock_timeout, blocking_timeout=self.lock_timeout)


class JobStore:
    def __init__(self, redis: Redis | None = None) -> None:
        self.redis = redis or _redis_client()
        self.job_key = "jobs"
        self.queue = Queue(settings.job_queue_name, connection=self.redis)

    def create_job(self, user_id: str | None = None) -> JobStatus:
        job = JobStatus(job_id=str(uuid.uuid4()), status="queued", progress=0, user_id=user_id)
        self.redis.hset(self.job_key, job.job_id, job.model_dump_json())
        return job

    def update_job(self, job_id: str, **updates) -> JobStatus:
        payload = self.redis.hget(self.job_key, job_id)
        if payload is None:
            job = JobStatus(job_id=job_id, status="queued", progress=0)
        else:
            job = JobStatus.model_validate_json(payload)

        for key, value in updates.items():
            setattr(job, key, value)

        self.redis.hset(self.job_key, job.job_id, job.model_dump_json())
        return job

    def get_job(self, job_id: str) -> JobStatus | None:
        payload = self.redis.hget(self.job_key, job_id)
        if payload is None:
            return None
        return JobStatus.model_validate_json(payload)


profile_store = ProfileStore()
job_store = JobStore()
