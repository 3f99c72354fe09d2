from fastapi import APIRouter, HTTPException

from panelvoice.models.schemas import JobStatus
from panelvoice.services.store import job_store

router = APIRouter()


@router.get("/{job_id}", response_model=JobStatus)
async def get_job(job_id: str) -> JobStatus:
    job = job_store.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job
