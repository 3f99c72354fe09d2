from __future__ import annotations

import uuid
from io import BytesIO
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status
from PIL import Image, UnidentifiedImageError

from panelvoice.core.config import settings
from panelvoice.workers.tasks import enqueue_page_job

router = APIRouter()

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".bmp", ".gif"}


def _get_image_size(content: bytes) -> tuple[int | None, int | None]:
    try:
        with Image.open(BytesIO(content)) as img:
            return img.size
    except UnidentifiedImageError:
        return None, None


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def create_timeline(
    file: Annotated[UploadFile, File(...)],
    user_id: Annotated[str, Form(min_length=1)],
) -> dict[str, str | int]:
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty upload")

    width, height = _get_image_size(content)
    if width is None or height is None:
        raise HTTPException(status_code=400, detail="Unsupported image file")

    suffix = Path(file.filename or "").suffix.lower()
    safe_suffix = suffix if suffix in IMAGE_EXTENSIONS else ".png"
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    file_path = upload_dir / f"{uuid.uuid4().hex}{safe_suffix}"
    file_path.write_bytes(content)

    job_id = enqueue_page_job(user_id, file_path)
    return {"job_id": job_id, "status": "queued", "width": width, "height": height}
