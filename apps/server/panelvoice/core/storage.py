from __future__ import annotations

import base64
import logging

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from panelvoice.core.config import settings

logger = logging.getLogger(__name__)


def _data_url(data: bytes, content_type: str) -> str:
    encoded = base64.b64encode(data).decode()
    return f"data:{content_type};base64,{encoded}"


class AudioStorage:
    """Stores synthesized audio and hands back a URL the client can play.

    Falls back to a data URL when the bucket is unreachable so playback never
    depends on object storage being up.
    """

    def __init__(self) -> None:
        endpoint = settings.s3_endpoint or ""
        self._is_supabase = "supabase.co" in endpoint
        self._bucket = settings.s3_bucket
        self._client = None
        self._session = None
        if self._is_supabase:
            self._session = requests.Session()
        elif endpoint and settings.s3_access_key:
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.s3_endpoint,
                aws_access_key_id=settings.s3_access_key,
                aws_secret_access_key=settings.s3_secret_key,
            )

    def put_bytes(self, key: str, data: bytes, content_type: str) -> str:
        if self._is_supabase:
            return self._supabase_put_bytes(key, data, content_type)
        if self._client is None:
            return _data_url(data, content_type)

        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("❌ Audio upload failed for %s: %s", key, exc)
            return _data_url(data, content_type)
        return f"{settings.s3_endpoint}/{self._bucket}/{key}"

    def _supabase_put_bytes(self, key: str, data: bytes, content_type: str) -> str:
        endpoint = settings.s3_endpoint.rstrip("/")
        url = f"{endpoint}/object/{self._bucket}/{key}"
        headers = {
            "Authorization": f"Bearer {settings.s3_secret_key}",
            "Content-Type": content_type,
            "x-upsert": "true",
        }
        try:
            response = self._session.post(url, headers=headers, data=data, timeout=30)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("❌ Supabase audio upload failed for %s: %s", key, exc)
            return _data_url(data, content_type)

        return f"{endpoint}/object/public/{self._bucket}/{key}"


audio_storage = AudioStorage()
