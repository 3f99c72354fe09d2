"""Tests for audio storage fallbacks."""

import base64
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError

from panelvoice.core import storage
from panelvoice.core.storage import AudioStorage


def _storage(monkeypatch, endpoint, access_key=""):
    monkeypatch.setattr(storage.settings, "s3_endpoint", endpoint)
    monkeypatch.setattr(storage.settings, "s3_access_key", access_key)
    monkeypatch.setattr(storage.settings, "s3_bucket", "audio")
    return AudioStorage()


def test_data_url_without_bucket(monkeypatch):
    url = _storage(monkeypatch, "").put_bytes("k.mp3", b"abc", "audio/mpeg")
    assert url == "data:audio/mpeg;base64," + base64.b64encode(b"abc").decode()


@patch("panelvoice.core.storage.boto3.client")
def test_s3_upload_and_failure_fallback(client_factory, monkeypatch):
    client = MagicMock()
    client_factory.return_value = client
    store = _storage(monkeypatch, "http://minio:9000", access_key="key")

    assert store.put_bytes("a/b.mp3", b"abc", "audio/mpeg") == "http://minio:9000/audio/a/b.mp3"
    client.put_object.assert_called_once()

    client.put_object.side_effect = ClientError({"Error": {"Code": "500"}}, "PutObject")
    assert store.put_bytes("a/c.mp3", b"abc", "audio/mpeg").startswith("data:audio/mpeg;base64,")


def test_supabase_upload(monkeypatch):
    store = _storage(monkeypatch, "https://proj.supabase.co/storage/v1/")
    store._session = MagicMock()
    url = store.put_bytes("x.mp3", b"abc", "audio/mpeg")
    assert url == "https://proj.supabase.co/storage/v1/object/public/audio/x.mp3"
    assert store._session.post.call_args.kwargs["headers"]["x-upsert"] == "true"
