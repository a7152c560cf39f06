from pathlib import Path

import pytest
from botocore.exceptions import ClientError

from src.core.config import settings
from src.core.exceptions import StorageError
from src.core.storage import service as storage


@pytest.fixture(autouse=True)
def local_storage(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setattr(settings, "storage_path", str(tmp_path))
    monkeypatch.setattr(settings, "s3_bucket", None)
    return tmp_path


class TestLocalStorage:
    """Local folder backend."""

    async def test_upload_and_download(self, local_storage: Path):
        stored = await storage.upload(b"PK..", "sepa/sepa_batch_enrollment_2024_03.zip", "application/zip")

        assert stored.provider_id == "sepa/sepa_batch_enrollment_2024_03.zip"
        assert stored.url == "/uploads/sepa/sepa_batch_enrollment_2024_03.zip"
        assert stored.size == 4
        assert (local_storage / "sepa" / "sepa_batch_enrollment_2024_03.zip").read_bytes() == b"PK.."
        assert await storage.download(stored.provider_id) == b"PK.."

    async def test_key_cannot_escape_folder(self, local_storage: Path):
        stored = await storage.upload(b"x", "../../etc/pass wd")
        assert stored.provider_id == "etc/pass_wd"
        assert (local_storage / "etc" / "pass_wd").exists()

    async def test_empty_key(self):
        with pytest.raises(StorageError):
            await storage.upload(b"x", "  /  ")

    async def test_missing_file(self):
        with pytest.raises(StorageError):
            await storage.download("nope.zip")


class TestS3Storage:
    """Bucket backend with the client calls replaced."""

    @pytest.fixture(autouse=True)
    def s3_settings(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr(settings, "s3_bucket", "school")
        monkeypatch.setattr(settings, "s3_endpoint_url", "https://r2.example.com")
        monkeypatch.setattr(settings, "s3_access_key", "key")
        monkeypatch.setattr(settings, "s3_secret_key", "secret")
        monkeypatch.setattr(settings, "s3_public_url", None)

    async def test_upload_url(self, monkeypatch: pytest.MonkeyPatch):
        calls = []

        async def fake_upload(key, content, content_type):
            calls.append((key, content, content_type))

        monkeypatch.setattr(storage, "_upload_to_s3", fake_upload)
        stored = await storage.upload(b"abc", "sepa/batch.zip", "application/zip")

        assert calls == [("sepa/batch.zip", b"abc", "application/zip")]
        assert stored.url == "https://r2.example.com/school/sepa/batch.zip"
        assert stored.provider_id == "sepa/batch.zip"

    async def test_public_url(self, monkeypatch: pytest.MonkeyPatch):
        async def fake_upload(key, content, content_type):
            return None

        monkeypatch.setattr(settings, "s3_public_url", "https://files.example.com/")
        monkeypatch.setattr(storage, "_upload_to_s3", fake_upload)
        stored = await storage.upload(b"abc", "batch.zip")
        assert stored.url == "https://files.example.com/batch.zip"

    async def test_client_error(self, monkeypatch: pytest.MonkeyPatch):
        async def failing_upload(key, content, content_type):
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")

        monkeypatch.setattr(storage, "_upload_to_s3", failing_upload)
        with pytest.raises(StorageError):
            await storage.upload(b"abc", "batch.zip")
