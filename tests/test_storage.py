from io import BytesIO

import pytest

import settings
import storage
from errors import DocumentNotFound, UploadRejected


def test_upload_stores_file_and_reports_progress(monkeypatch):
    monkeypatch.setattr(storage, "CHUNK_SIZE", 4)
    progress = []

    result = storage.upload(
        "u1", "document", "menu.pdf", "application/pdf", BytesIO(b"0123456789"),
        size=10, on_progress=lambda done, total: progress.append((done, total)),
    )

    assert progress == [(4, 10), (8, 10), (10, 10)]
    assert result["file_path"].startswith("users/u1/documents/")
    assert result["file_path"].endswith("_menu.pdf")
    assert result["download_url"] == f"{settings.PUBLIC_URL}/files/{result['file_id']}"
    stored = storage.fetch(result["file_id"])
    assert bytes(stored["data"]) == b"0123456789"
    assert stored["content_type"] == "application/pdf"


def test_unknown_kind_goes_to_misc():
    assert storage.generate_upload_path("u1", "selfie") == "users/u1/misc"
    assert storage.generate_upload_path("u1", "profile") == "users/u1/profile"


def test_disallowed_type_is_rejected():
    with pytest.raises(UploadRejected):
        storage.upload("u1", "profile", "run.sh", "application/x-sh", BytesIO(b"echo"))


def test_announced_oversize_is_rejected(monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 8)
    with pytest.raises(UploadRejected):
        storage.upload("u1", "profile", "a.png", "image/png", BytesIO(b"x"), size=9)


def test_unannounced_oversize_is_rejected(monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 8)
    with pytest.raises(UploadRejected):
        storage.upload("u1", "profile", "a.png", "image/png", BytesIO(b"x" * 20))


def test_delete_file():
    result = storage.upload("u1", "profile", "a.png", "image/png", BytesIO(b"png"))
    storage.delete(result["file_id"])

    with pytest.raises(DocumentNotFound):
        storage.fetch(result["file_id"])


@pytest.mark.parametrize("size,text", [
    (0, "0 Bytes"),
    (512, "512 Bytes"),
    (1536, "1.5 KB"),
    (10 * 1024 * 1024, "10 MB"),
])
def test_format_file_size(size, text):
    assert storage.format_file_size(size) == text
